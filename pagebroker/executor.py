"""Public entry point: run one GraphQL query through the browser session."""
from __future__ import annotations

import asyncio
from typing import Any

import structlog

from pagebroker.broker import InterceptionBroker
from pagebroker.config import Config
from pagebroker.errors import classify, is_retryable
from pagebroker.session_manager import SessionManager

log = structlog.get_logger(__name__)


class QueryExecutor:
    """Serializes callers and replaces a dead session at most once per call."""

    def __init__(
        self,
        config: Config,
        manager: SessionManager,
        broker: InterceptionBroker,
    ) -> None:
        self._config = config
        self._manager = manager
        self._broker = broker
        self._lock = asyncio.Lock()

    async def run(
        self,
        query: str,
        variables: dict[str, Any] | None = None,
        endpoint: str | None = None,
        allow_retry: bool = True,
    ) -> Any:
        """Return the ``data`` member of the response to *query*.

        *endpoint* is an alias ("default", "customer") or an absolute URL on
        the protected host.
        """
        target = self._config.resolve_endpoint(endpoint)
        async with self._lock:
            return await self._run_locked(query, variables or {}, target, allow_retry)

    async def _run_locked(
        self,
        query: str,
        variables: dict[str, Any],
        target: str,
        allow_retry: bool,
    ) -> Any:
        try:
            session = await self._manager.acquire_session()
            body = await self._broker.execute(session, target, query, variables)
        except Exception as e:
            if allow_retry and is_retryable(e):
                log.warning(
                    "session died mid-query, reconnecting",
                    kind=classify(e).value,
                    error=str(e),
                )
                await self._manager.invalidate("query failed: " + classify(e).value)
                return await self._run_locked(query, variables, target, allow_retry=False)
            raise

        if body.get("errors"):
            log.warning("query returned partial errors", errors=len(body["errors"]))
        return body["data"]
