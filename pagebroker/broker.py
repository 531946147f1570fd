"""Request-interception broker.

Direct requests to the protected API host are rejected; requests made by the
already-cleared browser page are accepted. The broker therefore never sends
its own request. It waits for the application to call the API host, swaps
the caller's ``{query, variables}`` into that request's body (headers,
cookies and connection untouched) and picks the answer out of the response
stream.

Per-query lifecycle (``Exchange``):

    IDLE -> AWAITING_SWAP -> AWAITING_RESPONSE -> RESOLVED
                 |                  |
                 +------------------+--> TIMED_OUT | FAILED

Responses are ignored until the swap has happened.
"""
from __future__ import annotations

import asyncio
import json
import logging
import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import Any
from urllib.parse import urlparse

from playwright.async_api import Error as PlaywrightError
from playwright.async_api import Page, Request, Response, Route

from pagebroker.browser import LiveSession
from pagebroker.errors import (
    BrokerError,
    ErrorKind,
    NoInterceptableCall,
    QueryError,
    QueryTimeout,
    SessionDead,
    SlotBusy,
    classify,
)

log = logging.getLogger(__name__)


class QueryState(Enum):
    IDLE = "idle"
    AWAITING_SWAP = "awaiting_swap"
    AWAITING_RESPONSE = "awaiting_response"
    RESOLVED = "resolved"
    TIMED_OUT = "timed_out"
    FAILED = "failed"


@dataclass(frozen=True)
class PendingQuery:
    target_endpoint: str
    query: str
    variables: dict[str, Any] = field(default_factory=dict)
    deadline: float = 0.0  # event loop time; 0 = none

    def body(self) -> str:
        return json.dumps({"query": self.query, "variables": self.variables})

    def expired(self, now: float) -> bool:
        return bool(self.deadline) and now > self.deadline


class PendingSlot:
    """Holds at most one PendingQuery.

    ``claim`` is compare-and-set: it fails with SlotBusy while occupied.
    ``take`` empties the slot and returns what was in it.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._query: PendingQuery | None = None

    @property
    def occupied(self) -> bool:
        return self._query is not None

    def claim(self, query: PendingQuery) -> None:
        with self._lock:
            if self._query is not None:
                raise SlotBusy("a query is already pending")
            self._query = query

    def take(self) -> PendingQuery | None:
        with self._lock:
            query, self._query = self._query, None
            return query

    def clear(self) -> None:
        self.take()


class Exchange:
    """State of one in-flight query; every external event is a method call."""

    def __init__(self, query: PendingQuery, loop: asyncio.AbstractEventLoop) -> None:
        self.query = query
        self.state = QueryState.IDLE
        self.swapped_request: Request | None = None
        self._future: asyncio.Future = loop.create_future()

    @property
    def done(self) -> bool:
        return self.state in (QueryState.RESOLVED, QueryState.TIMED_OUT, QueryState.FAILED)

    def result(self) -> asyncio.Future:
        return self._future

    def begin(self) -> None:
        if self.state is QueryState.IDLE:
            self.state = QueryState.AWAITING_SWAP

    def on_swap(self, request: Request | None = None) -> bool:
        """The route handler replaced a request body with this query."""
        if self.state is not QueryState.AWAITING_SWAP:
            return False
        self.swapped_request = request
        self.state = QueryState.AWAITING_RESPONSE
        return True

    def on_response(self, body: Any, request: Request | None = None) -> bool:
        """Offer a parsed response body; returns True if it settled the query."""
        if self.state is not QueryState.AWAITING_RESPONSE or not isinstance(body, dict):
            return False
        if body.get("data"):
            self.state = QueryState.RESOLVED
            if not self._future.done():
                self._future.set_result(body)
            return True
        if body.get("errors") and request is not None and request is self.swapped_request:
            errors = body["errors"]
            first = errors[0] if isinstance(errors, list) and errors else {}
            message = first.get("message") if isinstance(first, dict) else None
            return self.fail(QueryError(message or "GraphQL error", errors if isinstance(errors, list) else []))
        return False

    def fail(self, error: BrokerError) -> bool:
        if self.done:
            return False
        self.state = QueryState.FAILED
        if not self._future.done():
            self._future.set_exception(error)
        return True

    def on_timeout(self, timeout: float) -> BrokerError:
        """Deadline reached: settle as TIMED_OUT and return the error to raise."""
        swapped = self.state is QueryState.AWAITING_RESPONSE
        self.state = QueryState.TIMED_OUT
        if not self._future.done():
            self._future.cancel()
        if swapped:
            return QueryTimeout(f"no response to the swapped request within {timeout:.0f}s")
        return NoInterceptableCall(
            f"the application issued no request to the API host within {timeout:.0f}s"
        )


class InterceptionBroker:
    """Swap caller queries into the page's own API traffic."""

    def __init__(
        self,
        api_host: str,
        trigger_url: str,
        timeout: float = 30.0,
        navigation_timeout: float = 30.0,
    ) -> None:
        self._api_host = api_host
        self._trigger_url = trigger_url
        self._timeout = timeout
        self._navigation_timeout = navigation_timeout
        self._slot = PendingSlot()
        self._exchange: Exchange | None = None

    @property
    def slot(self) -> PendingSlot:
        return self._slot

    @property
    def route_pattern(self) -> str:
        return f"**/{self._api_host}/**"

    def targets_host(self, url: str) -> bool:
        return urlparse(url).hostname == self._api_host

    async def install(self, session: LiveSession) -> None:
        """Register the route rule on the session's page once."""
        if session.interception_installed:
            return
        await session.page.route(self.route_pattern, self.handle_route)
        session.interception_installed = True
        log.info("Interception route installed for %s", self._api_host)

    async def execute(
        self,
        session: LiveSession,
        target_endpoint: str,
        query: str,
        variables: dict[str, Any] | None = None,
    ) -> dict:
        """Run *query* through the page's next API request; return the response body."""
        await self.install(session)
        page = session.page
        loop = asyncio.get_running_loop()
        pending = PendingQuery(
            target_endpoint=target_endpoint,
            query=query,
            variables=variables or {},
            deadline=loop.time() + self._timeout,
        )
        self._slot.claim(pending)
        exchange = Exchange(pending, loop)
        self._exchange = exchange
        exchange.begin()
        page.on("response", self.handle_response)
        trigger = asyncio.create_task(self._trigger(page, exchange))
        try:
            return await asyncio.wait_for(asyncio.shield(exchange.result()), self._timeout)
        except asyncio.TimeoutError:
            raise exchange.on_timeout(self._timeout) from None
        finally:
            self._slot.clear()
            self._exchange = None
            page.remove_listener("response", self.handle_response)
            if not trigger.done():
                trigger.cancel()

    async def _trigger(self, page: Page, exchange: Exchange) -> None:
        """Navigate to a view that calls the API; only the commit is awaited."""
        try:
            await page.goto(
                self._trigger_url,
                wait_until="commit",
                timeout=self._navigation_timeout * 1000,
            )
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            if classify(exc) is ErrorKind.SESSION_DEAD:
                exchange.fail(SessionDead(f"page closed while triggering traffic: {exc}"))
            else:
                # Navigation may be superseded by the app's own routing.
                log.debug("Trigger navigation did not commit: %s", exc)

    async def handle_route(self, route: Route, request: Request) -> None:
        """Swap the body of the first API POST while a query is pending."""
        if request.method == "POST" and self.targets_host(request.url):
            pending = self._slot.take()
            if pending is not None and pending.expired(asyncio.get_running_loop().time()):
                log.debug("Dropping expired pending query")
                pending = None
            if pending is not None:
                overrides: dict[str, Any] = {"post_data": pending.body()}
                if request.url != pending.target_endpoint:
                    overrides["url"] = pending.target_endpoint
                exchange = self._exchange
                if exchange is not None and exchange.query is pending:
                    exchange.on_swap(request)
                log.info("Intercepted %s, swapping body", request.url)
                await route.continue_(**overrides)
                return
        await route.continue_()

    async def handle_response(self, response: Response) -> None:
        exchange = self._exchange
        if exchange is None or exchange.state is not QueryState.AWAITING_RESPONSE:
            return
        if not self.targets_host(response.url):
            return
        try:
            body = json.loads(await response.text())
        except (PlaywrightError, ValueError):
            return
        if exchange.on_response(body, response.request):
            log.info("Matched response from %s", response.url)
