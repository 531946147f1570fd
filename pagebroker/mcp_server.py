"""MCP server exposing the query broker as tools.

Transport: stdio (default) or SSE over HTTP on 127.0.0.1:<port>.
Tools return text; failures come back as 'Error: ...' strings with guidance
instead of raising into the transport.
"""
from __future__ import annotations

import json
import logging
from typing import Any

import uvicorn
from mcp.server.fastmcp import FastMCP

from pagebroker.errors import ErrorKind, classify
from pagebroker.executor import QueryExecutor
from pagebroker.session_manager import SessionManager

log = logging.getLogger(__name__)

_GUIDANCE = {
    ErrorKind.CONFIG: "Configure the missing credentials and restart the server.",
    ErrorKind.AUTH: (
        "The login challenge may be blocking the remote browser. "
        "Try again in a few minutes."
    ),
    ErrorKind.SESSION_DEAD: "Try again; if it keeps failing, call reset_session.",
    ErrorKind.TIMEOUT: "Try again; if it keeps failing, call reset_session.",
    ErrorKind.QUERY: "Check the query and variables against the API schema.",
    ErrorKind.OTHER: "Try again.",
}


def format_error(exc: BaseException) -> str:
    guidance = _GUIDANCE[classify(exc)]
    return f"Error: {exc}. {guidance}"


async def _run_query(
    executor: QueryExecutor,
    query: str,
    variables: dict[str, Any] | None = None,
    endpoint: str | None = None,
) -> str:
    """Core run_query logic: JSON text on success, 'Error: ...' on failure.

    Testable directly without the MCP layer.
    """
    try:
        data = await executor.run(query, variables or {}, endpoint=endpoint)
    except Exception as e:
        log.warning("run_query failed: %s", e)
        return format_error(e)
    return json.dumps(data, indent=2)


async def _reset_session(manager: SessionManager) -> str:
    await manager.invalidate("reset requested")
    return "ok"


def _session_status(manager: SessionManager) -> str:
    return json.dumps(manager.status(), indent=2)


def create_server(executor: QueryExecutor, manager: SessionManager) -> FastMCP:
    """Create and configure the FastMCP server instance."""
    mcp = FastMCP("pagebroker")

    @mcp.tool()
    async def run_query(
        query: str,
        variables: dict[str, Any] | None = None,
        endpoint: str | None = None,
    ) -> str:
        """Run a GraphQL query or mutation through the authenticated browser.

        endpoint: "default", "customer", or an absolute URL on the API host.
        Returns the response's data member as JSON, or an error description.
        """
        return await _run_query(executor, query, variables, endpoint)

    @mcp.tool()
    async def session_status() -> str:
        """Report whether a live browser session is held and how old it is."""
        return _session_status(manager)

    @mcp.tool()
    async def reset_session() -> str:
        """Drop the current browser session; the next query logs in again."""
        return await _reset_session(manager)

    return mcp


async def run_server(mcp: FastMCP, host: str, port: int) -> None:
    """Serve the tools over SSE at http://<host>:<port>/sse until cancelled."""
    config = uvicorn.Config(
        mcp.sse_app(),
        host=host,
        port=port,
        log_level="warning",
        access_log=False,
    )
    await uvicorn.Server(config).serve()
