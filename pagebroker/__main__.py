"""Entry point: python -m pagebroker"""
from __future__ import annotations

import argparse
import asyncio
import logging
import signal
import sys
from pathlib import Path

import structlog

from pagebroker import config as config_module
from pagebroker import paths
from pagebroker.auth import AuthenticationFlow
from pagebroker.broker import InterceptionBroker
from pagebroker.browser import BrowserConnector
from pagebroker.challenge import ChallengeSolver, TwoCaptchaClient
from pagebroker.config import Config
from pagebroker.executor import QueryExecutor
from pagebroker.mcp_server import create_server, run_server
from pagebroker.session_manager import SessionManager
from pagebroker.session_store import SessionStore

log = structlog.get_logger("pagebroker")


def configure_logging(level: int = logging.INFO, json_logs: bool = False) -> None:
    """stdlib + structlog to stderr; stdout belongs to the stdio transport."""
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )
    renderer = (
        structlog.processors.JSONRenderer()
        if json_logs
        else structlog.dev.ConsoleRenderer(colors=False)
    )
    structlog.configure(
        processors=[
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.add_log_level,
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
    )


def build(cfg: Config) -> tuple[QueryExecutor, SessionManager]:
    """Wire the object graph for one process."""
    service = None
    if cfg.credentials.challenge_solver_key:
        service = TwoCaptchaClient(
            cfg.credentials.challenge_solver_key,
            timeout=cfg.solver_timeout,
            poll_interval=cfg.solver_poll_interval,
        )
    solver = ChallengeSolver(
        service=service,
        submit_selector=cfg.submit_selector,
        fallback_site_key=cfg.fallback_site_key,
        poll_interval=cfg.challenge_poll_interval,
        timeout=cfg.challenge_timeout,
    )
    connector = BrowserConnector()
    broker = InterceptionBroker(
        api_host=cfg.api_host,
        trigger_url=cfg.trigger_url,
        timeout=cfg.query_timeout,
        navigation_timeout=cfg.navigation_timeout,
    )
    manager = SessionManager(
        config=cfg,
        store=SessionStore(cfg.session_file, ttl_ms=cfg.session_ttl_ms),
        connector=connector,
        auth=AuthenticationFlow(cfg, connector, solver),
        broker=broker,
    )
    return QueryExecutor(cfg, manager, broker), manager


def _parse_args(argv: list[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="pagebroker",
        description="Serve browser-brokered GraphQL queries over MCP.",
    )
    parser.add_argument("--config-dir", type=Path, default=None,
                        help="directory containing pagebroker.toml (default: CWD)")
    parser.add_argument("--transport", choices=("stdio", "sse"), default=None)
    parser.add_argument("--host", default=None)
    parser.add_argument("--port", type=int, default=None)
    parser.add_argument("--json-logs", action="store_true")
    parser.add_argument("-v", "--verbose", action="store_true")
    return parser.parse_args(argv)


async def _serve(cfg: Config, transport: str, host: str, port: int) -> None:
    executor, manager = build(cfg)
    mcp = create_server(executor, manager)

    loop = asyncio.get_running_loop()
    stop_event = asyncio.Event()
    loop.add_signal_handler(signal.SIGTERM, stop_event.set)
    loop.add_signal_handler(signal.SIGINT, stop_event.set)

    if transport == "sse":
        server_task = asyncio.create_task(run_server(mcp, host, port))
        log.info("serving", transport="sse", url=f"http://{host}:{port}/sse")
    else:
        server_task = asyncio.create_task(mcp.run_stdio_async())
        log.info("serving", transport="stdio")

    stop_task = asyncio.create_task(stop_event.wait())
    try:
        await asyncio.wait({server_task, stop_task}, return_when=asyncio.FIRST_COMPLETED)
    finally:
        for task in (server_task, stop_task):
            if not task.done():
                task.cancel()
        await manager.close()
        log.info("stopped")


def main(argv: list[str] | None = None) -> None:
    args = _parse_args(argv)
    configure_logging(logging.DEBUG if args.verbose else logging.INFO, args.json_logs)
    paths.ensure_dirs()

    try:
        cfg = config_module.load(args.config_dir)
    except ValueError as exc:
        log.error("config error", error=str(exc))
        sys.exit(1)

    missing = cfg.credentials.missing()
    if missing:
        # Not fatal: a saved session may still be reusable.
        log.warning("credentials incomplete", missing=missing)

    asyncio.run(_serve(
        cfg,
        args.transport or cfg.transport,
        args.host or cfg.host,
        args.port or cfg.port,
    ))


if __name__ == "__main__":
    main()
