"""Session acquisition and ownership.

Acquisition order, first success wins:
1. In-memory reuse (held page passes the liveness probe)
2. Reconnect to the persisted descriptor (unexpired, inside the app, alive)
3. Fresh login, up to ``max_login_retries`` attempts

SessionManager is the only writer of the live browser handle and of the
persisted descriptor. A session that fails any liveness check is torn down
and the descriptor invalidated before moving on, so callers never see a
half-alive session.
"""
from __future__ import annotations

import fnmatch
import time
from typing import Any

import structlog

from pagebroker.auth import AuthenticationFlow
from pagebroker.broker import InterceptionBroker
from pagebroker.browser import BrowserConnector, LiveSession, close_quietly, probe
from pagebroker.config import Config
from pagebroker.errors import ConfigMissing, LoginFailed
from pagebroker.session_store import SessionStore

log = structlog.get_logger(__name__)


class SessionManager:
    """Owns the one LiveSession of the process."""

    def __init__(
        self,
        config: Config,
        store: SessionStore,
        connector: BrowserConnector,
        auth: AuthenticationFlow,
        broker: InterceptionBroker,
    ) -> None:
        self._config = config
        self._store = store
        self._connector = connector
        self._auth = auth
        self._broker = broker
        self._session: LiveSession | None = None
        self._login_attempts = 0  # lifetime count, for status()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    @property
    def session(self) -> LiveSession | None:
        return self._session

    async def acquire_session(self) -> LiveSession:
        """Return a usable session, reconnecting or logging in as needed."""
        session = await self._reuse()
        if session is not None:
            return session

        session = await self._reconnect()
        if session is not None:
            return session

        return await self._fresh_login()

    async def invalidate(self, reason: str = "") -> None:
        """Tear down the live session and forget the persisted descriptor."""
        log.info("invalidating session", reason=reason)
        await self._teardown()
        self._store.clear()

    async def close(self) -> None:
        """Disconnect on shutdown; the descriptor stays for the next process."""
        await self._teardown()
        await self._connector.stop()
        log.info("session manager closed")

    def status(self) -> dict[str, Any]:
        descriptor = self._store.load()
        return {
            "live": self._session is not None,
            "interception_installed": bool(
                self._session and self._session.interception_installed
            ),
            "page_url": self._session.page.url if self._session else None,
            "descriptor_age_seconds": (
                round(descriptor.age_ms(int(time.time() * 1000)) / 1000)
                if descriptor else None
            ),
            "login_attempts": self._login_attempts,
        }

    # ------------------------------------------------------------------
    # Acquisition steps
    # ------------------------------------------------------------------

    async def _reuse(self) -> LiveSession | None:
        session = self._session
        if session is None:
            return None
        try:
            await probe(session.page, self._config.liveness_timeout)
        except Exception as e:
            log.warning("in-memory page dead", error=str(e))
            await self.invalidate("liveness probe failed")
            return None
        return session

    async def _reconnect(self) -> LiveSession | None:
        descriptor = self._store.load()
        if descriptor is None:
            return None

        log.info("reconnecting to saved session")
        browser = None
        try:
            browser, page = await self._connector.connect(
                descriptor.remote_session_reference,
                self._config.reconnect_timeout,
                create_page=False,
            )
            if page is None:
                raise RuntimeError("no open page on the remote browser")
            if not self._inside_app(page.url):
                raise RuntimeError(f"page is outside the application: {page.url}")
            await probe(page, self._config.liveness_timeout)
            session = LiveSession(browser=browser, page=page)
            await self._broker.install(session)
        except Exception as e:
            log.warning("reconnect failed", error=str(e))
            await close_quietly(browser)
            await self.invalidate("reconnect failed")
            return None

        self._session = session
        log.info("reconnected to saved session", url=page.url)
        return session

    async def _fresh_login(self) -> LiveSession:
        credentials = self._config.credentials
        missing = credentials.missing()
        if missing:
            raise ConfigMissing(missing)

        retries = self._config.max_login_retries
        last_error: BaseException | None = None
        for attempt in range(1, retries + 1):
            log.info("login attempt", attempt=attempt, of=retries)
            self._login_attempts += 1
            try:
                session = await self._auth.login(credentials)
            except Exception as e:
                last_error = e
                log.warning("login attempt failed", attempt=attempt, error=str(e))
                continue
            if session is None:
                last_error = self._auth.last_failure
                log.warning(
                    "login attempt failed",
                    attempt=attempt,
                    error=str(last_error) if last_error else "unknown",
                )
                continue

            try:
                await self._broker.install(session)
            except Exception as e:
                last_error = e
                log.warning("interception install failed", attempt=attempt, error=str(e))
                await close_quietly(session.browser)
                continue
            self._session = session
            self._store.save(credentials.automation_endpoint)
            log.info("login successful", attempt=attempt, url=session.page.url)
            return session

        raise LoginFailed(retries, last_error)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _inside_app(self, url: str) -> bool:
        return fnmatch.fnmatch(url, self._config.app_url_glob)

    async def _teardown(self) -> None:
        session, self._session = self._session, None
        if session is not None:
            await close_quietly(session.browser)
