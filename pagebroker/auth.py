"""Scripted login against the remote browser.

Sequence: open login page -> (password) -> challenge -> identifier
(-> password when deferred) -> read back -> submit -> wait for redirect.

The challenge widget clears form contents when it completes, so only the
field the site leaves untouched may be typed before solving. Which one that
is depends on the site; ``Config.fill_order`` selects it:

    password_first   password before the challenge, identifier after
    after_challenge  both fields after the challenge
"""
from __future__ import annotations

import asyncio
import logging

from playwright.async_api import Page
from playwright.async_api import TimeoutError as PlaywrightTimeout

from pagebroker.browser import BrowserConnector, LiveSession, close_quietly
from pagebroker.challenge import ChallengeSolver
from pagebroker.config import Config, Credentials
from pagebroker.errors import BrokerError, ChallengeFailed, LoginAttemptFailed

log = logging.getLogger(__name__)

MIN_SECRET_LENGTH = 5

READ_FIELDS_JS = """({ form, identifier, secret }) => {
  const root = document.querySelector(form) || document;
  const id = root.querySelector(identifier);
  const pw = root.querySelector(secret);
  return {
    identifier: id && id.value ? id.value : "",
    secretLength: pw && pw.value ? pw.value.length : 0,
  };
}"""

CLICK_SUBMIT_JS = """(selector) => {
  for (const b of document.querySelectorAll(selector)) {
    if (!b.disabled) { b.click(); return true; }
  }
  return false;
}"""


class AuthenticationFlow:
    """One login attempt per ``login()`` call; retries belong to the caller."""

    def __init__(
        self,
        config: Config,
        connector: BrowserConnector,
        solver: ChallengeSolver,
    ) -> None:
        self._config = config
        self._connector = connector
        self._solver = solver
        self.last_failure: BrokerError | None = None

    async def login(self, credentials: Credentials) -> LiveSession | None:
        """Return an authenticated session, or None for a recoverable failure.

        The browser opened for the attempt is closed whenever no session is
        returned, including when an unexpected error propagates.
        """
        self.last_failure = None
        browser, page = await self._connector.connect(
            credentials.automation_endpoint, self._config.navigation_timeout,
        )
        session: LiveSession | None = None
        try:
            if await self._sign_in(page, credentials):
                session = LiveSession(browser=browser, page=page)
        finally:
            if session is None:
                await close_quietly(browser)
        return session

    def _fail(self, error: BrokerError) -> bool:
        self.last_failure = error
        log.warning("Login attempt failed: %s", error)
        return False

    async def _sign_in(self, page: Page, credentials: Credentials) -> bool:
        cfg = self._config

        # Step 1: login page and form
        log.info("Opening login page %s", cfg.login_url)
        await page.goto(cfg.login_url, timeout=cfg.navigation_timeout * 1000)
        try:
            await page.wait_for_selector(
                f"{cfg.login_form_selector} {cfg.secret_selector}",
                timeout=cfg.form_timeout * 1000,
            )
        except PlaywrightTimeout:
            return self._fail(LoginAttemptFailed(f"login form did not render at {page.url}"))

        # Step 2: the field that survives the widget's reset
        if cfg.fill_order == "password_first":
            await self._type(page, cfg.secret_selector, credentials.secret)

        # Step 3: challenge
        log.info("Waiting for challenge to pass...")
        if not await self._solver.solve(page):
            return self._fail(ChallengeFailed("submit control never became enabled"))

        # Step 4: remaining fields
        await self._type(page, cfg.identifier_selector, credentials.identifier)
        if cfg.fill_order == "after_challenge":
            await self._type(page, cfg.secret_selector, credentials.secret)

        # Step 5: verify what the form actually holds
        fields = await asyncio.wait_for(page.evaluate(
            READ_FIELDS_JS,
            {
                "form": cfg.login_form_selector,
                "identifier": cfg.identifier_selector,
                "secret": cfg.secret_selector,
            },
        ), cfg.form_timeout) or {}
        min_length = min(MIN_SECRET_LENGTH, len(credentials.secret))
        if not fields.get("identifier") or fields.get("secretLength", 0) < min_length:
            return self._fail(LoginAttemptFailed(
                f"form fields not filled (identifier={'set' if fields.get('identifier') else 'empty'}, "
                f"secret length={fields.get('secretLength', 0)})"
            ))

        # Step 6: submit through the first enabled button
        clicked = await asyncio.wait_for(
            page.evaluate(CLICK_SUBMIT_JS, cfg.submit_selector), cfg.form_timeout,
        )
        if not clicked:
            return self._fail(LoginAttemptFailed("no enabled submit button"))
        log.info("Clicked login button")

        # Step 7: redirect into the application
        try:
            await page.wait_for_url(cfg.app_url_glob, timeout=cfg.redirect_timeout * 1000)
        except PlaywrightTimeout:
            return self._fail(LoginAttemptFailed(f"no redirect after submit, URL: {page.url}"))

        log.info("Login successful: %s", page.url)
        return True

    async def _type(self, page: Page, selector: str, value: str) -> None:
        """Click a form field and type into it with key events."""
        field = page.locator(self._config.login_form_selector).locator(selector).first
        await field.click(timeout=self._config.form_timeout * 1000)
        await page.keyboard.type(value, delay=self._config.typing_delay_ms)
