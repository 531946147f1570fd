"""Anti-automation challenge handling for the login form.

Two tiers:
  1. With a solving-service key: read the widget's site key, have the service
     solve it, inject the token and give the widget a moment to accept it.
  2. Always as fallback: poll the submit button until the widget enables it
     on its own, up to a ceiling.

The injected token does not always attach to the widget's internal state,
so tier 2 runs whenever tier 1 leaves the button disabled.
"""
from __future__ import annotations

import asyncio
import json
import logging
import math
import time
from typing import Any, Awaitable, Callable, Protocol
from urllib.parse import parse_qs, urlparse

import aiohttp
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import Page

from pagebroker.errors import ChallengeServiceError

log = logging.getLogger(__name__)

Sleep = Callable[[float], Awaitable[None]]

SUBMIT_ENABLED_JS = """(selector) =>
  Array.from(document.querySelectorAll(selector)).some((b) => !b.disabled)"""

SITE_KEY_JS = """() => {
  const widget = document.querySelector("[data-sitekey]");
  const frame = document.querySelector('iframe[src*="challenges.cloudflare.com"]');
  return {
    attribute: widget ? widget.getAttribute("data-sitekey") : null,
    iframe: frame ? frame.getAttribute("src") : null,
  };
}"""

INJECT_TOKEN_JS = """(token) => {
  const fields = document.querySelectorAll(
    'input[name="cf-turnstile-response"], input[name*="turnstile"], input[name*="cf-"]'
  );
  fields.forEach((el) => {
    el.value = token;
    el.dispatchEvent(new Event("input", { bubbles: true }));
    el.dispatchEvent(new Event("change", { bubbles: true }));
  });
  if (window.turnstile) {
    try { window.turnstile.getResponse = () => token; } catch (e) {}
  }
  document.querySelectorAll("form").forEach((f) =>
    f.dispatchEvent(new Event("change", { bubbles: true })));
  return fields.length;
}"""


class TurnstileService(Protocol):
    async def solve_turnstile(self, page_url: str, site_key: str) -> str: ...


# ---------------------------------------------------------------------------
# 2Captcha client
# ---------------------------------------------------------------------------

async def _parse_payload(response: aiohttp.ClientResponse) -> dict[str, Any] | None:
    text = await response.text()
    try:
        parsed = json.loads(text)
    except json.JSONDecodeError:
        parsed = None

    if isinstance(parsed, dict):
        return parsed

    text = text.strip()
    if text.startswith("OK|"):
        return {"status": 1, "request": text.split("|", 1)[1]}
    if text:
        return {"status": 0, "request": text}
    return None


class TwoCaptchaClient:
    """Turnstile solving through the 2Captcha in.php/res.php API."""

    SUBMIT_URL = "https://2captcha.com/in.php"
    RESULT_URL = "https://2captcha.com/res.php"

    def __init__(
        self,
        api_key: str,
        timeout: float = 120.0,
        poll_interval: float = 5.0,
        request_timeout: float = 30.0,
    ) -> None:
        self._api_key = api_key
        self._timeout = timeout
        self._poll_interval = poll_interval
        self._request_timeout = request_timeout

    async def solve_turnstile(self, page_url: str, site_key: str) -> str:
        """Return a token for *site_key* on *page_url*; raise ChallengeServiceError."""
        timeout = aiohttp.ClientTimeout(total=self._request_timeout)
        async with aiohttp.ClientSession(timeout=timeout) as session:
            submit_payload = {
                "key": self._api_key,
                "method": "turnstile",
                "sitekey": site_key,
                "pageurl": page_url,
                "json": 1,
            }
            try:
                async with session.post(self.SUBMIT_URL, data=submit_payload) as resp:
                    submit_data = await _parse_payload(resp)
            except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
                raise ChallengeServiceError(f"2Captcha submit failed: {exc}") from exc

            if not submit_data or submit_data.get("status") != 1:
                reason = submit_data.get("request") if submit_data else "empty response"
                raise ChallengeServiceError(f"2Captcha submit rejected: {reason}")

            task_id = str(submit_data.get("request"))
            deadline = time.monotonic() + self._timeout
            while time.monotonic() < deadline:
                await asyncio.sleep(self._poll_interval)
                try:
                    async with session.get(
                        self.RESULT_URL,
                        params={"key": self._api_key, "action": "get", "id": task_id, "json": 1},
                    ) as resp:
                        result_data = await _parse_payload(resp)
                except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
                    raise ChallengeServiceError(f"2Captcha poll failed: {exc}") from exc

                if not result_data:
                    raise ChallengeServiceError("2Captcha poll returned an empty response")
                if result_data.get("status") == 1:
                    return str(result_data.get("request"))
                if result_data.get("request") != "CAPCHA_NOT_READY":
                    raise ChallengeServiceError(
                        f"2Captcha solve error: {result_data.get('request')}"
                    )

        raise ChallengeServiceError(f"2Captcha solve timed out after {self._timeout:.0f}s")


# ---------------------------------------------------------------------------
# Solver
# ---------------------------------------------------------------------------

def site_key_from_iframe(src: str | None) -> str | None:
    """Extract the ``k`` parameter from an embedded challenge iframe URL."""
    if not src:
        return None
    values = parse_qs(urlparse(src).query).get("k")
    return values[0] if values else None


class ChallengeSolver:
    """Get the login form's submit button enabled past the challenge widget."""

    def __init__(
        self,
        service: TurnstileService | None = None,
        submit_selector: str = "button[type=submit]",
        fallback_site_key: str = "",
        poll_interval: float = 2.0,
        timeout: float = 60.0,
        settle_checks: int = 3,
        settle_interval: float = 1.0,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self._service = service
        self._submit_selector = submit_selector
        self._fallback_site_key = fallback_site_key
        self._poll_interval = poll_interval
        self._max_polls = max(1, math.ceil(timeout / poll_interval))
        self._settle_checks = settle_checks
        self._settle_interval = settle_interval
        self._sleep = sleep

    async def solve(self, page: Page) -> bool:
        """Return True once the submit control is enabled, False on ceiling."""
        if self._service is not None:
            try:
                if await self._solve_with_service(page):
                    return True
                log.info("Submit still disabled after token injection, waiting naturally")
            except Exception as exc:
                # Any service-tier failure still falls through to the natural wait.
                log.warning("Solving service failed, waiting naturally: %s", exc)
        return await self._wait_for_enabled(page)

    async def site_key(self, page: Page) -> str | None:
        """DOM attribute, then iframe ``k=`` parameter, then the configured key."""
        try:
            found = await page.evaluate(SITE_KEY_JS) or {}
        except PlaywrightError as exc:
            log.debug("Site key lookup failed: %s", exc)
            found = {}
        return (
            found.get("attribute")
            or site_key_from_iframe(found.get("iframe"))
            or self._fallback_site_key
            or None
        )

    async def submit_enabled(self, page: Page) -> bool:
        try:
            return bool(await page.evaluate(SUBMIT_ENABLED_JS, self._submit_selector))
        except PlaywrightError:
            return False

    async def _solve_with_service(self, page: Page) -> bool:
        site_key = await self.site_key(page)
        if not site_key:
            log.warning("No challenge site key found, skipping solving service")
            return False

        started = time.monotonic()
        token = await self._service.solve_turnstile(page.url, site_key)
        log.info("Challenge solved by service in %.0fs", time.monotonic() - started)

        injected = await page.evaluate(INJECT_TOKEN_JS, token)
        log.debug("Token injected into %s field(s)", injected)

        for _ in range(self._settle_checks):
            await self._sleep(self._settle_interval)
            if await self.submit_enabled(page):
                return True
        return False

    async def _wait_for_enabled(self, page: Page) -> bool:
        for poll in range(self._max_polls):
            if await self.submit_enabled(page):
                log.info("Challenge passed after %.0fs of waiting", poll * self._poll_interval)
                return True
            await self._sleep(self._poll_interval)
        log.warning("Challenge timeout: submit button never enabled")
        return False
