"""Remote browser connection over CDP.

``BrowserConnector`` owns the Playwright driver and hands out
``(browser, page)`` pairs; it never keeps a reference to either.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass

from playwright.async_api import Browser, Page, Playwright, async_playwright

log = logging.getLogger(__name__)

PING_JS = "() => true"


class BrowserConnector:
    """Connects to a remote automation endpoint (e.g. Browserbase) over CDP."""

    def __init__(self) -> None:
        self._pw: Playwright | None = None

    async def connect(
        self,
        endpoint: str,
        timeout: float,
        create_page: bool = True,
    ) -> tuple[Browser, Page | None]:
        """Connect and return the browser with its first page.

        With ``create_page=False`` an endpoint without an open page yields
        ``(browser, None)``: a reconnect has nothing to resume in that case.
        """
        if self._pw is None:
            self._pw = await async_playwright().start()

        browser = await self._pw.chromium.connect_over_cdp(endpoint, timeout=timeout * 1000)
        contexts = list(browser.contexts)
        if contexts:
            context = contexts[0]
        elif create_page:
            context = await browser.new_context()
        else:
            return browser, None

        open_pages = [p for p in context.pages if not p.is_closed()]
        if open_pages:
            return browser, open_pages[0]
        if not create_page:
            return browser, None
        return browser, await context.new_page()

    async def stop(self) -> None:
        """Stop the Playwright driver."""
        if self._pw is not None:
            try:
                await self._pw.stop()
            except Exception as exc:
                log.warning("Failed to stop Playwright: %s", exc)
            self._pw = None


async def probe(page: Page, timeout: float) -> None:
    """Liveness probe: a no-op evaluation that raises if the page is gone."""
    await asyncio.wait_for(page.evaluate(PING_JS), timeout=timeout)


async def close_quietly(browser: Browser | None) -> None:
    """Close (disconnect) a browser, ignoring errors from a dead connection."""
    if browser is None:
        return
    try:
        await browser.close()
    except Exception as exc:
        log.debug("Ignoring error while closing browser: %s", exc)


@dataclass
class LiveSession:
    """A connected remote browser whose page is inside the application."""

    browser: Browser
    page: Page
    interception_installed: bool = False
