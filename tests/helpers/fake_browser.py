"""Scripted stand-ins for the Playwright objects pagebroker touches.

FakePage answers ``evaluate`` by looking the script up among the JS
constants the modules export, so tests drive behavior through plain
attributes (``enable_at_check``, ``redirect_url``, ``dead`` ...).
"""
from __future__ import annotations

import json
from typing import Any, Awaitable, Callable

from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeout

from pagebroker.auth import CLICK_SUBMIT_JS, READ_FIELDS_JS
from pagebroker.browser import PING_JS
from pagebroker.challenge import INJECT_TOKEN_JS, SITE_KEY_JS, SUBMIT_ENABLED_JS

API_HOST = "api.example.com"
GRAPHQL_URL = f"https://{API_HOST}/graphql"
CUSTOMER_URL = f"https://{API_HOST}/customer-graphql"
APP_URL = "https://www.example.com/app/home"
LOGIN_URL = "https://www.example.com/login"


class FakeRequest:
    def __init__(self, url: str = GRAPHQL_URL, method: str = "POST", post_data: str | None = None):
        self.url = url
        self.method = method
        self.post_data = post_data if post_data is not None else json.dumps({"query": "{ original }"})


class FakeRoute:
    def __init__(self, request: FakeRequest):
        self.request = request
        self.continued: dict | None = None

    async def continue_(self, **overrides: Any) -> None:
        self.continued = overrides

    @property
    def sent_body(self) -> str | None:
        """Body that actually left the browser."""
        if self.continued is None:
            return None
        return self.continued.get("post_data", self.request.post_data)

    @property
    def sent_url(self) -> str:
        return (self.continued or {}).get("url", self.request.url)


class FakeResponse:
    def __init__(self, url: str, body: Any, request: FakeRequest | None = None):
        self.url = url
        self._body = body
        self.request = request

    async def text(self) -> str:
        return self._body if isinstance(self._body, str) else json.dumps(self._body)


class FakeKeyboard:
    def __init__(self, page: "FakePage"):
        self._page = page

    async def type(self, value: str, delay: float = 0) -> None:
        page = self._page
        page.fields[page.focused] = page.fields.get(page.focused, "") + value
        page.events.append(("type", page.focused, value))


class FakeLocator:
    def __init__(self, page: "FakePage", selectors: tuple[str, ...]):
        self._page = page
        self.selectors = selectors

    def locator(self, selector: str) -> "FakeLocator":
        return FakeLocator(self._page, self.selectors + (selector,))

    @property
    def first(self) -> "FakeLocator":
        return self

    async def click(self, timeout: float | None = None) -> None:
        self._page.focused = self.selectors[-1]
        self._page.events.append(("click", self.selectors[-1]))


class FakePage:
    def __init__(self, url: str = "about:blank"):
        self.url = url
        self.dead = False
        self.closed = False
        self.form_renders = True
        self.redirect_url: str | None = APP_URL
        self.enable_at_check: int | None = 0  # None = never enabled
        self.enable_on_inject = False
        self.route_fails = False  # page dies as the route rule is registered
        self.site_key_found: dict = {"attribute": None, "iframe": None}
        self.submit_checks = 0
        self.fields: dict[str, str] = {}
        self.focused = ""
        self.events: list[tuple] = []
        self.injected_tokens: list[str] = []
        self.routes: list[tuple[str, Callable]] = []
        self.listeners: dict[str, list[Callable]] = {}
        self.on_goto: Callable[["FakePage", str], Awaitable[None]] | None = None
        self.keyboard = FakeKeyboard(self)

    # -- Playwright surface ----------------------------------------------------

    def is_closed(self) -> bool:
        return self.closed

    async def evaluate(self, script: str, arg: Any = None) -> Any:
        self._check_alive()
        if script == PING_JS:
            return True
        if script == SUBMIT_ENABLED_JS:
            enabled = self._enabled()
            self.submit_checks += 1
            return enabled
        if script == SITE_KEY_JS:
            return dict(self.site_key_found)
        if script == INJECT_TOKEN_JS:
            self.injected_tokens.append(arg)
            if self.enable_on_inject:
                self.enable_at_check = self.submit_checks
            return 1
        if script == READ_FIELDS_JS:
            return {
                "identifier": self.fields.get(arg["identifier"], ""),
                "secretLength": len(self.fields.get(arg["secret"], "")),
            }
        if script == CLICK_SUBMIT_JS:
            enabled = self._enabled()
            if enabled:
                self.events.append(("submit",))
            return enabled
        raise AssertionError(f"unexpected script: {script[:60]}")

    async def goto(self, url: str, **kwargs: Any) -> None:
        self._check_alive()
        self.events.append(("goto", url, kwargs.get("wait_until")))
        self.url = url
        if self.on_goto is not None:
            await self.on_goto(self, url)

    async def wait_for_selector(self, selector: str, timeout: float | None = None) -> None:
        if not self.form_renders:
            raise PlaywrightTimeout(f"Timeout {timeout}ms exceeded waiting for {selector}")

    async def wait_for_url(self, pattern: str, timeout: float | None = None) -> None:
        if self.redirect_url is None:
            raise PlaywrightTimeout(f"Timeout {timeout}ms exceeded waiting for {pattern}")
        self.url = self.redirect_url

    def locator(self, selector: str) -> FakeLocator:
        return FakeLocator(self, (selector,))

    async def route(self, pattern: str, handler: Callable) -> None:
        if self.route_fails:
            raise PlaywrightError("Target page, context or browser has been closed")
        self.routes.append((pattern, handler))

    def on(self, event: str, callback: Callable) -> None:
        self.listeners.setdefault(event, []).append(callback)

    def remove_listener(self, event: str, callback: Callable) -> None:
        self.listeners.get(event, []).remove(callback)

    # -- Test drivers ----------------------------------------------------------

    async def fire_request(self, request: FakeRequest) -> FakeRoute:
        """Send an application request through the installed route handlers."""
        route = FakeRoute(request)
        for _pattern, handler in self.routes:
            await handler(route, request)
        if not self.routes:
            await route.continue_()
        return route

    async def fire_response(self, response: FakeResponse) -> None:
        for callback in list(self.listeners.get("response", [])):
            await callback(response)

    def _enabled(self) -> bool:
        return self.enable_at_check is not None and self.submit_checks >= self.enable_at_check

    def _check_alive(self) -> None:
        if self.dead:
            raise PlaywrightError("Target page, context or browser has been closed")


class FakeBrowser:
    def __init__(self) -> None:
        self.closed = False

    async def close(self) -> None:
        self.closed = True


class FakeConnector:
    """Returns scripted ``(browser, page)`` pairs, one per connect() call."""

    def __init__(self, *results: Any) -> None:
        self.results = list(results)
        self.calls: list[dict] = []
        self.stopped = False

    async def connect(self, endpoint: str, timeout: float, create_page: bool = True):
        self.calls.append({"endpoint": endpoint, "timeout": timeout, "create_page": create_page})
        if not self.results:
            raise AssertionError("no scripted connection left")
        result = self.results.pop(0)
        if isinstance(result, BaseException):
            raise result
        return result

    async def stop(self) -> None:
        self.stopped = True


async def no_sleep(seconds: float) -> None:
    """Drop-in for asyncio.sleep that returns immediately."""
    return None
