"""Typed failures raised by pagebroker and the Playwright error adapter.

Retry decisions branch on ``ErrorKind``; ``classify`` is the only place that
looks at Playwright exception types and messages.
"""
from __future__ import annotations

import asyncio
from enum import Enum

from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeout
from playwright._impl._errors import TargetClosedError


class ErrorKind(Enum):
    SESSION_DEAD = "session_dead"
    TIMEOUT = "timeout"
    CONFIG = "config"
    AUTH = "auth"
    QUERY = "query"
    OTHER = "other"


class BrokerError(Exception):
    """Base class for every pagebroker failure."""

    kind: ErrorKind = ErrorKind.OTHER


class ConfigMissing(BrokerError):
    """No usable credentials and no valid session to fall back on."""

    kind = ErrorKind.CONFIG

    def __init__(self, missing: list[str]) -> None:
        self.missing = list(missing)
        super().__init__(
            "Missing credentials: " + ", ".join(self.missing)
            + ". Set PAGEBROKER_IDENTIFIER, PAGEBROKER_SECRET and "
            "PAGEBROKER_AUTOMATION_ENDPOINT (or BROWSERBASE_API_KEY + BROWSERBASE_PROJECT_ID)."
        )


class ChallengeFailed(BrokerError):
    kind = ErrorKind.AUTH


class LoginAttemptFailed(BrokerError):
    """One login attempt ended without an authenticated page (recoverable)."""

    kind = ErrorKind.AUTH


class ChallengeServiceError(BrokerError):
    """The external solving service rejected, failed or timed out."""

    kind = ErrorKind.AUTH


class LoginFailed(BrokerError):
    kind = ErrorKind.AUTH

    def __init__(self, attempts: int, last_error: BaseException | str | None) -> None:
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(
            f"Login failed after {attempts} attempts: {last_error or 'unknown reason'}"
        )


class SessionDead(BrokerError):
    kind = ErrorKind.SESSION_DEAD


class QueryTimeout(BrokerError):
    kind = ErrorKind.TIMEOUT


class NoInterceptableCall(BrokerError):
    """The application never issued a request to the protected host in time."""

    kind = ErrorKind.TIMEOUT


class QueryError(BrokerError):
    """The swapped request came back with GraphQL errors and no data."""

    kind = ErrorKind.QUERY

    def __init__(self, message: str, errors: list | None = None) -> None:
        self.errors = errors or []
        super().__init__(message)


class SlotBusy(BrokerError):
    """A query is already pending; the single slot cannot be claimed."""

    kind = ErrorKind.QUERY


_CLOSED_MARKERS = (
    "target closed",
    "target page, context or browser has been closed",
    "session closed",
    "browser has been closed",
    "browser closed",
    "connection closed",
    "websocket closed",
)


def classify(exc: BaseException) -> ErrorKind:
    """Map any exception to an ``ErrorKind``."""
    if isinstance(exc, BrokerError):
        return exc.kind
    if isinstance(exc, TargetClosedError):
        return ErrorKind.SESSION_DEAD
    if isinstance(exc, (PlaywrightTimeout, asyncio.TimeoutError)):
        return ErrorKind.TIMEOUT
    if isinstance(exc, PlaywrightError):
        message = (exc.message or str(exc)).lower()
        if any(marker in message for marker in _CLOSED_MARKERS):
            return ErrorKind.SESSION_DEAD
        if "timeout" in message:
            return ErrorKind.TIMEOUT
    return ErrorKind.OTHER


def is_retryable(exc: BaseException) -> bool:
    """True for failures that a session replacement may cure."""
    return classify(exc) in (ErrorKind.SESSION_DEAD, ErrorKind.TIMEOUT)
