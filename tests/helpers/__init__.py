"""Test helpers for pagebroker."""
from __future__ import annotations


class LogCollector:
    """Lightweight replacement for a structlog logger that collects records.

    session_manager.py and executor.py use structlog (not stdlib logging), so
    caplog cannot capture their output. Replace the module-level ``log`` with
    this via monkeypatch and inspect ``records``.
    """

    def __init__(self) -> None:
        self.records: list[dict] = []

    def _log(self, level: str, event: str, **kw) -> None:
        self.records.append({"event": event, "log_level": level, **kw})

    def info(self, event, **kw):
        self._log("info", event, **kw)

    def warning(self, event, **kw):
        self._log("warning", event, **kw)

    def error(self, event, **kw):
        self._log("error", event, **kw)

    def debug(self, event, **kw):
        self._log("debug", event, **kw)

    def events(self, level: str | None = None) -> list[str]:
        return [r["event"] for r in self.records if level is None or r["log_level"] == level]
