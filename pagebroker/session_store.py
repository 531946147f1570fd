"""Single-slot persistent session descriptor.

Storage: ~/.pagebroker/session.json
Record:  {"remoteSessionReference": "<connect url>", "savedAt": <epoch ms>}

Only one descriptor exists at a time; ``save`` replaces the record and
``clear`` overwrites it with ``{}`` rather than deleting the file.
"""
from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable

from pagebroker.paths import SESSION_FILE

log = logging.getLogger(__name__)

DEFAULT_TTL_MS = 8 * 3600 * 1000


def _now_ms() -> int:
    return int(time.time() * 1000)


@dataclass(frozen=True)
class SessionDescriptor:
    remote_session_reference: str
    captured_at: int  # epoch ms

    def age_ms(self, now_ms: int) -> int:
        return now_ms - self.captured_at

    def to_record(self) -> dict:
        return {
            "remoteSessionReference": self.remote_session_reference,
            "savedAt": self.captured_at,
        }


class SessionStore:
    """JSON-file-backed store for the one reconnectable session descriptor."""

    def __init__(
        self,
        path: Path | None = None,
        ttl_ms: int = DEFAULT_TTL_MS,
        clock: Callable[[], int] = _now_ms,
    ) -> None:
        self._path = path or SESSION_FILE
        self._ttl_ms = ttl_ms
        self._clock = clock

    @property
    def path(self) -> Path:
        return self._path

    def save(self, remote_session_reference: str) -> SessionDescriptor:
        """Persist a descriptor captured now, replacing any previous one."""
        descriptor = SessionDescriptor(remote_session_reference, self._clock())
        self._write(descriptor.to_record())
        log.info("Session descriptor saved to %s", self._path)
        return descriptor

    def load(self) -> SessionDescriptor | None:
        """Return the stored descriptor, or None if absent, malformed or stale."""
        if not self._path.exists():
            return None
        try:
            data = json.loads(self._path.read_text())
        except (OSError, json.JSONDecodeError) as exc:
            log.warning("Unreadable session file %s: %s", self._path, exc)
            return None
        if not isinstance(data, dict) or not data:
            return None

        reference = data.get("remoteSessionReference")
        saved_at = data.get("savedAt")
        if not isinstance(reference, str) or not reference:
            return None
        if isinstance(saved_at, bool) or not isinstance(saved_at, (int, float)):
            return None

        descriptor = SessionDescriptor(reference, int(saved_at))
        if descriptor.age_ms(self._clock()) > self._ttl_ms:
            log.info("Saved session too old, ignoring")
            return None
        return descriptor

    def clear(self) -> None:
        """Invalidate the stored descriptor (file kept, contents emptied)."""
        if not self._path.exists():
            return
        self._write({})
        log.info("Session descriptor cleared")

    def _write(self, record: dict) -> None:
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            self._path.write_text(json.dumps(record, indent=2))
        except OSError as exc:
            # Best effort: losing the record only costs a fresh login.
            log.warning("Failed to write session file %s: %s", self._path, exc)
