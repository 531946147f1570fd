"""Central data path configuration for pagebroker.

Session records and secrets live outside the repo under ~/.pagebroker/.
Override via PAGEBROKER_DATA_DIR / PAGEBROKER_SECRETS_DIR if needed.
"""
from __future__ import annotations

import os
from pathlib import Path

# --- Root paths --------------------------------------------------------------

DATA_ROOT = Path(
    os.environ.get("PAGEBROKER_DATA_DIR", str(Path.home() / ".pagebroker"))
)

SECRETS_ROOT = Path(
    os.environ.get("PAGEBROKER_SECRETS_DIR", str(Path.home() / ".pagebroker" / "secrets"))
)

# --- Files -------------------------------------------------------------------

SESSION_FILE = DATA_ROOT / "session.json"
CREDENTIALS_ENV = SECRETS_ROOT / "credentials.env"


def ensure_dirs() -> None:
    """Create the data and secrets directories if they don't exist."""
    for d in (DATA_ROOT, SECRETS_ROOT):
        d.mkdir(parents=True, exist_ok=True)
