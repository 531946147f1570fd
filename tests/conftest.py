"""Shared test fixtures for pagebroker.

Fixture tiers:
  test_config   : Config with short timeouts, tmp session file, full credentials
  store         : SessionStore on the tmp session file
  fake_page     : scripted FakePage already inside the application
No real browser, network or solving service is used anywhere.
"""
from __future__ import annotations

from pathlib import Path

import pytest

from pagebroker.config import Config, Credentials
from pagebroker.session_store import SessionStore
from tests.helpers.fake_browser import (
    API_HOST,
    APP_URL,
    CUSTOMER_URL,
    GRAPHQL_URL,
    LOGIN_URL,
    FakePage,
)


# ---------------------------------------------------------------------------
# Config fixture
# ---------------------------------------------------------------------------

@pytest.fixture
def credentials() -> Credentials:
    return Credentials(
        identifier="owner@example.com",
        secret="correct-horse",
        automation_endpoint="wss://automation.example.com?apiKey=k&projectId=p",
        challenge_solver_key="",
    )


@pytest.fixture
def test_config(tmp_path: Path, credentials: Credentials) -> Config:
    """Isolated Config for a single test: tmp session file, short timeouts."""
    return Config(
        login_url=LOGIN_URL,
        app_url_glob="**/app/**",
        trigger_url=APP_URL,
        api_host=API_HOST,
        graphql_url=GRAPHQL_URL,
        customer_graphql_url=CUSTOMER_URL,
        session_file=tmp_path / "session.json",
        query_timeout=0.2,          # short for tests
        liveness_timeout=0.2,
        challenge_poll_interval=2.0,
        challenge_timeout=10.0,
        typing_delay_ms=0,
        credentials=credentials,
    )


# ---------------------------------------------------------------------------
# Store / page fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def store(test_config: Config) -> SessionStore:
    return SessionStore(test_config.session_file, ttl_ms=test_config.session_ttl_ms)


@pytest.fixture
def fake_page() -> FakePage:
    """A page that is already inside the application."""
    return FakePage(url=APP_URL)
