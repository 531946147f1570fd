"""Unit tests for pagebroker.config."""
from pathlib import Path

import pytest

from pagebroker.config import Config, Credentials, load, load_credentials, read_env_file

_ENV_KEYS = (
    "PAGEBROKER_IDENTIFIER",
    "PAGEBROKER_SECRET",
    "PAGEBROKER_AUTOMATION_ENDPOINT",
    "PAGEBROKER_SOLVER_KEY",
    "PAGEBROKER_SESSION_FILE",
    "BROWSERBASE_API_KEY",
    "BROWSERBASE_PROJECT_ID",
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for key in _ENV_KEYS:
        monkeypatch.delenv(key, raising=False)


def test_load_defaults(tmp_path):
    """load() with no pagebroker.toml returns all defaults."""
    cfg = load(tmp_path, env_path=tmp_path / "none.env")
    assert cfg.fill_order == "password_first"
    assert cfg.session_ttl_hours == 8.0
    assert cfg.session_ttl_ms == 8 * 3600 * 1000
    assert cfg.max_login_retries == 3
    assert cfg.query_timeout == 30.0
    assert cfg.challenge_timeout == 60.0
    assert cfg.challenge_poll_interval == 2.0
    assert cfg.transport == "stdio"
    assert not cfg.credentials.is_complete


def test_load_from_toml(tmp_path):
    """load() reads site, session, timing and server sections."""
    (tmp_path / "pagebroker.toml").write_text(
        "[site]\n"
        "login_url = \"https://shop.test/login\"\n"
        "api_host = \"core.shop.test\"\n"
        "graphql_url = \"https://core.shop.test/graphql\"\n"
        "fill_order = \"after_challenge\"\n"
        "[session]\nttl_hours = 2\nfile = \"/var/lib/pb/session.json\"\n"
        "[timing]\nquery_timeout = 12\n"
        "[server]\ntransport = \"sse\"\nport = 9000\n"
    )
    cfg = load(tmp_path, env_path=tmp_path / "none.env")
    assert cfg.login_url == "https://shop.test/login"
    assert cfg.api_host == "core.shop.test"
    assert cfg.fill_order == "after_challenge"
    assert cfg.session_ttl_ms == 2 * 3600 * 1000
    assert cfg.session_file == Path("/var/lib/pb/session.json")
    assert cfg.query_timeout == 12.0
    assert cfg.transport == "sse"
    assert cfg.port == 9000


def test_partial_toml(tmp_path):
    """Only some sections present; others fall back to defaults."""
    (tmp_path / "pagebroker.toml").write_text("[timing]\nredirect_timeout = 40\n")
    cfg = load(tmp_path, env_path=tmp_path / "none.env")
    assert cfg.redirect_timeout == 40.0
    assert cfg.reconnect_timeout == 15.0  # default


def test_invalid_fill_order(tmp_path):
    (tmp_path / "pagebroker.toml").write_text("[site]\nfill_order = \"whenever\"\n")
    with pytest.raises(ValueError, match="fill_order"):
        load(tmp_path, env_path=tmp_path / "none.env")


def test_non_positive_timeout_rejected(tmp_path):
    (tmp_path / "pagebroker.toml").write_text("[timing]\nquery_timeout = 0\n")
    with pytest.raises(ValueError, match="query_timeout"):
        load(tmp_path, env_path=tmp_path / "none.env")


class TestCredentials:
    def test_env_takes_precedence(self, tmp_path, monkeypatch):
        env_file = tmp_path / "credentials.env"
        env_file.write_text("PAGEBROKER_IDENTIFIER=file@example.com\nPAGEBROKER_SECRET=from-file\n")
        monkeypatch.setenv("PAGEBROKER_IDENTIFIER", "env@example.com")
        creds = load_credentials({"identifier": "toml@example.com"}, env_file)
        assert creds.identifier == "env@example.com"
        assert creds.secret == "from-file"

    def test_toml_fallback(self, tmp_path):
        creds = load_credentials(
            {"identifier": "toml@example.com", "secret": "s3cret", "automation_endpoint": "ws://x"},
            tmp_path / "none.env",
        )
        assert creds.is_complete
        assert creds.challenge_solver_key == ""

    def test_browserbase_endpoint_derived(self, tmp_path, monkeypatch):
        monkeypatch.setenv("BROWSERBASE_API_KEY", "bb_key")
        monkeypatch.setenv("BROWSERBASE_PROJECT_ID", "proj-1")
        creds = load_credentials({}, tmp_path / "none.env")
        assert creds.automation_endpoint == (
            "wss://connect.browserbase.com?apiKey=bb_key&projectId=proj-1"
        )

    def test_missing_fields_listed(self):
        creds = Credentials(identifier="a@example.com")
        assert creds.missing() == ["secret", "automation_endpoint"]
        assert not creds.is_complete

    def test_repr_hides_secret(self):
        creds = Credentials("a@example.com", "hunter22", "wss://x?apiKey=abc")
        text = repr(creds)
        assert "hunter22" not in text
        assert "abc" not in text

    def test_read_env_file_skips_comments(self, tmp_path):
        env_file = tmp_path / "x.env"
        env_file.write_text("# comment\n\nPAGEBROKER_SECRET=\"quoted\"\n")
        assert read_env_file(env_file) == {"PAGEBROKER_SECRET": "quoted"}


class TestResolveEndpoint:
    def test_aliases(self):
        cfg = Config(graphql_url="https://api.example.com/graphql",
                     customer_graphql_url="https://api.example.com/customer-graphql")
        assert cfg.resolve_endpoint(None) == "https://api.example.com/graphql"
        assert cfg.resolve_endpoint("default") == "https://api.example.com/graphql"
        assert cfg.resolve_endpoint("customer") == "https://api.example.com/customer-graphql"

    def test_absolute_url_on_api_host(self):
        cfg = Config(api_host="api.example.com")
        url = "https://api.example.com/other-graphql"
        assert cfg.resolve_endpoint(url) == url

    def test_foreign_host_rejected(self):
        cfg = Config(api_host="api.example.com")
        with pytest.raises(ValueError, match="not on the protected host"):
            cfg.resolve_endpoint("https://evil.example.net/graphql")

    def test_customer_alias_unconfigured(self):
        cfg = Config(customer_graphql_url="")
        with pytest.raises(ValueError, match="customer"):
            cfg.resolve_endpoint("customer")
