"""Load and provide pagebroker configuration from pagebroker.toml."""
from __future__ import annotations

import os
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Literal
from urllib.parse import urlparse

if sys.version_info >= (3, 11):
    import tomllib
else:
    try:
        import tomllib  # type: ignore[import]
    except ModuleNotFoundError:
        import tomli as tomllib  # type: ignore[no-redef]

from pagebroker.paths import CREDENTIALS_ENV, SESSION_FILE

FillOrder = Literal["password_first", "after_challenge"]
FILL_ORDERS: tuple[str, ...] = ("password_first", "after_challenge")

BROWSERBASE_CONNECT_URL = "wss://connect.browserbase.com"


@dataclass(frozen=True)
class Credentials:
    """Read-only login and automation credentials, loaded once at startup."""

    identifier: str = ""
    secret: str = ""
    automation_endpoint: str = ""
    challenge_solver_key: str = ""  # empty = wait out the widget, no solving service

    def missing(self) -> list[str]:
        """Names of the required fields that are empty."""
        required = {
            "identifier": self.identifier,
            "secret": self.secret,
            "automation_endpoint": self.automation_endpoint,
        }
        return [name for name, value in required.items() if not value]

    @property
    def is_complete(self) -> bool:
        return not self.missing()

    def __repr__(self) -> str:
        # Never render the secret or API keys embedded in the endpoint.
        return (
            f"Credentials(identifier={self.identifier!r}, secret=***, "
            f"automation_endpoint={'set' if self.automation_endpoint else 'unset'}, "
            f"challenge_solver_key={'set' if self.challenge_solver_key else 'unset'})"
        )


@dataclass
class Config:
    # [site]
    login_url: str = "https://www.example.com/login"
    app_url_glob: str = "**/app/**"
    trigger_url: str = "https://www.example.com/app/home"
    api_host: str = "api.example.com"
    graphql_url: str = "https://api.example.com/graphql"
    customer_graphql_url: str = ""  # secondary endpoint; empty = not available
    login_form_selector: str = "[data-testid=loginFormWebsite]"
    identifier_selector: str = "input[type=email]"
    secret_selector: str = "input[type=password]"
    submit_selector: str = "button[type=submit]"
    fill_order: FillOrder = "password_first"
    fallback_site_key: str = ""
    # [session]
    session_file: Path = SESSION_FILE
    session_ttl_hours: float = 8.0
    max_login_retries: int = 3
    # [timing] (seconds)
    navigation_timeout: float = 60.0
    form_timeout: float = 15.0
    reconnect_timeout: float = 15.0
    redirect_timeout: float = 25.0
    query_timeout: float = 30.0
    liveness_timeout: float = 5.0
    challenge_timeout: float = 60.0
    challenge_poll_interval: float = 2.0
    solver_timeout: float = 120.0
    solver_poll_interval: float = 5.0
    typing_delay_ms: int = 30
    # [server]
    transport: str = "stdio"
    host: str = "127.0.0.1"
    port: int = 8765
    credentials: Credentials = field(default_factory=Credentials)

    @property
    def session_ttl_ms(self) -> int:
        return int(self.session_ttl_hours * 3600 * 1000)

    def resolve_endpoint(self, endpoint: str | None = None) -> str:
        """Map an endpoint alias or URL to an absolute GraphQL URL.

        ``None``/"default" -> graphql_url, "customer" -> customer_graphql_url.
        Absolute URLs must point at the protected API host.
        """
        if not endpoint or endpoint == "default":
            return self.graphql_url
        if endpoint == "customer":
            if not self.customer_graphql_url:
                raise ValueError("no customer endpoint configured ([site] customer_graphql_url)")
            return self.customer_graphql_url
        host = urlparse(endpoint).hostname
        if host != self.api_host:
            raise ValueError(
                f"endpoint {endpoint!r} is not on the protected host {self.api_host!r}"
            )
        return endpoint


def read_env_file(env_path: Path) -> dict[str, str]:
    """Read key=value pairs from a .env file; missing file -> empty dict."""
    values: dict[str, str] = {}
    if not env_path.exists():
        return values
    with open(env_path) as fh:
        for line in fh:
            line = line.strip()
            if not line or line.startswith("#"):
                continue
            key, _, value = line.partition("=")
            values[key.strip()] = value.strip().strip('"').strip("'")
    return values


def load_credentials(
    section: dict | None = None,
    env_path: Path = CREDENTIALS_ENV,
) -> Credentials:
    """Resolve credentials: process env > secrets .env file > [credentials] TOML.

    Without an explicit automation endpoint, a Browserbase connect URL is built
    from BROWSERBASE_API_KEY and BROWSERBASE_PROJECT_ID when both are present.
    """
    section = section or {}
    file_values = read_env_file(env_path)

    def pick(env_key: str, toml_key: str) -> str:
        return (
            os.environ.get(env_key)
            or file_values.get(env_key)
            or str(section.get(toml_key, ""))
        ).strip()

    endpoint = pick("PAGEBROKER_AUTOMATION_ENDPOINT", "automation_endpoint")
    if not endpoint:
        api_key = pick("BROWSERBASE_API_KEY", "browserbase_api_key")
        project_id = pick("BROWSERBASE_PROJECT_ID", "browserbase_project_id")
        if api_key and project_id:
            endpoint = f"{BROWSERBASE_CONNECT_URL}?apiKey={api_key}&projectId={project_id}"

    return Credentials(
        identifier=pick("PAGEBROKER_IDENTIFIER", "identifier"),
        secret=pick("PAGEBROKER_SECRET", "secret"),
        automation_endpoint=endpoint,
        challenge_solver_key=pick("PAGEBROKER_SOLVER_KEY", "challenge_solver_key"),
    )


_TIMING_FIELDS = (
    "navigation_timeout",
    "form_timeout",
    "reconnect_timeout",
    "redirect_timeout",
    "query_timeout",
    "liveness_timeout",
    "challenge_timeout",
    "challenge_poll_interval",
    "solver_timeout",
    "solver_poll_interval",
)


def load(project_root: Path | None = None, env_path: Path = CREDENTIALS_ENV) -> Config:
    """Load config from pagebroker.toml; all fields have defaults."""
    if project_root is None:
        project_root = Path.cwd()

    toml_path = project_root / "pagebroker.toml"
    data: dict = {}
    if toml_path.exists():
        with open(toml_path, "rb") as f:
            data = tomllib.load(f)

    site = data.get("site", {})
    session = data.get("session", {})
    timing = data.get("timing", {})
    server = data.get("server", {})

    defaults = Config()
    fill_order = site.get("fill_order", defaults.fill_order)
    if fill_order not in FILL_ORDERS:
        raise ValueError(
            f"pagebroker.toml [site] fill_order must be one of {', '.join(FILL_ORDERS)}, "
            f"got {fill_order!r}."
        )

    timings = {name: float(timing.get(name, getattr(defaults, name))) for name in _TIMING_FIELDS}
    for name, value in timings.items():
        if value <= 0:
            raise ValueError(f"pagebroker.toml [timing] {name} must be > 0.")

    max_login_retries = session.get("max_login_retries", defaults.max_login_retries)
    if max_login_retries < 1:
        raise ValueError("pagebroker.toml [session] max_login_retries must be >= 1.")

    session_file = os.environ.get("PAGEBROKER_SESSION_FILE") or session.get("file")

    return Config(
        login_url=site.get("login_url", defaults.login_url),
        app_url_glob=site.get("app_url_glob", defaults.app_url_glob),
        trigger_url=site.get("trigger_url", defaults.trigger_url),
        api_host=site.get("api_host", defaults.api_host),
        graphql_url=site.get("graphql_url", defaults.graphql_url),
        customer_graphql_url=site.get("customer_graphql_url", defaults.customer_graphql_url),
        login_form_selector=site.get("login_form_selector", defaults.login_form_selector),
        identifier_selector=site.get("identifier_selector", defaults.identifier_selector),
        secret_selector=site.get("secret_selector", defaults.secret_selector),
        submit_selector=site.get("submit_selector", defaults.submit_selector),
        fill_order=fill_order,
        fallback_site_key=site.get("fallback_site_key", defaults.fallback_site_key),
        session_file=Path(session_file) if session_file else defaults.session_file,
        session_ttl_hours=float(session.get("ttl_hours", defaults.session_ttl_hours)),
        max_login_retries=max_login_retries,
        typing_delay_ms=int(timing.get("typing_delay_ms", defaults.typing_delay_ms)),
        transport=server.get("transport", defaults.transport),
        host=server.get("host", defaults.host),
        port=int(server.get("port", defaults.port)),
        credentials=load_credentials(data.get("credentials", {}), env_path),
        **timings,
    )
