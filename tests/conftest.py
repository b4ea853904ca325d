"""
Pytest config.

Pins the repo root on sys.path so `import oauthweb` works without an editable install,
and isolates every test from the host environment and from process-wide caches.
"""

from __future__ import annotations

import sys
from pathlib import Path
from typing import Dict, Optional

import pytest


def _ensure_repo_root_on_syspath() -> None:
    repo_root = Path(__file__).resolve().parents[1]
    repo_root_str = str(repo_root)
    if repo_root_str not in sys.path:
        sys.path.insert(0, repo_root_str)


_ensure_repo_root_on_syspath()

from starlette.requests import Request  # noqa: E402

from oauthweb.api.server import reset_webapp  # noqa: E402
from oauthweb.auth.config import load_auth_config  # noqa: E402
from oauthweb.auth.oidc import clear_metadata_caches  # noqa: E402

_AUTH_ENV_VARS = (
    "OAUTH_PROVIDER_NAME",
    "OIDC_DISCOVERY_URL",
    "OAUTH_AUTHORIZE_URL",
    "OAUTH_TOKEN_URL",
    "OAUTH_USERINFO_URL",
    "OIDC_CLIENT_ID",
    "OIDC_CLIENT_SECRET",
    "OIDC_PROVIDER_NAME",
    "OIDC_PROVIDER_LOGO",
    "OAUTH_SCOPES",
    "AUTH_PUBLIC_BASE_URL",
    "AUTH_SESSION_SECRET",
    "AUTH_SESSION_TTL_SECONDS",
    "AUTH_COOKIE_SECURE",
    "AUTH_ALLOWED_DOMAINS",
    "AUTH_STRICT_CHECKS",
)

AUTHORIZE_URL = "https://accounts.google.com/o/oauth2/v2/auth"
TOKEN_URL = "https://oauth2.googleapis.com/token"
USERINFO_URL = "https://openidconnect.googleapis.com/v1/userinfo"


class FakeClock:
    """Deterministic clock: every call advances by `step` seconds."""

    def __init__(self, start: float = 1_000.0, step: float = 1.0):
        self.now = start
        self.step = step

    def __call__(self) -> float:
        self.now += self.step
        return self.now


@pytest.fixture(autouse=True)
def _isolate_auth(monkeypatch: pytest.MonkeyPatch):
    for name in _AUTH_ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    load_auth_config.cache_clear()
    clear_metadata_caches()
    reset_webapp()
    yield
    load_auth_config.cache_clear()
    clear_metadata_caches()
    reset_webapp()


@pytest.fixture
def auth_env(monkeypatch: pytest.MonkeyPatch):
    """OAuth enabled against explicit endpoints (no discovery, no network)."""
    monkeypatch.setenv("OAUTH_AUTHORIZE_URL", AUTHORIZE_URL)
    monkeypatch.setenv("OAUTH_TOKEN_URL", TOKEN_URL)
    monkeypatch.setenv("OAUTH_USERINFO_URL", USERINFO_URL)
    monkeypatch.setenv("OIDC_CLIENT_ID", "test-client-id")
    monkeypatch.setenv("OIDC_CLIENT_SECRET", "test-client-secret")
    monkeypatch.setenv("AUTH_PUBLIC_BASE_URL", "http://testserver")
    monkeypatch.setenv("AUTH_SESSION_SECRET", "test-secret-key-for-testing-purposes-only")
    load_auth_config.cache_clear()
    return load_auth_config()


def make_request(query: str = "", cookies: Optional[Dict[str, str]] = None) -> Request:
    headers = []
    if cookies:
        headers.append((b"cookie", "; ".join(f"{k}={v}" for k, v in cookies.items()).encode("latin-1")))
    scope = {
        "type": "http",
        "method": "GET",
        "path": "/api/auth/login/oidc",
        "query_string": query.encode("latin-1"),
        "headers": headers,
    }
    return Request(scope)
