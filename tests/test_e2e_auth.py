"""E2E tests for the login endpoints.

These tests require a running server (python main.py --serve) and are executed in CI or manually.
Run with: pytest -m e2e
"""

import os
import time
from typing import Generator

import pytest
import requests

BASE_URL = os.getenv("OAUTHWEB_E2E_BASE_URL", "http://localhost:8080")

pytestmark = pytest.mark.e2e


@pytest.fixture(scope="module")
def wait_for_server() -> Generator[None, None, None]:
    """Wait for server to be ready."""
    max_retries = 30
    for i in range(max_retries):
        try:
            r = requests.get(f"{BASE_URL}/healthz", timeout=2)
            if r.status_code == 200:
                break
        except requests.RequestException:
            if i == max_retries - 1:
                raise Exception("Server failed to start within 30 seconds")
            time.sleep(1)
    yield


def test_healthz_endpoint(wait_for_server):
    r = requests.get(f"{BASE_URL}/healthz")
    assert r.status_code == 200
    assert r.json()["ok"] is True


def test_auth_mode_endpoint(wait_for_server):
    r = requests.get(f"{BASE_URL}/api/auth/mode")
    assert r.status_code == 200
    body = r.json()
    assert body["ok"] is True
    assert "oauthEnabled" in body


def test_auth_required_for_protected_endpoints(wait_for_server):
    r = requests.get(f"{BASE_URL}/api/auth/me")
    assert r.status_code == 401


def test_login_redirects_to_provider(wait_for_server):
    mode = requests.get(f"{BASE_URL}/api/auth/mode").json()
    if not mode.get("oauthEnabled"):
        pytest.skip("OAuth is not configured on the server under test")

    r = requests.get(f"{BASE_URL}{mode['oauthProvider']['loginUrl']}", allow_redirects=False)
    assert r.status_code == 302
    assert "state=" in r.headers["location"]
    assert any(name.endswith("oauthweb_session") for name in r.cookies.keys())


def test_logout_without_session(wait_for_server):
    r = requests.post(f"{BASE_URL}/api/auth/logout")
    assert r.status_code == 200
    assert r.json()["ok"] is True
