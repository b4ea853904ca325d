"""
HTTP surface for OAuth web login.

Login, logout and mode discovery are public; every other route requires a login checked
through `OAuthWebapp.is_logged_in`.
"""

from __future__ import annotations

import logging
import os
import threading
import time
from typing import Any, Dict, Optional

import requests
from fastapi import FastAPI, HTTPException, Query, Request
from fastapi.responses import JSONResponse, RedirectResponse, Response

from oauthweb.auth.config import load_auth_config
from oauthweb.auth.session_cache import SessionCache
from oauthweb.auth.settings import OAuthSettings
from oauthweb.auth.store import SessionStore
from oauthweb.auth.util import sanitize_next_path
from oauthweb.auth.webapp import OAuthWebapp

logger = logging.getLogger(__name__)

_NEXT_PATH_KEY = "oauth.next"

_webapp: Optional[OAuthWebapp] = None
_webapp_lock = threading.Lock()


app = FastAPI(title="oauthweb")


def get_webapp() -> OAuthWebapp:
    """Process-wide controller (one session store + one session cache)."""
    global _webapp
    if _webapp is None:
        with _webapp_lock:
            if _webapp is None:
                cfg = load_auth_config()
                _webapp = OAuthWebapp(SessionStore(cfg), SessionCache(), strict=cfg.strict_session_checks)
    return _webapp


def reset_webapp() -> None:
    """Drop the process-wide controller (config reloads, tests)."""
    global _webapp
    with _webapp_lock:
        _webapp = None


def get_oauth_settings() -> Optional[OAuthSettings]:
    cfg = load_auth_config()
    if not cfg.oauth_enabled:
        return None
    return OAuthSettings(cfg)


def _is_public_path(path: str) -> bool:
    if path == "/healthz":
        return True
    # Login must be reachable without a session; it is also the OAuth redirect URI.
    if path.startswith("/api/auth/login/"):
        return True
    # Allow logout even if the cookie is already missing/invalid.
    if path == "/api/auth/logout":
        return True
    # Mode discovery is used by the UI to conditionally render auth options.
    if path == "/api/auth/mode":
        return True
    return False


@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Log all incoming HTTP requests and enforce login on non-public paths."""
    start_time = time.time()
    logger.debug("%s %s", request.method, request.url.path)
    try:
        path = request.url.path or ""

        if request.method != "OPTIONS" and not _is_public_path(path):
            # Fail closed: anything not explicitly public requires a login.
            if not get_webapp().is_logged_in(request, get_oauth_settings()):
                # No `WWW-Authenticate`: browsers would show a basic-auth modal.
                return JSONResponse(status_code=401, content={"detail": "Unauthorized"})

        response = await call_next(request)
        process_time = time.time() - start_time
        logger.debug("%s %s - %d (%.3fs)", request.method, request.url.path, response.status_code, process_time)
        return response
    except Exception as e:
        process_time = time.time() - start_time
        logger.exception("%s %s - ERROR after %.3fs: %s", request.method, request.url.path, process_time, str(e))
        raise


@app.get("/healthz")
def healthz() -> Dict[str, Any]:
    return {"ok": True}


@app.get("/api/auth/login/{provider}")
def auth_login(request: Request, provider: str, next_path: str = Query("/", alias="next")) -> Response:
    """Start an OAuth login, or complete it when called back by the provider."""
    cfg = load_auth_config()
    settings = get_oauth_settings()
    if settings is None:
        raise HTTPException(status_code=403, detail="OAuth login is not enabled")
    if provider.lower() != cfg.provider_name:
        raise HTTPException(status_code=404, detail="Unknown provider")

    webapp = get_webapp()
    resp = Response(status_code=200)
    try:
        webapp.login(request, resp, settings)
    except requests.RequestException as e:
        logger.warning("OAuth provider unreachable: %s", str(e))
        raise HTTPException(status_code=502, detail="OAuth provider unavailable")
    except ValueError as e:
        logger.warning("OAuth login misconfigured: %s", str(e))
        raise HTTPException(status_code=500, detail=str(e))

    fs = webapp.framework_session(request)
    if resp.status_code == 302:
        # Redirect to the provider; remember where to land afterwards.
        if fs is not None:
            fs.set(_NEXT_PATH_KEY, sanitize_next_path(next_path))
        return resp

    if webapp.oauth_session(request) is None:
        return JSONResponse(status_code=401, content={"detail": "Login failed"}, headers={"Cache-Control": "no-store"})

    target = sanitize_next_path(fs.pop(_NEXT_PATH_KEY, "/") if fs is not None else "/")
    redirect = RedirectResponse(url=target, status_code=302)
    redirect.headers["Cache-Control"] = "no-store"
    return redirect


@app.post("/api/auth/logout")
async def auth_logout(request: Request) -> JSONResponse:
    resp = JSONResponse(content={"ok": True})
    resp.headers["Cache-Control"] = "no-store"
    get_webapp().logout(request, resp)
    return resp


@app.get("/api/auth/me")
async def auth_me(request: Request) -> Dict[str, Any]:
    session = get_webapp().oauth_session(request)
    if session is None:
        raise HTTPException(status_code=401, detail="Unauthorized")
    user = session.user
    return {
        "ok": True,
        "user": {
            "provider": user.provider,
            "subject": user.subject,
            "email": user.email,
            "name": user.name,
            "picture": user.picture,
        },
        "scopes": list(session.scopes),
        "expiresAt": session.expires_at,
    }


@app.get("/api/auth/mode")
async def auth_mode() -> Dict[str, Any]:
    """
    Expose the configured login options so the UI can render them.
    This endpoint is intentionally public; it returns no secrets.
    """
    cfg = load_auth_config()
    result: Dict[str, Any] = {"ok": True, "oauthEnabled": cfg.oauth_enabled}

    if cfg.oauth_enabled:
        try:
            from oauthweb.auth.oidc import get_provider_metadata

            metadata = get_provider_metadata(cfg)
            result["oauthProvider"] = {
                "name": metadata["name"],
                "logo": metadata["logo"],
                "loginUrl": f"/api/auth/login/{cfg.provider_name}",
            }
        except (ValueError, requests.RequestException) as e:
            # If we can't resolve the provider, login is effectively unavailable.
            logger.warning("Failed to get OAuth provider metadata: %s", str(e))
            result["oauthEnabled"] = False

    return result


def run(host: str = "0.0.0.0", port: int = 8080) -> None:
    import uvicorn

    # Configure logging for the application
    log_level = os.getenv("LOG_LEVEL", "info").upper()
    logging.basicConfig(
        level=getattr(logging, log_level, logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    logger.setLevel(getattr(logging, log_level, logging.INFO))

    # Map Python logging levels to uvicorn log levels
    uvicorn_log_level = (
        log_level.lower() if log_level.lower() in ["critical", "error", "warning", "info", "debug", "trace"] else "info"
    )

    cfg = load_auth_config()
    logger.info(
        "Starting oauthweb server on %s:%d (log_level=%s oauth_enabled=%s provider=%s strict=%s)",
        host,
        port,
        log_level,
        cfg.oauth_enabled,
        cfg.provider_name,
        cfg.strict_session_checks,
    )
    uvicorn.run(app, host=host, port=port, log_level=uvicorn_log_level)
