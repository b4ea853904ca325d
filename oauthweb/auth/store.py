"""
Server-side framework sessions.

The browser only holds an opaque, random session id (HttpOnly cookie). Everything else,
including pending OAuth logins and persisted OAuth sessions, lives in `FrameworkSession.data`.
"""
from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional

from oauthweb.auth.config import AuthConfig
from oauthweb.auth.util import random_token, short_id

logger = logging.getLogger(__name__)


def session_cookie_name(cfg: AuthConfig) -> str:
    # `__Host-` requires Secure + Path=/ + no Domain; browsers may reject it on HTTP.
    return "__Host-oauthweb_session" if cfg.cookie_secure else "oauthweb_session"


def session_cookie_kwargs(cfg: AuthConfig, value: str) -> dict:
    return {
        "key": session_cookie_name(cfg),
        "value": value,
        "max_age": cfg.session_ttl_seconds,
        "httponly": True,
        "secure": cfg.cookie_secure,
        "samesite": "lax",
        "path": "/",
    }


def clear_session_cookie_kwargs(cfg: AuthConfig) -> dict:
    kwargs = session_cookie_kwargs(cfg, "")
    kwargs["max_age"] = 0
    return kwargs


@dataclass
class FrameworkSession:
    """Per-browser key/value store identified by an opaque id."""

    id: str
    data: Dict[str, Any] = field(default_factory=dict)
    created_at: float = 0.0
    last_access: float = 0.0

    def get(self, key: str, default: Any = None) -> Any:
        return self.data.get(key, default)

    def set(self, key: str, value: Any) -> None:
        self.data[key] = value

    def pop(self, key: str, default: Any = None) -> Any:
        return self.data.pop(key, default)

    def __contains__(self, key: object) -> bool:
        return key in self.data


class SessionStore:
    """
    Thread-safe in-memory framework session store.

    Sessions expire after `session_ttl_seconds` without access. Expired sessions are dropped
    on lookup, and swept from the whole store when new sessions are started (at most once
    per `SWEEP_INTERVAL_SECONDS`).
    """

    SWEEP_INTERVAL_SECONDS = 60.0

    def __init__(self, cfg: AuthConfig, *, clock: Callable[[], float] = time.time):
        self._cfg = cfg
        self._clock = clock
        self._sessions: Dict[str, FrameworkSession] = {}
        self._lock = threading.Lock()
        self._next_sweep = 0.0

    @property
    def config(self) -> AuthConfig:
        return self._cfg

    def get(self, session_id: Optional[str]) -> Optional[FrameworkSession]:
        if not session_id:
            return None
        now = self._clock()
        with self._lock:
            fs = self._sessions.get(session_id)
            if fs is None:
                return None
            if now - fs.last_access > self._cfg.session_ttl_seconds:
                del self._sessions[session_id]
                logger.debug("Framework session %s expired", short_id(session_id))
                return None
            fs.last_access = now
            return fs

    def from_request(self, request) -> Optional[FrameworkSession]:
        return self.get(request.cookies.get(session_cookie_name(self._cfg)))

    def start_session(self, response) -> FrameworkSession:
        """Create a new session and attach its cookie to `response`."""
        now = self._clock()
        fs = FrameworkSession(id=random_token(32), created_at=now, last_access=now)
        with self._lock:
            if now >= self._next_sweep:
                self._sweep_locked(now)
            self._sessions[fs.id] = fs
        response.set_cookie(**session_cookie_kwargs(self._cfg, fs.id))
        logger.debug("Started framework session %s", short_id(fs.id))
        return fs

    def _sweep_locked(self, now: float) -> None:
        ttl = self._cfg.session_ttl_seconds
        expired = [sid for sid, fs in self._sessions.items() if now - fs.last_access > ttl]
        for sid in expired:
            del self._sessions[sid]
        if expired:
            logger.debug("Swept %d expired framework sessions", len(expired))
        self._next_sweep = now + min(ttl, self.SWEEP_INTERVAL_SECONDS)

    def destroy(self, session_id: Optional[str]) -> None:
        if not session_id:
            return
        with self._lock:
            self._sessions.pop(session_id, None)

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)
