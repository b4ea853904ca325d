from __future__ import annotations

import json
import logging
import time
from dataclasses import asdict, dataclass, field
from typing import TYPE_CHECKING, Any, Dict, List, Optional

from itsdangerous import BadSignature, BadTimeSignature, URLSafeTimedSerializer

from oauthweb.auth.models import AuthUser
from oauthweb.auth.store import FrameworkSession
from oauthweb.auth.util import random_token, short_id, tokens_equal

if TYPE_CHECKING:
    from oauthweb.auth.settings import OAuthSettings

logger = logging.getLogger(__name__)

SESSION_SALT = "oauthweb-oauth-session-v1"

# Keys inside FrameworkSession.data, suffixed with OAuthSettings.key.
_BLOB_KEY = "oauth.session."
_MARKER_KEY = "oauth.marker."


def session_serializer(secret: Optional[str]) -> Optional[URLSafeTimedSerializer]:
    if not secret:
        return None
    return URLSafeTimedSerializer(secret_key=secret, salt=SESSION_SALT)


@dataclass
class OAuthSession:
    """
    A verified OAuth login, bound to one framework session and one settings key.

    The session persists itself into the framework session as a signed blob plus a
    random marker. `verify` only compares markers; `load` decodes the blob.
    """

    settings_key: str
    marker: str
    access_token: str
    user: AuthUser
    token_type: str = "Bearer"
    refresh_token: Optional[str] = None
    expires_at: Optional[float] = None
    scopes: List[str] = field(default_factory=list)
    created_at: float = field(default_factory=time.time)
    # Absolute lifetime in seconds, counted from created_at. Not persisted.
    max_age: Optional[float] = field(default=None, compare=False)

    @classmethod
    def from_token_response(
        cls,
        settings: "OAuthSettings",
        tokens: Dict[str, Any],
        user: AuthUser,
        scopes: Optional[List[str]] = None,
    ) -> "OAuthSession":
        now = time.time()
        expires_at: Optional[float] = None
        try:
            expires_in = float(tokens.get("expires_in") or 0)
        except (TypeError, ValueError):
            expires_in = 0
        if expires_in > 0:
            expires_at = now + expires_in

        granted = str(tokens.get("scope") or "").split()
        return cls(
            settings_key=settings.key,
            marker=random_token(16),
            access_token=str(tokens["access_token"]),
            token_type=str(tokens.get("token_type") or "Bearer"),
            refresh_token=str(tokens.get("refresh_token") or "") or None,
            expires_at=expires_at,
            scopes=granted or list(scopes or []),
            user=user,
            created_at=now,
            max_age=settings.session_ttl_seconds,
        )

    def is_expired(self, now: Optional[float] = None) -> bool:
        """True once the access token expired or the login outlived its max age."""
        now = now if now is not None else time.time()
        if self.max_age is not None and now - self.created_at > self.max_age:
            return True
        return self.expires_at is not None and now >= self.expires_at

    def verify(self, framework_session: FrameworkSession) -> bool:
        """Cheap consistency check against the framework session; no decoding."""
        if self.is_expired():
            return False
        return tokens_equal(framework_session.get(_MARKER_KEY + self.settings_key), self.marker)

    def save(self, settings: "OAuthSettings", framework_session: FrameworkSession) -> None:
        s = settings.serializer()
        if s is None:
            raise ValueError("Session signing is not configured (AUTH_SESSION_SECRET)")
        data = asdict(self)
        data.pop("max_age", None)
        raw = json.dumps(data, separators=(",", ":"), sort_keys=True)
        framework_session.set(_BLOB_KEY + self.settings_key, s.dumps(raw))
        framework_session.set(_MARKER_KEY + self.settings_key, self.marker)

    @staticmethod
    def clear(framework_session: FrameworkSession, settings_key: str) -> None:
        framework_session.pop(_BLOB_KEY + settings_key, None)
        framework_session.pop(_MARKER_KEY + settings_key, None)

    @staticmethod
    def clear_all(framework_session: FrameworkSession) -> None:
        for key in [k for k in framework_session.data if k.startswith((_BLOB_KEY, _MARKER_KEY))]:
            framework_session.pop(key, None)

    @classmethod
    def load(cls, settings: "OAuthSettings", framework_session: FrameworkSession) -> Optional["OAuthSession"]:
        """
        Load and check the session persisted for `settings` in the framework session.
        Returns None when absent, tampered, too old, expired or superseded.
        """
        value = framework_session.get(_BLOB_KEY + settings.key)
        if not value:
            return None
        s = settings.serializer()
        if s is None:
            return None
        try:
            data = json.loads(s.loads(value, max_age=settings.session_ttl_seconds))
            if not isinstance(data, dict):
                return None
            user = data.get("user") or {}
            session = cls(
                settings_key=str(data["settings_key"]),
                marker=str(data["marker"]),
                access_token=str(data["access_token"]),
                token_type=str(data.get("token_type") or "Bearer"),
                refresh_token=data.get("refresh_token"),
                expires_at=data.get("expires_at"),
                scopes=[str(x) for x in (data.get("scopes") or [])],
                user=AuthUser(**user),
                created_at=float(data.get("created_at") or 0.0),
                max_age=settings.session_ttl_seconds,
            )
        except (BadSignature, BadTimeSignature, ValueError, KeyError, TypeError):
            logger.debug("Discarding unreadable OAuth session in %s", short_id(framework_session.id))
            return None

        if session.settings_key != settings.key:
            return None
        if not tokens_equal(framework_session.get(_MARKER_KEY + settings.key), session.marker):
            return None
        if session.is_expired():
            return None
        return session
