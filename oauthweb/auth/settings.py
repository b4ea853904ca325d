from __future__ import annotations

import logging
from typing import Any, Dict, List, Mapping, Optional, Sequence

import jwt  # PyJWT
import requests
from itsdangerous import URLSafeTimedSerializer

from oauthweb.auth import oidc
from oauthweb.auth.config import AuthConfig
from oauthweb.auth.models import AuthUser
from oauthweb.auth.session import OAuthSession, session_serializer
from oauthweb.auth.store import FrameworkSession
from oauthweb.auth.util import random_token, short_id, tokens_equal

logger = logging.getLogger(__name__)

_PENDING_LOGIN_KEY = "oauth.login."


class OAuthSettings:
    """
    One provider + client configuration.

    Knows how to send a user to the provider (`user_auth_uri`) and how to turn the
    provider's callback into a verified `OAuthSession` (`user_session`).
    """

    def __init__(self, cfg: AuthConfig):
        self.cfg = cfg

    @property
    def provider_name(self) -> str:
        return self.cfg.provider_name

    @property
    def key(self) -> str:
        return f"{self.cfg.provider_name}:{self.cfg.oidc_client_id or ''}"

    @property
    def session_ttl_seconds(self) -> int:
        return self.cfg.session_ttl_seconds

    @property
    def redirect_uri(self) -> str:
        base = (self.cfg.public_base_url or "").strip().rstrip("/")
        if not base:
            raise ValueError("AUTH_PUBLIC_BASE_URL is required for OAuth login")
        return f"{base}/api/auth/login/{self.cfg.provider_name}"

    def serializer(self) -> Optional[URLSafeTimedSerializer]:
        return session_serializer(self.cfg.session_secret)

    def user_auth_uri(
        self,
        framework_session: FrameworkSession,
        extra_params: Optional[Mapping[str, str]] = None,
        scopes: Optional[Sequence[str]] = None,
    ) -> str:
        """
        Start a login: remember state/nonce/PKCE verifier in the framework session and
        return the provider authorization URL.
        """
        state = random_token(32)
        nonce = random_token(32)
        verifier = random_token(32)  # 43+ chars (base64url) -> valid PKCE verifier
        requested = list(scopes) if scopes else list(self.cfg.default_scopes)

        url = oidc.build_authorize_url(
            self.cfg,
            redirect_uri=self.redirect_uri,
            state=state,
            nonce=nonce,
            code_challenge=oidc.pkce_challenge(verifier),
            scopes=requested,
            extra_params=extra_params,
        )
        # A newer login attempt replaces any pending one for the same settings.
        framework_session.set(
            _PENDING_LOGIN_KEY + self.key,
            {"state": state, "nonce": nonce, "verifier": verifier, "scopes": requested},
        )
        return url

    def user_session(self, framework_session: FrameworkSession, state: str, code: str) -> Optional[OAuthSession]:
        """
        Complete a login from the provider callback. Returns None on any failure.
        """
        pending: Dict[str, Any] = framework_session.pop(_PENDING_LOGIN_KEY + self.key, None) or {}
        if not tokens_equal(pending.get("state"), (state or "").strip()):
            logger.warning("OAuth callback state mismatch for session %s", short_id(framework_session.id))
            return None
        if not (code or "").strip():
            return None

        scopes: List[str] = list(pending.get("scopes") or [])
        try:
            tokens = oidc.exchange_code_for_tokens(
                self.cfg,
                redirect_uri=self.redirect_uri,
                code=code,
                code_verifier=str(pending.get("verifier") or ""),
            )
            id_token = str(tokens.get("id_token") or "").strip()
            if id_token:
                claims = oidc.validate_id_token(self.cfg, id_token=id_token, expected_nonce=str(pending.get("nonce")))
            else:
                claims = oidc.fetch_userinfo(self.cfg, access_token=str(tokens["access_token"]))
        except (ValueError, requests.RequestException, jwt.PyJWTError) as e:
            logger.warning("OAuth code exchange failed for session %s: %s", short_id(framework_session.id), str(e))
            return None

        user = AuthUser.from_claims(self.cfg.provider_name, claims)
        if not self._domain_allowed(user):
            logger.warning("OAuth login rejected: account domain not allowed (%s)", self.cfg.provider_name)
            return None

        session = OAuthSession.from_token_response(self, tokens, user, scopes)
        try:
            session.save(self, framework_session)
        except ValueError as e:
            logger.warning("OAuth session could not be persisted: %s", str(e))
            return None
        return session

    def _domain_allowed(self, user: AuthUser) -> bool:
        if not self.cfg.allowed_domains:
            return True
        email = user.email or ""
        if "@" not in email:
            return False
        return email.split("@", 1)[1] in set(self.cfg.allowed_domains)
