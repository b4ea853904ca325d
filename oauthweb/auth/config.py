from __future__ import annotations

import os
import re
from dataclasses import dataclass
from functools import lru_cache
from typing import List, Optional


@dataclass(frozen=True)
class AuthConfig:
    # Provider / client
    provider_name: str  # Route key, e.g. /api/auth/login/<provider_name>
    oidc_discovery_url: Optional[str]
    authorize_url: Optional[str]  # Explicit endpoints win over discovery
    token_url: Optional[str]
    userinfo_url: Optional[str]
    oidc_client_id: Optional[str]
    oidc_client_secret: Optional[str]
    oidc_provider_name: Optional[str]  # Display name (default: auto-detected)
    oidc_provider_logo: Optional[str]  # Logo URL (default: auto-detected)
    default_scopes: List[str]

    # Session configuration
    public_base_url: Optional[str]  # Required for the redirect URI
    session_secret: Optional[str]  # Required for signing persisted OAuth sessions
    session_ttl_seconds: int
    cookie_secure: bool

    # Email domain enforcement (optional)
    allowed_domains: List[str]

    # Raise when oauth_session() is used before a login check
    strict_session_checks: bool

    @property
    def oauth_enabled(self) -> bool:
        """OAuth is enabled once endpoints and client credentials are configured."""
        has_endpoints = bool(self.oidc_discovery_url or (self.authorize_url and self.token_url))
        return bool(has_endpoints and self.oidc_client_id and self.oidc_client_secret)


def _parse_csv(value: str) -> List[str]:
    items = [x.strip().lower() for x in (value or "").split(",")]
    return [x for x in items if x]


def _parse_scopes(value: str) -> List[str]:
    # Scopes are case-sensitive; accept comma or whitespace separated lists.
    return [x for x in re.split(r"[,\s]+", value or "") if x]


def _parse_bool(value: str) -> Optional[bool]:
    v = (value or "").strip().lower()
    if v in ("1", "true", "yes", "on"):
        return True
    if v in ("0", "false", "no", "off"):
        return False
    return None


def _env(name: str) -> Optional[str]:
    return (os.getenv(name, "") or "").strip() or None


@lru_cache(maxsize=1)
def load_auth_config() -> AuthConfig:
    """
    Load authentication configuration from environment variables.

    OAuth is enabled when OIDC_CLIENT_ID and OIDC_CLIENT_SECRET are set together with
    either OIDC_DISCOVERY_URL or both OAUTH_AUTHORIZE_URL and OAUTH_TOKEN_URL.
    """
    public_base_url = _env("AUTH_PUBLIC_BASE_URL")
    cookie_secure = _parse_bool(os.getenv("AUTH_COOKIE_SECURE", ""))
    if cookie_secure is None:
        # Default: secure cookies when base URL is https; otherwise allow local dev.
        cookie_secure = True if (public_base_url or "").startswith("https://") else False

    ttl = int(float((os.getenv("AUTH_SESSION_TTL_SECONDS", "") or "43200").strip() or "43200"))  # 12h default
    if ttl <= 60:
        ttl = 60

    scopes = _parse_scopes(os.getenv("OAUTH_SCOPES", "")) or ["openid", "email", "profile"]

    return AuthConfig(
        provider_name=(_env("OAUTH_PROVIDER_NAME") or "oidc").lower(),
        oidc_discovery_url=_env("OIDC_DISCOVERY_URL"),
        authorize_url=_env("OAUTH_AUTHORIZE_URL"),
        token_url=_env("OAUTH_TOKEN_URL"),
        userinfo_url=_env("OAUTH_USERINFO_URL"),
        oidc_client_id=_env("OIDC_CLIENT_ID"),
        oidc_client_secret=_env("OIDC_CLIENT_SECRET"),
        oidc_provider_name=_env("OIDC_PROVIDER_NAME"),
        oidc_provider_logo=_env("OIDC_PROVIDER_LOGO"),
        default_scopes=scopes,
        public_base_url=public_base_url,
        session_secret=_env("AUTH_SESSION_SECRET"),
        session_ttl_seconds=ttl,
        cookie_secure=cookie_secure,
        allowed_domains=_parse_csv(os.getenv("AUTH_ALLOWED_DOMAINS", "")),
        strict_session_checks=bool(_parse_bool(os.getenv("AUTH_STRICT_CHECKS", ""))),
    )
