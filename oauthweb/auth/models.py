from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional


@dataclass(frozen=True)
class AuthUser:
    """Identity reported by the OAuth provider for a completed login."""

    provider: str  # OAuthSettings.provider_name
    subject: Optional[str] = None  # `sub` claim when the provider sends one
    email: Optional[str] = None
    name: Optional[str] = None
    picture: Optional[str] = None

    @classmethod
    def from_claims(cls, provider: str, claims: Dict[str, Any]) -> "AuthUser":
        def _s(key: str) -> Optional[str]:
            v = claims.get(key)
            if v is None:
                return None
            return str(v).strip() or None

        email = _s("email")
        return cls(
            provider=provider,
            subject=_s("sub"),
            email=email.lower() if email else None,
            name=_s("name"),
            picture=_s("picture"),
        )
