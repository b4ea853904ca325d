from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional, Set

from oauthweb.auth.session import OAuthSession
from oauthweb.auth.store import FrameworkSession

_STATE_ATTR = "oauth"


@dataclass
class RequestAuthContext:
    """Per-request auth state, attached to `request.state`."""

    login_checked: bool = False
    oauth_session: Optional[OAuthSession] = None
    # Set when the framework session was resolved or started during this request.
    framework_session: Optional[FrameworkSession] = None
    # Settings keys of cached logins that a scoped `is_logged_in` turned down.
    rejected_settings_keys: Set[str] = field(default_factory=set)


def request_context(request) -> RequestAuthContext:
    ctx = getattr(request.state, _STATE_ATTR, None)
    if ctx is None:
        ctx = RequestAuthContext()
        setattr(request.state, _STATE_ATTR, ctx)
    return ctx
