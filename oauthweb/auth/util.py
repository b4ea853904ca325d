from __future__ import annotations

import base64
import hmac
import os


def b64url(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).decode("ascii").rstrip("=")


def random_token(nbytes: int = 32) -> str:
    return b64url(os.urandom(nbytes))


def tokens_equal(a: str | None, b: str | None) -> bool:
    """Constant-time comparison; empty values never match."""
    if not a or not b:
        return False
    return hmac.compare_digest(a.encode("utf-8"), b.encode("utf-8"))


def short_id(session_id: str | None) -> str:
    # Log-safe prefix of a session id.
    return (session_id or "")[:8] or "-"


def sanitize_next_path(next_path: str | None) -> str:
    """
    Prevent open-redirects after login: allow only relative paths like `/inbox`.
    """
    p = (next_path or "").strip().replace("\r", "").replace("\n", "")
    if not p.startswith("/") or p.startswith("//") or p.startswith("/\\"):
        return "/"
    return p
