"""
Provider protocol helpers: discovery, authorize URL, code exchange, ID token checks.

Works with OIDC providers (via discovery) and plain OAuth 2.0 providers (explicit
authorize/token endpoints). Explicitly configured endpoints always win over discovery.
"""
from __future__ import annotations

import hashlib
import json
import threading
import time
from typing import Any, Dict, List, Mapping, Optional, Tuple
from urllib.parse import urlencode, urlparse

import jwt  # PyJWT
import requests

from oauthweb.auth.config import AuthConfig
from oauthweb.auth.util import b64url

_HTTP_TIMEOUT_SECONDS = 10
_METADATA_TTL_SECONDS = 3600

_discovery_cache: Dict[str, Tuple[float, Dict[str, Any]]] = {}
_jwks_cache: Dict[str, Tuple[float, Dict[str, Any]]] = {}
_cache_lock = threading.Lock()

# Parameters owned by the protocol; caller-supplied extras never override them.
_RESERVED_AUTHORIZE_PARAMS = frozenset(
    {"client_id", "redirect_uri", "response_type", "scope", "state", "nonce", "code_challenge", "code_challenge_method"}
)

_KNOWN_PROVIDERS = (
    ("google", "Google", "https://www.google.com/favicon.ico"),
    ("okta", "Okta", "https://www.okta.com/favicon.ico"),
    ("microsoft", "Microsoft", "https://www.microsoft.com/favicon.ico"),
    ("azure", "Microsoft", "https://www.microsoft.com/favicon.ico"),
    ("auth0", "Auth0", "https://cdn.auth0.com/styleguide/latest/lib/logos/img/favicon.png"),
    ("github", "GitHub", "https://github.com/favicon.ico"),
)


def _fetch_json_cached(cache: Dict[str, Tuple[float, Dict[str, Any]]], url: str, what: str) -> Dict[str, Any]:
    now = time.time()
    with _cache_lock:
        hit = cache.get(url)
    if hit is not None and now - hit[0] < _METADATA_TTL_SECONDS:
        return hit[1]
    # Fetch outside the lock; a concurrent duplicate fetch is harmless.
    r = requests.get(url, timeout=_HTTP_TIMEOUT_SECONDS)
    r.raise_for_status()
    data = r.json()
    if not isinstance(data, dict):
        raise ValueError(f"Invalid {what}")
    with _cache_lock:
        cache[url] = (now, data)
    return data


def _get_discovery(discovery_url: str) -> Dict[str, Any]:
    """Fetch the OIDC discovery document. Cached for 1 hour per URL."""
    return _fetch_json_cached(_discovery_cache, discovery_url, "OIDC discovery document")


def _get_jwks(jwks_uri: str) -> Dict[str, Any]:
    """Fetch the provider's JSON Web Key Set. Cached for 1 hour per URI."""
    return _fetch_json_cached(_jwks_cache, jwks_uri, "JWKS")


def clear_metadata_caches() -> None:
    with _cache_lock:
        _discovery_cache.clear()
        _jwks_cache.clear()


def provider_endpoints(cfg: AuthConfig) -> Dict[str, str]:
    """
    Resolve provider endpoints.

    Returns a dict with `authorization_endpoint` and `token_endpoint` (always) and
    `issuer`, `jwks_uri`, `userinfo_endpoint` (empty strings when unknown).
    """
    disc: Dict[str, Any] = {}
    if cfg.oidc_discovery_url and not (cfg.authorize_url and cfg.token_url and cfg.userinfo_url):
        disc = _get_discovery(cfg.oidc_discovery_url)

    endpoints = {
        "authorization_endpoint": cfg.authorize_url or str(disc.get("authorization_endpoint") or ""),
        "token_endpoint": cfg.token_url or str(disc.get("token_endpoint") or ""),
        "userinfo_endpoint": cfg.userinfo_url or str(disc.get("userinfo_endpoint") or ""),
        "issuer": str(disc.get("issuer") or ""),
        "jwks_uri": str(disc.get("jwks_uri") or ""),
    }
    if not endpoints["authorization_endpoint"]:
        raise ValueError("Provider authorization endpoint not configured")
    if not endpoints["token_endpoint"]:
        raise ValueError("Provider token endpoint not configured")
    return endpoints


def get_provider_metadata(cfg: AuthConfig) -> Dict[str, str]:
    """
    Provider display metadata (name, logo).
    Configured overrides win; otherwise guessed from the issuer / endpoint host.
    """
    endpoints = provider_endpoints(cfg)
    hint = (endpoints["issuer"] or endpoints["authorization_endpoint"] or "").lower()

    name = cfg.oidc_provider_name
    logo = cfg.oidc_provider_logo
    for needle, known_name, known_logo in _KNOWN_PROVIDERS:
        if needle in hint:
            name = name or known_name
            logo = logo or known_logo
            break

    if not name:
        netloc = urlparse(hint).netloc
        name = netloc.split(".")[0].title() if netloc else "SSO Provider"

    return {"name": name, "logo": logo or ""}


def build_authorize_url(
    cfg: AuthConfig,
    *,
    redirect_uri: str,
    state: str,
    nonce: str,
    code_challenge: str,
    scopes: Optional[List[str]] = None,
    extra_params: Optional[Mapping[str, str]] = None,
) -> str:
    """
    Build the provider authorization URL (authorization-code flow with PKCE S256).
    """
    if not cfg.oidc_client_id:
        raise ValueError("OAuth client ID not configured")

    auth_endpoint = provider_endpoints(cfg)["authorization_endpoint"]

    params: Dict[str, str] = {
        k: str(v) for k, v in (extra_params or {}).items() if k not in _RESERVED_AUTHORIZE_PARAMS
    }
    params.update(
        {
            "client_id": cfg.oidc_client_id,
            "redirect_uri": redirect_uri,
            "response_type": "code",
            "scope": " ".join(scopes or cfg.default_scopes),
            "state": state,
            "nonce": nonce,
            "code_challenge": code_challenge,
            "code_challenge_method": "S256",
        }
    )
    sep = "&" if "?" in auth_endpoint else "?"
    return f"{auth_endpoint}{sep}{urlencode(params)}"


def exchange_code_for_tokens(
    cfg: AuthConfig,
    *,
    redirect_uri: str,
    code: str,
    code_verifier: str,
) -> Dict[str, Any]:
    """
    Exchange an authorization code for tokens (access_token, optionally id_token/refresh_token).
    """
    if not cfg.oidc_client_id or not cfg.oidc_client_secret:
        raise ValueError("OAuth client ID/secret not configured")

    token_endpoint = provider_endpoints(cfg)["token_endpoint"]
    payload = {
        "client_id": cfg.oidc_client_id,
        "client_secret": cfg.oidc_client_secret,
        "grant_type": "authorization_code",
        "code": code,
        "redirect_uri": redirect_uri,
        "code_verifier": code_verifier,
    }
    r = requests.post(
        token_endpoint,
        data=payload,
        headers={"Accept": "application/json"},
        timeout=_HTTP_TIMEOUT_SECONDS,
    )
    if r.status_code >= 400:
        # Avoid leaking sensitive info; include minimal context.
        raise ValueError(f"Token exchange failed (status={r.status_code})")
    data = r.json()
    if not isinstance(data, dict):
        raise ValueError("Invalid token response")
    if "error" in data:
        raise ValueError(f"Token exchange failed ({data.get('error')})")
    if not str(data.get("access_token") or "").strip():
        raise ValueError("Token response missing access_token")
    return data


def validate_id_token(
    cfg: AuthConfig,
    *,
    id_token: str,
    expected_nonce: str,
) -> Dict[str, Any]:
    """
    Validate an ID token: signature (provider JWKS), issuer, audience, nonce and
    email verification status. Returns the claims.
    """
    if not cfg.oidc_client_id:
        raise ValueError("OAuth client ID not configured")

    endpoints = provider_endpoints(cfg)
    issuer = endpoints["issuer"]
    jwks_uri = endpoints["jwks_uri"]
    if not issuer or not jwks_uri:
        raise ValueError("Provider issuer/jwks_uri unknown; cannot validate id_token")

    kid = str(jwt.get_unverified_header(id_token).get("kid") or "")
    if not kid:
        raise ValueError("ID token missing kid")

    keys = _get_jwks(jwks_uri).get("keys")
    if not isinstance(keys, list):
        raise ValueError("Invalid JWKS keys")
    jwk = next((k for k in keys if isinstance(k, dict) and str(k.get("kid") or "") == kid), None)
    if jwk is None:
        raise ValueError("Unknown signing key (kid)")

    key = jwt.algorithms.RSAAlgorithm.from_jwk(json.dumps(jwk))
    claims = jwt.decode(
        id_token,
        key=key,
        algorithms=["RS256"],
        audience=cfg.oidc_client_id,
        issuer=issuer,
        options={"require": ["exp", "iat", "iss", "aud"]},
    )
    if not isinstance(claims, dict):
        raise ValueError("Invalid ID token claims")

    nonce = str(claims.get("nonce") or "")
    if not nonce or nonce != expected_nonce:
        raise ValueError("Nonce mismatch")

    # Some providers may not include email_verified claim; treat as optional
    email_verified = claims.get("email_verified")
    if email_verified is not None and email_verified is not True:
        raise ValueError("Email not verified")

    return claims


def fetch_userinfo(cfg: AuthConfig, *, access_token: str) -> Dict[str, Any]:
    """Fetch user claims from the userinfo endpoint. Empty dict when none is known."""
    endpoint = provider_endpoints(cfg)["userinfo_endpoint"]
    if not endpoint:
        return {}
    r = requests.get(
        endpoint,
        headers={"Authorization": f"Bearer {access_token}", "Accept": "application/json"},
        timeout=_HTTP_TIMEOUT_SECONDS,
    )
    if r.status_code >= 400:
        raise ValueError(f"Userinfo request failed (status={r.status_code})")
    data = r.json()
    if not isinstance(data, dict):
        raise ValueError("Invalid userinfo response")
    return data


def pkce_challenge(verifier: str) -> str:
    """PKCE S256 challenge for a verifier."""
    return b64url(hashlib.sha256(verifier.encode("ascii")).digest())
