"""
OAuth 2.0 login helpers for server-rendered web applications.

Design goals:
- Authorization-code flow with PKCE against any OAuth/OIDC provider.
- Server-side sessions; the browser only holds an opaque session id cookie.
- Verified logins are cached in-process so steady-state requests skip decoding.
"""
