"""
OAuth login controller for web applications.

Typical use from a request handler:

    if not webapp.is_logged_in(request, settings):
        ...  # send the user to the login route
    session = webapp.oauth_session(request)

The login route (mapped to `settings.redirect_uri`) just calls `webapp.login(...)`; it both
starts the flow and handles the provider's callback. With several providers, map one route
per provider, each with its own settings.
"""
from __future__ import annotations

import logging
from typing import Mapping, Optional, Sequence

from oauthweb.auth.context import request_context
from oauthweb.auth.session import OAuthSession
from oauthweb.auth.session_cache import SessionCache
from oauthweb.auth.settings import OAuthSettings
from oauthweb.auth.store import FrameworkSession, SessionStore, clear_session_cookie_kwargs
from oauthweb.auth.util import short_id

logger = logging.getLogger(__name__)


class LoginNotCheckedError(RuntimeError):
    """`oauth_session` was called before `is_logged_in` or `login` for the request."""


class OAuthWebapp:
    def __init__(self, store: SessionStore, cache: Optional[SessionCache] = None, *, strict: bool = False):
        """
        Args:
            store: Framework session store (cookie -> FrameworkSession).
            cache: Verified-session cache; a private one is created when omitted.
            strict: Raise LoginNotCheckedError when `oauth_session` is used without a prior check.
        """
        self._store = store
        self._cache = cache if cache is not None else SessionCache()
        self._strict = strict

    @property
    def cache(self) -> SessionCache:
        return self._cache

    @property
    def store(self) -> SessionStore:
        return self._store

    def framework_session(self, request) -> Optional[FrameworkSession]:
        ctx = request_context(request)
        if ctx.framework_session is None:
            ctx.framework_session = self._store.from_request(request)
        return ctx.framework_session

    def is_logged_in(self, request, settings: Optional[OAuthSettings]) -> bool:
        """
        Check if a request is from a logged in user.

        Only a login made with the same settings (provider + client id) counts. Without
        settings, only the cache is consulted.
        """
        ctx = request_context(request)
        ctx.login_checked = True

        fs = self.framework_session(request)
        if fs is None:
            return False

        entry = self._cache.lookup(fs.id)
        if entry is not None and settings is not None and entry.session.settings_key != settings.key:
            # Another provider's login: leave it cached, but keep it out of this request.
            ctx.rejected_settings_keys.add(entry.session.settings_key)
            entry = None
        if entry is not None:
            if entry.session.verify(fs):
                self._cache.touch(entry)
                ctx.oauth_session = entry.session
                ctx.rejected_settings_keys.discard(entry.session.settings_key)
                return True
            self._cache.remove(fs.id)
            logger.debug("Evicted stale OAuth session for %s", short_id(fs.id))

        session = OAuthSession.load(settings, fs) if settings is not None else None
        if session is None:
            return False

        ctx.oauth_session = session
        self._cache.insert(fs.id, session)
        ctx.rejected_settings_keys.discard(session.settings_key)
        logger.debug("Cached OAuth session for %s (%s)", short_id(fs.id), session.settings_key)
        return True

    def login(
        self,
        request,
        response,
        settings: OAuthSettings,
        extra_params: Optional[Mapping[str, str]] = None,
        scopes: Optional[Sequence[str]] = None,
    ) -> None:
        """
        Perform OAuth login using the given settings.

        If the request is the provider's redirect back (framework session present and both
        `code` and `state` in the query), the code is exchanged via `settings.user_session`.
        On failure nothing changes: callers check `oauth_session(request)` afterwards.

        Otherwise `response` is turned into a redirect to the provider, starting a framework
        session first when the request has none.
        """
        ctx = request_context(request)
        fs = self.framework_session(request)
        query = request.query_params

        if fs is not None and "code" in query and "state" in query:
            ctx.login_checked = True
            session = settings.user_session(fs, query["state"], query["code"])
            if session is not None:
                self._cache.insert(fs.id, session)
                ctx.oauth_session = session
                logger.info("OAuth login completed for %s (%s)", short_id(fs.id), session.settings_key)
            return

        if fs is None:
            fs = self._store.start_session(response)
            ctx.framework_session = fs

        url = settings.user_auth_uri(fs, extra_params, scopes)
        response.status_code = 302
        response.headers["location"] = url
        response.headers["Cache-Control"] = "no-store"

    def oauth_session(self, request) -> Optional[OAuthSession]:
        """
        Get the OAuth session for a request, without any validation.

        Always call `login` or `is_logged_in` for the request first.
        """
        ctx = request_context(request)
        if not ctx.login_checked and self._strict:
            raise LoginNotCheckedError("oauth_session() called before is_logged_in()/login() for this request")

        if ctx.oauth_session is not None:
            return ctx.oauth_session

        fs = self.framework_session(request)
        if fs is None:
            return None
        entry = self._cache.lookup(fs.id)
        if entry is None or entry.session.settings_key in ctx.rejected_settings_keys:
            return None
        return entry.session

    def logout(self, request, response) -> None:
        """Forget the login: cache entry, persisted session data, framework session and cookie."""
        ctx = request_context(request)
        fs = self.framework_session(request)
        if fs is not None:
            self._cache.remove(fs.id)
            OAuthSession.clear_all(fs)
            self._store.destroy(fs.id)
            logger.info("Logged out %s", short_id(fs.id))
        ctx.oauth_session = None
        ctx.framework_session = None
        response.set_cookie(**clear_session_cookie_kwargs(self._store.config))
