from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional

from oauthweb.auth.session import OAuthSession


@dataclass
class SessionCacheEntry:
    session: OAuthSession
    timestamp: float  # Last time the session was confirmed valid (cache clock, monotonic by default)


class SessionCache:
    """
    Process-local cache of verified OAuth sessions, keyed by framework session id.

    Entries are only ever created for sessions that were just verified, and removed when a
    later verification fails. There is no size or age eviction. All operations hold one
    lock for a single dict operation and never call out while holding it.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._entries: Dict[str, SessionCacheEntry] = {}
        self._clock = clock
        self._lock = threading.Lock()

    def lookup(self, session_id: str) -> Optional[SessionCacheEntry]:
        with self._lock:
            return self._entries.get(session_id)

    def insert(self, session_id: str, session: OAuthSession) -> SessionCacheEntry:
        """Create or replace the entry for `session_id`, stamped now."""
        if session is None:
            raise ValueError("Cannot cache an empty session")
        entry = SessionCacheEntry(session=session, timestamp=self._clock())
        with self._lock:
            self._entries[session_id] = entry
        return entry

    def touch(self, entry: SessionCacheEntry) -> None:
        """Record that `entry` is still valid as of now."""
        now = self._clock()
        with self._lock:
            entry.timestamp = now

    def remove(self, session_id: str) -> Optional[SessionCacheEntry]:
        with self._lock:
            return self._entries.pop(session_id, None)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __contains__(self, session_id: object) -> bool:
        with self._lock:
            return session_id in self._entries

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
