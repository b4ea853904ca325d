from __future__ import annotations

import threading
from unittest.mock import patch

import pytest

from conftest import FakeClock
from oauthweb.auth.models import AuthUser
from oauthweb.auth.session import OAuthSession
from oauthweb.auth.session_cache import SessionCache


def _session(marker: str = "m1", key: str = "oidc:client") -> OAuthSession:
    return OAuthSession(
        settings_key=key,
        marker=marker,
        access_token="at-" + marker,
        user=AuthUser(provider="oidc", email="dev@example.com"),
    )


def test_lookup_missing_returns_none() -> None:
    cache = SessionCache()
    assert cache.lookup("nope") is None
    assert "nope" not in cache
    assert len(cache) == 0


def test_default_clock_ignores_wall_clock_going_backwards() -> None:
    cache = SessionCache()
    entry = cache.insert("sid-1", _session())
    first = entry.timestamp

    with patch("time.time", return_value=0.0):
        cache.touch(entry)

    assert entry.timestamp >= first


def test_insert_stamps_entry_with_clock() -> None:
    clock = FakeClock(start=100.0)
    cache = SessionCache(clock=clock)
    s = _session()

    entry = cache.insert("sid-1", s)

    assert entry.session is s
    assert entry.timestamp == 101.0
    assert cache.lookup("sid-1") is entry
    assert "sid-1" in cache


def test_insert_replaces_previous_entry() -> None:
    cache = SessionCache(clock=FakeClock())
    first, second = _session("a"), _session("b")
    cache.insert("sid-1", first)
    cache.insert("sid-1", second)

    assert cache.lookup("sid-1").session is second
    assert len(cache) == 1


def test_touch_refreshes_timestamp_only() -> None:
    cache = SessionCache(clock=FakeClock())
    s = _session()
    entry = cache.insert("sid-1", s)
    before = entry.timestamp

    cache.touch(entry)

    after = cache.lookup("sid-1")
    assert after.timestamp > before
    assert after.session is s


def test_remove_returns_entry_and_forgets_key() -> None:
    cache = SessionCache()
    s = _session()
    cache.insert("sid-1", s)

    removed = cache.remove("sid-1")

    assert removed is not None and removed.session is s
    assert cache.lookup("sid-1") is None
    assert cache.remove("sid-1") is None


def test_operations_on_other_keys_are_independent() -> None:
    cache = SessionCache(clock=FakeClock())
    a, b = _session("a"), _session("b")
    cache.insert("sid-a", a)
    entry_b = cache.insert("sid-b", b)
    ts_b = entry_b.timestamp

    cache.touch(cache.lookup("sid-a"))
    cache.remove("sid-a")
    cache.insert("sid-c", _session("c"))

    assert cache.lookup("sid-a") is None
    assert cache.lookup("sid-b").session is b
    assert cache.lookup("sid-b").timestamp == ts_b


def test_insert_rejects_missing_session() -> None:
    cache = SessionCache()
    with pytest.raises(ValueError):
        cache.insert("sid-1", None)  # type: ignore[arg-type]
    assert cache.lookup("sid-1") is None


def test_clear_empties_cache() -> None:
    cache = SessionCache()
    cache.insert("a", _session("a"))
    cache.insert("b", _session("b"))
    cache.clear()
    assert len(cache) == 0


def test_concurrent_inserts_and_removes_do_not_lose_updates() -> None:
    cache = SessionCache()
    s = _session()

    def _worker(n: int) -> None:
        for i in range(200):
            cache.insert(f"keep-{n}-{i}", s)
            cache.insert(f"drop-{n}-{i}", s)
            cache.remove(f"drop-{n}-{i}")

    threads = [threading.Thread(target=_worker, args=(n,)) for n in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert len(cache) == 8 * 200
    assert all(f"keep-{n}-199" in cache for n in range(8))
