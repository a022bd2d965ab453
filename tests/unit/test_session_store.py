"""
Unit tests for the per-domain auth session store.
"""

import pytest

from adaptivecrawl.auth import AuthSessionStore
from adaptivecrawl.models import AuthSession


@pytest.mark.unit
class TestAuthSessionStore:
    def test_put_and_get_is_case_insensitive(self):
        store = AuthSessionStore()
        session = AuthSession(domain="Example.com", headers={"Authorization": "Bearer t"})
        store.put(session)
        assert store.get("example.COM") is session
        assert "example.com" in store
        assert len(store) == 1

    def test_expired_session_is_dropped(self):
        store = AuthSessionStore(ttl_seconds=5)
        session = AuthSession(domain="example.com")
        store.put(session)
        session.last_used -= 10
        assert store.get("example.com") is None
        assert len(store) == 0

    def test_least_recently_used_is_evicted(self):
        store = AuthSessionStore(max_sessions=2)
        for domain in ("a.com", "b.com"):
            store.put(AuthSession(domain=domain))
        store.get("a.com")
        store.put(AuthSession(domain="c.com"))

        assert store.get("b.com") is None
        assert store.get("a.com") is not None
        assert store.get("c.com") is not None

    def test_remove_and_clear(self):
        store = AuthSessionStore()
        store.put(AuthSession(domain="a.com"))
        store.put(AuthSession(domain="b.com"))
        assert store.remove("A.com")
        assert not store.remove("a.com")
        store.clear()
        assert len(store) == 0

    def test_login_lock_is_shared_per_domain(self):
        store = AuthSessionStore()
        assert store.login_lock("example.com") is store.login_lock("EXAMPLE.com")
        assert store.login_lock("example.com") is not store.login_lock("other.com")
