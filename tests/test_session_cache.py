"""
Tests for the session-scoped PasswordCache.

Tests cover:
- Basic set/get/pop
- user_id binding
- max_age expiry and purging
- Magic methods and invalidation
"""
import pytest

from passkey_identity.session import PasswordCache


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def cache(clock):
    return PasswordCache(max_age=60, clock=clock)


class TestBasicOperations:
    """Tests for set/get/pop."""

    def test_set_get(self, cache):
        cache.set("cred", "pw", "user")
        assert cache.get("cred") == "pw"

    def test_get_missing(self, cache):
        assert cache.get("missing") is None

    def test_overwrite(self, cache):
        cache.set("cred", "pw1", "user")
        cache.set("cred", "pw2", "user")
        assert cache.get("cred") == "pw2"
        assert len(cache) == 1

    def test_pop(self, cache):
        cache.set("cred", "pw", "user")
        assert cache.pop("cred") == "pw"
        assert cache.pop("cred") is None
        assert cache.empty is True


class TestUserBinding:
    """Tests for user_id matching."""

    def test_matching_user(self, cache):
        cache.set("cred", "pw", "user-a")
        assert cache.get("cred", "user-a") == "pw"

    def test_other_user(self, cache):
        cache.set("cred", "pw", "user-a")
        assert cache.get("cred", "user-b") is None
        # entry is kept for its own user
        assert cache.get("cred", "user-a") == "pw"


class TestExpiry:
    """Tests for max_age handling."""

    def test_fresh_entry(self, cache, clock):
        cache.set("cred", "pw", "user")
        clock.now = 60
        assert cache.get("cred") == "pw"

    def test_expired_entry_dropped(self, cache, clock):
        cache.set("cred", "pw", "user")
        clock.now = 61
        assert cache.get("cred") is None
        assert len(cache) == 0

    def test_no_max_age(self, clock):
        cache = PasswordCache(clock=clock)
        cache.set("cred", "pw", "user")
        clock.now = 10 ** 9
        assert cache.get("cred") == "pw"

    def test_purge_expired(self, cache, clock):
        cache.set("old", "pw", "user")
        clock.now = 30
        cache.set("new", "pw", "user")
        clock.now = 70
        assert cache.purge_expired() == 1
        assert list(cache) == ["new"]

    def test_max_age_setter(self, cache, clock):
        cache.set("cred", "pw", "user")
        clock.now = 100
        cache.max_age = 200
        assert cache.max_age == 200
        assert cache.get("cred") == "pw"


class TestMagicMethods:
    """Tests for container behaviour."""

    def test_contains(self, cache, clock):
        cache.set("cred", "pw", "user")
        assert "cred" in cache
        assert "other" not in cache
        clock.now = 61
        assert "cred" not in cache

    def test_invalidate(self, cache):
        cache.set("a", "pw", "user")
        cache.set("b", "pw", "user")
        cache.invalidate()
        assert cache.empty is True

    def test_repr_hides_passwords(self, cache):
        cache.set("cred", "super-secret", "user")
        assert "super-secret" not in repr(cache)
        assert "super-secret" not in repr(cache._entries["cred"])
        assert "cred" in repr(cache)
