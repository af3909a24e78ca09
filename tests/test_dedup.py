"""Tests for the webhook debounce and existence caches."""

from __future__ import annotations

from src.quotesync.sync.dedup import DebounceCache, ExistenceCache, TTLCache


class TestTTLCache:
    def test_entry_expires_after_ttl(self, clock):
        cache: TTLCache[str] = TTLCache(10, clock)
        cache.set("a", "x")
        clock.advance(9)
        assert cache.get("a") == "x"
        clock.advance(1)
        assert cache.get("a") is None
        assert len(cache) == 0

    def test_writes_sweep_expired_entries(self, clock):
        """Memory stays bounded without a background task."""
        cache: TTLCache[int] = TTLCache(5, clock)
        for n in range(10):
            cache.set(f"k{n}", n)
        clock.advance(6)
        cache.set("fresh", 1)
        assert len(cache) == 1

    def test_sweep_reports_removed(self, clock):
        cache: TTLCache[int] = TTLCache(5, clock)
        cache.set("a", 1)
        cache.set("b", 2)
        clock.advance(5)
        assert cache.sweep() == 2


class TestDebounceCache:
    def test_second_claim_inside_window_is_refused(self, clock):
        debounce = DebounceCache(30, clock)
        assert debounce.try_claim("quote.updated", 501) is True
        clock.advance(29)
        assert debounce.try_claim("quote.updated", 501) is False

    def test_claim_allowed_again_after_window(self, clock):
        debounce = DebounceCache(30, clock)
        debounce.try_claim("quote.updated", 501)
        clock.advance(30)
        assert debounce.try_claim("quote.updated", 501) is True

    def test_keys_are_per_event_and_quote(self, clock):
        debounce = DebounceCache(30, clock)
        assert debounce.try_claim("quote.created", 501) is True
        assert debounce.try_claim("quote.updated", 501) is True
        assert debounce.try_claim("quote.created", 502) is True
        assert DebounceCache.key("quote.created", 501) == "quote.created-501"

    def test_release_allows_immediate_retry(self, clock):
        debounce = DebounceCache(30, clock)
        debounce.try_claim("quote.created", 501)
        debounce.release("quote.created", 501)
        assert debounce.try_claim("quote.created", 501) is True

    def test_claim_at_time_zero(self):
        """A stored timestamp of 0.0 still counts as claimed."""
        debounce = DebounceCache(30, lambda: 0.0)
        assert debounce.try_claim("quote.created", 1) is True
        assert debounce.try_claim("quote.created", 1) is False


class TestExistenceCache:
    def test_remember_and_get(self, clock):
        cache = ExistenceCache(300, clock)
        cache.remember(501, "9001", "Quote #501")
        entry = cache.get("501")
        assert entry.item_id == "9001"
        assert entry.last_updated == clock.now

    def test_entries_expire(self, clock):
        cache = ExistenceCache(300, clock)
        cache.remember(501, "9001")
        clock.advance(300)
        assert cache.get(501) is None

    def test_evict(self, clock):
        cache = ExistenceCache(300, clock)
        cache.remember(501, "9001")
        cache.evict(501)
        assert cache.get(501) is None
        assert len(cache) == 0
