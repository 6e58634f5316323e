"""
Unit tests for the AI response cache store.
"""

from datetime import timedelta

import pytest

from scan_gateway.errors import CacheUnavailable
from scan_gateway.models import AIResponseCache
from scan_gateway.services.cache_service import CacheEntryData, CacheService


def make_entry(content_hash="a" * 64, **overrides):
    values = {
        "content_hash": content_hash,
        "response_data": {"verdict": "good", "score": 8},
        "provider": "google",
        "model": "gemini-2.5-flash",
        "prompt_template_id": "product_analysis",
        "prompt_version": "1.0",
        "tokens_used": 1200,
        "latency_ms": 850,
    }
    values.update(overrides)
    return CacheEntryData(**values)


@pytest.fixture
def cache(session_factory):
    return CacheService(session_factory=session_factory, ttl_days=7)


class TestCacheReadWrite:
    """Test put/get round trips and hit accounting."""

    def test_miss_on_empty_cache(self, cache, now):
        assert cache.get("f" * 64, now) is None

    def test_put_then_get(self, cache, now):
        assert cache.put(make_entry(), now) is True

        cached = cache.get("a" * 64, now + timedelta(minutes=1))
        assert cached is not None
        assert cached.response_data == {"verdict": "good", "score": 8}
        assert cached.model == "gemini-2.5-flash"
        assert cached.tokens_used == 1200
        assert cached.expires_at == now + timedelta(days=7)

    def test_hits_are_counted(self, cache, now):
        cache.put(make_entry(), now)

        for _ in range(3):
            cached = cache.get("a" * 64, now)

        assert cached.hit_count == 3
        assert cached.last_accessed_at == now

    def test_expired_entry_is_a_miss(self, cache, session_factory, now):
        cache.put(make_entry(), now)

        assert cache.get("a" * 64, now + timedelta(days=7)) is None

        # Lazy expiry: the row is still there until swept
        db = session_factory()
        try:
            assert db.query(AIResponseCache).count() == 1
        finally:
            db.close()

    def test_zero_ttl_never_expires(self, session_factory, now):
        cache = CacheService(session_factory=session_factory, ttl_days=0)
        cache.put(make_entry(), now)

        cached = cache.get("a" * 64, now + timedelta(days=3650))
        assert cached is not None
        assert cached.expires_at is None


class TestCacheUpsert:
    """Test overwrite semantics of put."""

    def test_overwrite_keeps_history_and_extends_expiry(self, cache, now):
        cache.put(make_entry(), now)
        cache.get("a" * 64, now)
        cache.get("a" * 64, now)

        later = now + timedelta(days=2)
        cache.put(make_entry(response_data={"verdict": "bad"}, prompt_version="1.1"), later)

        cached = cache.get("a" * 64, later)
        assert cached.response_data == {"verdict": "bad"}
        assert cached.prompt_version == "1.1"
        assert cached.hit_count == 3
        assert cached.created_at == now
        assert cached.expires_at == later + timedelta(days=7)

    def test_refresh_resets_history(self, cache, now):
        cache.put(make_entry(), now)
        cache.get("a" * 64, now)

        later = now + timedelta(days=1)
        cache.put(make_entry(), later, refresh=True)

        cached = cache.get("a" * 64, later)
        assert cached.hit_count == 1
        assert cached.created_at == later

    def test_unserializable_response_is_dropped(self, cache, now):
        assert cache.put(make_entry(response_data={"when": object()}), now) is False
        assert cache.get("a" * 64, now) is None


class TestCacheInvalidation:
    """Test admin invalidation and sweeping."""

    @pytest.fixture
    def populated(self, cache, now):
        cache.put(make_entry("1" * 64, prompt_template_id="product_analysis", prompt_version="1.0"), now)
        cache.put(make_entry("2" * 64, prompt_template_id="product_analysis", prompt_version="1.1"), now)
        cache.put(make_entry("3" * 64, prompt_template_id="swap_suggestion", model="gemini-2.5-pro"), now)
        return cache

    def test_invalidate_by_prompt_version(self, populated, now):
        assert populated.invalidate_by_prompt("product_analysis", "1.0") == 1
        assert populated.get("1" * 64, now) is None
        assert populated.get("2" * 64, now) is not None

    def test_invalidate_by_prompt_all_versions(self, populated, now):
        assert populated.invalidate_by_prompt("product_analysis") == 2
        assert populated.get("3" * 64, now) is not None

    def test_invalidate_by_model(self, populated):
        assert populated.invalidate_by_model("gemini-2.5-pro") == 1
        assert populated.invalidate_by_model("gemini-2.5-pro") == 0

    def test_invalidate_by_key(self, populated):
        assert populated.invalidate_by_key("3" * 64) is True
        assert populated.invalidate_by_key("3" * 64) is False

    def test_invalidate_all(self, populated, now):
        assert populated.invalidate_all() == 3
        assert populated.stats(now)["total_entries"] == 0

    def test_sweep_removes_only_expired(self, cache, now):
        cache.put(make_entry("1" * 64), now - timedelta(days=10))
        cache.put(make_entry("2" * 64), now)

        assert cache.sweep_expired(now) == 1
        assert cache.sweep_expired(now) == 0
        assert cache.get("2" * 64, now) is not None

    def test_stats(self, populated, now):
        populated.get("3" * 64, now)

        stats = populated.stats(now + timedelta(days=8))
        assert stats["total_entries"] == 3
        assert stats["expired_entries"] == 3
        assert stats["fresh_entries"] == 0
        assert stats["total_hits"] == 1
        models = {row["model"]: row for row in stats["by_model"]}
        assert models["gemini-2.5-pro"]["hits"] == 1
        assert models["gemini-2.5-flash"]["entries"] == 2


class TestCacheDegradation:
    """Test behavior when storage is unavailable."""

    def test_get_degrades_to_miss(self, broken_session_factory, now):
        cache = CacheService(session_factory=broken_session_factory)
        assert cache.get("a" * 64, now) is None

    def test_put_is_dropped(self, broken_session_factory, now):
        cache = CacheService(session_factory=broken_session_factory)
        assert cache.put(make_entry(), now) is False

    def test_invalidation_errors_propagate(self, broken_session_factory):
        cache = CacheService(session_factory=broken_session_factory)
        with pytest.raises(CacheUnavailable):
            cache.invalidate_all()
