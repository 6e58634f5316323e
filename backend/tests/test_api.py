"""
HTTP tests for the quota and admin endpoints.

The app is used without its lifespan, so no scheduler or default database
is touched; every service gets the test session factory.
"""

from datetime import datetime, timedelta

import pytest
from fastapi.testclient import TestClient

from scan_gateway.api.deps import get_session_factory, hash_token
from scan_gateway.config import settings
from scan_gateway.main import app
from scan_gateway.models import AccessToken, AdminAuditLog, AIMetricsDailyRollup, AIUsageMetric
from scan_gateway.services.admin_control import grant_role
from scan_gateway.services.cache_service import CacheEntryData, CacheService


ADMIN = {"Authorization": "Bearer admin-token"}
USER = {"Authorization": "Bearer user-token"}


@pytest.fixture
def client(session_factory):
    db = session_factory()
    try:
        db.add_all([
            AccessToken(token_hash=hash_token("admin-token"), user_id="admin-1"),
            AccessToken(token_hash=hash_token("user-token"), user_id="user-1"),
            AccessToken(token_hash=hash_token("stale-token"), user_id="user-2",
                        expires_at=datetime.utcnow() - timedelta(days=1)),
        ])
        db.commit()
    finally:
        db.close()
    grant_role("admin-1", "admin", session_factory)

    app.dependency_overrides[get_session_factory] = lambda: session_factory
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def cached_entries(session_factory):
    cache = CacheService(session_factory=session_factory)
    for index, model in enumerate(["gemini-2.5-flash", "gemini-2.5-pro"]):
        cache.put(CacheEntryData(
            content_hash=str(index) * 64,
            response_data={"n": index},
            provider="google",
            model=model,
            prompt_template_id="product_analysis",
            prompt_version="1.0",
        ))
    return cache


class TestQuotaEndpoints:
    """Test quota status and consumption over HTTP."""

    def test_requires_token(self, client):
        response = client.get("/api/v1/quota")
        assert response.status_code == 401
        assert response.json()["success"] is False
        assert response.json()["code"] == "UNAUTHORIZED"

    def test_expired_token_rejected(self, client):
        response = client.get("/api/v1/quota", headers={"Authorization": "Bearer stale-token"})
        assert response.status_code == 401

    def test_status_and_increment(self, client):
        status = client.get("/api/v1/quota", headers=USER).json()
        assert status["can_scan"] is True
        assert status["scans_used"] == 0
        assert status["scans_limit"] == settings.FREE_MONTHLY_LIMIT
        assert status["tier"] == "free"

        for _ in range(settings.FREE_MONTHLY_LIMIT):
            assert client.post("/api/v1/quota/increment", headers=USER).status_code == 200

        response = client.post("/api/v1/quota/increment", headers=USER)
        assert response.status_code == 429
        assert response.json()["code"] == "MONTHLY_LIMIT_REACHED"

        status = client.get("/api/v1/quota", headers=USER).json()
        assert status["can_scan"] is False
        assert status["usage_percent"] == 100
        assert status["warning"] is True

    def test_anonymous_status_uses_forwarded_ip(self, client):
        response = client.get("/api/v1/quota/anonymous",
                              headers={"X-Forwarded-For": "203.0.113.7, 10.0.0.1"})
        body = response.json()
        assert response.status_code == 200
        assert body["can_scan"] is True
        assert body["scans_limit"] == settings.ANONYMOUS_DAILY_LIMIT
        assert body["remaining"] == settings.ANONYMOUS_DAILY_LIMIT


class TestCacheControlEndpoint:
    """Test POST /admin/cache-control."""

    def test_missing_token(self, client):
        response = client.post("/api/v1/admin/cache-control", json={"action": "flush_all"})
        assert response.status_code == 401

    def test_non_admin_forbidden(self, client, cached_entries):
        response = client.post("/api/v1/admin/cache-control", json={"action": "flush_all"}, headers=USER)
        assert response.status_code == 403
        assert cached_entries.stats()["total_entries"] == 2

    def test_invalid_action(self, client):
        response = client.post("/api/v1/admin/cache-control", json={"action": "drop"}, headers=ADMIN)
        assert response.status_code == 400
        assert response.json()["success"] is False

    def test_malformed_body(self, client):
        response = client.post("/api/v1/admin/cache-control", content=b"not json",
                               headers={**ADMIN, "Content-Type": "application/json"})
        assert response.status_code == 400

    def test_missing_parameter(self, client):
        response = client.post("/api/v1/admin/cache-control",
                               json={"action": "invalidate_by_model"}, headers=ADMIN)
        assert response.status_code == 400
        assert response.json()["error"] == "model is required for invalidate_by_model"

    def test_invalidate_by_model(self, client, cached_entries):
        response = client.post("/api/v1/admin/cache-control",
                               json={"action": "invalidate_by_model", "model": "gemini-2.5-pro"},
                               headers=ADMIN)
        assert response.status_code == 200
        assert response.json() == {
            "success": True,
            "message": "Invalidated 1 cache entries for model gemini-2.5-pro",
            "deletedCount": 1,
        }

    def test_invalidate_by_key(self, client, cached_entries):
        response = client.post("/api/v1/admin/cache-control",
                               json={"action": "invalidate_by_key", "cacheKey": "0" * 64},
                               headers=ADMIN)
        assert response.json()["deleted"] is True

    def test_audit_log_lists_action(self, client, cached_entries):
        client.post("/api/v1/admin/cache-control", json={"action": "flush_all"},
                    headers={**ADMIN, "User-Agent": "admin-dashboard"})

        entries = client.get("/api/v1/admin/audit-log", headers=ADMIN).json()
        assert len(entries) == 1
        assert entries[0]["action"] == "cache_control.flush_all"
        assert entries[0]["user_agent"] == "admin-dashboard"
        assert entries[0]["details"]["result"]["deletedCount"] == 2


class TestInspectionEndpoints:
    """Test admin read endpoints."""

    def test_cache_stats(self, client, cached_entries):
        response = client.get("/api/v1/admin/cache/stats", headers=ADMIN)
        assert response.status_code == 200
        assert response.json()["total_entries"] == 2

    def test_cache_stats_forbidden(self, client):
        assert client.get("/api/v1/admin/cache/stats", headers=USER).status_code == 403

    def test_aggregate_and_read_metrics(self, client, session_factory):
        db = session_factory()
        try:
            db.add(AIUsageMetric(timestamp=datetime(2025, 1, 16, 9, 0, 0), provider="google",
                                 model="gemini-2.5-flash", operation="analyze_image",
                                 latency_ms=120, cache_hit=False, tokens_used=900))
            db.commit()
        finally:
            db.close()

        response = client.post("/api/v1/admin/metrics/aggregate", json={"date": "2025-01-16"}, headers=ADMIN)
        assert response.status_code == 200
        assert response.json()["rollupRows"] == 1

        rollups = client.get("/api/v1/admin/metrics/daily",
                             params={"start": "2025-01-01", "end": "2025-01-31"}, headers=ADMIN).json()
        assert len(rollups) == 1
        assert rollups[0]["date"] == "2025-01-16"
        assert rollups[0]["total_tokens"] == 900

    def test_bad_date(self, client):
        response = client.get("/api/v1/admin/metrics/daily", params={"start": "yesterday"}, headers=ADMIN)
        assert response.status_code == 400


class TestHealth:
    def test_health(self, client):
        body = client.get("/api/v1/health").json()
        assert body["database"] == "healthy"
        assert body["scheduler"] == "stopped"


class TestStorageFailures:
    """Storage errors behind admin endpoints come back in the error envelope."""

    @pytest.mark.parametrize("method,path,model", [
        ("GET", "/api/v1/admin/metrics/daily", AIMetricsDailyRollup),
        ("POST", "/api/v1/admin/metrics/aggregate", AIUsageMetric),
        ("GET", "/api/v1/admin/audit-log", AdminAuditLog),
    ])
    def test_missing_table_reported_as_admin_failure(self, client, engine, method, path, model):
        model.__table__.drop(engine)

        response = client.request(method, path, headers=ADMIN)

        assert response.status_code == 500
        body = response.json()
        assert body["success"] is False
        assert body["code"] == "ADMIN_ACTION_FAILED"
