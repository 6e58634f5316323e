"""
Unit tests for the quota ledger.
"""

import threading
from datetime import datetime, timedelta

import pytest

from scan_gateway.config import settings
from scan_gateway.errors import QuotaLedgerUnavailable
from scan_gateway.models import AnonymousDailyUsage, ScanUsage
from scan_gateway.services.quota_service import (
    BucketKind,
    QuotaIdentity,
    QuotaLedger,
    get_usage_percent,
)
from scan_gateway.services.tiers import TierPolicy


@pytest.fixture
def ledger(session_factory):
    return QuotaLedger(session_factory=session_factory, fail_open=True)


class TestUsagePercent:
    """Test usage percentage helper."""

    def test_basic(self):
        assert get_usage_percent(8, 10) == 80.0

    def test_clamped(self):
        assert get_usage_percent(15, 10) == 100.0
        assert get_usage_percent(-1, 10) == 0.0

    def test_zero_limit(self):
        assert get_usage_percent(0, 0) == 0.0


class TestAnonymousDailyQuota:
    """Test anonymous per-IP daily quota."""

    def test_tenth_scan_allowed_eleventh_denied(self, ledger, now):
        ip = "203.0.113.7"
        decisions = [ledger.consume_anonymous(ip, now) for _ in range(10)]

        assert all(d.allowed for d in decisions)
        assert [d.used for d in decisions] == list(range(1, 11))
        assert [d.remaining for d in decisions] == list(range(9, -1, -1))

        tenth = decisions[-1]
        assert tenth.used == 10
        assert tenth.remaining == 0
        assert tenth.warning

        eleventh = ledger.consume_anonymous(ip, now)
        assert not eleventh.allowed
        assert eleventh.used == 10
        assert eleventh.denial_code == "DAILY_LIMIT_REACHED"

    def test_new_utc_day_resets(self, ledger, now):
        ip = "203.0.113.7"
        for _ in range(settings.ANONYMOUS_DAILY_LIMIT):
            ledger.consume_anonymous(ip, now)

        next_day = datetime(2025, 1, 18, 0, 0, 1)
        decision = ledger.consume_anonymous(ip, next_day)
        assert decision.allowed
        assert decision.used == 1
        assert decision.bucket_key == "2025-01-18"

    def test_ips_are_independent(self, ledger, now):
        for _ in range(settings.ANONYMOUS_DAILY_LIMIT):
            ledger.consume_anonymous("198.51.100.1", now)

        assert ledger.check_anonymous("198.51.100.2", now).allowed

    def test_check_does_not_consume(self, ledger, session_factory, now):
        decision = ledger.check_anonymous("203.0.113.7", now)
        assert decision.allowed
        assert decision.used == 0

        db = session_factory()
        try:
            assert db.query(AnonymousDailyUsage).count() == 0
        finally:
            db.close()

    def test_warning_threshold(self, ledger, now):
        for _ in range(7):
            ledger.consume_anonymous("203.0.113.7", now)
        assert not ledger.check_anonymous("203.0.113.7", now).warning

        ledger.consume_anonymous("203.0.113.7", now)
        assert ledger.check_anonymous("203.0.113.7", now).warning


class TestMonthlyQuota:
    """Test subscription-tier monthly quota."""

    def test_limit_enforced(self, ledger, now):
        tier = TierPolicy("free", 3)
        results = [ledger.consume_monthly("user-1", tier, now).allowed for _ in range(4)]
        assert results == [True, True, True, False]

        decision = ledger.check_monthly("user-1", tier, now)
        assert decision.used == 3
        assert decision.tier == "free"
        assert decision.denial_code == "MONTHLY_LIMIT_REACHED"

    def test_new_month_resets(self, ledger, now):
        tier = TierPolicy("free", 1)
        ledger.consume_monthly("user-1", tier, now)
        assert not ledger.consume_monthly("user-1", tier, now).allowed

        assert ledger.consume_monthly("user-1", tier, datetime(2025, 2, 1)).allowed

    def test_purchased_scans_extend_limit(self, ledger, now):
        tier = TierPolicy("free", 2)
        ledger.consume_monthly("user-1", tier, now)
        ledger.consume_monthly("user-1", tier, now)
        assert not ledger.consume_monthly("user-1", tier, now).allowed

        assert ledger.grant_additional_scans("user-1", 5, now) == 5
        assert ledger.grant_additional_scans("user-1", 1, now) == 6

        decision = ledger.consume_monthly("user-1", tier, now)
        assert decision.allowed
        assert decision.used == 3
        assert decision.additional == 6
        assert decision.total_limit == 8
        assert decision.remaining == 5

    def test_grant_before_first_scan(self, ledger, session_factory, now):
        ledger.grant_additional_scans("user-2", 3, now)

        db = session_factory()
        try:
            row = db.query(ScanUsage).filter(ScanUsage.user_id == "user-2").one()
            assert row.scans_used == 0
            assert row.month_year == "2025-01"
        finally:
            db.close()

        assert ledger.check_monthly("user-2", TierPolicy("free", 10), now).total_limit == 13

    def test_grant_rejects_non_positive(self, ledger, now):
        with pytest.raises(ValueError):
            ledger.grant_additional_scans("user-1", 0, now)


class TestHourlyQuota:
    """Test per-hour burst limit."""

    def test_hourly_cap(self, ledger, now):
        for _ in range(3):
            assert ledger.consume_hourly("user-1", 3, now).allowed

        denied = ledger.consume_hourly("user-1", 3, now + timedelta(minutes=59))
        assert not denied.allowed
        assert denied.denial_code == "RATE_LIMIT_EXCEEDED"

        assert ledger.consume_hourly("user-1", 3, now + timedelta(hours=1)).allowed

    def test_zero_limit_denies_without_writing(self, ledger, now):
        decision = ledger.consume_hourly("user-1", 0, now)
        assert not decision.allowed
        assert decision.used == 0

    def test_release_returns_one_unit(self, ledger, now):
        for _ in range(3):
            ledger.consume_hourly("user-1", 3, now)

        assert ledger.release_hourly("user-1", now)
        assert ledger.check_hourly("user-1", 3, now).used == 2
        assert ledger.consume_hourly("user-1", 3, now).allowed

    def test_release_never_goes_below_zero(self, ledger, now):
        assert not ledger.release_hourly("user-1", now)

        ledger.consume_hourly("user-1", 3, now)
        assert ledger.release_hourly("user-1", now)
        assert not ledger.release_hourly("user-1", now)
        assert ledger.check_hourly("user-1", 3, now).used == 0

    def test_release_failure_is_reported(self, broken_session_factory, now):
        ledger = QuotaLedger(session_factory=broken_session_factory, fail_open=False)
        assert not ledger.release_hourly("user-1", now)


class TestConcurrentConsumption:
    """Test that concurrent consumers never lose an increment or exceed the limit."""

    @pytest.mark.parametrize("workers,limit", [(10, 5), (20, 50), (12, 12)])
    def test_parallel_requests(self, session_factory, now, workers, limit):
        ledger = QuotaLedger(session_factory=session_factory, fail_open=False)
        identity = QuotaIdentity(BucketKind.ANONYMOUS_DAILY, "203.0.113.99")
        decisions = []
        errors = []
        lock = threading.Lock()
        barrier = threading.Barrier(workers)

        def worker():
            barrier.wait()
            try:
                decision = ledger.check_and_consume(identity, "2025-01-17", limit, now=now)
                with lock:
                    decisions.append(decision)
            except Exception as e:
                with lock:
                    errors.append(e)

        threads = [threading.Thread(target=worker) for _ in range(workers)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        expected = min(workers, limit)
        assert errors == []
        assert len(decisions) == workers
        assert sum(1 for d in decisions if d.allowed) == expected
        assert sorted(d.used for d in decisions if d.allowed) == list(range(1, expected + 1))
        assert ledger.check(identity, "2025-01-17", limit).used == expected


class TestLedgerFailurePolicy:
    """Test fail-open and fail-closed behavior."""

    def test_fail_open_allows_and_flags(self, broken_session_factory, now):
        ledger = QuotaLedger(session_factory=broken_session_factory, fail_open=True)
        decision = ledger.consume_anonymous("203.0.113.7", now)
        assert decision.allowed
        assert decision.degraded

    def test_fail_closed_raises(self, broken_session_factory, now):
        ledger = QuotaLedger(session_factory=broken_session_factory, fail_open=False)
        with pytest.raises(QuotaLedgerUnavailable):
            ledger.consume_anonymous("203.0.113.7", now)

    def test_grant_never_fails_open(self, broken_session_factory, now):
        ledger = QuotaLedger(session_factory=broken_session_factory, fail_open=True)
        with pytest.raises(QuotaLedgerUnavailable):
            ledger.grant_additional_scans("user-1", 5, now)
