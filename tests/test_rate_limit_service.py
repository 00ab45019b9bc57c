"""Tests for the login rate limiter."""

from datetime import timedelta, timezone
from unittest.mock import patch

import pytest
from sqlalchemy.exc import OperationalError

from app.core.exceptions import BlockScope, ConfigurationError, RateLimitExceededError, StorageError
from app.models import FailedLoginAttempt, LoginBlock
from app.services.rate_limit_service import AddressBlock, RateLimitService, SqlRateLimitStore, UsernameBlock

WINDOW = timedelta(minutes=10)


def fail_times(service, count, username="alice", address="192.0.2.1"):
    created = []
    for _ in range(count):
        created.extend(service.record_failure(username, address))
    return created


class TestUsernameThreshold:
    def test_ten_failures_do_not_block(self, rate_limit_service):
        created = fail_times(rate_limit_service, 10)

        assert created == []
        rate_limit_service.check_block("alice", "192.0.2.1")

    def test_eleventh_failure_blocks_username(self, rate_limit_service, clock):
        fail_times(rate_limit_service, 10)

        created = rate_limit_service.record_failure("alice", "192.0.2.1")

        assert created == [
            UsernameBlock(username="alice", blocked_at=clock.now(), expires_at=clock.now() + WINDOW)
        ]

    def test_blocked_username_rejected_from_any_address(self, rate_limit_service, clock):
        fail_times(rate_limit_service, 11)

        with pytest.raises(RateLimitExceededError) as exc_info:
            rate_limit_service.check_block("alice", "198.51.100.7")

        assert exc_info.value.scope == BlockScope.USERNAME
        assert exc_info.value.expires_at == clock.now() + WINDOW
        assert exc_info.value.headers["Retry-After"] == str(int(WINDOW.total_seconds()))

    def test_block_lifts_after_window(self, rate_limit_service, clock):
        fail_times(rate_limit_service, 11)

        rate_limit_service.check_block("alice", "192.0.2.1", now=clock.now() + WINDOW + timedelta(seconds=1))

    def test_block_still_active_just_before_expiry(self, rate_limit_service, clock):
        fail_times(rate_limit_service, 11)

        with pytest.raises(RateLimitExceededError):
            rate_limit_service.check_block("alice", "192.0.2.1", now=clock.now() + WINDOW - timedelta(seconds=1))

    def test_other_usernames_unaffected(self, rate_limit_service):
        fail_times(rate_limit_service, 11)

        rate_limit_service.check_block("bob", "198.51.100.7")

    def test_failures_outside_window_do_not_count(self, rate_limit_service, clock):
        fail_times(rate_limit_service, 10)
        clock.advance(WINDOW + timedelta(seconds=1))

        assert rate_limit_service.record_failure("alice", "192.0.2.1") == []

    def test_attempts_while_blocked_still_count(self, rate_limit_service, db_session):
        fail_times(rate_limit_service, 12)

        assert db_session.query(FailedLoginAttempt).count() == 12
        # Every failure past the threshold inserts a fresh block row
        assert db_session.query(LoginBlock).filter(LoginBlock.username == "alice").count() == 2


class TestAddressThreshold:
    def test_address_blocked_across_usernames(self, db_session, clock):
        service = RateLimitService(SqlRateLimitStore(db_session), clock, username_threshold=10, ip_threshold=3)
        for name in ("a", "b", "c"):
            assert service.record_failure(name, "203.0.113.9") == []

        created = service.record_failure("d", "203.0.113.9")

        assert created == [
            AddressBlock(address="203.0.113.9", blocked_at=clock.now(), expires_at=clock.now() + WINDOW)
        ]
        with pytest.raises(RateLimitExceededError) as exc_info:
            service.check_block("someone-new", "203.0.113.9")
        assert exc_info.value.scope == BlockScope.ADDRESS

    def test_both_blocks_from_one_failure(self, db_session, clock):
        service = RateLimitService(SqlRateLimitStore(db_session), clock, username_threshold=2, ip_threshold=2)
        fail_times(service, 2)

        created = service.record_failure("alice", "192.0.2.1")

        assert {block.scope for block in created} == {BlockScope.USERNAME, BlockScope.ADDRESS}
        assert db_session.query(LoginBlock).count() == 2


class TestClearUsername:
    def test_clear_keeps_rows_but_detaches_username(self, rate_limit_service, db_session):
        fail_times(rate_limit_service, 5)

        cleared = rate_limit_service.clear_username("alice")

        assert cleared == 5
        rows = db_session.query(FailedLoginAttempt).all()
        assert len(rows) == 5
        assert all(row.username is None for row in rows)

    def test_cleared_failures_no_longer_count_for_username(self, rate_limit_service):
        fail_times(rate_limit_service, 10)
        rate_limit_service.clear_username("alice")

        assert rate_limit_service.record_failure("alice", "192.0.2.1") == []
        rate_limit_service.check_block("alice", "198.51.100.7")

    def test_address_counts_unaffected(self, db_session, clock):
        service = RateLimitService(SqlRateLimitStore(db_session), clock, username_threshold=10, ip_threshold=5)
        fail_times(service, 5)
        service.clear_username("alice")

        created = service.record_failure("alice", "192.0.2.1")

        assert [block.scope for block in created] == [BlockScope.ADDRESS]


class TestCleanup:
    def test_removes_expired_rows_and_counts_them(self, rate_limit_service, clock, db_session):
        fail_times(rate_limit_service, 11)  # 11 attempts + 1 block
        clock.advance(WINDOW + timedelta(seconds=1))
        rate_limit_service.record_failure("bob", "198.51.100.7")  # still fresh

        assert rate_limit_service.cleanup() == 12
        assert rate_limit_service.cleanup() == 0

        remaining = db_session.query(FailedLoginAttempt).all()
        assert [row.username for row in remaining] == ["bob"]
        assert db_session.query(LoginBlock).count() == 0

    def test_keeps_attempts_inside_window_and_active_blocks(self, rate_limit_service, clock, db_session):
        fail_times(rate_limit_service, 11)
        clock.advance(timedelta(minutes=5))

        assert rate_limit_service.cleanup() == 0
        assert db_session.query(FailedLoginAttempt).count() == 11
        assert db_session.query(LoginBlock).count() == 1

    def test_block_expiring_exactly_now_is_kept(self, rate_limit_service, clock, db_session):
        fail_times(rate_limit_service, 11)
        blocked_at = clock.now()

        rate_limit_service.cleanup(now=blocked_at + WINDOW)

        assert db_session.query(LoginBlock).count() == 1


class TestNonUtcInstants:
    """Instants in other offsets are the same moment, whatever the backend stores."""

    def test_block_found_for_instant_in_other_offset(self, rate_limit_service, clock):
        fail_times(rate_limit_service, 11)
        later = (clock.now() + timedelta(minutes=5)).astimezone(timezone(timedelta(hours=1)))

        with pytest.raises(RateLimitExceededError) as exc_info:
            rate_limit_service.check_block("alice", "192.0.2.1", now=later)

        assert exc_info.value.expires_at == clock.now() + WINDOW

    def test_failure_in_other_offset_counts_toward_threshold(self, rate_limit_service, clock):
        fail_times(rate_limit_service, 10)
        same_moment = clock.now().astimezone(timezone(timedelta(hours=-5)))

        created = rate_limit_service.record_failure("alice", "192.0.2.1", now=same_moment)

        assert [block.scope for block in created] == [BlockScope.USERNAME]
        assert created[0].expires_at.utcoffset() == timedelta(0)

    def test_cleanup_in_other_offset_keeps_fresh_rows(self, rate_limit_service, clock, db_session):
        fail_times(rate_limit_service, 11)
        later = (clock.now() + timedelta(minutes=5)).astimezone(timezone(timedelta(hours=5)))

        assert rate_limit_service.cleanup(now=later) == 0
        assert db_session.query(FailedLoginAttempt).count() == 11
        assert db_session.query(LoginBlock).count() == 1


class TestStorageFailures:
    def test_record_failure_propagates_storage_errors(self, rate_limit_service, db_session):
        error = OperationalError("INSERT", {}, Exception("database is locked"))
        with patch.object(db_session, "flush", side_effect=error):
            with pytest.raises(StorageError):
                rate_limit_service.record_failure("alice", "192.0.2.1")

    def test_check_block_does_not_treat_outage_as_unblocked(self, rate_limit_service, db_session):
        error = OperationalError("SELECT", {}, Exception("connection refused"))
        with patch.object(db_session, "query", side_effect=error):
            with pytest.raises(StorageError):
                rate_limit_service.check_block("alice", "192.0.2.1")


class TestConfiguration:
    def test_zero_threshold_rejected(self, db_session, clock):
        with pytest.raises(ConfigurationError):
            RateLimitService(SqlRateLimitStore(db_session), clock, username_threshold=0)
