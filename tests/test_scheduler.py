"""Tests for the periodic rate limit cleanup job."""

from datetime import datetime, timedelta, timezone

import app.core.database as database
from app.core import scheduler
from app.core.exceptions import StorageError
from app.models import FailedLoginAttempt
from app.services.rate_limit_service import RateLimitService


def test_cleanup_job_sweeps_expired_attempts(db_session, session_factory, monkeypatch):
    old = datetime.now(timezone.utc) - timedelta(days=1)
    db_session.add(FailedLoginAttempt(timestamp=old, ip="192.0.2.1", username="alice"))
    db_session.commit()
    monkeypatch.setattr(database, "SessionLocal", session_factory)

    assert scheduler.run_rate_limit_cleanup() == 1
    assert db_session.query(FailedLoginAttempt).count() == 0


def test_cleanup_job_failure_is_logged_not_raised(session_factory, monkeypatch, caplog):
    def broken_cleanup(self, now=None):
        raise StorageError()

    monkeypatch.setattr(database, "SessionLocal", session_factory)
    monkeypatch.setattr(RateLimitService, "cleanup", broken_cleanup)

    assert scheduler.run_rate_limit_cleanup() == 0
    assert "Rate limit cleanup failed" in caplog.text


def test_disabled_interval_does_not_start_scheduler(monkeypatch):
    monkeypatch.setattr(scheduler.settings, "RATE_LIMIT_CLEANUP_INTERVAL_MINUTES", 0)

    scheduler.start_scheduler()

    assert not scheduler.scheduler.running
