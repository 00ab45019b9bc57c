"""Tests for the operational CLI."""

from datetime import timedelta
from uuid import uuid4

import pytest

from app.core.security import TotpVerifier
from app.models import FailedLoginAttempt, JwtJti, User
from scripts.manage import main

PASSWORD = "correct-horse-battery"


@pytest.fixture
def run(session_factory, clock):
    def _run(*argv):
        return main(list(argv), session_factory=session_factory, clock=clock)

    return _run


class TestUserCommands:
    def test_create_and_list(self, run, capsys, db_session):
        assert run("user:create", "Bob@Example.com", "--password", PASSWORD) == 0
        assert run("user:list") == 0

        out = capsys.readouterr().out
        assert "Created user bob@example.com" in out
        assert db_session.query(User).filter(User.email == "bob@example.com").count() == 1

    def test_create_duplicate_fails(self, run, capsys, test_user):
        assert run("user:create", test_user.email, "--password", PASSWORD) == 1
        assert "already exists" in capsys.readouterr().err

    def test_create_weak_password_fails(self, run, capsys):
        assert run("user:create", "carol@example.com", "--password", "short") == 1
        assert "at least 12 characters" in capsys.readouterr().err

    def test_delete_unknown_user_fails(self, run, capsys):
        assert run("user:delete", "nobody@example.com") == 1
        assert "User not found" in capsys.readouterr().err

    def test_change_password(self, run, auth_service, test_user):
        assert run("user:change-password", test_user.email, "--password", "a-brand-new-password") == 0

        user, _, _ = auth_service.login(test_user.email, "a-brand-new-password", "192.0.2.1")
        assert user.id == test_user.id

    def test_enable_and_disable_totp(self, run, capsys, auth_service, test_user, clock):
        assert run("user:totp", test_user.email, "--enable") == 0
        out = capsys.readouterr().out
        secret = next(line.split(": ", 1)[1] for line in out.splitlines() if line.startswith("Secret: "))

        code = TotpVerifier(clock).generate(secret)
        auth_service.login(test_user.email, PASSWORD, "192.0.2.1", totp_code=code)

        assert run("user:totp", test_user.email, "--disable") == 0
        auth_service.db.expire_all()
        assert auth_service.find_by_email(test_user.email).totp_secret is None


class TestCliTokenCommands:
    def test_generate_and_revoke(self, run, capsys, db_session, test_user, token_service):
        assert run("user:generate-cli-token", test_user.email, "--password", PASSWORD) == 0
        lines = dict(line.split(": ", 1) for line in capsys.readouterr().out.splitlines())
        token, jti = lines["Token"], lines["JTI"]
        assert token_service.verify(token).jti is not None

        assert run("user:revoke-cli-token", jti) == 0
        assert "Revoked CLI token" in capsys.readouterr().out
        assert db_session.query(JwtJti).count() == 0

    def test_generate_with_wrong_password_fails(self, run, capsys, test_user):
        assert run("user:generate-cli-token", test_user.email, "--password", "not-the-password") == 1
        assert "Invalid credentials" in capsys.readouterr().err

    def test_revoke_unknown_jti_succeeds(self, run, capsys):
        assert run("user:revoke-cli-token", str(uuid4())) == 0
        assert "not found" in capsys.readouterr().out

    def test_revoke_invalid_jti_fails(self, run):
        assert run("user:revoke-cli-token", "not-a-uuid") == 1


class TestRateLimitCleanup:
    def test_cleanup_reports_removed_rows(self, run, capsys, rate_limit_service, clock, db_session):
        for _ in range(3):
            rate_limit_service.record_failure("alice", "192.0.2.1")
        clock.advance(timedelta(minutes=11))

        assert run("security:ratelimit-cleanup") == 0

        assert "Removed 3 expired rate limit record(s)" in capsys.readouterr().out
        assert db_session.query(FailedLoginAttempt).count() == 0
