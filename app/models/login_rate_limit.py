"""Failed login attempts and the time-boxed blocks they produce."""

from sqlalchemy import Column, Integer, String, DateTime, Index, CheckConstraint

from app.core.database import Base


class FailedLoginAttempt(Base):
    """Audit row for every failed authentication."""

    __tablename__ = "failed_login_attempts"

    id = Column(Integer, primary_key=True, autoincrement=True)
    timestamp = Column(DateTime(timezone=True), nullable=False)
    ip = Column(String(45), nullable=False)
    username = Column(String(255), nullable=True)  # nulled after a successful login

    __table_args__ = (
        Index("ix_failed_login_attempts_timestamp", "timestamp"),
        Index("ix_failed_login_attempts_username", "username"),
        Index("ix_failed_login_attempts_ip", "ip"),
    )

    def __repr__(self):
        return f"<FailedLoginAttempt {self.username or '-'}@{self.ip} {self.timestamp}>"


class LoginBlock(Base):
    """A block on either a username or an address, never both."""

    __tablename__ = "login_blocks"

    id = Column(Integer, primary_key=True, autoincrement=True)
    username = Column(String(255), nullable=True)
    ip = Column(String(45), nullable=True)
    blocked_at = Column(DateTime(timezone=True), nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        CheckConstraint(
            "(username IS NULL) <> (ip IS NULL)",
            name="ck_login_blocks_single_scope",
        ),
        Index("ix_login_blocks_expires_at", "expires_at"),
    )

    def __repr__(self):
        return f"<LoginBlock {self.username or self.ip} until {self.expires_at}>"
