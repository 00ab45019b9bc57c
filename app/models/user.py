import uuid
from datetime import datetime, timezone

from sqlalchemy import Column, String, DateTime, Uuid, Index

from app.core.database import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class User(Base):
    __tablename__ = "users"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    email = Column(String(255), nullable=False)
    password_hash = Column(String(255), nullable=False)
    totp_secret = Column(String(64), nullable=True)  # base32, null when TOTP is disabled
    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)

    __table_args__ = (
        Index("ix_users_email", "email", unique=True),
    )

    @property
    def requires_totp(self) -> bool:
        return bool(self.totp_secret)

    def __repr__(self):
        return f"<User {self.email}>"
