"""Whitelist of identifiers for revocable (CLI) tokens."""

from sqlalchemy import Column, String, DateTime, Uuid, Index

from app.core.database import Base


class JwtJti(Base):
    """
    One row per live CLI token.

    A CLI token is only accepted while its jti has a row here; deleting the
    row revokes the token. There is no expiry column on purpose.
    """

    __tablename__ = "jwt_jti"

    jti = Column(String(36), primary_key=True)
    user_id = Column(Uuid(as_uuid=True), nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        Index("ix_jwt_jti_user_id", "user_id"),
    )

    def __repr__(self):
        return f"<JwtJti {self.jti} user={self.user_id}>"
