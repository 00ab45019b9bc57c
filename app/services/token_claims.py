"""Value types carried by bearer tokens."""

import enum
from dataclasses import dataclass
from datetime import datetime
from typing import Optional, assert_never
from uuid import UUID


class TokenType(str, enum.Enum):
    """
    Closed set of token kinds. Each kind fixes its validation policy:

    - SESSION: default login, expires after the session TTL
    - REMEMBER_ME: long-lived login, expires after the remember-me TTL
    - CLI: never expires, individually revocable through its jti
    """

    SESSION = "session"
    REMEMBER_ME = "remember_me"
    CLI = "cli"

    @property
    def expires(self) -> bool:
        match self:
            case TokenType.SESSION | TokenType.REMEMBER_ME:
                return True
            case TokenType.CLI:
                return False
            case _:
                assert_never(self)

    @property
    def revocable(self) -> bool:
        match self:
            case TokenType.SESSION | TokenType.REMEMBER_ME:
                return False
            case TokenType.CLI:
                return True
            case _:
                assert_never(self)


@dataclass(frozen=True)
class JwtToken:
    """The compact, signed token string handed to clients."""

    value: str

    def __post_init__(self):
        if not self.value or not self.value.strip():
            raise ValueError("Token cannot be empty")

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True)
class TokenClaims:
    """
    Decoded and verified payload of a token.

    Use TokenClaims.create() to build claims that satisfy the per-type
    invariants. The plain constructor does not validate, so that callers
    holding inconsistent claims (e.g. a CLI claims object without a jti)
    are still rejected by TokenService.refresh() rather than at construction.
    """

    subject_user_id: UUID
    token_type: TokenType
    issued_at: datetime
    expires_at: Optional[datetime] = None
    jti: Optional[UUID] = None

    @classmethod
    def create(
        cls,
        subject_user_id: UUID,
        token_type: TokenType,
        issued_at: datetime,
        expires_at: Optional[datetime] = None,
        jti: Optional[UUID] = None,
    ) -> "TokenClaims":
        if token_type.expires and expires_at is None:
            raise ValueError(f"{token_type.value} claims require an expiry")
        if not token_type.expires and expires_at is not None:
            raise ValueError(f"{token_type.value} claims cannot carry an expiry")
        if token_type.revocable and jti is None:
            raise ValueError(f"{token_type.value} claims require a jti")
        if not token_type.revocable and jti is not None:
            raise ValueError(f"{token_type.value} claims cannot carry a jti")
        return cls(subject_user_id, token_type, issued_at, expires_at, jti)

    def is_expired(self, now: datetime) -> bool:
        if self.expires_at is None:
            return False
        return now > self.expires_at


@dataclass(frozen=True)
class JtiEntry:
    """A whitelisted CLI token identifier."""

    jti: UUID
    owner_user_id: UUID
    created_at: datetime
