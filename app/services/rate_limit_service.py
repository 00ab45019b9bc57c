"""
Login rate limiting: failed-attempt tracking and time-boxed blocks.

Failures are counted over a sliding window separately per username and per
source address. Crossing a threshold inserts a block for that dimension that
lasts one window. Blocks are evaluated lazily on read (check_block) and
swept only by cleanup().

check_block() and record_failure() are separate round trips, so concurrent
attempts can slip past check_block() before any of them trips a threshold.
That race is accepted. If stricter guarantees are ever needed, move the
threshold crossing into an atomic increment-and-compare in the store rather
than adding in-process locks here.
"""

import logging
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Iterator, Optional, Protocol, Union

from sqlalchemy import and_, case, func, or_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.clock import Clock, as_utc
from app.core.config import Settings
from app.core.exceptions import BlockScope, ConfigurationError, RateLimitExceededError, StorageError
from app.models.login_rate_limit import FailedLoginAttempt, LoginBlock

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FailedAttempt:
    timestamp: datetime
    address: str
    username: Optional[str]


@dataclass(frozen=True)
class UsernameBlock:
    username: str
    blocked_at: datetime
    expires_at: datetime

    @property
    def scope(self) -> BlockScope:
        return BlockScope.USERNAME

    def is_active(self, now: datetime) -> bool:
        return self.expires_at > now


@dataclass(frozen=True)
class AddressBlock:
    address: str
    blocked_at: datetime
    expires_at: datetime

    @property
    def scope(self) -> BlockScope:
        return BlockScope.ADDRESS

    def is_active(self, now: datetime) -> bool:
        return self.expires_at > now


Block = Union[UsernameBlock, AddressBlock]


@dataclass(frozen=True)
class AttemptCounts:
    username: int
    address: int


class RateLimitStore(Protocol):
    def transaction(self) -> Iterator[None]: ...

    def find_active_block(self, username: str, address: str, now: datetime) -> Optional[Block]: ...

    def insert_failed_attempt(self, attempt: FailedAttempt) -> None: ...

    def count_attempts(
        self, username: str, address: str, since: datetime, until: datetime
    ) -> AttemptCounts: ...

    def insert_block(self, block: Block) -> None: ...

    def clear_username(self, username: str) -> int: ...

    def delete_expired(self, attempt_cutoff: datetime, now: datetime) -> int: ...


class SqlRateLimitStore:
    """Rate limit storage on the failed_login_attempts / login_blocks tables."""

    def __init__(self, db: Session):
        self.db = db

    @contextmanager
    def transaction(self) -> Iterator[None]:
        """Commit on success; roll back and raise StorageError on database errors."""
        try:
            yield
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Rate limit storage error: {e}")
            raise StorageError("Rate limit storage is unavailable") from e
        except BaseException:
            self.db.rollback()
            raise

    def find_active_block(self, username: str, address: str, now: datetime) -> Optional[Block]:
        row = (
            self.db.query(LoginBlock)
            .filter(
                or_(LoginBlock.username == username, LoginBlock.ip == address),
                LoginBlock.expires_at > now,
            )
            .order_by(LoginBlock.expires_at.desc())
            .first()
        )
        if row is None:
            return None
        return _block_from_row(row)

    def insert_failed_attempt(self, attempt: FailedAttempt) -> None:
        self.db.add(
            FailedLoginAttempt(
                timestamp=attempt.timestamp,
                ip=attempt.address,
                username=attempt.username,
            )
        )
        self.db.flush()

    def count_attempts(
        self, username: str, address: str, since: datetime, until: datetime
    ) -> AttemptCounts:
        user_count, ip_count = (
            self.db.query(
                func.sum(case((FailedLoginAttempt.username == username, 1), else_=0)),
                func.sum(case((FailedLoginAttempt.ip == address, 1), else_=0)),
            )
            .filter(
                and_(
                    FailedLoginAttempt.timestamp >= since,
                    FailedLoginAttempt.timestamp <= until,
                )
            )
            .one()
        )
        return AttemptCounts(username=int(user_count or 0), address=int(ip_count or 0))

    def insert_block(self, block: Block) -> None:
        match block:
            case UsernameBlock(username=username):
                row = LoginBlock(username=username, ip=None)
            case AddressBlock(address=address):
                row = LoginBlock(username=None, ip=address)
        row.blocked_at = block.blocked_at
        row.expires_at = block.expires_at
        self.db.add(row)
        self.db.flush()

    def clear_username(self, username: str) -> int:
        return (
            self.db.query(FailedLoginAttempt)
            .filter(FailedLoginAttempt.username == username)
            .update({FailedLoginAttempt.username: None}, synchronize_session=False)
        )

    def delete_expired(self, attempt_cutoff: datetime, now: datetime) -> int:
        attempts_deleted = (
            self.db.query(FailedLoginAttempt)
            .filter(FailedLoginAttempt.timestamp < attempt_cutoff)
            .delete(synchronize_session=False)
        )
        blocks_deleted = (
            self.db.query(LoginBlock)
            .filter(LoginBlock.expires_at < now)
            .delete(synchronize_session=False)
        )
        return attempts_deleted + blocks_deleted


def _block_from_row(row: LoginBlock) -> Block:
    if row.username is not None:
        return UsernameBlock(
            username=row.username,
            blocked_at=as_utc(row.blocked_at),
            expires_at=as_utc(row.expires_at),
        )
    return AddressBlock(
        address=row.ip,
        blocked_at=as_utc(row.blocked_at),
        expires_at=as_utc(row.expires_at),
    )


class RateLimitService:
    """Tracks failed logins and blocks usernames or addresses that exceed their threshold."""

    def __init__(
        self,
        store: RateLimitStore,
        clock: Clock,
        username_threshold: int = 10,
        ip_threshold: int = 100,
        window_minutes: int = 10,
    ):
        if username_threshold <= 0 or ip_threshold <= 0:
            raise ConfigurationError("Rate limit thresholds must be positive")
        if window_minutes <= 0:
            raise ConfigurationError("Rate limit window must be positive")
        self.store = store
        self.clock = clock
        self.username_threshold = username_threshold
        self.ip_threshold = ip_threshold
        self.window = timedelta(minutes=window_minutes)

    @classmethod
    def from_settings(cls, settings: Settings, store: RateLimitStore, clock: Clock) -> "RateLimitService":
        return cls(
            store,
            clock,
            username_threshold=settings.RATE_LIMIT_USERNAME_THRESHOLD,
            ip_threshold=settings.RATE_LIMIT_IP_THRESHOLD,
            window_minutes=settings.RATE_LIMIT_WINDOW_MINUTES,
        )

    def check_block(self, username: str, address: str, now: Optional[datetime] = None) -> None:
        """
        Raise RateLimitExceededError if the username or the address is blocked.
        Read-only.
        """
        now = as_utc(now) if now else self.clock.now()
        with self.store.transaction():
            block = self.store.find_active_block(username, address, now)
        if block is not None:
            raise RateLimitExceededError(block.scope, block.expires_at, now=now)

    def record_failure(
        self, username: str, address: str, now: Optional[datetime] = None
    ) -> list[Block]:
        """
        Record a failed login and block whichever dimensions crossed their
        threshold. Returns the blocks created by this call.

        Attempts made while already blocked still count. Storage errors
        propagate: losing a failure would weaken brute-force protection.
        """
        now = as_utc(now) if now else self.clock.now()
        created: list[Block] = []
        with self.store.transaction():
            self.store.insert_failed_attempt(FailedAttempt(timestamp=now, address=address, username=username))
            counts = self.store.count_attempts(username, address, since=now - self.window, until=now)
            expires_at = now + self.window

            if counts.username > self.username_threshold:
                created.append(UsernameBlock(username=username, blocked_at=now, expires_at=expires_at))
            if counts.address > self.ip_threshold:
                created.append(AddressBlock(address=address, blocked_at=now, expires_at=expires_at))

            for block in created:
                self.store.insert_block(block)

        for block in created:
            logger.warning(
                f"Login blocked by {block.scope.value} "
                f"(username={username}, address={address}) until {expires_at.isoformat()}"
            )
        return created

    def clear_username(self, username: str) -> int:
        """
        Detach a username from its failed attempts after a successful login.
        Rows are kept so address-based counting is unaffected.
        """
        with self.store.transaction():
            cleared = self.store.clear_username(username)
        return cleared

    def cleanup(self, now: Optional[datetime] = None) -> int:
        """Delete attempts older than one window and expired blocks. Returns rows removed."""
        now = as_utc(now) if now else self.clock.now()
        with self.store.transaction():
            deleted = self.store.delete_expired(attempt_cutoff=now - self.window, now=now)
        if deleted:
            logger.info(f"Rate limit cleanup removed {deleted} expired record(s)")
        return deleted
