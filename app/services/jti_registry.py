"""
Whitelist of CLI token identifiers.

TokenService only sees the JtiRegistry protocol; the backing can be the
`jwt_jti` table or a flat CSV file, with the same insert/check/delete
contract. Storage failures always surface as StorageError so they are never
mistaken for a revoked (or valid) token.
"""

import logging
import os
import threading
from functools import lru_cache
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, Protocol
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.clock import as_utc
from app.core.config import Settings
from app.core.exceptions import StorageError
from app.models.jwt_jti import JwtJti
from app.services.token_claims import JtiEntry

logger = logging.getLogger(__name__)


class JtiRegistry(Protocol):
    def save_jti(self, jti: UUID, user_id: UUID, created_at: datetime) -> None: ...

    def has_jti(self, jti: UUID) -> bool: ...

    def delete_jti(self, jti: UUID) -> None: ...

    def get(self, jti: UUID) -> Optional[JtiEntry]: ...


class SqlJtiRegistry:
    """JTI whitelist stored in the `jwt_jti` table."""

    def __init__(self, db: Session):
        self.db = db

    def save_jti(self, jti: UUID, user_id: UUID, created_at: datetime) -> None:
        try:
            self.db.add(JwtJti(jti=str(jti), user_id=user_id, created_at=created_at))
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Failed to save JWT JTI {jti}: {e}")
            raise StorageError("Failed to save JWT JTI") from e

    def has_jti(self, jti: UUID) -> bool:
        try:
            return (
                self.db.query(JwtJti.jti).filter(JwtJti.jti == str(jti)).first()
                is not None
            )
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Failed to check JWT JTI {jti}: {e}")
            raise StorageError("Failed to check JWT JTI") from e

    def delete_jti(self, jti: UUID) -> None:
        try:
            self.db.query(JwtJti).filter(JwtJti.jti == str(jti)).delete()
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Failed to delete JWT JTI {jti}: {e}")
            raise StorageError("Failed to delete JWT JTI") from e

    def get(self, jti: UUID) -> Optional[JtiEntry]:
        try:
            row = self.db.query(JwtJti).filter(JwtJti.jti == str(jti)).first()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Failed to read JWT JTI {jti}: {e}")
            raise StorageError("Failed to read JWT JTI") from e
        if row is None:
            return None
        return JtiEntry(
            jti=UUID(row.jti),
            owner_user_id=row.user_id,
            created_at=as_utc(row.created_at),
        )


class FileJtiRegistry:
    """
    JTI whitelist stored as an append/rewrite CSV file.

    One entry per line: ``jti,user_id,created_at_epoch``. Deleting rewrites
    the file without the entry and removes the file once it is empty.

    The location is only checked when writing: a missing file reads as an
    empty whitelist, so session tokens keep working while it is fixed.
    """

    def __init__(self, file_path: str | os.PathLike):
        self.path = Path(file_path)
        self._lock = threading.Lock()

    def save_jti(self, jti: UUID, user_id: UUID, created_at: datetime) -> None:
        line = f"{jti},{user_id},{int(created_at.timestamp())}\n"
        self._check_writable()
        try:
            with self._lock, self.path.open("a", encoding="utf-8") as handle:
                handle.write(line)
        except OSError as e:
            logger.error(f"Failed to write JWT JTI to {self.path}: {e}")
            raise StorageError(f"Failed to write JWT JTI to file: {self.path}") from e

    def has_jti(self, jti: UUID) -> bool:
        return self._find_line(jti) is not None

    def get(self, jti: UUID) -> Optional[JtiEntry]:
        line = self._find_line(jti)
        if line is None:
            return None
        jti_str, user_id, created_at = line.split(",", 2)
        return JtiEntry(
            jti=UUID(jti_str),
            owner_user_id=UUID(user_id),
            created_at=datetime.fromtimestamp(int(created_at), tz=timezone.utc),
        )

    def delete_jti(self, jti: UUID) -> None:
        prefix = f"{jti},"
        try:
            with self._lock:
                if not self.path.exists():
                    return
                with self.path.open("r", encoding="utf-8") as handle:
                    remaining = [line for line in handle if not line.startswith(prefix)]
                if remaining:
                    self.path.write_text("".join(remaining), encoding="utf-8")
                else:
                    self.path.unlink()
        except OSError as e:
            logger.error(f"Failed to delete JWT JTI from {self.path}: {e}")
            raise StorageError(f"Failed to delete JWT JTI: {jti}") from e

    def _check_writable(self) -> None:
        directory = self.path.parent
        if not directory.is_dir() or not os.access(directory, os.W_OK):
            logger.error(f"JWT JTI directory does not exist or is not writable: {directory}")
            raise StorageError(f"Directory does not exist or is not writable: {directory}")
        # Only check file writeability if it already exists
        if self.path.exists() and not os.access(self.path, os.W_OK):
            logger.error(f"JWT JTI file is not writable: {self.path}")
            raise StorageError(f"JWT JTI file is not writable: {self.path}")

    def _find_line(self, jti: UUID) -> Optional[str]:
        prefix = f"{jti},"
        try:
            if not self.path.exists():
                return None
            with self.path.open("r", encoding="utf-8") as handle:
                for line in handle:
                    if line.startswith(prefix):
                        return line.strip()
        except OSError as e:
            logger.error(f"Failed to read JWT JTI file {self.path}: {e}")
            raise StorageError(f"Failed to check JWT JTI: {jti}") from e
        return None


@lru_cache
def file_jti_registry(file_path: str) -> FileJtiRegistry:
    """One registry per file, so every request shares its write lock."""
    return FileJtiRegistry(file_path)


def build_jti_registry(db: Session, settings: Settings) -> JtiRegistry:
    """Pick the registry backing configured by JTI_STORAGE."""
    if settings.JTI_STORAGE == "file":
        return file_jti_registry(settings.JTI_FILE_PATH)
    return SqlJtiRegistry(db)
