import base64
import hashlib
import hmac
import logging
import secrets
import struct
from datetime import datetime
from typing import Callable, Optional

from passlib.context import CryptContext

from app.core.clock import Clock
from app.core.config import settings
from app.core.exceptions import WeakPasswordError

logger = logging.getLogger(__name__)

pwd_context = CryptContext(
    schemes=["bcrypt"],
    deprecated="auto",
    bcrypt__rounds=settings.BCRYPT_ROUNDS,
)

# A strength check returns None when the password is acceptable,
# otherwise a human-readable reason.
StrengthCheck = Callable[[str], Optional[str]]


def default_strength_check(min_length: int) -> StrengthCheck:
    """Length-only strength check; swap in a stricter predicate if needed."""

    def check(password: str) -> Optional[str]:
        if len(password) < min_length:
            return f"Password must be at least {min_length} characters"
        return None

    return check


class PasswordHasher:
    """bcrypt hashing with a pluggable strength predicate applied on hash()."""

    def __init__(self, min_length: int = 12, strength_check: Optional[StrengthCheck] = None):
        self.strength_check = strength_check or default_strength_check(min_length)

    def hash(self, plaintext: str) -> str:
        """Hash a new password. Raises WeakPasswordError if it is too weak."""
        problem = self.strength_check(plaintext)
        if problem:
            raise WeakPasswordError(problem)
        return pwd_context.hash(plaintext)

    def verify(self, plaintext: str, digest: str) -> bool:
        """Verify a plain password against a stored hash."""
        try:
            return pwd_context.verify(plaintext, digest)
        except (ValueError, TypeError):
            # Unknown or corrupt hash format
            logger.warning("Password hash could not be identified")
            return False

    def needs_rehash(self, digest: str) -> bool:
        return pwd_context.needs_update(digest)


# Digest used for unknown users so a failed lookup costs as much as a failed verify
DUMMY_PASSWORD_HASH = pwd_context.hash("not-a-real-password")


class TotpVerifier:
    """
    RFC 6238 time-based one-time passwords (HMAC-SHA1, as used by
    authenticator apps).

    Codes from `window` steps either side of the current step are accepted
    to tolerate clock drift between server and device.
    """

    def __init__(self, clock: Clock, window: int = 1, interval: int = 30, digits: int = 6):
        if window < 1:
            raise ValueError("Window must be greater than zero")
        self.clock = clock
        self.window = window
        self.interval = interval
        self.digits = digits

    def verify(self, code: str, secret: str) -> bool:
        if not code or not secret:
            return False
        code = code.strip()
        timestamp = self.clock.now().timestamp()
        for offset in range(-self.window, self.window + 1):
            generated = self._generate_at(secret, timestamp + offset * self.interval)
            # Constant-time comparison to avoid leaking matching prefixes
            if generated and hmac.compare_digest(generated, code):
                return True
        return False

    def generate(self, secret: str, at: Optional[datetime] = None) -> str:
        """Current (or given-time) code for a secret; used by tooling and tests."""
        at = at or self.clock.now()
        return self._generate_at(secret, at.timestamp())

    def _generate_at(self, secret: str, timestamp: float) -> str:
        normalized = secret.strip().replace(" ", "").upper()
        padded = normalized + "=" * ((8 - len(normalized) % 8) % 8)
        try:
            key = base64.b32decode(padded, casefold=True)
        except (ValueError, TypeError):
            logger.warning("TOTP secret is not valid base32")
            return ""
        counter = struct.pack(">Q", int(timestamp // self.interval))
        digest = hmac.new(key, counter, hashlib.sha1).digest()
        offset = digest[-1] & 0x0F
        code_int = (struct.unpack(">I", digest[offset:offset + 4])[0] & 0x7FFFFFFF) % (
            10 ** self.digits
        )
        return str(code_int).zfill(self.digits)


def generate_totp_secret() -> str:
    """Random 160-bit base32 secret, the size authenticator apps expect."""
    return base64.b32encode(secrets.token_bytes(20)).decode().rstrip("=")
