"""
Issuing, verifying and refreshing signed bearer tokens.

Verification runs as a fixed pipeline:

    signature/structure -> validity window (skipped for CLI) -> jti whitelist (CLI only)

and ends either in fully populated TokenClaims or in an InvalidTokenError
carrying one of the InvalidTokenReason values. Registry outages propagate
as StorageError; they are never reported as an invalid token.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Optional, assert_never
from uuid import UUID, uuid4

from jose import JWTError, jwt

from app.core.clock import Clock
from app.core.config import Settings
from app.core.exceptions import ConfigurationError, InvalidTokenError, InvalidTokenReason
from app.models.user import User
from app.services.jti_registry import JtiRegistry
from app.services.token_claims import JwtToken, TokenClaims, TokenType

logger = logging.getLogger(__name__)

# Claims the library must find before we look at business claims
REQUIRED_CLAIMS = {
    "require_iss": True,
    "require_aud": True,
    "require_sub": True,
    "require_iat": True,
}


class TokenService:
    """Service for turning users into tokens and tokens back into claims."""

    def __init__(
        self,
        secret_key: str,
        issuer: str,
        audience: str,
        session_ttl: timedelta,
        remember_me_ttl: timedelta,
        clock: Clock,
        jti_registry: JtiRegistry,
        algorithm: str = "HS256",
    ):
        if not secret_key:
            raise ConfigurationError("Signing key cannot be empty")
        if not issuer:
            raise ConfigurationError("Issuer cannot be empty")
        if not audience:
            raise ConfigurationError("Audience cannot be empty")
        if session_ttl <= timedelta(0) or remember_me_ttl <= timedelta(0):
            raise ConfigurationError("Token TTLs must be positive")

        self.secret_key = secret_key
        self.algorithm = algorithm
        self.issuer = issuer
        self.audience = audience
        self.session_ttl = session_ttl
        self.remember_me_ttl = remember_me_ttl
        self.clock = clock
        self.jti_registry = jti_registry

    @classmethod
    def from_settings(cls, settings: Settings, clock: Clock, jti_registry: JtiRegistry) -> "TokenService":
        return cls(
            secret_key=settings.SECRET_KEY,
            algorithm=settings.ALGORITHM,
            issuer=settings.jwt_issuer,
            audience=settings.jwt_audience,
            session_ttl=timedelta(seconds=settings.SESSION_TTL_SECONDS),
            remember_me_ttl=timedelta(seconds=settings.REMEMBER_ME_TTL_SECONDS),
            clock=clock,
            jti_registry=jti_registry,
        )

    def generate(self, user: User, token_type: TokenType) -> JwtToken:
        """
        Issue a token of the given type for a user.

        CLI tokens get a fresh jti that is whitelisted before the token is
        signed, so a CLI token never exists without its registry row.
        """
        issued_at = self._now()
        jti: Optional[UUID] = None

        match token_type:
            case TokenType.CLI:
                jti = uuid4()
                self.jti_registry.save_jti(jti, user.id, issued_at)
            case TokenType.SESSION | TokenType.REMEMBER_ME:
                pass
            case _:
                assert_never(token_type)

        token = self._sign(user.id, token_type, issued_at, jti)
        logger.info(f"Issued {token_type.value} token for user {user.id}")
        return token

    def verify(self, token: JwtToken | str) -> TokenClaims:
        """
        Verify a token and return its claims.

        Raises InvalidTokenError (malformed, expired, missing_jti, revoked).
        """
        payload = self._decode(str(token))

        try:
            subject_user_id = UUID(str(payload["sub"]))
            token_type = TokenType(payload["type"])
            issued_at = _from_timestamp(payload["iat"])
        except (KeyError, TypeError, ValueError, OverflowError, OSError) as e:
            raise InvalidTokenError(
                InvalidTokenReason.MALFORMED, f"Invalid token claims: {e}"
            ) from e

        match token_type:
            case TokenType.SESSION | TokenType.REMEMBER_ME:
                expires_at = self._expires_at_claim(payload)
                self._check_validity_window(payload, issued_at, expires_at)
                return TokenClaims.create(subject_user_id, token_type, issued_at, expires_at=expires_at)
            case TokenType.CLI:
                jti = self._verify_whitelisted_jti(payload)
                return TokenClaims.create(subject_user_id, token_type, issued_at, jti=jti)
            case _:
                assert_never(token_type)

    def refresh(self, claims: TokenClaims) -> JwtToken:
        """
        Re-issue a token from verified claims with fresh timestamps.

        The token type is preserved and CLI tokens keep their original jti,
        so the refreshed token stays revocable under the same identifier.
        The registry is not consulted here; verify() the presented token
        first when revocation must be enforced.
        """
        issued_at = self._now()
        jti: Optional[UUID] = None

        match claims.token_type:
            case TokenType.CLI:
                if claims.jti is None:
                    raise InvalidTokenError(
                        InvalidTokenReason.MISSING_JTI, "CLI token missing JTI for refresh"
                    )
                jti = claims.jti
            case TokenType.SESSION | TokenType.REMEMBER_ME:
                pass
            case _:
                assert_never(claims.token_type)

        token = self._sign(claims.subject_user_id, claims.token_type, issued_at, jti)
        logger.info(f"Refreshed {claims.token_type.value} token for user {claims.subject_user_id}")
        return token

    def revoke(self, jti: UUID) -> None:
        """Revoke a CLI token by removing its jti from the whitelist."""
        self.jti_registry.delete_jti(jti)
        logger.info(f"Revoked CLI token {jti}")

    def expires_at_for(self, token_type: TokenType, issued_at: datetime) -> Optional[datetime]:
        match token_type:
            case TokenType.SESSION:
                return issued_at + self.session_ttl
            case TokenType.REMEMBER_ME:
                return issued_at + self.remember_me_ttl
            case TokenType.CLI:
                return None
            case _:
                assert_never(token_type)

    def _sign(
        self,
        user_id: UUID,
        token_type: TokenType,
        issued_at: datetime,
        jti: Optional[UUID],
    ) -> JwtToken:
        to_encode: dict[str, Any] = {
            "iss": self.issuer,
            "aud": self.audience,
            "sub": str(user_id),
            "type": token_type.value,
            "iat": issued_at.timestamp(),
            "nbf": issued_at.timestamp(),
        }
        expires_at = self.expires_at_for(token_type, issued_at)
        if expires_at is not None:
            to_encode["exp"] = expires_at.timestamp()
        if jti is not None:
            to_encode["jti"] = str(jti)

        encoded_jwt = jwt.encode(to_encode, self.secret_key, algorithm=self.algorithm)
        return JwtToken(encoded_jwt)

    def _decode(self, token: str) -> dict[str, Any]:
        try:
            return jwt.decode(
                token,
                self.secret_key,
                algorithms=[self.algorithm],
                audience=self.audience,
                issuer=self.issuer,
                # iat/nbf/exp are checked against the injected clock, and only
                # for token types that expire
                options={"verify_exp": False, "verify_nbf": False, **REQUIRED_CLAIMS},
            )
        except JWTError as e:
            raise InvalidTokenError(
                InvalidTokenReason.MALFORMED, f"Token verification failed: {e}"
            ) from e

    def _expires_at_claim(self, payload: dict[str, Any]) -> datetime:
        try:
            return _from_timestamp(payload["exp"])
        except (KeyError, TypeError, ValueError, OverflowError, OSError) as e:
            raise InvalidTokenError(
                InvalidTokenReason.MALFORMED, "Invalid token expiry timestamp"
            ) from e

    def _verify_whitelisted_jti(self, payload: dict[str, Any]) -> UUID:
        jti_claim = payload.get("jti")
        if jti_claim is None:
            raise InvalidTokenError(InvalidTokenReason.MISSING_JTI)
        try:
            jti = UUID(str(jti_claim))
        except ValueError as e:
            raise InvalidTokenError(InvalidTokenReason.MALFORMED, "Invalid token JTI") from e

        if not self.jti_registry.has_jti(jti):
            raise InvalidTokenError(
                InvalidTokenReason.REVOKED, "CLI token JTI not in whitelist (revoked or invalid)"
            )
        return jti

    def _check_validity_window(
        self, payload: dict[str, Any], issued_at: datetime, expires_at: datetime
    ) -> None:
        """Reject tokens used before iat/nbf or after exp, by the injected clock."""
        try:
            not_before = _from_timestamp(payload.get("nbf", payload["iat"]))
        except (KeyError, TypeError, ValueError, OverflowError, OSError) as e:
            raise InvalidTokenError(
                InvalidTokenReason.MALFORMED, "Invalid token not-before timestamp"
            ) from e

        now = self._now()
        if issued_at > now or not_before > now:
            raise InvalidTokenError(InvalidTokenReason.MALFORMED, "Token is not valid yet")
        if now > expires_at:
            raise InvalidTokenError(InvalidTokenReason.EXPIRED)

    def _now(self) -> datetime:
        return self.clock.now()


def _from_timestamp(value: Any) -> datetime:
    # iat/nbf/exp keep microseconds so two tokens issued in the same second differ
    return datetime.fromtimestamp(float(value), tz=timezone.utc)
