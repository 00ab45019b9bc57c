from typing import Optional

from fastapi import Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.orm import Session

from app.core.clock import Clock, SystemClock
from app.core.config import settings
from app.core.database import get_db
from app.core.exceptions import InvalidTokenError, InvalidTokenReason
from app.core.security import PasswordHasher, TotpVerifier
from app.models.user import User
from app.services.auth_service import AuthService
from app.services.jti_registry import build_jti_registry
from app.services.rate_limit_service import RateLimitService, SqlRateLimitStore
from app.services.token_claims import TokenClaims
from app.services.token_service import TokenService


# HTTP Bearer token scheme; missing credentials are reported by get_current_claims
security = HTTPBearer(auto_error=False)

_system_clock = SystemClock()


def get_clock() -> Clock:
    """Clock dependency, overridden with a FrozenClock in tests."""
    return _system_clock


def get_token_service(
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
) -> TokenService:
    return TokenService.from_settings(settings, clock, build_jti_registry(db, settings))


def get_rate_limit_service(
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
) -> RateLimitService:
    return RateLimitService.from_settings(settings, SqlRateLimitStore(db), clock)


def get_auth_service(
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
    token_service: TokenService = Depends(get_token_service),
    rate_limit_service: RateLimitService = Depends(get_rate_limit_service),
) -> AuthService:
    return AuthService(
        db,
        token_service,
        rate_limit_service,
        PasswordHasher(min_length=settings.PASSWORD_MIN_LENGTH),
        TotpVerifier(clock, window=settings.TOTP_WINDOW),
    )


def get_bearer_token(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> str:
    """Raw bearer token from the Authorization header."""
    if credentials is None or not credentials.credentials:
        raise InvalidTokenError(InvalidTokenReason.MALFORMED, "Not authenticated")
    return credentials.credentials


def get_current_claims(
    token: str = Depends(get_bearer_token),
    token_service: TokenService = Depends(get_token_service),
) -> TokenClaims:
    """
    Dependency to get verified claims from the bearer token.
    Raises InvalidTokenError (401) if the token is malformed, expired or revoked.
    """
    return token_service.verify(token)


def get_current_user(
    claims: TokenClaims = Depends(get_current_claims),
    auth_service: AuthService = Depends(get_auth_service),
) -> User:
    """
    Dependency to get the current authenticated user.
    A valid token whose user has since been deleted is rejected as malformed.
    """
    user = auth_service.find_by_id(claims.subject_user_id)
    if user is None:
        raise InvalidTokenError(InvalidTokenReason.MALFORMED, "Token subject no longer exists")
    return user
