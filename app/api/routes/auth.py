import logging

from fastapi import APIRouter, Depends, Request

from app.api.deps import (
    get_auth_service,
    get_bearer_token,
    get_current_claims,
    get_current_user,
)
from app.core.config import settings
from app.core.request_utils import get_client_ip
from app.models.user import User
from app.schemas.auth import LoginRequest, MeResponse, TokenResponse, UserResponse
from app.services.auth_service import AuthService
from app.services.token_claims import JwtToken, TokenClaims

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["Authentication"])


def _token_response(token: JwtToken, claims: TokenClaims) -> TokenResponse:
    return TokenResponse(
        token=str(token),
        kind=claims.token_type.value,
        expires_at=claims.expires_at,
    )


def _user_response(user: User) -> UserResponse:
    return UserResponse(
        id=user.id,
        email=user.email,
        totp_enabled=user.requires_totp,
        created_at=user.created_at,
    )


@router.post("/login", response_model=TokenResponse)
def login(
    request: Request,
    data: LoginRequest,
    auth_service: AuthService = Depends(get_auth_service),
):
    """
    Authenticate user and return a bearer token.

    Responds 401 for any credential failure and 429 (with Retry-After)
    while the account or the client address is blocked.
    """
    client_ip = get_client_ip(request, settings.TRUST_PROXY_HEADERS)
    _, token, claims = auth_service.login(
        data.email,
        data.password,
        client_ip,
        totp_code=data.totp_code,
        remember_me=data.remember_me,
    )
    return _token_response(token, claims)


@router.post("/refresh", response_model=TokenResponse)
def refresh_token(
    token: str = Depends(get_bearer_token),
    auth_service: AuthService = Depends(get_auth_service),
):
    """Exchange the presented bearer token for a fresh one of the same kind."""
    new_token, claims = auth_service.refresh(token)
    return _token_response(new_token, claims)


@router.get("/me", response_model=MeResponse)
def get_me(
    claims: TokenClaims = Depends(get_current_claims),
    current_user: User = Depends(get_current_user),
):
    """Get current user info and the kind of token used."""
    return MeResponse(
        user=_user_response(current_user),
        token_kind=claims.token_type.value,
        token_issued_at=claims.issued_at,
        token_expires_at=claims.expires_at,
    )
