from app.services.auth_service import AuthService
from app.services.jti_registry import FileJtiRegistry, JtiRegistry, SqlJtiRegistry
from app.services.rate_limit_service import RateLimitService, SqlRateLimitStore
from app.services.token_claims import JwtToken, TokenClaims, TokenType
from app.services.token_service import TokenService

__all__ = [
    "AuthService",
    "FileJtiRegistry",
    "JtiRegistry",
    "SqlJtiRegistry",
    "RateLimitService",
    "SqlRateLimitStore",
    "JwtToken",
    "TokenClaims",
    "TokenType",
    "TokenService",
]
