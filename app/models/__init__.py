from app.models.user import User
from app.models.jwt_jti import JwtJti
from app.models.login_rate_limit import FailedLoginAttempt, LoginBlock

__all__ = [
    "User",
    "JwtJti",
    "FailedLoginAttempt",
    "LoginBlock",
]
