from pydantic_settings import BaseSettings
from typing import Literal, Optional


class Settings(BaseSettings):
    # Environment
    ENVIRONMENT: str = "development"

    # Database
    DATABASE_URL: str

    # JWT
    SECRET_KEY: str
    ALGORITHM: str = "HS256"
    APPLICATION_NAME: str = "bookmark-bureau"
    JWT_ISSUER: Optional[str] = None
    JWT_AUDIENCE: Optional[str] = None
    SESSION_TTL_SECONDS: int = 60 * 60 * 24
    REMEMBER_ME_TTL_SECONDS: int = 60 * 60 * 24 * 14

    # CLI token whitelist backing
    JTI_STORAGE: Literal["database", "file"] = "database"
    JTI_FILE_PATH: str = "var/jwt_jti.csv"

    # Login rate limiting
    RATE_LIMIT_USERNAME_THRESHOLD: int = 10
    RATE_LIMIT_IP_THRESHOLD: int = 100
    RATE_LIMIT_WINDOW_MINUTES: int = 10
    RATE_LIMIT_CLEANUP_INTERVAL_MINUTES: int = 60
    TRUST_PROXY_HEADERS: bool = False

    # Passwords / TOTP
    PASSWORD_MIN_LENGTH: int = 12
    BCRYPT_ROUNDS: int = 12
    TOTP_WINDOW: int = 1

    # CORS
    FRONTEND_URL: str = "http://localhost:4200"

    @property
    def jwt_issuer(self) -> str:
        return self.JWT_ISSUER or self.APPLICATION_NAME

    @property
    def jwt_audience(self) -> str:
        return self.JWT_AUDIENCE or f"{self.APPLICATION_NAME}-api"

    def validate_required_secrets(self) -> list[str]:
        """Validate that critical secrets and limits are sane. Returns list of errors."""
        errors = []
        if not self.SECRET_KEY or len(self.SECRET_KEY.encode()) < 32:
            errors.append("SECRET_KEY must be set and at least 32 bytes (256 bits) for HS256")
        if not self.DATABASE_URL:
            errors.append("DATABASE_URL must be set")
        if not self.APPLICATION_NAME:
            errors.append("APPLICATION_NAME cannot be empty")
        if self.SESSION_TTL_SECONDS <= 0 or self.REMEMBER_ME_TTL_SECONDS <= 0:
            errors.append("Token TTLs must be positive")
        if (
            self.RATE_LIMIT_USERNAME_THRESHOLD <= 0
            or self.RATE_LIMIT_IP_THRESHOLD <= 0
            or self.RATE_LIMIT_WINDOW_MINUTES <= 0
        ):
            errors.append("Rate limit thresholds and window must be positive")
        if self.TOTP_WINDOW < 1:
            errors.append("TOTP_WINDOW must be at least 1")
        return errors

    class Config:
        env_file = ".env"
        case_sensitive = True


settings = Settings()
