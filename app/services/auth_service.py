import logging
from typing import List, NoReturn, Optional
from uuid import UUID

from sqlalchemy.orm import Session

from app.core.exceptions import (
    AlreadyExistsError,
    InvalidCredentialsError,
    InvalidTokenError,
    InvalidTokenReason,
    NotFoundError,
)
from app.core.security import DUMMY_PASSWORD_HASH, PasswordHasher, TotpVerifier
from app.models.user import User
from app.services.rate_limit_service import RateLimitService
from app.services.token_claims import JwtToken, TokenClaims, TokenType
from app.services.token_service import TokenService

logger = logging.getLogger(__name__)


def normalize_email(email: str) -> str:
    return email.strip().lower()


class AuthService:
    """Service for handling authentication business logic."""

    def __init__(
        self,
        db: Session,
        token_service: TokenService,
        rate_limit_service: RateLimitService,
        password_hasher: PasswordHasher,
        totp_verifier: TotpVerifier,
    ):
        self.db = db
        self.token_service = token_service
        self.rate_limit_service = rate_limit_service
        self.password_hasher = password_hasher
        self.totp_verifier = totp_verifier

    def find_by_id(self, user_id: UUID) -> Optional[User]:
        """Get a user by ID."""
        return self.db.query(User).filter(User.id == user_id).first()

    def find_by_email(self, email: str) -> Optional[User]:
        """Get a user by email address (case-insensitive)."""
        return self.db.query(User).filter(User.email == normalize_email(email)).first()

    def login(
        self,
        email: str,
        password: str,
        client_ip: str,
        totp_code: Optional[str] = None,
        remember_me: bool = False,
    ) -> tuple[User, JwtToken, TokenClaims]:
        """
        Authenticate a user and issue a session (or remember-me) token.

        Every failure is recorded against both the email and the client
        address and reported as the same InvalidCredentialsError, so callers
        cannot tell an unknown account from a wrong password or TOTP code.
        Raises RateLimitExceededError before touching credentials when
        either dimension is blocked.
        """
        username = normalize_email(email)
        self.rate_limit_service.check_block(username, client_ip)

        user = self.find_by_email(username)
        if user is None:
            # Burn a bcrypt verify so unknown accounts take as long as known ones
            self.password_hasher.verify(password, DUMMY_PASSWORD_HASH)
            self._fail(username, client_ip, "unknown user")

        if not self.password_hasher.verify(password, user.password_hash):
            self._fail(username, client_ip, "wrong password")

        if user.requires_totp:
            if not totp_code:
                self._fail(username, client_ip, "missing TOTP code")
            if not self.totp_verifier.verify(totp_code, user.totp_secret):
                self._fail(username, client_ip, "invalid TOTP code")

        self.rate_limit_service.clear_username(username)

        token_type = TokenType.REMEMBER_ME if remember_me else TokenType.SESSION
        token = self.token_service.generate(user, token_type)
        claims = self.token_service.verify(token)

        logger.info(f"User {user.id} logged in ({token_type.value})")
        return user, token, claims

    def refresh(self, token: JwtToken | str) -> tuple[JwtToken, TokenClaims]:
        """
        Exchange a valid token for a fresh one of the same type.

        The presented token is verified first, so revoked CLI tokens cannot
        be refreshed.
        """
        claims = self.token_service.verify(token)
        if self.find_by_id(claims.subject_user_id) is None:
            raise InvalidTokenError(InvalidTokenReason.MALFORMED, "Token subject no longer exists")

        new_token = self.token_service.refresh(claims)
        return new_token, self.token_service.verify(new_token)

    def _fail(self, username: str, client_ip: str, reason: str) -> NoReturn:
        self.rate_limit_service.record_failure(username, client_ip)
        logger.info(f"Failed login for {username} from {client_ip}: {reason}")
        raise InvalidCredentialsError()

    # User management (operational CLI)

    def create_user(self, email: str, password: str) -> User:
        """Create a user. Raises AlreadyExistsError or WeakPasswordError."""
        email = normalize_email(email)
        if self.find_by_email(email):
            raise AlreadyExistsError("User", f"User with email {email} already exists")

        user = User(email=email, password_hash=self.password_hasher.hash(password))
        self.db.add(user)
        self.db.commit()
        self.db.refresh(user)

        logger.info(f"Created user {user.id}")
        return user

    def change_password(self, email: str, new_password: str) -> User:
        user = self._get_user_or_404(email)
        user.password_hash = self.password_hasher.hash(new_password)
        self.db.commit()
        logger.info(f"Changed password for user {user.id}")
        return user

    def set_totp_secret(self, email: str, secret: Optional[str]) -> User:
        """Enable TOTP with the given secret, or disable it with None."""
        user = self._get_user_or_404(email)
        user.totp_secret = secret
        self.db.commit()
        logger.info(f"TOTP {'enabled' if secret else 'disabled'} for user {user.id}")
        return user

    def delete_user(self, email: str) -> None:
        user = self._get_user_or_404(email)
        user_id = user.id
        self.db.delete(user)
        self.db.commit()
        logger.info(f"Deleted user {user_id}")

    def list_users(self) -> List[User]:
        return self.db.query(User).order_by(User.email).all()

    def generate_cli_token(self, email: str, password: str) -> tuple[JwtToken, TokenClaims]:
        """
        Issue a CLI token after checking the password.

        Operator tooling, so the login rate limiter is not involved.
        """
        user = self.find_by_email(email)
        if user is None or not self.password_hasher.verify(password, user.password_hash):
            raise InvalidCredentialsError()

        token = self.token_service.generate(user, TokenType.CLI)
        return token, self.token_service.verify(token)

    def _get_user_or_404(self, email: str) -> User:
        user = self.find_by_email(email)
        if user is None:
            raise NotFoundError("User")
        return user
