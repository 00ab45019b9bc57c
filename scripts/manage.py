#!/usr/bin/env python3
"""
Operational commands for Bookmark Bureau.

Run with: python -m scripts.manage <command> [options]

Commands:
    user:create EMAIL                 Create a user
    user:list                         List users
    user:delete EMAIL                 Delete a user
    user:change-password EMAIL        Set a new password
    user:totp EMAIL --enable|--disable
                                      Enable (prints the new secret) or disable TOTP
    user:generate-cli-token EMAIL     Issue a non-expiring, revocable CLI token
    user:revoke-cli-token JTI         Revoke a CLI token by its jti
    security:ratelimit-cleanup        Delete expired login attempts and blocks

Passwords are prompted for unless --password is given.
"""

import argparse
import getpass
import logging
import os
import sys
from typing import Callable, Optional
from urllib.parse import quote
from uuid import UUID

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from sqlalchemy.orm import Session

from app.core.clock import Clock, SystemClock
from app.core.config import settings
from app.core.database import SessionLocal
from app.core.exceptions import BookmarkBureauException
from app.core.security import PasswordHasher, TotpVerifier, generate_totp_secret
from app.services.auth_service import AuthService
from app.services.jti_registry import build_jti_registry
from app.services.rate_limit_service import RateLimitService, SqlRateLimitStore
from app.services.token_service import TokenService

logger = logging.getLogger(__name__)


def build_auth_service(db: Session, clock: Clock) -> AuthService:
    token_service = TokenService.from_settings(settings, clock, build_jti_registry(db, settings))
    rate_limit_service = RateLimitService.from_settings(settings, SqlRateLimitStore(db), clock)
    return AuthService(
        db,
        token_service,
        rate_limit_service,
        PasswordHasher(min_length=settings.PASSWORD_MIN_LENGTH),
        TotpVerifier(clock, window=settings.TOTP_WINDOW),
    )


def _read_password(args, prompt: str = "Password: ") -> str:
    if args.password is not None:
        return args.password
    password = getpass.getpass(prompt)
    if getpass.getpass("Repeat password: ") != password:
        raise ValueError("Passwords do not match")
    return password


def cmd_user_create(auth: AuthService, args) -> int:
    user = auth.create_user(args.email, _read_password(args))
    print(f"Created user {user.email} (id: {user.id})")
    return 0


def cmd_user_list(auth: AuthService, args) -> int:
    users = auth.list_users()
    if not users:
        print("No users found.")
        return 0
    for user in users:
        totp = "totp" if user.requires_totp else "-"
        print(f"{user.id}  {user.email}  {totp}  {user.created_at.isoformat()}")
    return 0


def cmd_user_delete(auth: AuthService, args) -> int:
    auth.delete_user(args.email)
    print(f"Deleted user {args.email}")
    return 0


def cmd_user_change_password(auth: AuthService, args) -> int:
    auth.change_password(args.email, _read_password(args, "New password: "))
    print(f"Password changed for {args.email}")
    return 0


def cmd_user_totp(auth: AuthService, args) -> int:
    if args.disable:
        auth.set_totp_secret(args.email, None)
        print(f"TOTP disabled for {args.email}")
        return 0

    secret = generate_totp_secret()
    user = auth.set_totp_secret(args.email, secret)
    issuer = settings.APPLICATION_NAME
    uri = (
        f"otpauth://totp/{quote(issuer)}:{quote(user.email)}"
        f"?secret={secret}&issuer={quote(issuer)}"
    )
    print(f"TOTP enabled for {user.email}")
    print(f"Secret: {secret}")
    print(f"URI: {uri}")
    return 0


def cmd_user_generate_cli_token(auth: AuthService, args) -> int:
    password = args.password if args.password is not None else getpass.getpass("Password: ")
    token, claims = auth.generate_cli_token(args.email, password)
    print(f"JTI: {claims.jti}")
    print(f"Token: {token}")
    return 0


def cmd_user_revoke_cli_token(auth: AuthService, args) -> int:
    try:
        jti = UUID(args.jti)
    except ValueError:
        print(f"Error: {args.jti} is not a valid JTI", file=sys.stderr)
        return 1

    registry = auth.token_service.jti_registry
    if registry.get(jti) is None:
        # Already gone; revocation is idempotent
        print(f"CLI token {jti} not found (already revoked)")
        return 0

    auth.token_service.revoke(jti)
    print(f"Revoked CLI token {jti}")
    return 0


def cmd_security_ratelimit_cleanup(auth: AuthService, args) -> int:
    deleted = auth.rate_limit_service.cleanup()
    print(f"Removed {deleted} expired rate limit record(s)")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="manage",
        description="Bookmark Bureau operational commands",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    create = subparsers.add_parser("user:create", help="Create a user")
    create.add_argument("email")
    create.add_argument("--password", help="Password (prompted if omitted)")
    create.set_defaults(handler=cmd_user_create)

    list_users = subparsers.add_parser("user:list", help="List users")
    list_users.set_defaults(handler=cmd_user_list)

    delete = subparsers.add_parser("user:delete", help="Delete a user")
    delete.add_argument("email")
    delete.set_defaults(handler=cmd_user_delete)

    change_password = subparsers.add_parser("user:change-password", help="Change a user's password")
    change_password.add_argument("email")
    change_password.add_argument("--password", help="New password (prompted if omitted)")
    change_password.set_defaults(handler=cmd_user_change_password)

    totp = subparsers.add_parser("user:totp", help="Enable or disable TOTP for a user")
    totp.add_argument("email")
    toggle = totp.add_mutually_exclusive_group(required=True)
    toggle.add_argument("--enable", action="store_true")
    toggle.add_argument("--disable", action="store_true")
    totp.set_defaults(handler=cmd_user_totp)

    generate = subparsers.add_parser("user:generate-cli-token", help="Issue a CLI token")
    generate.add_argument("email")
    generate.add_argument("--password", help="Password (prompted if omitted)")
    generate.set_defaults(handler=cmd_user_generate_cli_token)

    revoke = subparsers.add_parser("user:revoke-cli-token", help="Revoke a CLI token")
    revoke.add_argument("jti")
    revoke.set_defaults(handler=cmd_user_revoke_cli_token)

    cleanup = subparsers.add_parser(
        "security:ratelimit-cleanup", help="Delete expired login attempts and blocks"
    )
    cleanup.set_defaults(handler=cmd_security_ratelimit_cleanup)

    return parser


def main(
    argv: Optional[list[str]] = None,
    session_factory: Callable[[], Session] = SessionLocal,
    clock: Optional[Clock] = None,
) -> int:
    args = build_parser().parse_args(argv)

    db = session_factory()
    try:
        auth = build_auth_service(db, clock or SystemClock())
        return args.handler(auth, args)
    except (BookmarkBureauException, ValueError) as e:
        detail = e.detail if isinstance(e, BookmarkBureauException) else str(e)
        print(f"Error: {detail}", file=sys.stderr)
        return 1
    finally:
        db.close()


if __name__ == "__main__":
    logging.basicConfig(level=logging.WARNING, format="%(levelname)s - %(message)s")
    sys.exit(main())
