"""
Password digests, bearer tokens and the current-user dependency.

Messages are scoped by the `user_name` claim of a signed HS256 token; that
username is the owner key every message is filed under.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

import bcrypt
import jwt
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from smschat import storage
from smschat.config import get_settings

logger = logging.getLogger(__name__)

JWT_ALGORITHM = "HS256"
SUBJECT_CLAIM = "user_name"

bearer_scheme = HTTPBearer(auto_error=False)


class InvalidTokenError(Exception):
    """Token is malformed, badly signed, expired or lacks the subject claim."""

    def __init__(self, reason: str):
        super().__init__(reason)
        self.reason = reason


def hash_password(password: str, rounds: Optional[int] = None) -> str:
    rounds = rounds or get_settings().BCRYPT_ROUNDS
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt(rounds=rounds)).decode("utf-8")


def verify_password(password: str, password_digest: str) -> bool:
    try:
        return bcrypt.checkpw(password.encode("utf-8"), password_digest.encode("utf-8"))
    except ValueError:
        # Corrupt digest or over-long input
        return False


def issue_token(user_name: str, now: Optional[datetime] = None) -> str:
    """Signed token carrying the user_name claim, valid for JWT_EXPIRY_HOURS."""
    settings = get_settings()
    now = now or datetime.now(timezone.utc)
    payload = {
        SUBJECT_CLAIM: user_name,
        "iat": now,
        "exp": now + timedelta(hours=settings.JWT_EXPIRY_HOURS),
    }
    return jwt.encode(payload, settings.JWT_SECRET, algorithm=JWT_ALGORITHM)


def decode_token(token: str) -> str:
    """
    Verify a bearer token and return its user_name claim.

    Raises:
        InvalidTokenError: with reason "Token expired" or "Invalid token"
    """
    try:
        payload = jwt.decode(
            token,
            get_settings().JWT_SECRET,
            algorithms=[JWT_ALGORITHM],
            options={"require": ["exp"]},
        )
    except jwt.ExpiredSignatureError:
        raise InvalidTokenError("Token expired")
    except jwt.InvalidTokenError:
        raise InvalidTokenError("Invalid token")

    user_name = payload.get(SUBJECT_CLAIM)
    if not isinstance(user_name, str) or not user_name:
        raise InvalidTokenError("Invalid token")
    return user_name


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


def seed_users(db, users: dict[str, str]) -> list[str]:
    """
    Create each (user_name, password) account that does not exist yet.

    Existing accounts keep their current password. Returns the names created.
    """
    created = []
    for user_name, password in users.items():
        if storage.get_user_by_name(db, user_name) is not None:
            continue
        try:
            storage.create_user(db, user_name, hash_password(password))
        except storage.DuplicateUserError:
            # registered concurrently
            continue
        created.append(user_name)
    if created:
        logger.info(f"Seeded users: {', '.join(created)}")
    return created


async def get_current_user_name(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> str:
    """Dependency resolving the caller's owner key from the Authorization header."""
    if credentials is None or not credentials.credentials:
        raise _unauthorized("No token provided")

    try:
        return decode_token(credentials.credentials)
    except InvalidTokenError as e:
        logger.info(f"Rejected bearer token: {e.reason}")
        raise _unauthorized(e.reason)
