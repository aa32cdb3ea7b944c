"""
Authentication utilities for JWT token issuing and verification.

Users live in an external identity provider. A token's ``sub`` claim is the
user id stored on bookings and its ``role`` claim drives authorization.
"""

import enum
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

from jose import ExpiredSignatureError, JWTError, jwt

from ..config import Settings
from .exceptions import InvalidTokenError
from .logging_config import log_security_event


class UserRole(str, enum.Enum):
    USER = "user"
    ORGANIZER = "organizer"
    ADMIN = "admin"


@dataclass(frozen=True)
class AuthenticatedUser:
    """Identity extracted from a verified token."""
    user_id: str
    role: UserRole = UserRole.USER
    email: Optional[str] = None

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN


def create_access_token(
    user_id: str,
    settings: Settings,
    role: UserRole = UserRole.USER,
    email: Optional[str] = None,
    expires_delta: Optional[timedelta] = None
) -> str:
    """
    Create a signed JWT access token.

    Args:
        user_id: Subject of the token
        settings: Application settings holding the signing key
        role: Role claim
        email: Optional email claim, used as the notification recipient
        expires_delta: Optional custom expiration time

    Returns:
        The encoded JWT token
    """
    expire = datetime.now(timezone.utc) + (
        expires_delta or timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)
    )
    to_encode = {"sub": user_id, "role": UserRole(role).value, "exp": expire}
    if email:
        to_encode["email"] = email

    return jwt.encode(to_encode, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


class TokenAuthProvider:
    """Verifies bearer tokens signed with the shared secret."""

    def __init__(self, settings: Settings):
        self.settings = settings

    def verify(self, token: str) -> AuthenticatedUser:
        """
        Decode a token into the user it identifies.

        Raises:
            InvalidTokenError: If the token is malformed, forged, expired or
                lacks a subject or known role
        """
        try:
            payload = jwt.decode(
                token,
                self.settings.SECRET_KEY,
                algorithms=[self.settings.ALGORITHM]
            )
        except ExpiredSignatureError:
            log_security_event("token_expired", {})
            raise InvalidTokenError("Token has expired")
        except JWTError as e:
            log_security_event("token_rejected", {"reason": str(e)})
            raise InvalidTokenError()

        user_id = payload.get("sub")
        if not user_id:
            log_security_event("token_rejected", {"reason": "missing subject"})
            raise InvalidTokenError()

        try:
            role = UserRole(payload.get("role", UserRole.USER.value))
        except ValueError:
            log_security_event("token_rejected", {"reason": "unknown role", "role": payload.get("role")})
            raise InvalidTokenError()

        return AuthenticatedUser(user_id=str(user_id), role=role, email=payload.get("email"))
