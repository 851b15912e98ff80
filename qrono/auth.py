"""
Accounts, bearer tokens and the private-mode password re-check.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from jose import JWTError, jwt
from passlib.context import CryptContext

from qrono.db import DbClient, UserRecord
from qrono.errors import InvalidCredentials, InvalidInput, invalid_token, no_token

logger = logging.getLogger(__name__)

pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password_hash(password: str, password_hash: str) -> bool:
    return pwd_context.verify(password, password_hash)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AuthService:
    """
    Issues and checks signed tokens whose only claim is the user id.

    ``clock`` returns the current aware UTC datetime; tests swap it to move
    across the token expiry boundary.
    """

    def __init__(
        self,
        db: DbClient,
        *,
        secret: str,
        algorithm: str = "HS256",
        token_ttl: timedelta = timedelta(hours=5),
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.db = db
        self.secret = secret
        self.algorithm = algorithm
        self.token_ttl = token_ttl
        self.clock = clock

    def register(self, username: str, password: str) -> UserRecord:
        if not username or not password:
            raise InvalidInput("Please enter all fields")
        user = self.db.create_user(username, hash_password(password))
        logger.info("Registered user %s", user.id)
        return user

    def login(self, username: str, password: str) -> str:
        if not username or not password:
            raise InvalidInput("Please enter all fields")
        user = self.db.get_user_by_username(username)
        if user is None or not verify_password_hash(password, user.password_hash):
            raise InvalidCredentials()
        return self.issue_token(user.id)

    def issue_token(self, user_id: int) -> str:
        expires_at = self.clock() + self.token_ttl
        claims = {"sub": str(user_id), "exp": expires_at.timestamp()}
        return jwt.encode(claims, self.secret, algorithm=self.algorithm)

    def authenticate(self, token: Optional[str]) -> int:
        if not token:
            raise no_token()
        try:
            # Expiry is compared against our own clock below.
            claims = jwt.decode(
                token,
                self.secret,
                algorithms=[self.algorithm],
                options={"verify_exp": False},
            )
            user_id = int(claims["sub"])
            expires_at = float(claims["exp"])
        except (JWTError, KeyError, TypeError, ValueError):
            raise invalid_token()
        if self.clock().timestamp() >= expires_at:
            raise invalid_token()
        return user_id

    def current_user(self, user_id: int) -> UserRecord:
        user = self.db.get_user(user_id)
        if user is None:
            raise invalid_token()
        return user

    def verify_password(self, user_id: int, password: str) -> None:
        """Re-check the password of a signed-in user. Grants nothing server-side."""
        if not password:
            raise InvalidInput("Password is required")
        user = self.current_user(user_id)
        if not verify_password_hash(password, user.password_hash):
            raise InvalidCredentials("The password you entered is incorrect.")
