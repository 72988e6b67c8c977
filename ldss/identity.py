"""
Identity gate: developer registration, login and bearer-session lookup.

Sessions are 30-day bearer tokens (configurable). There is no logout or
revocation; expiry is checked when a token is used.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable, Optional

from passlib.context import CryptContext

from ldss.db import DbClient, SessionRecord, UserRecord
from ldss.errors import AuthenticationError, ValidationError
from ldss.projects import new_id

logger = logging.getLogger(__name__)

MIN_PASSWORD_LENGTH = 8
SECONDS_PER_DAY = 24 * 60 * 60

pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")


@dataclass
class AuthResult:
    user: UserRecord
    session: SessionRecord


class IdentityGate:
    def __init__(
        self,
        db: DbClient,
        *,
        session_ttl_days: int = 30,
        clock: Callable[[], float] = time.time,
    ):
        self.db = db
        self.session_ttl_days = session_ttl_days
        self.clock = clock

    def register_user(
        self, email: str, password: str, name: Optional[str] = None
    ) -> AuthResult:
        if not email or not password:
            raise ValidationError("Email and password required")
        if len(password) < MIN_PASSWORD_LENGTH:
            raise ValidationError(
                f"Password must be at least {MIN_PASSWORD_LENGTH} characters"
            )
        if self.db.get_user_by_email(email) is not None:
            raise ValidationError("Email already registered")

        user = UserRecord(
            id=new_id("user_"),
            email=email,
            password_hash=pwd_context.hash(password),
            name=name,
            created_at=self.clock(),
        )
        self.db.create_user(user)
        # A failure here leaves the user row without a session; not compensated.
        session = self.create_session(user.id)
        logger.info("User registered: %s", user.id)
        return AuthResult(user=user, session=session)

    def login_user(self, email: str, password: str) -> AuthResult:
        if not email or not password:
            raise ValidationError("Email and password required")
        user = self.db.get_user_by_email(email)
        if user is None or not pwd_context.verify(password, user.password_hash):
            raise AuthenticationError("Invalid credentials")

        now = self.clock()
        self.db.update_last_login(user.id, now)
        user.last_login = now
        session = self.create_session(user.id)
        logger.info("User logged in: %s", user.id)
        return AuthResult(user=user, session=session)

    def create_session(self, user_id: str) -> SessionRecord:
        now = self.clock()
        session = SessionRecord(
            id=new_id("session_", 16),
            user_id=user_id,
            token=new_id("ldss_session_", 32),
            created_at=now,
            expires_at=now + self.session_ttl_days * SECONDS_PER_DAY,
        )
        self.db.create_session(session)
        return session

    def authenticate(self, token: str) -> str:
        """Resolve a bearer token to its user id."""
        session = self.db.get_session(token) if token else None
        if session is None:
            raise AuthenticationError("Invalid session")
        if session.expires_at <= self.clock():
            raise AuthenticationError("Session expired")
        return session.user_id
