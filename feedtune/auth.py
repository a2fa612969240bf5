"""Local session provider for FeedTune."""

import logging
import re
import secrets
from datetime import timedelta
from typing import Optional

from .cache import TtlCache
from .config import SESSION_TTL_SECONDS
from .controllers import NotAuthenticatedError, ValidationError
from .db import Database
from .models import Session, User, utcnow

logger = logging.getLogger(__name__)

SESSION_CACHE_KEY = "feedtune-session"

EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


class SessionProvider:
    """Signs users in by email and keeps the session in the TTL cache.

    Args:
        db: Database holding the users table
        cache: TtlCache the session is stored in
        ttl: Session lifetime in seconds
    """

    def __init__(self, db: Database, cache: TtlCache, ttl: float = SESSION_TTL_SECONDS):
        self.db = db
        self.cache = cache
        self.ttl = ttl

    def sign_in(self, email: str) -> Session:
        """Start a session, creating the user on first sign-in.

        Raises:
            ValidationError: If the email address is malformed
        """
        email = (email or "").strip().lower()
        if not EMAIL_RE.match(email):
            raise ValidationError("email", f"Invalid email address: {email!r}")

        user = self.db.get_user_by_email(email)
        if user is None:
            user = self.db.add_user(email)
            logger.info("Created user %s", email)

        now = utcnow()
        self.db.update_user_last_sign_in(user.id, now)
        user.last_sign_in_at = now

        session = Session(
            access_token=secrets.token_urlsafe(32),
            user=user,
            expires_at=now + timedelta(seconds=self.ttl),
        )
        self.cache.set(SESSION_CACHE_KEY, session.to_dict(), ttl=self.ttl)
        return session

    def get_session(self) -> Optional[Session]:
        data = self.cache.get(SESSION_CACHE_KEY)
        if not data:
            return None
        try:
            session = Session.from_dict(data)
        except (KeyError, TypeError) as e:
            logger.warning("Dropping malformed session: %s", e)
            self.cache.remove(SESSION_CACHE_KEY)
            return None
        if session.expires_at is None or session.is_expired():
            self.cache.remove(SESSION_CACHE_KEY)
            return None
        return session

    def get_user(self) -> Optional[User]:
        session = self.get_session()
        return session.user if session else None

    def require_user(self) -> User:
        """Return the signed-in user.

        Raises:
            NotAuthenticatedError: If nobody is signed in
        """
        user = self.get_user()
        if user is None:
            raise NotAuthenticatedError("Not signed in. Run 'feedtune login <email>' first.")
        return user

    def sign_out(self) -> None:
        self.cache.remove(SESSION_CACHE_KEY)
