"""
Session Manager

Maps opaque bearer tokens to account ids. Sessions live in process memory
only: a restart invalidates every token, and callers treat that as normal.

CRITICAL: `resolve` reports every failure (unknown token, expired token,
no token at all) the same way, so a caller can never tell them apart.
"""

import secrets
import threading
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

import structlog
from pydantic import BaseModel, Field

from src.ledger.errors import UnauthenticatedError

logger = structlog.get_logger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Session(BaseModel):
    token: str = Field(..., repr=False)
    user_id: str
    created_at: datetime
    last_seen_at: datetime


class SessionManager:
    """
    Process-wide session table.

    Multiple concurrent sessions per account are allowed.
    """

    def __init__(
        self,
        idle_timeout: Optional[timedelta] = timedelta(minutes=30),
        clock: Callable[[], datetime] = _utcnow,
    ):
        """
        Args:
            idle_timeout: Inactivity window after which a session expires.
                          None disables expiry.
            clock: Source of the current time (UTC).
        """
        self._sessions: dict[str, Session] = {}
        self._lock = threading.Lock()
        self._idle_timeout = idle_timeout
        self._clock = clock

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)

    def create(self, user_id: str) -> str:
        """
        Open a session for `user_id` and return its token.

        Expired sessions are dropped first, whether or not their
        tokens were ever presented again.
        """
        now = self._clock()
        with self._lock:
            self._purge_locked(now)
            token = secrets.token_urlsafe(32)
            while token in self._sessions:
                token = secrets.token_urlsafe(32)
            self._sessions[token] = Session(
                token=token,
                user_id=user_id,
                created_at=now,
                last_seen_at=now,
            )
        return token

    def _expired(self, session: Session, now: datetime) -> bool:
        if self._idle_timeout is None:
            return False
        return now - session.last_seen_at > self._idle_timeout

    def resolve(self, token: Optional[str]) -> str:
        """
        Return the account id behind `token`.

        Raises:
            UnauthenticatedError: Token absent, unknown or expired
        """
        if not token:
            raise UnauthenticatedError()

        now = self._clock()
        with self._lock:
            session = self._sessions.get(token)
            if session is None:
                raise UnauthenticatedError()
            if self._expired(session, now):
                del self._sessions[token]
                logger.info("session_expired", user_id=session.user_id)
                raise UnauthenticatedError()
            session.last_seen_at = now
            return session.user_id

    def revoke(self, token: Optional[str]) -> bool:
        """Drop one session. Unknown tokens are ignored."""
        if not token:
            return False
        with self._lock:
            return self._sessions.pop(token, None) is not None

    def revoke_all(self, user_id: str) -> int:
        """Drop every session of `user_id`; returns how many were dropped."""
        with self._lock:
            tokens = [t for t, s in self._sessions.items() if s.user_id == user_id]
            for token in tokens:
                del self._sessions[token]
        return len(tokens)

    def _purge_locked(self, now: datetime) -> int:
        tokens = [t for t, s in self._sessions.items() if self._expired(s, now)]
        for token in tokens:
            del self._sessions[token]
        if tokens:
            logger.info("sessions_purged", count=len(tokens))
        return len(tokens)

    def purge_expired(self) -> int:
        """Remove every idle session; returns how many were removed."""
        now = self._clock()
        with self._lock:
            return self._purge_locked(now)
