"""
Session Management Module

Server-side sessions with a single live session per user. Starting a session
removes every earlier session of that user first, under a per-user lock, so
no two sessions of one user are valid at the same time. Also carries the
cookie transport: the token travels in one HttpOnly, SameSite=Strict cookie.
"""

import secrets
import threading
from dataclasses import dataclass
from datetime import datetime, timezone, timedelta
from typing import Dict, List, Optional

from fastapi import Response

from .config import get_config
from .errors import InternalError
from .logging_config import get_logger, log_action
from .storage import StorageInterface, StorageRecord


LOCK_STRIPES = 64


@dataclass
class Session(StorageRecord):
    """Authenticated session owned by exactly one user"""
    token: str
    user_id: str
    expires_at: datetime

    def is_valid(self, now: Optional[datetime] = None) -> bool:
        """A session is already expired at its expiry instant"""
        now = now or datetime.now(timezone.utc)
        return now < self.expires_at

    def seconds_remaining(self, now: Optional[datetime] = None) -> float:
        now = now or datetime.now(timezone.utc)
        return (self.expires_at - now).total_seconds()

    def __repr__(self) -> str:
        return f"Session(id={self.id!r}, user_id={self.user_id!r}, expires_at={self.expires_at!r})"

    @classmethod
    def from_dict(cls, data: Dict) -> 'Session':
        return cls(
            id=data['id'],
            created_at=datetime.fromisoformat(data['created_at']),
            updated_at=datetime.fromisoformat(data['updated_at']),
            token=data['token'],
            user_id=data['user_id'],
            expires_at=datetime.fromisoformat(data['expires_at']),
        )


class SessionManager:
    """Starts, validates and ends sessions"""

    def __init__(self, storage: StorageInterface, session_duration: Optional[timedelta] = None):
        config = get_config()
        self.storage = storage
        self.sessions_table = "sessions"
        self.session_duration = session_duration or timedelta(days=config.session_duration_days)
        self.expiry_warning = timedelta(seconds=config.session_expiry_warning_seconds)
        self.logger = get_logger("banking_demo.sessions")

        # Fixed pool; users sharing a stripe only serialize with each other
        self._user_locks: List[threading.Lock] = [threading.Lock() for _ in range(LOCK_STRIPES)]

    def _user_lock(self, user_id: str) -> threading.Lock:
        return self._user_locks[hash(user_id) % LOCK_STRIPES]

    @staticmethod
    def is_valid(session: Session, now: Optional[datetime] = None) -> bool:
        return session.is_valid(now)

    def expires_soon(self, session: Session, now: Optional[datetime] = None) -> bool:
        """True while the session is valid but inside the warning window"""
        remaining = session.seconds_remaining(now)
        return 0 < remaining < self.expiry_warning.total_seconds()

    def start_session(self, user_id: str, now: Optional[datetime] = None) -> Session:
        """
        Replace every session of user_id with one fresh session.

        Returns:
            The new Session; its token is the cookie value
        """
        now = now or datetime.now(timezone.utc)

        with self._user_lock(user_id), self.storage.atomic():
            removed = self.storage.delete_where(self.sessions_table, {"user_id": user_id})

            session = Session(
                id=secrets.token_hex(8),
                created_at=now,
                updated_at=now,
                token=secrets.token_urlsafe(32),
                user_id=user_id,
                expires_at=now + self.session_duration,
            )
            # Keyed by token so lookups and deletes by token hit the primary key
            self.storage.insert(self.sessions_table, session.token, session.to_dict())

        log_action(
            self.logger, "info", "Session started",
            user_id=user_id, action="start_session", resource=f"session:{session.id}",
            extra={"replaced_sessions": removed, "expires_at": session.expires_at.isoformat()}
        )
        return session

    def get_session(self, token: str) -> Optional[Session]:
        if not token:
            return None
        data = self.storage.load(self.sessions_table, token)
        if data:
            return Session.from_dict(data)
        return None

    def get_valid_session(self, token: str, now: Optional[datetime] = None) -> Optional[Session]:
        """Session for token if it exists and has not expired"""
        session = self.get_session(token)
        if session and session.is_valid(now):
            return session
        return None

    def end_session(self, token: str) -> bool:
        """
        Delete the session for token.

        Returns:
            True if a session was removed, False if there was none

        Raises:
            InternalError: If the session is still stored after deletion
        """
        if not token or not self.storage.exists(self.sessions_table, token):
            return False

        self.storage.delete(self.sessions_table, token)

        if self.storage.exists(self.sessions_table, token):
            log_action(self.logger, "error", "Session survived deletion", action="end_session")
            raise InternalError("Failed to end session")

        log_action(self.logger, "info", "Session ended", action="end_session")
        return True


def set_session_cookie(response: Response, token: str) -> None:
    """Attach the session token cookie to an outgoing response"""
    config = get_config()
    response.set_cookie(
        key=config.session_cookie_name,
        value=token,
        max_age=config.session_max_age_seconds,
        path="/",
        httponly=True,
        samesite="strict",
    )


def clear_session_cookie(response: Response) -> None:
    """Expire the session cookie on the client"""
    config = get_config()
    response.set_cookie(
        key=config.session_cookie_name,
        value="",
        max_age=0,
        path="/",
        httponly=True,
        samesite="strict",
    )
