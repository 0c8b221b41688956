"""Short-lived persistence of the provider access token."""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime, timedelta, timezone

import structlog
from pydantic import ValidationError as PydanticValidationError

from mail_archive_sync.models import Session, UserProfile
from mail_archive_sync.storage.local import LocalStore

logger = structlog.get_logger()


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SessionStore:
    """Keeps one Session document with an absolute expiry.

    There is no renewal: once expired, the session is purged on the next
    ``retrieve`` and the caller has to authenticate again.
    """

    def __init__(
        self,
        store: LocalStore,
        *,
        key: str = "gmail-auth",
        ttl: timedelta = timedelta(minutes=10),
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._store = store
        self._key = key
        self._ttl = ttl
        self._clock = clock

    def persist(self, access_token: str, profile: UserProfile) -> Session:
        issued_at = self._clock()
        session = Session(
            access_token=access_token,
            profile=profile,
            issued_at=issued_at,
            expires_at=issued_at + self._ttl,
        )
        self._store.set(self._key, session.model_dump_json())
        logger.info("session_persisted", account=profile.email, expires_at=session.expires_at.isoformat())
        return session

    def retrieve(self) -> Session | None:
        raw = self._store.get(self._key)
        if raw is None:
            return None

        try:
            session = Session.model_validate_json(raw)
        except PydanticValidationError as exc:
            logger.warning("session_unreadable", error=str(exc))
            self.invalidate()
            return None

        if session.is_expired(self._clock()):
            logger.info("session_expired", account=session.profile.email)
            self.invalidate()
            return None

        return session

    def invalidate(self) -> None:
        self._store.remove(self._key)
        logger.info("session_invalidated")
