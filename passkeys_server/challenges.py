"""Single-use challenge storage.

Every issued challenge lives under its own random id until the first
verification attempt consumes it or the TTL elapses. Both backends offer the
same operations; ``take`` is the atomic read-and-delete used by verification
so that concurrent attempts on one id observe the record at most once.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Dict, Optional, Protocol

from sqlalchemy import delete

from .database import Database
from .models import Challenge

LOGGER = logging.getLogger(__name__)

AUTHENTICATION = "authentication"
REGISTRATION = "registration"


def _as_aware(value: datetime) -> datetime:
    # SQLite hands back naive datetimes even for timezone-aware columns
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


@dataclass(frozen=True)
class ChallengeRecord:
    challenge: str
    ceremony: str = AUTHENTICATION
    username: Optional[str] = None
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def expired(self, ttl: timedelta, now: Optional[datetime] = None) -> bool:
        now = now or datetime.now(timezone.utc)
        return _as_aware(self.created_at) + ttl <= now


class ChallengeStore(Protocol):
    def put(self, challenge_id: str, record: ChallengeRecord) -> None:
        ...

    def get(self, challenge_id: str) -> Optional[ChallengeRecord]:
        ...

    def delete(self, challenge_id: str) -> None:
        ...

    def take(self, challenge_id: str) -> Optional[ChallengeRecord]:
        ...

    def purge_expired(self) -> int:
        ...


class MemoryChallengeStore:
    def __init__(self, ttl_seconds: int = 300) -> None:
        self.ttl = timedelta(seconds=ttl_seconds)
        self._challenges: Dict[str, ChallengeRecord] = {}
        self._lock = threading.Lock()

    def put(self, challenge_id: str, record: ChallengeRecord) -> None:
        with self._lock:
            self._challenges[challenge_id] = record

    def get(self, challenge_id: str) -> Optional[ChallengeRecord]:
        with self._lock:
            record = self._challenges.get(challenge_id)
            if record is not None and record.expired(self.ttl):
                self._challenges.pop(challenge_id, None)
                return None
            return record

    def delete(self, challenge_id: str) -> None:
        with self._lock:
            self._challenges.pop(challenge_id, None)

    def take(self, challenge_id: str) -> Optional[ChallengeRecord]:
        with self._lock:
            record = self._challenges.pop(challenge_id, None)
        if record is None or record.expired(self.ttl):
            return None
        return record

    def purge_expired(self) -> int:
        now = datetime.now(timezone.utc)
        with self._lock:
            stale = [key for key, rec in self._challenges.items() if rec.expired(self.ttl, now)]
            for key in stale:
                del self._challenges[key]
        return len(stale)


class DatabaseChallengeStore:
    def __init__(self, db: Database, ttl_seconds: int = 300) -> None:
        self.db = db
        self.ttl = timedelta(seconds=ttl_seconds)

    @staticmethod
    def _to_record(row: Challenge) -> ChallengeRecord:
        return ChallengeRecord(
            challenge=row.challenge,
            ceremony=row.ceremony,
            username=row.username,
            created_at=_as_aware(row.created_at),
        )

    def put(self, challenge_id: str, record: ChallengeRecord) -> None:
        with self.db.session() as session:
            session.merge(
                Challenge(
                    id=challenge_id,
                    challenge=record.challenge,
                    ceremony=record.ceremony,
                    username=record.username,
                    created_at=record.created_at,
                )
            )

    def get(self, challenge_id: str) -> Optional[ChallengeRecord]:
        with self.db.session() as session:
            row = session.get(Challenge, challenge_id)
            if row is None:
                return None
            record = self._to_record(row)
        if record.expired(self.ttl):
            self.delete(challenge_id)
            return None
        return record

    def delete(self, challenge_id: str) -> None:
        with self.db.session() as session:
            session.execute(delete(Challenge).where(Challenge.id == challenge_id))

    def take(self, challenge_id: str) -> Optional[ChallengeRecord]:
        with self.db.session() as session:
            row = session.get(Challenge, challenge_id)
            if row is None:
                return None
            record = self._to_record(row)
            result = session.execute(delete(Challenge).where(Challenge.id == challenge_id))
            if result.rowcount != 1:
                LOGGER.warning("Challenge %s consumed by a concurrent request", challenge_id)
                return None
        if record.expired(self.ttl):
            return None
        return record

    def purge_expired(self) -> int:
        cutoff = datetime.now(timezone.utc) - self.ttl
        with self.db.session() as session:
            result = session.execute(delete(Challenge).where(Challenge.created_at <= cutoff))
            return result.rowcount or 0
