"""
Per-requester challenge session storage.

Two backends share one protocol:

- RedisSessionStore: a Redis hash per key with a native TTL (production default).
- SqlSessionStore: a `challenge_sessions` row with an explicit `expires_at`,
  swept periodically by the scheduler.

`claim` is the single linearization point of the faucet: it must be the
store's own atomic delete-and-report, never a read followed by a delete.
"""

from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Protocol

import redis
import structlog
from redis.exceptions import RedisError
from sqlalchemy import delete, select, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from faucet.models.challenge import ChallengeSessionRow

logger = structlog.get_logger()


class SessionStoreError(RuntimeError):
    """The session store could not be reached or did not confirm an operation."""


class InvalidSessionError(ValueError):
    """A session record is missing fields or holds out-of-range values."""


def get_challenge_key(address: str) -> str:
    return f"address:{address}"


def utcnow() -> datetime:
    return datetime.now(UTC).replace(tzinfo=None)


@dataclass(frozen=True)
class ChallengeSession:
    requested_amount: float
    challenge_token: str
    difficulty: int
    rounds_required: int
    rounds_completed: int = 1
    captcha_used: bool = False

    def validate(self) -> None:
        if not self.challenge_token:
            raise InvalidSessionError('Challenge session is missing "challenge_token"')
        if self.requested_amount <= 0:
            raise InvalidSessionError('Challenge session is missing "requested_amount"')
        if self.difficulty < 0:
            raise InvalidSessionError("Challenge session difficulty cannot be negative")
        if self.rounds_required < 1:
            raise InvalidSessionError('Challenge session is missing "rounds_required"')
        if not 1 <= self.rounds_completed <= self.rounds_required:
            raise InvalidSessionError(
                f"rounds_completed={self.rounds_completed} outside "
                f"[1, {self.rounds_required}]"
            )

    @property
    def is_final_round(self) -> bool:
        return self.rounds_completed >= self.rounds_required

    def to_mapping(self) -> dict[str, str]:
        """Flat string mapping for a Redis hash."""
        self.validate()
        return {
            "requested_amount": repr(float(self.requested_amount)),
            "challenge_token": self.challenge_token,
            "difficulty": str(self.difficulty),
            "rounds_required": str(self.rounds_required),
            "rounds_completed": str(self.rounds_completed),
            "captcha_used": "true" if self.captcha_used else "false",
        }

    @classmethod
    def from_mapping(cls, data: dict[str, str]) -> "ChallengeSession":
        try:
            session = cls(
                requested_amount=float(data["requested_amount"]),
                challenge_token=data["challenge_token"],
                difficulty=int(data["difficulty"]),
                rounds_required=int(data["rounds_required"]),
                rounds_completed=int(data["rounds_completed"]),
                captcha_used=data.get("captcha_used") == "true",
            )
        except (KeyError, ValueError) as e:
            raise InvalidSessionError(f"Stored challenge session is malformed: {e}") from e
        session.validate()
        return session


class SessionStore(Protocol):
    def load(self, key: str) -> ChallengeSession | None: ...

    def save(self, key: str, session: ChallengeSession, ttl_seconds: int) -> None: ...

    def claim(self, key: str) -> bool: ...

    def ping(self) -> None: ...

    def close(self) -> None: ...


class RedisSessionStore:
    """Sessions as Redis hashes: HSET + EXPIRE in MULTI, HGETALL, DEL."""

    def __init__(self, client: redis.Redis) -> None:
        self._redis = client

    @classmethod
    def from_url(cls, url: str) -> "RedisSessionStore":
        return cls(redis.Redis.from_url(url, decode_responses=True))

    def load(self, key: str) -> ChallengeSession | None:
        try:
            data = self._redis.hgetall(key)
        except RedisError as e:
            raise SessionStoreError(f"Redis failed to read {key}") from e
        if not data:
            return None
        return ChallengeSession.from_mapping(data)

    def save(self, key: str, session: ChallengeSession, ttl_seconds: int) -> None:
        mapping = session.to_mapping()
        try:
            pipe = self._redis.pipeline(transaction=True)
            pipe.hset(key, mapping=mapping)
            pipe.expire(key, int(ttl_seconds))
            pipe.execute()
        except RedisError as e:
            raise SessionStoreError(f"Redis failed to write {key}") from e

    def claim(self, key: str) -> bool:
        try:
            deleted = self._redis.delete(key)
        except RedisError as e:
            raise SessionStoreError(f"Redis failed to delete {key}") from e
        return int(deleted) == 1

    def ping(self) -> None:
        try:
            self._redis.ping()
        except RedisError as e:
            raise SessionStoreError("Redis is unreachable") from e

    def close(self) -> None:
        self._redis.close()


class SqlSessionStore:
    """Sessions as rows; a row past `expires_at` is treated as absent."""

    def __init__(self, session_factory: sessionmaker) -> None:
        self._session_factory = session_factory

    def load(self, key: str) -> ChallengeSession | None:
        db: Session = self._session_factory()
        try:
            row = db.scalar(
                select(ChallengeSessionRow).where(
                    ChallengeSessionRow.key == key,
                    ChallengeSessionRow.expires_at > utcnow(),
                )
            )
        except SQLAlchemyError as e:
            raise SessionStoreError(f"Database failed to read {key}") from e
        finally:
            db.close()

        if row is None:
            return None
        session = ChallengeSession(
            requested_amount=row.requested_amount,
            challenge_token=row.challenge_token,
            difficulty=row.difficulty,
            rounds_required=row.rounds_required,
            rounds_completed=row.rounds_completed,
            captcha_used=row.captcha_used,
        )
        session.validate()
        return session

    def save(self, key: str, session: ChallengeSession, ttl_seconds: int) -> None:
        session.validate()
        db: Session = self._session_factory()
        try:
            # Replace in one transaction so a reader never sees a half-written row
            db.execute(delete(ChallengeSessionRow).where(ChallengeSessionRow.key == key))
            db.add(
                ChallengeSessionRow(
                    key=key,
                    requested_amount=session.requested_amount,
                    challenge_token=session.challenge_token,
                    difficulty=session.difficulty,
                    rounds_required=session.rounds_required,
                    rounds_completed=session.rounds_completed,
                    captcha_used=session.captcha_used,
                    expires_at=utcnow() + timedelta(seconds=ttl_seconds),
                )
            )
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            raise SessionStoreError(f"Database failed to write {key}") from e
        finally:
            db.close()

    def claim(self, key: str) -> bool:
        db: Session = self._session_factory()
        try:
            result = db.execute(
                delete(ChallengeSessionRow).where(
                    ChallengeSessionRow.key == key,
                    ChallengeSessionRow.expires_at > utcnow(),
                )
            )
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            raise SessionStoreError(f"Database failed to delete {key}") from e
        finally:
            db.close()
        return result.rowcount == 1

    def purge_expired(self) -> int:
        """Delete expired rows. Returns count of deleted rows."""
        db: Session = self._session_factory()
        try:
            result = db.execute(
                delete(ChallengeSessionRow).where(ChallengeSessionRow.expires_at <= utcnow())
            )
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            raise SessionStoreError("Database failed to purge expired sessions") from e
        finally:
            db.close()
        return result.rowcount

    def ping(self) -> None:
        db: Session = self._session_factory()
        try:
            db.execute(text("SELECT 1"))
        except SQLAlchemyError as e:
            raise SessionStoreError("Database is unreachable") from e
        finally:
            db.close()

    def close(self) -> None:
        pass


def build_session_store(backend: str, *, redis_url: str, session_factory: sessionmaker):
    """Construct the configured backend. Raises ValueError for an unknown name."""
    if backend == "redis":
        logger.info("session_store_configured", backend="redis")
        return RedisSessionStore.from_url(redis_url)
    if backend == "sql":
        logger.info("session_store_configured", backend="sql")
        return SqlSessionStore(session_factory)
    raise ValueError(f"Unknown session backend: {backend}")
