"""Tests for the Redis and SQL session store backends."""

from datetime import timedelta
from unittest.mock import MagicMock

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError
from sqlalchemy import update

from faucet.models.challenge import ChallengeSessionRow
from faucet.services.session_store import (
    ChallengeSession,
    InvalidSessionError,
    RedisSessionStore,
    SessionStoreError,
    get_challenge_key,
)
from tests.test_utils import utcnow


@pytest.fixture
def session():
    return ChallengeSession(
        requested_amount=25.0,
        challenge_token="ab" * 16,
        difficulty=4,
        rounds_required=3,
        rounds_completed=1,
        captcha_used=True,
    )


def test_challenge_key_is_namespaced_by_address():
    assert get_challenge_key("mv1abc") == "address:mv1abc"


class TestChallengeSession:
    def test_mapping_round_trip(self, session):
        assert ChallengeSession.from_mapping(session.to_mapping()) == session

    def test_mapping_encodes_captcha_flag(self, session):
        assert session.to_mapping()["captcha_used"] == "true"

    def test_missing_token_is_rejected(self, session):
        broken = ChallengeSession(
            requested_amount=25.0, challenge_token="", difficulty=4, rounds_required=3
        )
        with pytest.raises(InvalidSessionError, match="challenge_token"):
            broken.to_mapping()

    def test_completed_rounds_cannot_exceed_required(self):
        broken = ChallengeSession(
            requested_amount=25.0,
            challenge_token="ab",
            difficulty=4,
            rounds_required=2,
            rounds_completed=3,
        )
        with pytest.raises(InvalidSessionError):
            broken.validate()

    def test_malformed_mapping_is_rejected(self, session):
        data = session.to_mapping()
        del data["rounds_required"]

        with pytest.raises(InvalidSessionError):
            ChallengeSession.from_mapping(data)

    def test_final_round(self, session):
        assert not session.is_final_round
        assert ChallengeSession(
            requested_amount=1, challenge_token="ab", difficulty=1, rounds_required=2,
            rounds_completed=2,
        ).is_final_round


class TestRedisSessionStore:
    @pytest.fixture
    def redis_client(self):
        return MagicMock()

    @pytest.fixture
    def store(self, redis_client):
        return RedisSessionStore(redis_client)

    def test_load_missing_key_returns_none(self, store, redis_client):
        redis_client.hgetall.return_value = {}

        assert store.load("address:x") is None
        redis_client.hgetall.assert_called_once_with("address:x")

    def test_load_parses_hash(self, store, redis_client, session):
        redis_client.hgetall.return_value = session.to_mapping()

        assert store.load("address:x") == session

    def test_save_writes_fields_and_ttl_in_one_transaction(self, store, redis_client, session):
        pipe = redis_client.pipeline.return_value

        store.save("address:x", session, 1800)

        redis_client.pipeline.assert_called_once_with(transaction=True)
        pipe.hset.assert_called_once_with("address:x", mapping=session.to_mapping())
        pipe.expire.assert_called_once_with("address:x", 1800)
        pipe.execute.assert_called_once()

    def test_save_validates_before_writing(self, store, redis_client):
        broken = ChallengeSession(
            requested_amount=0, challenge_token="ab", difficulty=1, rounds_required=1
        )
        with pytest.raises(InvalidSessionError):
            store.save("address:x", broken, 1800)

        redis_client.pipeline.assert_not_called()

    def test_claim_reports_whether_key_was_removed(self, store, redis_client):
        redis_client.delete.return_value = 1
        assert store.claim("address:x") is True

        redis_client.delete.return_value = 0
        assert store.claim("address:x") is False

    @pytest.mark.parametrize("operation", ["load", "save", "claim", "ping"])
    def test_redis_errors_surface_as_store_errors(self, store, redis_client, session, operation):
        error = RedisConnectionError("connection refused")
        redis_client.hgetall.side_effect = error
        redis_client.pipeline.return_value.execute.side_effect = error
        redis_client.delete.side_effect = error
        redis_client.ping.side_effect = error

        calls = {
            "load": lambda: store.load("address:x"),
            "save": lambda: store.save("address:x", session, 1800),
            "claim": lambda: store.claim("address:x"),
            "ping": lambda: store.ping(),
        }
        with pytest.raises(SessionStoreError):
            calls[operation]()


class TestSqlSessionStore:
    def test_save_and_load(self, session_store, session):
        session_store.save("address:x", session, 1800)

        assert session_store.load("address:x") == session

    def test_load_missing(self, session_store):
        assert session_store.load("address:missing") is None

    def test_save_overwrites(self, session_store, session):
        from dataclasses import replace

        session_store.save("address:x", session, 1800)
        advanced = replace(session, challenge_token="cd" * 16, rounds_completed=2)
        session_store.save("address:x", advanced, 1800)

        assert session_store.load("address:x") == advanced

    def test_claim_removes_exactly_once(self, session_store, session):
        session_store.save("address:x", session, 1800)

        assert session_store.claim("address:x") is True
        assert session_store.claim("address:x") is False
        assert session_store.load("address:x") is None

    def _expire(self, session_factory, key):
        db = session_factory()
        db.execute(
            update(ChallengeSessionRow)
            .where(ChallengeSessionRow.key == key)
            .values(expires_at=utcnow() - timedelta(seconds=1))
        )
        db.commit()
        db.close()

    def test_expired_session_is_absent(self, session_store, session_factory, session):
        session_store.save("address:x", session, 1800)
        self._expire(session_factory, "address:x")

        assert session_store.load("address:x") is None

    def test_expired_session_cannot_be_claimed(self, session_store, session_factory, session):
        session_store.save("address:x", session, 1800)
        self._expire(session_factory, "address:x")

        assert session_store.claim("address:x") is False

    def test_purge_expired_keeps_live_sessions(self, session_store, session_factory, session):
        session_store.save("address:old", session, 1800)
        session_store.save("address:live", session, 1800)
        self._expire(session_factory, "address:old")

        assert session_store.purge_expired() == 1
        assert session_store.load("address:live") == session

    def test_ping(self, session_store):
        session_store.ping()

    def test_database_errors_surface_as_store_errors(self, session):
        from sqlalchemy import create_engine
        from sqlalchemy.orm import sessionmaker

        from faucet.services.session_store import SqlSessionStore

        # No tables created: every statement fails
        engine = create_engine("sqlite:///:memory:")
        store = SqlSessionStore(sessionmaker(bind=engine))

        with pytest.raises(SessionStoreError):
            store.load("address:x")
        with pytest.raises(SessionStoreError):
            store.save("address:x", session, 1800)
        with pytest.raises(SessionStoreError):
            store.claim("address:x")
