from unittest.mock import AsyncMock

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

import faucet.main as main_module
from faucet.config import settings
from faucet.database import Base
from faucet.dependencies import get_captcha_verifier, get_session_store, get_transfer_client
from faucet.main import app
from faucet.middleware.rate_limit import limiter
from faucet.services.session_store import SqlSessionStore
from tests.test_utils import make_address


@pytest.fixture(autouse=True)
def pow_settings(monkeypatch):
    """Cheap proof-of-work parameters so tests solve rounds quickly."""
    monkeypatch.setattr(settings, "challenge_size", 16)
    monkeypatch.setattr(settings, "difficulty", 1)
    monkeypatch.setattr(settings, "min_amount", 1)
    monkeypatch.setattr(settings, "max_amount", 100)
    monkeypatch.setattr(settings, "min_challenges", 1)
    monkeypatch.setattr(settings, "max_challenges", 3)
    monkeypatch.setattr(settings, "max_challenges_with_captcha", 2)
    monkeypatch.setattr(settings, "challenge_ttl_seconds", 1800)
    monkeypatch.setattr(settings, "disable_challenges", False)
    monkeypatch.setattr(settings, "address_prefixes", [make_address()[:3]])
    monkeypatch.setattr(settings, "discord_alerts_webhook_url", None)
    return settings


@pytest.fixture
def address():
    return make_address(1)


@pytest.fixture
def db_engine():
    """Fresh in-memory database shared across threads via StaticPool."""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    try:
        yield engine
    finally:
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=db_engine)


@pytest.fixture
def session_store(session_factory):
    return SqlSessionStore(session_factory)


@pytest.fixture
def transfer_client():
    """Relay client double: every dispatch succeeds with a fixed operation hash."""
    client = AsyncMock()
    client.request_token.return_value = "opTestHash123"
    client.faucet_address.return_value = "mv1FaucetAddress"
    return client


@pytest.fixture
def captcha_verifier():
    verifier = AsyncMock()
    verifier.verify.return_value = True
    return verifier


@pytest.fixture
def app_overrides(db_engine, session_store, transfer_client, captcha_verifier, monkeypatch):
    """Point the app at the test database and fakes for the relay and captcha."""
    monkeypatch.setattr(settings, "session_backend", "sql")
    monkeypatch.setattr(settings, "rpc_url", "http://relay.test/rpc")
    monkeypatch.setattr(settings, "rpc_auth_token", "test-token")
    monkeypatch.setattr(settings, "faucet_contract_address", "KT1TestFaucet")
    monkeypatch.setattr(settings, "enable_captcha", True)
    monkeypatch.setattr(settings, "captcha_secret", "test-secret")

    # check_database_tables() and the lifespan store must see the test database
    monkeypatch.setattr(main_module, "engine", db_engine)
    monkeypatch.setattr(main_module, "SessionLocal", sessionmaker(bind=db_engine))

    app.dependency_overrides[get_session_store] = lambda: session_store
    app.dependency_overrides[get_transfer_client] = lambda: transfer_client
    app.dependency_overrides[get_captcha_verifier] = lambda: captcha_verifier

    # Disable rate limiting for tests
    limiter.enabled = False

    yield app

    app.dependency_overrides.clear()
    limiter.enabled = True


@pytest.fixture
def client(app_overrides):
    with TestClient(app_overrides) as test_client:
        yield test_client
