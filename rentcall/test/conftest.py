import os

# must be set before rentcall.core.config is imported
os.environ.setdefault("RATE_LIMIT_ENABLED", "false")
os.environ.setdefault("LOG_JSON", "false")
os.environ.setdefault("DEFAULT_LOCALE", "en")

from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi.testclient import TestClient
from prometheus_client import CollectorRegistry

from rentcall.auth.tokens import TokenService, TokenSettings
from rentcall.metrics.metrics import MetricsCollector
from rentcall.whatsapp.config import TemplateConfig, WhatsAppConfig
from rentcall.whatsapp.dispatcher import TemplateDispatcher
from rentcall.whatsapp.providers.base import BaseMessagingProvider
from rentcall.whatsapp.tracker import DeliveryStatusTracker


class FakeRedis:
    """In-memory stand-in for AsyncRedisClient (set/get/delete/ttl)."""

    def __init__(self):
        self.data = {}
        self.ttls = {}
        self.refuse_writes = False

    async def set(self, key, value, ex=None):
        if self.refuse_writes:
            return False
        self.data[key] = value
        self.ttls[key] = ex if ex is not None else -1
        return True

    async def get(self, key):
        return self.data.get(key)

    async def delete(self, *keys):
        removed = 0
        for key in keys:
            if key in self.data:
                del self.data[key]
                self.ttls.pop(key, None)
                removed += 1
        return removed

    async def ttl(self, key):
        return self.ttls.get(key, -2)


class FakeClock:
    def __init__(self, now=1_700_000_000):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


@pytest.fixture
def metrics():
    return MetricsCollector(registry=CollectorRegistry())


@pytest.fixture
def fake_redis():
    return FakeRedis()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def token_settings():
    return TokenSettings(
        access_secret="access-secret-for-tests",
        refresh_secret="refresh-secret-for-tests",
        application_secret="appcredz-secret-for-tests",
        reset_secret="reset-secret-for-tests",
    )


@pytest.fixture
def token_service(token_settings, fake_redis, metrics, clock):
    return TokenService(token_settings, fake_redis, metrics=metrics, clock=clock)


@pytest.fixture
def tracker():
    return DeliveryStatusTracker()


@pytest.fixture
def whatsapp_config():
    return WhatsAppConfig(
        access_token="meta-token",
        phone_number_id="1234567890",
        templates=TemplateConfig(),
    )


@pytest.fixture
def mock_provider():
    provider = MagicMock(spec=BaseMessagingProvider)
    provider.configured = True
    provider.send_template = AsyncMock(return_value="wamid.template")
    provider.send_text = AsyncMock(return_value="wamid.text")
    return provider


@pytest.fixture
def dispatcher(mock_provider, tracker, metrics):
    return TemplateDispatcher(mock_provider, tracker, TemplateConfig(), metrics=metrics)


@pytest.fixture
def mock_db():
    """Motor-like database with AsyncMock collections"""
    db = MagicMock()
    db.accounts.find_one = AsyncMock(return_value=None)
    db.accounts.update_one = AsyncMock()
    db.accounts.insert_one = AsyncMock()
    db.rents.find_one = AsyncMock(return_value=None)
    db.rents.update_one = AsyncMock()
    db.tenants.find_one = AsyncMock(return_value=None)
    return db


@pytest.fixture
def test_client(token_service, dispatcher, tracker, whatsapp_config, metrics, mock_db):
    from rentcall.auth.accounts import AccountRepository
    from rentcall.main import app
    from rentcall.settlement.repository import RentRepository

    app.state.token_service = token_service
    app.state.dispatcher = dispatcher
    app.state.tracker = tracker
    app.state.whatsapp_config = whatsapp_config
    app.state.metrics = metrics
    app.state.account_repository = AccountRepository(mock_db)
    app.state.rent_repository = RentRepository(mock_db)
    return TestClient(app)


@pytest.fixture
def auth_headers(token_settings, clock):
    """Bearer header for an administrator, signed at the fake clock's time."""
    import jwt

    token = jwt.encode(
        {
            "sub": "acc-1",
            "account": {"email": "landlord@example.com", "role": "administrator"},
            "jti": "test-jti",
            "iat": clock.now,
            "exp": clock.now + 3600,
            "typ": "access",
        },
        token_settings.access_secret,
        algorithm="HS256",
    )
    return {"Authorization": f"Bearer {token}"}
