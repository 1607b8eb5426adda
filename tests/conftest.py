"""
Pytest configuration and shared fixtures.

Test environment variables are set here before any smschat import so the
module-level settings, engine and logging pick them up. Twilio variables are
cleared so nothing reaches the real provider or AWS Secrets Manager; tests
inject provider configuration and gateways through dependency overrides.
"""

import os

os.environ.setdefault("DATABASE_URL", "sqlite:///./test_smschat.db")
os.environ.setdefault("LOG_LEVEL", "WARNING")
os.environ.setdefault("JWT_SECRET", "test-jwt-secret-with-enough-length-for-hs256")
os.environ.setdefault("BCRYPT_ROUNDS", "4")
for _name in (
    "TWILIO_ACCOUNT_SID",
    "TWILIO_AUTH_TOKEN",
    "TWILIO_PHONE_NUMBER",
    "TWILIO_SECRET_NAME",
    "PUBLIC_BASE_URL",
    "TWILIO_VALIDATE_WEBHOOK_SIGNATURE",
):
    os.environ.pop(_name, None)

import pytest
from fastapi.testclient import TestClient

# Clear settings cache before any app imports to ensure test env vars are used
from smschat.config import get_settings
get_settings.cache_clear()

from smschat.gateway import DeliveryError, DeliveryResult, get_gateway
from smschat.main import app
from smschat.provider_config import ProviderConfig, get_provider_config
from smschat.storage import Base, SessionLocal, engine


CONFIGURED = ProviderConfig(
    account_sid="ACtest",
    auth_token="test-auth-token",
    phone_number="+15005550006",
)
NOT_CONFIGURED = ProviderConfig()


class FakeGateway:
    """
    In-memory stand-in for TwilioGateway.

    `send_result` is returned by every send; `statuses` maps provider ids to
    the status fetch_status reports, and ids in `fetch_errors` raise.
    """

    def __init__(self, send_result=None, statuses=None, fetch_errors=()):
        self.send_result = send_result or DeliveryResult.success("SM1", "queued")
        self.statuses = dict(statuses or {})
        self.fetch_errors = set(fetch_errors)
        self.sent = []
        self.fetched = []

    def send(self, to, body, status_callback=None):
        self.sent.append({"to": to, "body": body, "status_callback": status_callback})
        return self.send_result

    def fetch_status(self, provider_message_id):
        self.fetched.append(provider_message_id)
        if provider_message_id in self.fetch_errors:
            raise DeliveryError("The SMS provider could not be reached")
        return self.statuses[provider_message_id]


@pytest.fixture
def db():
    """Session on a fresh schema, dropped after the test."""
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def fake_gateway():
    return FakeGateway()


@pytest.fixture
def provider_config():
    """Provider configuration the app sees; tests may reassign `.value`."""
    class Holder:
        value = CONFIGURED
    return Holder()


@pytest.fixture(scope="function")
def client(fake_gateway, provider_config):
    """Create test client with fresh database and a fake provider for each test."""
    Base.metadata.create_all(bind=engine)
    app.dependency_overrides[get_gateway] = lambda: fake_gateway
    app.dependency_overrides[get_provider_config] = lambda: provider_config.value

    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.clear()
    Base.metadata.drop_all(bind=engine)


def register(client, user_name="alice", password="secret123") -> str:
    """Register a user and return their bearer token."""
    response = client.post("/register", json={"user_name": user_name, "password": password})
    assert response.status_code == 201, response.text
    return response.json()["token"]


def auth_headers(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def alice_headers(client):
    return auth_headers(register(client, "alice"))


@pytest.fixture
def bob_headers(client):
    return auth_headers(register(client, "bob"))
