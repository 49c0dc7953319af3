"""
Pytest configuration and shared fixtures for Sim tests.
"""

import os

import base58
import pytest
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey
from cryptography.hazmat.primitives.serialization import Encoding, PublicFormat

# Set test environment before importing app
os.environ["FLASK_ENV"] = "testing"
os.environ["FLASK_SECRET_KEY"] = "test-secret-key-for-testing-only"
os.environ["JWT_SECRET"] = "test-jwt-secret"
os.environ["DATABASE_URL"] = "sqlite:///:memory:"
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ["COMPLETION_BACKEND"] = "stub"
os.environ["X402_BACKEND"] = "stub"
os.environ.pop("REDIS_URL", None)
os.environ.pop("REDIS_DSN", None)

ADVISOR_WALLET = "0x742d35Cc6634C0532925a3b844Bc454e4438f44e"


class WalletKey:
    """Ed25519 keypair standing in for a Phantom/Solflare wallet."""

    def __init__(self):
        self._private_key = Ed25519PrivateKey.generate()
        public_bytes = self._private_key.public_key().public_bytes(Encoding.Raw, PublicFormat.Raw)
        self.address = base58.b58encode(public_bytes).decode()

    def sign(self, message: str) -> str:
        return base58.b58encode(self._private_key.sign(message.encode("utf-8"))).decode()


@pytest.fixture
def app():
    """Create a fresh application backed by an in-memory database."""
    from sim.database import close_all
    from sim.factory import create_app

    close_all()
    flask_app = create_app()

    with flask_app.app_context():
        yield flask_app

    close_all()


@pytest.fixture
def client(app):
    """Create a test client for the Flask application."""
    return app.test_client()


@pytest.fixture
def wallet():
    """A fresh wallet keypair."""
    return WalletKey()


@pytest.fixture
def other_wallet():
    """A second, unrelated wallet keypair."""
    return WalletKey()


def sign_in(client, wallet_key):
    """Run the challenge/sign flow and return the issued session payload."""
    challenge = client.post("/api/auth/challenge", json={"publicKey": wallet_key.address}).get_json()
    response = client.post(
        "/api/auth/solana",
        json={
            "publicKey": wallet_key.address,
            "signature": wallet_key.sign(challenge["message"]),
            "message": challenge["message"],
        },
    )
    assert response.status_code == 200, response.get_json()
    return response.get_json()["session"]


@pytest.fixture
def auth_session(client, wallet):
    """Signed-in session for ``wallet``."""
    return sign_in(client, wallet)


@pytest.fixture
def login(client):
    """Sign in another wallet on the shared client; returns (wallet, session payload)."""

    def _login(wallet_key=None):
        wallet_key = wallet_key or WalletKey()
        return wallet_key, sign_in(client, wallet_key)

    return _login


@pytest.fixture
def auth_headers(auth_session):
    """Provide authentication headers for API requests."""
    return {"Authorization": f"Bearer {auth_session['access_token']}"}


@pytest.fixture
def make_advisor(client):
    """Factory creating advisors through the API; returns (advisor, edit_code)."""

    def _make(headers=None, **overrides):
        payload = {"name": "Ada", "title": "Mathematician", "description": "Talks about engines", "category": "science"}
        payload.update(overrides)
        response = client.post("/api/advisors", json=payload, headers=headers or {})
        assert response.status_code == 201, response.get_json()
        body = response.get_json()
        return body["advisor"], body["edit_code"]

    return _make


@pytest.fixture
def paid_advisor(make_advisor):
    """Advisor gated behind a 5 USDC x402 payment."""
    return make_advisor(name="Oracle", x402_enabled=True, x402_price=5, x402_wallet=ADVISOR_WALLET)


@pytest.fixture(autouse=True)
def reset_storage():
    """Reset in-memory storage before each test."""
    from sim.storage import STORAGE, init_storage

    init_storage()
    for bucket in STORAGE.values():
        bucket.clear()

    yield

    for bucket in STORAGE.values():
        bucket.clear()


# Pytest configuration hooks
def pytest_configure(config):
    """Configure pytest with custom settings."""
    config.addinivalue_line("markers", "unit: fast tests without the HTTP stack")
    config.addinivalue_line("markers", "integration: tests that exercise the full application")
    config.addinivalue_line("markers", "slow: tests that take a long time to run")


def pytest_collection_modifyitems(config, items):
    """Modify test collection to add markers automatically."""
    for item in items:
        # Add 'unit' marker to tests in unit/ directory
        if "unit" in str(item.fspath):
            item.add_marker(pytest.mark.unit)

        # Add 'integration' marker to tests in integration/ directory
        if "integration" in str(item.fspath):
            item.add_marker(pytest.mark.integration)
