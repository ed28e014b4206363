"""
Pytest configuration and shared fixtures for linkgate tests.
"""

import os
from unittest.mock import MagicMock

import pytest

# Set test environment before importing app
os.environ["FLASK_ENV"] = "testing"
os.environ["FLASK_SECRET_KEY"] = "test-secret-key-for-testing-only"
os.environ["JWT_SECRET"] = "test-jwt-secret"
os.environ["ENCRYPTION_KEY"] = "test-encryption-secret"
os.environ["HELIUS_API_KEY"] = "test-helius-key"
os.environ["CACHE_BACKEND"] = "memory"
os.environ["DATABASE_URL"] = "sqlite:///:memory:"
os.environ["RATE_LIMIT_ENABLED"] = "false"

# Import app after setting environment
import sys

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from linkgate.oracle import NATIVE_TOKEN, BalanceOracleClient, Holding  # noqa: E402

OWNER_WALLET = "OwnerWa11et1111111111111111111111111111111"
VISITOR_WALLET = "VisitorWa11et222222222222222222222222222222"
POOR_WALLET = "PoorWa11et33333333333333333333333333333333"
TOKEN = "TOKEN123"
SECRET_URL = "https://secret.example.com/drop?mint=[token]"


class FakeClock:
    """Manually advanced clock for TTL tests."""

    def __init__(self, now: float = 1_700_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def holdings_for(balance: str, token: str = TOKEN):
    """Oracle response with a native balance and one token."""
    return [
        Holding(token_address=NATIVE_TOKEN, balance="1.5", decimals=9),
        Holding(token_address=token, balance=balance, decimals=6, symbol="TKN"),
    ]


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def test_config():
    """Configuration for an isolated app instance."""
    from linkgate.config import get_config

    cfg = get_config()
    cfg.update(
        {
            "CACHE_BACKEND": "memory",
            "DATABASE_URL": "sqlite:///:memory:",
            "RATE_LIMIT_ENABLED": False,
            "HOLDINGS_CACHE_TTL": 10,
            "HOLDINGS_STALE_TTL": 3600,
            "HOLDINGS_RATE_LIMIT_REQUESTS": 3,
            "HOLDINGS_RATE_LIMIT_WINDOW": 10,
        }
    )
    return cfg


@pytest.fixture
def cipher():
    from linkgate.encryption import UrlCipher

    return UrlCipher("test-encryption-secret")


@pytest.fixture
def memory_store(clock):
    from linkgate.storage import MemoryStore

    return MemoryStore(clock=clock)


@pytest.fixture
def mock_oracle():
    """Balance oracle double; every wallet holds 75 TOKEN123 unless a test says otherwise."""
    oracle = MagicMock(spec=BalanceOracleClient)
    oracle.fetch_holdings.return_value = holdings_for("75")
    return oracle


@pytest.fixture
def mock_audit_logger():
    """Mock audit logger for testing."""
    return MagicMock()


@pytest.fixture
def app(test_config, mock_oracle, memory_store):
    """Create and configure a test Flask application instance."""
    from linkgate.database import close_all
    from linkgate.factory import create_app

    flask_app = create_app(test_config, oracle=mock_oracle, kv=memory_store)
    flask_app.config.update({"TESTING": True})

    with flask_app.app_context():
        yield flask_app

    close_all()


@pytest.fixture
def client(app):
    """Create a test client for the Flask application."""
    return app.test_client()


@pytest.fixture
def services(app):
    from linkgate.factory import get_services

    return get_services(app)


@pytest.fixture
def seeded_page(services):
    """A page connected to TOKEN123 with one gated and one ungated link."""
    page = services.store.create_page(
        slug="alice",
        wallet_address=OWNER_WALLET,
        connected_token=TOKEN,
        token_symbol="TKN",
        title="Alice",
    )
    services.store.save_links(
        "alice",
        [
            {
                "id": "gated-1",
                "presetId": "custom",
                "title": "Holders only",
                "url": SECRET_URL,
                "tokenGated": True,
                "requiredTokens": ["50"],
            },
            {
                "id": "open-1",
                "presetId": "twitter",
                "title": "Twitter",
                "url": "https://twitter.com/alice",
                "tokenGated": False,
            },
        ],
    )
    return page


def login(client, wallet):
    """Mark the test client's session as controlling ``wallet``."""
    from linkgate.identity import SESSION_WALLET_KEY

    with client.session_transaction() as sess:
        sess[SESSION_WALLET_KEY] = wallet


# Pytest configuration hooks
def pytest_collection_modifyitems(config, items):
    """Modify test collection to add markers automatically."""
    for item in items:
        # Add 'unit' marker to tests in unit/ directory
        if "unit" in str(item.fspath):
            item.add_marker(pytest.mark.unit)

        # Add 'integration' marker to tests in integration/ directory
        if "integration" in str(item.fspath):
            item.add_marker(pytest.mark.integration)
