"""
Pytest configuration and shared fixtures for FirstFrame tests.

Provides:
- In-memory storage, ledger, registry and wallet bindings
- Mock ledger client and messaging transport
- Fully wired services and a Flask test client
- Rate limiting and metrics reset between tests
"""

import os
import sys

import pytest

# Add src to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "src"))

# Set up test environment before any imports
os.environ["FIRSTFRAME_API_KEY"] = "test-api-key-12345"
os.environ["FIRSTFRAME_REQUIRE_AUTH"] = "false"
os.environ["RATE_LIMIT_REQUESTS"] = "10000"
os.environ["RATE_LIMIT_WINDOW"] = "1"
os.environ["STORAGE_BACKEND"] = "memory"
os.environ.pop("TELEGRAM_BOT_TOKEN", None)

UPLOADER_ID = 42
PAYER_ID = 7
CONTENT_ID = "0xAbC0000000000000000000000000000000000001"


@pytest.fixture(autouse=True)
def reset_shared_state():
    """Clear process-wide metrics and rate limits."""
    from api.utils import rate_limit_store
    from monitoring import metrics

    metrics.reset()
    rate_limit_store.clear()
    yield


@pytest.fixture
def storage():
    from storage import MemoryStorage

    return MemoryStorage()


@pytest.fixture
def config():
    from config import AppConfig

    # Short settlement budget so timeout paths finish quickly
    return AppConfig(storage_backend="memory", settlement_timeout=0.0)


@pytest.fixture
def ledger(storage):
    from royalty_ledger import RoyaltyLedger

    return RoyaltyLedger(storage)


@pytest.fixture
def registry(storage):
    from content_registry import ContentRegistry

    return ContentRegistry(storage)


@pytest.fixture
def bindings(storage):
    from wallet_identity import WalletBindingRegistry

    return WalletBindingRegistry(storage)


@pytest.fixture
def puzzles():
    from puzzle_sessions import PuzzleService

    return PuzzleService()


@pytest.fixture
def tracker(storage):
    from puzzle_tracking import PuzzleCompletionTracker

    return PuzzleCompletionTracker(storage)


@pytest.fixture
def mock_ledger_client():
    from ledger_client import MockLedgerClient

    return MockLedgerClient()


@pytest.fixture
def transport():
    from messaging import MockMessagingTransport

    return MockMessagingTransport()


@pytest.fixture
def content_record(registry):
    """A registered video by UPLOADER_ID."""
    from content_registry import ContentRecord, uploader_tag

    record = ContentRecord(
        content_id=CONTENT_ID,
        title="Night of the Living Dead",
        uploader=uploader_tag(UPLOADER_ID),
        uploader_name="romero",
        royalty_amount="0.1",
        video_file_id="BAACAgIAAxkBAAIB",
        channel_message_id=17,
        poster_url="https://example.com/poster.jpg",
    )
    return registry.register(record)


@pytest.fixture
def funded_payer(mock_ledger_client, config):
    """Derived wallet of PAYER_ID with tokens, gas and approval in place."""
    from wallet_identity import derive_address

    address = derive_address(PAYER_ID)
    mock_ledger_client.set_token_balance(config.royalty_token_address, address, "10")
    mock_ledger_client.set_native_balance(address, "1")
    mock_ledger_client.set_allowance(
        config.royalty_token_address, address, config.royalty_module_address, "10"
    )
    return address


@pytest.fixture
def services(storage, config, mock_ledger_client, transport):
    from server import build_services

    return build_services(
        config=config,
        storage=storage,
        ledger_client=mock_ledger_client,
        transport=transport,
    )


@pytest.fixture
def flask_app(services):
    from server import create_app

    app = create_app(services)
    app.config["TESTING"] = True
    return app


@pytest.fixture
def flask_client(flask_app):
    return flask_app.test_client()


@pytest.fixture
def test_auth_headers():
    """Headers for authenticated requests."""
    return {
        "Content-Type": "application/json",
        "X-API-Key": "test-api-key-12345",
    }
