"""
FirstFrame - Flask application factory and server entry point.
"""

import logging
import os
from datetime import timedelta

from dotenv import load_dotenv
from flask import Flask, jsonify

from api import register_blueprints
from api.utils import ServiceRegistry, services
from config import AppConfig
from content_registry import ContentRegistry
from ledger_client import LedgerClient, MockLedgerClient
from messaging import MessagingTransport, TelegramTransport
from monitoring import configure_logging, setup_request_logging
from puzzle_sessions import LocalPuzzleSessionStore, PuzzleService, PuzzleSessionStore
from puzzle_tracking import PuzzleCompletionTracker
from royalty_ledger import RoyaltyLedger
from royalty_payment import RoyaltyPaymentService
from storage import StorageBackend, get_storage_backend
from unlock_workflow import UnlockWorkflow
from wallet_identity import WalletBindingRegistry

logger = logging.getLogger(__name__)

# LEDGER_GATEWAY_URL=mock serves the ledger from memory
MOCK_LEDGER_ENDPOINT = "mock"


def build_services(
    config: AppConfig | None = None,
    storage: StorageBackend | None = None,
    ledger_client: LedgerClient | None = None,
    transport: MessagingTransport | None = None,
    session_store: PuzzleSessionStore | None = None,
) -> ServiceRegistry:
    """
    Wire every service from configuration.

    Any collaborator passed in is used instead of the configured one.
    """
    config = config or AppConfig.from_env()
    storage = storage or get_storage_backend(config.storage_backend, config.data_dir)

    if ledger_client is None:
        if config.ledger_endpoint == MOCK_LEDGER_ENDPOINT:
            logger.warning("Using the in-memory mock ledger")
            ledger_client = MockLedgerClient()
        else:
            ledger_client = LedgerClient(
                config.ledger_endpoint, config.ledger_api_key, config.ledger_timeout
            )

    if transport is None and config.telegram_bot_token:
        transport = TelegramTransport(config.telegram_bot_token)
    if transport is None:
        logger.warning("TELEGRAM_BOT_TOKEN not set: unlocked videos will not be delivered")

    ledger = RoyaltyLedger(storage, ttl=timedelta(hours=config.royalty_ttl_hours))
    registry = ContentRegistry(storage)
    bindings = WalletBindingRegistry(storage)
    puzzles = PuzzleService(session_store or LocalPuzzleSessionStore(ttl=config.puzzle_session_ttl))
    tracker = PuzzleCompletionTracker(storage)

    return ServiceRegistry(
        config=config,
        storage=storage,
        ledger=ledger,
        registry=registry,
        bindings=bindings,
        puzzles=puzzles,
        tracker=tracker,
        ledger_client=ledger_client,
        transport=transport,
        unlock=UnlockWorkflow(
            ledger,
            puzzles,
            registry,
            transport,
            ledger_client=ledger_client,
            tracker=tracker,
            default_amount=config.default_royalty_amount,
            channel_id=config.telegram_channel_id,
        ),
        payments=RoyaltyPaymentService(
            ledger,
            registry,
            ledger_client,
            transport=transport,
            bindings=bindings,
            config=config,
        ),
    )


def create_app(registry: ServiceRegistry | None = None) -> Flask:
    """
    Create the Flask app.

    Args:
        registry: Pre-wired services (tests); built from the environment if None
    """
    services.update(registry or build_services())

    app = Flask(__name__)
    app.json.sort_keys = False
    # Bodies are small JSON documents
    app.config["MAX_CONTENT_LENGTH"] = 1024 * 1024

    register_blueprints(app)
    setup_request_logging(app)

    @app.errorhandler(404)
    def not_found(_e):
        return jsonify({"error": "Not found"}), 404

    @app.errorhandler(405)
    def method_not_allowed(_e):
        return jsonify({"error": "Method not allowed"}), 405

    @app.errorhandler(413)
    def too_large(_e):
        return jsonify({"error": "Request body too large"}), 413

    return app


def run_server(host: str | None = None, port: int | None = None, debug: bool | None = None):
    """Run the Flask development server."""
    load_dotenv()
    configure_logging(level=os.getenv("LOG_LEVEL", "INFO"))

    host = host or os.getenv("HOST", "0.0.0.0")
    port = port or int(os.getenv("PORT", 5000))
    if debug is None:
        debug = os.getenv("FLASK_DEBUG", "").lower() == "true"

    app = create_app()

    print(f"\n{'=' * 60}")
    print("FirstFrame Royalties API Server")
    print(f"{'=' * 60}")
    print(f"Listening on: http://{host}:{port}")
    print(f"Storage: {services.storage.get_info()['backend_type']}")
    print(f"Ledger gateway: {services.config.ledger_endpoint}")
    print(f"Messaging: {'Telegram' if services.transport else 'Disabled'}")
    print(f"{'=' * 60}\n")

    app.run(host=host, port=port, debug=debug)


if __name__ == "__main__":
    run_server()
