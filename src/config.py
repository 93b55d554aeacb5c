"""
FirstFrame - Runtime configuration

All settings come from environment variables (a local ``.env`` file is
loaded by the entry points with python-dotenv).

Environment Variables:
    FIRSTFRAME_DATA_DIR=data
    STORAGE_BACKEND=json
    ROYALTY_TTL_HOURS=24
    DEFAULT_ROYALTY_AMOUNT=0.1
    WALLET_SEARCH_RADIUS=100000
    LEDGER_GATEWAY_URL=http://localhost:8545
    LEDGER_GATEWAY_API_KEY=...
    LEDGER_TIMEOUT=30
    SETTLEMENT_TIMEOUT=120
    ROYALTY_TOKEN_ADDRESS=0x...
    ROYALTY_MODULE_ADDRESS=0x...
    MIN_GAS_BALANCE=0.001
    TOKEN_FAUCET_URL=https://...
    EXPLORER_URL=https://aeneid.storyscan.io
    TELEGRAM_BOT_TOKEN=...
    TELEGRAM_CHANNEL_ID=...
    TELEGRAM_BOT_USERNAME=firstframe_ipbot
    PUZZLE_SESSION_TTL=3600
"""

import os
from dataclasses import dataclass
from decimal import Decimal

# MockERC20 on the Aeneid testnet; the only whitelisted royalty token there
DEFAULT_ROYALTY_TOKEN = "0xF2104833d386a2734a4eB3B8ad6FC6812F29E38E"
DEFAULT_ROYALTY_MODULE = "0xD2f60c40fEbccf6311f8B47c4f2Ec6b040400086"
DEFAULT_EXPLORER_URL = "https://aeneid.storyscan.io"


@dataclass
class AppConfig:
    """Service configuration."""

    # Persistence
    data_dir: str = "data"
    storage_backend: str = "json"

    # Royalty policy
    royalty_ttl_hours: int = 24
    default_royalty_amount: str = "0.1"
    wallet_search_radius: int = 100000

    # External ledger
    ledger_endpoint: str = "http://localhost:8545"
    ledger_api_key: str | None = None
    ledger_timeout: int = 30
    settlement_timeout: float = 120.0
    royalty_token_address: str = DEFAULT_ROYALTY_TOKEN
    royalty_module_address: str = DEFAULT_ROYALTY_MODULE
    min_gas_balance: Decimal = Decimal("0.001")
    token_faucet_url: str = (
        f"{DEFAULT_EXPLORER_URL}/address/{DEFAULT_ROYALTY_TOKEN}?tab=write_contract#0x40c10f19"
    )
    explorer_url: str = DEFAULT_EXPLORER_URL

    # Messaging
    telegram_bot_token: str | None = None
    telegram_channel_id: str | None = None
    bot_username: str = "firstframe_ipbot"

    # Puzzle sessions
    puzzle_session_ttl: float = 3600.0

    @classmethod
    def from_env(cls) -> "AppConfig":
        """Create configuration from environment variables."""
        token = os.getenv("ROYALTY_TOKEN_ADDRESS", DEFAULT_ROYALTY_TOKEN)
        explorer = os.getenv("EXPLORER_URL", DEFAULT_EXPLORER_URL).rstrip("/")
        return cls(
            data_dir=os.getenv("FIRSTFRAME_DATA_DIR", "data"),
            storage_backend=os.getenv("STORAGE_BACKEND", "json"),
            royalty_ttl_hours=int(os.getenv("ROYALTY_TTL_HOURS", "24")),
            default_royalty_amount=os.getenv("DEFAULT_ROYALTY_AMOUNT", "0.1"),
            wallet_search_radius=int(os.getenv("WALLET_SEARCH_RADIUS", "100000")),
            ledger_endpoint=os.getenv("LEDGER_GATEWAY_URL", "http://localhost:8545"),
            ledger_api_key=os.getenv("LEDGER_GATEWAY_API_KEY") or None,
            ledger_timeout=int(os.getenv("LEDGER_TIMEOUT", "30")),
            settlement_timeout=float(os.getenv("SETTLEMENT_TIMEOUT", "120")),
            royalty_token_address=token,
            royalty_module_address=os.getenv("ROYALTY_MODULE_ADDRESS", DEFAULT_ROYALTY_MODULE),
            min_gas_balance=Decimal(os.getenv("MIN_GAS_BALANCE", "0.001")),
            token_faucet_url=os.getenv(
                "TOKEN_FAUCET_URL",
                f"{explorer}/address/{token}?tab=write_contract#0x40c10f19",
            ),
            explorer_url=explorer,
            telegram_bot_token=os.getenv("TELEGRAM_BOT_TOKEN") or None,
            telegram_channel_id=os.getenv("TELEGRAM_CHANNEL_ID") or None,
            bot_username=os.getenv("TELEGRAM_BOT_USERNAME", "firstframe_ipbot"),
            puzzle_session_ttl=float(os.getenv("PUZZLE_SESSION_TTL", "3600")),
        )
