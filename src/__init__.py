"""
FirstFrame - puzzle-gated video unlocks with on-chain royalties

Users unlock protected videos by solving a jigsaw puzzle. Each unlock opens
a royalty owed to the uploader, payable from the user's derived wallet on
the content-registration ledger; until it is paid the user cannot unlock
anything else.

Core Components:
    - wallet_identity: deterministic Telegram id -> wallet address mapping
    - royalty_ledger: pending royalty records and their lifecycle
    - unlock_workflow: gate check, puzzle validation and granting
    - royalty_payment: payment, claims and settlement reconciliation

Infrastructure:
    - storage: JSON file and in-memory collection backends
    - monitoring: metrics, structured logging and request middleware
    - api: Flask blueprints
"""

__version__ = "0.1.0"
