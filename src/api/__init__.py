"""
FirstFrame API package.

Blueprints:
- core: health and metrics
- wallet: address derivation, wallet binding and owner lookup
- content: content registry
- puzzle: puzzle sessions and unlocking
- royalties: pending royalties, payment, claims and reconciliation
"""

from api.content import content_bp
from api.core import core_bp
from api.puzzle import puzzle_bp
from api.royalties import royalties_bp
from api.wallet import wallet_bp

# Tuple format: (blueprint, url_prefix)
ALL_BLUEPRINTS = [
    (core_bp, ""),
    (wallet_bp, ""),
    (content_bp, ""),
    (puzzle_bp, ""),
    (royalties_bp, ""),
]


def register_blueprints(app):
    """Register all blueprints with the Flask app."""
    for blueprint, url_prefix in ALL_BLUEPRINTS:
        app.register_blueprint(blueprint, url_prefix=url_prefix)
