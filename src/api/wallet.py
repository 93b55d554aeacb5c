"""
Wallet identity endpoints.

- GET  /wallet/address/<identifier>: derived address of a Telegram user
- POST /wallet/bind: persist the wallet linked to a Telegram user
- POST /wallet/find: recover the identifier behind an address
"""

from flask import Blueprint, jsonify, request

from monitoring import metrics
from wallet_identity import derive_address, find_identifier_for_address, is_valid_address

from .utils import parse_identifier, require_api_key, services, validate_json_schema

wallet_bp = Blueprint("wallet", __name__)


@wallet_bp.route("/wallet/address/<identifier>", methods=["GET"])
def get_wallet_address(identifier):
    """Derived address, plus the bound address if one was linked."""
    user_id = parse_identifier(identifier)
    if user_id is None:
        return jsonify({"error": "identifier must be a positive integer"}), 400

    bound = services.bindings.get_address(user_id) if services.bindings is not None else None
    return jsonify(
        {
            "identifier": user_id,
            "address": derive_address(user_id),
            "bound_address": bound,
        }
    )


@wallet_bp.route("/wallet/bind", methods=["POST"])
@require_api_key
def bind_wallet():
    """
    Link a wallet to a Telegram user.

    Request body:
    {
        "identifier": 123456789,
        "address": "0x..."
    }
    """
    if services.bindings is None:
        return jsonify({"error": "Wallet bindings not initialized"}), 503

    data = request.get_json(silent=True)
    is_valid, error_msg = validate_json_schema(
        data, required_fields={"identifier": (int, str), "address": str}
    )
    if not is_valid:
        return jsonify({"error": error_msg}), 400

    user_id = parse_identifier(data["identifier"])
    if user_id is None:
        return jsonify({"error": "identifier must be a positive integer"}), 400
    if not is_valid_address(data["address"]):
        return jsonify({"error": "address must be 0x followed by 40 hex characters"}), 400

    binding = services.bindings.bind(user_id, data["address"])
    return jsonify({"success": True, "binding": binding}), 201


@wallet_bp.route("/wallet/find", methods=["POST"])
@require_api_key
def find_wallet_owner():
    """
    Find the identifier that owns an address.

    Request body:
    {
        "address": "0x...",
        "hint": 123456789,
        "radius": 1000 (optional, capped by WALLET_SEARCH_RADIUS)
    }
    """
    data = request.get_json(silent=True)
    is_valid, error_msg = validate_json_schema(
        data,
        required_fields={"address": str, "hint": (int, str)},
        optional_fields={"radius": int},
    )
    if not is_valid:
        return jsonify({"error": error_msg}), 400

    address = data["address"]
    if not is_valid_address(address):
        return jsonify({"error": "address must be 0x followed by 40 hex characters"}), 400
    hint = parse_identifier(data["hint"])
    if hint is None:
        return jsonify({"error": "hint must be a positive integer"}), 400

    max_radius = services.config.wallet_search_radius
    requested = max_radius if data.get("radius") is None else data["radius"]
    radius = max(0, min(requested, max_radius))

    if services.bindings is not None:
        bound = services.bindings.get_identifier(address)
        if bound is not None:
            return jsonify({"found": True, "identifier": bound, "source": "binding"})

    metrics.increment("wallet_searches")
    found = find_identifier_for_address(address, hint, radius)
    return jsonify(
        {
            "found": found is not None,
            "identifier": found,
            "source": "search",
            "radius": radius,
        }
    ), (200 if found is not None else 404)
