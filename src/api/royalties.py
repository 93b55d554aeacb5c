"""
Royalty endpoints.

- GET  /royalties/pending/<identifier>: unpaid royalties of a payer
- GET  /royalties/check/<identifier>: whether a payer is blocked
- GET  /royalties/received/<identifier>: paid royalties owed to an uploader
- GET  /royalties/pay-info/<royalty_id>: payment instructions
- POST /royalties/pay: pay a royalty from the payer's wallet
- POST /royalties/claim: claim paid royalties for an uploader
- POST /royalties/reconcile: confirm payments whose settlement timed out

Workflow errors are answered with their tag and status, e.g.
{"success": false, "error": "ApprovalRequired", "message": ..., "hint": ...}
"""

from decimal import Decimal

from flask import Blueprint, jsonify, request

from royalty_errors import RoyaltyError
from wallet_identity import derive_address

from .utils import (
    MAX_ID_LENGTH,
    check_rate_limit,
    error_response,
    parse_identifier,
    require_api_key,
    services,
    validate_json_schema,
)

royalties_bp = Blueprint("royalties", __name__)


def _bad_identifier():
    return jsonify({"error": "identifier must be a positive integer"}), 400


@royalties_bp.route("/royalties/pending/<identifier>", methods=["GET"])
def get_pending(identifier):
    """Unpaid royalties owed by a payer."""
    user_id = parse_identifier(identifier)
    if user_id is None:
        return _bad_identifier()

    pending = services.ledger.get_pending_by_payer(user_id)
    now = services.ledger.now()
    return jsonify(
        {
            "user_id": user_id,
            "wallet_address": derive_address(user_id),
            "count": len(pending),
            "total_amount": str(sum((r.amount_decimal for r in pending), Decimal("0"))),
            "royalties": [{**r.to_dict(), "expired": r.is_expired(now)} for r in pending],
        }
    )


@royalties_bp.route("/royalties/check/<identifier>", methods=["GET"])
def check_pending(identifier):
    """Whether a payer may unlock more content."""
    user_id = parse_identifier(identifier)
    if user_id is None:
        return _bad_identifier()

    count = services.ledger.count_pending(user_id)
    return jsonify({"user_id": user_id, "has_pending": count > 0, "count": count})


@royalties_bp.route("/royalties/received/<identifier>", methods=["GET"])
def get_received(identifier):
    """Paid royalties owed to an uploader, with how much is still claimable."""
    user_id = parse_identifier(identifier)
    if user_id is None:
        return _bad_identifier()

    received = services.ledger.get_received_by_uploader(user_id)
    claimable = [r for r in received if not r.claimed]
    return jsonify(
        {
            "user_id": user_id,
            "count": len(received),
            "total_amount": str(sum((r.amount_decimal for r in received), Decimal("0"))),
            "claimable_count": len(claimable),
            "claimable_amount": str(sum((r.amount_decimal for r in claimable), Decimal("0"))),
            "royalties": [r.to_dict() for r in received],
        }
    )


@royalties_bp.route("/royalties/pay-info/<royalty_id>", methods=["GET"])
def get_pay_info(royalty_id):
    try:
        info = services.payments.get_pay_info(royalty_id)
    except RoyaltyError as e:
        return error_response(e)
    return jsonify({"success": True, **info})


@royalties_bp.route("/royalties/pay", methods=["POST"])
@require_api_key
def pay_royalty():
    """
    Pay a royalty.

    Request body:
    {
        "royalty_id": "...",
        "payer_address": "0x...",   wallet the tokens come from
        "payer_id": 123456789       Telegram id of the payer
    }
    """
    rate_error = check_rate_limit()
    if rate_error:
        return jsonify(rate_error), 429

    data = request.get_json(silent=True)
    is_valid, error_msg = validate_json_schema(
        data,
        required_fields={"royalty_id": str, "payer_address": str, "payer_id": (int, str)},
        max_lengths={"royalty_id": MAX_ID_LENGTH, "payer_address": 42},
    )
    if not is_valid:
        return jsonify({"error": error_msg}), 400

    payer_id = parse_identifier(data["payer_id"])
    if payer_id is None:
        return jsonify({"error": "payer_id must be a positive integer"}), 400

    try:
        result = services.payments.pay_royalty(
            data["royalty_id"], data["payer_address"], payer_id
        )
    except RoyaltyError as e:
        return error_response(e)

    return jsonify({"success": True, **result.to_dict()})


@royalties_bp.route("/royalties/claim", methods=["POST"])
@require_api_key
def claim_royalties():
    """
    Claim every paid royalty of an uploader.

    Request body:
    {
        "uploader_id": 123456789
    }
    """
    data = request.get_json(silent=True)
    is_valid, error_msg = validate_json_schema(data, required_fields={"uploader_id": (int, str)})
    if not is_valid:
        return jsonify({"error": error_msg}), 400

    uploader_id = parse_identifier(data["uploader_id"])
    if uploader_id is None:
        return jsonify({"error": "uploader_id must be a positive integer"}), 400

    result = services.payments.claim_royalties(uploader_id)
    return jsonify({"success": result.failed_count == 0, **result.to_dict()})


@royalties_bp.route("/royalties/reconcile", methods=["POST"])
@require_api_key
def reconcile():
    """Check every payment whose settlement timed out."""
    results = services.payments.reconcile_pending_settlements()
    return jsonify({"checked": len(results), "results": results})
