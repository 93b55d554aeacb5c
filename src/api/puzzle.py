"""
Puzzle endpoints.

- POST /puzzle/create: start a puzzle session
- POST /puzzle/validate: submit a solution and unlock the content
- GET  /puzzle/stats/<identifier>: completion statistics of a user
"""

from flask import Blueprint, jsonify, request

from puzzle_sessions import DEFAULT_DIFFICULTY

from .utils import (
    MAX_ID_LENGTH,
    check_rate_limit,
    parse_identifier,
    require_api_key,
    services,
    validate_json_schema,
)

puzzle_bp = Blueprint("puzzle", __name__)

MAX_PIECES = 64


@puzzle_bp.route("/puzzle/create", methods=["POST"])
@require_api_key
def create_puzzle():
    """
    Create a puzzle.

    Request body (all optional):
    {
        "content_id": "0x...",
        "difficulty": 3         grid size, 2..8
    }

    Returns:
        Session id and shuffled piece ids; the solution is never returned
    """
    data = request.get_json(silent=True) or {}
    is_valid, error_msg = validate_json_schema(
        data,
        required_fields={},
        optional_fields={"content_id": str, "difficulty": int},
        max_lengths={"content_id": MAX_ID_LENGTH},
    )
    if not is_valid:
        return jsonify({"error": error_msg}), 400

    try:
        session = services.puzzles.create_puzzle(
            content_id=data.get("content_id"),
            difficulty=data.get("difficulty") or DEFAULT_DIFFICULTY,
        )
    except ValueError as e:
        return jsonify({"error": str(e)}), 400

    return jsonify({"success": True, **session.to_dict()}), 201


@puzzle_bp.route("/puzzle/validate", methods=["POST"])
@require_api_key
def validate_puzzle():
    """
    Submit a solution. A correct solution unlocks the content.

    Request body:
    {
        "puzzle_id": "puzzle_...",
        "user_id": 123456789,
        "solution": [0, 1, 2, ...],
        "content_id": "0x...",      (optional, defaults to the puzzle's)
        "poster_url": "https://...", (optional)
        "time_seconds": 42           (optional)
    }
    """
    rate_error = check_rate_limit()
    if rate_error:
        return jsonify(rate_error), 429

    data = request.get_json(silent=True)
    is_valid, error_msg = validate_json_schema(
        data,
        required_fields={"puzzle_id": str, "user_id": (int, str), "solution": list},
        optional_fields={
            "content_id": str,
            "poster_url": str,
            "time_seconds": (int, float),
        },
        max_lengths={"puzzle_id": MAX_ID_LENGTH, "content_id": MAX_ID_LENGTH},
    )
    if not is_valid:
        return jsonify({"error": error_msg}), 400

    user_id = parse_identifier(data["user_id"])
    if user_id is None:
        return jsonify({"error": "user_id must be a positive integer"}), 400
    if len(data["solution"]) > MAX_PIECES:
        return jsonify({"error": f"solution has more than {MAX_PIECES} pieces"}), 400

    result = services.unlock.attempt_unlock(
        payer_id=user_id,
        session_id=data["puzzle_id"],
        submitted=data["solution"],
        content_id=data.get("content_id"),
        poster_url=data.get("poster_url"),
        time_seconds=data.get("time_seconds") or 0,
    )

    if result.granted:
        return jsonify(result.to_dict())
    status = 403 if result.reason == "pending_royalty" else 400
    return jsonify(result.to_dict()), status


@puzzle_bp.route("/puzzle/stats/<identifier>", methods=["GET"])
def puzzle_stats(identifier):
    user_id = parse_identifier(identifier)
    if user_id is None:
        return jsonify({"error": "identifier must be a positive integer"}), 400
    return jsonify({"user_id": user_id, **services.tracker.get_stats(user_id)})
