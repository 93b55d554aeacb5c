"""
Content registry endpoints.

- POST /content: register (or replace) a video IP asset
- GET  /content/<content_id>: fetch one record
- GET  /content?uploader=<identifier>: records of one uploader
"""

from flask import Blueprint, jsonify, request

from content_registry import ContentRecord, uploader_tag
from royalty_ledger import normalize_amount

from .utils import (
    MAX_ID_LENGTH,
    MAX_TITLE_LENGTH,
    parse_identifier,
    require_api_key,
    services,
    validate_json_schema,
)

content_bp = Blueprint("content", __name__)


@content_bp.route("/content", methods=["POST"])
@require_api_key
def register_content():
    """
    Register a content record.

    Request body:
    {
        "content_id": "0x...",          IP asset id
        "title": "Movie title",
        "uploader_id": 123456789,       Telegram id of the uploader
        "uploader_name": "alice",       (optional)
        "royalty_amount": "0.1",        (optional)
        "video_file_id": "...",         (optional)
        "channel_message_id": 42,       (optional)
        "token_instance_id": "...",     (optional)
        "poster_url": "https://...",    (optional)
        "year": 1999                    (optional)
    }
    """
    data = request.get_json(silent=True)
    is_valid, error_msg = validate_json_schema(
        data,
        required_fields={"content_id": str, "title": str, "uploader_id": (int, str)},
        optional_fields={
            "uploader_name": str,
            "royalty_amount": (str, int, float),
            "video_file_id": str,
            "channel_message_id": int,
            "token_instance_id": str,
            "poster_url": str,
            "year": int,
        },
        max_lengths={
            "content_id": MAX_ID_LENGTH,
            "title": MAX_TITLE_LENGTH,
            "uploader_name": MAX_TITLE_LENGTH,
        },
    )
    if not is_valid:
        return jsonify({"error": error_msg}), 400

    uploader_id = parse_identifier(data["uploader_id"])
    if uploader_id is None:
        return jsonify({"error": "uploader_id must be a positive integer"}), 400

    royalty_amount = data.get("royalty_amount")
    if royalty_amount is not None:
        try:
            royalty_amount = normalize_amount(royalty_amount)
        except ValueError as e:
            return jsonify({"error": str(e)}), 400

    record = ContentRecord(
        content_id=data["content_id"],
        title=data["title"],
        uploader=uploader_tag(uploader_id),
        uploader_name=data.get("uploader_name"),
        token_instance_id=data.get("token_instance_id"),
        royalty_amount=royalty_amount,
        channel_message_id=data.get("channel_message_id"),
        video_file_id=data.get("video_file_id"),
        poster_url=data.get("poster_url"),
        year=data.get("year"),
    )
    services.registry.register(record)
    return jsonify({"success": True, "content": record.to_dict()}), 201


@content_bp.route("/content/<content_id>", methods=["GET"])
def get_content(content_id):
    record = services.registry.get(content_id)
    if record is None:
        return jsonify({"error": "Content not found", "content_id": content_id}), 404
    return jsonify(record.to_dict())


@content_bp.route("/content", methods=["GET"])
def list_content():
    """Content registered by one uploader."""
    uploader_id = parse_identifier(request.args.get("uploader"))
    if uploader_id is None:
        return jsonify({"error": "uploader query parameter must be a positive integer"}), 400

    records = services.registry.list_by_uploader(uploader_id)
    return jsonify({"count": len(records), "content": [r.to_dict() for r in records]})
