"""
Tests for the FirstFrame HTTP API.

This module provides test coverage for:
- Health and metrics endpoints
- Wallet, content and puzzle endpoints
- Royalty listing, payment, claims and reconciliation
- Error tags and status codes
- Authentication and rate limiting
"""

import json

import pytest

from conftest import CONTENT_ID, PAYER_ID, UPLOADER_ID
from wallet_identity import derive_address


def _post(client, path, payload, headers):
    return client.post(path, data=json.dumps(payload), headers=headers)


def _unlock(client, headers, user_id=PAYER_ID):
    created = _post(client, "/puzzle/create", {"content_id": CONTENT_ID, "difficulty": 2}, headers)
    puzzle_id = json.loads(created.data)["puzzle_id"]
    return _post(
        client,
        "/puzzle/validate",
        {"puzzle_id": puzzle_id, "user_id": user_id, "solution": [0, 1, 2, 3]},
        headers,
    )


class TestHealthEndpoints:
    """Tests for health check endpoints."""

    def test_health_check_returns_healthy(self, flask_client):
        """Health endpoint should return healthy status."""
        response = flask_client.get("/health")
        assert response.status_code == 200
        data = json.loads(response.data)
        assert data["status"] == "healthy"
        assert data["storage"]["backend_type"] == "MemoryStorage"

    def test_liveness(self, flask_client):
        assert flask_client.get("/health/live").status_code == 200

    def test_readiness(self, flask_client):
        response = flask_client.get("/health/ready")
        assert response.status_code == 200
        assert json.loads(response.data)["checks"]["services"] is True

    def test_prometheus_metrics(self, flask_client):
        response = flask_client.get("/metrics")
        assert response.status_code == 200
        assert b"firstframe_royalties_paid" in response.data

    def test_json_metrics(self, flask_client):
        data = json.loads(flask_client.get("/metrics/json").data)
        assert "counters" in data

    def test_request_id_echoed(self, flask_client):
        response = flask_client.get("/health", headers={"X-Request-ID": "abc123"})
        assert response.headers["X-Request-ID"] == "abc123"


class TestWalletEndpoints:
    """Tests for wallet identity endpoints."""

    def test_derived_address(self, flask_client):
        data = json.loads(flask_client.get(f"/wallet/address/{PAYER_ID}").data)
        assert data["address"] == derive_address(PAYER_ID)
        assert data["bound_address"] is None

    def test_invalid_identifier(self, flask_client):
        assert flask_client.get("/wallet/address/abc").status_code == 400
        assert flask_client.get("/wallet/address/0").status_code == 400

    def test_bind_and_read_back(self, flask_client, test_auth_headers):
        address = "0x" + "c" * 40
        response = _post(flask_client, "/wallet/bind",
                         {"identifier": PAYER_ID, "address": address}, test_auth_headers)
        assert response.status_code == 201

        data = json.loads(flask_client.get(f"/wallet/address/{PAYER_ID}").data)
        assert data["bound_address"] == address

    def test_bind_rejects_bad_address(self, flask_client, test_auth_headers):
        response = _post(flask_client, "/wallet/bind",
                         {"identifier": PAYER_ID, "address": "0x12"}, test_auth_headers)
        assert response.status_code == 400

    def test_find_by_search(self, flask_client, test_auth_headers):
        payload = {"address": derive_address(PAYER_ID + 4), "hint": PAYER_ID, "radius": 10}
        data = json.loads(_post(flask_client, "/wallet/find", payload, test_auth_headers).data)
        assert data["found"] is True
        assert data["identifier"] == PAYER_ID + 4
        assert data["source"] == "search"

    def test_find_by_binding(self, flask_client, test_auth_headers, bindings):
        address = "0x" + "d" * 40
        bindings.bind(555, address)

        payload = {"address": address, "hint": PAYER_ID, "radius": 10}
        data = json.loads(_post(flask_client, "/wallet/find", payload, test_auth_headers).data)
        assert data["identifier"] == 555
        assert data["source"] == "binding"

    def test_find_radius_zero_checks_hint_only(self, flask_client, test_auth_headers):
        payload = {"address": derive_address(PAYER_ID), "hint": PAYER_ID, "radius": 0}
        data = json.loads(_post(flask_client, "/wallet/find", payload, test_auth_headers).data)
        assert data["identifier"] == PAYER_ID
        assert data["radius"] == 0

        payload = {"address": derive_address(PAYER_ID + 1), "hint": PAYER_ID, "radius": 0}
        response = _post(flask_client, "/wallet/find", payload, test_auth_headers)
        assert response.status_code == 404
        assert json.loads(response.data)["radius"] == 0

    def test_find_default_radius(self, flask_client, test_auth_headers, config):
        payload = {"address": derive_address(PAYER_ID + 4), "hint": PAYER_ID}
        data = json.loads(_post(flask_client, "/wallet/find", payload, test_auth_headers).data)
        assert data["radius"] == config.wallet_search_radius

    def test_find_miss(self, flask_client, test_auth_headers):
        payload = {"address": derive_address(PAYER_ID + 500), "hint": PAYER_ID, "radius": 10}
        response = _post(flask_client, "/wallet/find", payload, test_auth_headers)
        assert response.status_code == 404
        assert json.loads(response.data)["found"] is False


class TestContentEndpoints:
    """Tests for content registry endpoints."""

    def test_register_and_fetch(self, flask_client, test_auth_headers):
        payload = {
            "content_id": "0xFeed",
            "title": "Metropolis",
            "uploader_id": UPLOADER_ID,
            "royalty_amount": 0.25,
            "video_file_id": "FILE",
        }
        response = _post(flask_client, "/content", payload, test_auth_headers)
        assert response.status_code == 201

        data = json.loads(flask_client.get("/content/0xfeed").data)
        assert data["title"] == "Metropolis"
        assert data["uploader"] == f"TelegramUser_{UPLOADER_ID}"
        assert data["royalty_amount"] == "0.25"

    def test_register_rejects_bad_amount(self, flask_client, test_auth_headers):
        payload = {"content_id": "0x1", "title": "x", "uploader_id": 1, "royalty_amount": "-1"}
        assert _post(flask_client, "/content", payload, test_auth_headers).status_code == 400

    @pytest.mark.parametrize("missing_field", ["content_id", "title", "uploader_id"])
    def test_missing_required_field_returns_400(self, flask_client, test_auth_headers,
                                                missing_field):
        payload = {"content_id": "0x1", "title": "x", "uploader_id": 1}
        del payload[missing_field]
        assert _post(flask_client, "/content", payload, test_auth_headers).status_code == 400

    def test_unknown_content(self, flask_client):
        assert flask_client.get("/content/0xnothing").status_code == 404

    def test_list_by_uploader(self, flask_client, content_record):
        data = json.loads(flask_client.get(f"/content?uploader={UPLOADER_ID}").data)
        assert data["count"] == 1
        assert data["content"][0]["content_id"] == CONTENT_ID


class TestPuzzleEndpoints:
    """Tests for puzzle creation and unlocking."""

    def test_create_hides_solution(self, flask_client, test_auth_headers):
        response = _post(flask_client, "/puzzle/create", {"difficulty": 3}, test_auth_headers)
        assert response.status_code == 201
        data = json.loads(response.data)
        assert len(data["pieces"]) == 9
        assert "solution" not in data

    def test_create_rejects_bad_difficulty(self, flask_client, test_auth_headers):
        response = _post(flask_client, "/puzzle/create", {"difficulty": 20}, test_auth_headers)
        assert response.status_code == 400

    def test_unlock_grants_and_opens_debt(self, flask_client, test_auth_headers, content_record,
                                          transport):
        response = _unlock(flask_client, test_auth_headers)

        assert response.status_code == 200
        data = json.loads(response.data)
        assert data["success"] is True
        assert data["debt_created"] is True
        assert transport.sent[-1]["protect_content"] is True

    def test_wrong_solution(self, flask_client, test_auth_headers, content_record):
        created = _post(flask_client, "/puzzle/create", {"difficulty": 2}, test_auth_headers)
        puzzle_id = json.loads(created.data)["puzzle_id"]

        response = _post(
            flask_client, "/puzzle/validate",
            {"puzzle_id": puzzle_id, "user_id": PAYER_ID, "solution": [3, 2, 1, 0]},
            test_auth_headers,
        )
        assert response.status_code == 400
        assert json.loads(response.data)["reason"] == "invalid_solution"

    def test_pending_royalty_blocks(self, flask_client, test_auth_headers, content_record):
        _unlock(flask_client, test_auth_headers)

        response = _unlock(flask_client, test_auth_headers)

        assert response.status_code == 403
        data = json.loads(response.data)
        assert data["reason"] == "pending_royalty"
        assert data["pending_count"] == 1

    def test_validate_requires_fields(self, flask_client, test_auth_headers):
        response = _post(flask_client, "/puzzle/validate", {"puzzle_id": "x"}, test_auth_headers)
        assert response.status_code == 400

    def test_stats(self, flask_client, test_auth_headers, content_record):
        _unlock(flask_client, test_auth_headers)

        data = json.loads(flask_client.get(f"/puzzle/stats/{PAYER_ID}").data)
        assert data["user_id"] == PAYER_ID
        assert data["completed_count"] == 1


class TestRoyaltyEndpoints:
    """Tests for royalty endpoints."""

    @pytest.fixture
    def royalty_id(self, flask_client, test_auth_headers, content_record, ledger):
        _unlock(flask_client, test_auth_headers)
        return ledger.get_pending_by_payer(PAYER_ID)[0].id

    def test_pending_and_check(self, flask_client, royalty_id):
        pending = json.loads(flask_client.get(f"/royalties/pending/{PAYER_ID}").data)
        assert pending["count"] == 1
        assert pending["total_amount"] == "0.1"
        assert pending["wallet_address"] == derive_address(PAYER_ID)
        assert pending["royalties"][0]["expired"] is False

        check = json.loads(flask_client.get(f"/royalties/check/{PAYER_ID}").data)
        assert check["has_pending"] is True

    def test_pay_info(self, flask_client, royalty_id):
        data = json.loads(flask_client.get(f"/royalties/pay-info/{royalty_id}").data)
        assert data["recipient_address"] == derive_address(UPLOADER_ID)

    def test_pay_info_not_found(self, flask_client):
        response = flask_client.get("/royalties/pay-info/nope")
        assert response.status_code == 404
        assert json.loads(response.data)["error"] == "NotFound"

    def test_pay_then_claim(self, flask_client, test_auth_headers, royalty_id, funded_payer):
        response = _post(
            flask_client, "/royalties/pay",
            {"royalty_id": royalty_id, "payer_address": funded_payer, "payer_id": PAYER_ID},
            test_auth_headers,
        )
        assert response.status_code == 200
        assert json.loads(response.data)["video_resent"] is True

        check = json.loads(flask_client.get(f"/royalties/check/{PAYER_ID}").data)
        assert check["has_pending"] is False

        received = json.loads(flask_client.get(f"/royalties/received/{UPLOADER_ID}").data)
        assert received["claimable_count"] == 1

        claim = _post(flask_client, "/royalties/claim", {"uploader_id": UPLOADER_ID},
                      test_auth_headers)
        data = json.loads(claim.data)
        assert data["success"] is True
        assert data["claimed_count"] == 1

        received = json.loads(flask_client.get(f"/royalties/received/{UPLOADER_ID}").data)
        assert received["claimable_count"] == 0

    def test_pay_approval_required(self, flask_client, test_auth_headers, royalty_id,
                                   mock_ledger_client, config):
        address = derive_address(PAYER_ID)
        mock_ledger_client.set_token_balance(config.royalty_token_address, address, "5")
        mock_ledger_client.set_native_balance(address, "1")

        response = _post(
            flask_client, "/royalties/pay",
            {"royalty_id": royalty_id, "payer_address": address, "payer_id": PAYER_ID},
            test_auth_headers,
        )
        assert response.status_code == 428
        data = json.loads(response.data)
        assert data["error"] == "ApprovalRequired"
        assert "hint" in data

    def test_pay_insufficient_balance(self, flask_client, test_auth_headers, royalty_id):
        response = _post(
            flask_client, "/royalties/pay",
            {"royalty_id": royalty_id, "payer_address": derive_address(PAYER_ID),
             "payer_id": PAYER_ID},
            test_auth_headers,
        )
        assert response.status_code == 402
        data = json.loads(response.data)
        assert data["error"] == "InsufficientTokenBalance"
        assert data["shortfall"] == "0.1"

    def test_pay_settlement_timeout_then_reconcile(self, flask_client, test_auth_headers,
                                                   royalty_id, funded_payer,
                                                   mock_ledger_client, ledger):
        mock_ledger_client.settle_immediately = False
        response = _post(
            flask_client, "/royalties/pay",
            {"royalty_id": royalty_id, "payer_address": funded_payer, "payer_id": PAYER_ID},
            test_auth_headers,
        )
        assert response.status_code == 504
        data = json.loads(response.data)
        assert data["error"] == "SettlementTimeout"

        mock_ledger_client.set_transaction_status(data["tx_ref"], "success")
        reconcile = json.loads(
            _post(flask_client, "/royalties/reconcile", {}, test_auth_headers).data
        )
        assert reconcile["results"][0]["outcome"] == "paid"
        assert ledger.get(royalty_id).paid

    def test_pay_ledger_failure(self, flask_client, test_auth_headers, royalty_id,
                                funded_payer, mock_ledger_client):
        mock_ledger_client.fail_payments = True
        response = _post(
            flask_client, "/royalties/pay",
            {"royalty_id": royalty_id, "payer_address": funded_payer, "payer_id": PAYER_ID},
            test_auth_headers,
        )
        assert response.status_code == 502
        assert json.loads(response.data)["error"] == "ExternalLedgerFailure"

    def test_claim_partial_failure(self, flask_client, test_auth_headers, ledger,
                                   mock_ledger_client):
        royalty = ledger.create_pending_royalty(PAYER_ID, CONTENT_ID, "x", "0.1", UPLOADER_ID)
        ledger.mark_paid(royalty.id, "0xtx")
        mock_ledger_client.fail_all_claims = True

        data = json.loads(
            _post(flask_client, "/royalties/claim", {"uploader_id": UPLOADER_ID},
                  test_auth_headers).data
        )
        assert data["success"] is False
        assert data["failed_count"] == 1
        assert ledger.get(royalty.id).claim_failed

    def test_pay_requires_fields(self, flask_client, test_auth_headers):
        response = _post(flask_client, "/royalties/pay", {"royalty_id": "x"}, test_auth_headers)
        assert response.status_code == 400


class TestErrorHandling:
    """Tests for error handling."""

    def test_invalid_json_returns_400(self, flask_client, test_auth_headers):
        response = flask_client.post("/royalties/claim", data="not json",
                                     headers=test_auth_headers)
        assert response.status_code == 400

    def test_unknown_route(self, flask_client):
        response = flask_client.get("/nope")
        assert response.status_code == 404
        assert json.loads(response.data)["error"] == "Not found"

    def test_method_not_allowed(self, flask_client):
        response = flask_client.delete("/health")
        assert response.status_code == 405


class TestAuthenticationRequired:
    """Tests for API key enforcement."""

    @pytest.fixture
    def auth_enabled(self, monkeypatch):
        import api.utils

        monkeypatch.setattr(api.utils, "API_KEY_REQUIRED", True)
        monkeypatch.setattr(api.utils, "API_KEY", "test-api-key-12345")

    def test_missing_key(self, flask_client, auth_enabled):
        response = _post(flask_client, "/royalties/reconcile", {},
                         {"Content-Type": "application/json"})
        assert response.status_code == 401

    def test_wrong_key(self, flask_client, auth_enabled):
        response = _post(flask_client, "/royalties/reconcile", {},
                         {"Content-Type": "application/json", "X-API-Key": "wrong"})
        assert response.status_code == 403

    def test_valid_key(self, flask_client, auth_enabled, test_auth_headers):
        response = _post(flask_client, "/royalties/reconcile", {}, test_auth_headers)
        assert response.status_code == 200

    def test_reads_do_not_need_key(self, flask_client, auth_enabled):
        assert flask_client.get(f"/royalties/check/{PAYER_ID}").status_code == 200


class TestRateLimiting:
    """Tests for rate limiting on unlock and payment."""

    def test_rate_limit_exceeded(self, flask_client, test_auth_headers, monkeypatch):
        import api.utils

        monkeypatch.setattr(api.utils, "RATE_LIMIT_REQUESTS", 1)
        payload = {"royalty_id": "x", "payer_address": "0x" + "a" * 40, "payer_id": 1}

        first = _post(flask_client, "/royalties/pay", payload, test_auth_headers)
        second = _post(flask_client, "/royalties/pay", payload, test_auth_headers)

        assert first.status_code == 404
        assert second.status_code == 429
