"""
Tests for the pending royalty ledger (src/royalty_ledger.py)

Tests cover:
- Idempotent creation and delivery-reference backfill
- Payer gate queries
- paid / settlement / claimed transitions
- Expiry semantics
- Serialized concurrent mutation
"""

import sys
import threading
from datetime import UTC, datetime, timedelta

import pytest

sys.path.insert(0, "src")

from royalty_ledger import PendingRoyalty, RoyaltyLedger, normalize_amount
from storage import MemoryStorage

START = datetime(2026, 1, 1, 12, 0, tzinfo=UTC)


class Clock:
    """Settable clock for expiry tests."""

    def __init__(self, now=START):
        self.now = now

    def __call__(self):
        return self.now


@pytest.fixture
def clock():
    return Clock()


@pytest.fixture
def clocked_ledger(storage, clock):
    return RoyaltyLedger(storage, clock=clock)


def create(ledger, payer_id=7, content_id="0xABC", **kwargs):
    params = {
        "title": "Nosferatu",
        "amount": "0.1",
        "uploader_id": 42,
    }
    params.update(kwargs)
    return ledger.create_pending_royalty(payer_id=payer_id, content_id=content_id, **params)


# ============================================================
# Creation Tests
# ============================================================

class TestCreatePendingRoyalty:
    """Tests for create_pending_royalty."""

    def test_new_record(self, clocked_ledger):
        royalty = create(clocked_ledger)

        assert royalty.id
        assert royalty.paid is False
        assert royalty.claimed is False
        assert royalty.paid_at is None
        assert royalty.payment_ref is None
        assert royalty.amount == "0.1"
        assert royalty.created_at == START.isoformat()

    def test_expires_after_24_hours(self, clocked_ledger):
        royalty = create(clocked_ledger)
        assert royalty.expires_at == (START + timedelta(hours=24)).isoformat()

    def test_idempotent_case_insensitive(self, clocked_ledger):
        """Same payer and content (any case) returns the existing record."""
        first = create(clocked_ledger, content_id="0xABC")
        second = create(clocked_ledger, content_id="0xabc")

        assert second.id == first.id
        assert len(clocked_ledger.get_pending_by_payer(7)) == 1

    def test_backfills_absent_delivery_refs_only(self, clocked_ledger):
        create(clocked_ledger, channel_message_id=5)
        again = create(clocked_ledger, video_file_id="FILE", channel_message_id=99)

        assert again.video_file_id == "FILE"
        assert again.channel_message_id == 5
        assert clocked_ledger.get(again.id).video_file_id == "FILE"

    def test_new_record_after_payment(self, clocked_ledger):
        """A paid record does not block a new debt for the same content."""
        first = create(clocked_ledger)
        clocked_ledger.mark_paid(first.id, "0xtx")

        second = create(clocked_ledger)
        assert second.id != first.id

    def test_other_payer_gets_own_record(self, clocked_ledger):
        assert create(clocked_ledger, payer_id=7).id != create(clocked_ledger, payer_id=8).id

    def test_invalid_amount(self, clocked_ledger):
        with pytest.raises(ValueError):
            create(clocked_ledger, amount="-1")
        with pytest.raises(ValueError):
            create(clocked_ledger, amount="lots")

    def test_persisted(self, storage, clocked_ledger):
        royalty = create(clocked_ledger)
        reloaded = RoyaltyLedger(storage).get(royalty.id)

        assert reloaded == royalty


class TestNormalizeAmount:
    """Tests for amount normalization."""

    def test_decimal_string(self):
        assert normalize_amount("0.10") == "0.1"
        assert normalize_amount(1) == "1"
        assert normalize_amount("2.50") == "2.5"

    def test_rejects_zero(self):
        with pytest.raises(ValueError):
            normalize_amount("0")


# ============================================================
# Query Tests
# ============================================================

class TestQueries:
    """Tests for ledger queries."""

    def test_pending_is_global_per_payer(self, clocked_ledger):
        create(clocked_ledger, content_id="0x1")
        create(clocked_ledger, content_id="0x2")
        create(clocked_ledger, payer_id=8, content_id="0x1")

        assert clocked_ledger.count_pending(7) == 2
        assert clocked_ledger.has_pending(7)
        assert not clocked_ledger.has_pending(9)

    def test_paid_not_pending(self, clocked_ledger):
        royalty = create(clocked_ledger)
        clocked_ledger.mark_paid(royalty.id)

        assert clocked_ledger.get_pending_by_payer(7) == []
        assert clocked_ledger.get_unpaid() == []

    def test_received_and_claimable(self, clocked_ledger):
        a = create(clocked_ledger, content_id="0x1")
        b = create(clocked_ledger, content_id="0x2")
        create(clocked_ledger, content_id="0x3")
        clocked_ledger.mark_paid(a.id)
        clocked_ledger.mark_paid(b.id)
        clocked_ledger.mark_claimed([a.id])

        assert {r.id for r in clocked_ledger.get_received_by_uploader(42)} == {a.id, b.id}
        assert [r.id for r in clocked_ledger.get_claimable(42)] == [b.id]

    def test_get_missing(self, clocked_ledger):
        assert clocked_ledger.get("nope") is None


# ============================================================
# Transition Tests
# ============================================================

class TestTransitions:
    """Tests for state transitions."""

    def test_mark_paid(self, clocked_ledger, clock):
        royalty = create(clocked_ledger)
        clock.now = START + timedelta(hours=1)

        assert clocked_ledger.mark_paid(royalty.id, "0xtx") is True

        paid = clocked_ledger.get(royalty.id)
        assert paid.paid is True
        assert paid.payment_ref == "0xtx"
        assert paid.paid_at == clock.now.isoformat()

    def test_mark_paid_missing(self, clocked_ledger):
        assert clocked_ledger.mark_paid("nope") is False

    def test_mark_paid_after_expiry(self, clocked_ledger, clock):
        """Expiry does not guard mark_paid."""
        royalty = create(clocked_ledger)
        clock.now = START + timedelta(days=3)

        assert clocked_ledger.mark_paid(royalty.id) is True

    def test_mark_paid_clears_settlement(self, clocked_ledger):
        royalty = create(clocked_ledger)
        clocked_ledger.mark_settlement_pending(royalty.id, "0xpending")
        assert clocked_ledger.get(royalty.id).settlement_ref == "0xpending"

        clocked_ledger.mark_paid(royalty.id, "0xpending")
        assert clocked_ledger.get(royalty.id).settlement_ref is None

    def test_mark_claimed_requires_paid(self, clocked_ledger):
        """claimed implies paid."""
        royalty = create(clocked_ledger)

        assert clocked_ledger.mark_claimed([royalty.id]) == 0
        assert clocked_ledger.get(royalty.id).claimed is False

    def test_claim_failed_then_claimed(self, clocked_ledger):
        royalty = create(clocked_ledger)
        clocked_ledger.mark_paid(royalty.id)

        assert clocked_ledger.mark_claim_failed([royalty.id], "reverted") == 1
        failed = clocked_ledger.get(royalty.id)
        assert failed.claim_failed is True
        assert failed.claimed is False
        assert failed.claim_error == "reverted"

        assert clocked_ledger.mark_claimed([royalty.id]) == 1
        claimed = clocked_ledger.get(royalty.id)
        assert claimed.claimed is True
        assert claimed.claim_failed is False
        assert claimed.claim_error is None


# ============================================================
# Expiry Tests
# ============================================================

class TestExpiry:
    """Tests for expiry semantics."""

    def test_is_expired(self, clocked_ledger):
        royalty = create(clocked_ledger)

        assert not royalty.is_expired(START + timedelta(hours=23, minutes=59))
        assert royalty.is_expired(START + timedelta(hours=24))

    def test_custom_ttl(self, storage, clock):
        ledger = RoyaltyLedger(storage, ttl=timedelta(hours=1), clock=clock)
        royalty = create(ledger)
        assert royalty.expires_at == (START + timedelta(hours=1)).isoformat()

    def test_expired_record_still_pending(self, clocked_ledger, clock):
        """Expired records are never swept away."""
        create(clocked_ledger)
        clock.now = START + timedelta(days=30)

        assert clocked_ledger.count_pending(7) == 1


class TestPendingRoyaltySerialization:
    """Tests for PendingRoyalty dict conversion."""

    def test_from_dict_ignores_unknown_keys(self, clocked_ledger):
        data = create(clocked_ledger).to_dict()
        data["legacy_field"] = "x"

        assert PendingRoyalty.from_dict(data).payer_id == 7


# ============================================================
# Concurrency Tests
# ============================================================

class TestConcurrency:
    """Tests for serialized ledger mutations."""

    def test_concurrent_creates_do_not_lose_updates(self):
        ledger = RoyaltyLedger(MemoryStorage())

        def worker(payer_id):
            create(ledger, payer_id=payer_id, content_id=f"0x{payer_id}")

        threads = [threading.Thread(target=worker, args=(i,)) for i in range(1, 21)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(ledger.all()) == 20

    def test_concurrent_duplicate_creates_are_idempotent(self):
        ledger = RoyaltyLedger(MemoryStorage())
        ids = []

        def worker():
            ids.append(create(ledger).id)

        threads = [threading.Thread(target=worker) for _ in range(10)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(set(ids)) == 1
        assert len(ledger.all()) == 1
