"""
FirstFrame - Pending Royalty Ledger

Tracks the debts created when a user unlocks protected content by solving a
puzzle. Each record is owed by a payer (the user who unlocked) to the
uploader of the content, and moves through:

    pending (paid=False) -> paid -> claimed

Key rules:
- At most one unpaid record per (payer, content). Creating a second one
  returns the existing record instead of stacking debt.
- Any unpaid record blocks its payer from unlocking further content.
- Records expire TTL after creation (24h by default). Expiry is checked
  when a payment is initiated; it never deletes or changes the record.
- Records are never deleted; the full history is kept.

The ledger is persisted as a whole-collection snapshot. Every
read-modify-write cycle runs under a single lock so concurrent requests in
one process cannot overwrite each other's changes.
"""

import logging
import threading
import uuid
from collections.abc import Callable
from dataclasses import asdict, dataclass, field
from datetime import UTC, datetime, timedelta
from decimal import Decimal, InvalidOperation
from typing import Any

from storage import StorageBackend

logger = logging.getLogger(__name__)

# =============================================================================
# Constants
# =============================================================================

ROYALTIES_COLLECTION = "pending-royalties"

DEFAULT_ROYALTY_TTL = timedelta(hours=24)


def _utcnow() -> datetime:
    return datetime.now(UTC)


def _parse_time(value: str) -> datetime:
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


def normalize_amount(amount: Any) -> str:
    """
    Validate a royalty amount and return it as a plain decimal string.

    Raises:
        ValueError: If the amount is not a positive decimal
    """
    try:
        value = Decimal(str(amount))
    except (InvalidOperation, ValueError) as e:
        raise ValueError(f"Invalid royalty amount: {amount!r}") from e
    if not value.is_finite() or value <= 0:
        raise ValueError(f"Royalty amount must be positive, got {amount!r}")
    return format(value.normalize(), "f")


# =============================================================================
# Data Classes
# =============================================================================


@dataclass
class PendingRoyalty:
    """A debt owed by a payer to an uploader for one unlock."""

    id: str
    payer_id: int
    content_id: str
    title: str
    amount: str  # Decimal string in token units, e.g. "0.1"
    uploader_id: int
    created_at: str
    expires_at: str
    uploader_name: str | None = None
    token_instance_id: str | None = None
    # Delivery references needed to re-send the content after payment
    channel_message_id: int | None = None
    video_file_id: str | None = None
    paid: bool = False
    paid_at: str | None = None
    payment_ref: str | None = None
    claimed: bool = False
    claimed_at: str | None = None
    claim_failed: bool = False
    claim_error: str | None = None
    # Submitted but unconfirmed payment transaction
    settlement_ref: str | None = None

    @property
    def amount_decimal(self) -> Decimal:
        return Decimal(self.amount)

    def is_expired(self, now: datetime | None = None) -> bool:
        """Whether the payment window has closed."""
        return (now or _utcnow()) >= _parse_time(self.expires_at)

    def has_delivery_ref(self) -> bool:
        return bool(self.video_file_id or self.channel_message_id)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "PendingRoyalty":
        """Create from dictionary, ignoring unknown keys."""
        known = cls.__dataclass_fields__
        return cls(**{k: v for k, v in data.items() if k in known})


# =============================================================================
# Ledger
# =============================================================================


class RoyaltyLedger:
    """
    Durable collection of PendingRoyalty records.

    Sole owner of royalty state: workflows read and mutate records only
    through these methods.
    """

    def __init__(
        self,
        storage: StorageBackend,
        ttl: timedelta = DEFAULT_ROYALTY_TTL,
        clock: Callable[[], datetime] = _utcnow,
    ):
        """
        Args:
            storage: Backend holding the royalty collection
            ttl: Payment window granted to each new record
            clock: Returns the current UTC time
        """
        self.storage = storage
        self.ttl = ttl
        self.clock = clock
        self._lock = threading.RLock()

    # -------------------------------------------------------------------------
    # Snapshot helpers
    # -------------------------------------------------------------------------

    def _load(self) -> list[PendingRoyalty]:
        return [PendingRoyalty.from_dict(r) for r in self.storage.load_collection(ROYALTIES_COLLECTION)]

    def _save(self, royalties: list[PendingRoyalty]) -> None:
        self.storage.save_collection(ROYALTIES_COLLECTION, [r.to_dict() for r in royalties])

    def now(self) -> datetime:
        return self.clock()

    # -------------------------------------------------------------------------
    # Creation
    # -------------------------------------------------------------------------

    def create_pending_royalty(
        self,
        payer_id: int,
        content_id: str,
        title: str,
        amount: Any,
        uploader_id: int,
        uploader_name: str | None = None,
        token_instance_id: str | None = None,
        channel_message_id: int | None = None,
        video_file_id: str | None = None,
    ) -> PendingRoyalty:
        """
        Open a debt for an unlock, or return the one already open.

        If an unpaid record exists for (payer_id, content_id), content ids
        compared case-insensitively, it is returned as is, except that
        delivery references it lacks are filled in from this call.

        Returns:
            The new or existing record
        """
        amount = normalize_amount(amount)

        with self._lock:
            royalties = self._load()

            for existing in royalties:
                if (
                    existing.payer_id == payer_id
                    and existing.content_id.lower() == content_id.lower()
                    and not existing.paid
                ):
                    logger.warning(
                        "Unpaid royalty %s already exists for payer %s and content %s",
                        existing.id, payer_id, content_id,
                    )
                    changed = False
                    if not existing.video_file_id and video_file_id:
                        existing.video_file_id = video_file_id
                        changed = True
                    if not existing.channel_message_id and channel_message_id:
                        existing.channel_message_id = channel_message_id
                        changed = True
                    if changed:
                        self._save(royalties)
                        logger.info("Backfilled delivery references on royalty %s", existing.id)
                    return existing

            now = self.now()
            royalty = PendingRoyalty(
                id=str(uuid.uuid4()),
                payer_id=payer_id,
                content_id=content_id,
                title=title,
                amount=amount,
                uploader_id=uploader_id,
                uploader_name=uploader_name,
                token_instance_id=token_instance_id,
                channel_message_id=channel_message_id,
                video_file_id=video_file_id,
                created_at=now.isoformat(),
                expires_at=(now + self.ttl).isoformat(),
            )
            royalties.append(royalty)
            self._save(royalties)

        logger.info("Created pending royalty %s for payer %s", royalty.id, payer_id)
        return royalty

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def all(self) -> list[PendingRoyalty]:
        return self._load()

    def get(self, royalty_id: str) -> PendingRoyalty | None:
        for royalty in self._load():
            if royalty.id == royalty_id:
                return royalty
        return None

    def get_pending_by_payer(self, payer_id: int) -> list[PendingRoyalty]:
        """Unpaid records owed by a payer, whatever content they are for."""
        return [r for r in self._load() if r.payer_id == payer_id and not r.paid]

    def count_pending(self, payer_id: int) -> int:
        return len(self.get_pending_by_payer(payer_id))

    def has_pending(self, payer_id: int) -> bool:
        return self.count_pending(payer_id) > 0

    def get_unpaid(self) -> list[PendingRoyalty]:
        return [r for r in self._load() if not r.paid]

    def get_received_by_uploader(self, uploader_id: int) -> list[PendingRoyalty]:
        """Paid records owed to an uploader, claimed or not."""
        return [r for r in self._load() if r.uploader_id == uploader_id and r.paid]

    def get_claimable(self, uploader_id: int) -> list[PendingRoyalty]:
        return [
            r for r in self._load()
            if r.uploader_id == uploader_id and r.paid and not r.claimed
        ]

    # -------------------------------------------------------------------------
    # State transitions
    # -------------------------------------------------------------------------

    def mark_paid(self, royalty_id: str, payment_ref: str | None = None) -> bool:
        """
        Mark a record as paid.

        Not guarded by expiry; callers decide whether an expired record may
        still be settled.

        Returns:
            False if no record has this id
        """
        with self._lock:
            royalties = self._load()
            for royalty in royalties:
                if royalty.id != royalty_id:
                    continue
                royalty.paid = True
                royalty.paid_at = self.now().isoformat()
                if payment_ref:
                    royalty.payment_ref = payment_ref
                royalty.settlement_ref = None
                self._save(royalties)
                logger.info("Royalty %s marked as paid", royalty_id)
                return True
        return False

    def mark_settlement_pending(self, royalty_id: str, tx_ref: str | None) -> bool:
        """Remember (or clear, with None) an unconfirmed payment transaction."""
        with self._lock:
            royalties = self._load()
            for royalty in royalties:
                if royalty.id == royalty_id:
                    royalty.settlement_ref = tx_ref
                    self._save(royalties)
                    return True
        return False

    def mark_claimed(self, royalty_ids: list[str]) -> int:
        """
        Mark paid records as claimed by their uploader.

        Returns:
            Number of records updated
        """
        wanted = set(royalty_ids)
        updated = 0
        with self._lock:
            royalties = self._load()
            now = self.now().isoformat()
            for royalty in royalties:
                if royalty.id in wanted and royalty.paid and not royalty.claimed:
                    royalty.claimed = True
                    royalty.claimed_at = now
                    royalty.claim_failed = False
                    royalty.claim_error = None
                    updated += 1
            if updated:
                self._save(royalties)
        return updated

    def mark_claim_failed(self, royalty_ids: list[str], error: str) -> int:
        """Flag records whose external claim failed so they can be retried."""
        wanted = set(royalty_ids)
        updated = 0
        with self._lock:
            royalties = self._load()
            for royalty in royalties:
                if royalty.id in wanted and not royalty.claimed:
                    royalty.claim_failed = True
                    royalty.claim_error = error
                    updated += 1
            if updated:
                self._save(royalties)
        return updated
