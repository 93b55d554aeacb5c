"""
FirstFrame - Royalty payment and claims

Settles pending royalties against the external ledger and lets uploaders
claim what has been paid to them.

Payment preconditions are checked in a fixed order and the first failure
wins:

    1. record exists and is unpaid          -> NotFound
    2. payment window still open            -> Expired
    3. recipient resolved (registry, else record)
    4. payer wallet resolved                -> WalletMismatch
    5. token balance covers the amount      -> InsufficientTokenBalance
    6. gas balance above the minimum        -> InsufficientGasBalance
    7. royalty module approved for amount   -> ApprovalRequired

None of these are retried automatically. Settlement waits are bounded: a
transaction still unconfirmed when the budget runs out is remembered on the
record and reported as SettlementTimeout, so that a later call (or the
reconciliation sweep) can confirm it instead of paying twice. The transaction
is recorded as soon as it is submitted, so a failed status lookup leaves it
resumable too.
"""

import logging
import threading
from collections import OrderedDict
from dataclasses import asdict, dataclass, field
from decimal import Decimal
from typing import Any

from config import AppConfig
from content_registry import ContentRegistry
from ledger_client import TX_FAILED, TX_SUCCESS, LedgerClient
from messaging import MessagingTransport
from monitoring import metrics
from royalty_errors import (
    ApprovalRequiredError,
    ExternalLedgerError,
    InsufficientGasBalanceError,
    InsufficientTokenBalanceError,
    PaymentInProgressError,
    RoyaltyExpiredError,
    RoyaltyNotFoundError,
    SettlementTimeoutError,
    TransactionFailedError,
    WalletMismatchError,
)
from royalty_ledger import PendingRoyalty, RoyaltyLedger
from wallet_identity import (
    WalletBindingRegistry,
    derive_address,
    is_valid_address,
    resolve_payer_identifier,
)

logger = logging.getLogger(__name__)


# =============================================================================
# Results
# =============================================================================


@dataclass
class PaymentResult:
    """A settled royalty payment."""

    royalty_id: str
    tx_ref: str
    payer_address: str
    payer_identifier: int
    recipient_address: str
    amount: str
    payer_balance_before: str | None = None
    payer_balance_after: str | None = None
    video_resent: bool = False

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class ClaimResult:
    """Outcome of claiming every paid royalty of an uploader."""

    uploader_id: int
    claimer_address: str
    claimed_count: int = 0
    failed_count: int = 0
    total_amount: str = "0"
    per_content: list[dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


# =============================================================================
# Service
# =============================================================================


class RoyaltyPaymentService:
    """Payment, claim and settlement reconciliation for pending royalties."""

    def __init__(
        self,
        ledger: RoyaltyLedger,
        registry: ContentRegistry,
        ledger_client: LedgerClient,
        transport: MessagingTransport | None = None,
        bindings: WalletBindingRegistry | None = None,
        config: AppConfig | None = None,
    ):
        self.ledger = ledger
        self.registry = registry
        self.ledger_client = ledger_client
        self.transport = transport
        self.bindings = bindings
        self.config = config or AppConfig()

        self._in_flight: set[str] = set()
        self._in_flight_lock = threading.Lock()

    # -------------------------------------------------------------------------
    # Lookups
    # -------------------------------------------------------------------------

    def _get_unpaid(self, royalty_id: str) -> PendingRoyalty:
        royalty = self.ledger.get(royalty_id)
        if royalty is None or royalty.paid:
            raise RoyaltyNotFoundError(
                f"Royalty {royalty_id} not found or already paid",
                royalty_id=royalty_id,
            )
        return royalty

    def _check_not_expired(self, royalty: PendingRoyalty) -> None:
        if royalty.is_expired(self.ledger.now()):
            raise RoyaltyExpiredError(
                f"Royalty {royalty.id} expired at {royalty.expires_at}",
                hint="Unlock the content again to open a new payment window.",
                royalty_id=royalty.id,
                expires_at=royalty.expires_at,
            )

    def _resolve_recipient(self, royalty: PendingRoyalty) -> tuple[int, str]:
        """Uploader id and receiving address, preferring the content registry."""
        uploader_id = None
        content = self.registry.get(royalty.content_id)
        if content is not None:
            uploader_id = content.uploader_identifier()
        if uploader_id is None:
            uploader_id = royalty.uploader_id
        return uploader_id, derive_address(uploader_id)

    def get_pay_info(self, royalty_id: str) -> dict[str, Any]:
        """
        Everything a wallet needs to pay a royalty.

        Raises:
            RoyaltyNotFoundError, RoyaltyExpiredError
        """
        royalty = self._get_unpaid(royalty_id)
        self._check_not_expired(royalty)
        uploader_id, recipient_address = self._resolve_recipient(royalty)

        return {
            "royalty_id": royalty.id,
            "content_id": royalty.content_id,
            "title": royalty.title,
            "amount": royalty.amount,
            "token": self.config.royalty_token_address,
            "royalty_module": self.config.royalty_module_address,
            "recipient_identifier": uploader_id,
            "recipient_address": recipient_address,
            "uploader_name": royalty.uploader_name,
            "expires_at": royalty.expires_at,
            "faucet_url": self.config.token_faucet_url,
            "settlement_ref": royalty.settlement_ref,
        }

    # -------------------------------------------------------------------------
    # Payment
    # -------------------------------------------------------------------------

    def pay_royalty(self, royalty_id: str, claimed_payer_address: str,
                    payer_identifier: int) -> PaymentResult:
        """
        Pay a pending royalty from the payer's wallet to the uploader's.

        Args:
            royalty_id: Royalty to settle
            claimed_payer_address: Wallet the payment is drawn from
            payer_identifier: Telegram id the caller believes owns the wallet

        Raises:
            RoyaltyError subclass tagged with the first failing precondition,
            ExternalLedgerError if execution fails, SettlementTimeoutError if
            the payment was submitted but not confirmed in time.
        """
        with self._in_flight_lock:
            if royalty_id in self._in_flight:
                raise PaymentInProgressError(
                    f"A payment for royalty {royalty_id} is already in progress",
                    royalty_id=royalty_id,
                )
            self._in_flight.add(royalty_id)

        try:
            return self._pay(royalty_id, claimed_payer_address, int(payer_identifier))
        finally:
            with self._in_flight_lock:
                self._in_flight.discard(royalty_id)

    def _pay(self, royalty_id: str, claimed_payer_address: str,
             payer_identifier: int) -> PaymentResult:
        royalty = self._get_unpaid(royalty_id)

        if royalty.settlement_ref:
            result = self._resume_settlement(royalty, claimed_payer_address, payer_identifier)
            if result is not None:
                return result
            royalty = self._get_unpaid(royalty_id)

        self._check_not_expired(royalty)

        uploader_id, recipient_address = self._resolve_recipient(royalty)

        if not is_valid_address(claimed_payer_address):
            raise WalletMismatchError(
                f"Invalid payer wallet address: {claimed_payer_address!r}",
                payer_address=claimed_payer_address,
                payer_identifier=payer_identifier,
            )
        payer_address = claimed_payer_address.lower()
        resolved_payer = resolve_payer_identifier(
            payer_address,
            payer_identifier,
            bindings=self.bindings,
            radius=self.config.wallet_search_radius,
        )

        token = self.config.royalty_token_address
        module = self.config.royalty_module_address
        amount = royalty.amount_decimal

        balance = self.ledger_client.get_token_balance(token, payer_address)
        if balance < amount:
            raise InsufficientTokenBalanceError(
                f"Wallet holds {balance} tokens but the royalty is {amount}",
                hint=f"Mint test tokens at {self.config.token_faucet_url}",
                balance=str(balance),
                required=str(amount),
                shortfall=str(amount - balance),
                faucet_url=self.config.token_faucet_url,
            )

        gas = self.ledger_client.get_native_balance(payer_address)
        if gas < self.config.min_gas_balance:
            raise InsufficientGasBalanceError(
                f"Wallet holds {gas} of the gas token, at least "
                f"{self.config.min_gas_balance} is needed",
                hint="Top up the wallet with testnet gas from a faucet.",
                balance=str(gas),
                required=str(self.config.min_gas_balance),
            )

        allowance = self.ledger_client.get_allowance(token, payer_address, module)
        if allowance < amount:
            raise ApprovalRequiredError(
                f"Royalty module may spend {allowance} tokens, {amount} required",
                hint=f"Approve {module} to spend at least {amount} of token {token} first.",
                allowance=str(allowance),
                required=str(amount),
                spender=module,
                token=token,
            )

        logger.info(
            "Paying royalty %s: %s tokens from %s to %s",
            royalty.id, royalty.amount, payer_address, recipient_address,
        )
        tx_ref = self.ledger_client.pay_royalty_on_behalf(
            royalty.content_id, recipient_address, payer_address, token, amount
        )
        # Remembered before waiting so no later call can submit it again.
        self.ledger.mark_settlement_pending(royalty.id, tx_ref)

        try:
            self.ledger_client.wait_for_settlement(tx_ref, timeout=self.config.settlement_timeout)
        except TransactionFailedError:
            self.ledger.mark_settlement_pending(royalty.id, None)
            logger.warning("Royalty %s payment %s failed on the ledger", royalty.id, tx_ref)
            raise
        except SettlementTimeoutError:
            logger.warning("Royalty %s payment %s not yet settled", royalty.id, tx_ref)
            raise
        except ExternalLedgerError:
            logger.warning("Royalty %s payment %s submitted but its status is unknown",
                           royalty.id, tx_ref)
            raise

        video_resent = self._complete_payment(royalty, tx_ref)

        return PaymentResult(
            royalty_id=royalty.id,
            tx_ref=tx_ref,
            payer_address=payer_address,
            payer_identifier=resolved_payer,
            recipient_address=recipient_address,
            amount=royalty.amount,
            payer_balance_before=str(balance),
            payer_balance_after=self._balance_or_none(token, payer_address),
            video_resent=video_resent,
        )

    def _resume_settlement(self, royalty: PendingRoyalty, payer_address: str,
                           payer_identifier: int) -> PaymentResult | None:
        """
        Settle a royalty whose earlier payment timed out.

        Returns a result if that payment has since confirmed. Returns None if
        it failed, so the caller may pay again. Raises SettlementTimeoutError
        while it is still pending.
        """
        tx_ref = royalty.settlement_ref
        status = self.ledger_client.get_transaction_status(tx_ref)["status"]

        if status == TX_SUCCESS:
            logger.info("Earlier payment %s for royalty %s has settled", tx_ref, royalty.id)
            video_resent = self._complete_payment(royalty, tx_ref)
            _, recipient_address = self._resolve_recipient(royalty)
            return PaymentResult(
                royalty_id=royalty.id,
                tx_ref=tx_ref,
                payer_address=payer_address.lower(),
                payer_identifier=payer_identifier,
                recipient_address=recipient_address,
                amount=royalty.amount,
                payer_balance_after=self._balance_or_none(
                    self.config.royalty_token_address, payer_address
                ),
                video_resent=video_resent,
            )

        if status == TX_FAILED:
            logger.warning("Earlier payment %s for royalty %s failed", tx_ref, royalty.id)
            self.ledger.mark_settlement_pending(royalty.id, None)
            return None

        raise SettlementTimeoutError(
            f"Payment {tx_ref} for royalty {royalty.id} is still pending",
            hint="The payment has not settled yet. Check again later before paying again.",
            tx_ref=tx_ref,
            royalty_id=royalty.id,
        )

    def _complete_payment(self, royalty: PendingRoyalty, tx_ref: str) -> bool:
        """Mark paid and send the unprotected video. Returns whether it was resent."""
        self.ledger.mark_paid(royalty.id, tx_ref)
        metrics.increment("royalties_paid")
        return self._redeliver(royalty)

    def _redeliver(self, royalty: PendingRoyalty) -> bool:
        if self.transport is None or not royalty.has_delivery_ref():
            return False
        try:
            self.transport.deliver(
                royalty.payer_id,
                video_file_id=royalty.video_file_id,
                channel_id=self.config.telegram_channel_id,
                channel_message_id=royalty.channel_message_id,
                caption=(
                    f"{royalty.title}\n\nRoyalty paid, thank you! "
                    "This copy is yours to keep and share."
                ),
                protect_content=False,
            )
        except Exception:
            metrics.increment("deliveries_failed")
            logger.warning("Unprotected redelivery of royalty %s failed", royalty.id,
                           exc_info=True)
            return False
        return True

    def _balance_or_none(self, token: str, address: str) -> str | None:
        try:
            return str(self.ledger_client.get_token_balance(token, address))
        except ExternalLedgerError:
            logger.warning("Could not read post-payment balance of %s", address)
            return None

    # -------------------------------------------------------------------------
    # Claims
    # -------------------------------------------------------------------------

    def claim_royalties(self, uploader_id: int) -> ClaimResult:
        """
        Claim every paid, unclaimed royalty owed to an uploader.

        Records are grouped by content id and claimed one group at a time.
        Only groups whose claim succeeded are marked claimed; a failed group
        is flagged claim_failed and stays claimable.
        """
        uploader_id = int(uploader_id)
        claimer_address = derive_address(uploader_id)
        result = ClaimResult(uploader_id=uploader_id, claimer_address=claimer_address)

        groups: OrderedDict[str, list[PendingRoyalty]] = OrderedDict()
        for royalty in self.ledger.get_claimable(uploader_id):
            groups.setdefault(royalty.content_id.lower(), []).append(royalty)

        if not groups:
            logger.info("Nothing to claim for uploader %s", uploader_id)
            return result

        total = Decimal("0")
        for royalties in groups.values():
            content_id = royalties[0].content_id
            ids = [r.id for r in royalties]
            try:
                claim = self.ledger_client.claim_all_revenue(content_id, claimer_address)
            except Exception as e:
                message = getattr(e, "message", str(e))
                self.ledger.mark_claim_failed(ids, message)
                metrics.increment("royalty_claim_failures")
                logger.warning("Claim for content %s failed: %s", content_id, message,
                               exc_info=True)
                result.failed_count += len(ids)
                result.per_content.append(
                    {
                        "content_id": content_id,
                        "success": False,
                        "royalty_count": len(ids),
                        "error": message,
                    }
                )
                continue

            self.ledger.mark_claimed(ids)
            metrics.increment("royalties_claimed", len(ids))
            total += claim["amount"]
            result.claimed_count += len(ids)
            result.per_content.append(
                {
                    "content_id": content_id,
                    "success": True,
                    "royalty_count": len(ids),
                    "tx_ref": claim["tx_ref"],
                    "amount": str(claim["amount"]),
                }
            )

        result.total_amount = str(total)
        logger.info(
            "Uploader %s claimed %d royalties (%d failed), total %s",
            uploader_id, result.claimed_count, result.failed_count, result.total_amount,
        )
        return result

    # -------------------------------------------------------------------------
    # Reconciliation
    # -------------------------------------------------------------------------

    def reconcile_pending_settlements(self) -> list[dict[str, Any]]:
        """
        Check every unpaid royalty with a submitted payment against the ledger.

        Confirmed payments are marked paid, failed ones are cleared so the
        payer can pay again, pending ones are left alone.

        Returns:
            One {"royalty_id", "tx_ref", "outcome"} entry per record checked
        """
        outcomes = []
        for royalty in self.ledger.get_unpaid():
            if not royalty.settlement_ref:
                continue
            tx_ref = royalty.settlement_ref
            try:
                status = self.ledger_client.get_transaction_status(tx_ref)["status"]
            except ExternalLedgerError as e:
                logger.warning("Could not check settlement %s: %s", tx_ref, e.message)
                outcomes.append({"royalty_id": royalty.id, "tx_ref": tx_ref, "outcome": "error"})
                continue

            if status == TX_SUCCESS:
                self._complete_payment(royalty, tx_ref)
                outcome = "paid"
            elif status == TX_FAILED:
                self.ledger.mark_settlement_pending(royalty.id, None)
                outcome = "failed"
            else:
                outcome = "pending"

            logger.info("Reconciled royalty %s (%s): %s", royalty.id, tx_ref, outcome)
            outcomes.append({"royalty_id": royalty.id, "tx_ref": tx_ref, "outcome": outcome})
        return outcomes
