"""
FirstFrame - Royalty error taxonomy

Every failure that a caller must be able to tell apart carries a stable
machine-readable tag, a human message and, where the user has to act
out-of-band before retrying, a remediation hint.
"""

from typing import Any


class RoyaltyError(Exception):
    """Base class for tagged royalty workflow errors."""

    tag = "RoyaltyError"
    status_code = 400

    def __init__(self, message: str, hint: str | None = None, **details: Any):
        super().__init__(message)
        self.message = message
        self.hint = hint
        self.details = details

    def to_dict(self) -> dict[str, Any]:
        """JSON error body for API responses."""
        body: dict[str, Any] = {
            "success": False,
            "error": self.tag,
            "message": self.message,
        }
        if self.hint:
            body["hint"] = self.hint
        body.update({k: v for k, v in self.details.items() if v is not None})
        return body


class RoyaltyNotFoundError(RoyaltyError):
    """Royalty (or the content/session it refers to) is absent or already paid."""

    tag = "NotFound"
    status_code = 404


class RoyaltyExpiredError(RoyaltyError):
    """The payment window of a royalty has closed."""

    tag = "Expired"
    status_code = 410


class WalletMismatchError(RoyaltyError):
    """No identifier near the hint derives the claimed payer address."""

    tag = "WalletMismatch"
    status_code = 409


class InsufficientTokenBalanceError(RoyaltyError):
    tag = "InsufficientTokenBalance"
    status_code = 402


class InsufficientGasBalanceError(RoyaltyError):
    tag = "InsufficientGasBalance"
    status_code = 402


class ApprovalRequiredError(RoyaltyError):
    """Payer has not approved the royalty module to move the amount."""

    tag = "ApprovalRequired"
    status_code = 428


class ExternalLedgerError(RoyaltyError):
    """Opaque downstream failure of the ledger gateway."""

    tag = "ExternalLedgerFailure"
    status_code = 502


class SettlementTimeoutError(ExternalLedgerError):
    """
    A submitted transaction was not confirmed within the settlement budget.

    Distinct from ExternalLedgerError: the transaction may still settle, so
    callers should poll (or run reconciliation) rather than resubmit.
    """

    tag = "SettlementTimeout"
    status_code = 504


class TransactionFailedError(ExternalLedgerError):
    """The ledger confirmed that a submitted transaction failed."""


class DeliveryError(RoyaltyError):
    """Messaging transport failed to deliver content."""

    tag = "DeliveryFailure"
    status_code = 502


class PaymentInProgressError(RoyaltyError):
    """Another payment for the same royalty is being processed."""

    tag = "PaymentInProgress"
    status_code = 409
