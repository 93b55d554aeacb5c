"""
FirstFrame - Unlock workflow

Solving a puzzle unlocks the content behind it:

    START -> CHECK_GATE -> VALIDATING_PUZZLE -> REJECTED | GRANTED

The gate runs first: a payer with any unpaid royalty is rejected before the
puzzle is looked at. On a valid solution three independent tasks run in
parallel, and none of them can fail the grant:

- register a derivative IP asset for the companion image
- record puzzle-completion telemetry
- deliver the video with content protection, then open the royalty debt

A debt is only opened after the video was actually delivered.
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from enum import Enum
from typing import Any

from content_registry import ContentRecord, ContentRegistry
from ledger_client import LedgerClient
from messaging import MessagingTransport
from monitoring import metrics
from puzzle_sessions import PuzzleService
from puzzle_tracking import PuzzleCompletionTracker
from royalty_ledger import PendingRoyalty, RoyaltyLedger

logger = logging.getLogger(__name__)


class UnlockState(Enum):
    """Unlock state machine states."""

    START = "start"
    CHECK_GATE = "check_gate"
    VALIDATING_PUZZLE = "validating_puzzle"
    REJECTED = "rejected"
    GRANTED = "granted"


@dataclass
class UnlockResult:
    """Outcome of one unlock attempt."""

    granted: bool
    state: UnlockState
    reason: str | None = None
    message: str | None = None
    pending_count: int = 0
    content_id: str | None = None
    derivative_ip_id: str | None = None
    video_forwarded: bool = False
    delivered_message_ref: int | None = None
    debt_created: bool = False
    royalty: PendingRoyalty | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.granted,
            "state": self.state.value,
            "reason": self.reason,
            "message": self.message,
            "pending_count": self.pending_count,
            "content_id": self.content_id,
            "derivative_ip_id": self.derivative_ip_id,
            "video_forwarded": self.video_forwarded,
            "delivered_message_ref": self.delivered_message_ref,
            "debt_created": self.debt_created,
            "royalty": self.royalty.to_dict() if self.royalty else None,
        }


class UnlockWorkflow:
    """Gate check, puzzle validation and granting for a single unlock."""

    def __init__(
        self,
        ledger: RoyaltyLedger,
        puzzles: PuzzleService,
        registry: ContentRegistry,
        transport: MessagingTransport | None,
        ledger_client: LedgerClient | None = None,
        tracker: PuzzleCompletionTracker | None = None,
        default_amount: str = "0.1",
        channel_id: str | None = None,
    ):
        self.ledger = ledger
        self.puzzles = puzzles
        self.registry = registry
        self.transport = transport
        self.ledger_client = ledger_client
        self.tracker = tracker
        self.default_amount = default_amount
        self.channel_id = channel_id

    def attempt_unlock(
        self,
        payer_id: int,
        session_id: str,
        submitted: list[Any],
        content_id: str | None = None,
        poster_url: str | None = None,
        time_seconds: float = 0,
    ) -> UnlockResult:
        """
        Run the unlock state machine for one submission.

        Args:
            payer_id: Telegram id of the user solving the puzzle
            session_id: Puzzle session id
            submitted: Piece ids in the order the user arranged them
            content_id: Content to unlock; defaults to the session's content
            poster_url: Companion image for the derivative registration
            time_seconds: How long the user took

        Returns:
            UnlockResult in state REJECTED or GRANTED
        """
        state = UnlockState.START
        logger.debug("Unlock attempt by %s on %s (%s)", payer_id, session_id, state.value)

        # Gate: any unpaid royalty blocks every further unlock
        state = UnlockState.CHECK_GATE
        pending = self.ledger.get_pending_by_payer(payer_id)
        if pending:
            count = len(pending)
            metrics.increment("unlocks_rejected", labels={"reason": "pending_royalty"})
            logger.info("Unlock by %s rejected: %d unpaid royalties", payer_id, count)
            noun = "royalty" if count == 1 else "royalties"
            return UnlockResult(
                granted=False,
                state=UnlockState.REJECTED,
                reason="pending_royalty",
                message=f"You have {count} unpaid {noun}. Pay before unlocking more content.",
                pending_count=count,
            )

        state = UnlockState.VALIDATING_PUZZLE
        session = self.puzzles.get(session_id)
        if not self.puzzles.validate_solution(session_id, submitted):
            metrics.increment("unlocks_rejected", labels={"reason": "invalid_solution"})
            logger.info("Unlock by %s rejected: invalid solution for %s", payer_id, session_id)
            return UnlockResult(
                granted=False,
                state=UnlockState.REJECTED,
                reason="invalid_solution",
                message="Invalid puzzle solution",
            )

        content_id = content_id or (session.content_id if session else None)
        content = self.registry.get(content_id) if content_id else None
        if content_id and content is None:
            logger.warning("Unlocked content %s is not in the registry", content_id)

        with ThreadPoolExecutor(max_workers=3, thread_name_prefix="unlock") as executor:
            derivative_future = executor.submit(
                self._register_derivative, payer_id, content, poster_url
            )
            telemetry_future = executor.submit(
                self._record_completion, payer_id, content_id, session_id, time_seconds
            )
            delivery_future = executor.submit(self._deliver_and_charge, payer_id, content)

            derivative_ip_id = derivative_future.result()
            telemetry_future.result()
            message_ref, royalty = delivery_future.result()

        metrics.increment("unlocks_granted")
        logger.info(
            "Unlock granted to %s for %s (forwarded=%s, debt=%s)",
            payer_id, content_id, message_ref is not None, royalty is not None,
        )
        return UnlockResult(
            granted=True,
            state=UnlockState.GRANTED,
            message="Puzzle solved!",
            content_id=content_id,
            derivative_ip_id=derivative_ip_id,
            video_forwarded=message_ref is not None,
            delivered_message_ref=message_ref,
            debt_created=royalty is not None,
            royalty=royalty,
        )

    # -------------------------------------------------------------------------
    # Granting tasks; each one logs and absorbs its own failure
    # -------------------------------------------------------------------------

    def _register_derivative(self, payer_id: int, content: ContentRecord | None,
                             poster_url: str | None) -> str | None:
        if self.ledger_client is None or content is None or not poster_url:
            return None
        try:
            ip_id = self.ledger_client.register_derivative(
                content.content_id,
                {
                    "title": f"{content.title} - Puzzle Unlock",
                    "imageUrl": poster_url,
                    "unlockedBy": payer_id,
                    "parentIpId": content.content_id,
                },
            )
        except Exception:
            logger.warning("Derivative registration for %s failed", content.content_id,
                           exc_info=True)
            return None
        logger.info("Registered derivative %s of %s", ip_id, content.content_id)
        return ip_id

    def _record_completion(self, payer_id: int, content_id: str | None, session_id: str,
                           time_seconds: float) -> None:
        if self.tracker is None:
            return
        try:
            self.tracker.record_completion(payer_id, content_id, session_id, time_seconds)
        except Exception:
            logger.warning("Could not record puzzle completion for %s", payer_id, exc_info=True)

    def _deliver_and_charge(self, payer_id: int, content: ContentRecord | None
                            ) -> tuple[int | None, PendingRoyalty | None]:
        if content is None or self.transport is None:
            return None, None
        if not (content.video_file_id or content.channel_message_id):
            logger.info("Content %s has no deliverable video", content.content_id)
            return None, None

        amount = content.royalty_amount or self.default_amount
        caption = (
            f"{content.title}\n\n"
            f"Unlocked by solving the puzzle. A royalty of {amount} tokens "
            f"to {content.display_uploader()} is now due."
        )
        try:
            message_ref = self.transport.deliver(
                payer_id,
                video_file_id=content.video_file_id,
                channel_id=self.channel_id,
                channel_message_id=content.channel_message_id,
                caption=caption,
                protect_content=True,
            )
        except Exception:
            metrics.increment("deliveries_failed")
            logger.warning("Protected delivery of %s to %s failed", content.content_id,
                           payer_id, exc_info=True)
            return None, None

        uploader_id = content.uploader_identifier()
        if uploader_id is None:
            logger.error("Content %s has no parsable uploader %r; no royalty opened",
                         content.content_id, content.uploader)
            return message_ref, None

        try:
            royalty = self.ledger.create_pending_royalty(
                payer_id=payer_id,
                content_id=content.content_id,
                title=content.title,
                amount=amount,
                uploader_id=uploader_id,
                uploader_name=content.uploader_name,
                token_instance_id=content.token_instance_id,
                channel_message_id=content.channel_message_id,
                video_file_id=content.video_file_id,
            )
        except Exception:
            logger.error("Could not open royalty for %s on %s", payer_id, content.content_id,
                         exc_info=True)
            return message_ref, None

        metrics.increment("royalties_created")
        return message_ref, royalty
