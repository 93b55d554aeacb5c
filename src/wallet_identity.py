"""
FirstFrame - Deterministic wallet identity

Maps a Telegram user id to a blockchain-style address without storing any
keys: the address is the first 160 bits of a SHA-256 digest over a salted
seed, so the bot, the backend and the web app all compute the same value
independently.

Because the mapping is not invertible, recovering the identifier behind an
address means scanning candidate identifiers. The scan is only a backfill
path: once an identifier has been resolved for an address, the pair is
persisted in the wallet binding registry and later lookups are direct.
"""

import hashlib
import logging
import re
import threading
from datetime import UTC, datetime
from typing import Any

from monitoring import metrics
from royalty_errors import WalletMismatchError
from storage import StorageBackend

logger = logging.getLogger(__name__)

SEED_NAMESPACE = "firstframe_telegram"
SEED_VERSION = "v1"

DEFAULT_SEARCH_RADIUS = 100000

BINDINGS_COLLECTION = "wallet-bindings"

_ADDRESS_PATTERN = re.compile(r"^0x[0-9a-fA-F]{40}$")


def derive_address(identifier: int) -> str:
    """
    Derive the wallet address of a Telegram user.

    Args:
        identifier: Telegram user id

    Returns:
        Lower-case ``0x`` + 40 hex character address
    """
    seed = f"{SEED_NAMESPACE}_{int(identifier)}_wallet_seed_{SEED_VERSION}"
    digest = hashlib.sha256(seed.encode("utf-8")).hexdigest()
    return "0x" + digest[:40]


def is_valid_address(value: Any) -> bool:
    """Check for ``0x`` followed by exactly 40 hex characters."""
    return isinstance(value, str) and bool(_ADDRESS_PATTERN.match(value))


def find_identifier_for_address(target: str, hint: int, radius: int) -> int | None:
    """
    Search for the identifier that derives ``target``.

    Scans ``[max(1, hint - radius), hint + radius]`` in ascending order and
    compares case-insensitively. Cost is one hash per candidate.

    Args:
        target: Address to invert
        hint: Identifier the caller believes is close
        radius: Half-width of the search window

    Returns:
        The first matching identifier, or None if the window is exhausted
    """
    target = target.lower()
    start = max(1, int(hint) - int(radius))
    end = int(hint) + int(radius)

    logger.info("Searching identifiers %d-%d for wallet %s", start, end, target)

    for candidate in range(start, end + 1):
        if derive_address(candidate) == target:
            logger.info("Wallet %s resolved to identifier %d", target, candidate)
            return candidate

    logger.warning("No identifier in %d-%d derives wallet %s", start, end, target)
    return None


class WalletBindingRegistry:
    """
    Persisted identifier <-> address bindings.

    One binding per identifier. An address resolves to the identifier bound
    to it most recently.
    """

    def __init__(self, storage: StorageBackend):
        self.storage = storage
        self._lock = threading.RLock()

    def _load(self) -> list[dict[str, Any]]:
        return self.storage.load_collection(BINDINGS_COLLECTION)

    def bind(self, identifier: int, address: str) -> dict[str, Any]:
        """
        Record that ``identifier`` owns ``address``.

        Raises:
            ValueError: If the address is malformed
        """
        if not is_valid_address(address):
            raise ValueError(f"Invalid wallet address: {address!r}")

        identifier = int(identifier)
        address = address.lower()

        with self._lock:
            bindings = self._load()
            for binding in bindings:
                if binding["identifier"] != identifier:
                    continue
                if binding["address"] == address:
                    return binding
                logger.warning(
                    "Rebinding identifier %d from %s to %s",
                    identifier, binding["address"], address,
                )
                binding["address"] = address
                binding["bound_at"] = datetime.now(UTC).isoformat()
                self.storage.save_collection(BINDINGS_COLLECTION, bindings)
                return binding

            binding = {
                "identifier": identifier,
                "address": address,
                "bound_at": datetime.now(UTC).isoformat(),
            }
            bindings.append(binding)
            self.storage.save_collection(BINDINGS_COLLECTION, bindings)
            logger.info("Bound identifier %d to wallet %s", identifier, address)
            return binding

    def get_address(self, identifier: int) -> str | None:
        for binding in self._load():
            if binding["identifier"] == int(identifier):
                return binding["address"]
        return None

    def get_identifier(self, address: str) -> int | None:
        address = address.lower()
        match = None
        for binding in self._load():
            if binding["address"] == address:
                match = binding["identifier"]
        return match


def resolve_payer_identifier(
    claimed_address: str,
    identifier: int,
    bindings: WalletBindingRegistry | None = None,
    radius: int = DEFAULT_SEARCH_RADIUS,
) -> int:
    """
    Find the identifier that actually owns ``claimed_address``.

    Order: the identifier's own derived address, a persisted binding, then a
    brute-force search around ``identifier`` whose result is persisted.

    Raises:
        WalletMismatchError: If no identifier can be found for the address
    """
    if derive_address(identifier) == claimed_address.lower():
        return int(identifier)

    if bindings is not None:
        bound = bindings.get_identifier(claimed_address)
        if bound is not None:
            return bound

    logger.warning(
        "Wallet %s does not derive from identifier %s; searching radius %d",
        claimed_address, identifier, radius,
    )
    metrics.increment("wallet_searches")
    found = find_identifier_for_address(claimed_address, identifier, radius)
    if found is None:
        raise WalletMismatchError(
            f"Could not find the identifier that owns wallet {claimed_address}",
            hint="Pay from the wallet linked to your Telegram account, "
                 "or contact support to link this wallet manually.",
            payer_address=claimed_address,
            payer_identifier=identifier,
        )

    if bindings is not None:
        bindings.bind(found, claimed_address)
    return found
