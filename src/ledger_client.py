"""
FirstFrame - Content-registration ledger client

HTTP client for the ledger gateway that fronts the IP-registration chain:
derivative registration, ERC20 balance/allowance queries, royalty
payments on behalf of a payer, revenue claims and settlement tracking.

All calls go through one requests session with retry on transient HTTP
errors. Every public method either returns a parsed value or raises
ExternalLedgerError; waits on settlement are bounded and raise
SettlementTimeoutError when the budget runs out.
"""

import contextlib
import hashlib
import json
import logging
import secrets
import time
from datetime import UTC, datetime
from decimal import Decimal, InvalidOperation
from typing import Any

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from monitoring import metrics
from royalty_errors import ExternalLedgerError, SettlementTimeoutError, TransactionFailedError

logger = logging.getLogger(__name__)

# =============================================================================
# Constants
# =============================================================================

API_VERSION = "v1"

# Timeouts (seconds)
DEFAULT_TIMEOUT = 30
CONNECT_TIMEOUT = 10
DEFAULT_SETTLEMENT_TIMEOUT = 120.0
DEFAULT_POLL_INTERVAL = 2.0

# Retry configuration
MAX_RETRIES = 4
RETRY_BACKOFF_FACTOR = 2  # Exponential: 2s, 4s, 8s, 16s

API_KEY_HEADER = "X-Gateway-Key"

ZERO_ADDRESS = "0x" + "0" * 40

TX_SUCCESS = "success"
TX_FAILED = "failed"
TX_PENDING = "pending"


def _to_decimal(value: Any, field_name: str) -> Decimal:
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError) as e:
        raise ExternalLedgerError(f"Ledger returned a non-numeric {field_name}: {value!r}") from e


# =============================================================================
# Ledger Client
# =============================================================================


class LedgerClient:
    """
    Client for the ledger gateway.

    Features:
    - Automatic retry with exponential backoff on 429/5xx
    - Optional API key header
    - Request/response audit log
    """

    def __init__(
        self,
        endpoint: str = "http://localhost:8545",
        api_key: str | None = None,
        timeout: int = DEFAULT_TIMEOUT,
    ):
        """
        Initialize the client.

        Args:
            endpoint: Gateway base URL
            api_key: Optional gateway API key
            timeout: Per-request read timeout in seconds
        """
        self.endpoint = endpoint.rstrip("/")
        self.api_base = f"{self.endpoint}/api/{API_VERSION}"
        self.timeout = timeout
        self.api_key = api_key

        self.session = requests.Session()
        self._setup_session()

        self.audit_log: list[dict[str, Any]] = []

    def _setup_session(self):
        """Set up requests session with retry logic."""
        retry_strategy = Retry(
            total=MAX_RETRIES,
            backoff_factor=RETRY_BACKOFF_FACTOR,
            status_forcelist=[429, 500, 502, 503, 504],
            # POSTs submit transactions; retrying them could pay twice
            allowed_methods=["HEAD", "GET", "OPTIONS"],
        )

        adapter = HTTPAdapter(max_retries=retry_strategy)
        self.session.mount("http://", adapter)
        self.session.mount("https://", adapter)

        self.session.headers.update(
            {
                "Content-Type": "application/json",
                "Accept": "application/json",
                "User-Agent": f"FirstFrame-Python/{API_VERSION}",
            }
        )
        if self.api_key:
            self.session.headers[API_KEY_HEADER] = self.api_key

    def _make_request(
        self,
        method: str,
        path: str,
        body: dict[str, Any] | None = None,
        params: dict[str, Any] | None = None,
    ) -> tuple[bool, Any]:
        """
        Make an HTTP request to the gateway.

        Returns:
            Tuple of (success, response_data or error)
        """
        url = f"{self.api_base}{path}"
        body_str = json.dumps(body) if body else None

        request_log = {
            "timestamp": datetime.now(UTC).isoformat(),
            "method": method,
            "path": path,
            "params": params,
            "body_hash": hashlib.sha256(body_str.encode()).hexdigest() if body_str else None,
        }

        try:
            response = self.session.request(
                method=method,
                url=url,
                json=body,
                params=params,
                timeout=(CONNECT_TIMEOUT, self.timeout),
            )

            request_log["status_code"] = response.status_code
            request_log["success"] = response.ok
            self.audit_log.append(request_log)

            if response.ok:
                try:
                    return True, response.json()
                except json.JSONDecodeError:
                    return True, {"raw": response.text}
            else:
                error_data = {
                    "error": f"HTTP {response.status_code}",
                    "status_code": response.status_code,
                    "message": response.text,
                }
                with contextlib.suppress(ValueError):
                    error_data.update(response.json())
                return False, error_data

        except requests.exceptions.Timeout:
            request_log["error"] = "timeout"
            self.audit_log.append(request_log)
            return False, {"error": "Request timed out"}
        except requests.exceptions.ConnectionError as e:
            request_log["error"] = f"connection_error: {e!s}"
            self.audit_log.append(request_log)
            return False, {"error": f"Connection error: {e!s}"}
        except requests.exceptions.RequestException as e:
            request_log["error"] = str(e)
            self.audit_log.append(request_log)
            return False, {"error": str(e)}

    def _call(self, operation: str, method: str, path: str,
              body: dict[str, Any] | None = None) -> dict[str, Any]:
        success, result = self._make_request(method, path, body=body)
        if not success:
            message = result.get("message") or result.get("error") or "unknown error"
            logger.error("Ledger %s failed: %s", operation, message)
            raise ExternalLedgerError(f"Ledger {operation} failed: {message}", operation=operation)
        return result

    # =========================================================================
    # IP registration
    # =========================================================================

    def register_derivative(self, parent_content_id: str, metadata: dict[str, Any]) -> str:
        """
        Register a derivative IP asset of an existing one.

        Returns:
            The new IP asset id
        """
        result = self._call(
            "register_derivative", "POST", "/ip/derivatives",
            body={"parentIpId": parent_content_id, "metadata": metadata},
        )
        ip_id = result.get("ipId")
        if not ip_id:
            raise ExternalLedgerError("Ledger did not return an ipId for the derivative")
        return ip_id

    # =========================================================================
    # Balances
    # =========================================================================

    def get_token_balance(self, token: str, address: str) -> Decimal:
        """ERC20 balance of ``address`` in token units."""
        result = self._call("get_token_balance", "GET", f"/tokens/{token}/balances/{address}")
        return _to_decimal(result.get("balance", "0"), "balance")

    def get_native_balance(self, address: str) -> Decimal:
        """Native gas token balance of ``address``."""
        result = self._call("get_native_balance", "GET", f"/accounts/{address}/balance")
        return _to_decimal(result.get("balance", "0"), "balance")

    def get_allowance(self, token: str, owner: str, spender: str) -> Decimal:
        """Amount ``spender`` may move from ``owner`` in token units."""
        result = self._call(
            "get_allowance", "GET", f"/tokens/{token}/allowances/{owner}/{spender}"
        )
        return _to_decimal(result.get("allowance", "0"), "allowance")

    # =========================================================================
    # Royalty operations
    # =========================================================================

    def pay_royalty_on_behalf(
        self,
        receiver_content_id: str,
        receiver_address: str,
        payer_address: str,
        token: str,
        amount: Decimal,
    ) -> str:
        """
        Pay a royalty into a content's vault, drawing tokens from the payer.

        The payer must already have approved the royalty module.

        Returns:
            Transaction reference
        """
        result = self._call(
            "pay_royalty_on_behalf", "POST", "/royalty/pay-on-behalf",
            body={
                "receiverIpId": receiver_content_id,
                "receiverAddress": receiver_address,
                "payerIpId": ZERO_ADDRESS,
                "payerAddress": payer_address,
                "token": token,
                "amount": str(amount),
            },
        )
        tx_ref = result.get("txHash")
        if not tx_ref:
            raise ExternalLedgerError("Ledger did not return a transaction hash for the payment")
        return tx_ref

    def claim_all_revenue(self, content_id: str, claimer_address: str) -> dict[str, Any]:
        """
        Claim the revenue accumulated in a content's royalty vault.

        Returns:
            {"tx_ref": ..., "amount": Decimal}
        """
        result = self._call(
            "claim_all_revenue", "POST", "/royalty/claim",
            body={"ipId": content_id, "claimer": claimer_address},
        )
        return {
            "tx_ref": result.get("txHash"),
            "amount": _to_decimal(result.get("amount", "0"), "amount"),
        }

    # =========================================================================
    # Settlement
    # =========================================================================

    def get_transaction_status(self, tx_ref: str) -> dict[str, Any]:
        """
        Current status of a submitted transaction.

        Returns:
            Receipt dictionary whose "status" is success, failed or pending
        """
        result = self._call("get_transaction_status", "GET", f"/transactions/{tx_ref}")
        result.setdefault("status", TX_PENDING)
        return result

    def wait_for_settlement(
        self,
        tx_ref: str,
        timeout: float = DEFAULT_SETTLEMENT_TIMEOUT,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
    ) -> dict[str, Any]:
        """
        Block until a transaction is confirmed or the budget runs out.

        Returns:
            The receipt of a successful transaction

        Raises:
            SettlementTimeoutError: Still pending after ``timeout`` seconds
            TransactionFailedError: The transaction failed
            ExternalLedgerError: A status lookup failed
        """
        with metrics.timer("ledger_settlement_wait_ms"):
            return self._poll_settlement(tx_ref, timeout, poll_interval)

    def _poll_settlement(self, tx_ref: str, timeout: float, poll_interval: float) -> dict[str, Any]:
        deadline = time.monotonic() + timeout

        while True:
            receipt = self.get_transaction_status(tx_ref)
            status = receipt["status"]

            if status == TX_SUCCESS:
                logger.info("Transaction %s settled in block %s", tx_ref, receipt.get("blockNumber"))
                return receipt
            if status == TX_FAILED:
                raise TransactionFailedError(f"Transaction {tx_ref} failed on the ledger", tx_ref=tx_ref)

            remaining = deadline - time.monotonic()
            if remaining <= 0:
                raise SettlementTimeoutError(
                    f"Transaction {tx_ref} not confirmed within {timeout:g}s",
                    hint="The payment may still settle. Check again later before paying again.",
                    tx_ref=tx_ref,
                )
            time.sleep(min(poll_interval, remaining))

    def get_audit_log(self, limit: int = 100) -> list[dict[str, Any]]:
        return self.audit_log[-limit:]


# =============================================================================
# Mock Ledger Client for Testing
# =============================================================================


class MockLedgerClient(LedgerClient):
    """
    In-memory ledger for tests and local development.

    Serves the gateway routes from local balances, allowances and
    transactions. Failure switches let tests exercise every error path.
    """

    def __init__(self):
        super().__init__(endpoint="http://mock-ledger:8545")

        self.token_balances: dict[tuple[str, str], Decimal] = {}
        self.native_balances: dict[str, Decimal] = {}
        self.allowances: dict[tuple[str, str, str], Decimal] = {}
        self.vaults: dict[str, Decimal] = {}
        self.transactions: dict[str, dict[str, Any]] = {}

        self.payments: list[dict[str, Any]] = []
        self.claims: list[dict[str, Any]] = []
        self.derivatives: list[dict[str, Any]] = []

        # Failure switches
        self.settle_immediately = True
        self.fail_payments = False
        self.fail_derivatives = False
        self.fail_claims: set[str] = set()
        self.fail_all_claims = False

    # -------------------------------------------------------------------------
    # Test helpers
    # -------------------------------------------------------------------------

    def set_token_balance(self, token: str, address: str, amount: Any) -> None:
        self.token_balances[(token.lower(), address.lower())] = Decimal(str(amount))

    def set_native_balance(self, address: str, amount: Any) -> None:
        self.native_balances[address.lower()] = Decimal(str(amount))

    def set_allowance(self, token: str, owner: str, spender: str, amount: Any) -> None:
        self.allowances[(token.lower(), owner.lower(), spender.lower())] = Decimal(str(amount))

    def set_transaction_status(self, tx_ref: str, status: str) -> None:
        self.transactions[tx_ref]["status"] = status

    # -------------------------------------------------------------------------
    # Routing
    # -------------------------------------------------------------------------

    def _make_request(
        self,
        method: str,
        path: str,
        body: dict[str, Any] | None = None,
        params: dict[str, Any] | None = None,
    ) -> tuple[bool, Any]:
        """Serve the request from in-memory state instead of HTTP."""
        self.audit_log.append(
            {
                "timestamp": datetime.now(UTC).isoformat(),
                "method": method,
                "path": path,
                "mock": True,
            }
        )
        body = body or {}
        parts = path.strip("/").split("/")

        if path == "/ip/derivatives" and method == "POST":
            return self._mock_register_derivative(body)
        elif parts[0] == "tokens" and len(parts) == 4 and parts[2] == "balances":
            key = (parts[1].lower(), parts[3].lower())
            return True, {"balance": str(self.token_balances.get(key, Decimal("0")))}
        elif parts[0] == "tokens" and len(parts) == 5 and parts[2] == "allowances":
            key = (parts[1].lower(), parts[3].lower(), parts[4].lower())
            return True, {"allowance": str(self.allowances.get(key, Decimal("0")))}
        elif parts[0] == "accounts" and len(parts) == 3 and parts[2] == "balance":
            return True, {"balance": str(self.native_balances.get(parts[1].lower(), Decimal("0")))}
        elif path == "/royalty/pay-on-behalf" and method == "POST":
            return self._mock_pay(body)
        elif path == "/royalty/claim" and method == "POST":
            return self._mock_claim(body)
        elif parts[0] == "transactions" and len(parts) == 2:
            tx = self.transactions.get(parts[1])
            if tx is None:
                return False, {"error": "HTTP 404", "message": "Transaction not found"}
            return True, dict(tx)

        return False, {"error": f"Unknown path: {path}"}

    def _new_tx(self) -> str:
        tx_ref = "0x" + secrets.token_hex(32)
        self.transactions[tx_ref] = {
            "txHash": tx_ref,
            "status": TX_SUCCESS if self.settle_immediately else TX_PENDING,
            "blockNumber": len(self.transactions) + 1,
        }
        return tx_ref

    def _mock_register_derivative(self, body: dict[str, Any]) -> tuple[bool, Any]:
        if self.fail_derivatives:
            return False, {"error": "HTTP 500", "message": "derivative registration reverted"}
        ip_id = "0x" + secrets.token_hex(20)
        self.derivatives.append({"ipId": ip_id, **body})
        return True, {"ipId": ip_id}

    def _mock_pay(self, body: dict[str, Any]) -> tuple[bool, Any]:
        if self.fail_payments:
            return False, {"error": "HTTP 500", "message": "payRoyaltyOnBehalf reverted"}

        token = body["token"].lower()
        payer = body["payerAddress"].lower()
        amount = Decimal(body["amount"])

        balance_key = (token, payer)
        self.token_balances[balance_key] = self.token_balances.get(balance_key, Decimal("0")) - amount
        vault = body["receiverIpId"].lower()
        self.vaults[vault] = self.vaults.get(vault, Decimal("0")) + amount

        tx_ref = self._new_tx()
        self.payments.append({"txHash": tx_ref, **body})
        return True, {"txHash": tx_ref}

    def _mock_claim(self, body: dict[str, Any]) -> tuple[bool, Any]:
        ip_id = body["ipId"]
        if self.fail_all_claims or ip_id.lower() in self.fail_claims:
            return False, {"error": "HTTP 500", "message": f"claimAllRevenue reverted for {ip_id}"}

        amount = self.vaults.pop(ip_id.lower(), Decimal("0"))
        tx_ref = self._new_tx()
        self.claims.append({"txHash": tx_ref, "amount": str(amount), **body})
        return True, {"txHash": tx_ref, "amount": str(amount)}
