# oracle_gateway/x402/ledger.py
"""
Solana ledger verification of x402 payment proofs.

Looks up the transaction named by a proof via the ``getTransaction`` JSON-RPC
method and checks that the configured payment wallet was credited at least
the minimum price, and that the proof's claimed amount matches what actually
moved.

Any transport failure (connection error, timeout, HTTP error, bad JSON, RPC
error object) surfaces as VerificationUnavailable: it says nothing about the
proof itself, and the caller should retry.
"""
import logging
from typing import Any, Dict, List, Optional

import requests
from requests.exceptions import RequestException

from oracle_gateway.core.config import settings
from oracle_gateway.core.errors import (
    AmountMismatch,
    InsufficientAmount,
    RecipientMismatch,
    TransactionNotFound,
    VerificationUnavailable,
)
from oracle_gateway.x402.models import PaymentProof

logger = logging.getLogger(__name__)

# JSON-RPC error code for malformed params (e.g. a signature of the wrong size)
RPC_INVALID_PARAMS = -32602


class LedgerVerifier:
    """
    Verifies payment proofs against a Solana RPC endpoint.

    Args:
        rpc_url: JSON-RPC endpoint. Defaults to SOLANA_RPC_URL.
        payment_wallet: The single address payments must credit.
        min_amount: Minimum lamports the wallet must receive.
        tolerance: Allowed |transferred - claimed| difference in lamports.
        commitment: Required confirmation level ("confirmed" or "finalized").
        timeout: Default per-call timeout in seconds.
    """

    def __init__(
        self,
        rpc_url: Optional[str] = None,
        payment_wallet: Optional[str] = None,
        min_amount: Optional[int] = None,
        tolerance: Optional[int] = None,
        commitment: Optional[str] = None,
        timeout: Optional[float] = None,
    ):
        self.rpc_url = rpc_url or str(settings.SOLANA_RPC_URL)
        self.payment_wallet = payment_wallet if payment_wallet is not None else settings.PAYMENT_WALLET
        self.min_amount = min_amount if min_amount is not None else settings.PRICE_PER_REQUEST_LAMPORTS
        self.tolerance = tolerance if tolerance is not None else settings.AMOUNT_TOLERANCE_LAMPORTS
        self.commitment = commitment or settings.SOLANA_COMMITMENT
        self.timeout = timeout if timeout is not None else settings.LEDGER_TIMEOUT_SECONDS

        if not self.payment_wallet:
            logger.warning("PAYMENT_WALLET not configured - every payment will be rejected")

    def verify(self, proof: PaymentProof, timeout: Optional[float] = None) -> int:
        """
        Check a proof against the ledger.

        Args:
            proof: The decoded payment proof.
            timeout: Overrides the default call timeout (caller deadline).

        Returns:
            The number of lamports actually credited to the payment wallet.

        Raises:
            TransactionNotFound: Unknown, unconfirmed, or failed transaction.
            RecipientMismatch: Proof names another recipient, or the wallet is
                not credited by the transaction.
            InsufficientAmount: Credited amount is below the minimum price.
            AmountMismatch: Claimed amount differs from the credited amount
                by more than the tolerance.
            VerificationUnavailable: The ledger could not be queried.
        """
        signature = proof.proof_id

        if proof.recipient != self.payment_wallet:
            raise RecipientMismatch(
                "Invalid payment recipient",
                details=f"Payments must be sent to {self.payment_wallet}",
            )

        tx = self._get_transaction(signature, timeout if timeout is not None else self.timeout)

        if not tx or not tx.get("meta"):
            raise TransactionNotFound(
                "Transaction not found or not confirmed",
                details=f"No {self.commitment} transaction with signature {signature}",
            )

        meta = tx["meta"]
        if meta.get("err") is not None:
            raise TransactionNotFound(
                "Transaction failed on-chain",
                details=f"Transaction error: {meta['err']}",
            )

        account_keys = extract_account_keys(tx)
        try:
            recipient_index = account_keys.index(self.payment_wallet)
        except ValueError:
            raise RecipientMismatch(
                "Payment recipient mismatch",
                details=f"{self.payment_wallet} is not an account of transaction {signature}",
            )

        try:
            pre_balance = int(meta["preBalances"][recipient_index])
            post_balance = int(meta["postBalances"][recipient_index])
        except (KeyError, IndexError, TypeError, ValueError) as e:
            logger.error(f"x402: Malformed balances in transaction {signature}: {e}")
            raise VerificationUnavailable(
                "Ledger returned an unreadable transaction",
                details=str(e),
            ) from e

        transferred = post_balance - pre_balance

        if transferred <= 0:
            raise RecipientMismatch(
                "Payment recipient mismatch",
                details=f"{self.payment_wallet} was not credited by transaction {signature}",
            )

        if transferred < self.min_amount:
            raise InsufficientAmount(
                f"Insufficient payment: {transferred} lamports (required: {self.min_amount})",
            )

        if abs(transferred - proof.amount) > self.tolerance:
            raise AmountMismatch(
                "Payment amount mismatch",
                details=f"Claimed {proof.amount} lamports, ledger shows {transferred}",
            )

        logger.info(f"x402: Ledger confirmed {transferred} lamports for {signature[:16]}...")
        return transferred

    def _get_transaction(self, signature: str, timeout: float) -> Optional[Dict[str, Any]]:
        """
        Fetch a transaction from the RPC endpoint.

        Returns:
            The ``result`` object, or None if the ledger has no such transaction.

        Raises:
            TransactionNotFound: The RPC rejected the signature as malformed.
            VerificationUnavailable: On any transport or RPC failure.
        """
        try:
            response = requests.post(
                self.rpc_url,
                json={
                    "jsonrpc": "2.0",
                    "id": 1,
                    "method": "getTransaction",
                    "params": [
                        signature,
                        {
                            "commitment": self.commitment,
                            "encoding": "json",
                            "maxSupportedTransactionVersion": 0,
                        },
                    ],
                },
                timeout=timeout,
            )
            response.raise_for_status()
            result = response.json()
        except RequestException as e:
            logger.error(f"x402: Ledger RPC request failed ({self.rpc_url}): {e}")
            raise VerificationUnavailable("Payment verification temporarily unavailable", details=str(e)) from e
        except ValueError as e:
            logger.error(f"x402: Ledger RPC returned invalid JSON: {e}")
            raise VerificationUnavailable("Payment verification temporarily unavailable", details=str(e)) from e

        if not isinstance(result, dict):
            raise VerificationUnavailable("Invalid RPC response", details=f"Unexpected payload type {type(result).__name__}")

        if "error" in result:
            error = result["error"] or {}
            if isinstance(error, dict) and error.get("code") == RPC_INVALID_PARAMS:
                raise TransactionNotFound("Transaction not found or not confirmed", details=error.get("message"))
            logger.error(f"x402: Ledger RPC error: {error}")
            raise VerificationUnavailable("Payment verification temporarily unavailable", details=f"RPC error: {error}")

        if "result" not in result:
            raise VerificationUnavailable("Invalid RPC response", details="missing 'result' field")

        return result["result"]


def extract_account_keys(tx: Dict[str, Any]) -> List[str]:
    """
    List every account of a transaction in balance-array order.

    Static keys come first, followed by writable and readonly addresses loaded
    from lookup tables (versioned transactions). Keys may be plain strings or
    ``{"pubkey": ...}`` objects depending on the RPC encoding.
    """
    message = (tx.get("transaction") or {}).get("message") or {}
    keys = []
    for key in message.get("accountKeys") or []:
        if isinstance(key, dict):
            keys.append(key.get("pubkey", ""))
        else:
            keys.append(str(key))

    loaded = (tx.get("meta") or {}).get("loadedAddresses") or {}
    keys.extend(loaded.get("writable") or [])
    keys.extend(loaded.get("readonly") or [])
    return keys
