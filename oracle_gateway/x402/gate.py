# oracle_gateway/x402/gate.py
"""
Admission decisions for x402-protected requests.

AccessGate turns a raw X-PAYMENT header into an admit/reject decision:

1. Decode the base64 header into a JSON object (MalformedProof on failure)
2. Validate it against the accepted version/scheme/network (UnsupportedProtocol)
3. Admit from the proof cache if the proof is still inside its access window
4. Otherwise verify on the ledger, cache the verified proof, and admit

A proof that fails verification is never cached, so every retry is verified
afresh. The gate also builds the 402 challenge that tells clients how to pay.
"""
import json
import logging
import time
from dataclasses import dataclass
from typing import Callable, Optional

from pydantic import ValidationError
from x402.encoding import safe_base64_decode, safe_base64_encode

from oracle_gateway.core.config import settings
from oracle_gateway.core.errors import (
    MalformedProof,
    PaymentRequired,
    RecipientMismatch,
    UnsupportedProtocol,
)
from oracle_gateway.x402.ledger import LedgerVerifier
from oracle_gateway.x402.models import (
    X402_VERSION,
    PaymentAccept,
    PaymentChallenge,
    PaymentHeader,
    PaymentProof,
    PaymentReceipt,
    ResourceAccess,
)
from oracle_gateway.x402.proof_cache import ProofCache, ProofCacheEntry

logger = logging.getLogger(__name__)


def _ms(seconds: float) -> int:
    return int(seconds * 1000)


@dataclass
class Admission:
    """A granted request, with the receipt to echo back to the client."""
    proof: PaymentProof
    entry: ProofCacheEntry
    from_cache: bool
    receipt: PaymentReceipt

    @property
    def granted(self) -> bool:
        return True

    def receipt_header(self) -> str:
        """Base64-encoded receipt for the X-PAYMENT-RESPONSE header."""
        return safe_base64_encode(self.receipt.model_dump_json().encode("utf-8"))


class AccessGate:
    """
    Decides whether a request carrying an X-PAYMENT header is admitted.

    The gate owns its ProofCache; nothing else writes to it.
    """

    def __init__(
        self,
        verifier: LedgerVerifier,
        proof_cache: ProofCache,
        network: str,
        scheme: str,
        pay_to: str,
        min_amount: int,
        asset: str,
        max_timeout_seconds: int = 300,
        price_display: Optional[float] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.verifier = verifier
        self.proof_cache = proof_cache
        self.network = network
        self.scheme = scheme
        self.pay_to = pay_to
        self.min_amount = min_amount
        self.asset = asset
        self.max_timeout_seconds = max_timeout_seconds
        self.price_display = price_display
        self._clock = clock

    @property
    def access_window_seconds(self) -> float:
        return self.proof_cache.access_window_seconds

    def decode(self, raw_header: Optional[str]) -> PaymentProof:
        """
        Decode and validate an X-PAYMENT header.

        Raises:
            PaymentRequired: The header is missing or empty.
            MalformedProof: Not base64, not UTF-8 JSON, or not a JSON object.
            UnsupportedProtocol: Missing/ill-typed fields, or a version, scheme
                or network we do not accept.
        """
        if raw_header is None or not raw_header.strip():
            raise PaymentRequired("X-PAYMENT header is required")

        try:
            decoded = safe_base64_decode(raw_header.strip())
            payload = json.loads(decoded)
        except Exception as e:
            logger.warning(f"x402: Failed to decode X-PAYMENT header: {e}")
            raise MalformedProof("Invalid payment format", details=f"Failed to decode x402 payment: {e}") from e

        if not isinstance(payload, dict):
            raise MalformedProof("Invalid payment format", details="X-PAYMENT must encode a JSON object")

        try:
            header = PaymentHeader.model_validate(payload)
        except ValidationError as e:
            fields = ", ".join(".".join(str(p) for p in err["loc"]) for err in e.errors())
            raise UnsupportedProtocol("Missing required x402 fields", details=f"Invalid fields: {fields}") from e

        if header.x402Version != X402_VERSION:
            raise UnsupportedProtocol("Unsupported x402 version", details=f"Supported version: {X402_VERSION}")
        if header.scheme != self.scheme:
            raise UnsupportedProtocol("Unsupported payment scheme", details=f"Supported scheme: {self.scheme}")
        if header.network != self.network:
            raise UnsupportedProtocol("Unsupported network", details=f"Supported network: {self.network}")

        return PaymentProof.from_header(header)

    def admit(self, raw_header: Optional[str], timeout: Optional[float] = None) -> Admission:
        """
        Admit or reject a single request.

        Args:
            raw_header: The X-PAYMENT header value (None when absent).
            timeout: Caller deadline for the ledger query, in seconds.

        Returns:
            Admission carrying the cache entry and receipt.

        Raises:
            PaymentRejected subclasses (see ``decode`` and LedgerVerifier.verify).
        """
        proof = self.decode(raw_header)

        # Recipient is checked on cache hits too
        if proof.recipient != self.pay_to:
            raise RecipientMismatch(
                "Invalid payment recipient",
                details=f"Payments must be sent to {self.pay_to}",
            )

        entry = self.proof_cache.touch(proof.proof_id)
        if entry is not None:
            logger.info(
                f"x402: Admitted cached proof {proof.proof_id[:16]}... "
                f"(reuse #{entry.reuse_count})"
            )
            return self._admission(proof, entry, from_cache=True)

        logger.info(f"x402: Payment received {proof.proof_id[:16]}... ({proof.amount} lamports), verifying")
        verified_amount = self.verifier.verify(proof, timeout=timeout)

        entry = self.proof_cache.record_verified(proof.proof_id, verified_amount)
        logger.info(f"x402: Payment verified {proof.proof_id[:16]}...")
        return self._admission(proof, entry, from_cache=False)

    def _admission(self, proof: PaymentProof, entry: ProofCacheEntry, from_cache: bool) -> Admission:
        receipt = PaymentReceipt(
            txHash=proof.proof_id,
            networkId=self.network,
            success=True,
            amount=str(entry.verified_amount),
            timestamp=_ms(self._clock()),
            resourceAccess=ResourceAccess(expiresAt=_ms(entry.expires_at), requestsRemaining=-1),
        )
        return Admission(proof=proof, entry=entry, from_cache=from_cache, receipt=receipt)

    def challenge(
        self,
        resource: str,
        error: str = "Payment Required",
        message: Optional[str] = None,
    ) -> PaymentChallenge:
        """Build the 402 body listing everything needed to construct a valid proof."""
        metadata = {
            "cacheExpirySeconds": int(self.access_window_seconds),
            "description": "DeFi security intelligence and exploit data",
        }
        if self.price_display is not None:
            metadata["price"] = f"{self.price_display} {self.asset}"

        return PaymentChallenge(
            x402Version=X402_VERSION,
            accepts=[
                PaymentAccept(
                    scheme=self.scheme,
                    network=self.network,
                    maxAmountRequired=str(self.min_amount),
                    resource=resource,
                    payTo=self.pay_to,
                    asset=self.asset,
                    maxTimeoutSeconds=self.max_timeout_seconds,
                    metadata=metadata,
                )
            ],
            error=error,
            message=message or (
                f"Send {self.asset} payment to access this resource. "
                f"Include the transaction signature in the X-PAYMENT header."
            ),
        )


def build_access_gate(
    verifier: Optional[LedgerVerifier] = None,
    clock: Callable[[], float] = time.time,
) -> AccessGate:
    """Construct an AccessGate (and its ProofCache) from settings."""
    if not settings.PAYMENT_WALLET:
        logger.warning("PAYMENT_WALLET not configured")

    return AccessGate(
        verifier=verifier or LedgerVerifier(),
        proof_cache=ProofCache(settings.ACCESS_WINDOW_SECONDS, clock=clock),
        network=settings.X402_NETWORK,
        scheme=settings.X402_SCHEME,
        pay_to=settings.PAYMENT_WALLET,
        min_amount=settings.PRICE_PER_REQUEST_LAMPORTS,
        asset=settings.X402_ASSET,
        max_timeout_seconds=settings.X402_MAX_TIMEOUT_SECONDS,
        price_display=settings.PRICE_PER_REQUEST_SOL,
        clock=clock,
    )
