# oracle_gateway/core/errors.py
"""
Error taxonomy for payment admission and upstream data access.

Every error carries the HTTP status it maps to and a stable machine code.
Client-input errors (MalformedProof, UnsupportedProtocol) map to 400.
Payment errors map to 402 and are answered with a payment challenge.
Transient infrastructure errors map to 503 and are never cached.
"""
from typing import Optional


class GatewayError(Exception):
    """Base class for all gateway errors."""
    status_code: int = 500
    code: str = "gateway_error"

    def __init__(self, message: str, details: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.details = details


# --- Payment admission ---

class PaymentRejected(GatewayError):
    """A request was not admitted."""
    status_code = 402
    code = "payment_rejected"


class PaymentRequired(PaymentRejected):
    """No payment proof was presented."""
    status_code = 402
    code = "payment_required"


class MalformedProof(PaymentRejected):
    """The X-PAYMENT header could not be decoded into a JSON object."""
    status_code = 400
    code = "malformed_proof"


class UnsupportedProtocol(PaymentRejected):
    """The proof is missing fields or names a version/scheme/network we do not accept."""
    status_code = 400
    code = "unsupported_protocol"


class PaymentInvalid(PaymentRejected):
    """The ledger does not back the proof. The client must send a new or corrected proof."""
    status_code = 402
    code = "payment_invalid"


class TransactionNotFound(PaymentInvalid):
    code = "not_found"


class RecipientMismatch(PaymentInvalid):
    code = "recipient_mismatch"


class InsufficientAmount(PaymentInvalid):
    code = "insufficient_amount"


class AmountMismatch(PaymentInvalid):
    code = "amount_mismatch"


class VerificationUnavailable(PaymentRejected):
    """The ledger could not be queried. Retry later; this is not a verdict on the proof."""
    status_code = 503
    code = "verification_unavailable"


# --- Upstream data access ---

class CircuitOpen(GatewayError):
    """A source was skipped because its circuit breaker is open."""
    status_code = 503
    code = "circuit_open"


class AllSourcesExhausted(GatewayError):
    """Every upstream data source failed or was skipped."""
    status_code = 503
    code = "all_sources_exhausted"

    def __init__(self, message: str, last_error: Optional[BaseException] = None):
        super().__init__(message, details=str(last_error) if last_error else None)
        self.last_error = last_error


class InvalidUpstreamResponse(GatewayError):
    """An upstream source answered, but not with the expected payload."""
    status_code = 502
    code = "invalid_upstream_response"
