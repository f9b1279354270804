# oracle_gateway/x402/models.py
"""
Wire models for the x402 exchange and the domain payment proof.

The wire models mirror the JSON carried in the X-PAYMENT and
X-PAYMENT-RESPONSE headers and in 402/4xx bodies, so their field names
follow the protocol's camelCase.
"""
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, StrictInt, field_validator

X402_VERSION = 1

# Lamport amounts are u64 on chain
MAX_LAMPORTS = 2**64 - 1
MAX_AMOUNT_DIGITS = len(str(MAX_LAMPORTS))


class PaymentPayloadBody(BaseModel):
    """Inner ``payload`` object of an X-PAYMENT header."""
    signature: str
    amount: Union[StrictInt, str]
    recipient: str
    timestamp: Optional[int] = None
    memo: Optional[str] = None

    @field_validator("signature", "recipient")
    @classmethod
    def not_blank(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("must not be empty")
        return v.strip()

    @field_validator("amount")
    @classmethod
    def amount_is_whole_number(cls, v: Union[int, str]) -> int:
        if isinstance(v, str):
            v = v.strip()
            if not (v.isascii() and v.isdecimal()) or len(v) > MAX_AMOUNT_DIGITS:
                raise ValueError("amount must be a non-negative integer string")
            try:
                v = int(v)
            except ValueError:
                raise ValueError("amount must be a non-negative integer string")
        if v < 0 or v > MAX_LAMPORTS:
            raise ValueError(f"amount must be between 0 and {MAX_LAMPORTS}")
        return v


class PaymentHeader(BaseModel):
    """Decoded X-PAYMENT header."""
    x402Version: StrictInt
    scheme: str
    network: str
    payload: PaymentPayloadBody


@dataclass(frozen=True)
class PaymentProof:
    """A client's claim of payment. Identity is ``proof_id`` (the transaction signature)."""
    protocol_version: int
    scheme: str
    network: str
    proof_id: str
    amount: int
    recipient: str
    memo: Optional[str] = None
    client_timestamp: Optional[int] = None

    @classmethod
    def from_header(cls, header: PaymentHeader) -> "PaymentProof":
        return cls(
            protocol_version=header.x402Version,
            scheme=header.scheme,
            network=header.network,
            proof_id=header.payload.signature,
            amount=int(header.payload.amount),
            recipient=header.payload.recipient,
            memo=header.payload.memo,
            client_timestamp=header.payload.timestamp,
        )


class ResourceAccess(BaseModel):
    expiresAt: int
    requestsRemaining: int = -1


class PaymentReceipt(BaseModel):
    """Body of the X-PAYMENT-RESPONSE header (timestamps in epoch milliseconds)."""
    txHash: str
    networkId: str
    success: bool = True
    amount: str
    timestamp: int
    resourceAccess: ResourceAccess


class PaymentAccept(BaseModel):
    """One accepted way to pay, as listed in a 402 challenge."""
    scheme: str
    network: str
    maxAmountRequired: str
    resource: str
    payTo: str
    asset: str
    maxTimeoutSeconds: int
    metadata: Dict[str, Any] = {}


class PaymentChallenge(BaseModel):
    """HTTP 402 body telling the client how to build a valid proof."""
    x402Version: int = X402_VERSION
    accepts: List[PaymentAccept]
    error: str
    message: Optional[str] = None


class X402ErrorBody(BaseModel):
    """Body for malformed/unsupported proofs and transient verification failures."""
    x402Version: int = X402_VERSION
    error: str
    code: int
    details: Optional[str] = None
