# tests/conftest.py
"""
Shared fixtures for the gateway test suite.
"""
import base64
import json
from unittest.mock import MagicMock

import pytest

from oracle_gateway.x402.gate import AccessGate
from oracle_gateway.x402.ledger import LedgerVerifier
from oracle_gateway.x402.proof_cache import ProofCache

WALLET = "7xKXtg2CW87d97TXJSDpbD5jBkheTqA83TZRuJosgAsU"
OTHER_WALLET = "9WzDXwBbmkg8ZTbNMqUxvQRAyrZzDsGYdLVL9zYtAWWM"
SIGNATURE = "5VERv8NMvzbJMEkV8xnrLkEaWRtSz9CosKDYjCJjBRnbJLgp8uirBgmQpjKhoR4tjF3ZpRzrFmBV6UjKdiSZkQUW"
PRICE = 1_000_000
ACCESS_WINDOW = 3600


class FakeClock:
    """Manually advanced clock, usable wherever a ``time.time`` callable is expected."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def encode_payment(
    signature: str = SIGNATURE,
    amount="1000000",
    recipient: str = WALLET,
    network: str = "solana-mainnet",
    scheme: str = "exact",
    version=1,
    **payload_extra,
) -> str:
    """Build a base64 X-PAYMENT header value."""
    payload = {"signature": signature, "amount": amount, "recipient": recipient}
    payload.update(payload_extra)
    header = {
        "x402Version": version,
        "scheme": scheme,
        "network": network,
        "payload": payload,
    }
    return base64.b64encode(json.dumps(header).encode()).decode()


def decode_header(value: str) -> dict:
    return json.loads(base64.b64decode(value))


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def verifier():
    """A LedgerVerifier double that confirms the listed price."""
    mock = MagicMock(spec=LedgerVerifier)
    mock.verify.return_value = PRICE
    return mock


@pytest.fixture
def gate(verifier, clock):
    return AccessGate(
        verifier=verifier,
        proof_cache=ProofCache(ACCESS_WINDOW, clock=clock),
        network="solana-mainnet",
        scheme="exact",
        pay_to=WALLET,
        min_amount=PRICE,
        asset="SOL",
        max_timeout_seconds=300,
        price_display=0.001,
        clock=clock,
    )
