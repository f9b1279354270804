"""
x402 Payment Protocol Integration Module.

This module gates the data endpoints behind per-access Solana payments
using the x402 protocol.

Key components:
- gate: AccessGate, decodes proofs and decides admit/reject
- ledger: LedgerVerifier, checks proofs against the Solana RPC
- proof_cache: replay window for verified proofs
- middleware: FastAPI middleware applying the gate to protected endpoints
- models: x402 wire formats (X-PAYMENT, X-PAYMENT-RESPONSE, 402 challenge)

Configuration is loaded from environment variables via oracle_gateway.core.config.
"""
