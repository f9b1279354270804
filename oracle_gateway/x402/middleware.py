# oracle_gateway/x402/middleware.py
"""
FastAPI middleware for x402 payment verification.

This module provides HTTP middleware that:
1. Intercepts requests to protected endpoints
2. Checks if payment is required (X402_ENABLED)
3. Returns 402 Payment Required with a challenge when no X-PAYMENT header is sent
4. Admits or rejects the request through the AccessGate
5. Adds an X-PAYMENT-RESPONSE receipt header to admitted responses

The gate performs blocking ledger I/O, so it runs in Starlette's threadpool.
"""
import logging
from typing import Callable, Optional

from fastapi import Request, Response
from starlette.concurrency import run_in_threadpool
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import JSONResponse

from oracle_gateway.core.config import settings
from oracle_gateway.core.errors import (
    PaymentInvalid,
    PaymentRejected,
    PaymentRequired,
    VerificationUnavailable,
)
from oracle_gateway.x402.gate import AccessGate
from oracle_gateway.x402.models import X402_VERSION, PaymentChallenge, X402ErrorBody

logger = logging.getLogger(__name__)

X_PAYMENT_HEADER = "X-PAYMENT"
X_PAYMENT_RESPONSE_HEADER = "X-PAYMENT-RESPONSE"
X_PAYMENT_REQUIRED_HEADER = "X-PAYMENT-REQUIRED"

# Seconds a client should wait before retrying when the ledger is unreachable
VERIFICATION_RETRY_AFTER = 5

# (method, path prefix) pairs that require payment
PROTECTED_ENDPOINTS = [
    ("GET", "/exploits"),
    ("GET", "/risk-score"),
]


def get_protected_resource(method: str, path: str) -> Optional[str]:
    """Return the protected route prefix matching the request, or None if it is free."""
    normalized = path.rstrip("/") or "/"
    for protected_method, protected_path in PROTECTED_ENDPOINTS:
        if method != protected_method:
            continue
        if normalized == protected_path or normalized.startswith(protected_path + "/"):
            return protected_path
    return None


def is_protected_endpoint(method: str, path: str) -> bool:
    """Check if the request matches a protected endpoint."""
    return get_protected_resource(method, path) is not None


def get_client_ip(request: Request) -> str:
    """Extract client IP from request, handling proxies."""
    forwarded_for = request.headers.get("X-Forwarded-For")
    if forwarded_for:
        # Take the first IP in the chain
        return forwarded_for.split(",")[0].strip()

    real_ip = request.headers.get("X-Real-IP")
    if real_ip:
        return real_ip.strip()

    if request.client:
        return request.client.host

    return "unknown"


def create_402_response(challenge: PaymentChallenge) -> JSONResponse:
    """Create an HTTP 402 Payment Required response carrying the challenge."""
    return JSONResponse(
        status_code=402,
        content=challenge.model_dump(),
        headers={X_PAYMENT_REQUIRED_HEADER: "true"},
    )


def create_error_response(error: PaymentRejected) -> JSONResponse:
    """Create a 4xx/5xx x402 error response for non-payment rejections."""
    body = X402ErrorBody(
        x402Version=X402_VERSION,
        error=error.message,
        code=error.status_code,
        details=error.details,
    )
    headers = {}
    if isinstance(error, VerificationUnavailable):
        headers["Retry-After"] = str(VERIFICATION_RETRY_AFTER)

    return JSONResponse(
        status_code=error.status_code,
        content=body.model_dump(exclude_none=True),
        headers=headers,
    )


class X402Middleware(BaseHTTPMiddleware):
    """
    x402 payment verification middleware for FastAPI.

    When X402_ENABLED=true, this middleware:
    - Checks if the endpoint requires payment
    - Admits requests whose X-PAYMENT proof the AccessGate accepts
    - Returns HTTP 402 with a payment challenge if no valid payment
    - Returns 400 for malformed/unsupported proofs and 503 if the ledger is down

    When X402_ENABLED=false, all requests pass through unchanged.
    """

    def __init__(self, app, gate: AccessGate):
        super().__init__(app)
        self.gate = gate

    async def dispatch(
        self,
        request: Request,
        call_next: Callable[[Request], Response]
    ) -> Response:
        if not settings.X402_ENABLED:
            return await call_next(request)

        if not is_protected_endpoint(request.method, request.url.path):
            return await call_next(request)

        resource = request.url.path

        client_ip = get_client_ip(request)
        logger.info(f"x402: Processing protected request from {client_ip}: {request.method} {request.url.path}")

        payment_header = request.headers.get(X_PAYMENT_HEADER)

        try:
            admission = await run_in_threadpool(self.gate.admit, payment_header)
        except PaymentRequired:
            logger.info(f"x402: No X-PAYMENT header from {client_ip}, returning 402")
            return create_402_response(self.gate.challenge(resource))
        except PaymentInvalid as e:
            logger.warning(f"x402: Payment verification failed for {client_ip}: {e.message}")
            return create_402_response(
                self.gate.challenge(resource, error=e.message, message=e.details)
            )
        except PaymentRejected as e:
            # MalformedProof, UnsupportedProtocol, VerificationUnavailable
            logger.warning(f"x402: Rejected request from {client_ip} ({e.code}): {e.message}")
            return create_error_response(e)

        request.state.payment = admission

        response = await call_next(request)
        response.headers[X_PAYMENT_RESPONSE_HEADER] = admission.receipt_header()
        return response
