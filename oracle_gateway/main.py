# oracle_gateway/main.py
import logging
import time
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from starlette.responses import JSONResponse

from oracle_gateway.api.endpoints import exploits, health
from oracle_gateway.api.middleware import RequestIDMiddleware, SecurityHeadersMiddleware
from oracle_gateway.api.ratelimit import RateLimiter, RateLimitMiddleware
from oracle_gateway.core.config import settings
from oracle_gateway.services.fetcher import FailoverFetcher, build_fetcher
from oracle_gateway.x402.gate import AccessGate, build_access_gate
from oracle_gateway.x402.middleware import PROTECTED_ENDPOINTS, X402Middleware
from oracle_gateway.x402.models import X402_VERSION

# Configure basic logging
logging.basicConfig(level=settings.LOG_LEVEL.upper())
logger = logging.getLogger(__name__)


def create_app(
    gate: Optional[AccessGate] = None,
    fetcher: Optional[FailoverFetcher] = None,
    limiter: Optional[RateLimiter] = None,
) -> FastAPI:
    """
    Build the application and its long-lived components.

    The proof cache (inside the gate) and the response cache (inside the
    fetcher) get background sweepers for the lifetime of the app.
    """
    gate = gate or build_access_gate()
    fetcher = fetcher or build_fetcher()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        gate.proof_cache.start_sweeper(settings.CACHE_SWEEP_INTERVAL_SECONDS)
        fetcher.cache.start_sweeper(settings.CACHE_SWEEP_INTERVAL_SECONDS)
        logger.info(
            f"{settings.PROJECT_NAME} v{settings.VERSION} started "
            f"(x402={'enabled' if settings.X402_ENABLED else 'disabled'}, "
            f"network={settings.X402_NETWORK}, wallet={settings.PAYMENT_WALLET or 'UNSET'}, "
            f"price={settings.PRICE_PER_REQUEST_LAMPORTS} lamports)"
        )
        try:
            yield
        finally:
            gate.proof_cache.stop_sweeper()
            fetcher.cache.stop_sweeper()
            logger.info(f"{settings.PROJECT_NAME} stopped")

    app = FastAPI(
        title=settings.PROJECT_NAME,
        version=settings.VERSION,
        lifespan=lifespan,
    )
    app.state.gate = gate
    app.state.fetcher = fetcher
    app.state.started_at = time.monotonic()

    # Last added runs first: request id -> security headers -> rate limit -> x402
    app.add_middleware(X402Middleware, gate=gate)
    app.add_middleware(RateLimitMiddleware, limiter=limiter)
    app.add_middleware(SecurityHeadersMiddleware)
    app.add_middleware(RequestIDMiddleware)

    app.include_router(exploits.router, tags=["intelligence"])
    app.include_router(health.router, tags=["default"])

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        details = [
            {
                "field": ".".join(str(p) for p in err["loc"] if p not in ("query", "path")),
                "message": err["msg"],
                "code": err["type"],
            }
            for err in exc.errors()
        ]
        return JSONResponse(
            status_code=400,
            content={
                "error": "Validation Error",
                "message": "Invalid request parameters",
                "details": details,
            },
        )

    @app.get("/", summary="Service info", tags=["default"])
    def read_root():
        """ Service description, payment terms and endpoint list. """
        logger.info("Root endpoint '/' accessed.")
        return {
            "name": settings.PROJECT_NAME,
            "description": "DeFi security intelligence with x402 payments",
            "version": settings.VERSION,
            "x402": {
                "enabled": settings.X402_ENABLED,
                "version": X402_VERSION,
                "network": settings.X402_NETWORK,
                "paymentWallet": settings.PAYMENT_WALLET,
                "pricePerRequest": f"{settings.PRICE_PER_REQUEST_SOL} {settings.X402_ASSET}",
                "accessWindowSeconds": settings.ACCESS_WINDOW_SECONDS,
            },
            "endpoints": [
                {
                    "path": "/exploits",
                    "method": "GET",
                    "description": "Get recent exploit data",
                    "parameters": ["protocol", "chain", "limit"],
                },
                {
                    "path": "/risk-score/{protocol}",
                    "method": "GET",
                    "description": "Calculate risk score for a protocol",
                    "parameters": ["protocol", "chain"],
                },
                {
                    "path": "/health",
                    "method": "GET",
                    "description": "Service health check",
                },
            ],
            "paid_resources": [path for _, path in PROTECTED_ENDPOINTS],
        }

    return app


app = create_app()
