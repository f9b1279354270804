import logging
import time
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, Request

from oracle_gateway.api.deps import get_fetcher, get_gate
from oracle_gateway.api.models.health import HealthResponse
from oracle_gateway.core.config import settings
from oracle_gateway.services.fetcher import FailoverFetcher
from oracle_gateway.x402.gate import AccessGate

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/health", response_model=HealthResponse)
def get_health(
    request: Request,
    fetcher: FailoverFetcher = Depends(get_fetcher),
    gate: AccessGate = Depends(get_gate),
) -> HealthResponse:
    """
    Report upstream source health and cache sizes. Never requires payment.
    """
    sources = fetcher.sources_health()
    status = "healthy" if any(s["healthy"] for s in sources) else "degraded"
    if status != "healthy":
        logger.warning("Health check: every data source has an open circuit breaker")

    return HealthResponse(
        status=status,
        timestamp=datetime.now(timezone.utc).isoformat(),
        uptime=round(time.monotonic() - request.app.state.started_at, 3),
        data_sources=sources,
        cache={
            "responses": fetcher.cache_stats(),
            "proofs": gate.proof_cache.stats(),
        },
        version=settings.VERSION,
    )
