import logging
from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Path, Query

from oracle_gateway.api.deps import get_fetcher
from oracle_gateway.api.models.exploit import (
    PROTOCOL_NAME_PATTERN,
    Chain,
    ExploitsResponse,
    RiskScoreResponse,
)
from oracle_gateway.core.errors import AllSourcesExhausted
from oracle_gateway.services.fetcher import FailoverFetcher
from oracle_gateway.services.risk import calculate_risk_score

logger = logging.getLogger(__name__)

router = APIRouter()

DEFAULT_LIMIT = 50


def _upstream_unavailable(e: AllSourcesExhausted, message: str) -> HTTPException:
    return HTTPException(
        status_code=e.status_code,
        detail={
            "error": "Service Unavailable",
            "message": message,
            "last_error": e.details,
        },
    )


@router.get("/exploits", response_model=ExploitsResponse)
def get_exploits(
    protocol: Optional[str] = Query(None, min_length=1, max_length=100, pattern=PROTOCOL_NAME_PATTERN),
    chain: Optional[Chain] = None,
    limit: int = Query(DEFAULT_LIMIT, ge=1, le=100),
    fetcher: FailoverFetcher = Depends(get_fetcher),
):
    """
    Get recent exploit data, newest first.

    Raises:
        HTTPException: 503 if every upstream data source is unavailable
    """
    if protocol is not None:
        protocol = protocol.strip()

    try:
        exploits = fetcher.fetch_exploits(protocol=protocol, chain=chain)
    except AllSourcesExhausted as e:
        logger.error(f"/exploits request failed: {e.message} ({e.details})")
        raise _upstream_unavailable(e, "Failed to fetch exploits")

    limited = exploits[:limit]
    return ExploitsResponse(
        success=True,
        count=len(limited),
        exploits=limited,
        timestamp=datetime.now(timezone.utc).isoformat(),
    )


@router.get("/risk-score/{protocol}", response_model=RiskScoreResponse)
def get_risk_score(
    protocol: str = Path(..., min_length=1, max_length=100, pattern=PROTOCOL_NAME_PATTERN),
    chain: Optional[Chain] = None,
    fetcher: FailoverFetcher = Depends(get_fetcher),
):
    """
    Calculate a risk score for a protocol from its exploit history.

    Raises:
        HTTPException: 503 if every upstream data source is unavailable
    """
    protocol = protocol.strip()

    try:
        exploits = fetcher.fetch_exploits(protocol=protocol, chain=chain)
    except AllSourcesExhausted as e:
        logger.error(f"/risk-score request failed for {protocol}: {e.message} ({e.details})")
        raise _upstream_unavailable(e, "Failed to calculate risk score")

    risk_score = calculate_risk_score(exploits, protocol)
    logger.info(f"Risk score calculated for {protocol}: {risk_score['score']}")

    return RiskScoreResponse(
        success=True,
        risk_score=risk_score,
        data_points=len(exploits),
        timestamp=datetime.now(timezone.utc).isoformat(),
    )
