from typing import Dict, List

from pydantic import BaseModel


class SourceHealth(BaseModel):
    name: str
    healthy: bool
    failures: int
    priority: int


class CacheStats(BaseModel):
    size: int
    ttl: float


class HealthResponse(BaseModel):
    """
    Response model for the health endpoint.
    """
    status: str
    timestamp: str
    uptime: float
    data_sources: List[SourceHealth]
    cache: Dict[str, CacheStats]
    version: str
