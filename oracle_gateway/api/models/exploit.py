from typing import Dict, List, Literal, Optional, get_args

from pydantic import BaseModel, ConfigDict, Field

Chain = Literal[
    "ethereum",
    "base",
    "polygon",
    "avalanche",
    "arbitrum",
    "optimism",
    "bsc",
    "solana",
    "fantom",
    "gnosis",
    "celo",
    "moonbeam",
    "moonriver",
]

SUPPORTED_CHAINS = get_args(Chain)

# Protocol names: letters, digits, spaces, '-', '_' and '.'
PROTOCOL_NAME_PATTERN = r"^[a-zA-Z0-9\s\-_.]+$"


class ExploitRecord(BaseModel):
    """
    A single exploit as reported by an upstream source.
    Unknown upstream fields are passed through unchanged.
    """
    model_config = ConfigDict(extra="allow")

    protocol: Optional[str] = None
    chain: Optional[str] = None
    severity: Optional[str] = None
    loss_usd: Optional[float] = None
    timestamp: Optional[str] = None
    description: Optional[str] = None
    attack_vector: Optional[str] = None


class ExploitsResponse(BaseModel):
    success: bool = True
    count: int
    exploits: List[ExploitRecord]
    timestamp: str


class RiskFactors(BaseModel):
    exploit_frequency: int
    total_loss: int
    recency: int
    severity_distribution: Dict[str, int]


class RiskScore(BaseModel):
    protocol: str
    score: int = Field(..., ge=0, le=100)
    risk_level: Literal["CRITICAL", "HIGH", "MEDIUM", "LOW"]
    recent_exploits: int
    total_loss_usd: int
    recommendation: str
    factors: RiskFactors


class RiskScoreResponse(BaseModel):
    success: bool = True
    risk_score: RiskScore
    data_points: int
    timestamp: str
