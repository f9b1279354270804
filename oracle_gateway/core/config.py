# oracle_gateway/core/config.py
from functools import lru_cache
from typing import List

from dotenv import load_dotenv
from pydantic import AnyHttpUrl, BaseModel
from pydantic_settings import BaseSettings

from oracle_gateway import __version__

# Load .env file if it exists
load_dotenv()


class DataSourceConfig(BaseModel):
    """One upstream data provider as configured (lower priority = preferred)."""
    name: str
    url: AnyHttpUrl
    priority: int = 1


class Settings(BaseSettings):
    PROJECT_NAME: str = "Security Oracle Gateway"
    VERSION: str = __version__
    LOG_LEVEL: str = "INFO"

    # x402 payment terms
    X402_ENABLED: bool = True
    X402_NETWORK: str = "solana-mainnet"
    X402_SCHEME: str = "exact"
    X402_ASSET: str = "SOL"
    X402_MAX_TIMEOUT_SECONDS: int = 300
    PAYMENT_WALLET: str = ""
    PRICE_PER_REQUEST_LAMPORTS: int = 1_000_000
    PRICE_PER_REQUEST_SOL: float = 0.001
    AMOUNT_TOLERANCE_LAMPORTS: int = 100
    ACCESS_WINDOW_SECONDS: int = 3600

    # Ledger RPC
    SOLANA_RPC_URL: AnyHttpUrl = "https://api.mainnet-beta.solana.com"
    SOLANA_COMMITMENT: str = "confirmed"
    LEDGER_TIMEOUT_SECONDS: float = 10.0

    # Upstream data providers
    DATA_SOURCES: List[DataSourceConfig] = [
        DataSourceConfig(name="kamiyo_primary", url="https://api.kamiyo.ai", priority=1),
    ]
    CIRCUIT_BREAKER_THRESHOLD: int = 5
    CIRCUIT_BREAKER_TIMEOUT_SECONDS: float = 60.0
    SOURCE_REQUEST_TIMEOUT_SECONDS: float = 10.0
    FETCH_DEADLINE_SECONDS: float = 30.0
    RESPONSE_CACHE_TTL_SECONDS: float = 300.0

    # Expired proof / response entries are purged on this interval
    CACHE_SWEEP_INTERVAL_SECONDS: float = 300.0

    RATE_LIMIT_ENABLED: bool = True
    RATE_LIMIT_REQUESTS: int = 60
    RATE_LIMIT_WINDOW_SECONDS: int = 60

    class Config:
        env_file = ".env"
        case_sensitive = True
        extra = "ignore"  # Ignore extra fields from .env


@lru_cache()  # Cache the settings object for performance
def get_settings() -> Settings:
    return Settings()


settings = get_settings()
