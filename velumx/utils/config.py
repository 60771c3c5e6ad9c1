"""
Configuration Management

Uses Pydantic Settings for environment-based configuration.
Loads from .env file automatically and validates on first access, so a
misconfigured deployment fails at startup instead of on first request.
"""

from dataclasses import dataclass
from functools import lru_cache
from typing import Dict, List, Optional, Tuple

from pydantic import model_validator
from pydantic_settings import BaseSettings

from velumx.models.liquidity import RiskLevel, Token

LIQUIDITY_SOURCES = ("stacks", "memory")


class Settings(BaseSettings):
    """Application settings loaded from environment."""

    # Application Settings
    ENVIRONMENT: str = "development"
    LOG_LEVEL: str = "INFO"

    # Chain access: "stacks" reads the swap contract over the node RPC,
    # "memory" keeps pool state in process (local development only)
    LIQUIDITY_SOURCE: str = "stacks"
    STACKS_RPC_URL: str = "https://api.testnet.hiro.so"
    STACKS_REQUEST_TIMEOUT: float = 10.0

    # Contract settings
    STACKS_SWAP_CONTRACT_ADDRESS: str = "ST1PQHQKV0RJXZFY1DGX8MNSNYVE3VGZJSRTPGZGM.swap-contract"
    STACKS_SWAP_CONTRACT_NAME: str = "swap-contract"

    # Pool discovery
    POOL_DISCOVERY_ENABLED: bool = True
    POOL_DISCOVERY_INTERVAL: int = 300  # seconds
    MAX_POOLS_PER_SCAN: int = 100

    # Analytics
    ANALYTICS_UPDATE_INTERVAL: int = 60  # seconds
    ANALYTICS_BATCH_SIZE: int = 5
    HISTORICAL_DATA_RETENTION: int = 365  # days
    PRICE_UPDATE_INTERVAL: int = 30  # seconds

    # Cache warming
    CACHE_WARMING_ENABLED: bool = True
    CACHE_WARMING_INTERVAL: int = 240  # seconds

    # API limits
    MAX_POOLS_PER_PAGE: int = 50
    MAX_POSITIONS_PER_PAGE: int = 100

    # Fees
    FEE_TRACKING_ENABLED: bool = True
    TAX_REPORTING_ENABLED: bool = True

    # Background loops (discovery, analytics refresh, warming)
    BACKGROUND_PROCESSING_ENABLED: bool = True

    # Persistence
    DATABASE_URL: Optional[str] = None

    # External price services
    COINGECKO_API_URL: str = "https://api.coingecko.com/api/v3"
    PRICE_ORACLE_ENABLED: bool = False
    PRICE_ORACLE_URL: Optional[str] = None
    PRICE_ORACLE_API_KEY: Optional[str] = None
    PRICE_REQUEST_TIMEOUT: float = 5.0

    # Featured pools, comma-separated pool ids
    FEATURED_POOLS: str = "USDCx-STX"

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"  # Ignore extra fields in .env file
        case_sensitive = False  # Allow both UPPERCASE and lowercase

    @model_validator(mode="after")
    def check_limits(self):
        errors = self.validation_errors()
        if errors:
            raise ValueError("; ".join(errors))
        return self

    def validation_errors(self) -> List[str]:
        errors = []

        if not self.STACKS_SWAP_CONTRACT_ADDRESS:
            errors.append("STACKS_SWAP_CONTRACT_ADDRESS is required")
        if not self.STACKS_SWAP_CONTRACT_NAME:
            errors.append("STACKS_SWAP_CONTRACT_NAME is required")
        if self.LIQUIDITY_SOURCE not in LIQUIDITY_SOURCES:
            errors.append(f"LIQUIDITY_SOURCE must be one of {LIQUIDITY_SOURCES}")
        if self.LIQUIDITY_SOURCE == "stacks" and not self.STACKS_RPC_URL:
            errors.append("STACKS_RPC_URL is required when LIQUIDITY_SOURCE is stacks")

        if self.POOL_DISCOVERY_INTERVAL < 60:
            errors.append("POOL_DISCOVERY_INTERVAL must be at least 60 seconds")
        if self.ANALYTICS_UPDATE_INTERVAL < 30:
            errors.append("ANALYTICS_UPDATE_INTERVAL must be at least 30 seconds")
        if self.PRICE_UPDATE_INTERVAL < 10:
            errors.append("PRICE_UPDATE_INTERVAL must be at least 10 seconds")
        if self.CACHE_WARMING_INTERVAL < 30:
            errors.append("CACHE_WARMING_INTERVAL must be at least 30 seconds")
        if self.ANALYTICS_BATCH_SIZE < 1:
            errors.append("ANALYTICS_BATCH_SIZE must be at least 1")

        if self.MAX_POOLS_PER_PAGE > 200:
            errors.append("MAX_POOLS_PER_PAGE cannot exceed 200")
        if self.MAX_POSITIONS_PER_PAGE > 500:
            errors.append("MAX_POSITIONS_PER_PAGE cannot exceed 500")

        if self.PRICE_ORACLE_ENABLED and not self.PRICE_ORACLE_URL:
            errors.append("PRICE_ORACLE_URL is required when PRICE_ORACLE_ENABLED is true")

        return errors

    @property
    def featured_pool_ids(self) -> List[str]:
        return [p.strip() for p in self.FEATURED_POOLS.split(",") if p.strip()]


@lru_cache
def get_settings() -> Settings:
    """Get or create cached settings instance."""
    return Settings()


# =============================================================================
# Protocol constants
# =============================================================================

# Tokens the pool discovery scans pairs of
DEFAULT_TOKENS: Tuple[Token, ...] = (
    Token(
        symbol="STX",
        name="Stacks",
        address="ST1PQHQKV0RJXZFY1DGX8MNSNYVE3VGZJSRTPGZGM",
        decimals=6,
        verified=True,
    ),
    Token(
        symbol="USDCx",
        name="USDC (xReserve)",
        address="ST1PQHQKV0RJXZFY1DGX8MNSNYVE3VGZJSRTPGZGM.usdcx",
        decimals=6,
        verified=True,
    ),
    Token(
        symbol="VEX",
        name="VelumX Token",
        address="STKYNF473GQ1V0WWCF24TV7ZR1WYAKTC79V25E3P.vextoken-v1",
        decimals=6,
        verified=True,
    ),
)


@dataclass(frozen=True)
class RiskCriteria:
    min_tvl: float
    min_volume_24h: float
    max_price_impact: float
    verified_tokens: bool


RISK_CRITERIA: Dict[RiskLevel, RiskCriteria] = {
    RiskLevel.LOW: RiskCriteria(
        min_tvl=100_000, min_volume_24h=10_000, max_price_impact=0.01, verified_tokens=True,
    ),
    RiskLevel.MEDIUM: RiskCriteria(
        min_tvl=10_000, min_volume_24h=1_000, max_price_impact=0.05, verified_tokens=False,
    ),
    RiskLevel.HIGH: RiskCriteria(
        min_tvl=0, min_volume_24h=0, max_price_impact=1.0, verified_tokens=False,
    ),
}

SWAP_FEE_RATE = 0.003
BASIS_POINTS = 10_000
MAX_APR = 1000.0
