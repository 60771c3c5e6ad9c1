"""
Liquidity Data Models

Immutable value objects shared by services, the cache and the API.
Token amounts are base units held as Python ints; USD figures are floats.
"""

from datetime import datetime, timedelta
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field


class FrozenModel(BaseModel):
    class Config:
        frozen = True


class Timeframe(str, Enum):
    HOUR_1 = "1h"
    HOUR_4 = "4h"
    HOUR_12 = "12h"
    DAY_1 = "1d"
    DAY_7 = "7d"
    DAY_30 = "30d"
    DAY_90 = "90d"
    YEAR_1 = "1y"

    @property
    def window(self) -> timedelta:
        return _WINDOWS[self.value]

    @property
    def days(self) -> float:
        """Window length in days; intraday windows are fractional."""
        return self.window / timedelta(days=1)


_WINDOWS = {
    "1h": timedelta(hours=1),
    "4h": timedelta(hours=4),
    "12h": timedelta(hours=12),
    "1d": timedelta(days=1),
    "7d": timedelta(days=7),
    "30d": timedelta(days=30),
    "90d": timedelta(days=90),
    "1y": timedelta(days=365),
}


class RiskLevel(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class PositionAction(str, Enum):
    ADD = "add"
    REMOVE = "remove"


# =============================================================================
# Pools
# =============================================================================

class Token(FrozenModel):
    symbol: str
    name: str
    address: str
    decimals: int = 6
    verified: bool = False


class PoolReserves(FrozenModel):
    reserve_a: int
    reserve_b: int
    total_supply: int

    @property
    def is_active(self) -> bool:
        return self.reserve_a > 0 and self.reserve_b > 0


class Pool(FrozenModel):
    id: str
    token_a: Token
    token_b: Token
    reserve_a: int
    reserve_b: int
    total_supply: int

    def has_token(self, address: str) -> bool:
        return address in (self.token_a.address, self.token_b.address)


class PoolMetadata(FrozenModel):
    pool_id: str
    name: str
    description: Optional[str] = None
    tags: List[str] = Field(default_factory=list)
    verified: bool = False
    featured: bool = False
    risk_level: RiskLevel = RiskLevel.HIGH
    category: str = "defi"


class PoolShare(FrozenModel):
    share_a: int
    share_b: int
    # Percent of total LP supply, resolved to basis points (12.34 = 12.34%)
    percentage: float


class PriceLevel(FrozenModel):
    price: float
    liquidity: float
    price_impact: float


class LiquidityDepth(FrozenModel):
    bids: List[PriceLevel] = Field(default_factory=list)
    asks: List[PriceLevel] = Field(default_factory=list)


class HistoricalDataPoint(FrozenModel):
    timestamp: datetime
    reserve_a: int
    reserve_b: int
    total_supply: int
    tvl_usd: float
    volume_24h: float
    price_a: float
    price_b: float


class PoolAnalytics(FrozenModel):
    pool_id: str
    tvl: float = 0.0
    volume_24h: float = 0.0
    volume_7d: float = 0.0
    apr: float = 0.0
    fee_earnings_24h: float = 0.0
    price_change_24h: float = 0.0
    liquidity_depth: LiquidityDepth = Field(default_factory=LiquidityDepth)
    historical_data: List[HistoricalDataPoint] = Field(default_factory=list)

    @classmethod
    def empty(cls, pool_id: str) -> "PoolAnalytics":
        """Zeroed analytics, served when upstream data is unavailable."""
        return cls(pool_id=pool_id)


class PoolComparisonEntry(FrozenModel):
    pool_id: str
    tvl: float
    apr: float
    volume_24h: float
    fee_earnings_24h: float
    risk: RiskLevel


class PoolComparison(FrozenModel):
    pools: List[PoolComparisonEntry] = Field(default_factory=list)
    best_by_tvl: str = ""
    best_by_apr: str = ""
    best_by_volume: str = ""


class OptimalAmounts(FrozenModel):
    amount_a: int
    amount_b: int
    ratio: float
    price_impact: float


class PoolSnapshot(FrozenModel):
    """Point-in-time pool state as persisted by the repository."""
    pool_id: str
    reserve_a: int
    reserve_b: int
    total_supply: int
    tvl_usd: float
    volume_24h: float
    price_a: float
    price_b: float
    timestamp: datetime


# =============================================================================
# Positions
# =============================================================================

class LiquidityPosition(FrozenModel):
    pool_id: str
    user_address: str
    lp_token_balance: int
    share_percentage: float
    token_a_amount: int
    token_b_amount: int
    current_value: float
    initial_value: float
    impermanent_loss: float
    fee_earnings: float
    created_at: Optional[datetime] = None


class PortfolioSummary(FrozenModel):
    user_address: str
    total_value: float = 0.0
    total_fee_earnings: float = 0.0
    total_impermanent_loss: float = 0.0
    total_returns: float = 0.0
    position_count: int = 0
    positions: List[LiquidityPosition] = Field(default_factory=list)

    @classmethod
    def empty(cls, user_address: str) -> "PortfolioSummary":
        return cls(user_address=user_address)


class PositionHistory(FrozenModel):
    id: str
    user_address: str
    pool_id: str
    action: PositionAction
    lp_token_amount: int
    token_a_amount: int
    token_b_amount: int
    value_usd: float
    transaction_hash: str
    block_height: int
    timestamp: datetime


class PositionValue(FrozenModel):
    current_value: float
    initial_value: float
    unrealized_pnl: float
    realized_pnl: float
    total_return: float
    total_return_percentage: float


class ImpermanentLoss(FrozenModel):
    current_loss: float
    current_loss_percentage: float
    # Value had the deposited tokens been held outside the pool
    would_have_value: float
    actual_value: float
    break_even_fees: float


class Returns(FrozenModel):
    daily: float = 0.0
    weekly: float = 0.0
    monthly: float = 0.0
    annual: float = 0.0
    total_return: float = 0.0
    total_return_percentage: float = 0.0


# =============================================================================
# Fees
# =============================================================================

class FeeEarnings(FrozenModel):
    user_address: str
    pool_id: str
    total_earnings: float = 0.0
    daily_earnings: float = 0.0
    weekly_earnings: float = 0.0
    monthly_earnings: float = 0.0
    annualized_return: float = 0.0

    @classmethod
    def empty(cls, user_address: str, pool_id: str) -> "FeeEarnings":
        return cls(user_address=user_address, pool_id=pool_id)


class FeeHistory(FrozenModel):
    id: str
    user_address: str
    pool_id: str
    amount_usd: float
    transaction_hash: Optional[str] = None
    block_height: Optional[int] = None
    timestamp: datetime


class FeeProjection(FrozenModel):
    pool_id: str
    projected_daily: float = 0.0
    projected_weekly: float = 0.0
    projected_monthly: float = 0.0
    projected_annual: float = 0.0
    # 0-1 scale
    confidence: float = 0.0


class TaxReportPosition(FrozenModel):
    pool_id: str
    earnings: float
    transactions: List[FeeHistory] = Field(default_factory=list)


class TaxReport(FrozenModel):
    user_address: str
    year: int
    total_fee_earnings: float
    total_transactions: int
    positions: List[TaxReportPosition] = Field(default_factory=list)
    generated_at: datetime


# =============================================================================
# Suggestions
# =============================================================================

class RiskTolerance(str, Enum):
    CONSERVATIVE = "conservative"
    MODERATE = "moderate"
    AGGRESSIVE = "aggressive"


class SuggestionAction(str, Enum):
    ADD = "add"
    REMOVE = "remove"
    REBALANCE = "rebalance"
    MAINTAIN = "maintain"


class SuggestionPriority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class RiskFactor(FrozenModel):
    level: RiskLevel
    # 0-100, higher is riskier
    score: float
    description: str


class RiskFactors(FrozenModel):
    liquidity: RiskFactor
    volatility: RiskFactor
    impermanent_loss: RiskFactor
    concentration: RiskFactor


class RiskAssessment(FrozenModel):
    pool_id: str
    overall_risk: RiskLevel
    risk_score: float
    factors: RiskFactors
    recommendations: List[str] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)


class PoolRecommendation(FrozenModel):
    pool: Pool
    analytics: PoolAnalytics
    score: float
    risk_level: RiskLevel
    risk_factors: List[str] = Field(default_factory=list)
    strengths: List[str] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)
    projected_apr: float
    # For a $1,000 deposit
    projected_daily_earnings: float
    confidence: float
    reason: str


class ExpectedImpact(FrozenModel):
    risk_change: str
    return_change: str
    diversification_change: str


class Suggestion(FrozenModel):
    action: SuggestionAction
    pool_id: str
    reason: str
    priority: SuggestionPriority
    expected_impact: ExpectedImpact
    details: str


class PortfolioHealth(FrozenModel):
    diversification: float = 0.0
    risk_level: RiskLevel = RiskLevel.MEDIUM
    efficiency: float = 0.0


class RebalancingSuggestions(FrozenModel):
    user_address: str
    current_positions: List[LiquidityPosition] = Field(default_factory=list)
    suggestions: List[Suggestion] = Field(default_factory=list)
    portfolio_health: PortfolioHealth = Field(default_factory=PortfolioHealth)
