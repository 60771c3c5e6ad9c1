"""
VelumX Liquidity Engine - Data Models
"""

from velumx.models.liquidity import (
    ExpectedImpact,
    FeeEarnings,
    FeeHistory,
    FeeProjection,
    HistoricalDataPoint,
    ImpermanentLoss,
    LiquidityDepth,
    LiquidityPosition,
    OptimalAmounts,
    Pool,
    PoolAnalytics,
    PoolComparison,
    PoolComparisonEntry,
    PoolMetadata,
    PoolRecommendation,
    PoolReserves,
    PoolShare,
    PoolSnapshot,
    PortfolioHealth,
    PortfolioSummary,
    PositionAction,
    PositionHistory,
    PositionValue,
    PriceLevel,
    RebalancingSuggestions,
    Returns,
    RiskAssessment,
    RiskFactor,
    RiskFactors,
    RiskLevel,
    RiskTolerance,
    Suggestion,
    SuggestionAction,
    SuggestionPriority,
    TaxReport,
    TaxReportPosition,
    Timeframe,
    Token,
)

__all__ = [
    "ExpectedImpact",
    "FeeEarnings",
    "FeeHistory",
    "FeeProjection",
    "HistoricalDataPoint",
    "ImpermanentLoss",
    "LiquidityDepth",
    "LiquidityPosition",
    "OptimalAmounts",
    "Pool",
    "PoolAnalytics",
    "PoolComparison",
    "PoolComparisonEntry",
    "PoolMetadata",
    "PoolRecommendation",
    "PoolReserves",
    "PoolShare",
    "PoolSnapshot",
    "PortfolioHealth",
    "PortfolioSummary",
    "PositionAction",
    "PositionHistory",
    "PositionValue",
    "PriceLevel",
    "RebalancingSuggestions",
    "Returns",
    "RiskAssessment",
    "RiskFactor",
    "RiskFactors",
    "RiskLevel",
    "RiskTolerance",
    "Suggestion",
    "SuggestionAction",
    "SuggestionPriority",
    "TaxReport",
    "TaxReportPosition",
    "Timeframe",
    "Token",
]
