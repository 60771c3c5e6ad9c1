"""
Liquidity API

Read endpoints for pools, analytics, positions, fees and pool suggestions,
and the write hooks that record liquidity changes, swaps and fee payouts.
Write hooks respond only after the affected cache entries have been
invalidated.

Errors:
- 400: a calculation the pool cannot support (e.g. removing from an empty pool)
- 404: pool, position or token does not exist
- 503: chain, price service or database unreachable
"""

import logging
import uuid
from datetime import datetime
from typing import Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field

from api.dependencies import get_services
from velumx.cache.invalidation import LiquidityEvent
from velumx.models.liquidity import (
    FeeEarnings,
    FeeHistory,
    FeeProjection,
    HistoricalDataPoint,
    ImpermanentLoss,
    LiquidityPosition,
    OptimalAmounts,
    Pool,
    PoolAnalytics,
    PoolMetadata,
    PoolRecommendation,
    PoolShare,
    PortfolioSummary,
    PositionAction,
    PositionHistory,
    PositionValue,
    RebalancingSuggestions,
    Returns,
    RiskAssessment,
    RiskLevel,
    RiskTolerance,
    TaxReport,
    Timeframe,
    Token,
)
from velumx.services.container import ServiceContainer


logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/liquidity", tags=["Liquidity"])

# Pool ids and Stacks addresses (including contract principals)
IDENTIFIER_PATTERN = r"^[A-Za-z0-9._-]+$"


# =============================================================================
# REQUEST / RESPONSE MODELS
# =============================================================================

class LiquidityEventRequest(BaseModel):
    """A confirmed add/remove liquidity transaction."""
    user_address: str = Field(..., pattern=IDENTIFIER_PATTERN)
    pool_id: str = Field(..., pattern=IDENTIFIER_PATTERN)
    action: PositionAction
    lp_token_amount: int = Field(..., gt=0)
    token_a_amount: int = Field(..., ge=0)
    token_b_amount: int = Field(..., ge=0)
    value_usd: float = Field(default=0.0, ge=0)
    transaction_hash: str = ""
    block_height: int = 0


class LiquidityEventResponse(BaseModel):
    success: bool
    pool_id: str
    user_address: str
    lp_token_balance: int = Field(..., description="Tracked LP balance after the change")


class SwapEventRequest(BaseModel):
    pool_id: str = Field(..., pattern=IDENTIFIER_PATTERN)
    transaction_hash: Optional[str] = None


class FeeEventRequest(BaseModel):
    user_address: str = Field(..., pattern=IDENTIFIER_PATTERN)
    pool_id: str = Field(..., pattern=IDENTIFIER_PATTERN)
    amount_usd: float = Field(..., ge=0)
    transaction_hash: Optional[str] = None
    block_height: Optional[int] = None


class OptimalAmountsRequest(BaseModel):
    """Deposit quote; tokens are given by symbol or contract address."""
    token_a: str = Field(..., pattern=IDENTIFIER_PATTERN)
    token_b: str = Field(..., pattern=IDENTIFIER_PATTERN)
    amount_a: Optional[int] = Field(default=None, ge=0)
    amount_b: Optional[int] = Field(default=None, ge=0)


class OptimalAmountsResponse(OptimalAmounts):
    lp_tokens: int = Field(..., description="LP tokens minted for the optimal amounts")


class RemoveAmountsRequest(BaseModel):
    token_a: str = Field(..., pattern=IDENTIFIER_PATTERN)
    token_b: str = Field(..., pattern=IDENTIFIER_PATTERN)
    lp_token_amount: int = Field(..., gt=0)


class InvalidationResponse(BaseModel):
    """Cache invalidation response."""
    success: bool
    keys_invalidated: int
    duration_ms: float
    errors: List[str] = []


class PoolStatsResponse(BaseModel):
    total_pools: int
    total_lp_supply: int
    featured_pools: int
    tokens: int


# =============================================================================
# POOLS
# =============================================================================

@router.get("/pools", response_model=List[Pool])
async def list_pools(
    limit: Optional[int] = Query(None, ge=1),
    offset: int = Query(0, ge=0),
    services: ServiceContainer = Depends(get_services),
):
    page_size = min(limit or services.settings.MAX_POOLS_PER_PAGE, services.settings.MAX_POOLS_PER_PAGE)
    pools = await services.discovery.get_all_pools()
    return pools[offset:offset + page_size]


@router.get("/pools/search", response_model=List[Pool])
async def search_pools(
    q: str = Query("", max_length=100),
    services: ServiceContainer = Depends(get_services),
):
    return await services.discovery.search_pools(q)


@router.get("/pools/popular", response_model=List[Pool])
async def popular_pools(
    limit: int = Query(10, ge=1, le=50),
    services: ServiceContainer = Depends(get_services),
):
    return await services.discovery.get_popular_pools(limit)


@router.get("/pools/featured", response_model=List[Pool])
async def featured_pools(services: ServiceContainer = Depends(get_services)):
    return await services.discovery.get_featured_pools()


@router.get("/pools/stats", response_model=PoolStatsResponse)
async def pool_stats(services: ServiceContainer = Depends(get_services)):
    return PoolStatsResponse(**await services.discovery.get_pool_stats_summary())


@router.post("/pools/refresh", response_model=List[Pool])
async def refresh_pools(
    pool_id: Optional[str] = None,
    services: ServiceContainer = Depends(get_services),
):
    """Invalidate pool data and rediscover pools."""
    return await services.discovery.refresh_pool_data(pool_id)


@router.get("/pools/{pool_id}", response_model=Pool)
async def get_pool(pool_id: str, services: ServiceContainer = Depends(get_services)):
    return await services.discovery.get_pool_by_id(pool_id)


@router.get("/pools/{pool_id}/metadata", response_model=PoolMetadata)
async def get_pool_metadata(pool_id: str, services: ServiceContainer = Depends(get_services)):
    return await services.discovery.get_pool_metadata(pool_id)


@router.get("/discovery/status")
async def discovery_status(services: ServiceContainer = Depends(get_services)):
    return services.discovery.get_discovery_status()


# =============================================================================
# ANALYTICS
# =============================================================================

@router.get("/analytics/summary")
async def analytics_summary(services: ServiceContainer = Depends(get_services)):
    return await services.analytics.get_analytics_summary()


@router.get("/analytics/{pool_id}", response_model=PoolAnalytics)
async def get_pool_analytics(pool_id: str, services: ServiceContainer = Depends(get_services)):
    """Pool analytics; zeroed when upstream data is unavailable."""
    return await services.analytics.get_pool_analytics(pool_id)


@router.get("/analytics/{pool_id}/history", response_model=List[HistoricalDataPoint])
async def get_pool_history(
    pool_id: str,
    timeframe: Timeframe = Timeframe.DAY_7,
    services: ServiceContainer = Depends(get_services),
):
    await services.discovery.get_pool_by_id(pool_id)
    return await services.analytics.get_pool_history(pool_id, timeframe)


@router.get("/analytics/{pool_id}/projection", response_model=FeeProjection)
async def project_fees(
    pool_id: str,
    amount_usd: float = Query(..., gt=0),
    services: ServiceContainer = Depends(get_services),
):
    return await services.fees.project_fee_earnings(pool_id, amount_usd)


# =============================================================================
# POSITIONS
# =============================================================================

@router.get("/positions/{address}", response_model=List[LiquidityPosition])
async def get_positions(address: str, services: ServiceContainer = Depends(get_services)):
    positions = await services.positions.get_user_positions(address)
    return positions[:services.settings.MAX_POSITIONS_PER_PAGE]


@router.get("/positions/{address}/portfolio", response_model=PortfolioSummary)
async def get_portfolio(address: str, services: ServiceContainer = Depends(get_services)):
    return await services.positions.get_portfolio_summary(address)


@router.get("/positions/{address}/history", response_model=List[PositionHistory])
async def get_position_history(
    address: str,
    pool_id: Optional[str] = None,
    limit: int = Query(100, ge=1, le=500),
    services: ServiceContainer = Depends(get_services),
):
    return await services.positions.get_position_history(address, pool_id, limit)


@router.get("/positions/{address}/returns", response_model=Returns)
async def get_returns(
    address: str,
    timeframe: Timeframe = Timeframe.DAY_30,
    services: ServiceContainer = Depends(get_services),
):
    return await services.positions.calculate_returns(address, timeframe)


@router.get("/positions/{address}/{pool_id}", response_model=LiquidityPosition)
async def get_position(address: str, pool_id: str, services: ServiceContainer = Depends(get_services)):
    return await services.positions.get_position(address, pool_id)


@router.get("/positions/{address}/{pool_id}/value", response_model=PositionValue)
async def get_position_value(address: str, pool_id: str, services: ServiceContainer = Depends(get_services)):
    return await services.positions.get_position_value(address, pool_id)


@router.get("/positions/{address}/{pool_id}/impermanent-loss", response_model=ImpermanentLoss)
async def get_impermanent_loss(address: str, pool_id: str, services: ServiceContainer = Depends(get_services)):
    return await services.positions.calculate_impermanent_loss(address, pool_id)


# =============================================================================
# FEES
# =============================================================================

@router.get("/fees/statistics")
async def fee_statistics(services: ServiceContainer = Depends(get_services)):
    return await services.fees.get_fee_statistics()


@router.get("/fees/{address}/history", response_model=List[FeeHistory])
async def get_fee_history(
    address: str,
    timeframe: Timeframe = Timeframe.DAY_30,
    services: ServiceContainer = Depends(get_services),
):
    return await services.fees.get_fee_history(address, timeframe)


@router.get("/fees/{address}/report/{year}", response_model=TaxReport)
async def get_tax_report(address: str, year: int, services: ServiceContainer = Depends(get_services)):
    if not services.settings.TAX_REPORTING_ENABLED:
        raise HTTPException(status_code=404, detail="Tax reporting is disabled")
    if year < 2009 or year > datetime.utcnow().year:
        raise HTTPException(status_code=400, detail=f"Invalid year: {year}")
    return await services.fees.generate_fee_report(address, year)


@router.get("/fees/{address}/{pool_id}", response_model=FeeEarnings)
async def get_fee_earnings(address: str, pool_id: str, services: ServiceContainer = Depends(get_services)):
    return await services.fees.calculate_accumulated_fees(address, pool_id)


# =============================================================================
# CALCULATIONS
# =============================================================================

def resolve_tokens(services: ServiceContainer, *identifiers: str) -> List[Token]:
    tokens = []
    for identifier in identifiers:
        token = services.discovery.get_token(identifier)
        if token is None:
            raise HTTPException(status_code=404, detail=f"Unknown token: {identifier}")
        tokens.append(token)
    return tokens


@router.post("/calculate-optimal", response_model=OptimalAmountsResponse)
async def calculate_optimal(
    request: OptimalAmountsRequest,
    services: ServiceContainer = Depends(get_services),
):
    """Amounts matching the pool ratio for a deposit of either or both tokens."""
    token_a, token_b = resolve_tokens(services, request.token_a, request.token_b)
    amounts = await services.liquidity.calculate_optimal_amounts(
        token_a, token_b, request.amount_a, request.amount_b,
    )
    lp_tokens = await services.liquidity.calculate_lp_tokens_to_mint(
        token_a, token_b, amounts.amount_a, amounts.amount_b,
    )
    return OptimalAmountsResponse(**amounts.model_dump(), lp_tokens=lp_tokens)


@router.post("/calculate-remove", response_model=PoolShare)
async def calculate_remove(
    request: RemoveAmountsRequest,
    services: ServiceContainer = Depends(get_services),
):
    """Tokens returned for burning the given LP amount; 400 for an empty pool."""
    token_a, token_b = resolve_tokens(services, request.token_a, request.token_b)
    return await services.liquidity.calculate_remove_amounts(token_a, token_b, request.lp_token_amount)


# =============================================================================
# SUGGESTIONS
# =============================================================================

@router.get("/risk/{pool_id}", response_model=RiskAssessment)
async def get_pool_risk(pool_id: str, services: ServiceContainer = Depends(get_services)):
    """Risk factors of a pool; 503 while its analytics are unavailable."""
    return await services.suggestions.assess_pool_risk(pool_id)


@router.get("/recommendations", response_model=List[PoolRecommendation])
async def get_recommendations(
    address: Optional[str] = Query(None, pattern=IDENTIFIER_PATTERN),
    risk_tolerance: RiskTolerance = RiskTolerance.MODERATE,
    min_tvl: float = Query(0.0, ge=0),
    min_apr: float = Query(0.0, ge=0),
    max_risk: RiskLevel = RiskLevel.HIGH,
    limit: int = Query(10, ge=1, le=50),
    services: ServiceContainer = Depends(get_services),
):
    return await services.suggestions.get_optimal_pool_recommendations(
        address,
        risk_tolerance=risk_tolerance,
        min_tvl=min_tvl,
        min_apr=min_apr,
        max_risk=max_risk,
        limit=limit,
    )


@router.get("/rebalancing/{address}", response_model=RebalancingSuggestions)
async def get_rebalancing(address: str, services: ServiceContainer = Depends(get_services)):
    return await services.suggestions.get_rebalancing_suggestions(address)


# =============================================================================
# EVENTS
# =============================================================================

@router.post("/events/liquidity", response_model=LiquidityEventResponse)
async def liquidity_event(
    request: LiquidityEventRequest,
    services: ServiceContainer = Depends(get_services),
):
    """Record a confirmed add/remove; affected caches are invalidated before responding."""
    entry = PositionHistory(
        id=str(uuid.uuid4()),
        user_address=request.user_address,
        pool_id=request.pool_id,
        action=request.action,
        lp_token_amount=request.lp_token_amount,
        token_a_amount=request.token_a_amount,
        token_b_amount=request.token_b_amount,
        value_usd=request.value_usd,
        transaction_hash=request.transaction_hash,
        block_height=request.block_height,
        timestamp=datetime.utcnow(),
    )
    updated = await services.positions.record_position_change(entry)
    return LiquidityEventResponse(
        success=True,
        pool_id=request.pool_id,
        user_address=request.user_address,
        lp_token_balance=updated.lp_token_balance if updated else 0,
    )


@router.post("/events/swap", response_model=InvalidationResponse)
async def swap_event(
    request: SwapEventRequest,
    services: ServiceContainer = Depends(get_services),
):
    result = await services.invalidator.handle_event(
        LiquidityEvent.SWAP_EXECUTED, pool_id=request.pool_id,
    )
    return InvalidationResponse(
        success=result.success,
        keys_invalidated=result.keys_invalidated,
        duration_ms=result.duration_ms,
        errors=result.errors,
    )


@router.post("/events/fees", response_model=FeeHistory)
async def fee_event(
    request: FeeEventRequest,
    services: ServiceContainer = Depends(get_services),
):
    if not services.settings.FEE_TRACKING_ENABLED:
        raise HTTPException(status_code=404, detail="Fee tracking is disabled")
    return await services.fees.store_fee_earnings(
        request.user_address,
        request.pool_id,
        request.amount_usd,
        transaction_hash=request.transaction_hash,
        block_height=request.block_height,
    )


@router.get("/tokens")
async def list_tokens(services: ServiceContainer = Depends(get_services)) -> Dict[str, List[Dict]]:
    return {"tokens": [t.model_dump() for t in services.discovery.tokens]}
