"""
Pool and position math.

Pure functions over reserves and prices, kept apart from the services so
every number the API reports can be checked without I/O.
"""

import math
from typing import List, Optional

from velumx.models.liquidity import (
    FeeProjection,
    LiquidityDepth,
    Pool,
    PoolAnalytics,
    PriceLevel,
    RiskLevel,
)
from velumx.utils.config import MAX_APR, RISK_CRITERIA, SWAP_FEE_RATE


DEPTH_LEVELS = 20
DEPTH_STEP = 0.01
WEEKLY_VOLUME_MULTIPLIER = 7


def to_decimal(amount: int, decimals: int) -> float:
    return amount / (10 ** decimals)


def pool_tvl(pool: Pool, price_a: float, price_b: float) -> float:
    """USD value locked: sum of each reserve times its token price."""
    return (
        to_decimal(pool.reserve_a, pool.token_a.decimals) * price_a
        + to_decimal(pool.reserve_b, pool.token_b.decimals) * price_b
    )


def pool_price(pool: Pool) -> float:
    """Spot price of token A in units of token B."""
    reserve_a = to_decimal(pool.reserve_a, pool.token_a.decimals)
    if reserve_a <= 0:
        return 0.0
    return to_decimal(pool.reserve_b, pool.token_b.decimals) / reserve_a


def estimate_turnover_rate(pool: Pool) -> float:
    """
    Daily turnover as a fraction of TVL, between 0.1% and 10%.

    Deeper pools turn over more; LP supply stands in for depth until swap
    events are indexed.
    """
    supply = to_decimal(pool.total_supply, pool.token_a.decimals)
    return min(0.1, max(0.001, supply / 10_000_000))


def estimate_volume_24h(pool: Pool, tvl: float) -> float:
    return tvl * estimate_turnover_rate(pool)


def fees_for_volume(volume: float) -> float:
    return volume * SWAP_FEE_RATE


def calculate_apr(tvl: float, volume_24h: float) -> float:
    """Fee APR in percent, capped at MAX_APR."""
    if tvl <= 0:
        return 0.0
    apr = fees_for_volume(volume_24h) * 365 / tvl * 100
    return max(0.0, min(apr, MAX_APR))


def liquidity_depth(pool: Pool) -> LiquidityDepth:
    """
    Token A tradable before the price moves by 1%..20% either way.

    Derived from x * y = k: at price p the A reserve is sqrt(k / p).
    """
    reserve_a = to_decimal(pool.reserve_a, pool.token_a.decimals)
    reserve_b = to_decimal(pool.reserve_b, pool.token_b.decimals)
    if reserve_a <= 0 or reserve_b <= 0:
        return LiquidityDepth()

    current_price = reserve_b / reserve_a
    k = reserve_a * reserve_b
    bids: List[PriceLevel] = []
    asks: List[PriceLevel] = []

    for i in range(1, DEPTH_LEVELS + 1):
        move = i * DEPTH_STEP
        for side, price in ((bids, current_price * (1 - move)), (asks, current_price * (1 + move))):
            new_reserve_b = math.sqrt(k * price)
            new_reserve_a = k / new_reserve_b
            side.append(PriceLevel(
                price=price,
                liquidity=abs(new_reserve_a - reserve_a),
                price_impact=move * 100,
            ))

    # Built outward from the spot price: highest bid and lowest ask first
    return LiquidityDepth(bids=bids, asks=asks)


def price_change_percent(current: float, previous: Optional[float]) -> float:
    if not previous:
        return 0.0
    return (current - previous) / previous * 100


def impermanent_loss_fraction(price_ratio_change: float) -> float:
    """
    Constant-product impermanent loss for a relative price move r.

    2 * sqrt(r) / (1 + r) - 1; zero at r == 1, negative otherwise.
    """
    if price_ratio_change <= 0:
        return 0.0
    return 2 * math.sqrt(price_ratio_change) / (1 + price_ratio_change) - 1


def held_value(current_value: float, entry_price_a: Optional[float], entry_price_b: Optional[float],
               price_a: float, price_b: float) -> float:
    """
    What the deposited tokens would be worth had they been held instead.

    Falls back to the current value (no loss) when entry prices are unknown.
    """
    if not entry_price_a or not entry_price_b or not price_a or not price_b:
        return current_value
    ratio = (price_a / price_b) / (entry_price_a / entry_price_b)
    loss = impermanent_loss_fraction(ratio)
    if loss <= -1:
        return current_value
    return current_value / (1 + loss)


def risk_level(tvl: float, tokens_verified: bool) -> RiskLevel:
    if tvl >= RISK_CRITERIA[RiskLevel.LOW].min_tvl and tokens_verified:
        return RiskLevel.LOW
    if tvl >= RISK_CRITERIA[RiskLevel.MEDIUM].min_tvl:
        return RiskLevel.MEDIUM
    return RiskLevel.HIGH


def projection_confidence(analytics: PoolAnalytics) -> float:
    """0.1-1.0 score for how far a fee projection can be trusted."""
    tvl, volume = analytics.tvl, analytics.volume_24h
    confidence = 0.3

    if tvl > 10_000_000:
        confidence += 0.3
    elif tvl > 1_000_000:
        confidence += 0.2
    elif tvl > 100_000:
        confidence += 0.1

    if volume > 100_000:
        confidence += 0.2
    elif volume > 10_000:
        confidence += 0.15
    elif volume > 1_000:
        confidence += 0.1

    ratio = volume / tvl if tvl > 0 else 0
    if ratio > 0.1:
        confidence += 0.1
    elif ratio > 0.01:
        confidence += 0.05

    # Implausibly high APR lowers trust
    if analytics.apr > 200:
        confidence -= 0.3
    elif analytics.apr > 100:
        confidence -= 0.2
    elif analytics.apr > 50:
        confidence -= 0.1

    if len(analytics.historical_data) > 30:
        confidence += 0.1

    return max(0.1, min(1.0, round(confidence, 4)))


def project_fees(analytics: PoolAnalytics, amount_usd: float) -> FeeProjection:
    """Fees a deposit of amount_usd would earn at the pool's current volume."""
    share = amount_usd / analytics.tvl if analytics.tvl > 0 else 0.0
    daily = fees_for_volume(analytics.volume_24h) * share
    weekly = fees_for_volume(analytics.volume_7d) * share
    return FeeProjection(
        pool_id=analytics.pool_id,
        projected_daily=daily,
        projected_weekly=weekly,
        projected_monthly=daily * 30,
        projected_annual=daily * 365,
        confidence=projection_confidence(analytics),
    )
