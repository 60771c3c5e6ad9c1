"""
Liquidity Suggestions Service

Risk assessment per pool, ranked pool recommendations, and rebalancing
suggestions for a provider's positions.

Risk assessments are cached per pool and only ever built from live
analytics, so an outage surfaces as UpstreamError instead of a cached
"everything is fine" assessment. Recommendations and rebalancing
suggestions are assembled on each call from cached analytics, risk and
positions.

Risk factors, each scored 0-100 (higher is riskier):
- liquidity: pool TVL
- volatility: 24h price change of token A
- impermanent loss: same price move, stricter bands
- concentration: pool's share of the TVL across all pools
"""

import asyncio
import logging
from typing import List, Optional, Sequence

from velumx.cache.config import CacheConfig, CacheKey
from velumx.cache.read_through import ReadThroughCache
from velumx.exceptions import PoolNotFoundError, UpstreamError
from velumx.models.liquidity import (
    ExpectedImpact,
    LiquidityPosition,
    Pool,
    PoolAnalytics,
    PoolRecommendation,
    PortfolioHealth,
    RebalancingSuggestions,
    RiskAssessment,
    RiskFactor,
    RiskFactors,
    RiskLevel,
    RiskTolerance,
    Suggestion,
    SuggestionAction,
    SuggestionPriority,
)
from velumx.services.metrics import project_fees
from velumx.services.pool_analytics import PoolAnalyticsService
from velumx.services.pool_discovery import PoolDiscoveryService
from velumx.services.position_tracking import PositionTrackingService


logger = logging.getLogger(__name__)

RISK_ORDER = {RiskLevel.LOW: 0, RiskLevel.MEDIUM: 1, RiskLevel.HIGH: 2}
RISK_WEIGHTS = {
    "liquidity": 0.3,
    "volatility": 0.3,
    "impermanent_loss": 0.25,
    "concentration": 0.15,
}

# Deposit size used for the projected earnings of a recommendation
PROJECTION_AMOUNT_USD = 1_000.0
# Providers with fewer positions get diversification suggestions
DIVERSIFICATION_TARGET = 3
# Share of a portfolio above which a high-risk position should shrink
MAX_HIGH_RISK_SHARE = 0.3


# =============================================================================
# Risk factors
# =============================================================================

def score_to_level(score: float) -> RiskLevel:
    if score < 33:
        return RiskLevel.LOW
    if score < 66:
        return RiskLevel.MEDIUM
    return RiskLevel.HIGH


def liquidity_risk(tvl: float) -> RiskFactor:
    if tvl >= 1_000_000:
        return RiskFactor(level=RiskLevel.LOW, score=20, description="High liquidity with minimal slippage risk")
    if tvl >= 100_000:
        return RiskFactor(level=RiskLevel.MEDIUM, score=50, description="Moderate liquidity with acceptable slippage")
    return RiskFactor(level=RiskLevel.HIGH, score=80, description="Low liquidity may cause significant slippage")


def volatility_risk(price_change_24h: float) -> RiskFactor:
    change = abs(price_change_24h)
    if change < 5:
        return RiskFactor(level=RiskLevel.LOW, score=20, description="Low volatility with stable price action")
    if change < 15:
        return RiskFactor(
            level=RiskLevel.MEDIUM, score=50, description="Moderate volatility with normal price fluctuations",
        )
    return RiskFactor(level=RiskLevel.HIGH, score=80, description="High volatility increases impermanent loss risk")


def impermanent_loss_risk(price_change_24h: float) -> RiskFactor:
    change = abs(price_change_24h)
    if change < 2:
        return RiskFactor(
            level=RiskLevel.LOW, score=15, description="Minimal impermanent loss risk with stable assets",
        )
    if change < 10:
        return RiskFactor(level=RiskLevel.MEDIUM, score=45, description="Moderate impermanent loss risk")
    return RiskFactor(
        level=RiskLevel.HIGH, score=75, description="High impermanent loss risk with volatile assets",
    )


def concentration_risk(tvl: float, total_tvl: float) -> RiskFactor:
    share = tvl / total_tvl * 100 if total_tvl > 0 else 0.0
    if share < 10:
        return RiskFactor(level=RiskLevel.LOW, score=20, description="Well-diversified pool with low concentration")
    if share < 30:
        return RiskFactor(level=RiskLevel.MEDIUM, score=50, description="Moderate concentration in this pool")
    return RiskFactor(
        level=RiskLevel.HIGH, score=80, description="High concentration risk, pool dominates total TVL",
    )


def build_risk_assessment(pool_id: str, analytics: PoolAnalytics, total_tvl: float) -> RiskAssessment:
    factors = RiskFactors(
        liquidity=liquidity_risk(analytics.tvl),
        volatility=volatility_risk(analytics.price_change_24h),
        impermanent_loss=impermanent_loss_risk(analytics.price_change_24h),
        concentration=concentration_risk(analytics.tvl, total_tvl),
    )
    score = sum(getattr(factors, name).score * weight for name, weight in RISK_WEIGHTS.items())

    recommendations: List[str] = []
    warnings: List[str] = []
    if factors.liquidity.level == RiskLevel.HIGH:
        recommendations.append("Consider pools with higher TVL for better liquidity")
        warnings.append("Low liquidity may cause significant slippage")
    if factors.volatility.level == RiskLevel.HIGH:
        recommendations.append("Monitor position frequently due to high volatility")
        warnings.append("High price volatility increases impermanent loss risk")
    if factors.impermanent_loss.level == RiskLevel.HIGH:
        recommendations.append("Consider stablecoin pairs to minimize impermanent loss")
        warnings.append("Significant impermanent loss possible with uncorrelated assets")
    if factors.concentration.level == RiskLevel.HIGH:
        recommendations.append("Diversify across multiple pools to reduce concentration risk")

    return RiskAssessment(
        pool_id=pool_id,
        overall_risk=score_to_level(score),
        risk_score=score,
        factors=factors,
        recommendations=recommendations,
        warnings=warnings,
    )


# =============================================================================
# Recommendations
# =============================================================================

def recommendation_score(
    analytics: PoolAnalytics,
    risk: RiskAssessment,
    tolerance: RiskTolerance,
    already_held: bool,
) -> float:
    """
    0-100 ranking score.

    TVL up to 25 points, APR up to 30, volume up to 20, risk fit up to 25,
    10 for a pool the provider does not hold yet, and up to 10 for depth.
    """
    score = min(25.0, analytics.tvl / 1_000_000 * 5)
    score += min(30.0, analytics.apr / 2)
    score += min(20.0, analytics.volume_24h / 100_000 * 2)

    if tolerance == RiskTolerance.CONSERVATIVE:
        score += max(0.0, 25 - risk.risk_score / 4)
    elif tolerance == RiskTolerance.MODERATE:
        score += 25 - risk.risk_score / 2 if risk.risk_score < 50 else 15
    else:
        score += 15

    if not already_held:
        score += 10
    score += min(10.0, len(analytics.liquidity_depth.bids) / 2)

    return min(100.0, max(0.0, score))


def recommendation_reason(analytics: PoolAnalytics, risk: RiskAssessment, score: float) -> str:
    level = risk.overall_risk.value
    if score >= 80:
        return (
            f"Excellent opportunity with strong fundamentals: {analytics.apr:.1f}% APR, "
            f"${analytics.tvl / 1_000_000:.2f}M TVL, and {level} risk."
        )
    if score >= 60:
        return f"Good option with balanced risk-reward: {analytics.apr:.1f}% APR and {level} risk profile."
    if score >= 40:
        return f"Moderate opportunity with {analytics.apr:.1f}% APR. Consider risk factors before investing."
    return f"Lower-rated pool with {level} risk. Suitable for experienced users only."


def build_recommendation(
    pool: Pool,
    analytics: PoolAnalytics,
    risk: RiskAssessment,
    score: float,
) -> PoolRecommendation:
    strengths: List[str] = []
    if analytics.tvl > 1_000_000:
        strengths.append(f"High liquidity with ${analytics.tvl / 1_000_000:.2f}M TVL")
    if analytics.apr > 20:
        strengths.append(f"Attractive {analytics.apr:.2f}% APR")
    if analytics.volume_24h > 100_000:
        strengths.append(f"Active trading with ${analytics.volume_24h / 1_000:.0f}K daily volume")
    if risk.overall_risk == RiskLevel.LOW:
        strengths.append("Low risk profile with stable assets")

    warnings: List[str] = []
    if analytics.tvl < 100_000:
        warnings.append("Low liquidity may result in higher slippage")
    if analytics.apr > 100:
        warnings.append("Unusually high APR may indicate elevated risk")
    if risk.overall_risk == RiskLevel.HIGH:
        warnings.append("High risk due to volatility or low liquidity")
    if abs(analytics.price_change_24h) > 10:
        warnings.append(f"High price volatility: {analytics.price_change_24h:.2f}% in 24h")

    factors = risk.factors
    risk_factors = [
        factor.description
        for factor in (factors.liquidity, factors.volatility, factors.impermanent_loss, factors.concentration)
        if factor.level == RiskLevel.HIGH
    ]
    projection = project_fees(analytics, PROJECTION_AMOUNT_USD)

    return PoolRecommendation(
        pool=pool,
        analytics=analytics,
        score=score,
        risk_level=risk.overall_risk,
        risk_factors=risk_factors,
        strengths=strengths,
        warnings=warnings,
        projected_apr=analytics.apr,
        projected_daily_earnings=projection.projected_daily,
        confidence=projection.confidence,
        reason=recommendation_reason(analytics, risk, score),
    )


# =============================================================================
# Rebalancing
# =============================================================================

def position_suggestions(
    position: LiquidityPosition,
    analytics: PoolAnalytics,
    risk: RiskAssessment,
    portfolio_value: float,
) -> List[Suggestion]:
    suggestions: List[Suggestion] = []

    if analytics.apr < 5 and position.fee_earnings < position.impermanent_loss:
        suggestions.append(Suggestion(
            action=SuggestionAction.REMOVE,
            pool_id=position.pool_id,
            reason=f"Low APR ({analytics.apr:.2f}%) and fees not covering impermanent loss",
            priority=SuggestionPriority.HIGH,
            expected_impact=ExpectedImpact(
                risk_change="Reduced risk exposure",
                return_change="Prevent further losses",
                diversification_change="Reduced diversification",
            ),
            details=(
                f"Current IL: ${position.impermanent_loss:.2f}, "
                f"Fees: ${position.fee_earnings:.2f}"
            ),
        ))

    if (
        risk.overall_risk == RiskLevel.HIGH
        and portfolio_value > 0
        and position.current_value > portfolio_value * MAX_HIGH_RISK_SHARE
    ):
        share = position.current_value / portfolio_value * 100
        suggestions.append(Suggestion(
            action=SuggestionAction.REBALANCE,
            pool_id=position.pool_id,
            reason=f"High risk position represents {share:.1f}% of portfolio",
            priority=SuggestionPriority.MEDIUM,
            expected_impact=ExpectedImpact(
                risk_change="Reduced overall portfolio risk",
                return_change="More balanced returns",
                diversification_change="Improved diversification",
            ),
            details="Consider reducing position size to 15-20% of portfolio",
        ))

    if analytics.apr > 30 and risk.overall_risk == RiskLevel.LOW:
        suggestions.append(Suggestion(
            action=SuggestionAction.ADD,
            pool_id=position.pool_id,
            reason=f"Excellent performance with {analytics.apr:.2f}% APR and low risk",
            priority=SuggestionPriority.MEDIUM,
            expected_impact=ExpectedImpact(
                risk_change="Minimal risk increase",
                return_change="Increased returns",
                diversification_change="Reduced diversification",
            ),
            details="Consider increasing position to capture higher yields",
        ))

    return suggestions


def portfolio_health(
    positions: Sequence[LiquidityPosition],
    risk_scores: Sequence[float],
    total_value: float,
    total_returns: float,
) -> PortfolioHealth:
    """Diversification (25 per position, max 100), mean risk, and return on value."""
    mean_risk = sum(risk_scores) / len(risk_scores) if risk_scores else 50.0
    efficiency = 0.0
    if total_returns > 0 and total_value > 0:
        efficiency = min(100.0, total_returns / total_value * 100)
    return PortfolioHealth(
        diversification=min(100.0, len(positions) * 25.0),
        risk_level=score_to_level(mean_risk),
        efficiency=efficiency,
    )


class LiquiditySuggestionsService:
    def __init__(
        self,
        cache: ReadThroughCache,
        cache_config: CacheConfig,
        discovery: PoolDiscoveryService,
        analytics: PoolAnalyticsService,
        positions: PositionTrackingService,
    ):
        self.cache = cache
        self.cache_config = cache_config
        self.discovery = discovery
        self.analytics = analytics
        self.positions = positions

    # =========================================================================
    # Risk
    # =========================================================================

    async def assess_pool_risk(self, pool_id: str, analytics: Optional[PoolAnalytics] = None) -> RiskAssessment:
        """
        Cached risk assessment for a pool.

        analytics, when given, must be live (from load_pool_analytics).

        Raises:
            PoolNotFoundError: Pool does not exist
            UpstreamError: Analytics for this or any other pool unavailable
        """
        policy = self.cache_config.policy(CacheKey.POOL_RISK)
        return await self.cache.with_cache(
            policy.key(pool_id=pool_id),
            lambda: self._assess(pool_id, analytics),
            policy.ttl_seconds,
            RiskAssessment,
        )

    async def _assess(self, pool_id: str, analytics: Optional[PoolAnalytics]) -> RiskAssessment:
        logger.debug(f"Assessing risk for {pool_id}")
        if analytics is None:
            analytics = await self.analytics.load_pool_analytics(pool_id)
        total_tvl = await self._total_tvl()
        return build_risk_assessment(pool_id, analytics, total_tvl)

    async def _total_tvl(self) -> float:
        pools = await self.discovery.get_all_pools()
        results = await asyncio.gather(
            *(self.analytics.load_pool_analytics(p.id) for p in pools),
            return_exceptions=True,
        )
        total = 0.0
        for result in results:
            if isinstance(result, PoolNotFoundError):
                continue
            if isinstance(result, BaseException):
                raise result
            total += result.tvl
        return total

    # =========================================================================
    # Recommendations
    # =========================================================================

    async def get_optimal_pool_recommendations(
        self,
        user_address: Optional[str] = None,
        risk_tolerance: RiskTolerance = RiskTolerance.MODERATE,
        min_tvl: float = 0.0,
        min_apr: float = 0.0,
        max_risk: RiskLevel = RiskLevel.HIGH,
        limit: int = 10,
    ) -> List[PoolRecommendation]:
        """
        Pools ranked by recommendation score, best first.

        Pools whose analytics or risk cannot be computed right now are left
        out. With a user_address, pools the user already holds lose the
        diversification bonus.

        Raises:
            UpstreamError: Pool list unavailable
        """
        held = set()
        if user_address:
            held = {p.pool_id for p in await self.positions.get_user_positions(user_address)}

        recommendations: List[PoolRecommendation] = []
        for pool in await self.discovery.get_all_pools():
            try:
                analytics = await self.analytics.load_pool_analytics(pool.id)
                if analytics.tvl < min_tvl or analytics.apr < min_apr:
                    continue
                risk = await self.assess_pool_risk(pool.id, analytics)
            except (PoolNotFoundError, UpstreamError) as e:
                logger.warning(f"Leaving {pool.id} out of recommendations: {e.message}")
                continue

            if RISK_ORDER[risk.overall_risk] > RISK_ORDER[max_risk]:
                continue
            score = recommendation_score(analytics, risk, risk_tolerance, pool.id in held)
            recommendations.append(build_recommendation(pool, analytics, risk, score))

        recommendations.sort(key=lambda r: r.score, reverse=True)
        logger.info(
            f"Recommended {min(limit, len(recommendations))} pools "
            f"({risk_tolerance.value}, max risk {max_risk.value})"
        )
        return recommendations[:limit]

    # =========================================================================
    # Rebalancing
    # =========================================================================

    async def get_rebalancing_suggestions(self, user_address: str) -> RebalancingSuggestions:
        """
        Suggested changes to a provider's positions.

        While positions cannot be loaded an empty result is served; positions
        whose pool analytics are unavailable get no suggestions.
        """
        try:
            positions = await self.positions.load_user_positions(user_address)
        except UpstreamError as e:
            logger.warning(f"Serving no rebalancing suggestions for {user_address}: {e.message}")
            return RebalancingSuggestions(user_address=user_address)

        portfolio = await self.positions.get_portfolio_summary(user_address)
        suggestions: List[Suggestion] = []
        risk_scores: List[float] = []

        for position in positions:
            try:
                analytics = await self.analytics.load_pool_analytics(position.pool_id)
                risk = await self.assess_pool_risk(position.pool_id, analytics)
            except (PoolNotFoundError, UpstreamError) as e:
                logger.warning(f"No suggestions for {user_address} in {position.pool_id}: {e.message}")
                continue
            risk_scores.append(risk.risk_score)
            suggestions += position_suggestions(position, analytics, risk, portfolio.total_value)

        if len(positions) < DIVERSIFICATION_TARGET:
            suggestions += await self._diversification_suggestions(user_address, positions)

        return RebalancingSuggestions(
            user_address=user_address,
            current_positions=positions,
            suggestions=suggestions,
            portfolio_health=portfolio_health(
                positions, risk_scores, portfolio.total_value, portfolio.total_returns,
            ),
        )

    async def _diversification_suggestions(
        self,
        user_address: str,
        positions: Sequence[LiquidityPosition],
    ) -> List[Suggestion]:
        held = {p.pool_id for p in positions}
        try:
            recommendations = await self.get_optimal_pool_recommendations(
                user_address, limit=DIVERSIFICATION_TARGET,
            )
        except UpstreamError as e:
            logger.warning(f"Skipping diversification suggestions: {e.message}")
            return []

        return [
            Suggestion(
                action=SuggestionAction.ADD,
                pool_id=rec.pool.id,
                reason=f"Diversification opportunity with {rec.projected_apr:.2f}% APR",
                priority=SuggestionPriority.LOW,
                expected_impact=ExpectedImpact(
                    risk_change="Better risk distribution",
                    return_change="Potential for higher returns",
                    diversification_change="Improved diversification",
                ),
                details=rec.reason,
            )
            for rec in recommendations
            if rec.pool.id not in held
        ]

    async def clear_risk_cache(self, pool_id: Optional[str] = None) -> int:
        policy = self.cache_config.policy(CacheKey.POOL_RISK)
        if pool_id:
            return int(await self.cache.invalidate(policy.key(pool_id=pool_id)))
        return max(0, await self.cache.invalidate_pattern(policy.pattern()))
