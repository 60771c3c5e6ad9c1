"""
Tests for the persistence layer.

Every behavior is checked against both repository implementations: the
in-memory one and SQLAlchemy over an in-memory SQLite database.
"""

from datetime import datetime, timedelta

import pytest

from velumx.database.repository import (
    InMemoryLiquidityRepository,
    SqlLiquidityRepository,
    apply_position_change,
)
from velumx.database.session import Database
from velumx.exceptions import UpstreamError
from velumx.models.liquidity import FeeHistory, PoolSnapshot, PositionAction, PositionHistory


T0 = datetime(2026, 1, 10, 12, 0, 0)


def entry(action=PositionAction.ADD, lp=1_000, a=400, b=1_000, value=1_000.0,
          at=T0, user="SP1", pool="STX-USDCx") -> PositionHistory:
    return PositionHistory(
        id=f"{user}-{at.isoformat()}",
        user_address=user,
        pool_id=pool,
        action=action,
        lp_token_amount=lp,
        token_a_amount=a,
        token_b_amount=b,
        value_usd=value,
        transaction_hash="0xabc",
        block_height=100,
        timestamp=at,
    )


def fee(amount: float, at: datetime, user="SP1", pool="STX-USDCx") -> FeeHistory:
    return FeeHistory(
        id=f"{user}-{pool}-{at.isoformat()}",
        user_address=user,
        pool_id=pool,
        amount_usd=amount,
        timestamp=at,
    )


@pytest.fixture(params=["memory", "sql"])
def repository(request):
    if request.param == "memory":
        yield InMemoryLiquidityRepository()
        return
    database = Database("sqlite:///:memory:")
    database.init_db()
    yield SqlLiquidityRepository(database)
    database.dispose()


# =============================================================================
# COST BASIS
# =============================================================================

class TestApplyPositionChange:
    """Test folding adds and removes into a cost basis."""

    def test_first_add_opens_position(self):
        position = apply_position_change(None, entry(), 2.5, 1.0)

        assert position.lp_token_balance == 1_000
        assert position.initial_value_usd == 1_000.0
        assert position.initial_price_a == 2.5
        assert position.created_at == T0

    def test_second_add_blends_entry_prices(self):
        """Entry prices are weighted by deposited value."""
        first = apply_position_change(None, entry(value=1_000.0), 2.0, 1.0)
        second = apply_position_change(first, entry(value=3_000.0), 4.0, 1.0)

        assert second.lp_token_balance == 2_000
        assert second.initial_value_usd == 4_000.0
        assert second.initial_price_a == pytest.approx(3.5)
        assert second.created_at == T0

    def test_partial_remove_scales_basis(self):
        """Removing a quarter of the LP tokens removes a quarter of the basis."""
        opened = apply_position_change(None, entry(lp=1_000, a=400, b=1_000, value=1_000.0), 2.5, 1.0)
        remaining = apply_position_change(opened, entry(PositionAction.REMOVE, lp=250), None, None)

        assert remaining.lp_token_balance == 750
        assert remaining.initial_value_usd == pytest.approx(750.0)
        assert remaining.initial_token_a_amount == 300
        assert remaining.initial_price_a == 2.5

    def test_full_remove_closes_position(self):
        opened = apply_position_change(None, entry(lp=1_000), 2.5, 1.0)
        assert apply_position_change(opened, entry(PositionAction.REMOVE, lp=1_000), None, None) is None

    def test_remove_without_position(self):
        assert apply_position_change(None, entry(PositionAction.REMOVE), None, None) is None


# =============================================================================
# REPOSITORY CONTRACT
# =============================================================================

class TestPositions:
    """Test position persistence."""

    @pytest.mark.asyncio
    async def test_record_and_get_position(self, repository):
        await repository.record_position_change(entry(), 2.5, 1.0)

        position = await repository.get_position("SP1", "STX-USDCx")

        assert position.lp_token_balance == 1_000
        assert position.initial_price_a == 2.5
        assert await repository.get_position("SP1", "STX-VEX") is None

    @pytest.mark.asyncio
    async def test_large_balances_are_exact(self, repository):
        """uint128 LP amounts survive storage unchanged."""
        big = 2 ** 127 - 1
        await repository.record_position_change(entry(lp=big, a=big, b=big), 2.5, 1.0)

        position = await repository.get_position("SP1", "STX-USDCx")

        assert position.lp_token_balance == big
        assert position.initial_token_b_amount == big

    @pytest.mark.asyncio
    async def test_full_withdrawal_deletes_position(self, repository):
        await repository.record_position_change(entry(), 2.5, 1.0)
        await repository.record_position_change(
            entry(PositionAction.REMOVE, lp=1_000, at=T0 + timedelta(hours=1)),
        )

        assert await repository.get_position("SP1", "STX-USDCx") is None

    @pytest.mark.asyncio
    async def test_history_newest_first(self, repository):
        for hours in range(3):
            await repository.record_position_change(entry(at=T0 + timedelta(hours=hours)), 2.5, 1.0)
        await repository.record_position_change(entry(pool="STX-VEX"), 2.5, 0.5)

        history = await repository.get_position_history("SP1", "STX-USDCx", limit=2)

        assert [h.timestamp for h in history] == [T0 + timedelta(hours=2), T0 + timedelta(hours=1)]
        assert len(await repository.get_position_history("SP1")) == 4


class TestFees:
    """Test fee persistence and aggregation."""

    @pytest.mark.asyncio
    async def test_total_fees_per_pool(self, repository):
        await repository.add_fee_earning(fee(1.5, T0))
        await repository.add_fee_earning(fee(2.5, T0 + timedelta(days=1)))
        await repository.add_fee_earning(fee(10.0, T0, pool="STX-VEX"))

        assert await repository.get_total_fees("SP1", "STX-USDCx") == pytest.approx(4.0)
        assert await repository.get_total_fees("SP2", "STX-USDCx") == 0.0

    @pytest.mark.asyncio
    async def test_fee_history_window(self, repository):
        for days in (0, 10, 20):
            await repository.add_fee_earning(fee(1.0, T0 + timedelta(days=days)))

        history = await repository.get_fee_history(
            "SP1", since=T0 + timedelta(days=5), until=T0 + timedelta(days=15),
        )

        assert [f.timestamp for f in history] == [T0 + timedelta(days=10)]

    @pytest.mark.asyncio
    async def test_fee_totals_since(self, repository):
        await repository.add_fee_earning(fee(1.0, T0, user="SP1"))
        await repository.add_fee_earning(fee(2.0, T0, user="SP2"))
        await repository.add_fee_earning(fee(3.0, T0, user="SP2", pool="STX-VEX"))
        await repository.add_fee_earning(fee(100.0, T0 - timedelta(days=2), user="SP3"))

        total, users = await repository.get_fee_totals_since(T0 - timedelta(hours=24))

        assert total == pytest.approx(6.0)
        assert users == 2


class TestSnapshots:
    """Test pool snapshot storage."""

    @pytest.mark.asyncio
    async def test_snapshots_oldest_first(self, repository):
        for hours in (5, 1, 3):
            await repository.add_pool_snapshot(PoolSnapshot(
                pool_id="STX-USDCx",
                reserve_a=1, reserve_b=2, total_supply=3,
                tvl_usd=100.0, volume_24h=10.0,
                price_a=2.5, price_b=1.0,
                timestamp=T0 + timedelta(hours=hours),
            ))

        snapshots = await repository.get_pool_snapshots("STX-USDCx", since=T0 + timedelta(hours=2))

        assert [s.timestamp for s in snapshots] == [T0 + timedelta(hours=3), T0 + timedelta(hours=5)]

    @pytest.mark.asyncio
    async def test_health_check(self, repository):
        assert await repository.health_check() is True


class TestUnavailable:
    """Test failure reporting."""

    @pytest.mark.asyncio
    async def test_in_memory_outage_raises_upstream_error(self):
        repository = InMemoryLiquidityRepository()
        repository.available = False

        with pytest.raises(UpstreamError):
            await repository.get_position("SP1", "STX-USDCx")

    @pytest.mark.asyncio
    async def test_sql_errors_raise_upstream_error(self):
        """A database without tables fails as UpstreamError, not SQLAlchemyError."""
        repository = SqlLiquidityRepository(Database("sqlite:///:memory:"))

        with pytest.raises(UpstreamError):
            await repository.get_position("SP1", "STX-USDCx")
