"""
Repository Layer - Persistence Interface for Liquidity Data

Services depend on LiquidityRepository only. Two implementations:

- SqlLiquidityRepository: SQLAlchemy sessions run in a worker thread so
  the event loop never blocks on the database.
- InMemoryLiquidityRepository: lists and dicts, for development and tests.

Database failures surface as UpstreamError.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Callable, Dict, List, Optional, Tuple, TypeVar

from sqlalchemy import and_, func, select
from sqlalchemy.exc import SQLAlchemyError

from velumx.exceptions import UpstreamError
from velumx.models.liquidity import (
    FeeHistory,
    PoolSnapshot,
    PositionAction,
    PositionHistory,
)

from .models import (
    FeeEarningRecord,
    PoolSnapshotRecord,
    PositionActionType,
    PositionHistoryRecord,
    UserPosition,
)
from .session import Database

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class StoredPosition:
    """Cost basis of an LP position as persisted."""
    user_address: str
    pool_id: str
    lp_token_balance: int
    initial_value_usd: float
    initial_token_a_amount: int
    initial_token_b_amount: int
    initial_price_a: Optional[float]
    initial_price_b: Optional[float]
    created_at: datetime


def apply_position_change(
    current: Optional[StoredPosition],
    entry: PositionHistory,
    price_a: Optional[float],
    price_b: Optional[float],
) -> Optional[StoredPosition]:
    """
    Fold one add/remove into a position's cost basis.

    Adds accumulate value and amounts, entry prices are value-weighted.
    Removes scale the basis down by the fraction of LP tokens withdrawn.
    Returns None once the position is fully withdrawn.
    """
    if entry.action == PositionAction.ADD:
        if current is None:
            return StoredPosition(
                user_address=entry.user_address,
                pool_id=entry.pool_id,
                lp_token_balance=entry.lp_token_amount,
                initial_value_usd=entry.value_usd,
                initial_token_a_amount=entry.token_a_amount,
                initial_token_b_amount=entry.token_b_amount,
                initial_price_a=price_a,
                initial_price_b=price_b,
                created_at=entry.timestamp,
            )

        total_value = current.initial_value_usd + entry.value_usd

        def blend(old: Optional[float], new: Optional[float]) -> Optional[float]:
            if old is None or total_value <= 0:
                return new
            if new is None:
                return old
            return (old * current.initial_value_usd + new * entry.value_usd) / total_value

        return replace(
            current,
            lp_token_balance=current.lp_token_balance + entry.lp_token_amount,
            initial_value_usd=total_value,
            initial_token_a_amount=current.initial_token_a_amount + entry.token_a_amount,
            initial_token_b_amount=current.initial_token_b_amount + entry.token_b_amount,
            initial_price_a=blend(current.initial_price_a, price_a),
            initial_price_b=blend(current.initial_price_b, price_b),
        )

    if current is None or current.lp_token_balance <= 0:
        return None

    remaining = max(0, current.lp_token_balance - entry.lp_token_amount)
    if remaining == 0:
        return None

    ratio = remaining / current.lp_token_balance
    return replace(
        current,
        lp_token_balance=remaining,
        initial_value_usd=current.initial_value_usd * ratio,
        initial_token_a_amount=current.initial_token_a_amount * remaining // current.lp_token_balance,
        initial_token_b_amount=current.initial_token_b_amount * remaining // current.lp_token_balance,
    )


class LiquidityRepository(ABC):
    """Async persistence interface used by the domain services."""

    @abstractmethod
    async def get_position(self, user_address: str, pool_id: str) -> Optional[StoredPosition]:
        ...

    @abstractmethod
    async def record_position_change(
        self,
        entry: PositionHistory,
        price_a: Optional[float] = None,
        price_b: Optional[float] = None,
    ) -> Optional[StoredPosition]:
        """Append a history entry and update the position's cost basis atomically."""

    @abstractmethod
    async def get_position_history(
        self,
        user_address: str,
        pool_id: Optional[str] = None,
        limit: int = 100,
    ) -> List[PositionHistory]:
        """Newest first."""

    @abstractmethod
    async def add_fee_earning(self, fee: FeeHistory) -> None:
        ...

    @abstractmethod
    async def get_fee_history(
        self,
        user_address: str,
        pool_id: Optional[str] = None,
        since: Optional[datetime] = None,
        until: Optional[datetime] = None,
    ) -> List[FeeHistory]:
        """Newest first."""

    @abstractmethod
    async def get_total_fees(self, user_address: str, pool_id: str) -> float:
        ...

    @abstractmethod
    async def get_fee_totals_since(self, since: datetime) -> Tuple[float, int]:
        """(total fees in USD, distinct earning users) since a point in time."""

    @abstractmethod
    async def add_pool_snapshot(self, snapshot: PoolSnapshot) -> None:
        ...

    @abstractmethod
    async def get_pool_snapshots(
        self,
        pool_id: str,
        since: Optional[datetime] = None,
    ) -> List[PoolSnapshot]:
        """Oldest first."""

    async def health_check(self) -> bool:
        return True

    async def close(self) -> None:
        return None


# =============================================================================
# IN-MEMORY
# =============================================================================

class InMemoryLiquidityRepository(LiquidityRepository):
    def __init__(self):
        self.positions: Dict[Tuple[str, str], StoredPosition] = {}
        self.history: List[PositionHistory] = []
        self.fees: List[FeeHistory] = []
        self.snapshots: List[PoolSnapshot] = []
        self.available = True

    def _check(self):
        if not self.available:
            raise UpstreamError("Repository unavailable", source="database")

    async def get_position(self, user_address: str, pool_id: str) -> Optional[StoredPosition]:
        self._check()
        return self.positions.get((user_address, pool_id))

    async def record_position_change(self, entry, price_a=None, price_b=None):
        self._check()
        key = (entry.user_address, entry.pool_id)
        updated = apply_position_change(self.positions.get(key), entry, price_a, price_b)
        if updated is None:
            self.positions.pop(key, None)
        else:
            self.positions[key] = updated
        self.history.append(entry)
        return updated

    async def get_position_history(self, user_address, pool_id=None, limit=100):
        self._check()
        rows = [
            h for h in self.history
            if h.user_address == user_address and (pool_id is None or h.pool_id == pool_id)
        ]
        rows.sort(key=lambda h: h.timestamp, reverse=True)
        return rows[:limit]

    async def add_fee_earning(self, fee: FeeHistory) -> None:
        self._check()
        self.fees.append(fee)

    async def get_fee_history(self, user_address, pool_id=None, since=None, until=None):
        self._check()
        rows = [
            f for f in self.fees
            if f.user_address == user_address
            and (pool_id is None or f.pool_id == pool_id)
            and (since is None or f.timestamp >= since)
            and (until is None or f.timestamp <= until)
        ]
        rows.sort(key=lambda f: f.timestamp, reverse=True)
        return rows

    async def get_total_fees(self, user_address: str, pool_id: str) -> float:
        self._check()
        return sum(
            f.amount_usd for f in self.fees
            if f.user_address == user_address and f.pool_id == pool_id
        )

    async def get_fee_totals_since(self, since: datetime) -> Tuple[float, int]:
        self._check()
        recent = [f for f in self.fees if f.timestamp >= since]
        return sum(f.amount_usd for f in recent), len({f.user_address for f in recent})

    async def add_pool_snapshot(self, snapshot: PoolSnapshot) -> None:
        self._check()
        self.snapshots.append(snapshot)

    async def get_pool_snapshots(self, pool_id, since=None):
        self._check()
        rows = [
            s for s in self.snapshots
            if s.pool_id == pool_id and (since is None or s.timestamp >= since)
        ]
        rows.sort(key=lambda s: s.timestamp)
        return rows

    async def health_check(self) -> bool:
        return self.available


# =============================================================================
# SQLALCHEMY
# =============================================================================

def _to_stored(row: UserPosition) -> StoredPosition:
    return StoredPosition(
        user_address=row.user_address,
        pool_id=row.pool_id,
        lp_token_balance=row.lp_token_balance,
        initial_value_usd=row.initial_value_usd,
        initial_token_a_amount=row.initial_token_a_amount,
        initial_token_b_amount=row.initial_token_b_amount,
        initial_price_a=row.initial_price_a,
        initial_price_b=row.initial_price_b,
        created_at=row.created_at,
    )


def _to_history(row: PositionHistoryRecord) -> PositionHistory:
    return PositionHistory(
        id=str(row.id),
        user_address=row.user_address,
        pool_id=row.pool_id,
        action=PositionAction(row.action.value),
        lp_token_amount=row.lp_token_amount,
        token_a_amount=row.token_a_amount,
        token_b_amount=row.token_b_amount,
        value_usd=row.value_usd or 0.0,
        transaction_hash=row.transaction_hash or "",
        block_height=row.block_height or 0,
        timestamp=row.timestamp,
    )


def _to_fee(row: FeeEarningRecord) -> FeeHistory:
    return FeeHistory(
        id=str(row.id),
        user_address=row.user_address,
        pool_id=row.pool_id,
        amount_usd=row.amount_usd,
        transaction_hash=row.transaction_hash,
        block_height=row.block_height,
        timestamp=row.timestamp,
    )


def _to_snapshot(row: PoolSnapshotRecord) -> PoolSnapshot:
    return PoolSnapshot(
        pool_id=row.pool_id,
        reserve_a=row.reserve_a,
        reserve_b=row.reserve_b,
        total_supply=row.total_supply,
        tvl_usd=row.tvl_usd or 0.0,
        volume_24h=row.volume_24h or 0.0,
        price_a=row.price_a or 0.0,
        price_b=row.price_b or 0.0,
        timestamp=row.timestamp,
    )


class SqlLiquidityRepository(LiquidityRepository):
    """
    SQLAlchemy-backed repository.

    Each call opens one session in a worker thread; the session commits on
    success and rolls back on error.
    """

    def __init__(self, database: Database):
        self.database = database

    async def _run(self, fn: Callable[..., T], *args) -> T:
        def work():
            with self.database.session() as db:
                return fn(db, *args)

        try:
            return await asyncio.to_thread(work)
        except SQLAlchemyError as e:
            logger.error(f"Database error in {fn.__name__}: {e}")
            raise UpstreamError(f"Database error: {e}", source="database") from e

    # -------------------------------------------------------------------------
    # Positions
    # -------------------------------------------------------------------------

    @staticmethod
    def _get_position_row(db, user_address: str, pool_id: str) -> Optional[UserPosition]:
        return db.execute(
            select(UserPosition).where(and_(
                UserPosition.user_address == user_address,
                UserPosition.pool_id == pool_id,
            ))
        ).scalar_one_or_none()

    async def get_position(self, user_address, pool_id):
        def query(db):
            row = self._get_position_row(db, user_address, pool_id)
            return _to_stored(row) if row else None
        return await self._run(query)

    async def record_position_change(self, entry, price_a=None, price_b=None):
        def write(db):
            row = self._get_position_row(db, entry.user_address, entry.pool_id)
            current = _to_stored(row) if row else None
            updated = apply_position_change(current, entry, price_a, price_b)

            if updated is None:
                if row is not None:
                    db.delete(row)
            else:
                if row is None:
                    row = UserPosition(
                        user_address=updated.user_address,
                        pool_id=updated.pool_id,
                        created_at=updated.created_at,
                    )
                    db.add(row)
                row.lp_token_balance = updated.lp_token_balance
                row.initial_value_usd = updated.initial_value_usd
                row.initial_token_a_amount = updated.initial_token_a_amount
                row.initial_token_b_amount = updated.initial_token_b_amount
                row.initial_price_a = updated.initial_price_a
                row.initial_price_b = updated.initial_price_b

            db.add(PositionHistoryRecord(
                user_address=entry.user_address,
                pool_id=entry.pool_id,
                action=PositionActionType(entry.action.value),
                lp_token_amount=entry.lp_token_amount,
                token_a_amount=entry.token_a_amount,
                token_b_amount=entry.token_b_amount,
                value_usd=entry.value_usd,
                transaction_hash=entry.transaction_hash,
                block_height=entry.block_height,
                timestamp=entry.timestamp,
            ))
            return updated

        return await self._run(write)

    async def get_position_history(self, user_address, pool_id=None, limit=100):
        def query(db):
            stmt = select(PositionHistoryRecord).where(
                PositionHistoryRecord.user_address == user_address
            )
            if pool_id is not None:
                stmt = stmt.where(PositionHistoryRecord.pool_id == pool_id)
            stmt = stmt.order_by(PositionHistoryRecord.timestamp.desc()).limit(limit)
            return [_to_history(r) for r in db.execute(stmt).scalars()]
        return await self._run(query)

    # -------------------------------------------------------------------------
    # Fees
    # -------------------------------------------------------------------------

    async def add_fee_earning(self, fee: FeeHistory) -> None:
        def write(db):
            db.add(FeeEarningRecord(
                user_address=fee.user_address,
                pool_id=fee.pool_id,
                amount_usd=fee.amount_usd,
                transaction_hash=fee.transaction_hash,
                block_height=fee.block_height,
                timestamp=fee.timestamp,
            ))
        await self._run(write)

    async def get_fee_history(self, user_address, pool_id=None, since=None, until=None):
        def query(db):
            stmt = select(FeeEarningRecord).where(FeeEarningRecord.user_address == user_address)
            if pool_id is not None:
                stmt = stmt.where(FeeEarningRecord.pool_id == pool_id)
            if since is not None:
                stmt = stmt.where(FeeEarningRecord.timestamp >= since)
            if until is not None:
                stmt = stmt.where(FeeEarningRecord.timestamp <= until)
            stmt = stmt.order_by(FeeEarningRecord.timestamp.desc())
            return [_to_fee(r) for r in db.execute(stmt).scalars()]
        return await self._run(query)

    async def get_total_fees(self, user_address: str, pool_id: str) -> float:
        def query(db):
            total = db.execute(
                select(func.coalesce(func.sum(FeeEarningRecord.amount_usd), 0.0)).where(and_(
                    FeeEarningRecord.user_address == user_address,
                    FeeEarningRecord.pool_id == pool_id,
                ))
            ).scalar()
            return float(total or 0.0)
        return await self._run(query)

    async def get_fee_totals_since(self, since: datetime) -> Tuple[float, int]:
        def query(db):
            total, users = db.execute(
                select(
                    func.coalesce(func.sum(FeeEarningRecord.amount_usd), 0.0),
                    func.count(func.distinct(FeeEarningRecord.user_address)),
                ).where(FeeEarningRecord.timestamp >= since)
            ).one()
            return float(total or 0.0), int(users or 0)
        return await self._run(query)

    # -------------------------------------------------------------------------
    # Pool snapshots
    # -------------------------------------------------------------------------

    async def add_pool_snapshot(self, snapshot: PoolSnapshot) -> None:
        def write(db):
            db.add(PoolSnapshotRecord(
                pool_id=snapshot.pool_id,
                reserve_a=snapshot.reserve_a,
                reserve_b=snapshot.reserve_b,
                total_supply=snapshot.total_supply,
                tvl_usd=snapshot.tvl_usd,
                volume_24h=snapshot.volume_24h,
                price_a=snapshot.price_a,
                price_b=snapshot.price_b,
                timestamp=snapshot.timestamp,
            ))
        await self._run(write)

    async def get_pool_snapshots(self, pool_id, since=None):
        def query(db):
            stmt = select(PoolSnapshotRecord).where(PoolSnapshotRecord.pool_id == pool_id)
            if since is not None:
                stmt = stmt.where(PoolSnapshotRecord.timestamp >= since)
            stmt = stmt.order_by(PoolSnapshotRecord.timestamp.asc())
            return [_to_snapshot(r) for r in db.execute(stmt).scalars()]
        return await self._run(query)

    async def health_check(self) -> bool:
        return await asyncio.to_thread(self.database.check_connection)

    async def close(self) -> None:
        self.database.dispose()
