"""
SQLAlchemy Models for the VelumX Liquidity Engine

Persistent state the chain cannot give back cheaply:
1. Entry value of each LP position (for P&L and impermanent loss)
2. Add/remove history per position
3. Realized fee earnings
4. Periodic pool snapshots (for history and 24h price change)

Token amounts are uint128 on chain. They are stored as decimal strings so
SQLite and PostgreSQL both keep them exact.
"""

import enum
from datetime import datetime

from sqlalchemy import (
    BigInteger, Column, DateTime, Enum, Float, Index, Integer, String,
    TypeDecorator, UniqueConstraint,
)
from sqlalchemy.orm import declarative_base

Base = declarative_base()


class TokenAmount(TypeDecorator):
    """Arbitrary-precision integer stored as text."""

    impl = String(80)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        return str(int(value))

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        return int(value)


# =============================================================================
# ENUMS
# =============================================================================

class PositionActionType(enum.Enum):
    ADD = "add"
    REMOVE = "remove"


# =============================================================================
# POSITIONS
# =============================================================================

class UserPosition(Base):
    """Current LP position with its cost basis."""
    __tablename__ = "user_positions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_address = Column(String(255), nullable=False)
    pool_id = Column(String(255), nullable=False)
    lp_token_balance = Column(TokenAmount, nullable=False, default=0)
    initial_value_usd = Column(Float, nullable=False, default=0.0)
    initial_token_a_amount = Column(TokenAmount, nullable=False, default=0)
    initial_token_b_amount = Column(TokenAmount, nullable=False, default=0)
    # USD prices at entry, value-weighted across deposits
    initial_price_a = Column(Float)
    initial_price_b = Column(Float)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        UniqueConstraint("user_address", "pool_id", name="uq_user_positions_user_pool"),
        Index("idx_user_positions_user", "user_address"),
    )


class PositionHistoryRecord(Base):
    __tablename__ = "position_history"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_address = Column(String(255), nullable=False)
    pool_id = Column(String(255), nullable=False)
    action = Column(Enum(PositionActionType), nullable=False)
    lp_token_amount = Column(TokenAmount, nullable=False)
    token_a_amount = Column(TokenAmount, nullable=False)
    token_b_amount = Column(TokenAmount, nullable=False)
    value_usd = Column(Float)
    transaction_hash = Column(String(255))
    block_height = Column(BigInteger)
    timestamp = Column(DateTime, default=datetime.utcnow, nullable=False)

    __table_args__ = (
        Index("idx_position_history_user", "user_address"),
        Index("idx_position_history_pool", "pool_id"),
        Index("idx_position_history_timestamp", "timestamp"),
    )


# =============================================================================
# FEES
# =============================================================================

class FeeEarningRecord(Base):
    __tablename__ = "fee_earnings"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_address = Column(String(255), nullable=False)
    pool_id = Column(String(255), nullable=False)
    amount_usd = Column(Float, nullable=False)
    transaction_hash = Column(String(255))
    block_height = Column(BigInteger)
    timestamp = Column(DateTime, default=datetime.utcnow, nullable=False)

    __table_args__ = (
        Index("idx_fee_earnings_user_pool", "user_address", "pool_id"),
        Index("idx_fee_earnings_timestamp", "timestamp"),
    )


# =============================================================================
# POOL SNAPSHOTS
# =============================================================================

class PoolSnapshotRecord(Base):
    __tablename__ = "pool_snapshots"

    id = Column(Integer, primary_key=True, autoincrement=True)
    pool_id = Column(String(255), nullable=False)
    reserve_a = Column(TokenAmount, nullable=False)
    reserve_b = Column(TokenAmount, nullable=False)
    total_supply = Column(TokenAmount, nullable=False)
    tvl_usd = Column(Float, default=0.0)
    volume_24h = Column(Float, default=0.0)
    price_a = Column(Float, default=0.0)
    price_b = Column(Float, default=0.0)
    timestamp = Column(DateTime, default=datetime.utcnow, nullable=False)

    __table_args__ = (
        Index("idx_pool_snapshots_pool_time", "pool_id", "timestamp"),
    )
