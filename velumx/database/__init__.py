"""
Persistence for positions, fee earnings and pool snapshots.
"""

from .models import Base
from .repository import (
    InMemoryLiquidityRepository,
    LiquidityRepository,
    SqlLiquidityRepository,
    StoredPosition,
)
from .session import Database, get_database_url

__all__ = [
    "Base",
    "Database",
    "get_database_url",
    "InMemoryLiquidityRepository",
    "LiquidityRepository",
    "SqlLiquidityRepository",
    "StoredPosition",
]
