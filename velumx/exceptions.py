"""
Service Errors

Two failure families reach callers of the domain services:

- DataAbsentError: the thing asked for does not exist (404).
- UpstreamError: a data source could not answer (503).

Cache failures never show up here; the cache layer absorbs them.
"""

from typing import Optional


class LiquidityError(Exception):
    """Base class for domain service errors."""

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class DataAbsentError(LiquidityError):
    """The requested entity does not exist."""


class PoolNotFoundError(DataAbsentError):
    def __init__(self, pool_id: str):
        self.pool_id = pool_id
        super().__init__(f"Pool not found: {pool_id}")


class PositionNotFoundError(DataAbsentError):
    def __init__(self, user_address: str, pool_id: str):
        self.user_address = user_address
        self.pool_id = pool_id
        super().__init__(f"No position for {user_address} in pool {pool_id}")


class UpstreamError(LiquidityError):
    """A chain node, price service or database could not be reached."""

    def __init__(self, message: str, source: Optional[str] = None):
        self.source = source
        super().__init__(message)
