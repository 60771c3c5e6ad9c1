"""Upstream data sources: on-chain pool state and token prices."""

from velumx.chain.prices import PriceOracle, fallback_price
from velumx.chain.source import InMemoryLiquiditySource, LiquiditySource
from velumx.chain.stacks import StacksLiquiditySource

__all__ = [
    "InMemoryLiquiditySource",
    "LiquiditySource",
    "PriceOracle",
    "StacksLiquiditySource",
    "fallback_price",
]
