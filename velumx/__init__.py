"""
VelumX liquidity engine.

Pool discovery, pool analytics, LP position tracking and fee accounting
for the VelumX AMM on Stacks, served through a read-through cache.
"""

__version__ = "1.0.0"
