"""Utility modules for the VelumX liquidity engine."""

from .config import (
    BASIS_POINTS,
    DEFAULT_TOKENS,
    MAX_APR,
    RISK_CRITERIA,
    SWAP_FEE_RATE,
    RiskCriteria,
    Settings,
    get_settings,
)

__all__ = [
    "Settings",
    "get_settings",
    # Protocol constants
    "BASIS_POINTS",
    "DEFAULT_TOKENS",
    "MAX_APR",
    "RISK_CRITERIA",
    "RiskCriteria",
    "SWAP_FEE_RATE",
]
