"""HTTP API for the VelumX liquidity engine."""
