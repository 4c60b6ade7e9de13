"""Swapback: pays ARB on Arbitrum for USDC received on Optimism."""

__version__ = "0.1.0"
