"""Hotswap - live code hot-swapping for a running Python process."""

__version__ = "0.1.0"
