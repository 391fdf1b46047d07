"""Cross-chain intent lifecycle coordinator."""

__version__ = "0.1.0"
