"""Sandwich opportunity scanner, staged executor and statistics aggregator."""

__version__ = "0.1.0"
