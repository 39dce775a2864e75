"""
Seller Analytics Core

Time-bucketed dashboard analytics over an append-only seller event log.
"""

__version__ = "1.0.0"
