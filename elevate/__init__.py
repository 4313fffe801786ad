"""
Elevate backend: ledger discovery, payouts and activity processing.
"""

__version__ = "0.1.0"
