"""
KLEOS - Reputation-weighted prediction markets on Solana.
"""

__version__ = "0.1.0"
