"""
Position ledger for an automated trading bot.
"""

__version__ = "1.0.0"
