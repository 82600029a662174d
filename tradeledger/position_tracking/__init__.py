"""
Position tracking package for the trading bot.

This package handles all position-related functionality including:
1. Recording buys and sells against per-wallet, per-token positions
2. Average-cost ("FIFO") cost basis and realized P&L
3. Anomaly flags for human review
4. Operator resolution of flags
"""

from .manager import PositionLedger
from .models import (
    Position,
    PositionFlag,
    PositionStatus,
    SellResult,
    FlagType,
    FlagSeverity
)
from .review import FlagReviewer
from .validation import validate_position_state_transition

__all__ = [
    'PositionLedger',
    'Position',
    'PositionFlag',
    'PositionStatus',
    'SellResult',
    'FlagType',
    'FlagSeverity',
    'FlagReviewer',
    'validate_position_state_transition'
]
