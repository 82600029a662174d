"""
Storage layer for the trade ledger: connection handling, schema and errors.
"""

from .connection import DatabaseConnection
from .manager import DatabaseManager
from .exceptions import (
    DatabaseError,
    ValidationError,
    IntegrityError,
    StateError,
    ConcurrencyConflictError,
    FlagPersistenceError,
    InvalidAmountError,
    NumericParseError,
    PositionNotFoundError,
    InsufficientPositionError,
    FlagNotFoundError,
    FlagAlreadyResolvedError
)

__all__ = [
    'DatabaseConnection',
    'DatabaseManager',
    'DatabaseError',
    'ValidationError',
    'IntegrityError',
    'StateError',
    'ConcurrencyConflictError',
    'FlagPersistenceError',
    'InvalidAmountError',
    'NumericParseError',
    'PositionNotFoundError',
    'InsufficientPositionError',
    'FlagNotFoundError',
    'FlagAlreadyResolvedError'
]
