"""
Exceptions for the trade ledger database operations.

This module defines a hierarchy of exceptions that can occur while recording
trades against the position ledger, providing specific error types for the
different rejection and failure scenarios.
"""

from decimal import Decimal


class DatabaseError(Exception):
    """Base exception for all ledger and database errors."""
    pass

class ValidationError(DatabaseError):
    """Raised when input validation fails."""
    pass

class IntegrityError(DatabaseError):
    """Raised when database integrity constraints are violated."""
    pass

class StateError(DatabaseError):
    """Raised when an operation is not valid for the current ledger state."""
    pass

class ConcurrencyConflictError(DatabaseError):
    """Raised when a write could not acquire the database lock in time.

    The ledger was left untouched, so the caller may retry the operation.
    """
    retryable = True

class FlagPersistenceError(DatabaseError):
    """Raised when an anomaly flag could not be written."""
    pass

# Validation-specific errors
class InvalidAmountError(ValidationError):
    """Raised when an amount, cost or proceeds value is invalid."""
    pass

class NumericParseError(ValidationError):
    """Raised when a stored numeric field cannot be parsed as a decimal."""
    pass

# State-specific errors
class PositionNotFoundError(StateError):
    """Raised when selling against a wallet/token with no open position."""

    def __init__(self, wallet_id: int, token: str, amount: Decimal):
        self.wallet_id = wallet_id
        self.token = token
        self.amount = amount
        super().__init__(
            f"Cannot sell {amount} {token}: no open position for wallet {wallet_id}"
        )

class InsufficientPositionError(StateError):
    """Raised when a sell exceeds the remaining amount of a position."""

    def __init__(
        self,
        wallet_id: int,
        token: str,
        requested: Decimal,
        available: Decimal,
        position_id: int
    ):
        self.wallet_id = wallet_id
        self.token = token
        self.requested = requested
        self.available = available
        self.position_id = position_id
        super().__init__(
            f"Insufficient position size: cannot sell {requested} {token}, "
            f"only {available} {token} available in position {position_id} "
            f"(wallet {wallet_id})"
        )

class FlagNotFoundError(StateError):
    """Raised when resolving a flag that does not exist."""
    pass

class FlagAlreadyResolvedError(StateError):
    """Raised when resolving a flag that was already resolved."""
    pass
