"""
Validation functions for position tracking.

This module provides validation functions to ensure data integrity and catch
errors before they reach the database. Caller mistakes raise
``InvalidAmountError``/``ValidationError``; a computed position update that
breaks a ledger invariant raises ``IntegrityError`` because it can only come
from a defect.
"""

from decimal import Decimal, InvalidOperation
from typing import Any

from tradeledger.database.exceptions import (
    ValidationError,
    IntegrityError,
    InvalidAmountError
)
from tradeledger.database.utils import MAX_AMOUNT, ZERO, quantize
from .models import Position, PositionStatus, STATUS_ORDER

def to_amount(value: Any, name: str = "amount") -> Decimal:
    """Convert a caller-supplied number into a ledger Decimal.

    Floats go through ``str()`` so their shortest representation is used
    rather than the full binary expansion.

    Args:
        value: Decimal, int, float or numeric string
        name: Name of the amount for error messages

    Returns:
        Decimal: The value quantized to 9 fractional digits

    Raises:
        InvalidAmountError: If the value is not a finite number or its
            magnitude reaches MAX_AMOUNT
    """
    if isinstance(value, bool) or value is None:
        raise InvalidAmountError(f"Invalid {name}: {value!r}. Must be numeric.")
    if isinstance(value, Decimal):
        parsed = value
    elif isinstance(value, (int, float, str)):
        try:
            parsed = Decimal(str(value).strip())
        except InvalidOperation as e:
            raise InvalidAmountError(f"Invalid {name}: {value!r}. Must be numeric.") from e
    else:
        raise InvalidAmountError(f"Invalid {name}: {value!r}. Must be numeric.")
    if not parsed.is_finite():
        raise InvalidAmountError(f"Invalid {name}: {value!r}. Must be finite.")
    if abs(parsed) >= MAX_AMOUNT:
        raise InvalidAmountError(f"Invalid {name}: {value!r}. Must be below {MAX_AMOUNT:f}.")
    return quantize(parsed, name)

def validate_positive(value: Any, name: str) -> Decimal:
    """Coerce and require a strictly positive amount."""
    amount = to_amount(value, name)
    if amount <= ZERO:
        raise InvalidAmountError(f"Invalid {name}: {value}. Must be positive.")
    return amount

def validate_non_negative(value: Any, name: str) -> Decimal:
    """Coerce and require an amount of zero or more."""
    amount = to_amount(value, name)
    if amount < ZERO:
        raise InvalidAmountError(f"Invalid {name}: {value}. Cannot be negative.")
    return amount

def validate_wallet_and_token(wallet_id: Any, token: Any) -> str:
    """Validate the wallet identifier and token symbol of a call.

    Returns:
        str: The token symbol with surrounding whitespace removed

    Raises:
        ValidationError: If either is malformed
    """
    if isinstance(wallet_id, bool) or not isinstance(wallet_id, int):
        raise ValidationError(f"wallet_id must be an integer, got {wallet_id!r}")
    if not isinstance(token, str) or not token.strip():
        raise ValidationError(f"token must be a non-empty string, got {token!r}")
    return token.strip()

def validate_position_state_transition(old: Position, new: Position) -> None:
    """Validate a position update before it is written.

    Args:
        old: Position as loaded inside the transaction
        new: Position about to be stored

    Raises:
        IntegrityError: If the update breaks a ledger invariant
    """
    if old.status == PositionStatus.CLOSED:
        raise IntegrityError(f"Cannot modify closed position {old.id}")

    if STATUS_ORDER[new.status] < STATUS_ORDER[old.status]:
        raise IntegrityError(
            f"Position {old.id} cannot move from {old.status.value} back to {new.status.value}"
        )

    if new.current_amount < ZERO:
        raise IntegrityError(f"Position {old.id} remaining amount cannot be negative")

    if new.current_amount != new.total_entry_amount - new.total_exit_amount:
        raise IntegrityError(
            f"Position {old.id} remaining amount {new.current_amount} does not equal "
            f"entry {new.total_entry_amount} minus exit {new.total_exit_amount}"
        )

    # Cumulative figures only grow
    for field in ("total_entry_amount", "total_entry_cost", "total_exit_amount", "total_exit_proceeds"):
        if getattr(new, field) < getattr(old, field):
            raise IntegrityError(f"Position {old.id} {field} cannot decrease")

    if new.status == PositionStatus.CLOSED and new.current_amount != ZERO:
        raise IntegrityError(f"Closed position {old.id} must have zero remaining amount")

    if new.status == PositionStatus.CLOSED and new.closed_at is None:
        raise IntegrityError(f"Closed position {old.id} must have a close timestamp")

    if new.status == PositionStatus.OPEN and new.total_exit_amount > ZERO:
        raise IntegrityError(f"Open position {old.id} cannot have exits")

    if new.status == PositionStatus.PARTIAL:
        if new.current_amount == ZERO:
            raise IntegrityError(f"Partial position {old.id} must have remaining amount")
        if new.total_exit_amount == ZERO:
            raise IntegrityError(f"Partial position {old.id} must have some amount sold")
