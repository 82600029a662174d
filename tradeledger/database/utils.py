"""
Database utility functions.

This module provides the conversion boundary between stored rows and Python
values:
- Timestamp parsing and formatting
- Decimal parsing, quantization and formatting
"""

from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation, ROUND_HALF_EVEN
from typing import Any, Optional

from .exceptions import InvalidAmountError, NumericParseError

# Fixed-point scale of every stored amount (9 fractional digits)
DECIMAL_PLACES = 9
QUANTUM = Decimal(1).scaleb(-DECIMAL_PLACES)
ZERO = Decimal("0")
# Exclusive bound on a single caller-supplied amount
MAX_AMOUNT = Decimal(10) ** 18

def parse_timestamp(timestamp_str: str) -> datetime:
    """Parse a timestamp string from the database into a timezone-aware datetime.
    
    Args:
        timestamp_str (str): Timestamp string from database
        
    Returns:
        datetime: Timezone-aware datetime object
    """
    dt = datetime.fromisoformat(timestamp_str)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt

def parse_optional_timestamp(value: Optional[str]) -> Optional[datetime]:
    """Parse a nullable timestamp column."""
    if value is None:
        return None
    return parse_timestamp(value)

def format_timestamp(dt: datetime) -> str:
    """Format a datetime for storage in the database.
    
    Args:
        dt (datetime): Datetime to format
        
    Returns:
        str: ISO format string with timezone info
    """
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.isoformat()

def quantize(value: Decimal, field: str = "value") -> Decimal:
    """Round a decimal to the ledger's fixed-point scale.

    Raises:
        InvalidAmountError: If the value has too many integer digits to be
            represented with 9 fractional digits
    """
    try:
        return value.quantize(QUANTUM, rounding=ROUND_HALF_EVEN)
    except InvalidOperation as e:
        raise InvalidAmountError(f"{field} {value} is out of the ledger's numeric range") from e

def parse_decimal(value: Any, field: str) -> Decimal:
    """Convert a stored numeric field into a quantized Decimal.

    The conversion is total: anything that is not a finite number raises
    instead of degrading to zero or NaN.

    Args:
        value: Raw column value (TEXT, INTEGER or REAL)
        field: Column name, used in the error message

    Returns:
        Decimal: Parsed value at the ledger scale

    Raises:
        NumericParseError: If the value is NULL, malformed or not finite
    """
    if value is None or isinstance(value, bool):
        raise NumericParseError(f"{field} is not a number: {value!r}")
    try:
        if isinstance(value, float):
            parsed = Decimal(repr(value))
        else:
            parsed = Decimal(str(value).strip())
    except (InvalidOperation, ValueError) as e:
        raise NumericParseError(f"{field} is not a number: {value!r}") from e
    if not parsed.is_finite():
        raise NumericParseError(f"{field} must be finite, got {value!r}")
    try:
        return quantize(parsed, field)
    except InvalidAmountError as e:
        raise NumericParseError(str(e)) from e

def format_decimal(value: Decimal) -> str:
    """Format a decimal for storage as canonical fixed-point TEXT."""
    return f"{quantize(value):f}"
