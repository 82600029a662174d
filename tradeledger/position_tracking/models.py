"""
Data models for position tracking.

This module contains the position and flag entities, the result of a sell,
and the mapping from stored rows onto those entities.
"""

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Mapping, Optional

from tradeledger.database.utils import (
    ZERO,
    parse_decimal,
    parse_timestamp,
    parse_optional_timestamp
)

class PositionStatus(Enum):
    """Status of a position"""
    OPEN = "OPEN"           # Nothing sold yet
    PARTIAL = "PARTIAL"     # Partially sold, some amount remains
    CLOSED = "CLOSED"       # Fully sold, immutable from now on

# Status order used to reject backward transitions
STATUS_ORDER = {
    PositionStatus.OPEN: 0,
    PositionStatus.PARTIAL: 1,
    PositionStatus.CLOSED: 2,
}

class FlagType(Enum):
    """Categories of anomalies raised for human review"""
    SELL_WITHOUT_POSITION = "sell_without_position"
    SELL_EXCEEDS_POSITION = "sell_exceeds_position"
    SUSPICIOUS_PNL = "suspicious_pnl"
    OVERSIZED_POSITION = "oversized_position"
    BALANCE_MISMATCH = "balance_mismatch"

class FlagSeverity(Enum):
    """Severity of a flag"""
    INFO = "info"
    WARNING = "warning"
    CRITICAL = "critical"

@dataclass
class Position:
    """One wallet's holding of one token across an open-to-closed lifecycle."""
    id: int
    wallet_id: int
    token: str
    status: PositionStatus
    entry_trade_id: Optional[int]
    entry_timestamp: datetime
    total_entry_amount: Decimal
    total_entry_cost: Decimal
    avg_entry_price: Decimal
    current_amount: Decimal       # total_entry_amount - total_exit_amount
    total_exit_amount: Decimal
    total_exit_proceeds: Decimal
    realized_pnl: Decimal
    first_entry_at: datetime
    last_exit_at: Optional[datetime] = None
    closed_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def is_open(self) -> bool:
        """Check if nothing has been sold from the position."""
        return self.status == PositionStatus.OPEN

    @property
    def is_partial(self) -> bool:
        """Check if position is partially closed."""
        return self.status == PositionStatus.PARTIAL

    @property
    def is_closed(self) -> bool:
        """Check if position is fully closed."""
        return self.status == PositionStatus.CLOSED

    @property
    def is_active(self) -> bool:
        """Check if the position can still be sold from."""
        return self.status in (PositionStatus.OPEN, PositionStatus.PARTIAL)

    @property
    def position_value(self) -> Decimal:
        """Remaining amount valued at the average entry price."""
        return self.current_amount * self.avg_entry_price

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "Position":
        """Build a position from a ``positions`` row.

        Raises:
            NumericParseError: If a stored amount is not a valid number
        """
        return cls(
            id=row["id"],
            wallet_id=row["wallet_id"],
            token=row["token"],
            status=PositionStatus(row["status"]),
            entry_trade_id=row["entry_trade_id"],
            entry_timestamp=parse_timestamp(row["entry_timestamp"]),
            total_entry_amount=parse_decimal(row["total_entry_amount"], "total_entry_amount"),
            total_entry_cost=parse_decimal(row["total_entry_cost"], "total_entry_cost"),
            avg_entry_price=parse_decimal(row["avg_entry_price"], "avg_entry_price"),
            current_amount=parse_decimal(row["current_amount"], "current_amount"),
            total_exit_amount=parse_decimal(row["total_exit_amount"], "total_exit_amount"),
            total_exit_proceeds=parse_decimal(row["total_exit_proceeds"], "total_exit_proceeds"),
            realized_pnl=parse_decimal(row["realized_pnl"], "realized_pnl"),
            first_entry_at=parse_timestamp(row["first_entry_at"]),
            last_exit_at=parse_optional_timestamp(row["last_exit_at"]),
            closed_at=parse_optional_timestamp(row["closed_at"]),
            created_at=parse_optional_timestamp(row["created_at"]),
            updated_at=parse_optional_timestamp(row["updated_at"])
        )

@dataclass
class PositionFlag:
    """An anomaly recorded for human review. Never resolved by the ledger."""
    id: int
    wallet_id: int
    flag_type: FlagType
    severity: FlagSeverity
    description: str
    created_at: datetime
    position_id: Optional[int] = None
    trade_id: Optional[int] = None
    resolved: bool = False
    resolved_at: Optional[datetime] = None
    resolved_by: Optional[str] = None
    resolution_notes: Optional[str] = None

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "PositionFlag":
        """Build a flag from a ``position_flags`` row."""
        return cls(
            id=row["id"],
            wallet_id=row["wallet_id"],
            flag_type=FlagType(row["flag_type"]),
            severity=FlagSeverity(row["severity"]),
            description=row["description"],
            created_at=parse_timestamp(row["created_at"]),
            position_id=row["position_id"],
            trade_id=row["trade_id"],
            resolved=bool(row["resolved"]),
            resolved_at=parse_optional_timestamp(row["resolved_at"]),
            resolved_by=row["resolved_by"],
            resolution_notes=row["resolution_notes"]
        )

@dataclass
class SellResult:
    """Outcome of a recorded sell."""
    position: Position
    realized_pnl: Decimal   # proceeds - cost_basis for this sell only
    cost_basis: Decimal     # avg_entry_price * sold amount

    @property
    def is_profitable(self) -> bool:
        return self.realized_pnl > ZERO
