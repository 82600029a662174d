"""
Cost basis and P&L arithmetic for positions.

Positions use average-cost accounting applied at sell time, the scheme the
rest of the bot calls "FIFO": every buy folds into one running average entry
price and a sell's cost basis is that average times the sold amount. Lots are
not tracked individually, so the figures differ from lot-based FIFO whenever
buys happened at different prices. Historical P&L depends on this exact rule.

All functions here are pure; persistence lives in ``queries``.
"""

from dataclasses import replace
from datetime import datetime
from decimal import Decimal
from typing import Tuple

from tradeledger.database.utils import ZERO, quantize
from .models import Position, PositionStatus

def average_price(total_cost: Decimal, total_amount: Decimal) -> Decimal:
    """Average entry price at the ledger scale."""
    return quantize(total_cost / total_amount, "average entry price")

def apply_buy(position: Position, amount: Decimal, cost: Decimal, now: datetime) -> Position:
    """Add a buy to an active position.

    Entry totals grow, the average entry price is recomputed and the
    remaining amount grows. Status and exit fields are left alone.
    """
    total_amount = position.total_entry_amount + amount
    total_cost = position.total_entry_cost + cost
    return replace(
        position,
        total_entry_amount=total_amount,
        total_entry_cost=total_cost,
        avg_entry_price=average_price(total_cost, total_amount),
        current_amount=position.current_amount + amount,
        updated_at=now
    )

def sell_status(current_amount: Decimal, total_exit_amount: Decimal) -> PositionStatus:
    """Status implied by a position's amounts after a sell."""
    if current_amount == ZERO:
        return PositionStatus.CLOSED
    if total_exit_amount > ZERO:
        return PositionStatus.PARTIAL
    return PositionStatus.OPEN

def apply_sell(
    position: Position,
    amount: Decimal,
    proceeds: Decimal,
    now: datetime
) -> Tuple[Position, Decimal, Decimal]:
    """Apply a sell to an active position.

    The caller has already checked that ``amount`` does not exceed the
    remaining amount. The average entry price is not touched.

    Returns:
        Tuple[Position, Decimal, Decimal]: Updated position, cost basis and
        realized P&L of this sell
    """
    cost_basis = quantize(position.avg_entry_price * amount, "cost basis")
    realized_pnl = proceeds - cost_basis

    current_amount = position.current_amount - amount
    total_exit_amount = position.total_exit_amount + amount
    status = sell_status(current_amount, total_exit_amount)

    updated = replace(
        position,
        status=status,
        current_amount=current_amount,
        total_exit_amount=total_exit_amount,
        total_exit_proceeds=position.total_exit_proceeds + proceeds,
        realized_pnl=position.realized_pnl + realized_pnl,
        last_exit_at=now,
        closed_at=now if status == PositionStatus.CLOSED else None,
        updated_at=now
    )
    return updated, cost_basis, realized_pnl

def is_oversized(position_value: Decimal, threshold: Decimal) -> bool:
    """Check a position value against the large-position threshold."""
    return position_value > threshold

def is_suspicious_pnl(
    realized_pnl: Decimal,
    proceeds: Decimal,
    cost_basis: Decimal,
    ratio: Decimal
) -> bool:
    """Detect a negative P&L on a sell whose proceeds clearly beat its cost.

    With consistent inputs this can never be true; it trips when amounts
    reaching the ledger disagree with each other.
    """
    return realized_pnl < ZERO and proceeds > cost_basis * ratio
