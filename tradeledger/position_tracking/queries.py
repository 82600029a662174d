"""
Query functions for position tracking.

Write-side functions take an ``aiosqlite`` connection that is already inside
a ``DatabaseConnection.transaction()``. Read-side functions take a SQLAlchemy
``AsyncSession``. Both share the same SQL, written with named parameters.
"""

from datetime import datetime
from decimal import Decimal
from typing import List, Optional

import aiosqlite
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from tradeledger.database.exceptions import DatabaseError
from tradeledger.database.utils import ZERO, format_decimal, format_timestamp
from .models import (
    Position,
    PositionFlag,
    PositionStatus,
    FlagType,
    FlagSeverity
)

SELECT_OPEN_POSITION = """
SELECT * FROM positions
WHERE wallet_id = :wallet_id AND token = :token AND status IN ('OPEN', 'PARTIAL')
ORDER BY first_entry_at ASC
LIMIT 1
"""

SELECT_POSITION_BY_ID = "SELECT * FROM positions WHERE id = :id"

INSERT_POSITION = """
INSERT INTO positions (
    wallet_id, token, status, entry_trade_id, entry_timestamp,
    total_entry_amount, total_entry_cost, avg_entry_price,
    current_amount, total_exit_amount, total_exit_proceeds,
    realized_pnl, first_entry_at, created_at, updated_at
) VALUES (
    :wallet_id, :token, :status, :entry_trade_id, :entry_timestamp,
    :total_entry_amount, :total_entry_cost, :avg_entry_price,
    :current_amount, :total_exit_amount, :total_exit_proceeds,
    :realized_pnl, :first_entry_at, :created_at, :updated_at
)
"""

UPDATE_POSITION_ENTRY = """
UPDATE positions
SET total_entry_amount = :total_entry_amount,
    total_entry_cost = :total_entry_cost,
    avg_entry_price = :avg_entry_price,
    current_amount = :current_amount,
    updated_at = :updated_at
WHERE id = :id AND status IN ('OPEN', 'PARTIAL')
"""

UPDATE_POSITION_EXIT = """
UPDATE positions
SET current_amount = :current_amount,
    total_exit_amount = :total_exit_amount,
    total_exit_proceeds = :total_exit_proceeds,
    realized_pnl = :realized_pnl,
    status = :status,
    last_exit_at = :last_exit_at,
    closed_at = :closed_at,
    updated_at = :updated_at
WHERE id = :id AND status IN ('OPEN', 'PARTIAL')
"""

INSERT_FLAG = """
INSERT INTO position_flags (
    position_id, trade_id, wallet_id, flag_type, severity, description, created_at
) VALUES (
    :position_id, :trade_id, :wallet_id, :flag_type, :severity, :description, :created_at
)
"""

SELECT_FLAG_BY_ID = "SELECT * FROM position_flags WHERE id = :id"

RESOLVE_FLAG = """
UPDATE position_flags
SET resolved = 1,
    resolved_at = :resolved_at,
    resolved_by = :resolved_by,
    resolution_notes = :resolution_notes
WHERE id = :id AND resolved = 0
"""

def _optional_timestamp(value: Optional[datetime]) -> Optional[str]:
    return format_timestamp(value) if value is not None else None

# Write side

async def fetch_open_position(
    conn: aiosqlite.Connection,
    wallet_id: int,
    token: str
) -> Optional[Position]:
    """Load the OPEN or PARTIAL position of a wallet/token inside a transaction."""
    cursor = await conn.execute(SELECT_OPEN_POSITION, {"wallet_id": wallet_id, "token": token})
    row = await cursor.fetchone()
    return Position.from_row(row) if row is not None else None

async def fetch_position(conn: aiosqlite.Connection, position_id: int) -> Position:
    """Load a position by ID inside a transaction.

    Raises:
        DatabaseError: If the row is missing
    """
    cursor = await conn.execute(SELECT_POSITION_BY_ID, {"id": position_id})
    row = await cursor.fetchone()
    if row is None:
        raise DatabaseError(f"Position {position_id} disappeared inside its own transaction")
    return Position.from_row(row)

async def insert_position(
    conn: aiosqlite.Connection,
    wallet_id: int,
    token: str,
    amount: Decimal,
    cost: Decimal,
    avg_entry_price: Decimal,
    trade_id: Optional[int],
    now: datetime
) -> Position:
    """Create a new OPEN position from a first buy.

    Returns:
        Position: The stored position
    """
    timestamp = format_timestamp(now)
    cursor = await conn.execute(
        INSERT_POSITION,
        {
            "wallet_id": wallet_id,
            "token": token,
            "status": PositionStatus.OPEN.value,
            "entry_trade_id": trade_id,
            "entry_timestamp": timestamp,
            "total_entry_amount": format_decimal(amount),
            "total_entry_cost": format_decimal(cost),
            "avg_entry_price": format_decimal(avg_entry_price),
            "current_amount": format_decimal(amount),
            "total_exit_amount": format_decimal(ZERO),
            "total_exit_proceeds": format_decimal(ZERO),
            "realized_pnl": format_decimal(ZERO),
            "first_entry_at": timestamp,
            "created_at": timestamp,
            "updated_at": timestamp
        }
    )
    return await fetch_position(conn, cursor.lastrowid)

async def _update_one(conn: aiosqlite.Connection, sql: str, params: dict) -> None:
    cursor = await conn.execute(sql, params)
    if cursor.rowcount != 1:
        raise DatabaseError(
            f"Expected to update exactly one active position {params['id']}, "
            f"updated {cursor.rowcount}"
        )

async def update_position_entry(conn: aiosqlite.Connection, position: Position) -> Position:
    """Store the entry side of a position after a buy."""
    await _update_one(
        conn,
        UPDATE_POSITION_ENTRY,
        {
            "id": position.id,
            "total_entry_amount": format_decimal(position.total_entry_amount),
            "total_entry_cost": format_decimal(position.total_entry_cost),
            "avg_entry_price": format_decimal(position.avg_entry_price),
            "current_amount": format_decimal(position.current_amount),
            "updated_at": _optional_timestamp(position.updated_at)
        }
    )
    return await fetch_position(conn, position.id)

async def update_position_exit(conn: aiosqlite.Connection, position: Position) -> Position:
    """Store the exit side and status of a position after a sell."""
    await _update_one(
        conn,
        UPDATE_POSITION_EXIT,
        {
            "id": position.id,
            "current_amount": format_decimal(position.current_amount),
            "total_exit_amount": format_decimal(position.total_exit_amount),
            "total_exit_proceeds": format_decimal(position.total_exit_proceeds),
            "realized_pnl": format_decimal(position.realized_pnl),
            "status": position.status.value,
            "last_exit_at": _optional_timestamp(position.last_exit_at),
            "closed_at": _optional_timestamp(position.closed_at),
            "updated_at": _optional_timestamp(position.updated_at)
        }
    )
    return await fetch_position(conn, position.id)

async def insert_flag(
    conn: aiosqlite.Connection,
    wallet_id: int,
    flag_type: FlagType,
    severity: FlagSeverity,
    description: str,
    now: datetime,
    position_id: Optional[int] = None,
    trade_id: Optional[int] = None
) -> PositionFlag:
    """Insert a flag row and return it."""
    cursor = await conn.execute(
        INSERT_FLAG,
        {
            "position_id": position_id,
            "trade_id": trade_id,
            "wallet_id": wallet_id,
            "flag_type": flag_type.value,
            "severity": severity.value,
            "description": description,
            "created_at": format_timestamp(now)
        }
    )
    cursor = await conn.execute(SELECT_FLAG_BY_ID, {"id": cursor.lastrowid})
    return PositionFlag.from_row(await cursor.fetchone())

async def fetch_flag(conn: aiosqlite.Connection, flag_id: int) -> Optional[PositionFlag]:
    """Load a flag by ID inside a transaction."""
    cursor = await conn.execute(SELECT_FLAG_BY_ID, {"id": flag_id})
    row = await cursor.fetchone()
    return PositionFlag.from_row(row) if row is not None else None

async def mark_flag_resolved(
    conn: aiosqlite.Connection,
    flag_id: int,
    resolved_by: str,
    resolution_notes: Optional[str],
    now: datetime
) -> bool:
    """Set the resolution fields of an unresolved flag.

    Returns:
        bool: False if the flag was already resolved
    """
    cursor = await conn.execute(
        RESOLVE_FLAG,
        {
            "id": flag_id,
            "resolved_at": format_timestamp(now),
            "resolved_by": resolved_by,
            "resolution_notes": resolution_notes
        }
    )
    return cursor.rowcount == 1

# Read side

async def get_open_position(
    session: AsyncSession,
    wallet_id: int,
    token: str
) -> Optional[Position]:
    """Get the OPEN or PARTIAL position of a wallet/token, if any."""
    result = await session.execute(
        text(SELECT_OPEN_POSITION),
        {"wallet_id": wallet_id, "token": token}
    )
    row = result.mappings().first()
    return Position.from_row(row) if row is not None else None

async def get_positions(
    session: AsyncSession,
    wallet_id: Optional[int] = None,
    token: Optional[str] = None,
    status: Optional[PositionStatus] = None
) -> List[Position]:
    """Get positions, oldest first, optionally filtered."""
    filters = []
    params = {}
    if wallet_id is not None:
        filters.append("wallet_id = :wallet_id")
        params["wallet_id"] = wallet_id
    if token is not None:
        filters.append("token = :token")
        params["token"] = token
    if status is not None:
        filters.append("status = :status")
        params["status"] = status.value

    sql = "SELECT * FROM positions"
    if filters:
        sql += " WHERE " + " AND ".join(filters)
    sql += " ORDER BY first_entry_at ASC, id ASC"

    result = await session.execute(text(sql), params)
    return [Position.from_row(row) for row in result.mappings().all()]

async def get_flags(
    session: AsyncSession,
    wallet_id: Optional[int] = None,
    resolved: Optional[bool] = None,
    severity: Optional[FlagSeverity] = None,
    flag_type: Optional[FlagType] = None,
    position_id: Optional[int] = None
) -> List[PositionFlag]:
    """Get flags, newest first, optionally filtered."""
    filters = []
    params = {}
    if wallet_id is not None:
        filters.append("wallet_id = :wallet_id")
        params["wallet_id"] = wallet_id
    if resolved is not None:
        filters.append("resolved = :resolved")
        params["resolved"] = 1 if resolved else 0
    if severity is not None:
        filters.append("severity = :severity")
        params["severity"] = severity.value
    if flag_type is not None:
        filters.append("flag_type = :flag_type")
        params["flag_type"] = flag_type.value
    if position_id is not None:
        filters.append("position_id = :position_id")
        params["position_id"] = position_id

    sql = "SELECT * FROM position_flags"
    if filters:
        sql += " WHERE " + " AND ".join(filters)
    sql += " ORDER BY created_at DESC, id DESC"

    result = await session.execute(text(sql), params)
    return [PositionFlag.from_row(row) for row in result.mappings().all()]
