"""
Tests for the DatabaseConnection class.

These tests focus on connection management functionality:
1. Connection creation and pragmas
2. Write transaction commit and rollback
3. Error translation into the ledger exception hierarchy
4. Storage-level constraints and triggers
"""

import asyncio
import os
import sqlite3
import tempfile

import pytest
import pytest_asyncio
from sqlalchemy import text

from tradeledger.database.connection import DatabaseConnection
from tradeledger.database.exceptions import (
    DatabaseError,
    IntegrityError,
    ConcurrencyConflictError
)
from tradeledger.database.manager import DatabaseManager
from tradeledger.position_tracking import PositionLedger
from ..fixtures import cleanup_db_file

@pytest_asyncio.fixture
async def db_path():
    """Provide a temporary database path."""
    fd, path = tempfile.mkstemp(suffix='.db')
    os.close(fd)
    yield path
    cleanup_db_file(path)

@pytest_asyncio.fixture
async def connection(db_path):
    """Provide a database connection with a scratch table."""
    conn = DatabaseConnection(db_path, busy_timeout_ms=200)
    await conn.initialize()
    async with conn.get_connection() as raw:
        await raw.execute("CREATE TABLE test (id INTEGER PRIMARY KEY, value TEXT UNIQUE)")
    yield conn
    await conn.close()

@pytest_asyncio.fixture
async def ledger_db(db_path):
    """Provide a manager with the ledger schema and a short busy timeout."""
    db = DatabaseManager(db_path, max_connections=1, busy_timeout_ms=200)
    await db.setup_database()
    yield db
    await db.close()

async def _count(connection: DatabaseConnection) -> int:
    async with connection.get_connection() as conn:
        cursor = await conn.execute("SELECT COUNT(*) FROM test")
        return (await cursor.fetchone())[0]

@pytest.mark.asyncio
async def test_connection_creation(connection):
    """Test basic connection creation and settings."""
    async with connection.get_connection() as conn:
        cursor = await conn.execute("PRAGMA journal_mode")
        result = await cursor.fetchone()
        assert result[0].upper() == "WAL"

        cursor = await conn.execute("PRAGMA synchronous")
        result = await cursor.fetchone()
        assert result[0] == 1  # NORMAL

        cursor = await conn.execute("PRAGMA foreign_keys")
        result = await cursor.fetchone()
        assert result[0] == 1  # ON

        cursor = await conn.execute("PRAGMA busy_timeout")
        result = await cursor.fetchone()
        assert result[0] == 200

@pytest.mark.asyncio
async def test_connection_cleanup(connection):
    """Test connection cleanup on context exit."""
    async with connection.get_connection() as conn:
        await conn.execute("SELECT 1")

    with pytest.raises(Exception):
        await conn.execute("SELECT 1")

@pytest.mark.asyncio
async def test_transaction_commits(connection):
    async with connection.transaction() as conn:
        await conn.execute("INSERT INTO test (value) VALUES ('a')")
        await conn.execute("INSERT INTO test (value) VALUES ('b')")

    assert await _count(connection) == 2

@pytest.mark.asyncio
async def test_transaction_rolls_back_on_error(connection):
    """Nothing from a failed block is committed."""
    with pytest.raises(ValueError):
        async with connection.transaction() as conn:
            await conn.execute("INSERT INTO test (value) VALUES ('a')")
            raise ValueError("boom")

    assert await _count(connection) == 0

@pytest.mark.asyncio
async def test_constraint_violation_becomes_integrity_error(connection):
    with pytest.raises(IntegrityError):
        async with connection.transaction() as conn:
            await conn.execute("INSERT INTO test (value) VALUES ('a')")
            await conn.execute("INSERT INTO test (value) VALUES ('a')")

    assert await _count(connection) == 0

@pytest.mark.asyncio
async def test_sql_error_becomes_database_error(connection):
    with pytest.raises(DatabaseError):
        async with connection.transaction() as conn:
            await conn.execute("INSERT INTO missing_table VALUES (1)")

@pytest.mark.asyncio
async def test_held_write_lock_becomes_conflict(connection):
    """A writer that cannot get the lock fails with a retryable error."""
    async with connection.get_connection() as blocker:
        await blocker.execute("BEGIN IMMEDIATE")
        await blocker.execute("INSERT INTO test (value) VALUES ('held')")

        with pytest.raises(ConcurrencyConflictError) as exc_info:
            async with connection.transaction() as conn:
                await conn.execute("INSERT INTO test (value) VALUES ('blocked')")

        assert exc_info.value.retryable is True
        await blocker.rollback()

    assert await _count(connection) == 0

@pytest.mark.asyncio
async def test_writers_in_one_process_serialize(connection):
    """Concurrent transactions queue on the write lock instead of failing."""
    async def write(value):
        async with connection.transaction() as conn:
            cursor = await conn.execute("SELECT COUNT(*) FROM test")
            count = (await cursor.fetchone())[0]
            await asyncio.sleep(0.01)
            await conn.execute("INSERT INTO test (value) VALUES (?)", (f"{value}-{count}",))

    await asyncio.gather(*(write(i) for i in range(5)))

    async with connection.get_connection() as conn:
        cursor = await conn.execute("SELECT value FROM test ORDER BY id")
        values = [row[0] for row in await cursor.fetchall()]
    # Every writer saw the commits of the ones before it
    assert sorted(int(v.split('-')[1]) for v in values) == [0, 1, 2, 3, 4]

@pytest.mark.asyncio
async def test_read_query_wraps_errors(connection):
    async def query_func(session):
        await session.execute(text("SELECT * FROM missing_table"))

    with pytest.raises(DatabaseError):
        await connection._run_read_query(query_func)

@pytest.mark.asyncio
async def test_read_query_sees_committed_rows(connection):
    await connection._run_transaction(
        lambda conn: conn.execute("INSERT INTO test (value) VALUES ('x')")
    )

    async def query_func(session):
        result = await session.execute(text("SELECT value FROM test"))
        return [row["value"] for row in result.mappings().all()]

    assert await connection._run_read_query(query_func) == ["x"]

@pytest.mark.asyncio
async def test_one_active_position_per_wallet_and_token(ledger_db):
    """The partial unique index rejects a second OPEN row for a pair."""
    ledger = PositionLedger(ledger_db)
    position = await ledger.record_buy(1, "SOL", 10, 100)

    with pytest.raises(IntegrityError):
        async with ledger_db.connection.transaction() as conn:
            await conn.execute(
                """
                INSERT INTO positions (
                    wallet_id, token, status, entry_timestamp, total_entry_amount,
                    total_entry_cost, avg_entry_price, current_amount,
                    first_entry_at, created_at, updated_at
                )
                SELECT wallet_id, token, 'PARTIAL', entry_timestamp, total_entry_amount,
                       total_entry_cost, avg_entry_price, current_amount,
                       first_entry_at, created_at, updated_at
                FROM positions WHERE id = ?
                """,
                (position.id,)
            )

@pytest.mark.asyncio
async def test_closed_rows_do_not_block_new_positions(ledger_db):
    ledger = PositionLedger(ledger_db)
    first = await ledger.record_buy(1, "SOL", 10, 100)
    await ledger.record_sell(1, "SOL", 10, 100)
    second = await ledger.record_buy(1, "SOL", 10, 100)
    await ledger.record_sell(1, "SOL", 10, 100)
    third = await ledger.record_buy(1, "SOL", 10, 100)

    assert len({first.id, second.id, third.id}) == 3

@pytest.mark.asyncio
async def test_closed_position_is_immutable(ledger_db):
    """The trigger aborts any update of a CLOSED row."""
    ledger = PositionLedger(ledger_db)
    await ledger.record_buy(1, "SOL", 10, 100)
    result = await ledger.record_sell(1, "SOL", 10, 120)

    with pytest.raises(IntegrityError):
        async with ledger_db.connection.transaction() as conn:
            await conn.execute(
                "UPDATE positions SET current_amount = '5.000000000' WHERE id = ?",
                (result.position.id,)
            )

@pytest.mark.asyncio
async def test_status_check_constraint(ledger_db):
    ledger = PositionLedger(ledger_db)
    position = await ledger.record_buy(1, "SOL", 10, 100)

    with pytest.raises(IntegrityError):
        async with ledger_db.connection.transaction() as conn:
            await conn.execute(
                "UPDATE positions SET status = 'REOPENED' WHERE id = ?", (position.id,)
            )

@pytest.mark.asyncio
async def test_raw_sqlite_error_type_is_preserved_as_cause(connection):
    with pytest.raises(IntegrityError) as exc_info:
        async with connection.transaction() as conn:
            await conn.execute("INSERT INTO test (id, value) VALUES (1, 'a')")
            await conn.execute("INSERT INTO test (id, value) VALUES (1, 'b')")

    assert isinstance(exc_info.value.__cause__, sqlite3.IntegrityError)
