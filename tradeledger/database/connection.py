"""
Database connection management for the trade ledger.

This module provides the core database connection functionality, including:
1. Write transactions on dedicated aiosqlite connections
2. Read-only sessions via SQLAlchemy's async connection pool
3. Serialization of concurrent writers
4. Mapping of SQLite errors onto the ledger exception hierarchy
"""

import asyncio
import logging
import os
import sqlite3
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, AsyncGenerator

import aiosqlite
from sqlalchemy.ext.asyncio import (
    create_async_engine,
    AsyncSession,
    async_sessionmaker
)

from .exceptions import (
    DatabaseError,
    IntegrityError,
    ConcurrencyConflictError
)

logger = logging.getLogger(__name__)

def _is_lock_error(error: sqlite3.Error) -> bool:
    message = str(error).lower()
    return "locked" in message or "busy" in message

class DatabaseConnection:
    """Manager class for database connections.
    
    Every write runs inside ``transaction()``: an in-process lock serializes
    writers of this process and ``BEGIN IMMEDIATE`` takes SQLite's write lock
    before the first read, so a second writer (in this or another process)
    waits behind the first or fails with ``ConcurrencyConflictError`` once the
    busy timeout expires. Reads go through SQLAlchemy sessions and see the
    last committed state.
    """
    
    def __init__(
        self,
        db_path: str = "trade_ledger.db",
        max_connections: int = 5,
        busy_timeout_ms: int = 60000
    ):
        """Initialize database connection manager.
        
        Args:
            db_path: Path to SQLite database file
            max_connections: Maximum number of pooled read connections
            busy_timeout_ms: How long a writer waits for the database lock
        """
        self.db_path = db_path
        self.busy_timeout_ms = busy_timeout_ms
        self._max_connections = max(1, min(max_connections, 10))  # Clamp between 1 and 10
        
        # Ensure database directory exists
        db_dir = Path(db_path).parent
        db_dir.mkdir(parents=True, exist_ok=True)

        # Serializes write transactions issued from this process
        self._write_lock = asyncio.Lock()

        self.engine = create_async_engine(
            f"sqlite+aiosqlite:///{db_path}",
            pool_size=self._max_connections,
            max_overflow=2,
            pool_timeout=60,
            pool_recycle=3600,
            connect_args={"timeout": busy_timeout_ms / 1000},
            echo=False
        )
        
        self._session_factory = async_sessionmaker(
            bind=self.engine,
            expire_on_commit=False,
            class_=AsyncSession
        )
    
    async def initialize(self) -> bool:
        """Initialize the database connection.
        
        Ensures the database file is accessible and switches it to WAL mode
        so readers never block the writer.
        
        Returns:
            bool: True if initialization successful
            
        Raises:
            DatabaseError: If initialization fails
        """
        logger.info(f"Initializing database connection to {self.db_path}")
        try:
            os.makedirs(os.path.dirname(os.path.abspath(self.db_path)), exist_ok=True)
            
            async with self.get_connection() as conn:
                await conn.execute("PRAGMA journal_mode = WAL")
                cursor = await conn.execute("SELECT sqlite_version()")
                version = await cursor.fetchone()
                logger.info(f"Connected to SQLite version {version[0]}")
                
            return True
        except Exception as e:
            logger.error(f"Failed to initialize database connection: {str(e)}")
            raise DatabaseError(f"Failed to initialize database connection: {str(e)}") from e
    
    async def _create_connection(self) -> aiosqlite.Connection:
        """Create a new autocommit connection; transactions are explicit."""
        try:
            conn = await aiosqlite.connect(self.db_path, isolation_level=None)
            await conn.execute(f"PRAGMA busy_timeout = {int(self.busy_timeout_ms)}")
            await conn.execute("PRAGMA journal_mode = WAL")
            await conn.execute("PRAGMA synchronous = NORMAL")
            await conn.execute("PRAGMA foreign_keys = ON")
            conn.row_factory = aiosqlite.Row
            return conn
        except sqlite3.Error as e:
            raise DatabaseError(f"Failed to create database connection: {str(e)}") from e

    @asynccontextmanager
    async def get_connection(self) -> AsyncGenerator[aiosqlite.Connection, None]:
        """Get a raw database connection that is closed on exit."""
        connection = await self._create_connection()
        try:
            yield connection
        finally:
            await connection.close()

    @asynccontextmanager
    async def transaction(self) -> AsyncGenerator[aiosqlite.Connection, None]:
        """Run a block as one atomic write transaction.

        Commits when the block exits normally and rolls back when it raises.
        SQLite errors are translated: lock timeouts become
        ``ConcurrencyConflictError``, constraint violations ``IntegrityError``
        and anything else ``DatabaseError``.
        """
        async with self._write_lock:
            async with self.get_connection() as conn:
                try:
                    await conn.execute("BEGIN IMMEDIATE")
                except sqlite3.OperationalError as e:
                    if _is_lock_error(e):
                        raise ConcurrencyConflictError(
                            f"Could not acquire write lock on {self.db_path}: {str(e)}"
                        ) from e
                    raise DatabaseError(f"Failed to begin transaction: {str(e)}") from e

                try:
                    yield conn
                except BaseException as e:
                    await conn.rollback()
                    if isinstance(e, sqlite3.IntegrityError):
                        raise IntegrityError(f"Integrity constraint violated: {str(e)}") from e
                    if isinstance(e, sqlite3.OperationalError) and _is_lock_error(e):
                        raise ConcurrencyConflictError(f"Transaction conflict: {str(e)}") from e
                    if isinstance(e, sqlite3.Error):
                        raise DatabaseError(f"Transaction failed: {str(e)}") from e
                    raise

                try:
                    await conn.commit()
                except sqlite3.Error as e:
                    await conn.rollback()
                    if _is_lock_error(e):
                        raise ConcurrencyConflictError(f"Commit conflict: {str(e)}") from e
                    raise DatabaseError(f"Commit failed: {str(e)}") from e

    async def close(self):
        """Dispose of the SQLAlchemy engine and its pooled connections."""
        await self.engine.dispose()

    @asynccontextmanager
    async def session(self) -> AsyncGenerator[AsyncSession, None]:
        """Get a database session.
        
        This context manager provides a session with automatic cleanup.
        """
        async with self._session_factory() as session:
            try:
                yield session
            except Exception:
                await session.rollback()
                raise

    async def _run_transaction(self, txn_func) -> Any:
        """Run a write transaction.
        
        Args:
            txn_func: Async function that takes a connection and returns a result
            
        Returns:
            Any: Result of the transaction function
        """
        async with self.transaction() as conn:
            return await txn_func(conn)

    async def _run_read_query(self, query_func) -> Any:
        """Execute a read-only query.
        
        Args:
            query_func: Async function that takes a session and returns a result
            
        Returns:
            Any: Result of the query function
            
        Raises:
            DatabaseError: If query fails
        """
        async with self.session() as session:
            try:
                return await query_func(session)
            except DatabaseError:
                raise
            except Exception as e:
                raise DatabaseError(f"Read query failed: {str(e)}") from e
