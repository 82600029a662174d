"""
Database manager for the trade ledger.

This module provides core database management functionality including:
1. Database initialization and schema setup
2. Access to the write transaction and read session helpers
3. Shutdown of pooled connections

Usage Example
------------
```python
db = DatabaseManager("trade_ledger.db")
await db.setup_database()

ledger = PositionLedger(db)
await ledger.record_buy(wallet_id=1, token="SOL", amount="100", cost="1000")

await db.close()
```

One manager is constructed at process start and handed to every component
that needs storage; tests build their own against a temporary file.
"""

import logging
import os
import sqlite3

from .connection import DatabaseConnection
from .exceptions import DatabaseError
from .schema import ALL_SCHEMA_STATEMENTS

logger = logging.getLogger(__name__)

class DatabaseManager:
    """Owns the database connection and the ledger schema."""
    
    def __init__(
        self,
        db_path: str = "trade_ledger.db",
        max_connections: int = 5,
        busy_timeout_ms: int = 60000
    ):
        """Initialize database manager.
        
        Args:
            db_path: Path to SQLite database file
            max_connections: Maximum number of pooled read connections
            busy_timeout_ms: How long a writer waits for the database lock
        """
        os.makedirs(os.path.dirname(os.path.abspath(db_path)), exist_ok=True)
        
        self.db_path = db_path
        self.connection = DatabaseConnection(db_path, max_connections, busy_timeout_ms)
        self._connection_initialized = False

    @classmethod
    def from_config(cls, config) -> "DatabaseManager":
        """Build a manager from a ``LedgerConfig``."""
        return cls(
            config.db_path,
            max_connections=config.max_connections,
            busy_timeout_ms=config.busy_timeout_ms
        )

    @property
    def session(self):
        """Get database session."""
        if not self._connection_initialized:
            raise RuntimeError("Database not initialized. Call setup_database() first.")
        return self.connection.session

    @property
    def is_initialized(self) -> bool:
        return self._connection_initialized

    async def setup_database(self):
        """Set up database tables, indexes and triggers.
        
        Safe to call on an existing database; every statement is idempotent.
        
        Raises:
            DatabaseError: If the schema cannot be created
        """
        logger.info(f"Setting up database at {self.db_path}")
        try:
            await self.connection.initialize()
            
            async with self.connection.get_connection() as conn:
                for statement in ALL_SCHEMA_STATEMENTS:
                    await conn.execute(statement)
                await conn.commit()
                
            self._connection_initialized = True
            logger.info("Database setup completed successfully")
            
        except sqlite3.Error as e:
            logger.error(f"Failed to set up database: {str(e)}")
            raise DatabaseError(f"Failed to set up database: {str(e)}") from e

    async def close(self):
        """Close database connections.
        
        This method should be called during application shutdown to ensure
        all database connections are properly closed.
        """
        await self.connection.close()
        self._connection_initialized = False

    @property
    def engine(self):
        """Get SQLAlchemy engine.
        
        Returns:
            AsyncEngine: The SQLAlchemy async engine instance
        """
        if not self._connection_initialized:
            raise RuntimeError("Database not initialized. Call setup_database() first.")
        return self.connection.engine
