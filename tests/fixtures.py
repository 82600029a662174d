"""
Test fixtures and data generators for ledger testing.
"""

import os
import tempfile
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import AsyncGenerator, Optional

import pytest_asyncio

from tradeledger.config import LedgerConfig
from tradeledger.database.manager import DatabaseManager
from tradeledger.position_tracking import PositionLedger, FlagReviewer
from .mocks.rpc_mock import MockBalanceProvider

class SteppingClock:
    """Clock that moves forward one second on every call."""

    def __init__(self, start: Optional[datetime] = None):
        self.now = start or datetime(2024, 1, 1, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        self.now = self.now + timedelta(seconds=1)
        return self.now

class TestData:
    """Container for test data and utilities."""

    def __init__(self):
        """Initialize test data."""
        self.wallet_id = 1
        self.other_wallet_id = 2
        self.token = "SOL"
        self.other_token = "BONK"
        self.address = "7xKXtg2CW87d97TXJSDpbD5jBkheTqA83TZRuJosgAsU"
        self.mint = "So11111111111111111111111111111111111111112"
        self._next_trade_id = 1000

    def next_trade_id(self) -> int:
        """Get a fresh external trade reference."""
        self._next_trade_id += 1
        return self._next_trade_id

def cleanup_db_file(db_path: str) -> None:
    """Remove a test database and its WAL files."""
    for path in (db_path, db_path + '-wal', db_path + '-shm'):
        try:
            os.unlink(path)
        except OSError:
            pass

@pytest_asyncio.fixture
async def test_data() -> TestData:
    """Fixture providing test data utilities."""
    return TestData()

@pytest_asyncio.fixture(scope="function")
async def db() -> AsyncGenerator[DatabaseManager, None]:
    """Fixture providing test database."""
    fd, db_path = tempfile.mkstemp(suffix='.db')
    os.close(fd)

    db = DatabaseManager(db_path, max_connections=1, busy_timeout_ms=5000)
    await db.setup_database()

    try:
        yield db
    finally:
        await db.close()
        cleanup_db_file(db_path)

@pytest_asyncio.fixture
async def clock() -> SteppingClock:
    """Fixture providing a deterministic clock."""
    return SteppingClock()

@pytest_asyncio.fixture
async def ledger(db, clock) -> PositionLedger:
    """Fixture providing a ledger with default thresholds."""
    return PositionLedger(db, LedgerConfig(db_path=db.db_path), clock=clock)

@pytest_asyncio.fixture
async def reviewer(db, clock) -> FlagReviewer:
    """Fixture providing the operator flag tool."""
    return FlagReviewer(db, clock=clock)

@pytest_asyncio.fixture
async def mock_provider() -> MockBalanceProvider:
    """Fixture providing a mock on-chain balance source."""
    return MockBalanceProvider()

def low_threshold_config(db_path: str, threshold: str = "500") -> LedgerConfig:
    """Configuration with a small large-position threshold."""
    return LedgerConfig(db_path=db_path, large_position_threshold=Decimal(threshold))
