"""
Position ledger for the trading bot.

This module provides the PositionLedger class, the only writer of the
``positions`` table. The trade execution pipeline calls it once per swap that
has been confirmed on-chain.

Rules the ledger never breaks:
1. No synthetic or reconciling transactions are ever written.
2. Data anomalies are flagged for review, never corrected.
3. A sell needs an OPEN or PARTIAL position.
4. A sell never exceeds the position's remaining amount.
5. Cost basis uses the running average entry price (see ``accounting``).

Each call runs in a single transaction: the position lookup, the mutation
and any flags commit or roll back together. A rejected sell commits only its
flag and then raises.
"""

import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import Callable, Optional, Union

import aiosqlite

from tradeledger.config import LedgerConfig
from tradeledger.database.manager import DatabaseManager
from tradeledger.database.exceptions import (
    DatabaseError,
    StateError,
    FlagPersistenceError,
    PositionNotFoundError,
    InsufficientPositionError
)
from .accounting import (
    average_price,
    apply_buy,
    apply_sell,
    is_oversized,
    is_suspicious_pnl
)
from .models import (
    Position,
    PositionFlag,
    SellResult,
    FlagType,
    FlagSeverity
)
from .queries import (
    fetch_open_position,
    insert_position,
    update_position_entry,
    update_position_exit,
    insert_flag,
    get_open_position
)
from .validation import (
    validate_positive,
    validate_non_negative,
    validate_wallet_and_token,
    validate_position_state_transition
)

logger = logging.getLogger(__name__)

Amount = Union[Decimal, int, float, str]

_SEVERITY_LOG_LEVELS = {
    FlagSeverity.INFO: logging.INFO,
    FlagSeverity.WARNING: logging.WARNING,
    FlagSeverity.CRITICAL: logging.CRITICAL,
}

def utc_now() -> datetime:
    return datetime.now(timezone.utc)

class PositionLedger:
    """Records buys and sells against per-wallet, per-token positions.

    One instance is built at process start and passed to whatever records
    trades (webhook handler, reconciliation job). Tests build their own
    against isolated databases.
    """

    def __init__(
        self,
        db: DatabaseManager,
        config: Optional[LedgerConfig] = None,
        clock: Optional[Callable[[], datetime]] = None
    ):
        """Initialize the ledger.

        Args:
            db: Database manager whose schema has been set up
            config: Anomaly thresholds; defaults to ``LedgerConfig()``
            clock: Returns the current timezone-aware time
        """
        self._db = db
        self.config = config or LedgerConfig()
        self._clock = clock or utc_now

    @property
    def db(self) -> DatabaseManager:
        """Database manager the ledger writes to."""
        return self._db

    async def record_buy(
        self,
        wallet_id: int,
        token: str,
        amount: Amount,
        cost: Amount,
        trade_id: Optional[int] = None
    ) -> Position:
        """Record a completed buy.

        Creates an OPEN position if the wallet holds no active position in
        the token, otherwise adds to the active one and recomputes its
        average entry price.

        Args:
            wallet_id: Wallet that received the tokens
            token: Token symbol bought
            amount: Tokens received, > 0
            cost: Quote currency spent, > 0
            trade_id: External trade reference, stored for traceability

        Returns:
            Position: The created or updated position

        Raises:
            InvalidAmountError: If amount or cost is not positive
            DatabaseError: If the transaction fails
        """
        token = validate_wallet_and_token(wallet_id, token)
        amount = validate_positive(amount, "buy amount")
        cost = validate_positive(cost, "buy cost")

        async def txn(conn: aiosqlite.Connection) -> Position:
            now = self._clock()
            existing = await fetch_open_position(conn, wallet_id, token)
            if existing is None:
                position = await insert_position(
                    conn,
                    wallet_id,
                    token,
                    amount,
                    cost,
                    average_price(cost, amount),
                    trade_id,
                    now
                )
                logger.info(
                    f"Opened position {position.id}: wallet {wallet_id} bought {amount} {token} "
                    f"for {cost} (avg price {position.avg_entry_price}, trade {trade_id})"
                )
                return position

            updated = apply_buy(existing, amount, cost, now)
            validate_position_state_transition(existing, updated)
            position = await update_position_entry(conn, updated)
            logger.info(
                f"Added to position {position.id}: wallet {wallet_id} bought {amount} {token} "
                f"for {cost}, now {position.current_amount} {token} at avg price "
                f"{position.avg_entry_price} (trade {trade_id})"
            )
            return position

        return await self._db.connection._run_transaction(txn)

    async def record_sell(
        self,
        wallet_id: int,
        token: str,
        amount: Amount,
        proceeds: Amount,
        trade_id: Optional[int] = None
    ) -> SellResult:
        """Record a completed sell.

        Args:
            wallet_id: Wallet that sold the tokens
            token: Token symbol sold
            amount: Tokens sold, > 0
            proceeds: Quote currency received, >= 0
            trade_id: External trade reference

        Returns:
            SellResult: Updated position, realized P&L and cost basis of
            this sell

        Raises:
            InvalidAmountError: If amount is not positive or proceeds negative
            PositionNotFoundError: If no OPEN/PARTIAL position exists (a
                critical ``sell_without_position`` flag is committed first)
            InsufficientPositionError: If amount exceeds the remaining amount
                (a critical ``sell_exceeds_position`` flag is committed first)
            DatabaseError: If the transaction fails
        """
        token = validate_wallet_and_token(wallet_id, token)
        amount = validate_positive(amount, "sell amount")
        proceeds = validate_non_negative(proceeds, "sell proceeds")

        async def txn(conn: aiosqlite.Connection) -> Union[SellResult, StateError]:
            now = self._clock()
            position = await fetch_open_position(conn, wallet_id, token)

            if position is None:
                await self._insert_flag(
                    conn,
                    wallet_id=wallet_id,
                    trade_id=trade_id,
                    flag_type=FlagType.SELL_WITHOUT_POSITION,
                    severity=FlagSeverity.CRITICAL,
                    description=(
                        f"Cannot sell {amount} {token}: no open position for wallet "
                        f"{wallet_id}. Trade ID: {trade_id}"
                    ),
                    now=now
                )
                return PositionNotFoundError(wallet_id, token, amount)

            if amount > position.current_amount:
                await self._insert_flag(
                    conn,
                    wallet_id=wallet_id,
                    position_id=position.id,
                    trade_id=trade_id,
                    flag_type=FlagType.SELL_EXCEEDS_POSITION,
                    severity=FlagSeverity.CRITICAL,
                    description=(
                        f"Cannot sell {amount} {token}: only {position.current_amount} "
                        f"{token} available in position {position.id} (wallet {wallet_id}). "
                        f"Trade ID: {trade_id}"
                    ),
                    now=now
                )
                return InsufficientPositionError(
                    wallet_id, token, amount, position.current_amount, position.id
                )

            updated, cost_basis, realized_pnl = apply_sell(position, amount, proceeds, now)
            validate_position_state_transition(position, updated)
            stored = await update_position_exit(conn, updated)
            logger.info(
                f"Recorded sell on position {stored.id}: wallet {wallet_id} sold {amount} {token} "
                f"for {proceeds} (cost basis {cost_basis}, realized P&L {realized_pnl}, "
                f"status {stored.status.value}, trade {trade_id})"
            )

            await self._flag_post_sell_anomalies(
                conn, position, amount, proceeds, cost_basis, realized_pnl, trade_id, now
            )
            return SellResult(position=stored, realized_pnl=realized_pnl, cost_basis=cost_basis)

        outcome = await self._db.connection._run_transaction(txn)
        if isinstance(outcome, StateError):
            logger.error(f"Rejected sell: {outcome}")
            raise outcome
        return outcome

    async def get_open_position(self, wallet_id: int, token: str) -> Optional[Position]:
        """Get the OPEN or PARTIAL position of a wallet/token.

        Returns:
            Optional[Position]: The active position, or None. CLOSED
            positions are never returned.
        """
        token = validate_wallet_and_token(wallet_id, token)

        async def query_func(session):
            return await get_open_position(session, wallet_id, token)

        return await self._db.connection._run_read_query(query_func)

    async def flag_issue(
        self,
        wallet_id: int,
        flag_type: FlagType,
        severity: FlagSeverity,
        description: str,
        position_id: Optional[int] = None,
        trade_id: Optional[int] = None
    ) -> PositionFlag:
        """Record an anomaly detected outside the ledger.

        Used by collaborators such as the balance reconciliation job. The
        flag is written in its own transaction and logged.

        Returns:
            PositionFlag: The stored flag

        Raises:
            FlagPersistenceError: If the flag could not be written
        """
        flag_type = FlagType(flag_type)
        severity = FlagSeverity(severity)

        async def txn(conn: aiosqlite.Connection) -> PositionFlag:
            return await self._insert_flag(
                conn,
                wallet_id=wallet_id,
                position_id=position_id,
                trade_id=trade_id,
                flag_type=flag_type,
                severity=severity,
                description=description,
                now=self._clock()
            )

        try:
            return await self._db.connection._run_transaction(txn)
        except FlagPersistenceError:
            raise
        except DatabaseError as e:
            logger.critical(
                f"Failed to persist {severity.value} {flag_type.value} flag for wallet "
                f"{wallet_id}: {description}. Error: {e}"
            )
            raise FlagPersistenceError(f"Failed to persist flag: {e}") from e

    async def _flag_post_sell_anomalies(
        self,
        conn: aiosqlite.Connection,
        position: Position,
        amount: Decimal,
        proceeds: Decimal,
        cost_basis: Decimal,
        realized_pnl: Decimal,
        trade_id: Optional[int],
        now: datetime
    ) -> None:
        """Raise advisory flags after a successful sell; never rejects it."""
        position_value = position.position_value
        if is_oversized(position_value, self.config.large_position_threshold):
            await self._insert_flag(
                conn,
                wallet_id=position.wallet_id,
                position_id=position.id,
                trade_id=trade_id,
                flag_type=FlagType.OVERSIZED_POSITION,
                severity=FlagSeverity.WARNING,
                description=(
                    f"Large position detected: {position.token} position value "
                    f"{position_value:.2f} ({position.current_amount} at avg price "
                    f"{position.avg_entry_price}) in wallet {position.wallet_id} exceeds "
                    f"threshold {self.config.large_position_threshold}. Position "
                    f"{position.id}, Trade {trade_id}"
                ),
                now=now
            )

        if is_suspicious_pnl(realized_pnl, proceeds, cost_basis, self.config.suspicious_pnl_ratio):
            await self._insert_flag(
                conn,
                wallet_id=position.wallet_id,
                position_id=position.id,
                trade_id=trade_id,
                flag_type=FlagType.SUSPICIOUS_PNL,
                severity=FlagSeverity.WARNING,
                description=(
                    f"Suspicious P&L: negative P&L ({realized_pnl}) despite proceeds "
                    f"{proceeds} above cost basis {cost_basis} selling {amount} "
                    f"{position.token}. Position {position.id}, Trade {trade_id}"
                ),
                now=now
            )

    async def _insert_flag(
        self,
        conn: aiosqlite.Connection,
        wallet_id: int,
        flag_type: FlagType,
        severity: FlagSeverity,
        description: str,
        now: datetime,
        position_id: Optional[int] = None,
        trade_id: Optional[int] = None
    ) -> PositionFlag:
        """Write a flag inside the caller's transaction and log it."""
        try:
            flag = await insert_flag(
                conn,
                wallet_id=wallet_id,
                flag_type=flag_type,
                severity=severity,
                description=description,
                now=now,
                position_id=position_id,
                trade_id=trade_id
            )
        except Exception as e:
            logger.critical(
                f"Failed to persist {severity.value} {flag_type.value} flag for wallet "
                f"{wallet_id}: {description}. Error: {e}"
            )
            raise FlagPersistenceError(f"Failed to persist flag: {e}") from e

        logger.log(
            _SEVERITY_LOG_LEVELS[severity],
            f"[POSITION FLAG] {severity.value.upper()}: {flag_type.value} - {description} "
            f"(flag {flag.id}, position {position_id or 'N/A'}, trade {trade_id or 'N/A'}, "
            f"wallet {wallet_id})"
        )
        return flag
