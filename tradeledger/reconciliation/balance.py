"""
Balance reconciliation between the ledger and the chain.

Compares the remaining amount of each wallet's active position with the
balance the chain reports, logs every comparison to ``balance_checks`` and
raises a ``balance_mismatch`` flag when they drift apart by more than the
configured threshold. Positions are never modified here.
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Callable, List, Optional, Protocol

from sqlalchemy import text

from tradeledger.database.utils import (
    ZERO,
    format_decimal,
    format_timestamp,
    parse_decimal,
    parse_timestamp,
    quantize
)
from tradeledger.database.exceptions import InvalidAmountError
from tradeledger.position_tracking.manager import PositionLedger, utc_now
from tradeledger.position_tracking.validation import to_amount
from tradeledger.position_tracking.models import FlagType, FlagSeverity
from .rpc import BalanceProviderError

logger = logging.getLogger(__name__)

INSERT_BALANCE_CHECK = """
INSERT INTO balance_checks (
    wallet_id, token, db_balance, onchain_balance, discrepancy,
    discrepancy_pct, is_mismatch, check_timestamp
) VALUES (
    :wallet_id, :token, :db_balance, :onchain_balance, :discrepancy,
    :discrepancy_pct, :is_mismatch, :check_timestamp
)
"""

class BalanceProvider(Protocol):
    async def get_balance(self, address: str, mint: str) -> Decimal:
        ...

@dataclass
class BalanceTarget:
    """One wallet/token pair to reconcile."""
    wallet_id: int
    token: str      # Symbol used by the ledger
    address: str    # Wallet public key
    mint: str       # Token mint address

@dataclass
class BalanceCheck:
    """Result of reconciling one wallet/token pair."""
    wallet_id: int
    token: str
    checked_at: datetime
    success: bool
    db_balance: Decimal = ZERO
    onchain_balance: Optional[Decimal] = None
    discrepancy: Optional[Decimal] = None       # onchain - db
    discrepancy_pct: Optional[Decimal] = None   # relative to db balance
    is_mismatch: bool = False
    flag_id: Optional[int] = None
    error: Optional[str] = None

@dataclass
class BatchBalanceResult:
    """Aggregated result of a reconciliation run."""
    results: List[BalanceCheck]

    @property
    def total_checked(self) -> int:
        return len(self.results)

    @property
    def success_count(self) -> int:
        return sum(1 for r in self.results if r.success)

    @property
    def failure_count(self) -> int:
        return sum(1 for r in self.results if not r.success)

    @property
    def mismatches(self) -> List[BalanceCheck]:
        return [r for r in self.results if r.success and r.is_mismatch]

    @property
    def errors(self) -> List[str]:
        return [r.error for r in self.results if not r.success and r.error]

class BalanceReconciler:
    """Checks ledger balances against on-chain balances."""

    def __init__(
        self,
        ledger: PositionLedger,
        provider: BalanceProvider,
        threshold: Optional[Decimal] = None,
        clock: Optional[Callable[[], datetime]] = None
    ):
        """Initialize the reconciler.

        Args:
            ledger: Ledger queried for positions and used to raise flags
            provider: Source of on-chain balances
            threshold: Absolute token discrepancy tolerated before flagging;
                defaults to the ledger's configured threshold
            clock: Returns the current timezone-aware time
        """
        self._db = ledger.db
        self._ledger = ledger
        self._provider = provider
        self.threshold = Decimal(str(
            threshold if threshold is not None else ledger.config.balance_discrepancy_threshold
        ))
        self._clock = clock or utc_now

    async def check_balance(self, target: BalanceTarget) -> BalanceCheck:
        """Reconcile one wallet/token pair.

        Provider failures are reported in the returned check. A flag that
        cannot be persisted raises ``FlagPersistenceError``.
        """
        position = await self._ledger.get_open_position(target.wallet_id, target.token)
        db_balance = position.current_amount if position is not None else ZERO

        try:
            balance = await self._provider.get_balance(target.address, target.mint)
            onchain = to_amount(balance, "on-chain balance")
        except (BalanceProviderError, InvalidAmountError) as e:
            logger.error(
                f"Balance check failed for wallet {target.wallet_id} {target.token}: {str(e)}"
            )
            return BalanceCheck(
                wallet_id=target.wallet_id,
                token=target.token,
                checked_at=self._clock(),
                success=False,
                db_balance=db_balance,
                error=str(e)
            )

        discrepancy = onchain - db_balance
        discrepancy_pct = None
        if db_balance != ZERO:
            try:
                discrepancy_pct = quantize(discrepancy / db_balance * 100, "discrepancy percentage")
            except InvalidAmountError as e:
                # Dust ledger balances; the absolute discrepancy is still stored
                logger.warning(
                    f"Discrepancy percentage not stored for wallet {target.wallet_id} "
                    f"{target.token}: {str(e)}"
                )
        check = BalanceCheck(
            wallet_id=target.wallet_id,
            token=target.token,
            checked_at=self._clock(),
            success=True,
            db_balance=db_balance,
            onchain_balance=onchain,
            discrepancy=discrepancy,
            discrepancy_pct=discrepancy_pct,
            is_mismatch=abs(discrepancy) > self.threshold
        )
        await self._store_check(check)

        if check.is_mismatch:
            logger.warning(
                f"Balance discrepancy for wallet {target.wallet_id} {target.token}: "
                f"ledger {db_balance}, chain {onchain}, diff {discrepancy}"
            )
            flag = await self._ledger.flag_issue(
                wallet_id=target.wallet_id,
                position_id=position.id if position is not None else None,
                flag_type=FlagType.BALANCE_MISMATCH,
                severity=FlagSeverity.WARNING,
                description=(
                    f"Balance mismatch for {target.token} in wallet {target.wallet_id} "
                    f"({target.address}): ledger {db_balance}, on-chain {onchain}, "
                    f"discrepancy {discrepancy} exceeds threshold {self.threshold}"
                )
            )
            check.flag_id = flag.id
        else:
            logger.info(f"Balance OK for wallet {target.wallet_id} {target.token}: {onchain}")
        return check

    async def reconcile(self, targets: List[BalanceTarget]) -> BatchBalanceResult:
        """Reconcile many wallet/token pairs concurrently.

        Every check runs to completion before anything is raised. If any
        check raised, each such error is logged and the first is re-raised.
        """
        logger.info(f"Starting balance reconciliation for {len(targets)} targets")
        results = await asyncio.gather(
            *(self.check_balance(t) for t in targets),
            return_exceptions=True
        )
        failures = [
            (target, result) for target, result in zip(targets, results)
            if isinstance(result, BaseException)
        ]
        for target, error in failures:
            logger.error(
                f"Balance check raised for wallet {target.wallet_id} {target.token}: {str(error)}"
            )
        if failures:
            raise failures[0][1]
        batch = BatchBalanceResult(results=list(results))
        logger.info(
            f"Balance reconciliation complete: {batch.success_count}/{batch.total_checked} "
            f"successful, {len(batch.mismatches)} mismatches"
        )
        return batch

    async def _store_check(self, check: BalanceCheck) -> None:
        async def txn(conn):
            await conn.execute(
                INSERT_BALANCE_CHECK,
                {
                    "wallet_id": check.wallet_id,
                    "token": check.token,
                    "db_balance": format_decimal(check.db_balance),
                    "onchain_balance": format_decimal(check.onchain_balance),
                    "discrepancy": format_decimal(check.discrepancy),
                    "discrepancy_pct": (
                        format_decimal(check.discrepancy_pct)
                        if check.discrepancy_pct is not None else None
                    ),
                    "is_mismatch": 1 if check.is_mismatch else 0,
                    "check_timestamp": format_timestamp(check.checked_at)
                }
            )

        await self._db.connection._run_transaction(txn)

    async def recent_checks(self, wallet_id: Optional[int] = None, limit: int = 100) -> List[BalanceCheck]:
        """Get stored balance checks, newest first."""
        sql = "SELECT * FROM balance_checks"
        params = {"limit": limit}
        if wallet_id is not None:
            sql += " WHERE wallet_id = :wallet_id"
            params["wallet_id"] = wallet_id
        sql += " ORDER BY check_timestamp DESC, id DESC LIMIT :limit"

        async def query_func(session):
            result = await session.execute(text(sql), params)
            return [
                BalanceCheck(
                    wallet_id=row["wallet_id"],
                    token=row["token"],
                    checked_at=parse_timestamp(row["check_timestamp"]),
                    success=True,
                    db_balance=parse_decimal(row["db_balance"], "db_balance"),
                    onchain_balance=parse_decimal(row["onchain_balance"], "onchain_balance"),
                    discrepancy=parse_decimal(row["discrepancy"], "discrepancy"),
                    discrepancy_pct=(
                        parse_decimal(row["discrepancy_pct"], "discrepancy_pct")
                        if row["discrepancy_pct"] is not None else None
                    ),
                    is_mismatch=bool(row["is_mismatch"])
                )
                for row in result.mappings().all()
            ]

        return await self._db.connection._run_read_query(query_func)
