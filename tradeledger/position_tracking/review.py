"""
Operator review of position flags.

Flags are raised by the ledger and resolved only by a human through this
module. Resolving a flag records who closed it and why; it never changes any
position.
"""

import logging
from datetime import datetime
from typing import Callable, List, Optional

from tradeledger.database.manager import DatabaseManager
from tradeledger.database.exceptions import (
    ValidationError,
    FlagNotFoundError,
    FlagAlreadyResolvedError
)
from .models import PositionFlag, FlagType, FlagSeverity
from .queries import fetch_flag, mark_flag_resolved, get_flags
from .manager import utc_now

logger = logging.getLogger(__name__)

class FlagReviewer:
    """Lists and resolves flags on behalf of an operator."""

    def __init__(self, db: DatabaseManager, clock: Optional[Callable[[], datetime]] = None):
        self._db = db
        self._clock = clock or utc_now

    async def list_flags(
        self,
        wallet_id: Optional[int] = None,
        resolved: Optional[bool] = None,
        severity: Optional[FlagSeverity] = None,
        flag_type: Optional[FlagType] = None,
        position_id: Optional[int] = None
    ) -> List[PositionFlag]:
        """List flags, newest first.

        Args:
            wallet_id: Only flags of this wallet
            resolved: Only resolved (True) or unresolved (False) flags
            severity: Only flags of this severity
            flag_type: Only flags of this category
            position_id: Only flags linked to this position

        Returns:
            List[PositionFlag]: Matching flags
        """
        async def query_func(session):
            return await get_flags(
                session,
                wallet_id=wallet_id,
                resolved=resolved,
                severity=FlagSeverity(severity) if severity is not None else None,
                flag_type=FlagType(flag_type) if flag_type is not None else None,
                position_id=position_id
            )

        return await self._db.connection._run_read_query(query_func)

    async def unresolved_flags(self, wallet_id: Optional[int] = None) -> List[PositionFlag]:
        return await self.list_flags(wallet_id=wallet_id, resolved=False)

    async def resolve_flag(
        self,
        flag_id: int,
        resolved_by: str,
        notes: Optional[str] = None
    ) -> PositionFlag:
        """Mark a flag as resolved.

        Args:
            flag_id: Flag to resolve
            resolved_by: Identity of the operator
            notes: What was found and done

        Returns:
            PositionFlag: The resolved flag

        Raises:
            ValidationError: If ``resolved_by`` is empty
            FlagNotFoundError: If the flag does not exist
            FlagAlreadyResolvedError: If the flag was already resolved
        """
        if not resolved_by or not resolved_by.strip():
            raise ValidationError("resolved_by is required to resolve a flag")

        async def txn(conn):
            flag = await fetch_flag(conn, flag_id)
            if flag is None:
                raise FlagNotFoundError(f"Flag {flag_id} does not exist")
            if flag.resolved:
                raise FlagAlreadyResolvedError(
                    f"Flag {flag_id} was already resolved by {flag.resolved_by} "
                    f"at {flag.resolved_at}"
                )
            await mark_flag_resolved(conn, flag_id, resolved_by.strip(), notes, self._clock())
            return await fetch_flag(conn, flag_id)

        flag = await self._db.connection._run_transaction(txn)
        logger.info(
            f"Flag {flag.id} ({flag.flag_type.value}, wallet {flag.wallet_id}) resolved by "
            f"{flag.resolved_by}"
        )
        return flag
