"""
Read-only reporting over the position ledger.

Positions are loaded into a pandas DataFrame and aggregated. Figures are
converted to floats: they are for dashboards and operators, never fed back
into the ledger.
"""

import logging
from typing import Any, Dict, List, Optional

import pandas as pd
from sqlalchemy import text

from tradeledger.database.manager import DatabaseManager
from tradeledger.position_tracking.models import Position, PositionStatus, FlagSeverity
from tradeledger.position_tracking.queries import get_positions

logger = logging.getLogger(__name__)

POSITION_COLUMNS = [
    'id', 'wallet_id', 'token', 'status', 'total_entry_cost',
    'total_exit_proceeds', 'realized_pnl', 'current_amount'
]

class PositionAnalytics:
    """Aggregates positions and flags for reporting."""

    def __init__(self, db: DatabaseManager):
        self._db = db

    async def _load_positions(self, wallet_id: Optional[int] = None) -> pd.DataFrame:
        async def query_func(session):
            return await get_positions(session, wallet_id=wallet_id)

        positions: List[Position] = await self._db.connection._run_read_query(query_func)
        return pd.DataFrame.from_records(
            [
                {
                    'id': p.id,
                    'wallet_id': p.wallet_id,
                    'token': p.token,
                    'status': p.status.value,
                    'total_entry_cost': float(p.total_entry_cost),
                    'total_exit_proceeds': float(p.total_exit_proceeds),
                    'realized_pnl': float(p.realized_pnl),
                    'current_amount': float(p.current_amount)
                }
                for p in positions
            ],
            columns=POSITION_COLUMNS
        )

    @staticmethod
    def _performer(row: pd.Series) -> Dict[str, Any]:
        entry_cost = row['total_entry_cost']
        return {
            'position_id': int(row['id']),
            'wallet_id': int(row['wallet_id']),
            'token': row['token'],
            'realized_pnl': float(row['realized_pnl']),
            'return_pct': float(row['realized_pnl'] / entry_cost * 100) if entry_cost else 0.0
        }

    async def position_summary(self, wallet_id: Optional[int] = None) -> Dict[str, Any]:
        """Summarize positions, optionally for one wallet.

        Args:
            wallet_id: Only positions of this wallet

        Returns:
            Dict[str, Any]: Counts by status, cost/proceeds/P&L totals, best
            and worst performer by realized P&L (None without positions) and a
            per-wallet breakdown
        """
        df = await self._load_positions(wallet_id)

        counts = df['status'].value_counts()
        summary = {
            'total_positions': int(len(df)),
            'by_status': {
                status.value: int(counts.get(status.value, 0)) for status in PositionStatus
            },
            'total_entry_cost': float(df['total_entry_cost'].sum()),
            'total_exit_proceeds': float(df['total_exit_proceeds'].sum()),
            'total_realized_pnl': float(df['realized_pnl'].sum()),
            'best_performer': None,
            'worst_performer': None,
            'by_wallet': []
        }

        if df.empty:
            return summary

        summary['best_performer'] = self._performer(df.loc[df['realized_pnl'].idxmax()])
        summary['worst_performer'] = self._performer(df.loc[df['realized_pnl'].idxmin()])

        df['is_active'] = df['status'].isin(
            [PositionStatus.OPEN.value, PositionStatus.PARTIAL.value]
        )
        by_wallet = df.groupby('wallet_id').agg(
            positions=('id', 'count'),
            active_positions=('is_active', 'sum'),
            total_entry_cost=('total_entry_cost', 'sum'),
            total_exit_proceeds=('total_exit_proceeds', 'sum'),
            realized_pnl=('realized_pnl', 'sum')
        ).reset_index()

        summary['by_wallet'] = [
            {
                'wallet_id': int(row['wallet_id']),
                'positions': int(row['positions']),
                'active_positions': int(row['active_positions']),
                'total_entry_cost': float(row['total_entry_cost']),
                'total_exit_proceeds': float(row['total_exit_proceeds']),
                'realized_pnl': float(row['realized_pnl'])
            }
            for _, row in by_wallet.iterrows()
        ]
        logger.debug(f"Position summary computed over {len(df)} positions")
        return summary

    async def flag_summary(self) -> Dict[str, int]:
        """Count unresolved flags by severity."""
        async def query_func(session):
            result = await session.execute(
                text("SELECT severity FROM position_flags WHERE resolved = 0")
            )
            return [row['severity'] for row in result.mappings().all()]

        severities = pd.Series(
            await self._db.connection._run_read_query(query_func), dtype=object
        )
        counts = severities.value_counts()
        summary = {severity.value: int(counts.get(severity.value, 0)) for severity in FlagSeverity}
        summary['total'] = int(len(severities))
        return summary
