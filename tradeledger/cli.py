"""
Command line interface for the trade ledger.

Examples:
    tradeledger init-db
    tradeledger buy 1 SOL 100 1000 --trade-id 42
    tradeledger sell 1 SOL 40 480 --trade-id 43
    tradeledger position 1 SOL
    tradeledger flags --unresolved
    tradeledger resolve-flag 7 --by alice --notes "duplicate webhook"
    tradeledger stats --wallet 1
    tradeledger reconcile targets.json

``reconcile`` reads a JSON list of objects with ``wallet_id``, ``token``,
``address`` and ``mint`` keys.
"""

import argparse
import asyncio
import json
import logging
import sys
from dataclasses import asdict
from decimal import Decimal
from enum import Enum
from typing import List, Optional

from tradeledger.analytics import PositionAnalytics
from tradeledger.config import LedgerConfig
from tradeledger.database.exceptions import DatabaseError
from tradeledger.database.manager import DatabaseManager
from tradeledger.position_tracking import FlagReviewer, FlagSeverity, FlagType, PositionLedger
from tradeledger.reconciliation import BalanceReconciler, BalanceTarget, SolanaRpcBalanceProvider

logger = logging.getLogger("tradeledger")

def _json_default(value):
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, Enum):
        return value.value
    if hasattr(value, "isoformat"):
        return value.isoformat()
    raise TypeError(f"Cannot serialize {type(value).__name__}")

def _print_json(data) -> None:
    print(json.dumps(data, indent=2, default=_json_default))

def load_targets(path: str) -> List[BalanceTarget]:
    """Read reconciliation targets from a JSON file."""
    with open(path, "r") as f:
        raw = json.load(f)
    if not isinstance(raw, list):
        raise ValueError(f"{path} must contain a JSON list of targets")
    return [
        BalanceTarget(
            wallet_id=int(item["wallet_id"]),
            token=item["token"],
            address=item["address"],
            mint=item["mint"]
        )
        for item in raw
    ]

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="tradeledger", description="Trading bot position ledger")
    parser.add_argument('--db', default=None, help="SQLite database path (default: LEDGER_DB_PATH)")
    parser.add_argument(
        '--log-level',
        default='INFO',
        choices=['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL'],
        help="Logging level"
    )
    sub = parser.add_subparsers(dest='command', required=True)

    sub.add_parser('init-db', help="Create the ledger schema")

    for name, value_name in (('buy', 'cost'), ('sell', 'proceeds')):
        trade = sub.add_parser(name, help=f"Record a completed {name}")
        trade.add_argument('wallet_id', type=int)
        trade.add_argument('token')
        trade.add_argument('amount')
        trade.add_argument(value_name)
        trade.add_argument('--trade-id', type=int, default=None)

    position = sub.add_parser('position', help="Show the open position of a wallet/token")
    position.add_argument('wallet_id', type=int)
    position.add_argument('token')

    flags = sub.add_parser('flags', help="List flags, newest first")
    flags.add_argument('--wallet', type=int, default=None)
    flags.add_argument('--unresolved', action='store_true')
    flags.add_argument('--severity', choices=[s.value for s in FlagSeverity], default=None)
    flags.add_argument('--type', dest='flag_type', choices=[t.value for t in FlagType], default=None)

    resolve = sub.add_parser('resolve-flag', help="Mark a flag as resolved")
    resolve.add_argument('flag_id', type=int)
    resolve.add_argument('--by', dest='resolved_by', required=True)
    resolve.add_argument('--notes', default=None)

    stats = sub.add_parser('stats', help="Position and flag statistics")
    stats.add_argument('--wallet', type=int, default=None)

    reconcile = sub.add_parser('reconcile', help="Compare ledger balances with on-chain balances")
    reconcile.add_argument('targets', help="JSON file listing wallet/token targets")
    return parser

async def run_command(args: argparse.Namespace, config: LedgerConfig) -> int:
    """Run one parsed command and return the process exit status."""
    db = DatabaseManager.from_config(config)
    try:
        await db.setup_database()
        if args.command == 'init-db':
            print(f"Database ready at {config.db_path}")
            return 0

        ledger = PositionLedger(db, config)

        if args.command == 'buy':
            position = await ledger.record_buy(
                args.wallet_id, args.token, args.amount, args.cost, trade_id=args.trade_id
            )
            _print_json(asdict(position))
        elif args.command == 'sell':
            result = await ledger.record_sell(
                args.wallet_id, args.token, args.amount, args.proceeds, trade_id=args.trade_id
            )
            _print_json({
                'position': asdict(result.position),
                'realized_pnl': result.realized_pnl,
                'cost_basis': result.cost_basis
            })
        elif args.command == 'position':
            position = await ledger.get_open_position(args.wallet_id, args.token)
            if position is None:
                print(f"No open position for wallet {args.wallet_id} {args.token}")
                return 1
            _print_json(asdict(position))
        elif args.command == 'flags':
            reviewer = FlagReviewer(db)
            flags = await reviewer.list_flags(
                wallet_id=args.wallet,
                resolved=False if args.unresolved else None,
                severity=args.severity,
                flag_type=args.flag_type
            )
            _print_json([asdict(flag) for flag in flags])
        elif args.command == 'resolve-flag':
            flag = await FlagReviewer(db).resolve_flag(args.flag_id, args.resolved_by, args.notes)
            _print_json(asdict(flag))
        elif args.command == 'stats':
            analytics = PositionAnalytics(db)
            _print_json({
                'positions': await analytics.position_summary(args.wallet),
                'unresolved_flags': await analytics.flag_summary()
            })
        elif args.command == 'reconcile':
            targets = load_targets(args.targets)
            async with SolanaRpcBalanceProvider(config.rpc_url) as provider:
                batch = await BalanceReconciler(ledger, provider).reconcile(targets)
            _print_json([asdict(check) for check in batch.results])
            if batch.failure_count or batch.mismatches:
                return 1
        return 0
    except DatabaseError as e:
        logger.error(f"{args.command} failed: {e}")
        print(f"Error: {e}", file=sys.stderr)
        return 1
    finally:
        await db.close()

def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point for the ``tradeledger`` command."""
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s"
    )

    try:
        config = LedgerConfig.from_env()
    except ValueError as e:
        print(f"Invalid configuration: {e}", file=sys.stderr)
        return 2
    if args.db:
        config.db_path = args.db

    try:
        return asyncio.run(run_command(args, config))
    except KeyboardInterrupt:
        logger.info("Interrupted")
        return 130
    except (OSError, ValueError, KeyError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

if __name__ == "__main__":
    sys.exit(main())
