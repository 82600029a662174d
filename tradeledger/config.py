"""
Runtime configuration for the trade ledger.
"""

from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Callable

from tradeledger.utils.env import get_env

def _env_value(key: str, default, parse: Callable):
    raw = get_env(key)
    if raw is None or raw == "":
        return default
    try:
        return parse(raw)
    except (InvalidOperation, ValueError) as e:
        raise ValueError(f"Invalid value for {key}: {raw!r}") from e

@dataclass
class LedgerConfig:
    """Configuration for storage and anomaly thresholds."""
    # Storage
    db_path: str = "trade_ledger.db"
    max_connections: int = 5
    busy_timeout_ms: int = 60000

    # Anomaly thresholds
    large_position_threshold: Decimal = Decimal("50000")  # quote currency units
    suspicious_pnl_ratio: Decimal = Decimal("1.1")        # proceeds / cost basis

    # Reconciliation
    balance_discrepancy_threshold: Decimal = Decimal("0.01")  # tokens
    rpc_url: str = "https://api.mainnet-beta.solana.com"

    def __post_init__(self):
        self.large_position_threshold = Decimal(str(self.large_position_threshold))
        self.suspicious_pnl_ratio = Decimal(str(self.suspicious_pnl_ratio))
        self.balance_discrepancy_threshold = Decimal(str(self.balance_discrepancy_threshold))
        for name in ("large_position_threshold", "suspicious_pnl_ratio", "balance_discrepancy_threshold"):
            if not getattr(self, name).is_finite():
                raise ValueError(f"{name} must be finite")
        if self.large_position_threshold < 0:
            raise ValueError("large_position_threshold cannot be negative")
        if self.suspicious_pnl_ratio < 1:
            raise ValueError("suspicious_pnl_ratio must be at least 1")
        if self.balance_discrepancy_threshold < 0:
            raise ValueError("balance_discrepancy_threshold cannot be negative")

    @classmethod
    def from_env(cls) -> "LedgerConfig":
        """Build a configuration from environment variables and ``.env``."""
        defaults = cls()
        return cls(
            db_path=_env_value("LEDGER_DB_PATH", defaults.db_path, str),
            max_connections=_env_value("LEDGER_MAX_CONNECTIONS", defaults.max_connections, int),
            busy_timeout_ms=_env_value("LEDGER_BUSY_TIMEOUT_MS", defaults.busy_timeout_ms, int),
            large_position_threshold=_env_value(
                "LEDGER_LARGE_POSITION_THRESHOLD", defaults.large_position_threshold, Decimal
            ),
            suspicious_pnl_ratio=_env_value(
                "LEDGER_SUSPICIOUS_PNL_RATIO", defaults.suspicious_pnl_ratio, Decimal
            ),
            balance_discrepancy_threshold=_env_value(
                "LEDGER_BALANCE_DISCREPANCY_THRESHOLD",
                defaults.balance_discrepancy_threshold,
                Decimal
            ),
            rpc_url=_env_value("SOLANA_RPC_URL", defaults.rpc_url, str),
        )
