"""
SQL schema definitions for the trade ledger database.

Database Design Overview
-----------------------
The ledger owns two collections, positions and position flags, plus the
balance check log written by the reconciliation job. Downstream readers
(analytics, dashboards) only ever read these tables.

Core Tables
----------
1. Positions Table (positions):
   - One row per wallet, token and open-to-closed lifecycle
   - Cumulative entry amount/cost, average entry price
   - Remaining amount, cumulative exit amount/proceeds, realized P&L
   - Status transitions: OPEN -> PARTIAL -> CLOSED
   - Example: wallet 1 buys 100 SOL for 1000 USDC, avg_entry_price=10

2. Position Flags Table (position_flags):
   - Anomalies detected while recording trades, kept for human review
   - Optional links to the position and the external trade
   - Only the resolution columns may change after insert

3. Balance Checks Table (balance_checks):
   - Ledger balance vs on-chain balance for one wallet/token
   - Discrepancy and mismatch classification

Numeric Storage
--------------
SQLite has no fixed-point type, so every amount is stored as canonical TEXT
with 9 fractional digits (e.g. '10.666666667') and parsed back into Decimal.

Uniqueness
---------
A partial unique index allows at most one OPEN or PARTIAL position per
wallet/token pair while any number of CLOSED rows may accumulate. Two writers
can therefore never both hold an open position for the same pair.

Immutability
-----------
Triggers abort any update of a CLOSED position and any update of a flag's
descriptive columns, so history can only be appended to.
"""

POSITION_STATUSES = ("OPEN", "PARTIAL", "CLOSED")
FLAG_SEVERITIES = ("info", "warning", "critical")
FLAG_TYPES = (
    "sell_without_position",
    "sell_exceeds_position",
    "suspicious_pnl",
    "oversized_position",
    "balance_mismatch",
)

def _sql_list(values) -> str:
    return ", ".join(f"'{v}'" for v in values)

CREATE_POSITIONS_TABLE = f"""
CREATE TABLE IF NOT EXISTS positions (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    wallet_id INTEGER NOT NULL,
    token TEXT NOT NULL,
    status TEXT NOT NULL DEFAULT 'OPEN',
    entry_trade_id INTEGER,                 -- External trade that opened the position
    entry_timestamp TIMESTAMP NOT NULL,
    total_entry_amount TEXT NOT NULL,       -- Total tokens bought
    total_entry_cost TEXT NOT NULL,         -- Total cost in quote currency
    avg_entry_price TEXT NOT NULL,          -- total_entry_cost / total_entry_amount
    current_amount TEXT NOT NULL,           -- Remaining tokens
    total_exit_amount TEXT NOT NULL DEFAULT '0.000000000',
    total_exit_proceeds TEXT NOT NULL DEFAULT '0.000000000',
    realized_pnl TEXT NOT NULL DEFAULT '0.000000000',
    first_entry_at TIMESTAMP NOT NULL,
    last_exit_at TIMESTAMP DEFAULT NULL,
    closed_at TIMESTAMP DEFAULT NULL,
    created_at TIMESTAMP NOT NULL,
    updated_at TIMESTAMP NOT NULL,
    CONSTRAINT status_check CHECK (status IN ({_sql_list(POSITION_STATUSES)})),
    CONSTRAINT closed_check CHECK (
        (status != 'CLOSED' AND closed_at IS NULL) OR
        (status = 'CLOSED' AND closed_at IS NOT NULL)
    )
)
"""

CREATE_POSITION_INDEXES = [
    # At most one OPEN/PARTIAL position per wallet and token
    """
    CREATE UNIQUE INDEX IF NOT EXISTS uq_positions_wallet_token_active
    ON positions(wallet_id, token)
    WHERE status IN ('OPEN', 'PARTIAL')
    """,
    "CREATE INDEX IF NOT EXISTS idx_positions_wallet_id ON positions(wallet_id)",
    "CREATE INDEX IF NOT EXISTS idx_positions_status ON positions(status)",
    "CREATE INDEX IF NOT EXISTS idx_positions_token ON positions(token)",
]

CREATE_POSITION_TRIGGERS = [
    """
    CREATE TRIGGER IF NOT EXISTS trg_positions_closed_immutable
    BEFORE UPDATE ON positions
    WHEN OLD.status = 'CLOSED'
    BEGIN
        SELECT RAISE(ABORT, 'closed positions are immutable');
    END
    """,
]

CREATE_POSITION_FLAGS_TABLE = f"""
CREATE TABLE IF NOT EXISTS position_flags (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    position_id INTEGER REFERENCES positions(id),
    trade_id INTEGER,
    wallet_id INTEGER NOT NULL,
    flag_type TEXT NOT NULL,
    severity TEXT NOT NULL DEFAULT 'warning',
    description TEXT NOT NULL,
    resolved BOOLEAN NOT NULL DEFAULT 0,
    resolved_at TIMESTAMP DEFAULT NULL,
    resolved_by TEXT DEFAULT NULL,
    resolution_notes TEXT DEFAULT NULL,
    created_at TIMESTAMP NOT NULL,
    CONSTRAINT flag_type_check CHECK (flag_type IN ({_sql_list(FLAG_TYPES)})),
    CONSTRAINT severity_check CHECK (severity IN ({_sql_list(FLAG_SEVERITIES)}))
)
"""

CREATE_POSITION_FLAG_INDEXES = [
    "CREATE INDEX IF NOT EXISTS idx_position_flags_wallet_id ON position_flags(wallet_id)",
    "CREATE INDEX IF NOT EXISTS idx_position_flags_resolved ON position_flags(resolved)",
    "CREATE INDEX IF NOT EXISTS idx_position_flags_severity ON position_flags(severity)",
]

CREATE_POSITION_FLAG_TRIGGERS = [
    """
    CREATE TRIGGER IF NOT EXISTS trg_position_flags_immutable
    BEFORE UPDATE ON position_flags
    WHEN NEW.position_id IS NOT OLD.position_id
      OR NEW.trade_id IS NOT OLD.trade_id
      OR NEW.wallet_id IS NOT OLD.wallet_id
      OR NEW.flag_type IS NOT OLD.flag_type
      OR NEW.severity IS NOT OLD.severity
      OR NEW.description IS NOT OLD.description
      OR NEW.created_at IS NOT OLD.created_at
    BEGIN
        SELECT RAISE(ABORT, 'only flag resolution fields may be updated');
    END
    """,
]

CREATE_BALANCE_CHECKS_TABLE = """
CREATE TABLE IF NOT EXISTS balance_checks (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    wallet_id INTEGER NOT NULL,
    token TEXT NOT NULL,
    db_balance TEXT NOT NULL,            -- Remaining amount according to the ledger
    onchain_balance TEXT NOT NULL,       -- Balance reported by the chain
    discrepancy TEXT NOT NULL,           -- onchain - db
    discrepancy_pct TEXT DEFAULT NULL,   -- NULL when the ledger balance is zero
    is_mismatch BOOLEAN NOT NULL DEFAULT 0,
    check_timestamp TIMESTAMP NOT NULL
)
"""

CREATE_BALANCE_CHECK_INDEXES = [
    "CREATE INDEX IF NOT EXISTS idx_balance_checks_wallet_id ON balance_checks(wallet_id)",
    "CREATE INDEX IF NOT EXISTS idx_balance_checks_timestamp ON balance_checks(check_timestamp)",
    "CREATE INDEX IF NOT EXISTS idx_balance_checks_mismatch ON balance_checks(is_mismatch)",
]

ALL_SCHEMA_STATEMENTS = (
    [CREATE_POSITIONS_TABLE]
    + CREATE_POSITION_INDEXES
    + CREATE_POSITION_TRIGGERS
    + [CREATE_POSITION_FLAGS_TABLE]
    + CREATE_POSITION_FLAG_INDEXES
    + CREATE_POSITION_FLAG_TRIGGERS
    + [CREATE_BALANCE_CHECKS_TABLE]
    + CREATE_BALANCE_CHECK_INDEXES
)
