"""
Ledger vs on-chain balance reconciliation.
"""

from .balance import BalanceReconciler, BalanceTarget, BalanceCheck, BatchBalanceResult
from .rpc import SolanaRpcBalanceProvider, BalanceProviderError, SOL_MINT

__all__ = [
    'BalanceReconciler',
    'BalanceTarget',
    'BalanceCheck',
    'BatchBalanceResult',
    'SolanaRpcBalanceProvider',
    'BalanceProviderError',
    'SOL_MINT'
]
