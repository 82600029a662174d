"""
Solana JSON-RPC balance provider.

Fetches the on-chain balance of a wallet for one mint: native SOL via
``getBalance`` and SPL tokens by summing every token account the wallet owns
for that mint via ``getTokenAccountsByOwner``.
"""

import asyncio
import logging
from decimal import Decimal
from typing import Any, Dict, List, Optional

import aiohttp

from tradeledger.utils.env import get_env

logger = logging.getLogger(__name__)

SOL_MINT = "So11111111111111111111111111111111111111112"
LAMPORTS_PER_SOL = Decimal(1_000_000_000)

class BalanceProviderError(Exception):
    """Raised when an on-chain balance cannot be fetched."""
    pass

def parse_sol_balance(result: Dict[str, Any]) -> Decimal:
    """Convert a ``getBalance`` result (lamports) into SOL."""
    try:
        lamports = int(result["value"])
    except (KeyError, TypeError, ValueError) as e:
        raise BalanceProviderError(f"Malformed getBalance result: {result!r}") from e
    return Decimal(lamports) / LAMPORTS_PER_SOL

def sum_token_accounts(result: Dict[str, Any]) -> Decimal:
    """Sum the UI amounts of a ``getTokenAccountsByOwner`` result.

    A wallet may hold several accounts for the same mint. No accounts means
    a zero balance.
    """
    try:
        accounts: List[Dict[str, Any]] = result["value"]
        total = Decimal("0")
        for account in accounts:
            token_amount = account["account"]["data"]["parsed"]["info"]["tokenAmount"]
            # uiAmountString avoids the float in uiAmount
            ui_amount = token_amount.get("uiAmountString")
            if ui_amount is None:
                raw = Decimal(token_amount["amount"])
                ui_amount = raw.scaleb(-int(token_amount["decimals"]))
            total += Decimal(str(ui_amount))
        return total
    except (KeyError, TypeError, ValueError, ArithmeticError) as e:
        raise BalanceProviderError(f"Malformed getTokenAccountsByOwner result: {e}") from e

class SolanaRpcBalanceProvider:
    """Client for reading balances from a Solana RPC endpoint.

    Use as an async context manager so the HTTP session is closed::

        async with SolanaRpcBalanceProvider() as provider:
            balance = await provider.get_balance(address, mint)
    """

    def __init__(self, rpc_url: Optional[str] = None, timeout_seconds: float = 30.0):
        """Initialize the client.

        Args:
            rpc_url: RPC endpoint; falls back to ``SOLANA_RPC_URL``
            timeout_seconds: Total timeout of one request
        """
        self.rpc_url = rpc_url or get_env('SOLANA_RPC_URL', 'https://api.mainnet-beta.solana.com')
        self._timeout = aiohttp.ClientTimeout(total=timeout_seconds)
        self.session: Optional[aiohttp.ClientSession] = None
        self._request_id = 0

    async def __aenter__(self):
        """Create aiohttp session when entering context."""
        self.session = aiohttp.ClientSession(timeout=self._timeout)
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Close aiohttp session when exiting context."""
        if self.session:
            await self.session.close()
            self.session = None

    async def _rpc(self, method: str, params: list) -> Dict[str, Any]:
        """Make one JSON-RPC call and return its ``result``.

        Raises:
            BalanceProviderError: On HTTP failures and JSON-RPC errors
        """
        if not self.session:
            raise RuntimeError("RPC client not initialized. Use 'async with' context manager.")

        self._request_id += 1
        body = {"jsonrpc": "2.0", "id": self._request_id, "method": method, "params": params}
        try:
            async with self.session.post(self.rpc_url, json=body) as response:
                if response.status >= 400:
                    raise BalanceProviderError(
                        f"RPC {method} failed with HTTP {response.status}"
                    )
                data = await response.json()
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            logger.error(f"RPC {method} request failed: {str(e)}")
            raise BalanceProviderError(f"RPC {method} request failed: {str(e)}") from e

        if not isinstance(data, dict):
            raise BalanceProviderError(f"RPC {method} returned a malformed response: {data!r}")
        if "error" in data:
            error = data["error"]
            if isinstance(error, dict):
                raise BalanceProviderError(
                    f"RPC {method} returned error {error.get('code')}: {error.get('message')}"
                )
            raise BalanceProviderError(f"RPC {method} returned error: {error!r}")
        if "result" not in data:
            raise BalanceProviderError(f"RPC {method} returned no result")
        return data["result"]

    async def get_balance(self, address: str, mint: str) -> Decimal:
        """Get the on-chain balance of ``address`` for ``mint``.

        Args:
            address: Wallet public key
            mint: Token mint; the wrapped SOL mint means native SOL

        Returns:
            Decimal: Balance in token units
        """
        if mint == SOL_MINT:
            result = await self._rpc("getBalance", [address])
            return parse_sol_balance(result)

        result = await self._rpc(
            "getTokenAccountsByOwner",
            [address, {"mint": mint}, {"encoding": "jsonParsed"}]
        )
        return sum_token_accounts(result)
