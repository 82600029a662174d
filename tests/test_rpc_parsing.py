"""
Tests for the Solana RPC balance provider.

Response parsing is tested directly; the HTTP client runs against a local
aiohttp test server standing in for the RPC endpoint.
"""

from decimal import Decimal
from types import SimpleNamespace

import pytest
import pytest_asyncio
from aiohttp import test_utils, web

from tradeledger.reconciliation.rpc import (
    SOL_MINT,
    BalanceProviderError,
    SolanaRpcBalanceProvider,
    parse_sol_balance,
    sum_token_accounts
)

USDC_MINT = "EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v"

def token_account(ui_amount_string=None, amount="0", decimals=6):
    token_amount = {"amount": amount, "decimals": decimals}
    if ui_amount_string is not None:
        token_amount["uiAmountString"] = ui_amount_string
    return {"account": {"data": {"parsed": {"info": {"tokenAmount": token_amount}}}}}

def test_parse_sol_balance():
    assert parse_sol_balance({"context": {"slot": 1}, "value": 1_500_000_000}) == Decimal("1.5")
    assert parse_sol_balance({"value": 0}) == Decimal("0")

def test_parse_sol_balance_malformed():
    with pytest.raises(BalanceProviderError):
        parse_sol_balance({"context": {}})

def test_sum_token_accounts():
    result = {"value": [token_account("12.5"), token_account("0.000001")]}
    assert sum_token_accounts(result) == Decimal("12.500001")

def test_sum_token_accounts_falls_back_to_raw_amount():
    result = {"value": [token_account(None, amount="2500000", decimals=6)]}
    assert sum_token_accounts(result) == Decimal("2.5")

def test_sum_token_accounts_empty():
    assert sum_token_accounts({"value": []}) == Decimal("0")

def test_sum_token_accounts_malformed():
    with pytest.raises(BalanceProviderError):
        sum_token_accounts({"value": [{"account": {}}]})

@pytest_asyncio.fixture
async def rpc_server():
    """Local JSON-RPC endpoint with canned responses."""
    requests = []

    async def handler(request):
        body = await request.json()
        requests.append(body)
        method = body["method"]
        if method == "getBalance":
            address = body["params"][0]
            if address == "broken":
                return web.json_response(
                    {"jsonrpc": "2.0", "id": body["id"],
                     "error": {"code": -32602, "message": "Invalid param: WrongSize"}}
                )
            if address == "garbled":
                return web.json_response({"jsonrpc": "2.0", "id": body["id"], "error": "node is behind"})
            if address == "not-an-object":
                return web.json_response(["unexpected"])
            if address == "down":
                return web.Response(status=503, text="unavailable")
            return web.json_response(
                {"jsonrpc": "2.0", "id": body["id"],
                 "result": {"context": {"slot": 1}, "value": 2_000_000_000}}
            )
        if method == "getTokenAccountsByOwner":
            return web.json_response(
                {"jsonrpc": "2.0", "id": body["id"],
                 "result": {"context": {"slot": 1},
                            "value": [token_account("7.25"), token_account("0.75")]}}
            )
        return web.json_response(
            {"jsonrpc": "2.0", "id": body["id"], "error": {"code": -32601, "message": "Method not found"}}
        )

    app = web.Application()
    app.router.add_post("/", handler)
    server = test_utils.TestServer(app)
    await server.start_server()
    try:
        yield SimpleNamespace(url=str(server.make_url("/")), requests=requests)
    finally:
        await server.close()

@pytest.mark.asyncio
async def test_native_sol_balance(rpc_server):
    async with SolanaRpcBalanceProvider(rpc_server.url) as provider:
        balance = await provider.get_balance("wallet-1", SOL_MINT)

    assert balance == Decimal("2")
    assert rpc_server.requests[0]["method"] == "getBalance"
    assert rpc_server.requests[0]["params"] == ["wallet-1"]

@pytest.mark.asyncio
async def test_spl_token_balance(rpc_server):
    async with SolanaRpcBalanceProvider(rpc_server.url) as provider:
        balance = await provider.get_balance("wallet-1", USDC_MINT)

    assert balance == Decimal("8")
    request = rpc_server.requests[0]
    assert request["method"] == "getTokenAccountsByOwner"
    assert request["params"] == ["wallet-1", {"mint": USDC_MINT}, {"encoding": "jsonParsed"}]

@pytest.mark.asyncio
async def test_rpc_error_object(rpc_server):
    async with SolanaRpcBalanceProvider(rpc_server.url) as provider:
        with pytest.raises(BalanceProviderError, match="-32602"):
            await provider.get_balance("broken", SOL_MINT)

@pytest.mark.asyncio
async def test_http_error(rpc_server):
    async with SolanaRpcBalanceProvider(rpc_server.url) as provider:
        with pytest.raises(BalanceProviderError, match="HTTP 503"):
            await provider.get_balance("down", SOL_MINT)

@pytest.mark.asyncio
async def test_unreachable_endpoint():
    async with SolanaRpcBalanceProvider("http://127.0.0.1:1/", timeout_seconds=2) as provider:
        with pytest.raises(BalanceProviderError):
            await provider.get_balance("wallet-1", SOL_MINT)

@pytest.mark.asyncio
async def test_requires_context_manager():
    provider = SolanaRpcBalanceProvider("http://127.0.0.1:1/")
    with pytest.raises(RuntimeError):
        await provider.get_balance("wallet-1", SOL_MINT)

@pytest.mark.asyncio
@pytest.mark.parametrize("address,message", [
    ("garbled", "node is behind"),
    ("not-an-object", "malformed response"),
])
async def test_malformed_rpc_response(rpc_server, address, message):
    async with SolanaRpcBalanceProvider(rpc_server.url) as provider:
        with pytest.raises(BalanceProviderError, match=message):
            await provider.get_balance(address, SOL_MINT)

def test_parse_sol_balance_non_integer():
    with pytest.raises(BalanceProviderError):
        parse_sol_balance({"value": "lots"})
