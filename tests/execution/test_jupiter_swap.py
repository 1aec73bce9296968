import base64
import json
from unittest.mock import AsyncMock

import pytest
import respx
from httpx import Response
from solders.hash import Hash
from solders.keypair import Keypair
from solders.message import MessageV0
from solders.system_program import TransferParams, transfer
from solders.transaction import VersionedTransaction

from limit_engine.db.models import OrderType
from limit_engine.exceptions import (
    AmbiguousSwapError,
    SwapRejectedError,
    TerminalSwapError,
    TransientSwapError,
)
from limit_engine.execution.executor import SwapServiceProtocol, swap
from limit_engine.execution.jupiter_swap import JupiterSwapService
from limit_engine.execution.models import TxStatus
from limit_engine.feeds.base import TokenPair

RPC = "https://rpc.test"
JUP = "https://jup.test/v6"
MINT = "BonkMint1111111111111111111111111111111111"
PAIR = TokenPair(token=MINT)
OWNER = 42


@pytest.fixture
def mock_api():
    with respx.mock:
        yield respx


@pytest.fixture
def keypair():
    return Keypair()


def _unsigned_tx(kp: Keypair) -> str:
    msg = MessageV0.try_compile(
        kp.pubkey(),
        [transfer(TransferParams(from_pubkey=kp.pubkey(), to_pubkey=Keypair().pubkey(),
                                 lamports=1))],
        [],
        Hash.default(),
    )
    return base64.b64encode(bytes(VersionedTransaction(msg, [kp]))).decode()


def _rpc_router(results: dict):
    """RPC side effect answering by JSON-RPC method name."""

    def handler(request):
        body = json.loads(request.content)
        answer = results[body["method"]]
        if isinstance(answer, Response):
            return answer
        if isinstance(answer, dict) and "error" in answer:
            return Response(200, json={"jsonrpc": "2.0", "id": body["id"], **answer})
        return Response(200, json={"jsonrpc": "2.0", "id": body["id"], "result": answer})

    return handler


def _service(kp):
    return JupiterSwapService(keypair_resolver=AsyncMock(return_value=kp),
                              rpc_url=RPC, quote_api_url=JUP)


def test_service_satisfies_protocol(keypair):
    assert isinstance(_service(keypair), SwapServiceProtocol)


@pytest.mark.asyncio
async def test_prepare_buy_uses_exact_out_and_signs_locally(mock_api, keypair):
    quote_route = mock_api.get(f"{JUP}/quote").mock(return_value=Response(200, json={
        "inAmount": "9000000000", "outAmount": "1000000000", "priceImpactPct": "0.01",
    }))
    swap_route = mock_api.post(f"{JUP}/swap").mock(return_value=Response(200, json={
        "swapTransaction": _unsigned_tx(keypair), "lastValidBlockHeight": 123,
    }))
    mock_api.post(RPC).mock(side_effect=_rpc_router({
        "getTokenSupply": {"value": {"decimals": 6, "amount": "1", "uiAmount": 1}},
        "getBalance": {"value": 50_000_000_000},
    }))
    service = _service(keypair)

    prepared = await service.prepare_swap(OWNER, PAIR, 1000.0, OrderType.BUY, 50)
    await service.close()

    service.keypair_resolver.assert_awaited_once_with(OWNER)
    params = quote_route.calls.last.request.url.params
    assert params["swapMode"] == "ExactOut"
    assert params["outputMint"] == MINT
    assert params["amount"] == "1000000000"
    assert params["slippageBps"] == "50"
    body = json.loads(swap_route.calls.last.request.content)
    assert body["userPublicKey"] == str(keypair.pubkey())
    assert prepared.sol_amount == pytest.approx(9.0)
    assert prepared.expected_price == pytest.approx(0.009)
    assert prepared.last_valid_block_height == 123
    signed = VersionedTransaction.from_bytes(prepared.signed_tx)
    assert str(signed.signatures[0]) == prepared.signature


@pytest.mark.asyncio
async def test_prepare_sell_uses_exact_in_without_balance_check(mock_api, keypair):
    quote_route = mock_api.get(f"{JUP}/quote").mock(return_value=Response(200, json={
        "inAmount": "1000000000", "outAmount": "12000000000",
    }))
    mock_api.post(f"{JUP}/swap").mock(return_value=Response(200, json={
        "swapTransaction": _unsigned_tx(keypair),
    }))
    mock_api.post(RPC).mock(side_effect=_rpc_router({
        "getTokenSupply": {"value": {"decimals": 6}},
    }))
    service = _service(keypair)

    prepared = await service.prepare_swap(OWNER, PAIR, 1000.0, OrderType.SELL, 50)

    params = quote_route.calls.last.request.url.params
    assert params["swapMode"] == "ExactIn"
    assert params["inputMint"] == MINT
    assert prepared.sol_amount == pytest.approx(12.0)


@pytest.mark.asyncio
async def test_insufficient_sol_is_terminal(mock_api, keypair):
    mock_api.get(f"{JUP}/quote").mock(return_value=Response(200, json={
        "inAmount": "9000000000", "outAmount": "1000000000",
    }))
    mock_api.post(RPC).mock(side_effect=_rpc_router({
        "getTokenSupply": {"value": {"decimals": 6}},
        "getBalance": {"value": 1_000_000},
    }))
    with pytest.raises(TerminalSwapError):
        await _service(keypair).prepare_swap(OWNER, PAIR, 1000.0, OrderType.BUY, 50)


@pytest.mark.asyncio
async def test_no_route_is_terminal_and_5xx_transient(mock_api, keypair):
    mock_api.post(RPC).mock(side_effect=_rpc_router({
        "getTokenSupply": {"value": {"decimals": 6}},
    }))
    route = mock_api.get(f"{JUP}/quote")
    service = _service(keypair)

    route.mock(side_effect=lambda request: Response(
        400, json={"errorCode": "COULD_NOT_FIND_ANY_ROUTE"}))
    with pytest.raises(TerminalSwapError):
        await service.prepare_swap(OWNER, PAIR, 10.0, OrderType.SELL, 50)

    route.mock(side_effect=lambda request: Response(503, text="busy"))
    with pytest.raises(TransientSwapError):
        await service.prepare_swap(OWNER, PAIR, 10.0, OrderType.SELL, 50)


@pytest.mark.asyncio
async def test_owner_without_wallet_is_terminal_before_any_request(mock_api):
    service = JupiterSwapService(
        keypair_resolver=AsyncMock(side_effect=TerminalSwapError("no wallet for user 42")),
        rpc_url=RPC, quote_api_url=JUP)

    with pytest.raises(TerminalSwapError):
        await service.prepare_swap(OWNER, PAIR, 10.0, OrderType.BUY, 50)
    assert not mock_api.calls


@pytest.mark.asyncio
async def test_unknown_mint_is_terminal(mock_api, keypair):
    mock_api.post(RPC).mock(side_effect=_rpc_router({
        "getTokenSupply": {"error": {"code": -32602, "message": "Invalid param: not a Token mint"}},
    }))
    with pytest.raises(TerminalSwapError):
        await _service(keypair).prepare_swap(OWNER, PAIR, 10.0, OrderType.SELL, 50)


@pytest.mark.asyncio
async def test_submit_error_mapping(mock_api, keypair):
    from limit_engine.execution.models import PreparedSwap

    prepared = PreparedSwap(pair=PAIR, side=OrderType.BUY, amount=1.0, sol_amount=0.01,
                            signature="sig-abc", signed_tx=b"\x01\x02")
    route = mock_api.post(RPC)
    service = _service(keypair)

    route.mock(side_effect=_rpc_router({"sendTransaction": "sig-abc"}))
    assert await service.submit(prepared) == "sig-abc"

    route.mock(side_effect=_rpc_router({"sendTransaction": {"error": {
        "code": -32002, "message": "Transaction simulation failed: Blockhash not found"}}}))
    with pytest.raises(SwapRejectedError):
        await service.submit(prepared)

    route.mock(side_effect=_rpc_router({"sendTransaction": {"error": {
        "code": -32002,
        "message": "Transaction simulation failed: Error processing Instruction 0",
        "data": {"logs": ["Transfer: insufficient lamports 5, need 10"]}}}}))
    with pytest.raises(TerminalSwapError):
        await service.submit(prepared)

    route.mock(side_effect=lambda request: Response(502, text="bad gateway"))
    with pytest.raises(AmbiguousSwapError) as exc_info:
        await service.submit(prepared)
    assert exc_info.value.signature == "sig-abc"


@pytest.mark.asyncio
@pytest.mark.parametrize("value,expected", [
    (None, TxStatus.UNKNOWN),
    ({"err": None, "confirmationStatus": "confirmed"}, TxStatus.CONFIRMED),
    ({"err": None, "confirmationStatus": "finalized"}, TxStatus.CONFIRMED),
    ({"err": None, "confirmationStatus": "processed"}, TxStatus.UNKNOWN),
    ({"err": {"InstructionError": [0, "Custom"]}, "confirmationStatus": "confirmed"},
     TxStatus.FAILED),
])
async def test_transaction_status(mock_api, keypair, value, expected):
    route = mock_api.post(RPC).mock(side_effect=_rpc_router({
        "getSignatureStatuses": {"context": {"slot": 1}, "value": [value]},
    }))
    assert await _service(keypair).get_transaction_status("sig") is expected
    params = json.loads(route.calls.last.request.content)["params"]
    assert params[1] == {"searchTransactionHistory": True}


@pytest.mark.asyncio
async def test_swap_helper_prepares_then_submits():
    from conftest import prepared_for

    service = AsyncMock()
    service.prepare_swap.return_value = prepared_for(PAIR, 100.0, OrderType.SELL, 0.02, "sig-9")
    service.submit.return_value = "sig-9"

    receipt = await swap(service, OWNER, PAIR, 100.0, OrderType.SELL, 50)

    assert receipt.signature == "sig-9"
    assert receipt.sol_amount == pytest.approx(2.0)
    service.prepare_swap.assert_awaited_once_with(OWNER, PAIR, 100.0, OrderType.SELL, 50)
