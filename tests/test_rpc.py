"""JSON-RPC contract factory against a local fake node."""

from __future__ import annotations

from contextlib import asynccontextmanager

import pytest
from aiohttp import test_utils, web
from eth_abi import decode, encode

from cryptoformulas.analysis.analyzer import analyze_formula
from cryptoformulas.analysis.rpc import RpcContractFactory
from cryptoformulas.config import ERC20_TRANSFER_FROM_SIGNATURE, ERC721_INTERFACE_ID, PUSH4_OPCODE
from cryptoformulas.crypto.hash_algorithms import function_selector
from cryptoformulas.encoding import hex_to_bytes, to_hex
from cryptoformulas.errors import ErrorCode, SpecError
from cryptoformulas.formula import Formula
from cryptoformulas.test_accounts import ALICE, BOB, ERC20_TOKEN, ERC721_TOKEN, SETTLEMENT
from cryptoformulas.types import BlockStats, PresignState, TransactionStats

CODE = {
    ERC20_TOKEN: PUSH4_OPCODE + function_selector(ERC20_TRANSFER_FROM_SIGNATURE) + b"\x00",
    ERC721_TOKEN: b"\x60\x80",
    SETTLEMENT: b"\x60\x80",
}


def _call_result(to: bytes, data: bytes, overrides: dict) -> bytes:
    selector, args = data[:4], data[4:]
    if to == ERC20_TOKEN and selector == function_selector("balanceOf(address)"):
        return encode(["uint256"], [42])
    if to == ERC20_TOKEN and selector == function_selector("allowance(address,address)"):
        return encode(["uint256"], [0])
    if to == ERC721_TOKEN and selector == function_selector("supportsInterface(bytes4)"):
        (interface_id,) = decode(["bytes4"], args)
        return encode(["bool"], [interface_id == ERC721_INTERFACE_ID])
    if to == ERC721_TOKEN and selector == function_selector("ownerOf(uint256)"):
        return encode(["address"], [to_hex(BOB)])
    if to == SETTLEMENT and selector == function_selector("feePerOperation()"):
        return encode(["uint256"], [7])
    if to == SETTLEMENT and selector == function_selector("presignedFormulas(address,bytes32)"):
        return encode(["uint8"], [overrides.get("presign", 0)])
    return b""


async def _handle(request: web.Request, overrides: dict) -> web.Response:
    payload = await request.json()
    method, params = payload["method"], payload["params"]
    if method == "eth_getCode":
        result = to_hex(CODE.get(hex_to_bytes(params[0]), b""))
    elif method == "eth_call":
        call = params[0]
        result = to_hex(_call_result(hex_to_bytes(call["to"]), hex_to_bytes(call["data"]), overrides))
    elif method == "eth_getBalance":
        result = "0x10"
    elif method == "eth_getBlockByNumber":
        result = overrides.get("block", {"number": "0x3e8", "timestamp": "0x5f5e1000"})
    elif method == "eth_getLogs":
        result = overrides.get("logs", [])
    else:
        return web.json_response({"jsonrpc": "2.0", "id": payload["id"], "error": {"code": -32601, "message": "nope"}})
    return web.json_response({"jsonrpc": "2.0", "id": payload["id"], "result": result})


@asynccontextmanager
async def _node(**overrides):
    async def handle(request: web.Request) -> web.Response:
        return await _handle(request, overrides)

    app = web.Application()
    app.router.add_post("/", handle)
    server = test_utils.TestServer(app)
    await server.start_server()
    try:
        async with RpcContractFactory(str(server.make_url("/")), timeout=5) as factory:
            yield factory
    finally:
        await server.close()


@pytest.mark.asyncio
async def test_classification() -> None:
    async with _node() as factory:
        assert factory.is_web3_available()
        assert await factory.is_contract(ERC20_TOKEN)
        assert not await factory.is_contract(ALICE)
        assert await factory.is_erc20_contract(ERC20_TOKEN)
        assert not await factory.is_erc20_contract(ERC721_TOKEN)
        assert not await factory.is_erc20_contract(ALICE)
        assert await factory.is_erc721_contract(ERC721_TOKEN)
        assert not await factory.is_erc721_contract(ERC20_TOKEN)


@pytest.mark.asyncio
async def test_contract_reads() -> None:
    async with _node() as factory:
        erc20 = await factory.get_erc20_contract(ERC20_TOKEN)
        assert await erc20.balance_of(ALICE) == 42

        erc721 = await factory.get_erc721_contract(ERC721_TOKEN)
        assert await erc721.owner_of(1) == BOB

        settlement = await factory.get_settlement_contract(SETTLEMENT)
        assert await settlement.fee_per_operation() == 7

        assert await factory.get_ether_balance(ALICE) == 16
        assert await factory.get_current_block() == BlockStats(number=1000, timestamp=0x5F5E1000)
        assert await factory.get_execution_transaction(SETTLEMENT, b"\x00" * 32) is None


@pytest.mark.asyncio
async def test_failed_reads() -> None:
    async with _node() as factory:
        erc721 = await factory.get_erc721_contract(ERC721_TOKEN)
        with pytest.raises(SpecError) as exc_info:
            await erc721.get_approved(1)
        assert exc_info.value.code == ErrorCode.CHAIN_READ_FAILED

        with pytest.raises(SpecError) as exc_info:
            await factory.request("eth_unknown", [])
        assert exc_info.value.code == ErrorCode.CHAIN_READ_FAILED


@pytest.mark.asyncio
async def test_not_connected() -> None:
    factory = RpcContractFactory("http://127.0.0.1:1")
    assert not factory.is_web3_available()
    with pytest.raises(SpecError) as exc_info:
        await factory.request("eth_blockNumber", [])
    assert exc_info.value.code == ErrorCode.WEB3_UNAVAILABLE


@pytest.mark.asyncio
async def test_malformed_replies_become_read_failures() -> None:
    async with _node(presign=3, block={"timestamp": "0x5f5e1000"}, logs=[{"transactionHash": "0x01"}]) as factory:
        settlement = await factory.get_settlement_contract(SETTLEMENT)
        for read in (
            settlement.presigned_formulas(ALICE, b"\x00" * 32),
            factory.get_current_block(),
            factory.get_execution_transaction(SETTLEMENT, b"\x00" * 32),
        ):
            with pytest.raises(SpecError) as exc_info:
                await read
            assert exc_info.value.code == ErrorCode.CHAIN_READ_FAILED


@pytest.mark.asyncio
async def test_malformed_execution_event() -> None:
    logs = [{"blockNumber": "0x384", "transactionHash": "not hex"}]
    async with _node(logs=logs) as factory:
        with pytest.raises(SpecError) as exc_info:
            await factory.get_execution_transaction(SETTLEMENT, b"\x00" * 32)
        assert exc_info.value.code == ErrorCode.CHAIN_READ_FAILED


@pytest.mark.asyncio
async def test_execution_event_lookup() -> None:
    logs = [{"blockNumber": "0x384", "transactionHash": "0x" + "ab" * 32}]
    async with _node(logs=logs) as factory:
        stats = await factory.get_execution_transaction(SETTLEMENT, b"\x00" * 32)
    assert stats == TransactionStats(number=1000, timestamp=0x5F5E1000, transaction_hash=b"\xab" * 32)


@pytest.mark.asyncio
async def test_unknown_presign_state_keeps_report() -> None:
    formula = Formula(endpoints=[ALICE, BOB], operations=[(4, [0, 0])])
    async with _node(presign=3) as factory:
        analysis = await analyze_formula(formula, SETTLEMENT, factory)
    assert analysis.is_complete
    assert analysis.presignes == [PresignState.DEFAULT, PresignState.DEFAULT]
