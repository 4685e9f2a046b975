"""Ethereum JSON-RPC backed contract factory.

Speaks plain JSON-RPC over HTTP (aiohttp) and encodes call data with eth_abi,
so only a node URL is needed: no ABI files and no web3 provider objects.
"""

from __future__ import annotations

import asyncio
import itertools
import logging
import secrets
from typing import Any, Optional, Sequence

import aiohttp
from eth_abi import decode, encode

from ..config import (
    DEFAULT_RPC_TIMEOUT,
    ERC20_TRANSFER_FROM_SIGNATURE,
    ERC721_DRAFT_INTERFACE_ID,
    ERC721_INTERFACE_ID,
    FORMULA_EXECUTED_EVENT,
    PUSH4_OPCODE,
)
from ..crypto.hash_algorithms import event_topic, function_selector
from ..encoding import hex_to_bytes, to_hex
from ..errors import ErrorCode, SpecError
from ..types import BlockStats, PresignState, TransactionStats
from .contract_factory import ContractFactory, Erc20Contract, Erc721Contract, SettlementContract

logger = logging.getLogger(__name__)


def _quantity(value: Any, what: str) -> int:
    try:
        return int(value, 16)
    except (TypeError, ValueError) as exc:
        raise SpecError(ErrorCode.CHAIN_READ_FAILED, f"{what} is not a hex quantity: {value!r}") from exc


def _field(obj: Any, key: Any, what: str) -> Any:
    try:
        return obj[key]
    except (KeyError, TypeError, IndexError) as exc:
        raise SpecError(ErrorCode.CHAIN_READ_FAILED, f"{what} has no {key}") from exc


def _address(value: Any) -> bytes:
    # eth_abi returns checksummed strings
    return bytes.fromhex(value[2:]) if isinstance(value, str) else bytes(value)


class _Handle:
    def __init__(self, factory: "RpcContractFactory", address: bytes):
        self.factory = factory
        self.address = address

    async def _call(self, signature: str, arg_types: Sequence[str], args: Sequence[Any], return_types: Sequence[str]):
        return await self.factory.call(self.address, signature, arg_types, args, return_types)


class RpcSettlementContract(_Handle, SettlementContract):
    async def ether_balances(self, owner: bytes) -> int:
        (value,) = await self._call("etherBalances(address)", ["address"], [to_hex(owner)], ["uint256"])
        return value

    async def fee_per_operation(self) -> int:
        (value,) = await self._call("feePerOperation()", [], [], ["uint256"])
        return value

    async def executed_formulas(self, message_hash: bytes) -> bool:
        (value,) = await self._call("executedFormulas(bytes32)", ["bytes32"], [message_hash], ["bool"])
        return value

    async def presigned_formulas(self, owner: bytes, message_hash: bytes) -> PresignState:
        (value,) = await self._call(
            "presignedFormulas(address,bytes32)", ["address", "bytes32"], [to_hex(owner), message_hash], ["uint8"]
        )
        try:
            return PresignState(value)
        except ValueError as exc:
            raise SpecError(ErrorCode.CHAIN_READ_FAILED, f"presignedFormulas returned unknown state {value}") from exc


class RpcErc20Contract(_Handle, Erc20Contract):
    async def balance_of(self, owner: bytes) -> int:
        (value,) = await self._call("balanceOf(address)", ["address"], [to_hex(owner)], ["uint256"])
        return value

    async def allowance(self, owner: bytes, spender: bytes) -> int:
        (value,) = await self._call(
            "allowance(address,address)", ["address", "address"], [to_hex(owner), to_hex(spender)], ["uint256"]
        )
        return value


class RpcErc721Contract(_Handle, Erc721Contract):
    async def owner_of(self, token_id: int) -> bytes:
        (value,) = await self._call("ownerOf(uint256)", ["uint256"], [token_id], ["address"])
        return _address(value)

    async def get_approved(self, token_id: int) -> bytes:
        (value,) = await self._call("getApproved(uint256)", ["uint256"], [token_id], ["address"])
        return _address(value)

    async def is_approved_for_all(self, owner: bytes, operator: bytes) -> bool:
        (value,) = await self._call(
            "isApprovedForAll(address,address)", ["address", "address"], [to_hex(owner), to_hex(operator)], ["bool"]
        )
        return value

    async def legacy_approved(self, method: str, token_id: int) -> bytes:
        (value,) = await self._call(f"{method}(uint256)", ["uint256"], [token_id], ["address"])
        return _address(value)


class RpcContractFactory(ContractFactory):
    """Contract factory talking to an Ethereum node.

    Use as an async context manager, or call `connect()` / `close()`.
    """

    def __init__(self, rpc_url: str, timeout: float = DEFAULT_RPC_TIMEOUT):
        self.rpc_url = rpc_url
        self.timeout = timeout
        self.session: Optional[aiohttp.ClientSession] = None
        self._ids = itertools.count(1)

    async def connect(self) -> None:
        """Initialize HTTP session."""
        timeout = aiohttp.ClientTimeout(total=self.timeout)
        self.session = aiohttp.ClientSession(timeout=timeout)

    async def close(self) -> None:
        if self.session:
            await self.session.close()
            self.session = None

    async def __aenter__(self) -> "RpcContractFactory":
        await self.connect()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    # --- Transport ---

    async def request(self, method: str, params: list) -> Any:
        """Send one JSON-RPC request; any failure becomes CHAIN_READ_FAILED."""
        if self.session is None:
            raise SpecError(ErrorCode.WEB3_UNAVAILABLE, "RPC session is not connected")
        payload = {"jsonrpc": "2.0", "id": next(self._ids), "method": method, "params": params}
        try:
            async with self.session.post(self.rpc_url, json=payload) as resp:
                data = await resp.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as exc:
            raise SpecError(ErrorCode.CHAIN_READ_FAILED, f"{method} failed: {exc}") from exc
        if not isinstance(data, dict) or data.get("error") is not None:
            error = data.get("error") if isinstance(data, dict) else data
            raise SpecError(ErrorCode.CHAIN_READ_FAILED, f"{method} failed: {error}")
        return data.get("result")

    async def call(
        self,
        address: bytes,
        signature: str,
        arg_types: Sequence[str],
        args: Sequence[Any],
        return_types: Sequence[str],
    ) -> tuple:
        data = function_selector(signature) + encode(list(arg_types), list(args))
        result = await self.request("eth_call", [{"to": to_hex(address), "data": to_hex(data)}, "latest"])
        raw = hex_to_bytes(result or "0x")
        if not raw:
            raise SpecError(ErrorCode.CHAIN_READ_FAILED, f"{signature} returned no data")
        try:
            return decode(list(return_types), raw)
        except Exception as exc:  # eth_abi decoding errors share no common base below Exception
            raise SpecError(ErrorCode.CHAIN_READ_FAILED, f"{signature} returned malformed data") from exc

    async def get_code(self, address: bytes) -> bytes:
        return hex_to_bytes(await self.request("eth_getCode", [to_hex(address), "latest"]) or "0x")

    # --- ContractFactory ---

    def is_web3_available(self) -> bool:
        return self.session is not None

    async def is_contract(self, address: bytes) -> bool:
        try:
            return len(await self.get_code(address)) > 0
        except SpecError as exc:
            logger.debug("isContract probe failed for %s: %s", to_hex(address), exc)
            return False

    async def is_erc20_contract(self, address: bytes) -> bool:
        """ERC20 has no ERC165 id: probe the views and look for `transferFrom` in the bytecode."""
        try:
            code = await self.get_code(address)
            if not code:
                return False
            token = RpcErc20Contract(self, address)
            holder, spender = secrets.token_bytes(20), secrets.token_bytes(20)
            await token.allowance(holder, spender)
            await token.balance_of(holder)
        except SpecError as exc:
            logger.debug("isErc20Contract probe failed for %s: %s", to_hex(address), exc)
            return False
        return PUSH4_OPCODE + function_selector(ERC20_TRANSFER_FROM_SIGNATURE) in code

    async def is_erc721_contract(self, address: bytes) -> bool:
        for interface_id in (ERC721_INTERFACE_ID, ERC721_DRAFT_INTERFACE_ID):
            try:
                (supported,) = await self.call(
                    address, "supportsInterface(bytes4)", ["bytes4"], [interface_id], ["bool"]
                )
            except SpecError as exc:
                logger.debug("supportsInterface(%s) failed for %s: %s", interface_id.hex(), to_hex(address), exc)
                continue
            if supported:
                return True
        return False

    async def get_settlement_contract(self, address: bytes) -> SettlementContract:
        return RpcSettlementContract(self, address)

    async def get_erc20_contract(self, address: bytes) -> Erc20Contract:
        return RpcErc20Contract(self, address)

    async def get_erc721_contract(self, address: bytes) -> Erc721Contract:
        return RpcErc721Contract(self, address)

    async def get_ether_balance(self, address: bytes) -> int:
        return _quantity(await self.request("eth_getBalance", [to_hex(address), "latest"]) or "0x0", "balance")

    async def _block_stats(self, tag: Any) -> BlockStats:
        block = await self.request("eth_getBlockByNumber", [tag, False])
        if not block:
            raise SpecError(ErrorCode.CHAIN_READ_FAILED, f"block {tag} unavailable")
        return BlockStats(
            number=_quantity(_field(block, "number", "block"), "block number"),
            timestamp=_quantity(_field(block, "timestamp", "block"), "block timestamp"),
        )

    async def get_current_block(self) -> BlockStats:
        return await self._block_stats("latest")

    async def get_execution_transaction(
        self, settlement: bytes, message_hash: bytes
    ) -> Optional[TransactionStats]:
        logs = await self.request(
            "eth_getLogs",
            [
                {
                    "address": to_hex(settlement),
                    "fromBlock": "earliest",
                    "toBlock": "latest",
                    "topics": [to_hex(event_topic(FORMULA_EXECUTED_EVENT)), to_hex(message_hash)],
                }
            ],
        )
        if not logs:
            return None
        event = _field(logs, 0, "eth_getLogs result")
        block = await self._block_stats(_field(event, "blockNumber", "execution event"))
        try:
            transaction_hash = hex_to_bytes(_field(event, "transactionHash", "execution event"))
        except SpecError as exc:
            raise SpecError(ErrorCode.CHAIN_READ_FAILED, f"execution event: {exc.message}") from exc
        return TransactionStats(number=block.number, timestamp=block.timestamp, transaction_hash=transaction_hash)
