"""Chain access used by the analyzer.

`ContractFactory` is the collaborator boundary: it answers "is this address a
contract / ERC20 / ERC721" and hands out contract handles whose read methods
are coroutines. Implementations raise `SpecError(CHAIN_READ_FAILED)` for any
failed read; classification probes never raise and answer False instead.
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Awaitable, Optional, TypeVar

from ..errors import ErrorCode, SpecError
from ..types import BlockStats, PresignState, TransactionStats

logger = logging.getLogger(__name__)

T = TypeVar("T")


class SettlementContract(ABC):
    """The Crypto Formulas settlement contract."""

    address: bytes

    @abstractmethod
    async def ether_balances(self, owner: bytes) -> int: ...

    @abstractmethod
    async def fee_per_operation(self) -> int: ...

    @abstractmethod
    async def executed_formulas(self, message_hash: bytes) -> bool: ...

    @abstractmethod
    async def presigned_formulas(self, owner: bytes, message_hash: bytes) -> PresignState: ...


class Erc20Contract(ABC):
    address: bytes

    @abstractmethod
    async def balance_of(self, owner: bytes) -> int: ...

    @abstractmethod
    async def allowance(self, owner: bytes, spender: bytes) -> int: ...


class Erc721Contract(ABC):
    address: bytes

    @abstractmethod
    async def owner_of(self, token_id: int) -> bytes: ...

    @abstractmethod
    async def get_approved(self, token_id: int) -> bytes: ...

    @abstractmethod
    async def is_approved_for_all(self, owner: bytes, operator: bytes) -> bool: ...

    @abstractmethod
    async def legacy_approved(self, method: str, token_id: int) -> bytes:
        """Call a pre-standard `method(uint256) returns (address)` approval view."""


class ContractFactory(ABC):
    @abstractmethod
    def is_web3_available(self) -> bool: ...

    @abstractmethod
    async def is_contract(self, address: bytes) -> bool: ...

    @abstractmethod
    async def is_erc20_contract(self, address: bytes) -> bool: ...

    @abstractmethod
    async def is_erc721_contract(self, address: bytes) -> bool: ...

    @abstractmethod
    async def get_settlement_contract(self, address: bytes) -> SettlementContract: ...

    @abstractmethod
    async def get_erc20_contract(self, address: bytes) -> Erc20Contract: ...

    @abstractmethod
    async def get_erc721_contract(self, address: bytes) -> Erc721Contract: ...

    @abstractmethod
    async def get_ether_balance(self, address: bytes) -> int:
        """Wallet (external) ether balance of `address`."""

    @abstractmethod
    async def get_current_block(self) -> BlockStats: ...

    @abstractmethod
    async def get_execution_transaction(
        self, settlement: bytes, message_hash: bytes
    ) -> Optional[TransactionStats]:
        """Transaction in which the Formula was executed, None if not found."""


class NullContractFactory(ContractFactory):
    """Factory for static-only analysis: no chain is reachable."""

    def is_web3_available(self) -> bool:
        return False

    async def is_contract(self, address: bytes) -> bool:
        return False

    async def is_erc20_contract(self, address: bytes) -> bool:
        return False

    async def is_erc721_contract(self, address: bytes) -> bool:
        return False

    async def get_settlement_contract(self, address: bytes) -> SettlementContract:
        raise SpecError(ErrorCode.WEB3_UNAVAILABLE, "no chain connection")

    async def get_erc20_contract(self, address: bytes) -> Erc20Contract:
        raise SpecError(ErrorCode.WEB3_UNAVAILABLE, "no chain connection")

    async def get_erc721_contract(self, address: bytes) -> Erc721Contract:
        raise SpecError(ErrorCode.WEB3_UNAVAILABLE, "no chain connection")

    async def get_ether_balance(self, address: bytes) -> int:
        raise SpecError(ErrorCode.WEB3_UNAVAILABLE, "no chain connection")

    async def get_current_block(self) -> BlockStats:
        raise SpecError(ErrorCode.WEB3_UNAVAILABLE, "no chain connection")

    async def get_execution_transaction(
        self, settlement: bytes, message_hash: bytes
    ) -> Optional[TransactionStats]:
        raise SpecError(ErrorCode.WEB3_UNAVAILABLE, "no chain connection")


class CachingContractFactory(ContractFactory):
    """Per-analysis decorator caching contract classification.

    Contract code does not change within one analysis, so `is_contract`,
    `is_erc20_contract` and `is_erc721_contract` are asked at most once per
    address. In-flight probes are shared between concurrent callers. Create
    one per analysis run and drop it afterwards.
    """

    def __init__(self, inner: ContractFactory):
        self.inner = inner
        self._cache: dict[tuple[str, bytes], asyncio.Future] = {}

    def _cached(self, kind: str, address: bytes, probe: Awaitable[bool]) -> Awaitable[bool]:
        key = (kind, bytes(address))
        future = self._cache.get(key)
        if future is None:
            future = asyncio.ensure_future(probe)
            self._cache[key] = future
        elif asyncio.iscoroutine(probe):
            probe.close()
        return future

    def is_web3_available(self) -> bool:
        return self.inner.is_web3_available()

    async def is_contract(self, address: bytes) -> bool:
        return await self._cached("isContract", address, self.inner.is_contract(address))

    async def is_erc20_contract(self, address: bytes) -> bool:
        return await self._cached("isErc20Contract", address, self.inner.is_erc20_contract(address))

    async def is_erc721_contract(self, address: bytes) -> bool:
        return await self._cached("isErc721Contract", address, self.inner.is_erc721_contract(address))

    async def get_settlement_contract(self, address: bytes) -> SettlementContract:
        return await self.inner.get_settlement_contract(address)

    async def get_erc20_contract(self, address: bytes) -> Erc20Contract:
        return await self.inner.get_erc20_contract(address)

    async def get_erc721_contract(self, address: bytes) -> Erc721Contract:
        return await self.inner.get_erc721_contract(address)

    async def get_ether_balance(self, address: bytes) -> int:
        return await self.inner.get_ether_balance(address)

    async def get_current_block(self) -> BlockStats:
        return await self.inner.get_current_block()

    async def get_execution_transaction(
        self, settlement: bytes, message_hash: bytes
    ) -> Optional[TransactionStats]:
        return await self.inner.get_execution_transaction(settlement, message_hash)


async def read_or_default(read: Awaitable[T], default: T, what: str) -> T:
    """Await a chain read, falling back to `default` when it fails."""
    try:
        return await read
    except SpecError as exc:
        logger.debug("%s failed, assuming %r: %s", what, default, exc)
        return default
