"""Pytest hooks and fixtures: in-memory chain and fixture generation."""

from __future__ import annotations

import json
from collections import Counter
from pathlib import Path
from typing import Any, Callable, Optional

import pytest

from cryptoformulas.analysis.contract_factory import (
    ContractFactory,
    Erc20Contract,
    Erc721Contract,
    SettlementContract,
)
from cryptoformulas.errors import ErrorCode, SpecError
from cryptoformulas.formula import Formula
from cryptoformulas.test_accounts import SETTLEMENT
from cryptoformulas.types import BlockStats, PresignState, TransactionStats
from tools.fixtures_io import formula_to_vector


class FakeSettlement(SettlementContract):
    def __init__(self, chain: "FakeContractFactory", address: bytes):
        self.chain = chain
        self.address = address

    async def ether_balances(self, owner: bytes) -> int:
        self.chain.read("etherBalances")
        return self.chain.ether_internal.get(owner, 0)

    async def fee_per_operation(self) -> int:
        self.chain.read("feePerOperation")
        return self.chain.fee_per_operation

    async def executed_formulas(self, message_hash: bytes) -> bool:
        self.chain.read("executedFormulas")
        return message_hash in self.chain.executed

    async def presigned_formulas(self, owner: bytes, message_hash: bytes) -> PresignState:
        self.chain.read("presignedFormulas")
        return self.chain.presigns.get((owner, message_hash), PresignState.DEFAULT)


class FakeErc20(Erc20Contract):
    def __init__(self, chain: "FakeContractFactory", address: bytes):
        self.chain = chain
        self.address = address

    async def balance_of(self, owner: bytes) -> int:
        self.chain.read("balanceOf")
        return self.chain.erc20_balances.get((self.address, owner), 0)

    async def allowance(self, owner: bytes, spender: bytes) -> int:
        self.chain.read("allowance")
        return self.chain.erc20_allowances.get((self.address, owner, spender), 0)


class FakeErc721(Erc721Contract):
    def __init__(self, chain: "FakeContractFactory", address: bytes):
        self.chain = chain
        self.address = address

    def _standard(self, method: str) -> None:
        self.chain.read(method)
        if self.address in self.chain.legacy_erc721:
            raise SpecError(ErrorCode.CHAIN_READ_FAILED, f"{method} reverted")

    async def owner_of(self, token_id: int) -> bytes:
        self.chain.read("ownerOf")
        owner = self.chain.erc721_owners.get((self.address, token_id))
        if owner is None:
            raise SpecError(ErrorCode.CHAIN_READ_FAILED, "ownerOf reverted")
        return owner

    async def get_approved(self, token_id: int) -> bytes:
        self._standard("getApproved")
        return self.chain.erc721_approved.get((self.address, token_id), bytes(20))

    async def is_approved_for_all(self, owner: bytes, operator: bytes) -> bool:
        self._standard("isApprovedForAll")
        return (self.address, owner, operator) in self.chain.erc721_operators

    async def legacy_approved(self, method: str, token_id: int) -> bytes:
        self.chain.read(method)
        if self.address not in self.chain.legacy_erc721:
            raise SpecError(ErrorCode.CHAIN_READ_FAILED, f"{method} reverted")
        return self.chain.erc721_approved.get((self.address, token_id), bytes(20))


class FakeContractFactory(ContractFactory):
    """In-memory chain state behind the ContractFactory interface.

    `failing` names read methods that raise CHAIN_READ_FAILED; `calls` counts
    every read and classification probe.
    """

    def __init__(self) -> None:
        self.contracts: set[bytes] = set()
        self.erc20_tokens: set[bytes] = set()
        self.erc721_tokens: set[bytes] = set()
        self.legacy_erc721: set[bytes] = set()
        self.ether_internal: dict[bytes, int] = {}
        self.ether_external: dict[bytes, int] = {}
        self.erc20_balances: dict[tuple[bytes, bytes], int] = {}
        self.erc20_allowances: dict[tuple[bytes, bytes, bytes], int] = {}
        self.erc721_owners: dict[tuple[bytes, int], bytes] = {}
        self.erc721_approved: dict[tuple[bytes, int], bytes] = {}
        self.erc721_operators: set[tuple[bytes, bytes, bytes]] = set()
        self.fee_per_operation = 0
        self.executed: set[bytes] = set()
        self.presigns: dict[tuple[bytes, bytes], PresignState] = {}
        self.block = BlockStats(number=1000, timestamp=1_600_000_000)
        self.transactions: dict[bytes, TransactionStats] = {}
        self.failing: set[str] = set()
        self.calls: Counter = Counter()

    def read(self, method: str) -> None:
        self.calls[method] += 1
        if method in self.failing:
            raise SpecError(ErrorCode.CHAIN_READ_FAILED, f"{method} failed")

    # --- setup helpers ---

    def add_erc20(self, token: bytes) -> None:
        self.contracts.add(token)
        self.erc20_tokens.add(token)

    def add_erc721(self, token: bytes, legacy: bool = False) -> None:
        self.contracts.add(token)
        self.erc721_tokens.add(token)
        if legacy:
            self.legacy_erc721.add(token)

    def mark_executed(self, formula: Formula, stats: TransactionStats) -> None:
        self.executed.add(formula.message_hash)
        self.transactions[formula.message_hash] = stats

    # --- ContractFactory ---

    def is_web3_available(self) -> bool:
        return True

    async def is_contract(self, address: bytes) -> bool:
        self.calls["isContract"] += 1
        return address in self.contracts

    async def is_erc20_contract(self, address: bytes) -> bool:
        self.calls["isErc20Contract"] += 1
        return address in self.erc20_tokens

    async def is_erc721_contract(self, address: bytes) -> bool:
        self.calls["isErc721Contract"] += 1
        return address in self.erc721_tokens

    async def get_settlement_contract(self, address: bytes) -> SettlementContract:
        return FakeSettlement(self, address)

    async def get_erc20_contract(self, address: bytes) -> Erc20Contract:
        return FakeErc20(self, address)

    async def get_erc721_contract(self, address: bytes) -> Erc721Contract:
        return FakeErc721(self, address)

    async def get_ether_balance(self, address: bytes) -> int:
        self.read("getBalance")
        return self.ether_external.get(address, 0)

    async def get_current_block(self) -> BlockStats:
        self.read("getBlock")
        return self.block

    async def get_execution_transaction(
        self, settlement: bytes, message_hash: bytes
    ) -> Optional[TransactionStats]:
        self.read("getPastEvents")
        return self.transactions.get(message_hash)


@pytest.fixture
def chain() -> FakeContractFactory:
    return FakeContractFactory()


@pytest.fixture
def settlement() -> bytes:
    return SETTLEMENT


_FORMULA_VECTORS: list[dict[str, Any]] = []


def pytest_addoption(parser: pytest.Parser) -> None:
    parser.addoption(
        "--output",
        action="store",
        default=None,
        help="Output directory for generated fixtures",
    )


@pytest.fixture
def formula_vector() -> Callable[[str, Formula], None]:
    """Collect a wire-format vector case."""

    def _formula_vector(name: str, formula: Formula) -> None:
        payload = {"name": name}
        payload.update(formula_to_vector(formula))
        _FORMULA_VECTORS.append(payload)

    return _formula_vector


def pytest_sessionfinish(session: pytest.Session, exitstatus: int) -> None:
    output_dir = session.config.getoption("--output")
    if not output_dir:
        return

    out = Path(output_dir)
    out.mkdir(parents=True, exist_ok=True)

    if _FORMULA_VECTORS:
        (out / "formula_wire_format.json").write_text(
            json.dumps({"vectors": _FORMULA_VECTORS}, indent=2)
        )
