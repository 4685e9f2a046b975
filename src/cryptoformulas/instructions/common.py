"""Shared instruction definitions and execution checks.

Checks return an `AnalyzerResult` (possibly empty). Checks that read the
chain answer `[]` when the factory has no chain connection.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

from ..analysis.contract_factory import ContractFactory, read_or_default
from ..config import EMPTY_ADDRESS
from ..types import (
    AnalyzerError,
    AnalyzerResult,
    EmptyEndpoint,
    EndpointAddress,
    ErrorParameters,
    ErrorReason,
    ErrorType,
    InstructionCode,
    InsufficientEtherInternal,
    OperandField,
    TokenAddress,
    ValueType,
)

if TYPE_CHECKING:
    from ..formula import Formula


@dataclass(frozen=True)
class InstructionType:
    code: InstructionCode
    name: str
    operands: tuple[OperandField, ...]

    @property
    def operand_types(self) -> tuple[ValueType, ...]:
        return tuple(item.type for item in self.operands)


def error(code: InstructionCode, reason: ErrorReason, parameters: ErrorParameters) -> AnalyzerError:
    return AnalyzerError(code, reason, ErrorType.ERROR, parameters)


def warning(code: InstructionCode, reason: ErrorReason, parameters: ErrorParameters) -> AnalyzerError:
    return AnalyzerError(code, reason, ErrorType.WARNING, parameters)


def endpoint_address(formula: "Formula", endpoint: int) -> bytes:
    return formula.endpoints[endpoint]


# --- Static checks ---


def check_sender_empty(code: InstructionCode, endpoint: int, address: bytes) -> AnalyzerResult:
    if address != EMPTY_ADDRESS:
        return []
    return [error(code, ErrorReason.SENDER_EMPTY, EmptyEndpoint(endpoint))]


def check_target_empty(code: InstructionCode, endpoint: int, address: bytes) -> AnalyzerResult:
    if address != EMPTY_ADDRESS:
        return []
    return [error(code, ErrorReason.TARGET_EMPTY, EmptyEndpoint(endpoint))]


def check_token_empty(code: InstructionCode, token: bytes) -> AnalyzerResult:
    if token != EMPTY_ADDRESS:
        return []
    return [error(code, ErrorReason.TOKEN_EMPTY, TokenAddress(token))]


def check_sender_is_target(code: InstructionCode, endpoint: int, sender: bytes, target: bytes) -> AnalyzerResult:
    if sender != target:
        return []
    return [warning(code, ErrorReason.SENDER_IS_TARGET, EndpointAddress(endpoint, sender))]


# --- Chain checks ---


async def check_ether_internal_balance(
    code: InstructionCode,
    endpoint: int,
    address: bytes,
    amount: int,
    settlement: bytes,
    factory: ContractFactory,
    reason: ErrorReason = ErrorReason.INSUFFICIENT_ETHER_INTERNAL,
) -> AnalyzerResult:
    """Ether credited to `address` inside the settlement contract covers `amount`."""
    if not factory.is_web3_available():
        return []

    contract = await factory.get_settlement_contract(settlement)
    balance = await read_or_default(contract.ether_balances(address), 0, "etherBalances")
    if balance >= amount:
        return []
    return [warning(code, reason, InsufficientEtherInternal(endpoint, address, settlement, balance, amount))]


async def check_no_contract(code: InstructionCode, token: bytes, factory: ContractFactory) -> AnalyzerResult:
    if not factory.is_web3_available():
        return []
    if await factory.is_contract(token):
        return []
    return [error(code, ErrorReason.NO_CONTRACT_AT_TOKEN_ADDRESS, TokenAddress(token))]


async def check_target_is_contract(
    code: InstructionCode, endpoint: int, target: bytes, factory: ContractFactory
) -> AnalyzerResult:
    """Contracts receiving assets may not know the transfer was made on their behalf."""
    if not factory.is_web3_available():
        return []
    if not await factory.is_contract(target):
        return []
    return [warning(code, ErrorReason.TARGET_IS_CONTRACT, EndpointAddress(endpoint, target))]
