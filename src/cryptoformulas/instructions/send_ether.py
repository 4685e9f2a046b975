"""Instruction #0: move ether between endpoints inside the settlement contract."""

from __future__ import annotations

from typing import TYPE_CHECKING

from ..analysis.contract_factory import ContractFactory
from ..types import AnalyzerResult, AssetDiff, AssetState, InstructionCode, OperandField, TypeAlias, ValueType
from .common import (
    InstructionType,
    check_ether_internal_balance,
    check_sender_empty,
    check_sender_is_target,
    check_target_empty,
    check_target_is_contract,
    endpoint_address,
)

if TYPE_CHECKING:
    from ..formula import Formula

INSTRUCTION = InstructionType(
    code=InstructionCode.SEND_ETHER,
    name="sendEther",
    operands=(
        OperandField(ValueType.SIGNED_ENDPOINT, "fromEndpoint"),
        OperandField(ValueType.ENDPOINT, "toEndpoint"),
        OperandField(ValueType.UINT256, "etherAmount", TypeAlias.ETHER_AMOUNT),
    ),
)


async def analyze_ether_send(
    code: InstructionCode,
    sender_can_be_target: bool,
    formula: "Formula",
    operands: tuple,
    settlement: bytes,
    factory: ContractFactory,
) -> AnalyzerResult:
    """Checks shared by sendEther and sendEtherWithdraw."""
    sender_endpoint, target_endpoint, amount = operands
    sender = endpoint_address(formula, sender_endpoint)
    target = endpoint_address(formula, target_endpoint)

    errors_sender_empty = check_sender_empty(code, sender_endpoint, sender)
    errors_target_empty = check_target_empty(code, target_endpoint, target)
    results = errors_sender_empty + errors_target_empty

    if not errors_sender_empty:
        results += await check_ether_internal_balance(code, sender_endpoint, sender, amount, settlement, factory)

    if not sender_can_be_target and not errors_sender_empty and not errors_target_empty:
        results += check_sender_is_target(code, sender_endpoint, sender, target)

    if not errors_target_empty:
        results += await check_target_is_contract(code, target_endpoint, target, factory)

    return results


async def analyze_execution(
    formula: "Formula", operands: tuple, settlement: bytes, factory: ContractFactory
) -> AnalyzerResult:
    return await analyze_ether_send(INSTRUCTION.code, False, formula, operands, settlement, factory)


def analyze_value_transfer(formula: "Formula", operands: tuple) -> AssetDiff:
    sender_endpoint, target_endpoint, amount = operands
    return AssetDiff(
        positive=AssetState(ether_internal={target_endpoint: amount}),
        negative=AssetState(ether_internal={sender_endpoint: amount}),
    )
