"""Instruction #4: pay the executor's fee from the sender's internal ether."""

from __future__ import annotations

from typing import TYPE_CHECKING

from ..analysis.contract_factory import ContractFactory, read_or_default
from ..types import (
    AnalyzerResult,
    AssetDiff,
    AssetState,
    ErrorReason,
    FeeTooLow,
    InstructionCode,
    OperandField,
    TypeAlias,
    ValueType,
)
from .common import (
    InstructionType,
    check_ether_internal_balance,
    check_sender_empty,
    endpoint_address,
    error,
)

if TYPE_CHECKING:
    from ..formula import Formula

INSTRUCTION = InstructionType(
    code=InstructionCode.PAY_FEE,
    name="payFee",
    operands=(
        OperandField(ValueType.SIGNED_ENDPOINT, "fromEndpoint"),
        OperandField(ValueType.UINT256, "etherAmount", TypeAlias.ETHER_FEE_AMOUNT),
    ),
)

CODE = INSTRUCTION.code


async def required_fee(formula: "Formula", settlement: bytes, factory: ContractFactory) -> int:
    """feePerOperation x number of operations; 0 when the fee cannot be read."""
    contract = await factory.get_settlement_contract(settlement)
    fee_per_operation = await read_or_default(contract.fee_per_operation(), 0, "feePerOperation")
    return fee_per_operation * len(formula.operations)


async def analyze_execution(
    formula: "Formula", operands: tuple, settlement: bytes, factory: ContractFactory
) -> AnalyzerResult:
    sender_endpoint, amount = operands
    sender = endpoint_address(formula, sender_endpoint)

    errors_sender_empty = check_sender_empty(CODE, sender_endpoint, sender)
    results = errors_sender_empty + await _check_fee_too_low(formula, amount, settlement, factory)

    if not errors_sender_empty:
        results += await check_ether_internal_balance(
            CODE,
            sender_endpoint,
            sender,
            amount,
            settlement,
            factory,
            reason=ErrorReason.INSUFFICIENT_ETHER_INTERNAL_FOR_FEE,
        )
    return results


def analyze_value_transfer(formula: "Formula", operands: tuple) -> AssetDiff:
    sender_endpoint, amount = operands
    return AssetDiff(negative=AssetState(ether_internal={sender_endpoint: amount}))


async def _check_fee_too_low(
    formula: "Formula", amount: int, settlement: bytes, factory: ContractFactory
) -> AnalyzerResult:
    if not factory.is_web3_available():
        return []

    fee = await required_fee(formula, settlement, factory)
    if amount >= fee:
        return []
    return [error(CODE, ErrorReason.FEE_TOO_LOW, FeeTooLow(fee, amount))]
