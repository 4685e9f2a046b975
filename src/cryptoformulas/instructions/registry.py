"""Instruction registry and dispatch.

The instruction set is closed: codes 0-5, fixed by the settlement contract
version. Numeric codes exist only at the wire boundary; everything past
`Formula` construction works with `InstructionCode`.
"""

from __future__ import annotations

from types import ModuleType
from typing import TYPE_CHECKING, Any

from ..analysis.contract_factory import ContractFactory
from ..config import EMPTY_ADDRESS
from ..errors import ErrorCode, SpecError
from ..types import AnalyzerResult, AssetDiff, InstructionCode, ValueType
from . import pay_fee, send_erc20, send_erc721, send_ether, send_ether_withdraw, time_condition
from .common import InstructionType

if TYPE_CHECKING:
    from ..formula import Formula


def _module_for(code: InstructionCode) -> ModuleType:
    if code == InstructionCode.SEND_ETHER:
        return send_ether
    if code == InstructionCode.SEND_ERC20:
        return send_erc20
    if code == InstructionCode.SEND_ERC721:
        return send_erc721
    if code == InstructionCode.SEND_ETHER_WITHDRAW:
        return send_ether_withdraw
    if code == InstructionCode.PAY_FEE:
        return pay_fee
    if code == InstructionCode.TIME_CONDITION:
        return time_condition
    raise SpecError(ErrorCode.INVALID_INSTRUCTION, f"unknown instruction {code}")


INSTRUCTIONS: dict[InstructionCode, InstructionType] = {
    code: _module_for(code).INSTRUCTION for code in InstructionCode
}


def get_instruction(code: Any) -> InstructionType:
    try:
        return INSTRUCTIONS[InstructionCode(code)]
    except ValueError:
        raise SpecError(ErrorCode.INVALID_INSTRUCTION, f"unknown instruction {code}") from None


def operand_types(code: Any) -> tuple[ValueType, ...]:
    return get_instruction(code).operand_types


def default_operands(code: Any) -> list[Any]:
    """Placeholder operands for a new operation (zero, or the empty address)."""
    return [EMPTY_ADDRESS if t == ValueType.ADDRESS else 0 for t in operand_types(code)]


async def analyze_execution(
    formula: "Formula", index: int, settlement: bytes, factory: ContractFactory
) -> AnalyzerResult:
    operation = formula.operations[index]
    module = _module_for(operation.instruction)
    return await module.analyze_execution(formula, operation.operands, settlement, factory)


def analyze_value_transfer(formula: "Formula", index: int) -> AssetDiff:
    operation = formula.operations[index]
    module = _module_for(operation.instruction)
    return module.analyze_value_transfer(formula, operation.operands)
