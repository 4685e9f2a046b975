"""Instruction #5: restrict execution to a block range. 0 leaves a bound unset."""

from __future__ import annotations

from typing import TYPE_CHECKING, Optional

from ..analysis.contract_factory import ContractFactory, read_or_default
from ..types import (
    AnalyzerResult,
    AssetDiff,
    BlockRange,
    BlockReached,
    BlockStats,
    ErrorReason,
    InstructionCode,
    OperandField,
    TypeAlias,
    ValueType,
)
from .common import InstructionType, error, warning

if TYPE_CHECKING:
    from ..formula import Formula

INSTRUCTION = InstructionType(
    code=InstructionCode.TIME_CONDITION,
    name="timeCondition",
    operands=(
        OperandField(ValueType.UINT32, "minimumBlock", TypeAlias.BLOCK_NUMBER),
        OperandField(ValueType.UINT32, "maximumBlock", TypeAlias.BLOCK_NUMBER),
    ),
)

CODE = INSTRUCTION.code


async def analyze_execution(
    formula: "Formula", operands: tuple, settlement: bytes, factory: ContractFactory
) -> AnalyzerResult:
    minimum_block, maximum_block = operands
    block: Optional[BlockStats] = None
    if factory.is_web3_available():
        block = await read_or_default(factory.get_current_block(), None, "current block")

    results: AnalyzerResult = []
    if minimum_block and maximum_block and maximum_block < minimum_block:
        results.append(
            error(CODE, ErrorReason.MINIMUM_BLOCK_HIGHER_THAN_MAXIMUM, BlockRange(minimum_block, maximum_block))
        )
    if block is not None and minimum_block and minimum_block > block.number:
        results.append(
            warning(
                CODE,
                ErrorReason.MINIMUM_BLOCK_NOT_REACHED,
                BlockReached(minimum_block, block.number, block.timestamp),
            )
        )
    if block is not None and maximum_block and maximum_block < block.number:
        results.append(
            error(
                CODE,
                ErrorReason.MAXIMUM_BLOCK_ALREADY_PASSED,
                BlockReached(maximum_block, block.number, block.timestamp),
            )
        )
    if not minimum_block and not maximum_block:
        results.append(warning(CODE, ErrorReason.NO_TIME_CONDITION_SET, BlockRange(minimum_block, maximum_block)))
    return results


def analyze_value_transfer(formula: "Formula", operands: tuple) -> AssetDiff:
    return AssetDiff()
