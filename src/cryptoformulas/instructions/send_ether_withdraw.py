"""Instruction #3: pay ether out of the settlement contract to an endpoint's wallet.

Sender and target may be the same endpoint (withdrawing to oneself).
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from ..analysis.contract_factory import ContractFactory
from ..types import AnalyzerResult, AssetDiff, AssetState, InstructionCode, OperandField, TypeAlias, ValueType
from .common import InstructionType
from .send_ether import analyze_ether_send

if TYPE_CHECKING:
    from ..formula import Formula

INSTRUCTION = InstructionType(
    code=InstructionCode.SEND_ETHER_WITHDRAW,
    name="sendEtherWithdraw",
    operands=(
        OperandField(ValueType.SIGNED_ENDPOINT, "fromEndpoint"),
        OperandField(ValueType.ENDPOINT, "toEndpoint"),
        OperandField(ValueType.UINT256, "etherAmount", TypeAlias.ETHER_AMOUNT),
    ),
)


async def analyze_execution(
    formula: "Formula", operands: tuple, settlement: bytes, factory: ContractFactory
) -> AnalyzerResult:
    return await analyze_ether_send(INSTRUCTION.code, True, formula, operands, settlement, factory)


def analyze_value_transfer(formula: "Formula", operands: tuple) -> AssetDiff:
    sender_endpoint, target_endpoint, amount = operands
    return AssetDiff(
        positive=AssetState(ether_external={target_endpoint: amount}),
        negative=AssetState(ether_internal={sender_endpoint: amount}),
    )
