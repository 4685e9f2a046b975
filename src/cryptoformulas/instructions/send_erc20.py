"""Instruction #1: transfer ERC20 tokens on behalf of the sender.

The settlement contract calls `transferFrom`, so the sender must both hold
the tokens and have approved the settlement contract as spender.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from ..analysis.contract_factory import ContractFactory, read_or_default
from ..types import (
    AnalyzerResult,
    AssetDiff,
    AssetState,
    ErrorReason,
    InstructionCode,
    InsufficientErc20Allowance,
    InsufficientErc20Balance,
    OperandField,
    TokenAddress,
    TypeAlias,
    ValueType,
)
from .common import (
    InstructionType,
    check_no_contract,
    check_sender_empty,
    check_sender_is_target,
    check_target_empty,
    check_target_is_contract,
    check_token_empty,
    endpoint_address,
    error,
    warning,
)

if TYPE_CHECKING:
    from ..formula import Formula

INSTRUCTION = InstructionType(
    code=InstructionCode.SEND_ERC20,
    name="sendErc20",
    operands=(
        OperandField(ValueType.SIGNED_ENDPOINT, "fromEndpoint"),
        OperandField(ValueType.ENDPOINT, "toEndpoint"),
        OperandField(ValueType.UINT256, "tokenAmount", TypeAlias.TOKEN_AMOUNT),
        OperandField(ValueType.ADDRESS, "tokenAddress", TypeAlias.ERC20_ADDRESS),
    ),
)

CODE = INSTRUCTION.code


async def analyze_execution(
    formula: "Formula", operands: tuple, settlement: bytes, factory: ContractFactory
) -> AnalyzerResult:
    sender_endpoint, target_endpoint, amount, token = operands
    sender = endpoint_address(formula, sender_endpoint)
    target = endpoint_address(formula, target_endpoint)

    errors_sender_empty = check_sender_empty(CODE, sender_endpoint, sender)
    errors_target_empty = check_target_empty(CODE, target_endpoint, target)
    errors_token_empty = check_token_empty(CODE, token)

    # each chain check only runs while the previous ones passed
    errors_no_contract = [] if errors_token_empty else await check_no_contract(CODE, token, factory)
    errors_no_erc20 = [] if errors_token_empty or errors_no_contract else await _check_no_erc20(token, factory)
    chain_blocked = bool(errors_token_empty or errors_no_contract or errors_no_erc20 or errors_sender_empty)
    errors_balance = [] if chain_blocked else await _check_balance(sender_endpoint, sender, token, amount, factory)
    errors_allowance = (
        []
        if chain_blocked or errors_balance
        else await _check_allowance(sender_endpoint, sender, token, amount, settlement, factory)
    )

    results = (
        errors_sender_empty
        + errors_target_empty
        + errors_token_empty
        + errors_no_contract
        + errors_no_erc20
        + errors_balance
        + errors_allowance
    )

    if not errors_sender_empty and not errors_target_empty:
        results += check_sender_is_target(CODE, sender_endpoint, sender, target)

    if not errors_target_empty:
        results += await check_target_is_contract(CODE, target_endpoint, target, factory)

    return results


def analyze_value_transfer(formula: "Formula", operands: tuple) -> AssetDiff:
    sender_endpoint, target_endpoint, amount, token = operands
    return AssetDiff(
        positive=AssetState(erc20_balance={target_endpoint: {token: amount}}),
        negative=AssetState(
            erc20_balance={sender_endpoint: {token: amount}},
            erc20_allowance={sender_endpoint: {token: amount}},
        ),
    )


async def _check_no_erc20(token: bytes, factory: ContractFactory) -> AnalyzerResult:
    if not factory.is_web3_available():
        return []
    if await factory.is_erc20_contract(token):
        return []
    return [error(CODE, ErrorReason.NO_ERC20_CONTRACT_AT_ADDRESS, TokenAddress(token))]


async def _check_balance(
    endpoint: int, sender: bytes, token: bytes, amount: int, factory: ContractFactory
) -> AnalyzerResult:
    if not factory.is_web3_available():
        return []

    contract = await factory.get_erc20_contract(token)
    balance = await read_or_default(contract.balance_of(sender), 0, "balanceOf")
    if balance >= amount:
        return []
    return [
        warning(
            CODE,
            ErrorReason.INSUFFICIENT_ERC20_BALANCE,
            InsufficientErc20Balance(endpoint, sender, token, amount, balance),
        )
    ]


async def _check_allowance(
    endpoint: int, sender: bytes, token: bytes, amount: int, settlement: bytes, factory: ContractFactory
) -> AnalyzerResult:
    if not factory.is_web3_available():
        return []

    contract = await factory.get_erc20_contract(token)
    allowance = await read_or_default(contract.allowance(sender, settlement), 0, "allowance")
    if amount <= allowance:
        return []
    return [
        warning(
            CODE,
            ErrorReason.INSUFFICIENT_ERC20_ALLOWANCE,
            InsufficientErc20Allowance(endpoint, sender, token, amount, allowance),
        )
    ]
