"""Instruction #2: transfer one ERC721 token on behalf of the sender."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Optional

from ..analysis.contract_factory import ContractFactory, Erc721Contract, read_or_default
from ..config import LEGACY_ERC721_APPROVAL_PROBES
from ..types import (
    AnalyzerResult,
    AssetDiff,
    AssetState,
    Erc721Approval,
    Erc721TokenOwner,
    ErrorReason,
    InstructionCode,
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

logger = logging.getLogger(__name__)

INSTRUCTION = InstructionType(
    code=InstructionCode.SEND_ERC721,
    name="sendErc721",
    operands=(
        OperandField(ValueType.SIGNED_ENDPOINT, "fromEndpoint"),
        OperandField(ValueType.ENDPOINT, "toEndpoint"),
        OperandField(ValueType.UINT256, "tokenId", TypeAlias.TOKEN_ID),
        OperandField(ValueType.ADDRESS, "tokenAddress", TypeAlias.ERC721_ADDRESS),
    ),
)

CODE = INSTRUCTION.code


async def read_token_approval(contract: Erc721Contract, token_id: int, operator: bytes) -> Optional[bool]:
    """Whether `operator` is approved for `token_id` alone.

    Asks `getApproved` first and then the legacy probes in order. None means
    no probe answered.
    """
    approved = await read_or_default(contract.get_approved(token_id), None, "getApproved")
    if approved is not None:
        return approved == operator

    for method in LEGACY_ERC721_APPROVAL_PROBES:
        approved = await read_or_default(contract.legacy_approved(method, token_id), None, method)
        if approved is not None:
            logger.debug("approval of token %d read via legacy %s", token_id, method)
            return approved == operator
    return None


async def analyze_execution(
    formula: "Formula", operands: tuple, settlement: bytes, factory: ContractFactory
) -> AnalyzerResult:
    sender_endpoint, target_endpoint, token_id, token = operands
    sender = endpoint_address(formula, sender_endpoint)
    target = endpoint_address(formula, target_endpoint)

    errors_sender_empty = check_sender_empty(CODE, sender_endpoint, sender)
    errors_target_empty = check_target_empty(CODE, target_endpoint, target)
    errors_token_empty = check_token_empty(CODE, token)

    errors_no_contract = [] if errors_token_empty else await check_no_contract(CODE, token, factory)
    errors_no_erc721 = [] if errors_token_empty or errors_no_contract else await _check_no_erc721(token, factory)
    chain_blocked = bool(errors_token_empty or errors_no_contract or errors_no_erc721 or errors_sender_empty)
    errors_owner = [] if chain_blocked else await _check_owner(sender_endpoint, sender, token, token_id, factory)
    errors_approval = (
        []
        if chain_blocked or errors_owner
        else await _check_approval(sender_endpoint, sender, token, token_id, settlement, factory)
    )

    results = (
        errors_sender_empty
        + errors_target_empty
        + errors_token_empty
        + errors_no_contract
        + errors_no_erc721
        + errors_owner
        + errors_approval
    )

    if not errors_sender_empty and not errors_target_empty:
        results += check_sender_is_target(CODE, sender_endpoint, sender, target)

    if not errors_target_empty:
        results += await check_target_is_contract(CODE, target_endpoint, target, factory)

    return results


def analyze_value_transfer(formula: "Formula", operands: tuple) -> AssetDiff:
    sender_endpoint, target_endpoint, token_id, token = operands
    return AssetDiff(
        positive=AssetState(erc721_balance={target_endpoint: {token: (token_id,)}}),
        negative=AssetState(
            erc721_balance={sender_endpoint: {token: (token_id,)}},
            erc721_allowance={sender_endpoint: {token: (token_id,)}},
        ),
    )


async def _check_no_erc721(token: bytes, factory: ContractFactory) -> AnalyzerResult:
    if not factory.is_web3_available():
        return []
    if await factory.is_erc721_contract(token):
        return []
    return [error(CODE, ErrorReason.NO_ERC721_CONTRACT_AT_ADDRESS, TokenAddress(token))]


async def _check_owner(
    endpoint: int, sender: bytes, token: bytes, token_id: int, factory: ContractFactory
) -> AnalyzerResult:
    if not factory.is_web3_available():
        return []

    contract = await factory.get_erc721_contract(token)
    owner = await read_or_default(contract.owner_of(token_id), None, "ownerOf")
    if owner == sender:
        return []
    return [
        warning(
            CODE,
            ErrorReason.NO_ERC721_TOKEN_OWNER,
            Erc721TokenOwner(endpoint, sender, token, token_id, owner),
        )
    ]


async def _check_approval(
    endpoint: int, sender: bytes, token: bytes, token_id: int, settlement: bytes, factory: ContractFactory
) -> AnalyzerResult:
    if not factory.is_web3_available():
        return []

    contract = await factory.get_erc721_contract(token)
    approved = await read_token_approval(contract, token_id, settlement)
    if approved:
        return []

    approved_for_all = await read_or_default(
        contract.is_approved_for_all(sender, settlement), None, "isApprovedForAll"
    )
    if approved_for_all:
        return []

    parameters = Erc721Approval(endpoint, sender, token, token_id)
    if approved is None and approved_for_all is None:
        return [warning(CODE, ErrorReason.ERC721_APPROVAL_UNVERIFIABLE, parameters)]
    return [warning(CODE, ErrorReason.NO_ERC721_APPROVAL, parameters)]
