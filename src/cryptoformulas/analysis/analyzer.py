"""Formula execution analysis.

Reports the problems that would likely stop a Formula from executing:
malformed operations, missing fee, missing balances or approvals,
forbidden presignatures and earlier execution of the same hash.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Optional

from ..instructions import registry
from ..instructions.send_erc721 import read_token_approval
from ..types import (
    UNLIMITED,
    Analysis,
    AnalyzerResult,
    AssetBalances,
    AssetDiff,
    AssetState,
    ErrorType,
    InstructionCode,
    PresignState,
    Totals,
    TransactionStats,
)
from . import asset_logic
from .contract_factory import CachingContractFactory, ContractFactory, read_or_default

if TYPE_CHECKING:
    from ..formula import Formula

logger = logging.getLogger(__name__)


async def analyze_formula(
    formula: "Formula",
    settlement: bytes,
    contract_factory: ContractFactory,
    stop_on_already_executed: bool = False,
) -> Analysis:
    """Analyze `formula` against the settlement contract at `settlement`.

    Without a chain connection only static checks run and the result has
    `is_complete=False`.
    """
    factory = CachingContractFactory(contract_factory)
    logger.info("analyzing formula 0x%s", formula.message_hash.hex())

    if not factory.is_web3_available():
        analysis = await _analyze_static_only(formula, settlement, factory)
    else:
        analysis = await _analyze_all(formula, settlement, factory, stop_on_already_executed)

    logger.info(
        "analysis of 0x%s done: %d errors, %d warnings",
        formula.message_hash.hex(),
        analysis.totals.errors,
        analysis.totals.warnings,
    )
    return analysis


def _fee_index(formula: "Formula") -> Optional[int]:
    for index, operation in enumerate(formula.operations):
        if operation.instruction == InstructionCode.PAY_FEE:
            return index
    return None


async def _analyze_static_only(formula: "Formula", settlement: bytes, factory: ContractFactory) -> Analysis:
    is_empty = not formula.operations
    analysis = Analysis(
        is_complete=False,
        formula=formula,
        fee_missing=not is_empty and _fee_index(formula) is None,
        fee_is_low=False,
        is_empty=is_empty,
        operations=await _prepare_operations(formula, settlement, factory),
    )
    return fill_totals(analysis)


async def _analyze_all(
    formula: "Formula", settlement: bytes, factory: ContractFactory, stop_on_already_executed: bool
) -> Analysis:
    contract = await factory.get_settlement_contract(settlement)
    executed = await read_or_default(contract.executed_formulas(formula.message_hash), False, "executedFormulas")

    if executed and stop_on_already_executed:
        analysis = Analysis(
            executed=True, already_executed=await _execution_transaction(formula, settlement, factory)
        )
        return fill_totals(analysis)

    is_empty = not formula.operations
    fee_index = _fee_index(formula)
    fee_is_low = False
    if not is_empty and fee_index is not None:
        fee_per_operation = await read_or_default(contract.fee_per_operation(), 0, "feePerOperation")
        fee_amount = formula.operations[fee_index].operands[1]
        fee_is_low = fee_amount < fee_per_operation * len(formula.operations)

    already_executed, operations, presignes, balances = await asyncio.gather(
        _execution_transaction(formula, settlement, factory) if executed else _none(),
        _prepare_operations(formula, settlement, factory),
        _prepare_presignes(formula, settlement, factory),
        prepare_asset_balances(formula, settlement, factory),
    )

    analysis = Analysis(
        is_complete=True,
        formula=formula,
        executed=bool(executed),
        already_executed=already_executed,
        fee_missing=not is_empty and fee_index is None,
        fee_is_low=fee_is_low,
        is_empty=is_empty,
        operations=operations,
        presignes=presignes,
        assets_balances=balances,
    )
    return fill_totals(analysis)


async def _none() -> None:
    return None


async def _execution_transaction(
    formula: "Formula", settlement: bytes, factory: ContractFactory
) -> Optional[TransactionStats]:
    return await read_or_default(
        factory.get_execution_transaction(settlement, formula.message_hash), None, "execution transaction"
    )


def fill_totals(analysis: Analysis) -> Analysis:
    """Recount `analysis.totals` from the rest of the report."""

    def count_operations(error_type: ErrorType) -> int:
        return sum(1 for results in analysis.operations for item in results if item.error_type == error_type)

    errors = (
        int(analysis.executed or analysis.already_executed is not None)
        + int(analysis.fee_missing)
        + int(analysis.fee_is_low)
        + int(analysis.is_empty)
        + count_operations(ErrorType.ERROR)
        + sum(1 for item in analysis.presignes if item == PresignState.FORBIDDEN)
    )
    warnings = count_operations(ErrorType.WARNING) + asset_logic.count_leaf_entries(
        analysis.assets_balances.missing
    )
    analysis.totals = Totals(errors=errors, warnings=warnings)
    return analysis


async def _prepare_operations(
    formula: "Formula", settlement: bytes, factory: ContractFactory
) -> list[AnalyzerResult]:
    return list(
        await asyncio.gather(
            *(registry.analyze_execution(formula, index, settlement, factory) for index in range(len(formula.operations)))
        )
    )


async def _prepare_presignes(formula: "Formula", settlement: bytes, factory: ContractFactory) -> list[PresignState]:
    contract = await factory.get_settlement_contract(settlement)

    async def presign(endpoint: bytes) -> PresignState:
        state = await read_or_default(
            contract.presigned_formulas(endpoint, formula.message_hash), PresignState.DEFAULT, "presignedFormulas"
        )
        return PresignState(state)

    return list(await asyncio.gather(*(presign(endpoint) for endpoint in formula.endpoints)))


# --- Asset balances ---


def calculate_maximum_extremes(formula: "Formula") -> AssetState:
    """Peak amount of every asset each endpoint must hold while the operations run in order."""
    current = AssetDiff()
    extremes = AssetState()
    for index in range(len(formula.operations)):
        diff = registry.analyze_value_transfer(formula, index)

        # this operation's expenses alone; a self-send still needs its amount up front
        spent_only = AssetDiff(positive=AssetState(), negative=diff.negative)
        local_extremes = asset_logic.normalize_diff(asset_logic.add_diffs(current, spent_only)).negative

        current = asset_logic.normalize_diff(asset_logic.add_diffs(current, diff))
        extremes = asset_logic.max_state(extremes, current.negative, local_extremes)
    return extremes


async def prepare_asset_balances(formula: "Formula", settlement: bytes, factory: ContractFactory) -> AssetBalances:
    needed = asset_logic.clean_state(calculate_maximum_extremes(formula))
    starting = await get_current_balances(formula, needed, settlement, factory)
    missing = asset_logic.sub_states_unsigned(needed, starting)
    return AssetBalances(
        starting=asset_logic.clean_state(starting),
        needed_extremes=needed,
        missing=asset_logic.clean_state(missing),
    )


async def get_current_balances(
    formula: "Formula", needed: AssetState, settlement: bytes, factory: ContractFactory
) -> AssetState:
    """Read current balances for exactly the entries present in `needed`."""
    contract = await factory.get_settlement_contract(settlement)

    async def ether_internal(endpoint: int) -> int:
        return await read_or_default(contract.ether_balances(formula.endpoints[endpoint]), 0, "etherBalances")

    async def ether_external(endpoint: int) -> int:
        return await read_or_default(factory.get_ether_balance(formula.endpoints[endpoint]), 0, "getBalance")

    async def erc20_balance(endpoint: int, token: bytes) -> int:
        erc20 = await factory.get_erc20_contract(token)
        return await read_or_default(erc20.balance_of(formula.endpoints[endpoint]), 0, "balanceOf")

    async def erc20_allowance(endpoint: int, token: bytes) -> int:
        erc20 = await factory.get_erc20_contract(token)
        return await read_or_default(erc20.allowance(formula.endpoints[endpoint], settlement), 0, "allowance")

    async def erc721_balance(endpoint: int, token: bytes) -> tuple:
        erc721 = await factory.get_erc721_contract(token)
        owner = formula.endpoints[endpoint]
        token_ids = tuple(dict.fromkeys(needed.erc721_balance[endpoint][token]))
        owners = await asyncio.gather(
            *(read_or_default(erc721.owner_of(token_id), None, "ownerOf") for token_id in token_ids)
        )
        return tuple(token_id for token_id, item in zip(token_ids, owners) if item == owner)

    async def erc721_allowance(endpoint: int, token: bytes):
        erc721 = await factory.get_erc721_contract(token)
        owner = formula.endpoints[endpoint]
        approved_for_all = await read_or_default(
            erc721.is_approved_for_all(owner, settlement), None, "isApprovedForAll"
        )
        if approved_for_all:
            return UNLIMITED

        wanted = needed.erc721_allowance[endpoint][token]
        if wanted is UNLIMITED:
            return ()
        token_ids = tuple(dict.fromkeys(wanted))
        approvals = await asyncio.gather(
            *(read_token_approval(erc721, token_id, settlement) for token_id in token_ids)
        )
        return tuple(token_id for token_id, approved in zip(token_ids, approvals) if approved)

    async def flat(fetch, entries: dict) -> dict:
        keys = list(entries)
        values = await asyncio.gather(*(fetch(key) for key in keys))
        return dict(zip(keys, values))

    async def nested(fetch, entries: dict) -> dict:
        pairs = [(endpoint, token) for endpoint, tokens in entries.items() for token in tokens]
        values = await asyncio.gather(*(fetch(endpoint, token) for endpoint, token in pairs))
        result: dict = {}
        for (endpoint, token), value in zip(pairs, values):
            result.setdefault(endpoint, {})[token] = value
        return result

    (
        ether_internal_values,
        ether_external_values,
        erc20_balance_values,
        erc20_allowance_values,
        erc721_balance_values,
        erc721_allowance_values,
    ) = await asyncio.gather(
        flat(ether_internal, needed.ether_internal),
        flat(ether_external, needed.ether_external),
        nested(erc20_balance, needed.erc20_balance),
        nested(erc20_allowance, needed.erc20_allowance),
        nested(erc721_balance, needed.erc721_balance),
        nested(erc721_allowance, needed.erc721_allowance),
    )
    return AssetState(
        ether_internal=ether_internal_values,
        ether_external=ether_external_values,
        erc20_balance=erc20_balance_values,
        erc20_allowance=erc20_allowance_values,
        erc721_balance=erc721_balance_values,
        erc721_allowance=erc721_allowance_values,
    )
