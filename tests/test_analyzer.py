"""Execution analysis against an in-memory chain."""

from __future__ import annotations

import pytest

from cryptoformulas.analysis.analyzer import analyze_formula, calculate_maximum_extremes, fill_totals
from cryptoformulas.analysis.asset_logic import clean_state
from cryptoformulas.analysis.contract_factory import NullContractFactory
from cryptoformulas.formula import Formula
from cryptoformulas.test_accounts import (
    ALICE,
    BOB,
    CAROL,
    ERC20_TOKEN,
    ERC721_TOKEN,
    LEGACY_ERC721_TOKEN,
    SETTLEMENT,
)
from cryptoformulas.types import (
    UNLIMITED,
    Analysis,
    AssetState,
    ErrorReason,
    PresignState,
    Totals,
    TransactionStats,
)


def _reasons(results) -> list[ErrorReason]:
    return [item.reason for item in results]


# --- Extremes ---


def test_single_send_extremes() -> None:
    formula = Formula(endpoints=[ALICE, BOB], operations=[(0, [0, 1, 100])])
    assert clean_state(calculate_maximum_extremes(formula)) == AssetState(ether_internal={0: 100})


def test_chained_sends_need_only_the_first_sender() -> None:
    formula = Formula(endpoints=[ALICE, BOB, CAROL], operations=[(0, [0, 1, 100]), (0, [1, 2, 100])])
    assert clean_state(calculate_maximum_extremes(formula)) == AssetState(ether_internal={0: 100})


def test_reversed_sends_need_both_senders() -> None:
    formula = Formula(endpoints=[ALICE, BOB, CAROL], operations=[(0, [1, 2, 100]), (0, [0, 1, 100])])
    assert clean_state(calculate_maximum_extremes(formula)) == AssetState(ether_internal={0: 100, 1: 100})


def test_self_send_needs_the_amount() -> None:
    formula = Formula(endpoints=[ALICE], operations=[(0, [0, 0, 100])])
    assert clean_state(calculate_maximum_extremes(formula)) == AssetState(ether_internal={0: 100})


def test_withdraw_needs_internal_ether() -> None:
    formula = Formula(endpoints=[ALICE, BOB], operations=[(3, [0, 1, 50]), (4, [0, 5])])
    assert clean_state(calculate_maximum_extremes(formula)) == AssetState(ether_internal={0: 55})


def test_erc20_needs_balance_and_allowance() -> None:
    formula = Formula(endpoints=[ALICE, BOB], operations=[(1, [0, 1, 80, ERC20_TOKEN]), (1, [0, 1, 20, ERC20_TOKEN])])
    assert clean_state(calculate_maximum_extremes(formula)) == AssetState(
        erc20_balance={0: {ERC20_TOKEN: 100}},
        erc20_allowance={0: {ERC20_TOKEN: 100}},
    )


def test_nft_ping_pong_needs_repeated_approval() -> None:
    formula = Formula(
        endpoints=[ALICE, BOB],
        operations=[
            (2, [0, 1, 7, ERC721_TOKEN]),
            (2, [1, 0, 7, ERC721_TOKEN]),
            (2, [0, 1, 7, ERC721_TOKEN]),
        ],
    )
    extremes = clean_state(calculate_maximum_extremes(formula))
    assert extremes.erc721_balance == {0: {ERC721_TOKEN: (7,)}}
    assert extremes.erc721_allowance == {0: {ERC721_TOKEN: (7, 7)}, 1: {ERC721_TOKEN: (7,)}}


def test_time_condition_moves_nothing() -> None:
    formula = Formula(endpoints=[ALICE], operations=[(5, [1, 2])])
    assert clean_state(calculate_maximum_extremes(formula)) == AssetState()


# --- Full analysis ---


@pytest.mark.asyncio
async def test_missing_ether(chain) -> None:
    chain.ether_internal[ALICE] = 4500
    formula = Formula(endpoints=[ALICE, BOB], operations=[(0, [0, 1, 4600])])

    analysis = await analyze_formula(formula, SETTLEMENT, chain)

    assert analysis.is_complete
    assert analysis.formula == formula
    assert analysis.fee_missing
    assert not analysis.fee_is_low
    assert _reasons(analysis.operations[0]) == [ErrorReason.INSUFFICIENT_ETHER_INTERNAL]
    assert analysis.presignes == [PresignState.DEFAULT, PresignState.DEFAULT]
    balances = analysis.assets_balances
    assert balances.needed_extremes == AssetState(ether_internal={0: 4600})
    assert balances.starting == AssetState(ether_internal={0: 4500})
    assert balances.missing == AssetState(ether_internal={0: 100})
    assert analysis.totals == Totals(errors=1, warnings=2)


@pytest.mark.asyncio
async def test_fee_too_low(chain) -> None:
    chain.fee_per_operation = 100
    chain.ether_internal[ALICE] = 1000
    formula = Formula(endpoints=[ALICE, BOB], operations=[(0, [0, 1, 10]), (4, [0, 150])])

    analysis = await analyze_formula(formula, SETTLEMENT, chain)

    assert not analysis.fee_missing
    assert analysis.fee_is_low
    assert _reasons(analysis.operations[1]) == [ErrorReason.FEE_TOO_LOW]
    assert analysis.totals == Totals(errors=2, warnings=0)


@pytest.mark.asyncio
async def test_fee_sufficient(chain) -> None:
    chain.fee_per_operation = 100
    chain.ether_internal[ALICE] = 1000
    formula = Formula(endpoints=[ALICE, BOB], operations=[(0, [0, 1, 10]), (4, [0, 200])])

    analysis = await analyze_formula(formula, SETTLEMENT, chain)

    assert not analysis.fee_is_low
    assert analysis.operations == [[], []]
    assert analysis.assets_balances.missing == AssetState()
    assert analysis.totals == Totals(errors=0, warnings=0)


@pytest.mark.asyncio
async def test_empty_formula(chain) -> None:
    analysis = await analyze_formula(Formula(endpoints=[ALICE]), SETTLEMENT, chain)
    assert analysis.is_empty
    assert not analysis.fee_missing
    assert analysis.operations == []
    assert analysis.presignes == [PresignState.DEFAULT]
    assert analysis.totals == Totals(errors=1, warnings=0)


@pytest.mark.asyncio
async def test_forbidden_presign_counts_as_error(chain) -> None:
    formula = Formula(endpoints=[ALICE, BOB], operations=[(4, [0, 0])])
    chain.presigns[(BOB, formula.message_hash)] = PresignState.FORBIDDEN
    chain.presigns[(ALICE, formula.message_hash)] = PresignState.PERMITTED

    analysis = await analyze_formula(formula, SETTLEMENT, chain)

    assert analysis.presignes == [PresignState.PERMITTED, PresignState.FORBIDDEN]
    assert analysis.totals.errors == 1


@pytest.mark.asyncio
async def test_already_executed_short_circuit(chain) -> None:
    formula = Formula(endpoints=[ALICE, BOB], operations=[(0, [0, 1, 10])])
    stats = TransactionStats(number=900, timestamp=1_599_999_000, transaction_hash=b"\x01" * 32)
    chain.mark_executed(formula, stats)

    analysis = await analyze_formula(formula, SETTLEMENT, chain, stop_on_already_executed=True)

    assert analysis == Analysis(executed=True, already_executed=stats, totals=Totals(errors=1, warnings=0))
    assert chain.calls["etherBalances"] == 0


@pytest.mark.asyncio
@pytest.mark.parametrize("stop_on_already_executed", [True, False])
@pytest.mark.parametrize("lookup_fails", [True, False])
async def test_already_executed_without_transaction(chain, stop_on_already_executed, lookup_fails) -> None:
    chain.ether_internal[ALICE] = 10
    formula = Formula(endpoints=[ALICE, BOB], operations=[(0, [0, 1, 10]), (4, [0, 0])])
    chain.executed.add(formula.message_hash)
    if lookup_fails:
        chain.failing.add("getPastEvents")

    analysis = await analyze_formula(formula, SETTLEMENT, chain, stop_on_already_executed=stop_on_already_executed)

    assert analysis.executed
    assert analysis.already_executed is None
    assert analysis.totals == Totals(errors=1, warnings=0)


@pytest.mark.asyncio
async def test_already_executed_full_report(chain) -> None:
    chain.ether_internal[ALICE] = 10
    formula = Formula(endpoints=[ALICE, BOB], operations=[(0, [0, 1, 10]), (4, [0, 0])])
    stats = TransactionStats(number=900, timestamp=1_599_999_000, transaction_hash=b"\x01" * 32)
    chain.mark_executed(formula, stats)

    analysis = await analyze_formula(formula, SETTLEMENT, chain)

    assert analysis.already_executed == stats
    assert analysis.formula == formula
    assert len(analysis.operations) == 2
    assert analysis.totals == Totals(errors=1, warnings=0)


@pytest.mark.asyncio
async def test_static_only() -> None:
    formula = Formula(operations=[(0, [0, 0, 10])])

    analysis = await analyze_formula(formula, SETTLEMENT, NullContractFactory())

    assert not analysis.is_complete
    assert analysis.fee_missing
    assert not analysis.fee_is_low
    assert _reasons(analysis.operations[0]) == [ErrorReason.SENDER_EMPTY, ErrorReason.TARGET_EMPTY]
    assert analysis.presignes == []
    assert analysis.assets_balances.starting == AssetState()
    assert analysis.totals == Totals(errors=3, warnings=0)


@pytest.mark.asyncio
async def test_erc20_balances(chain, settlement) -> None:
    chain.add_erc20(ERC20_TOKEN)
    chain.erc20_balances[(ERC20_TOKEN, ALICE)] = 50
    chain.erc20_allowances[(ERC20_TOKEN, ALICE, settlement)] = 100
    formula = Formula(endpoints=[ALICE, BOB], operations=[(1, [0, 1, 80, ERC20_TOKEN]), (4, [0, 0])])

    analysis = await analyze_formula(formula, settlement, chain)

    assert _reasons(analysis.operations[0]) == [ErrorReason.INSUFFICIENT_ERC20_BALANCE]
    balances = analysis.assets_balances
    assert balances.starting == AssetState(
        erc20_balance={0: {ERC20_TOKEN: 50}},
        erc20_allowance={0: {ERC20_TOKEN: 100}},
    )
    assert balances.missing == AssetState(erc20_balance={0: {ERC20_TOKEN: 30}})
    assert analysis.totals == Totals(errors=0, warnings=2)


@pytest.mark.asyncio
async def test_erc721_balances(chain, settlement) -> None:
    chain.add_erc721(ERC721_TOKEN)
    chain.erc721_owners[(ERC721_TOKEN, 7)] = ALICE
    chain.erc721_approved[(ERC721_TOKEN, 7)] = settlement
    formula = Formula(endpoints=[ALICE, BOB], operations=[(2, [0, 1, 7, ERC721_TOKEN]), (4, [0, 0])])

    analysis = await analyze_formula(formula, settlement, chain)

    assert analysis.operations == [[], []]
    assert analysis.assets_balances.starting == AssetState(
        erc721_balance={0: {ERC721_TOKEN: (7,)}},
        erc721_allowance={0: {ERC721_TOKEN: (7,)}},
    )
    assert analysis.assets_balances.missing == AssetState()


@pytest.mark.asyncio
async def test_erc721_operator_approval_is_unlimited(chain, settlement) -> None:
    chain.add_erc721(ERC721_TOKEN)
    chain.erc721_owners[(ERC721_TOKEN, 7)] = ALICE
    chain.erc721_operators.add((ERC721_TOKEN, ALICE, settlement))
    formula = Formula(
        endpoints=[ALICE, BOB],
        operations=[(2, [0, 1, 7, ERC721_TOKEN]), (2, [1, 0, 7, ERC721_TOKEN]), (2, [0, 1, 7, ERC721_TOKEN])],
    )

    analysis = await analyze_formula(formula, settlement, chain)

    assert analysis.assets_balances.starting.erc721_allowance[0] == {ERC721_TOKEN: UNLIMITED}
    assert 0 not in analysis.assets_balances.missing.erc721_allowance
    # BOB has approved nothing
    assert analysis.assets_balances.missing.erc721_allowance == {1: {ERC721_TOKEN: (7,)}}


@pytest.mark.asyncio
async def test_legacy_erc721_balances(chain, settlement) -> None:
    chain.add_erc721(LEGACY_ERC721_TOKEN, legacy=True)
    chain.erc721_owners[(LEGACY_ERC721_TOKEN, 3)] = ALICE
    chain.erc721_approved[(LEGACY_ERC721_TOKEN, 3)] = settlement
    formula = Formula(endpoints=[ALICE, BOB], operations=[(2, [0, 1, 3, LEGACY_ERC721_TOKEN]), (4, [0, 0])])

    analysis = await analyze_formula(formula, settlement, chain)

    assert analysis.operations == [[], []]
    assert analysis.assets_balances.starting.erc721_allowance == {0: {LEGACY_ERC721_TOKEN: (3,)}}


@pytest.mark.asyncio
async def test_failed_reads_default_to_zero(chain) -> None:
    chain.ether_internal[ALICE] = 100
    chain.failing.add("etherBalances")
    formula = Formula(endpoints=[ALICE, BOB], operations=[(0, [0, 1, 100]), (4, [0, 0])])

    analysis = await analyze_formula(formula, SETTLEMENT, chain)

    assert analysis.assets_balances.starting == AssetState()
    assert analysis.assets_balances.missing == AssetState(ether_internal={0: 100})


@pytest.mark.asyncio
async def test_classification_cached_per_analysis(chain) -> None:
    chain.add_erc20(ERC20_TOKEN)
    formula = Formula(
        endpoints=[ALICE, BOB],
        operations=[(1, [0, 1, 1, ERC20_TOKEN]), (1, [0, 1, 2, ERC20_TOKEN]), (1, [0, 1, 3, ERC20_TOKEN])],
    )

    await analyze_formula(formula, SETTLEMENT, chain)
    assert chain.calls["isErc20Contract"] == 1
    assert chain.calls["isContract"] == 2

    await analyze_formula(formula, SETTLEMENT, chain)
    assert chain.calls["isErc20Contract"] == 2


def test_fill_totals_recounts() -> None:
    analysis = Analysis(fee_missing=True, fee_is_low=True, presignes=[PresignState.FORBIDDEN])
    analysis.assets_balances.missing = AssetState(ether_internal={0: 1}, erc20_balance={1: {ERC20_TOKEN: 2}})
    assert fill_totals(analysis).totals == Totals(errors=3, warnings=2)

    analysis = Analysis(executed=True)
    assert fill_totals(analysis).totals == Totals(errors=1, warnings=0)
