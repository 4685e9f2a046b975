"""Asset state algebra.

States hold six categories keyed by endpoint index. Ether categories map
endpoint -> amount; token categories map endpoint -> token address -> amount
(ERC20) or a multiset of token ids (ERC721). None of the functions here mutate
their arguments.
"""

from __future__ import annotations

from collections import Counter
from typing import Any, Callable

from ..types import ASSET_CATEGORIES, UNLIMITED, AssetDiff, AssetState, Erc721AllowanceValue, TokenIds

Combine = Callable[[Any, Any], Any]


def reduce_dictionaries(a: dict, b: dict, combine: Combine, default: Any) -> dict:
    """Combine `b` into a copy of `a` key by key; keys only in `a` are kept as is."""
    result = dict(a)
    for key, value in b.items():
        result[key] = combine(result.get(key, default), value)
    return result


def _nested(combine: Combine, default: Any) -> Combine:
    return lambda a, b: reduce_dictionaries(a, b, combine, default)


def _reduce_states(a: AssetState, b: AssetState, functions: dict[str, Combine]) -> AssetState:
    return AssetState(
        **{
            name: reduce_dictionaries(getattr(a, name), getattr(b, name), functions[name], _DEFAULTS[name])
            for name in ASSET_CATEGORIES
        }
    )


_DEFAULTS = {
    "ether_internal": 0,
    "ether_external": 0,
    "erc20_balance": {},
    "erc20_allowance": {},
    "erc721_balance": {},
    "erc721_allowance": {},
}


# --- Token id multisets ---


def _ids_union(a: TokenIds, b: TokenIds) -> TokenIds:
    # one owner per token: a balance never holds the same id twice
    return tuple(dict.fromkeys(a + b))


def _ids_sub(a: TokenIds, b: TokenIds) -> TokenIds:
    result = list(a)
    for token_id in b:
        if token_id in result:
            result.remove(token_id)
    return tuple(result)


def _ids_max(a: TokenIds, b: TokenIds) -> TokenIds:
    """Per id, keep the larger of the two occurrence counts."""
    count_a = Counter(a)
    extra = []
    for token_id, count in Counter(b).items():
        extra.extend([token_id] * (count - count_a.get(token_id, 0)))
    return tuple(a) + tuple(extra)


def _allowance_add(a: Erc721AllowanceValue, b: Erc721AllowanceValue) -> Erc721AllowanceValue:
    # each transfer consumes its own approval, so repeated ids accumulate
    if a is UNLIMITED or b is UNLIMITED:
        return UNLIMITED
    return tuple(a) + tuple(b)


def _allowance_sub(a: Erc721AllowanceValue, b: Erc721AllowanceValue) -> Erc721AllowanceValue:
    if a is UNLIMITED:
        return UNLIMITED
    if b is UNLIMITED:
        return ()
    return _ids_sub(a, b)


def _allowance_max(a: Erc721AllowanceValue, b: Erc721AllowanceValue) -> Erc721AllowanceValue:
    if a is UNLIMITED or b is UNLIMITED:
        return UNLIMITED
    return _ids_max(a, b)


def _scalar_sub(a: int, b: int) -> int:
    return max(a - b, 0)


_ADD = {
    "ether_internal": lambda a, b: a + b,
    "ether_external": lambda a, b: a + b,
    "erc20_balance": _nested(lambda a, b: a + b, 0),
    "erc20_allowance": _nested(lambda a, b: a + b, 0),
    "erc721_balance": _nested(_ids_union, ()),
    "erc721_allowance": _nested(_allowance_add, ()),
}

_SUB = {
    "ether_internal": _scalar_sub,
    "ether_external": _scalar_sub,
    "erc20_balance": _nested(_scalar_sub, 0),
    "erc20_allowance": _nested(_scalar_sub, 0),
    "erc721_balance": _nested(_ids_sub, ()),
    "erc721_allowance": _nested(_allowance_sub, ()),
}

_MAX = {
    "ether_internal": max,
    "ether_external": max,
    "erc20_balance": _nested(max, 0),
    "erc20_allowance": _nested(max, 0),
    "erc721_balance": _nested(_ids_max, ()),
    "erc721_allowance": _nested(_allowance_max, ()),
}


# --- States ---


def add_states(a: AssetState, b: AssetState) -> AssetState:
    """Sum two states. Normalize the enclosing diff to get its simplest form."""
    return _reduce_states(a, b, _ADD)


def sub_states_unsigned(a: AssetState, b: AssetState) -> AssetState:
    """`a - b` per entry, floored at zero / empty."""
    return _reduce_states(a, b, _SUB)


def max_state(first: AssetState, *others: AssetState) -> AssetState:
    result = first
    for state in others:
        result = _reduce_states(result, state, _MAX)
    return result


def _clean_scalars(values: dict) -> dict:
    return {key: value for key, value in values.items() if value > 0}


def _clean_ids(values: dict) -> dict:
    return {key: value for key, value in values.items() if value is UNLIMITED or len(value)}


def _clean_nested(values: dict, clean: Callable[[dict], dict]) -> dict:
    result = {}
    for key, inner in values.items():
        inner = clean(inner)
        if inner:
            result[key] = inner
    return result


def clean_state(state: AssetState) -> AssetState:
    """Drop zero amounts, empty id lists and endpoints left without entries."""
    return AssetState(
        ether_internal=_clean_scalars(state.ether_internal),
        ether_external=_clean_scalars(state.ether_external),
        erc20_balance=_clean_nested(state.erc20_balance, _clean_scalars),
        erc20_allowance=_clean_nested(state.erc20_allowance, _clean_scalars),
        erc721_balance=_clean_nested(state.erc721_balance, _clean_ids),
        erc721_allowance=_clean_nested(state.erc721_allowance, _clean_ids),
    )


def is_empty_state(state: AssetState) -> bool:
    return count_leaf_entries(state) == 0


def count_leaf_entries(state: AssetState) -> int:
    """Number of non-empty (endpoint) or (endpoint, token) entries."""
    cleaned = clean_state(state)
    count = len(cleaned.ether_internal) + len(cleaned.ether_external)
    for name in ("erc20_balance", "erc20_allowance", "erc721_balance", "erc721_allowance"):
        count += sum(len(tokens) for tokens in getattr(cleaned, name).values())
    return count


# --- Diffs ---


def add_diffs(a: AssetDiff, b: AssetDiff) -> AssetDiff:
    return AssetDiff(positive=add_states(a.positive, b.positive), negative=add_states(a.negative, b.negative))


def normalize_diff(diff: AssetDiff) -> AssetDiff:
    """Cancel the portion present on both sides."""
    return AssetDiff(
        positive=sub_states_unsigned(diff.positive, diff.negative),
        negative=sub_states_unsigned(diff.negative, diff.positive),
    )
