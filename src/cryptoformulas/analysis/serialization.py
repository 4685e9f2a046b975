"""Convert analysis reports to JSON-ready data.

Integers that may exceed 53 bits (amounts, token ids) become decimal strings,
byte values become `0x` hex and `UNLIMITED` becomes the string "unlimited".
Keys follow the camelCase names used by wallet and relay front ends.
"""

from __future__ import annotations

import json
from dataclasses import fields, is_dataclass
from typing import Any

from ..encoding import to_hex
from ..types import (
    ASSET_CATEGORIES,
    UNLIMITED,
    AnalyzerError,
    Analysis,
    AssetState,
    TransactionStats,
)

# Small integer fields kept as JSON numbers.
INT_FIELDS: set[str] = {
    "endpoint",
    "minimum_block",
    "maximum_block",
    "block",
    "current_block",
    "current_timestamp",
    "number",
    "timestamp",
}


def camel_case(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part.title() for part in rest)


def _value(name: str, value: Any) -> Any:
    if value is None:
        return None
    if isinstance(value, (bytes, bytearray)):
        return to_hex(value)
    if isinstance(value, bool):
        return value
    if isinstance(value, int):
        return int(value) if name in INT_FIELDS else str(value)
    return value


def dataclass_to_json(obj: Any) -> dict:
    return {camel_case(f.name): _value(f.name, getattr(obj, f.name)) for f in fields(obj)}


def _token_ids(value: Any) -> Any:
    if value is UNLIMITED:
        return "unlimited"
    return [str(token_id) for token_id in value]


def asset_state_to_json(state: AssetState) -> dict:
    result = {}
    for name in ASSET_CATEGORIES:
        entries = getattr(state, name)
        if name.startswith("ether"):
            rendered = {str(endpoint): str(amount) for endpoint, amount in entries.items()}
        elif name.startswith("erc20"):
            rendered = {
                str(endpoint): {to_hex(token): str(amount) for token, amount in tokens.items()}
                for endpoint, tokens in entries.items()
            }
        else:
            rendered = {
                str(endpoint): {to_hex(token): _token_ids(ids) for token, ids in tokens.items()}
                for endpoint, tokens in entries.items()
            }
        result[camel_case(name)] = rendered
    return result


def analyzer_error_to_json(item: AnalyzerError) -> dict:
    parameters = item.parameters
    return {
        "instructionCode": int(item.instruction_code),
        "errorReason": item.reason.value,
        "errorType": item.error_type.value,
        "errorParameters": dataclass_to_json(parameters) if is_dataclass(parameters) else parameters,
    }


def _transaction_to_json(stats: TransactionStats) -> dict:
    return {
        "number": stats.number,
        "timestamp": stats.timestamp,
        "transactionHash": to_hex(stats.transaction_hash),
    }


def analysis_to_json(analysis: Analysis) -> dict:
    return {
        "isComplete": analysis.is_complete,
        "formula": analysis.formula.to_json() if analysis.formula is not None else None,
        "executed": analysis.executed,
        "alreadyExecuted": (
            _transaction_to_json(analysis.already_executed) if analysis.already_executed is not None else None
        ),
        "feeMissing": analysis.fee_missing,
        "feeIsLow": analysis.fee_is_low,
        "isEmpty": analysis.is_empty,
        "operations": [[analyzer_error_to_json(item) for item in results] for results in analysis.operations],
        "presignes": [int(item) for item in analysis.presignes],
        "assetsBalances": {
            "starting": asset_state_to_json(analysis.assets_balances.starting),
            "neededExtremes": asset_state_to_json(analysis.assets_balances.needed_extremes),
            "missing": asset_state_to_json(analysis.assets_balances.missing),
        },
        "totals": {
            "errors": analysis.totals.errors,
            "warnings": analysis.totals.warnings,
        },
    }


def analysis_to_json_str(analysis: Analysis, indent: int = 2) -> str:
    return json.dumps(analysis_to_json(analysis), indent=indent)
