"""Helpers to serialize/deserialize Formula wire fixtures."""

from __future__ import annotations

from typing import Any

from cryptoformulas.encoding import hex_to_bytes, to_hex
from cryptoformulas.formula import Formula


def formula_to_vector(formula: Formula) -> dict[str, Any]:
    return {
        "formula": formula.to_json(),
        "compiled": formula.compile_hex(),
        "message_hash": to_hex(formula.message_hash),
        "messages_to_sign": [
            to_hex(formula.get_message_to_sign(index)) for index in range(formula.signed_endpoint_count)
        ],
    }


def formula_from_vector(vector: dict[str, Any]) -> Formula:
    return Formula.from_json(vector["formula"])


def check_vector(vector: dict[str, Any]) -> list[str]:
    """Return the names of the vector fields the current code disagrees with."""
    mismatches: list[str] = []
    formula = formula_from_vector(vector)
    if formula.compile_hex() != vector["compiled"]:
        mismatches.append("compiled")
    if Formula.decompile(vector["compiled"]) != formula:
        mismatches.append("decompiled")
    if formula.message_hash != hex_to_bytes(vector["message_hash"]):
        mismatches.append("message_hash")
    expected_digests = [hex_to_bytes(item) for item in vector.get("messages_to_sign", [])]
    actual_digests = [formula.get_message_to_sign(index) for index in range(len(expected_digests))]
    if expected_digests != actual_digests:
        mismatches.append("messages_to_sign")
    return mismatches
