"""Hash algorithm assignments for Formula hashing and signing."""

from __future__ import annotations

from dataclasses import dataclass

from Cryptodome.Hash import keccak as _keccak

from ..config import HASH_SIZE


@dataclass(frozen=True)
class HashAssignment:
    purpose: str
    algorithm: str
    output_size: int
    input_spec: str


ASSIGNMENTS = [
    HashAssignment(
        "message_hash",
        "KECCAK-256",
        HASH_SIZE,
        "salt || endpoint_count:u16 || signed_endpoint_count:u16 || (instruction:u16 || operands)*",
    ),
    HashAssignment("message_to_sign", "KECCAK-256", HASH_SIZE, "message_hash || endpoint_index:u16"),
    HashAssignment("function_selector", "KECCAK-256", 4, "canonical method signature (first 4 bytes)"),
    HashAssignment("event_topic", "KECCAK-256", HASH_SIZE, "canonical event signature"),
]


def keccak256(data: bytes) -> bytes:
    h = _keccak.new(digest_bits=256)
    h.update(data)
    return h.digest()


def function_selector(signature: str) -> bytes:
    return keccak256(signature.encode())[:4]


def event_topic(signature: str) -> bytes:
    return keccak256(signature.encode())
