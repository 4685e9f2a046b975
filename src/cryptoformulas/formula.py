"""Formula value object: construction, wire format and hashing."""

from __future__ import annotations

import secrets
from dataclasses import dataclass, field
from typing import Any, Iterable, Mapping, Optional, Sequence, Union

from .config import (
    EMPTY_ADDRESS,
    EMPTY_SIGNATURE,
    MAX_ENDPOINTS,
    MAX_OPERATIONS,
)
from .crypto.hash_algorithms import keccak256
from .encoding import (
    ENDPOINT_TYPES,
    Reader,
    Writer,
    hex_to_bytes,
    normalize_address,
    normalize_signature,
    normalize_value,
    read_packed,
    read_value,
    to_hex,
    write_packed,
)
from .errors import ErrorCode, SpecError
from .instructions.registry import operand_types
from .types import InstructionCode, Operation, ValueType

OperationInput = Union[Operation, Mapping[str, Any], Sequence[Any]]


def _instruction_code(value: Any) -> InstructionCode:
    try:
        number = normalize_value(ValueType.UINT16, value)
        return InstructionCode(number)
    except (SpecError, ValueError):
        raise SpecError(ErrorCode.INVALID_FORMULA, f"invalid instruction '{value}'") from None


def _normalize_operation(item: OperationInput) -> Operation:
    if isinstance(item, Operation):
        code, operands = item.instruction, item.operands
    elif isinstance(item, Mapping):
        code, operands = item.get("instruction"), item.get("operands", ())
    else:
        code, operands = item
    instruction = _instruction_code(code)

    types = operand_types(instruction)
    operands = list(operands)
    if len(operands) < len(types):
        raise SpecError(
            ErrorCode.INVALID_FORMULA,
            f"instruction {instruction.name} expects {len(types)} operands, got {len(operands)}",
        )
    values = tuple(normalize_value(t, v) for t, v in zip(types, operands))
    return Operation(instruction=instruction, operands=values)


def _trim_signatures(signatures: Iterable[Any]) -> tuple[bytes, ...]:
    results = [normalize_signature(item) for item in signatures]
    while results and results[-1] == EMPTY_SIGNATURE:
        results.pop()
    return tuple(results)


def _write_operations(w: Writer, operations: Sequence[Operation]) -> None:
    for operation in operations:
        w.write_u16(operation.instruction)
        write_packed(w, operand_types(operation.instruction), operation.operands)


@dataclass(frozen=True)
class Formula:
    """Immutable transfer batch.

    Every input is normalized and validated on construction; a constructed
    Formula always compiles. `message_hash` covers the salt, endpoint counts
    and operations but not the endpoint addresses nor the signatures.
    """

    salt: Optional[int] = None
    endpoints: Sequence[Any] = ()
    signed_endpoint_count: Optional[int] = None
    operations: Sequence[OperationInput] = ()
    signatures: Sequence[Any] = ()
    message_hash: bytes = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        salt = secrets.randbits(256) if self.salt is None else normalize_value(ValueType.UINT256, self.salt)
        endpoints = tuple(normalize_address(item) for item in self.endpoints) or (EMPTY_ADDRESS,)
        if len(endpoints) > MAX_ENDPOINTS:
            raise SpecError(ErrorCode.INVALID_FORMULA, f"too many endpoints: {len(endpoints)}")

        signed = len(endpoints) if self.signed_endpoint_count is None else self.signed_endpoint_count
        signed = normalize_value(ValueType.UINT16, signed)
        if signed > len(endpoints):
            raise SpecError(ErrorCode.INVALID_FORMULA, "invalid signed_endpoint_count")

        operations = tuple(_normalize_operation(item) for item in self.operations)
        if len(operations) > MAX_OPERATIONS:
            raise SpecError(ErrorCode.INVALID_FORMULA, f"too many operations: {len(operations)}")
        for operation in operations:
            for value_type, value in zip(operand_types(operation.instruction), operation.operands):
                if value_type in ENDPOINT_TYPES and value >= len(endpoints):
                    raise SpecError(
                        ErrorCode.INVALID_FORMULA,
                        f"operation {operation.instruction.name} uses nonexisting endpoint {value}",
                    )

        signatures = _trim_signatures(self.signatures)
        if len(signatures) > signed:
            raise SpecError(ErrorCode.INVALID_FORMULA, "more signatures than signing endpoints")

        object.__setattr__(self, "salt", salt)
        object.__setattr__(self, "endpoints", endpoints)
        object.__setattr__(self, "signed_endpoint_count", signed)
        object.__setattr__(self, "operations", operations)
        object.__setattr__(self, "signatures", signatures)
        object.__setattr__(self, "message_hash", keccak256(self._hash_preimage()))

    # --- Hashing ---

    def _hash_preimage(self) -> bytes:
        w = Writer()
        w.write_u256(self.salt)
        w.write_u16(len(self.endpoints))
        w.write_u16(self.signed_endpoint_count)
        _write_operations(w, self.operations)
        return w.getvalue()

    def get_message_to_sign(self, endpoint_index: int) -> bytes:
        """Digest the endpoint at `endpoint_index` signs."""
        w = Writer()
        w.write_bytes(self.message_hash)
        w.write_u16(normalize_value(ValueType.ENDPOINT, endpoint_index))
        return keccak256(w.getvalue())

    def is_signed(self, endpoint_index: int) -> bool:
        return 0 <= endpoint_index < len(self.signatures) and self.signatures[endpoint_index] != EMPTY_SIGNATURE

    # --- Wire format ---

    def compile(self) -> bytes:
        w = Writer()
        w.write_u256(self.salt)
        w.write_u16(len(self.endpoints))
        w.write_u16(self.signed_endpoint_count)
        for endpoint in self.endpoints:
            w.write_bytes(endpoint)
        w.write_u16(len(self.operations))
        _write_operations(w, self.operations)
        for index in range(self.signed_endpoint_count):
            w.write_bytes(self.signatures[index] if index < len(self.signatures) else EMPTY_SIGNATURE)
        return w.getvalue()

    def compile_hex(self) -> str:
        return to_hex(self.compile())

    @classmethod
    def decompile(cls, data: Union[str, bytes]) -> "Formula":
        """Inverse of `compile`; accepts raw bytes or `0x` hex."""
        if isinstance(data, str) and not data.strip():
            raise SpecError(ErrorCode.INVALID_FORMAT, "empty compiled formula")
        r = Reader(hex_to_bytes(data.strip() if isinstance(data, str) else data))

        salt = read_value(r, ValueType.UINT256)
        endpoint_count = r.read_u16()
        if endpoint_count == 0:
            raise SpecError(ErrorCode.INVALID_FORMAT, "compiled formula has no endpoints")
        signed_endpoint_count = r.read_u16()
        endpoints = [read_value(r, ValueType.ADDRESS) for _ in range(endpoint_count)]

        operations = []
        for _ in range(r.read_u16()):
            instruction = _instruction_code(r.read_u16())
            operands = read_packed(r, operand_types(instruction))
            operations.append(Operation(instruction=instruction, operands=tuple(operands)))

        signatures = [read_value(r, ValueType.SIGNATURE) for _ in range(signed_endpoint_count)]

        if r.remaining:
            raise SpecError(ErrorCode.TRAILING_DATA, f"{r.remaining} bytes after the last signature")

        return cls(
            salt=salt,
            endpoints=endpoints,
            signed_endpoint_count=signed_endpoint_count,
            operations=operations,
            signatures=signatures,
        )

    # --- Derived copies ---

    def clone_new(self) -> "Formula":
        """Same content under a fresh salt, unsigned."""
        return Formula(
            endpoints=self.endpoints,
            signed_endpoint_count=self.signed_endpoint_count,
            operations=self.operations,
        )

    def with_signatures(self, signatures: Sequence[Any]) -> "Formula":
        return Formula(
            salt=self.salt,
            endpoints=self.endpoints,
            signed_endpoint_count=self.signed_endpoint_count,
            operations=self.operations,
            signatures=signatures,
        )

    def with_endpoints(self, endpoints: Sequence[Any]) -> "Formula":
        """Bind the same agreement to other addresses; keeps the message hash."""
        return Formula(
            salt=self.salt,
            endpoints=endpoints,
            signed_endpoint_count=self.signed_endpoint_count,
            operations=self.operations,
            signatures=self.signatures,
        )

    # --- Plain data ---

    def to_json(self) -> dict:
        operations = []
        for operation in self.operations:
            operands = []
            for value_type, value in zip(operand_types(operation.instruction), operation.operands):
                if value_type == ValueType.UINT256:
                    operands.append(str(value))
                elif isinstance(value, bytes):
                    operands.append(to_hex(value))
                else:
                    operands.append(value)
            operations.append({"instruction": int(operation.instruction), "operands": operands})
        return {
            "salt": str(self.salt),
            "endpoints": [to_hex(item) for item in self.endpoints],
            "signedEndpointCount": self.signed_endpoint_count,
            "operations": operations,
            "signatures": [to_hex(item) for item in self.signatures],
            "messageHash": to_hex(self.message_hash),
        }

    @classmethod
    def from_json(cls, data: Mapping[str, Any]) -> "Formula":
        """Build from `to_json` output or hand-written YAML/JSON.

        `messageHash`, when present, must match the recomputed hash.
        """
        if not isinstance(data, Mapping):
            raise SpecError(ErrorCode.INVALID_FORMULA, "formula data must be a mapping")
        formula = cls(
            salt=data.get("salt"),
            endpoints=data.get("endpoints") or (),
            signed_endpoint_count=data.get("signedEndpointCount"),
            operations=data.get("operations") or (),
            signatures=data.get("signatures") or (),
        )
        expected = data.get("messageHash")
        if expected is not None and hex_to_bytes(expected) != formula.message_hash:
            raise SpecError(ErrorCode.INVALID_FORMULA, "messageHash does not match formula content")
        return formula


