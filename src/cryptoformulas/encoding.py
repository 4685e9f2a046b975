"""Wire-format value codec.

Values are packed back to back with no delimiters. Fixed-width types use the
widths from `config`; `bytes` carries a uint256 length prefix; `hexString` is
a raw passthrough used when composing hash preimages.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any, Iterable, Sequence, Union

from .config import (
    ADDRESS_SIZE,
    EMPTY_SIGNATURE,
    SIGNATURE_SIZE,
    UINT16_MAX,
    UINT16_SIZE,
    UINT256_MAX,
    UINT256_SIZE,
    UINT32_MAX,
    UINT32_SIZE,
)
from .errors import ErrorCode, SpecError
from .types import ValueType

_HEX_RE = re.compile(r"^(0x)?([0-9a-fA-F]{2})*$")
_ADDRESS_RE = re.compile(r"^0x[0-9a-fA-F]{40}$")

_NUMERIC_LIMITS = {
    ValueType.ENDPOINT: UINT16_MAX,
    ValueType.SIGNED_ENDPOINT: UINT16_MAX,
    ValueType.UINT16: UINT16_MAX,
    ValueType.UINT32: UINT32_MAX,
    ValueType.UINT256: UINT256_MAX,
}

_NUMERIC_SIZES = {
    ValueType.ENDPOINT: UINT16_SIZE,
    ValueType.SIGNED_ENDPOINT: UINT16_SIZE,
    ValueType.UINT16: UINT16_SIZE,
    ValueType.UINT32: UINT32_SIZE,
    ValueType.UINT256: UINT256_SIZE,
}

NUMERIC_TYPES = frozenset(_NUMERIC_LIMITS)
ENDPOINT_TYPES = frozenset({ValueType.ENDPOINT, ValueType.SIGNED_ENDPOINT})


@dataclass
class Writer:
    buf: bytearray = field(default_factory=bytearray)

    def write_uint(self, v: int, size: int) -> None:
        self.buf.extend(int(v).to_bytes(size, "big", signed=False))

    def write_u16(self, v: int) -> None:
        self.write_uint(v, UINT16_SIZE)

    def write_u256(self, v: int) -> None:
        self.write_uint(v, UINT256_SIZE)

    def write_bytes(self, b: bytes) -> None:
        self.buf.extend(b)

    def getvalue(self) -> bytes:
        return bytes(self.buf)


@dataclass
class Reader:
    data: bytes
    offset: int = 0

    @property
    def remaining(self) -> int:
        return len(self.data) - self.offset

    def read_bytes(self, size: int) -> bytes:
        if size > self.remaining:
            raise SpecError(
                ErrorCode.INVALID_VALUE,
                f"input exhausted: need {size} bytes at offset {self.offset}, have {self.remaining}",
            )
        chunk = self.data[self.offset : self.offset + size]
        self.offset += size
        return chunk

    def read_uint(self, size: int) -> int:
        return int.from_bytes(self.read_bytes(size), "big", signed=False)

    def read_u16(self) -> int:
        return self.read_uint(UINT16_SIZE)

    def read_u256(self) -> int:
        return self.read_uint(UINT256_SIZE)

    def read_rest(self) -> bytes:
        return self.read_bytes(self.remaining)


# --- Hex helpers ---


def strip_0x(value: str) -> str:
    return value[2:] if value.startswith(("0x", "0X")) else value


def hex_to_bytes(value: Union[str, bytes, bytearray]) -> bytes:
    """Parse `0x`-prefixed (or bare) even-length hex into bytes."""
    if isinstance(value, (bytes, bytearray)):
        return bytes(value)
    if not isinstance(value, str) or not _HEX_RE.match(value):
        raise SpecError(ErrorCode.INVALID_FORMAT, "malformed hex string")
    return bytes.fromhex(strip_0x(value))


def to_hex(value: bytes) -> str:
    return "0x" + bytes(value).hex()


# --- Normalization ---


def _normalize_number(value_type: ValueType, value: Any) -> int:
    if isinstance(value, bool):
        raise SpecError(ErrorCode.INVALID_VALUE, f"{value_type.value} must be numeric, got bool")
    if isinstance(value, int):
        number = value
    elif isinstance(value, str):
        text = value.strip()
        try:
            number = int(text, 16) if text.lower().startswith("0x") else int(text, 10)
        except ValueError:
            raise SpecError(ErrorCode.INVALID_VALUE, f"invalid {value_type.value} '{value}'") from None
    else:
        raise SpecError(ErrorCode.INVALID_VALUE, f"invalid {value_type.value} value of type {type(value).__name__}")

    if number < 0 or number > _NUMERIC_LIMITS[value_type]:
        raise SpecError(ErrorCode.INVALID_VALUE, f"{value_type.value} out of range: {number}")
    return number


def normalize_address(value: Any) -> bytes:
    if isinstance(value, (bytes, bytearray)):
        if len(value) != ADDRESS_SIZE:
            raise SpecError(ErrorCode.INVALID_VALUE, f"address must be {ADDRESS_SIZE} bytes")
        return bytes(value)
    if isinstance(value, str) and _ADDRESS_RE.match(value):
        return bytes.fromhex(value[2:])
    raise SpecError(ErrorCode.INVALID_VALUE, f"invalid address '{value}'")


def normalize_signature(value: Any) -> bytes:
    if value is None:
        return EMPTY_SIGNATURE
    if isinstance(value, str):
        try:
            value = hex_to_bytes(value)
        except SpecError:
            raise SpecError(ErrorCode.INVALID_VALUE, "invalid signature hex") from None
    if not isinstance(value, (bytes, bytearray)) or len(value) != SIGNATURE_SIZE:
        raise SpecError(ErrorCode.INVALID_VALUE, f"signature must be {SIGNATURE_SIZE} bytes")
    return bytes(value)


def normalize_value(value_type: ValueType, value: Any) -> Any:
    """Bring `value` to its canonical Python form for `value_type`.

    Numbers become `int` regardless of input spelling, so `"0x01"`, `"1"` and
    `1` produce identical wire bytes and hashes.
    """
    if not isinstance(value_type, ValueType):
        raise SpecError(ErrorCode.INVALID_TYPE, f"invalid type '{value_type}'")
    if value_type in NUMERIC_TYPES:
        return _normalize_number(value_type, value)
    if value_type == ValueType.ADDRESS:
        return normalize_address(value)
    if value_type == ValueType.SIGNATURE:
        return normalize_signature(value)
    if value_type in (ValueType.BYTES, ValueType.HEX_STRING):
        try:
            return hex_to_bytes(value)
        except SpecError:
            raise SpecError(ErrorCode.INVALID_VALUE, f"invalid {value_type.value} value") from None
    raise SpecError(ErrorCode.INVALID_TYPE, f"invalid type '{value_type}'")


# --- Byte level ---


def write_value(w: Writer, value_type: ValueType, value: Any) -> None:
    value = normalize_value(value_type, value)
    if value_type in NUMERIC_TYPES:
        w.write_uint(value, _NUMERIC_SIZES[value_type])
        return
    if value_type == ValueType.BYTES:
        w.write_u256(len(value))
        w.write_bytes(value)
        return
    # address, signature and hexString are written as-is
    w.write_bytes(value)


def read_value(r: Reader, value_type: ValueType) -> Any:
    if not isinstance(value_type, ValueType):
        raise SpecError(ErrorCode.INVALID_TYPE, f"invalid type '{value_type}'")
    if value_type in NUMERIC_TYPES:
        return r.read_uint(_NUMERIC_SIZES[value_type])
    if value_type == ValueType.ADDRESS:
        return r.read_bytes(ADDRESS_SIZE)
    if value_type == ValueType.SIGNATURE:
        return r.read_bytes(SIGNATURE_SIZE)
    if value_type == ValueType.BYTES:
        length = r.read_u256()
        return r.read_bytes(length)
    if value_type == ValueType.HEX_STRING:
        return r.read_rest()
    raise SpecError(ErrorCode.INVALID_TYPE, f"invalid type '{value_type}'")


def write_packed(w: Writer, types: Sequence[ValueType], values: Sequence[Any]) -> None:
    if len(types) != len(values):
        raise SpecError(ErrorCode.INVALID_VALUE, "types/values length mismatch")
    for value_type, value in zip(types, values):
        write_value(w, value_type, value)


def read_packed(r: Reader, types: Iterable[ValueType]) -> list[Any]:
    values = []
    for value_type in types:
        if not r.remaining:
            raise SpecError(ErrorCode.INVALID_VALUE, "input exhausted before all types were decoded")
        values.append(read_value(r, value_type))
    return values


# --- Hex level ---


def encode_value(value_type: ValueType, value: Any) -> str:
    """Encode one value to bare lower-case hex."""
    w = Writer()
    write_value(w, value_type, value)
    return w.getvalue().hex()


def decode_value(value_type: ValueType, data: str) -> tuple[int, Any, str]:
    """Decode one value from hex; returns (consumed hex chars, value, remainder)."""
    raw = strip_0x(data)
    r = Reader(hex_to_bytes(raw))
    value = read_value(r, value_type)
    consumed = r.offset * 2
    return consumed, value, raw[consumed:]


def encode_packed(types: Sequence[ValueType], values: Sequence[Any]) -> str:
    w = Writer()
    write_packed(w, types, values)
    return w.getvalue().hex()


def decode_packed(types: Sequence[ValueType], data: str) -> tuple[int, list[Any], str]:
    raw = strip_0x(data)
    r = Reader(hex_to_bytes(raw))
    values = read_packed(r, types)
    consumed = r.offset * 2
    return consumed, values, raw[consumed:]
