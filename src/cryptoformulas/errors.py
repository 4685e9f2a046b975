"""Crypto Formulas error codes and exceptions."""

from __future__ import annotations

from dataclasses import dataclass
from enum import IntEnum


class ErrorCategory(IntEnum):
    SUCCESS = 0x00
    VALIDATION = 0x01
    FORMAT = 0x02
    ANALYSIS = 0x03


class ErrorCode(IntEnum):
    # Success
    SUCCESS = 0x0000

    # Validation
    INVALID_FORMULA = 0x0100
    INVALID_INSTRUCTION = 0x0101
    INVALID_ENDPOINT = 0x0102

    # Format (codec)
    INVALID_VALUE = 0x0200
    INVALID_TYPE = 0x0201
    INVALID_FORMAT = 0x0202
    TRAILING_DATA = 0x0203

    # Analysis (collaborator boundary)
    WEB3_UNAVAILABLE = 0x0300
    CHAIN_READ_FAILED = 0x0301

    @property
    def category(self) -> ErrorCategory:
        return ErrorCategory(self.value >> 8)


@dataclass(frozen=True)
class SpecError(Exception):
    code: ErrorCode
    message: str

    def __str__(self) -> str:
        return f"{self.code.name}({self.code:#06x}): {self.message}"


# Allow Python's Exception machinery to set __traceback__/__context__/__cause__
# while keeping dataclass fields frozen (Python 3.13 contextlib compat).
_EXCEPTION_ATTRS = frozenset(("__traceback__", "__context__", "__cause__"))
_frozen_setattr = SpecError.__setattr__


def _spec_error_setattr(self: SpecError, name: str, value: object) -> None:
    if name in _EXCEPTION_ATTRS:
        object.__setattr__(self, name, value)
    else:
        _frozen_setattr(self, name, value)


SpecError.__setattr__ = _spec_error_setattr  # type: ignore[method-assign]
