"""Core types for Crypto Formulas.

Addresses, hashes and signatures are raw `bytes`; amounts, token ids and
salts are Python `int` values bounded by the wire width of their field.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum, IntEnum
from typing import TYPE_CHECKING, Optional, Union

if TYPE_CHECKING:
    from .formula import Formula


class ValueType(Enum):
    ENDPOINT = "endpoint"
    SIGNED_ENDPOINT = "signedEndpoint"
    ADDRESS = "address"
    UINT16 = "uint16"
    UINT32 = "uint32"
    UINT256 = "uint256"
    HEX_STRING = "hexString"
    BYTES = "bytes"
    SIGNATURE = "signature"


class TypeAlias(Enum):
    """Richer operand meaning, used to render proper inputs in user interfaces."""

    BLOCK_NUMBER = "blockNumber"
    ETHER_AMOUNT = "etherAmount"
    TOKEN_AMOUNT = "tokenAmount"
    ETHER_FEE_AMOUNT = "etherFeeAmount"
    TOKEN_ID = "tokenId"
    ERC20_ADDRESS = "erc20Address"
    ERC721_ADDRESS = "erc721Address"


class InstructionCode(IntEnum):
    SEND_ETHER = 0
    SEND_ERC20 = 1
    SEND_ERC721 = 2
    SEND_ETHER_WITHDRAW = 3
    PAY_FEE = 4
    TIME_CONDITION = 5


@dataclass(frozen=True)
class OperandField:
    type: ValueType
    name: str
    type_alias: Optional[TypeAlias] = None


@dataclass(frozen=True)
class Operation:
    instruction: InstructionCode
    operands: tuple


# --- Analysis diagnostics ---


class ErrorType(Enum):
    ERROR = "error"
    WARNING = "warning"


class ErrorReason(Enum):
    # Shared by multiple instructions
    SENDER_EMPTY = "senderEmpty"
    TARGET_EMPTY = "targetEmpty"
    INSUFFICIENT_ETHER_INTERNAL = "insufficientEtherInternal"
    TOKEN_EMPTY = "tokenEmpty"
    NO_CONTRACT_AT_TOKEN_ADDRESS = "noContractAtTokenAddress"
    SENDER_IS_TARGET = "senderIsTarget"
    TARGET_IS_CONTRACT = "targetIsContract"

    # sendErc20
    NO_ERC20_CONTRACT_AT_ADDRESS = "noErc20ContractAtAddress"
    INSUFFICIENT_ERC20_BALANCE = "insufficientErc20Balance"
    INSUFFICIENT_ERC20_ALLOWANCE = "insufficientErc20Allowance"

    # sendErc721
    NO_ERC721_CONTRACT_AT_ADDRESS = "noErc721ContractAtAddress"
    NO_ERC721_TOKEN_OWNER = "noErc721TokenOwner"
    NO_ERC721_APPROVAL = "noErc721Approval"
    ERC721_APPROVAL_UNVERIFIABLE = "erc721ApprovalUnverifiable"

    # payFee
    FEE_TOO_LOW = "feeTooLow"
    INSUFFICIENT_ETHER_INTERNAL_FOR_FEE = "insufficientEtherInternalForFee"

    # timeCondition
    MINIMUM_BLOCK_HIGHER_THAN_MAXIMUM = "minimumBlockHigherThanMaximum"
    MINIMUM_BLOCK_NOT_REACHED = "minimumBlockNotReached"
    MAXIMUM_BLOCK_ALREADY_PASSED = "maximumBlockAlreadyPassed"
    NO_TIME_CONDITION_SET = "noTimeConditionSet"


@dataclass(frozen=True)
class EmptyEndpoint:
    endpoint: int


@dataclass(frozen=True)
class TokenAddress:
    token: bytes


@dataclass(frozen=True)
class EndpointAddress:
    endpoint: int
    address: bytes


@dataclass(frozen=True)
class InsufficientEtherInternal:
    endpoint: int
    address: bytes
    settlement: bytes
    balance: int
    amount: int


@dataclass(frozen=True)
class InsufficientErc20Balance:
    endpoint: int
    address: bytes
    token: bytes
    amount: int
    balance: int


@dataclass(frozen=True)
class InsufficientErc20Allowance:
    endpoint: int
    address: bytes
    token: bytes
    amount: int
    allowance: int


@dataclass(frozen=True)
class Erc721TokenOwner:
    endpoint: int
    address: bytes
    token: bytes
    token_id: int
    owner: Optional[bytes]


@dataclass(frozen=True)
class Erc721Approval:
    endpoint: int
    address: bytes
    token: bytes
    token_id: int


@dataclass(frozen=True)
class FeeTooLow:
    required_fee: int
    amount: int


@dataclass(frozen=True)
class BlockRange:
    minimum_block: int
    maximum_block: int


@dataclass(frozen=True)
class BlockReached:
    block: int
    current_block: int
    current_timestamp: int


ErrorParameters = Union[
    EmptyEndpoint,
    TokenAddress,
    EndpointAddress,
    InsufficientEtherInternal,
    InsufficientErc20Balance,
    InsufficientErc20Allowance,
    Erc721TokenOwner,
    Erc721Approval,
    FeeTooLow,
    BlockRange,
    BlockReached,
]


@dataclass(frozen=True)
class AnalyzerError:
    instruction_code: InstructionCode
    reason: ErrorReason
    error_type: ErrorType
    parameters: ErrorParameters


AnalyzerResult = list[AnalyzerError]


class PresignState(IntEnum):
    DEFAULT = 0
    PERMITTED = 1
    FORBIDDEN = 2


@dataclass(frozen=True)
class BlockStats:
    number: int
    timestamp: int


@dataclass(frozen=True)
class TransactionStats:
    number: int
    timestamp: int
    transaction_hash: bytes


# --- Asset state ---


class Unlimited:
    """Approval for every token of an ERC721 contract (`isApprovedForAll`)."""

    _instance: Optional["Unlimited"] = None

    def __new__(cls) -> "Unlimited":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "UNLIMITED"

    def __reduce__(self):
        return (Unlimited, ())


UNLIMITED = Unlimited()

TokenIds = tuple  # multiset of ERC721 token ids, insertion ordered
Erc721AllowanceValue = Union[Unlimited, TokenIds]


@dataclass
class AssetState:
    """Assets per endpoint index. A missing key means zero / nothing."""

    ether_internal: dict[int, int] = field(default_factory=dict)
    ether_external: dict[int, int] = field(default_factory=dict)
    erc20_balance: dict[int, dict[bytes, int]] = field(default_factory=dict)
    erc20_allowance: dict[int, dict[bytes, int]] = field(default_factory=dict)
    erc721_balance: dict[int, dict[bytes, TokenIds]] = field(default_factory=dict)
    erc721_allowance: dict[int, dict[bytes, Erc721AllowanceValue]] = field(default_factory=dict)


ASSET_CATEGORIES = (
    "ether_internal",
    "ether_external",
    "erc20_balance",
    "erc20_allowance",
    "erc721_balance",
    "erc721_allowance",
)


@dataclass
class AssetDiff:
    positive: AssetState = field(default_factory=AssetState)
    negative: AssetState = field(default_factory=AssetState)


@dataclass
class AssetBalances:
    starting: AssetState = field(default_factory=AssetState)
    needed_extremes: AssetState = field(default_factory=AssetState)
    missing: AssetState = field(default_factory=AssetState)


@dataclass
class Totals:
    errors: int = 0
    warnings: int = 0


@dataclass
class Analysis:
    is_complete: bool = True
    formula: Optional["Formula"] = None
    executed: bool = False
    already_executed: Optional[TransactionStats] = None
    fee_missing: bool = False
    fee_is_low: bool = False
    is_empty: bool = False
    operations: list[AnalyzerResult] = field(default_factory=list)
    presignes: list[PresignState] = field(default_factory=list)
    assets_balances: AssetBalances = field(default_factory=AssetBalances)
    totals: Totals = field(default_factory=Totals)
