"""Crypto Formulas configuration constants.

Keep the wire widths aligned with the settlement contract's decoder:
every value is big-endian and packed without padding.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Optional

# Wire widths (bytes)
UINT16_SIZE = 2
UINT32_SIZE = 4
UINT256_SIZE = 32
ADDRESS_SIZE = 20
SIGNATURE_SIZE = 65  # r || s || v
HASH_SIZE = 32

UINT16_MAX = (1 << 16) - 1
UINT32_MAX = (1 << 32) - 1
UINT256_MAX = (1 << 256) - 1

# Formula limits (array lengths are encoded as uint16)
MAX_ENDPOINTS = UINT16_MAX
MAX_OPERATIONS = UINT16_MAX

# Reserved values
EMPTY_ADDRESS = b"\x00" * ADDRESS_SIZE
EMPTY_SIGNATURE = b"\x00" * SIGNATURE_SIZE

# Settlement contract event emitted on successful execution
FORMULA_EXECUTED_EVENT = "Formulas_FormulaExecuted(bytes32)"

# ERC165 interface ids accepted as ERC721
ERC721_INTERFACE_ID = bytes.fromhex("80ac58cd")
# First ERC721 draft including metadata (CryptoKitties era)
ERC721_DRAFT_INTERFACE_ID = bytes.fromhex("9a20483d")

# ERC20 detection looks for `PUSH4 <transferFrom selector>` in the bytecode
ERC20_TRANSFER_FROM_SIGNATURE = "transferFrom(address,address,uint256)"
PUSH4_OPCODE = b"\x63"

# Pre-standard ERC721 deployments expose approvals under other names. Each
# entry is a `name(uint256)` view returning the approved address.
LEGACY_ERC721_APPROVAL_PROBES = (
    "kittyIndexToApproved",
)

# RPC defaults
DEFAULT_RPC_TIMEOUT = 30.0


@dataclass
class AnalyzerConfig:
    """Connection settings for a full (chain-backed) analysis."""

    rpc_url: Optional[str] = None
    contract_address: Optional[str] = None
    rpc_timeout: float = DEFAULT_RPC_TIMEOUT
    verbose: bool = False

    @classmethod
    def from_env(cls) -> "AnalyzerConfig":
        """Load configuration from environment variables."""
        config = cls()
        config.rpc_url = os.environ.get("FORMULAS_RPC_URL") or None
        config.contract_address = os.environ.get("FORMULAS_CONTRACT") or None
        config.rpc_timeout = float(os.environ.get("FORMULAS_RPC_TIMEOUT", DEFAULT_RPC_TIMEOUT))
        config.verbose = os.environ.get("FORMULAS_VERBOSE", "").lower() in ("true", "1", "yes")
        return config
