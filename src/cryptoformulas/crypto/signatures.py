"""Endpoint signatures.

Each endpoint signs `formula.get_message_to_sign(index)` wrapped in the
`eth_sign` envelope (`"\\x19Ethereum Signed Message:\\n32" || digest`). The
digest binds the signature to a position; `validate_formula` binds the
position to the address by recovering the signer.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Optional

from eth_account import Account
from eth_account.messages import encode_defunct

from ..errors import ErrorCode, SpecError

if TYPE_CHECKING:
    from ..formula import Formula

logger = logging.getLogger(__name__)


def sign_endpoint(formula: "Formula", private_key: bytes, endpoint_index: int) -> bytes:
    """Sign the Formula on behalf of the endpoint at `endpoint_index`."""
    if not 0 <= endpoint_index < formula.signed_endpoint_count:
        raise SpecError(ErrorCode.INVALID_ENDPOINT, f"endpoint {endpoint_index} is not a signing endpoint")
    message = encode_defunct(primitive=formula.get_message_to_sign(endpoint_index))
    signed = Account.sign_message(message, private_key=private_key)
    return bytes(signed.signature)


def recover_endpoint_signer(formula: "Formula", endpoint_index: int) -> Optional[bytes]:
    """Address that produced the signature at `endpoint_index`, None if unsigned or invalid."""
    if not formula.is_signed(endpoint_index):
        return None
    message = encode_defunct(primitive=formula.get_message_to_sign(endpoint_index))
    try:
        signer = Account.recover_message(message, signature=formula.signatures[endpoint_index])
    except Exception as exc:  # eth_keys raises several unrelated types for bad signatures
        logger.debug("signature %d does not recover: %s", endpoint_index, exc)
        return None
    return bytes.fromhex(signer[2:])


def validate_formula(formula: "Formula") -> bool:
    """Mirror of the settlement contract's signature validation.

    Every signing endpoint must carry a signature recovering to the address
    stored at the same index.
    """
    for index in range(formula.signed_endpoint_count):
        signer = recover_endpoint_signer(formula, index)
        if signer is None or signer != formula.endpoints[index]:
            return False
    return True
