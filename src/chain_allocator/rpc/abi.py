"""ABI call encoding helpers for the handful of contract functions the engine touches."""

from typing import Any

from eth_abi import decode, encode
from eth_utils import decode_hex, encode_hex, function_signature_to_4byte_selector, to_checksum_address

MAX_UINT256 = 2**256 - 1

ERC20_BALANCE_OF = "balanceOf(address)"
ERC20_ALLOWANCE = "allowance(address,address)"
ERC20_APPROVE = "approve(address,uint256)"
AAVE_V3_SUPPLY = "supply(address,uint256,address,uint16)"


def _arg_types(signature: str) -> list[str]:
    inner = signature[signature.index("(") + 1 : signature.rindex(")")]
    return [t for t in inner.split(",") if t]


def encode_function_call(signature: str, args: list[Any]) -> str:
    """
    Encode calldata for ``signature`` applied to ``args``.

    Parameters
    ----------
    signature : str
        Canonical function signature, e.g. ``"approve(address,uint256)"``
    args : list[Any]
        Positional arguments; address arguments are checksummed before encoding

    Returns
    -------
    str
        ``0x``-prefixed calldata

    """
    types = _arg_types(signature)
    normalised = [to_checksum_address(a) if t == "address" else a for t, a in zip(types, args, strict=True)]
    selector = function_signature_to_4byte_selector(signature)
    return encode_hex(selector + encode(types, normalised))


def decode_uint256(data: str) -> int:
    """Decode a single ``uint256`` return value; empty data decodes to 0."""
    raw = decode_hex(data)
    if not raw:
        return 0
    (value,) = decode(["uint256"], raw)
    return value
