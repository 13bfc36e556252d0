"""Minimal Solidity ABI codec for the notice contract's view functions.

Only the types the contract getters use are supported: ``address``,
``uint256``, ``bool`` and ``string``. Calls take static arguments only,
so encoding is a straight concatenation of 32-byte words; decoding
handles the head/tail layout needed for dynamic strings.
"""

from __future__ import annotations

from collections.abc import Sequence

from blockserved.services.chain.address import address_from_bytes, address_to_bytes

WORD = 32
_UINT256_MAX = (1 << 256) - 1

SUPPORTED_TYPES = frozenset({"address", "uint256", "bool", "string"})


class AbiDecodeError(ValueError):
    """Raised when return data does not match the expected ABI layout."""


def encode_arguments(types: Sequence[str], values: Sequence[object]) -> str:
    """Encode static call arguments as a hex string (no 0x, no selector)."""
    if len(types) != len(values):
        msg = f"Got {len(values)} values for {len(types)} types"
        raise ValueError(msg)

    words: list[bytes] = []
    for abi_type, value in zip(types, values, strict=True):
        if abi_type == "address":
            words.append(address_to_bytes(str(value)).rjust(WORD, b"\x00"))
        elif abi_type == "uint256":
            number = int(value)  # type: ignore[call-overload]
            if not 0 <= number <= _UINT256_MAX:
                msg = f"uint256 out of range: {number}"
                raise ValueError(msg)
            words.append(number.to_bytes(WORD, "big"))
        elif abi_type == "bool":
            words.append((1 if value else 0).to_bytes(WORD, "big"))
        else:
            msg = f"Unsupported argument type: {abi_type}"
            raise ValueError(msg)
    return b"".join(words).hex()


def _word(data: bytes, offset: int) -> bytes:
    end = offset + WORD
    if offset < 0 or end > len(data):
        msg = f"Return data too short: need {end} bytes, have {len(data)}"
        raise AbiDecodeError(msg)
    return data[offset:end]


def _decode_string(data: bytes, head: bytes) -> str:
    offset = int.from_bytes(head, "big")
    length = int.from_bytes(_word(data, offset), "big")
    start = offset + WORD
    if start + length > len(data):
        msg = "String extends past end of return data"
        raise AbiDecodeError(msg)
    return data[start : start + length].decode("utf-8", errors="replace")


def decode_values(types: Sequence[str], data: bytes | str) -> tuple[object, ...]:
    """Decode ABI return data into Python values.

    ``uint256`` values are returned as Python ints; callers are expected to
    normalize them before they leave the chain layer.
    """
    raw = bytes.fromhex(data.removeprefix("0x")) if isinstance(data, str) else data

    values: list[object] = []
    for index, abi_type in enumerate(types):
        head = _word(raw, index * WORD)
        if abi_type == "address":
            values.append(address_from_bytes(head[-20:]))
        elif abi_type == "uint256":
            values.append(int.from_bytes(head, "big"))
        elif abi_type == "bool":
            values.append(int.from_bytes(head, "big") != 0)
        elif abi_type == "string":
            values.append(_decode_string(raw, head))
        else:
            msg = f"Unsupported return type: {abi_type}"
            raise AbiDecodeError(msg)
    return tuple(values)
