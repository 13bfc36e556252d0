"""TRON address validation and conversion.

A TRON address is base58check over 25 bytes: the 0x41 version byte, the
20-byte account id, and a 4-byte double-SHA256 checksum. Contract calls
need the 20-byte body; results come back as 32-byte ABI words that are
turned back into base58 here.
"""

from __future__ import annotations

import hashlib
import re

from blockserved.core.exceptions import InvalidAddress

_ALPHABET = "123456789ABCDEFGHJKLMNPQRSTUVWXYZabcdefghijkmnopqrstuvwxyz"
_INDEX = {char: i for i, char in enumerate(_ALPHABET)}
_ADDRESS_PATTERN = re.compile(r"^T[1-9A-HJ-NP-Za-km-z]{33}$")

ADDRESS_PREFIX = 0x41
_PAYLOAD_LENGTH = 21


def _checksum(payload: bytes) -> bytes:
    return hashlib.sha256(hashlib.sha256(payload).digest()).digest()[:4]


def _b58decode(value: str) -> bytes:
    number = 0
    for char in value:
        number = number * 58 + _INDEX[char]
    body = number.to_bytes((number.bit_length() + 7) // 8, "big") if number else b""
    leading = len(value) - len(value.lstrip("1"))
    return b"\x00" * leading + body


def _b58encode(raw: bytes) -> str:
    number = int.from_bytes(raw, "big")
    chars: list[str] = []
    while number:
        number, rem = divmod(number, 58)
        chars.append(_ALPHABET[rem])
    leading = len(raw) - len(raw.lstrip(b"\x00"))
    return "1" * leading + "".join(reversed(chars))


def is_valid_address(address: object) -> bool:
    """Return True if ``address`` is a well-formed base58 TRON address."""
    if not isinstance(address, str) or not _ADDRESS_PATTERN.match(address):
        return False
    raw = _b58decode(address)
    if len(raw) != _PAYLOAD_LENGTH + 4:
        return False
    payload, check = raw[:_PAYLOAD_LENGTH], raw[_PAYLOAD_LENGTH:]
    return payload[0] == ADDRESS_PREFIX and _checksum(payload) == check


def validate_address(address: object) -> str:
    """Return ``address`` unchanged, or raise InvalidAddress."""
    if not is_valid_address(address):
        raise InvalidAddress(
            "Invalid TRON address",
            details={"address": str(address)[:64]},
        )
    return address  # type: ignore[return-value]


def address_to_bytes(address: str) -> bytes:
    """Return the 20-byte account id of a base58 TRON address."""
    validate_address(address)
    return _b58decode(address)[1:_PAYLOAD_LENGTH]


def address_from_bytes(body: bytes) -> str:
    """Encode a 20-byte account id as a base58 TRON address."""
    if len(body) != _PAYLOAD_LENGTH - 1:
        msg = f"Expected a 20-byte account id, got {len(body)} bytes"
        raise ValueError(msg)
    payload = bytes([ADDRESS_PREFIX]) + body
    return _b58encode(payload + _checksum(payload))


def same_address(a: str | None, b: str | None) -> bool:
    """Compare two addresses; base58 is case-sensitive but stored data is not always."""
    if not a or not b:
        return False
    return a == b or a.lower() == b.lower()
