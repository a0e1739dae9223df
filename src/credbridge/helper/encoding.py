# src/credbridge/helper/encoding.py
"""
Hex, hashing and address helpers shared by ledgers, codec and relayer.

Conventions used across the package:

  * program / account addresses: "0x" + 40 lowercase hex chars
  * 32-byte hashes (cid hash, content hash, digests): "0x" + 64 hex chars
  * emitter addresses on the wire: 64 hex chars, *no* prefix, i.e. the
    20-byte address left-padded with zeros to 32 bytes
"""
from __future__ import annotations

from eth_utils import keccak

ZERO_ADDRESS = "0x" + "00" * 20


def strip_hex_prefix(value: str) -> str:
    value = value.strip()
    if value.startswith(("0x", "0X")):
        return value[2:]
    return value


def hex_to_bytes(value: str) -> bytes:
    """Decode a hex string with or without "0x"; raises ValueError on bad input."""
    if not isinstance(value, str):
        raise ValueError(f"Expected hex string, got {type(value).__name__}: {value!r}")
    try:
        return bytes.fromhex(strip_hex_prefix(value))
    except ValueError as exc:
        raise ValueError(f"Not a valid hex string: {value!r}") from exc


def keccak256(data: bytes) -> bytes:
    return keccak(data)


def keccak_hex(data: bytes) -> str:
    return "0x" + keccak(data).hex()


def cid_hash(cid: str) -> str:
    """
    Primary key of a credential: keccak256(utf8(cid)).

    Both ledgers key their records by this hash, never by the raw CID.
    """
    return keccak_hex(cid.encode("utf-8"))


def normalize_address(value: str) -> str:
    """Return a 20-byte address as lowercase "0x..." or raise ValueError."""
    raw = hex_to_bytes(value)
    if len(raw) != 20:
        raise ValueError(f"Address must be 20 bytes, got {len(raw)}: {value!r}")
    return "0x" + raw.hex()


def normalize_bytes32(value: str) -> str:
    """Return a 32-byte hash as lowercase "0x..." or raise ValueError."""
    raw = hex_to_bytes(value)
    if len(raw) != 32:
        raise ValueError(f"Expected 32 bytes, got {len(raw)}: {value!r}")
    return "0x" + raw.hex()


def to_emitter_address(address: str) -> str:
    """
    Wire form of an emitter identity.

    Accepts either a 20-byte program address (left-padded to 32 bytes) or
    an already padded 32-byte value. Returns 64 lowercase hex chars without
    a prefix.
    """
    raw = hex_to_bytes(address)
    if len(raw) == 20:
        raw = b"\x00" * 12 + raw
    if len(raw) != 32:
        raise ValueError(f"Emitter address must be 20 or 32 bytes: {address!r}")
    return raw.hex()


def emitter_to_address(emitter: str) -> str:
    """Inverse of `to_emitter_address` for EVM emitters."""
    raw = hex_to_bytes(emitter)
    if len(raw) != 32 or any(raw[:12]):
        raise ValueError(f"Not a padded EVM emitter address: {emitter!r}")
    return "0x" + raw[12:].hex()


def account_address(label: str) -> str:
    """Deterministic pseudo-account for simulations and tests."""
    return "0x" + keccak(b"account:" + label.encode("utf-8"))[-20:].hex()


def is_zero_address(value: str) -> bool:
    try:
        return not any(hex_to_bytes(value))
    except ValueError:
        return False
