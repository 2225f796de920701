"""Deterministic contract address derivation.

``predict`` implements the EIP-1014 CREATE2 rule used by factories::

    keccak256(0xff ++ factory ++ salt ++ keccak256(init_code))[12:]

``predict_create`` implements the nonce-based CREATE rule::

    keccak256(rlp([sender, nonce]))[12:]
"""

from __future__ import annotations

from typing import Union

import rlp
from eth_utils import is_hex, keccak, to_bytes, to_canonical_address, to_checksum_address

BytesLike = Union[bytes, bytearray, str, int]

_CREATE2_PREFIX = b"\xff"


def to_bytes32(value: BytesLike, *, label: str = "value") -> bytes:
    """Normalise a salt or hash to exactly 32 bytes.

    Integers are left-padded. Hex strings and byte strings must already be
    32 bytes long: silently padding a short hash would derive the wrong address.
    """

    if isinstance(value, bool):
        raise TypeError(f"{label} must be bytes, hex or int, not bool")
    if isinstance(value, int):
        if value < 0 or value >= 1 << 256:
            raise ValueError(f"{label} does not fit in 32 bytes")
        return value.to_bytes(32, "big")
    if isinstance(value, str):
        if not is_hex(value):
            raise ValueError(f"{label} {value!r} is not hex")
        raw = to_bytes(hexstr=value)
    else:
        raw = bytes(value)
    if len(raw) != 32:
        raise ValueError(f"{label} must be 32 bytes, got {len(raw)}")
    return raw


def init_code_hash(init_code: BytesLike) -> bytes:
    """keccak-256 of creation code."""

    if isinstance(init_code, str):
        return keccak(hexstr=init_code)
    return keccak(bytes(init_code))


def predict(factory: str, salt: BytesLike, code_hash: BytesLike) -> str:
    """Return the checksummed address a CREATE2 factory will deploy to."""

    factory_bytes = to_canonical_address(factory)
    digest = keccak(
        _CREATE2_PREFIX
        + factory_bytes
        + to_bytes32(salt, label="salt")
        + to_bytes32(code_hash, label="code hash")
    )
    return to_checksum_address(digest[12:])


def predict_create(deployer: str, nonce: int) -> str:
    """Return the checksummed address of a plain CREATE from ``deployer`` at ``nonce``."""

    if nonce < 0:
        raise ValueError("nonce must be non-negative")
    encoded = rlp.encode([to_canonical_address(deployer), nonce])
    return to_checksum_address(keccak(encoded)[12:])


__all__ = ["init_code_hash", "predict", "predict_create", "to_bytes32"]
