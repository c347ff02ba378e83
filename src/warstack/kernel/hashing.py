"""
Digest functions for the ledger hash chain

A digest maps canonical text to a 64-character hex string. SHA-256 is the
default. The 32-bit shift-add checksum is kept for compatibility with older
chains and for tests that want a cheap stand-in; it offers no tamper
resistance beyond catching accidents.
"""

import hashlib
import json
from collections.abc import Callable
from typing import Any

Digest = Callable[[str], str]

HEX_DIGEST_LENGTH = 64


def canonical_json(obj: Any) -> str:
    """Sorted keys, compact separators, non-ASCII kept as-is"""
    return json.dumps(obj, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def sha256_digest(data: str) -> str:
    return hashlib.sha256(data.encode("utf-8")).hexdigest()


def checksum32_digest(data: str) -> str:
    """
    Legacy 32-bit "hash * 31 + code unit" checksum

    Iterates over UTF-16 code units and keeps a signed 32-bit accumulator.
    The result is rendered as signed hex (a leading "-" when negative) and
    left-padded with zeros to 64 characters, exactly as older chains did.
    """
    acc = 0
    encoded = data.encode("utf-16-le")
    for i in range(0, len(encoded), 2):
        unit = encoded[i] | (encoded[i + 1] << 8)
        acc = ((acc << 5) - acc + unit) & 0xFFFFFFFF
    if acc & 0x80000000:
        acc -= 0x100000000
    rendered = format(acc, "x")
    return rendered.rjust(HEX_DIGEST_LENGTH, "0")


_DIGESTS: dict[str, Digest] = {
    "sha256": sha256_digest,
    "checksum32": checksum32_digest,
}


def get_digest(name: str) -> Digest:
    """
    Look up a digest by name

    Raises:
        ValueError: Unknown digest name
    """
    try:
        return _DIGESTS[name]
    except KeyError:
        raise ValueError(
            f"Unknown digest '{name}' (expected one of: {', '.join(sorted(_DIGESTS))})"
        ) from None
