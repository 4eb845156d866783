"""
core/crypto.py -- Credential hashing and timing-safe comparison.

Both the admin client and the server import from here so the proof the client
computes is byte-for-byte the digest the server compares against.

digest():
    SHA-256 hex of the UTF-8 input. Deterministic, 64 lowercase hex chars.
    The client stores digest(passphrase) instead of the passphrase; the server
    compares digest(token) to digest(secret) so both sides of the comparison
    are always the same length.

constant_time_equals():
    XOR-accumulate over every byte. There is no early return on the first
    mismatch, so the loop's running time depends only on input length, never
    on where the inputs first differ.
"""

from __future__ import annotations

import hashlib

DIGEST_LENGTH = 64


def digest(value: str) -> str:
    """Return the SHA-256 hex digest of value."""
    return hashlib.sha256(value.encode("utf-8")).hexdigest()


def constant_time_equals(a: str, b: str) -> bool:
    """Compare two strings without leaking the position of the first difference.

    A length mismatch still walks the longer input so the work done is the
    same as for an equal-length comparison of that size.
    """
    left = a.encode("utf-8")
    right = b.encode("utf-8")
    result = len(left) ^ len(right)
    length = max(len(left), len(right))
    for i in range(length):
        x = left[i] if i < len(left) else 0
        y = right[i] if i < len(right) else 0
        result |= x ^ y
    return result == 0
