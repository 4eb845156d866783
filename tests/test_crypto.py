"""Unit tests for core/crypto.py.

Covers:
- digest() is deterministic, 64 chars, lowercase hex
- constant_time_equals() equality, mismatch, and length mismatch
"""

import re

from core.crypto import DIGEST_LENGTH, constant_time_equals, digest


def test_digest_is_deterministic():
    assert digest("s3cret") == digest("s3cret")


def test_digest_known_value():
    assert digest("") == "e3b0c44298fc1c149afbf4c8996fb92427ae41e4649b934ca495991b7852b855"


def test_digest_fixed_length_hex_alphabet():
    for value in ["", "a", "x" * 5000, "päss wörd 🔑"]:
        d = digest(value)
        assert len(d) == DIGEST_LENGTH
        assert re.fullmatch(r"[0-9a-f]{64}", d), f"Unexpected digest alphabet: {d}"


def test_digest_differs_for_different_inputs():
    assert digest("secret") != digest("Secret")


def test_constant_time_equals_matches():
    assert constant_time_equals("abc", "abc")
    assert constant_time_equals("", "")


def test_constant_time_equals_mismatch_anywhere():
    assert not constant_time_equals("abc", "xbc")
    assert not constant_time_equals("abc", "abx")


def test_constant_time_equals_length_mismatch():
    assert not constant_time_equals("abc", "abcd")
    assert not constant_time_equals("abcd", "abc")
    assert not constant_time_equals("", "a")


def test_constant_time_equals_prefix_padding_is_not_equal():
    # Zero-padding the shorter side must not make "a" equal "a\x00".
    assert not constant_time_equals("a", "a\x00")
