"""Tests for kreep.crypto."""

import pytest

from kreep import crypto
from kreep.crypto import (
    AuthenticationError,
    EncryptionError,
    RandomSourceError,
    generate_key,
    generate_nonce,
    open_sealed,
    seal,
)


def test_generate_key_returns_32_bytes():
    assert len(generate_key()) == 32


def test_generate_key_is_random():
    keys = {generate_key() for _ in range(20)}
    assert len(keys) == 20, "Keys should be unique"


def test_generate_nonce_returns_12_bytes():
    assert len(generate_nonce()) == 12


def test_seal_open_roundtrip():
    key = generate_key()
    nonce, token = seal(key, b"aad", b"super secret data")
    assert open_sealed(key, b"aad", nonce, token) == b"super secret data"


def test_token_carries_16_byte_tag():
    nonce, token = seal(generate_key(), b"", b"12345")
    assert len(nonce) == 12
    assert len(token) == 5 + 16


def test_seal_uses_fresh_nonce_each_call():
    key = generate_key()
    n1, t1 = seal(key, b"aad", b"same data")
    n2, t2 = seal(key, b"aad", b"same data")
    assert n1 != n2
    assert t1 != t2


def test_ciphertext_is_not_plaintext():
    _, token = seal(generate_key(), b"aad", b"secret")
    assert b"secret" not in token


def test_open_wrong_key_raises():
    nonce, token = seal(generate_key(), b"aad", b"data")
    with pytest.raises(AuthenticationError, match="Authentication failed"):
        open_sealed(generate_key(), b"aad", nonce, token)


def test_open_wrong_aad_raises():
    key = generate_key()
    nonce, token = seal(key, b"aad", b"data")
    with pytest.raises(AuthenticationError):
        open_sealed(key, b"other", nonce, token)


def test_authentication_error_is_value_error():
    assert issubclass(AuthenticationError, ValueError)


def test_seal_with_bad_key_size_raises_encryption_error():
    with pytest.raises(EncryptionError):
        seal(b"short", b"aad", b"data")


def test_unavailable_random_source_raises(monkeypatch):
    def broken(size):
        raise OSError("no entropy")

    monkeypatch.setattr(crypto.os, "urandom", broken)
    with pytest.raises(RandomSourceError):
        generate_key()
    with pytest.raises(RandomSourceError):
        seal(b"\x00" * 32, b"", b"data")
