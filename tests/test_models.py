"""Tests for kreep.models and the capsule protocol."""

import json
import uuid

import pytest
from pydantic import ValidationError

from kreep.crypto import AuthenticationError
from kreep.models import Capsule, Credential, CredentialIndexer, open_capsule, seal_credential


def _flip(data: bytes, position: int, bit: int = 0) -> bytes:
    buf = bytearray(data)
    buf[position] ^= 1 << bit
    return bytes(buf)


# ---------------------------------------------------------------------------
# Credential
# ---------------------------------------------------------------------------


def test_new_credential_fields():
    c = Credential.new("alice", "s3cret")
    assert isinstance(c.id, uuid.UUID)
    assert c.user == "alice"
    assert c.password == "s3cret"
    assert len(c.api_key) == 32


def test_credential_ids_and_keys_are_unique():
    creds = [Credential.new("x", "y") for _ in range(100)]
    assert len({c.id for c in creds}) == 100
    assert len({c.api_key for c in creds}) == 100


def test_credential_is_frozen():
    c = Credential.new("alice", "s3cret")
    with pytest.raises(ValidationError):
        c.password = "changed"


def test_api_key_must_be_32_bytes():
    with pytest.raises(ValidationError):
        Credential(id=uuid.uuid4(), user="a", password="b", api_key=b"\x00" * 16)


def test_json_roundtrip_encodes_api_key_as_hex():
    c = Credential.new("alice", "s3cret")
    data = json.loads(c.model_dump_json())
    assert data["api_key"] == c.api_key.hex()
    assert data["id"] == str(c.id)
    assert Credential.model_validate_json(c.model_dump_json()) == c


def test_accessors():
    c = Credential.new("alice", "s3cret")
    assert c.api_key_hex == c.api_key.hex()
    assert c.masked_password == "******"


def test_indexer_uses_raw_id_bytes():
    c = Credential.new("alice", "s3cret")
    assert CredentialIndexer().index(c) == c.id.bytes
    assert len(CredentialIndexer().index(c)) == 16


# ---------------------------------------------------------------------------
# Capsule
# ---------------------------------------------------------------------------


def test_alice_scenario():
    c = Credential.new("alice", "s3cret")
    capsule = c.capsule()
    assert len(capsule.nonce) == 12
    assert len(capsule.to_hex()) == 24 + 2 * len(capsule.token)
    assert open_capsule(capsule, c.api_key, c.id) == ("alice", "s3cret")
    with pytest.raises(AuthenticationError):
        open_capsule(capsule, c.api_key, uuid.uuid4())


def test_roundtrip_with_unicode():
    c = Credential.new("bücher@example.com", "pässwörd ✓ \"quoted\"")
    assert open_capsule(seal_credential(c), c.api_key, c.id) == (c.user, c.password)


def test_roundtrip_through_wire_format():
    c = Credential.new("alice", "s3cret")
    wire = str(c.capsule())
    assert open_capsule(Capsule.from_hex(wire), c.api_key, c.id) == ("alice", "s3cret")


def test_payload_is_json_pair():
    from kreep.crypto import open_sealed

    c = Credential.new("alice", "s3cret")
    capsule = c.capsule()
    plaintext = open_sealed(c.api_key, c.id.bytes, capsule.nonce, capsule.token)
    assert json.loads(plaintext) == ["alice", "s3cret"]


def test_every_seal_draws_a_new_nonce():
    c = Credential.new("alice", "s3cret")
    nonces = {c.capsule().nonce for _ in range(50)}
    assert len(nonces) == 50


def test_capsule_does_not_contain_secrets():
    c = Credential.new("alice", "s3cret")
    raw = c.capsule().to_bytes()
    assert b"s3cret" not in raw
    assert c.api_key not in raw


def test_every_single_bit_flip_is_rejected():
    c = Credential.new("alice", "s3cret")
    raw = c.capsule().to_bytes()
    for position in range(len(raw)):
        for bit in range(8):
            tampered = Capsule.from_bytes(_flip(raw, position, bit))
            with pytest.raises(AuthenticationError):
                open_capsule(tampered, c.api_key, c.id)


def test_identity_binding():
    c = Credential.new("alice", "s3cret")
    capsule = c.capsule()
    other = Credential.new("alice", "s3cret")
    with pytest.raises(AuthenticationError):
        open_capsule(capsule, c.api_key, other.id)


def test_key_isolation():
    c1 = Credential.new("alice", "s3cret")
    c2 = Credential.new("bob", "hunter2")
    with pytest.raises(AuthenticationError):
        open_capsule(c1.capsule(), c2.api_key, c1.id)


def test_truncated_capsule_rejected():
    with pytest.raises(AuthenticationError):
        Capsule.from_bytes(b"\x00" * 27)


def test_non_hex_capsule_rejected():
    with pytest.raises(AuthenticationError):
        Capsule.from_hex("not hex at all")
