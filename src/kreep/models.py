"""Domain models for kreep."""

from __future__ import annotations

import binascii
import json
import uuid
from dataclasses import dataclass

from pydantic import BaseModel, ConfigDict, field_serializer, field_validator

from .crypto import (
    KEY_SIZE,
    NONCE_SIZE,
    TAG_SIZE,
    AuthenticationError,
    generate_key,
    open_sealed,
    seal,
)


@dataclass(frozen=True)
class Capsule:
    """A sealed ``(user, password)`` pair ready to leave the machine.

    Wire format: ``hex(nonce || ciphertext || tag)``.
    """

    nonce: bytes
    token: bytes

    def to_bytes(self) -> bytes:
        return self.nonce + self.token

    def to_hex(self) -> str:
        return self.to_bytes().hex()

    def __str__(self) -> str:
        return self.to_hex()

    @classmethod
    def from_bytes(cls, data: bytes) -> Capsule:
        if len(data) < NONCE_SIZE + TAG_SIZE:
            raise AuthenticationError("Capsule is truncated.")
        return cls(nonce=data[:NONCE_SIZE], token=data[NONCE_SIZE:])

    @classmethod
    def from_hex(cls, text: str) -> Capsule:
        try:
            data = bytes.fromhex(text.strip())
        except ValueError as exc:
            raise AuthenticationError("Capsule is not valid hex.") from exc
        return cls.from_bytes(data)


class Credential(BaseModel):
    """A single stored credential.

    *id* and *api_key* are fixed at creation; the model is frozen, so changes
    go through ``model_copy(update=...)``.
    """

    model_config = ConfigDict(frozen=True)

    id: uuid.UUID
    user: str
    password: str
    api_key: bytes

    @classmethod
    def new(cls, user: str, password: str) -> Credential:
        """Create a credential with a fresh random id and api key."""
        return cls(id=uuid.uuid4(), user=user, password=password, api_key=generate_key())

    @field_validator("api_key", mode="before")
    @classmethod
    def _decode_api_key(cls, value: object) -> object:
        if isinstance(value, str):
            try:
                return binascii.unhexlify(value)
            except (binascii.Error, ValueError) as exc:
                raise ValueError("api_key must be hex-encoded") from exc
        return value

    @field_validator("api_key")
    @classmethod
    def _check_api_key_size(cls, value: bytes) -> bytes:
        if len(value) != KEY_SIZE:
            raise ValueError(f"api_key must be {KEY_SIZE} bytes, got {len(value)}")
        return value

    @field_serializer("api_key", when_used="json")
    def _encode_api_key(self, value: bytes) -> str:
        return value.hex()

    @property
    def api_key_hex(self) -> str:
        return self.api_key.hex()

    @property
    def masked_password(self) -> str:
        return "*" * len(self.password)

    def capsule(self) -> Capsule:
        """Seal this credential's user and password into a :class:`Capsule`."""
        return seal_credential(self)


class CredentialIndexer:
    """Indexes credentials by the raw 16 bytes of their id."""

    def index(self, value: Credential) -> bytes:
        return value.id.bytes


# ---------------------------------------------------------------------------
# Capsule protocol
# ---------------------------------------------------------------------------

def _encode_payload(user: str, password: str) -> bytes:
    return json.dumps([user, password], ensure_ascii=False, separators=(",", ":")).encode("utf-8")


def _decode_payload(plaintext: bytes) -> tuple[str, str]:
    try:
        payload = json.loads(plaintext.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise AuthenticationError("Capsule payload is malformed.") from exc
    if (
        not isinstance(payload, list)
        or len(payload) != 2
        or not all(isinstance(item, str) for item in payload)
    ):
        raise AuthenticationError("Capsule payload is malformed.")
    return payload[0], payload[1]


def seal_credential(credential: Credential) -> Capsule:
    """Encrypt ``[user, password]`` under the credential's key, bound to its id."""
    nonce, token = seal(
        credential.api_key,
        credential.id.bytes,
        _encode_payload(credential.user, credential.password),
    )
    return Capsule(nonce=nonce, token=token)


def open_capsule(capsule: Capsule, api_key: bytes, credential_id: uuid.UUID) -> tuple[str, str]:
    """Decrypt *capsule* and return ``(user, password)``.

    Raises :class:`AuthenticationError` if *api_key* or *credential_id* do not
    match the ones the capsule was sealed with, or if any byte was altered.
    """
    plaintext = open_sealed(api_key, credential_id.bytes, capsule.nonce, capsule.token)
    return _decode_payload(plaintext)
