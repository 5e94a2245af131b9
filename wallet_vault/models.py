"""
Vault data model — secrets, wrapped-key records, members and keypairs.

Binary fields are held as raw ``bytes`` in memory. They only become text at
the storage or transport boundary through ``to_wire()`` / ``from_wire()``,
which tag the payload with the codec name so that a record encoded as hex is
never silently decoded as base64.
"""
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

import orjson
from pydantic import BaseModel, Field, field_validator

from .encoding import BinaryCodec, get_codec
from .errors import EncodingError

_ENCODING_TAG = "encoding"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _check_tag(data: dict[str, Any], codec: BinaryCodec) -> None:
    tag = data.get(_ENCODING_TAG)
    if tag is not None and tag != codec.name:
        raise EncodingError(
            f"payload encoded as {tag!r}, expected {codec.name!r}",
            encoding=tag,
            expected=codec.name,
        )


class WrapMethod(str, Enum):
    """How the recipient's X25519 public key was obtained at wrap time."""

    DERIVED = "derived"
    CONVERTED = "converted"


class KeyOrigin(str, Enum):
    """Where a recipient keypair's private scalar came from."""

    SIGNATURE = "signature"
    SIGNING_KEY = "signing_key"


class Secret(BaseModel):
    """An encrypted secret. Only ciphertext, IV and tag are kept."""

    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    project_id: str
    environment_id: str
    name: str
    type: str = "string"
    ciphertext: bytes
    iv: bytes
    auth_tag: bytes
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("Secret name cannot be empty")
        if len(v) > 255:
            raise ValueError("Secret name cannot exceed 255 characters")
        return v

    def to_wire(self, codec: BinaryCodec) -> dict[str, Any]:
        return {
            "id": self.id,
            "project_id": self.project_id,
            "environment_id": self.environment_id,
            "name": self.name,
            "type": self.type,
            "ciphertext": codec.encode(self.ciphertext),
            "iv": codec.encode(self.iv),
            "auth_tag": codec.encode(self.auth_tag),
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
            _ENCODING_TAG: codec.name,
        }

    @classmethod
    def from_wire(cls, data: dict[str, Any], codec: BinaryCodec) -> "Secret":
        _check_tag(data, codec)
        fields = {k: v for k, v in data.items() if k != _ENCODING_TAG}
        for name in ("ciphertext", "iv", "auth_tag"):
            fields[name] = codec.decode(data[name], field=name)
        return cls(**fields)


class SecretInfo(BaseModel):
    """Secret metadata visible to a wallet; carries no ciphertext."""

    id: str
    project_id: str
    environment_id: str
    name: str
    type: str
    method: WrapMethod
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_secret(cls, secret: Secret, method: WrapMethod) -> "SecretInfo":
        return cls(
            id=secret.id,
            project_id=secret.project_id,
            environment_id=secret.environment_id,
            name=secret.name,
            type=secret.type,
            method=method,
            created_at=secret.created_at,
            updated_at=secret.updated_at,
        )


class WrappedKeyRecord(BaseModel):
    """One recipient's copy of a secret's symmetric key.

    Presence of a record for ``(secret_id, recipient_wallet_address)`` is the
    access decision; there is at most one per pair.
    """

    secret_id: str
    recipient_wallet_address: str
    wrapped_key: bytes
    nonce: bytes
    ephemeral_public_key: bytes
    method: WrapMethod = WrapMethod.DERIVED
    created_at: datetime = Field(default_factory=_utcnow)

    @property
    def pair(self) -> tuple[str, str]:
        return (self.secret_id, self.recipient_wallet_address)

    def to_wire(self, codec: BinaryCodec) -> dict[str, Any]:
        return {
            "secret_id": self.secret_id,
            "recipient_wallet_address": self.recipient_wallet_address,
            "wrapped_key": codec.encode(self.wrapped_key),
            "nonce": codec.encode(self.nonce),
            "ephemeral_public_key": codec.encode(self.ephemeral_public_key),
            "method": self.method.value,
            "created_at": self.created_at.isoformat(),
            _ENCODING_TAG: codec.name,
        }

    @classmethod
    def from_wire(cls, data: dict[str, Any], codec: BinaryCodec) -> "WrappedKeyRecord":
        _check_tag(data, codec)
        fields = {k: v for k, v in data.items() if k != _ENCODING_TAG}
        for name in ("wrapped_key", "nonce", "ephemeral_public_key"):
            fields[name] = codec.decode(data[name], field=name)
        return cls(**fields)

    def dumps(self, codec: BinaryCodec) -> bytes:
        """Serialize to JSON bytes (orjson)."""
        return orjson.dumps(self.to_wire(codec))

    @classmethod
    def loads(cls, data: bytes, codec: Optional[BinaryCodec] = None) -> "WrappedKeyRecord":
        """Parse JSON produced by ``dumps``.

        When ``codec`` is omitted the payload's own encoding tag selects it.
        """
        parsed = orjson.loads(data)
        if codec is None:
            codec = get_codec(parsed.get(_ENCODING_TAG, ""))
        return cls.from_wire(parsed, codec)


class Member(BaseModel):
    """A project member as reported by the membership directory."""

    wallet_address: str
    encryption_public_key: Optional[bytes] = None

    @field_validator("encryption_public_key")
    @classmethod
    def validate_encryption_key(cls, v: Optional[bytes]) -> Optional[bytes]:
        if v is not None and len(v) != 32:
            raise ValueError(
                f"encryption_public_key must be 32 bytes, got {len(v)}"
            )
        return v


class DerivedKeypair(BaseModel):
    """X25519 keypair used to open wrapped keys.

    Never persisted server-side; lives in a ``WalletSession`` at most.
    """

    public_key: bytes
    private_key: bytes = Field(repr=False)
    origin: KeyOrigin = KeyOrigin.SIGNATURE

    model_config = {"frozen": True}

    def __repr__(self) -> str:
        return (
            f"<DerivedKeypair origin={self.origin.value} "
            f"public={self.public_key.hex()[:16]}...>"
        )
