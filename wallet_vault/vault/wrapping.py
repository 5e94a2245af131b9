"""
Key Wrapping — per-recipient encryption of a secret's symmetric key.

    ephemeral X25519 keypair (fresh per record)
      + recipient X25519 public key
      → Curve25519 ECDH + XSalsa20-Poly1305 box
      → wrapped_key, nonce (24B), ephemeral_public_key

The ephemeral private key is dropped as soon as the box is sealed; the
ephemeral public key travels with the record.

Security Note:
    ``unwrap`` reports every failure as the same ``AccessDenied`` so that a
    corrupted record and a wrong recipient look identical to the caller.
"""
import logging
from dataclasses import dataclass

import nacl.utils
from nacl.exceptions import CryptoError
from nacl.public import Box, PrivateKey, PublicKey

from ..errors import AccessDenied, ConversionError
from ..models import DerivedKeypair, WrapMethod, WrappedKeyRecord
from .crypto import KEY_LENGTH

logger = logging.getLogger("wallet_vault.vault")

NONCE_SIZE = Box.NONCE_SIZE

_DENIED_MESSAGE = "Wrapped key cannot be opened with this key material"


@dataclass(frozen=True)
class WrappedKey:
    """Output of a single wrap: the fields of a WrappedKeyRecord."""

    wrapped_key: bytes
    nonce: bytes
    ephemeral_public_key: bytes

    def to_record(
        self,
        secret_id: str,
        wallet_address: str,
        method: WrapMethod = WrapMethod.DERIVED,
    ) -> WrappedKeyRecord:
        return WrappedKeyRecord(
            secret_id=secret_id,
            recipient_wallet_address=wallet_address,
            wrapped_key=self.wrapped_key,
            nonce=self.nonce,
            ephemeral_public_key=self.ephemeral_public_key,
            method=method,
        )


def wrap_for_recipient(symmetric_key: bytes, recipient_public_key: bytes) -> WrappedKey:
    """Box-encrypt ``symmetric_key`` to ``recipient_public_key``.

    Raises:
        ValueError: If the symmetric key is not 32 bytes.
        ConversionError: If the recipient key is not a valid X25519 key.
    """
    if len(symmetric_key) != KEY_LENGTH:
        raise ValueError(
            f"symmetric key must be {KEY_LENGTH} bytes, got {len(symmetric_key)}"
        )
    try:
        recipient = PublicKey(recipient_public_key)
    except (CryptoError, TypeError):
        raise ConversionError("Recipient encryption key is malformed") from None
    ephemeral = PrivateKey.generate()
    nonce = nacl.utils.random(NONCE_SIZE)
    sealed = Box(ephemeral, recipient).encrypt(symmetric_key, nonce)
    return WrappedKey(
        wrapped_key=sealed.ciphertext,
        nonce=nonce,
        ephemeral_public_key=bytes(ephemeral.public_key),
    )


def unwrap(
    wrapped_key: bytes,
    nonce: bytes,
    ephemeral_public_key: bytes,
    keypair: DerivedKeypair,
) -> bytes:
    """Open a wrapped key with the recipient's keypair.

    Returns:
        The 32-byte symmetric key.

    Raises:
        AccessDenied: If the box cannot be opened for any reason.
    """
    try:
        box = Box(PrivateKey(keypair.private_key), PublicKey(ephemeral_public_key))
        symmetric_key = box.decrypt(wrapped_key, nonce)
    except (CryptoError, TypeError):
        raise AccessDenied(_DENIED_MESSAGE) from None
    if len(symmetric_key) != KEY_LENGTH:
        raise AccessDenied(_DENIED_MESSAGE)
    return symmetric_key


def unwrap_record(record: WrappedKeyRecord, keypair: DerivedKeypair) -> bytes:
    """``unwrap`` applied to a stored record."""
    return unwrap(
        record.wrapped_key, record.nonce, record.ephemeral_public_key, keypair,
    )
