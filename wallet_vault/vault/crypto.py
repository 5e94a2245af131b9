"""
Vault Crypto Core — per-secret symmetric encryption and value serialization.

Each secret is sealed under its own random 256-bit key with AES-256-GCM:
    key (32B random) + iv (12B random) → AES-GCM → ciphertext, auth_tag (16B)

The key never leaves process memory in raw form; it only travels wrapped
for a recipient (see ``wrapping``).

Security Note:
    Never log plaintext, keys or ciphertext values.
    IVs are random 96-bit; a key seals a handful of values over its life,
    so collision probability is negligible.
"""
import os
import base64
import logging
from typing import Any

import orjson
from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from ..errors import IntegrityCheckFailed

logger = logging.getLogger("wallet_vault.vault")

KEY_LENGTH = 32  # AES-256
IV_SIZE = 12  # 96-bit IV
TAG_SIZE = 16  # 128-bit GCM tag

_BYTES_WRAPPER_KEY = "__vault_bytes_b64__"

# One message for every decryption failure so callers cannot tell
# a wrong key from a tampered ciphertext.
_INTEGRITY_MESSAGE = "Secret payload failed integrity check"


def generate_key() -> bytes:
    """Return a fresh random 256-bit symmetric key."""
    return os.urandom(KEY_LENGTH)


# ---------------------------------------------------------------------------
# AEAD
# ---------------------------------------------------------------------------

def encrypt(plaintext: bytes, key: bytes, associated_data: bytes | None = None) -> tuple[bytes, bytes, bytes]:
    """Encrypt ``plaintext`` under ``key`` with a fresh random IV.

    Args:
        plaintext: Data to encrypt.
        key: 32-byte symmetric key.
        associated_data: Optional AAD; must be presented again on decrypt.

    Returns:
        Tuple of (ciphertext, iv, auth_tag).

    Raises:
        ValueError: If the key is not 32 bytes.
    """
    if len(key) != KEY_LENGTH:
        raise ValueError(f"key must be {KEY_LENGTH} bytes, got {len(key)}")
    iv = os.urandom(IV_SIZE)
    sealed = AESGCM(key).encrypt(iv, plaintext, associated_data)
    return sealed[:-TAG_SIZE], iv, sealed[-TAG_SIZE:]


def decrypt(
    ciphertext: bytes,
    iv: bytes,
    auth_tag: bytes,
    key: bytes,
    associated_data: bytes | None = None,
) -> bytes:
    """Decrypt and authenticate a payload produced by ``encrypt``.

    Raises:
        IntegrityCheckFailed: On any authentication failure, including
            malformed key, IV or tag lengths.
    """
    if len(key) != KEY_LENGTH or len(iv) != IV_SIZE or len(auth_tag) != TAG_SIZE:
        raise IntegrityCheckFailed(_INTEGRITY_MESSAGE)
    try:
        return AESGCM(key).decrypt(iv, ciphertext + auth_tag, associated_data)
    except InvalidTag:
        raise IntegrityCheckFailed(_INTEGRITY_MESSAGE) from None


# ---------------------------------------------------------------------------
# Value serialization
# ---------------------------------------------------------------------------

def serialize_value(value: Any) -> bytes:
    """Serialize a Python value to bytes for encryption.

    Supports: str, int, float, dict, list, bytes, bool, None.
    bytes values are wrapped as {"__vault_bytes_b64__": "<base64>"} for safe JSON round-trip.
    """
    if isinstance(value, bytes):
        wrapped = {_BYTES_WRAPPER_KEY: base64.b64encode(value).decode("ascii")}
        return orjson.dumps(wrapped)
    return orjson.dumps(value)


def deserialize_value(data: bytes) -> Any:
    """Deserialize bytes back to a Python value."""
    parsed = orjson.loads(data)
    if isinstance(parsed, dict) and _BYTES_WRAPPER_KEY in parsed and len(parsed) == 1:
        return base64.b64decode(parsed[_BYTES_WRAPPER_KEY])
    return parsed
