"""
Key Conversion — Ed25519 wallet public keys to X25519 encryption keys.

Used to wrap a key for a member who has never signed the derivation message,
so only their wallet address is known. The matching private scalar can only
be rebuilt from the wallet's real signing key, which is why records wrapped
this way are tagged ``converted``.

Conversion fails closed: malformed input yields ``None`` (or
``ConversionError`` from the strict variant), never substitute key material.
"""
import logging

from nacl.exceptions import CryptoError
from nacl.signing import VerifyKey

from ..encoding import decode_wallet_address
from ..errors import ConversionError, EncodingError

logger = logging.getLogger("wallet_vault.vault")

PUBLIC_KEY_LENGTH = 32


def public_key_to_x25519(signing_public_key: bytes) -> bytes | None:
    """Map an Ed25519 public key onto Curve25519.

    Args:
        signing_public_key: 32-byte Ed25519 public key.

    Returns:
        32-byte X25519 public key, or None if the input is not a valid
        Ed25519 point of the right length.
    """
    if not isinstance(signing_public_key, (bytes, bytearray)):
        return None
    if len(signing_public_key) != PUBLIC_KEY_LENGTH:
        return None
    try:
        converted = VerifyKey(bytes(signing_public_key)).to_curve25519_public_key()
    except CryptoError:
        return None
    return bytes(converted)


def wallet_address_to_x25519(wallet_address: str) -> bytes | None:
    """Convert a base58 wallet address; None when it cannot be converted."""
    try:
        raw = decode_wallet_address(wallet_address)
    except EncodingError:
        return None
    return public_key_to_x25519(raw)


def require_x25519(wallet_address: str) -> bytes:
    """Strict variant of ``wallet_address_to_x25519``.

    Raises:
        ConversionError: If the wallet address cannot be converted.
    """
    converted = wallet_address_to_x25519(wallet_address)
    if converted is None:
        logger.warning(
            "Cannot convert wallet key to X25519: wallet=%s", wallet_address,
        )
        raise ConversionError(
            "Wallet public key cannot be converted to an encryption key",
            wallet_address=wallet_address,
        )
    return converted
