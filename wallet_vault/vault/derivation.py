"""
Signature Key Derivation — key material from wallet signatures.

A connected wallet only *signs*; its private scalar is never available to
application code. Ed25519 signatures are deterministic, so signing one fixed
message always yields the same 64 bytes, and those bytes stand in for a
private key:

- Vault key: PBKDF2-HMAC-SHA256(message || signature, app salt) → AES-256 key
  for the wallet owner's own local data.
- Recipient keypair: first 32 bytes of the signature → X25519 private key,
  used to open keys wrapped for this wallet.

Both derivations must see the same message every time; a different message
produces unrelated keys.

Security Note:
    Never log signatures or derived keys. Only log wallet addresses.
"""
import logging

from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC
from nacl.exceptions import BadSignatureError, CryptoError
from nacl.public import PrivateKey
from nacl.signing import SigningKey, VerifyKey

from ..encoding import decode_wallet_address
from ..errors import AccessDenied, DerivationError, EncodingError
from ..models import DerivedKeypair, KeyOrigin
from .config import VaultConfig
from .crypto import KEY_LENGTH

logger = logging.getLogger("wallet_vault.vault")

SIGNATURE_LENGTH = 64  # detached Ed25519 signature
SEED_LENGTH = 32


def _check_signature(signature: bytes) -> bytes:
    if not isinstance(signature, (bytes, bytearray)):
        raise DerivationError("signature must be bytes")
    if len(signature) != SIGNATURE_LENGTH:
        raise DerivationError(
            f"signature must be {SIGNATURE_LENGTH} bytes for key derivation, "
            f"got {len(signature)}",
            length=len(signature),
        )
    return bytes(signature)


def verify_wallet_signature(message: bytes, signature: bytes, wallet_address: str) -> None:
    """Verify a detached Ed25519 signature made by ``wallet_address``.

    Raises:
        DerivationError: If the signature is malformed.
        AccessDenied: If the address is not a valid key or the signature
            does not verify under it.
    """
    signature = _check_signature(signature)
    try:
        verify_key = VerifyKey(decode_wallet_address(wallet_address))
        verify_key.verify(message, signature)
    except (BadSignatureError, CryptoError, EncodingError, TypeError):
        raise AccessDenied(
            "Signature does not verify for this wallet",
            wallet_address=wallet_address,
        ) from None


class SignatureKeyDeriver:
    """Deterministic key material from (message, signature) pairs.

    This is the only place that knows recipient keys come from signatures;
    everything else handles ``DerivedKeypair`` values.
    """

    def __init__(self, config: VaultConfig | None = None):
        self._config = config or VaultConfig()

    @property
    def message(self) -> bytes:
        return self._config.message_bytes

    def derive_vault_key(self, message: bytes, signature: bytes) -> bytes:
        """Derive a 256-bit AES key from ``message || signature``.

        Args:
            message: The signed message.
            signature: Detached wallet signature over ``message``.

        Returns:
            32-byte key; identical inputs always give the identical key.

        Raises:
            DerivationError: If the signature is malformed or too short.
        """
        signature = _check_signature(signature)
        kdf = PBKDF2HMAC(
            algorithm=hashes.SHA256(),
            length=KEY_LENGTH,
            salt=self._config.salt_bytes,
            iterations=self._config.kdf_iterations,
        )
        return kdf.derive(message + signature)

    def derive_recipient_keypair(self, signature: bytes) -> DerivedKeypair:
        """Build the X25519 keypair seeded by the first 32 signature bytes.

        Raises:
            DerivationError: If the signature is malformed or too short.
        """
        signature = _check_signature(signature)
        private = PrivateKey(signature[:SEED_LENGTH])
        return DerivedKeypair(
            public_key=bytes(private.public_key),
            private_key=bytes(private),
            origin=KeyOrigin.SIGNATURE,
        )

    def verify(self, signature: bytes, wallet_address: str) -> None:
        """Verify ``signature`` over the configured derivation message."""
        verify_wallet_signature(self.message, signature, wallet_address)

    @staticmethod
    def keypair_from_signing_key(signing_key: SigningKey) -> DerivedKeypair:
        """Convert a true Ed25519 signing key into its X25519 keypair.

        Only wallets that expose their seed (keypair files, test wallets)
        can use this; it opens records wrapped with the ``converted`` method.
        """
        private = signing_key.to_curve25519_private_key()
        return DerivedKeypair(
            public_key=bytes(private.public_key),
            private_key=bytes(private),
            origin=KeyOrigin.SIGNING_KEY,
        )
