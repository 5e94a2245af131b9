"""Wallet Vault core — multi-recipient secret encryption keyed by wallet signatures.

Security Note (Threat Model):
    Recipient keys are derived from a wallet's signature over a fixed message,
    not from the wallet's private scalar, which application code never sees.
    Anyone who obtains that signature can open every key wrapped for the
    wallet. Signatures and derived keys must therefore be treated as secrets
    and kept in a ``WalletSession`` only for its lifetime.
"""

from .config import VaultConfig
from .crypto import generate_key, encrypt, decrypt
from .derivation import SignatureKeyDeriver, verify_wallet_signature
from .conversion import public_key_to_x25519, wallet_address_to_x25519
from .wrapping import WrappedKey, wrap_for_recipient, unwrap, unwrap_record
from .protocol import AccessProtocol
from .key_rotation import rotate_secret_key

__all__ = [
    "VaultConfig",
    "generate_key",
    "encrypt",
    "decrypt",
    "SignatureKeyDeriver",
    "verify_wallet_signature",
    "public_key_to_x25519",
    "wallet_address_to_x25519",
    "WrappedKey",
    "wrap_for_recipient",
    "unwrap",
    "unwrap_record",
    "AccessProtocol",
    "rotate_secret_key",
]
