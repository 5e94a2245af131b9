"""
Wallet signers — the one external capability key derivation depends on.

A ``WalletSigner`` produces detached Ed25519 signatures for the connected
wallet. Browser wallets implement it by prompting the user; the prompt may be
declined (``UserDeclined``), the wallet may be gone (``WalletUnavailable``)
and the request may be cancelled (``asyncio.CancelledError``).
"""
import abc
from typing import Optional

from nacl.signing import SigningKey

from .encoding import encode_wallet_address
from .models import DerivedKeypair
from .vault.derivation import SignatureKeyDeriver


class WalletSigner(abc.ABC):
    """Signing capability of a connected wallet."""

    @property
    @abc.abstractmethod
    def address(self) -> str:
        """Base58 wallet address (the Ed25519 public key)."""

    @abc.abstractmethod
    async def sign_message(self, message: bytes) -> bytes:
        """Return a detached 64-byte signature over ``message``."""


class KeypairSigner(WalletSigner):
    """Wallet backed by a locally held Ed25519 seed.

    Used by command-line tooling with a keypair file, and by tests. Unlike a
    browser wallet it can also expose its converted X25519 keypair.
    """

    def __init__(self, signing_key: Optional[SigningKey] = None):
        self._signing_key = signing_key or SigningKey.generate()

    @classmethod
    def from_seed(cls, seed: bytes) -> "KeypairSigner":
        return cls(SigningKey(seed))

    @property
    def address(self) -> str:
        return encode_wallet_address(bytes(self._signing_key.verify_key))

    @property
    def public_key(self) -> bytes:
        return bytes(self._signing_key.verify_key)

    async def sign_message(self, message: bytes) -> bytes:
        return self.sign(message)

    def sign(self, message: bytes) -> bytes:
        """Synchronous detached signature."""
        return self._signing_key.sign(message).signature

    def converted_keypair(self) -> DerivedKeypair:
        """X25519 keypair matching ``public_key_to_x25519(public_key)``."""
        return SignatureKeyDeriver.keypair_from_signing_key(self._signing_key)

    def __repr__(self) -> str:
        return f"<KeypairSigner {self.address}>"
