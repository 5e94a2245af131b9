"""WalletSession — key material scoped to one authenticated wallet session.

A session caches what a wallet signature unlocks (the recipient keypair and
the local vault key) so the user is prompted once, not on every decrypt.
Nothing here is persisted; ``disconnect()`` drops all of it.
"""
import uuid
import time
import logging
from datetime import datetime, timezone
from typing import Any, Optional

from .errors import SessionLocked, WalletUnavailable
from .models import DerivedKeypair
from .wallet import WalletSigner
from .vault.config import VaultConfig
from .vault.crypto import (
    IV_SIZE,
    TAG_SIZE,
    decrypt,
    encrypt,
    serialize_value,
    deserialize_value,
)
from .vault.derivation import SignatureKeyDeriver

logger = logging.getLogger("wallet_vault.session")


class WalletSession:
    """Session-scoped cache of signature-derived key material.

    One instance per connected wallet. It is passed explicitly to the
    operations that need it; there is no module-level key cache.
    """

    def __init__(
        self,
        wallet_address: str,
        config: Optional[VaultConfig] = None,
        id: Optional[str] = None,
        max_age: Optional[int] = None,
    ) -> None:
        self._config = config or VaultConfig()
        self._deriver = SignatureKeyDeriver(self._config)
        self._id_ = id or uuid.uuid4().hex
        self._wallet_address = wallet_address
        self._max_age = max_age if max_age is not None else self._config.session_ttl
        self.__created__ = datetime.now(timezone.utc)
        self._created = int(self.__created__.timestamp())
        self._unlocked_at: Optional[float] = None
        self._keypair: Optional[DerivedKeypair] = None
        self._vault_key: Optional[bytes] = None

    def __repr__(self) -> str:
        return (
            f'<Wallet-Session [{self._wallet_address}, '
            f'unlocked:{self.unlocked}, created:{self.created}]>'
        )

    # --- Properties ---

    @property
    def session_id(self) -> str:
        return self._id_

    @property
    def wallet_address(self) -> str:
        return self._wallet_address

    @property
    def created(self) -> int:
        return self._created

    @property
    def logon_time(self) -> datetime:
        return self.__created__

    @property
    def max_age(self) -> int:
        return self._max_age

    @property
    def expired(self) -> bool:
        if self._unlocked_at is None:
            return False
        return (time.monotonic() - self._unlocked_at) > self._max_age

    @property
    def unlocked(self) -> bool:
        if self._keypair is None:
            return False
        if self.expired:
            self.invalidate()
            return False
        return True

    @property
    def keypair(self) -> DerivedKeypair:
        """The recipient keypair for this wallet.

        Raises:
            SessionLocked: If the session was never unlocked, has expired or
                was disconnected.
        """
        self._check_unlocked()
        return self._keypair

    @property
    def vault_key(self) -> bytes:
        self._check_unlocked()
        return self._vault_key

    @property
    def encryption_public_key(self) -> bytes:
        """Public half of the derived keypair; safe to register with a directory."""
        return self.keypair.public_key

    def _check_unlocked(self) -> None:
        if self._keypair is None:
            raise SessionLocked(
                "Session is locked; sign the derivation message first",
                session_id=self._id_,
            )
        if self.expired:
            self.invalidate()
            raise SessionLocked("Session has expired", session_id=self._id_)

    # --- Lifecycle ---

    async def unlock(self, signer: WalletSigner) -> DerivedKeypair:
        """Request the derivation-message signature and cache what it unlocks.

        If the request is declined, the wallet is gone, the signature does not
        verify, or the coroutine is cancelled, the session is left exactly as
        it was: no partial key material is stored.

        Raises:
            WalletUnavailable: If ``signer`` belongs to another wallet.
            UserDeclined: Propagated from the signer.
            AccessDenied: If signature verification is enabled and fails.
            DerivationError: If the signature is malformed.
        """
        if self.unlocked:
            return self._keypair
        if signer.address != self._wallet_address:
            raise WalletUnavailable(
                "Connected wallet does not match this session",
                wallet_address=signer.address,
            )
        message = self._deriver.message
        signature = await signer.sign_message(message)
        keypair, vault_key = self.derive(signature)
        self._keypair = keypair
        self._vault_key = vault_key
        self._unlocked_at = time.monotonic()
        logger.info(
            "Wallet session unlocked: wallet=%s session=%s",
            self._wallet_address, self._id_,
        )
        return keypair

    def derive(self, signature: bytes) -> tuple[DerivedKeypair, bytes]:
        """Verify ``signature`` for this wallet and derive keypair + vault key.

        Does not touch session state.
        """
        if self._config.verify_signatures:
            self._deriver.verify(signature, self._wallet_address)
        keypair = self._deriver.derive_recipient_keypair(signature)
        vault_key = self._deriver.derive_vault_key(self._deriver.message, signature)
        return keypair, vault_key

    def unlock_with_signature(self, signature: bytes) -> DerivedKeypair:
        """Unlock from a signature the caller already holds."""
        keypair, vault_key = self.derive(signature)
        self._keypair = keypair
        self._vault_key = vault_key
        self._unlocked_at = time.monotonic()
        return keypair

    def invalidate(self) -> None:
        """Drop all cached key material."""
        self._keypair = None
        self._vault_key = None
        self._unlocked_at = None

    def disconnect(self) -> None:
        """Tear the session down when the wallet disconnects."""
        self.invalidate()
        logger.info(
            "Wallet session closed: wallet=%s session=%s",
            self._wallet_address, self._id_,
        )

    # --- Local vault (self-use encryption) ---

    def seal_local(self, value: Any) -> bytes:
        """Encrypt a JSON-able value with the session's vault key.

        Format: [iv 12B][ciphertext][tag 16B]
        """
        plaintext = serialize_value(value)
        ciphertext, iv, tag = encrypt(plaintext, self.vault_key)
        return iv + ciphertext + tag

    def open_local(self, blob: bytes) -> Any:
        """Decrypt a blob produced by ``seal_local``.

        Raises:
            IntegrityCheckFailed: If the blob was tampered with or sealed by
                another wallet.
        """
        key = self.vault_key
        iv, body = blob[:IV_SIZE], blob[IV_SIZE:]
        plaintext = decrypt(body[:-TAG_SIZE], iv, body[-TAG_SIZE:], key)
        return deserialize_value(plaintext)

