"""
AccessProtocol — lifecycle of a secret and of who may read it.

Provides the public API of the vault:
- ``create_secret`` — new key, encrypt payload, wrap for every project member
- ``share_secret`` — a current holder re-wraps the key for one more member
- ``revoke_secret`` — drop one member's wrapped key
- ``decrypt_secret`` — signature → keypair → unwrap → decrypt
- ``update_secret_value`` / ``delete_secret`` / ``remove_member``
- ``list_accessible_secrets`` — metadata of every secret a wallet can open

Every public method returns an ``Ok`` / ``Err`` result; failures carry a
stable ``ErrorKind`` (see ``wallet_vault.errors``) and are never downgraded
to "not found".

Security Note:
    Never log plaintext, symmetric keys, signatures or wrapped keys. Only log
    secret ids, project ids, wallet addresses and error kinds. Revoking does
    not rotate the secret's key; see ``key_rotation.rotate_secret_key``.
"""
import logging
from collections.abc import Awaitable, Sequence
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Optional, Union

from pydantic import ValidationError

from ..directory import MemberDirectory
from ..errors import (
    ConversionError,
    Err,
    IntegrityCheckFailed,
    InvalidSecret,
    NoAccess,
    NoRecipients,
    Ok,
    PartialWriteFailure,
    Result,
    SecretNotFound,
    StorageError,
    UnknownRecipient,
    VaultError,
)
from ..models import (
    DerivedKeypair,
    Member,
    Secret,
    SecretInfo,
    WrapMethod,
    WrappedKeyRecord,
)
from ..storage.abstract import SecretStore
from . import crypto
from .config import VaultConfig
from .conversion import require_x25519
from .derivation import SignatureKeyDeriver
from .wrapping import unwrap_record, wrap_for_recipient

if TYPE_CHECKING:
    from ..session import WalletSession
    from ..wallet import WalletSigner

logger = logging.getLogger("wallet_vault.vault")


class AccessProtocol:
    """Create, share, revoke and decrypt secrets for wallet-holding members.

    The protocol owns no state of its own: ciphertext and wrapped keys live in
    the ``SecretStore``, membership in the ``MemberDirectory`` and cached key
    material in the caller's ``WalletSession``.
    """

    def __init__(
        self,
        store: SecretStore,
        directory: MemberDirectory,
        config: Optional[VaultConfig] = None,
    ):
        self._store = store
        self._directory = directory
        self._config = config or VaultConfig()
        self._deriver = SignatureKeyDeriver(self._config)

    @property
    def config(self) -> VaultConfig:
        return self._config

    @property
    def store(self) -> SecretStore:
        return self._store

    @property
    def directory(self) -> MemberDirectory:
        return self._directory

    # ------------------------------------------------------------------
    # Result helper
    # ------------------------------------------------------------------

    async def as_result(self, operation: str, pending: Awaitable) -> Result:
        try:
            return Ok(await pending)
        except VaultError as err:
            logger.warning(
                "Vault %s failed: kind=%s", operation, err.kind.value,
            )
            return Err(err)

    # ------------------------------------------------------------------
    # Key material helpers
    # ------------------------------------------------------------------

    def keypair_from_signature(self, wallet_address: str, signature: bytes) -> DerivedKeypair:
        """Derive (and, when configured, verify) a wallet's recipient keypair."""
        keypair = self._deriver.derive_recipient_keypair(signature)
        if self._config.verify_signatures:
            self._deriver.verify(signature, wallet_address)
        return keypair

    def recipient_key(self, member: Member) -> tuple[bytes, WrapMethod]:
        """Pick the X25519 key and wrap method for ``member``.

        Raises:
            ConversionError: If no usable encryption key exists for the member.
        """
        if member.encryption_public_key is not None:
            return member.encryption_public_key, WrapMethod.DERIVED
        if not self._config.allow_converted_wrapping:
            raise ConversionError(
                "Member has not registered an encryption key",
                wallet_address=member.wallet_address,
            )
        return require_x25519(member.wallet_address), WrapMethod.CONVERTED

    def wrap_for_member(self, secret_id: str, symmetric_key: bytes, member: Member) -> WrappedKeyRecord:
        public_key, method = self.recipient_key(member)
        wrapped = wrap_for_recipient(symmetric_key, public_key)
        return wrapped.to_record(secret_id, member.wallet_address, method)

    def wrap_for_members(
        self,
        secret_id: str,
        symmetric_key: bytes,
        members: Sequence[Member],
    ) -> list[WrappedKeyRecord]:
        """Wrap the key for every member, or for none of them.

        Raises:
            PartialWriteFailure: If any member could not be wrapped.
        """
        records: list[WrappedKeyRecord] = []
        failed: dict[str, str] = {}
        for member in members:
            try:
                records.append(self.wrap_for_member(secret_id, symmetric_key, member))
            except ConversionError as err:
                failed[member.wallet_address] = err.kind.value
        if failed:
            raise PartialWriteFailure(
                f"Could not wrap key for {len(failed)} of {len(members)} recipient(s)",
                secret_id=secret_id,
                failed=failed,
            )
        return records

    async def load_secret(self, secret_id: str) -> Secret:
        secret = await self._store.get_secret(secret_id)
        if secret is None:
            raise SecretNotFound("Secret does not exist", secret_id=secret_id)
        return secret

    async def wrapped_key_for(self, secret_id: str, wallet_address: str) -> WrappedKeyRecord:
        record = await self._store.get_wrapped_key(secret_id, wallet_address)
        if record is None:
            raise NoAccess(
                "Wallet has no access to this secret",
                secret_id=secret_id,
                wallet_address=wallet_address,
            )
        return record

    async def _open_key(self, secret_id: str, wallet_address: str, keypair: DerivedKeypair) -> bytes:
        record = await self.wrapped_key_for(secret_id, wallet_address)
        return unwrap_record(record, keypair)

    # ------------------------------------------------------------------
    # Operations (raising)
    # ------------------------------------------------------------------

    async def _create(
        self,
        project_id: str,
        environment_id: str,
        name: str,
        plaintext: Union[str, bytes],
        type: str,
        creator_wallet: Optional[str],
    ) -> str:
        members = await self._directory.list_project_members(project_id)
        recipients: dict[str, Member] = {}
        for member in members:
            recipients.setdefault(member.wallet_address, member)
        if creator_wallet is not None and creator_wallet not in recipients:
            raise UnknownRecipient(
                "Creator is not a member of the project",
                project_id=project_id,
                wallet_address=creator_wallet,
            )
        if not recipients:
            raise NoRecipients(
                "Project has no members to encrypt for", project_id=project_id,
            )

        if isinstance(plaintext, str):
            plaintext = plaintext.encode("utf-8")
        symmetric_key = crypto.generate_key()
        ciphertext, iv, auth_tag = crypto.encrypt(plaintext, symmetric_key)
        try:
            secret = Secret(
                project_id=project_id,
                environment_id=environment_id,
                name=name,
                type=type,
                ciphertext=ciphertext,
                iv=iv,
                auth_tag=auth_tag,
            )
        except ValidationError as err:
            raise InvalidSecret(
                "Secret fields are invalid",
                project_id=project_id,
                errors=[e["msg"] for e in err.errors()],
            ) from None
        records = self.wrap_for_members(secret.id, symmetric_key, list(recipients.values()))

        try:
            await self._store.create_secret(secret, records)
        except StorageError as err:
            rolled_back = await self._rollback(secret.id)
            raise PartialWriteFailure(
                "Secret could not be stored with all recipients",
                secret_id=secret.id,
                rolled_back=rolled_back,
            ) from err

        logger.info(
            "Secret created: id=%s project=%s recipients=%d",
            secret.id, project_id, len(records),
        )
        return secret.id

    async def _rollback(self, secret_id: str) -> bool:
        try:
            await self._store.delete_secret(secret_id)
        except StorageError as err:
            logger.error(
                "Rollback failed for secret=%s: %s", secret_id, err.kind.value,
            )
            return False
        return True

    async def _share(
        self,
        secret_id: str,
        holder_wallet: str,
        keypair: DerivedKeypair,
        recipient_wallet: str,
    ) -> bool:
        async with self._store.lock(secret_id):
            secret = await self.load_secret(secret_id)
            member = await self._directory.get_member(secret.project_id, recipient_wallet)
            if member is None:
                raise UnknownRecipient(
                    "Recipient is not a member of the project",
                    secret_id=secret_id,
                    wallet_address=recipient_wallet,
                )
            symmetric_key = await self._open_key(secret_id, holder_wallet, keypair)
            record = self.wrap_for_member(secret_id, symmetric_key, member)
            try:
                await self._store.put_wrapped_key(record)
            except StorageError as err:
                raise PartialWriteFailure(
                    "Wrapped key for recipient could not be stored",
                    secret_id=secret_id,
                    wallet_address=recipient_wallet,
                ) from err
        logger.info(
            "Secret shared: id=%s by=%s to=%s",
            secret_id, holder_wallet, recipient_wallet,
        )
        return True

    async def _revoke(self, secret_id: str, wallet_address: str) -> bool:
        async with self._store.lock(secret_id):
            records = await self._store.list_wrapped_keys(secret_id)
            holders = {r.recipient_wallet_address for r in records}
            if wallet_address not in holders:
                raise NoAccess(
                    "Wallet has no access to revoke",
                    secret_id=secret_id,
                    wallet_address=wallet_address,
                )
            if holders == {wallet_address}:
                raise NoRecipients(
                    "Revoking the last recipient would make the secret "
                    "unrecoverable; delete the secret instead",
                    secret_id=secret_id,
                )
            await self._store.delete_wrapped_key(secret_id, wallet_address)
        logger.info("Access revoked: id=%s wallet=%s", secret_id, wallet_address)
        return True

    async def _decrypt(self, secret_id: str, wallet_address: str, keypair: DerivedKeypair) -> bytes:
        # reads take no lock; a rotation landing between the two reads pairs
        # a ciphertext with the other key, so retry once if the secret moved
        for attempt in range(2):
            secret = await self.load_secret(secret_id)
            symmetric_key = await self._open_key(secret_id, wallet_address, keypair)
            try:
                plaintext = crypto.decrypt(
                    secret.ciphertext, secret.iv, secret.auth_tag, symmetric_key,
                )
                break
            except IntegrityCheckFailed:
                current = await self.load_secret(secret_id)
                if attempt or current.iv == secret.iv:
                    raise
                logger.debug("Secret changed while decrypting: id=%s", secret_id)
        logger.debug("Secret decrypted: id=%s wallet=%s", secret_id, wallet_address)
        return plaintext

    async def _decrypt_with_signature(self, secret_id: str, wallet_address: str, signature: bytes) -> bytes:
        keypair = self._deriver.derive_recipient_keypair(signature)
        await self.wrapped_key_for(secret_id, wallet_address)
        if self._config.verify_signatures:
            self._deriver.verify(signature, wallet_address)
        return await self._decrypt(secret_id, wallet_address, keypair)

    async def _update_value(
        self,
        secret_id: str,
        holder_wallet: str,
        keypair: DerivedKeypair,
        plaintext: Union[str, bytes],
    ) -> Secret:
        if isinstance(plaintext, str):
            plaintext = plaintext.encode("utf-8")
        async with self._store.lock(secret_id):
            secret = await self.load_secret(secret_id)
            symmetric_key = await self._open_key(secret_id, holder_wallet, keypair)
            ciphertext, iv, auth_tag = crypto.encrypt(plaintext, symmetric_key)
            updated = secret.model_copy(update={
                "ciphertext": ciphertext,
                "iv": iv,
                "auth_tag": auth_tag,
                "updated_at": datetime.now(timezone.utc),
            })
            await self._store.update_secret(updated)
        logger.info("Secret value updated: id=%s by=%s", secret_id, holder_wallet)
        return updated

    async def _delete(self, secret_id: str) -> bool:
        async with self._store.lock(secret_id):
            if not await self._store.delete_secret(secret_id):
                raise SecretNotFound("Secret does not exist", secret_id=secret_id)
        logger.info("Secret deleted: id=%s", secret_id)
        return True

    async def _remove_member(self, project_id: str, wallet_address: str) -> int:
        held: list[str] = []
        sole: list[str] = []
        for secret in await self._store.list_secrets(project_id):
            records = await self._store.list_wrapped_keys(secret.id)
            holders = {r.recipient_wallet_address for r in records}
            if wallet_address in holders:
                held.append(secret.id)
                if holders == {wallet_address}:
                    sole.append(secret.id)
        if sole:
            raise NoRecipients(
                "Member is the only recipient of some secrets",
                project_id=project_id,
                wallet_address=wallet_address,
                secret_ids=sole,
            )
        removed = 0
        for secret_id in held:
            async with self._store.lock(secret_id):
                records = await self._store.list_wrapped_keys(secret_id)
                holders = {r.recipient_wallet_address for r in records}
                if wallet_address not in holders:
                    continue
                if holders == {wallet_address}:
                    # another holder left after the scan above
                    sole.append(secret_id)
                    continue
                if await self._store.delete_wrapped_key(secret_id, wallet_address):
                    removed += 1
        if sole:
            logger.warning(
                "Member removal incomplete: project=%s wallet=%s revoked=%d kept=%d",
                project_id, wallet_address, removed, len(sole),
            )
            raise NoRecipients(
                "Member became the only recipient of some secrets",
                project_id=project_id,
                wallet_address=wallet_address,
                secret_ids=sole,
                revoked=removed,
            )
        logger.info(
            "Member removed: project=%s wallet=%s revoked=%d",
            project_id, wallet_address, removed,
        )
        return removed

    async def _accessible(self, wallet_address: str, project_id: Optional[str]) -> list[SecretInfo]:
        found: list[SecretInfo] = []
        for record in await self._store.list_wrapped_keys_for_wallet(wallet_address):
            secret = await self._store.get_secret(record.secret_id)
            if secret is None:
                continue
            if project_id is not None and secret.project_id != project_id:
                continue
            found.append(SecretInfo.from_secret(secret, record.method))
        return sorted(found, key=lambda info: (info.project_id, info.environment_id, info.name))

    async def _recipients(self, secret_id: str) -> list[str]:
        await self.load_secret(secret_id)
        records = await self._store.list_wrapped_keys(secret_id)
        return sorted(r.recipient_wallet_address for r in records)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def create_secret(
        self,
        project_id: str,
        environment_id: str,
        name: str,
        plaintext: Union[str, bytes],
        type: str = "string",
        creator_wallet: Optional[str] = None,
    ) -> Result[str]:
        """Encrypt ``plaintext`` and grant every project member access.

        Args:
            project_id: Owning project; its members become the recipients.
            environment_id: Owning environment.
            name: Secret name.
            plaintext: Value to protect (str is UTF-8 encoded).
            type: Free-form secret type label.
            creator_wallet: When given, must be a project member.

        Returns:
            ``Ok(secret_id)``, or ``Err`` with ``NO_RECIPIENTS``,
            ``UNKNOWN_RECIPIENT``, ``INVALID_SECRET`` (bad name),
            ``SECRET_EXISTS`` (name taken in the environment) or
            ``PARTIAL_WRITE_FAILURE``. On failure no secret or wrapped key is
            left in the store.
        """
        return await self.as_result("create", self._create(
            project_id, environment_id, name, plaintext, type, creator_wallet,
        ))

    async def share_secret(
        self,
        secret_id: str,
        holder_wallet: str,
        holder_signature: bytes,
        new_recipient_wallet: str,
    ) -> Result[bool]:
        """Grant ``new_recipient_wallet`` access using a current holder's signature.

        The payload is not re-encrypted; only one wrapped key is added.
        """
        try:
            keypair = self.keypair_from_signature(holder_wallet, holder_signature)
        except VaultError as err:
            return Err(err)
        return await self.as_result("share", self._share(
            secret_id, holder_wallet, keypair, new_recipient_wallet,
        ))

    async def share_with_keypair(
        self,
        secret_id: str,
        holder_wallet: str,
        keypair: DerivedKeypair,
        new_recipient_wallet: str,
    ) -> Result[bool]:
        return await self.as_result("share", self._share(
            secret_id, holder_wallet, keypair, new_recipient_wallet,
        ))

    async def revoke_secret(self, secret_id: str, wallet_address: str) -> Result[bool]:
        """Remove ``wallet_address``'s wrapped key.

        The symmetric key is not rotated: a member who kept an unwrapped copy
        can still read the current ciphertext.
        """
        return await self.as_result("revoke", self._revoke(secret_id, wallet_address))

    async def decrypt_secret(self, secret_id: str, wallet_address: str, signature: bytes) -> Result[bytes]:
        """Return the plaintext for a wallet that signed the derivation message.

        Errors: ``DERIVATION_ERROR`` (malformed signature), ``NO_ACCESS`` (no
        wrapped key), ``ACCESS_DENIED`` (signature does not match the wallet or
        the wrapped key), ``INTEGRITY_CHECK_FAILED`` (stored ciphertext is
        corrupted), ``NOT_FOUND``.
        """
        return await self.as_result("decrypt", self._decrypt_with_signature(
            secret_id, wallet_address, signature,
        ))

    async def decrypt_with_keypair(
        self,
        secret_id: str,
        wallet_address: str,
        keypair: DerivedKeypair,
    ) -> Result[bytes]:
        return await self.as_result("decrypt", self._decrypt(secret_id, wallet_address, keypair))

    async def update_secret_value(
        self,
        secret_id: str,
        holder_wallet: str,
        holder_signature: bytes,
        plaintext: Union[str, bytes],
    ) -> Result[Secret]:
        """Re-encrypt a new value under the secret's existing key (same id)."""
        try:
            keypair = self.keypair_from_signature(holder_wallet, holder_signature)
        except VaultError as err:
            return Err(err)
        return await self.as_result("update", self._update_value(
            secret_id, holder_wallet, keypair, plaintext,
        ))

    async def delete_secret(self, secret_id: str) -> Result[bool]:
        return await self.as_result("delete", self._delete(secret_id))

    async def remove_member(self, project_id: str, wallet_address: str) -> Result[int]:
        """Revoke a departing member on every secret of the project.

        Nothing is revoked if the member is the only recipient of any secret.
        If a co-holder is revoked concurrently, the member keeps access to the
        secrets where they became the sole holder and the result is
        ``NO_RECIPIENTS`` with ``details["secret_ids"]`` and
        ``details["revoked"]``.
        """
        return await self.as_result("remove_member", self._remove_member(project_id, wallet_address))

    async def list_recipients(self, secret_id: str) -> Result[list[str]]:
        return await self.as_result("list_recipients", self._recipients(secret_id))

    async def list_accessible_secrets(
        self,
        wallet_address: str,
        project_id: Optional[str] = None,
    ) -> Result[list[SecretInfo]]:
        """Metadata of every secret ``wallet_address`` holds a wrapped key for.

        Ordered by project, environment and name. No ciphertext is returned.
        """
        return await self.as_result("list_accessible", self._accessible(wallet_address, project_id))

    # ------------------------------------------------------------------
    # Session helpers
    # ------------------------------------------------------------------

    async def _session_keypair(self, session: "WalletSession", signer: Optional["WalletSigner"]) -> DerivedKeypair:
        if not session.unlocked and signer is not None:
            return await session.unlock(signer)
        return session.keypair

    async def decrypt_with_session(
        self,
        secret_id: str,
        session: "WalletSession",
        signer: Optional["WalletSigner"] = None,
    ) -> Result[bytes]:
        """Decrypt with the session's cached keypair.

        With a ``signer``, a locked session is unlocked first (one wallet
        prompt). A declined or cancelled prompt leaves the session locked.
        """
        async def _op() -> bytes:
            keypair = await self._session_keypair(session, signer)
            return await self._decrypt(secret_id, session.wallet_address, keypair)
        return await self.as_result("decrypt", _op())

    async def share_with_session(
        self,
        secret_id: str,
        session: "WalletSession",
        new_recipient_wallet: str,
        signer: Optional["WalletSigner"] = None,
    ) -> Result[bool]:
        async def _op() -> bool:
            keypair = await self._session_keypair(session, signer)
            return await self._share(
                secret_id, session.wallet_address, keypair, new_recipient_wallet,
            )
        return await self.as_result("share", _op())
