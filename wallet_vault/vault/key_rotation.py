"""
Vault Key Rotation — replace a secret's symmetric key after revocations.

Revoking a member only deletes their wrapped key; anyone who unwrapped the
key earlier can still read the current ciphertext. Rotation closes that gap
on request: a current holder unwraps the old key, the payload is re-encrypted
under a new key, and the new key is wrapped for every remaining holder. The
swap is atomic; if any holder cannot be wrapped, nothing changes.

Security Note:
    Plaintext and both keys exist in memory only during the rotation.
    Never log plaintext, keys or ciphertext values.
"""
import logging
from datetime import datetime, timezone

from ..errors import (
    Err,
    PartialWriteFailure,
    Result,
    StorageError,
    UnknownRecipient,
    VaultError,
)
from ..models import DerivedKeypair, Member
from . import crypto
from .protocol import AccessProtocol
from .wrapping import unwrap_record

logger = logging.getLogger("wallet_vault.vault")


async def _rotate(
    protocol: AccessProtocol,
    secret_id: str,
    holder_wallet: str,
    keypair: DerivedKeypair,
) -> dict:
    store = protocol.store
    stats = {"total": 0, "rewrapped": 0}

    logger.info("Starting key rotation for secret=%s", secret_id)

    async with store.lock(secret_id):
        secret = await protocol.load_secret(secret_id)
        holder_record = await protocol.wrapped_key_for(secret_id, holder_wallet)
        old_key = unwrap_record(holder_record, keypair)
        plaintext = crypto.decrypt(
            secret.ciphertext, secret.iv, secret.auth_tag, old_key,
        )

        new_key = crypto.generate_key()
        ciphertext, iv, auth_tag = crypto.encrypt(plaintext, new_key)
        rotated = secret.model_copy(update={
            "ciphertext": ciphertext,
            "iv": iv,
            "auth_tag": auth_tag,
            "updated_at": datetime.now(timezone.utc),
        })

        records = await store.list_wrapped_keys(secret_id)
        members: list[Member] = []
        missing: list[str] = []
        for record in records:
            stats["total"] += 1
            member = await protocol.directory.get_member(
                secret.project_id, record.recipient_wallet_address,
            )
            if member is None:
                missing.append(record.recipient_wallet_address)
            else:
                members.append(member)
        if missing:
            raise UnknownRecipient(
                "Some holders are no longer project members; revoke them first",
                secret_id=secret_id,
                wallet_addresses=missing,
            )

        new_records = protocol.wrap_for_members(secret_id, new_key, members)
        try:
            await store.replace_key_material(rotated, new_records)
        except StorageError as err:
            raise PartialWriteFailure(
                "Rotated key material could not be stored",
                secret_id=secret_id,
            ) from err
        stats["rewrapped"] = len(new_records)

    logger.info("Key rotation complete for secret=%s: %s", secret_id, stats)
    return stats


async def rotate_secret_key(
    protocol: AccessProtocol,
    secret_id: str,
    holder_wallet: str,
    holder_signature: bytes,
) -> Result[dict]:
    """Re-encrypt a secret under a new key and re-wrap it for current holders.

    Args:
        protocol: AccessProtocol bound to the store and directory.
        secret_id: Secret to rotate.
        holder_wallet: A wallet that currently holds a wrapped key.
        holder_signature: That wallet's signature over the derivation message.

    Returns:
        ``Ok`` with stats dict (keys: total, rewrapped), or ``Err``.
    """
    try:
        keypair = protocol.keypair_from_signature(holder_wallet, holder_signature)
    except VaultError as err:
        return Err(err)
    return await protocol.as_result("rotate", _rotate(protocol, secret_id, holder_wallet, keypair))
