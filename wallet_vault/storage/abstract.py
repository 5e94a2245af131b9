"""
SecretStore — durable storage contract for secrets and wrapped keys.

Implementations must provide:
- atomic ``create_secret`` / ``replace_key_material`` (all records or none),
- uniqueness of secret names per ``(project_id, environment_id)``,
- uniqueness of wrapped keys on ``(secret_id, recipient_wallet_address)``,
- a per-secret ``lock`` so share and revoke on one secret never interleave.
"""
import abc
from collections.abc import AsyncIterator, Sequence
from contextlib import asynccontextmanager
from typing import Optional

from ..models import Secret, WrappedKeyRecord


class SecretStore(abc.ABC):
    """Abstract persistence for ciphertext blobs and wrapped-key records."""

    @abc.abstractmethod
    async def create_secret(self, secret: Secret, records: Sequence[WrappedKeyRecord]) -> None:
        """Persist a secret together with all its wrapped keys, atomically.

        Raises:
            SecretExists: If the project environment already has a secret
                with this name.
            StorageError: If anything fails; nothing is left behind.
        """

    @abc.abstractmethod
    async def get_secret(self, secret_id: str) -> Optional[Secret]:
        ...

    @abc.abstractmethod
    async def update_secret(self, secret: Secret) -> None:
        """Replace ciphertext, iv and auth_tag of an existing secret."""

    @abc.abstractmethod
    async def delete_secret(self, secret_id: str) -> bool:
        """Delete a secret and every wrapped key for it."""

    @abc.abstractmethod
    async def list_secrets(self, project_id: str) -> list[Secret]:
        ...

    @abc.abstractmethod
    async def put_wrapped_key(self, record: WrappedKeyRecord) -> None:
        """Insert or replace the record for ``record.pair``."""

    @abc.abstractmethod
    async def get_wrapped_key(self, secret_id: str, wallet_address: str) -> Optional[WrappedKeyRecord]:
        ...

    @abc.abstractmethod
    async def list_wrapped_keys(self, secret_id: str) -> list[WrappedKeyRecord]:
        ...

    @abc.abstractmethod
    async def list_wrapped_keys_for_wallet(self, wallet_address: str) -> list[WrappedKeyRecord]:
        """Every record held by ``wallet_address``, across all secrets."""

    @abc.abstractmethod
    async def delete_wrapped_key(self, secret_id: str, wallet_address: str) -> bool:
        ...

    @abc.abstractmethod
    async def replace_key_material(self, secret: Secret, records: Sequence[WrappedKeyRecord]) -> None:
        """Swap a secret's ciphertext and its full set of wrapped keys, atomically."""

    @asynccontextmanager
    async def lock(self, secret_id: str) -> AsyncIterator[None]:
        """Serialize mutations of one secret. Default: no locking."""
        yield
