"""In-process SecretStore, for tests and single-process deployments."""
import asyncio
import logging
from collections.abc import AsyncIterator, Sequence
from contextlib import asynccontextmanager
from typing import Optional

from ..errors import SecretExists, StorageError
from ..models import Secret, WrappedKeyRecord
from .abstract import SecretStore

logger = logging.getLogger("wallet_vault.storage")


class MemorySecretStore(SecretStore):
    """Dict-backed store with per-secret asyncio locks.

    Models are copied on the way in and out so callers cannot mutate
    stored state behind the store's back.
    """

    def __init__(self) -> None:
        self._secrets: dict[str, Secret] = {}
        self._keys: dict[str, dict[str, WrappedKeyRecord]] = {}
        self._locks: dict[str, asyncio.Lock] = {}

    async def create_secret(self, secret: Secret, records: Sequence[WrappedKeyRecord]) -> None:
        if secret.id in self._secrets:
            raise StorageError("Secret already exists", secret_id=secret.id)
        for existing in self._secrets.values():
            if (existing.project_id, existing.environment_id, existing.name) == (
                secret.project_id, secret.environment_id, secret.name,
            ):
                raise SecretExists(
                    "A secret with this name already exists",
                    project_id=secret.project_id,
                    environment_id=secret.environment_id,
                    name=secret.name,
                )
        staged: dict[str, WrappedKeyRecord] = {}
        for record in records:
            if record.secret_id != secret.id:
                raise StorageError(
                    "Wrapped key belongs to another secret",
                    secret_id=secret.id,
                )
            if record.recipient_wallet_address in staged:
                raise StorageError(
                    "Duplicate wrapped key for recipient",
                    secret_id=secret.id,
                    wallet_address=record.recipient_wallet_address,
                )
            staged[record.recipient_wallet_address] = record.model_copy()
        self._secrets[secret.id] = secret.model_copy()
        self._keys[secret.id] = staged

    async def get_secret(self, secret_id: str) -> Optional[Secret]:
        secret = self._secrets.get(secret_id)
        return secret.model_copy() if secret else None

    async def update_secret(self, secret: Secret) -> None:
        if secret.id not in self._secrets:
            raise StorageError("Secret does not exist", secret_id=secret.id)
        self._secrets[secret.id] = secret.model_copy()

    async def delete_secret(self, secret_id: str) -> bool:
        self._keys.pop(secret_id, None)
        return self._secrets.pop(secret_id, None) is not None

    async def list_secrets(self, project_id: str) -> list[Secret]:
        return [
            s.model_copy() for s in self._secrets.values()
            if s.project_id == project_id
        ]

    async def put_wrapped_key(self, record: WrappedKeyRecord) -> None:
        if record.secret_id not in self._secrets:
            raise StorageError("Secret does not exist", secret_id=record.secret_id)
        self._keys.setdefault(record.secret_id, {})[
            record.recipient_wallet_address
        ] = record.model_copy()

    async def get_wrapped_key(self, secret_id: str, wallet_address: str) -> Optional[WrappedKeyRecord]:
        record = self._keys.get(secret_id, {}).get(wallet_address)
        return record.model_copy() if record else None

    async def list_wrapped_keys(self, secret_id: str) -> list[WrappedKeyRecord]:
        return [r.model_copy() for r in self._keys.get(secret_id, {}).values()]

    async def list_wrapped_keys_for_wallet(self, wallet_address: str) -> list[WrappedKeyRecord]:
        return [
            records[wallet_address].model_copy()
            for records in self._keys.values()
            if wallet_address in records
        ]

    async def delete_wrapped_key(self, secret_id: str, wallet_address: str) -> bool:
        return self._keys.get(secret_id, {}).pop(wallet_address, None) is not None

    async def replace_key_material(self, secret: Secret, records: Sequence[WrappedKeyRecord]) -> None:
        if secret.id not in self._secrets:
            raise StorageError("Secret does not exist", secret_id=secret.id)
        staged = {r.recipient_wallet_address: r.model_copy() for r in records}
        self._secrets[secret.id] = secret.model_copy()
        self._keys[secret.id] = staged

    @asynccontextmanager
    async def lock(self, secret_id: str) -> AsyncIterator[None]:
        lock = self._locks.setdefault(secret_id, asyncio.Lock())
        async with lock:
            yield
