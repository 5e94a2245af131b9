"""
PostgreSQL SecretStore — asyncpg-compatible pool, one transaction per write.

Binary fields are stored as text in the configured encoding; each row also
records which encoding it was written with so a deployment that switches
encodings fails loudly (``EncodingError``) instead of mis-decoding.

Security Note:
    Never log ciphertext, nonces or wrapped keys. Only log ids and wallets.
"""
import logging
from collections.abc import AsyncIterator, Sequence
from contextlib import asynccontextmanager
from contextvars import ContextVar
from typing import Any, Optional

from ..encoding import BinaryCodec, get_codec
from ..errors import SecretExists, StorageError, VaultError
from ..models import Secret, WrappedKeyRecord
from .abstract import SecretStore

logger = logging.getLogger("wallet_vault.storage")

# ---------------------------------------------------------------------------
# SQL statements
# ---------------------------------------------------------------------------

SCHEMA = """
CREATE SCHEMA IF NOT EXISTS vault;

CREATE TABLE IF NOT EXISTS vault.secrets (
    id TEXT PRIMARY KEY,
    project_id TEXT NOT NULL,
    environment_id TEXT NOT NULL,
    name TEXT NOT NULL,
    type TEXT NOT NULL,
    ciphertext TEXT NOT NULL,
    iv TEXT NOT NULL,
    auth_tag TEXT NOT NULL,
    encoding TEXT NOT NULL,
    created_at TIMESTAMPTZ NOT NULL,
    updated_at TIMESTAMPTZ NOT NULL,
    UNIQUE (project_id, environment_id, name)
);

CREATE TABLE IF NOT EXISTS vault.secret_keys (
    secret_id TEXT NOT NULL REFERENCES vault.secrets (id) ON DELETE CASCADE,
    recipient_wallet_address TEXT NOT NULL,
    wrapped_key TEXT NOT NULL,
    nonce TEXT NOT NULL,
    ephemeral_public_key TEXT NOT NULL,
    method TEXT NOT NULL,
    encoding TEXT NOT NULL,
    created_at TIMESTAMPTZ NOT NULL,
    PRIMARY KEY (secret_id, recipient_wallet_address)
);
"""

_INSERT_SECRET = """
INSERT INTO vault.secrets
    (id, project_id, environment_id, name, type, ciphertext, iv, auth_tag,
     encoding, created_at, updated_at)
VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11)
"""

_UPDATE_SECRET = """
UPDATE vault.secrets
SET ciphertext = $2, iv = $3, auth_tag = $4, encoding = $5, updated_at = $6
WHERE id = $1
"""

_SELECT_SECRET = """
SELECT id, project_id, environment_id, name, type, ciphertext, iv, auth_tag,
       encoding, created_at, updated_at
FROM vault.secrets
WHERE id = $1
"""

_SELECT_PROJECT_SECRETS = """
SELECT id, project_id, environment_id, name, type, ciphertext, iv, auth_tag,
       encoding, created_at, updated_at
FROM vault.secrets
WHERE project_id = $1
ORDER BY created_at
"""

_DELETE_SECRET = """
DELETE FROM vault.secrets WHERE id = $1
"""

_UPSERT_KEY = """
INSERT INTO vault.secret_keys
    (secret_id, recipient_wallet_address, wrapped_key, nonce,
     ephemeral_public_key, method, encoding, created_at)
VALUES ($1, $2, $3, $4, $5, $6, $7, $8)
ON CONFLICT (secret_id, recipient_wallet_address)
DO UPDATE SET wrapped_key = EXCLUDED.wrapped_key,
              nonce = EXCLUDED.nonce,
              ephemeral_public_key = EXCLUDED.ephemeral_public_key,
              method = EXCLUDED.method,
              encoding = EXCLUDED.encoding,
              created_at = EXCLUDED.created_at
"""

_SELECT_KEY = """
SELECT secret_id, recipient_wallet_address, wrapped_key, nonce,
       ephemeral_public_key, method, encoding, created_at
FROM vault.secret_keys
WHERE secret_id = $1 AND recipient_wallet_address = $2
"""

_SELECT_KEYS = """
SELECT secret_id, recipient_wallet_address, wrapped_key, nonce,
       ephemeral_public_key, method, encoding, created_at
FROM vault.secret_keys
WHERE secret_id = $1
ORDER BY created_at
"""

_SELECT_WALLET_KEYS = """
SELECT secret_id, recipient_wallet_address, wrapped_key, nonce,
       ephemeral_public_key, method, encoding, created_at
FROM vault.secret_keys
WHERE recipient_wallet_address = $1
ORDER BY created_at
"""

_DELETE_KEY = """
DELETE FROM vault.secret_keys
WHERE secret_id = $1 AND recipient_wallet_address = $2
"""

_DELETE_ALL_KEYS = """
DELETE FROM vault.secret_keys WHERE secret_id = $1
"""

_ADVISORY_LOCK = "SELECT pg_advisory_lock(hashtext($1))"
_ADVISORY_UNLOCK = "SELECT pg_advisory_unlock(hashtext($1))"

_UNIQUE_VIOLATION = "23505"


def _affected(status: str) -> int:
    """Row count from an asyncpg command status such as ``DELETE 1``."""
    try:
        return int(str(status).rsplit(" ", 1)[-1])
    except ValueError:
        return 0


def _is_unique_violation(err: Optional[BaseException]) -> bool:
    return getattr(err, "sqlstate", None) == _UNIQUE_VIOLATION


# connection held by ``PostgresSecretStore.lock`` in the current task
_held_connection: ContextVar[Optional[Any]] = ContextVar(
    "wallet_vault_held_connection", default=None,
)


class PostgresSecretStore(SecretStore):
    """SecretStore over an asyncpg-compatible connection pool.

    Every driver failure surfaces as ``StorageError``. Calls made inside
    ``lock()`` run on the connection that holds the advisory lock, so a
    locked operation never needs a second pooled connection.
    """

    def __init__(self, db_pool: Any, encoding: str = "base64"):
        self._db = db_pool
        self._codec: BinaryCodec = get_codec(encoding)

    async def create_schema(self) -> None:
        await self._query("execute", SCHEMA)

    # ------------------------------------------------------------------
    # Connection helpers
    # ------------------------------------------------------------------

    @asynccontextmanager
    async def _connection(self) -> AsyncIterator[Any]:
        held = _held_connection.get()
        if held is not None:
            yield held
            return
        async with self._db.acquire() as conn:
            yield conn

    async def _query(self, method: str, sql: str, *args: Any) -> Any:
        try:
            async with self._connection() as conn:
                return await getattr(conn, method)(sql, *args)
        except Exception as err:
            logger.error(
                "Storage %s failed: %s", method, type(err).__name__,
            )
            raise StorageError(
                "Storage operation failed", operation=method,
            ) from err

    async def _in_transaction(self, statements: Sequence[tuple], secret_id: str) -> None:
        try:
            async with self._connection() as conn:
                tx = conn.transaction()
                await tx.start()
                try:
                    for sql, args in statements:
                        await conn.execute(sql, *args)
                except Exception:
                    await tx.rollback()
                    raise
                await tx.commit()
        except Exception as err:
            logger.error(
                "Transaction rolled back for secret=%s: %s",
                secret_id, type(err).__name__,
            )
            raise StorageError(
                "Storage transaction failed", secret_id=secret_id,
            ) from err

    # ------------------------------------------------------------------
    # Row helpers
    # ------------------------------------------------------------------

    def _secret_args(self, secret: Secret) -> tuple:
        wire = secret.to_wire(self._codec)
        return (
            secret.id, secret.project_id, secret.environment_id, secret.name,
            secret.type, wire["ciphertext"], wire["iv"], wire["auth_tag"],
            self._codec.name, secret.created_at, secret.updated_at,
        )

    def _update_args(self, secret: Secret) -> tuple:
        wire = secret.to_wire(self._codec)
        return (
            secret.id, wire["ciphertext"], wire["iv"], wire["auth_tag"],
            self._codec.name, secret.updated_at,
        )

    def _key_args(self, record: WrappedKeyRecord) -> tuple:
        wire = record.to_wire(self._codec)
        return (
            record.secret_id, record.recipient_wallet_address,
            wire["wrapped_key"], wire["nonce"], wire["ephemeral_public_key"],
            record.method.value, self._codec.name, record.created_at,
        )

    def _to_secret(self, row: Any) -> Secret:
        return Secret.from_wire(dict(row), self._codec)

    def _to_record(self, row: Any) -> WrappedKeyRecord:
        return WrappedKeyRecord.from_wire(dict(row), self._codec)

    # ------------------------------------------------------------------
    # SecretStore API
    # ------------------------------------------------------------------

    async def create_secret(self, secret: Secret, records: Sequence[WrappedKeyRecord]) -> None:
        statements = [(_INSERT_SECRET, self._secret_args(secret))]
        statements.extend((_UPSERT_KEY, self._key_args(r)) for r in records)
        try:
            await self._in_transaction(statements, secret.id)
        except StorageError as err:
            if _is_unique_violation(err.__cause__):
                raise SecretExists(
                    "A secret with this name already exists",
                    project_id=secret.project_id,
                    environment_id=secret.environment_id,
                    name=secret.name,
                ) from err.__cause__
            raise
        logger.debug(
            "Secret stored: id=%s recipients=%d", secret.id, len(records),
        )

    async def get_secret(self, secret_id: str) -> Optional[Secret]:
        row = await self._query("fetchrow", _SELECT_SECRET, secret_id)
        return self._to_secret(row) if row else None

    async def update_secret(self, secret: Secret) -> None:
        status = await self._query("execute", _UPDATE_SECRET, *self._update_args(secret))
        if _affected(status) == 0:
            raise StorageError("Secret does not exist", secret_id=secret.id)

    async def delete_secret(self, secret_id: str) -> bool:
        status = await self._query("execute", _DELETE_SECRET, secret_id)
        return _affected(status) > 0

    async def list_secrets(self, project_id: str) -> list[Secret]:
        rows = await self._query("fetch", _SELECT_PROJECT_SECRETS, project_id)
        return [self._to_secret(row) for row in rows]

    async def put_wrapped_key(self, record: WrappedKeyRecord) -> None:
        await self._query("execute", _UPSERT_KEY, *self._key_args(record))

    async def get_wrapped_key(self, secret_id: str, wallet_address: str) -> Optional[WrappedKeyRecord]:
        row = await self._query("fetchrow", _SELECT_KEY, secret_id, wallet_address)
        return self._to_record(row) if row else None

    async def list_wrapped_keys(self, secret_id: str) -> list[WrappedKeyRecord]:
        rows = await self._query("fetch", _SELECT_KEYS, secret_id)
        return [self._to_record(row) for row in rows]

    async def list_wrapped_keys_for_wallet(self, wallet_address: str) -> list[WrappedKeyRecord]:
        rows = await self._query("fetch", _SELECT_WALLET_KEYS, wallet_address)
        return [self._to_record(row) for row in rows]

    async def delete_wrapped_key(self, secret_id: str, wallet_address: str) -> bool:
        status = await self._query("execute", _DELETE_KEY, secret_id, wallet_address)
        return _affected(status) > 0

    async def replace_key_material(self, secret: Secret, records: Sequence[WrappedKeyRecord]) -> None:
        statements = [
            (_UPDATE_SECRET, self._update_args(secret)),
            (_DELETE_ALL_KEYS, (secret.id,)),
        ]
        statements.extend((_UPSERT_KEY, self._key_args(r)) for r in records)
        await self._in_transaction(statements, secret.id)

    @asynccontextmanager
    async def lock(self, secret_id: str) -> AsyncIterator[None]:
        """Hold ``pg_advisory_lock`` on one pooled connection for the block.

        Errors raised by the locked block propagate unchanged; failures to
        acquire or release the lock raise ``StorageError``.
        """
        body_error: Optional[BaseException] = None
        try:
            async with self._db.acquire() as conn:
                await conn.execute(_ADVISORY_LOCK, secret_id)
                token = _held_connection.set(conn)
                try:
                    yield
                except BaseException as err:
                    body_error = err
                    raise
                finally:
                    _held_connection.reset(token)
                    await conn.execute(_ADVISORY_UNLOCK, secret_id)
        except Exception as err:
            if err is body_error or isinstance(err, VaultError):
                raise
            logger.error(
                "Advisory lock failed for secret=%s: %s",
                secret_id, type(err).__name__,
            )
            raise StorageError(
                "Could not lock secret", secret_id=secret_id,
            ) from err
