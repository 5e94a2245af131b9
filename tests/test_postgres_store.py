"""
Tests for PostgresSecretStore against a recording asyncpg-like pool.
"""
import asyncio
from contextlib import asynccontextmanager
from datetime import datetime, timezone

import pytest

from wallet_vault import (
    AccessProtocol,
    ErrorKind,
    PostgresSecretStore,
    Secret,
    WrapMethod,
    WrappedKeyRecord,
)
from wallet_vault.encoding import get_codec
from wallet_vault.errors import EncodingError, SecretExists, StorageError

NOW = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


class UniqueViolationError(Exception):
    """Shaped like asyncpg.UniqueViolationError."""

    sqlstate = "23505"


class FakeTransaction:
    def __init__(self, log):
        self._log = log

    async def start(self):
        self._log.append("BEGIN")

    async def commit(self):
        self._log.append("COMMIT")

    async def rollback(self):
        self._log.append("ROLLBACK")


class FakeConnection:
    """Records statements; answers fetch/fetchrow from canned rows."""

    def __init__(self):
        self.log = []
        self.rows = []
        self.status = "DELETE 1"
        self.fail_on = None
        self.error = RuntimeError("write failed")
        self.read_error = None

    def transaction(self):
        return FakeTransaction(self.log)

    async def execute(self, sql, *args):
        self.log.append((sql.strip().split()[0], args))
        if self.fail_on and self.fail_on in sql:
            raise self.error
        return self.status

    async def fetchrow(self, sql, *args):
        self.log.append(("FETCHROW", args))
        if self.read_error:
            raise self.read_error
        return self.rows[0] if self.rows else None

    async def fetch(self, sql, *args):
        self.log.append(("FETCH", args))
        if self.read_error:
            raise self.read_error
        return list(self.rows)


class FakePool:
    def __init__(self):
        self.conn = FakeConnection()

    @asynccontextmanager
    async def acquire(self):
        yield self.conn


class SingleConnectionPool(FakePool):
    """Blocks ``acquire`` while its one connection is checked out."""

    def __init__(self):
        super().__init__()
        self._slot = asyncio.Semaphore(1)

    @asynccontextmanager
    async def acquire(self):
        async with self._slot:
            yield self.conn


class UnreachablePool:
    @asynccontextmanager
    async def acquire(self):
        raise OSError("connection refused")
        yield


@pytest.fixture
def pool():
    return FakePool()


@pytest.fixture
def pg_store(pool):
    return PostgresSecretStore(pool, encoding="hex")


@pytest.fixture
def secret():
    return Secret(
        id="s1",
        project_id="p1",
        environment_id="prod",
        name="DB_URL",
        ciphertext=b"\xde\xad",
        iv=b"\x00" * 12,
        auth_tag=b"\x11" * 16,
        created_at=NOW,
        updated_at=NOW,
    )


@pytest.fixture
def record():
    return WrappedKeyRecord(
        secret_id="s1",
        recipient_wallet_address="wallet-a",
        wrapped_key=b"\x22" * 48,
        nonce=b"\x33" * 24,
        ephemeral_public_key=b"\x44" * 32,
        method=WrapMethod.DERIVED,
        created_at=NOW,
    )


def _secret_row(secret, encoding="hex"):
    codec = get_codec(encoding)
    row = secret.to_wire(codec)
    row["created_at"] = secret.created_at
    row["updated_at"] = secret.updated_at
    return row


def _record_row(record, encoding="hex"):
    row = record.to_wire(get_codec(encoding))
    row["created_at"] = record.created_at
    return row


class TestWrites:
    """Atomic multi-statement writes."""

    async def test_create_schema(self, pool, pg_store):
        await pg_store.create_schema()
        assert pool.conn.log == [("CREATE", ())]

    async def test_create_commits_once(self, pool, pg_store, secret, record):
        await pg_store.create_secret(secret, [record])
        log = pool.conn.log
        assert log[0] == "BEGIN"
        assert log[-1] == "COMMIT"
        verbs = [entry[0] for entry in log[1:-1]]
        assert verbs == ["INSERT", "INSERT"]
        insert_args = log[1][1]
        assert insert_args[5] == "dead"
        assert insert_args[8] == "hex"

    async def test_failure_rolls_back(self, pool, pg_store, secret, record):
        pool.conn.fail_on = "vault.secret_keys"
        with pytest.raises(StorageError) as err:
            await pg_store.create_secret(secret, [record])
        assert err.value.kind is ErrorKind.STORAGE_ERROR
        assert "ROLLBACK" in pool.conn.log
        assert "COMMIT" not in pool.conn.log

    async def test_duplicate_name(self, pool, pg_store, secret, record):
        pool.conn.fail_on = "vault.secrets"
        pool.conn.error = UniqueViolationError()
        with pytest.raises(SecretExists) as err:
            await pg_store.create_secret(secret, [record])
        assert err.value.kind is ErrorKind.SECRET_EXISTS
        assert err.value.details["name"] == "DB_URL"
        assert "ROLLBACK" in pool.conn.log

    async def test_replace_key_material(self, pool, pg_store, secret, record):
        await pg_store.replace_key_material(secret, [record])
        verbs = [entry[0] for entry in pool.conn.log if isinstance(entry, tuple)]
        assert verbs == ["UPDATE", "DELETE", "INSERT"]
        assert pool.conn.log[-1] == "COMMIT"

    async def test_update_missing_secret(self, pool, pg_store, secret):
        pool.conn.status = "UPDATE 0"
        with pytest.raises(StorageError):
            await pg_store.update_secret(secret)

    async def test_delete_status(self, pool, pg_store):
        assert await pg_store.delete_secret("s1") is True
        pool.conn.status = "DELETE 0"
        assert await pg_store.delete_secret("s1") is False
        assert await pg_store.delete_wrapped_key("s1", "wallet-a") is False


class TestReads:
    """Row decoding with the stored encoding tag."""

    async def test_get_secret(self, pool, pg_store, secret):
        pool.conn.rows = [_secret_row(secret)]
        assert await pg_store.get_secret("s1") == secret

    async def test_get_missing(self, pg_store):
        assert await pg_store.get_secret("nope") is None
        assert await pg_store.get_wrapped_key("nope", "wallet-a") is None

    async def test_list_wrapped_keys(self, pool, pg_store, record):
        pool.conn.rows = [_record_row(record)]
        assert await pg_store.list_wrapped_keys("s1") == [record]

    async def test_list_wrapped_keys_for_wallet(self, pool, pg_store, record):
        pool.conn.rows = [_record_row(record)]
        assert await pg_store.list_wrapped_keys_for_wallet("wallet-a") == [record]
        assert pool.conn.log == [("FETCH", ("wallet-a",))]

    async def test_encoding_mismatch(self, pool, pg_store, secret):
        pool.conn.rows = [_secret_row(secret, encoding="base64")]
        with pytest.raises(EncodingError):
            await pg_store.get_secret("s1")


class TestDriverErrors:
    """Driver and pool failures surface as StorageError."""

    async def test_read_failure(self, pool, pg_store):
        pool.conn.read_error = ConnectionError("connection reset")
        with pytest.raises(StorageError) as err:
            await pg_store.get_secret("s1")
        assert isinstance(err.value.__cause__, ConnectionError)
        with pytest.raises(StorageError):
            await pg_store.list_wrapped_keys_for_wallet("wallet-a")

    async def test_write_failure(self, pool, pg_store, record):
        pool.conn.fail_on = "vault.secret_keys"
        with pytest.raises(StorageError):
            await pg_store.put_wrapped_key(record)

    async def test_pool_unreachable(self, secret, record):
        store = PostgresSecretStore(UnreachablePool(), encoding="hex")
        with pytest.raises(StorageError):
            await store.list_secrets("p1")
        with pytest.raises(StorageError):
            await store.create_secret(secret, [record])
        with pytest.raises(StorageError):
            async with store.lock("s1"):
                pass

    async def test_decrypt_reports_storage_error(self, pool, pg_store, directory, config, alice, sign):
        pool.conn.read_error = ConnectionError("connection reset")
        protocol = AccessProtocol(pg_store, directory, config)
        result = await protocol.decrypt_secret("s1", alice.address, sign(alice))
        assert result.kind is ErrorKind.STORAGE_ERROR

    async def test_create_reports_duplicate_name(self, pool, pg_store, directory, register, config, alice):
        register(alice)
        pool.conn.fail_on = "vault.secrets"
        pool.conn.error = UniqueViolationError()
        protocol = AccessProtocol(pg_store, directory, config)
        result = await protocol.create_secret("proj-1", "production", "DB_URL", "v")
        assert result.kind is ErrorKind.SECRET_EXISTS


class TestLocking:
    async def test_advisory_lock_released(self, pool, pg_store):
        async with pg_store.lock("s1"):
            assert pool.conn.log == [("SELECT", ("s1",))]
        assert len(pool.conn.log) == 2

    async def test_released_on_error(self, pool, pg_store):
        with pytest.raises(ValueError):
            async with pg_store.lock("s1"):
                raise ValueError("boom")
        assert len(pool.conn.log) == 2

    async def test_lock_failure(self, pool, pg_store):
        pool.conn.fail_on = "pg_advisory_lock"
        with pytest.raises(StorageError):
            async with pg_store.lock("s1"):
                pass

    async def test_locked_calls_reuse_connection(self, secret, record):
        pool = SingleConnectionPool()
        store = PostgresSecretStore(pool, encoding="hex")

        async def locked_update():
            async with store.lock("s1"):
                await store.get_secret("s1")
                await store.replace_key_material(secret, [record])

        await asyncio.wait_for(locked_update(), timeout=1)
        verbs = [entry[0] for entry in pool.conn.log if isinstance(entry, tuple)]
        assert verbs == ["SELECT", "FETCHROW", "UPDATE", "DELETE", "INSERT", "SELECT"]
        # outside the lock calls go back to the pool
        assert await asyncio.wait_for(store.get_secret("s1"), timeout=1) is None
