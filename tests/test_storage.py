"""
Tests for vault storage backends.

Tests cover:
- RedisStorage against an in-process fake client (prefixing, TTL, scan)
- PostgresStorage against an in-process fake pool (upsert, schema)
- Translation of connection errors into StorageUnavailable
- create_storage backend selection
"""
import fnmatch
import contextlib

import pytest
import redis.exceptions

from passkey_identity.exceptions import StorageUnavailable
from passkey_identity.vault.config import VaultConfig
from passkey_identity.vault.key_vault import KeyVault
from passkey_identity.vault.records import EncryptedKeyRecord, KeyMetadata
from passkey_identity.vault.storage import (
    MemoryStorage,
    PostgresStorage,
    RedisStorage,
    create_storage,
)


def make_record(record_id: str = "cred-1", timestamp: int = 1) -> EncryptedKeyRecord:
    return EncryptedKeyRecord(
        id=record_id,
        encrypted_key="ZW5jcnlwdGVk",
        iv="aXZpdml2aXZpdml2",
        salt="c2FsdHNhbHRzYWx0c2FsdA==",
        timestamp=timestamp,
        metadata=KeyMetadata(user_id="user-123", credential_id=record_id),
    )


# --- Fakes ---

class FakeRedis:
    """Subset of redis.asyncio.Redis used by RedisStorage."""

    def __init__(self):
        self.data: dict[str, bytes] = {}
        self.ttls: dict[str, int] = {}

    async def set(self, key, value):
        self.data[key] = value

    async def setex(self, key, ttl, value):
        self.data[key] = value
        self.ttls[key] = ttl

    async def get(self, key):
        return self.data.get(key)

    async def delete(self, *keys):
        removed = 0
        for key in keys:
            removed += self.data.pop(key, None) is not None
        return removed

    async def exists(self, key):
        return int(key in self.data)

    async def scan_iter(self, match=None):
        for key in list(self.data):
            if match is None or fnmatch.fnmatch(key, match):
                yield key


class DownRedis(FakeRedis):
    async def get(self, key):
        raise redis.exceptions.ConnectionError("Connection refused")

    async def set(self, key, value):
        raise redis.exceptions.TimeoutError("Timeout writing to socket")


class FakeConnection:
    """Interprets the statements PostgresStorage issues."""

    def __init__(self, pool):
        self._pool = pool

    async def execute(self, sql, *args):
        sql = sql.strip()
        self._pool.statements.append(sql)
        rows = self._pool.rows
        if sql.startswith("INSERT"):
            rows[args[0]] = {
                "id": args[0],
                "encrypted_key": args[1],
                "iv": args[2],
                "salt": args[3],
                "timestamp_ms": args[4],
                "metadata": args[5],
            }
        elif sql.startswith("DELETE") and "WHERE" in sql:
            rows.pop(args[0], None)
        elif sql.startswith("DELETE"):
            rows.clear()

    async def fetchrow(self, sql, record_id):
        return self._pool.rows.get(record_id)

    async def fetchval(self, sql, record_id):
        return record_id in self._pool.rows

    async def fetch(self, sql):
        return [{"id": k} for k in sorted(self._pool.rows)]


class FakePool:
    def __init__(self):
        self.rows: dict[str, dict] = {}
        self.statements: list[str] = []

    @contextlib.asynccontextmanager
    async def acquire(self):
        yield FakeConnection(self)


class DownPool(FakePool):
    def acquire(self):
        raise ConnectionRefusedError(111, "Connect call failed")


@pytest.fixture
def fake_redis():
    return FakeRedis()


@pytest.fixture
def fake_pool():
    return FakePool()


# --- Test Redis Storage ---

class TestRedisStorage:
    """Tests for RedisStorage."""

    @pytest.mark.asyncio
    async def test_put_get(self, fake_redis):
        storage = RedisStorage(fake_redis, prefix="keys")
        record = make_record()
        await storage.put(record)
        assert "keys:cred-1" in fake_redis.data
        assert await storage.get("cred-1") == record

    @pytest.mark.asyncio
    async def test_get_missing(self, fake_redis):
        assert await RedisStorage(fake_redis).get("missing") is None

    @pytest.mark.asyncio
    async def test_ttl_uses_setex(self, fake_redis):
        storage = RedisStorage(fake_redis, prefix="keys", ttl=600)
        await storage.put(make_record())
        assert fake_redis.ttls == {"keys:cred-1": 600}

    @pytest.mark.asyncio
    async def test_overwrite(self, fake_redis):
        storage = RedisStorage(fake_redis)
        await storage.put(make_record(timestamp=1))
        await storage.put(make_record(timestamp=2))
        assert (await storage.get("cred-1")).timestamp == 2

    @pytest.mark.asyncio
    async def test_exists_delete(self, fake_redis):
        storage = RedisStorage(fake_redis)
        await storage.put(make_record())
        assert await storage.exists("cred-1") is True
        await storage.delete("cred-1")
        assert await storage.exists("cred-1") is False

    @pytest.mark.asyncio
    async def test_clear_only_touches_prefix(self, fake_redis):
        """Test clear and ids ignore keys outside the prefix."""
        fake_redis.data["other:thing"] = b"keep"
        storage = RedisStorage(fake_redis, prefix="keys")
        await storage.put(make_record("a"))
        await storage.put(make_record("b"))
        assert await storage.ids() == ["a", "b"]
        await storage.clear()
        assert await storage.ids() == []
        assert fake_redis.data == {"other:thing": b"keep"}

    @pytest.mark.asyncio
    async def test_ids_decode_bytes_keys(self, fake_redis):
        storage = RedisStorage(fake_redis, prefix="keys")
        await storage.put(make_record("a"))
        fake_redis.data = {k.encode(): v for k, v in fake_redis.data.items()}

        async def scan_iter(match=None):
            for key in fake_redis.data:
                yield key

        fake_redis.scan_iter = scan_iter
        assert await storage.ids() == ["a"]

    @pytest.mark.asyncio
    async def test_corrupted_value_raises_value_error(self, fake_redis):
        fake_redis.data["passkey:signing-keys:cred-1"] = b"not json"
        with pytest.raises(ValueError):
            await RedisStorage(fake_redis).get("cred-1")

    @pytest.mark.asyncio
    async def test_connection_errors_are_unavailable(self):
        storage = RedisStorage(DownRedis())
        with pytest.raises(StorageUnavailable):
            await storage.get("cred-1")
        with pytest.raises(StorageUnavailable):
            await storage.put(make_record())

    @pytest.mark.asyncio
    async def test_vault_over_redis(self, fake_redis):
        vault = KeyVault(RedisStorage(fake_redis))
        await vault.store_key("cred-1", b"\x05" * 32, "P1")
        assert await vault.retrieve_key("cred-1", "P1") == b"\x05" * 32
        assert await vault.retrieve_key("cred-1", "P2") is None


# --- Test Postgres Storage ---

class TestPostgresStorage:
    """Tests for PostgresStorage."""

    @pytest.mark.asyncio
    async def test_put_get(self, fake_pool):
        storage = PostgresStorage(fake_pool)
        record = make_record()
        await storage.put(record)
        assert await storage.get("cred-1") == record

    @pytest.mark.asyncio
    async def test_metadata_serialized_as_json(self, fake_pool):
        storage = PostgresStorage(fake_pool)
        await storage.put(make_record())
        stored = fake_pool.rows["cred-1"]["metadata"]
        assert '"userId":"user-123"' in stored

    @pytest.mark.asyncio
    async def test_missing_metadata(self, fake_pool):
        storage = PostgresStorage(fake_pool)
        record = make_record().model_copy(update={"metadata": None})
        await storage.put(record)
        assert (await storage.get("cred-1")).metadata is None

    @pytest.mark.asyncio
    async def test_upsert_statement(self, fake_pool):
        storage = PostgresStorage(fake_pool, table="vault.keys")
        await storage.put(make_record())
        assert "INSERT INTO vault.keys" in fake_pool.statements[0]
        assert "ON CONFLICT (id)" in fake_pool.statements[0]

    @pytest.mark.asyncio
    async def test_exists_delete_clear(self, fake_pool):
        storage = PostgresStorage(fake_pool)
        await storage.put(make_record("a"))
        await storage.put(make_record("b"))
        assert await storage.ids() == ["a", "b"]
        await storage.delete("a")
        assert await storage.exists("a") is False
        assert await storage.exists("b") is True
        await storage.clear()
        assert await storage.ids() == []

    @pytest.mark.asyncio
    async def test_ensure_schema(self, fake_pool):
        await PostgresStorage(fake_pool, table="vault.keys").ensure_schema()
        assert fake_pool.statements[0] == "CREATE SCHEMA IF NOT EXISTS vault"
        assert "CREATE TABLE IF NOT EXISTS vault.keys" in fake_pool.statements[1]

    @pytest.mark.asyncio
    async def test_ensure_schema_unqualified(self, fake_pool):
        await PostgresStorage(fake_pool, table="signing_keys").ensure_schema()
        assert len(fake_pool.statements) == 1

    @pytest.mark.asyncio
    async def test_connection_errors_are_unavailable(self):
        storage = PostgresStorage(DownPool())
        with pytest.raises(StorageUnavailable):
            await storage.get("cred-1")
        with pytest.raises(StorageUnavailable):
            await storage.put(make_record())


# --- Test Factory ---

class TestCreateStorage:
    """Tests for create_storage."""

    def test_memory(self):
        assert isinstance(create_storage(VaultConfig()), MemoryStorage)

    def test_redis(self, fake_redis):
        config = VaultConfig(storage_backend="redis", record_ttl=120)
        storage = create_storage(config, fake_redis)
        assert isinstance(storage, RedisStorage)
        assert storage._ttl == 120

    def test_postgres(self, fake_pool):
        config = VaultConfig(storage_backend="postgres")
        assert isinstance(create_storage(config, fake_pool), PostgresStorage)

    def test_networked_backend_needs_client(self):
        with pytest.raises(ValueError):
            create_storage(VaultConfig(storage_backend="redis"))
