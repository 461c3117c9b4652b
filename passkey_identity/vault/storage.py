"""
Vault Storage — persistence backends for encrypted key records.

Backends only move opaque :class:`EncryptedKeyRecord` values; they never
see key material. Every write is an independent put and the last write
for an id wins.

- ``MemoryStorage``   — process-local dict (tests, single process).
- ``RedisStorage``    — redis.asyncio client, orjson-encoded records.
- ``PostgresStorage`` — asyncpg pool, one row per record.

Connection failures are raised as :class:`StorageUnavailable`.
"""
import asyncio
import logging
import contextlib
from abc import ABC, abstractmethod
from typing import Any, Optional

import orjson
import redis.exceptions
import asyncpg.exceptions

from ..exceptions import StorageUnavailable
from .config import VaultConfig
from .records import EncryptedKeyRecord

logger = logging.getLogger("passkey_identity.vault")


@contextlib.contextmanager
def _backend_errors(backend: str, errors: tuple):
    """Translate backend connectivity errors into StorageUnavailable."""
    try:
        yield
    except errors as err:
        logger.warning("%s storage unavailable: %s", backend, err)
        raise StorageUnavailable(
            f"{backend} storage unavailable: {err}"
        ) from err


class KeyStorage(ABC):
    """Async record store keyed by record id."""

    name: str = "storage"

    @abstractmethod
    async def put(self, record: EncryptedKeyRecord) -> None:
        """Insert or overwrite the record for ``record.id``."""

    @abstractmethod
    async def get(self, record_id: str) -> Optional[EncryptedKeyRecord]:
        """Return the record, or None if absent.

        Raises:
            ValueError: If the stored value cannot be parsed.
        """

    @abstractmethod
    async def delete(self, record_id: str) -> None:
        """Remove the record; a missing id is not an error."""

    @abstractmethod
    async def exists(self, record_id: str) -> bool:
        ...

    @abstractmethod
    async def clear(self) -> None:
        ...

    @abstractmethod
    async def ids(self) -> list[str]:
        ...


class MemoryStorage(KeyStorage):
    """Dict-backed storage; records are kept in wire form."""

    name = "memory"

    def __init__(self) -> None:
        self._records: dict[str, dict[str, Any]] = {}

    async def put(self, record: EncryptedKeyRecord) -> None:
        self._records[record.id] = record.to_dict()

    async def get(self, record_id: str) -> Optional[EncryptedKeyRecord]:
        data = self._records.get(record_id)
        if data is None:
            return None
        return EncryptedKeyRecord.from_dict(data)

    async def delete(self, record_id: str) -> None:
        self._records.pop(record_id, None)

    async def exists(self, record_id: str) -> bool:
        return record_id in self._records

    async def clear(self) -> None:
        self._records.clear()

    async def ids(self) -> list[str]:
        return sorted(self._records)


class RedisStorage(KeyStorage):
    """Records stored as orjson blobs under ``{prefix}:{id}``.

    Args:
        client: redis.asyncio-compatible client.
        prefix: Key namespace (no trailing ':').
        ttl: Optional expiry in seconds; records are re-derivable, so
            letting them expire only costs a re-derivation.
    """

    name = "redis"
    _errors = (
        redis.exceptions.ConnectionError,
        redis.exceptions.TimeoutError,
        OSError,
        asyncio.TimeoutError,
    )

    def __init__(
        self,
        client: Any,
        prefix: str = "passkey:signing-keys",
        ttl: Optional[int] = None,
    ):
        self._redis = client
        self._prefix = prefix
        self._ttl = ttl

    def _redis_key(self, record_id: str) -> str:
        """Build Redis key."""
        return f"{self._prefix}:{record_id}"

    def _record_id(self, key: Any) -> str:
        if isinstance(key, bytes):
            key = key.decode("utf-8")
        return key[len(self._prefix) + 1:]

    async def _scan(self) -> list:
        keys = []
        async for key in self._redis.scan_iter(match=f"{self._prefix}:*"):
            keys.append(key)
        return keys

    async def put(self, record: EncryptedKeyRecord) -> None:
        with _backend_errors(self.name, self._errors):
            if self._ttl:
                await self._redis.setex(
                    self._redis_key(record.id), self._ttl, record.to_json(),
                )
            else:
                await self._redis.set(
                    self._redis_key(record.id), record.to_json(),
                )

    async def get(self, record_id: str) -> Optional[EncryptedKeyRecord]:
        with _backend_errors(self.name, self._errors):
            raw = await self._redis.get(self._redis_key(record_id))
        if raw is None:
            return None
        return EncryptedKeyRecord.from_json(raw)

    async def delete(self, record_id: str) -> None:
        with _backend_errors(self.name, self._errors):
            await self._redis.delete(self._redis_key(record_id))

    async def exists(self, record_id: str) -> bool:
        with _backend_errors(self.name, self._errors):
            return bool(await self._redis.exists(self._redis_key(record_id)))

    async def clear(self) -> None:
        with _backend_errors(self.name, self._errors):
            keys = await self._scan()
            if keys:
                await self._redis.delete(*keys)
        logger.debug("Redis storage cleared: %d record(s)", len(keys))

    async def ids(self) -> list[str]:
        with _backend_errors(self.name, self._errors):
            keys = await self._scan()
        return sorted(self._record_id(k) for k in keys)


class PostgresStorage(KeyStorage):
    """One row per record in ``table``; upserts make the last write win.

    Args:
        pool: asyncpg-compatible connection pool.
        table: Table name, optionally schema-qualified.
    """

    name = "postgres"
    _errors = (
        asyncpg.exceptions.PostgresConnectionError,
        asyncpg.exceptions.InterfaceError,
        OSError,
        asyncio.TimeoutError,
    )

    def __init__(self, pool: Any, table: str = "auth.signing_keys"):
        self._db = pool
        self._table = table
        self._upsert = f"""
INSERT INTO {table} (id, encrypted_key, iv, salt, timestamp_ms, metadata)
VALUES ($1, $2, $3, $4, $5, $6)
ON CONFLICT (id)
DO UPDATE SET encrypted_key = EXCLUDED.encrypted_key,
              iv = EXCLUDED.iv,
              salt = EXCLUDED.salt,
              timestamp_ms = EXCLUDED.timestamp_ms,
              metadata = EXCLUDED.metadata
"""
        self._select = f"""
SELECT id, encrypted_key, iv, salt, timestamp_ms, metadata
FROM {table}
WHERE id = $1
"""
        self._delete = f"DELETE FROM {table} WHERE id = $1"
        self._exists = f"SELECT EXISTS(SELECT 1 FROM {table} WHERE id = $1)"
        self._clear = f"DELETE FROM {table}"
        self._ids = f"SELECT id FROM {table} ORDER BY id"

    async def ensure_schema(self) -> None:
        """Create the schema (if qualified) and table when missing."""
        statements = []
        if "." in self._table:
            schema = self._table.split(".", 1)[0]
            statements.append(f"CREATE SCHEMA IF NOT EXISTS {schema}")
        statements.append(f"""
CREATE TABLE IF NOT EXISTS {self._table} (
    id            TEXT PRIMARY KEY,
    encrypted_key TEXT   NOT NULL,
    iv            TEXT   NOT NULL,
    salt          TEXT   NOT NULL,
    timestamp_ms  BIGINT NOT NULL,
    metadata      JSONB
)
""")
        with _backend_errors(self.name, self._errors):
            async with self._db.acquire() as conn:
                for sql in statements:
                    await conn.execute(sql)
        logger.info("Vault table %s ready", self._table)

    async def put(self, record: EncryptedKeyRecord) -> None:
        metadata = None
        if record.metadata is not None:
            metadata = orjson.dumps(
                record.metadata.model_dump(by_alias=True)
            ).decode("utf-8")
        with _backend_errors(self.name, self._errors):
            async with self._db.acquire() as conn:
                await conn.execute(
                    self._upsert,
                    record.id, record.encrypted_key, record.iv, record.salt,
                    record.timestamp, metadata,
                )

    async def get(self, record_id: str) -> Optional[EncryptedKeyRecord]:
        with _backend_errors(self.name, self._errors):
            async with self._db.acquire() as conn:
                row = await conn.fetchrow(self._select, record_id)
        if row is None:
            return None
        metadata = row["metadata"]
        if isinstance(metadata, (str, bytes)):
            metadata = orjson.loads(metadata)
        return EncryptedKeyRecord(
            id=row["id"],
            encrypted_key=row["encrypted_key"],
            iv=row["iv"],
            salt=row["salt"],
            timestamp=row["timestamp_ms"],
            metadata=metadata,
        )

    async def delete(self, record_id: str) -> None:
        with _backend_errors(self.name, self._errors):
            async with self._db.acquire() as conn:
                await conn.execute(self._delete, record_id)

    async def exists(self, record_id: str) -> bool:
        with _backend_errors(self.name, self._errors):
            async with self._db.acquire() as conn:
                return bool(await conn.fetchval(self._exists, record_id))

    async def clear(self) -> None:
        with _backend_errors(self.name, self._errors):
            async with self._db.acquire() as conn:
                await conn.execute(self._clear)

    async def ids(self) -> list[str]:
        with _backend_errors(self.name, self._errors):
            async with self._db.acquire() as conn:
                rows = await conn.fetch(self._ids)
        return [row["id"] for row in rows]


def create_storage(config: VaultConfig, client: Any = None) -> KeyStorage:
    """Build the storage backend selected by ``config.storage_backend``.

    Args:
        config: Vault configuration.
        client: Redis client or asyncpg pool for the networked backends.

    Raises:
        ValueError: If a networked backend is selected without a client.
    """
    if config.storage_backend == "memory":
        return MemoryStorage()
    if client is None:
        raise ValueError(
            f"{config.storage_backend} storage requires a client"
        )
    if config.storage_backend == "redis":
        return RedisStorage(
            client, prefix=config.redis_prefix, ttl=config.record_ttl,
        )
    return PostgresStorage(client, table=config.postgres_table)
