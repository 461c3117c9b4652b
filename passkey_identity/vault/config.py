"""
Vault Configuration — validated settings for the key vault.

Reads settings from environment variables:
    IDENTITY_STORAGE_BACKEND = memory | redis | postgres
    IDENTITY_REDIS_PREFIX    = <key prefix>
    IDENTITY_RECORD_TTL      = <seconds>
    IDENTITY_POSTGRES_TABLE  = <schema.table>
    IDENTITY_PASSWORD_LENGTH = <bytes>
    IDENTITY_PASSWORD_TTL    = <seconds>

Domain-separation labels are not configurable; changing them would change
every derived key.
"""
import os
import re
import logging
from typing import Optional

from pydantic import BaseModel, Field, field_validator

logger = logging.getLogger("passkey_identity.vault")

_TABLE_PATTERN = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*(\.[A-Za-z_][A-Za-z0-9_]*)?$")

_ENV_FIELDS = {
    "storage_backend": "IDENTITY_STORAGE_BACKEND",
    "redis_prefix": "IDENTITY_REDIS_PREFIX",
    "record_ttl": "IDENTITY_RECORD_TTL",
    "postgres_table": "IDENTITY_POSTGRES_TABLE",
    "password_length": "IDENTITY_PASSWORD_LENGTH",
    "password_ttl": "IDENTITY_PASSWORD_TTL",
}


class VaultConfig(BaseModel):
    """Validated vault configuration."""

    storage_backend: str = Field(default="memory")
    redis_prefix: str = Field(default="passkey:signing-keys", min_length=1)
    record_ttl: Optional[int] = Field(default=None, ge=60)
    postgres_table: str = Field(default="auth.signing_keys")
    password_length: int = Field(default=32, ge=16, le=256)
    password_ttl: Optional[int] = Field(default=3600, ge=60)

    @field_validator("storage_backend")
    @classmethod
    def validate_backend(cls, v: str) -> str:
        """Validate storage backend is supported."""
        v = v.lower()
        if v not in ("memory", "redis", "postgres"):
            raise ValueError(f"Unsupported storage backend: {v}")
        return v

    @field_validator("redis_prefix")
    @classmethod
    def validate_prefix(cls, v: str) -> str:
        if v.endswith(":"):
            raise ValueError("redis_prefix must not end with ':'")
        return v

    @field_validator("postgres_table")
    @classmethod
    def validate_table(cls, v: str) -> str:
        """Only plain identifiers; the name is interpolated into SQL."""
        if not _TABLE_PATTERN.match(v):
            raise ValueError(f"Invalid table name: {v!r}")
        return v

    @classmethod
    def from_env(cls) -> "VaultConfig":
        """Create VaultConfig from IDENTITY_* environment variables.

        Unset variables keep their defaults.
        """
        values = {
            field: os.environ[env]
            for field, env in _ENV_FIELDS.items()
            if os.environ.get(env)
        }
        logger.debug("Vault config from env: %s", sorted(values))
        return cls(**values)
