"""Key Vault — Encrypted at-rest cache of derived signing keys.

Security Note (Threat Model):
    A retrieved key exists in process memory while it is in use. The vault
    is only a cache: losing it never loses an identity, because the key is
    always re-derivable from (credential_id, user_id).
"""

from .config import VaultConfig
from .crypto import EncryptedPayload, decrypt, encrypt, generate_password
from .key_vault import KeyVault, RetrievalStatus
from .records import EncryptedKeyRecord, KeyMetadata
from .storage import (
    KeyStorage,
    MemoryStorage,
    PostgresStorage,
    RedisStorage,
    create_storage,
)

__all__ = [
    "VaultConfig",
    "EncryptedPayload",
    "encrypt",
    "decrypt",
    "generate_password",
    "KeyVault",
    "RetrievalStatus",
    "EncryptedKeyRecord",
    "KeyMetadata",
    "KeyStorage",
    "MemoryStorage",
    "PostgresStorage",
    "RedisStorage",
    "create_storage",
]
