"""
KeyVault — encrypted at-rest cache of derived signing keys.

Provides the public API of the key vault:
- ``store_key(id, key, password, metadata)`` — encrypt and persist (overwrite)
- ``retrieve_key(id, password)`` — decrypt, or None
- ``has_key(id)`` / ``delete_key(id)`` / ``clear_all()`` / ``ids()``

``retrieve_key`` returns None alike for a missing record, a wrong
password and a corrupted record, so an untrusted caller cannot tell which
happened. The reason is logged and returned by ``_retrieve``.
``StorageUnavailable`` is not collapsed; it propagates.

Security Note:
    Never log keys, passwords, or ciphertext. Only log ids and outcomes.
"""
import time
import logging
from enum import Enum
from typing import Any, Optional, Union

from ..exceptions import AuthenticationError, InputValidationError
from .crypto import (
    NONCE_SIZE,
    SALT_SIZE,
    TAG_SIZE,
    b64decode,
    b64encode,
    decrypt,
    encrypt,
)
from .records import EncryptedKeyRecord, KeyMetadata
from .storage import KeyStorage, MemoryStorage

logger = logging.getLogger("passkey_identity.vault")

_MAX_ID_LENGTH = 1024


class RetrievalStatus(str, Enum):
    FOUND = "found"
    NOT_FOUND = "not_found"
    AUTHENTICATION_FAILED = "authentication_failed"
    CORRUPTED = "corrupted"


class KeyVault:
    """Encrypted key records over a pluggable :class:`KeyStorage`."""

    def __init__(self, storage: Optional[KeyStorage] = None):
        self._storage = storage if storage is not None else MemoryStorage()

    @property
    def storage(self) -> KeyStorage:
        return self._storage

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def _validate_id(self, record_id: str) -> None:
        """Validate a record id.

        Raises:
            InputValidationError: If the id is empty, not text, or too long.
        """
        if not isinstance(record_id, str) or not record_id:
            raise InputValidationError("Vault record id cannot be empty")
        if len(record_id) > _MAX_ID_LENGTH:
            raise InputValidationError(
                f"Vault record id cannot exceed {_MAX_ID_LENGTH} characters"
            )

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def store_key(
        self,
        record_id: str,
        key: bytes,
        password: str,
        metadata: Union[KeyMetadata, dict[str, Any], None] = None,
    ) -> None:
        """Encrypt ``key`` under ``password`` and persist it as ``record_id``.

        Any prior record for the id is overwritten.

        Raises:
            InputValidationError: If the id or key is invalid.
            StorageUnavailable: If the backend cannot be reached.
        """
        self._validate_id(record_id)
        if not isinstance(key, (bytes, bytearray)) or not key:
            raise InputValidationError("Key must be non-empty bytes")
        if isinstance(metadata, dict):
            metadata = KeyMetadata.model_validate(metadata)

        payload = encrypt(bytes(key), password)
        record = EncryptedKeyRecord(
            id=record_id,
            encrypted_key=b64encode(payload.ciphertext),
            iv=b64encode(payload.iv),
            salt=b64encode(payload.salt),
            timestamp=int(time.time() * 1000),
            metadata=metadata,
        )
        await self._storage.put(record)
        logger.debug("Vault store: id=%s backend=%s", record_id, self._storage.name)

    async def _retrieve(
        self, record_id: str, password: str
    ) -> tuple[Optional[bytes], RetrievalStatus]:
        """Look up and decrypt a record, reporting why a lookup missed."""
        self._validate_id(record_id)
        if not isinstance(password, str):
            raise InputValidationError("Vault password must be str")
        try:
            record = await self._storage.get(record_id)
        except ValueError as err:
            logger.warning("Unreadable vault record id=%s: %s", record_id, err)
            return None, RetrievalStatus.CORRUPTED
        if record is None:
            return None, RetrievalStatus.NOT_FOUND
        try:
            ciphertext = b64decode(record.encrypted_key)
            iv = b64decode(record.iv)
            salt = b64decode(record.salt)
        except InputValidationError:
            return None, RetrievalStatus.CORRUPTED
        if (
            len(iv) != NONCE_SIZE
            or len(salt) != SALT_SIZE
            or len(ciphertext) < TAG_SIZE
        ):
            return None, RetrievalStatus.CORRUPTED
        try:
            key = decrypt(ciphertext, iv, salt, password)
        except AuthenticationError:
            return None, RetrievalStatus.AUTHENTICATION_FAILED
        return key, RetrievalStatus.FOUND

    async def retrieve_key(self, record_id: str, password: str) -> Optional[bytes]:
        """Return the decrypted key, or None.

        None covers a missing record, a wrong password and corrupted data
        alike; see ``_retrieve`` for the distinction.

        Raises:
            StorageUnavailable: If the backend cannot be reached.
        """
        key, status = await self._retrieve(record_id, password)
        if status is not RetrievalStatus.FOUND:
            logger.debug(
                "Vault retrieve miss: id=%s reason=%s", record_id, status.value,
            )
        return key

    async def has_key(self, record_id: str) -> bool:
        self._validate_id(record_id)
        return await self._storage.exists(record_id)

    async def delete_key(self, record_id: str) -> None:
        self._validate_id(record_id)
        await self._storage.delete(record_id)
        logger.debug("Vault delete: id=%s", record_id)

    async def clear_all(self) -> None:
        await self._storage.clear()
        logger.info("Vault cleared (backend=%s)", self._storage.name)

    async def ids(self) -> list[str]:
        return await self._storage.ids()
