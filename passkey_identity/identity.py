"""
IdentityManager — derive-or-load orchestration for signing identities.

The signing key is always obtainable from ``(credential_id, user_id)``.
The vault and the session password cache only avoid redundant work and
keep the key encrypted between uses; any miss falls back to re-derivation.
"""
import logging
from typing import Optional, Union

from . import signing
from .derivation import derive_signing_key, get_public_key, is_valid_private_key
from .exceptions import InputValidationError, StorageUnavailable
from .session import PasswordCache
from .signing import Message, Signature
from .vault.config import VaultConfig
from .vault.crypto import generate_password
from .vault.key_vault import KeyVault
from .vault.records import KeyMetadata

logger = logging.getLogger("passkey_identity.identity")


class IdentityManager:
    """Derive, cache and use deterministic signing keys.

    Args:
        vault: Encrypted key vault used as an at-rest cache.
        cache: Session password cache; one is created from ``config`` if
            omitted.
        config: Vault configuration (password length and cache TTL).
    """

    def __init__(
        self,
        vault: Optional[KeyVault] = None,
        cache: Optional[PasswordCache] = None,
        config: Optional[VaultConfig] = None,
    ):
        self._config = config or VaultConfig()
        self._vault = vault if vault is not None else KeyVault()
        self._cache = (
            cache if cache is not None
            else PasswordCache(max_age=self._config.password_ttl)
        )

    @property
    def vault(self) -> KeyVault:
        return self._vault

    @property
    def cache(self) -> PasswordCache:
        return self._cache

    def _validate_identifiers(self, credential_id: str, user_id: str) -> None:
        for name, value in (("credential_id", credential_id), ("user_id", user_id)):
            if not isinstance(value, str) or not value:
                raise InputValidationError(f"{name} must be a non-empty string")

    async def derive_and_store(self, credential_id: str, user_id: str) -> bytes:
        """Derive the key, store it in the vault and cache its password.

        A storage outage is logged and tolerated; the derived key is still
        returned.
        """
        self._validate_identifiers(credential_id, user_id)
        key = derive_signing_key(credential_id, user_id)
        password = generate_password(self._config.password_length)
        metadata = KeyMetadata(user_id=user_id, credential_id=credential_id)
        try:
            await self._vault.store_key(credential_id, key, password, metadata)
        except StorageUnavailable as err:
            logger.warning(
                "Vault store skipped for credential=%s: %s", credential_id, err,
            )
            self._cache.pop(credential_id)
            return key
        self._cache.set(credential_id, password, user_id)
        logger.debug("Derived and stored key for credential=%s", credential_id)
        return key

    async def load_or_rederive(self, credential_id: str, user_id: str) -> bytes:
        """Return the key from the vault if possible, else re-derive it."""
        self._validate_identifiers(credential_id, user_id)
        password = self._cache.get(credential_id, user_id)
        if password is None:
            logger.debug("No cached password for credential=%s", credential_id)
            return await self.derive_and_store(credential_id, user_id)
        try:
            key = await self._vault.retrieve_key(credential_id, password)
        except StorageUnavailable as err:
            logger.warning(
                "Vault unavailable for credential=%s, re-deriving: %s",
                credential_id, err,
            )
            return derive_signing_key(credential_id, user_id)
        if key is None or not is_valid_private_key(key):
            logger.debug("Vault miss for credential=%s, re-deriving", credential_id)
            return await self.derive_and_store(credential_id, user_id)
        return key

    async def public_key(
        self, credential_id: str, user_id: str, compressed: bool = True
    ) -> bytes:
        key = await self.load_or_rederive(credential_id, user_id)
        return get_public_key(key, compressed=compressed)

    async def sign(
        self, credential_id: str, user_id: str, message: Message
    ) -> Signature:
        """Sign ``message`` with the identity's key."""
        key = await self.load_or_rederive(credential_id, user_id)
        return signing.sign(message, key)

    def verify(
        self,
        message: Message,
        signature: Union[Signature, bytes, str],
        public_key: bytes,
    ) -> bool:
        return signing.verify(message, signature, public_key)

    async def revoke(self, credential_id: str) -> None:
        """Forget the cached password and delete the vault record."""
        self._cache.pop(credential_id)
        await self._vault.delete_key(credential_id)
        logger.info("Revoked stored key for credential=%s", credential_id)
