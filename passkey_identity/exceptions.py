"""
Error taxonomy for passkey_identity.

Crypto-primitive errors are not retryable and surface immediately.
``StorageUnavailable`` is the only retryable error; callers holding the
identifiers can always fall back to re-derivation.
"""


class IdentityError(Exception):
    """Base class for all passkey_identity errors."""


class InputValidationError(IdentityError, ValueError):
    """Empty or malformed identifier, key or message input."""


class KeyDerivationExhaustion(IdentityError, RuntimeError):
    """The scalar re-hash loop exceeded its bound.

    Practically unreachable; signals a broken internal invariant.
    """


class AuthenticationError(IdentityError):
    """AEAD tag verification failed (wrong password or corrupted data)."""


class MalformedSignatureError(IdentityError, ValueError):
    """Signature blob has the wrong length or an invalid byte structure."""


class StorageUnavailable(IdentityError, ConnectionError):
    """The vault storage backend cannot be reached."""
