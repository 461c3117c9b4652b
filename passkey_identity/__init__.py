"""Passkey Identity.

Deterministic secp256k1 signing identity derived from a passkey
credential id and user id, with an encrypted key vault as at-rest cache.
"""

from .version import __version__
from .exceptions import (
    IdentityError,
    InputValidationError,
    KeyDerivationExhaustion,
    AuthenticationError,
    MalformedSignatureError,
    StorageUnavailable,
)
from .derivation import derive_signing_key, get_public_key, get_address
from .signing import Signature, sign, verify, recover_public_key
from .session import PasswordCache
from .identity import IdentityManager

__all__ = [
    "__version__",
    "IdentityError",
    "InputValidationError",
    "KeyDerivationExhaustion",
    "AuthenticationError",
    "MalformedSignatureError",
    "StorageUnavailable",
    "derive_signing_key",
    "get_public_key",
    "get_address",
    "Signature",
    "sign",
    "verify",
    "recover_public_key",
    "PasswordCache",
    "IdentityManager",
]
