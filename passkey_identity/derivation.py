"""
Scalar Key Derivation — deterministic secp256k1 private keys.

The signing key is a pure function of ``(credential_id, user_id[, salt])``:
    IKM = credential_id || user_id
    key = HKDF-SHA256(IKM, salt, "passface-signing-key-v1", 32)

A candidate outside ``[1, n-1]`` is re-hashed with SHA-256 until valid.
That happens with probability ~2^-128, so the loop is capped and running
past the cap is treated as a broken invariant.

Security Note:
    Never log derived keys or identifiers joined into IKM.
"""
import hashlib
import logging
from typing import Optional, Union

from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.hkdf import HKDF
from ecdsa import SECP256k1, SigningKey

from .exceptions import InputValidationError, KeyDerivationExhaustion

logger = logging.getLogger("passkey_identity.derivation")

KEY_LENGTH = 32
SIGNING_KEY_INFO = b"passface-signing-key-v1"
MAX_REHASH_ATTEMPTS = 8
CURVE_ORDER = SECP256k1.order

Identifier = Union[str, bytes]


def _identifier_bytes(value: Identifier, name: str) -> bytes:
    """Encode an identifier as bytes, rejecting empty or non-text input."""
    if isinstance(value, str):
        try:
            value = value.encode("utf-8")
        except UnicodeEncodeError as err:
            raise InputValidationError(f"{name} is not valid UTF-8 text") from err
    elif not isinstance(value, (bytes, bytearray)):
        raise InputValidationError(
            f"{name} must be str or bytes, got {type(value).__name__}"
        )
    if not value:
        raise InputValidationError(f"{name} cannot be empty")
    return bytes(value)


def is_valid_private_key(key: bytes) -> bool:
    """Return True if key is a 32-byte scalar in [1, n-1]."""
    if not isinstance(key, (bytes, bytearray)) or len(key) != KEY_LENGTH:
        return False
    return 1 <= int.from_bytes(key, "big") < CURVE_ORDER


def ensure_valid_private_key(candidate: bytes) -> bytes:
    """Re-hash ``candidate`` with SHA-256 until it is a valid scalar.

    Raises:
        KeyDerivationExhaustion: If no valid scalar is found within
            MAX_REHASH_ATTEMPTS re-hashes.
    """
    key = candidate
    for attempt in range(MAX_REHASH_ATTEMPTS + 1):
        if is_valid_private_key(key):
            if attempt:
                logger.warning(
                    "Derived scalar needed %d re-hash(es) to become valid",
                    attempt,
                )
            return key
        key = hashlib.sha256(key).digest()
    raise KeyDerivationExhaustion(
        f"No valid secp256k1 scalar after {MAX_REHASH_ATTEMPTS} re-hashes"
    )


def derive_signing_key(
    credential_id: Identifier,
    user_id: Identifier,
    salt: Optional[bytes] = None,
) -> bytes:
    """Derive the deterministic secp256k1 signing key for an identity.

    Args:
        credential_id: Passkey credential identifier (base64url text or bytes).
        user_id: Stable account identifier.
        salt: Optional HKDF salt; absent and empty are equivalent.

    Returns:
        32-byte private scalar in [1, n-1].

    Raises:
        InputValidationError: If an identifier is empty or not str/bytes.
        KeyDerivationExhaustion: If the validity loop exceeds its bound.
    """
    ikm = (
        _identifier_bytes(credential_id, "credential_id")
        + _identifier_bytes(user_id, "user_id")
    )
    if salt is not None and not isinstance(salt, (bytes, bytearray)):
        raise InputValidationError("salt must be bytes")
    hkdf = HKDF(
        algorithm=hashes.SHA256(),
        length=KEY_LENGTH,
        salt=bytes(salt) if salt else None,
        info=SIGNING_KEY_INFO,
    )
    return ensure_valid_private_key(hkdf.derive(ikm))


def signing_key_from_bytes(key: bytes) -> SigningKey:
    """Wrap a raw scalar as an ecdsa SigningKey.

    Raises:
        InputValidationError: If key is not a valid secp256k1 scalar.
    """
    if not is_valid_private_key(key):
        raise InputValidationError(
            "Signing key must be a 32-byte scalar in [1, n-1]"
        )
    return SigningKey.from_string(bytes(key), curve=SECP256k1)


def get_public_key(key: bytes, compressed: bool = True) -> bytes:
    """Return the SEC1 public key for ``key``.

    33 bytes compressed by default, 65 bytes (0x04 || x || y) otherwise.
    """
    vk = signing_key_from_bytes(key).get_verifying_key()
    return vk.to_string("compressed" if compressed else "uncompressed")


def get_address(key: bytes) -> str:
    """Return a 20-byte hex fingerprint of the public key.

    The fingerprint is the tail of SHA-256 over the uncompressed point
    without its 0x04 prefix. It is not an Ethereum address; those use
    Keccak-256.
    """
    point = get_public_key(key, compressed=False)[1:]
    return "0x" + hashlib.sha256(point).digest()[-20:].hex()
