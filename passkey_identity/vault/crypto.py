"""
Vault Crypto Core — password-based authenticated encryption.

Each payload is sealed with a fresh key:
    key = HKDF-SHA256(password, salt 16B, "passface-encryption-key-v1")
    ciphertext = AES-256-GCM(key, iv 12B, plaintext) || tag 16B

Salt and IV are random per call, so no (salt, iv) pair repeats across
records even when the same password is reused.

Security Note:
    Never log plaintext, ciphertext, or passwords.
"""
import os
import base64
import binascii
import secrets
import logging
from typing import NamedTuple

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.hkdf import HKDF

from ..exceptions import AuthenticationError, InputValidationError

logger = logging.getLogger("passkey_identity.vault")

SALT_SIZE = 16
NONCE_SIZE = 12  # 96-bit nonce
TAG_SIZE = 16
KEY_LENGTH = 32  # AES-256
ENCRYPTION_KEY_INFO = b"passface-encryption-key-v1"


class EncryptedPayload(NamedTuple):
    ciphertext: bytes
    iv: bytes
    salt: bytes


# ---------------------------------------------------------------------------
# Key derivation
# ---------------------------------------------------------------------------

def derive_key(password: str, salt: bytes) -> bytes:
    """Derive a 32-byte AES key from a password and per-record salt.

    Args:
        password: Vault password (any text, UTF-8 encoded).
        salt: Random salt stored alongside the ciphertext.

    Returns:
        32-byte derived key.
    """
    if not isinstance(password, str):
        raise InputValidationError("password must be str")
    try:
        secret = password.encode("utf-8")
    except UnicodeEncodeError as err:
        raise InputValidationError("password is not valid UTF-8 text") from err
    hkdf = HKDF(
        algorithm=hashes.SHA256(),
        length=KEY_LENGTH,
        salt=salt,
        info=ENCRYPTION_KEY_INFO,
    )
    return hkdf.derive(secret)


# ---------------------------------------------------------------------------
# Encryption
# ---------------------------------------------------------------------------

def encrypt(plaintext: bytes, password: str) -> EncryptedPayload:
    """Encrypt ``plaintext`` under ``password``.

    Returns:
        EncryptedPayload with the GCM tag appended to the ciphertext.
    """
    if not isinstance(plaintext, (bytes, bytearray)):
        raise InputValidationError("plaintext must be bytes")
    salt = os.urandom(SALT_SIZE)
    iv = os.urandom(NONCE_SIZE)
    cipher = AESGCM(derive_key(password, salt))
    ct = cipher.encrypt(iv, bytes(plaintext), None)
    return EncryptedPayload(ciphertext=ct, iv=iv, salt=salt)


def decrypt(ciphertext: bytes, iv: bytes, salt: bytes, password: str) -> bytes:
    """Decrypt and authenticate a payload produced by :func:`encrypt`.

    Raises:
        AuthenticationError: If the tag does not verify (wrong password or
            tampered data) or the payload is structurally invalid.
    """
    if len(iv) != NONCE_SIZE:
        raise AuthenticationError(
            f"iv must be {NONCE_SIZE} bytes, got {len(iv)}"
        )
    if len(salt) != SALT_SIZE:
        raise AuthenticationError(
            f"salt must be {SALT_SIZE} bytes, got {len(salt)}"
        )
    if len(ciphertext) < TAG_SIZE:
        raise AuthenticationError(
            f"ciphertext too short: {len(ciphertext)} bytes "
            f"(minimum {TAG_SIZE})"
        )
    cipher = AESGCM(derive_key(password, salt))
    try:
        return cipher.decrypt(iv, ciphertext, None)
    except InvalidTag as err:
        raise AuthenticationError(
            "Authentication tag mismatch (wrong password or corrupted data)"
        ) from err


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def generate_password(length: int = 32) -> str:
    """Return ``length`` random bytes as a base64 string.

    Used only to protect vault records, never as signing-key material.
    """
    if length < 1:
        raise InputValidationError("password length must be positive")
    return b64encode(secrets.token_bytes(length))


def b64encode(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


def b64decode(text: str) -> bytes:
    """Decode standard base64, raising InputValidationError on bad input."""
    try:
        return base64.b64decode(text, validate=True)
    except (binascii.Error, ValueError, TypeError) as err:
        raise InputValidationError("Invalid base64 data") from err
