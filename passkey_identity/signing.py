"""
Signing Engine — deterministic, recoverable ECDSA over secp256k1.

Messages are signed in the personal-message convention:
    digest = SHA-256("\\x19Ethereum Signed Message:\\n" + len(msg) + msg)

Signatures use RFC 6979 nonces, so ``sign(msg, key)`` is a pure function.
``s`` is normalised to the lower half of the curve order and the recovery
id is recomputed for the final ``(r, s)``.

Wire format: ``0x`` + r (64 hex) + s (64 hex) + v (2 hex), v = recid + 27.
"""
import hashlib
import logging
from dataclasses import dataclass
from typing import Union

from ecdsa import SECP256k1, VerifyingKey
from ecdsa.util import sigdecode_string, sigencode_string

from .derivation import CURVE_ORDER, signing_key_from_bytes
from .exceptions import InputValidationError, MalformedSignatureError

logger = logging.getLogger("passkey_identity.signing")

MESSAGE_PREFIX = b"\x19Ethereum Signed Message:\n"
SIGNATURE_LENGTH = 65
SIGNATURE_HEX_LENGTH = SIGNATURE_LENGTH * 2
V_OFFSET = 27
_HALF_ORDER = CURVE_ORDER // 2

Message = Union[str, bytes]


def _message_bytes(message: Message) -> bytes:
    if isinstance(message, str):
        try:
            return message.encode("utf-8")
        except UnicodeEncodeError as err:
            raise InputValidationError("message is not valid UTF-8 text") from err
    if isinstance(message, (bytes, bytearray)):
        return bytes(message)
    raise InputValidationError(
        f"message must be str or bytes, got {type(message).__name__}"
    )


def prefix_message(message: Message) -> bytes:
    """Apply the personal-message prefix: prefix + decimal length + message."""
    data = _message_bytes(message)
    return MESSAGE_PREFIX + str(len(data)).encode("ascii") + data


def hash_message(message: Message) -> bytes:
    """Return the 32-byte digest that is actually signed."""
    return hashlib.sha256(prefix_message(message)).digest()


@dataclass(frozen=True)
class Signature:
    """A recoverable secp256k1 signature ``(r, s, v)`` with v in {27, 28}."""

    r: int
    s: int
    v: int

    def __post_init__(self):
        if not 1 <= self.r < CURVE_ORDER:
            raise MalformedSignatureError("r is outside [1, n-1]")
        if not 1 <= self.s < CURVE_ORDER:
            raise MalformedSignatureError("s is outside [1, n-1]")
        if self.v not in (V_OFFSET, V_OFFSET + 1):
            raise MalformedSignatureError(
                f"v must be {V_OFFSET} or {V_OFFSET + 1}, got {self.v}"
            )

    @property
    def recovery_id(self) -> int:
        return self.v - V_OFFSET

    @property
    def is_low_s(self) -> bool:
        return self.s <= _HALF_ORDER

    def compact(self) -> bytes:
        """Return the 64-byte ``r || s`` form."""
        return self.r.to_bytes(32, "big") + self.s.to_bytes(32, "big")

    def to_bytes(self) -> bytes:
        return self.compact() + bytes([self.v])

    def to_hex(self) -> str:
        return "0x" + self.to_bytes().hex()

    def __bytes__(self) -> bytes:
        return self.to_bytes()

    def __str__(self) -> str:
        return self.to_hex()

    @classmethod
    def from_bytes(cls, data: bytes) -> "Signature":
        """Parse a 65-byte ``r || s || v`` blob.

        A raw recovery id (0 or 1) in the trailing byte is accepted and
        shifted to the 27/28 form.
        """
        if len(data) != SIGNATURE_LENGTH:
            raise MalformedSignatureError(
                f"Signature must be {SIGNATURE_LENGTH} bytes, got {len(data)}"
            )
        v = data[64]
        if v < V_OFFSET:
            v += V_OFFSET
        return cls(
            r=int.from_bytes(data[:32], "big"),
            s=int.from_bytes(data[32:64], "big"),
            v=v,
        )

    @classmethod
    def from_hex(cls, text: str) -> "Signature":
        """Parse the ``0x``-prefixed wire form (prefix optional)."""
        body = text[2:] if text[:2] in ("0x", "0X") else text
        if len(body) != SIGNATURE_HEX_LENGTH:
            raise MalformedSignatureError(
                f"Signature must be {SIGNATURE_HEX_LENGTH} hex characters, "
                f"got {len(body)}"
            )
        try:
            raw = bytes.fromhex(body)
        except ValueError as err:
            raise MalformedSignatureError(
                "Signature is not valid hex"
            ) from err
        return cls.from_bytes(raw)

    @classmethod
    def parse(cls, value: Union["Signature", bytes, str]) -> "Signature":
        if isinstance(value, Signature):
            return value
        if isinstance(value, str):
            return cls.from_hex(value)
        if isinstance(value, (bytes, bytearray)):
            return cls.from_bytes(bytes(value))
        raise MalformedSignatureError(
            f"Unsupported signature type: {type(value).__name__}"
        )


def _recover_candidates(digest: bytes, compact: bytes) -> list:
    """Return both candidate verifying keys, indexed by recovery id."""
    try:
        return VerifyingKey.from_public_key_recovery_with_digest(
            compact,
            digest,
            curve=SECP256k1,
            hashfunc=hashlib.sha256,
            sigdecode=sigdecode_string,
        )
    except Exception as err:
        raise MalformedSignatureError(
            "No public key can be recovered from signature"
        ) from err


def sign(message: Message, key: bytes) -> Signature:
    """Sign ``message`` deterministically with the 32-byte ``key``.

    Raises:
        InputValidationError: If message is empty or key is not a valid scalar.
    """
    data = _message_bytes(message)
    if not data:
        raise InputValidationError("Cannot sign an empty message")
    sk = signing_key_from_bytes(key)
    digest = hash_message(data)
    raw = sk.sign_digest_deterministic(
        digest, hashfunc=hashlib.sha256, sigencode=sigencode_string,
    )
    r, s = sigdecode_string(raw, CURVE_ORDER)
    if s > _HALF_ORDER:
        s = CURVE_ORDER - s
    compact = sigencode_string(r, s, CURVE_ORDER)

    own = sk.get_verifying_key().to_string("compressed")
    for recid, candidate in enumerate(_recover_candidates(digest, compact)):
        if candidate.to_string("compressed") == own:
            return Signature(r=r, s=s, v=recid + V_OFFSET)
    # Only reachable when r >= p - n (recovery ids 2/3), ~2^-128.
    raise RuntimeError("Signature recovery id could not be determined")


def verify(
    message: Message,
    signature: Union[Signature, bytes, str],
    public_key: bytes,
) -> bool:
    """Return True if ``signature`` is a valid low-s signature of ``message``.

    Never raises: malformed inputs and mismatches are reported as False.
    """
    try:
        sig = Signature.parse(signature)
        if not sig.is_low_s:
            logger.debug("Rejecting high-s signature")
            return False
        vk = VerifyingKey.from_string(bytes(public_key), curve=SECP256k1)
        return vk.verify_digest(
            sig.compact(), hash_message(message), sigdecode=sigdecode_string,
        )
    except Exception as err:
        logger.debug("Signature verification failed: %s", type(err).__name__)
        return False


def recover_public_key(
    message: Message,
    signature: Union[Signature, bytes, str],
    compressed: bool = True,
) -> bytes:
    """Recover the signer's SEC1 public key from a message and signature.

    Raises:
        MalformedSignatureError: If the signature cannot be parsed or no
            point can be recovered from it.
    """
    sig = Signature.parse(signature)
    candidates = _recover_candidates(hash_message(message), sig.compact())
    if sig.recovery_id >= len(candidates):
        raise MalformedSignatureError(
            f"Recovery id {sig.recovery_id} has no candidate key"
        )
    vk = candidates[sig.recovery_id]
    return vk.to_string("compressed" if compressed else "uncompressed")
