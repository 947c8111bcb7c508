"""
Token encryption — encrypt / decrypt OAuth tokens at rest.

Uses AES-256-GCM from the ``cryptography`` library.  The 256-bit key is
derived with PBKDF2-HMAC-SHA256 (100,000 iterations) from
``config.token_encryption_key`` (falling back to ``config.auth_secret``) and
``config.encryption_salt``.  The derived key is never stored; each
``TokenCipher`` derives it once and keeps it in memory.

Stored layout (base64)::

    b"YM\\x01" || nonce(12) || ciphertext+tag      current
    nonce(12) || ciphertext+tag                   legacy, still decrypted

Production refuses to start without an explicit salt.
"""

from __future__ import annotations

import base64
import binascii
import logging
import os
from dataclasses import dataclass
from typing import Union

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from config.settings import Settings
from utils.errors import ConfigurationError, DecryptionError

logger = logging.getLogger(__name__)

MAGIC_BYTES = b"YM\x01"          # "YM" = YNAB MCP, 0x01 = format version
NONCE_LENGTH = 12                # 96-bit GCM nonce
TAG_LENGTH = 16
KEY_LENGTH = 32                  # AES-256
PBKDF2_ITERATIONS = 100_000
DEFAULT_KEY_DERIVATION_SALT = "ynab-mcp-token-encryption"   # development only


@dataclass(frozen=True)
class TaggedBlob:
    nonce: bytes
    ciphertext: bytes


@dataclass(frozen=True)
class LegacyBlob:
    nonce: bytes
    ciphertext: bytes


EncryptedBlob = Union[TaggedBlob, LegacyBlob]


def _b64decode(value: str) -> bytes:
    return base64.b64decode(value.encode("ascii"), validate=True)


def parse_blob(raw: bytes) -> EncryptedBlob:
    """
    Decode raw bytes into the tagged or legacy layout.

    The magic prefix is the only discriminator: a magic-prefixed blob is
    never re-read as legacy.
    """
    if raw.startswith(MAGIC_BYTES):
        body = raw[len(MAGIC_BYTES):]
        if len(body) < NONCE_LENGTH + TAG_LENGTH:
            raise DecryptionError("Encrypted value is truncated")
        return TaggedBlob(nonce=body[:NONCE_LENGTH], ciphertext=body[NONCE_LENGTH:])

    if len(raw) < NONCE_LENGTH + TAG_LENGTH:
        raise DecryptionError("Encrypted value is truncated")
    return LegacyBlob(nonce=raw[:NONCE_LENGTH], ciphertext=raw[NONCE_LENGTH:])


def derive_key(secret: str, salt: str, iterations: int = PBKDF2_ITERATIONS) -> bytes:
    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=KEY_LENGTH,
        salt=salt.encode(),
        iterations=iterations,
    )
    return kdf.derive(secret.encode())


class TokenCipher:
    """AES-256-GCM cipher for provider tokens."""

    def __init__(self, secret: str, salt: str, *, iterations: int = PBKDF2_ITERATIONS) -> None:
        if not secret:
            raise ConfigurationError("A token encryption secret is required")
        if not salt:
            raise ConfigurationError("An encryption salt is required")
        self._aesgcm = AESGCM(derive_key(secret, salt, iterations))

    @classmethod
    def from_settings(cls, settings: Settings) -> "TokenCipher":
        """
        Build the cipher from configuration, failing fast on a bad setup.

        Raises ``ConfigurationError`` in production when ``ENCRYPTION_SALT``
        is missing.
        """
        if settings.is_production and not settings.encryption_salt:
            raise ConfigurationError(
                "ENCRYPTION_SALT environment variable must be set in production. "
                "Generate a secure value with: openssl rand -hex 32"
            )
        if not settings.encryption_salt:
            logger.warning(
                "ENCRYPTION_SALT not set — using the development default salt. "
                "Never run production without it."
            )
        secret = settings.token_encryption_key or settings.auth_secret
        salt = settings.encryption_salt or DEFAULT_KEY_DERIVATION_SALT
        return cls(secret, salt)

    def encrypt(self, plaintext: str) -> str:
        """Encrypt a token string for database storage (fresh nonce per call)."""
        nonce = os.urandom(NONCE_LENGTH)
        ciphertext = self._aesgcm.encrypt(nonce, plaintext.encode("utf-8"), None)
        return base64.b64encode(MAGIC_BYTES + nonce + ciphertext).decode("ascii")

    def decrypt(self, value: str) -> str:
        """
        Decrypt a stored token.

        Raises ``DecryptionError`` for malformed input, a different key or
        salt, or any tampering detected by the GCM tag.
        """
        try:
            raw = _b64decode(value)
        except (binascii.Error, ValueError) as exc:
            raise DecryptionError("Encrypted value is not valid base64") from exc

        blob = parse_blob(raw)
        try:
            plaintext = self._aesgcm.decrypt(blob.nonce, blob.ciphertext, None)
        except InvalidTag as exc:
            raise DecryptionError() from exc

        try:
            return plaintext.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise DecryptionError() from exc

    @staticmethod
    def is_encrypted(value: str) -> bool:
        """
        Best-effort format sniff.  Not a security boundary: only used to pick
        the legacy-plaintext path when reading old rows.
        """
        try:
            raw = _b64decode(value)
        except (binascii.Error, ValueError):
            return False
        if raw.startswith(MAGIC_BYTES) and len(raw) >= len(MAGIC_BYTES) + NONCE_LENGTH:
            return True
        return len(raw) > NONCE_LENGTH
