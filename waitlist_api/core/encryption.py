"""AES-256-GCM field encryption for personal data at rest.

Wire format of a protected value: ``base64(nonce || ciphertext || tag)`` with a
12-byte random nonce per call and a 16-byte authentication tag.

Without a configured key the codec behaves differently per environment:
- non-production: values pass through unchanged (local development)
- production: ``encrypt``/``decrypt`` return ``None`` and callers must treat
  that as a hard failure

Snapshots written before encryption was introduced contain plaintext emails
and names. ``decrypt`` recognises such values with a light shape check and
returns them as-is instead of failing the read.
"""

from __future__ import annotations

import base64
import binascii
import logging
import os
import re
from typing import Any, Iterable, Mapping

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from waitlist_api.core.errors import EncryptionAppError

logger = logging.getLogger(__name__)

KEY_LENGTH = 32
NONCE_LENGTH = 12
TAG_LENGTH = 16

_LEGACY_EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
# Letters (any script), whitespace, apostrophes and hyphens.
_LEGACY_NAME_RE = re.compile(r"^(?:[^\W\d_]|[\s'-])+$")
_LEGACY_NAME_MAX_CHARS = 100


def generate_encryption_key() -> str:
    """Generate a new base64-encoded 256-bit key for ``ENCRYPTION_KEY``."""

    return base64.b64encode(os.urandom(KEY_LENGTH)).decode("ascii")


def parse_encryption_key(key_b64: str | None) -> bytes | None:
    """Decode and validate a base64 key.

    Returns:
        The raw 32-byte key, or None if absent or invalid (invalid keys are
        logged, never raised).
    """

    if not key_b64:
        return None

    try:
        key = base64.b64decode(key_b64, validate=True)
    except (binascii.Error, ValueError):
        logger.error("encryption.invalid_key", extra={"reason": "invalid_base64"})
        return None

    if len(key) != KEY_LENGTH:
        logger.error(
            "encryption.invalid_key",
            extra={"reason": "invalid_length", "expected_bytes": KEY_LENGTH, "actual_bytes": len(key)},
        )
        return None

    return key


def is_likely_unencrypted(value: str) -> bool:
    """Shape check for plaintext emails/names left over from older snapshots."""

    if _LEGACY_EMAIL_RE.match(value):
        return True
    return len(value) < _LEGACY_NAME_MAX_CHARS and bool(_LEGACY_NAME_RE.match(value))


class EncryptionCodec:
    """Encrypts and decrypts individual string fields.

    Attributes:
        production: Whether the missing-key passthrough is disabled.
    """

    def __init__(self, key_b64: str | None, *, production: bool = False) -> None:
        self.production = production
        self._key = parse_encryption_key(key_b64)
        self._aead = AESGCM(self._key) if self._key else None

        if self._aead is None and production:
            logger.error("encryption.key_missing", extra={"production": True})

    @property
    def is_enabled(self) -> bool:
        return self._aead is not None

    def encrypt(self, plaintext: str) -> str | None:
        """Encrypt a string.

        Args:
            plaintext: Value to protect.

        Returns:
            Base64 ``nonce || ciphertext || tag``; the plaintext itself when no
            key is configured outside production; None when it cannot be
            protected.
        """

        if self._aead is None:
            return None if self.production else plaintext

        nonce = os.urandom(NONCE_LENGTH)
        # AESGCM appends the tag to the ciphertext.
        sealed = self._aead.encrypt(nonce, plaintext.encode("utf-8"), None)
        return base64.b64encode(nonce + sealed).decode("ascii")

    def decrypt(self, ciphertext: str) -> str | None:
        """Decrypt a value produced by :meth:`encrypt`.

        Args:
            ciphertext: Base64 payload, or a legacy plaintext value.

        Returns:
            The plaintext, the input itself when it looks like legacy
            unencrypted data, or None when it cannot be recovered.
        """

        if self._aead is None:
            return None if self.production else ciphertext

        try:
            combined = base64.b64decode(ciphertext, validate=True)
        except (binascii.Error, ValueError):
            return self._legacy_or_none(ciphertext, reason="invalid_base64")

        if len(combined) < NONCE_LENGTH + TAG_LENGTH:
            return self._legacy_or_none(ciphertext, reason="too_short")

        nonce, sealed = combined[:NONCE_LENGTH], combined[NONCE_LENGTH:]
        try:
            return self._aead.decrypt(nonce, sealed, None).decode("utf-8")
        except (InvalidTag, UnicodeDecodeError):
            return self._legacy_or_none(ciphertext, reason="authentication_failed")

    def _legacy_or_none(self, value: str, *, reason: str) -> str | None:
        if is_likely_unencrypted(value):
            logger.debug("encryption.legacy_plaintext", extra={"reason": reason})
            return value

        logger.error("encryption.decrypt_failed", extra={"reason": reason})
        return None

    def encrypt_fields(
        self,
        record: Mapping[str, Any],
        fields: Iterable[str],
        *,
        strict: bool = False,
    ) -> dict[str, Any]:
        """Return a copy of ``record`` with the named string fields encrypted.

        Absent and empty values are skipped. A field the codec cannot protect
        is left unchanged, or raises when ``strict`` is set.

        Raises:
            EncryptionAppError: In strict mode, when a field cannot be protected.
        """

        result = dict(record)
        for field in fields:
            value = record.get(field)
            if not isinstance(value, str) or not value:
                continue
            encrypted = self.encrypt(value)
            if encrypted is None:
                if strict:
                    raise EncryptionAppError(
                        code="field_encryption_failed",
                        message="Personal data could not be encrypted for storage",
                        details={"field": field, "hint": "Set ENCRYPTION_KEY"},
                    )
                continue
            result[field] = encrypted
        return result

    def decrypt_fields(self, record: Mapping[str, Any], fields: Iterable[str]) -> dict[str, Any]:
        """Return a copy of ``record`` with the named string fields decrypted.

        Fields that fail to decrypt keep their stored value.
        """

        result = dict(record)
        for field in fields:
            value = record.get(field)
            if not isinstance(value, str) or not value:
                continue
            decrypted = self.decrypt(value)
            if decrypted is not None:
                result[field] = decrypted
        return result
