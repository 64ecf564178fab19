"""Symmetric encryption utilities for protecting stored tokens."""

from __future__ import annotations

import os
import re
from typing import Optional

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

_NONCE_BYTES = 12
_TAG_BYTES = 16
_KEY_BYTES = 32
_HEX_SEGMENT = re.compile(r"[0-9a-fA-F]+")


class CipherError(ValueError):
    """Base class for encryption failures."""

    kind = "CipherError"


class CipherConfigurationError(CipherError):
    """Raised when the encryption key is missing or malformed."""

    kind = "CipherConfigurationError"


class FormatError(CipherError):
    """Raised when an envelope is not ``<nonce_hex>:<ciphertext_hex>``."""

    kind = "FormatError"


class IntegrityError(CipherError):
    """Raised when the authentication tag does not verify."""

    kind = "IntegrityError"


class TokenCipherService:
    """
    Encrypt and decrypt sensitive strings with AES-256-GCM.

    Envelopes have the form ``<nonce_hex>:<ciphertext_and_tag_hex>``. The key is
    validated lazily on first use; call :meth:`ensure_ready` at start-up to fail
    fast on a bad key.
    """

    def __init__(self, *, key_hex: Optional[str]) -> None:
        self._key_hex = key_hex
        self._aead: Optional[AESGCM] = None

    def _cipher(self) -> AESGCM:
        if self._aead is None:
            self._aead = AESGCM(_parse_key(self._key_hex))
        return self._aead

    def ensure_ready(self) -> None:
        """Validate the configured key, raising ``CipherConfigurationError``."""
        self._cipher()

    def encrypt(self, plaintext: str) -> str:
        """Encrypt a plaintext string and return the envelope."""
        nonce = os.urandom(_NONCE_BYTES)
        sealed = self._cipher().encrypt(nonce, plaintext.encode("utf-8"), None)
        return f"{nonce.hex()}:{sealed.hex()}"

    def decrypt(self, envelope: str) -> str:
        """Decrypt an envelope and return the plaintext."""
        aead = self._cipher()
        nonce, sealed = _split_envelope(envelope)
        try:
            plaintext = aead.decrypt(nonce, sealed, None)
        except InvalidTag as exc:
            raise IntegrityError(
                "Failed to decrypt token; authentication tag mismatch."
            ) from exc
        return plaintext.decode("utf-8")


def _parse_key(key_hex: Optional[str]) -> bytes:
    if not key_hex or len(key_hex) != _KEY_BYTES * 2 or not _HEX_SEGMENT.fullmatch(key_hex):
        raise CipherConfigurationError(
            "ENCRYPTION_KEY must be a 64-char hex string (32 bytes)."
        )
    return bytes.fromhex(key_hex)


def _split_envelope(envelope: str) -> tuple[bytes, bytes]:
    parts = envelope.split(":")
    if len(parts) != 2 or not all(_HEX_SEGMENT.fullmatch(part) for part in parts):
        raise FormatError("Invalid encrypted value format.")
    nonce_hex, sealed_hex = parts
    if len(nonce_hex) % 2 or len(sealed_hex) % 2:
        raise FormatError("Invalid encrypted value format; odd-length hex.")
    nonce = bytes.fromhex(nonce_hex)
    sealed = bytes.fromhex(sealed_hex)
    if len(nonce) != _NONCE_BYTES or len(sealed) < _TAG_BYTES:
        raise FormatError("Invalid encrypted value format; truncated segment.")
    return nonce, sealed


def generate_key() -> str:
    """Return a fresh random key in the hex form ``ENCRYPTION_KEY`` expects."""
    return AESGCM.generate_key(bit_length=256).hex()


__all__ = [
    "CipherConfigurationError",
    "CipherError",
    "FormatError",
    "IntegrityError",
    "TokenCipherService",
    "generate_key",
]
