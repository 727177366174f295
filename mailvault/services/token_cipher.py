"""Authenticated encryption for credentials stored at rest."""

from __future__ import annotations

import base64
import binascii
import os

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from mailvault.core.errors import ConfigurationError, DecryptionFailedError


class TokenCipherService:
    """Encrypt and decrypt sensitive strings with AES-256-GCM.

    Each blob is ``urlsafe_b64(nonce || ciphertext || tag)`` with a fresh
    96-bit nonce per call, so encrypting the same value twice never yields the
    same blob.
    """

    KEY_BYTES = 32
    NONCE_BYTES = 12
    _TAG_BYTES = 16

    def __init__(self, *, key: str | bytes) -> None:
        if not key:
            raise ConfigurationError("Token encryption key must be provided.")
        raw_key = key if isinstance(key, bytes) else self._decode_key(key)
        if len(raw_key) != self.KEY_BYTES:
            raise ConfigurationError(
                f"Token encryption key must decode to {self.KEY_BYTES} bytes."
            )
        self._aead = AESGCM(raw_key)

    @classmethod
    def generate_key(cls) -> str:
        """Return a new random key in the format expected by ``TOKEN_ENCRYPTION_KEY``."""
        return base64.urlsafe_b64encode(os.urandom(cls.KEY_BYTES)).decode("ascii")

    @staticmethod
    def _decode_key(encoded: str) -> bytes:
        try:
            return base64.urlsafe_b64decode(encoded.encode("ascii"))
        except (binascii.Error, UnicodeEncodeError, ValueError) as exc:
            raise ConfigurationError(
                "Token encryption key must be URL-safe base64."
            ) from exc

    def encrypt_bytes(self, plaintext: bytes) -> bytes:
        nonce = os.urandom(self.NONCE_BYTES)
        return nonce + self._aead.encrypt(nonce, plaintext, None)

    def decrypt_bytes(self, blob: bytes) -> bytes:
        if len(blob) < self.NONCE_BYTES + self._TAG_BYTES:
            raise DecryptionFailedError("Ciphertext is truncated.")
        nonce, ciphertext = blob[: self.NONCE_BYTES], blob[self.NONCE_BYTES :]
        try:
            return self._aead.decrypt(nonce, ciphertext, None)
        except InvalidTag as exc:
            raise DecryptionFailedError(
                "Failed to decrypt token; ciphertext was tampered with or the key changed."
            ) from exc

    def encrypt(self, plaintext: str) -> str:
        """Encrypt a plaintext string and return the ciphertext blob."""
        blob = self.encrypt_bytes(plaintext.encode("utf-8"))
        return base64.urlsafe_b64encode(blob).decode("ascii")

    def decrypt(self, ciphertext: str) -> str:
        """Decrypt a ciphertext blob and return the plaintext."""
        try:
            blob = base64.urlsafe_b64decode(ciphertext.encode("ascii"))
        except (binascii.Error, UnicodeEncodeError, ValueError) as exc:
            raise DecryptionFailedError("Ciphertext is not valid base64.") from exc
        plaintext = self.decrypt_bytes(blob)
        try:
            return plaintext.decode("utf-8")
        except UnicodeDecodeError as exc:  # pragma: no cover - authenticated payloads are ours
            raise DecryptionFailedError("Decrypted token is not valid UTF-8.") from exc


__all__ = ["TokenCipherService"]
