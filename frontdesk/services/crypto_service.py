"""AES-256-GCM encryption for stored channel credentials.

Stored format is ``iv:authTag:ciphertext``, each part hex encoded, so tokens
written by earlier deployments decrypt unchanged.
"""

import os
from typing import Optional

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

KEY_LENGTH = 32
IV_LENGTH = 16
TAG_LENGTH = 16


class CredentialCipherError(Exception):
    pass


class CredentialCipher:
    def __init__(self, key_hex: str):
        try:
            key = bytes.fromhex(key_hex or "")
        except ValueError as e:
            raise CredentialCipherError(
                f"Invalid encryption key format. Expected hex string of length {KEY_LENGTH * 2}"
            ) from e
        if len(key) != KEY_LENGTH:
            raise CredentialCipherError(f"Encryption key must be {KEY_LENGTH * 2} hex characters ({KEY_LENGTH} bytes)")
        self._aead = AESGCM(key)

    def encrypt(self, plaintext: str) -> str:
        if not plaintext:
            raise CredentialCipherError("Cannot encrypt empty string")
        iv = os.urandom(IV_LENGTH)
        sealed = self._aead.encrypt(iv, plaintext.encode("utf-8"), None)
        ciphertext, tag = sealed[:-TAG_LENGTH], sealed[-TAG_LENGTH:]
        return f"{iv.hex()}:{tag.hex()}:{ciphertext.hex()}"

    def decrypt(self, token: str) -> str:
        if not token:
            raise CredentialCipherError("Cannot decrypt empty string")
        parts = token.split(":")
        if len(parts) != 3:
            raise CredentialCipherError("Invalid encrypted format. Expected: iv:authTag:encrypted")
        iv_hex, tag_hex, ciphertext_hex = parts
        try:
            iv = bytes.fromhex(iv_hex)
            sealed = bytes.fromhex(ciphertext_hex) + bytes.fromhex(tag_hex)
            return self._aead.decrypt(iv, sealed, None).decode("utf-8")
        except (ValueError, InvalidTag) as e:
            raise CredentialCipherError(f"Decryption failed: {e.__class__.__name__}") from e


def build_cipher(key_hex: Optional[str]) -> Optional[CredentialCipher]:
    """Cipher for the configured key, or None when no key is configured."""
    if not key_hex:
        return None
    return CredentialCipher(key_hex)
