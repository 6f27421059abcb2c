# ===== app/utils/encryption.py =====
"""
Token vault cipher.

OAuth tokens and client secrets are stored as ``iv:tag:ciphertext`` with each
part hex encoded. AES-256-GCM with a 16-byte IV; the key is the configured
passphrase right-padded with ``"0"`` and truncated to 32 bytes.
"""
import os
from functools import lru_cache

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from app.config.settings import get_settings

IV_LENGTH = 16
TAG_LENGTH = 16
KEY_LENGTH = 32


class TokenDecryptionError(ValueError):
    """Raised when a stored value is malformed or fails authentication"""


def derive_key(passphrase: str) -> bytes:
    return passphrase.encode("utf-8").ljust(KEY_LENGTH, b"0")[:KEY_LENGTH]


class TokenCipher:
    """Symmetric cipher for secrets at rest"""

    def __init__(self, passphrase: str):
        if not passphrase:
            raise ValueError("Encryption key must not be empty")
        self._aesgcm = AESGCM(derive_key(passphrase))

    def encrypt(self, plaintext: str) -> str:
        iv = os.urandom(IV_LENGTH)
        sealed = self._aesgcm.encrypt(iv, plaintext.encode("utf-8"), None)
        # AESGCM appends the tag to the ciphertext
        ciphertext, tag = sealed[:-TAG_LENGTH], sealed[-TAG_LENGTH:]
        return f"{iv.hex()}:{tag.hex()}:{ciphertext.hex()}"

    def decrypt(self, token: str) -> str:
        parts = token.split(":")
        if len(parts) != 3:
            raise TokenDecryptionError("Invalid encrypted value format")

        try:
            iv, tag, ciphertext = (bytes.fromhex(part) for part in parts)
        except ValueError as e:
            raise TokenDecryptionError("Invalid encrypted value encoding") from e

        if len(iv) != IV_LENGTH or len(tag) != TAG_LENGTH:
            raise TokenDecryptionError("Invalid encrypted value format")

        try:
            plaintext = self._aesgcm.decrypt(iv, ciphertext + tag, None)
        except InvalidTag as e:
            raise TokenDecryptionError("Encrypted value failed authentication") from e
        return plaintext.decode("utf-8")


@lru_cache()
def get_token_cipher() -> TokenCipher:
    """Process-wide cipher built once from settings"""
    return TokenCipher(get_settings().ENCRYPTION_KEY)
