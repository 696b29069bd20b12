"""Field encryption for the vault file.

The key is derived from the caller's passphrase with PBKDF2-HMAC-SHA256 and a
random per-vault salt. Only the salt and an encrypted check token are stored;
the passphrase and key never touch disk.
"""

import base64
import json
import os
from typing import Any

import numpy as np
from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from docvault.exceptions import StorageError

DEFAULT_KDF_ITERATIONS = 480_000
SALT_BYTES = 16
KEY_CHECK_PLAINTEXT = b"docvault-key-check-v1"

# Vectors are stored as little-endian float32
VECTOR_DTYPE = np.dtype("<f4")


def generate_salt() -> bytes:
    return os.urandom(SALT_BYTES)


def derive_key(passphrase: str, salt: bytes, iterations: int = DEFAULT_KDF_ITERATIONS) -> bytes:
    """Derive a Fernet key from a passphrase."""
    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=32,
        salt=salt,
        iterations=iterations,
    )
    return base64.urlsafe_b64encode(kdf.derive(passphrase.encode("utf-8")))


class VaultCipher:
    """Symmetric cipher for vault columns."""

    def __init__(self, key: bytes):
        self._fernet = Fernet(key)

    @classmethod
    def from_passphrase(
        cls,
        passphrase: str,
        salt: bytes,
        iterations: int = DEFAULT_KDF_ITERATIONS,
    ) -> "VaultCipher":
        return cls(derive_key(passphrase, salt, iterations))

    def make_check_token(self) -> bytes:
        """Encrypt the known check value stored alongside a new vault."""
        return self._fernet.encrypt(KEY_CHECK_PLAINTEXT)

    def verify(self, token: bytes) -> bool:
        """Whether this cipher's key produced the given check token."""
        try:
            return self._fernet.decrypt(token) == KEY_CHECK_PLAINTEXT
        except InvalidToken:
            return False

    def encrypt_bytes(self, data: bytes) -> bytes:
        return self._fernet.encrypt(data)

    def decrypt_bytes(self, token: bytes) -> bytes:
        try:
            return self._fernet.decrypt(token)
        except InvalidToken as e:
            raise StorageError("encrypted field failed authentication") from e

    def encrypt_text(self, text: str) -> bytes:
        return self.encrypt_bytes(text.encode("utf-8"))

    def decrypt_text(self, token: bytes) -> str:
        return self.decrypt_bytes(token).decode("utf-8")

    def encrypt_json(self, value: Any) -> bytes:
        return self.encrypt_text(json.dumps(value, default=str))

    def decrypt_json(self, token: bytes) -> Any:
        return json.loads(self.decrypt_text(token))

    def encrypt_vector(self, vector: list[float]) -> bytes:
        return self.encrypt_bytes(np.asarray(vector, dtype=VECTOR_DTYPE).tobytes())

    def decrypt_vector(self, token: bytes) -> np.ndarray:
        return np.frombuffer(self.decrypt_bytes(token), dtype=VECTOR_DTYPE)
