"""
Vault encryption and decryption utilities.

Uses PBKDF2-SHA256 to derive a 256-bit key from the password and
AES-256-GCM to seal the serialized keyrings.
"""

import os
import json
import base64
import binascii
from typing import Any, Optional, Tuple

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC
import structlog

from vaultkeeper.config import config
from vaultkeeper.errors import DecryptionFailed

logger = structlog.get_logger()

KEY_LENGTH = 32


class Encryptor:
    """
    Encrypt and decrypt the vault.

    A vault is a JSON string:
        {"data": b64, "iv": b64, "salt": b64,
         "keyMetadata": {"algorithm": "PBKDF2", "params": {"iterations": n}}}

    The derived key can be exported and later used in place of the
    password, as long as the vault salt has not changed.
    """

    def __init__(self, iterations: Optional[int] = None):
        self.iterations = iterations or config.encryptor.pbkdf2_iterations
        self.salt_bytes = config.encryptor.salt_bytes
        self.nonce_bytes = config.encryptor.nonce_bytes

    def generate_salt(self) -> str:
        """Return a fresh base64-encoded random salt."""
        return base64.b64encode(os.urandom(self.salt_bytes)).decode('utf-8')

    def key_from_password(
        self,
        password: str,
        salt: str,
        iterations: Optional[int] = None,
    ) -> bytes:
        """
        Derive the AES key for a password.

        Args:
            password: Vault password
            salt: Base64-encoded salt
            iterations: PBKDF2 rounds (defaults to the configured value)

        Returns:
            32-byte key
        """
        kdf = PBKDF2HMAC(
            algorithm=hashes.SHA256(),
            length=KEY_LENGTH,
            salt=base64.b64decode(salt),
            iterations=iterations or self.iterations,
        )
        return kdf.derive(password.encode('utf-8'))

    def export_key(self, key: bytes) -> str:
        """Export a raw key as a base64 string."""
        return base64.b64encode(key).decode('utf-8')

    def import_key(self, key_string: str) -> bytes:
        """Import a key previously produced by `export_key`."""
        try:
            key = base64.b64decode(key_string, validate=True)
        except (binascii.Error, ValueError, TypeError) as e:
            raise DecryptionFailed("Invalid encryption key format") from e

        if len(key) != KEY_LENGTH:
            raise DecryptionFailed("Invalid encryption key length")

        return key

    def encrypt_with_key(self, key: bytes, data: Any) -> dict:
        """
        Encrypt a JSON-serializable object with a raw key.

        Returns:
            Dict with base64 `data` and `iv`
        """
        try:
            # Generate random nonce (96 bits for GCM)
            nonce = os.urandom(self.nonce_bytes)

            plaintext = json.dumps(data).encode('utf-8')

            ciphertext = AESGCM(key).encrypt(nonce, plaintext, None)

            return {
                "data": base64.b64encode(ciphertext).decode('utf-8'),
                "iv": base64.b64encode(nonce).decode('utf-8'),
            }

        except Exception as e:
            logger.error("encryption_failed", error=str(e))
            raise

    def decrypt_with_key(self, key: bytes, payload: dict) -> Any:
        """
        Decrypt a payload produced by `encrypt_with_key`.

        Raises:
            DecryptionFailed: wrong key or corrupt payload
        """
        try:
            nonce = base64.b64decode(payload["iv"])
            ciphertext = base64.b64decode(payload["data"])

            plaintext = AESGCM(key).decrypt(nonce, ciphertext, None)

            return json.loads(plaintext.decode('utf-8'))

        except InvalidTag as e:
            logger.warning("decryption_failed", reason="authentication")
            raise DecryptionFailed("Incorrect password or encryption key") from e

        except (KeyError, TypeError, ValueError, binascii.Error) as e:
            logger.error("decryption_failed", reason="malformed", error=str(e))
            raise DecryptionFailed("Vault is corrupt or in an unknown format") from e

    def encrypt_with_detail(self, password: str, data: Any) -> Tuple[str, str]:
        """
        Encrypt with a password and also return the exported key.

        Returns:
            (vault JSON string, exported key string)
        """
        salt = self.generate_salt()
        key = self.key_from_password(password, salt)

        vault = self.encrypt_with_key(key, data)
        vault["salt"] = salt
        vault["keyMetadata"] = {
            "algorithm": "PBKDF2",
            "params": {"iterations": self.iterations},
        }

        return json.dumps(vault), self.export_key(key)

    def encrypt(self, password: str, data: Any) -> str:
        """Encrypt with a password and return the vault JSON string."""
        vault, _ = self.encrypt_with_detail(password, data)
        return vault

    def decrypt_with_detail(self, password: str, text: str) -> Tuple[Any, str, str]:
        """
        Decrypt a vault with a password.

        Returns:
            (decrypted object, exported key string, vault salt)
        """
        payload = self.parse_vault(text)

        try:
            salt = payload["salt"]
            iterations = payload.get("keyMetadata", {}).get("params", {}).get("iterations")
            key = self.key_from_password(password, salt, iterations)
        except (KeyError, TypeError, ValueError, binascii.Error) as e:
            logger.error("decryption_failed", reason="malformed", error=str(e))
            raise DecryptionFailed("Vault is corrupt or in an unknown format") from e

        data = self.decrypt_with_key(key, payload)

        return data, self.export_key(key), salt

    def decrypt(self, password: str, text: str) -> Any:
        """Decrypt a vault with a password."""
        data, _, _ = self.decrypt_with_detail(password, text)
        return data

    @staticmethod
    def parse_vault(text: str) -> dict:
        """Parse the vault JSON envelope."""
        try:
            payload = json.loads(text)
        except (TypeError, ValueError) as e:
            raise DecryptionFailed("Vault is corrupt or in an unknown format") from e

        if not isinstance(payload, dict):
            raise DecryptionFailed("Vault is corrupt or in an unknown format")

        return payload


__all__ = ["Encryptor"]
