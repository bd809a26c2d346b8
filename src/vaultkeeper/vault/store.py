"""
Vault store - the encrypted blob and the credentials that open it.

The store is the only holder of the vault ciphertext, the password and
the exported encryption key for the session.
"""

import asyncio
import json
from typing import Any, List, Optional, Tuple

import structlog

from vaultkeeper.errors import (
    DecryptionFailed,
    InvalidPassword,
    MissingCredentials,
    VaultNotFound,
)
from vaultkeeper.monitoring.metrics import vault_locks_total, vault_persists_total
from vaultkeeper.vault.encryptor import Encryptor

logger = structlog.get_logger()


class VaultStore:
    """
    Holds the persisted vault and the in-memory unlock state.

    Encryption and key derivation run in worker threads so the event
    loop keeps serving other tasks while PBKDF2 runs.
    """

    def __init__(
        self,
        encryptor: Encryptor,
        vault: Optional[str] = None,
        cache_encryption_key: bool = False,
    ):
        self.encryptor = encryptor
        self.vault = vault
        self.cache_encryption_key = cache_encryption_key

        self.is_unlocked = False
        self.encryption_key: Optional[str] = None
        self.encryption_salt: Optional[str] = None
        self._password: Optional[str] = None

    @property
    def credentials(self) -> Optional[Tuple[str, str]]:
        """Cached (encryption key, salt) when key caching is enabled."""
        if not self.cache_encryption_key or not self.encryption_key:
            return None
        return self.encryption_key, self.encryption_salt

    def set_password(self, password: str) -> None:
        """Set the password used for the next persist."""
        if not isinstance(password, str):
            raise InvalidPassword("Password must be of type string")
        self._password = password

    def set_unlocked(self) -> None:
        self.is_unlocked = True

    def forget_credentials(self) -> None:
        self._password = None
        self.encryption_key = None
        self.encryption_salt = None

    def lock(self) -> None:
        """Drop every decrypted credential; the ciphertext is kept."""
        self.forget_credentials()
        self.is_unlocked = False
        vault_locks_total.inc()

    async def persist(self, serialized: List[Any]) -> None:
        """
        Encrypt serialized keyrings into the vault.

        Args:
            serialized: List of {"type", "data"} keyring records

        Raises:
            MissingCredentials: no password and no cached key
        """
        if self._password is not None:
            if self.cache_encryption_key:
                vault, exported_key = await asyncio.to_thread(
                    self.encryptor.encrypt_with_detail, self._password, serialized
                )
                self.encryption_key = exported_key
                self.encryption_salt = json.loads(vault)["salt"]
            else:
                vault = await asyncio.to_thread(
                    self.encryptor.encrypt, self._password, serialized
                )

        elif self.encryption_key:
            key = self.encryptor.import_key(self.encryption_key)
            payload = await asyncio.to_thread(
                self.encryptor.encrypt_with_key, key, serialized
            )
            payload["salt"] = self.encryption_salt
            if self.vault:
                previous = self.encryptor.parse_vault(self.vault)
                if "keyMetadata" in previous:
                    payload["keyMetadata"] = previous["keyMetadata"]
            vault = json.dumps(payload)

        else:
            raise MissingCredentials(
                "Cannot persist vault without password and encryption key"
            )

        self.vault = vault
        vault_persists_total.inc()

        logger.debug("vault_persisted", keyring_count=len(serialized))

    async def decrypt_with_password(self, password: str) -> List[Any]:
        """
        Decrypt the vault with a password and remember the password.

        Raises:
            VaultNotFound: no vault to unlock
            InvalidPassword: password is not a string
            DecryptionFailed: wrong password or corrupt vault
        """
        if not self.vault:
            raise VaultNotFound("Cannot unlock without a previous vault")

        if not isinstance(password, str):
            raise InvalidPassword("Password must be of type string")

        if self.cache_encryption_key:
            data, exported_key, salt = await asyncio.to_thread(
                self.encryptor.decrypt_with_detail, password, self.vault
            )
            self.encryption_key = exported_key
            self.encryption_salt = salt
        else:
            data = await asyncio.to_thread(self.encryptor.decrypt, password, self.vault)

        self._password = password
        return self._check_payload(data)

    async def decrypt_with_key(self, encryption_key: str, encryption_salt: str) -> List[Any]:
        """
        Decrypt the vault with an exported key instead of the password.

        Raises:
            VaultNotFound: no vault to unlock
            DecryptionFailed: wrong or expired key
        """
        if not self.vault:
            raise VaultNotFound("Cannot unlock without a previous vault")

        payload = self.encryptor.parse_vault(self.vault)
        if encryption_salt != payload.get("salt"):
            raise DecryptionFailed("Encryption key and salt provided are expired")

        key = self.encryptor.import_key(encryption_key)
        data = await asyncio.to_thread(self.encryptor.decrypt_with_key, key, payload)

        self.encryption_key = encryption_key
        self.encryption_salt = encryption_salt
        return self._check_payload(data)

    async def verify_password(self, password: str) -> None:
        """Attempt a decryption and discard the result."""
        if not self.vault:
            raise VaultNotFound("Cannot unlock without a previous vault")

        if not isinstance(password, str):
            raise InvalidPassword("Password must be of type string")

        await asyncio.to_thread(self.encryptor.decrypt, password, self.vault)

    @staticmethod
    def _check_payload(data: Any) -> List[Any]:
        if not isinstance(data, list):
            raise DecryptionFailed("Vault is corrupt or in an unknown format")
        return data


__all__ = ["VaultStore"]
