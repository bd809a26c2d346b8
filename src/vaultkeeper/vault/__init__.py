"""
Vault - encrypted storage of serialized keyrings.
"""

from vaultkeeper.vault.encryptor import Encryptor
from vaultkeeper.vault.store import VaultStore

__all__ = [
    "Encryptor",
    "VaultStore",
]
