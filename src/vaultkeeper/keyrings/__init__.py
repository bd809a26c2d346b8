"""
Keyrings package - capability interface and built-in backends.
"""

from vaultkeeper.keyrings.base import (
    BaseKeyring,
    KeyringType,
    keyring_tag,
    normalize_address,
)
from vaultkeeper.keyrings.hd import HDKeyring
from vaultkeeper.keyrings.simple import SimpleKeyring
from vaultkeeper.keyrings.qr import AirgappedKeyring
from vaultkeeper.keyrings.importers import AccountImportStrategy

__all__ = [
    "BaseKeyring",
    "KeyringType",
    "keyring_tag",
    "normalize_address",
    "HDKeyring",
    "SimpleKeyring",
    "AirgappedKeyring",
    "AccountImportStrategy",
]
