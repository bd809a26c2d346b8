"""
Abstract base class for all keyrings.

A keyring owns one or more accounts and exposes a uniform capability
interface. The controller dispatches on the keyring `type` tag.
"""

from abc import ABC, abstractmethod
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from vaultkeeper.errors import UnsupportedKeyringOperation


class KeyringType(str, Enum):
    """Built-in keyring types."""
    SIMPLE = "Simple Key Pair"
    HD = "HD Key Tree"
    QR = "QR Hardware Wallet Device"


def keyring_tag(keyring_type: Union[KeyringType, str]) -> str:
    """Plain string tag for a keyring type, usable as a dict key."""
    if isinstance(keyring_type, KeyringType):
        return keyring_type.value
    return str(keyring_type)


def normalize_address(address: str) -> str:
    """Canonical lowercase, 0x-prefixed form of an address."""
    address = address.lower()
    if not address.startswith("0x"):
        address = "0x" + address
    return address


class BaseKeyring(ABC):
    """
    Abstract base class for keyrings.

    Keyrings are responsible for:
    1. Listing and deriving accounts
    2. Serializing their secrets for the vault
    3. Signing on behalf of their accounts

    Optional capabilities raise UnsupportedKeyringOperation unless a
    subclass implements them.
    """

    type: Union[KeyringType, str]

    @property
    def tag(self) -> str:
        """Plain string type tag."""
        return keyring_tag(self.type)

    @abstractmethod
    async def serialize(self) -> Any:
        """Return JSON-serializable state to store in the vault."""
        pass

    @abstractmethod
    async def deserialize(self, data: Any = None) -> None:
        """Restore state produced by `serialize` (or builder options)."""
        pass

    @abstractmethod
    async def get_accounts(self) -> List[str]:
        """Return account addresses in keyring order."""
        pass

    @abstractmethod
    async def add_accounts(self, count: int = 1) -> List[str]:
        """
        Add accounts to the keyring.

        Args:
            count: Number of accounts to add

        Returns:
            Addresses of the added accounts
        """
        pass

    def _unsupported(self, operation: str) -> UnsupportedKeyringOperation:
        return UnsupportedKeyringOperation(
            f"Keyring '{self.tag}' does not support {operation}"
        )

    async def remove_account(self, address: str) -> None:
        raise self._unsupported("remove_account")

    async def export_account(self, address: str) -> str:
        raise self._unsupported("export_account")

    async def sign_transaction(
        self,
        address: str,
        transaction: Dict[str, Any],
        opts: Optional[Dict[str, Any]] = None,
    ) -> str:
        raise self._unsupported("sign_transaction")

    async def sign_message(
        self,
        address: str,
        data: str,
        opts: Optional[Dict[str, Any]] = None,
    ) -> str:
        raise self._unsupported("sign_message")

    async def sign_personal_message(
        self,
        address: str,
        data: str,
        opts: Optional[Dict[str, Any]] = None,
    ) -> str:
        raise self._unsupported("sign_personal_message")

    async def sign_typed_data(
        self,
        address: str,
        data: Any,
        opts: Optional[Dict[str, Any]] = None,
    ) -> str:
        raise self._unsupported("sign_typed_data")

    async def get_encryption_public_key(
        self,
        address: str,
        opts: Optional[Dict[str, Any]] = None,
    ) -> str:
        raise self._unsupported("get_encryption_public_key")


__all__ = [
    "KeyringType",
    "BaseKeyring",
    "keyring_tag",
    "normalize_address",
]
