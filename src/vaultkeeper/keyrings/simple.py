"""
Simple keyring - independent private keys, one account each.

Used for imported private keys and JSON wallets.
"""

from typing import List, Optional

from eth_account import Account
from eth_account.signers.local import LocalAccount

from vaultkeeper.errors import AccountNotFound, InvalidPrivateKey
from vaultkeeper.keyrings.base import KeyringType, normalize_address
from vaultkeeper.keyrings.signing import LocalSigningKeyring


class SimpleKeyring(LocalSigningKeyring):
    """Keyring over a list of raw private keys."""

    type = KeyringType.SIMPLE

    def __init__(self):
        self._wallets: List[LocalAccount] = []

    async def serialize(self) -> List[str]:
        return [bytes(account.key).hex() for account in self._wallets]

    async def deserialize(self, data: Optional[List[str]] = None) -> None:
        """
        Load private keys.

        Args:
            data: Hex-encoded private keys, with or without 0x prefix
        """
        try:
            self._wallets = [Account.from_key(private_key) for private_key in data or []]
        except Exception as e:
            raise InvalidPrivateKey("Cannot import invalid private key.") from e

    async def add_accounts(self, count: int = 1) -> List[str]:
        created = [Account.create() for _ in range(count)]
        self._wallets.extend(created)
        return [normalize_address(account.address) for account in created]

    async def get_accounts(self) -> List[str]:
        return [normalize_address(account.address) for account in self._wallets]

    async def remove_account(self, address: str) -> None:
        address = normalize_address(address)
        remaining = [
            account for account in self._wallets
            if normalize_address(account.address) != address
        ]
        if len(remaining) == len(self._wallets):
            raise AccountNotFound(f"Address {address} not found in this keyring")

        self._wallets = remaining

    def _get_private_key(self, address: str) -> bytes:
        address = normalize_address(address)
        for account in self._wallets:
            if normalize_address(account.address) == address:
                return bytes(account.key)

        raise AccountNotFound(f"Address {address} not found in this keyring")


__all__ = ["SimpleKeyring"]
