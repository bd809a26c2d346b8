"""
HD keyring - accounts derived deterministically from a BIP39 phrase.

Derivation path: {hd_path}/{index}, default m/44'/60'/0'/0/{index}.
The mnemonic is held as UTF-8 bytes and must never be logged.
"""

import asyncio
from typing import Any, Dict, List, Optional, Tuple, Union

from eth_account import Account
from eth_account.hdaccount import key_from_seed
from eth_account.hdaccount.mnemonic import Mnemonic
from eth_account.signers.local import LocalAccount
import structlog

from vaultkeeper.config import config
from vaultkeeper.errors import AccountNotFound, InvalidMnemonic
from vaultkeeper.keyrings.base import KeyringType, normalize_address
from vaultkeeper.keyrings.signing import LocalSigningKeyring

logger = structlog.get_logger()

MnemonicInput = Union[str, bytes, bytearray, List[int]]


def mnemonic_to_phrase(mnemonic: MnemonicInput) -> str:
    """Decode a mnemonic given as text, UTF-8 bytes or a list of byte values."""
    if isinstance(mnemonic, str):
        phrase = mnemonic
    elif isinstance(mnemonic, (bytes, bytearray)):
        phrase = bytes(mnemonic).decode('utf-8')
    elif isinstance(mnemonic, list):
        try:
            phrase = bytes(mnemonic).decode('utf-8')
        except (TypeError, ValueError) as e:
            raise InvalidMnemonic("Secret recovery phrase is not valid UTF-8") from e
    else:
        raise InvalidMnemonic("Unsupported secret recovery phrase type")

    return " ".join(phrase.split())


class HDKeyring(LocalSigningKeyring):
    """
    Keyring holding accounts derived from one secret recovery phrase.

    Builder options / serialized form:
        {"mnemonic": [...bytes], "number_of_accounts": n, "indexes": [...],
         "hd_path": str}

    `indexes` lists the derivation index of each account, in order, so a
    keyring with removed accounts restores the same addresses. Records
    without it derive indexes 0..number_of_accounts-1.
    """

    type = KeyringType.HD

    def __init__(self):
        self.mnemonic: Optional[bytes] = None
        self.hd_path: str = config.keyring.hd_path
        self._seed: Optional[bytes] = None
        self._wallets: List[Tuple[int, LocalAccount]] = []

    async def serialize(self) -> Dict[str, Any]:
        return {
            "mnemonic": list(self.mnemonic) if self.mnemonic is not None else None,
            "number_of_accounts": len(self._wallets),
            "indexes": self.indexes,
            "hd_path": self.hd_path,
        }

    async def deserialize(self, data: Optional[Dict[str, Any]] = None) -> None:
        """
        Restore from serialized state or builder options.

        Raises:
            InvalidMnemonic: phrase fails BIP39 validation
        """
        data = data or {}

        self.mnemonic = None
        self._seed = None
        self._wallets = []
        self.hd_path = data.get("hd_path") or config.keyring.hd_path

        if data.get("mnemonic") is not None:
            await asyncio.to_thread(self._init_from_mnemonic, data["mnemonic"])

        indexes = data.get("indexes")
        if indexes:
            await self.add_indexes([int(index) for index in indexes])
        else:
            number_of_accounts = data.get("number_of_accounts") or 0
            if number_of_accounts:
                await self.add_accounts(number_of_accounts)

    @property
    def indexes(self) -> List[int]:
        """Derivation index of each account, in account order."""
        return [index for index, _ in self._wallets]

    async def generate_random_mnemonic(self) -> None:
        """Replace the phrase with a freshly generated one."""
        phrase = Mnemonic().generate(config.keyring.mnemonic_words)
        self._wallets = []
        await asyncio.to_thread(self._init_from_mnemonic, phrase)

    def _init_from_mnemonic(self, mnemonic: MnemonicInput) -> None:
        if self._wallets:
            raise InvalidMnemonic("Secret recovery phrase already provided")

        phrase = mnemonic_to_phrase(mnemonic)
        if not Mnemonic().is_mnemonic_valid(phrase):
            raise InvalidMnemonic("Invalid secret recovery phrase provided")

        self.mnemonic = phrase.encode('utf-8')
        self._seed = Mnemonic.to_seed(phrase)

    def _derive(self, indexes: List[int]) -> List[Tuple[int, LocalAccount]]:
        return [
            (index, Account.from_key(key_from_seed(self._seed, f"{self.hd_path}/{index}")))
            for index in indexes
        ]

    async def add_accounts(self, count: int = 1) -> List[str]:
        if self._seed is None:
            raise InvalidMnemonic("No secret recovery phrase provided")

        start = max(self.indexes) + 1 if self._wallets else 0
        added = await self.add_indexes(list(range(start, start + count)))

        logger.debug("hd_accounts_derived", count=count, hd_path=self.hd_path)

        return added

    async def add_indexes(self, indexes: List[int]) -> List[str]:
        """Derive the accounts at the given indexes."""
        if self._seed is None:
            raise InvalidMnemonic("No secret recovery phrase provided")

        derived = await asyncio.to_thread(self._derive, indexes)
        self._wallets.extend(derived)

        return [normalize_address(account.address) for _, account in derived]

    async def get_accounts(self) -> List[str]:
        return [normalize_address(account.address) for _, account in self._wallets]

    async def remove_account(self, address: str) -> None:
        address = normalize_address(address)
        for position, (_, account) in enumerate(self._wallets):
            if normalize_address(account.address) == address:
                del self._wallets[position]
                return

        raise AccountNotFound(f"Address {address} not found in this keyring")

    def _get_private_key(self, address: str) -> bytes:
        address = normalize_address(address)
        for _, account in self._wallets:
            if normalize_address(account.address) == address:
                return bytes(account.key)

        raise AccountNotFound(f"Address {address} not found in this keyring")


__all__ = ["HDKeyring", "mnemonic_to_phrase"]
