"""
Keyring registry - the live keyring instances and their builders.

Owns keyring membership and writes it through to the vault store.
"""

from typing import Any, Callable, Dict, Iterable, List, Optional, Union

import structlog

from vaultkeeper.errors import AccountNotFound, DuplicateAccount, UnknownKeyringType
from vaultkeeper.keyrings.base import (
    BaseKeyring,
    KeyringType,
    keyring_tag,
    normalize_address,
)
from vaultkeeper.keyrings.hd import HDKeyring
from vaultkeeper.keyrings.simple import SimpleKeyring
from vaultkeeper.monitoring.metrics import track_loaded
from vaultkeeper.vault.store import VaultStore

logger = structlog.get_logger()

KeyringBuilder = Callable[[], BaseKeyring]

DEFAULT_KEYRING_BUILDERS: List[KeyringBuilder] = [SimpleKeyring, HDKeyring]


class KeyringRegistry:
    """
    Registry of keyring builders and live keyrings.

    Builders are callables with a `type` attribute, usually keyring
    classes. Records of unknown type found in the vault are kept
    verbatim and written back on every persist.
    """

    def __init__(
        self,
        vault_store: VaultStore,
        builders: Optional[Iterable[KeyringBuilder]] = None,
    ):
        self.vault_store = vault_store
        self.keyrings: List[BaseKeyring] = []
        self.unsupported: List[Dict[str, Any]] = []

        self._builders: Dict[str, KeyringBuilder] = {}
        for builder in [*DEFAULT_KEYRING_BUILDERS, *(builders or [])]:
            self._builders[keyring_tag(builder.type)] = builder

    def get_builder(self, keyring_type: Union[KeyringType, str]) -> Optional[KeyringBuilder]:
        """Return the builder registered for a type, if any."""
        return self._builders.get(keyring_tag(keyring_type))

    async def new_keyring(
        self,
        keyring_type: Union[KeyringType, str],
        data: Any = None,
    ) -> BaseKeyring:
        """
        Build and deserialize a keyring without registering it.

        Raises:
            UnknownKeyringType: no builder for the type
        """
        builder = self.get_builder(keyring_type)
        if builder is None:
            raise UnknownKeyringType(
                f"No keyringBuilder found for keyring of type '{keyring_tag(keyring_type)}'"
            )

        keyring = builder()
        await keyring.deserialize(data)
        return keyring

    async def add_keyring(
        self,
        keyring_type: Union[KeyringType, str],
        opts: Any = None,
    ) -> BaseKeyring:
        """
        Create a keyring, register it and persist the vault.

        An HD keyring created without a mnemonic gets a random one and
        its first account.

        Raises:
            UnknownKeyringType: no builder for the type
            DuplicateAccount: the keyring lists an existing address
        """
        keyring = await self.new_keyring(keyring_type, opts)

        if keyring_tag(keyring_type) == KeyringType.HD.value and (
            not isinstance(opts, dict) or not opts.get("mnemonic")
        ):
            await keyring.generate_random_mnemonic()
            await keyring.add_accounts(1)

        await self._check_for_duplicate(await keyring.get_accounts())

        self.keyrings.append(keyring)
        try:
            await self.persist_all()
        except Exception:
            self.keyrings.remove(keyring)
            raise

        logger.info(
            "keyring_added",
            keyring_type=keyring.tag,
            account_count=len(await keyring.get_accounts()),
        )

        return keyring

    async def _check_for_duplicate(self, new_accounts: List[str]) -> None:
        existing = set(await self.get_accounts())
        duplicates = [a for a in new_accounts if normalize_address(a) in existing]
        if duplicates:
            raise DuplicateAccount("The account you are trying to import is a duplicate")

    def get_by_type(self, keyring_type: Union[KeyringType, str]) -> List[BaseKeyring]:
        tag = keyring_tag(keyring_type)
        return [keyring for keyring in self.keyrings if keyring.tag == tag]

    async def get_for_account(self, address: str) -> BaseKeyring:
        """
        Return the keyring listing an address.

        Raises:
            AccountNotFound: no keyring lists the address
        """
        address = normalize_address(address)
        for keyring in self.keyrings:
            if address in await keyring.get_accounts():
                return keyring

        raise AccountNotFound(
            "No keyring found for the requested account. "
            f"Keyrings loaded: {len(self.keyrings)}"
        )

    async def get_accounts(self) -> List[str]:
        """Every account of every keyring, in keyring order."""
        accounts: List[str] = []
        for keyring in self.keyrings:
            accounts.extend(normalize_address(a) for a in await keyring.get_accounts())
        return accounts

    async def add_new_account(self, keyring: BaseKeyring) -> List[str]:
        """Add one account to a keyring and persist."""
        added = await keyring.add_accounts(1)
        await self.persist_all()

        logger.info("account_added", keyring_type=keyring.tag, address=added[0] if added else None)

        return added

    async def remove_account(self, address: str) -> BaseKeyring:
        """
        Remove an account from its keyring and persist.

        A keyring left without accounts is dropped.

        Returns:
            The keyring that owned the account
        """
        keyring = await self.get_for_account(address)
        await keyring.remove_account(normalize_address(address))

        if not await keyring.get_accounts():
            await self.remove_empty_keyrings()

        await self.persist_all()
        return keyring

    async def remove_empty_keyrings(self) -> None:
        kept = []
        for keyring in self.keyrings:
            if await keyring.get_accounts():
                kept.append(keyring)
            else:
                logger.info("empty_keyring_removed", keyring_type=keyring.tag)
        self.keyrings = kept

    async def serialize(self) -> List[Dict[str, Any]]:
        serialized = [
            {"type": keyring.tag, "data": await keyring.serialize()}
            for keyring in self.keyrings
        ]
        serialized.extend(self.unsupported)
        return serialized

    async def persist_all(self) -> bool:
        """
        Serialize every keyring into the vault.

        Returns:
            True once the vault is written
        """
        await self.vault_store.persist(await self.serialize())
        await self._track()
        return True

    async def restore(self, serialized: List[Dict[str, Any]]) -> None:
        """
        Replace live keyrings with those decrypted from the vault.

        Live keyrings are left untouched when any record fails to load.
        """
        keyrings: List[BaseKeyring] = []
        unsupported: List[Dict[str, Any]] = []

        for record in serialized:
            if self.get_builder(record.get("type", "")) is None:
                logger.warning("unsupported_keyring_restored", keyring_type=record.get("type"))
                unsupported.append(record)
                continue

            keyrings.append(await self.new_keyring(record["type"], record.get("data")))

        self.keyrings = keyrings
        self.unsupported = unsupported
        await self._track()

    def clear(self) -> None:
        self.keyrings = []
        self.unsupported = []

    async def _track(self) -> None:
        track_loaded(len(self.keyrings), len(await self.get_accounts()))


__all__ = ["KeyringRegistry", "KeyringBuilder", "DEFAULT_KEYRING_BUILDERS"]
