"""
Keyring controller - the public facade.

Coordinates the vault store, the keyring registry, the airgapped sync
state machine and the identity registry, and publishes a new snapshot
after every mutation.
"""

import json
import time
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

import structlog

from vaultkeeper.config import config
from vaultkeeper.controller.airgapped import AirgappedSession, QRHardwareSync
from vaultkeeper.controller.guard import MutationGuard
from vaultkeeper.controller.identities import IdentityRegistry
from vaultkeeper.controller.registry import KeyringBuilder, KeyringRegistry
from vaultkeeper.controller.state import KeyringControllerState, StateProjector
from vaultkeeper.errors import (
    AccountOutOfSequence,
    EmptyKeyring,
    EmptyMessage,
    ImportedDifferentAccounts,
    ImportedWrongAccountCount,
    InvalidMnemonic,
    InvalidPassword,
    NoHDKeyring,
    SigningError,
    UnknownImportStrategy,
    UnrecognizedSignatureVersion,
    VaultkeeperError,
    VaultLocked,
)
from vaultkeeper.keyrings.base import BaseKeyring, KeyringType, normalize_address
from vaultkeeper.keyrings.hd import HDKeyring
from vaultkeeper.keyrings.importers import (
    AccountImportStrategy,
    private_key_from_hex,
    private_key_from_json,
)
from vaultkeeper.messaging.bus import EventBus
from vaultkeeper.messaging.events import AccountRemovedEvent, LockEvent, UnlockEvent
from vaultkeeper.monitoring.metrics import (
    accounts_added_total,
    accounts_imported_total,
    accounts_removed_total,
    track_seed_verification,
    track_signature,
    track_unlock,
)
from vaultkeeper.vault.encryptor import Encryptor
from vaultkeeper.vault.store import VaultStore

logger = structlog.get_logger()

TYPED_DATA_VERSIONS = ("V1", "V3", "V4")


class KeyringController:
    """
    Orchestrates keyrings behind one consistent, non-secret state.

    Usage:
        controller = KeyringController(identities)
        await controller.create_new_vault_and_keychain("password")
        state, address = await controller.add_new_account()

    Subscribe to `controller.event_bus` for state, lock, unlock and
    account removal notifications. The host persists `controller.vault`.
    """

    def __init__(
        self,
        identities: IdentityRegistry,
        encryptor: Optional[Encryptor] = None,
        keyring_builders: Optional[Sequence[KeyringBuilder]] = None,
        cache_encryption_key: Optional[bool] = None,
        event_bus: Optional[EventBus] = None,
        vault: Optional[str] = None,
    ):
        if cache_encryption_key is None:
            cache_encryption_key = config.keyring.cache_encryption_key

        self.identities = identities
        self.event_bus = event_bus or EventBus()

        self.vault_store = VaultStore(
            encryptor or Encryptor(),
            vault=vault,
            cache_encryption_key=cache_encryption_key,
        )
        self.registry = KeyringRegistry(self.vault_store, keyring_builders)
        self.projector = StateProjector(self.registry, self.vault_store, self.event_bus)
        self.guard = MutationGuard()
        self.qr = QRHardwareSync(self.registry, identities)

    # ============== PROPERTIES ==============

    @property
    def state(self) -> KeyringControllerState:
        """Last published snapshot."""
        return self.projector.state

    @property
    def vault(self) -> Optional[str]:
        """Vault ciphertext for the host to store."""
        return self.vault_store.vault

    @property
    def encryption_credentials(self) -> Optional[Tuple[str, str]]:
        """Cached (encryption key, salt) when key caching is enabled."""
        return self.vault_store.credentials

    def is_unlocked(self) -> bool:
        return self.vault_store.is_unlocked

    # ============== INTERNALS ==============

    def _assert_unlocked(self) -> None:
        if not self.vault_store.is_unlocked:
            raise VaultLocked(
                "The operation cannot be completed while the controller is locked"
            )

    def _primary_keyring(self) -> HDKeyring:
        keyrings = self.registry.get_by_type(KeyringType.HD)
        if not keyrings:
            raise NoHDKeyring("No HD keyring found")
        return keyrings[0]

    async def _update(self) -> KeyringControllerState:
        return await self.projector.publish()

    # ============== VAULT ==============

    async def create_new_vault_and_keychain(self, password: str) -> KeyringControllerState:
        """
        Create a vault with one HD keyring and one account.

        Does nothing when accounts already exist.

        Raises:
            InvalidPassword: password is not a string
        """
        async with self.guard.hold("create_new_vault_and_keychain"):
            if not await self.registry.get_accounts():
                self.vault_store.set_password(password)
                self.registry.clear()
                await self.registry.add_keyring(KeyringType.HD)
                self.vault_store.set_unlocked()

                accounts = await self.registry.get_accounts()
                self.identities.sync_to(accounts)
                await self.event_bus.publish(UnlockEvent())

                logger.info("vault_created", account_count=len(accounts))

            return await self._update()

    async def create_new_vault_and_restore(
        self,
        password: str,
        seed: Union[str, bytes],
    ) -> KeyringControllerState:
        """
        Replace every keyring with an HD keyring restored from a phrase.

        Raises:
            InvalidPassword: password is empty or not a string
            InvalidMnemonic: seed is not a valid phrase
        """
        async with self.guard.hold("create_new_vault_and_restore"):
            if not isinstance(password, str) or not password:
                raise InvalidPassword("Invalid password")

            self.vault_store.set_password(password)
            self.registry.clear()
            keyring = await self.registry.add_keyring(
                KeyringType.HD,
                {"mnemonic": seed, "number_of_accounts": 1},
            )
            self.vault_store.set_unlocked()

            accounts = await keyring.get_accounts()
            self.identities.sync_to(accounts)
            await self.event_bus.publish(UnlockEvent())

            logger.info("vault_restored", account_count=len(accounts))

            return await self._update()

    async def submit_password(self, password: str) -> KeyringControllerState:
        """
        Unlock the vault with the password.

        Raises:
            VaultNotFound: no vault exists
            DecryptionFailed: wrong password or corrupt vault
        """
        started = time.perf_counter()

        try:
            serialized = await self.vault_store.decrypt_with_password(password)
            await self.registry.restore(serialized)
        except Exception as e:
            if not self.vault_store.is_unlocked:
                self.vault_store.forget_credentials()
            track_unlock("password", success=False)
            logger.warning("vault_unlock_failed", method="password", error=str(e))
            raise

        self.vault_store.set_unlocked()
        track_unlock("password", success=True, duration=time.perf_counter() - started)

        accounts = await self.registry.get_accounts()
        self.identities.sync_to(accounts)
        await self.event_bus.publish(UnlockEvent())

        logger.info("vault_unlocked", method="password", keyring_count=len(self.registry.keyrings))

        return await self._update()

    async def submit_encryption_key(
        self,
        encryption_key: str,
        encryption_salt: str,
    ) -> KeyringControllerState:
        """
        Unlock the vault with a cached encryption key and salt.

        Raises:
            VaultNotFound: no vault exists
            DecryptionFailed: wrong, malformed or expired key
        """
        started = time.perf_counter()

        try:
            serialized = await self.vault_store.decrypt_with_key(encryption_key, encryption_salt)
            await self.registry.restore(serialized)
        except Exception as e:
            if not self.vault_store.is_unlocked:
                self.vault_store.forget_credentials()
            track_unlock("encryption_key", success=False)
            logger.warning("vault_unlock_failed", method="encryption_key", error=str(e))
            raise

        self.vault_store.set_unlocked()
        track_unlock("encryption_key", success=True, duration=time.perf_counter() - started)

        await self.event_bus.publish(UnlockEvent())

        logger.info("vault_unlocked", method="encryption_key", keyring_count=len(self.registry.keyrings))

        return await self._update()

    async def set_locked(self) -> KeyringControllerState:
        """Drop keyrings and credentials from memory; the vault is kept."""
        self.registry.clear()
        self.vault_store.lock()
        self.qr.session = AirgappedSession()

        await self.event_bus.publish(LockEvent())

        logger.info("vault_locked")

        return await self._update()

    async def verify_password(self, password: str) -> None:
        """
        Check the password against the vault without changing state.

        Raises:
            DecryptionFailed: wrong password
        """
        await self.vault_store.verify_password(password)

    async def persist_all_keyrings(self) -> bool:
        self._assert_unlocked()
        return await self.registry.persist_all()

    # ============== KEYRINGS ==============

    async def add_new_keyring(
        self,
        keyring_type: Union[KeyringType, str],
        opts: Any = None,
    ) -> BaseKeyring:
        """
        Build and register a keyring of any registered type.

        Raises:
            UnknownKeyringType: no builder for the type
            DuplicateAccount: the keyring lists an existing address
        """
        self._assert_unlocked()

        keyring = await self.registry.add_keyring(keyring_type, opts)
        await self._update()
        return keyring

    async def get_accounts(self) -> List[str]:
        return await self.registry.get_accounts()

    async def get_keyring_for_account(self, address: str) -> BaseKeyring:
        """
        Return the keyring owning an address.

        Prefer `state`; the returned keyring is live and unguarded.
        """
        return await self.registry.get_for_account(address)

    def get_keyrings_by_type(self, keyring_type: Union[KeyringType, str]) -> List[BaseKeyring]:
        """Return live keyrings of a type. Prefer `state`."""
        return self.registry.get_by_type(keyring_type)

    async def get_account_keyring_type(self, address: str) -> str:
        keyring = await self.registry.get_for_account(address)
        return keyring.tag

    # ============== ACCOUNTS ==============

    async def add_new_account(
        self,
        account_count: Optional[int] = None,
    ) -> Tuple[KeyringControllerState, str]:
        """
        Add an account to the primary HD keyring.

        Retrying with the pre-call account count returns the same address
        instead of adding another account.

        Args:
            account_count: Number of primary accounts the caller has seen

        Returns:
            Snapshot and the added (or already added) address

        Raises:
            NoHDKeyring: no HD keyring exists
            AccountOutOfSequence: account_count is negative or exceeds the
                live count
        """
        self._assert_unlocked()

        primary = self._primary_keyring()
        primary_accounts = await primary.get_accounts()

        if account_count is not None and len(primary_accounts) != account_count:
            if account_count < 0 or account_count > len(primary_accounts):
                raise AccountOutOfSequence("Account out of sequence")

            logger.debug("add_account_retry_detected", account_count=account_count)
            return self.state, primary_accounts[account_count]

        old_accounts = set(await self.registry.get_accounts())
        await self.registry.add_new_account(primary)
        new_accounts = await self.registry.get_accounts()

        await self.verify_seed_phrase()

        self.identities.ensure_labels_for(new_accounts)
        added = [a for a in new_accounts if a not in old_accounts]
        accounts_added_total.labels(keyring_type=primary.tag).inc(len(added))

        return await self._update(), added[0]

    async def add_new_account_for_keyring(
        self,
        keyring: BaseKeyring,
        account_count: Optional[int] = None,
    ) -> str:
        """
        Add an account to a given keyring, with the same retry rules
        as `add_new_account`.

        Raises:
            AccountOutOfSequence: account_count exceeds the live count
        """
        self._assert_unlocked()

        keyring_accounts = await keyring.get_accounts()

        if account_count is not None and len(keyring_accounts) != account_count:
            if account_count < 0 or account_count > len(keyring_accounts):
                raise AccountOutOfSequence("Account out of sequence")

            return normalize_address(keyring_accounts[account_count])

        old_accounts = set(await self.registry.get_accounts())
        await self.registry.add_new_account(keyring)
        new_accounts = await self.registry.get_accounts()

        if keyring.tag == KeyringType.HD.value:
            await self.verify_seed_phrase()

        self.identities.ensure_labels_for(new_accounts)
        added = [a for a in new_accounts if a not in old_accounts]
        accounts_added_total.labels(keyring_type=keyring.tag).inc(len(added))

        await self._update()
        return added[0]

    async def add_new_account_without_update(self) -> KeyringControllerState:
        """Add an account to the primary HD keyring, leaving identities alone."""
        self._assert_unlocked()

        primary = self._primary_keyring()
        await self.registry.add_new_account(primary)
        await self.verify_seed_phrase()
        accounts_added_total.labels(keyring_type=primary.tag).inc()

        return await self._update()

    async def import_account_with_strategy(
        self,
        strategy: Union[AccountImportStrategy, str],
        args: Sequence[Any],
    ) -> Tuple[KeyringControllerState, str]:
        """
        Import an account into a new simple keyring.

        Args:
            strategy: AccountImportStrategy.PRIVATE_KEY with args
                (private_key,) or AccountImportStrategy.JSON with args
                (wallet_json, password)

        Returns:
            Snapshot and the imported address

        Raises:
            UnknownImportStrategy: unsupported strategy
            InvalidPrivateKey: bad private key
            InvalidJsonWallet: wallet cannot be decrypted
            DuplicateAccount: account already exists
        """
        self._assert_unlocked()

        try:
            strategy = AccountImportStrategy(strategy)
        except ValueError as e:
            raise UnknownImportStrategy(f"Unexpected import strategy: '{strategy}'") from e

        if strategy == AccountImportStrategy.PRIVATE_KEY:
            private_key = private_key_from_hex(args[0] if args else "")
        else:
            wallet, password = args
            private_key = private_key_from_json(wallet, password)

        keyring = await self.registry.add_keyring(KeyringType.SIMPLE, [private_key])
        address = (await keyring.get_accounts())[0]

        self.identities.sync_to(await self.registry.get_accounts())
        accounts_imported_total.labels(strategy=strategy.value).inc()

        logger.info("account_imported", strategy=strategy.value, address=address)

        return await self._update(), address

    async def remove_account(self, address: str) -> KeyringControllerState:
        """
        Remove an account; its keyring goes too when left empty.

        Raises:
            AccountNotFound: no keyring lists the address
        """
        self._assert_unlocked()

        address = normalize_address(address)
        keyring = await self.registry.remove_account(address)
        self.identities.remove(address)
        accounts_removed_total.labels(keyring_type=keyring.tag).inc()

        logger.info("account_removed", address=address, keyring_type=keyring.tag)

        await self.event_bus.publish(AccountRemovedEvent(address))
        return await self._update()

    async def verify_seed_phrase(self) -> bytes:
        """
        Check that the primary mnemonic still derives the primary accounts.

        Returns:
            Mnemonic bytes

        Raises:
            NoHDKeyring: no HD keyring exists
            EmptyKeyring: the HD keyring has no accounts
            ImportedWrongAccountCount: a different number was derived
            ImportedDifferentAccounts: different addresses were derived
        """
        primary = self._primary_keyring()
        accounts = await primary.get_accounts()

        if not accounts:
            raise EmptyKeyring("Cannot verify an empty keyring.")

        try:
            test_keyring = await self.registry.new_keyring(
                KeyringType.HD,
                {
                    "mnemonic": primary.mnemonic,
                    "number_of_accounts": len(accounts),
                    "indexes": primary.indexes,
                    "hd_path": primary.hd_path,
                },
            )
        except InvalidMnemonic as e:
            track_seed_verification(success=False)
            raise ImportedDifferentAccounts("Seed phrase imported different accounts.") from e

        test_accounts = await test_keyring.get_accounts()

        if len(test_accounts) != len(accounts):
            track_seed_verification(success=False)
            raise ImportedWrongAccountCount("Seed phrase imported incorrect number of accounts.")

        for derived, expected in zip(test_accounts, accounts):
            if derived.lower() != expected.lower():
                track_seed_verification(success=False)
                logger.error("seed_verification_mismatch", expected=expected, derived=derived)
                raise ImportedDifferentAccounts("Seed phrase imported different accounts.")

        track_seed_verification(success=True)
        return primary.mnemonic

    # ============== EXPORT ==============

    async def export_seed_phrase(self, password: str) -> bytes:
        """Return the primary mnemonic after checking the password."""
        self._assert_unlocked()
        await self.verify_password(password)
        return self._primary_keyring().mnemonic

    async def export_account(self, password: str, address: str) -> str:
        """Return an account's private key after checking the password."""
        self._assert_unlocked()
        await self.verify_password(password)

        keyring = await self.registry.get_for_account(address)
        return await keyring.export_account(normalize_address(address))

    async def get_encryption_public_key(
        self,
        address: str,
        opts: Optional[Dict[str, Any]] = None,
    ) -> str:
        self._assert_unlocked()

        keyring = await self.registry.get_for_account(address)
        return await keyring.get_encryption_public_key(normalize_address(address), opts)

    # ============== SIGNING ==============

    async def _sign(
        self,
        kind: str,
        address: str,
        method: str,
        data: Any,
        opts: Optional[Dict[str, Any]] = None,
    ) -> str:
        self._assert_unlocked()

        keyring = await self.registry.get_for_account(address)
        address = normalize_address(address)
        track_signature(kind, keyring.tag)

        if keyring.tag == KeyringType.QR.value:
            async with self.qr.sign_request(opts) as qr_opts:
                return await getattr(keyring, method)(address, data, qr_opts)

        return await getattr(keyring, method)(address, data, opts)

    async def sign_message(self, msg_params: Dict[str, Any]) -> str:
        """
        eth_sign over a 32-byte hash.

        Args:
            msg_params: {"from": address, "data": hex hash}

        Raises:
            EmptyMessage: data is empty
        """
        if not msg_params.get("data"):
            raise EmptyMessage("Can't sign an empty message")

        return await self._sign("message", msg_params["from"], "sign_message", msg_params["data"])

    async def sign_personal_message(self, msg_params: Dict[str, Any]) -> str:
        """EIP-191 personal sign of msg_params["data"] by msg_params["from"]."""
        return await self._sign(
            "personal_message",
            msg_params["from"],
            "sign_personal_message",
            msg_params["data"],
        )

    async def sign_typed_message(self, msg_params: Dict[str, Any], version: str) -> str:
        """
        Sign typed data.

        V3 and V4 data given as a JSON string is parsed first; V1 data is
        passed through unchanged.

        Raises:
            UnrecognizedSignatureVersion: version not V1, V3 or V4
            SigningError: the keyring failed to sign
        """
        if version not in TYPED_DATA_VERSIONS:
            raise UnrecognizedSignatureVersion(
                f"Unexpected signTypedMessage version: '{version}'"
            )

        try:
            data = msg_params["data"]
            if version != "V1" and isinstance(data, str):
                data = json.loads(data)

            return await self._sign(
                f"typed_data_{version.lower()}",
                msg_params["from"],
                "sign_typed_data",
                data,
                {"version": version},
            )
        except VaultkeeperError:
            raise
        except Exception as e:
            logger.error("sign_typed_message_failed", version=version, error=str(e))
            raise SigningError(f"Keyring Controller signTypedMessage: {e}") from e

    async def sign_transaction(
        self,
        transaction: Dict[str, Any],
        from_address: str,
        opts: Optional[Dict[str, Any]] = None,
    ) -> str:
        """
        Sign a transaction.

        Returns:
            Raw signed transaction (hex)
        """
        return await self._sign("transaction", from_address, "sign_transaction", transaction, opts)

    # ============== QR HARDWARE ==============

    async def _with_qr(self, operation, *args):
        self._assert_unlocked()

        created = self.qr.get_keyring() is None
        result = await operation(*args)
        if created:
            await self._update()
        return result

    async def get_or_add_qr_keyring(self) -> BaseKeyring:
        """
        Raises:
            MissingQRKeyringBuilder: no QR builder registered
        """
        return await self._with_qr(self.qr.get_or_add_keyring)

    async def restore_qr_keyring(self, serialized: Any) -> KeyringControllerState:
        self._assert_unlocked()

        await self.qr.restore_keyring(serialized)
        return await self._update()

    async def reset_qr_keyring_state(self) -> None:
        self.qr.reset_state()

    async def get_qr_keyring_state(self) -> Dict[str, Any]:
        return await self._with_qr(self.qr.get_state)

    async def submit_qr_crypto_hd_key(self, crypto_hd_key: str) -> None:
        await self._with_qr(self.qr.submit_crypto_hd_key, crypto_hd_key)

    async def submit_qr_crypto_account(self, crypto_account: str) -> None:
        await self._with_qr(self.qr.submit_crypto_account, crypto_account)

    async def submit_qr_signature(self, request_id: str, signature: str) -> None:
        await self._with_qr(self.qr.submit_signature, request_id, signature)

    async def cancel_qr_sign_request(self) -> None:
        self.qr.cancel_sign_request()

    async def cancel_qr_synchronization(self) -> None:
        self.qr.cancel_sync()

    async def connect_qr_hardware(self, page: int) -> List[Dict[str, Any]]:
        """
        Page through device accounts.

        Raises:
            QRHardwareError: the device failed
        """
        return await self._with_qr(self.qr.connect, page)

    async def unlock_qr_hardware_wallet_account(self, index: int) -> KeyringControllerState:
        self._assert_unlocked()

        await self.qr.unlock_account(index)
        return await self._update()

    async def forget_qr_device(self) -> KeyringControllerState:
        self._assert_unlocked()

        await self.qr.forget_device()
        return await self._update()


__all__ = ["KeyringController", "TYPED_DATA_VERSIONS"]
