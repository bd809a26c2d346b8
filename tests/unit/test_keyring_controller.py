"""
Test the keyring controller.
"""

import asyncio
import json
from unittest.mock import AsyncMock, patch

import pytest
from eth_account import Account
from eth_account.messages import encode_defunct, encode_typed_data
from prometheus_client import REGISTRY

from vaultkeeper.controller import KeyringController
from vaultkeeper.errors import (
    AccountNotFound,
    AccountOutOfSequence,
    DecryptionFailed,
    DuplicateAccount,
    EmptyKeyring,
    EmptyMessage,
    ImportedDifferentAccounts,
    ImportedWrongAccountCount,
    InvalidJsonWallet,
    InvalidMnemonic,
    InvalidPassword,
    InvalidPrivateKey,
    MissingCredentials,
    NoHDKeyring,
    SigningError,
    UnknownImportStrategy,
    UnrecognizedSignatureVersion,
    VaultLocked,
    VaultNotFound,
)
from vaultkeeper.keyrings.base import KeyringType
from vaultkeeper.keyrings.hd import HDKeyring
from vaultkeeper.keyrings.importers import AccountImportStrategy
from vaultkeeper.messaging.events import EventType

from conftest import PASSWORD, TEST_ACCOUNTS, TEST_MNEMONIC

PRIVATE_KEY = "0x" + "aa" * 32
IMPORTED_ADDRESS = Account.from_key(PRIVATE_KEY).address.lower()

OTHER_MNEMONIC = (
    "abandon abandon abandon abandon abandon abandon "
    "abandon abandon abandon abandon abandon about"
)


def capture(controller, event_type):
    """Collect events of a type published by the controller."""
    events = []
    controller.event_bus.subscribe(event_type, events.append)
    return events


def primary(controller) -> HDKeyring:
    return controller.get_keyrings_by_type(KeyringType.HD)[0]


@pytest.mark.asyncio
class TestVaultLifecycle:
    """Test vault creation, unlock and lock."""

    async def test_create_new_vault_and_keychain(self, controller, identities):
        state = await controller.create_new_vault_and_keychain(PASSWORD)

        assert state.is_unlocked is True
        assert len(state.keyrings) == 1
        assert state.keyrings[0].type == "HD Key Tree"
        assert len(state.keyrings[0].accounts) == 1
        assert list(identities.identities) == state.keyrings[0].accounts
        assert controller.vault is not None

    async def test_create_new_vault_and_keychain_is_idempotent(self, controller):
        first = await controller.create_new_vault_and_keychain(PASSWORD)
        vault = controller.vault

        second = await controller.create_new_vault_and_keychain(PASSWORD)

        assert second == first
        assert controller.vault == vault

    async def test_concurrent_keychain_creation(self, controller):
        await asyncio.gather(
            controller.create_new_vault_and_keychain(PASSWORD),
            controller.create_new_vault_and_keychain(PASSWORD),
        )

        assert len(controller.state.keyrings) == 1
        assert len(await controller.get_accounts()) == 1

    async def test_keychain_rejects_non_string_password(self, controller):
        with pytest.raises(InvalidPassword):
            await controller.create_new_vault_and_keychain(1234)

        assert controller.guard.locked is False
        state = await controller.create_new_vault_and_keychain(PASSWORD)
        assert state.is_unlocked is True

    async def test_create_new_vault_and_restore(self, controller):
        state = await controller.create_new_vault_and_restore(PASSWORD, TEST_MNEMONIC)

        assert state.is_unlocked is True
        assert [k.accounts for k in state.keyrings] == [[TEST_ACCOUNTS[0]]]

    async def test_restore_accepts_bytes(self, controller):
        await controller.create_new_vault_and_restore(PASSWORD, TEST_MNEMONIC.encode('utf-8'))

        assert await controller.get_accounts() == [TEST_ACCOUNTS[0]]

    @pytest.mark.parametrize("password", ["", None, 42])
    async def test_restore_requires_password(self, controller, password):
        with pytest.raises(InvalidPassword):
            await controller.create_new_vault_and_restore(password, TEST_MNEMONIC)

        assert controller.guard.locked is False
        assert controller.is_unlocked() is False

    async def test_restore_wipes_existing_keyrings(self, unlocked_controller):
        await unlocked_controller.import_account_with_strategy(
            AccountImportStrategy.PRIVATE_KEY, [PRIVATE_KEY]
        )

        state = await unlocked_controller.create_new_vault_and_restore(PASSWORD, OTHER_MNEMONIC)

        assert len(state.keyrings) == 1
        assert state.keyrings[0].type == "HD Key Tree"
        assert IMPORTED_ADDRESS not in await unlocked_controller.get_accounts()

    async def test_lock_and_unlock(self, unlocked_controller, identities):
        await unlocked_controller.add_new_account()
        vault = unlocked_controller.vault
        locks = capture(unlocked_controller, EventType.LOCK)
        unlocks = capture(unlocked_controller, EventType.UNLOCK)

        state = await unlocked_controller.set_locked()

        assert state.is_unlocked is False
        assert state.keyrings == []
        assert unlocked_controller.vault == vault
        assert len(locks) == 1

        state = await unlocked_controller.submit_password(PASSWORD)

        assert state.is_unlocked is True
        assert state.keyrings[0].accounts == TEST_ACCOUNTS[:2]
        assert list(identities.identities) == TEST_ACCOUNTS[:2]
        assert len(unlocks) == 1

    async def test_unlock_existing_vault(self, unlocked_controller, identities, encryptor):
        reopened = KeyringController(identities, encryptor=encryptor, vault=unlocked_controller.vault)

        assert reopened.is_unlocked() is False
        state = await reopened.submit_password(PASSWORD)

        assert state.keyrings[0].accounts == [TEST_ACCOUNTS[0]]

    async def test_wrong_password(self, unlocked_controller):
        await unlocked_controller.set_locked()

        with pytest.raises(DecryptionFailed):
            await unlocked_controller.submit_password("wrong password")

        assert unlocked_controller.is_unlocked() is False

    async def test_unlock_without_vault(self, controller):
        with pytest.raises(VaultNotFound):
            await controller.submit_password(PASSWORD)

    async def test_submit_encryption_key(self, identities, encryptor):
        controller = KeyringController(identities, encryptor=encryptor, cache_encryption_key=True)
        await controller.create_new_vault_and_restore(PASSWORD, TEST_MNEMONIC)
        key, salt = controller.encryption_credentials

        await controller.set_locked()
        assert controller.encryption_credentials is None

        state = await controller.submit_encryption_key(key, salt)

        assert state.is_unlocked is True
        assert await controller.get_accounts() == [TEST_ACCOUNTS[0]]

        # Persisting after a key unlock keeps the vault openable by password
        await controller.add_new_account()
        await controller.set_locked()
        state = await controller.submit_password(PASSWORD)
        assert state.keyrings[0].accounts == TEST_ACCOUNTS[:2]

    async def test_submit_encryption_key_with_wrong_key(self, identities, encryptor):
        controller = KeyringController(identities, encryptor=encryptor, cache_encryption_key=True)
        await controller.create_new_vault_and_restore(PASSWORD, TEST_MNEMONIC)
        _, salt = controller.encryption_credentials
        await controller.set_locked()

        with pytest.raises(DecryptionFailed):
            await controller.submit_encryption_key("AA" * 21 + "A=", salt)

    async def test_credentials_not_cached_by_default(self, unlocked_controller):
        assert unlocked_controller.encryption_credentials is None

    async def test_verify_password(self, unlocked_controller):
        await unlocked_controller.verify_password(PASSWORD)

        with pytest.raises(DecryptionFailed):
            await unlocked_controller.verify_password("wrong password")

    async def test_unloadable_vault_stays_locked(self, identities, encryptor):
        vault = encryptor.encrypt(PASSWORD, [
            {"type": "Simple Key Pair", "data": [PRIVATE_KEY]},
            {"type": "HD Key Tree", "data": {"mnemonic": "not a real recovery phrase"}},
        ])
        controller = KeyringController(identities, encryptor=encryptor, vault=vault)

        with pytest.raises(InvalidMnemonic):
            await controller.submit_password(PASSWORD)

        assert controller.is_unlocked() is False
        assert await controller.get_accounts() == []
        with pytest.raises(MissingCredentials):
            await controller.registry.persist_all()

    async def test_locked_operations_fail(self, controller):
        with pytest.raises(VaultLocked):
            await controller.add_new_account()

        with pytest.raises(VaultLocked):
            await controller.import_account_with_strategy(
                AccountImportStrategy.PRIVATE_KEY, [PRIVATE_KEY]
            )

        with pytest.raises(VaultLocked):
            await controller.sign_personal_message({"from": TEST_ACCOUNTS[0], "data": "hi"})


@pytest.mark.asyncio
class TestAccounts:
    """Test account addition, import and removal."""

    async def test_add_new_account(self, unlocked_controller, identities):
        state, address = await unlocked_controller.add_new_account()

        assert address == TEST_ACCOUNTS[1]
        assert state.keyrings[0].accounts == TEST_ACCOUNTS[:2]
        assert address in identities.identities

    async def test_add_new_account_retry_returns_same_address(self, unlocked_controller):
        _, first = await unlocked_controller.add_new_account(1)
        state, second = await unlocked_controller.add_new_account(1)

        assert first == second == TEST_ACCOUNTS[1]
        assert state.keyrings[0].accounts == TEST_ACCOUNTS[:2]

    async def test_add_new_account_out_of_sequence(self, unlocked_controller):
        vault = unlocked_controller.vault
        state = unlocked_controller.state

        with pytest.raises(AccountOutOfSequence):
            await unlocked_controller.add_new_account(5)

        assert await unlocked_controller.get_accounts() == [TEST_ACCOUNTS[0]]
        assert unlocked_controller.vault == vault
        assert unlocked_controller.state == state

    async def test_add_new_account_negative_count(self, unlocked_controller):
        await unlocked_controller.add_new_account()

        with pytest.raises(AccountOutOfSequence):
            await unlocked_controller.add_new_account(-1)

        with pytest.raises(AccountOutOfSequence):
            await unlocked_controller.add_new_account_for_keyring(primary(unlocked_controller), -1)

        assert await unlocked_controller.get_accounts() == TEST_ACCOUNTS[:2]

    async def test_remove_middle_hd_account(self, unlocked_controller):
        await unlocked_controller.add_new_account()
        await unlocked_controller.add_new_account()

        await unlocked_controller.remove_account(TEST_ACCOUNTS[1])

        assert await unlocked_controller.verify_seed_phrase() == TEST_MNEMONIC.encode('utf-8')

        _, address = await unlocked_controller.add_new_account()
        expected = [TEST_ACCOUNTS[0], TEST_ACCOUNTS[2], address]
        assert address not in TEST_ACCOUNTS
        assert await unlocked_controller.get_accounts() == expected

        await unlocked_controller.set_locked()
        await unlocked_controller.submit_password(PASSWORD)

        assert await unlocked_controller.get_accounts() == expected

    async def test_add_new_account_without_hd_keyring(self, unlocked_controller):
        await unlocked_controller.remove_account(TEST_ACCOUNTS[0])

        with pytest.raises(NoHDKeyring):
            await unlocked_controller.add_new_account()

        with pytest.raises(NoHDKeyring):
            await unlocked_controller.verify_seed_phrase()

    async def test_add_new_account_for_keyring(self, unlocked_controller):
        keyring = primary(unlocked_controller)

        first = await unlocked_controller.add_new_account_for_keyring(keyring, 1)
        second = await unlocked_controller.add_new_account_for_keyring(keyring, 1)

        assert first == second == TEST_ACCOUNTS[1]
        assert await unlocked_controller.get_accounts() == TEST_ACCOUNTS[:2]

        with pytest.raises(AccountOutOfSequence):
            await unlocked_controller.add_new_account_for_keyring(keyring, 3)

    async def test_add_new_account_without_update(self, unlocked_controller, identities):
        state = await unlocked_controller.add_new_account_without_update()

        assert state.keyrings[0].accounts == TEST_ACCOUNTS[:2]
        assert TEST_ACCOUNTS[1] not in identities.identities

    async def test_import_private_key(self, unlocked_controller, identities):
        state, address = await unlocked_controller.import_account_with_strategy(
            AccountImportStrategy.PRIVATE_KEY, [PRIVATE_KEY]
        )

        assert address == IMPORTED_ADDRESS
        assert state.keyrings[-1].type == "Simple Key Pair"
        assert state.keyrings[-1].accounts == [IMPORTED_ADDRESS]
        assert IMPORTED_ADDRESS in identities.identities
        assert await unlocked_controller.get_account_keyring_type(address) == "Simple Key Pair"

    async def test_import_strategy_by_name(self, unlocked_controller):
        _, address = await unlocked_controller.import_account_with_strategy("privateKey", ["aa" * 32])

        assert address == IMPORTED_ADDRESS

    @pytest.mark.parametrize("value", ["", "0x" + "aa" * 31, "0x" + "zz" * 32])
    async def test_import_invalid_private_key(self, unlocked_controller, value):
        vault = unlocked_controller.vault
        state = unlocked_controller.state

        with pytest.raises(InvalidPrivateKey):
            await unlocked_controller.import_account_with_strategy(
                AccountImportStrategy.PRIVATE_KEY, [value]
            )

        assert unlocked_controller.vault == vault
        assert unlocked_controller.state == state

    async def test_import_duplicate(self, unlocked_controller):
        await unlocked_controller.import_account_with_strategy(
            AccountImportStrategy.PRIVATE_KEY, [PRIVATE_KEY]
        )

        with pytest.raises(DuplicateAccount):
            await unlocked_controller.import_account_with_strategy(
                AccountImportStrategy.PRIVATE_KEY, [PRIVATE_KEY]
            )

    async def test_import_json(self, unlocked_controller):
        wallet = Account.encrypt(PRIVATE_KEY, "wallet password", kdf="pbkdf2", iterations=2)

        _, address = await unlocked_controller.import_account_with_strategy(
            AccountImportStrategy.JSON, [json.dumps(wallet), "wallet password"]
        )

        assert address == IMPORTED_ADDRESS

        with pytest.raises(InvalidJsonWallet):
            await unlocked_controller.import_account_with_strategy(
                AccountImportStrategy.JSON, [wallet, "wrong password"]
            )

    async def test_import_unknown_strategy(self, unlocked_controller):
        with pytest.raises(UnknownImportStrategy):
            await unlocked_controller.import_account_with_strategy("mnemonic", [TEST_MNEMONIC])

    async def test_remove_imported_account(self, unlocked_controller, identities):
        await unlocked_controller.import_account_with_strategy(
            AccountImportStrategy.PRIVATE_KEY, [PRIVATE_KEY]
        )
        removed = capture(unlocked_controller, EventType.ACCOUNT_REMOVED)

        state = await unlocked_controller.remove_account(IMPORTED_ADDRESS.upper().replace("0X", "0x"))

        assert [k.type for k in state.keyrings] == ["HD Key Tree"]
        assert [event.data["address"] for event in removed] == [IMPORTED_ADDRESS]
        assert IMPORTED_ADDRESS not in identities.identities

    async def test_remove_unknown_account(self, unlocked_controller):
        with pytest.raises(AccountNotFound):
            await unlocked_controller.remove_account("0x" + "00" * 20)

    async def test_add_new_keyring(self, unlocked_controller):
        keyring = await unlocked_controller.add_new_keyring(KeyringType.SIMPLE, [PRIVATE_KEY])

        assert await keyring.get_accounts() == [IMPORTED_ADDRESS]
        assert await unlocked_controller.get_keyring_for_account(IMPORTED_ADDRESS) is keyring
        assert unlocked_controller.state.keyrings[-1].accounts == [IMPORTED_ADDRESS]

    async def test_persist_all_keyrings(self, unlocked_controller):
        vault = unlocked_controller.vault

        assert await unlocked_controller.persist_all_keyrings() is True
        assert unlocked_controller.vault != vault


@pytest.mark.asyncio
class TestSeedPhrase:
    """Test seed phrase verification and export."""

    async def test_verify_after_additions(self, unlocked_controller):
        await unlocked_controller.add_new_account()
        await unlocked_controller.add_new_account()

        assert await unlocked_controller.verify_seed_phrase() == TEST_MNEMONIC.encode('utf-8')
        assert await unlocked_controller.get_accounts() == TEST_ACCOUNTS

    async def test_truncated_mnemonic_detected(self, unlocked_controller):
        await unlocked_controller.add_new_account()
        keyring = primary(unlocked_controller)
        keyring.mnemonic = " ".join(TEST_MNEMONIC.split()[:-1]).encode('utf-8')

        with pytest.raises((ImportedDifferentAccounts, ImportedWrongAccountCount)):
            await unlocked_controller.verify_seed_phrase()

    async def test_different_mnemonic_detected(self, unlocked_controller):
        primary(unlocked_controller).mnemonic = OTHER_MNEMONIC.encode('utf-8')

        with pytest.raises(ImportedDifferentAccounts):
            await unlocked_controller.verify_seed_phrase()

    async def test_empty_keyring(self, unlocked_controller):
        await primary(unlocked_controller).remove_account(TEST_ACCOUNTS[0])

        with pytest.raises(EmptyKeyring):
            await unlocked_controller.verify_seed_phrase()

    async def test_verification_metric(self, unlocked_controller):
        labels = {"result": "success"}
        before = REGISTRY.get_sample_value("vaultkeeper_seed_verifications_total", labels) or 0

        await unlocked_controller.verify_seed_phrase()

        assert REGISTRY.get_sample_value("vaultkeeper_seed_verifications_total", labels) == before + 1

    async def test_export_seed_phrase(self, unlocked_controller):
        assert await unlocked_controller.export_seed_phrase(PASSWORD) == TEST_MNEMONIC.encode('utf-8')

        with pytest.raises(DecryptionFailed):
            await unlocked_controller.export_seed_phrase("wrong password")

    async def test_export_account(self, unlocked_controller):
        exported = await unlocked_controller.export_account(PASSWORD, TEST_ACCOUNTS[0])

        assert Account.from_key(exported).address.lower() == TEST_ACCOUNTS[0]

        with pytest.raises(DecryptionFailed):
            await unlocked_controller.export_account("wrong password", TEST_ACCOUNTS[0])


@pytest.mark.asyncio
class TestSigning:
    """Test signing dispatch."""

    async def test_sign_message(self, unlocked_controller):
        signature = await unlocked_controller.sign_message(
            {"from": TEST_ACCOUNTS[0], "data": "0x" + "11" * 32}
        )

        assert len(signature) == 132

    async def test_sign_empty_message(self, unlocked_controller):
        with pytest.raises(EmptyMessage):
            await unlocked_controller.sign_message({"from": TEST_ACCOUNTS[0], "data": ""})

    async def test_sign_personal_message(self, unlocked_controller):
        signature = await unlocked_controller.sign_personal_message(
            {"from": TEST_ACCOUNTS[0], "data": "hello"}
        )

        recovered = Account.recover_message(encode_defunct(text="hello"), signature=signature)
        assert recovered.lower() == TEST_ACCOUNTS[0]

    @pytest.mark.parametrize("version", ["V2", "v4", "", None])
    async def test_sign_typed_message_rejects_version(self, unlocked_controller, version):
        with pytest.raises(UnrecognizedSignatureVersion):
            await unlocked_controller.sign_typed_message(
                {"from": TEST_ACCOUNTS[0], "data": "{}"}, version
            )

    @pytest.mark.parametrize("version", ["V3", "V4"])
    async def test_sign_typed_message_parses_json(self, unlocked_controller, typed_data_v4, version):
        signature = await unlocked_controller.sign_typed_message(
            {"from": TEST_ACCOUNTS[0], "data": json.dumps(typed_data_v4)}, version
        )

        recovered = Account.recover_message(
            encode_typed_data(full_message=typed_data_v4), signature=signature
        )
        assert recovered.lower() == TEST_ACCOUNTS[0]

    async def test_sign_typed_message_dispatch(self, unlocked_controller, typed_data_v1, typed_data_v4):
        with patch.object(HDKeyring, "sign_typed_data", AsyncMock(return_value="0xsigned")) as signer:
            await unlocked_controller.sign_typed_message(
                {"from": TEST_ACCOUNTS[0], "data": typed_data_v1}, "V1"
            )
            await unlocked_controller.sign_typed_message(
                {"from": TEST_ACCOUNTS[0], "data": json.dumps(typed_data_v4)}, "V4"
            )

        v1_call, v4_call = signer.await_args_list
        assert v1_call.args == (TEST_ACCOUNTS[0], typed_data_v1, {"version": "V1"})
        assert v4_call.args == (TEST_ACCOUNTS[0], typed_data_v4, {"version": "V4"})

    async def test_sign_typed_message_wraps_failures(self, unlocked_controller):
        with pytest.raises(SigningError, match="signTypedMessage"):
            await unlocked_controller.sign_typed_message(
                {"from": TEST_ACCOUNTS[0], "data": "{not json"}, "V4"
            )

    async def test_sign_transaction(self, unlocked_controller, sample_transaction):
        raw = await unlocked_controller.sign_transaction(sample_transaction, TEST_ACCOUNTS[0])

        assert Account.recover_transaction(raw).lower() == TEST_ACCOUNTS[0]

    async def test_sign_with_unknown_account(self, unlocked_controller, sample_transaction):
        with pytest.raises(AccountNotFound):
            await unlocked_controller.sign_transaction(sample_transaction, "0x" + "00" * 20)

    async def test_get_encryption_public_key(self, unlocked_controller):
        public_key = await unlocked_controller.get_encryption_public_key(TEST_ACCOUNTS[0])

        assert isinstance(public_key, str)
        assert public_key == await unlocked_controller.get_encryption_public_key(
            TEST_ACCOUNTS[0].upper().replace("0X", "0x")
        )


@pytest.mark.asyncio
class TestStateSnapshot:
    """Test the published snapshot."""

    async def test_snapshot_has_no_secrets(self, identities, encryptor):
        controller = KeyringController(identities, encryptor=encryptor, cache_encryption_key=True)
        await controller.create_new_vault_and_restore(PASSWORD, TEST_MNEMONIC)
        await controller.import_account_with_strategy(AccountImportStrategy.PRIVATE_KEY, [PRIVATE_KEY])

        snapshot = controller.state.to_dict()
        rendered = json.dumps(snapshot)
        key, salt = controller.encryption_credentials

        assert set(snapshot) == {"is_unlocked", "keyrings"}
        assert all(set(keyring) == {"type", "accounts"} for keyring in snapshot["keyrings"])
        for secret in ("test junk", controller.vault, key, salt, "aa" * 32):
            assert secret not in rendered

    async def test_state_changed_published_after_commit(self, unlocked_controller):
        seen = []

        async def on_state_changed(event):
            seen.append((event.data, await unlocked_controller.get_accounts()))

        unlocked_controller.event_bus.subscribe(EventType.STATE_CHANGED, on_state_changed)

        await unlocked_controller.add_new_account()

        data, live_accounts = seen[-1]
        assert data["state"]["keyrings"][0]["accounts"] == live_accounts == TEST_ACCOUNTS[:2]
        assert data["patches"] == [{
            "op": "replace",
            "path": "/keyrings/0",
            "value": {"type": "HD Key Tree", "accounts": TEST_ACCOUNTS[:2]},
        }]

    async def test_snapshot_matches_live_counts(self, unlocked_controller):
        await unlocked_controller.add_new_account()
        await unlocked_controller.import_account_with_strategy(
            AccountImportStrategy.PRIVATE_KEY, [PRIVATE_KEY]
        )

        for record, keyring in zip(unlocked_controller.state.keyrings, unlocked_controller.registry.keyrings):
            assert record.accounts == await keyring.get_accounts()
