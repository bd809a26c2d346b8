"""
Test configuration and fixtures.
"""

import asyncio
from typing import Any, Dict, List, Optional

import pytest
import pytest_asyncio
from eth_account import Account

from vaultkeeper.controller import KeyringController
from vaultkeeper.keyrings.base import normalize_address
from vaultkeeper.keyrings.qr import AirgappedKeyring
from vaultkeeper.vault.encryptor import Encryptor


PASSWORD = "password123"

TEST_MNEMONIC = "test test test test test test test test test test test junk"

# First accounts of TEST_MNEMONIC on m/44'/60'/0'/0
TEST_ACCOUNTS = [
    "0xf39fd6e51aad88f6f4ce6ab8827279cfffb92266",
    "0x70997970c51812dc3a010c7d01b50e0d17dc79c8",
    "0x3c44cdddb6a900fa2b585dd299e03d12fa4293bc",
]


# ============== COLLABORATORS ==============

class InMemoryIdentities:
    """Identity registry keeping labels in a dict."""

    def __init__(self):
        self.identities: Dict[str, str] = {}
        self.selected: Optional[str] = None
        self.selected_history: List[str] = []

    def remove(self, address: str) -> None:
        self.identities.pop(address, None)

    def sync_to(self, addresses: List[str]) -> None:
        self.identities = {
            address: self.identities.get(address, f"Account {position + 1}")
            for position, address in enumerate(addresses)
        }

    def ensure_labels_for(self, addresses: List[str]) -> None:
        for address in addresses:
            if address not in self.identities:
                self.identities[address] = f"Account {len(self.identities) + 1}"

    def set_selected(self, address: str) -> None:
        self.selected = address
        self.selected_history.append(address)

    def set_label(self, address: str, label: str) -> None:
        self.identities[address] = label


def device_account(index: int):
    """Deterministic account the fake device exposes at an index."""
    return Account.from_key((index + 1).to_bytes(32, "big"))


class FakeQRKeyring(AirgappedKeyring):
    """
    In-memory airgapped keyring.

    Pages need a submitted crypto HD key. Signing waits until
    `submit_signature` is called with the request id from the options.
    """

    PAGE_SIZE = 5

    def __init__(self):
        self.name = "Keystone"
        self.paired = False
        self.fail_pages = False
        self.page = 0
        self.unlocked: List[int] = []
        self.account_to_unlock = 0
        self.crypto_accounts: List[str] = []
        self.sign_requests: Dict[str, asyncio.Future] = {}
        self.sync_cancelled = False
        self.store_resets = 0

    async def serialize(self) -> Dict[str, Any]:
        return {"name": self.name, "paired": self.paired, "accounts": list(self.unlocked)}

    async def deserialize(self, data: Optional[Dict[str, Any]] = None) -> None:
        if data:
            self.name = data.get("name", self.name)
            self.paired = data.get("paired", False)
            self.unlocked = list(data.get("accounts", []))

    async def get_accounts(self) -> List[str]:
        return [normalize_address(device_account(index).address) for index in self.unlocked]

    async def add_accounts(self, count: int = 1) -> List[str]:
        added = []
        for index in range(self.account_to_unlock, self.account_to_unlock + count):
            if index not in self.unlocked:
                self.unlocked.append(index)
                added.append(normalize_address(device_account(index).address))
        return added

    async def remove_account(self, address: str) -> None:
        self.unlocked = [
            index for index in self.unlocked
            if normalize_address(device_account(index).address) != normalize_address(address)
        ]

    def get_name(self) -> str:
        return self.name

    def set_account_to_unlock(self, index: int) -> None:
        self.account_to_unlock = index

    def _page(self) -> List[Dict[str, Any]]:
        if self.fail_pages:
            raise RuntimeError("device disconnected")
        if not self.paired:
            raise RuntimeError("device not paired")
        start = self.page * self.PAGE_SIZE
        return [
            {"address": device_account(index).address, "index": index}
            for index in range(start, start + self.PAGE_SIZE)
        ]

    async def get_first_page(self) -> List[Dict[str, Any]]:
        self.page = 0
        return self._page()

    async def get_next_page(self) -> List[Dict[str, Any]]:
        self.page += 1
        return self._page()

    async def get_previous_page(self) -> List[Dict[str, Any]]:
        self.page = max(self.page - 1, 0)
        return self._page()

    def submit_crypto_hd_key(self, crypto_hd_key: str) -> None:
        self.paired = True

    def submit_crypto_account(self, crypto_account: str) -> None:
        self.crypto_accounts.append(crypto_account)
        self.paired = True

    async def _wait_for_signature(self, opts: Optional[Dict[str, Any]]) -> str:
        request_id = opts["request_id"]
        future = asyncio.get_running_loop().create_future()
        self.sign_requests[request_id] = future
        try:
            return await future
        finally:
            self.sign_requests.pop(request_id, None)

    async def sign_transaction(self, address, transaction, opts=None) -> str:
        return await self._wait_for_signature(opts)

    async def sign_personal_message(self, address, data, opts=None) -> str:
        return await self._wait_for_signature(opts)

    def submit_signature(self, request_id: str, signature: str) -> None:
        future = self.sign_requests.get(request_id)
        if future is not None and not future.done():
            future.set_result(signature)

    def cancel_sign_request(self) -> None:
        for future in self.sign_requests.values():
            if not future.done():
                future.set_exception(RuntimeError("Sign request cancelled"))

    def cancel_sync(self) -> None:
        self.sync_cancelled = True

    def reset_store(self) -> None:
        self.store_resets += 1
        self.cancel_sign_request()

    def get_mem_store(self) -> Dict[str, Any]:
        return {
            "sync": {"paired": self.paired},
            "sign": {"requests": sorted(self.sign_requests)},
        }

    def forget_device(self) -> None:
        self.paired = False
        self.unlocked = []
        self.page = 0


# ============== FIXTURES ==============

@pytest.fixture
def encryptor():
    """Encryptor with few PBKDF2 rounds to keep tests fast."""
    return Encryptor(iterations=1_000)


@pytest.fixture
def identities():
    return InMemoryIdentities()


@pytest.fixture
def controller(identities, encryptor):
    """Locked controller without a vault."""
    return KeyringController(
        identities,
        encryptor=encryptor,
        keyring_builders=[FakeQRKeyring],
    )


@pytest_asyncio.fixture
async def unlocked_controller(controller):
    """Controller restored from TEST_MNEMONIC, one HD account."""
    await controller.create_new_vault_and_restore(PASSWORD, TEST_MNEMONIC)
    return controller


@pytest.fixture
def sample_transaction():
    """Sample EIP-1559 transaction."""
    return {
        "to": "0x70997970C51812dc3A010C7d01b50e0d17dc79C8",
        "value": 1_000_000_000_000_000,
        "gas": 21_000,
        "maxFeePerGas": 2_000_000_000,
        "maxPriorityFeePerGas": 1_000_000_000,
        "nonce": 0,
        "chainId": 1,
        "type": 2,
    }


@pytest.fixture
def typed_data_v1():
    """Legacy typed data."""
    return [
        {"type": "string", "name": "message", "value": "Hi, Alice!"},
        {"type": "uint32", "name": "value", "value": 1337},
    ]


@pytest.fixture
def typed_data_v4():
    """EIP-712 typed data."""
    return {
        "types": {
            "EIP712Domain": [
                {"name": "name", "type": "string"},
                {"name": "version", "type": "string"},
                {"name": "chainId", "type": "uint256"},
                {"name": "verifyingContract", "type": "address"},
            ],
            "Person": [
                {"name": "name", "type": "string"},
                {"name": "wallet", "type": "address"},
            ],
            "Mail": [
                {"name": "from", "type": "Person"},
                {"name": "to", "type": "Person"},
                {"name": "contents", "type": "string"},
            ],
        },
        "primaryType": "Mail",
        "domain": {
            "name": "Ether Mail",
            "version": "1",
            "chainId": 1,
            "verifyingContract": "0xCcCCccccCCCCcCCCCCCcCcCccCcCCCcCcccccccC",
        },
        "message": {
            "from": {"name": "Cow", "wallet": "0xCD2a3d9F938E13CD947Ec05AbC7FE734Df8DD826"},
            "to": {"name": "Bob", "wallet": "0xbBbBBBBbbBBBbbbBbbBbbbbBBbBbbbbBbBbbBBbB"},
            "contents": "Hello, Bob!",
        },
    }
