"""
Airgapped (QR) hardware keyring contract.

The device protocol (QR payload encoding, account recovery from the
device key) belongs to the device implementation. The controller drives
any keyring that implements this interface.
"""

from abc import abstractmethod
from typing import Any, Dict, List

from vaultkeeper.keyrings.base import BaseKeyring, KeyringType


class AirgappedKeyring(BaseKeyring):
    """
    Keyring backed by an airgapped signer reached through QR codes.

    Signing methods receive `opts["request_id"]`, the id the controller
    uses to track the outstanding device round trip. Implementations
    resolve it when `submit_signature` is called with the same id.
    """

    type = KeyringType.QR

    @abstractmethod
    def get_name(self) -> str:
        """Human-readable device name."""
        pass

    @abstractmethod
    def set_account_to_unlock(self, index: int) -> None:
        """Select the derivation index the next `add_accounts` call unlocks."""
        pass

    @abstractmethod
    async def get_first_page(self) -> List[Dict[str, Any]]:
        """Return the first page of {"address", "index"} entries."""
        pass

    @abstractmethod
    async def get_next_page(self) -> List[Dict[str, Any]]:
        pass

    @abstractmethod
    async def get_previous_page(self) -> List[Dict[str, Any]]:
        pass

    @abstractmethod
    def submit_crypto_hd_key(self, crypto_hd_key: str) -> None:
        """Deliver the device's extended public key payload."""
        pass

    @abstractmethod
    def submit_crypto_account(self, crypto_account: str) -> None:
        """Deliver the device's account payload."""
        pass

    @abstractmethod
    def submit_signature(self, request_id: str, signature: str) -> None:
        """Deliver a signature scanned from the device."""
        pass

    @abstractmethod
    def cancel_sign_request(self) -> None:
        pass

    @abstractmethod
    def cancel_sync(self) -> None:
        pass

    @abstractmethod
    def reset_store(self) -> None:
        """Clear pending sync and sign requests."""
        pass

    @abstractmethod
    def get_mem_store(self) -> Dict[str, Any]:
        """Return the device's transient state (sync and sign requests)."""
        pass

    @abstractmethod
    def forget_device(self) -> None:
        """Drop the pairing and every account of the device."""
        pass


__all__ = ["AirgappedKeyring"]
