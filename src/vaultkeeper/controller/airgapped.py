"""
Airgapped (QR) hardware sync state machine.

Tracks the transient session with the device:

    ABSENT -> IDLE -> AWAITING_DEVICE_KEY -> IDLE
           -> AWAITING_SIGNATURE(request_id) -> IDLE

The session is never persisted.
"""

from contextlib import asynccontextmanager
from dataclasses import dataclass
from enum import Enum
from typing import Any, AsyncIterator, Dict, List, Optional
from uuid import uuid4

import structlog

from vaultkeeper.config import config
from vaultkeeper.controller.identities import IdentityRegistry
from vaultkeeper.controller.registry import KeyringRegistry
from vaultkeeper.errors import MissingQRKeyringBuilder, QRHardwareError
from vaultkeeper.keyrings.base import KeyringType, normalize_address
from vaultkeeper.keyrings.qr import AirgappedKeyring
from vaultkeeper.monitoring.metrics import accounts_added_total

logger = structlog.get_logger()


class AirgappedState(str, Enum):
    """Airgapped session states."""
    ABSENT = "absent"
    IDLE = "idle"
    AWAITING_DEVICE_KEY = "awaiting_device_key"
    AWAITING_SIGNATURE = "awaiting_signature"


@dataclass
class AirgappedSession:
    """Transient device session."""

    state: AirgappedState = AirgappedState.ABSENT
    page: int = 0
    pending_request_id: Optional[str] = None
    device_name: Optional[str] = None


class QRHardwareSync:
    """
    Drives the QR keyring through pairing, paging, unlocking and signing.

    The QR keyring is created on first use. Reset and cancel operations
    never create it; they are safe in every state and leave the session
    IDLE.
    """

    def __init__(self, registry: KeyringRegistry, identities: IdentityRegistry):
        self.registry = registry
        self.identities = identities
        self.session = AirgappedSession()

    def _idle(self) -> None:
        self.session.state = AirgappedState.IDLE
        self.session.pending_request_id = None

    def get_keyring(self) -> Optional[AirgappedKeyring]:
        keyrings = self.registry.get_by_type(KeyringType.QR)
        return keyrings[0] if keyrings else None

    async def get_or_add_keyring(self) -> AirgappedKeyring:
        """
        Return the QR keyring, creating it on first use.

        Raises:
            MissingQRKeyringBuilder: no builder registered for the QR type
        """
        keyring = self.get_keyring()

        if keyring is None:
            if self.registry.get_builder(KeyringType.QR) is None:
                raise MissingQRKeyringBuilder(
                    "Cannot find a builder for the QR hardware keyring"
                )
            keyring = await self.registry.add_keyring(KeyringType.QR)
            logger.info("qr_keyring_created")

        if self.session.state == AirgappedState.ABSENT:
            self._idle()

        return keyring

    async def restore_keyring(self, serialized: Any) -> None:
        """Load serialized device state into the QR keyring and persist."""
        keyring = await self.get_or_add_keyring()
        await keyring.deserialize(serialized)
        await self.registry.persist_all()
        self._idle()

    def reset_state(self) -> None:
        keyring = self.get_keyring()
        if keyring is not None:
            keyring.reset_store()
        self._idle()

    async def get_state(self) -> Dict[str, Any]:
        keyring = await self.get_or_add_keyring()
        return keyring.get_mem_store()

    async def submit_crypto_hd_key(self, crypto_hd_key: str) -> None:
        keyring = await self.get_or_add_keyring()
        keyring.submit_crypto_hd_key(crypto_hd_key)
        self.session.state = AirgappedState.AWAITING_DEVICE_KEY

    async def submit_crypto_account(self, crypto_account: str) -> None:
        keyring = await self.get_or_add_keyring()
        keyring.submit_crypto_account(crypto_account)
        self.session.state = AirgappedState.AWAITING_DEVICE_KEY

    async def submit_signature(self, request_id: str, signature: str) -> None:
        """
        Deliver a scanned signature to the device keyring.

        A request id other than the pending one is still delivered;
        correlation belongs to the keyring.
        """
        keyring = await self.get_or_add_keyring()

        if request_id != self.session.pending_request_id:
            logger.warning(
                "qr_signature_request_mismatch",
                request_id=request_id,
                pending_request_id=self.session.pending_request_id,
            )

        keyring.submit_signature(request_id, signature)

    def cancel_sign_request(self) -> None:
        keyring = self.get_keyring()
        if keyring is not None:
            keyring.cancel_sign_request()
        self._idle()

        logger.info("qr_sign_request_cancelled")

    def cancel_sync(self) -> None:
        keyring = self.get_keyring()
        if keyring is not None:
            keyring.cancel_sync()
        self._idle()

        logger.info("qr_sync_cancelled")

    async def connect(self, page: int) -> List[Dict[str, Any]]:
        """
        Fetch a page of device accounts.

        Args:
            page: -1 for the previous page, 1 for the next, anything
                else for the first

        Returns:
            Entries of {"address", "index", "balance"}

        Raises:
            QRHardwareError: the device failed to produce the page
        """
        keyring = await self.get_or_add_keyring()

        try:
            if page == -1:
                entries = await keyring.get_previous_page()
                self.session.page = max(self.session.page - 1, 0)
            elif page == 1:
                entries = await keyring.get_next_page()
                self.session.page += 1
            else:
                entries = await keyring.get_first_page()
                self.session.page = 0
        except Exception as e:
            logger.error("qr_connect_failed", page=page, error=str(e))
            raise QRHardwareError(
                f"Unspecified error when connect QR Hardware, {e}"
            ) from e

        self._idle()

        return [
            {
                "address": normalize_address(entry["address"]),
                "index": entry["index"],
                "balance": config.keyring.qr_placeholder_balance,
            }
            for entry in entries
        ]

    async def unlock_account(self, index: int) -> List[str]:
        """
        Unlock the device account at a derivation index.

        Each new address is labelled "<device name> <index>" and selected.

        Returns:
            Newly added addresses
        """
        keyring = await self.get_or_add_keyring()
        keyring.set_account_to_unlock(index)

        old_accounts = set(await self.registry.get_accounts())
        await self.registry.add_new_account(keyring)
        new_accounts = await self.registry.get_accounts()

        added = [a for a in new_accounts if a not in old_accounts]
        name = keyring.get_name()
        self.session.device_name = name

        self.identities.ensure_labels_for(added)
        for address in added:
            if name:
                self.identities.set_label(address, f"{name} {index}")
            self.identities.set_selected(address)

        accounts_added_total.labels(keyring_type=keyring.tag).inc(len(added))
        await self.registry.persist_all()
        self._idle()

        logger.info("qr_account_unlocked", index=index, added=added)

        return added

    async def forget_device(self) -> None:
        """Drop the device pairing and its accounts, then clear the session."""
        keyring = await self.get_or_add_keyring()
        keyring.forget_device()

        await self.registry.remove_empty_keyrings()

        accounts = await self.registry.get_accounts()
        self.identities.sync_to(accounts)
        for address in accounts:
            self.identities.set_selected(address)

        await self.registry.persist_all()
        self.session = AirgappedSession()

        logger.info("qr_device_forgotten", remaining_accounts=len(accounts))

    @asynccontextmanager
    async def sign_request(self, opts: Optional[Dict[str, Any]] = None) -> AsyncIterator[Dict[str, Any]]:
        """
        Track one signature round trip.

        Yields signing options carrying a fresh `request_id`; the session
        waits in AWAITING_SIGNATURE until the block exits.
        """
        request_id = str(uuid4())
        self.session.state = AirgappedState.AWAITING_SIGNATURE
        self.session.pending_request_id = request_id

        logger.info("qr_sign_request_dispatched", request_id=request_id)

        try:
            yield {**(opts or {}), "request_id": request_id}
        finally:
            if self.session.pending_request_id == request_id:
                self._idle()


__all__ = [
    "AirgappedState",
    "AirgappedSession",
    "QRHardwareSync",
]
