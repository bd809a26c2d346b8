"""
Signing for keyrings that hold private keys in memory.

Handles transaction signing, eth_sign, personal messages, typed data
and encryption public keys.
"""

import base64
from abc import abstractmethod
from typing import Any, Dict, List, Optional

from cryptography.hazmat.primitives.asymmetric.x25519 import X25519PrivateKey
from cryptography.hazmat.primitives.serialization import Encoding, PublicFormat
from eth_account import Account
from eth_account.messages import encode_defunct, encode_typed_data
from web3 import Web3

from vaultkeeper.errors import SigningError
from vaultkeeper.keyrings.base import BaseKeyring


def _to_hex(signature: bytes) -> str:
    return "0x" + bytes(signature).hex()


def typed_signature_hash(typed_data: List[Dict[str, Any]]) -> bytes:
    """
    Hash legacy (V1) typed data.

    V1 data is a list of {"type", "name", "value"} entries; the hash is
    keccak(keccak(schema) || keccak(values)) with packed encoding.
    """
    if not isinstance(typed_data, list) or not typed_data:
        raise SigningError("Expect argument to be non-empty array")

    types = [entry["type"] for entry in typed_data]
    values = [
        Web3.to_bytes(hexstr=entry["value"]) if entry["type"] == "bytes" else entry["value"]
        for entry in typed_data
    ]
    schema = [f"{entry['type']} {entry['name']}" for entry in typed_data]

    return Web3.solidity_keccak(
        ["bytes32", "bytes32"],
        [
            Web3.solidity_keccak(["string"] * len(typed_data), schema),
            Web3.solidity_keccak(types, values),
        ],
    )


class LocalSigningKeyring(BaseKeyring):
    """Keyring whose accounts are backed by in-memory private keys."""

    @abstractmethod
    def _get_private_key(self, address: str) -> bytes:
        """Return the private key for an address owned by this keyring."""
        pass

    async def export_account(self, address: str) -> str:
        """
        Export the private key for an address.

        Returns:
            Hex-encoded private key without prefix
        """
        return self._get_private_key(address).hex()

    async def sign_transaction(
        self,
        address: str,
        transaction: Dict[str, Any],
        opts: Optional[Dict[str, Any]] = None,
    ) -> str:
        """
        Sign transaction with the account's private key.

        Args:
            address: Signing account
            transaction: Transaction dictionary

        Returns:
            Raw signed transaction (hex)
        """
        tx = dict(transaction)
        tx.pop("from", None)

        signed_tx = Account.sign_transaction(tx, self._get_private_key(address))

        return _to_hex(signed_tx.raw_transaction)

    async def sign_message(
        self,
        address: str,
        data: str,
        opts: Optional[Dict[str, Any]] = None,
    ) -> str:
        """Sign a raw 32-byte hash (eth_sign)."""
        message_hash = Web3.to_bytes(hexstr=data)
        if len(message_hash) != 32:
            raise SigningError("eth_sign expects a 32-byte message hash")

        signed = Account.unsafe_sign_hash(message_hash, self._get_private_key(address))
        return _to_hex(signed.signature)

    async def sign_personal_message(
        self,
        address: str,
        data: Any,
        opts: Optional[Dict[str, Any]] = None,
    ) -> str:
        """Sign an EIP-191 personal message given as hex, bytes or text."""
        if isinstance(data, (bytes, bytearray)):
            signable = encode_defunct(primitive=bytes(data))
        elif isinstance(data, str) and data.startswith("0x"):
            signable = encode_defunct(hexstr=data)
        else:
            signable = encode_defunct(text=data)

        signed = Account.sign_message(signable, self._get_private_key(address))
        return _to_hex(signed.signature)

    async def sign_typed_data(
        self,
        address: str,
        data: Any,
        opts: Optional[Dict[str, Any]] = None,
    ) -> str:
        """Sign typed data; V1 uses the legacy schema hash, V3/V4 use EIP-712."""
        version = (opts or {}).get("version", "V1")
        private_key = self._get_private_key(address)

        if version == "V1":
            signed = Account.unsafe_sign_hash(typed_signature_hash(data), private_key)
        else:
            signed = Account.sign_message(encode_typed_data(full_message=data), private_key)

        return _to_hex(signed.signature)

    async def get_encryption_public_key(
        self,
        address: str,
        opts: Optional[Dict[str, Any]] = None,
    ) -> str:
        """Return the base64 x25519 public key derived from the private key."""
        private = X25519PrivateKey.from_private_bytes(self._get_private_key(address))
        public = private.public_key().public_bytes(Encoding.Raw, PublicFormat.Raw)
        return base64.b64encode(public).decode('utf-8')


__all__ = ["LocalSigningKeyring", "typed_signature_hash"]
