"""
Account import strategies.

Turns user-supplied secrets (a raw private key or an encrypted JSON
wallet) into a hex private key for a new simple keyring.
"""

import base64
import json
from enum import Enum
from typing import Any, Dict, Tuple, Union

from cryptography.hazmat.primitives import hashes, padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes
from eth_account import Account
import structlog

from vaultkeeper.errors import InvalidJsonWallet, InvalidPrivateKey

logger = structlog.get_logger()

# Order of the secp256k1 group
SECP256K1_N = 0xFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFEBAAEDCE6AF48A03BBFD25E8CD0364141

JsonWallet = Union[str, Dict[str, Any]]


class AccountImportStrategy(str, Enum):
    """How `import_account_with_strategy` interprets its arguments."""
    PRIVATE_KEY = "privateKey"
    JSON = "json"


def private_key_from_hex(imported_key: str) -> str:
    """
    Validate a hex private key.

    Args:
        imported_key: 32-byte key as hex, with or without 0x prefix

    Returns:
        Hex private key without prefix

    Raises:
        InvalidPrivateKey: empty, not hex, wrong length or out of range
    """
    if not imported_key:
        raise InvalidPrivateKey("Cannot import an empty key.")

    prefixed = imported_key if imported_key.startswith("0x") else "0x" + imported_key
    stripped = prefixed[2:]

    try:
        key_bytes = bytes.fromhex(stripped)
    except ValueError as e:
        raise InvalidPrivateKey("Cannot import invalid private key.") from e

    # 64 hex characters
    if len(stripped) != 64 or len(key_bytes) != 32:
        raise InvalidPrivateKey("Cannot import invalid private key.")

    if not 0 < int.from_bytes(key_bytes, "big") < SECP256K1_N:
        raise InvalidPrivateKey("Cannot import invalid private key.")

    return stripped


def _evp_bytes_to_key(password: bytes, salt: bytes, key_size: int = 32, iv_size: int = 16) -> Tuple[bytes, bytes]:
    """OpenSSL EVP_BytesToKey with MD5, as used by CryptoJS."""
    derived = b""
    block = b""
    while len(derived) < key_size + iv_size:
        digest = hashes.Hash(hashes.MD5())
        digest.update(block + password + salt)
        block = digest.finalize()
        derived += block
    return derived[:key_size], derived[key_size:key_size + iv_size]


def _load_json(wallet: JsonWallet) -> Dict[str, Any]:
    return wallet if isinstance(wallet, dict) else json.loads(wallet)


def from_ether_wallet(wallet: JsonWallet, password: str) -> bytes:
    """
    Decrypt a legacy EtherWallet JSON export.

    Unlocked exports carry the key in clear; locked ones hold an
    OpenSSL-salted AES-256-CBC ciphertext of the hex key.
    """
    data = _load_json(wallet)

    if not data.get("locked"):
        if len(data["private"]) != 64:
            raise ValueError("Invalid private key length")
        private_key = bytes.fromhex(data["private"])

    else:
        if not isinstance(password, str):
            raise ValueError("Password required")
        if len(password) < 7:
            raise ValueError("Password must be at least 7 characters")

        # encrypted exports append 4 bytes of the address hash
        encoded = data["private"][:128] if data.get("encrypted") else data["private"]
        raw = base64.b64decode(encoded)
        if raw[:8] != b"Salted__":
            raise ValueError("Unsupported EtherWallet key format")

        key, iv = _evp_bytes_to_key(password.encode('utf-8'), raw[8:16])
        decryptor = Cipher(algorithms.AES(key), modes.CBC(iv)).decryptor()
        padded = decryptor.update(raw[16:]) + decryptor.finalize()

        unpadder = padding.PKCS7(128).unpadder()
        plaintext = unpadder.update(padded) + unpadder.finalize()

        private_key = bytes.fromhex(plaintext.decode('utf-8'))

    account = Account.from_key(private_key)
    if account.address.lower() != str(data.get("address", "")).lower():
        raise ValueError("Invalid private key or address")

    return private_key


def from_v3(wallet: JsonWallet, password: str) -> bytes:
    """Decrypt a V3 keystore (scrypt or pbkdf2)."""
    return bytes(Account.decrypt(wallet, password))


def private_key_from_json(wallet: JsonWallet, password: str) -> str:
    """
    Decrypt a JSON wallet, trying the legacy format first, then V3.

    A failure of the legacy format is not reported; only the V3 error is.

    Returns:
        0x-prefixed hex private key

    Raises:
        InvalidJsonWallet: neither format could decrypt the wallet
    """
    try:
        private_key = from_ether_wallet(wallet, password)
    except Exception:
        logger.debug("json_import_legacy_format_rejected")
        try:
            private_key = from_v3(wallet, password)
        except Exception as e:
            logger.warning("json_import_failed", error=str(e))
            raise InvalidJsonWallet(str(e) or "Cannot decrypt JSON wallet") from e

    return "0x" + private_key.hex()


__all__ = [
    "AccountImportStrategy",
    "SECP256K1_N",
    "private_key_from_hex",
    "private_key_from_json",
    "from_ether_wallet",
    "from_v3",
]
