"""
vaultkeeper - Keyring orchestration for an Ethereum wallet

Owns the keyrings behind a wallet, keeps the encrypted vault in step with
them and drives airgapped QR signers.
"""

__version__ = "1.0.0"
__author__ = "Vaultkeeper Team"

from vaultkeeper.config import config

__all__ = ["config", "__version__"]
