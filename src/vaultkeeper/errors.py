"""
Error types raised by the keyring controller and its backends.
"""


class VaultkeeperError(Exception):
    """Base error for vaultkeeper."""


# ============== VAULT ERRORS ==============

class InvalidPassword(VaultkeeperError):
    """Raised when a password is missing or not a string."""


class DecryptionFailed(VaultkeeperError):
    """Raised when the vault cannot be decrypted with the given credentials."""


class VaultNotFound(VaultkeeperError):
    """Raised when an unlock is attempted before any vault exists."""


class MissingCredentials(VaultkeeperError):
    """Raised when persisting without a password or cached encryption key."""


class VaultLocked(VaultkeeperError):
    """Raised when an account or signing operation runs while locked."""


# ============== KEYRING ERRORS ==============

class MissingKeyringBuilder(VaultkeeperError):
    """Raised when no builder is registered for a keyring type."""


class UnknownKeyringType(MissingKeyringBuilder):
    """Raised by the registry when asked to build an unregistered type."""


class MissingQRKeyringBuilder(MissingKeyringBuilder):
    """Raised when the QR hardware keyring type has no builder."""


class UnsupportedKeyringOperation(VaultkeeperError):
    """Raised when a keyring does not implement an optional capability."""


class NoHDKeyring(VaultkeeperError):
    """Raised when the primary HD keyring is required but absent."""


class AccountNotFound(VaultkeeperError):
    """Raised when no keyring lists the requested address."""


class DuplicateAccount(VaultkeeperError):
    """Raised when a new keyring would introduce an existing address."""


class AccountOutOfSequence(VaultkeeperError):
    """Raised when the caller expects more accounts than currently exist."""


class InvalidMnemonic(VaultkeeperError):
    """Raised when a secret recovery phrase is not valid BIP39."""


# ============== IMPORT ERRORS ==============

class UnknownImportStrategy(VaultkeeperError):
    """Raised for an import strategy outside the supported set."""


class InvalidPrivateKey(VaultkeeperError):
    """Raised when an imported private key is empty or malformed."""


class InvalidJsonWallet(VaultkeeperError):
    """Raised when a JSON wallet cannot be decrypted in any known format."""


# ============== SEED VERIFICATION ERRORS ==============

class EmptyKeyring(VaultkeeperError):
    """Raised when verifying a keyring that holds no accounts."""


class ImportedWrongAccountCount(VaultkeeperError):
    """Raised when the seed phrase derives a different number of accounts."""


class ImportedDifferentAccounts(VaultkeeperError):
    """Raised when the seed phrase derives different accounts."""


# ============== SIGNING ERRORS ==============

class EmptyMessage(VaultkeeperError):
    """Raised when asked to sign an empty message."""


class UnrecognizedSignatureVersion(VaultkeeperError):
    """Raised for a typed-data version outside V1, V3 and V4."""


class SigningError(VaultkeeperError):
    """Raised when a backend fails to produce a signature."""


class QRHardwareError(VaultkeeperError):
    """Raised when the airgapped device fails during pagination."""


__all__ = [
    "VaultkeeperError",
    "InvalidPassword",
    "DecryptionFailed",
    "VaultNotFound",
    "MissingCredentials",
    "VaultLocked",
    "MissingKeyringBuilder",
    "UnknownKeyringType",
    "MissingQRKeyringBuilder",
    "UnsupportedKeyringOperation",
    "NoHDKeyring",
    "AccountNotFound",
    "DuplicateAccount",
    "AccountOutOfSequence",
    "InvalidMnemonic",
    "UnknownImportStrategy",
    "InvalidPrivateKey",
    "InvalidJsonWallet",
    "EmptyKeyring",
    "ImportedWrongAccountCount",
    "ImportedDifferentAccounts",
    "EmptyMessage",
    "UnrecognizedSignatureVersion",
    "SigningError",
    "QRHardwareError",
]
