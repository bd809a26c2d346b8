"""
Global configuration using Pydantic Settings.
Values may be overridden from environment variables or a .env file.
"""

from dotenv import load_dotenv
from typing import Literal
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

# Load .env file
load_dotenv()


class EncryptorConfig(BaseSettings):
    """Vault encryption configuration."""

    model_config = SettingsConfigDict(env_prefix="ENCRYPTOR_", extra="ignore")

    pbkdf2_iterations: int = Field(
        default=10_000,
        description="PBKDF2-SHA256 iterations used to derive the vault key"
    )
    salt_bytes: int = Field(default=32, description="Random salt length")
    nonce_bytes: int = Field(default=12, description="AES-GCM nonce length (96 bits)")


class KeyringConfig(BaseSettings):
    """Keyring controller configuration."""

    model_config = SettingsConfigDict(env_prefix="KEYRING_", extra="ignore")

    cache_encryption_key: bool = Field(
        default=False,
        description="Cache the exported vault key so it can replace the password"
    )
    hd_path: str = Field(
        default="m/44'/60'/0'/0",
        description="Default BIP44 derivation path for HD keyrings"
    )
    mnemonic_words: int = Field(
        default=12,
        description="Word count of generated secret recovery phrases"
    )
    qr_placeholder_balance: str = Field(
        default="0x0",
        description="Balance reported for airgapped accounts while browsing pages"
    )


class LoggingConfig(BaseSettings):
    """Structured logging configuration."""

    model_config = SettingsConfigDict(env_prefix="LOG_", extra="ignore")

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(default="INFO")
    json_output: bool = Field(default=True, description="Render logs as JSON lines")


class MonitoringConfig(BaseSettings):
    """Monitoring configuration."""

    model_config = SettingsConfigDict(env_prefix="MONITORING_", extra="ignore")

    namespace: str = Field(default="vaultkeeper", description="Prometheus metric prefix")


class VaultkeeperConfig(BaseSettings):
    """Master configuration aggregating all sub-configs."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    environment: Literal["development", "staging", "production"] = Field(
        default="development"
    )
    debug: bool = Field(default=False)

    # Sub-configurations
    encryptor: EncryptorConfig = Field(default_factory=EncryptorConfig)
    keyring: KeyringConfig = Field(default_factory=KeyringConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    monitoring: MonitoringConfig = Field(default_factory=MonitoringConfig)


# Global config instance
config = VaultkeeperConfig()


__all__ = [
    "VaultkeeperConfig",
    "EncryptorConfig",
    "KeyringConfig",
    "LoggingConfig",
    "MonitoringConfig",
    "config",
]
