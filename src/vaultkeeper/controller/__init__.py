"""
Controller package - orchestration of keyrings, vault and device sync.
"""

from vaultkeeper.controller.airgapped import AirgappedSession, AirgappedState, QRHardwareSync
from vaultkeeper.controller.guard import MutationGuard
from vaultkeeper.controller.identities import IdentityRegistry
from vaultkeeper.controller.keyring_controller import KeyringController
from vaultkeeper.controller.registry import KeyringRegistry
from vaultkeeper.controller.state import (
    KeyringControllerState,
    KeyringObject,
    StatePatch,
    StateProjector,
)

__all__ = [
    "KeyringController",
    "KeyringRegistry",
    "MutationGuard",
    "IdentityRegistry",
    "AirgappedState",
    "AirgappedSession",
    "QRHardwareSync",
    "KeyringControllerState",
    "KeyringObject",
    "StatePatch",
    "StateProjector",
]
