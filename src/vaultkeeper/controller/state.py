"""
State projector - the non-secret snapshot of the controller.

The snapshot is rebuilt from live keyrings after every mutation and
published together with a patch list against the previous snapshot.
"""

from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional

import structlog

from vaultkeeper.messaging.bus import EventBus
from vaultkeeper.messaging.events import StateChangedEvent

logger = structlog.get_logger()


@dataclass
class KeyringObject:
    """Type tag and accounts of one keyring."""

    type: str
    accounts: List[str] = field(default_factory=list)


@dataclass
class KeyringControllerState:
    """Externally observable controller state."""

    is_unlocked: bool = False
    keyrings: List[KeyringObject] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class StatePatch:
    """One structural change between two snapshots."""

    op: str  # "add", "remove" or "replace"
    path: str
    value: Any = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def diff_states(
    previous: KeyringControllerState,
    current: KeyringControllerState,
) -> List[StatePatch]:
    """
    Compute patches turning `previous` into `current`.

    Keyrings are compared by position. Removals are emitted from the end
    so the patch list applies in order.
    """
    patches: List[StatePatch] = []

    if previous.is_unlocked != current.is_unlocked:
        patches.append(StatePatch("replace", "/is_unlocked", current.is_unlocked))

    old, new = previous.keyrings, current.keyrings

    for index in range(min(len(old), len(new))):
        if old[index] != new[index]:
            patches.append(StatePatch("replace", f"/keyrings/{index}", asdict(new[index])))

    for index in range(len(old), len(new)):
        patches.append(StatePatch("add", f"/keyrings/{index}", asdict(new[index])))

    for index in reversed(range(len(new), len(old))):
        patches.append(StatePatch("remove", f"/keyrings/{index}"))

    return patches


class StateProjector:
    """
    Builds snapshots from the registry and vault store.

    Only type tags and addresses reach the snapshot; the vault, its
    credentials and every mnemonic stay behind.
    """

    def __init__(self, registry, vault_store, event_bus: Optional[EventBus] = None):
        self.registry = registry
        self.vault_store = vault_store
        self.event_bus = event_bus
        self.state = KeyringControllerState()

    async def snapshot(self) -> KeyringControllerState:
        keyrings = [
            KeyringObject(type=keyring.tag, accounts=list(await keyring.get_accounts()))
            for keyring in self.registry.keyrings
        ]
        return KeyringControllerState(
            is_unlocked=self.vault_store.is_unlocked,
            keyrings=keyrings,
        )

    async def publish(self) -> KeyringControllerState:
        """
        Recompute the snapshot and publish it with its patches.

        Returns:
            The new snapshot
        """
        current = await self.snapshot()
        patches = diff_states(self.state, current)
        self.state = current

        if patches:
            logger.debug("state_changed", patch_count=len(patches))

        if self.event_bus is not None:
            await self.event_bus.publish(
                StateChangedEvent(
                    state=current.to_dict(),
                    patches=[patch.to_dict() for patch in patches],
                )
            )

        return current


__all__ = [
    "KeyringObject",
    "KeyringControllerState",
    "StatePatch",
    "StateProjector",
    "diff_states",
]
