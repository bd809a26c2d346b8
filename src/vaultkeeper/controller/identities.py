"""
Identity registry contract.

The registry maps addresses to labels and tracks the selected address.
It lives outside the controller; the controller only notifies it.
"""

from typing import List, Protocol


class IdentityRegistry(Protocol):
    """Collaborator notified about account membership changes."""

    def remove(self, address: str) -> None:
        """Forget the identity of a removed account."""
        ...

    def sync_to(self, addresses: List[str]) -> None:
        """Make the identity set match `addresses` exactly."""
        ...

    def ensure_labels_for(self, addresses: List[str]) -> None:
        """Create a default identity for each address that has none."""
        ...

    def set_selected(self, address: str) -> None:
        ...

    def set_label(self, address: str, label: str) -> None:
        ...


__all__ = ["IdentityRegistry"]
