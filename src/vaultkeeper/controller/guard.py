"""
Single-writer guard for vault (re)creation.
"""

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator

import structlog

logger = structlog.get_logger()


class MutationGuard:
    """
    At most one guarded operation runs at a time.

    Usage:
        async with guard.hold("create_new_vault_and_keychain"):
            ...

    The lock is released when the block exits, including on error.
    """

    def __init__(self):
        self._lock = asyncio.Lock()

    @property
    def locked(self) -> bool:
        return self._lock.locked()

    @asynccontextmanager
    async def hold(self, operation: str) -> AsyncIterator[None]:
        if self._lock.locked():
            logger.debug("mutation_guard_waiting", operation=operation)

        async with self._lock:
            logger.debug("mutation_guard_acquired", operation=operation)
            try:
                yield
            finally:
                logger.debug("mutation_guard_released", operation=operation)


__all__ = ["MutationGuard"]
