"""Single-writer-per-position locking.

Every operation that reads a position, checks it (e.g. "enough units to
sell?") and writes it back holds that position's lock across the whole
read-check-write-commit, so two concurrent sells can never both pass the
check. Locks are taken in sorted key order, which keeps multi-position
updates deadlock-free.

The registry is per process. Writers in other processes are caught by the
optimistic version column on Position and Transaction instead.
"""

import asyncio
from collections.abc import Hashable
from contextlib import asynccontextmanager
from dataclasses import dataclass, field


def position_key(position_id: int) -> str:
    """Lock key for an existing position."""
    return f"position:{position_id}"


def new_position_key(portfolio_id: int, symbol: str, category: str) -> str:
    """Lock key for a (portfolio, symbol, category) slot that may not exist yet.

    Always taken before any position_key, never while holding one.
    """
    return f"slot:{portfolio_id}:{category}:{symbol}"


@dataclass
class _LockEntry:
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    users: int = 0


class PositionLockRegistry:
    """Named asyncio locks, created on demand and dropped when unused."""

    def __init__(self):
        self._entries: dict[Hashable, _LockEntry] = {}

    def __len__(self) -> int:
        return len(self._entries)

    @asynccontextmanager
    async def hold(self, *keys: Hashable):
        """Hold the locks for all keys (duplicates and None are ignored)."""
        ordered = sorted({key for key in keys if key is not None}, key=str)

        entries = []
        for key in ordered:
            entry = self._entries.setdefault(key, _LockEntry())
            entry.users += 1
            entries.append((key, entry))

        held = []
        try:
            for _, entry in entries:
                await entry.lock.acquire()
                held.append(entry)
            yield
        finally:
            for entry in reversed(held):
                entry.lock.release()
            for key, entry in entries:
                entry.users -= 1
                if entry.users == 0:
                    del self._entries[key]


# Shared by every service in this process
position_locks = PositionLockRegistry()
