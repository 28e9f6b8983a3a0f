import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager


class AppointmentLocks:
    """Per-appointment mutual exclusion for a single engine instance.

    Locks are created on first use and dropped once no task holds or waits
    on them, so the registry only grows with concurrently active ids.
    """

    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}
        # Holders and waiters per appointment id
        self._users: dict[str, int] = {}

    @asynccontextmanager
    async def hold(self, appointment_id: str) -> AsyncIterator[None]:
        lock = self._locks.setdefault(appointment_id, asyncio.Lock())
        self._users[appointment_id] = self._users.get(appointment_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._users[appointment_id] -= 1
            if self._users[appointment_id] == 0:
                del self._users[appointment_id]
                del self._locks[appointment_id]

    def __len__(self) -> int:
        return len(self._locks)
