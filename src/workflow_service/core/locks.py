"""Per-case mutation locks.

At most one mutation per case is in flight inside this process. Cross-process
safety comes from the optimistic version check in the repositories, which
turns a lost race into ConflictError.
"""

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict, Iterable, List


class CaseLockRegistry:
    """Hands out one asyncio.Lock per case id.

    An entry lives only while some task holds or waits for it; the last user
    out removes it, so the registry stays as small as the set of busy cases.
    """

    def __init__(self):
        self._locks: Dict[str, asyncio.Lock] = {}
        self._users: Dict[str, int] = {}

    @property
    def tracked_count(self) -> int:
        """Number of case ids currently held or awaited."""
        return len(self._locks)

    def _checkout(self, case_id: str) -> asyncio.Lock:
        lock = self._locks.get(case_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[case_id] = lock
        self._users[case_id] = self._users.get(case_id, 0) + 1
        return lock

    def _checkin(self, case_id: str) -> None:
        remaining = self._users[case_id] - 1
        if remaining:
            self._users[case_id] = remaining
        else:
            del self._users[case_id]
            del self._locks[case_id]

    @asynccontextmanager
    async def hold(self, case_id: str) -> AsyncIterator[None]:
        lock = self._checkout(case_id)
        try:
            async with lock:
                yield
        finally:
            self._checkin(case_id)

    @asynccontextmanager
    async def hold_many(self, case_ids: Iterable[str]) -> AsyncIterator[List[str]]:
        """Lock several cases in sorted id order so overlapping batches cannot deadlock."""
        ordered = sorted(set(case_ids))
        checked_out: List[str] = []
        acquired: List[asyncio.Lock] = []
        try:
            for case_id in ordered:
                lock = self._checkout(case_id)
                checked_out.append(case_id)
                await lock.acquire()
                acquired.append(lock)
            yield ordered
        finally:
            for lock in reversed(acquired):
                lock.release()
            for case_id in checked_out:
                self._checkin(case_id)

    def is_locked(self, case_id: str) -> bool:
        lock = self._locks.get(case_id)
        return lock is not None and lock.locked()
