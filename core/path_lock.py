import asyncio
import contextlib
import logging
import os
import threading
from typing import Awaitable, Callable, Dict, TypeVar

from core.errors import InvalidInputError

logger = logging.getLogger(__name__)

T = TypeVar("T")


def normalize_path(path: str) -> str:
    if not path:
        raise InvalidInputError("Path must not be empty")
    return os.path.normpath(os.path.abspath(path))


class PathLockService:
    """One asyncio.Lock per normalized file path.

    Locks are created on first use and kept for the life of the service, so
    two callers naming the same file always share a lock. The registry itself
    is guarded by a threading.Lock held only for the lookup/insert.
    """

    def __init__(self):
        self._locks: Dict[str, asyncio.Lock] = {}
        self._registry_lock = threading.Lock()

    def get_or_create(self, path: str) -> asyncio.Lock:
        key = normalize_path(path)
        with self._registry_lock:
            lock = self._locks.get(key)
            if lock is None:
                lock = asyncio.Lock()
                self._locks[key] = lock
            return lock

    async def with_exclusive_access(self, lock: asyncio.Lock, path: str,
                                    operation: Callable[[str], Awaitable[T]]) -> T:
        """Run operation(path) while holding lock.

        The lock is released whether the operation returns, raises or is
        cancelled.
        """
        async with lock:
            return await operation(path)

    @contextlib.asynccontextmanager
    async def exclusive(self, path: str):
        lock = self.get_or_create(path)
        async with lock:
            yield

    @property
    def registered_count(self) -> int:
        with self._registry_lock:
            return len(self._locks)
