# infrastructure/locks.py
"""Async read-write locks keyed by document id."""
import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict


class AsyncRWLock:
    """
    Many concurrent readers or one writer.
    Waiting writers block new readers so writes are not starved.
    """

    def __init__(self):
        self._cond = asyncio.Condition()
        self._readers = 0
        self._writer = False
        self._waiting_writers = 0

    @asynccontextmanager
    async def read(self) -> AsyncIterator[None]:
        async with self._cond:
            await self._cond.wait_for(lambda: not self._writer and self._waiting_writers == 0)
            self._readers += 1
        try:
            yield
        finally:
            async with self._cond:
                self._readers -= 1
                if self._readers == 0:
                    self._cond.notify_all()

    @asynccontextmanager
    async def write(self) -> AsyncIterator[None]:
        async with self._cond:
            self._waiting_writers += 1
            try:
                await self._cond.wait_for(lambda: not self._writer and self._readers == 0)
            except BaseException:
                # Cancelled while queued: let blocked readers through again
                self._waiting_writers -= 1
                self._cond.notify_all()
                raise
            self._waiting_writers -= 1
            self._writer = True
        try:
            yield
        finally:
            async with self._cond:
                self._writer = False
                self._cond.notify_all()


class KeyedRWLock:
    """
    One AsyncRWLock per key, created on first use and dropped once no task
    holds or waits on it.
    """

    def __init__(self):
        self._locks: Dict[str, AsyncRWLock] = {}
        self._users: Dict[str, int] = {}

    def _checkout(self, key: str) -> AsyncRWLock:
        lock = self._locks.get(key)
        if lock is None:
            lock = AsyncRWLock()
            self._locks[key] = lock
        self._users[key] = self._users.get(key, 0) + 1
        return lock

    def _checkin(self, key: str) -> None:
        self._users[key] -= 1
        if self._users[key] == 0:
            del self._users[key]
            del self._locks[key]

    @asynccontextmanager
    async def read(self, key: str) -> AsyncIterator[None]:
        lock = self._checkout(key)
        try:
            async with lock.read():
                yield
        finally:
            self._checkin(key)

    @asynccontextmanager
    async def write(self, key: str) -> AsyncIterator[None]:
        lock = self._checkout(key)
        try:
            async with lock.write():
                yield
        finally:
            self._checkin(key)
