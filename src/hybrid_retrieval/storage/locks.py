"""
Shared-read / exclusive-write lock for asyncio tasks.
"""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator, Callable

from ..errors import LockAcquisitionFailure


class AsyncRWLock:
    """Many concurrent readers or one writer; waiting writers block new readers."""

    def __init__(self, name: str, *, timeout: float | None = None) -> None:
        self.name = name
        self.timeout = timeout
        self._cond = asyncio.Condition()
        self._readers = 0
        self._writer = False
        self._waiting_writers = 0

    @property
    def readers(self) -> int:
        return self._readers

    @property
    def write_locked(self) -> bool:
        return self._writer

    @asynccontextmanager
    async def read(self) -> AsyncIterator[None]:
        await self.acquire_read()
        try:
            yield
        finally:
            await self.release_read()

    @asynccontextmanager
    async def write(self) -> AsyncIterator[None]:
        await self.acquire_write()
        try:
            yield
        finally:
            await self.release_write()

    async def acquire_read(self) -> None:
        async with self._cond:
            await self._wait(lambda: not self._writer and self._waiting_writers == 0)
            self._readers += 1

    async def release_read(self) -> None:
        async with self._cond:
            self._readers -= 1
            if self._readers == 0:
                self._cond.notify_all()

    async def acquire_write(self) -> None:
        async with self._cond:
            self._waiting_writers += 1
            try:
                await self._wait(lambda: not self._writer and self._readers == 0)
            finally:
                self._waiting_writers -= 1
                # Readers parked behind this writer may proceed if it gave up.
                self._cond.notify_all()
            self._writer = True

    async def release_write(self) -> None:
        async with self._cond:
            self._writer = False
            self._cond.notify_all()

    async def _wait(self, predicate: Callable[[], bool]) -> None:
        if self.timeout is None:
            await self._cond.wait_for(predicate)
            return
        try:
            await asyncio.wait_for(self._cond.wait_for(predicate), self.timeout)
        except asyncio.TimeoutError as exc:
            raise LockAcquisitionFailure(self.name, self.timeout) from exc
