# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_workspace

import asyncio
from dataclasses import dataclass, field
from typing import Awaitable, Callable, TypeVar

from loguru import logger

T = TypeVar("T")


@dataclass
class _KeyLock:
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    holders: int = 0


class LockManager:
    """Per-key mutual exclusion for sandbox lifecycle and file-tree operations.

    Callers that arrive while a key is held are queued and run their own task once the
    current one finishes, so at most one task per key is ever in flight. Operations that
    must not run twice (e.g. sandbox creation) re-check their precondition inside the task.
    A key is released on every exit path and forgotten once nobody holds or waits for it.
    """

    def __init__(self) -> None:
        self._locks: dict[str, _KeyLock] = {}

    async def acquire_lock(self, key: str, task: Callable[[], Awaitable[T]]) -> T:
        """Run ``task`` while holding the lock for ``key``.

        Args:
            key: The lock key, usually a sandbox id optionally suffixed for a sub-resource.
            task: Zero-argument coroutine function to run under the lock.

        Returns:
            T: Whatever ``task`` returns. Errors raised by ``task`` propagate unchanged.
        """
        entry = self._locks.get(key)
        if entry is None:
            entry = _KeyLock()
            self._locks[key] = entry

        entry.holders += 1
        try:
            if entry.lock.locked():
                logger.debug(f"Waiting for lock {key}")
            async with entry.lock:
                return await task()
        finally:
            entry.holders -= 1
            if entry.holders == 0 and self._locks.get(key) is entry:
                del self._locks[key]

    def is_locked(self, key: str) -> bool:
        entry = self._locks.get(key)
        return entry is not None and entry.lock.locked()

    def __len__(self) -> int:
        return len(self._locks)
