# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_workspace

"""Per-user quotas for mutating socket operations.

Each operation kind gets its own limiter backed by the in-memory store of the ``limits``
library. State lives for the life of the process and is independent of sandbox lifecycle.
"""

from limits import parse
from limits.storage import MemoryStorage
from limits.strategies import MovingWindowRateLimiter
from loguru import logger

from coreason_workspace.exceptions import RateLimited

MUTATING_OPERATIONS = ("createFile", "createFolder", "renameFile", "deleteFile", "saveFile")


class RateLimiter:
    """Moving-window quota for one operation kind, keyed by user id."""

    def __init__(self, kind: str, limit: str, storage: MemoryStorage | None = None):
        """Initializes the RateLimiter.

        Args:
            kind: Operation kind, used as the limiter namespace.
            limit: Rate in ``limits`` notation, e.g. ``"1/2 seconds"``.
            storage: Optional shared storage backend.
        """
        self.kind = kind
        self.item = parse(limit)
        self._strategy = MovingWindowRateLimiter(storage or MemoryStorage())

    def consume(self, user_id: str, cost: int = 1) -> None:
        """Spend ``cost`` units of the user's quota.

        Raises:
            RateLimited: If the quota for this window is already spent.
        """
        if not self._strategy.hit(self.item, self.kind, user_id, cost=cost):
            logger.warning(f"Rate limit hit for {self.kind}", user_id=user_id)
            raise RateLimited(f"Rate limited: {self.kind}. Please slow down.")

    def reset(self, user_id: str) -> None:
        self._strategy.clear(self.item, self.kind, user_id)


class RateLimiters:
    """The set of limiters guarding the mutating socket operations."""

    def __init__(self, limits: dict[str, str]):
        storage = MemoryStorage()
        self._limiters = {kind: RateLimiter(kind, rate, storage) for kind, rate in limits.items()}
        missing = [kind for kind in MUTATING_OPERATIONS if kind not in self._limiters]
        if missing:
            raise ValueError(f"No rate limit configured for: {', '.join(missing)}")

    def __getitem__(self, kind: str) -> RateLimiter:
        return self._limiters[kind]

    def consume(self, kind: str, user_id: str, cost: int = 1) -> None:
        self._limiters[kind].consume(user_id, cost)
