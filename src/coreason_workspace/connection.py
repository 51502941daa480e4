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
from dataclasses import dataclass
from enum import Enum
from typing import Any, AsyncIterator
from uuid import uuid4

from loguru import logger
from pydantic_core import to_jsonable_python


class ConnectionState(str, Enum):
    CONNECTING = "connecting"
    AUTHENTICATED = "authenticated"
    WAITING = "waiting"  # viewer admitted while no owner is connected
    ACTIVE = "active"
    CLOSED = "closed"


@dataclass(frozen=True)
class ConnectionContext:
    """Identity of a connection, fixed at handshake time."""

    user_id: str
    sandbox_id: str
    is_owner: bool


class Connection:
    """One client connection, independent of the transport carrying it.

    Outbound events go through an unbounded queue drained by the transport's sender task, so
    emitting never blocks and events reach the client in the order they were emitted.
    """

    def __init__(self, connection_id: str | None = None):
        self.id = connection_id or uuid4().hex
        self.state = ConnectionState.CONNECTING
        self.context: ConnectionContext | None = None
        self.outbox: asyncio.Queue[dict[str, Any] | None] = asyncio.Queue()

    def __repr__(self) -> str:
        return f"Connection({self.id}, {self.state.value})"

    def _put(self, message: dict[str, Any]) -> None:
        if self.state is ConnectionState.CLOSED:
            logger.debug(f"Dropping {message.get('event')} for closed connection {self.id}")
            return
        self.outbox.put_nowait(message)

    def emit(self, event: str, data: Any = None) -> None:
        self._put({"event": event, "data": to_jsonable_python(data)})

    def ack(self, ack_id: int, data: Any = None) -> None:
        self._put({"event": "ack", "ack": ack_id, "data": to_jsonable_python(data)})

    def close(self) -> None:
        if self.state is not ConnectionState.CLOSED:
            self.state = ConnectionState.CLOSED
            self.outbox.put_nowait(None)

    async def messages(self) -> AsyncIterator[dict[str, Any]]:
        """Yield outbound messages until the connection is closed."""
        while True:
            message = await self.outbox.get()
            if message is None:
                return
            yield message

    def drain(self) -> list[dict[str, Any]]:
        """Pop every queued outbound message without waiting."""
        drained: list[dict[str, Any]] = []
        while not self.outbox.empty():
            message = self.outbox.get_nowait()
            if message is not None:
                drained.append(message)
        return drained
