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
import codecs
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable

from loguru import logger

from coreason_workspace.exceptions import NotFound, TerminalCapacityError, TerminalExistsError
from coreason_workspace.lock import LockManager
from coreason_workspace.runtime import PtyProcess, SandboxRuntime

INIT_SEQUENCE = "export PS1='user> '\rclear\r"

Publisher = Callable[[str, Any], None]


class TerminalState(str, Enum):
    REQUESTED = "requested"
    RUNNING = "running"
    CLOSED = "closed"


@dataclass
class TerminalSession:
    id: str
    connection_id: str | None = None
    state: TerminalState = TerminalState.REQUESTED
    process: PtyProcess | None = None
    decoder: codecs.IncrementalDecoder = field(
        default_factory=lambda: codecs.getincrementaldecoder("utf-8")(errors="replace")
    )
    watcher: asyncio.Task[None] | None = None


class TerminalManager:
    """Interactive terminals of one sandbox.

    Terminals are PTY shells inside the compute sandbox. Their output is relayed to the
    sandbox's subscribers as ``terminalResponse`` events with no server-side buffering; once a
    terminal is closed its output is gone.
    """

    def __init__(
        self,
        sandbox_id: str,
        runtime: SandboxRuntime,
        lock_manager: LockManager,
        publish: Publisher,
        max_terminals: int = 4,
        cols: int = 80,
        rows: int = 20,
        cwd: str | None = None,
    ):
        self.sandbox_id = sandbox_id
        self.runtime = runtime
        self.lock_manager = lock_manager
        self.publish = publish
        self.max_terminals = max_terminals
        self.cols = cols
        self.rows = rows
        self.cwd = cwd
        self.terminals: dict[str, TerminalSession] = {}

    def __len__(self) -> int:
        return len(self.terminals)

    def _check_can_create(self, terminal_id: str) -> None:
        if terminal_id in self.terminals:
            raise TerminalExistsError(f"Terminal {terminal_id} already exists.")
        if len(self.terminals) >= self.max_terminals:
            raise TerminalCapacityError(f"Too many terminals (maximum {self.max_terminals}).")

    def _output_handler(self, session: TerminalSession) -> Callable[[bytes], None]:
        def on_data(data: bytes) -> None:
            text = session.decoder.decode(data)
            if text:
                self.publish("terminalResponse", {"id": session.id, "data": text})

        return on_data

    async def create_terminal(self, terminal_id: str, connection_id: str | None = None) -> None:
        """Start a shell for ``terminal_id``.

        Args:
            terminal_id: Client-chosen terminal id, unique within the sandbox.
            connection_id: The connection that owns the terminal, closed with it.

        Raises:
            TerminalExistsError: If the id is already in use. No process is started.
            TerminalCapacityError: If the sandbox is at its terminal cap. No process is started.
            UpstreamFailure: If the sandbox fails to start the process.
        """
        self._check_can_create(terminal_id)

        async def _create() -> None:
            self._check_can_create(terminal_id)
            session = TerminalSession(id=terminal_id, connection_id=connection_id)
            self.terminals[terminal_id] = session
            try:
                session.process = await self.runtime.create_pty(
                    self.cols, self.rows, self._output_handler(session), cwd=self.cwd
                )
                await self.runtime.send_pty_input(session.process.pid, INIT_SEQUENCE.encode("utf-8"))
            except Exception:
                self.terminals.pop(terminal_id, None)
                if session.process is not None:
                    await self.runtime.kill_pty(session.process.pid)
                raise

            session.state = TerminalState.RUNNING
            session.watcher = asyncio.create_task(self._watch(session))
            logger.info(f"Terminal {terminal_id} running in {self.sandbox_id}", pid=session.process.pid)

        await self.lock_manager.acquire_lock(self.sandbox_id, _create)

    async def _watch(self, session: TerminalSession) -> None:
        assert session.process is not None
        try:
            await self.runtime.wait_pty(session.process)
        except Exception as e:
            logger.warning(f"Lost track of terminal {session.id}: {e}")
        if self.terminals.get(session.id) is session:
            del self.terminals[session.id]
            session.state = TerminalState.CLOSED
            logger.info(f"Terminal {session.id} exited in {self.sandbox_id}")

    def _get(self, terminal_id: str) -> TerminalSession:
        session = self.terminals.get(terminal_id)
        if session is None or session.process is None:
            raise NotFound(f"No such terminal: {terminal_id}")
        return session

    async def write_input(self, terminal_id: str, data: str) -> None:
        session = self._get(terminal_id)
        assert session.process is not None
        await self.runtime.send_pty_input(session.process.pid, data.encode("utf-8"))

    async def resize(self, cols: int, rows: int, terminal_id: str | None = None) -> None:
        """Resize one terminal, or all of them when no id is given.

        The new size also becomes the default for terminals created later.
        """
        if terminal_id is None:
            self.cols, self.rows = cols, rows
            sessions = [s for s in self.terminals.values() if s.process is not None]
        else:
            sessions = [self._get(terminal_id)]

        for session in sessions:
            assert session.process is not None
            await self.runtime.resize_pty(session.process.pid, cols, rows)

    async def close_terminal(self, terminal_id: str) -> bool:
        """Kill a terminal's process and forget it.

        Returns:
            bool: False if the terminal was unknown or its process had already exited.
        """
        session = self.terminals.pop(terminal_id, None)
        if session is None:
            logger.debug(f"Terminal {terminal_id} already closed in {self.sandbox_id}")
            return False

        session.state = TerminalState.CLOSED
        if session.watcher is not None:
            session.watcher.cancel()
        if session.process is None:
            return False
        killed = await self.runtime.kill_pty(session.process.pid)
        logger.info(f"Closed terminal {terminal_id} in {self.sandbox_id}")
        return killed

    async def close_connection_terminals(self, connection_id: str) -> None:
        owned = [tid for tid, s in self.terminals.items() if s.connection_id == connection_id]
        for terminal_id in owned:
            await self.close_terminal(terminal_id)

    async def close_all(self) -> None:
        for terminal_id in list(self.terminals):
            await self.close_terminal(terminal_id)
