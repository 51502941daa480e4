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
import time
from dataclasses import dataclass, field
from typing import Any, Callable

from loguru import logger

from coreason_workspace.config import WorkspaceConfig
from coreason_workspace.connection import Connection, ConnectionState
from coreason_workspace.exceptions import UpstreamFailure
from coreason_workspace.factory import SandboxFactory
from coreason_workspace.files import FileManager
from coreason_workspace.lock import LockManager
from coreason_workspace.runtime import SandboxRuntime
from coreason_workspace.storage import ObjectStorage
from coreason_workspace.terminals import TerminalManager


@dataclass
class SandboxSession:
    """Everything the server holds for one sandbox id.

    Lives from the first connection until the reaper evicts it, which happens only after the
    last connection has been gone for longer than the idle timeout.
    """

    sandbox_id: str
    runtime: SandboxRuntime | None = None
    file_manager: FileManager | None = None
    terminal_manager: TerminalManager | None = None
    connections: dict[str, Connection] = field(default_factory=dict)
    owner_connections: int = 0
    last_accessed: float = field(default_factory=time.time)
    epoch: int = 0
    stale_keys: set[str] = field(default_factory=set)

    @property
    def connection_count(self) -> int:
        return len(self.connections)

    @property
    def is_owner_connected(self) -> bool:
        return self.owner_connections > 0

    def touch(self) -> None:
        self.last_accessed = time.time()

    def add_connection(self, conn: Connection, is_owner: bool) -> None:
        self.connections[conn.id] = conn
        if is_owner:
            self.owner_connections += 1
        self.touch()

    def remove_connection(self, conn: Connection) -> bool:
        """Forget a connection. Returns True if it was an owner connection."""
        if self.connections.pop(conn.id, None) is None:
            return False
        self.touch()
        if conn.context is not None and conn.context.is_owner:
            self.owner_connections = max(0, self.owner_connections - 1)
            return True
        return False

    def publish(self, event: str, data: Any = None, exclude: str | None = None) -> None:
        """Emit an event to every active connection of the sandbox."""
        for conn in list(self.connections.values()):
            if conn.id != exclude and conn.state is ConnectionState.ACTIVE:
                conn.emit(event, data)


class SandboxSessionRegistry:
    """Manages the lifecycle of sandbox sessions.

    Provisions at most one compute sandbox per sandbox id at a time, rebuilds the per-sandbox
    managers whenever a new compute sandbox is needed, and uses a background reaper task to
    release sessions nobody has used for a while.
    """

    def __init__(
        self,
        config: WorkspaceConfig,
        storage: ObjectStorage,
        lock_manager: LockManager | None = None,
        runtime_factory: Callable[[], SandboxRuntime] | None = None,
    ):
        """Initializes the SandboxSessionRegistry.

        Args:
            config: Workspace configuration.
            storage: Object store holding the projects.
            lock_manager: Shared lock manager. A private one is created if omitted.
            runtime_factory: Builds unstarted runtimes. Defaults to the configured provider.
        """
        self.config = config
        self.storage = storage
        self.lock_manager = lock_manager or LockManager()
        self.runtime_factory = runtime_factory or (lambda: SandboxFactory.get_runtime(config))
        self.sessions: dict[str, SandboxSession] = {}
        self._reaper_task: asyncio.Task[None] | None = None

    def get(self, sandbox_id: str) -> SandboxSession | None:
        return self.sessions.get(sandbox_id)

    def get_or_create(self, sandbox_id: str) -> SandboxSession:
        session = self.sessions.get(sandbox_id)
        if session is None:
            session = SandboxSession(sandbox_id=sandbox_id)
            self.sessions[sandbox_id] = session
        return session

    async def ensure_compute(self, sandbox_id: str) -> bool:
        """Make sure the sandbox has a running compute sandbox and loaded managers.

        Runs under the sandbox lock and re-checks liveness inside it, so however many
        connections race in, only one compute sandbox is provisioned.

        Returns:
            bool: True if a new compute sandbox was provisioned (a new epoch started).

        Raises:
            UpstreamFailure: If provisioning keeps failing or the project cannot be loaded.
        """
        await self._start_reaper_if_needed()
        session = self.get_or_create(sandbox_id)
        session.touch()

        async def _ensure() -> bool:
            created = False
            if session.runtime is None or not await session.runtime.is_running():
                runtime = await self._provision(sandbox_id)
                await self._replace_runtime(session, runtime)
                created = True
            if session.file_manager is None:
                session.file_manager = await self._load_files(session)
            return created

        return await self.lock_manager.acquire_lock(sandbox_id, _ensure)

    async def _provision(self, sandbox_id: str) -> SandboxRuntime:
        attempts = max(1, self.config.sandbox_create_retries)
        last_error: Exception | None = None
        for attempt in range(1, attempts + 1):
            runtime = self.runtime_factory()
            try:
                await runtime.start()
            except Exception as e:
                last_error = e
                logger.warning(f"Sandbox creation attempt {attempt}/{attempts} failed for {sandbox_id}: {e}")
                if attempt < attempts:
                    await asyncio.sleep(self.config.sandbox_create_backoff * attempt)
                continue
            logger.info(f"Created container {sandbox_id}", provider_id=runtime.sandbox_id)
            return runtime
        raise UpstreamFailure(f"Could not create sandbox after {attempts} attempts: {last_error}") from last_error

    async def _replace_runtime(self, session: SandboxSession, runtime: SandboxRuntime) -> None:
        # Terminals and files of a previous epoch belong to a dead sandbox
        if session.terminal_manager is not None:
            await session.terminal_manager.close_all()
        if session.runtime is not None:
            await session.runtime.terminate()

        session.runtime = runtime
        session.epoch += 1
        session.file_manager = None
        session.terminal_manager = TerminalManager(
            session.sandbox_id,
            runtime,
            self.lock_manager,
            publish=session.publish,
            max_terminals=self.config.max_terminals,
            cols=self.config.terminal_cols,
            rows=self.config.terminal_rows,
            cwd=self.config.project_dir,
        )
        logger.info(f"Terminal manager set up for {session.sandbox_id}", epoch=session.epoch)

    async def _load_files(self, session: SandboxSession) -> FileManager:
        file_manager = FileManager(
            session.sandbox_id,
            self.storage,
            self.lock_manager,
            runtime=session.runtime,
            prefix=self.config.storage_prefix,
            project_dir=self.config.project_dir,
            max_file_size=self.config.max_file_size,
            max_project_size=self.config.max_project_size,
            stale_keys=session.stale_keys,
        )
        await file_manager.initialize()
        await file_manager.sync_to_sandbox()
        return file_manager

    async def heartbeat(self, sandbox_id: str) -> bool:
        """Keep the compute sandbox alive, re-creating it if it already timed out.

        Returns:
            bool: True if a new compute sandbox had to be provisioned.
        """
        created = await self.ensure_compute(sandbox_id)
        session = self.sessions[sandbox_id]
        assert session.runtime is not None
        await session.runtime.set_timeout(self.config.sandbox_timeout)
        return created

    async def _start_reaper_if_needed(self) -> None:
        """Start the background reaper task if it is not already running."""
        if self._reaper_task is None or self._reaper_task.done():
            self._reaper_task = asyncio.create_task(self._reaper_loop())

    async def _reaper_loop(self) -> None:
        """Background task to release sessions idle past the grace period."""
        logger.info("Session reaper started")
        try:
            while True:
                await asyncio.sleep(self.config.reaper_interval)
                await self.reap()
        except asyncio.CancelledError:
            logger.info("Session reaper cancelled")
        except Exception as e:
            logger.error(f"Session reaper crashed: {e}")

    async def reap(self) -> list[str]:
        """Terminate and evict sessions with no connections that are idle past the timeout."""
        now = time.time()
        expired_ids = [
            sid
            for sid, session in self.sessions.items()
            if session.connection_count == 0 and now - session.last_accessed > self.config.idle_timeout
        ]

        reaped: list[str] = []
        for sid in expired_ids:

            async def _reap(sid: str = sid) -> bool:
                session = self.sessions.get(sid)
                # A client may have reconnected while we waited for the lock
                if session is None or session.connection_count > 0:
                    return False
                del self.sessions[sid]
                await self._release(session)
                return True

            try:
                if await self.lock_manager.acquire_lock(sid, _reap):
                    logger.info(f"Session {sid} expired. Terminated.")
                    reaped.append(sid)
            except Exception as e:
                logger.error(f"Error terminating expired session {sid}: {e}")
        return reaped

    async def _release(self, session: SandboxSession) -> None:
        if session.terminal_manager is not None:
            await session.terminal_manager.close_all()
        if session.runtime is not None:
            await session.runtime.terminate()
        session.runtime = None
        session.file_manager = None
        session.terminal_manager = None

    async def shutdown(self) -> None:
        """Terminate all sessions and stop the reaper."""
        if self._reaper_task and not self._reaper_task.done():
            self._reaper_task.cancel()
            try:
                await self._reaper_task
            except asyncio.CancelledError:
                pass
            self._reaper_task = None

        logger.info(f"Shutting down session registry. Terminating {len(self.sessions)} sessions.")

        sessions_to_close = list(self.sessions.values())
        self.sessions.clear()

        for session in sessions_to_close:
            try:
                await self._release(session)
            except Exception as e:
                logger.error(f"Error terminating session {session.sandbox_id} during shutdown: {e}")
