# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_workspace

from typing import Any, Awaitable, Callable

from loguru import logger

from coreason_workspace.config import WorkspaceConfig
from coreason_workspace.connection import Connection, ConnectionContext, ConnectionState
from coreason_workspace.deployment import DeploymentCoordinator
from coreason_workspace.exceptions import RateLimited, UpstreamFailure, ValidationError
from coreason_workspace.factory import SandboxFactory
from coreason_workspace.files import FileManager
from coreason_workspace.integrations.ai import AIWorker
from coreason_workspace.integrations.identity import IdentityClient
from coreason_workspace.lock import LockManager
from coreason_workspace.models.events import (
    CloseTerminal,
    CreateFile,
    CreateFolder,
    CreateTerminal,
    DeleteFile,
    DeleteFolder,
    GenerateCode,
    GetFile,
    GetFolder,
    MoveFile,
    RenameFile,
    ResizeTerminal,
    SaveFile,
    TerminalData,
    parse_event,
    parse_handshake,
)
from coreason_workspace.ratelimit import RateLimiters
from coreason_workspace.session_manager import SandboxSession, SandboxSessionRegistry
from coreason_workspace.terminals import TerminalManager

OWNER_NOT_CONNECTED = "The sandbox owner is not connected."
OWNER_DISCONNECTED = "The sandbox owner has disconnected."

Handler = Callable[[Connection, Any], Awaitable[Any]]


class ConnectionRegistry:
    """Tracks live connections per sandbox, including viewers waiting for an owner."""

    def __init__(self, sessions: SandboxSessionRegistry):
        self.sessions = sessions
        self.connections: dict[str, Connection] = {}
        self.waiting: dict[str, dict[str, Connection]] = {}

    def __len__(self) -> int:
        return len(self.connections)

    def register(self, conn: Connection) -> None:
        self.connections[conn.id] = conn

    def is_owner_connected(self, sandbox_id: str) -> bool:
        session = self.sessions.get(sandbox_id)
        return session is not None and session.is_owner_connected

    def attach(self, conn: Connection) -> SandboxSession:
        assert conn.context is not None
        session = self.sessions.get_or_create(conn.context.sandbox_id)
        session.add_connection(conn, conn.context.is_owner)
        return session

    def detach(self, conn: Connection) -> tuple[SandboxSession | None, bool]:
        """Remove ``conn`` from its sandbox.

        Returns:
            The session it belonged to, and whether that was the sandbox's last owner connection.
        """
        self.connections.pop(conn.id, None)
        if conn.context is None:
            return None, False
        sandbox_id = conn.context.sandbox_id
        parked = self.waiting.get(sandbox_id)
        if parked is not None:
            parked.pop(conn.id, None)
            if not parked:
                del self.waiting[sandbox_id]

        session = self.sessions.get(sandbox_id)
        if session is None:
            return None, False
        was_owner = session.remove_connection(conn)
        return session, was_owner and not session.is_owner_connected

    def park(self, conn: Connection) -> None:
        assert conn.context is not None
        conn.state = ConnectionState.WAITING
        self.waiting.setdefault(conn.context.sandbox_id, {})[conn.id] = conn

    def unpark_all(self, sandbox_id: str) -> list[Connection]:
        parked = self.waiting.pop(sandbox_id, {})
        return [conn for conn in parked.values() if conn.state is ConnectionState.WAITING]


class SocketProtocolRouter:
    """Turns connection lifecycle events and inbound messages into calls on the sandbox managers."""

    def __init__(
        self,
        sessions: SandboxSessionRegistry,
        identity: IdentityClient,
        rate_limiters: RateLimiters,
        deployment: DeploymentCoordinator,
        ai_worker: AIWorker,
    ):
        self.sessions = sessions
        self.registry = ConnectionRegistry(sessions)
        self.identity = identity
        self.rate_limiters = rate_limiters
        self.deployment = deployment
        self.ai_worker = ai_worker
        self._handlers: dict[str, tuple[Handler, str]] = {
            "heartbeat": (self._heartbeat, "heartbeat"),
            "getFile": (self._get_file, "getting file"),
            "getFolder": (self._get_folder, "getting folder"),
            "saveFile": (self._save_file, "saving file"),
            "moveFile": (self._move_file, "moving file"),
            "createFile": (self._create_file, "creating file"),
            "createFolder": (self._create_folder, "creating folder"),
            "renameFile": (self._rename_file, "renaming file"),
            "deleteFile": (self._delete_file, "deleting file"),
            "deleteFolder": (self._delete_folder, "deleting folder"),
            "createTerminal": (self._create_terminal, "creating terminal"),
            "resizeTerminal": (self._resize_terminal, "resizing terminal"),
            "terminalData": (self._terminal_data, "writing to terminal"),
            "closeTerminal": (self._close_terminal, "closing terminal"),
            "deploy": (self._deploy, "deploying project"),
            "list": (self._list_apps, "listing apps"),
            "generateCode": (self._generate_code, "generating code"),
        }

    @classmethod
    def from_config(cls, config: WorkspaceConfig) -> "SocketProtocolRouter":
        """Wire up every collaborator from configuration."""
        lock_manager = LockManager()
        identity = IdentityClient(config.database_url, config.workers_key)
        return cls(
            SandboxSessionRegistry(config, SandboxFactory.get_storage(config), lock_manager),
            identity,
            RateLimiters(config.rate_limits),
            DeploymentCoordinator.from_config(config, lock_manager),
            AIWorker(config.ai_worker_url, config.ai_key, identity, config.max_generations),
        )

    # Lifecycle

    async def connect(self, conn: Connection, query: dict[str, Any]) -> bool:
        """Authenticate a new connection and admit it to its sandbox.

        Returns:
            bool: False if the connection was rejected and closed.
        """
        self.registry.register(conn)
        try:
            handshake = parse_handshake(query)
        except ValidationError as e:
            logger.warning(f"Rejected handshake: {e}", query=query)
            return self._reject(conn, str(e))

        try:
            user = await self.identity.get_user(handshake.user_id)
        except UpstreamFailure:
            return self._reject(conn, "DB error.")
        if user is None:
            return self._reject(conn, "DB error.")

        sandbox_id = handshake.sandbox_id
        is_owner = user.owns(sandbox_id)
        if not is_owner and not user.has_shared_access(sandbox_id):
            logger.warning(f"User {user.id} has no access to {sandbox_id}")
            return self._reject(conn, "Invalid credentials.")

        conn.context = ConnectionContext(user_id=handshake.user_id, sandbox_id=sandbox_id, is_owner=is_owner)
        conn.state = ConnectionState.AUTHENTICATED
        logger.info(
            f"Connection {conn.id} authenticated", user_id=handshake.user_id, sandbox_id=sandbox_id, owner=is_owner
        )

        if not is_owner and not self.registry.is_owner_connected(sandbox_id):
            self.registry.park(conn)
            conn.emit("disableAccess", OWNER_NOT_CONNECTED)
            return True

        return await self._activate(conn)

    def _reject(self, conn: Connection, message: str) -> bool:
        self.registry.connections.pop(conn.id, None)
        conn.emit("error", message)
        conn.close()
        return False

    async def _activate(self, conn: Connection) -> bool:
        assert conn.context is not None
        sandbox_id = conn.context.sandbox_id
        session = self.registry.attach(conn)

        try:
            created = await self.sessions.ensure_compute(sandbox_id)
        except Exception as e:
            logger.error(f"Failed to set up sandbox {sandbox_id}: {e}")
            self.registry.detach(conn)
            conn.emit("error", f"Error: container creation. {e}")
            conn.close()
            return False

        if conn.state is ConnectionState.CLOSED:
            # Client went away while the sandbox was being set up
            return False

        assert session.file_manager is not None
        conn.state = ConnectionState.ACTIVE
        if created:
            # Everyone already active was looking at the previous sandbox
            session.publish("loaded", session.file_manager.tree)
        else:
            conn.emit("loaded", session.file_manager.tree)

        if conn.context.is_owner:
            for viewer in self.registry.unpark_all(sandbox_id):
                await self._activate(viewer)
        return True

    async def disconnect(self, conn: Connection) -> None:
        """Release everything a closing connection held."""
        conn.close()
        try:
            session, owner_left = self.registry.detach(conn)
            if session is None:
                return
            terminals = session.terminal_manager
            if terminals is not None:
                await terminals.close_connection_terminals(conn.id)

            if owner_left:
                logger.info(f"Owner left sandbox {session.sandbox_id}. Disabling viewers.")
                for viewer in list(session.connections.values()):
                    viewer.emit("disableAccess", OWNER_DISCONNECTED)
                    session.remove_connection(viewer)
                    self.registry.park(viewer)
                if terminals is not None:
                    await terminals.close_all()
        except Exception as e:
            logger.error(f"Error cleaning up connection {conn.id}: {e}")

    async def shutdown(self) -> None:
        for conn in list(self.registry.connections.values()):
            conn.close()
        await self.sessions.shutdown()
        await self.identity.aclose()
        await self.ai_worker.aclose()
        self.deployment.close()

    # Dispatch

    async def handle(self, conn: Connection, raw: str | bytes | dict[str, Any]) -> None:
        """Validate one inbound message, run its handler and reply on ``conn``."""
        if conn.state is ConnectionState.WAITING:
            conn.emit("disableAccess", OWNER_NOT_CONNECTED)
            return
        if conn.state is not ConnectionState.ACTIVE:
            logger.warning(f"Ignoring message on {conn.state.value} connection {conn.id}")
            return

        try:
            event = parse_event(raw)
        except ValidationError as e:
            logger.warning(f"Invalid message on {conn.id}: {e}")
            conn.emit("error", str(e))
            return

        handler, action = self._handlers[event.event]
        try:
            result = await handler(conn, event)
        except RateLimited as e:
            conn.emit("rateLimit", str(e))
            return
        except Exception as e:
            logger.error(f"Error {action}: {e}", connection_id=conn.id, event=event.event)
            conn.emit("error", f"Error: {action}. {e}")
            return

        if event.ack is not None:
            conn.ack(event.ack, result)

    def _session(self, conn: Connection) -> SandboxSession:
        assert conn.context is not None
        session = self.sessions.get(conn.context.sandbox_id)
        if session is None:
            raise UpstreamFailure("Sandbox session is not available.")
        session.touch()
        return session

    def _files(self, conn: Connection) -> FileManager:
        file_manager = self._session(conn).file_manager
        if file_manager is None:
            raise UpstreamFailure("Project files are not loaded.")
        return file_manager

    def _terminals(self, conn: Connection) -> TerminalManager:
        terminals = self._session(conn).terminal_manager
        if terminals is None:
            raise UpstreamFailure("Sandbox is not running.")
        return terminals

    def _limit(self, kind: str, conn: Connection) -> None:
        assert conn.context is not None
        self.rate_limiters.consume(kind, conn.context.user_id)

    def _broadcast_tree(self, conn: Connection, file_manager: FileManager) -> None:
        self._session(conn).publish("loaded", file_manager.tree, exclude=conn.id)

    # Handlers

    async def _heartbeat(self, conn: Connection, event: Any) -> None:
        assert conn.context is not None
        if await self.sessions.heartbeat(conn.context.sandbox_id):
            session = self._session(conn)
            assert session.file_manager is not None
            session.publish("loaded", session.file_manager.tree)

    async def _get_file(self, conn: Connection, event: GetFile) -> str:
        return await self._files(conn).get_file_content(event.file_id)

    async def _get_folder(self, conn: Connection, event: GetFolder) -> list[str]:
        return self._files(conn).list_folder(event.folder_id)

    async def _save_file(self, conn: Connection, event: SaveFile) -> None:
        self._limit("saveFile", conn)
        await self._files(conn).save_file(event.file_id, event.body)

    async def _move_file(self, conn: Connection, event: MoveFile) -> Any:
        file_manager = self._files(conn)
        tree = await file_manager.move_file(event.file_id, event.folder_id)
        self._broadcast_tree(conn, file_manager)
        return tree

    async def _create_file(self, conn: Connection, event: CreateFile) -> dict[str, bool]:
        self._limit("createFile", conn)
        file_manager = self._files(conn)
        success = await file_manager.create_file(event.name)
        if success:
            self._broadcast_tree(conn, file_manager)
        return {"success": success}

    async def _create_folder(self, conn: Connection, event: CreateFolder) -> dict[str, bool]:
        self._limit("createFolder", conn)
        file_manager = self._files(conn)
        success = await file_manager.create_folder(event.name)
        if success:
            self._broadcast_tree(conn, file_manager)
        return {"success": success}

    async def _rename_file(self, conn: Connection, event: RenameFile) -> Any:
        self._limit("renameFile", conn)
        file_manager = self._files(conn)
        tree = await file_manager.rename_file(event.file_id, event.new_name)
        self._broadcast_tree(conn, file_manager)
        return tree

    async def _delete_file(self, conn: Connection, event: DeleteFile) -> Any:
        self._limit("deleteFile", conn)
        file_manager = self._files(conn)
        tree = await file_manager.delete_file(event.file_id)
        self._broadcast_tree(conn, file_manager)
        return tree

    async def _delete_folder(self, conn: Connection, event: DeleteFolder) -> Any:
        self._limit("deleteFile", conn)
        file_manager = self._files(conn)
        tree = await file_manager.delete_folder(event.folder_id)
        self._broadcast_tree(conn, file_manager)
        return tree

    async def _create_terminal(self, conn: Connection, event: CreateTerminal) -> None:
        await self._terminals(conn).create_terminal(event.id, connection_id=conn.id)

    async def _resize_terminal(self, conn: Connection, event: ResizeTerminal) -> None:
        await self._terminals(conn).resize(event.dimensions.cols, event.dimensions.rows)

    async def _terminal_data(self, conn: Connection, event: TerminalData) -> None:
        await self._terminals(conn).write_input(event.id, event.data)

    async def _close_terminal(self, conn: Connection, event: CloseTerminal) -> bool:
        return await self._terminals(conn).close_terminal(event.id)

    async def _deploy(self, conn: Connection, event: Any) -> Any:
        assert conn.context is not None
        return await self.deployment.deploy(conn.context.sandbox_id, self._files(conn))

    async def _list_apps(self, conn: Connection, event: Any) -> Any:
        return await self.deployment.list_apps()

    async def _generate_code(self, conn: Connection, event: GenerateCode) -> Any:
        assert conn.context is not None
        return await self.ai_worker.generate_code(
            conn.context.user_id, event.file_name, event.code, event.line, event.instructions
        )
