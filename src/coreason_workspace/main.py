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
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator

import uvicorn
from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from fastapi.websockets import WebSocketState

from coreason_workspace.config import WorkspaceConfig
from coreason_workspace.connection import Connection, ConnectionState
from coreason_workspace.router import SocketProtocolRouter
from coreason_workspace.utils.logger import logger


async def _send_outbound(conn: Connection, websocket: WebSocket) -> None:
    """Deliver queued events to the client in order until the connection closes."""
    async for message in conn.messages():
        try:
            await websocket.send_json(message)
        except Exception as e:
            logger.warning(f"Failed to deliver {message.get('event')} to {conn.id}: {e}")
            conn.close()
            return


def create_app(config: WorkspaceConfig | None = None, router: SocketProtocolRouter | None = None) -> FastAPI:
    """Build the workspace server.

    Args:
        config: Settings used to wire the router. Loaded from the environment if omitted.
        router: Pre-built router, mostly for tests. Built from ``config`` if omitted.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        if getattr(app.state, "router", None) is None:
            app.state.router = SocketProtocolRouter.from_config(config or WorkspaceConfig())
        logger.info("Workspace server started")
        yield
        logger.info("Workspace server shutting down")
        await app.state.router.shutdown()

    app = FastAPI(title="coreason-workspace", lifespan=lifespan)
    app.state.router = router

    @app.get("/health")
    async def health() -> dict[str, Any]:
        active: SocketProtocolRouter = app.state.router
        return {
            "status": "ok",
            "sessions": len(active.sessions.sessions),
            "connections": len(active.registry),
        }

    @app.websocket("/ws")
    async def workspace_socket(websocket: WebSocket) -> None:
        """Multiplexed event channel for one client of one sandbox."""
        await websocket.accept()
        active: SocketProtocolRouter = app.state.router
        conn = Connection()
        sender = asyncio.create_task(_send_outbound(conn, websocket))

        try:
            if await active.connect(conn, dict(websocket.query_params)):
                while conn.state is not ConnectionState.CLOSED:
                    raw = await websocket.receive_text()
                    await active.handle(conn, raw)
        except WebSocketDisconnect:
            logger.info(f"Client disconnected: {conn.id}")
        except Exception as e:
            logger.exception(f"Connection {conn.id} failed: {e}")
        finally:
            await active.disconnect(conn)
            await sender
            if websocket.client_state is WebSocketState.CONNECTED:
                await websocket.close()

    return app


def main() -> None:  # pragma: no cover
    config = WorkspaceConfig()
    uvicorn.run(create_app(config), host=config.host, port=config.port)


if __name__ == "__main__":  # pragma: no cover
    main()
