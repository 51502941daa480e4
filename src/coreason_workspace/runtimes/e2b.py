# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_workspace

import os
from typing import Callable

from e2b import CommandExitException, PtySize, SandboxException
from e2b_code_interpreter import AsyncSandbox
from loguru import logger

from coreason_workspace.exceptions import UpstreamFailure
from coreason_workspace.runtime import PtyProcess, SandboxRuntime


class E2BRuntime(SandboxRuntime):
    """E2B Cloud implementation of the SandboxRuntime.

    Uses E2B cloud-based microVMs. The provider enforces the idle timeout; this class only
    reports liveness and extends the timeout on request.
    """

    def __init__(
        self,
        api_key: str | None = None,
        template: str | None = None,
        timeout: float = 120.0,
    ):
        """Initializes the E2BRuntime.

        Args:
            api_key: E2B API Key. Defaults to E2B_API_KEY env var.
            template: E2B template ID to use (provider default when None).
            timeout: Sandbox idle timeout in seconds.
        """
        self.api_key = api_key or os.getenv("E2B_API_KEY")
        self.template = template
        self.timeout = timeout
        self.sandbox: AsyncSandbox | None = None

    @property
    def sandbox_id(self) -> str | None:
        return self.sandbox.sandbox_id if self.sandbox else None

    def _require(self) -> AsyncSandbox:
        if not self.sandbox:
            raise UpstreamFailure("Sandbox not started")
        return self.sandbox

    async def start(self) -> None:
        """Boot the environment.

        If a sandbox is already attached it is terminated first.

        Raises:
            UpstreamFailure: If the sandbox fails to start.
        """
        if self.sandbox:
            logger.warning("E2B sandbox already attached. Terminating old sandbox before restart.")
            await self.terminate()

        logger.info(f"Starting E2B sandbox (template: {self.template or 'default'})")
        try:
            self.sandbox = await AsyncSandbox.create(
                template=self.template,
                timeout=int(self.timeout),
                api_key=self.api_key,
            )
        except SandboxException as e:
            logger.error(f"Failed to start E2B sandbox: {e}")
            raise UpstreamFailure(f"Failed to start sandbox: {e}") from e
        logger.info(f"E2B sandbox started: {self.sandbox.sandbox_id}")

    async def is_running(self) -> bool:
        if not self.sandbox:
            return False
        try:
            return bool(await self.sandbox.is_running())
        except SandboxException as e:
            logger.warning(f"E2B liveness check failed: {e}")
            return False

    async def set_timeout(self, seconds: float) -> None:
        try:
            await self._require().set_timeout(int(seconds))
        except SandboxException as e:
            raise UpstreamFailure(f"Failed to extend sandbox timeout: {e}") from e

    async def write_file(self, path: str, content: str) -> None:
        try:
            await self._require().files.write(path, content)
        except SandboxException as e:
            raise UpstreamFailure(f"Failed to write {path}: {e}") from e

    async def make_dir(self, path: str) -> None:
        try:
            await self._require().files.make_dir(path)
        except SandboxException as e:
            raise UpstreamFailure(f"Failed to create directory {path}: {e}") from e

    async def rename(self, old_path: str, new_path: str) -> None:
        try:
            await self._require().files.rename(old_path, new_path)
        except SandboxException as e:
            raise UpstreamFailure(f"Failed to rename {old_path}: {e}") from e

    async def remove(self, path: str) -> None:
        try:
            await self._require().files.remove(path)
        except SandboxException as e:
            raise UpstreamFailure(f"Failed to remove {path}: {e}") from e

    async def create_pty(
        self, cols: int, rows: int, on_data: Callable[[bytes], None], cwd: str | None = None
    ) -> PtyProcess:
        try:
            handle = await self._require().pty.create(
                size=PtySize(rows=rows, cols=cols),
                on_data=on_data,
                cwd=cwd,
                timeout=0,
            )
        except SandboxException as e:
            logger.error(f"Failed to start PTY: {e}")
            raise UpstreamFailure(f"Failed to start terminal: {e}") from e
        return PtyProcess(pid=handle.pid, handle=handle)

    async def send_pty_input(self, pid: int, data: bytes) -> None:
        try:
            await self._require().pty.send_stdin(pid, data)
        except SandboxException as e:
            raise UpstreamFailure(f"Failed to write to terminal: {e}") from e

    async def resize_pty(self, pid: int, cols: int, rows: int) -> None:
        try:
            await self._require().pty.resize(pid, PtySize(rows=rows, cols=cols))
        except SandboxException as e:
            raise UpstreamFailure(f"Failed to resize terminal: {e}") from e

    async def kill_pty(self, pid: int) -> bool:
        if not self.sandbox:
            return False
        try:
            return bool(await self.sandbox.pty.kill(pid))
        except SandboxException as e:
            logger.warning(f"Failed to kill PTY {pid}: {e}")
            return False

    async def wait_pty(self, process: PtyProcess) -> None:
        try:
            await process.handle.wait()
        except CommandExitException as e:
            logger.debug(f"PTY {process.pid} exited with code {e.exit_code}")

    async def terminate(self) -> None:
        """Kill and cleanup the sandbox environment."""
        if self.sandbox:
            logger.info(f"Terminating E2B sandbox: {self.sandbox.sandbox_id}")
            try:
                await self.sandbox.kill()
            except SandboxException as e:
                logger.warning(f"Error terminating E2B sandbox: {e}")
            finally:
                self.sandbox = None
        else:
            logger.warning("Attempted to terminate non-existent E2B sandbox")
