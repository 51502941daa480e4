# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_workspace

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Callable


@dataclass
class PtyProcess:
    """A pseudo-terminal process started inside the sandbox."""

    pid: int
    handle: Any = None


class SandboxRuntime(ABC):
    """
    Abstract base class for compute sandbox providers (e.g., E2B).
    Follows the Strategy Pattern.
    """

    @property
    @abstractmethod
    def sandbox_id(self) -> str | None:
        """Provider id of the running sandbox, or None before start."""

    @abstractmethod
    async def start(self) -> None:
        """Boot the environment.

        Raises:
            UpstreamFailure: If the provider fails to create the sandbox.
        """
        pass  # pragma: no cover

    @abstractmethod
    async def is_running(self) -> bool:
        """Liveness check. Returns False when the sandbox timed out or was never started."""
        pass  # pragma: no cover

    @abstractmethod
    async def set_timeout(self, seconds: float) -> None:
        """Extend the provider-side idle timeout."""
        pass  # pragma: no cover

    @abstractmethod
    async def write_file(self, path: str, content: str) -> None:
        pass  # pragma: no cover

    @abstractmethod
    async def make_dir(self, path: str) -> None:
        pass  # pragma: no cover

    @abstractmethod
    async def rename(self, old_path: str, new_path: str) -> None:
        pass  # pragma: no cover

    @abstractmethod
    async def remove(self, path: str) -> None:
        pass  # pragma: no cover

    @abstractmethod
    async def create_pty(
        self, cols: int, rows: int, on_data: Callable[[bytes], None], cwd: str | None = None
    ) -> PtyProcess:
        """Start an interactive shell attached to a pseudo-terminal.

        Args:
            cols: Terminal width.
            rows: Terminal height.
            on_data: Called with every chunk of raw output, in order.
            cwd: Working directory of the shell.

        Returns:
            PtyProcess: Handle identifying the process.
        """
        pass  # pragma: no cover

    @abstractmethod
    async def send_pty_input(self, pid: int, data: bytes) -> None:
        pass  # pragma: no cover

    @abstractmethod
    async def resize_pty(self, pid: int, cols: int, rows: int) -> None:
        pass  # pragma: no cover

    @abstractmethod
    async def kill_pty(self, pid: int) -> bool:
        """Kill a PTY process. Returns False if it had already exited."""
        pass  # pragma: no cover

    @abstractmethod
    async def wait_pty(self, process: PtyProcess) -> None:
        """Block until the PTY process exits, whatever its exit status."""
        pass  # pragma: no cover

    @abstractmethod
    async def terminate(self) -> None:
        """Kill and cleanup the sandbox environment."""
        pass  # pragma: no cover
