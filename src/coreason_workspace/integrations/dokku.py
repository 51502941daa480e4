# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_workspace

from dataclasses import dataclass

import anyio
import paramiko
from loguru import logger

from coreason_workspace.exceptions import UpstreamFailure


@dataclass
class CommandOutput:
    stdout: str
    stderr: str
    exit_code: int


class DokkuClient:
    """Runs Dokku commands on the deployment host over SSH."""

    def __init__(self, host: str, username: str, key_path: str, port: int = 22, timeout: int = 20):
        self.host = host
        self.username = username
        self.key_path = key_path
        self.port = port
        self.timeout = timeout
        self._ssh: paramiko.SSHClient | None = None

    def _connect(self) -> paramiko.SSHClient:
        if self._ssh is not None:
            transport = self._ssh.get_transport()
            if transport is not None and transport.is_active():
                return self._ssh
            self._ssh.close()

        ssh = paramiko.SSHClient()
        ssh.set_missing_host_key_policy(paramiko.AutoAddPolicy())
        ssh.connect(
            hostname=self.host,
            port=self.port,
            username=self.username,
            key_filename=self.key_path,
            timeout=self.timeout,
            allow_agent=False,
            look_for_keys=False,
        )
        logger.info(f"Connected to Dokku host {self.host}")
        self._ssh = ssh
        return ssh

    async def run_command(self, command: str) -> CommandOutput:
        """Run one Dokku command.

        Raises:
            UpstreamFailure: If the connection fails or the command exits non-zero.
        """

        def _run() -> CommandOutput:
            ssh = self._connect()
            _, stdout, stderr = ssh.exec_command(command, timeout=self.timeout)
            out = stdout.read().decode(errors="ignore")
            err = stderr.read().decode(errors="ignore")
            return CommandOutput(stdout=out, stderr=err, exit_code=stdout.channel.recv_exit_status())

        try:
            result = await anyio.to_thread.run_sync(_run)
        except (paramiko.SSHException, OSError) as e:
            logger.error(f"Dokku command {command!r} failed: {e}")
            raise UpstreamFailure(f"Deployment host unreachable: {e}") from e

        if result.exit_code != 0:
            raise UpstreamFailure(f"Dokku command {command!r} failed: {result.stderr.strip()}")
        return result

    async def list_apps(self) -> list[str]:
        result = await self.run_command("apps:list")
        # First line is the "=====> My Apps" banner
        return [
            line.strip() for line in result.stdout.splitlines() if line.strip() and not line.startswith("=====>")
        ]

    def close(self) -> None:
        if self._ssh is not None:
            self._ssh.close()
            self._ssh = None
