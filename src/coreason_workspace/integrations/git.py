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
import os
import tempfile
from pathlib import Path

import aiofiles  # type: ignore[import-untyped]
from loguru import logger

from coreason_workspace.exceptions import UpstreamFailure


class SecureGitClient:
    """Pushes a snapshot of project files to a git remote over SSH with a dedicated key."""

    def __init__(self, git_url: str, ssh_key_path: str):
        """Initializes the SecureGitClient.

        Args:
            git_url: Remote base, e.g. ``dokku@deploy.example.com``. The repository name is
                appended as ``<git_url>:<repository>``.
            ssh_key_path: Private key used for the push.
        """
        self.git_url = git_url
        self.ssh_key_path = ssh_key_path

    def _env(self) -> dict[str, str]:
        env = dict(os.environ)
        env["GIT_SSH_COMMAND"] = f"ssh -i {self.ssh_key_path} -o IdentitiesOnly=yes -o StrictHostKeyChecking=no"
        return env

    async def _git(self, cwd: Path, *args: str) -> str:
        try:
            proc = await asyncio.create_subprocess_exec(
                "git",
                *args,
                cwd=str(cwd),
                env=self._env(),
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except FileNotFoundError as e:
            raise UpstreamFailure("git is not installed on the server") from e

        stdout, stderr = await proc.communicate()
        if proc.returncode != 0:
            message = stderr.decode(errors="ignore").strip()
            logger.error(f"git {args[0]} failed: {message}")
            raise UpstreamFailure(f"git {args[0]} failed: {message}")
        return stdout.decode(errors="ignore")

    async def push_files(self, files: list[tuple[str, str]], repository: str) -> None:
        """Commit ``files`` into a fresh repository and force-push it to ``repository``.

        Args:
            files: Project-relative paths and their contents.
            repository: Remote repository (Dokku app) name.

        Raises:
            UpstreamFailure: If any git step fails.
        """
        with tempfile.TemporaryDirectory(ignore_cleanup_errors=True) as tmp_dir_str:
            tmp_dir = Path(tmp_dir_str)
            try:
                for relative_path, body in files:
                    target = tmp_dir / relative_path
                    target.parent.mkdir(parents=True, exist_ok=True)
                    async with aiofiles.open(target, "w", encoding="utf-8") as f:
                        await f.write(body)
            except OSError as e:
                logger.error(f"Failed to write deploy snapshot for {repository}: {e}")
                raise UpstreamFailure(f"Could not prepare deploy snapshot: {e}") from e

            remote = f"{self.git_url}:{repository}"
            await self._git(tmp_dir, "init", "-b", "master")
            await self._git(tmp_dir, "add", "-A")
            await self._git(
                tmp_dir,
                "-c",
                "user.name=Sandbox",
                "-c",
                "user.email=sandbox@localhost",
                "commit",
                "--allow-empty",
                "-m",
                "Deploy from sandbox",
            )
            logger.info(f"Pushing {len(files)} files to {remote}")
            await self._git(tmp_dir, "push", "--force", remote, "master")
