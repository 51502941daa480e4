# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_workspace

from loguru import logger

from coreason_workspace.config import WorkspaceConfig
from coreason_workspace.exceptions import UpstreamFailure
from coreason_workspace.files import FileManager
from coreason_workspace.integrations.dokku import DokkuClient
from coreason_workspace.integrations.git import SecureGitClient
from coreason_workspace.lock import LockManager
from coreason_workspace.models.results import AppsResult, DeployResult


class DeploymentCoordinator:
    """Pushes project snapshots to the deployment target.

    Deploys hold the sandbox lock, so a deploy never overlaps another deploy or a sandbox
    re-creation for the same sandbox. Failures are reported, never retried.
    """

    def __init__(
        self,
        lock_manager: LockManager,
        git: SecureGitClient | None = None,
        dokku: DokkuClient | None = None,
    ):
        self.lock_manager = lock_manager
        self.git = git
        self.dokku = dokku

    @classmethod
    def from_config(cls, config: WorkspaceConfig, lock_manager: LockManager) -> "DeploymentCoordinator":
        if not config.deployment_enabled:
            logger.warning("Dokku host, username or key not configured. Deployment disabled.")
            return cls(lock_manager)
        assert config.dokku_host and config.dokku_username and config.dokku_key_path
        return cls(
            lock_manager,
            git=SecureGitClient(f"dokku@{config.dokku_host}", config.dokku_key_path),
            dokku=DokkuClient(config.dokku_host, config.dokku_username, config.dokku_key_path),
        )

    async def deploy(self, sandbox_id: str, file_manager: FileManager) -> DeployResult:
        """Package the current file-tree mirror and push it as app ``sandbox_id``."""
        git = self.git
        if git is None:
            return DeployResult(success=False, message="Deployment is not configured.")

        async def _deploy() -> DeployResult:
            files = file_manager.project_files()
            logger.info(f"Deploying project {sandbox_id}", files=len(files))
            try:
                await git.push_files(files, sandbox_id)
            except UpstreamFailure as e:
                return DeployResult(success=False, message=f"Failed to deploy project: {e}")
            return DeployResult(success=True, message=f"Deployed {sandbox_id}.")

        return await self.lock_manager.acquire_lock(sandbox_id, _deploy)

    async def list_apps(self) -> AppsResult:
        if self.dokku is None:
            return AppsResult(success=False, message="Deployment is not configured.")
        try:
            apps = await self.dokku.list_apps()
        except UpstreamFailure as e:
            logger.error(f"Failed to retrieve apps list: {e}")
            return AppsResult(success=False, message="Failed to retrieve apps list")
        return AppsResult(success=True, apps=apps)

    def close(self) -> None:
        if self.dokku is not None:
            self.dokku.close()
