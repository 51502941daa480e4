# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_workspace

from coreason_workspace.config import WorkspaceConfig
from coreason_workspace.runtime import SandboxRuntime
from coreason_workspace.runtimes.e2b import E2BRuntime
from coreason_workspace.storage import S3Storage


class SandboxFactory:
    """
    Factory to create compute runtimes and storage backends from configuration.
    """

    @staticmethod
    def get_runtime(config: WorkspaceConfig) -> SandboxRuntime:
        """
        Returns a fresh, unstarted SandboxRuntime.
        """
        return E2BRuntime(
            api_key=config.e2b_api_key,
            template=config.e2b_template,
            timeout=config.sandbox_timeout,
        )

    @staticmethod
    def get_storage(config: WorkspaceConfig) -> S3Storage:
        return S3Storage(
            bucket=config.s3_bucket,
            region=config.s3_region,
            access_key=config.s3_access_key,
            secret_key=config.s3_secret_key,
            endpoint_url=config.s3_endpoint_url,
        )
