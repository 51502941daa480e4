# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_workspace

from typing import Any

from pydantic_settings import BaseSettings, PydanticBaseSettingsSource, SettingsConfigDict

from coreason_workspace.integrations.vault import VaultIntegrator


class VaultSettingsSource(PydanticBaseSettingsSource):
    """
    Custom Pydantic Settings Source that reads secrets from Vault.
    """

    def get_field_value(self, field: Any, field_name: str) -> tuple[Any, str, bool]:
        # Required by the abstract base class; __call__ returns the full dict instead.
        return None, field_name, False  # pragma: no cover

    def __call__(self) -> dict[str, Any]:
        vault = VaultIntegrator()
        secrets: dict[str, Any] = {}

        # Config field -> Vault key
        mapping = {
            "e2b_api_key": "E2B_API_KEY",
            "s3_access_key": "S3_ACCESS_KEY",
            "s3_secret_key": "S3_SECRET_KEY",
            "workers_key": "WORKERS_KEY",
            "ai_key": "CF_AI_KEY",
        }

        for field, key in mapping.items():
            val = vault.get_secret(key)
            if val:
                secrets[field] = val

        return secrets


class WorkspaceConfig(BaseSettings):
    """
    Configuration for the collaborative workspace server.
    """

    host: str = "0.0.0.0"
    port: int = 4000

    # Compute sandbox (E2B)
    e2b_api_key: str | None = None
    e2b_template: str | None = None
    sandbox_timeout: float = 120.0
    sandbox_create_retries: int = 3
    sandbox_create_backoff: float = 1.0
    project_dir: str = "/home/user/project"

    # Object storage (S3 / R2)
    s3_bucket: str = "sandbox-projects"
    s3_region: str | None = None
    s3_access_key: str | None = None
    s3_secret_key: str | None = None
    s3_endpoint_url: str | None = None
    storage_prefix: str = "projects"

    # Limits
    max_file_size: int = 5 * 1024 * 1024
    max_project_size: int = 200 * 1024 * 1024
    max_terminals: int = 4
    terminal_cols: int = 80
    terminal_rows: int = 20
    rate_limits: dict[str, str] = {
        "createFile": "1/2 seconds",
        "createFolder": "1/2 seconds",
        "renameFile": "1/2 seconds",
        "deleteFile": "1/2 seconds",
        "saveFile": "1/2 seconds",
    }

    # Session lifecycle
    idle_timeout: float = 300.0  # grace period after the last disconnect
    reaper_interval: float = 60.0

    # Identity / database worker
    database_url: str = "http://localhost:8787"
    workers_key: str | None = None

    # AI code generation
    ai_worker_url: str | None = None
    ai_key: str | None = None
    max_generations: int = 1000

    # Deployment (Dokku)
    dokku_host: str | None = None
    dokku_username: str | None = None
    dokku_key_path: str | None = None

    model_config = SettingsConfigDict(
        env_prefix="COREASON_WORKSPACE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    @property
    def deployment_enabled(self) -> bool:
        return bool(self.dokku_host and self.dokku_username and self.dokku_key_path)

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        return (
            init_settings,
            env_settings,
            dotenv_settings,
            VaultSettingsSource(settings_cls),
            file_secret_settings,
        )
