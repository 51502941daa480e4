from typing import Any, Generator
from unittest.mock import patch

import pytest
from coreason_workspace.config import WorkspaceConfig
from coreason_workspace.lock import LockManager

from .fakes import FakeRuntime, InMemoryStorage


@pytest.fixture
def storage() -> InMemoryStorage:
    return InMemoryStorage()


@pytest.fixture
def lock_manager() -> LockManager:
    return LockManager()


@pytest.fixture
def runtime() -> FakeRuntime:
    return FakeRuntime()


@pytest.fixture
def config() -> WorkspaceConfig:
    with patch.dict("os.environ", {}, clear=True):
        return WorkspaceConfig(
            sandbox_create_retries=3,
            sandbox_create_backoff=0.0,
            idle_timeout=300.0,
            reaper_interval=3600.0,
        )


@pytest.fixture
def mock_vault_integrator() -> Generator[Any, None, None]:
    with patch("coreason_workspace.config.VaultIntegrator") as mock:
        yield mock
