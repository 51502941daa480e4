from unittest.mock import patch

from coreason_workspace.config import WorkspaceConfig
from coreason_workspace.integrations.vault import VaultIntegrator
from coreason_workspace.ratelimit import MUTATING_OPERATIONS


def test_defaults() -> None:
    with patch.dict("os.environ", {}, clear=True):
        config = WorkspaceConfig()
    assert config.port == 4000
    assert config.max_terminals == 4
    assert config.storage_prefix == "projects"
    assert set(MUTATING_OPERATIONS) <= set(config.rate_limits)
    assert not config.deployment_enabled


def test_vault_settings_source_injects_secrets() -> None:
    """Test that VaultSettingsSource hydrates config from env vars (simulated vault)."""
    env = {"E2B_API_KEY": "secret_key", "WORKERS_KEY": "workers", "CF_AI_KEY": "ai"}
    with patch.dict("os.environ", env, clear=True):
        config = WorkspaceConfig()
    assert config.e2b_api_key == "secret_key"
    assert config.workers_key == "workers"
    assert config.ai_key == "ai"


def test_vault_settings_source_ignores_missing() -> None:
    with patch.dict("os.environ", {}, clear=True):
        config = WorkspaceConfig()
        assert config.e2b_api_key is None
        assert config.s3_access_key is None


def test_env_prefix_overrides() -> None:
    env = {
        "COREASON_WORKSPACE_PORT": "9000",
        "COREASON_WORKSPACE_DOKKU_HOST": "deploy.example.com",
        "COREASON_WORKSPACE_DOKKU_USERNAME": "dokku",
        "COREASON_WORKSPACE_DOKKU_KEY_PATH": "/keys/id_ed25519",
    }
    with patch.dict("os.environ", env, clear=True):
        config = WorkspaceConfig()
    assert config.port == 9000
    assert config.deployment_enabled


def test_explicit_values_beat_vault(mock_vault_integrator) -> None:  # type: ignore[no-untyped-def]
    mock_vault_integrator.return_value.get_secret.return_value = "from-vault"
    config = WorkspaceConfig(e2b_api_key="explicit")
    assert config.e2b_api_key == "explicit"
    assert config.s3_secret_key == "from-vault"


def test_vault_integrator_prefixed_fallback() -> None:
    with patch.dict("os.environ", {"COREASON_WORKSPACE_S3_ACCESS_KEY": "prefixed"}, clear=True):
        assert VaultIntegrator().get_secret("S3_ACCESS_KEY") == "prefixed"
        assert VaultIntegrator().get_secret("MISSING") is None
