import dataclasses

import pytest

from hmdl.config import (
    ConfigurationError,
    HeimdallConfig,
    ResolvedHeimdallConfig,
    resolve_config,
    validate_config,
)


def test_defaults_without_environment():
    config = resolve_config()

    assert config.api_key is None
    assert config.endpoint == "https://api.heimdall.dev"
    assert config.traces_endpoint == "https://api.heimdall.dev/v1/traces"
    assert config.org_id == "default"
    assert config.project_id == "default"
    assert config.service_name == "mcp-server"
    assert config.environment == "development"
    assert config.enabled is True
    assert config.debug is False
    assert config.batch_size == 100
    assert config.flush_interval_ms == 5000
    assert config.max_queue_size == 1000
    assert config.session_id is None
    assert config.user_id is None
    assert dict(config.metadata) == {}


def test_environment_variables_are_read(monkeypatch):
    monkeypatch.setenv("HEIMDALL_API_KEY", "env-key")
    monkeypatch.setenv("HEIMDALL_ENDPOINT", "http://localhost:4318/")
    monkeypatch.setenv("HEIMDALL_ORG_ID", "org-1")
    monkeypatch.setenv("HEIMDALL_PROJECT_ID", "proj-1")
    monkeypatch.setenv("HEIMDALL_SERVICE_NAME", "env-service")
    monkeypatch.setenv("HEIMDALL_ENVIRONMENT", "production")
    monkeypatch.setenv("HEIMDALL_BATCH_SIZE", "10")
    monkeypatch.setenv("HEIMDALL_FLUSH_INTERVAL_MS", "250")
    monkeypatch.setenv("HEIMDALL_MAX_QUEUE_SIZE", "20")
    monkeypatch.setenv("HEIMDALL_SESSION_ID", "env-session")
    monkeypatch.setenv("HEIMDALL_USER_ID", "env-user")

    config = resolve_config()

    assert config.api_key == "env-key"
    assert config.traces_endpoint == "http://localhost:4318/v1/traces"
    assert config.org_id == "org-1"
    assert config.project_id == "proj-1"
    assert config.service_name == "env-service"
    assert config.environment == "production"
    assert (config.batch_size, config.flush_interval_ms, config.max_queue_size) == (10, 250, 20)
    assert config.session_id == "env-session"
    assert config.user_id == "env-user"


def test_explicit_values_override_environment(monkeypatch):
    monkeypatch.setenv("HEIMDALL_SERVICE_NAME", "env-service")
    monkeypatch.setenv("HEIMDALL_ENABLED", "true")
    monkeypatch.setenv("HEIMDALL_BATCH_SIZE", "50")

    config = resolve_config(HeimdallConfig(service_name="explicit", enabled=False, batch_size=5))

    assert config.service_name == "explicit"
    assert config.enabled is False
    assert config.batch_size == 5


def test_empty_environment_values_count_as_unset(monkeypatch):
    monkeypatch.setenv("HEIMDALL_SERVICE_NAME", "")
    monkeypatch.setenv("HEIMDALL_API_KEY", "")

    config = resolve_config()

    assert config.service_name == "mcp-server"
    assert config.api_key is None


def test_invalid_integers_fall_back_to_defaults(monkeypatch):
    monkeypatch.setenv("HEIMDALL_BATCH_SIZE", "lots")
    monkeypatch.setenv("HEIMDALL_FLUSH_INTERVAL_MS", "1.5")

    config = resolve_config()

    assert config.batch_size == 100
    assert config.flush_interval_ms == 5000


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("true", True),
        ("TRUE", True),
        ("1", True),
        ("yes", True),
        (" on ", True),
        ("false", False),
        ("0", False),
        ("off", False),
        ("maybe", False),
    ],
)
def test_boolean_environment_parsing(monkeypatch, raw, expected):
    monkeypatch.setenv("HEIMDALL_ENABLED", raw)
    monkeypatch.setenv("HEIMDALL_DEBUG", raw)

    config = resolve_config()

    assert config.enabled is expected
    assert config.debug is expected


def test_metadata_is_copied():
    metadata = {"team": "search"}

    config = resolve_config(HeimdallConfig(metadata=metadata))
    metadata["team"] = "changed"

    assert config.metadata == {"team": "search"}


def test_resolved_config_is_frozen_and_hides_api_key():
    config = resolve_config(HeimdallConfig(api_key="secret"))

    with pytest.raises(dataclasses.FrozenInstanceError):
        config.api_key = "other"  # type: ignore[misc]
    public = config.public_dict()
    assert "api_key" not in public
    assert "secret" not in public.values()


def test_validate_config_accepts_defaults():
    validate_config(resolve_config())


@pytest.mark.parametrize(
    "overrides, message",
    [
        ({"batch_size": 0}, "batch_size must be at least 1"),
        ({"flush_interval_ms": 50}, "flush_interval_ms must be at least 100"),
        ({"batch_size": 10, "max_queue_size": 5}, "max_queue_size must be at least batch_size"),
    ],
)
def test_validate_config_rejects_unusable_sizes(overrides, message):
    config = resolve_config(HeimdallConfig(**overrides))

    with pytest.raises(ConfigurationError, match=message):
        validate_config(config)


def test_configuration_error_is_a_value_error():
    assert issubclass(ConfigurationError, ValueError)
    assert isinstance(resolve_config(), ResolvedHeimdallConfig)
