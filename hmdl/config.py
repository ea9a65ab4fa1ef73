"""Configuration for the Heimdall SDK.

Every setting can be passed explicitly through :class:`HeimdallConfig` or
picked up from a ``HEIMDALL_*`` environment variable. Explicit values win over
the environment, and the environment wins over the built-in defaults.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Any, Mapping

DEFAULT_ENDPOINT = "https://api.heimdall.dev"
DEFAULT_SERVICE_NAME = "mcp-server"
DEFAULT_ENVIRONMENT = "development"
DEFAULT_ORG_ID = "default"
DEFAULT_PROJECT_ID = "default"
DEFAULT_BATCH_SIZE = 100
DEFAULT_FLUSH_INTERVAL_MS = 5000
DEFAULT_MAX_QUEUE_SIZE = 1000

_TRUTHY = ("true", "1", "yes", "on")


class ConfigurationError(ValueError):
    """Raised when a resolved configuration cannot be used."""


@dataclass
class HeimdallConfig:
    """Explicit configuration overrides.

    Fields left as ``None`` are resolved from the environment.

    Parameters
    ----------
    api_key:
        API key sent as a bearer token to the Heimdall endpoint. Optional for
        local development.
    endpoint:
        Base URL of the Heimdall platform; traces go to ``{endpoint}/v1/traces``.
    org_id, project_id:
        Identifiers attached to the exported resource.
    service_name, environment:
        Service metadata attached to the exported resource.
    enabled:
        When False no tracing pipeline is set up and wrappers pass through.
    debug:
        Turns on debug logging for the ``hmdl`` loggers.
    batch_size, flush_interval_ms, max_queue_size:
        Batch span processor sizing.
    session_id, user_id:
        Client-level identity defaults used when nothing more specific is
        available for a call.
    metadata:
        Free-form metadata kept with the configuration.
    """

    api_key: str | None = None
    endpoint: str | None = None
    org_id: str | None = None
    project_id: str | None = None
    service_name: str | None = None
    environment: str | None = None
    enabled: bool | None = None
    debug: bool | None = None
    batch_size: int | None = None
    flush_interval_ms: int | None = None
    max_queue_size: int | None = None
    session_id: str | None = None
    user_id: str | None = None
    metadata: Mapping[str, Any] | None = None


@dataclass(frozen=True)
class ResolvedHeimdallConfig:
    """Configuration with all defaults applied."""

    api_key: str | None
    endpoint: str
    org_id: str
    project_id: str
    service_name: str
    environment: str
    enabled: bool
    debug: bool
    batch_size: int
    flush_interval_ms: int
    max_queue_size: int
    session_id: str | None = None
    user_id: str | None = None
    metadata: Mapping[str, Any] = field(default_factory=dict)

    @property
    def traces_endpoint(self) -> str:
        return f"{self.endpoint.rstrip('/')}/v1/traces"

    def public_dict(self) -> dict[str, Any]:
        """Return the configuration without the API key."""
        return {
            "endpoint": self.endpoint,
            "org_id": self.org_id,
            "project_id": self.project_id,
            "service_name": self.service_name,
            "environment": self.environment,
            "enabled": self.enabled,
            "debug": self.debug,
            "batch_size": self.batch_size,
            "flush_interval_ms": self.flush_interval_ms,
            "max_queue_size": self.max_queue_size,
            "session_id": self.session_id,
            "user_id": self.user_id,
            "metadata": dict(self.metadata),
        }


def _get_env(key: str, default: str | None = None) -> str | None:
    value = os.getenv(key)
    # Empty variables count as unset.
    if value is None or value == "":
        return default
    return value


def _get_env_bool(key: str, default: bool) -> bool:
    value = _get_env(key)
    if value is None:
        return default
    return value.strip().lower() in _TRUTHY


def _get_env_int(key: str, default: int) -> int:
    value = _get_env(key)
    if value is None:
        return default
    try:
        return int(value.strip())
    except ValueError:
        return default


def _pick(explicit: Any, fallback: Any) -> Any:
    return fallback if explicit is None else explicit


def resolve_config(config: HeimdallConfig | None = None) -> ResolvedHeimdallConfig:
    """Resolve configuration with defaults from environment variables."""
    config = config or HeimdallConfig()
    return ResolvedHeimdallConfig(
        api_key=_pick(config.api_key, _get_env("HEIMDALL_API_KEY")),
        endpoint=_pick(config.endpoint, _get_env("HEIMDALL_ENDPOINT", DEFAULT_ENDPOINT)),
        org_id=_pick(config.org_id, _get_env("HEIMDALL_ORG_ID", DEFAULT_ORG_ID)),
        project_id=_pick(config.project_id, _get_env("HEIMDALL_PROJECT_ID", DEFAULT_PROJECT_ID)),
        service_name=_pick(
            config.service_name, _get_env("HEIMDALL_SERVICE_NAME", DEFAULT_SERVICE_NAME)
        ),
        environment=_pick(
            config.environment, _get_env("HEIMDALL_ENVIRONMENT", DEFAULT_ENVIRONMENT)
        ),
        enabled=_pick(config.enabled, _get_env_bool("HEIMDALL_ENABLED", True)),
        debug=_pick(config.debug, _get_env_bool("HEIMDALL_DEBUG", False)),
        batch_size=_pick(config.batch_size, _get_env_int("HEIMDALL_BATCH_SIZE", DEFAULT_BATCH_SIZE)),
        flush_interval_ms=_pick(
            config.flush_interval_ms,
            _get_env_int("HEIMDALL_FLUSH_INTERVAL_MS", DEFAULT_FLUSH_INTERVAL_MS),
        ),
        max_queue_size=_pick(
            config.max_queue_size,
            _get_env_int("HEIMDALL_MAX_QUEUE_SIZE", DEFAULT_MAX_QUEUE_SIZE),
        ),
        session_id=_pick(config.session_id, _get_env("HEIMDALL_SESSION_ID")),
        user_id=_pick(config.user_id, _get_env("HEIMDALL_USER_ID")),
        metadata=dict(config.metadata or {}),
    )


def validate_config(config: ResolvedHeimdallConfig) -> None:
    """Raise :class:`ConfigurationError` if ``config`` cannot drive the exporter.

    The API key is optional so that local collectors work without one.
    """
    if config.batch_size < 1:
        raise ConfigurationError("batch_size must be at least 1")
    if config.flush_interval_ms < 100:
        raise ConfigurationError("flush_interval_ms must be at least 100")
    if config.max_queue_size < config.batch_size:
        raise ConfigurationError("max_queue_size must be at least batch_size")
