"""Heimdall observability SDK for MCP servers.

Instruments MCP (Model Context Protocol) tool, resource and prompt handlers
with OpenTelemetry spans, labelled with the session and user that made each
call.
"""

__version__ = "0.1.0"

from .client import HeimdallClient
from .config import (
    ConfigurationError,
    HeimdallConfig,
    ResolvedHeimdallConfig,
    resolve_config,
    validate_config,
)
from .context import (
    AUTHORIZATION_HEADER,
    MCP_SESSION_ID_HEADER,
    MCPRequestContext,
    create_mcp_context,
    extract_identity,
    extract_user_id_from_token,
    get_mcp_context,
    mcp_context,
    parse_jwt_claims,
    run_with_mcp_context,
    run_with_mcp_context_async,
    set_mcp_context,
)
from .middleware import MCPContextMiddleware, instrument_app
from .types import HeimdallAttributes, SpanKind, SpanStatus
from .wrappers import (
    SessionExtractor,
    UserExtractor,
    mcp_prompt,
    mcp_resource,
    mcp_tool,
    observe,
    observed,
    trace_mcp_prompt,
    trace_mcp_resource,
    trace_mcp_tool,
)

VERSION = __version__

__all__ = [
    "AUTHORIZATION_HEADER",
    "ConfigurationError",
    "HeimdallAttributes",
    "HeimdallClient",
    "HeimdallConfig",
    "MCPContextMiddleware",
    "MCPRequestContext",
    "MCP_SESSION_ID_HEADER",
    "ResolvedHeimdallConfig",
    "SessionExtractor",
    "SpanKind",
    "SpanStatus",
    "UserExtractor",
    "VERSION",
    "create_mcp_context",
    "extract_identity",
    "extract_user_id_from_token",
    "get_mcp_context",
    "instrument_app",
    "mcp_context",
    "mcp_prompt",
    "mcp_resource",
    "mcp_tool",
    "observe",
    "observed",
    "parse_jwt_claims",
    "resolve_config",
    "run_with_mcp_context",
    "run_with_mcp_context_async",
    "set_mcp_context",
    "trace_mcp_prompt",
    "trace_mcp_resource",
    "trace_mcp_tool",
    "validate_config",
]
