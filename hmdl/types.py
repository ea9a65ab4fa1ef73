"""Span kinds, statuses and the stable attribute keys emitted by hmdl.

The attribute keys are consumed by the Heimdall dashboards and must not
change.
"""

from __future__ import annotations

from enum import Enum


class SpanKind(str, Enum):
    """Heimdall-level classification stored in ``heimdall.span_kind``."""

    MCP_TOOL = "mcp.tool"
    MCP_RESOURCE = "mcp.resource"
    MCP_PROMPT = "mcp.prompt"
    MCP_REQUEST = "mcp.request"
    INTERNAL = "internal"
    CLIENT = "client"
    SERVER = "server"


class SpanStatus(str, Enum):
    UNSET = "unset"
    OK = "ok"
    ERROR = "error"


class HeimdallAttributes:
    """Standard attribute keys for Heimdall spans."""

    # MCP tool
    MCP_TOOL_NAME = "mcp.tool.name"
    MCP_TOOL_ARGUMENTS = "mcp.tool.arguments"
    MCP_TOOL_RESULT = "mcp.tool.result"

    # MCP resource
    MCP_RESOURCE_URI = "mcp.resource.uri"
    MCP_RESOURCE_METHOD = "mcp.resource.method"
    MCP_RESOURCE_ARGUMENTS = "mcp.resource.arguments"
    MCP_RESOURCE_RESULT = "mcp.resource.result"
    MCP_RESOURCE_CONTENT_TYPE = "mcp.resource.content_type"
    MCP_RESOURCE_CONTENT_LENGTH = "mcp.resource.content_length"

    # MCP prompt
    MCP_PROMPT_NAME = "mcp.prompt.name"
    MCP_PROMPT_ARGUMENTS = "mcp.prompt.arguments"
    MCP_PROMPT_MESSAGES = "mcp.prompt.messages"

    # Heimdall
    SPAN_KIND = "heimdall.span_kind"
    HEIMDALL_SESSION_ID = "heimdall.session_id"
    HEIMDALL_USER_ID = "heimdall.user_id"
    HEIMDALL_ENVIRONMENT = "heimdall.environment"
    HEIMDALL_SERVICE_NAME = "heimdall.service_name"
    HEIMDALL_ORG_ID = "heimdall.org_id"
    HEIMDALL_PROJECT_ID = "heimdall.project_id"

    # Generic input/output used by observe()
    INPUT = "heimdall.input"
    OUTPUT = "heimdall.output"

    # Status and errors
    STATUS = "heimdall.status"
    ERROR_MESSAGE = "heimdall.error.message"
    ERROR_TYPE = "heimdall.error.type"

    # Timing
    DURATION_MS = "heimdall.duration_ms"
