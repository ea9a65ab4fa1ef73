"""MCP request context management for automatic session and user tracking.

HTTP headers of an MCP request (``Mcp-Session-Id`` and ``Authorization``) are
turned into an :class:`MCPRequestContext` that is made ambient for the
duration of a call. The wrappers in :mod:`hmdl.wrappers` read it to label
spans without the identity having to be threaded through every signature.

The ambient value lives in a :class:`contextvars.ContextVar`, so it follows
the running asyncio task across ``await`` points, and concurrent requests
handled by separate tasks never see each other's identity.

.. warning::

   JWT claims are decoded **without signature verification**. Tokens must be
   authenticated by another layer before they reach this module; the claims
   are only used to label telemetry.
"""

from __future__ import annotations

import base64
import binascii
import contextvars
import inspect
import json
from contextlib import contextmanager
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Awaitable, Callable, Iterator, Mapping, TypeVar

from .log import get_logger

logger = get_logger(__name__)

MCP_SESSION_ID_HEADER = "Mcp-Session-Id"
AUTHORIZATION_HEADER = "Authorization"

# Order matters: the standard JWT subject always wins.
USER_ID_CLAIMS = ("sub", "user_id", "userId", "uid", "user")

HeaderMapping = Mapping[str, Any]
T = TypeVar("T")


@dataclass(frozen=True)
class MCPRequestContext:
    """Identity information captured from an MCP HTTP request."""

    session_id: str | None = None
    user_id: str | None = None
    headers: Mapping[str, str] = field(default_factory=dict)
    token_claims: Mapping[str, Any] = field(default_factory=dict)


_current_context: contextvars.ContextVar[MCPRequestContext | None] = contextvars.ContextVar(
    "hmdl_mcp_request_context", default=None
)


# -- token claims ------------------------------------------------------------


def parse_jwt_claims(token: str) -> dict[str, Any]:
    """Parse claims from a JWT without verifying it.

    Parameters
    ----------
    token:
        The JWT, with or without a ``Bearer`` prefix.

    Returns
    -------
    dict
        The payload claims, or an empty dict if the token cannot be decoded.
    """
    if not isinstance(token, str):
        return {}

    raw = token
    if raw[:7].lower() == "bearer ":
        raw = raw[7:]

    parts = raw.split(".")
    if len(parts) != 3 or not parts[1]:
        return {}

    payload = parts[1].replace("-", "+").replace("_", "/")
    payload += "=" * (-len(payload) % 4)

    try:
        decoded = base64.b64decode(payload, validate=True).decode("utf-8")
        claims = json.loads(decoded)
    except (binascii.Error, ValueError):
        # UnicodeDecodeError and JSONDecodeError are ValueErrors too.
        return {}

    if not isinstance(claims, dict):
        return {}
    return claims


def extract_user_id_from_token(token: str) -> str | None:
    """Return the first non-empty string among :data:`USER_ID_CLAIMS`."""
    claims = parse_jwt_claims(token)
    for claim_name in USER_ID_CLAIMS:
        value = claims.get(claim_name)
        if isinstance(value, str) and value:
            return value
    return None


# -- headers -----------------------------------------------------------------


def _find_headers(headers: HeaderMapping | None) -> tuple[str | None, str | None]:
    """Single pass over ``headers`` returning (session header, auth header)."""
    if not headers:
        return None, None

    session_key = MCP_SESSION_ID_HEADER.lower()
    auth_key = AUTHORIZATION_HEADER.lower()
    session_value: str | None = None
    auth_value: str | None = None

    for key, value in headers.items():
        if value is None or not isinstance(key, str):
            continue
        lower_key = key.lower()
        if lower_key == session_key and session_value is None:
            session_value = str(value)
        elif lower_key == auth_key and auth_value is None:
            auth_value = str(value)
        if session_value is not None and auth_value is not None:
            break

    # Header objects that fold case on lookup but not on iteration.
    if session_value is None:
        session_value = _exact_lookup(headers, MCP_SESSION_ID_HEADER)
    if auth_value is None:
        auth_value = _exact_lookup(headers, AUTHORIZATION_HEADER)

    return session_value or None, auth_value or None


def _exact_lookup(headers: HeaderMapping, name: str) -> str | None:
    try:
        value = headers.get(name)
    except Exception:
        return None
    return None if value is None else str(value)


def extract_identity(headers: HeaderMapping | None) -> tuple[str | None, str | None]:
    """Derive ``(session_id, user_id)`` from HTTP headers.

    Header names are matched case-insensitively. The user id comes from the
    claims of the ``Authorization`` bearer token.
    """
    session_id, auth_header = _find_headers(headers)
    user_id = extract_user_id_from_token(auth_header) if auth_header else None
    return session_id, user_id


def create_mcp_context(headers: HeaderMapping | None) -> MCPRequestContext:
    """Create an :class:`MCPRequestContext` from HTTP headers.

    Example::

        ctx = create_mcp_context({
            "Mcp-Session-Id": "session-abc123",
            "Authorization": "Bearer eyJhbGciOi...",
        })
        ctx.session_id  # 'session-abc123'
    """
    session_id, auth_header = _find_headers(headers)

    user_id = None
    token_claims: dict[str, Any] = {}
    if auth_header:
        token_claims = parse_jwt_claims(auth_header)
        user_id = extract_user_id_from_token(auth_header)

    return MCPRequestContext(
        session_id=session_id,
        user_id=user_id,
        headers=MappingProxyType(dict(headers or {})),
        token_claims=MappingProxyType(token_claims),
    )


# -- ambient context ---------------------------------------------------------


def get_mcp_context() -> MCPRequestContext | None:
    """Return the MCP request context of the current scope, if any."""
    return _current_context.get()


def set_mcp_context(ctx: MCPRequestContext | None) -> None:
    """Unsupported; the ambient context is owned by the ``run_with_*`` scopes.

    Kept for API compatibility. It never changes the ambient value.
    """
    if _current_context.get() is not None:
        logger.warning("set_mcp_context called but context is managed by run_with_mcp_context")


@contextmanager
def _scope(ctx: MCPRequestContext) -> Iterator[MCPRequestContext]:
    token = _current_context.set(ctx)
    try:
        yield ctx
    finally:
        _current_context.reset(token)


@contextmanager
def mcp_context(headers: HeaderMapping | None) -> Iterator[MCPRequestContext]:
    """Make the context built from ``headers`` ambient inside a ``with`` block."""
    with _scope(create_mcp_context(headers)) as ctx:
        yield ctx


async def _await_in_scope(ctx: MCPRequestContext, pending: Awaitable[T]) -> T:
    with _scope(ctx):
        return await pending


def run_with_mcp_context(
    headers: HeaderMapping | None, fn: Callable[..., T], *args: Any, **kwargs: Any
) -> T:
    """Call ``fn`` with the MCP context built from ``headers`` in scope.

    If ``fn`` returns an awaitable, an awaitable is returned that re-enters
    the same context while it is awaited.

    Example::

        result = run_with_mcp_context(request.headers, handle_tool_call, body)
    """
    with mcp_context(headers) as ctx:
        result = fn(*args, **kwargs)
    if inspect.isawaitable(result):
        return _await_in_scope(ctx, result)  # type: ignore[return-value]
    return result


async def run_with_mcp_context_async(
    headers: HeaderMapping | None,
    fn: Callable[..., Awaitable[T]],
    *args: Any,
    **kwargs: Any,
) -> T:
    """Await ``fn`` with the MCP context built from ``headers`` in scope.

    The context stays visible across every ``await`` inside ``fn``. Run
    concurrent requests as separate tasks (``asyncio.gather`` does this) so
    each one keeps its own context.

    Example::

        result = await run_with_mcp_context_async(request.headers, my_tool, query)
    """
    with mcp_context(headers):
        return await fn(*args, **kwargs)
