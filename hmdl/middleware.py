"""ASGI middleware that scopes an MCP request context to each HTTP request.

MCP servers served over streamable HTTP (FastMCP's ``http_app()``, any
Starlette application) receive the session id and bearer token as request
headers. The middleware turns them into an
:class:`~hmdl.context.MCPRequestContext` and runs the rest of the application
inside :func:`~hmdl.context.run_with_mcp_context_async`, so every wrapped tool
call made while handling the request is attributed to the right session and
user.

The middleware does not depend on Starlette; it speaks plain ASGI.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Iterable, MutableMapping

from .context import run_with_mcp_context_async
from .log import get_logger

logger = get_logger(__name__)

Scope = MutableMapping[str, Any]
Message = MutableMapping[str, Any]
Receive = Callable[[], Awaitable[Message]]
Send = Callable[[Message], Awaitable[None]]
ASGIApp = Callable[[Scope, Receive, Send], Awaitable[None]]

SCOPED_TYPES = ("http", "websocket")


def headers_from_scope(scope: Scope) -> dict[str, str]:
    """Decode the raw ASGI header list into a ``{name: value}`` dict.

    ASGI header names are lowercase bytes; values are decoded as latin-1 per
    RFC 7230. Repeated headers keep their first value.
    """
    headers: dict[str, str] = {}
    raw_headers: Iterable[tuple[bytes, bytes]] = scope.get("headers") or ()
    for raw_name, raw_value in raw_headers:
        name = raw_name.decode("latin-1")
        if name not in headers:
            headers[name] = raw_value.decode("latin-1")
    return headers


@dataclass
class MCPContextMiddleware:
    """ASGI middleware establishing the MCP request context per request.

    Parameters
    ----------
    app:
        The downstream ASGI application.
    scope_types:
        ASGI scope types that get a context. Lifespan events and anything
        else pass straight through.
    """

    app: ASGIApp
    scope_types: tuple[str, ...] = SCOPED_TYPES

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope.get("type") not in self.scope_types:
            await self.app(scope, receive, send)
            return

        headers = headers_from_scope(scope)
        logger.debug("entering MCP request context | path:%s", scope.get("path", ""))
        await run_with_mcp_context_async(headers, self.app, scope, receive, send)


def instrument_app(app: Any, **middleware_kwargs: Any) -> Any:
    """Register :class:`MCPContextMiddleware` on a Starlette-style app.

    Parameters
    ----------
    app:
        Application exposing ``add_middleware(cls, **kwargs)``, such as the
        Starlette app returned by ``FastMCP.http_app()``.
    middleware_kwargs:
        Keyword arguments forwarded to :class:`MCPContextMiddleware`.

    Returns
    -------
    Any
        The application, for chaining.

    Raises
    ------
    TypeError
        If the app doesn't have an ``add_middleware`` method.

    Example::

        app = mcp.http_app()
        instrument_app(app)
    """
    add_middleware = getattr(app, "add_middleware", None)
    if callable(add_middleware):
        add_middleware(MCPContextMiddleware, **middleware_kwargs)
        return app

    raise TypeError(
        f"The provided app does not have an 'add_middleware' method. "
        f"Wrap it directly with MCPContextMiddleware(app) instead. "
        f"Got app type: {type(app)}"
    )
