"""Wrappers for instrumenting MCP functions with Heimdall observability.

Each wrapped call opens a span, labels it with the session and user the call
belongs to, captures the arguments and result, and records failures before
re-raising them unchanged. When no :class:`~hmdl.client.HeimdallClient` is
active the wrappers call straight through.

Identity is resolved per call, most specific source first:

* session id: ``session_extractor`` → ``headers`` option → ambient request
  context → client default
* user id: ``user_extractor`` → ``headers`` option → ambient request context →
  client default → ``"anonymous"``
"""

from __future__ import annotations

import asyncio
import functools
import inspect
import json
import time
from typing import Any, Awaitable, Callable, Mapping, Optional, Sequence, TypeVar

from opentelemetry import trace
from opentelemetry.trace import Span, SpanKind as OtelSpanKind, Status, StatusCode

from .client import HeimdallClient
from .context import extract_identity, get_mcp_context
from .log import get_logger
from .types import HeimdallAttributes, SpanKind, SpanStatus

logger = get_logger(__name__)

F = TypeVar("F", bound=Callable[..., Any])

UserExtractor = Callable[[tuple], Optional[str]]
"""Extract a user id from the positional arguments of the wrapped call."""

SessionExtractor = Callable[[tuple], Optional[str]]
"""Extract a session id from the positional arguments of the wrapped call."""

ANONYMOUS_USER = "anonymous"

# Cancellation is recorded as a failure; other BaseExceptions only end the span.
_RECORDED_FAILURES = (Exception, asyncio.CancelledError)


def serialize_value(value: Any) -> str:
    """Serialize ``value`` as compact JSON, falling back to ``str()``.

    NaN and infinities are not valid JSON and take the ``str()`` path.
    """
    try:
        return json.dumps(value, separators=(",", ":"), ensure_ascii=False, allow_nan=False)
    except (TypeError, ValueError):
        return str(value)


def args_to_named(
    args: Sequence[Any],
    kwargs: Mapping[str, Any] | None = None,
    param_names: Sequence[str] | None = None,
) -> dict[str, Any] | list[Any]:
    """Convert call arguments into the structure recorded on the span.

    Without ``param_names`` and keyword arguments the positional arguments are
    kept as a list. Otherwise a mapping is built, naming positional arguments
    after ``param_names`` (or ``arg{i}`` past its end).
    """
    if not param_names and not kwargs:
        return list(args)

    names = list(param_names or ())
    named: dict[str, Any] = {}
    for index, value in enumerate(args):
        name = names[index] if index < len(names) else f"arg{index}"
        named[name] = value
    named.update(kwargs or {})
    return named


def _record_error(span: Span, exc: BaseException) -> None:
    message = str(exc)
    span.set_attribute(HeimdallAttributes.STATUS, SpanStatus.ERROR.value)
    span.set_attribute(HeimdallAttributes.ERROR_MESSAGE, message)
    span.set_attribute(HeimdallAttributes.ERROR_TYPE, type(exc).__name__)
    span.set_status(Status(StatusCode.ERROR, message))
    span.record_exception(exc)


def _call_extractor(extractor: Callable[[tuple], Any] | None, args: tuple) -> str | None:
    if extractor is None:
        return None
    try:
        value = extractor(args)
    except Exception:
        logger.debug("identity extractor failed", exc_info=True)
        return None
    if isinstance(value, str) and value:
        return value
    return None


def resolve_identity(
    client: HeimdallClient,
    args: tuple,
    headers: Mapping[str, Any] | None = None,
    user_extractor: UserExtractor | None = None,
    session_extractor: SessionExtractor | None = None,
) -> tuple[str | None, str]:
    """Return ``(session_id, user_id)`` for one call, walking the priority chain."""
    header_session = header_user = None
    if headers is not None:
        # Headers are read at call time, not when the wrapper is created.
        header_session, header_user = extract_identity(headers)
    ambient = get_mcp_context()

    session_id = (
        _call_extractor(session_extractor, args)
        or header_session
        or (ambient.session_id if ambient is not None else None)
        or client.get_session_id()
    )
    user_id = (
        _call_extractor(user_extractor, args)
        or header_user
        or (ambient.user_id if ambient is not None else None)
        or client.get_user_id()
        or ANONYMOUS_USER
    )
    return session_id or None, user_id


def _span_name(fn: Callable[..., Any], name: str | None) -> str:
    if name:
        return name
    fn_name = getattr(fn, "__name__", "")
    if not fn_name or fn_name == "<lambda>":
        return "anonymous"
    return fn_name


class _SpanRecorder:
    """Attribute bookkeeping shared by the sync and async call paths."""

    def __init__(
        self,
        *,
        span_name: str,
        span_kind: SpanKind,
        otel_kind: OtelSpanKind,
        name_attr: str | None,
        input_attr: str,
        output_attr: str,
        param_names: Sequence[str] | None,
        capture_input: bool,
        capture_output: bool,
        resolve_ids: bool,
        headers: Mapping[str, Any] | None,
        user_extractor: UserExtractor | None,
        session_extractor: SessionExtractor | None,
    ) -> None:
        self.span_name = span_name
        self.span_kind = span_kind
        self.otel_kind = otel_kind
        self.name_attr = name_attr
        self.input_attr = input_attr
        self.output_attr = output_attr
        self.param_names = list(param_names) if param_names else None
        self.capture_input = capture_input
        self.capture_output = capture_output
        self.resolve_ids = resolve_ids
        self.headers = headers
        self.user_extractor = user_extractor
        self.session_extractor = session_extractor

    def open(self, client: HeimdallClient, args: tuple, kwargs: dict) -> tuple[Span, float]:
        """Start the span, annotate the call and return ``(span, start time)``."""
        span = client.get_tracer().start_span(self.span_name, kind=self.otel_kind)
        self.before(client, span, args, kwargs)
        return span, time.perf_counter()

    def before(self, client: HeimdallClient, span: Span, args: tuple, kwargs: dict) -> None:
        if self.name_attr:
            span.set_attribute(self.name_attr, self.span_name)
        span.set_attribute(HeimdallAttributes.SPAN_KIND, self.span_kind.value)

        if self.resolve_ids:
            session_id, user_id = resolve_identity(
                client,
                args,
                headers=self.headers,
                user_extractor=self.user_extractor,
                session_extractor=self.session_extractor,
            )
            if session_id:
                span.set_attribute(HeimdallAttributes.HEIMDALL_SESSION_ID, session_id)
            span.set_attribute(HeimdallAttributes.HEIMDALL_USER_ID, user_id)

        if self.capture_input:
            named = args_to_named(args, kwargs, self.param_names)
            span.set_attribute(self.input_attr, serialize_value(named))

    def success(self, span: Span, result: Any) -> None:
        if self.capture_output:
            span.set_attribute(self.output_attr, serialize_value(result))
        if self.resolve_ids:
            span.set_attribute(HeimdallAttributes.STATUS, SpanStatus.OK.value)
        span.set_status(Status(StatusCode.OK))

    def failure(self, span: Span, exc: BaseException) -> None:
        _record_error(span, exc)

    @staticmethod
    def finish(span: Span, started: float) -> None:
        span.set_attribute(HeimdallAttributes.DURATION_MS, (time.perf_counter() - started) * 1000.0)


def _active_client() -> HeimdallClient | None:
    client = HeimdallClient.get_instance()
    if client is None or not client.enabled:
        return None
    return client


async def _settle(
    recorder: _SpanRecorder, span: Span, started: float, pending: Awaitable[Any]
) -> Any:
    """Await ``pending`` with ``span`` current, then complete and end the span."""
    with trace.use_span(span, end_on_exit=True, record_exception=False, set_status_on_exception=False):
        try:
            result = await pending
        except _RECORDED_FAILURES as exc:
            recorder.failure(span, exc)
            raise
        else:
            recorder.success(span, result)
            return result
        finally:
            recorder.finish(span, started)


def _instrument(fn: F, recorder: _SpanRecorder) -> F:
    if inspect.iscoroutinefunction(fn):

        @functools.wraps(fn)
        async def async_wrapper(*args: Any, **kwargs: Any) -> Any:
            client = _active_client()
            if client is None:
                return await fn(*args, **kwargs)

            span, started = recorder.open(client, args, kwargs)
            return await _settle(recorder, span, started, fn(*args, **kwargs))

        return async_wrapper  # type: ignore[return-value]

    @functools.wraps(fn)
    def wrapper(*args: Any, **kwargs: Any) -> Any:
        client = _active_client()
        if client is None:
            return fn(*args, **kwargs)

        span, started = recorder.open(client, args, kwargs)
        pending = False
        with trace.use_span(span, record_exception=False, set_status_on_exception=False):
            try:
                result = fn(*args, **kwargs)
                if inspect.isawaitable(result):
                    # The span stays open until the caller awaits the result.
                    pending = True
                    return _settle(recorder, span, started, result)
                recorder.success(span, result)
                return result
            except _RECORDED_FAILURES as exc:
                recorder.failure(span, exc)
                raise
            finally:
                if not pending:
                    recorder.finish(span, started)
                    span.end()

    return wrapper  # type: ignore[return-value]


def _wrap_mcp(
    fn: F,
    span_kind: SpanKind,
    name_attr: str,
    args_attr: str,
    result_attr: str,
    *,
    name: str | None = None,
    param_names: Sequence[str] | None = None,
    capture_input: bool = True,
    capture_output: bool = True,
    headers: Mapping[str, Any] | None = None,
    user_extractor: UserExtractor | None = None,
    session_extractor: SessionExtractor | None = None,
) -> F:
    recorder = _SpanRecorder(
        span_name=_span_name(fn, name),
        span_kind=span_kind,
        otel_kind=OtelSpanKind.SERVER,
        name_attr=name_attr,
        input_attr=args_attr,
        output_attr=result_attr,
        param_names=param_names,
        capture_input=capture_input,
        capture_output=capture_output,
        resolve_ids=True,
        headers=headers,
        user_extractor=user_extractor,
        session_extractor=session_extractor,
    )
    return _instrument(fn, recorder)


def trace_mcp_tool(fn: F, **options: Any) -> F:
    """Wrap an MCP tool function with observability tracking.

    Parameters
    ----------
    fn:
        The tool implementation, sync or async.
    name:
        Span name; defaults to ``fn.__name__``.
    param_names:
        Names for the positional arguments, so the recorded input is a
        mapping rather than a list.
    capture_input, capture_output:
        Record arguments and result as JSON (both default to True).
    headers:
        HTTP headers of the MCP request; ``Mcp-Session-Id`` and the
        ``Authorization`` bearer token are read at call time.
    user_extractor, session_extractor:
        Callables receiving the positional argument tuple. A non-empty string
        they return takes precedence over every other identity source.

    Example::

        search_documents = trace_mcp_tool(
            search, name="search-documents", param_names=["query", "limit"]
        )
    """
    return _wrap_mcp(
        fn,
        SpanKind.MCP_TOOL,
        HeimdallAttributes.MCP_TOOL_NAME,
        HeimdallAttributes.MCP_TOOL_ARGUMENTS,
        HeimdallAttributes.MCP_TOOL_RESULT,
        **options,
    )


def trace_mcp_resource(fn: F, **options: Any) -> F:
    """Wrap an MCP resource function; options as for :func:`trace_mcp_tool`."""
    return _wrap_mcp(
        fn,
        SpanKind.MCP_RESOURCE,
        HeimdallAttributes.MCP_RESOURCE_URI,
        HeimdallAttributes.MCP_RESOURCE_ARGUMENTS,
        HeimdallAttributes.MCP_RESOURCE_RESULT,
        **options,
    )


def trace_mcp_prompt(fn: F, **options: Any) -> F:
    """Wrap an MCP prompt function; options as for :func:`trace_mcp_tool`."""
    return _wrap_mcp(
        fn,
        SpanKind.MCP_PROMPT,
        HeimdallAttributes.MCP_PROMPT_NAME,
        HeimdallAttributes.MCP_PROMPT_ARGUMENTS,
        HeimdallAttributes.MCP_PROMPT_MESSAGES,
        **options,
    )


def observe(
    fn: F,
    *,
    name: str | None = None,
    param_names: Sequence[str] | None = None,
    capture_input: bool = True,
    capture_output: bool = True,
) -> F:
    """General-purpose wrapper for any function.

    Emits an INTERNAL span with ``heimdall.input``/``heimdall.output`` and no
    MCP identity resolution.
    """
    recorder = _SpanRecorder(
        span_name=_span_name(fn, name),
        span_kind=SpanKind.INTERNAL,
        otel_kind=OtelSpanKind.INTERNAL,
        name_attr=None,
        input_attr=HeimdallAttributes.INPUT,
        output_attr=HeimdallAttributes.OUTPUT,
        param_names=param_names,
        capture_input=capture_input,
        capture_output=capture_output,
        resolve_ids=False,
        headers=None,
        user_extractor=None,
        session_extractor=None,
    )
    return _instrument(fn, recorder)


# -- decorators ----------------------------------------------------------------


def _apply(wrap: Callable[..., Any], fn: F | None, options: dict[str, Any]) -> Any:
    if fn is not None:
        return wrap(fn, **options)
    return lambda func: wrap(func, **options)


def mcp_tool(fn: F | None = None, **options: Any) -> Any:
    """Decorator form of :func:`trace_mcp_tool`.

    Usable bare (``@mcp_tool``) or with options (``@mcp_tool(name="search")``).
    Works on methods too; ``self`` is recorded as the first argument unless
    ``capture_input`` is off.
    """
    return _apply(trace_mcp_tool, fn, options)


def mcp_resource(fn: F | None = None, **options: Any) -> Any:
    """Decorator form of :func:`trace_mcp_resource`."""
    return _apply(trace_mcp_resource, fn, options)


def mcp_prompt(fn: F | None = None, **options: Any) -> Any:
    """Decorator form of :func:`trace_mcp_prompt`."""
    return _apply(trace_mcp_prompt, fn, options)


def observed(fn: F | None = None, **options: Any) -> Any:
    """Decorator form of :func:`observe`."""
    return _apply(observe, fn, options)
