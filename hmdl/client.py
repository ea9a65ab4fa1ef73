"""Heimdall client for OpenTelemetry-based observability.

The client owns the process-wide tracing pipeline: an SDK
:class:`~opentelemetry.sdk.trace.TracerProvider` exporting spans over OTLP/HTTP
through a batch processor. All wrapped functions in the process share it.
"""

from __future__ import annotations

import threading
from contextlib import contextmanager
from typing import Any, ClassVar, Iterator, Mapping

from opentelemetry import trace
from opentelemetry.sdk.resources import SERVICE_NAME, Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from opentelemetry.trace import Span, SpanKind, Status, StatusCode, Tracer

from . import __version__
from .config import HeimdallConfig, ResolvedHeimdallConfig, resolve_config, validate_config
from .log import get_logger, set_debug
from .types import HeimdallAttributes

logger = get_logger(__name__)

INSTRUMENTATION_NAME = "hmdl"


class HeimdallClient:
    """Client for sending observability data to the Heimdall platform.

    The client is a singleton: constructing it again returns the first
    instance and ignores the new arguments. Use :meth:`reset` to start over.

    Parameters
    ----------
    config:
        Optional explicit configuration; missing values come from the
        environment (see :func:`hmdl.config.resolve_config`).
    tracer_provider:
        Optional pre-built tracer provider. When given it is used as-is
        instead of building the OTLP export pipeline, and it is not
        registered globally.

    Example::

        client = HeimdallClient(HeimdallConfig(api_key="your-api-key"))

        with client.start_span("my-operation") as span:
            span.set_attribute("custom.attribute", "value")
    """

    _instance: ClassVar[HeimdallClient | None] = None
    _lock: ClassVar[threading.Lock] = threading.Lock()

    config: ResolvedHeimdallConfig
    _provider: TracerProvider | None
    _tracer: Tracer | None
    _owns_provider: bool
    _session_id: str | None
    _user_id: str | None

    def __new__(
        cls,
        config: HeimdallConfig | None = None,
        *,
        tracer_provider: TracerProvider | None = None,
    ) -> HeimdallClient:
        with cls._lock:
            if cls._instance is None:
                instance = super().__new__(cls)
                instance._setup(config, tracer_provider)
                cls._instance = instance
            return cls._instance

    def _setup(self, config: HeimdallConfig | None, tracer_provider: TracerProvider | None) -> None:
        self.config = resolve_config(config)
        validate_config(self.config)
        self._provider = None
        self._tracer = None
        self._owns_provider = False
        self._session_id = self.config.session_id or None
        self._user_id = self.config.user_id or None

        if self.config.debug:
            set_debug(True)

        if not self.config.enabled:
            logger.info("tracing disabled via configuration")
            return

        if tracer_provider is not None:
            self._provider = tracer_provider
        else:
            self._provider = self._build_provider()
            self._owns_provider = True
            trace.set_tracer_provider(self._provider)

        self._tracer = self._provider.get_tracer(INSTRUMENTATION_NAME, __version__)
        logger.debug("tracing initialized | service:%s", self.config.service_name)

    def _build_provider(self) -> TracerProvider:
        from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter

        logger.debug("setting up tracing | endpoint:%s", self.config.traces_endpoint)

        resource = Resource.create(
            {
                SERVICE_NAME: self.config.service_name,
                HeimdallAttributes.HEIMDALL_ENVIRONMENT: self.config.environment,
                HeimdallAttributes.HEIMDALL_ORG_ID: self.config.org_id,
                HeimdallAttributes.HEIMDALL_PROJECT_ID: self.config.project_id,
            }
        )
        provider = TracerProvider(resource=resource)

        headers = {}
        if self.config.api_key:
            headers["Authorization"] = f"Bearer {self.config.api_key}"

        exporter = OTLPSpanExporter(
            endpoint=self.config.traces_endpoint,
            headers=headers or None,
        )
        provider.add_span_processor(
            BatchSpanProcessor(
                exporter,
                max_queue_size=self.config.max_queue_size,
                max_export_batch_size=self.config.batch_size,
                schedule_delay_millis=self.config.flush_interval_ms,
            )
        )
        return provider

    # -- tracing -------------------------------------------------------------

    @property
    def enabled(self) -> bool:
        return self._tracer is not None

    def get_tracer(self) -> Tracer:
        """Return the client's tracer, or a no-op tracer when disabled."""
        if self._tracer is None:
            return trace.NoOpTracer()
        return self._tracer

    @contextmanager
    def start_span(
        self,
        name: str,
        *,
        kind: SpanKind = SpanKind.INTERNAL,
        attributes: Mapping[str, Any] | None = None,
    ) -> Iterator[Span]:
        """Start a span, make it current and mark it OK or ERROR on exit."""
        tracer = self.get_tracer()
        with tracer.start_as_current_span(
            name,
            kind=kind,
            attributes=dict(attributes) if attributes else None,
            record_exception=False,
            set_status_on_exception=False,
        ) as span:
            try:
                yield span
            except BaseException as exc:
                span.set_status(Status(StatusCode.ERROR, str(exc)))
                span.record_exception(exc)
                raise
            span.set_status(Status(StatusCode.OK))

    def get_current_span(self) -> Span | None:
        span = trace.get_current_span()
        if span is trace.INVALID_SPAN:
            return None
        return span

    def flush(self, timeout_millis: int = 30000) -> bool:
        """Export all pending spans."""
        if self._provider is None:
            return True
        return self._provider.force_flush(timeout_millis)

    def shutdown(self) -> None:
        """Flush and shut down the pipeline this client created."""
        if self._provider is None:
            return
        if self._owns_provider:
            self._provider.shutdown()
        else:
            self._provider.force_flush()
        logger.debug("client shutdown complete")

    # -- identity defaults ---------------------------------------------------

    def get_session_id(self) -> str | None:
        return self._session_id

    def set_session_id(self, session_id: str | None) -> None:
        """Set the client-level default session id (``None`` clears it)."""
        self._session_id = session_id or None

    def get_user_id(self) -> str | None:
        return self._user_id

    def set_user_id(self, user_id: str | None) -> None:
        """Set the client-level default user id (``None`` clears it)."""
        self._user_id = user_id or None

    def get_config(self) -> dict[str, Any]:
        """Return the resolved configuration without the API key."""
        return self.config.public_dict()

    # -- singleton -----------------------------------------------------------

    @classmethod
    def get_instance(cls) -> HeimdallClient | None:
        return cls._instance

    @classmethod
    def reset(cls) -> None:
        """Shut down and forget the singleton instance (mainly for tests)."""
        with cls._lock:
            instance, cls._instance = cls._instance, None
        if instance is not None:
            instance.shutdown()
