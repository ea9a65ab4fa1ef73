import base64
import json

import pytest
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import SimpleSpanProcessor
from opentelemetry.sdk.trace.export.in_memory_span_exporter import InMemorySpanExporter

from hmdl.client import HeimdallClient
from hmdl.config import HeimdallConfig

HEIMDALL_ENV_VARS = (
    "HEIMDALL_API_KEY",
    "HEIMDALL_ENDPOINT",
    "HEIMDALL_ORG_ID",
    "HEIMDALL_PROJECT_ID",
    "HEIMDALL_SERVICE_NAME",
    "HEIMDALL_ENVIRONMENT",
    "HEIMDALL_ENABLED",
    "HEIMDALL_DEBUG",
    "HEIMDALL_BATCH_SIZE",
    "HEIMDALL_FLUSH_INTERVAL_MS",
    "HEIMDALL_MAX_QUEUE_SIZE",
    "HEIMDALL_SESSION_ID",
    "HEIMDALL_USER_ID",
    "HEIMDALL_LOG_LEVEL",
)


def _encode_jwt(claims: dict) -> str:
    """Build an unsigned test JWT carrying ``claims``."""

    def encode(part: dict) -> str:
        raw = json.dumps(part).encode("utf-8")
        return base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii")

    return f"{encode({'alg': 'HS256', 'typ': 'JWT'})}.{encode(claims)}.test_signature"


@pytest.fixture(autouse=True)
def clean_environment(monkeypatch):
    for name in HEIMDALL_ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    HeimdallClient.reset()
    yield
    HeimdallClient.reset()


@pytest.fixture()
def tracer_provider():
    provider = TracerProvider()
    exporter = InMemorySpanExporter()
    provider.add_span_processor(SimpleSpanProcessor(exporter))
    yield provider, exporter
    exporter.clear()


@pytest.fixture()
def client(tracer_provider):
    provider, _ = tracer_provider
    return HeimdallClient(HeimdallConfig(enabled=True), tracer_provider=provider)


@pytest.fixture()
def exporter(tracer_provider):
    return tracer_provider[1]


@pytest.fixture()
def make_jwt():
    return _encode_jwt
