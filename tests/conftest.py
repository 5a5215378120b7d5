"""Pytest configuration and fixtures."""

import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

import pytest
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import SimpleSpanProcessor
from opentelemetry.sdk.trace.export.in_memory_span_exporter import InMemorySpanExporter

# Add the project root to the Python path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from apm_traceable.lib.backends import OpenTelemetryTracer  # noqa: E402
from apm_traceable.lib.config import TraceableConfig  # noqa: E402
from apm_traceable.lib.runner import SpanRunner, reset  # noqa: E402


class RecordingTracer:
    """Tracer backend that records span open/close events in memory.

    Spans are plain dicts: name, options, parent (the enclosing span's
    dict or None), closed, and error (exception type on failure).
    """

    def __init__(self, fail_on_open: bool = False, fail_on_close: bool = False):
        self.fail_on_open = fail_on_open
        self.fail_on_close = fail_on_close
        self.spans: List[Dict[str, Any]] = []
        self.events: List[tuple] = []
        self._stack: List[Dict[str, Any]] = []

    def trace(self, name: str, options: Dict[str, Any]) -> "_RecordingScope":
        return _RecordingScope(self, name, dict(options))

    @property
    def open_spans(self) -> int:
        return len(self._stack)


class _RecordingScope:
    def __init__(self, tracer: RecordingTracer, name: str, options: Dict[str, Any]):
        self.tracer = tracer
        self.name = name
        self.options = options
        self.span: Optional[Dict[str, Any]] = None

    def __enter__(self) -> Dict[str, Any]:
        if self.tracer.fail_on_open:
            raise RuntimeError("tracer unavailable")
        parent = self.tracer._stack[-1] if self.tracer._stack else None
        self.span = {
            "name": self.name,
            "options": self.options,
            "parent": parent,
            "closed": False,
            "error": None,
        }
        self.tracer._stack.append(self.span)
        self.tracer.spans.append(self.span)
        self.tracer.events.append(("open", self.name, self.options.get("resource")))
        return self.span

    def __exit__(self, exc_type, exc, tb) -> bool:
        assert self.span is not None
        assert not self.span["closed"], "span closed twice"
        self.tracer._stack.pop()
        self.span["closed"] = True
        self.span["error"] = exc_type
        self.tracer.events.append(("close", self.name, self.options.get("resource")))
        if self.tracer.fail_on_close:
            raise RuntimeError("tracer failed to flush")
        return False


@pytest.fixture(autouse=True)
def reset_default_runner():
    """Each test starts without a process default runner."""
    reset()
    yield
    reset()


@pytest.fixture
def config() -> TraceableConfig:
    """Provide a minimal valid configuration."""
    return TraceableConfig(service_name="catalog-api")


@pytest.fixture
def recording_tracer() -> RecordingTracer:
    return RecordingTracer()


@pytest.fixture
def recording_runner(config, recording_tracer) -> SpanRunner:
    """Runner backed by the in-memory recording tracer."""
    return SpanRunner(config, recording_tracer)


@pytest.fixture
def span_exporter() -> InMemorySpanExporter:
    return InMemorySpanExporter()


@pytest.fixture
def otel_tracer(span_exporter) -> OpenTelemetryTracer:
    """OpenTelemetry backend exporting finished spans to memory."""
    provider = TracerProvider()
    provider.add_span_processor(SimpleSpanProcessor(span_exporter))
    return OpenTelemetryTracer(provider.get_tracer("tests"), provider=provider)


@pytest.fixture
def otel_runner(config, otel_tracer) -> SpanRunner:
    """Runner backed by an OpenTelemetry SDK provider."""
    return SpanRunner(config, otel_tracer)
