"""Tests for tracer backends."""

from __future__ import annotations

import pytest
from opentelemetry.sdk.trace.export import SimpleSpanProcessor
from opentelemetry.sdk.trace.export.in_memory_span_exporter import InMemorySpanExporter
from opentelemetry.trace import SpanKind, StatusCode

from apm_traceable.lib.backends import (
    OPERATION_ATTRIBUTE,
    RESOURCE_ATTRIBUTE,
    SERVICE_ATTRIBUTE,
    SPAN_TYPE_ATTRIBUTE,
    DatadogTracer,
    OpenTelemetryTracer,
    setup_tracing,
)
from apm_traceable.lib.config import TraceableConfig


class SearchController:
    pass


class TestOpenTelemetryTracer:
    """Tests for the OpenTelemetry backend via a SpanRunner."""

    def test_span_name_and_attributes(self, otel_runner, span_exporter):
        with otel_runner.span(SearchController(), "index"):
            pass

        (span,) = span_exporter.get_finished_spans()
        assert span.name == "search_controller.index"
        assert span.attributes[OPERATION_ATTRIBUTE] == "search_controller"
        assert span.attributes[SERVICE_ATTRIBUTE] == "catalog-api"
        assert span.attributes[RESOURCE_ATTRIBUTE] == "index"

    def test_resource_not_in_span_name(self, config, span_exporter, otel_tracer):
        from apm_traceable.lib.runner import SpanRunner

        tracer = OpenTelemetryTracer(
            otel_tracer._tracer, resource_in_span_name=False
        )
        with SpanRunner(config, tracer).span(SearchController(), "index"):
            pass
        (span,) = span_exporter.get_finished_spans()
        assert span.name == "search_controller"

    def test_tags_and_span_type(self, otel_runner, span_exporter):
        with otel_runner.span(
            SearchController(), "index", tags={"page": 2, "query": "shoes"}, span_type="web"
        ):
            pass
        (span,) = span_exporter.get_finished_spans()
        assert span.attributes["page"] == 2
        assert span.attributes["query"] == "shoes"
        assert span.attributes[SPAN_TYPE_ATTRIBUTE] == "web"

    def test_tags_cannot_override_service(self, otel_runner, span_exporter):
        with otel_runner.span(
            SearchController(), "index", tags={SERVICE_ATTRIBUTE: "spoofed"}
        ):
            pass
        (span,) = span_exporter.get_finished_spans()
        assert span.attributes[SERVICE_ATTRIBUTE] == "catalog-api"

    @pytest.mark.parametrize("kind", ["server", SpanKind.SERVER])
    def test_kind(self, otel_runner, span_exporter, kind):
        with otel_runner.span(SearchController(), "index", kind=kind):
            pass
        (span,) = span_exporter.get_finished_spans()
        assert span.kind == SpanKind.SERVER

    def test_unknown_kind_rejected(self, otel_tracer):
        with pytest.raises(ValueError, match="Unknown span kind"):
            otel_tracer.trace("x", {"kind": "sideways"})

    def test_exception_marks_span_error(self, otel_runner, span_exporter):
        with pytest.raises(RuntimeError):
            with otel_runner.span(SearchController(), "index"):
                raise RuntimeError("boom")

        (span,) = span_exporter.get_finished_spans()
        assert span.status.status_code == StatusCode.ERROR
        assert any(event.name == "exception" for event in span.events)

    def test_success_leaves_status_unset(self, otel_runner, span_exporter):
        with otel_runner.span(SearchController(), "index"):
            pass
        (span,) = span_exporter.get_finished_spans()
        assert span.status.status_code == StatusCode.UNSET

    def test_nested_spans_share_trace(self, otel_runner, span_exporter):
        controller = SearchController()
        with otel_runner.span(controller, "outer"):
            with otel_runner.span(controller, "inner"):
                pass

        inner, outer = span_exporter.get_finished_spans()
        assert inner.parent is not None
        assert inner.parent.span_id == outer.context.span_id
        assert inner.context.trace_id == outer.context.trace_id
        assert outer.parent is None

    def test_yields_current_span(self, otel_runner):
        from opentelemetry import trace

        with otel_runner.span(SearchController(), "index") as span:
            assert trace.get_current_span() is span
            assert span.is_recording()


class TestDatadogTracer:
    """Tests for the ddtrace backend with an injected tracer."""

    class FakeSpan:
        def __init__(self, name, kwargs):
            self.name = name
            self.kwargs = kwargs
            self.tags = {}
            self.exit_args = None
            self.finished = False

        def set_tag(self, key, value):
            if key == "bad":
                raise TypeError("unsupported tag value")
            self.tags[key] = value

        def finish(self):
            self.finished = True

        def __enter__(self):
            return self

        def __exit__(self, exc_type, exc, tb):
            self.exit_args = (exc_type, exc, tb)
            return False

    class FakeDDTracer:
        def __init__(self):
            self.spans = []

        def trace(self, name, **kwargs):
            span = TestDatadogTracer.FakeSpan(name, kwargs)
            self.spans.append(span)
            return span

    def test_forwards_service_resource_and_type(self, config):
        from apm_traceable.lib.runner import SpanRunner

        dd = self.FakeDDTracer()
        runner = SpanRunner(config, DatadogTracer(dd))
        with runner.span(SearchController(), "index", span_type="web"):
            pass

        (span,) = dd.spans
        assert span.name == "search_controller"
        assert span.kwargs == {
            "service": "catalog-api",
            "resource": "index",
            "span_type": "web",
        }
        assert span.exit_args == (None, None, None)

    def test_tags_applied(self, config):
        from apm_traceable.lib.runner import SpanRunner

        dd = self.FakeDDTracer()
        runner = SpanRunner(config, DatadogTracer(dd))
        with runner.span(SearchController(), "index", tags={"page": 2}):
            pass
        assert dd.spans[0].tags == {"page": 2}
        assert "tags" not in dd.spans[0].kwargs

    def test_exception_info_passed_to_span(self, config):
        from apm_traceable.lib.runner import SpanRunner

        dd = self.FakeDDTracer()
        runner = SpanRunner(config, DatadogTracer(dd))
        with pytest.raises(ValueError):
            with runner.span(SearchController(), "index"):
                raise ValueError("bad")
        assert dd.spans[0].exit_args[0] is ValueError

    def test_tag_failure_finishes_span(self):
        dd = self.FakeDDTracer()
        with pytest.raises(TypeError):
            DatadogTracer(dd).trace("search_controller", {"tags": {"bad": object()}})
        assert dd.spans[0].finished is True

    def test_tag_failure_runs_work_untraced(self, config, caplog):
        from apm_traceable.lib.runner import SpanRunner

        dd = self.FakeDDTracer()
        runner = SpanRunner(config, DatadogTracer(dd))
        with caplog.at_level("WARNING", logger="apm_traceable.lib.runner"):
            result = runner.run(
                SearchController(), "index", lambda: "ok", tags={"bad": 1}
            )
        assert result == "ok"
        assert dd.spans[0].finished is True
        assert dd.spans[0].exit_args is None
        assert "failed to open span" in caplog.text


class TestSetupTracing:
    """Tests for setup_tracing()."""

    def test_provider_resource_carries_service(self):
        config = TraceableConfig(service_name="inventory")
        tracer = setup_tracing(config, set_global=False)
        assert tracer.provider is not None
        assert tracer.provider.resource.attributes["service.name"] == "inventory"

    def test_processor_receives_spans(self):
        from apm_traceable.lib.runner import SpanRunner

        exporter = InMemorySpanExporter()
        config = TraceableConfig(service_name="inventory")
        tracer = setup_tracing(
            config, processor=SimpleSpanProcessor(exporter), set_global=False
        )

        SpanRunner(config, tracer).run(SearchController(), "count", lambda: 1)

        (span,) = exporter.get_finished_spans()
        assert span.resource.attributes["service.name"] == "inventory"
        assert span.attributes[RESOURCE_ATTRIBUTE] == "count"
