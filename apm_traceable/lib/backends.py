"""Tracer backends for span runners.

A backend turns a trace name plus an options mapping into a context
manager that opens a span, makes it current, and closes it on exit.
Exception info passed to ``__exit__`` lets the backend mark the span as
errored; backends never suppress the exception.

Usage:
    from apm_traceable.lib.backends import setup_tracing
    tracer = setup_tracing(config, console=True)
"""

from __future__ import annotations

import logging
from typing import Any, ContextManager, Dict, Mapping, Optional, Protocol

from opentelemetry import trace
from opentelemetry.sdk.resources import SERVICE_NAME, Resource
from opentelemetry.sdk.trace import SpanProcessor, TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, ConsoleSpanExporter
from opentelemetry.trace import SpanKind

from apm_traceable.lib.config import TraceableConfig

logger = logging.getLogger(__name__)

__all__ = [
    "DatadogTracer",
    "OpenTelemetryTracer",
    "Tracer",
    "setup_tracing",
]

# Span attribute keys (Datadog's OpenTelemetry conventions)
SERVICE_ATTRIBUTE = "service.name"
RESOURCE_ATTRIBUTE = "resource.name"
OPERATION_ATTRIBUTE = "operation.name"
SPAN_TYPE_ATTRIBUTE = "span.type"


class Tracer(Protocol):
    """What a span runner needs from a tracing backend."""

    def trace(self, name: str, options: Mapping[str, Any]) -> ContextManager[Any]:
        ...


def _span_kind(kind: Any) -> SpanKind:
    if isinstance(kind, SpanKind):
        return kind
    try:
        return SpanKind[str(kind).upper()]
    except KeyError:
        allowed = ", ".join(k.name.lower() for k in SpanKind)
        raise ValueError(
            f"Unknown span kind {kind!r}; expected one of {allowed}"
        ) from None


class OpenTelemetryTracer:
    """Backend over an OpenTelemetry tracer.

    Option mapping:
        service    -> ``service.name`` attribute
        resource   -> ``resource.name`` attribute (and span name suffix)
        tags       -> merged into attributes
        span_type  -> ``span.type`` attribute
        kind       -> SpanKind (enum member or its lower-case name)

    Remaining options are forwarded verbatim to ``start_as_current_span``.
    """

    def __init__(
        self,
        tracer: Optional[trace.Tracer] = None,
        *,
        tracer_name: str = "apm_traceable",
        resource_in_span_name: bool = True,
        provider: Optional[TracerProvider] = None,
    ) -> None:
        self._tracer = tracer or trace.get_tracer(tracer_name)
        self.resource_in_span_name = resource_in_span_name
        self.provider = provider

    def trace(self, name: str, options: Mapping[str, Any]) -> ContextManager[Any]:
        kwargs: Dict[str, Any] = dict(options)
        service = kwargs.pop("service", None)
        resource = kwargs.pop("resource", None)

        attributes: Dict[str, Any] = dict(kwargs.pop("attributes", None) or {})
        attributes.update(kwargs.pop("tags", None) or {})
        span_type = kwargs.pop("span_type", None)
        if span_type:
            attributes[SPAN_TYPE_ATTRIBUTE] = span_type
        attributes[OPERATION_ATTRIBUTE] = name
        if service:
            attributes[SERVICE_ATTRIBUTE] = service
        if resource:
            attributes[RESOURCE_ATTRIBUTE] = resource

        if "kind" in kwargs:
            kwargs["kind"] = _span_kind(kwargs["kind"])

        span_name = name
        if resource and self.resource_in_span_name:
            span_name = f"{name}.{resource}"

        return self._tracer.start_as_current_span(
            span_name, attributes=attributes, **kwargs
        )


class DatadogTracer:
    """Backend over the ddtrace tracer.

    Requires the ``datadog`` extra unless a tracer object is injected.
    ``service``, ``resource`` and ``span_type`` go straight to
    ``tracer.trace``; ``tags`` are applied to the new span.
    """

    def __init__(self, tracer: Any = None) -> None:
        if tracer is None:
            from ddtrace.trace import tracer as dd_tracer

            tracer = dd_tracer
        self._tracer = tracer

    def trace(self, name: str, options: Mapping[str, Any]) -> ContextManager[Any]:
        kwargs: Dict[str, Any] = dict(options)
        tags = kwargs.pop("tags", None) or {}
        span = self._tracer.trace(name, **kwargs)
        try:
            for key, value in tags.items():
                span.set_tag(key, value)
        except Exception:
            # The runner never exits a span it failed to open
            span.finish()
            raise
        return span


def setup_tracing(
    config: TraceableConfig,
    *,
    console: bool = False,
    processor: Optional[SpanProcessor] = None,
    set_global: bool = True,
) -> OpenTelemetryTracer:
    """Install an OpenTelemetry SDK provider for the configured service.

    Args:
        config: Supplies the service name and tracer name
        console: Also print finished spans to stdout
        processor: Extra span processor (exporters, test collectors)
        set_global: Register the provider as the process-wide default

    Returns:
        A backend bound to the new provider
    """
    provider = TracerProvider(
        resource=Resource.create({SERVICE_NAME: config.service_name})
    )
    if processor is not None:
        provider.add_span_processor(processor)
    if console:
        provider.add_span_processor(BatchSpanProcessor(ConsoleSpanExporter()))
    if set_global:
        trace.set_tracer_provider(provider)

    logger.info(
        "Tracing configured for service %s (console=%s)", config.service_name, console
    )
    return OpenTelemetryTracer(
        provider.get_tracer(config.tracer_name),
        provider=provider,
    )
