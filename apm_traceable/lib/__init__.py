"""Instrumentation library modules.

This package contains the span runner, method instrumentation, trace name
resolution, tracer backends and the ambient configuration and logging
helpers they share.
"""

from apm_traceable.lib.backends import (
    DatadogTracer,
    OpenTelemetryTracer,
    Tracer,
    setup_tracing,
)
from apm_traceable.lib.config import TraceableConfig, load_config
from apm_traceable.lib.errors import (
    ConfigurationError,
    ContextResolutionError,
    DuplicateRegistrationError,
    MethodNotFoundError,
    TraceableError,
    TraceRegistrationError,
)
from apm_traceable.lib.instrument import (
    Traceable,
    is_traced,
    trace_methods,
    traced_methods,
)
from apm_traceable.lib.logging import JSONFormatter, TraceContextFilter, setup_logging
from apm_traceable.lib.naming import (
    HasControllerContext,
    resolve_service_name,
    resolve_trace_name,
    underscore,
)
from apm_traceable.lib.runner import SpanRunner, configure, get_runner, reset

__all__ = [
    # Instrumentation
    "SpanRunner",
    "Traceable",
    "is_traced",
    "trace_methods",
    "traced_methods",
    # Naming
    "HasControllerContext",
    "resolve_service_name",
    "resolve_trace_name",
    "underscore",
    # Backends
    "DatadogTracer",
    "OpenTelemetryTracer",
    "Tracer",
    "setup_tracing",
    # Configuration
    "TraceableConfig",
    "configure",
    "get_runner",
    "load_config",
    "reset",
    # Logging
    "JSONFormatter",
    "TraceContextFilter",
    "setup_logging",
    # Errors
    "ConfigurationError",
    "ContextResolutionError",
    "DuplicateRegistrationError",
    "MethodNotFoundError",
    "TraceableError",
    "TraceRegistrationError",
]
