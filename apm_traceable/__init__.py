"""Method- and block-level tracing instrumentation.

Classes opt into spans by mixing in Traceable and naming the methods to
trace; blocks of code are traced with ``trace_span``. Spans are named from
the instance's class, carry the configured service name and use the
method (or block) name as resource.

Usage:
    import apm_traceable
    from apm_traceable import Traceable

    apm_traceable.configure(apm_traceable.TraceableConfig(service_name="catalog"))

    class SearchService(Traceable, trace_methods=("search",)):
        def search(self, query): ...
"""

from apm_traceable.lib import (
    ConfigurationError,
    ContextResolutionError,
    DuplicateRegistrationError,
    MethodNotFoundError,
    SpanRunner,
    Traceable,
    TraceableConfig,
    TraceableError,
    TraceRegistrationError,
    configure,
    get_runner,
    load_config,
    reset,
    setup_logging,
    setup_tracing,
    trace_methods,
    traced_methods,
)

__version__ = "1.0.0"

__all__ = [
    "ConfigurationError",
    "ContextResolutionError",
    "DuplicateRegistrationError",
    "MethodNotFoundError",
    "SpanRunner",
    "Traceable",
    "TraceableConfig",
    "TraceableError",
    "TraceRegistrationError",
    "configure",
    "get_runner",
    "load_config",
    "reset",
    "setup_logging",
    "setup_tracing",
    "trace_methods",
    "traced_methods",
]
