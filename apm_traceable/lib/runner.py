"""Span runner: run a unit of work inside a named span.

The runner computes the span's trace name from the traced object's class,
stamps the configured service and the resource name into the options,
opens the span on its backend and closes it on every exit path. The
work's return value or exception passes through unchanged.

Usage:
    from apm_traceable.lib.runner import SpanRunner

    runner = SpanRunner(config, tracer)
    with runner.span(self, "load_catalog", tags={"shard": 3}):
        load()

    rows = runner.run(self, "query", lambda: db.fetch(sql))
    rows = await runner.run_async(self, "query", lambda: db.afetch(sql))
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from types import TracebackType
from typing import (
    Any,
    Awaitable,
    Callable,
    ContextManager,
    Dict,
    Iterator,
    Optional,
    Tuple,
    Type,
    TypeVar,
)

from apm_traceable.lib.backends import OpenTelemetryTracer, Tracer
from apm_traceable.lib.config import TraceableConfig
from apm_traceable.lib.errors import ConfigurationError
from apm_traceable.lib.naming import resolve_service_name, resolve_trace_name

logger = logging.getLogger(__name__)

__all__ = ["SpanRunner", "configure", "get_runner", "reset"]

T = TypeVar("T")

# Keys the runner always sets, overriding caller options
SYSTEM_OPTION_KEYS = ("service", "resource")


def _check_resource_name(resource_name: Any) -> None:
    if not isinstance(resource_name, str) or not resource_name:
        raise ValueError(
            f"resource_name must be a non-empty string, got {resource_name!r}"
        )


class SpanRunner:
    """Opens spans for traced objects on a tracer backend.

    Stateless apart from its configuration and backend, so one runner can
    serve any number of threads and tasks. Parent/child linkage of nested
    spans comes from the backend's ambient context.

    Tracer failures (the backend raising while a span opens or closes) are
    logged and ignored when ``config.fail_open`` is set; otherwise they
    propagate. They never replace an exception raised by the work itself.
    """

    def __init__(
        self,
        config: TraceableConfig,
        tracer: Optional[Tracer] = None,
    ) -> None:
        """Initialize the runner.

        Args:
            config: Service name and runtime switches
            tracer: Backend; defaults to OpenTelemetry's global provider
        """
        self.config = config
        self.tracer: Tracer = tracer or OpenTelemetryTracer(
            tracer_name=config.tracer_name
        )

    def span_options(
        self, resource_name: str, options: Dict[str, Any]
    ) -> Dict[str, Any]:
        """Merge caller options with the runner-controlled keys."""
        merged = dict(options)
        overridden = [key for key in SYSTEM_OPTION_KEYS if key in merged]
        if overridden:
            logger.debug(
                "Ignoring caller-supplied %s for resource %s",
                ", ".join(overridden),
                resource_name,
            )
        merged["service"] = resolve_service_name(self.config)
        merged["resource"] = resource_name
        return merged

    @contextmanager
    def span(self, instance: Any, resource_name: str, **options: Any) -> Iterator[Any]:
        """Run the ``with`` block inside a span.

        Args:
            instance: Object whose class names the trace
            resource_name: Operation label, e.g. a method name
            **options: Passed through to the backend (tags, kind, ...)

        Yields:
            The backend's span, or None when tracing is disabled or the
            backend failed to open a span

        Raises:
            ValueError: If resource_name is empty
            ContextResolutionError: If no trace name can be derived; raised
                before any span is opened
        """
        _check_resource_name(resource_name)
        if not self.config.enabled:
            yield None
            return

        trace_name = resolve_trace_name(instance, self.config.include_module)
        merged = self.span_options(resource_name, options)

        opened = self._open(trace_name, merged)
        if opened is None:
            yield None
            return

        scope, span = opened
        try:
            yield span
        except BaseException as exc:
            self._close(scope, (type(exc), exc, exc.__traceback__), trace_name, merged)
            raise
        else:
            self._close(scope, (None, None, None), trace_name, merged)

    def run(
        self,
        instance: Any,
        resource_name: str,
        work: Callable[[], T],
        **options: Any,
    ) -> T:
        """Call ``work`` inside a span and return its result."""
        with self.span(instance, resource_name, **options):
            return work()

    async def run_async(
        self,
        instance: Any,
        resource_name: str,
        work: Callable[[], Awaitable[T]],
        **options: Any,
    ) -> T:
        """Await ``work()`` inside a span.

        The span stays open across every suspension of the awaited work and
        is closed on cancellation too.
        """
        with self.span(instance, resource_name, **options):
            return await work()

    def _open(
        self, trace_name: str, options: Dict[str, Any]
    ) -> Optional[Tuple[ContextManager[Any], Any]]:
        try:
            scope = self.tracer.trace(trace_name, options)
            span = scope.__enter__()
        except Exception:
            if not self.config.fail_open:
                raise
            logger.warning(
                "Tracer failed to open span %s (%s); running untraced",
                trace_name,
                options.get("resource"),
                exc_info=True,
            )
            return None

        logger.debug("Opened span %s resource=%s", trace_name, options.get("resource"))
        return scope, span

    def _close(
        self,
        scope: ContextManager[Any],
        exc_info: Tuple[
            Optional[Type[BaseException]],
            Optional[BaseException],
            Optional[TracebackType],
        ],
        trace_name: str,
        options: Dict[str, Any],
    ) -> None:
        work_failed = exc_info[1] is not None
        try:
            scope.__exit__(*exc_info)
        except Exception:
            if not work_failed and not self.config.fail_open:
                raise
            logger.warning(
                "Tracer failed to close span %s (%s)",
                trace_name,
                options.get("resource"),
                exc_info=True,
            )
            return

        logger.debug(
            "Closed span %s resource=%s error=%s",
            trace_name,
            options.get("resource"),
            work_failed,
        )


# Process default runner
_runner: Optional[SpanRunner] = None


def configure(
    config: Optional[TraceableConfig] = None,
    tracer: Optional[Tracer] = None,
) -> SpanRunner:
    """Install the process default runner.

    Call once at startup. Classes that do not carry their own runner use
    this one.

    Args:
        config: Settings; read from the environment when omitted
        tracer: Backend; OpenTelemetry's global provider when omitted

    Returns:
        The installed runner
    """
    global _runner
    if config is None:
        config = TraceableConfig.from_env()
    _runner = SpanRunner(config, tracer)
    logger.info(
        "Configured tracing for service %s (enabled=%s)",
        config.service_name,
        config.enabled,
    )
    return _runner


def get_runner() -> SpanRunner:
    """Return the process default runner.

    Configures one from the environment on first use.

    Raises:
        ConfigurationError: If not configured and the environment has no
            service name
    """
    if _runner is None:
        try:
            return configure()
        except ConfigurationError as e:
            raise ConfigurationError(
                "Tracing is not configured",
                details={"cause": e.message},
                suggestion="Call apm_traceable.configure() at startup "
                "or set APM_TRACEABLE_SERVICE_NAME.",
            ) from e
    return _runner


def reset() -> None:
    """Forget the process default runner."""
    global _runner
    _runner = None
