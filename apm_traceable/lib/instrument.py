"""Method instrumentation: trace every call to selected methods.

Registration happens once, when the class is defined. Each registered
method is replaced on the class by a wrapper that opens a span named after
the instance's class, with the method name as resource, and calls the
original inside it. Arguments, return values and exceptions pass through
unchanged; coroutine methods get an async wrapper so the span covers the
awaited operation.

Usage:
    from apm_traceable import Traceable, traced_methods

    class SearchService(Traceable, trace_methods=("search", "suggest")):
        def search(self, query): ...
        async def suggest(self, prefix): ...

    class Indexer(Traceable):
        def rebuild(self): ...
        def publish(self):
            with self.trace_span("upload", tags={"bucket": "main"}):
                upload()

    Indexer.trace_methods("rebuild")

    @traced_methods("fetch")
    class Client:
        def fetch(self, url): ...
"""

from __future__ import annotations

import functools
import inspect
import logging
from typing import (
    Any,
    Awaitable,
    Callable,
    ClassVar,
    ContextManager,
    Iterable,
    List,
    Optional,
    Sequence,
    Tuple,
    TypeVar,
    Union,
)

from apm_traceable.lib.errors import (
    DuplicateRegistrationError,
    MethodNotFoundError,
    TraceRegistrationError,
)
from apm_traceable.lib.runner import SpanRunner, get_runner

logger = logging.getLogger(__name__)

__all__ = ["Traceable", "is_traced", "trace_methods", "traced_methods"]

C = TypeVar("C", bound=type)
T = TypeVar("T")

# Set on every wrapper; holds the resource name it traces
TRACED_ATTR = "__traced_resource__"
REGISTRY_ATTR = "__traced_methods__"


def is_traced(func: Any) -> bool:
    """Whether ``func`` is a wrapper installed by trace_methods."""
    return getattr(func, TRACED_ATTR, None) is not None


def _runner_for(instance: Any, runner: Optional[SpanRunner]) -> SpanRunner:
    if runner is not None:
        return runner
    class_runner = getattr(type(instance), "span_runner", None)
    if class_runner is not None:
        return class_runner
    return get_runner()


def _mark(wrapper: Callable[..., Any], owner: type, name: str) -> Callable[..., Any]:
    wrapper.__name__ = name
    wrapper.__qualname__ = f"{owner.__qualname__}.{name}"
    setattr(wrapper, TRACED_ATTR, name)
    return wrapper


def _bind(attr: Any, instance: Any) -> Callable[..., Any]:
    """Resolve ``attr`` the way ``instance.attr`` would."""
    get = getattr(type(attr), "__get__", None)
    if get is None:
        return attr
    return get(attr, instance, type(instance))


def _target_function(attr: Any) -> Any:
    """The function whose kind decides the wrapper shape.

    Plain functions are used as they are. Descriptor wrappers such as
    ``lru_cache``, ``partialmethod`` and ``singledispatchmethod`` expose
    the decorated function as ``__wrapped__`` or ``func``.
    """
    if attr is None or inspect.isfunction(attr):
        return attr
    return getattr(attr, "__wrapped__", None) or getattr(attr, "func", None)


def _is_method_like(attr: Any) -> bool:
    if inspect.isfunction(attr):
        return True
    attr_type = type(attr)
    if hasattr(attr_type, "__set__") or hasattr(attr_type, "__delete__"):
        return False
    return callable(attr) or hasattr(attr_type, "__get__")


def _build_wrapper(
    owner: type,
    name: str,
    target: Any,
    resolve: Callable[[Any], Callable[..., Any]],
    runner: Optional[SpanRunner],
) -> Callable[..., Any]:
    """Build a wrapper shaped like ``target``.

    ``resolve(self)`` returns the bound implementation for one call.
    Coroutine methods get an async wrapper and generator methods a
    generator wrapper, so the span covers the awaited or iterated body.
    """
    if inspect.iscoroutinefunction(target):

        async def async_wrapper(self: Any, *args: Any, **kwargs: Any) -> Any:
            return await _runner_for(self, runner).run_async(
                self, name, lambda: resolve(self)(*args, **kwargs)
            )

        wrapped: Callable[..., Any] = async_wrapper

    elif inspect.isgeneratorfunction(target):

        def generator_wrapper(self: Any, *args: Any, **kwargs: Any) -> Any:
            with _runner_for(self, runner).span(self, name):
                try:
                    return (yield from resolve(self)(*args, **kwargs))
                except GeneratorExit:
                    # Consumer stopped iterating; not a failure
                    return None

        wrapped = generator_wrapper

    else:

        def wrapper(self: Any, *args: Any, **kwargs: Any) -> Any:
            return _runner_for(self, runner).run(
                self, name, lambda: resolve(self)(*args, **kwargs)
            )

        wrapped = wrapper

    if target is not None:
        wrapped = functools.wraps(target)(wrapped)
    return _mark(wrapped, owner, name)


def _wrap_defined(
    owner: type, name: str, original: Any, runner: Optional[SpanRunner]
) -> Callable[..., Any]:
    """Wrap a method defined in the class body."""
    return _build_wrapper(
        owner,
        name,
        _target_function(original),
        lambda self: _bind(original, self),
        runner,
    )


def _wrap_inherited(
    owner: type, name: str, inherited: Any, runner: Optional[SpanRunner]
) -> Callable[..., Any]:
    """Wrap a method the class inherits, or one that does not exist yet.

    The implementation is looked up through ``super(owner, self)`` on every
    call, so a missing method fails only when invoked.
    """

    def delegate(self: Any) -> Callable[..., Any]:
        try:
            return getattr(super(owner, self), name)
        except AttributeError as e:
            raise MethodNotFoundError(
                f"'{type(self).__qualname__}' has no method '{name}' to trace",
                owner=owner,
                method_name=name,
            ) from e

    return _build_wrapper(
        owner, name, _target_function(inherited), delegate, runner
    )


def _check_registration(
    owner: type, method_names: Sequence[str], allow_rewrap: bool
) -> List[Tuple[str, Any]]:
    plan: List[Tuple[str, Any]] = []
    seen = set()

    for name in method_names:
        if not isinstance(name, str) or not name.isidentifier():
            raise TraceRegistrationError(
                f"Method names must be identifiers, got {name!r}", owner=owner
            )

        if name in seen and not allow_rewrap:
            raise DuplicateRegistrationError(
                f"'{name}' is listed more than once", owner=owner, method_name=name
            )
        seen.add(name)

        attr = inspect.getattr_static(owner, name, None)
        if isinstance(
            attr, (staticmethod, classmethod, property, functools.cached_property)
        ):
            raise TraceRegistrationError(
                f"'{name}' is a {type(attr).__name__}; only instance methods "
                "can be traced",
                owner=owner,
                method_name=name,
            )
        if attr is not None and not _is_method_like(attr):
            raise TraceRegistrationError(
                f"'{name}' is not a method", owner=owner, method_name=name
            )
        if inspect.isasyncgenfunction(_target_function(attr)):
            raise TraceRegistrationError(
                f"'{name}' is an async generator; wrap its consumer instead",
                owner=owner,
                method_name=name,
            )
        if is_traced(attr) and not allow_rewrap:
            raise DuplicateRegistrationError(
                f"'{name}' is already traced", owner=owner, method_name=name
            )

        plan.append((name, attr))

    return plan


def trace_methods(
    owner: C,
    *method_names: str,
    runner: Optional[SpanRunner] = None,
    allow_rewrap: bool = False,
) -> C:
    """Trace every call to the named methods of ``owner``.

    Args:
        owner: Class to instrument, modified in place
        *method_names: Instance methods to wrap, in order. Generator
            methods keep their span open while they are iterated;
            methods under descriptor decorators such as lru_cache are
            called through the descriptor
        runner: Runner for these methods; by default the instance's class
            ``span_runner`` attribute, then the process default
        allow_rewrap: Permit wrapping an already traced method, which
            nests a second span around each call

    Returns:
        ``owner``, so this can be used from class decorators

    Raises:
        TraceRegistrationError: If a name is not an identifier or names a
            static method, class method, property, cached property, async
            generator or a non-callable attribute
        DuplicateRegistrationError: If a method is already traced (or
            listed twice) and allow_rewrap is False
    """
    plan = _check_registration(owner, method_names, allow_rewrap)

    for name, _ in plan:
        # Re-read so a name listed twice stacks on the first wrapper
        attr = inspect.getattr_static(owner, name, None)
        if name in owner.__dict__:
            wrapper = _wrap_defined(owner, name, attr, runner)
        else:
            if attr is None:
                logger.debug(
                    "%s.%s does not exist yet; it will be resolved at call time",
                    owner.__qualname__,
                    name,
                )
            wrapper = _wrap_inherited(owner, name, attr, runner)
        setattr(owner, name, wrapper)

    registered = tuple(owner.__dict__.get(REGISTRY_ATTR, ()))
    setattr(owner, REGISTRY_ATTR, registered + tuple(name for name, _ in plan))
    logger.debug("Tracing %s: %s", owner.__qualname__, ", ".join(method_names))
    return owner


# Alias used where a parameter shadows the public name
_trace_methods = trace_methods


def traced_methods(
    *method_names: str,
    runner: Optional[SpanRunner] = None,
    allow_rewrap: bool = False,
) -> Callable[[C], C]:
    """Class decorator form of trace_methods.

    Example:
        @traced_methods("fetch", "store")
        class Repository:
            ...
    """

    def decorator(cls: C) -> C:
        return trace_methods(
            cls, *method_names, runner=runner, allow_rewrap=allow_rewrap
        )

    return decorator


class Traceable:
    """Mixin giving a class span helpers and method registration.

    Subclasses register methods with the ``trace_methods`` class keyword or
    by calling ``trace_methods`` on the class after its body. A
    ``span_runner`` class keyword or attribute pins the class to a
    specific runner; otherwise the process default is used.
    """

    span_runner: ClassVar[Optional[SpanRunner]] = None

    def __init_subclass__(
        cls,
        trace_methods: Union[str, Iterable[str]] = (),
        span_runner: Optional[SpanRunner] = None,
        **kwargs: Any,
    ) -> None:
        super().__init_subclass__(**kwargs)
        if span_runner is not None:
            cls.span_runner = span_runner
        if isinstance(trace_methods, str):
            trace_methods = (trace_methods,)
        names = tuple(trace_methods)
        if names:
            _trace_methods(cls, *names)

    @classmethod
    def trace_methods(
        cls,
        *method_names: str,
        runner: Optional[SpanRunner] = None,
        allow_rewrap: bool = False,
    ) -> None:
        """Trace every call to the named methods of this class."""
        _trace_methods(cls, *method_names, runner=runner, allow_rewrap=allow_rewrap)

    def trace_span(self, resource_name: str, **options: Any) -> ContextManager[Any]:
        """Trace a block of code.

        Example:
            with self.trace_span("render", tags={"template": "index"}):
                html = render()
        """
        return _runner_for(self, None).span(self, resource_name, **options)

    def run_span(self, resource_name: str, work: Callable[[], T], **options: Any) -> T:
        """Call ``work`` inside a span and return its result."""
        return _runner_for(self, None).run(self, resource_name, work, **options)

    async def run_span_async(
        self,
        resource_name: str,
        work: Callable[[], Awaitable[T]],
        **options: Any,
    ) -> T:
        """Await ``work()`` inside a span and return its result."""
        return await _runner_for(self, None).run_async(
            self, resource_name, work, **options
        )

