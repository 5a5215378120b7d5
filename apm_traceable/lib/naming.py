"""Trace name and service name resolution.

A trace name is the dot-delimited namespace of a span, derived from the
runtime class of the object being traced:

    Product::SearchController  ->  product.search_controller
    Catalog.SearchService      ->  catalog.search_service
    HTMLParser                 ->  html_parser

Objects whose class has no usable name (dynamically built view or template
contexts) may expose a ``controller`` attribute; the controller's class
names the trace instead.
"""

from __future__ import annotations

import re
from functools import lru_cache
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

from apm_traceable.lib.errors import ContextResolutionError

if TYPE_CHECKING:
    from apm_traceable.lib.config import TraceableConfig

__all__ = [
    "HasControllerContext",
    "resolve_service_name",
    "resolve_trace_name",
    "type_path",
    "underscore",
]

PATH_SEPARATOR = re.compile(r"::|/")
ACRONYM_BOUNDARY = re.compile(r"([A-Z\d]+)([A-Z][a-z])")
WORD_BOUNDARY = re.compile(r"([a-z\d])([A-Z])")
LOCALS_MARKER = "<locals>."


@runtime_checkable
class HasControllerContext(Protocol):
    """Capability of objects that delegate their trace name to a controller."""

    controller: Any


def underscore(type_name: str) -> str:
    """Convert a class path to a lower-case, dot-delimited trace name.

    ``::`` and ``/`` separators become dots, CamelCase words become
    snake_case with acronym runs kept together, and dashes become
    underscores.
    """
    word = PATH_SEPARATOR.sub(".", type_name)
    word = ACRONYM_BOUNDARY.sub(r"\1_\2", word)
    word = WORD_BOUNDARY.sub(r"\1_\2", word)
    return word.replace("-", "_").lower()


def type_path(cls: type, include_module: bool = False) -> str:
    """Return the dotted path of a class.

    Classes defined inside functions drop everything up to the last
    ``<locals>`` segment.
    """
    qualname = getattr(cls, "__qualname__", None) or getattr(cls, "__name__", "")
    qualname = qualname.rsplit(LOCALS_MARKER, 1)[-1]
    if not qualname:
        return ""
    module = getattr(cls, "__module__", None)
    if include_module and module and module not in ("builtins", "__main__"):
        return f"{module}.{qualname}"
    return qualname


@lru_cache(maxsize=1024)
def _class_trace_name(cls: type, include_module: bool) -> str:
    return underscore(type_path(cls, include_module))


def resolve_trace_name(instance: Any, include_module: bool = False) -> str:
    """Resolve the trace name for an instance.

    Raises:
        ContextResolutionError: If neither the instance's class nor its
            controller's class has a name
    """
    name = _class_trace_name(type(instance), include_module)
    if name:
        return name

    if isinstance(instance, HasControllerContext):
        controller = instance.controller
        if controller is not None:
            name = _class_trace_name(type(controller), include_module)
            if name:
                return name

    raise ContextResolutionError(
        "Cannot derive a trace name: the instance's class is unnamed and "
        "no named controller is available",
        instance=instance,
    )


def resolve_service_name(config: "TraceableConfig") -> str:
    """Return the service name spans are reported under."""
    return config.service_name
