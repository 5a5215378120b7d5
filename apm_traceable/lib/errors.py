"""Structured exception hierarchy for tracing instrumentation.

Provides specific exception types for the ways instrumentation can be
misused, with rich context for debugging. Failures raised by traced code
itself are never wrapped in these types; they propagate unchanged.
"""

from __future__ import annotations

from typing import Any, Dict, Optional

__all__ = [
    "TraceableError",
    "ContextResolutionError",
    "TraceRegistrationError",
    "DuplicateRegistrationError",
    "MethodNotFoundError",
    "ConfigurationError",
]


class TraceableError(Exception):
    """Base exception for all instrumentation errors.

    Provides structured error information for debugging.
    """

    def __init__(
        self,
        message: str,
        *,
        details: Optional[Dict[str, Any]] = None,
        suggestion: Optional[str] = None,
    ) -> None:
        self.message = message
        self.details = details or {}
        self.suggestion = suggestion

        parts = [message]

        if details:
            detail_lines = [f"  {k}: {v}" for k, v in details.items()]
            parts.append("\nDetails:")
            parts.extend(detail_lines)

        if suggestion:
            parts.append(f"\nSuggestion: {suggestion}")

        super().__init__("\n".join(parts) if len(parts) > 1 else message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for structured logging."""
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "details": self.details,
            "suggestion": self.suggestion,
        }


class ContextResolutionError(TraceableError):
    """No nameable type or controller context for a trace name.

    Raised before a span is opened. This is a programming error in the
    caller and is never retried.
    """

    def __init__(
        self,
        message: str,
        *,
        instance: Any = None,
        **kwargs: Any,
    ) -> None:
        self.instance = instance

        details = kwargs.pop("details", {})
        if instance is not None:
            details["instance_type"] = repr(type(instance))

        suggestion = kwargs.pop("suggestion", None)
        if not suggestion:
            suggestion = (
                "Trace from an instance of a named class, or expose a "
                "'controller' attribute whose class is named."
            )

        super().__init__(message, details=details, suggestion=suggestion, **kwargs)


class TraceRegistrationError(TraceableError):
    """Error registering methods for tracing.

    Raised at class definition time when a method cannot be wrapped.
    """

    def __init__(
        self,
        message: str,
        *,
        owner: Optional[type] = None,
        method_name: Optional[str] = None,
        **kwargs: Any,
    ) -> None:
        self.owner = owner
        self.method_name = method_name

        details = kwargs.pop("details", {})
        if owner is not None:
            details["class"] = owner.__qualname__
        if method_name:
            details["method"] = method_name

        super().__init__(message, details=details, **kwargs)


class DuplicateRegistrationError(TraceRegistrationError):
    """A method is already wrapped for tracing.

    Registering twice would nest a second span around every call.
    """

    def __init__(self, message: str, **kwargs: Any) -> None:
        suggestion = kwargs.pop("suggestion", None)
        if not suggestion:
            suggestion = (
                "Register each method once, or pass allow_rewrap=True "
                "if nested spans are intended."
            )
        super().__init__(message, suggestion=suggestion, **kwargs)


class MethodNotFoundError(TraceableError, AttributeError):
    """A traced method has no implementation to delegate to.

    Registration does not check that the method exists, so this surfaces
    only when the wrapper is called.
    """

    def __init__(
        self,
        message: str,
        *,
        owner: Optional[type] = None,
        method_name: Optional[str] = None,
        **kwargs: Any,
    ) -> None:
        self.owner = owner
        self.method_name = method_name

        details = kwargs.pop("details", {})
        if owner is not None:
            details["class"] = owner.__qualname__
        if method_name:
            details["method"] = method_name

        suggestion = kwargs.pop("suggestion", None)
        if not suggestion:
            suggestion = "Check the method name passed to trace_methods()."

        super().__init__(message, details=details, suggestion=suggestion, **kwargs)


class ConfigurationError(TraceableError):
    """Error in instrumentation configuration.

    Raised when configuration is invalid or incomplete.
    """

    def __init__(
        self,
        message: str,
        *,
        field: Optional[str] = None,
        value: Any = None,
        **kwargs: Any,
    ) -> None:
        self.field = field
        self.value = value

        details = kwargs.pop("details", {})
        if field:
            details["field"] = field
        if value is not None:
            details["value"] = str(value)

        super().__init__(message, details=details, **kwargs)
