"""Exceptions raised by the Lambda runtime.

Only `InvocationError` is recovered from; the runtime loop reports it to the
invocation's error endpoint and keeps polling. Every other kind ends the
process and relies on the platform to start a new one.
"""

__all__ = [
    "LambdaRuntimeError",
    "InitializationError",
    "HandlerNotFound",
    "InvalidHandler",
    "InvocationError",
    "TransportError",
    "StreamingFailure",
]

from typing import Optional


class LambdaRuntimeError(Exception):
    """Base class for all runtime errors."""


class InitializationError(LambdaRuntimeError):
    """The handler could not be resolved or constructed."""


class HandlerNotFound(InitializationError):
    """The handler identifier does not resolve to a loadable object."""


class InvalidHandler(InitializationError):
    """The resolved object is not a lambda handler."""


class InvocationError(LambdaRuntimeError):
    """A single invocation failed. Reported to the platform, loop continues."""

    def __init__(self, *args, request_id: Optional[str] = None):
        super().__init__(*args)
        self.request_id = request_id


class TransportError(LambdaRuntimeError):
    """Communication with the Runtime API failed."""


class StreamingFailure(LambdaRuntimeError):
    """A streaming handler failed after its response may have been committed."""
