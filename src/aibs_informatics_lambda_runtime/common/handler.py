"""Lambda handler base classes and resolution.

A handler is either a plain function accepting `(event, context)` or
`(event, context, stream)`, or a subclass of `LambdaHandler`. Handlers are
resolved once at boot from the `_HANDLER` identifier, either through the
handler registry or by importing `module.attribute` from the task root.
"""

__all__ = [
    "DispatchMode",
    "HANDLER_REGISTRY",
    "LambdaEvent",
    "LambdaHandler",
    "LambdaTarget",
    "StreamingLambdaHandler",
    "register_handler",
    "resolve_handler",
    "select_dispatch_mode",
]

import importlib
import inspect
import sys
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, ClassVar, Dict, Optional, TypeVar, Union

from aibs_informatics_core.utils.json import JSON
from aibs_informatics_core.utils.modules import get_qualified_name

from aibs_informatics_lambda_runtime.common.environment import Environment
from aibs_informatics_lambda_runtime.common.logging import LoggingMixins, get_service_logger
from aibs_informatics_lambda_runtime.errors import HandlerNotFound, InvalidHandler

LambdaEvent = Union[JSON]  # type: ignore # https://github.com/python/mypy/issues/7866
EntryPoint = Callable[..., Any]

logger = get_service_logger(__name__)

T = TypeVar("T")

STREAMING_ARITY = 3


class DispatchMode(str, Enum):
    BUFFERED = "buffered"
    STREAMING = "streaming"


@dataclass  # type: ignore[misc] # mypy #5374
class LambdaHandler(LoggingMixins):
    """Base class for lambda handler classes.

    Subclasses implement `handle`. The runtime constructs the handler once
    at boot, passing the runtime `Environment`, and calls the entry point
    returned by `target` for every invocation.

    Example:
        ```python
        @register_handler("greeter")
        class Greeter(LambdaHandler):
            def handle(self, event, context):
                return {"message": f"Hello, {event['name']}!"}
        ```

    Attributes:
        environment: The runtime environment.
        dispatch_mode: Explicit dispatch mode. When None the mode is derived
            from the number of parameters the entry point accepts.
    """

    environment: Environment = field(default_factory=Environment)

    dispatch_mode: ClassVar[Optional[DispatchMode]] = None

    def handle(self, event: LambdaEvent, context) -> Optional[JSON]:
        raise NotImplementedError(  # pragma: no cover
            f"{self.handler_name()} must implement `handle`"
        )

    def target(self) -> EntryPoint:
        """Returns the callable invoked for every event."""
        return self.handle

    def trace(self, line: str):
        self.environment.trace(line)


@dataclass  # type: ignore[misc] # mypy #5374
class StreamingLambdaHandler(LambdaHandler):
    """Base class for handlers that stream their response.

    `handle` receives a `ResponseStream` as third argument and writes the
    response to it incrementally.
    """

    dispatch_mode: ClassVar[Optional[DispatchMode]] = DispatchMode.STREAMING

    def handle(self, event: LambdaEvent, context, stream) -> None:  # type: ignore[override]
        raise NotImplementedError(  # pragma: no cover
            f"{self.handler_name()} must implement `handle`"
        )


@dataclass(frozen=True)
class LambdaTarget:
    """A resolved handler, ready to be dispatched to.

    Attributes:
        name: The identifier the handler was resolved from.
        entry_point: Callable invoked for every event.
        mode: Dispatch mode, fixed for the process lifetime.
        handler: The handler instance, if the handler is a class.
    """

    name: str
    entry_point: EntryPoint
    mode: DispatchMode
    handler: Optional[LambdaHandler] = None


# --------------------------------------------------------------------
# Handler registry
# --------------------------------------------------------------------

HANDLER_REGISTRY: Dict[str, Any] = {}


def register_handler(name: Optional[str] = None) -> Callable[[T], T]:
    """Registers a handler class or function under a stable name.

    Registered names take precedence over import paths when resolving the
    `_HANDLER` identifier.

    Args:
        name (Optional[str]): Registry key. Defaults to the qualified name of the
            decorated object.
    """

    def decorator(obj: T) -> T:
        key = name or get_qualified_name(obj)
        if key in HANDLER_REGISTRY and HANDLER_REGISTRY[key] is not obj:
            raise ValueError(f"A handler is already registered as {key!r}")
        HANDLER_REGISTRY[key] = obj
        return obj

    return decorator


# --------------------------------------------------------------------
# Resolution
# --------------------------------------------------------------------


def load_handler_object(identifier: str, task_root: Optional[str] = None) -> Any:
    """Finds the object named by a handler identifier.

    Args:
        identifier (str): Registry name, or `module.attribute` where the module path
            may use `/` or `.` as separator.
        task_root (Optional[str]): Directory added to the import path before importing.

    Raises:
        HandlerNotFound: If nothing can be found under the identifier.
    """
    if not identifier:
        raise HandlerNotFound("No handler configured")
    if identifier in HANDLER_REGISTRY:
        return HANDLER_REGISTRY[identifier]

    module_name, _, attribute = identifier.replace("/", ".").rpartition(".")
    if not module_name or not attribute:
        raise HandlerNotFound(f"Handler {identifier!r} is not of the form module.attribute")

    if task_root and task_root not in sys.path:
        sys.path.insert(0, task_root)
    try:
        module = importlib.import_module(module_name)
    except ImportError as e:
        raise HandlerNotFound(f"Unable to import module {module_name!r}: {e}") from e

    try:
        return getattr(module, attribute)
    except AttributeError as e:
        raise HandlerNotFound(f"Module {module_name!r} has no attribute {attribute!r}") from e


def instantiate_handler(handler_cls: type, environment: Environment) -> LambdaHandler:
    if "environment" in inspect.signature(handler_cls).parameters:
        return handler_cls(environment=environment)
    return handler_cls()


def select_dispatch_mode(
    entry_point: EntryPoint, handler: Optional[LambdaHandler] = None
) -> DispatchMode:
    """Selects how invocations are dispatched to an entry point.

    A mode declared by the handler class wins. Otherwise entry points
    accepting three or more positional parameters stream, all others are
    buffered.

    Raises:
        InvalidHandler: If the entry point's signature cannot be inspected.
    """
    if handler is not None and handler.dispatch_mode is not None:
        return handler.dispatch_mode

    try:
        parameters = inspect.signature(entry_point).parameters.values()
    except (TypeError, ValueError) as e:
        raise InvalidHandler(f"Cannot inspect signature of {entry_point!r}") from e

    arity = sum(
        1
        for parameter in parameters
        if parameter.kind in (parameter.POSITIONAL_ONLY, parameter.POSITIONAL_OR_KEYWORD)
    )
    return DispatchMode.STREAMING if arity >= STREAMING_ARITY else DispatchMode.BUFFERED


def resolve_handler(identifier: str, environment: Environment) -> LambdaTarget:
    """Resolves, validates and constructs the handler named by an identifier.

    Args:
        identifier (str): The handler identifier, usually the `_HANDLER` variable.
        environment (Environment): Runtime environment passed to handler classes.

    Raises:
        HandlerNotFound: If the identifier cannot be resolved.
        InvalidHandler: If the resolved object is not a lambda handler.

    Returns:
        The resolved target with its dispatch mode.
    """
    handler_code = load_handler_object(identifier, environment.root)

    if inspect.isclass(handler_code):
        if not issubclass(handler_code, LambdaHandler):
            raise InvalidHandler(
                f"Class {get_qualified_name(handler_code)} is not a lambda handler"
            )
        logger.debug(f"Handler code is a class: {handler_code}. Instantiating...")
        handler = instantiate_handler(handler_code, environment)
        entry_point = handler.target()
        mode = select_dispatch_mode(entry_point, handler)
        return LambdaTarget(identifier, entry_point, mode, handler)
    elif callable(handler_code):
        return LambdaTarget(identifier, handler_code, select_dispatch_mode(handler_code))
    else:
        raise InvalidHandler(
            f"Unable to use {identifier} as handler. "
            "It is not a function or a subclass of LambdaHandler."
        )
