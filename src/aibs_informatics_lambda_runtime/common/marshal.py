"""Error marshaling for the Runtime API.

Converts exceptions into the error document Lambda expects on the
`init/error` and `invocation/{id}/error` endpoints.
"""

__all__ = [
    "ErrorDocument",
    "marshal_error",
    "format_frame",
    "qualified_type_name",
]

import json
import os
from dataclasses import dataclass, field
from types import TracebackType
from typing import Iterator, List, Optional

from aibs_informatics_core.utils.json import JSONObject

MAIN_OWNER = "<main>"


@dataclass
class ErrorDocument:
    """Structured error reported to the platform.

    Attributes:
        error_message: The error message.
        error_type: Qualified type name of the exception.
        stack_trace: A compound message entry for every link of the cause
            chain, each followed by the frames of that link.
    """

    error_message: str
    error_type: str
    stack_trace: List[str] = field(default_factory=list)

    def to_dict(self) -> JSONObject:
        return {
            "errorMessage": self.error_message,
            "errorType": self.error_type,
            "stackTrace": list(self.stack_trace),
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict())


def qualified_type_name(error: BaseException) -> str:
    """Returns `module.QualName` of the error type; builtins stay unqualified."""
    error_type = type(error)
    module = getattr(error_type, "__module__", None)
    if not module or module == "builtins":
        return error_type.__qualname__
    return f"{module}.{error_type.__qualname__}"


def format_frame(
    owner: str, member: str, line: int, filename: str = "", message: Optional[str] = None
) -> str:
    """Formats a single stack frame.

    Args:
        owner (str): Dotted name of the enclosing type or module. Empty for none.
        member (str): Name of the function or method.
        line (int): Line number.
        filename (str): Path of the source file; only its base name is kept.
        message (Optional[str]): Optional message appended after " - ".

    Returns:
        e.g. `my_module.MyHandler::handle(...) (line 12 of my_module.py)`
    """
    return "{}::{}(...) (line {} of {}){}".format(
        owner or MAIN_OWNER,
        member,
        line,
        os.path.basename(filename) if filename else "",
        f" - {message}" if message else "",
    )


def compound_message(error: BaseException) -> str:
    return f"Exception {qualified_type_name(error)} ({_safe_str(error)})"


def marshal_error(error: BaseException) -> ErrorDocument:
    """Converts an exception into an error document.

    Walks the cause chain, following `__cause__` and then `__context__`
    unless it is suppressed, and adds a compound message followed by the
    frames of every exception in the chain. Never raises.

    Args:
        error (BaseException): The exception to marshal.

    Returns:
        The error document.
    """
    stack_trace: List[str] = []
    for link in iter_cause_chain(error):
        stack_trace.append(compound_message(link))
        stack_trace.extend(iter_frames(link.__traceback__))

    return ErrorDocument(
        error_message=_safe_str(error),
        error_type=qualified_type_name(error),
        stack_trace=stack_trace,
    )


def iter_cause_chain(error: BaseException) -> Iterator[BaseException]:
    seen = set()
    current: Optional[BaseException] = error
    while current is not None and id(current) not in seen:
        seen.add(id(current))
        yield current
        if current.__cause__ is not None:
            current = current.__cause__
        elif not current.__suppress_context__:
            current = current.__context__
        else:
            current = None


def iter_frames(tb: Optional[TracebackType]) -> Iterator[str]:
    """Yields formatted frames of a traceback, most recent call last."""
    while tb is not None:
        frame = tb.tb_frame
        code = frame.f_code
        qualname = getattr(code, "co_qualname", code.co_name)
        owner, _, member = qualname.rpartition(".")

        module = frame.f_globals.get("__name__") or ""
        if module == "__main__":
            module = ""
        yield format_frame(
            owner=".".join(part for part in (module, owner) if part),
            member=member,
            line=tb.tb_lineno,
            filename=code.co_filename,
        )
        tb = tb.tb_next


def _safe_str(error: BaseException) -> str:
    try:
        return str(error)
    except Exception:
        return f"<unprintable {type(error).__name__} object>"
