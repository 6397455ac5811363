import json
import traceback

from pytest import mark, param

from aibs_informatics_lambda_runtime.common.marshal import (
    ErrorDocument,
    format_frame,
    marshal_error,
    qualified_type_name,
)
from aibs_informatics_lambda_runtime.errors import InvocationError


class CustomError(Exception):
    pass


class UnprintableError(Exception):
    def __str__(self):
        raise RuntimeError("cannot print me")


def fail_inner():
    raise ValueError("inner")


def fail_outer():
    try:
        fail_inner()
    except ValueError as e:
        raise RuntimeError("outer") from e


def capture(func) -> BaseException:
    try:
        func()
    except Exception as e:
        return e
    raise AssertionError(f"{func} did not raise")


def expected_trace_length(error: BaseException) -> int:
    length = 0
    while error is not None:
        length += 1 + len(traceback.extract_tb(error.__traceback__))
        error = error.__cause__ or (None if error.__suppress_context__ else error.__context__)
    return length


@mark.parametrize(
    "owner, member, line, filename, message, expected",
    [
        param(
            "my_module.MyHandler",
            "handle",
            12,
            "/var/task/my_module.py",
            None,
            "my_module.MyHandler::handle(...) (line 12 of my_module.py)",
            id="method",
        ),
        param("", "<module>", 1, "", None, "<main>::<module>(...) (line 1 of )", id="no owner"),
        param(
            "pkg.mod",
            "run",
            3,
            "mod.py",
            "Division by zero",
            "pkg.mod::run(...) (line 3 of mod.py) - Division by zero",
            id="with message",
        ),
    ],
)
def test__format_frame(owner, member, line, filename, message, expected):
    assert format_frame(owner, member, line, filename, message) == expected


@mark.parametrize(
    "error, expected",
    [
        param(ZeroDivisionError("x/0"), "ZeroDivisionError", id="builtin"),
        param(CustomError(), f"{__name__}.CustomError", id="custom"),
        param(
            InvocationError(),
            "aibs_informatics_lambda_runtime.errors.InvocationError",
            id="runtime error",
        ),
    ],
)
def test__qualified_type_name(error, expected):
    assert qualified_type_name(error) == expected


def test__marshal_error__unraised_error_has_no_frames():
    document = marshal_error(ZeroDivisionError("x/0"))

    assert document == ErrorDocument(
        error_message="x/0",
        error_type="ZeroDivisionError",
        stack_trace=["Exception ZeroDivisionError (x/0)"],
    )


def test__marshal_error__raised_error_includes_frames():
    error = capture(fail_inner)
    document = marshal_error(error)

    assert document.error_message == "inner"
    assert document.error_type == "ValueError"
    assert document.stack_trace[0] == "Exception ValueError (inner)"
    assert len(document.stack_trace) == expected_trace_length(error)
    assert document.stack_trace[-1].startswith(f"{__name__}::fail_inner(...) (line ")
    assert document.stack_trace[-1].endswith(" of test_marshal.py)")


def test__marshal_error__walks_cause_chain_in_order():
    error = capture(fail_outer)
    document = marshal_error(error)

    assert document.error_message == "outer"
    assert document.error_type == "RuntimeError"
    assert len(document.stack_trace) == expected_trace_length(error)

    outer_frames = len(traceback.extract_tb(error.__traceback__))
    assert document.stack_trace[0] == "Exception RuntimeError (outer)"
    assert document.stack_trace[1 + outer_frames] == "Exception ValueError (inner)"
    outer_trace = document.stack_trace[1 : 1 + outer_frames]
    assert any("::fail_outer(...)" in frame for frame in outer_trace)
    assert document.stack_trace[-1].startswith(f"{__name__}::fail_inner(...)")


def test__marshal_error__follows_implicit_context():
    def fail_while_handling():
        try:
            fail_inner()
        except ValueError:
            raise KeyError("missing")

    error = capture(fail_while_handling)
    document = marshal_error(error)

    compound_messages = [entry for entry in document.stack_trace if entry.startswith("Exception ")]
    assert compound_messages == [
        "Exception KeyError ('missing')",
        "Exception ValueError (inner)",
    ]


def test__marshal_error__respects_suppressed_context():
    def fail_from_none():
        try:
            fail_inner()
        except ValueError:
            raise CustomError("clean") from None

    document = marshal_error(capture(fail_from_none))

    compound_messages = [entry for entry in document.stack_trace if entry.startswith("Exception ")]
    assert compound_messages == [f"Exception {__name__}.CustomError (clean)"]


def test__marshal_error__stops_on_cyclic_causes():
    first = CustomError("first")
    second = CustomError("second")
    first.__cause__ = second
    second.__cause__ = first

    document = marshal_error(first)

    assert document.stack_trace == [
        f"Exception {__name__}.CustomError (first)",
        f"Exception {__name__}.CustomError (second)",
    ]


def test__marshal_error__unprintable_error_does_not_raise():
    document = marshal_error(UnprintableError())

    assert document.error_message == "<unprintable UnprintableError object>"
    assert document.error_type == f"{__name__}.UnprintableError"


def test__marshal_error__is_deterministic():
    error = capture(fail_outer)
    assert marshal_error(error) == marshal_error(error)


def test__error_document__serializes_platform_keys():
    document = ErrorDocument("x/0", "ZeroDivisionError", ["Exception ZeroDivisionError (x/0)"])

    assert json.loads(document.to_json()) == {
        "errorMessage": "x/0",
        "errorType": "ZeroDivisionError",
        "stackTrace": ["Exception ZeroDivisionError (x/0)"],
    }
