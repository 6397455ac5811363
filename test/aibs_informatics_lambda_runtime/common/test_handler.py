from test.aibs_informatics_lambda_runtime import handlers
from test.aibs_informatics_lambda_runtime.handlers import PREFIX
from test.base import BaseTest, does_not_raise

from pytest import mark, param, raises

from aibs_informatics_lambda_runtime.common.environment import Environment
from aibs_informatics_lambda_runtime.common.handler import (
    HANDLER_REGISTRY,
    DispatchMode,
    LambdaHandler,
    StreamingLambdaHandler,
    register_handler,
    resolve_handler,
    select_dispatch_mode,
)
from aibs_informatics_lambda_runtime.errors import (
    HandlerNotFound,
    InitializationError,
    InvalidHandler,
)


@mark.parametrize(
    "entry_point, expected",
    [
        param(lambda event, context: None, DispatchMode.BUFFERED, id="two parameters"),
        param(lambda event: None, DispatchMode.BUFFERED, id="one parameter"),
        param(
            lambda event, context, stream: None, DispatchMode.STREAMING, id="three parameters"
        ),
        param(handlers.takes_four, DispatchMode.STREAMING, id="four parameters"),
        param(lambda *args: None, DispatchMode.BUFFERED, id="variadic only"),
        param(
            lambda event, context, *, stream=None: None,
            DispatchMode.BUFFERED,
            id="keyword only parameters are ignored",
        ),
    ],
)
def test__select_dispatch_mode__by_arity(entry_point, expected):
    assert select_dispatch_mode(entry_point) == expected


def test__select_dispatch_mode__is_stable():
    modes = {select_dispatch_mode(handlers.stream_lines) for _ in range(5)}
    assert modes == {DispatchMode.STREAMING}


def test__select_dispatch_mode__declared_mode_wins():
    handler = handlers.VariadicStreamer()
    assert select_dispatch_mode(handler.target(), handler) == DispatchMode.STREAMING


def test__select_dispatch_mode__handler_without_declared_mode_uses_arity():
    handler = handlers.Counter()
    assert select_dispatch_mode(handler.target(), handler) == DispatchMode.BUFFERED


@mark.parametrize(
    "identifier, expected_mode, raise_expectation",
    [
        param(f"{PREFIX}.ok", DispatchMode.BUFFERED, does_not_raise(), id="function"),
        param(
            f"{PREFIX}.stream_lines",
            DispatchMode.STREAMING,
            does_not_raise(),
            id="streaming function",
        ),
        param(f"{PREFIX}.Counter", DispatchMode.BUFFERED, does_not_raise(), id="class"),
        param(
            f"{PREFIX}.Greeter", DispatchMode.STREAMING, does_not_raise(), id="streaming class"
        ),
        param(
            PREFIX.replace(".", "/") + ".ok",
            DispatchMode.BUFFERED,
            does_not_raise(),
            id="slashed module path",
        ),
        param(
            "registered-counter", DispatchMode.BUFFERED, does_not_raise(), id="registered name"
        ),
        param("", None, raises(HandlerNotFound), id="empty"),
        param("ok", None, raises(HandlerNotFound), id="no module"),
        param("does_not_exist.handler", None, raises(HandlerNotFound), id="missing module"),
        param(f"{PREFIX}.does_not_exist", None, raises(HandlerNotFound), id="missing attribute"),
        param(f"{PREFIX}.NotAHandler", None, raises(InvalidHandler), id="not a handler class"),
        param(f"{PREFIX}.NOT_CALLABLE", None, raises(InvalidHandler), id="not callable"),
    ],
)
def test__resolve_handler(identifier, expected_mode, raise_expectation):
    with raise_expectation:
        target = resolve_handler(identifier, Environment())
    if expected_mode is not None:
        assert target.name == identifier
        assert target.mode == expected_mode


def test__resolve_handler__errors_are_initialization_errors():
    assert issubclass(HandlerNotFound, InitializationError)
    assert issubclass(InvalidHandler, InitializationError)


def test__resolve_handler__function_is_used_directly():
    target = resolve_handler(f"{PREFIX}.echo", Environment())

    assert target.entry_point is handlers.echo
    assert target.handler is None


def test__resolve_handler__constructor_errors_propagate():
    with raises(RuntimeError, match="Cannot connect to database"):
        resolve_handler(f"{PREFIX}.Broken", Environment())


class ResolveHandlerClassTests(BaseTest):
    def test__resolve_handler__class_receives_environment(self):
        environment = Environment(root=str(self.tmp_path()), variables={"STAGE": "dev"})

        target = resolve_handler(f"{PREFIX}.Counter", environment)

        self.assertIsInstance(target.handler, handlers.Counter)
        self.assertIs(target.handler.environment, environment)
        self.assertEqual(target.entry_point, target.handler.handle)

    def test__resolve_handler__class_without_environment_parameter(self):
        target = resolve_handler(f"{PREFIX}.NoEnvironment", Environment())

        self.assertIsInstance(target.handler, handlers.NoEnvironment)
        self.assertTrue(target.entry_point({}, None))

    def test__resolve_handler__registered_class(self):
        target = resolve_handler("registered-counter", Environment())

        self.assertIsInstance(target.handler, handlers.RegisteredCounter)


class RegisterHandlerTests(BaseTest):
    def setUp(self) -> None:
        super().setUp()
        self.registry_snapshot = dict(HANDLER_REGISTRY)
        self.addCleanup(self.restore_registry)

    def restore_registry(self):
        HANDLER_REGISTRY.clear()
        HANDLER_REGISTRY.update(self.registry_snapshot)

    def test__register_handler__registers_under_name(self):
        @register_handler("adder")
        def add(event, context):
            return event["a"] + event["b"]

        self.assertIs(HANDLER_REGISTRY["adder"], add)
        target = resolve_handler("adder", Environment())
        self.assertEqual(target.entry_point({"a": 1, "b": 2}, None), 3)

    def test__register_handler__same_object_twice_is_allowed(self):
        def handler(event, context):
            return None

        register_handler("twice")(handler)
        register_handler("twice")(handler)
        self.assertIs(HANDLER_REGISTRY["twice"], handler)

    def test__register_handler__conflicting_name_raises(self):
        register_handler("conflict")(lambda event, context: 1)
        with self.assertRaises(ValueError):
            register_handler("conflict")(lambda event, context: 2)


class LambdaHandlerTests(BaseTest):
    def test__target__returns_handle(self):
        handler = handlers.Counter()
        self.assertEqual(handler.target(), handler.handle)

    def test__context__not_set_raises(self):
        with self.assertRaises(ValueError):
            handlers.Counter().context

    def test__trace__writes_to_environment(self):
        path = self.tmp_path() / "trace.log"
        with open(path, "w") as writer:
            handler = handlers.Counter(environment=Environment(writer=writer))
            handler.trace("hello")
        self.assertEqual(path.read_text(), "hello\n")

    def test__declared_modes(self):
        self.assertIsNone(LambdaHandler.dispatch_mode)
        self.assertEqual(StreamingLambdaHandler.dispatch_mode, DispatchMode.STREAMING)
