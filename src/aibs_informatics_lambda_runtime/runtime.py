"""Custom AWS Lambda runtime loop.

See Also:
    https://docs.aws.amazon.com/lambda/latest/dg/runtimes-custom.html
"""

__all__ = [
    "Invocation",
    "LambdaRuntime",
    "RuntimeState",
]

import json
import os
import sys
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Optional, TextIO

import requests
from aibs_informatics_core.utils.json import JSON

from aibs_informatics_lambda_runtime.common.context import RuntimeContext, header_value
from aibs_informatics_lambda_runtime.common.environment import Environment
from aibs_informatics_lambda_runtime.common.handler import (
    DispatchMode,
    LambdaEvent,
    LambdaTarget,
    resolve_handler,
)
from aibs_informatics_lambda_runtime.common.logging import LoggingMixins
from aibs_informatics_lambda_runtime.common.marshal import ErrorDocument, marshal_error
from aibs_informatics_lambda_runtime.constants import (
    APPLICATION_JSON,
    AWS_LAMBDA_HANDLER_KEY,
    FUNCTION_ERROR_TYPE_HEADER,
    REQUEST_ID_HEADER,
)
from aibs_informatics_lambda_runtime.endpoint import RuntimeEndpoint, runtime_endpoint
from aibs_informatics_lambda_runtime.errors import (
    InvocationError,
    StreamingFailure,
    TransportError,
)
from aibs_informatics_lambda_runtime.streaming import ResponseStream

JSON_HEADERS = {"Content-Type": APPLICATION_JSON}

LOG_KEYS = ["aws_request_id", "xray_trace_id"]


class RuntimeState(str, Enum):
    INIT = "INIT"
    POLLING = "POLLING"
    DISPATCHING = "DISPATCHING"
    REPORTING = "REPORTING"
    INIT_FAILED = "INIT_FAILED"
    TRANSPORT_FAILED = "TRANSPORT_FAILED"
    STREAMING_FAILED = "STREAMING_FAILED"


@dataclass(frozen=True)
class Invocation:
    context: RuntimeContext
    event: LambdaEvent


@dataclass
class LambdaRuntime(LoggingMixins):
    """Processes invocations from the Lambda Runtime API, one at a time.

    The handler is resolved from `_HANDLER` once at start up. Failures during
    initialization are posted to `init/error` and end the runtime. After
    that the runtime polls `invocation/next`, dispatches each event to the
    handler and posts its response or error, until communication with the
    Runtime API fails or a streaming handler raises.

    Example:
        ```python
        sys.exit(LambdaRuntime.from_env().run())
        ```

    Attributes:
        environment: Snapshot of the process environment variables.
        writer: Line-oriented output for handler trace messages.
        state: Current state of the runtime.
        target: The resolved handler, set by `initialize`.
    """

    environment: Dict[str, str] = field(default_factory=dict)
    writer: TextIO = field(default_factory=lambda: sys.stdout, repr=False)
    state: RuntimeState = field(default=RuntimeState.INIT, init=False)
    target: Optional[LambdaTarget] = field(default=None, init=False)

    @classmethod
    def from_env(cls) -> "LambdaRuntime":
        return cls(environment=dict(os.environ))

    @property
    def mode(self) -> Optional[DispatchMode]:
        return self.target.mode if self.target else None

    def endpoint(self, path: str) -> RuntimeEndpoint:
        return runtime_endpoint(self.environment, path)

    # --------------------------------------------------------------------
    # Lifecycle
    # --------------------------------------------------------------------

    def run(self) -> int:
        """Runs the runtime until it fails.

        Returns:
            The process exit status. The loop only ends on failures, so
            this is always non-zero.
        """
        self.add_logger_to_root()
        if not self.initialize():
            return 1

        try:
            while True:
                self.process_next_invocation()
        except TransportError as e:
            self.state = RuntimeState.TRANSPORT_FAILED
            self.logger.exception(f"Communication with the Runtime API failed: {e}")
        except StreamingFailure as e:
            self.state = RuntimeState.STREAMING_FAILED
            self.logger.exception(f"Streaming invocation failed, stopping runtime: {e}")
        return 1

    def initialize(self) -> bool:
        """Resolves the handler and selects its dispatch mode.

        Any failure is reported to `init/error`.

        Returns:
            True if the handler is ready to receive invocations.
        """
        self.state = RuntimeState.INIT
        identifier = self.environment.get(AWS_LAMBDA_HANDLER_KEY, "")
        try:
            environment = Environment.from_variables(self.environment, self.writer)
            self.target = resolve_handler(identifier, environment)
        except Exception as e:
            self.state = RuntimeState.INIT_FAILED
            self.logger.exception(f"Failed to initialize handler {identifier!r}: {e}")
            self.report_init_error(e)
            return False

        self.logger.info(f"Initialized handler {identifier!r} in {self.target.mode.value} mode")
        return True

    def process_next_invocation(self):
        """Polls for the next invocation and processes it.

        Raises:
            TransportError: If communication with the Runtime API failed.
            StreamingFailure: If a streaming handler raised.
        """
        if self.target is None:
            raise ValueError("Runtime is not initialized")

        self.state = RuntimeState.POLLING
        try:
            invocation = self.next_invocation()
        except InvocationError as e:
            self.logger.exception(f"Failed to read invocation {e.request_id}: {e}")
            self.report_invocation_error(e.request_id, e)
            return

        self.context = invocation.context
        self.logger.append_keys(
            aws_request_id=invocation.context.aws_request_id,
            xray_trace_id=invocation.context.trace_id,
        )
        try:
            self.dispatch(invocation)
        finally:
            self.logger.remove_keys(LOG_KEYS)

    # --------------------------------------------------------------------
    # Polling
    # --------------------------------------------------------------------

    def next_invocation(self) -> Invocation:
        """Fetches the next invocation, blocking until one is available.

        The context is built from the response headers before the body is
        read. Bodies of invocations without payload are never read.

        Raises:
            TransportError: If the request or reading its body failed.
            InvocationError: If the context or event cannot be parsed, for any
                reason other than a transport failure.
        """
        response = self.endpoint("invocation/next").get()
        try:
            request_id = header_value(response.headers, REQUEST_ID_HEADER)
            try:
                context = RuntimeContext.from_headers(response.headers, self.environment)
            except Exception as e:
                raise InvocationError(
                    f"Invalid invocation headers: {e}", request_id=request_id
                ) from e

            if not context.has_payload:
                return Invocation(context, None)

            try:
                body = response.content
            except requests.RequestException as e:
                raise TransportError(f"Reading invocation {request_id} failed: {e}") from e
            try:
                event = json.loads(body)
            except Exception as e:
                raise InvocationError(
                    f"Invalid event payload: {e}", request_id=request_id
                ) from e
            return Invocation(context, event)
        finally:
            response.close()

    # --------------------------------------------------------------------
    # Dispatching
    # --------------------------------------------------------------------

    def dispatch(self, invocation: Invocation):
        """Invokes the handler with an invocation and reports the outcome.

        Buffered handler failures are reported to the invocation's error
        endpoint. Streaming handler failures are not reported.

        Raises:
            TransportError: If posting the outcome failed.
            StreamingFailure: If a streaming handler raised.
        """
        if self.target is None:
            raise ValueError("Runtime is not initialized")
        context = invocation.context
        request_id = context.aws_request_id

        self.state = RuntimeState.DISPATCHING
        if self.target.handler is not None:
            self.target.handler.context = context
        self.logger.info(f"Dispatching invocation {request_id}")

        if self.target.mode is DispatchMode.STREAMING:
            stream = ResponseStream(self.endpoint(f"invocation/{request_id}/response"))
            stream.invoke(self.target.entry_point, invocation.event, context)
            self.state = RuntimeState.REPORTING
            return

        try:
            response = self.target.entry_point(invocation.event, context)
        except Exception as e:
            self.state = RuntimeState.REPORTING
            self.logger.exception(f"Handler failed for invocation {request_id}: {e}")
            self.report_invocation_error(request_id, e)
            return

        self.state = RuntimeState.REPORTING
        try:
            body = serialize_response(response)
        except InvocationError as e:
            self.logger.exception(f"Cannot report response of invocation {request_id}: {e}")
            self.report_invocation_error(request_id, e)
            return
        self.report_response(request_id, body)

    # --------------------------------------------------------------------
    # Reporting
    # --------------------------------------------------------------------

    def report_response(self, request_id: str, body: str):
        self.endpoint(f"invocation/{request_id}/response").post(body, headers=JSON_HEADERS)

    def report_invocation_error(self, request_id: Optional[str], error: BaseException):
        """Posts an error document to the invocation's error endpoint.

        Errors without a request id cannot be attributed to an invocation
        and are only logged.
        """
        if not request_id:
            self.logger.error(f"Cannot report error without request id: {error}")
            return
        self.post_error(f"invocation/{request_id}/error", marshal_error(error))

    def report_init_error(self, error: BaseException):
        """Posts an error document to `init/error`.

        A transport failure here is logged, the runtime is terminating anyway.
        """
        try:
            self.post_error("init/error", marshal_error(error))
        except TransportError as e:
            self.logger.exception(f"Failed to report initialization error: {e}")

    def post_error(self, path: str, document: ErrorDocument):
        headers = {**JSON_HEADERS, FUNCTION_ERROR_TYPE_HEADER: document.error_type}
        self.endpoint(path).post(document.to_json(), headers=headers)


def serialize_response(response: JSON) -> str:
    """Serializes a buffered handler response.

    Raises:
        InvocationError: If the response is not JSON serializable.
    """
    try:
        return json.dumps(response)
    except (TypeError, ValueError) as e:
        raise InvocationError(f"Handler response is not JSON serializable: {e}") from e
