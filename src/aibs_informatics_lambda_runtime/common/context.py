"""Invocation context built from Runtime API response headers.

Provides `RuntimeContext`, the powertools `LambdaContext` implementation
handed to handlers for every invocation, and header lookup helpers.
"""

__all__ = [
    "Headers",
    "RuntimeContext",
    "header_value",
]

import json
import time
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Sequence, Union

from aibs_informatics_aws_utils.constants.lambda_ import (
    AWS_LAMBDA_FUNCTION_MEMORY_SIZE_KEY,
    AWS_LAMBDA_FUNCTION_NAME_KEY,
    AWS_LAMBDA_FUNCTION_VERSION_KEY,
    AWS_LAMBDA_LOG_GROUP_NAME_KEY,
    AWS_LAMBDA_LOG_STREAM_NAME_KEY,
    DEFAULT_AWS_LAMBDA_FUNCTION_NAME,
)
from aws_lambda_powertools.utilities.typing import LambdaContext
from aws_lambda_powertools.utilities.typing.lambda_client_context import LambdaClientContext
from aws_lambda_powertools.utilities.typing.lambda_client_context_mobile_client import (
    LambdaClientContextMobileClient,
)
from aws_lambda_powertools.utilities.typing.lambda_cognito_identity import LambdaCognitoIdentity

from aibs_informatics_lambda_runtime.constants import (
    CLIENT_CONTEXT_HEADER,
    COGNITO_IDENTITY_HEADER,
    CONTENT_LENGTH_HEADER,
    DEADLINE_MS_HEADER,
    FUNCTION_ARN_HEADER,
    REQUEST_ID_HEADER,
    TRACE_ID_HEADER,
)

Headers = Mapping[str, Union[str, Sequence[str]]]


def header_value(headers: Headers, name: str, default: str = "") -> str:
    """Look up a header, ignoring case.

    Values may be plain strings or sequences of strings, in which case the
    first value is returned.

    Args:
        headers (Headers): Response headers.
        name (str): Header name.
        default (str): Value returned when the header is absent or empty.

    Returns:
        The header value.
    """
    lowered = name.lower()
    for key, value in headers.items():
        if key.lower() != lowered:
            continue
        if isinstance(value, (str, bytes)):
            return value.decode() if isinstance(value, bytes) else value
        return str(value[0]) if len(value) else default
    return default


def parse_json_object(value: str, name: str) -> Dict[str, Any]:
    """Parses a header holding a JSON object. Empty values yield an empty dict.

    Raises:
        ValueError: If the value is not valid JSON or not an object.
    """
    data = json.loads(value) if value else {}
    if not isinstance(data, dict):
        raise ValueError(f"{name} must be a JSON object, got {type(data).__name__}")
    return data


def parse_client_context(value: str) -> LambdaClientContext:
    client_context = LambdaClientContext()
    data = parse_json_object(value, CLIENT_CONTEXT_HEADER)

    client = LambdaClientContextMobileClient()
    client_data = data.get("client") or {}
    if not isinstance(client_data, dict):
        raise ValueError(f"{CLIENT_CONTEXT_HEADER} client must be a JSON object")
    client._installation_id = client_data.get("installation_id", "")
    client._app_title = client_data.get("app_title", "")
    client._app_version_name = client_data.get("app_version_name", "")
    client._app_version_code = client_data.get("app_version_code", "")
    client._app_package_name = client_data.get("app_package_name", "")

    client_context._client = client
    client_context._custom = data.get("custom") or {}
    client_context._env = data.get("env") or {}
    return client_context


def parse_cognito_identity(value: str) -> LambdaCognitoIdentity:
    identity = LambdaCognitoIdentity()
    data = parse_json_object(value, COGNITO_IDENTITY_HEADER)
    identity._cognito_identity_id = data.get("cognitoIdentityId", "")
    identity._cognito_identity_pool_id = data.get("cognitoIdentityPoolId", "")
    return identity


@dataclass(frozen=True)
class RuntimeContext(LambdaContext):
    """Context of a single invocation.

    Built once per invocation from the `invocation/next` response headers
    and the process environment, before the event body is read.

    Attributes:
        _aws_request_id: Unique id of the invocation.
        _invoked_function_arn: ARN used to invoke the function.
        _trace_id: X-Ray tracing header, forwarded as is.
        _deadline_ms: Invocation deadline in epoch milliseconds.
        _payload_length: Length of the event body. Zero means no event.
        _function_name: The Lambda function name.
        _function_version: The function version.
        _memory_limit_in_mb: Memory limit in megabytes.
        _log_group_name: CloudWatch log group name.
        _log_stream_name: CloudWatch log stream name.
        _identity: Cognito identity, only set for mobile SDK invocations.
        _client_context: Client context, only set for mobile SDK invocations.
    """

    _aws_request_id: str = ""
    _invoked_function_arn: str = ""
    _trace_id: str = ""
    _deadline_ms: int = 0
    _payload_length: int = 0
    _function_name: str = DEFAULT_AWS_LAMBDA_FUNCTION_NAME
    _function_version: str = "$LATEST"
    _memory_limit_in_mb: int = 1024
    _log_group_name: str = ""
    _log_stream_name: str = ""
    _identity: LambdaCognitoIdentity = field(default_factory=LambdaCognitoIdentity)
    _client_context: LambdaClientContext = field(default_factory=LambdaClientContext)

    @classmethod
    def from_headers(cls, headers: Headers, environment: Mapping[str, str]) -> "RuntimeContext":
        """Create the context of an invocation.

        Missing headers fall back to empty defaults. Content-Length that is
        absent is treated like `0`.

        Args:
            headers (Headers): Headers of the `invocation/next` response.
            environment (Mapping[str, str]): Process environment variables.

        Raises:
            ValueError: If a numeric header or a JSON header cannot be parsed.
        """
        function_name = (
            environment.get(AWS_LAMBDA_FUNCTION_NAME_KEY) or DEFAULT_AWS_LAMBDA_FUNCTION_NAME
        )
        return cls(
            _aws_request_id=header_value(headers, REQUEST_ID_HEADER),
            _invoked_function_arn=header_value(headers, FUNCTION_ARN_HEADER),
            _trace_id=header_value(headers, TRACE_ID_HEADER),
            _deadline_ms=int(header_value(headers, DEADLINE_MS_HEADER, "0")),
            _payload_length=int(header_value(headers, CONTENT_LENGTH_HEADER, "0")),
            _function_name=function_name,
            _function_version=environment.get(AWS_LAMBDA_FUNCTION_VERSION_KEY, "$LATEST"),
            _memory_limit_in_mb=int(environment.get(AWS_LAMBDA_FUNCTION_MEMORY_SIZE_KEY, "1024")),
            _log_group_name=environment.get(
                AWS_LAMBDA_LOG_GROUP_NAME_KEY, f"/aws/lambda/{function_name}"
            ),
            _log_stream_name=environment.get(AWS_LAMBDA_LOG_STREAM_NAME_KEY, ""),
            _identity=parse_cognito_identity(header_value(headers, COGNITO_IDENTITY_HEADER)),
            _client_context=parse_client_context(header_value(headers, CLIENT_CONTEXT_HEADER)),
        )

    @property
    def trace_id(self) -> str:
        return self._trace_id

    @property
    def deadline_ms(self) -> int:
        return self._deadline_ms

    @property
    def payload_length(self) -> int:
        return self._payload_length

    @property
    def has_payload(self) -> bool:
        return self._payload_length > 0

    def get_remaining_time_in_millis(self) -> int:  # type: ignore[override]
        """Milliseconds left until the deadline, never negative.

        The deadline is advisory, the runtime does not enforce it.
        """
        return max(self._deadline_ms - int(time.time() * 1000), 0)
