"""HTTP endpoints of the Lambda Runtime API.

See Also:
    https://docs.aws.amazon.com/lambda/latest/dg/runtimes-api.html
"""

__all__ = [
    "RuntimeEndpoint",
    "runtime_endpoint",
]

from dataclasses import dataclass
from typing import Iterable, Mapping, Optional, Union

import requests

from aibs_informatics_lambda_runtime.constants import (
    AWS_LAMBDA_RUNTIME_API_KEY,
    RUNTIME_API_TIMEOUT,
    RUNTIME_API_VERSION,
)
from aibs_informatics_lambda_runtime.errors import TransportError

RequestBody = Union[str, bytes, Iterable[bytes]]


@dataclass(frozen=True)
class RuntimeEndpoint:
    """HTTP client bound to a single Runtime API path.

    Endpoints are cheap and built for every call. Any transport failure or
    non-2xx status surfaces as `TransportError`.

    Attributes:
        url: Absolute URL of the path.
        timeout: Connect and read timeout in seconds.
    """

    url: str
    timeout: float = RUNTIME_API_TIMEOUT

    def get(self) -> requests.Response:
        """Issues a GET request without reading the body.

        The caller is responsible for reading or closing the response.
        """
        try:
            response = requests.get(self.url, timeout=self.timeout, stream=True)
            response.raise_for_status()
        except requests.RequestException as e:
            raise TransportError(f"GET {self.url} failed: {e}") from e
        return response

    def post(
        self, data: RequestBody, headers: Optional[Mapping[str, str]] = None
    ) -> requests.Response:
        """Issues a POST request.

        An iterable of bytes is sent with chunked transfer encoding.
        """
        try:
            response = requests.post(
                self.url, data=data, headers=dict(headers or {}), timeout=self.timeout
            )
            response.raise_for_status()
        except requests.RequestException as e:
            raise TransportError(f"POST {self.url} failed: {e}") from e
        return response


def runtime_endpoint(
    environment: Mapping[str, str], path: str, timeout: float = RUNTIME_API_TIMEOUT
) -> RuntimeEndpoint:
    """Returns the endpoint for a Runtime API path.

    The host is read from the `AWS_LAMBDA_RUNTIME_API` variable.

    Args:
        environment (Mapping[str, str]): Process environment variables.
        path (str): Path relative to the versioned runtime root, e.g. `invocation/next`.
        timeout (float): Timeout in seconds. Defaults to the maximum lambda runtime.

    Raises:
        TransportError: If `AWS_LAMBDA_RUNTIME_API` is not set.
    """
    host = environment.get(AWS_LAMBDA_RUNTIME_API_KEY)
    if not host:
        raise TransportError(f"{AWS_LAMBDA_RUNTIME_API_KEY} is not set")
    return RuntimeEndpoint(f"http://{host}/{RUNTIME_API_VERSION}/runtime/{path}", timeout)
