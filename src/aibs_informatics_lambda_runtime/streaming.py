"""Streaming responses for the Lambda Runtime API.

See Also:
    https://docs.aws.amazon.com/lambda/latest/dg/runtimes-custom.html#runtimes-custom-response-streaming
"""

__all__ = [
    "ResponseStream",
    "WriterResponseStream",
]

import queue
import threading
from typing import Iterator, Optional, TextIO, Union

from aibs_informatics_lambda_runtime.common.handler import EntryPoint, LambdaEvent
from aibs_informatics_lambda_runtime.common.logging import get_service_logger
from aibs_informatics_lambda_runtime.constants import (
    APPLICATION_JSON,
    FUNCTION_RESPONSE_MODE_HEADER,
    STREAMING_RESPONSE_MODE,
)
from aibs_informatics_lambda_runtime.endpoint import RuntimeEndpoint
from aibs_informatics_lambda_runtime.errors import StreamingFailure, TransportError

logger = get_service_logger(__name__)

_END = object()
_ABORT = object()


class ResponseStream:
    """Response sink handed to streaming handlers.

    The response is sent as a chunked POST to the invocation's response
    endpoint. The request starts with the first write, so the content type
    can be changed with `use` until then. Chunks are handed to a sender
    thread through a queue; `end` and `abort` wait for it to finish.

    Example:
        ```python
        def handler(event, context, stream):
            stream.use("text/plain")
            for line in produce_lines(event):
                stream.write(line)
        ```
    """

    def __init__(self, endpoint: RuntimeEndpoint, content_type: str = APPLICATION_JSON):
        self.endpoint = endpoint
        self.content_type = content_type
        self._queue: "queue.Queue[object]" = queue.Queue()
        self._sender: Optional[threading.Thread] = None
        self._error: Optional[BaseException] = None
        self._closed = False

    @property
    def started(self) -> bool:
        return self._sender is not None

    @property
    def closed(self) -> bool:
        return self._closed

    def use(self, content_type: str) -> "ResponseStream":
        """Sets the response content type.

        Raises:
            ValueError: If the response has already started.
        """
        if self.started:
            raise ValueError("Cannot change content type after the response has started")
        self.content_type = content_type
        return self

    def write(self, data: Union[str, bytes]):
        """Writes a chunk of the response.

        Raises:
            ValueError: If the stream has been closed.
            TransportError: If sending the response has failed.
        """
        if self._closed:
            raise ValueError("Response stream is closed")
        self._start()
        self._raise_for_error()
        chunk = data.encode("utf-8") if isinstance(data, str) else bytes(data)
        if chunk:
            self._queue.put(chunk)

    def end(self, data: Union[str, bytes, None] = None):
        """Completes the response and waits until it has been sent.

        Calling `end` on a closed stream does nothing.

        Raises:
            TransportError: If sending the response has failed.
        """
        if self._closed:
            return
        if data is not None:
            self.write(data)
        self._start()
        self._finish(_END)
        self._raise_for_error()

    def abort(self):
        """Aborts the response, leaving the chunked body incomplete."""
        if self._closed:
            return
        if not self.started:
            self._closed = True
            return
        self._finish(_ABORT)
        if self._error is not None and not isinstance(self._error, StreamingFailure):
            logger.warning(f"Aborted response to {self.endpoint.url} failed: {self._error}")

    def invoke(self, entry_point: EntryPoint, event: LambdaEvent, context) -> None:
        """Invokes a streaming entry point with this stream.

        The stream is ended once the entry point returns, or aborted if it
        raises.

        Raises:
            StreamingFailure: If the entry point raised.
        """
        try:
            entry_point(event, context, self)
        except Exception as e:
            self.abort()
            raise StreamingFailure(f"Streaming handler failed: {e}") from e
        self.end()

    def _start(self):
        if self._sender is not None:
            return
        self._sender = threading.Thread(target=self._send, name="response-stream", daemon=True)
        self._sender.start()

    def _finish(self, sentinel: object):
        self._closed = True
        self._queue.put(sentinel)
        if self._sender is not None:
            self._sender.join()

    def _raise_for_error(self):
        if self._error is None:
            return
        if isinstance(self._error, TransportError):
            raise self._error
        raise TransportError(f"Streaming response to {self.endpoint.url} failed") from self._error

    def _body(self) -> Iterator[bytes]:
        while True:
            item = self._queue.get()
            if item is _END:
                return
            if item is _ABORT:
                raise StreamingFailure("Response stream aborted")
            yield item  # type: ignore[misc]

    def _send(self):
        headers = {
            FUNCTION_RESPONSE_MODE_HEADER: STREAMING_RESPONSE_MODE,
            "Content-Type": self.content_type,
        }
        try:
            self.endpoint.post(self._body(), headers=headers)
        except Exception as e:
            # Re-raised on the calling thread by `write` and `end`.
            self._error = e


class WriterResponseStream:
    """Response sink writing to a text stream, for running handlers locally."""

    def __init__(self, writer: TextIO, content_type: str = APPLICATION_JSON):
        self.writer = writer
        self.content_type = content_type
        self.closed = False

    def use(self, content_type: str) -> "WriterResponseStream":
        self.content_type = content_type
        return self

    def write(self, data: Union[str, bytes]):
        if self.closed:
            raise ValueError("Response stream is closed")
        self.writer.write(data.decode("utf-8") if isinstance(data, bytes) else data)

    def end(self, data: Union[str, bytes, None] = None):
        if self.closed:
            return
        if data is not None:
            self.write(data)
        self.writer.write("\n")
        self.writer.flush()
        self.closed = True

    def abort(self):
        self.closed = True
