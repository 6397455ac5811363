"""Command line entry point of the Lambda runtime.

`serve` runs the runtime loop against the Runtime API and is what the
container's bootstrap executes. `invoke` runs a handler locally against
canned events, without the Runtime API.
"""

import argparse
import json
import os
import sys
import time
import uuid
from pathlib import Path
from typing import List, Optional, Sequence, TextIO

from aibs_informatics_aws_utils.constants.lambda_ import AWS_LAMBDA_FUNCTION_NAME_KEY
from aibs_informatics_aws_utils.s3 import upload_json
from aibs_informatics_core.models.aws.s3 import S3URI
from aibs_informatics_core.utils.json import JSON
from aibs_informatics_core.utils.os_operations import get_env_var

from aibs_informatics_lambda_runtime.common.context import RuntimeContext
from aibs_informatics_lambda_runtime.common.environment import Environment
from aibs_informatics_lambda_runtime.common.handler import DispatchMode, resolve_handler
from aibs_informatics_lambda_runtime.common.logging import get_service_logger
from aibs_informatics_lambda_runtime.constants import (
    AWS_REGION_KEY,
    CONTENT_LENGTH_HEADER,
    DEADLINE_MS_HEADER,
    FUNCTION_ARN_HEADER,
    REQUEST_ID_HEADER,
    RUNTIME_API_TIMEOUT,
    TRACE_ID_HEADER,
)
from aibs_informatics_lambda_runtime.runtime import LambdaRuntime
from aibs_informatics_lambda_runtime.streaming import WriterResponseStream

logger = get_service_logger(__name__)

AWS_LAMBDA_FUNCTION_HANDLER_KEY = "AWS_LAMBDA_FUNCTION_HANDLER"
AWS_LAMBDA_EVENT_PAYLOAD_KEY = "AWS_LAMBDA_EVENT_PAYLOAD"
AWS_LAMBDA_EVENT_RESPONSE_LOCATION_KEY = "AWS_LAMBDA_EVENT_RESPONSE_LOCATION"

LOCAL_TRACE_ID = "Root=1-5bef4de7-ad49b0e87f6ef6c87fc2e700;Parent=9a9197af755a6419;Sampled=1"
LOCAL_REGION = "test-local-1"
LOCAL_ACCOUNT_ID = "123456789012"


def serve() -> int:
    return LambdaRuntime.from_env().run()


def local_headers(payload: str, function_arn: str) -> dict:
    """Headers the Runtime API would send along with a payload."""
    return {
        REQUEST_ID_HEADER: str(uuid.uuid4()),
        FUNCTION_ARN_HEADER: function_arn,
        TRACE_ID_HEADER: LOCAL_TRACE_ID,
        DEADLINE_MS_HEADER: str((int(time.time()) + RUNTIME_API_TIMEOUT) * 1000),
        CONTENT_LENGTH_HEADER: str(len(payload.encode("utf-8"))),
    }


def invoke(
    handler: str,
    payloads: Sequence[str],
    response_location: Optional[str] = None,
    writer: Optional[TextIO] = None,
) -> int:
    """Runs a handler locally against a sequence of JSON payloads.

    Args:
        handler (str): The handler identifier.
        payloads (Sequence[str]): JSON payloads, one per invocation.
        response_location (Optional[str]): File path or S3 URI the last response is written to.
        writer (Optional[TextIO]): Where responses and trace output are written.
            Defaults to stdout.

    Returns:
        0 if every invocation succeeded, 1 otherwise.
    """
    writer = writer or sys.stdout
    environment = dict(os.environ)
    target = resolve_handler(
        handler, Environment(root=os.getcwd(), writer=writer, variables=environment)
    )

    name = target.name.rpartition(".")[-1]
    region = get_env_var(AWS_REGION_KEY) or LOCAL_REGION
    function_arn = f"arn:aws:lambda:{region}:{LOCAL_ACCOUNT_ID}:function:{name}"
    environment = {AWS_LAMBDA_FUNCTION_NAME_KEY: name, AWS_REGION_KEY: region, **environment}

    status = 0
    response: Optional[JSON] = None
    for payload in payloads:
        context = RuntimeContext.from_headers(local_headers(payload, function_arn), environment)
        if target.handler is not None:
            target.handler.context = context
        stream = WriterResponseStream(writer)
        try:
            event = json.loads(payload) if context.has_payload else None
            if target.mode is DispatchMode.STREAMING:
                target.entry_point(event, context, stream)
                stream.end()
            else:
                response = target.entry_point(event, context)
                writer.write(f"{json.dumps(response)}\n")
        except Exception as e:
            stream.abort()
            logger.exception(f"Invocation {context.aws_request_id} failed: {e}")
            status = 1

    if response_location:
        write_response(response, response_location)
    return status


def write_response(response: Optional[JSON], response_location: str):
    """Writes a response as JSON to a local file or S3.

    Raises:
        ValueError: If the location is an existing directory.
    """
    if response_location.startswith("s3://"):
        upload_json(response or {}, S3URI(response_location))
        return

    path = Path(response_location)
    if path.is_dir():
        raise ValueError(f"Cannot write response to {path}, it is a directory")
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(response or {}))


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="lambda-runtime", description="Custom AWS Lambda runtime"
    )
    subparsers = parser.add_subparsers(dest="command")
    subparsers.add_parser("serve", help="Process invocations from the Lambda Runtime API")

    invoke_parser = subparsers.add_parser("invoke", help="Run a handler locally")
    invoke_parser.add_argument(
        "--handler",
        default=None,
        help=f"Handler identifier. Defaults to ${AWS_LAMBDA_FUNCTION_HANDLER_KEY}",
    )
    invoke_parser.add_argument(
        "--payload",
        action="append",
        default=None,
        help=f"JSON event, may be repeated. Defaults to ${AWS_LAMBDA_EVENT_PAYLOAD_KEY}",
    )
    invoke_parser.add_argument(
        "--response-location",
        default=None,
        help=(
            "File path or S3 URI to write the last response to. "
            f"Defaults to ${AWS_LAMBDA_EVENT_RESPONSE_LOCATION_KEY}"
        ),
    )
    return parser


def handle_cli(args: Optional[Sequence[str]] = None) -> int:
    """Parses command line arguments and runs the selected command.

    Raises:
        ValueError: If `invoke` is missing a handler or payload.
    """
    parsed = build_parser().parse_args(args)

    if parsed.command in (None, "serve"):
        return serve()

    handler = parsed.handler or get_env_var(AWS_LAMBDA_FUNCTION_HANDLER_KEY)
    if not handler:
        raise ValueError(
            f"A handler must be given with --handler or ${AWS_LAMBDA_FUNCTION_HANDLER_KEY}"
        )
    payloads: List[str] = parsed.payload or []
    if not payloads and get_env_var(AWS_LAMBDA_EVENT_PAYLOAD_KEY):
        payloads = [get_env_var(AWS_LAMBDA_EVENT_PAYLOAD_KEY)]
    if not payloads:
        raise ValueError(
            f"A payload must be given with --payload or ${AWS_LAMBDA_EVENT_PAYLOAD_KEY}"
        )
    response_location = parsed.response_location or get_env_var(
        AWS_LAMBDA_EVENT_RESPONSE_LOCATION_KEY
    )
    return invoke(handler, payloads, response_location)


def main():
    sys.exit(handle_cli(sys.argv[1:]))


if __name__ == "__main__":
    main()
