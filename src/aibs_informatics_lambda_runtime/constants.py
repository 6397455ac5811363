"""Runtime API constants.

See Also:
    https://docs.aws.amazon.com/lambda/latest/dg/runtimes-api.html
"""

AWS_LAMBDA_RUNTIME_API_KEY = "AWS_LAMBDA_RUNTIME_API"
AWS_LAMBDA_HANDLER_KEY = "_HANDLER"
AWS_LAMBDA_TASK_ROOT_KEY = "LAMBDA_TASK_ROOT"
AWS_REGION_KEY = "AWS_REGION"

RUNTIME_API_VERSION = "2018-06-01"

# Maximum lambda runtime, see
# https://docs.aws.amazon.com/lambda/latest/dg/gettingstarted-limits.html
RUNTIME_API_TIMEOUT = 900

REQUEST_ID_HEADER = "Lambda-Runtime-Aws-Request-Id"
FUNCTION_ARN_HEADER = "Lambda-Runtime-Invoked-Function-Arn"
TRACE_ID_HEADER = "Lambda-Runtime-Trace-Id"
DEADLINE_MS_HEADER = "Lambda-Runtime-Deadline-Ms"
CLIENT_CONTEXT_HEADER = "Lambda-Runtime-Client-Context"
COGNITO_IDENTITY_HEADER = "Lambda-Runtime-Cognito-Identity"
CONTENT_LENGTH_HEADER = "Content-Length"

FUNCTION_ERROR_TYPE_HEADER = "Lambda-Runtime-Function-Error-Type"
FUNCTION_RESPONSE_MODE_HEADER = "Lambda-Runtime-Function-Response-Mode"
STREAMING_RESPONSE_MODE = "streaming"

APPLICATION_JSON = "application/json"
