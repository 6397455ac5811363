import os
from unittest import mock

import pytest


@pytest.fixture(scope="function")
def runtime_environment_fixture():
    """Set the variables the Lambda service sets for a custom runtime and
    avoid accidentally reaching a live Runtime API.
    """
    # Clear os.environ dict (will be restored after fixture is finished)
    with mock.patch.dict(os.environ, clear=True):
        os.environ["AWS_LAMBDA_RUNTIME_API"] = "127.0.0.1:9001"
        os.environ["AWS_LAMBDA_FUNCTION_NAME"] = "test-function"
        os.environ["AWS_LAMBDA_FUNCTION_VERSION"] = "$LATEST"
        os.environ["AWS_LAMBDA_FUNCTION_MEMORY_SIZE"] = "512"
        os.environ["AWS_REGION"] = "us-west-2"
        os.environ["AWS_DEFAULT_REGION"] = "us-west-2"
        yield
