from aws_lambda_powertools.utilities.typing import LambdaContext

CONTEXT_ATTR = "_context"


class HandlerMixins:
    """Mixin class providing common handler utilities.

    Provides access to the context of the invocation currently being
    processed and handler/service name utilities shared by handlers and
    the runtime loop.

    Attributes:
        context: The Lambda context object for the current invocation.
    """

    @property
    def context(self) -> LambdaContext:
        """Get the Lambda context for the current invocation.

        Returns:
            The Lambda context object.

        Raises:
            ValueError: If no invocation is currently being processed.
        """
        if getattr(self, CONTEXT_ATTR, None) is None:
            raise ValueError(f"{self.__class__.__name__} has no current invocation context")
        return getattr(self, CONTEXT_ATTR)

    @context.setter
    def context(self, value: LambdaContext):
        setattr(self, CONTEXT_ATTR, value)

    @classmethod
    def handler_name(cls) -> str:
        return cls.__name__

    @classmethod
    def service_name(cls) -> str:
        """Get the service name for logging.

        Returns:
            The class name as the service identifier.
        """
        return cls.__name__
