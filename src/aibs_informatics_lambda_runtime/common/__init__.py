"""Common runtime components.

Provides the handler base classes and resolver, the invocation context,
the runtime environment, error marshaling and logging.
"""
