"""AIBS Informatics AWS Lambda custom runtime.

Provides a Runtime API client loop that polls for invocations, dispatches
them to a user handler in buffered or streaming mode and reports results
and errors back to AWS Lambda.
"""
