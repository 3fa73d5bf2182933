"""Playwright adapters for the battle engine."""

from .adapter import NetworkEventSource, PlaywrightProbe, translate_error
from .retry import ErrorClass, ErrorClassifier, RetryPolicy

__all__ = [
    "NetworkEventSource",
    "PlaywrightProbe",
    "translate_error",
    "ErrorClass",
    "ErrorClassifier",
    "RetryPolicy",
]
