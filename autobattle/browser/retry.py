"""Retry policy and error classification for page actions.

Implements:
- Error classification (navigation race vs. retryable vs. fatal)
- Exponential backoff with jitter
"""

import random
from dataclasses import dataclass
from enum import Enum


class ErrorClass(str, Enum):
    """Classification of page errors for retry logic."""

    NAVIGATION = "navigation"
    RETRYABLE = "retryable"
    NON_RETRYABLE = "non_retryable"


class ErrorClassifier:
    """Classifies page errors by message.

    Navigation races happen when a reload or redirect tears the document
    down mid-call; they are never retried because the element is gone.
    """

    NAVIGATION_PHRASES = (
        "execution context was destroyed",
        "target closed",
        "target page, context or browser has been closed",
        "session closed",
        "frame was detached",
        "navigating frame was detached",
        "net::err_aborted",
    )
    RETRYABLE_PHRASES = (
        "timeout",
        "element is not attached",
        "element is not visible",
        "element is not stable",
        "intercepts pointer events",
    )

    def classify(self, error: Exception) -> ErrorClass:
        message = str(error).lower()
        if any(phrase in message for phrase in self.NAVIGATION_PHRASES):
            return ErrorClass.NAVIGATION
        if any(phrase in message for phrase in self.RETRYABLE_PHRASES):
            return ErrorClass.RETRYABLE
        return ErrorClass.NON_RETRYABLE


@dataclass
class RetryPolicy:
    """Configurable retry policy for clicks."""

    max_retries: int = 2
    initial_backoff_ms: float = 250.0
    max_backoff_ms: float = 2000.0
    backoff_multiplier: float = 2.0
    jitter_factor: float = 0.1
    action_timeout_ms: int = 5000

    def calculate_backoff(self, attempt: int) -> float:
        """Calculate backoff time for a given attempt number.

        Args:
            attempt: The attempt number (0-based)

        Returns:
            Backoff time in milliseconds with jitter applied
        """
        backoff = min(
            self.initial_backoff_ms * (self.backoff_multiplier ** attempt),
            self.max_backoff_ms,
        )
        jitter = backoff * self.jitter_factor * random.random()
        return backoff + jitter
