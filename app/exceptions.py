"""
Exception hierarchy for the survey runner.

    SurveyRunnerError
    ├── ConfigurationError
    ├── ProviderError
    ├── RunValidationError
    ├── RunLimitExceededError
    ├── RunNotFoundError
    └── InvalidRunStateError
"""

from typing import Optional


class SurveyRunnerError(Exception):
    """Base exception for all application errors."""


class ConfigurationError(SurveyRunnerError):
    """Missing credentials or an unknown provider key."""


class ProviderError(SurveyRunnerError):
    """
    An LLM provider call failed.

    Attributes:
        retryable: True for transient failures (rate limits, 5xx, timeouts)
        status_code: HTTP status returned by the provider, if any
    """

    def __init__(self, message: str, retryable: bool = False, status_code: Optional[int] = None):
        super().__init__(message)
        self.retryable = retryable
        self.status_code = status_code


class RunValidationError(SurveyRunnerError):
    """Run submission input is invalid (unknown survey, no questions, bad model ids)."""


class RunLimitExceededError(SurveyRunnerError):
    """Estimated tokens or cost exceed the configured per-run ceiling."""


class RunNotFoundError(SurveyRunnerError):
    """No run with the given id."""


class InvalidRunStateError(SurveyRunnerError):
    """Operation not allowed for the run's current status."""
