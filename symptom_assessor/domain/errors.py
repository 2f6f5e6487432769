from typing import Optional


class AssessmentError(Exception):
    """Base class for every error raised by the assessment core."""


class ConfigurationError(AssessmentError):
    """No usable provider credential; the workflow cannot start."""


class SchemaViolation(AssessmentError):
    """Provider output is missing a required field or has the wrong shape."""


class ProviderError(AssessmentError):
    """Transport-level failure talking to the inference provider."""


class InferenceUnavailable(AssessmentError):
    """All attempts for an inference operation failed. The caller may retry."""

    def __init__(self, operation: str, attempts: int, last_error: Optional[BaseException] = None):
        self.operation = operation
        self.attempts = attempts
        self.last_error = last_error
        detail = f": {last_error}" if last_error else ""
        super().__init__(f"Inference '{operation}' unavailable after {attempts} attempt(s){detail}")


class StaleResultDiscarded(AssessmentError):
    """The session was reset while an inference call was in flight."""


class InvalidTransition(AssessmentError):
    """A transition was requested from a state that does not permit it."""


class SessionBusy(InvalidTransition):
    """Another transition is still waiting on the provider."""
