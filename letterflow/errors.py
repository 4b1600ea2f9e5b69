"""
Error taxonomy for the letter workflow.

Every error raised by the workflow derives from ``LetterflowError`` so the
batch loop and the HTTP layer can catch one base class. Subclasses map to the
failure categories the pipeline distinguishes:

- ConfigurationError: bad or missing settings
- AuthenticationError: a collaborator rejected our credentials
- DataValidationError: malformed input (e.g. an incomplete mailing address)
- NotFoundError: a referenced entity is absent
- ServiceUnavailableError: a collaborator is unreachable or returned an error
- WorkflowError: a business rule was violated
- StorageError: approval queue I/O failed
- SerializationError / DeserializationError: persisted record corruption
"""
from typing import Optional


class LetterflowError(Exception):
    """Base class for all workflow errors"""

    category = "error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def __str__(self) -> str:
        return f"{self.category}: {self.message}"


class ConfigurationError(LetterflowError):
    category = "Configuration error"


class AuthenticationError(LetterflowError):
    category = "Authentication error"


class DataValidationError(LetterflowError):
    category = "Validation error"


class NotFoundError(LetterflowError):
    category = "Not found"


class ServiceUnavailableError(LetterflowError):
    category = "Service unavailable"


class PageLimitExceededError(ServiceUnavailableError):
    """Rendered document is longer than the template allows."""

    category = "Page limit exceeded"

    def __init__(self, page_count: int, limit: int = 1, message: Optional[str] = None):
        self.page_count = page_count
        self.limit = limit
        super().__init__(
            message or f"PDF has {page_count} pages, limit is {limit}"
        )


class WorkflowError(LetterflowError):
    category = "Workflow error"


class InvalidTransitionError(WorkflowError):
    """An approval record is not in the state a transition requires."""

    def __init__(self, approval_id, current_state, expected_state):
        self.approval_id = approval_id
        self.current_state = current_state
        self.expected_state = expected_state
        expected = getattr(expected_state, "value", expected_state)
        current = getattr(current_state, "value", current_state)
        super().__init__(
            f"Approval {approval_id} is in state {current}, expected {expected}"
        )


class WorkflowStepError(WorkflowError):
    """A pipeline step failed; carries the step label and whether the
    failure has already been reported to the CRM and the approval channel."""

    def __init__(self, step: str, cause: Exception, notified: bool = False):
        self.step = step
        self.cause = cause
        self.notified = notified
        super().__init__(f"Step {step} failed: {cause}")


class StorageError(LetterflowError):
    category = "IO error"


class SerializationError(LetterflowError):
    category = "Serialization error"


class DeserializationError(LetterflowError):
    category = "Deserialization error"


__all__ = [
    "LetterflowError",
    "ConfigurationError",
    "AuthenticationError",
    "DataValidationError",
    "NotFoundError",
    "ServiceUnavailableError",
    "PageLimitExceededError",
    "WorkflowError",
    "InvalidTransitionError",
    "WorkflowStepError",
    "StorageError",
    "SerializationError",
    "DeserializationError",
]
