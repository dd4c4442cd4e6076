"""
Error types shared by the evaluation pipeline.
"""

from typing import Optional


class EvaluatorError(Exception):
    """Base class for all evaluator errors."""


class ProviderError(EvaluatorError):
    """A remote embedding/generation call failed."""

    def __init__(
        self,
        message: str,
        operation: str,
        status_code: Optional[int] = None,
        retryable: bool = False,
    ):
        super().__init__(message)
        self.operation = operation
        self.status_code = status_code
        self.retryable = retryable


class MaxRetriesExceededError(ProviderError):
    """Transient failures used up the whole retry budget."""


class PermanentProviderError(ProviderError):
    """Bad request, auth or not-found style failure. Never retried."""


class CircuitOpenError(EvaluatorError):
    """The circuit breaker is open; the call was not attempted."""

    def __init__(self, failures: int):
        super().__init__(
            f"circuit breaker open: too many consecutive errors ({failures})"
        )
        self.failures = failures


class ResponseValidationError(EvaluatorError):
    """The provider answered, but the content is unusable."""


class DeadlineExceededError(EvaluatorError):
    """The caller's overall time budget ran out mid-operation."""


class IndexingError(EvaluatorError):
    """A reference document could not be embedded."""

    def __init__(self, document_id: str, cause: Exception):
        super().__init__(f"failed to index document {document_id}: {cause}")
        self.document_id = document_id
        self.cause = cause


class InvalidTransitionError(EvaluatorError):
    """A task in a terminal state was asked to change state."""


class TaskNotFoundError(EvaluatorError):
    """No evaluation task with the given ID."""


class DocumentNotFoundError(EvaluatorError):
    """No reference document with the given ID."""


def describe(error: BaseException, production: bool = False) -> str:
    """Error text for logs. Production only gets the error type."""
    if production:
        return type(error).__name__
    return f"{type(error).__name__}: {error}"
