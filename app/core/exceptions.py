"""Domain exceptions shared by workflows, services and queue workers.

Workers use :func:`is_retryable` to decide whether a failed job is retried
with backoff or moved straight to the failed state.
"""

from typing import Any, Optional


class WorkflowError(Exception):
    """Base class for every error raised by the backend."""

    status_code = 500

    def __init__(self, message: str, details: Optional[dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"error": type(self).__name__, "detail": self.message}
        if self.details:
            payload["context"] = self.details
        return payload


class InvalidPayloadError(WorkflowError):
    """Missing or malformed input (job payloads, review fields)."""

    status_code = 422


class NotFoundError(WorkflowError):
    status_code = 404

    def __init__(self, entity: str, identifier: Any):
        super().__init__(f"{entity} not found", {"entity": entity, "id": str(identifier)})
        self.entity = entity
        self.identifier = identifier


class PermissionDeniedError(WorkflowError):
    status_code = 403


class InvalidTransitionError(WorkflowError):
    """A state machine rejected the requested transition."""

    status_code = 409


class DuplicateEntityError(WorkflowError):
    status_code = 409


class UnsupportedDatabaseError(WorkflowError):
    """The configured database cannot run an operation (e.g. no atomic upsert)."""


class CollaboratorError(WorkflowError):
    """An external collaborator (AI, storage, email, SMS) failed."""

    status_code = 502


class AIResponseFormatError(CollaboratorError):
    pass


class StorageError(CollaboratorError):
    pass


class EmailDeliveryError(CollaboratorError):
    pass


class SmsDeliveryError(CollaboratorError):
    pass


class QueueError(WorkflowError):
    status_code = 400


class QueueNotRegisteredError(QueueError):
    status_code = 404


class JobNotFoundError(QueueError):
    status_code = 404


class JobStateError(QueueError):
    """Operator action not allowed in the job's current state."""

    status_code = 409


class JobLockError(QueueError):
    """The job lock was lost to another worker."""

    status_code = 409


NON_RETRYABLE_ERRORS = (
    InvalidPayloadError,
    NotFoundError,
    PermissionDeniedError,
    InvalidTransitionError,
    DuplicateEntityError,
    UnsupportedDatabaseError,
)


def is_retryable(exc: BaseException) -> bool:
    """Return True when a failed job should be retried with backoff."""
    return not isinstance(exc, NON_RETRYABLE_ERRORS)
