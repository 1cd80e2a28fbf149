"""
Typed exception hierarchy for the accreditation kernel.

Every error has a typed class (catch by type, never by message), a ``code``
class attribute (machine-readable, API-safe) and structured attributes
carrying the data a caller needs to report it.

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    AcreditaError (base)
    |
    +-- WorkflowError
    |   +-- InvalidStateError
    |   |   +-- InvalidTransitionError
    |   +-- RequestNotFoundError
    |   +-- DuplicateActiveRequestError
    |
    +-- ValidationError
    |
    +-- AuthorizationError
    |   +-- UnauthorizedActionError
    |
    +-- CredentialError
    |   +-- CredentialNotFoundError
    |   +-- RetryLimitExceededError
    |   +-- GenerationFailure
    |
    +-- PrintBatchError
    |   +-- EmptyBatchError
    |   +-- NotReadyError
    |   +-- PrintBatchNotFoundError
    |   +-- BatchNotRetryableError
    |   +-- RaceConditionError
    |
    +-- StorageError
    |   +-- BlobNotFoundError
    |
    +-- JobError
    |   +-- JobTypeNotRegisteredError
    |
    +-- ConfigurationError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category    | Code                      | When Raised
------------|---------------------------|--------------------------------------------
Workflow    | INVALID_STATE             | Operation needs a state the request is not in
            | INVALID_TRANSITION        | Transition not allowed from current status
            | REQUEST_NOT_FOUND         | Request id/uuid doesn't exist
            | DUPLICATE_ACTIVE_REQUEST  | Employee already has an active request
------------|---------------------------|--------------------------------------------
Input       | VALIDATION_ERROR          | Bad filter or input; lists offending fields
------------|---------------------------|--------------------------------------------
Auth        | UNAUTHORIZED_ACTION       | Authorization gate denied the action
------------|---------------------------|--------------------------------------------
Credential  | CREDENTIAL_NOT_FOUND      | Credential id doesn't exist
            | RETRY_LIMIT_EXCEEDED      | Failed credential hit the regenerate cap
            | GENERATION_FAILURE        | Renderer raised; recorded, never propagated
------------|---------------------------|--------------------------------------------
Print batch | EMPTY_BATCH               | No credential matches the filters
            | BATCH_NOT_READY           | Download before the batch is ready
            | PRINT_BATCH_NOT_FOUND     | Batch id/uuid doesn't exist
            | BATCH_NOT_RETRYABLE       | Retry requested on a non-failed batch
            | RACE_CONDITION            | Stamp collided with a concurrent batch
------------|---------------------------|--------------------------------------------
Jobs        | JOB_TYPE_NOT_REGISTERED   | Worker found a job with no handler
------------|---------------------------|--------------------------------------------
Config      | CONFIGURATION_ERROR       | Invalid configuration value
"""

from typing import Any


class AcreditaError(Exception):
    """
    Base exception for all accreditation errors.

    All subclasses carry a ``code`` class attribute.
    """

    code: str = "ACREDITA_ERROR"


# Workflow / state machine


class WorkflowError(AcreditaError):
    """Base exception for request lifecycle errors."""

    code: str = "WORKFLOW_ERROR"


class InvalidStateError(WorkflowError):
    """The request is not in a state that allows the operation."""

    code: str = "INVALID_STATE"

    def __init__(self, request_id: str, current_status: str, operation: str):
        self.request_id = request_id
        self.current_status = current_status
        self.operation = operation
        super().__init__(
            f"Cannot {operation} request {request_id} in status '{current_status}'"
        )


class InvalidTransitionError(InvalidStateError):
    """The requested transition is not an edge of the lifecycle graph."""

    code: str = "INVALID_TRANSITION"

    def __init__(
        self,
        request_id: str,
        current_status: str,
        target_status: str,
        operation: str,
    ):
        self.target_status = target_status
        super().__init__(request_id, current_status, operation)
        self.args = (
            f"Invalid transition for request {request_id}: "
            f"'{current_status}' -> '{target_status}' ({operation})",
        )


class RequestNotFoundError(WorkflowError):
    """Accreditation request was not found."""

    code: str = "REQUEST_NOT_FOUND"

    def __init__(self, request_ref: str):
        self.request_ref = request_ref
        super().__init__(f"Accreditation request not found: {request_ref}")


class DuplicateActiveRequestError(WorkflowError):
    """Employee already holds an active request for the event."""

    code: str = "DUPLICATE_ACTIVE_REQUEST"

    def __init__(self, employee_id: str, event_id: str, existing_request_id: str):
        self.employee_id = employee_id
        self.event_id = event_id
        self.existing_request_id = existing_request_id
        super().__init__(
            f"Employee {employee_id} already has active request "
            f"{existing_request_id} for event {event_id}"
        )


# Input validation


class ValidationError(AcreditaError):
    """
    Input failed validation.  ``field_errors`` maps each offending field to
    its messages; nothing was mutated.
    """

    code: str = "VALIDATION_ERROR"

    def __init__(self, field_errors: dict[str, list[str]]):
        self.field_errors = {k: list(v) for k, v in field_errors.items()}
        fields = ", ".join(sorted(self.field_errors))
        super().__init__(f"Validation failed for: {fields}")

    @property
    def fields(self) -> tuple[str, ...]:
        return tuple(sorted(self.field_errors))

    @classmethod
    def single(cls, field: str, message: str) -> "ValidationError":
        return cls({field: [message]})


# Authorization


class AuthorizationError(AcreditaError):
    """Base exception for authorization failures."""

    code: str = "AUTHORIZATION_ERROR"


class UnauthorizedActionError(AuthorizationError):
    """The authorization gate denied the action."""

    code: str = "UNAUTHORIZED_ACTION"

    def __init__(self, actor_id: str, action: str, entity_ref: str):
        self.actor_id = actor_id
        self.action = action
        self.entity_ref = entity_ref
        super().__init__(f"Actor {actor_id} may not perform '{action}' on {entity_ref}")


# Credentials


class CredentialError(AcreditaError):
    """Base exception for credential errors."""

    code: str = "CREDENTIAL_ERROR"


class CredentialNotFoundError(CredentialError):
    """Credential was not found."""

    code: str = "CREDENTIAL_NOT_FOUND"

    def __init__(self, credential_ref: str):
        self.credential_ref = credential_ref
        super().__init__(f"Credential not found: {credential_ref}")


class RetryLimitExceededError(CredentialError):
    """A failed credential reached the regenerate cap."""

    code: str = "RETRY_LIMIT_EXCEEDED"

    def __init__(self, credential_id: str, retry_count: int, max_retries: int):
        self.credential_id = credential_id
        self.retry_count = retry_count
        self.max_retries = max_retries
        super().__init__(
            f"Credential {credential_id} failed {retry_count} times "
            f"(max {max_retries}); use force to regenerate"
        )


class GenerationFailure(CredentialError):
    """
    Rendering a credential failed.

    Recorded on the credential row by the generator; never propagated to the
    approval that scheduled it.
    """

    code: str = "GENERATION_FAILURE"

    def __init__(self, credential_id: str, reason: str):
        self.credential_id = credential_id
        self.reason = reason
        super().__init__(f"Credential {credential_id} generation failed: {reason}")


# Print batches


class PrintBatchError(AcreditaError):
    """Base exception for print-batch errors."""

    code: str = "PRINT_BATCH_ERROR"


class EmptyBatchError(PrintBatchError):
    """No credential matched the filters; no batch was created."""

    code: str = "EMPTY_BATCH"

    def __init__(self, filters: dict[str, Any]):
        self.filters = filters
        super().__init__("No credentials available for printing with the given filters")


class NotReadyError(PrintBatchError):
    """The batch artifact is not available for download."""

    code: str = "BATCH_NOT_READY"

    def __init__(self, batch_id: str, status: str):
        self.batch_id = batch_id
        self.status = status
        super().__init__(f"Print batch {batch_id} is not ready (status '{status}')")


class PrintBatchNotFoundError(PrintBatchError):
    """Print batch was not found."""

    code: str = "PRINT_BATCH_NOT_FOUND"

    def __init__(self, batch_ref: str):
        self.batch_ref = batch_ref
        super().__init__(f"Print batch not found: {batch_ref}")


class BatchNotRetryableError(PrintBatchError):
    """Only failed batches may be retried."""

    code: str = "BATCH_NOT_RETRYABLE"

    def __init__(self, batch_id: str, status: str):
        self.batch_id = batch_id
        self.status = status
        super().__init__(f"Print batch {batch_id} cannot be retried from status '{status}'")


class RaceConditionError(PrintBatchError):
    """
    The select-and-stamp lost against a concurrent batch.

    Raised internally on every lost attempt; escapes only after the
    configured number of re-selections.
    """

    code: str = "RACE_CONDITION"

    def __init__(self, expected: int, stamped: int, attempts: int):
        self.expected = expected
        self.stamped = stamped
        self.attempts = attempts
        super().__init__(
            f"Stamped {stamped} of {expected} selected credentials "
            f"after {attempts} attempt(s)"
        )


# Storage


class StorageError(AcreditaError):
    """Base exception for blob store errors."""

    code: str = "STORAGE_ERROR"


class BlobNotFoundError(StorageError):
    """No blob stored at the given path."""

    code: str = "BLOB_NOT_FOUND"

    def __init__(self, path: str):
        self.path = path
        super().__init__(f"Blob not found: {path}")


# Jobs


class JobError(AcreditaError):
    """Base exception for async job errors."""

    code: str = "JOB_ERROR"


class JobTypeNotRegisteredError(JobError):
    """No handler registered for the job type."""

    code: str = "JOB_TYPE_NOT_REGISTERED"

    def __init__(self, job_type: str, available: tuple[str, ...]):
        self.job_type = job_type
        self.available = available
        super().__init__(
            f"No handler registered for job type '{job_type}'. "
            f"Available: {list(available)}"
        )


# Configuration


class ConfigurationError(AcreditaError):
    """Configuration value is missing or invalid."""

    code: str = "CONFIGURATION_ERROR"

    def __init__(self, key: str, message: str):
        self.key = key
        super().__init__(f"Invalid configuration '{key}': {message}")
