"""Error hierarchy for refstore.

Error layers:
- RefstoreError: Base class for all refstore errors
- DomainError: Business rule violations, illegal state transitions, idempotency conflicts
- InfrastructureError: System-level failures like storage/network/parse issues

Per-record and per-batch failures are recorded on rows instead of raised; only the
conditions below escape the orchestrators.
"""


class RefstoreError(Exception):
    """Base class for all refstore errors."""

    def __init__(self, message: str, code: str | None = None) -> None:
        self.message = message
        self.code = code or self.__class__.__name__
        super().__init__(message)


# =============================================================================
# Domain Errors
# =============================================================================


class DomainError(RefstoreError):
    """Base class for domain/business errors."""


class NotFoundError(DomainError):
    """Resource not found."""


class ValidationError(DomainError):
    """Input validation failed."""

    def __init__(self, message: str, field: str | None = None) -> None:
        super().__init__(message, code="VALIDATION_ERROR")
        self.field = field


class InvalidStateError(DomainError):
    """Operation not allowed in current state."""


class IllegalTransitionError(InvalidStateError):
    """A status change that the state machine does not allow.

    This is a programming-error-class failure and is never retried.
    """

    def __init__(self, entity: str, current: str, target: str) -> None:
        super().__init__(
            f"Illegal {entity} transition {current} -> {target}",
            code="ILLEGAL_TRANSITION",
        )
        self.current = current
        self.target = target


class JobCancelledError(InvalidStateError):
    """The job owning a work unit was cancelled."""


class LeaseLostError(InvalidStateError):
    """A worker no longer holds the lease on its work unit."""


class ConflictError(DomainError):
    """Resource already exists or version conflict."""


class AlreadyIngestedError(ConflictError):
    """A completed job already exists for this (organization, job_type, external_version)."""


# =============================================================================
# Infrastructure Errors
# =============================================================================


class InfrastructureError(RefstoreError):
    """Base class for infrastructure/system errors."""


class StorageUnavailableError(InfrastructureError):
    """Storage backend (database, object store) is unavailable."""


class ExternalServiceError(InfrastructureError):
    """External archive is unavailable or failed."""


class DiscoveryError(ExternalServiceError):
    """Listing releases failed, or the archive published a malformed version string."""


class DownloadError(ExternalServiceError):
    """Download failed after exhausting retries."""


class ChecksumMismatchError(InfrastructureError):
    """Computed checksum does not match the published one."""

    def __init__(self, subject: str, expected: str, computed: str) -> None:
        super().__init__(
            f"Checksum mismatch for {subject}: expected {expected}, got {computed}",
            code="CHECKSUM_MISMATCH",
        )
        self.expected = expected
        self.computed = computed


class ParseError(InfrastructureError):
    """The input stream could not be parsed at all."""


class ConfigurationError(InfrastructureError):
    """System misconfiguration detected."""


class AllStreamsFailedError(InfrastructureError):
    """Every stream of a parallel run failed."""

    def __init__(self, errors: dict[str, str]) -> None:
        super().__init__(f"All {len(errors)} streams failed", code="ALL_STREAMS_FAILED")
        self.errors = errors
