"""Core exceptions for the retention and purge engine."""

from typing import Any

from custodian.utils.exceptions import CustodianError


class RetentionValidationError(CustodianError):
    """Raised when a request is rejected before any mutation begins.

    Attributes:
        code: Machine-readable rejection code
        details: Structured context for the rejection
    """

    def __init__(
        self,
        message: str,
        code: str = "validation_failed",
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message)
        self.code = code
        self.details = details or {}

    def __str__(self) -> str:
        return f"{type(self).__name__}({self.code}): {self.args[0]}"


class OverrideValidationError(RetentionValidationError):
    """Raised when a tenant override falls outside the policy's regulatory bounds.

    Attributes:
        tenant_id: Tenant that requested the override
        policy_id: Policy the override targets
    """

    def __init__(
        self,
        message: str,
        code: str,
        tenant_id: str,
        policy_id: str,
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message, code=code, details=details)
        self.tenant_id = tenant_id
        self.policy_id = policy_id


class PolicyNotFoundError(RetentionValidationError):
    """Raised when a policy id is not registered.

    Attributes:
        policy_id: The identifier that was not found
    """

    def __init__(self, policy_id: str):
        super().__init__(f"Policy not found: {policy_id}", code="policy_not_found")
        self.policy_id = policy_id


class EstimationError(CustodianError):
    """Raised when counting eligible records for a collection fails.

    Discovery treats this as a zero estimate for the affected collection.
    """

    def __init__(self, collection: str, reason: str):
        super().__init__(f"Estimate failed for {collection}: {reason}")
        self.collection = collection
        self.reason = reason


class PurgeExecutionError(CustodianError):
    """Raised when a purge job cannot complete.

    Contained at the job level; the text is kept on ``PurgeJob.error``.
    """

    def __init__(self, job_id: str, collection: str, reason: str):
        super().__init__(f"Purge of {collection} failed: {reason}")
        self.job_id = job_id
        self.collection = collection
        self.reason = reason


class AuditPersistenceError(CustodianError):
    """Raised when the audit artefact of a run cannot be written.

    The purge actions already taken are never rolled back.
    """

    def __init__(self, run_id: str, reason: str):
        super().__init__(f"Failed to persist audit record for run {run_id}: {reason}")
        self.run_id = run_id
        self.reason = reason


class ErasureFailedError(CustodianError):
    """Raised when an erasure request fails part way through.

    Erasure is idempotent, so the request can be retried as-is. The counts
    describe what had been applied before the failure.

    Attributes:
        tenant_id: Tenant owning the data
        user_id: Subject of the erasure
        collection: Collection that failed
        tables_processed: Collections handled before the failure
        records_deleted: Rows deleted before the failure
        records_anonymised: Rows anonymised before the failure
    """

    def __init__(
        self,
        tenant_id: str,
        user_id: str,
        collection: str,
        reason: str,
        tables_processed: int = 0,
        records_deleted: int = 0,
        records_anonymised: int = 0,
    ):
        super().__init__(f"Erasure failed at {collection}: {reason}")
        self.code = "erasure_failed"
        self.tenant_id = tenant_id
        self.user_id = user_id
        self.collection = collection
        self.reason = reason
        self.tables_processed = tables_processed
        self.records_deleted = records_deleted
        self.records_anonymised = records_anonymised

    def __str__(self) -> str:
        return (
            f"ErasureFailedError: {self.args[0]} "
            f"(processed={self.tables_processed}, deleted={self.records_deleted}, "
            f"anonymised={self.records_anonymised})"
        )


class GuardianNoticeError(CustodianError):
    """Raised when a required guardian notice cannot be sent.

    Attributes:
        code: ``no_guardian_contact`` or ``notice_failed``
        subject_id: The data subject the notice concerns
    """

    def __init__(self, message: str, code: str, tenant_id: str, subject_id: str):
        super().__init__(message)
        self.code = code
        self.tenant_id = tenant_id
        self.subject_id = subject_id

    def __str__(self) -> str:
        return f"GuardianNoticeError({self.code}): {self.args[0]}"
