"""Core services and utilities for Custodian."""

from .audit import AuditLogger
from .exceptions import (
    AuditPersistenceError,
    ErasureFailedError,
    EstimationError,
    GuardianNoticeError,
    OverrideValidationError,
    PolicyNotFoundError,
    PurgeExecutionError,
    RetentionValidationError,
)

__all__ = [
    # Audit
    "AuditLogger",
    # Exceptions
    "AuditPersistenceError",
    "ErasureFailedError",
    "EstimationError",
    "GuardianNoticeError",
    "OverrideValidationError",
    "PolicyNotFoundError",
    "PurgeExecutionError",
    "RetentionValidationError",
]
