"""Compliance reporting for purge runs.

Turns a finished job list into a certification report and persists the run
summary. The report carries counts, collection names and category ids only.
"""

import structlog
from sqlalchemy.exc import SQLAlchemyError

from custodian.core.exceptions import AuditPersistenceError, PolicyNotFoundError
from custodian.db.store import RetentionStore
from custodian.retention.policies import PolicyRegistry
from custodian.retention.types import (
    CategoryPurgeSummary,
    ComplianceFramework,
    ComplianceReport,
    ComplianceViolation,
    JobStatus,
    PurgeJob,
    PurgeRunSummary,
    RetentionCategory,
    ViolationSeverity,
)

logger = structlog.get_logger(__name__)


class ComplianceReporter:
    """Generates and persists compliance artefacts."""

    def __init__(self, store: RetentionStore, policies: PolicyRegistry):
        self.store = store
        self.policies = policies

    def generate_report(self, jobs: list[PurgeJob]) -> ComplianceReport:
        """Build the certification report for a run.

        Every failed job yields one critical violation per framework of its
        policy, counting the records it left behind. A cancelled job that left
        expired records yields warning violations the same way. The run is
        certified only when there are no violations at all.
        """
        frameworks: dict[ComplianceFramework, None] = {}
        violations: list[ComplianceViolation] = []

        for job in jobs:
            try:
                policy = self.policies.get(job.policy_id)
            except PolicyNotFoundError:
                logger.warning("compliance_unknown_policy", policy_id=job.policy_id)
                continue

            frameworks.update(dict.fromkeys(policy.frameworks))
            if job.status is JobStatus.FAILED:
                severity = ViolationSeverity.CRITICAL
                description = f"Failed to purge {job.collection}: {job.error}"
            elif job.status is JobStatus.CANCELLED and job.shortfall > 0:
                severity = ViolationSeverity.WARNING
                description = f"Purge of {job.collection} cancelled with expired records remaining"
            else:
                continue

            for framework in policy.frameworks:
                violations.append(
                    ComplianceViolation(
                        framework=framework,
                        policy_id=job.policy_id,
                        description=description,
                        severity=severity,
                        affected_record_count=job.shortfall,
                    )
                )

        all_enforced = not violations
        if not all_enforced:
            logger.warning(
                "compliance_violations_found",
                violation_count=len(violations),
                frameworks=sorted({v.framework.value for v in violations}),
            )

        return ComplianceReport(
            frameworks=list(frameworks),
            all_policies_enforced=all_enforced,
            violations=violations,
        )

    @staticmethod
    def summarize_categories(
        jobs: list[PurgeJob],
    ) -> dict[RetentionCategory, CategoryPurgeSummary]:
        """Per-category totals over a run's jobs."""
        summaries: dict[RetentionCategory, CategoryPurgeSummary] = {}
        for job in jobs:
            summary = summaries.setdefault(
                job.category,
                CategoryPurgeSummary(category=job.category, strategy=job.strategy),
            )
            if job.collection not in summary.collections:
                summary.collections.append(job.collection)
            summary.records_purged += job.processed_records
            summary.records_failed += job.failed_records
        return summaries

    async def persist(self, summary: PurgeRunSummary) -> None:
        """Write the run summary to durable storage.

        Raises:
            AuditPersistenceError: If the store rejects the write
        """
        try:
            await self.store.record_run_summary(summary)
        except SQLAlchemyError as e:
            raise AuditPersistenceError(summary.run_id, str(e)) from e
        logger.debug("purge_audit_persisted", run_id=summary.run_id)
