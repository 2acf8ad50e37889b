"""Data retention service.

Operator-facing facade over the retention engine. Collaborators are
injected through the constructor; ``from_settings`` wires the production
stack (async engine, SQL store, webhook notice sender).

Usage:
    from custodian.retention.service import DataRetentionService

    service = DataRetentionService.from_settings()
    summary = await service.execute_purge_run(tenant_id="tenant-a", dry_run=False)
    dashboard = await service.get_dashboard(tenant_id="tenant-a")
"""

from collections.abc import Iterable
from typing import Any

import structlog
from sqlalchemy.exc import SQLAlchemyError

from custodian.config.settings import Settings, get_settings
from custodian.config.validation import validate_or_raise
from custodian.core.exceptions import AuditPersistenceError
from custodian.core.logging import LogContext, setup_logging
from custodian.db.config import create_engine
from custodian.db.models.audit import AuditEventType, AuditSeverity
from custodian.db.store import RetentionStore, SQLRetentionStore, UpdateAction
from custodian.retention.anonymizer import Pseudonymizer
from custodian.retention.compliance import ComplianceReporter
from custodian.retention.dashboard import DashboardReporter
from custodian.retention.dependencies import DependencyResolver
from custodian.retention.discovery import DiscoveryEngine, pending_action
from custodian.retention.erasure import ErasureHandler
from custodian.retention.executor import CancellationToken, PurgeExecutor
from custodian.retention.notices import GuardianNoticeSender, GuardianNotifier, WebhookNoticeSender
from custodian.retention.overrides import TenantOverrideStore
from custodian.retention.policies import PolicyRegistry
from custodian.retention.schedule import DEFAULT_SCHEDULE, RetentionSchedule, ScheduleTier
from custodian.retention.sources import DataSourceRegistry
from custodian.retention.types import (
    ErasureResult,
    GuardianNoticeResult,
    JobStatus,
    PolicyInfo,
    PurgeJob,
    PurgeRunSummary,
    RetentionCategory,
    RetentionDashboard,
    RetentionPolicy,
    ViolationSeverity,
    utc_now,
)

logger = structlog.get_logger(__name__)


class DataRetentionService:
    """Discovers, executes and certifies purge runs; handles erasure requests.

    Runs process their jobs sequentially in dependency order. Runs scoped
    to different tenants may overlap.
    """

    def __init__(
        self,
        store: RetentionStore,
        notice_sender: GuardianNoticeSender | None = None,
        settings: Settings | None = None,
        policies: PolicyRegistry | None = None,
        sources: DataSourceRegistry | None = None,
        overrides: TenantOverrideStore | None = None,
        schedule: RetentionSchedule = DEFAULT_SCHEDULE,
    ):
        self.settings = settings or get_settings()
        self.store = store
        self.policies = policies or PolicyRegistry()
        self.sources = sources or DataSourceRegistry()
        self.overrides = overrides or TenantOverrideStore(self.policies)
        self.schedule = schedule

        self.discovery = DiscoveryEngine(store, self.policies, self.sources, self.overrides)
        self.resolver = DependencyResolver(self.sources)
        self.executor = PurgeExecutor(store, self.sources, self.settings.purge)
        self.reporter = ComplianceReporter(store, self.policies)
        self.erasure = ErasureHandler(store, self.policies, self.sources)
        self.dashboard = DashboardReporter(
            store, self.policies, self.sources, self.overrides, self.discovery, self.settings.purge
        )
        self.notifier = GuardianNotifier(store, notice_sender) if notice_sender else None

        logger.info(
            "data_retention_service_initialized",
            policy_count=len(self.policies),
            source_count=len(self.sources),
        )

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> "DataRetentionService":
        """Build the production service from settings.

        Raises:
            ConfigurationError: If the settings fail validation
        """
        settings = settings or get_settings()
        setup_logging(settings=settings)
        validate_or_raise(settings)

        store = SQLRetentionStore(
            create_engine(settings),
            Pseudonymizer.from_settings(settings.purge),
            settings.purge,
        )
        sender = (
            WebhookNoticeSender.from_settings(settings)
            if settings.notification_webhook_url
            else None
        )
        return cls(store, notice_sender=sender, settings=settings)

    # -------------------------------------------------------------------------
    # Purge runs
    # -------------------------------------------------------------------------

    async def execute_purge_run(
        self,
        tenant_id: str | None = None,
        dry_run: bool | None = None,
        categories: Iterable[RetentionCategory] | None = None,
        cancellation: CancellationToken | None = None,
    ) -> PurgeRunSummary:
        """Discover, order, execute and certify one purge run.

        Job failures never raise; they surface as ``failed_jobs`` and
        ``total_records_failed`` on the summary. A dry run estimates only and
        leaves the store unchanged.

        Args:
            tenant_id: Restrict to one tenant (all tenants when None)
            dry_run: Simulate only (defaults to ``settings.purge.default_dry_run``)
            categories: Restrict to these categories
            cancellation: Token checked between jobs and batches

        Returns:
            The persisted run summary
        """
        if dry_run is None:
            dry_run = self.settings.purge.default_dry_run

        summary = PurgeRunSummary(tenant_id=tenant_id, dry_run=dry_run)
        log = logger.bind(run_id=summary.run_id, tenant_id=tenant_id or "all", dry_run=dry_run)
        log.info("purge_run_started")

        with LogContext(run_id=summary.run_id):
            jobs = self.resolver.order(await self.discovery.discover(tenant_id, categories))
            for job in jobs:
                if cancellation is not None and cancellation.cancelled:
                    job.status = JobStatus.CANCELLED
                    continue
                if dry_run:
                    self.executor.simulate(job)
                else:
                    await self.executor.execute(job, tenant_id, cancellation)

        self._summarize(summary, jobs)
        await self._persist(summary)
        if not dry_run:
            await self._record_run_event(summary, jobs, AuditEventType.DATA_RETENTION_APPLIED)

        log.info(
            "purge_run_completed",
            total_jobs=summary.total_jobs,
            failed_jobs=summary.failed_jobs,
            cancelled_jobs=summary.cancelled_jobs,
            total_records_purged=summary.total_records_purged,
            total_records_failed=summary.total_records_failed,
        )
        return summary

    async def run_scheduled_tier(
        self,
        tier: ScheduleTier,
        tenant_id: str | None = None,
        cancellation: CancellationToken | None = None,
    ) -> PurgeRunSummary:
        """Run the purge (or grace cleanup) for one cadence tier.

        Scheduled runs always mutate; they never use the dry-run default.
        """
        if tier is ScheduleTier.GRACE_CLEANUP:
            return await self.run_grace_cleanup(tenant_id, cancellation)

        entry = self.schedule.entry(tier)
        if not entry.enabled:
            logger.info("schedule_tier_disabled", tier=tier.value)
            return PurgeRunSummary(tenant_id=tenant_id, completed_at=utc_now())
        return await self.execute_purge_run(
            tenant_id, dry_run=False, categories=entry.categories, cancellation=cancellation
        )

    async def run_grace_cleanup(
        self,
        tenant_id: str | None = None,
        cancellation: CancellationToken | None = None,
    ) -> PurgeRunSummary:
        """Hard-delete soft-deleted rows whose grace period has elapsed.

        Covers the collections whose effective policy soft-deletes. A row goes
        only once both its retention period and its grace period have passed;
        collections under anonymising policies keep their rows.
        """
        summary = PurgeRunSummary(tenant_id=tenant_id)
        log = logger.bind(run_id=summary.run_id, tenant_id=tenant_id or "all")
        log.info("grace_cleanup_started")

        now = utc_now()
        jobs: list[tuple[PurgeJob, int]] = []
        for base in self.policies:
            policy = self.overrides.effective_policy(tenant_id, base.id)
            for source in self.sources.sources_by_category(policy.category):
                if pending_action(policy, source) is not UpdateAction.SOFT_DELETE:
                    continue
                try:
                    estimated = await self.store.count(
                        source,
                        cutoff=now - policy.grace_period,
                        tenant_id=tenant_id,
                        column_name=source.soft_delete_marker,
                        aged_before=policy.cutoff(now),
                    )
                except SQLAlchemyError as e:
                    log.warning(
                        "grace_cleanup_estimate_failed",
                        collection=source.collection,
                        error_type=type(e).__name__,
                    )
                    continue
                if estimated > 0:
                    job = PurgeJob(
                        policy_id=policy.id,
                        category=policy.category,
                        collection=source.collection,
                        strategy=policy.strategy,
                        batch_size=policy.batch_size,
                        retention_days=policy.retention_days,
                        estimated_records=estimated,
                    )
                    jobs.append((job, policy.grace_period_days))

        ordered = self.resolver.order([job for job, _ in jobs])
        grace_days = {job.id: days for job, days in jobs}
        with LogContext(run_id=summary.run_id):
            for job in ordered:
                if cancellation is not None and cancellation.cancelled:
                    job.status = JobStatus.CANCELLED
                    continue
                await self.executor.execute_grace_cleanup(
                    job, grace_days[job.id], tenant_id, cancellation
                )

        self._summarize(summary, ordered)
        await self._persist(summary)
        await self._record_run_event(summary, ordered, AuditEventType.DATA_GRACE_CLEANUP)
        log.info(
            "grace_cleanup_completed",
            total_jobs=summary.total_jobs,
            total_records_purged=summary.total_records_purged,
        )
        return summary

    def _summarize(self, summary: PurgeRunSummary, jobs: list[PurgeJob]) -> None:
        summary.total_jobs = len(jobs)
        summary.completed_jobs = sum(1 for j in jobs if j.status is JobStatus.COMPLETED)
        summary.failed_jobs = sum(1 for j in jobs if j.status is JobStatus.FAILED)
        summary.cancelled_jobs = sum(1 for j in jobs if j.status is JobStatus.CANCELLED)
        summary.total_records_purged = sum(j.processed_records for j in jobs)
        summary.total_records_failed = sum(j.failed_records for j in jobs)
        summary.category_summaries = self.reporter.summarize_categories(jobs)
        summary.compliance_report = self.reporter.generate_report(jobs)
        summary.completed_at = utc_now()

    async def _persist(self, summary: PurgeRunSummary) -> None:
        try:
            await self.reporter.persist(summary)
        except AuditPersistenceError as e:
            logger.error("purge_audit_persist_failed", run_id=e.run_id, reason=e.reason)

    async def _record_run_event(
        self,
        summary: PurgeRunSummary,
        jobs: list[PurgeJob],
        event_type: AuditEventType,
    ) -> None:
        report = summary.compliance_report
        if report.all_policies_enforced:
            severity = AuditSeverity.INFO
        elif any(v.severity is ViolationSeverity.CRITICAL for v in report.violations):
            severity = AuditSeverity.ERROR
        else:
            severity = AuditSeverity.WARNING
        await self._audit(
            event_type,
            event_data={
                "run_id": summary.run_id,
                "total_jobs": summary.total_jobs,
                "failed_jobs": summary.failed_jobs,
                "cancelled_jobs": summary.cancelled_jobs,
                "total_records_purged": summary.total_records_purged,
                "total_records_failed": summary.total_records_failed,
                "categories": [c.value for c in summary.category_summaries],
                "jobs": [
                    {
                        "job_id": job.id,
                        "collection": job.collection,
                        "status": job.status.value,
                        "audit_trail": [entry.to_dict() for entry in job.audit_trail],
                    }
                    for job in jobs
                ],
            },
            severity=severity,
            tenant_id=summary.tenant_id,
            actor_id="system",
            resource_type="purge_run",
            resource_id=summary.run_id,
        )

    async def _audit(self, event_type: AuditEventType, **kwargs: Any) -> None:
        try:
            await self.store.record_audit_event(event_type, **kwargs)
        except SQLAlchemyError as e:
            logger.error(
                "audit_event_write_failed",
                event_type=event_type.value,
                error_type=type(e).__name__,
            )

    # -------------------------------------------------------------------------
    # Erasure and notices
    # -------------------------------------------------------------------------

    async def process_erasure(
        self,
        tenant_id: str,
        user_id: str,
        reason: str,
        requested_by: str = "system",
    ) -> ErasureResult:
        """Erase one subject's data.

        Raises:
            ErasureFailedError: With partial counts; safe to retry
        """
        return await self.erasure.process_erasure(tenant_id, user_id, requested_by, reason)

    async def notify_guardian(
        self,
        tenant_id: str,
        subject_id: str,
        policies: Iterable[RetentionPolicy] | None = None,
    ) -> GuardianNoticeResult:
        """Notify a learner's guardian about scheduled removal.

        Args:
            tenant_id: Tenant owning the learner
            subject_id: Learner user id
            policies: Policies to notify about (effective policies of the tenant by default)

        Raises:
            GuardianNoticeError: If no contact exists or delivery fails
            RuntimeError: If no notice sender is configured
        """
        if self.notifier is None:
            raise RuntimeError("No guardian notice sender configured")
        if policies is None:
            policies = [self.overrides.effective_policy(tenant_id, p.id) for p in self.policies]
        return await self.notifier.notify_guardian(tenant_id, subject_id, policies)

    # -------------------------------------------------------------------------
    # Policies, overrides, schedule, dashboard
    # -------------------------------------------------------------------------

    def list_policies(self) -> list[PolicyInfo]:
        """Describe every registered policy."""
        return [
            PolicyInfo(
                id=p.id,
                category=p.category,
                retention_days=p.retention_days,
                strategy=p.strategy,
                frameworks=list(p.frameworks),
                tenant_overridable=p.tenant_overridable,
                description=p.description,
            )
            for p in self.policies
        ]

    async def set_override(
        self,
        policy_id: str,
        tenant_id: str,
        retention_days: int | None = None,
        grace_period_days: int | None = None,
    ) -> RetentionPolicy:
        """Set a tenant override and record it in the audit log.

        Raises:
            PolicyNotFoundError: If the policy id is unknown
            OverrideValidationError: If the override is rejected
        """
        effective = await self.overrides.set_override(
            tenant_id, policy_id, retention_days, grace_period_days
        )
        await self._audit(
            AuditEventType.POLICY_OVERRIDDEN,
            event_data={
                "policy_id": policy_id,
                "retention_days": retention_days,
                "grace_period_days": grace_period_days,
                "effective_retention_days": effective.retention_days,
            },
            tenant_id=tenant_id,
            resource_type="retention_policy",
            resource_id=policy_id,
        )
        return effective

    def get_schedule(self) -> RetentionSchedule:
        """The cadence tiers of the engine."""
        return self.schedule

    async def get_dashboard(self, tenant_id: str | None = None) -> RetentionDashboard:
        """Current total/expired counts per policy."""
        return await self.dashboard.get_dashboard(tenant_id)
