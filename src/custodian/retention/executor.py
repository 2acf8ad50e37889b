"""Purge execution engine.

Runs one purge job with its disposal strategy. Every strategy works in
bounded batches: operate on up to ``batch_size`` eligible rows, append one
audit entry, pause briefly, repeat until a batch touches no rows.

A failing job is contained: its status becomes ``failed`` with the error
text kept on the job, and the run carries on with the next job.
"""

import asyncio
from collections.abc import Awaitable, Callable
from datetime import datetime, timedelta
from typing import Any, assert_never

import structlog

from custodian.config.settings import PurgeSettings
from custodian.core.exceptions import PurgeExecutionError
from custodian.db.store import RetentionStore, UpdateAction
from custodian.retention.sources import DataSourceRegistry
from custodian.retention.types import (
    DataSource,
    JobStatus,
    PurgeAction,
    PurgeJob,
    PurgeStrategy,
    utc_now,
)

logger = structlog.get_logger(__name__)

BatchStep = Callable[[], Awaitable[int]]


class CancellationToken:
    """Cooperative cancellation flag for a purge run.

    Checked between jobs and after each batch; a batch in flight always
    completes first.
    """

    def __init__(self) -> None:
        self._event = asyncio.Event()

    def cancel(self) -> None:
        """Request cancellation."""
        self._event.set()

    @property
    def cancelled(self) -> bool:
        """Whether cancellation was requested."""
        return self._event.is_set()


class PurgeExecutor:
    """Executes purge jobs against a retention store."""

    def __init__(
        self,
        store: RetentionStore,
        sources: DataSourceRegistry,
        settings: PurgeSettings | None = None,
    ):
        self.store = store
        self.sources = sources
        settings = settings or PurgeSettings()
        self.batch_pause = settings.batch_pause_seconds

    # -------------------------------------------------------------------------
    # Entry points
    # -------------------------------------------------------------------------

    async def execute(
        self,
        job: PurgeJob,
        tenant_id: str | None = None,
        cancellation: CancellationToken | None = None,
    ) -> PurgeJob:
        """Run a job's strategy to completion, failure or cancellation.

        Never raises for store failures; the job records them instead.
        """
        cutoff = utc_now() - timedelta(days=job.retention_days)

        async def work(source: DataSource) -> bool:
            return await self._dispatch(job, source, cutoff, tenant_id, cancellation)

        return await self._run(job, work)

    async def execute_grace_cleanup(
        self,
        job: PurgeJob,
        grace_period_days: int,
        tenant_id: str | None = None,
        cancellation: CancellationToken | None = None,
    ) -> PurgeJob:
        """Hard-delete rows soft-deleted longer ago than the grace period.

        Rows whose age column is still inside the job's retention period stay,
        whenever they were soft-deleted.
        """
        now = utc_now()
        cutoff = now - timedelta(days=grace_period_days)
        aged_before = now - timedelta(days=job.retention_days)

        async def work(source: DataSource) -> bool:
            marker = source.soft_delete_marker
            return await self._run_batches(
                job,
                PurgeAction.GRACE_CLEANUP_BATCH,
                lambda: self.store.delete_batch(
                    source,
                    cutoff,
                    job.batch_size,
                    tenant_id,
                    column_name=marker,
                    aged_before=aged_before,
                ),
                cancellation,
                marker_column=marker,
            )

        return await self._run(job, work)

    def simulate(self, job: PurgeJob) -> PurgeJob:
        """Dry run: mark the job completed as if every estimated row was processed."""
        job.status = JobStatus.COMPLETED
        job.started_at = job.completed_at = utc_now()
        job.processed_records = job.estimated_records
        job.record_batch(
            PurgeAction.DRY_RUN_SIMULATED,
            job.estimated_records,
            strategy=job.strategy.value,
        )
        return job

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    async def _run(self, job: PurgeJob, work: Callable[[DataSource], Awaitable[bool]]) -> PurgeJob:
        job.status = JobStatus.RUNNING
        job.started_at = utc_now()
        log = logger.bind(job_id=job.id, collection=job.collection, strategy=job.strategy.value)
        log.info("purge_job_started", estimated_records=job.estimated_records)

        try:
            source = self.sources.get(job.collection)
            if source is None:
                raise PurgeExecutionError(job.id, job.collection, "collection is not registered")
            finished = await work(source)
        except Exception as e:
            job.status = JobStatus.FAILED
            job.error = str(e)
            job.failed_records = job.shortfall
            job.completed_at = utc_now()
            log.error(
                "purge_job_failed",
                error_type=type(e).__name__,
                processed_records=job.processed_records,
                failed_records=job.failed_records,
            )
            return job

        job.status = JobStatus.COMPLETED if finished else JobStatus.CANCELLED
        job.completed_at = utc_now()
        log.info(
            "purge_job_finished",
            status=job.status.value,
            processed_records=job.processed_records,
            batches=len(job.audit_trail),
        )
        return job

    async def _run_batches(
        self,
        job: PurgeJob,
        action: PurgeAction,
        step: BatchStep,
        cancellation: CancellationToken | None,
        **details: Any,
    ) -> bool:
        """Repeat step until it affects zero rows.

        Returns:
            False if cancellation stopped the loop early
        """
        batch = 0
        while True:
            count = await step()
            if count == 0:
                return True

            batch += 1
            job.processed_records += count
            job.record_batch(action, count, batch=batch, **details)

            if cancellation is not None and cancellation.cancelled:
                logger.info("purge_job_interrupted", job_id=job.id, batches=batch)
                return False
            await asyncio.sleep(self.batch_pause)

    # -------------------------------------------------------------------------
    # Strategies
    # -------------------------------------------------------------------------

    async def _dispatch(
        self,
        job: PurgeJob,
        source: DataSource,
        cutoff: datetime,
        tenant_id: str | None,
        cancellation: CancellationToken | None,
    ) -> bool:
        match job.strategy:
            case PurgeStrategy.SOFT_DELETE:
                return await self._soft_delete(job, source, cutoff, tenant_id, cancellation)
            case PurgeStrategy.HARD_DELETE:
                return await self._hard_delete(job, source, cutoff, tenant_id, cancellation)
            case PurgeStrategy.ANONYMISE:
                return await self._anonymise(job, source, cutoff, tenant_id, cancellation)
            case PurgeStrategy.AGGREGATE_AND_DELETE:
                return await self._aggregate_and_delete(
                    job, source, cutoff, tenant_id, cancellation
                )
            case PurgeStrategy.ARCHIVE_AND_DELETE:
                return await self._archive_and_delete(job, source, cutoff, tenant_id, cancellation)
            case _:
                assert_never(job.strategy)

    async def _soft_delete(self, job, source, cutoff, tenant_id, cancellation) -> bool:
        return await self._run_batches(
            job,
            PurgeAction.SOFT_DELETE_BATCH,
            lambda: self.store.update_batch(
                source, UpdateAction.SOFT_DELETE, cutoff, job.batch_size, tenant_id
            ),
            cancellation,
        )

    async def _hard_delete(self, job, source, cutoff, tenant_id, cancellation) -> bool:
        if source.dependent_collections:
            logger.info(
                "purge_cascade_order",
                collection=source.collection,
                dependents=list(source.dependent_collections),
            )
        return await self._run_batches(
            job,
            PurgeAction.HARD_DELETE_BATCH,
            lambda: self.store.delete_batch(source, cutoff, job.batch_size, tenant_id),
            cancellation,
        )

    async def _anonymise(self, job, source, cutoff, tenant_id, cancellation) -> bool:
        if not source.pii_columns:
            logger.info("anonymise_without_pii_soft_deleting", collection=source.collection)
            return await self._soft_delete(job, source, cutoff, tenant_id, cancellation)

        return await self._run_batches(
            job,
            PurgeAction.ANONYMISE_BATCH,
            lambda: self.store.update_batch(
                source, UpdateAction.ANONYMISE, cutoff, job.batch_size, tenant_id
            ),
            cancellation,
            columns_anonymised=list(source.pii_columns),
        )

    async def _aggregate_and_delete(self, job, source, cutoff, tenant_id, cancellation) -> bool:
        if source.aggregation_target is None:
            logger.warning("aggregation_target_missing_hard_deleting", collection=source.collection)
            return await self._hard_delete(job, source, cutoff, tenant_id, cancellation)

        return await self._run_batches(
            job,
            PurgeAction.AGGREGATE_BATCH,
            lambda: self.store.upsert_aggregate(source, cutoff, job.batch_size, tenant_id),
            cancellation,
            target=source.aggregation_target,
        )

    async def _archive_and_delete(self, job, source, cutoff, tenant_id, cancellation) -> bool:
        if source.archive_target is None:
            logger.warning("archive_target_missing_hard_deleting", collection=source.collection)
            return await self._hard_delete(job, source, cutoff, tenant_id, cancellation)

        return await self._run_batches(
            job,
            PurgeAction.ARCHIVE_BATCH,
            lambda: self.store.copy_rows(source, cutoff, job.batch_size, tenant_id),
            cancellation,
            target=source.archive_target,
        )
