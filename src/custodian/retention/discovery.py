"""Purge candidate discovery.

For every policy, resolves the effective (tenant-overridden) policy, computes
its cutoff and estimates how many rows in each mapped collection have
outlived it. Only collections with a non-zero estimate become jobs.
"""

from collections.abc import Iterable
from datetime import datetime

import structlog
from sqlalchemy.exc import SQLAlchemyError

from custodian.core.exceptions import EstimationError
from custodian.db.store import RetentionStore, UpdateAction
from custodian.retention.overrides import TenantOverrideStore
from custodian.retention.policies import PolicyRegistry
from custodian.retention.sources import DataSourceRegistry
from custodian.retention.types import (
    DataSource,
    PurgeJob,
    PurgeStrategy,
    RetentionCategory,
    RetentionPolicy,
    utc_now,
)

logger = structlog.get_logger(__name__)


def pending_action(policy: RetentionPolicy, source: DataSource) -> UpdateAction | None:
    """In-place action whose marker excludes already-processed rows, if any.

    Soft-deleted and anonymised rows stay in the table; they are no longer
    eligible once their marker is set.
    """
    if policy.strategy is PurgeStrategy.SOFT_DELETE:
        return UpdateAction.SOFT_DELETE
    if policy.strategy is PurgeStrategy.ANONYMISE:
        return UpdateAction.ANONYMISE if source.pii_columns else UpdateAction.SOFT_DELETE
    return None


class DiscoveryEngine:
    """Builds the job list of one purge run."""

    def __init__(
        self,
        store: RetentionStore,
        policies: PolicyRegistry,
        sources: DataSourceRegistry,
        overrides: TenantOverrideStore,
    ):
        self.store = store
        self.policies = policies
        self.sources = sources
        self.overrides = overrides

    async def estimate(
        self,
        policy: RetentionPolicy,
        source: DataSource,
        tenant_id: str | None = None,
        now: datetime | None = None,
    ) -> int:
        """Count rows of source that have outlived policy.

        Raises:
            EstimationError: If the count fails (missing table, bad column, ...)
        """
        try:
            return await self.store.count(
                source,
                cutoff=policy.cutoff(now),
                tenant_id=tenant_id,
                pending=pending_action(policy, source),
            )
        except SQLAlchemyError as e:
            raise EstimationError(source.collection, str(e)) from e

    async def discover(
        self,
        tenant_id: str | None = None,
        categories: Iterable[RetentionCategory] | None = None,
    ) -> list[PurgeJob]:
        """Discover purge candidates.

        Args:
            tenant_id: Restrict to one tenant and apply its overrides
            categories: Restrict to these categories (all when None)

        Returns:
            One pending job per (policy, collection) with eligible rows
        """
        wanted = set(categories) if categories is not None else None
        now = utc_now()
        jobs: list[PurgeJob] = []

        for base in self.policies:
            if wanted is not None and base.category not in wanted:
                continue

            policy = self.overrides.effective_policy(tenant_id, base.id)
            for source in self.sources.sources_by_category(policy.category):
                try:
                    estimated = await self.estimate(policy, source, tenant_id, now)
                except EstimationError as e:
                    logger.warning(
                        "purge_estimate_failed",
                        collection=e.collection,
                        policy_id=policy.id,
                        reason=e.reason,
                    )
                    estimated = 0

                if estimated > 0:
                    jobs.append(
                        PurgeJob(
                            policy_id=policy.id,
                            category=policy.category,
                            collection=source.collection,
                            strategy=policy.strategy,
                            batch_size=policy.batch_size,
                            retention_days=policy.retention_days,
                            estimated_records=estimated,
                        )
                    )

        logger.info(
            "purge_discovery_complete",
            total_jobs=len(jobs),
            total_estimated_records=sum(j.estimated_records for j in jobs),
            tenant_id=tenant_id or "all",
        )
        return jobs
