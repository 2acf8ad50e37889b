"""Read-only retention dashboard."""

import structlog
from sqlalchemy.exc import SQLAlchemyError

from custodian.config.settings import PurgeSettings
from custodian.core.exceptions import EstimationError
from custodian.db.store import RetentionStore
from custodian.retention.discovery import DiscoveryEngine
from custodian.retention.overrides import TenantOverrideStore
from custodian.retention.policies import PolicyRegistry
from custodian.retention.schedule import next_scheduled_purge
from custodian.retention.sources import DataSourceRegistry
from custodian.retention.types import (
    ComplianceStatus,
    PolicyStatus,
    RetentionDashboard,
    utc_now,
)

logger = structlog.get_logger(__name__)


class DashboardReporter:
    """Summarises total and expired record counts per policy.

    Collections that cannot be counted (not yet created, for example)
    contribute zero.
    """

    def __init__(
        self,
        store: RetentionStore,
        policies: PolicyRegistry,
        sources: DataSourceRegistry,
        overrides: TenantOverrideStore,
        discovery: DiscoveryEngine,
        settings: PurgeSettings | None = None,
    ):
        self.store = store
        self.policies = policies
        self.sources = sources
        self.overrides = overrides
        self.discovery = discovery
        self.settings = settings or PurgeSettings()

    async def get_dashboard(self, tenant_id: str | None = None) -> RetentionDashboard:
        """Build the dashboard, applying the tenant's overrides when scoped."""
        now = utc_now()
        statuses: list[PolicyStatus] = []

        for base in self.policies:
            policy = self.overrides.effective_policy(tenant_id, base.id)
            total = expired = 0

            for source in self.sources.sources_by_category(policy.category):
                try:
                    source_expired = await self.discovery.estimate(policy, source, tenant_id, now)
                    source_total = await self.store.count(source, tenant_id=tenant_id)
                except (EstimationError, SQLAlchemyError):
                    logger.debug("dashboard_count_skipped", collection=source.collection)
                    continue
                expired += source_expired
                total += source_total

            statuses.append(
                PolicyStatus(
                    policy_id=policy.id,
                    category=policy.category,
                    retention_days=policy.retention_days,
                    strategy=policy.strategy,
                    total_records=total,
                    expired_records=expired,
                    compliance_status=(
                        ComplianceStatus.COMPLIANT if expired == 0
                        else ComplianceStatus.ACTION_NEEDED
                    ),
                    frameworks=list(policy.frameworks),
                )
            )

        overall = (
            ComplianceStatus.COMPLIANT
            if all(s.compliance_status is ComplianceStatus.COMPLIANT for s in statuses)
            else ComplianceStatus.ACTION_NEEDED
        )
        return RetentionDashboard(
            generated_at=now,
            tenant_id=tenant_id or "all",
            policies=statuses,
            total_expired_records=sum(s.expired_records for s in statuses),
            overall_compliance=overall,
            next_scheduled_purge=next_scheduled_purge(now, self.settings.next_purge_hour),
        )
