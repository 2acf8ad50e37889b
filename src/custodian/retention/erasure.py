"""Right-to-erasure requests for a single data subject.

Runs outside the scheduled cadence and acts directly on every registered
collection linked to the subject, honouring category exemptions:

- Payment records are retained under a legal obligation (GDPR Art. 17(3)(b));
  their PII columns are overwritten with the erasure marker.
- Security audit logs are retained under legitimate interest and left untouched.
- Collections whose policy anonymises have their PII overwritten and are
  marked anonymised.
- Everything else is deleted.

Repeating a request for an already-erased subject affects no rows.
"""

import structlog
from sqlalchemy.exc import SQLAlchemyError

from custodian.core.exceptions import ErasureFailedError
from custodian.db.models.audit import AuditEvent, AuditEventType, AuditSeverity
from custodian.db.store import ErasureAction, RetentionStore
from custodian.retention.dependencies import DependencyResolver
from custodian.retention.policies import PolicyRegistry
from custodian.retention.sources import DataSourceRegistry
from custodian.retention.types import (
    DataSource,
    ErasureResult,
    PurgeStrategy,
    RetentionCategory,
    RetentionPolicy,
)

logger = structlog.get_logger(__name__)

RETAINED_WITH_REDACTION = {RetentionCategory.PAYMENT_RECORDS}
RETAINED_UNTOUCHED = {RetentionCategory.SECURITY_AUDIT_LOGS}


class ErasureHandler:
    """Processes right-to-erasure requests."""

    def __init__(
        self,
        store: RetentionStore,
        policies: PolicyRegistry,
        sources: DataSourceRegistry,
    ):
        self.store = store
        self.policies = policies
        self.sources = sources
        self._resolver = DependencyResolver(sources)

    def _erasure_plan(self) -> list[tuple[DataSource, RetentionPolicy]]:
        plan = []
        ordered = self._resolver.order_collections([s.collection for s in self.sources])
        for collection in ordered:
            source = self.sources.get(collection)
            if source is None or source.subject_column is None:
                continue
            policies = self.policies.policies_by_category(source.category)
            if not policies:
                continue
            plan.append((source, policies[0]))
        return plan

    async def process_erasure(
        self,
        tenant_id: str,
        user_id: str,
        requested_by: str,
        reason: str,
    ) -> ErasureResult:
        """Erase one subject's data within a tenant.

        Args:
            tenant_id: Tenant owning the data
            user_id: Subject to erase
            requested_by: Operator or system that raised the request
            reason: Free-text reason recorded in the audit log

        Returns:
            Counts of collections processed and rows deleted, anonymised and retained

        Raises:
            ErasureFailedError: If a collection fails; carries the partial counts
        """
        log = logger.bind(tenant_id=tenant_id, requested_by=requested_by)
        log.info("erasure_requested")

        result = ErasureResult()
        for source, policy in self._erasure_plan():
            try:
                await self._erase_collection(source, policy, tenant_id, user_id, result)
            except SQLAlchemyError as e:
                log.error(
                    "erasure_failed",
                    collection=source.collection,
                    tables_processed=result.tables_processed,
                    error_type=type(e).__name__,
                )
                raise ErasureFailedError(
                    tenant_id,
                    user_id,
                    source.collection,
                    str(e),
                    tables_processed=result.tables_processed,
                    records_deleted=result.records_deleted,
                    records_anonymised=result.records_anonymised,
                ) from e
            result.tables_processed += 1

        try:
            await self.store.record_audit_event(
                AuditEventType.DATA_ERASED,
                event_data={**result.model_dump(), "reason": reason},
                severity=AuditSeverity.CRITICAL,
                tenant_id=tenant_id,
                actor_id=requested_by,
                subject_id=user_id,
                resource_type="user",
                resource_id=user_id,
            )
        except SQLAlchemyError as e:
            raise ErasureFailedError(
                tenant_id,
                user_id,
                AuditEvent.__tablename__,
                str(e),
                tables_processed=result.tables_processed,
                records_deleted=result.records_deleted,
                records_anonymised=result.records_anonymised,
            ) from e

        log.info("erasure_completed", **result.model_dump())
        return result

    async def _erase_collection(
        self,
        source: DataSource,
        policy: RetentionPolicy,
        tenant_id: str,
        user_id: str,
        result: ErasureResult,
    ) -> None:
        if source.category in RETAINED_UNTOUCHED:
            result.records_retained += await self.store.count_subject_rows(
                source, tenant_id, user_id
            )
            return

        if source.category in RETAINED_WITH_REDACTION:
            result.records_anonymised += await self.store.erase_subject_rows(
                source, tenant_id, user_id, ErasureAction.REDACT
            )
            result.records_retained += await self.store.count_subject_rows(
                source, tenant_id, user_id
            )
            return

        if policy.strategy is PurgeStrategy.ANONYMISE and source.pii_columns:
            result.records_anonymised += await self.store.erase_subject_rows(
                source, tenant_id, user_id, ErasureAction.REDACT_AND_MARK
            )
        else:
            result.records_deleted += await self.store.erase_subject_rows(
                source, tenant_id, user_id, ErasureAction.DELETE
            )
