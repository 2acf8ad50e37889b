"""Retention data store.

The closed set of parameterised operations the purge engine runs against the
multi-tenant store. Every statement is built with SQLAlchemy Core from a
registered ``DataSource``; no caller-supplied text ever reaches SQL, and
identifiers are quoted by the dialect.

Batches are bounded with ``pk IN (SELECT pk ... LIMIT n)`` so the same
statements run on PostgreSQL and SQLite.

Usage:
    from custodian.db.store import SQLRetentionStore

    store = SQLRetentionStore(engine, pseudonymizer)
    eligible = await store.count(source, cutoff=cutoff, tenant_id="tenant-a")
    removed = await store.delete_batch(source, cutoff, limit=500)
"""

from collections import Counter
from collections.abc import Callable
from datetime import UTC, date, datetime
from enum import Enum
from typing import Any, Protocol

import structlog
from sqlalchemy import (
    Date,
    DateTime,
    MetaData,
    Table,
    and_,
    bindparam,
    column,
    delete,
    func,
    insert,
    or_,
    select,
    table,
    update,
)
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine
from sqlalchemy.sql import ColumnElement, TableClause

from custodian.config.settings import PurgeSettings
from custodian.core.audit import AuditLogger
from custodian.db.config import create_session_factory
from custodian.db.models.audit import AuditEventType, AuditSeverity
from custodian.db.models.retention import RetentionAuditRecord
from custodian.retention.anonymizer import Pseudonymizer
from custodian.retention.types import (
    DataSource,
    GuardianContact,
    PurgeRunSummary,
    utc_now,
)

logger = structlog.get_logger(__name__)

GUARDIAN_PROFILE_TABLE = "LearnerProfile"
SUBJECT_TABLE = "User"


class UpdateAction(str, Enum):
    """In-place batch updates that keep the row."""

    SOFT_DELETE = "soft_delete"
    """Set the soft-delete marker on unmarked rows."""

    ANONYMISE = "anonymise"
    """Pseudonymize PII columns and set the anonymised marker."""


class ErasureAction(str, Enum):
    """How a subject's rows in one collection are erased."""

    DELETE = "delete"
    """Remove the rows."""

    REDACT = "redact"
    """Overwrite PII with the erasure marker, keep the rows."""

    REDACT_AND_MARK = "redact_and_mark"
    """Overwrite PII with the erasure marker and set the anonymised marker."""


class RetentionStore(Protocol):
    """Operations the retention engine needs from the data store.

    All operations accept an optional tenant scope; ``None`` means every
    tenant. Row-mutating operations return the number of rows affected.
    """

    async def count(
        self,
        source: DataSource,
        cutoff: datetime | None = None,
        tenant_id: str | None = None,
        column_name: str | None = None,
        pending: UpdateAction | None = None,
        aged_before: datetime | None = None,
    ) -> int: ...

    async def update_batch(
        self,
        source: DataSource,
        action: UpdateAction,
        cutoff: datetime,
        limit: int,
        tenant_id: str | None = None,
    ) -> int: ...

    async def delete_batch(
        self,
        source: DataSource,
        cutoff: datetime,
        limit: int,
        tenant_id: str | None = None,
        column_name: str | None = None,
        aged_before: datetime | None = None,
    ) -> int: ...

    async def upsert_aggregate(
        self,
        source: DataSource,
        cutoff: datetime,
        limit: int,
        tenant_id: str | None = None,
    ) -> int: ...

    async def copy_rows(
        self,
        source: DataSource,
        cutoff: datetime,
        limit: int,
        tenant_id: str | None = None,
    ) -> int: ...

    async def count_subject_rows(
        self, source: DataSource, tenant_id: str, subject_id: str
    ) -> int: ...

    async def erase_subject_rows(
        self,
        source: DataSource,
        tenant_id: str,
        subject_id: str,
        action: ErasureAction,
    ) -> int: ...

    async def fetch_guardian_contact(
        self, tenant_id: str, subject_id: str
    ) -> GuardianContact | None: ...

    async def record_run_summary(self, summary: PurgeRunSummary) -> None: ...

    async def record_audit_event(
        self,
        event_type: AuditEventType,
        event_data: dict[str, Any],
        severity: AuditSeverity = AuditSeverity.INFO,
        tenant_id: str | None = None,
        actor_id: str | None = None,
        subject_id: str | None = None,
        resource_type: str | None = None,
        resource_id: str | None = None,
    ) -> None: ...


class SQLRetentionStore:
    """SQLAlchemy Core implementation of ``RetentionStore``.

    Each mutating call runs in its own transaction. The aggregate and archive
    operations copy and delete one batch inside a single transaction, so a
    failure between the phases rolls both back.
    """

    def __init__(
        self,
        engine: AsyncEngine,
        pseudonymizer: Pseudonymizer | None = None,
        settings: PurgeSettings | None = None,
    ):
        self.engine = engine
        self._settings = settings or PurgeSettings()
        self._pseudonymizer = pseudonymizer or Pseudonymizer.from_settings(self._settings)
        self._session_factory = create_session_factory(engine)
        self._reflected: dict[str, Table] = {}

    # -------------------------------------------------------------------------
    # Statement building
    # -------------------------------------------------------------------------

    @staticmethod
    def _table(source: DataSource, *extra: str) -> TableClause:
        timestamp_columns = {source.age_column, source.soft_delete_marker, source.anonymized_column}
        names = dict.fromkeys(
            (source.primary_key, source.tenant_column, source.age_column, *extra)
        )
        return table(
            source.collection,
            *(
                column(name, DateTime(timezone=True)) if name in timestamp_columns else column(name)
                for name in names
            ),
        )

    @staticmethod
    def _tenant_filter(t: TableClause, source: DataSource, tenant_id: str | None) -> list:
        if tenant_id is None:
            return []
        return [t.c[source.tenant_column] == tenant_id]

    def _eligible(
        self,
        t: TableClause,
        source: DataSource,
        cutoff: datetime | None,
        tenant_id: str | None,
        column_name: str | None = None,
        pending: UpdateAction | None = None,
        aged_before: datetime | None = None,
    ) -> list[ColumnElement[bool]]:
        conditions = self._tenant_filter(t, source, tenant_id)
        if cutoff is not None:
            conditions.append(t.c[column_name or source.age_column] < cutoff)
        if aged_before is not None:
            conditions.append(t.c[source.age_column] < aged_before)
        if pending is UpdateAction.SOFT_DELETE:
            conditions.append(t.c[source.soft_delete_marker].is_(None))
        elif pending is UpdateAction.ANONYMISE:
            conditions.append(t.c[source.anonymized_column].is_(None))
        return conditions

    def _batch_ids(
        self,
        source: DataSource,
        conditions_for: Callable[[TableClause], list[ColumnElement[bool]]],
        limit: int,
    ):
        inner = self._table(
            source, source.soft_delete_marker, source.anonymized_column
        ).alias("batch")
        return (
            select(inner.c[source.primary_key])
            .where(*conditions_for(inner))
            .limit(limit)
        )

    async def _reflect(self, conn: AsyncConnection, name: str) -> Table:
        if name not in self._reflected:
            self._reflected[name] = await conn.run_sync(
                lambda sync_conn: Table(name, MetaData(), autoload_with=sync_conn)
            )
        return self._reflected[name]

    # -------------------------------------------------------------------------
    # Counting
    # -------------------------------------------------------------------------

    async def count(
        self,
        source: DataSource,
        cutoff: datetime | None = None,
        tenant_id: str | None = None,
        column_name: str | None = None,
        pending: UpdateAction | None = None,
        aged_before: datetime | None = None,
    ) -> int:
        """Count rows of a collection.

        Args:
            source: Collection to count
            cutoff: Only rows whose timestamp column is older than this (all rows if None)
            tenant_id: Restrict to one tenant
            column_name: Timestamp column compared with cutoff (the age column by default)
            pending: Exclude rows already processed by this update action
            aged_before: Additionally require the age column older than this

        Returns:
            Number of matching rows
        """
        t = self._table(
            source, column_name or source.age_column, source.soft_delete_marker,
            source.anonymized_column,
        )
        stmt = select(func.count()).select_from(t).where(
            *self._eligible(t, source, cutoff, tenant_id, column_name, pending, aged_before)
        )
        async with self.engine.connect() as conn:
            result = await conn.execute(stmt)
            return int(result.scalar_one())

    # -------------------------------------------------------------------------
    # Batch mutations
    # -------------------------------------------------------------------------

    async def update_batch(
        self,
        source: DataSource,
        action: UpdateAction,
        cutoff: datetime,
        limit: int,
        tenant_id: str | None = None,
    ) -> int:
        """Apply an in-place update to up to ``limit`` eligible, unprocessed rows.

        Returns:
            Rows updated (0 once nothing eligible remains)
        """
        if action is UpdateAction.ANONYMISE:
            return await self._anonymise_batch(source, cutoff, limit, tenant_id)

        marker = source.soft_delete_marker
        t = self._table(source, marker)
        ids = self._batch_ids(
            source,
            lambda inner: self._eligible(inner, source, cutoff, tenant_id, pending=action),
            limit,
        )
        stmt = (
            update(t)
            .where(t.c[source.primary_key].in_(ids))
            .values({marker: utc_now()})
        )
        async with self.engine.begin() as conn:
            result = await conn.execute(stmt)
            return result.rowcount

    async def _anonymise_batch(
        self,
        source: DataSource,
        cutoff: datetime,
        limit: int,
        tenant_id: str | None,
    ) -> int:
        t = self._table(source, source.anonymized_column, *source.pii_columns)
        pk = source.primary_key
        query = (
            select(t.c[pk], *(t.c[name] for name in source.pii_columns))
            .where(
                *self._eligible(t, source, cutoff, tenant_id, pending=UpdateAction.ANONYMISE)
            )
            .limit(limit)
        )

        async with self.engine.begin() as conn:
            rows = (await conn.execute(query)).mappings().all()
            if not rows:
                return 0

            now = utc_now()
            params = []
            for row in rows:
                values = {"b_pk": row[pk], "b_anonymised_at": now}
                for i, name in enumerate(source.pii_columns):
                    values[f"b_{i}"] = self._pseudonymizer.pseudonymize(row[name])
                params.append(values)

            stmt = (
                update(t)
                .where(t.c[pk] == bindparam("b_pk"))
                .values(
                    {
                        source.anonymized_column: bindparam("b_anonymised_at"),
                        **{
                            name: bindparam(f"b_{i}")
                            for i, name in enumerate(source.pii_columns)
                        },
                    }
                )
            )
            await conn.execute(stmt, params)
            return len(rows)

    async def delete_batch(
        self,
        source: DataSource,
        cutoff: datetime,
        limit: int,
        tenant_id: str | None = None,
        column_name: str | None = None,
        aged_before: datetime | None = None,
    ) -> int:
        """Delete up to ``limit`` rows whose timestamp column is older than cutoff.

        ``column_name`` selects the compared column; grace cleanup passes the
        soft-delete marker so only rows soft-deleted before cutoff go, and
        ``aged_before`` so rows still inside their retention period stay.

        Returns:
            Rows deleted (0 once nothing eligible remains)
        """
        t = self._table(source)
        ids = self._batch_ids(
            source,
            lambda inner: self._eligible(
                inner, source, cutoff, tenant_id, column_name, aged_before=aged_before
            ),
            limit,
        )
        async with self.engine.begin() as conn:
            result = await conn.execute(delete(t).where(t.c[source.primary_key].in_(ids)))
            return result.rowcount

    async def upsert_aggregate(
        self,
        source: DataSource,
        cutoff: datetime,
        limit: int,
        tenant_id: str | None = None,
    ) -> int:
        """Roll one batch into daily per-tenant counts, then delete it.

        Buckets in the aggregation target are keyed by (tenant, date) and
        accumulate ``recordCount``. Both phases share one transaction.

        Returns:
            Detail rows aggregated and deleted
        """
        if source.aggregation_target is None:
            raise ValueError(f"{source.collection} has no aggregation target")

        t = self._table(source)
        pk = source.primary_key
        query = (
            select(t.c[pk], t.c[source.tenant_column], t.c[source.age_column])
            .where(*self._eligible(t, source, cutoff, tenant_id))
            .limit(limit)
        )

        async with self.engine.begin() as conn:
            rows = (await conn.execute(query)).all()
            if not rows:
                return 0

            buckets: Counter[tuple[Any, date]] = Counter(
                (tenant, _utc_date(recorded_at)) for _, tenant, recorded_at in rows
            )
            target = table(
                source.aggregation_target,
                column(source.tenant_column),
                column("date", Date),
                column("recordCount"),
                column("aggregatedAt", DateTime(timezone=True)),
            )
            now = utc_now()
            for (tenant, day), record_count in buckets.items():
                bucket = and_(target.c[source.tenant_column] == tenant, target.c.date == day)
                result = await conn.execute(
                    update(target)
                    .where(bucket)
                    .values(recordCount=target.c.recordCount + record_count, aggregatedAt=now)
                )
                if result.rowcount == 0:
                    await conn.execute(
                        insert(target).values(
                            {
                                source.tenant_column: tenant,
                                "date": day,
                                "recordCount": record_count,
                                "aggregatedAt": now,
                            }
                        )
                    )

            ids = [row[0] for row in rows]
            result = await conn.execute(delete(t).where(t.c[pk].in_(ids)))

        logger.debug(
            "aggregate_batch_written",
            collection=source.collection,
            target=source.aggregation_target,
            buckets=len(buckets),
            records=result.rowcount,
        )
        return result.rowcount

    async def copy_rows(
        self,
        source: DataSource,
        cutoff: datetime,
        limit: int,
        tenant_id: str | None = None,
    ) -> int:
        """Copy one batch into the archive target, then delete it.

        Only columns present in both tables are copied; an ``archivedAt``
        column on the target is stamped. Both phases share one transaction.

        Returns:
            Rows archived and deleted
        """
        if source.archive_target is None:
            raise ValueError(f"{source.collection} has no archive target")

        async with self.engine.begin() as conn:
            primary = await self._reflect(conn, source.collection)
            archive = await self._reflect(conn, source.archive_target)
            pk = primary.c[source.primary_key]

            conditions = [primary.c[source.age_column] < cutoff]
            if tenant_id is not None:
                conditions.append(primary.c[source.tenant_column] == tenant_id)
            rows = (
                await conn.execute(select(primary).where(*conditions).limit(limit))
            ).mappings().all()
            if not rows:
                return 0

            shared = [name for name in primary.c.keys() if name in archive.c]
            now = utc_now()
            copies = []
            for row in rows:
                copy = {name: row[name] for name in shared}
                if "archivedAt" in archive.c:
                    copy["archivedAt"] = now
                copies.append(copy)
            await conn.execute(insert(archive), copies)

            result = await conn.execute(
                delete(primary).where(pk.in_([row[source.primary_key] for row in rows]))
            )
            return result.rowcount

    # -------------------------------------------------------------------------
    # Subject-level erasure
    # -------------------------------------------------------------------------

    def _subject_conditions(
        self, t: TableClause, source: DataSource, tenant_id: str, subject_id: str
    ) -> list:
        if source.subject_column is None:
            raise ValueError(f"{source.collection} is not linked to a data subject")
        return [t.c[source.tenant_column] == tenant_id, t.c[source.subject_column] == subject_id]

    async def count_subject_rows(self, source: DataSource, tenant_id: str, subject_id: str) -> int:
        """Count a subject's rows in one collection."""
        t = self._table(source, source.subject_column or source.primary_key)
        stmt = select(func.count()).select_from(t).where(
            *self._subject_conditions(t, source, tenant_id, subject_id)
        )
        async with self.engine.connect() as conn:
            return int((await conn.execute(stmt)).scalar_one())

    async def erase_subject_rows(
        self,
        source: DataSource,
        tenant_id: str,
        subject_id: str,
        action: ErasureAction,
    ) -> int:
        """Erase a subject's rows in one collection.

        Redaction only touches rows still holding a non-marker PII value, so
        repeating an erasure affects zero rows.

        Returns:
            Rows deleted or redacted
        """
        t = self._table(
            source, source.subject_column or source.primary_key, source.anonymized_column,
            *source.pii_columns,
        )
        conditions = self._subject_conditions(t, source, tenant_id, subject_id)

        if action is ErasureAction.DELETE:
            stmt = delete(t).where(*conditions)
        else:
            if not source.pii_columns:
                return 0
            marker = self._settings.erasure_marker
            values: dict[str, Any] = {name: marker for name in source.pii_columns}
            if action is ErasureAction.REDACT_AND_MARK:
                values[source.anonymized_column] = utc_now()
            stmt = (
                update(t)
                .where(
                    *conditions,
                    or_(*(t.c[name].is_distinct_from(marker) for name in source.pii_columns)),
                )
                .values(values)
            )

        async with self.engine.begin() as conn:
            result = await conn.execute(stmt)
            return result.rowcount

    async def fetch_guardian_contact(
        self, tenant_id: str, subject_id: str
    ) -> GuardianContact | None:
        """Look up the guardian email of a learner and the learner's first name.

        Returns:
            The contact, or None when no profile or no guardian email exists
        """
        profile = table(
            GUARDIAN_PROFILE_TABLE, column("userId"), column("tenantId"), column("parentEmail")
        )
        subject = table(SUBJECT_TABLE, column("id"), column("firstName"))
        stmt = (
            select(profile.c.parentEmail, subject.c.firstName)
            .select_from(profile.join(subject, profile.c.userId == subject.c.id))
            .where(profile.c.userId == subject_id, profile.c.tenantId == tenant_id)
            .limit(1)
        )
        async with self.engine.connect() as conn:
            row = (await conn.execute(stmt)).first()

        if row is None or not row.parentEmail:
            return None
        return GuardianContact(email=row.parentEmail, subject_name=row.firstName)

    # -------------------------------------------------------------------------
    # Audit persistence
    # -------------------------------------------------------------------------

    async def record_run_summary(self, summary: PurgeRunSummary) -> None:
        """Persist a run summary as a ``RetentionAuditRecord``."""
        record = RetentionAuditRecord(
            id=f"audit_{summary.run_id}",
            run_id=summary.run_id,
            tenant_id=summary.tenant_id,
            dry_run=summary.dry_run,
            started_at=summary.started_at,
            completed_at=summary.completed_at,
            total_jobs=summary.total_jobs,
            completed_jobs=summary.completed_jobs,
            failed_jobs=summary.failed_jobs,
            cancelled_jobs=summary.cancelled_jobs,
            total_records_purged=summary.total_records_purged,
            total_records_failed=summary.total_records_failed,
            compliance_report=summary.compliance_report.model_dump(mode="json"),
            category_summaries=[
                s.model_dump(mode="json") for s in summary.category_summaries.values()
            ],
        )
        async with self._session_factory() as session:
            session.add(record)
            await session.commit()

    async def record_audit_event(
        self,
        event_type: AuditEventType,
        event_data: dict[str, Any],
        severity: AuditSeverity = AuditSeverity.INFO,
        tenant_id: str | None = None,
        actor_id: str | None = None,
        subject_id: str | None = None,
        resource_type: str | None = None,
        resource_id: str | None = None,
    ) -> None:
        """Append an audit event through ``AuditLogger`` and commit it."""
        async with self._session_factory() as session:
            audit = AuditLogger(session)
            await audit.log_event(
                event_type,
                event_data=event_data,
                severity=severity,
                tenant_id=tenant_id,
                actor_id=actor_id,
                subject_id=subject_id,
                resource_type=resource_type,
                resource_id=resource_id,
            )
            await session.commit()


def _utc_date(value: datetime | date | str) -> date:
    """Calendar day (UTC) of a timestamp column value."""
    if isinstance(value, str):
        value = datetime.fromisoformat(value)
    if isinstance(value, datetime):
        if value.tzinfo is not None:
            value = value.astimezone(UTC)
        return value.date()
    return value
