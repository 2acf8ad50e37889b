"""Durable record of purge runs."""

from datetime import UTC, datetime

from sqlalchemy import Boolean, DateTime, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base, PortableJSON


class RetentionAuditRecord(Base):
    """Certification artefact for one purge run.

    Only counts, collection names and category identifiers are stored.
    """

    __tablename__ = "data_retention_audit"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    run_id: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    tenant_id: Mapped[str | None] = mapped_column(String(255), nullable=True)  # null = all tenants
    dry_run: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    started_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    total_jobs: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    completed_jobs: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    failed_jobs: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    cancelled_jobs: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_records_purged: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_records_failed: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    compliance_report: Mapped[dict] = mapped_column(PortableJSON(), nullable=False)
    category_summaries: Mapped[list] = mapped_column(PortableJSON(), nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(UTC), nullable=False
    )

    __table_args__ = (
        Index("idx_retention_audit_tenant", "tenant_id"),
        Index("idx_retention_audit_started", "started_at"),
    )

    def __repr__(self) -> str:
        return (
            f"<RetentionAuditRecord(run_id={self.run_id}, "
            f"purged={self.total_records_purged}, failed={self.failed_jobs})>"
        )
