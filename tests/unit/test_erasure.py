"""Unit tests for right-to-erasure handling."""

from datetime import timedelta

import pytest
from sqlalchemy import select

from custodian.core.exceptions import ErasureFailedError
from custodian.db.models.audit import AuditEvent, AuditEventType
from custodian.retention.erasure import ErasureHandler
from custodian.retention.policies import PolicyRegistry
from custodian.retention.sources import DataSourceRegistry
from custodian.retention.types import DataSource, RetentionCategory, utc_now


@pytest.fixture
def handler(store) -> ErasureHandler:
    return ErasureHandler(store, PolicyRegistry(), DataSourceRegistry())


@pytest.fixture
async def subject_data(collections):
    """One learner with rows across exempt and non-exempt collections."""
    now = utc_now()
    await collections.insert(
        "User",
        [
            {
                "id": "u1",
                "tenantId": "t",
                "lastActiveAt": now,
                "email": "kid@example.com",
                "firstName": "Alex",
            },
            {"id": "u2", "tenantId": "t", "lastActiveAt": now, "email": "other@example.com"},
        ],
    )
    await collections.insert(
        "LearnerProfile",
        [
            {
                "id": "lp1",
                "tenantId": "t",
                "userId": "u1",
                "updatedAt": now,
                "parentEmail": "parent@example.com",
            }
        ],
    )
    await collections.insert(
        "AudioRecording",
        [{"id": "ar1", "tenantId": "t", "userId": "u1", "recordedAt": now, "audioUrl": "s3://a"}],
    )
    await collections.insert(
        "Payment",
        [
            {
                "id": "p1",
                "tenantId": "t",
                "userId": "u1",
                "createdAt": now - timedelta(days=20),
                "billingName": "Sam Parent",
                "billingEmail": "sam@example.com",
            }
        ],
    )
    await collections.insert(
        "AuditLog",
        [{"id": "al1", "tenantId": "t", "userId": "u1", "timestamp": now, "ipAddress": "10.0.0.1"}],
    )
    await collections.insert(
        "FeedbackReport",
        [
            {
                "id": "fr1",
                "tenantId": "t",
                "userId": "u1",
                "createdAt": now,
                "userEmail": "kid@example.com",
            }
        ],
    )


class TestProcessErasure:
    """Tests for ErasureHandler.process_erasure."""

    @pytest.mark.asyncio
    async def test_erases_subject(self, handler, subject_data, collections):
        """Test deletes, redactions and exemptions for one subject."""
        result = await handler.process_erasure("t", "u1", requested_by="dpo", reason="request")

        assert result.tables_processed == 16
        assert result.records_anonymised == 4
        assert result.records_deleted == 1
        assert result.records_retained == 2

        users = {r["id"]: r for r in await collections.rows("User")}
        assert users["u1"]["email"] == "ERASED"
        assert users["u1"]["firstName"] == "ERASED"
        assert users["u1"]["anonymisedAt"] is not None
        assert users["u2"]["email"] == "other@example.com"

        assert await collections.count("AudioRecording") == 0

        (payment,) = await collections.rows("Payment")
        assert payment["billingEmail"] == "ERASED"
        assert payment["anonymisedAt"] is None

        (audit_row,) = await collections.rows("AuditLog")
        assert audit_row["ipAddress"] == "10.0.0.1"

        (feedback,) = await collections.rows("FeedbackReport")
        assert feedback["userEmail"] == "ERASED"

    @pytest.mark.asyncio
    async def test_repeat_is_noop(self, handler, subject_data):
        """Test erasing an erased subject changes nothing."""
        await handler.process_erasure("t", "u1", requested_by="dpo", reason="request")

        again = await handler.process_erasure("t", "u1", requested_by="dpo", reason="request")

        assert again.records_anonymised == 0
        assert again.records_deleted == 0
        assert again.records_retained == 2

    @pytest.mark.asyncio
    async def test_other_tenant_untouched(self, handler, subject_data, collections):
        """Test erasure is scoped to the requesting tenant."""
        result = await handler.process_erasure("other", "u1", requested_by="dpo", reason="x")

        assert result.records_deleted == result.records_anonymised == 0
        assert await collections.count("AudioRecording") == 1

    @pytest.mark.asyncio
    async def test_writes_audit_event(self, handler, subject_data, db_session):
        """Test a critical erasure event is recorded."""
        await handler.process_erasure("t", "u1", requested_by="dpo", reason="parent request")

        result = await db_session.execute(
            select(AuditEvent).where(AuditEvent.event_type == AuditEventType.DATA_ERASED.value)
        )
        event = result.scalar_one()
        assert event.severity == "critical"
        assert event.actor_id == "dpo"
        assert event.subject_id == "u1"
        assert event.event_data["reason"] == "parent request"
        assert event.event_data["records_deleted"] == 1

    @pytest.mark.asyncio
    async def test_failure_carries_partial_counts(self, store, collections):
        """Test a failing collection raises with the counts applied so far."""
        sources = DataSourceRegistry(
            [
                DataSourceRegistry().get("AudioRecording"),
                DataSource(
                    collection="GhostRecording",
                    category=RetentionCategory.AUDIO_RECORDINGS,
                    age_column="recordedAt",
                ),
            ]
        )
        handler = ErasureHandler(store, PolicyRegistry(), sources)
        await collections.insert(
            "AudioRecording",
            [{"id": "ar1", "tenantId": "t", "userId": "u1", "recordedAt": utc_now()}],
        )

        with pytest.raises(ErasureFailedError) as exc_info:
            await handler.process_erasure("t", "u1", requested_by="dpo", reason="request")

        error = exc_info.value
        assert error.collection == "GhostRecording"
        assert error.tables_processed == 1
        assert error.records_deleted == 1
        assert error.code == "erasure_failed"
        assert await collections.count("AudioRecording") == 0
