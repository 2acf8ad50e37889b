"""Data source registry: which collections hold which categories of data.

Each entry names the timestamp column deciding eligibility, the tenant
isolation column, the PII columns subject to anonymisation, and the
aggregation/archive destinations and dependent collections used by the
purge strategies. These definitions are the only source of identifiers the
data store layer ever places into a statement.
"""

from collections.abc import Iterable, Iterator

import structlog

from custodian.retention.types import DataSource, RetentionCategory

logger = structlog.get_logger(__name__)


DATA_SOURCE_REGISTRY: tuple[DataSource, ...] = (
    # Learner PII
    DataSource(
        collection="User",
        category=RetentionCategory.LEARNER_PII,
        age_column="lastActiveAt",
        soft_delete_column="deletedAt",
        pii_columns=("email", "firstName", "lastName", "avatarUrl", "phoneNumber"),
        dependent_collections=("LearnerProfile", "ParentLink", "Session", "Achievement"),
        subject_column="id",
    ),
    DataSource(
        collection="LearnerProfile",
        category=RetentionCategory.LEARNER_PII,
        age_column="updatedAt",
        pii_columns=("dateOfBirth", "parentEmail", "notes"),
        dependent_collections=("PhonicsAssessment", "ReadingSession", "BKTMastery"),
    ),
    # Learning sessions
    DataSource(
        collection="ReadingSession",
        category=RetentionCategory.LEARNING_SESSIONS,
        age_column="completedAt",
        aggregation_target="ReadingSessionAggregate",
        dependent_collections=("ReadingSessionWord", "ReadingSessionEvent"),
    ),
    DataSource(
        collection="PhonicsSession",
        category=RetentionCategory.LEARNING_SESSIONS,
        age_column="completedAt",
        aggregation_target="PhonicsSessionAggregate",
    ),
    # Assessment data
    DataSource(
        collection="PhonicsAssessment",
        category=RetentionCategory.ASSESSMENT_DATA,
        age_column="assessedAt",
        archive_target="assessment_archive",
    ),
    DataSource(
        collection="BKTMastery",
        category=RetentionCategory.ASSESSMENT_DATA,
        age_column="updatedAt",
        archive_target="assessment_archive",
    ),
    # Behavioural analytics
    DataSource(
        collection="AnalyticsEvent",
        category=RetentionCategory.BEHAVIOURAL_ANALYTICS,
        age_column="createdAt",
        pii_columns=("ipAddress", "userAgent"),
        aggregation_target="AnalyticsAggregate",
    ),
    # Audio recordings (highest sensitivity, shortest retention)
    DataSource(
        collection="AudioRecording",
        category=RetentionCategory.AUDIO_RECORDINGS,
        age_column="recordedAt",
        pii_columns=("audioUrl", "transcription"),
    ),
    # AI generation logs
    DataSource(
        collection="AIUsageLog",
        category=RetentionCategory.AI_GENERATION_LOGS,
        age_column="createdAt",
        pii_columns=("requestPayload", "responsePayload"),
    ),
    # Payment records
    DataSource(
        collection="Payment",
        category=RetentionCategory.PAYMENT_RECORDS,
        age_column="createdAt",
        pii_columns=("billingName", "billingEmail"),
        archive_target="payment_archive",
        dependent_collections=("PaymentLineItem", "Refund"),
    ),
    # Authentication logs
    DataSource(
        collection="AuthLog",
        category=RetentionCategory.AUTHENTICATION_LOGS,
        age_column="createdAt",
        pii_columns=("ipAddress", "userAgent"),
    ),
    # Security audit
    DataSource(
        collection="AuditLog",
        category=RetentionCategory.SECURITY_AUDIT_LOGS,
        age_column="timestamp",
        pii_columns=("ipAddress", "userAgent"),
        archive_target="audit_archive",
    ),
    # Content creation
    DataSource(
        collection="Storybook",
        category=RetentionCategory.CONTENT_CREATION,
        age_column="updatedAt",
        soft_delete_column="deletedAt",
        dependent_collections=("StorybookPage", "StorybookIllustration", "StorybookReview"),
    ),
    # Notification logs
    DataSource(
        collection="Notification",
        category=RetentionCategory.NOTIFICATION_LOGS,
        age_column="createdAt",
        pii_columns=("recipientEmail", "recipientPhone"),
    ),
    # Device sync logs
    DataSource(
        collection="PhonicsDeviceSyncLog",
        category=RetentionCategory.DEVICE_SYNC_LOGS,
        age_column="syncedAt",
    ),
    # Observability metrics (not linked to a data subject)
    DataSource(
        collection="MetricDataPoint",
        category=RetentionCategory.OBSERVABILITY_METRICS,
        age_column="recordedAt",
        aggregation_target="MetricAggregate",
        subject_column=None,
    ),
    # Support tickets
    DataSource(
        collection="FeedbackReport",
        category=RetentionCategory.SUPPORT_TICKETS,
        age_column="createdAt",
        pii_columns=("userEmail", "userName", "deviceInfo"),
    ),
)


class DataSourceRegistry:
    """Read-only catalogue of collections per retention category.

    A category without any registered source is legal and yields ``[]``.
    """

    def __init__(self, sources: Iterable[DataSource] = DATA_SOURCE_REGISTRY):
        self._by_collection: dict[str, DataSource] = {}
        self._by_category: dict[RetentionCategory, list[DataSource]] = {}

        for source in sources:
            if source.collection in self._by_collection:
                raise ValueError(f"Duplicate data source: {source.collection}")
            self._by_collection[source.collection] = source
            self._by_category.setdefault(source.category, []).append(source)

        logger.debug(
            "data_source_registry_initialized",
            source_count=len(self._by_collection),
            category_count=len(self._by_category),
        )

    def __iter__(self) -> Iterator[DataSource]:
        return iter(self._by_collection.values())

    def __len__(self) -> int:
        return len(self._by_collection)

    def get(self, collection: str) -> DataSource | None:
        """Get the source registered for a collection, if any."""
        return self._by_collection.get(collection)

    def sources_by_category(self, category: RetentionCategory) -> list[DataSource]:
        """Get all sources mapped to a category (empty if none)."""
        return list(self._by_category.get(category, ()))

    def dependents_of(self, collection: str) -> tuple[str, ...]:
        """Dependent collections declared by a collection (empty if unknown)."""
        source = self._by_collection.get(collection)
        return source.dependent_collections if source else ()
