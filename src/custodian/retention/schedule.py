"""Purge cadence tiers.

Declares which categories are purged at which cadence. The engine owns no
scheduler loop: an external job runner reads these entries and calls
``DataRetentionService.run_scheduled_tier`` or ``run_grace_cleanup``.
"""

from datetime import datetime, timedelta
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

from custodian.retention.types import RetentionCategory, utc_now


class ScheduleTier(str, Enum):
    """Cadence tiers."""

    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
    GRACE_CLEANUP = "grace_cleanup"


class ScheduleEntry(BaseModel):
    """One cron-style trigger."""

    model_config = ConfigDict(frozen=True)

    tier: ScheduleTier
    cron_expression: str
    categories: tuple[RetentionCategory, ...] = ()
    description: str = ""
    enabled: bool = True


class RetentionSchedule(BaseModel):
    """All cadence tiers of the engine."""

    model_config = ConfigDict(frozen=True)

    entries: tuple[ScheduleEntry, ...] = Field(default_factory=tuple)

    def entry(self, tier: ScheduleTier) -> ScheduleEntry:
        """Get the entry for a tier.

        Raises:
            KeyError: If the tier is not configured
        """
        for entry in self.entries:
            if entry.tier is tier:
                return entry
        raise KeyError(tier.value)

    def tier_for(self, category: RetentionCategory) -> ScheduleTier | None:
        """Tier that purges a category, if any."""
        for entry in self.entries:
            if category in entry.categories:
                return entry.tier
        return None


DEFAULT_SCHEDULE = RetentionSchedule(
    entries=(
        ScheduleEntry(
            tier=ScheduleTier.DAILY,
            cron_expression="0 3 * * *",  # 03:00 daily
            categories=(
                RetentionCategory.AUDIO_RECORDINGS,
                RetentionCategory.NOTIFICATION_LOGS,
                RetentionCategory.AUTHENTICATION_LOGS,
            ),
            description="Short-retention categories",
        ),
        ScheduleEntry(
            tier=ScheduleTier.WEEKLY,
            cron_expression="0 2 * * 0",  # 02:00 Sunday
            categories=(
                RetentionCategory.DEVICE_SYNC_LOGS,
                RetentionCategory.AI_GENERATION_LOGS,
                RetentionCategory.OBSERVABILITY_METRICS,
                RetentionCategory.BEHAVIOURAL_ANALYTICS,
            ),
            description="Medium-retention categories",
        ),
        ScheduleEntry(
            tier=ScheduleTier.MONTHLY,
            cron_expression="0 1 1 * *",  # 01:00 on the 1st
            categories=(
                RetentionCategory.LEARNER_PII,
                RetentionCategory.LEARNING_SESSIONS,
                RetentionCategory.ASSESSMENT_DATA,
                RetentionCategory.CONTENT_CREATION,
                RetentionCategory.SUPPORT_TICKETS,
            ),
            description="Long-retention categories",
        ),
        ScheduleEntry(
            tier=ScheduleTier.QUARTERLY,
            cron_expression="0 0 1 */3 *",  # midnight, 1st of every third month
            categories=(
                RetentionCategory.PAYMENT_RECORDS,
                RetentionCategory.SECURITY_AUDIT_LOGS,
            ),
            description="Financial and security records",
        ),
        ScheduleEntry(
            tier=ScheduleTier.GRACE_CLEANUP,
            cron_expression="0 4 * * *",  # 04:00 daily
            description="Removes soft-deleted records that have exceeded their grace period",
        ),
    )
)


def next_scheduled_purge(now: datetime | None = None, hour: int = 3) -> datetime:
    """Next daily purge time (UTC), strictly after now."""
    now = now or utc_now()
    candidate = now.replace(hour=hour, minute=0, second=0, microsecond=0)
    if candidate <= now:
        candidate += timedelta(days=1)
    return candidate
