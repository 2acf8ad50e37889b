"""Default retention policies and the policy registry.

Retention periods and regulatory bounds per data category. Tenants may
adjust overridable policies within ``[min_retention_days, max_retention_days]``.
"""

from collections.abc import Iterable, Iterator

import structlog

from custodian.core.exceptions import PolicyNotFoundError
from custodian.retention.types import (
    ComplianceFramework,
    PurgeStrategy,
    RetentionCategory,
    RetentionPolicy,
)

logger = structlog.get_logger(__name__)

# Standard retention periods (days)
SEVEN_YEARS = 7 * 365  # 2555 days
THREE_YEARS = 3 * 365
TWO_YEARS = 2 * 365
ONE_YEAR = 365
SIX_MONTHS = 180
NINETY_DAYS = 90
SIXTY_DAYS = 60
THIRTY_DAYS = 30

COPPA = ComplianceFramework.COPPA
GDPR = ComplianceFramework.GDPR
FERPA = ComplianceFramework.FERPA
APP = ComplianceFramework.APP
CCPA = ComplianceFramework.CCPA


DEFAULT_RETENTION_POLICIES: tuple[RetentionPolicy, ...] = (
    RetentionPolicy(
        id="pol_learner_pii",
        category=RetentionCategory.LEARNER_PII,
        frameworks=(COPPA, GDPR, APP),
        retention_days=ONE_YEAR,
        grace_period_days=30,
        strategy=PurgeStrategy.ANONYMISE,
        batch_size=100,
        requires_guardian_notice=True,
        description=(
            "Learner personal information retained for 1 year after account "
            "deactivation. Anonymised rather than deleted to preserve learning analytics."
        ),
        legal_basis="COPPA §312.10(c); GDPR Art. 17; APP 11.2",
        tenant_overridable=True,
        min_retention_days=NINETY_DAYS,
        max_retention_days=TWO_YEARS,
    ),
    RetentionPolicy(
        id="pol_learning_sessions",
        category=RetentionCategory.LEARNING_SESSIONS,
        frameworks=(COPPA, FERPA),
        retention_days=TWO_YEARS,
        grace_period_days=14,
        strategy=PurgeStrategy.AGGREGATE_AND_DELETE,
        batch_size=500,
        description=(
            "Individual sessions aggregated into daily summary counts after 2 years; "
            "detail records deleted."
        ),
        legal_basis="FERPA §99.31(a)(6); COPPA §312.10(c)",
        tenant_overridable=True,
        min_retention_days=ONE_YEAR,
        max_retention_days=THREE_YEARS,
    ),
    RetentionPolicy(
        id="pol_assessment_data",
        category=RetentionCategory.ASSESSMENT_DATA,
        frameworks=(FERPA, GDPR),
        retention_days=THREE_YEARS,
        grace_period_days=30,
        strategy=PurgeStrategy.ARCHIVE_AND_DELETE,
        batch_size=200,
        description=(
            "Assessment records archived after 3 years for longitudinal research, "
            "then deleted from primary storage."
        ),
        legal_basis="FERPA §99.10; GDPR Art. 5(1)(e)",
        tenant_overridable=True,
        min_retention_days=TWO_YEARS,
        max_retention_days=2 * THREE_YEARS,
    ),
    RetentionPolicy(
        id="pol_behavioural_analytics",
        category=RetentionCategory.BEHAVIOURAL_ANALYTICS,
        frameworks=(COPPA, GDPR, CCPA),
        retention_days=SIX_MONTHS,
        grace_period_days=7,
        strategy=PurgeStrategy.AGGREGATE_AND_DELETE,
        batch_size=1000,
        description=(
            "Click streams and engagement metrics aggregated after 6 months; "
            "individual events deleted."
        ),
        legal_basis="COPPA §312.5(c); GDPR Art. 5(1)(c) data minimisation",
        tenant_overridable=False,
        min_retention_days=NINETY_DAYS,
        max_retention_days=ONE_YEAR,
    ),
    RetentionPolicy(
        id="pol_audio_recordings",
        category=RetentionCategory.AUDIO_RECORDINGS,
        frameworks=(COPPA, GDPR, APP),
        retention_days=THIRTY_DAYS,
        grace_period_days=7,
        strategy=PurgeStrategy.HARD_DELETE,
        batch_size=50,
        requires_guardian_notice=True,
        description=(
            "Voice recordings deleted after 30 days. Biometric data requires "
            "minimal retention; transcriptions are retained separately."
        ),
        legal_basis="COPPA §312.2; GDPR Art. 9 (biometric data); APP 3.4",
        tenant_overridable=False,
        min_retention_days=7,
        max_retention_days=NINETY_DAYS,
    ),
    RetentionPolicy(
        id="pol_ai_generation_logs",
        category=RetentionCategory.AI_GENERATION_LOGS,
        frameworks=(GDPR, COPPA),
        retention_days=NINETY_DAYS,
        grace_period_days=7,
        strategy=PurgeStrategy.HARD_DELETE,
        batch_size=200,
        description=(
            "AI prompt/response logs kept 90 days for quality assurance and cost "
            "reconciliation, then hard deleted."
        ),
        legal_basis="GDPR Art. 5(1)(e) storage limitation; COPPA §312.10",
        tenant_overridable=True,
        min_retention_days=THIRTY_DAYS,
        max_retention_days=SIX_MONTHS,
    ),
    RetentionPolicy(
        id="pol_payment_records",
        category=RetentionCategory.PAYMENT_RECORDS,
        frameworks=(GDPR, CCPA),
        retention_days=SEVEN_YEARS,
        grace_period_days=90,
        strategy=PurgeStrategy.ARCHIVE_AND_DELETE,
        batch_size=100,
        description=(
            "Payment records kept 7 years per financial regulations, then archived "
            "and deleted from primary storage."
        ),
        legal_basis="ATO record-keeping 5-7 years; IRS §6001; GDPR Art. 17(3)(b)",
        tenant_overridable=False,
        min_retention_days=5 * 365,
        max_retention_days=10 * 365,
    ),
    RetentionPolicy(
        id="pol_auth_logs",
        category=RetentionCategory.AUTHENTICATION_LOGS,
        frameworks=(GDPR, APP),
        retention_days=NINETY_DAYS,
        grace_period_days=0,
        strategy=PurgeStrategy.HARD_DELETE,
        batch_size=1000,
        description="Authentication logs kept 90 days for security monitoring, then hard deleted.",
        legal_basis="GDPR Art. 5(1)(e); APP 11.2",
        tenant_overridable=True,
        min_retention_days=THIRTY_DAYS,
        max_retention_days=ONE_YEAR,
    ),
    RetentionPolicy(
        id="pol_security_audit",
        category=RetentionCategory.SECURITY_AUDIT_LOGS,
        frameworks=(GDPR, FERPA, APP),
        retention_days=THREE_YEARS,
        grace_period_days=30,
        strategy=PurgeStrategy.ARCHIVE_AND_DELETE,
        batch_size=200,
        description="Security audit trails kept 3 years for incident forensics and audits.",
        legal_basis="GDPR Art. 30 records of processing; FERPA §99.32 access records",
        tenant_overridable=False,
        min_retention_days=TWO_YEARS,
        max_retention_days=5 * 365,
    ),
    RetentionPolicy(
        id="pol_content_creation",
        category=RetentionCategory.CONTENT_CREATION,
        frameworks=(GDPR,),
        retention_days=ONE_YEAR,
        grace_period_days=30,
        strategy=PurgeStrategy.SOFT_DELETE,
        batch_size=100,
        description="Unpublished content drafts kept 1 year after last edit, then soft-deleted.",
        legal_basis="GDPR Art. 17 right to erasure",
        tenant_overridable=True,
        min_retention_days=NINETY_DAYS,
        max_retention_days=TWO_YEARS,
    ),
    RetentionPolicy(
        id="pol_notification_logs",
        category=RetentionCategory.NOTIFICATION_LOGS,
        frameworks=(GDPR, APP),
        retention_days=THIRTY_DAYS,
        grace_period_days=0,
        strategy=PurgeStrategy.HARD_DELETE,
        batch_size=1000,
        description="Notification delivery logs kept 30 days for troubleshooting, then hard deleted.",
        legal_basis="GDPR Art. 5(1)(c) data minimisation",
        tenant_overridable=False,
        min_retention_days=7,
        max_retention_days=NINETY_DAYS,
    ),
    RetentionPolicy(
        id="pol_device_sync",
        category=RetentionCategory.DEVICE_SYNC_LOGS,
        frameworks=(GDPR, COPPA),
        retention_days=SIXTY_DAYS,
        grace_period_days=7,
        strategy=PurgeStrategy.HARD_DELETE,
        batch_size=500,
        description="Device sync logs kept 60 days for conflict diagnostics, then hard deleted.",
        legal_basis="GDPR Art. 5(1)(e); COPPA §312.10",
        tenant_overridable=True,
        min_retention_days=THIRTY_DAYS,
        max_retention_days=SIX_MONTHS,
    ),
    RetentionPolicy(
        id="pol_observability",
        category=RetentionCategory.OBSERVABILITY_METRICS,
        frameworks=(GDPR,),
        retention_days=NINETY_DAYS,
        grace_period_days=0,
        strategy=PurgeStrategy.AGGREGATE_AND_DELETE,
        batch_size=2000,
        description="Metrics aggregated into daily summaries after 90 days; raw points deleted.",
        legal_basis="GDPR Art. 5(1)(c) data minimisation",
        tenant_overridable=False,
        min_retention_days=THIRTY_DAYS,
        max_retention_days=SIX_MONTHS,
    ),
    RetentionPolicy(
        id="pol_support_tickets",
        category=RetentionCategory.SUPPORT_TICKETS,
        frameworks=(GDPR, CCPA),
        retention_days=ONE_YEAR,
        grace_period_days=30,
        strategy=PurgeStrategy.ANONYMISE,
        batch_size=100,
        description="Support tickets anonymised after 1 year; satisfaction aggregates retained.",
        legal_basis="GDPR Art. 17; CCPA §1798.105",
        tenant_overridable=True,
        min_retention_days=SIX_MONTHS,
        max_retention_days=TWO_YEARS,
    ),
)


class PolicyRegistry:
    """Read-only catalogue of retention policies.

    Built once at startup; safe for unsynchronised concurrent reads.
    """

    def __init__(self, policies: Iterable[RetentionPolicy] = DEFAULT_RETENTION_POLICIES):
        self._by_id: dict[str, RetentionPolicy] = {}
        self._by_category: dict[RetentionCategory, list[RetentionPolicy]] = {}

        for policy in policies:
            if policy.id in self._by_id:
                raise ValueError(f"Duplicate policy id: {policy.id}")
            self._by_id[policy.id] = policy
            self._by_category.setdefault(policy.category, []).append(policy)

        logger.debug("policy_registry_initialized", policy_count=len(self._by_id))

    def __iter__(self) -> Iterator[RetentionPolicy]:
        return iter(self._by_id.values())

    def __len__(self) -> int:
        return len(self._by_id)

    def __contains__(self, policy_id: object) -> bool:
        return policy_id in self._by_id

    def get(self, policy_id: str) -> RetentionPolicy:
        """Get a policy by id.

        Raises:
            PolicyNotFoundError: If no policy has that id
        """
        try:
            return self._by_id[policy_id]
        except KeyError:
            raise PolicyNotFoundError(policy_id) from None

    def policies_by_category(self, category: RetentionCategory) -> list[RetentionPolicy]:
        """Get all policies governing a category (empty if none)."""
        return list(self._by_category.get(category, ()))

    def categories(self) -> set[RetentionCategory]:
        """Categories with at least one policy."""
        return set(self._by_category)
