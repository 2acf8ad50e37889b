"""Unit tests for the policy and data source registries."""

import pytest

from custodian.core.exceptions import PolicyNotFoundError
from custodian.retention.policies import DEFAULT_RETENTION_POLICIES, PolicyRegistry
from custodian.retention.sources import DATA_SOURCE_REGISTRY, DataSourceRegistry
from custodian.retention.types import (
    ComplianceFramework,
    DataSource,
    PurgeStrategy,
    RetentionCategory,
)


class TestDefaultPolicies:
    """Tests for the default policy set."""

    def test_one_policy_per_category(self):
        """Test every category is governed by exactly one default policy."""
        categories = [p.category for p in DEFAULT_RETENTION_POLICIES]

        assert len(DEFAULT_RETENTION_POLICIES) == 14
        assert sorted(categories) == sorted(RetentionCategory)

    def test_policy_ids_unique(self):
        """Test default policy ids are unique."""
        ids = [p.id for p in DEFAULT_RETENTION_POLICIES]
        assert len(ids) == len(set(ids))

    def test_bounds_hold(self):
        """Test every default policy lies within its regulatory bounds."""
        for policy in DEFAULT_RETENTION_POLICIES:
            assert policy.min_retention_days <= policy.retention_days <= policy.max_retention_days

    def test_every_policy_names_a_framework_and_basis(self):
        """Test every default policy cites at least one regulation."""
        for policy in DEFAULT_RETENTION_POLICIES:
            assert policy.frameworks
            assert policy.legal_basis

    def test_guardian_notice_policies(self):
        """Test which categories require a guardian notice."""
        requiring = {p.category for p in DEFAULT_RETENTION_POLICIES if p.requires_guardian_notice}

        assert requiring == {
            RetentionCategory.LEARNER_PII,
            RetentionCategory.AUDIO_RECORDINGS,
        }

    def test_known_periods(self):
        """Test a sample of retention periods and strategies."""
        registry = PolicyRegistry()

        learner = registry.get("pol_learner_pii")
        assert learner.retention_days == 365
        assert learner.strategy == PurgeStrategy.ANONYMISE
        assert ComplianceFramework.COPPA in learner.frameworks

        audio = registry.get("pol_audio_recordings")
        assert audio.retention_days == 30
        assert audio.strategy == PurgeStrategy.HARD_DELETE
        assert audio.tenant_overridable is False

        payments = registry.get("pol_payment_records")
        assert payments.retention_days == 2555
        assert payments.strategy == PurgeStrategy.ARCHIVE_AND_DELETE


class TestPolicyRegistry:
    """Tests for PolicyRegistry."""

    def test_lookup(self):
        """Test lookup by id and by category."""
        registry = PolicyRegistry()

        assert len(registry) == 14
        assert "pol_auth_logs" in registry
        assert registry.get("pol_auth_logs").category == RetentionCategory.AUTHENTICATION_LOGS
        assert [p.id for p in registry.policies_by_category(RetentionCategory.LEARNER_PII)] == [
            "pol_learner_pii"
        ]
        assert registry.categories() == set(RetentionCategory)

    def test_unknown_policy(self):
        """Test unknown ids raise PolicyNotFoundError."""
        registry = PolicyRegistry()

        with pytest.raises(PolicyNotFoundError) as exc_info:
            registry.get("pol_missing")

        assert exc_info.value.policy_id == "pol_missing"
        assert exc_info.value.code == "policy_not_found"

    def test_category_without_policy(self):
        """Test a category without policies yields an empty list."""
        registry = PolicyRegistry(DEFAULT_RETENTION_POLICIES[:1])

        assert registry.policies_by_category(RetentionCategory.PAYMENT_RECORDS) == []

    def test_duplicate_ids_rejected(self):
        """Test duplicate policy ids are rejected."""
        policy = DEFAULT_RETENTION_POLICIES[0]

        with pytest.raises(ValueError, match="Duplicate policy id"):
            PolicyRegistry([policy, policy])


class TestDataSourceRegistry:
    """Tests for DataSourceRegistry."""

    def test_default_sources(self):
        """Test the default source map."""
        registry = DataSourceRegistry()

        assert len(registry) == len(DATA_SOURCE_REGISTRY) == 17
        learner = registry.sources_by_category(RetentionCategory.LEARNER_PII)
        assert [s.collection for s in learner] == ["User", "LearnerProfile"]

    def test_every_source_category_has_a_policy(self):
        """Test no source maps to an ungoverned category."""
        policies = PolicyRegistry()

        for source in DATA_SOURCE_REGISTRY:
            assert policies.policies_by_category(source.category)

    def test_strategy_targets_declared(self):
        """Test aggregate and archive sources declare their destinations."""
        policies = PolicyRegistry()

        for source in DATA_SOURCE_REGISTRY:
            strategy = policies.policies_by_category(source.category)[0].strategy
            if strategy is PurgeStrategy.AGGREGATE_AND_DELETE:
                assert source.aggregation_target, source.collection
            if strategy is PurgeStrategy.ARCHIVE_AND_DELETE:
                assert source.archive_target, source.collection

    def test_anonymised_sources_have_pii(self):
        """Test every source purged by anonymisation names PII columns."""
        policies = PolicyRegistry()

        for source in DATA_SOURCE_REGISTRY:
            strategy = policies.policies_by_category(source.category)[0].strategy
            if strategy is PurgeStrategy.ANONYMISE:
                assert source.pii_columns, source.collection

    def test_dependents(self):
        """Test declared dependent collections."""
        registry = DataSourceRegistry()

        assert "LearnerProfile" in registry.dependents_of("User")
        assert registry.dependents_of("AuthLog") == ()
        assert registry.dependents_of("Unknown") == ()

    def test_lookup(self):
        """Test lookup by collection."""
        registry = DataSourceRegistry()

        assert registry.get("AuthLog").age_column == "createdAt"
        assert registry.get("Unknown") is None
        assert registry.sources_by_category(RetentionCategory.DEVICE_SYNC_LOGS)[0].pii_columns == ()

    def test_subject_links(self):
        """Test subject columns used by erasure."""
        registry = DataSourceRegistry()

        assert registry.get("User").subject_column == "id"
        assert registry.get("LearnerProfile").subject_column == "userId"
        assert registry.get("MetricDataPoint").subject_column is None

    def test_soft_delete_marker_default(self):
        """Test the soft-delete marker falls back to deletedAt."""
        source = DataSource(
            collection="Thing",
            category=RetentionCategory.CONTENT_CREATION,
            age_column="updatedAt",
        )

        assert source.soft_delete_column is None
        assert source.soft_delete_marker == "deletedAt"
        assert source.tenant_column == "tenantId"

    def test_duplicate_collections_rejected(self):
        """Test duplicate collections are rejected."""
        source = DATA_SOURCE_REGISTRY[0]

        with pytest.raises(ValueError, match="Duplicate data source"):
            DataSourceRegistry([source, source])
