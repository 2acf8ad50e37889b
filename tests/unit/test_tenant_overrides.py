"""Unit tests for tenant policy overrides."""

import asyncio

import pytest

from custodian.core.exceptions import OverrideValidationError, PolicyNotFoundError
from custodian.retention.overrides import TenantOverrideStore
from custodian.retention.policies import PolicyRegistry


@pytest.fixture
def overrides() -> TenantOverrideStore:
    return TenantOverrideStore(PolicyRegistry())


class TestSetOverride:
    """Tests for TenantOverrideStore.set_override."""

    @pytest.mark.asyncio
    async def test_override_at_minimum(self, overrides):
        """Test an override at the regulatory floor succeeds."""
        effective = await overrides.set_override("tenant-a", "pol_learner_pii", retention_days=90)

        assert effective.retention_days == 90
        assert overrides.effective_policy("tenant-a", "pol_learner_pii").retention_days == 90

    @pytest.mark.asyncio
    async def test_override_below_minimum(self, overrides):
        """Test an override below the floor is rejected and nothing changes."""
        with pytest.raises(OverrideValidationError) as exc_info:
            await overrides.set_override("tenant-a", "pol_learner_pii", retention_days=89)

        error = exc_info.value
        assert error.code == "below_minimum"
        assert error.details["min_days"] == 90
        assert "COPPA" in error.details["legal_basis"]
        assert error.tenant_id == "tenant-a"
        assert error.policy_id == "pol_learner_pii"
        assert overrides.effective_policy("tenant-a", "pol_learner_pii").retention_days == 365
        assert overrides.get_override("tenant-a", "pol_learner_pii") is None

    @pytest.mark.asyncio
    async def test_rejection_keeps_previous_override(self, overrides):
        """Test a rejected write leaves the earlier override in effect."""
        await overrides.set_override("tenant-a", "pol_learner_pii", retention_days=200)

        with pytest.raises(OverrideValidationError):
            await overrides.set_override("tenant-a", "pol_learner_pii", retention_days=10)

        assert overrides.effective_policy("tenant-a", "pol_learner_pii").retention_days == 200

    @pytest.mark.asyncio
    async def test_override_above_maximum(self, overrides):
        """Test an override above the ceiling is rejected."""
        with pytest.raises(OverrideValidationError) as exc_info:
            await overrides.set_override("tenant-a", "pol_learner_pii", retention_days=731)

        assert exc_info.value.code == "above_maximum"
        assert exc_info.value.details["max_days"] == 730

    @pytest.mark.asyncio
    async def test_non_overridable_policy(self, overrides):
        """Test policies that forbid overrides reject any write."""
        with pytest.raises(OverrideValidationError) as exc_info:
            await overrides.set_override("tenant-a", "pol_audio_recordings", retention_days=30)

        assert exc_info.value.code == "not_overridable"

    @pytest.mark.asyncio
    async def test_empty_override(self, overrides):
        """Test an override must set at least one field."""
        with pytest.raises(OverrideValidationError) as exc_info:
            await overrides.set_override("tenant-a", "pol_learner_pii")

        assert exc_info.value.code == "empty_override"

    @pytest.mark.asyncio
    async def test_negative_grace_period(self, overrides):
        """Test a negative grace period is rejected."""
        with pytest.raises(OverrideValidationError) as exc_info:
            await overrides.set_override("tenant-a", "pol_learner_pii", grace_period_days=-1)

        assert exc_info.value.code == "invalid_grace_period"

    @pytest.mark.asyncio
    async def test_grace_only_override(self, overrides):
        """Test a grace-only override keeps base retention."""
        effective = await overrides.set_override(
            "tenant-a", "pol_learner_pii", grace_period_days=60
        )

        assert effective.retention_days == 365
        assert effective.grace_period_days == 60

    @pytest.mark.asyncio
    async def test_unknown_policy(self, overrides):
        """Test unknown policy ids raise PolicyNotFoundError."""
        with pytest.raises(PolicyNotFoundError):
            await overrides.set_override("tenant-a", "pol_missing", retention_days=100)

    @pytest.mark.asyncio
    async def test_replaced_wholesale(self, overrides):
        """Test a later write replaces the earlier override entirely."""
        await overrides.set_override(
            "tenant-a", "pol_learner_pii", retention_days=200, grace_period_days=60
        )
        await overrides.set_override("tenant-a", "pol_learner_pii", retention_days=300)

        effective = overrides.effective_policy("tenant-a", "pol_learner_pii")
        assert effective.retention_days == 300
        assert effective.grace_period_days == 30

    @pytest.mark.asyncio
    async def test_concurrent_writes_last_wins(self, overrides):
        """Test concurrent writes to one key leave exactly one of them in effect."""
        values = [100, 200, 300, 400]

        await asyncio.gather(
            *(
                overrides.set_override("tenant-a", "pol_learner_pii", retention_days=v)
                for v in values
            )
        )

        assert overrides.effective_policy("tenant-a", "pol_learner_pii").retention_days in values
        assert len(overrides.overrides_for_tenant("tenant-a")) == 1


class TestEffectivePolicy:
    """Tests for effective policy resolution."""

    @pytest.mark.asyncio
    async def test_tenant_isolation(self, overrides):
        """Test overrides apply only to their tenant."""
        await overrides.set_override("tenant-a", "pol_auth_logs", retention_days=30)

        assert overrides.effective_policy("tenant-a", "pol_auth_logs").retention_days == 30
        assert overrides.effective_policy("tenant-b", "pol_auth_logs").retention_days == 90
        assert overrides.effective_policy(None, "pol_auth_logs").retention_days == 90

    @pytest.mark.asyncio
    async def test_clear_override(self, overrides):
        """Test clearing restores the base policy."""
        await overrides.set_override("tenant-a", "pol_auth_logs", retention_days=30)

        assert await overrides.clear_override("tenant-a", "pol_auth_logs") is True
        assert await overrides.clear_override("tenant-a", "pol_auth_logs") is False
        assert overrides.effective_policy("tenant-a", "pol_auth_logs").retention_days == 90

    @pytest.mark.asyncio
    async def test_clear_override_releases_lock(self, overrides):
        """Test clearing drops the key's lock so the lock map does not grow."""
        await overrides.set_override("tenant-a", "pol_auth_logs", retention_days=30)
        assert ("tenant-a", "pol_auth_logs") in overrides._locks

        await overrides.clear_override("tenant-a", "pol_auth_logs")
        await overrides.clear_override("tenant-b", "pol_auth_logs")

        assert overrides._locks == {}

    @pytest.mark.asyncio
    async def test_overrides_for_tenant(self, overrides):
        """Test listing a tenant's overrides."""
        await overrides.set_override("tenant-a", "pol_auth_logs", retention_days=30)
        await overrides.set_override("tenant-a", "pol_device_sync", retention_days=90)
        await overrides.set_override("tenant-b", "pol_auth_logs", retention_days=60)

        policy_ids = {o.policy_id for o in overrides.overrides_for_tenant("tenant-a")}
        assert policy_ids == {"pol_auth_logs", "pol_device_sync"}
