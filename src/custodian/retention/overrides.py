"""Tenant override store.

Holds per-tenant deltas to base policies. Every write is validated against
the base policy's regulatory floor and ceiling before it is stored; a
rejected write leaves the previously effective policy untouched.
"""

import asyncio
from collections import defaultdict

import structlog

from custodian.core.exceptions import OverrideValidationError
from custodian.retention.policies import PolicyRegistry
from custodian.retention.types import RetentionPolicy, TenantOverride

logger = structlog.get_logger(__name__)

OverrideKey = tuple[str, str]


class TenantOverrideStore:
    """Validated, last-write-wins store of tenant policy overrides.

    Writes to one (tenant, policy) key are serialised by a per-key lock;
    reads never block and writes to other keys proceed independently.
    """

    def __init__(self, policies: PolicyRegistry):
        self._policies = policies
        self._overrides: dict[OverrideKey, TenantOverride] = {}
        self._locks: defaultdict[OverrideKey, asyncio.Lock] = defaultdict(asyncio.Lock)

    async def set_override(
        self,
        tenant_id: str,
        policy_id: str,
        retention_days: int | None = None,
        grace_period_days: int | None = None,
    ) -> RetentionPolicy:
        """Validate and store an override, replacing any earlier one for the key.

        Only the supplied fields are taken from the delta; fields left as
        None fall back to the base policy.

        Returns:
            The effective policy after the override

        Raises:
            PolicyNotFoundError: If the policy id is unknown
            OverrideValidationError: If the override is not allowed or out of bounds
        """
        base = self._policies.get(policy_id)
        self._validate(base, tenant_id, retention_days, grace_period_days)

        key = (tenant_id, policy_id)
        async with self._locks[key]:
            override = TenantOverride(
                tenant_id=tenant_id,
                policy_id=policy_id,
                retention_days=retention_days,
                grace_period_days=grace_period_days,
            )
            self._overrides[key] = override

        effective = override.apply(base)
        logger.info(
            "tenant_override_set",
            tenant_id=tenant_id,
            policy_id=policy_id,
            effective_retention_days=effective.retention_days,
            effective_grace_period_days=effective.grace_period_days,
        )
        return effective

    def effective_policy(self, tenant_id: str | None, policy_id: str) -> RetentionPolicy:
        """Get the override-merged policy, or the base policy without an override.

        Raises:
            PolicyNotFoundError: If the policy id is unknown
        """
        base = self._policies.get(policy_id)
        if tenant_id is None:
            return base
        override = self._overrides.get((tenant_id, policy_id))
        return override.apply(base) if override else base

    def get_override(self, tenant_id: str, policy_id: str) -> TenantOverride | None:
        """Get the stored override for a key, if any."""
        return self._overrides.get((tenant_id, policy_id))

    def overrides_for_tenant(self, tenant_id: str) -> list[TenantOverride]:
        """All overrides stored for a tenant."""
        return [o for (t, _), o in self._overrides.items() if t == tenant_id]

    async def clear_override(self, tenant_id: str, policy_id: str) -> bool:
        """Remove an override so the base policy applies again.

        Returns:
            True if an override was removed
        """
        key = (tenant_id, policy_id)
        lock = self._locks[key]
        async with lock:
            removed = self._overrides.pop(key, None) is not None
        if not lock.locked():
            self._locks.pop(key, None)
        if removed:
            logger.info("tenant_override_cleared", tenant_id=tenant_id, policy_id=policy_id)
        return removed

    def _validate(
        self,
        base: RetentionPolicy,
        tenant_id: str,
        retention_days: int | None,
        grace_period_days: int | None,
    ) -> None:
        def reject(message: str, code: str, **details: object) -> OverrideValidationError:
            logger.warning(
                "tenant_override_rejected",
                tenant_id=tenant_id,
                policy_id=base.id,
                code=code,
            )
            return OverrideValidationError(
                message,
                code=code,
                tenant_id=tenant_id,
                policy_id=base.id,
                details=dict(details),
            )

        if not base.tenant_overridable:
            raise reject("Policy does not allow tenant overrides", "not_overridable")

        if retention_days is None and grace_period_days is None:
            raise reject("Override must set retention_days or grace_period_days", "empty_override")

        if retention_days is not None:
            if retention_days < base.min_retention_days:
                raise reject(
                    f"Retention days {retention_days} below regulatory minimum "
                    f"{base.min_retention_days}",
                    "below_minimum",
                    min_days=base.min_retention_days,
                    legal_basis=base.legal_basis,
                )
            if retention_days > base.max_retention_days:
                raise reject(
                    f"Retention days {retention_days} above regulatory maximum "
                    f"{base.max_retention_days}",
                    "above_maximum",
                    max_days=base.max_retention_days,
                )

        if grace_period_days is not None and grace_period_days < 0:
            raise reject("Grace period cannot be negative", "invalid_grace_period")
