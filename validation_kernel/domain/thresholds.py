"""
Threshold policy types (``validation_kernel.domain.thresholds``).

Responsibility
--------------
Value objects describing how many authority levels a request needs,
per entity type and optionally per workspace and category, and below
which amount a request is approved without anyone signing.

Architecture position
---------------------
**Kernel domain layer** -- pure value objects.  ZERO I/O.

Invariants enforced
-------------------
* ``level_thresholds`` are three strictly increasing, non-negative
  amounts (checked when configuration is compiled and when a policy is
  saved).
* ``auto_approve_below`` is zero (off) or below the first threshold.
* The most specific scope wins: workspace and category, then workspace,
  then ``"*"`` and category, then ``"*"``.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from uuid import UUID

from validation_kernel.domain.validation import EntityType

DEFAULT_WORKSPACE_SCOPE = "*"


@dataclass(frozen=True)
class ThresholdPolicy:
    """Amount tiers mapping a request to its required authority level.

    An amount ``<= level_thresholds[0]`` needs level 1, ``<= [1]`` level
    2, ``<= [2]`` level 3, and anything above needs the owner.  A positive
    amount strictly below ``auto_approve_below`` needs nobody.

    ``policy_id`` and ``version`` are set for stored policies only.
    """

    entity_type: EntityType
    level_thresholds: tuple[Decimal, Decimal, Decimal]
    levels_without_amount: int = 1
    first_validator_level: int = 1
    workspace_id: str = DEFAULT_WORKSPACE_SCOPE
    category: str | None = None
    auto_approve_below: Decimal = Decimal("0")
    unit: str = "amount"
    description: str | None = None
    policy_id: UUID | None = None
    version: int | None = None
    created_by: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def policy_key(self) -> str:
        key = f"{self.workspace_id}/{self.entity_type.value}"
        return f"{key}/{self.category}" if self.category else key

    @property
    def auto_approves(self) -> bool:
        return self.auto_approve_below > 0


@dataclass(frozen=True)
class ThresholdResolution:
    """Result of resolving a request's authority requirements."""

    required_level: int
    first_validator_level: int
    policy_key: str | None
    auto_approve: bool = False
    auto_approve_below: Decimal | None = None
    policy_version: int | None = None


@dataclass(frozen=True)
class PolicyCheck:
    """Consistency report for the stored policies of one workspace."""

    workspace_id: str
    checked: int
    errors: tuple[str, ...] = ()

    @property
    def valid(self) -> bool:
        return not self.errors


@dataclass(frozen=True)
class ThresholdPolicySet:
    """An ordered collection of threshold policies.

    Earlier policies win over later ones with the same scope.
    """

    policies: tuple[ThresholdPolicy, ...] = ()

    def lookup(
        self,
        workspace_id: str,
        entity_type: EntityType,
        category: str | None = None,
    ) -> ThresholdPolicy | None:
        """Most specific policy for a request, or None."""
        scopes = []
        for scope_workspace in (workspace_id, DEFAULT_WORKSPACE_SCOPE):
            if category:
                scopes.append((scope_workspace, category))
            scopes.append((scope_workspace, None))

        candidates = [p for p in self.policies if p.entity_type == entity_type]
        for scope in scopes:
            for policy in candidates:
                if (policy.workspace_id, policy.category) == scope:
                    return policy
        return None

    def merged_with(self, fallback: ThresholdPolicySet) -> ThresholdPolicySet:
        """This set first, then ``fallback``."""
        return ThresholdPolicySet(policies=self.policies + fallback.policies)
