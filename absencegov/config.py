"""
Governance Policy -- Per-Organisation Configuration for absencegov.

Every tunable the engine consumes is data held on a ``GovernancePolicy``:
role precedence, the super-admin allow-list, risk-tier thresholds, the
Bradford lookback window, milestone definitions, the milestone-to-action
map, and the capability each milestone requires.  Policies are validated
when built, so a malformed map or a duplicated precedence level fails at
startup rather than on the first request that touches it.

Policies can be defined inline or loaded from YAML.
"""

from __future__ import annotations

from pathlib import Path
from types import MappingProxyType
from typing import Mapping

import yaml
from pydantic import BaseModel, ConfigDict, Field, field_serializer, field_validator, model_validator

from absencegov import rbac
from absencegov.bradford import DEFAULT_LOOKBACK_WEEKS, RiskTierThresholds
from absencegov.milestones import (
    DEFAULT_MILESTONE_CAPABILITY,
    DEFAULT_MILESTONE_TRANSITIONS,
    DEFAULT_MILESTONES,
)
from absencegov.models import MilestoneDefinition, SicknessAction
from absencegov.roles import RolePrecedence, SuperAdminCheck, allow_list_check
from absencegov.sickness import DEFAULT_LONG_TERM_DAYS


# ---------------------------------------------------------------------------
# Governance policy model
# ---------------------------------------------------------------------------

class GovernancePolicy(BaseModel):
    """Complete governance configuration for a single organisation.

    Policies are frozen once validated.  Sequences are tuples and the
    milestone maps are read-only.
    """

    model_config = ConfigDict(frozen=True)

    org_id: str = Field(
        ...,
        min_length=1,
        description="Organisation identifier; isolation key for registry lookups and audit queries.",
    )
    org_name: str = Field(..., min_length=1)
    role_precedence: RolePrecedence = Field(
        default_factory=RolePrecedence,
        description="Total, injective role -> precedence mapping.",
    )
    super_admin_emails: tuple[str, ...] = Field(
        default=(),
        description=(
            "Emails granted maximal authority regardless of assigned roles.  "
            "Empty by default; deployments supply their own list."
        ),
    )
    risk_thresholds: RiskTierThresholds = Field(default_factory=RiskTierThresholds)
    bradford_lookback_weeks: int = Field(
        default=DEFAULT_LOOKBACK_WEEKS,
        ge=1,
        description="Rolling window, in weeks, over which absence spells are counted.",
    )
    long_term_days: int = Field(
        default=DEFAULT_LONG_TERM_DAYS,
        ge=1,
        le=365,
        description="Days after which an absence is treated as long-term.",
    )
    milestone_definitions: tuple[MilestoneDefinition, ...] = Field(default=DEFAULT_MILESTONES)
    milestone_transitions: Mapping[str, SicknessAction] = Field(
        default_factory=lambda: dict(DEFAULT_MILESTONE_TRANSITIONS),
        validate_default=True,
        description="Sparse milestone key -> case action map; unmapped keys propose nothing.",
    )
    milestone_capabilities: Mapping[str, str] = Field(
        default_factory=dict,
        validate_default=True,
        description="Per-milestone permission overrides; others use default_milestone_capability.",
    )
    default_milestone_capability: str = Field(default=DEFAULT_MILESTONE_CAPABILITY)

    @field_validator("super_admin_emails")
    @classmethod
    def normalise_emails(cls, v: tuple[str, ...]) -> tuple[str, ...]:
        cleaned = tuple(e.strip().lower() for e in v)
        if any(not e for e in cleaned):
            raise ValueError("super_admin_emails must not contain blank entries")
        return cleaned

    @field_validator("default_milestone_capability")
    @classmethod
    def known_capability(cls, v: str) -> str:
        if v not in rbac.ALL_PERMISSIONS:
            raise ValueError(f"Unknown permission '{v}'")
        return v

    @field_validator("milestone_transitions", "milestone_capabilities")
    @classmethod
    def read_only_map(cls, v: Mapping) -> Mapping:
        return MappingProxyType(dict(v))

    @field_serializer("milestone_transitions", "milestone_capabilities")
    def _dump_map(self, v: Mapping) -> dict:
        return dict(v)

    @model_validator(mode="after")
    def milestone_maps_reference_known_keys(self) -> "GovernancePolicy":
        keys = [m.key for m in self.milestone_definitions]
        if len(set(keys)) != len(keys):
            raise ValueError(f"milestone_definitions contains duplicate keys: {keys}")
        known = set(keys)
        for name, mapping in (
            ("milestone_transitions", self.milestone_transitions),
            ("milestone_capabilities", self.milestone_capabilities),
        ):
            unknown = set(mapping) - known
            if unknown:
                raise ValueError(f"{name} references unknown milestones: {sorted(unknown)}")
        bad = {k: p for k, p in self.milestone_capabilities.items() if p not in rbac.ALL_PERMISSIONS}
        if bad:
            raise ValueError(f"milestone_capabilities uses unknown permissions: {bad}")
        return self

    def super_admin_check(self) -> SuperAdminCheck:
        """Return the capability check built from this policy's allow-list."""
        return allow_list_check(self.super_admin_emails)


# ---------------------------------------------------------------------------
# Default policy
# ---------------------------------------------------------------------------

DEFAULT_POLICY = GovernancePolicy(
    org_id="default",
    org_name="Default Governance Policy",
)
"""Built-in policy using the standard Bradford bands (50/200/500), a
52-week lookback, the stock milestone timeline and no super admins."""


# ---------------------------------------------------------------------------
# Policy registry (multi-tenant)
# ---------------------------------------------------------------------------

class PolicyRegistry:
    """In-memory registry of governance policies keyed by ``org_id``.

    Policies are frozen, so the registry stores and returns the instances
    it is given.
    """

    def __init__(self) -> None:
        self._policies: dict[str, GovernancePolicy] = {}

    def register(self, policy: GovernancePolicy) -> None:
        """Register a new organisation policy.

        Raises:
            ValueError: If ``org_id`` is already registered.
        """
        if policy.org_id in self._policies:
            raise ValueError(
                f"Policy for org_id '{policy.org_id}' already registered. "
                "Use update() to modify an existing policy."
            )
        self._policies[policy.org_id] = policy

    def get(self, org_id: str) -> GovernancePolicy:
        """Retrieve the policy for ``org_id``.

        Raises:
            KeyError: If no policy is registered for ``org_id``.
        """
        if org_id not in self._policies:
            raise KeyError(f"No policy registered for org_id '{org_id}'")
        return self._policies[org_id]

    def update(self, policy: GovernancePolicy) -> None:
        """Replace an existing policy.

        Raises:
            KeyError: If no policy is registered for the given ``org_id``.
        """
        if policy.org_id not in self._policies:
            raise KeyError(
                f"Cannot update: no policy registered for org_id '{policy.org_id}'"
            )
        self._policies[policy.org_id] = policy

    def list_orgs(self) -> list[str]:
        return sorted(self._policies.keys())

    def __len__(self) -> int:
        return len(self._policies)

    def __contains__(self, org_id: str) -> bool:
        return org_id in self._policies


# ---------------------------------------------------------------------------
# YAML loader
# ---------------------------------------------------------------------------

def load_policies_from_yaml(path: str | Path) -> list[GovernancePolicy]:
    """Load governance policies from a YAML file.

    The file must contain a top-level ``policies`` list; each entry is
    validated through ``GovernancePolicy``.

    Example YAML structure::

        policies:
          - org_id: "acme"
            org_name: "Acme Logistics"
            super_admin_emails: ["ops@acme.example"]
            risk_thresholds:
              amber_min: 64
              orange_min: 250
              red_min: 650

    Raises:
        FileNotFoundError: If the file does not exist.
        ValueError: If the YAML structure is invalid.
        pydantic.ValidationError: If any policy fails validation.
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Policy file not found: {path}")

    with open(path, "r") as f:
        raw = yaml.safe_load(f)

    if not isinstance(raw, dict) or "policies" not in raw:
        raise ValueError(
            "YAML file must contain a top-level 'policies' key with a list of policy objects."
        )

    policies_data = raw["policies"]
    if not isinstance(policies_data, list):
        raise ValueError("'policies' must be a list of policy objects.")

    policies: list[GovernancePolicy] = []
    for idx, entry in enumerate(policies_data):
        if not isinstance(entry, dict):
            raise ValueError(f"Policy entry at index {idx} must be a mapping.")
        policies.append(GovernancePolicy.model_validate(entry))

    return policies
