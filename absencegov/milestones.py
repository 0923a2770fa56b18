"""
Case milestone engine.

A sickness case carries a timeline of milestones (Day 1, Day 7, Week 4 ...)
anchored to the absence start date.  Each milestone instance starts
PENDING and is resolved exactly once, either COMPLETED or SKIPPED.

**Milestone-to-action binding:**  some milestones correspond to a case
lifecycle action (completing DAY_7 usually means a fit note arrived).  On
completion the engine *proposes* that action; it never applies it.  The
caller decides whether to run it through ``absencegov.sickness``, which
keeps the two decisions independently authorizable.

**Human gates enforced in code:**

* A resolved milestone cannot be completed or skipped again.
* Skipping requires a non-blank reason.
* The actor must hold the capability the policy requires for the
  milestone.

Due dates are evaluated lazily by ``case_timeline()``; nothing here runs
on a schedule.
"""

from __future__ import annotations

import enum
import logging
from datetime import date, datetime, timedelta, timezone
from types import MappingProxyType
from typing import Callable, Iterable, Mapping, Optional

from absencegov import rbac
from absencegov.errors import AlreadyResolvedError, ReasonRequiredError, UnauthorizedError
from absencegov.models import (
    MilestoneDefinition,
    MilestoneInstance,
    MilestoneStatus,
    SicknessAction,
    SicknessCase,
    User,
)

logger = logging.getLogger(__name__)

Authorizer = Callable[[User, str], bool]


# ---------------------------------------------------------------------------
# Defaults
# ---------------------------------------------------------------------------

def _weekly(week: int, label: str, description: str) -> MilestoneDefinition:
    return MilestoneDefinition(
        key=f"WEEK_{week}",
        label=f"Week {week} - {label}",
        day_offset=week * 7,
        description=description,
    )


DEFAULT_MILESTONES: tuple[MilestoneDefinition, ...] = (
    MilestoneDefinition(
        key="DAY_1",
        label="Day 1 - Absence Reported",
        day_offset=1,
        description="Initial absence notification to employee, manager, and HR",
    ),
    MilestoneDefinition(
        key="DAY_3",
        label="Day 3 - GP Visit Reminder",
        day_offset=3,
        description="Remind employee about GP visit and fit note requirements",
    ),
    MilestoneDefinition(
        key="DAY_7",
        label="Day 7 - Long-Term Transition",
        day_offset=7,
        description="Case transitions to long-term; prompt for fit note upload and expected return date",
    ),
    _weekly(2, "Check-in", "Check-in prompt and fit note renewal reminder"),
    _weekly(3, "Fit Note Renewal", "Fit note renewal reminder"),
    _weekly(4, "GP/OH Report Request", "Prompt HR/manager to request GP or occupational health report"),
    _weekly(6, "Plan of Action", "Prompt creation of a Plan of Action"),
    _weekly(10, "First Evaluation", "First evaluation meeting"),
    *(
        _weekly(week, "Evaluation", "Scheduled evaluation meeting")
        for week in range(14, 51, 4)
    ),
    MilestoneDefinition(
        key="WEEK_52",
        label="Week 52 - Capability Review",
        day_offset=364,
        description="Formal capability review trigger",
    ),
)

# Sparse: most milestones propose nothing.
DEFAULT_MILESTONE_TRANSITIONS: Mapping[str, SicknessAction] = MappingProxyType({
    "DAY_1": SicknessAction.ACKNOWLEDGE,
    "DAY_7": SicknessAction.RECEIVE_FIT_NOTE,
})

DEFAULT_MILESTONE_CAPABILITY = rbac.MANAGE_SICKNESS_CASES


def permission_authorizer(user: User, permission: str) -> bool:
    """Authorize purely on the user's assigned roles."""
    return rbac.check_permission(user.roles, permission)


# ---------------------------------------------------------------------------
# Result
# ---------------------------------------------------------------------------

class MilestoneResult:
    """Outcome of resolving a milestone.

    ``proposed_action`` is a hint for the caller, present only when a
    completed milestone is bound to a case lifecycle action.
    """

    def __init__(
        self,
        milestone: MilestoneInstance,
        proposed_action: Optional[SicknessAction] = None,
    ) -> None:
        self.milestone = milestone
        self.proposed_action = proposed_action

    @property
    def status(self) -> MilestoneStatus:
        return self.milestone.status

    def __repr__(self) -> str:
        action = self.proposed_action.value if self.proposed_action else None
        return (
            f"MilestoneResult(key={self.milestone.milestone_key}, "
            f"status={self.status.value}, proposed_action={action})"
        )


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------

class MilestoneEngine:
    """Resolves milestone instances and proposes bound case actions.

    The engine is stateless; every call takes a milestone snapshot and
    returns an updated copy with ``version`` incremented.
    """

    def __init__(
        self,
        transitions: Mapping[str, SicknessAction] = DEFAULT_MILESTONE_TRANSITIONS,
        capabilities: Mapping[str, str] | None = None,
        default_capability: str = DEFAULT_MILESTONE_CAPABILITY,
        authorizer: Authorizer = permission_authorizer,
        known_keys: Optional[Iterable[str]] = None,
    ) -> None:
        """Validate the milestone maps and build the engine.

        Raises:
            ValueError: If a capability is not a known permission, a
                transition target is not a ``SicknessAction``, or (when
                ``known_keys`` is given) either map names an unknown
                milestone.
        """
        capabilities = dict(capabilities or {})
        unknown_perms = {
            k: p for k, p in capabilities.items() if p not in rbac.ALL_PERMISSIONS
        }
        if default_capability not in rbac.ALL_PERMISSIONS:
            unknown_perms["<default>"] = default_capability
        if unknown_perms:
            raise ValueError(f"Milestone capabilities use unknown permissions: {unknown_perms}")

        bad_actions = {
            k: a for k, a in transitions.items() if not isinstance(a, SicknessAction)
        }
        if bad_actions:
            raise ValueError(f"Milestone transitions must map to case actions: {bad_actions}")

        if known_keys is not None:
            known = set(known_keys)
            unknown_keys = (set(transitions) | set(capabilities)) - known
            if unknown_keys:
                raise ValueError(
                    f"Milestone maps reference unknown milestones: {sorted(unknown_keys)}"
                )

        self._transitions = MappingProxyType(dict(transitions))
        self._capabilities = MappingProxyType(capabilities)
        self._default_capability = default_capability
        self._authorizer = authorizer

    # -- helpers --

    def required_capability(self, milestone_key: str) -> str:
        return self._capabilities.get(milestone_key, self._default_capability)

    def proposed_action(self, milestone_key: str) -> Optional[SicknessAction]:
        """Return the case action bound to a milestone, or None if unmapped."""
        return self._transitions.get(milestone_key)

    def _check_pending(self, milestone: MilestoneInstance) -> None:
        if milestone.status != MilestoneStatus.PENDING:
            raise AlreadyResolvedError(
                f"Milestone {milestone.milestone_key} on case {milestone.case_id} "
                f"is already {milestone.status.value}."
            )

    def _check_authorized(self, milestone: MilestoneInstance, actor: User) -> None:
        capability = self.required_capability(milestone.milestone_key)
        if not self._authorizer(actor, capability):
            raise UnauthorizedError(
                f"User '{actor.user_id}' lacks '{capability}' required to resolve "
                f"milestone {milestone.milestone_key}."
            )

    def _resolve(
        self,
        milestone: MilestoneInstance,
        actor: User,
        status: MilestoneStatus,
        notes: str,
        at: Optional[datetime],
    ) -> MilestoneInstance:
        return milestone.model_copy(update={
            "status": status,
            "notes": notes,
            "resolved_by": actor.user_id,
            "resolved_at": at or datetime.now(timezone.utc),
            "version": milestone.version + 1,
        })

    # -- operations --

    def complete(
        self,
        milestone: MilestoneInstance,
        actor: User,
        notes: Optional[str] = None,
        at: Optional[datetime] = None,
    ) -> MilestoneResult:
        """Mark a PENDING milestone as COMPLETED.

        Returns:
            The completed milestone plus the bound case action, if any.

        Raises:
            AlreadyResolvedError: If the milestone is not PENDING.
            UnauthorizedError: If the actor lacks the required capability.
        """
        self._check_pending(milestone)
        self._check_authorized(milestone, actor)

        resolved = self._resolve(milestone, actor, MilestoneStatus.COMPLETED, notes or "", at)
        proposed = self.proposed_action(milestone.milestone_key)
        logger.info(
            "milestone %s completed on case %s by %s (proposed action: %s)",
            milestone.milestone_key,
            milestone.case_id,
            actor.user_id,
            proposed.value if proposed else None,
        )
        return MilestoneResult(resolved, proposed)

    def skip(
        self,
        milestone: MilestoneInstance,
        actor: User,
        reason: str,
        at: Optional[datetime] = None,
    ) -> MilestoneResult:
        """Mark a PENDING milestone as SKIPPED.  Never proposes an action.

        Raises:
            AlreadyResolvedError: If the milestone is not PENDING.
            ReasonRequiredError: If ``reason`` is empty or whitespace.
            UnauthorizedError: If the actor lacks the required capability.
        """
        self._check_pending(milestone)
        if not reason or not reason.strip():
            raise ReasonRequiredError(
                f"A reason is required to skip milestone {milestone.milestone_key}."
            )
        self._check_authorized(milestone, actor)

        resolved = self._resolve(milestone, actor, MilestoneStatus.SKIPPED, reason.strip(), at)
        logger.info(
            "milestone %s skipped on case %s by %s",
            milestone.milestone_key,
            milestone.case_id,
            actor.user_id,
        )
        return MilestoneResult(resolved)


# ---------------------------------------------------------------------------
# Timeline
# ---------------------------------------------------------------------------

class TimelineStatus(str, enum.Enum):
    OVERDUE = "OVERDUE"
    DUE_TODAY = "DUE_TODAY"
    UPCOMING = "UPCOMING"


class TimelineEntry:
    """A milestone placed on a specific case's calendar."""

    def __init__(
        self,
        milestone: MilestoneDefinition,
        due_date: date,
        status: TimelineStatus,
    ) -> None:
        self.milestone = milestone
        self.due_date = due_date
        self.status = status

    def to_dict(self) -> dict[str, str | int]:
        return {
            "milestone_key": self.milestone.key,
            "label": self.milestone.label,
            "due_date": self.due_date.isoformat(),
            "status": self.status.value,
            "days_since_start": self.milestone.day_offset,
        }

    def __repr__(self) -> str:
        return (
            f"TimelineEntry(key={self.milestone.key}, due={self.due_date.isoformat()}, "
            f"status={self.status.value})"
        )


def effective_milestones(
    defaults: Iterable[MilestoneDefinition] = DEFAULT_MILESTONES,
    overrides: Iterable[MilestoneDefinition] = (),
) -> list[MilestoneDefinition]:
    """Merge organisation overrides onto the defaults by key.

    Inactive milestones are dropped; the rest are sorted by day offset.
    """
    merged: dict[str, MilestoneDefinition] = {m.key: m for m in defaults}
    for override in overrides:
        merged[override.key] = override
    return sorted(
        (m for m in merged.values() if m.is_active),
        key=lambda m: m.day_offset,
    )


def case_timeline(
    case: SicknessCase,
    milestones: Iterable[MilestoneDefinition],
    today: date,
) -> list[TimelineEntry]:
    """Compute due date and status of each milestone for a case."""
    entries = []
    for milestone in milestones:
        due = case.absence_start_date + timedelta(days=milestone.day_offset)
        if due < today:
            status = TimelineStatus.OVERDUE
        elif due == today:
            status = TimelineStatus.DUE_TODAY
        else:
            status = TimelineStatus.UPCOMING
        entries.append(TimelineEntry(milestone, due, status))
    return entries


def open_milestones(
    case: SicknessCase,
    milestones: Iterable[MilestoneDefinition],
) -> list[MilestoneInstance]:
    """Create a PENDING milestone instance per active definition."""
    return [
        MilestoneInstance(case_id=case.case_id, org_id=case.org_id, milestone_key=m.key)
        for m in milestones
        if m.is_active
    ]
