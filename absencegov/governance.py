"""
Governance Facade -- the entry point the calling layer uses.

The facade composes the pieces into request-scoped decisions:

1. **Authorize** the actor (super-admin capability first, then the
   permissions granted by assigned roles).
2. **Check the snapshot** against the version the caller read
   (optimistic concurrency).
3. **Validate and apply** the change through the referral or case state
   machine, or the milestone engine.
4. **Audit** the outcome, accepted or denied.

It performs no I/O.  Each mutating call returns an updated copy whose
``version`` is one higher than the snapshot's; the persistence layer must
write it conditionally on the old version and raise
``ConcurrentModificationError`` if that condition fails.

**Super-admin scope:**  a super admin holds every permission and clears
every precedence gate.  The bypass never relaxes state-machine validity,
milestone resolution state, or the skip-reason requirement.
"""

from __future__ import annotations

import logging
from datetime import date, datetime
from typing import Iterable, Optional, Protocol

from absencegov import rbac, referral, roles, sickness
from absencegov.audit import AuditEntry, AuditEventType, AuditLog
from absencegov.bradford import BradfordScore, aggregate_absences, calculate_score
from absencegov.config import GovernancePolicy
from absencegov.errors import (
    ConcurrentModificationError,
    InvalidInputError,
    OrgMismatchError,
    UnauthorizedError,
)
from absencegov.milestones import MilestoneEngine, MilestoneResult
from absencegov.models import (
    MilestoneInstance,
    Referral,
    ReferralStatus,
    Role,
    SicknessAction,
    SicknessCase,
    User,
)
from absencegov.roles import SuperAdminCheck, highest_role

logger = logging.getLogger(__name__)


class _Versioned(Protocol):
    version: int


def ensure_unchanged(entity: _Versioned, expected_version: Optional[int]) -> None:
    """Fail if the snapshot no longer carries the version the caller read.

    ``expected_version=None`` skips the check, for callers that hold the
    row lock themselves.

    Raises:
        ConcurrentModificationError: On a version mismatch.
    """
    if expected_version is not None and entity.version != expected_version:
        raise ConcurrentModificationError(
            f"{type(entity).__name__} changed since it was read: "
            f"expected version {expected_version}, found {entity.version}."
        )


class GovernanceFacade:
    """Authorizes and applies governance decisions for one organisation."""

    def __init__(
        self,
        policy: GovernancePolicy,
        audit_log: AuditLog,
        is_super_admin: Optional[SuperAdminCheck] = None,
    ) -> None:
        self._policy = policy
        self._audit_log = audit_log
        self._is_super_admin = is_super_admin or policy.super_admin_check()
        self._milestones = MilestoneEngine(
            transitions=policy.milestone_transitions,
            capabilities=policy.milestone_capabilities,
            default_capability=policy.default_milestone_capability,
            authorizer=self.is_authorized,
            known_keys=[m.key for m in policy.milestone_definitions],
        )

    @property
    def policy(self) -> GovernancePolicy:
        return self._policy

    @property
    def milestones(self) -> MilestoneEngine:
        return self._milestones

    # -- authorization --

    def is_super_admin(self, user: User) -> bool:
        return self._is_super_admin(user)

    def effective_role(self, user: User) -> Optional[Role]:
        """Highest-precedence assigned role; ignores super-admin status."""
        return highest_role(user.roles, self._policy.role_precedence)

    def is_authorized(self, user: User, permission: str) -> bool:
        if self._is_super_admin(user):
            return True
        return rbac.check_permission(user.roles, permission)

    def has_authority(self, user: User, minimum_role: Role) -> bool:
        """Whether the user's effective role reaches ``minimum_role``."""
        return roles.has_authority(
            user, minimum_role, self._policy.role_precedence, self._is_super_admin,
        )

    def authorize(self, user: User, permission: str, target_entity: str = "") -> None:
        """Raise ``UnauthorizedError`` (and audit the denial) unless permitted."""
        if self.is_authorized(user, permission):
            return
        self._deny(user, permission, target_entity)
        raise UnauthorizedError(
            f"User '{user.user_id}' is not permitted to perform '{permission}'."
        )

    def require_authority(self, user: User, minimum_role: Role, target_entity: str = "") -> None:
        """Raise ``UnauthorizedError`` unless the user's authority reaches ``minimum_role``."""
        if self.has_authority(user, minimum_role):
            return
        self._deny(user, f"role>={minimum_role.value}", target_entity)
        raise UnauthorizedError(
            f"User '{user.user_id}' needs at least {minimum_role.value} authority."
        )

    # -- referrals --

    def advance_referral(
        self,
        user: User,
        current: Referral,
        target: ReferralStatus,
        expected_version: Optional[int] = None,
    ) -> Referral:
        """Move a referral to ``target`` and return the updated copy.

        Raises:
            OrgMismatchError: If the referral belongs to another organisation.
            UnauthorizedError: If the user may not manage referrals.
            ConcurrentModificationError: If the snapshot version changed.
            InvalidTransitionError: If ``target`` is not reachable.
        """
        self._check_org(current.org_id)
        self.authorize(user, rbac.CREATE_REFERRAL, current.referral_id)
        ensure_unchanged(current, expected_version)

        new_status = referral.transition(current.status, target)
        updated = current.model_copy(update={
            "status": new_status,
            "version": current.version + 1,
        })

        self._emit_audit(
            AuditEventType.REFERRAL_TRANSITIONED,
            user,
            updated.referral_id,
            {
                "from_status": current.status.value,
                "to_status": new_status.value,
                "case_id": current.case_id,
                "urgency": current.urgency.value,
            },
        )
        logger.debug(
            "referral %s moved %s -> %s",
            current.referral_id, current.status.value, new_status.value,
        )
        return updated

    # -- sickness cases --

    def apply_case_action(
        self,
        user: User,
        case: SicknessCase,
        action: SicknessAction,
        expected_version: Optional[int] = None,
        notes: Optional[str] = None,
    ) -> SicknessCase:
        """Perform a lifecycle action on a sickness case.

        Acknowledging may be done by anyone who can report sickness; every
        other action needs ``manage:sickness_cases``.

        Raises:
            OrgMismatchError, UnauthorizedError, ConcurrentModificationError,
            InvalidTransitionError.
        """
        self._check_org(case.org_id)
        if not (
            action == SicknessAction.ACKNOWLEDGE
            and self.is_authorized(user, rbac.REPORT_SICKNESS)
        ):
            self.authorize(user, rbac.MANAGE_SICKNESS_CASES, case.case_id)
        ensure_unchanged(case, expected_version)

        new_state = sickness.apply_action(case.status, action)
        updated = case.model_copy(update={
            "status": new_state,
            "version": case.version + 1,
        })

        self._emit_audit(
            AuditEventType.CASE_TRANSITIONED,
            user,
            case.case_id,
            {
                "from_status": case.status.value,
                "to_status": new_state.value,
                "action": action.value,
                "notes": "(provided)" if notes else None,
            },
        )
        logger.debug(
            "case %s moved %s -> %s via %s",
            case.case_id, case.status.value, new_state.value, action.value,
        )
        return updated

    def available_case_actions(self, user: User, case: SicknessCase) -> list[SicknessAction]:
        """Actions valid from the case's state that this user may perform."""
        manage = self.is_authorized(user, rbac.MANAGE_SICKNESS_CASES)
        report = self.is_authorized(user, rbac.REPORT_SICKNESS)
        return [
            action
            for action in sickness.available_actions(case.status)
            if manage or (action == SicknessAction.ACKNOWLEDGE and report)
        ]

    def is_long_term(self, case: SicknessCase, as_of: date) -> bool:
        """Whether the case has crossed this organisation's long-term threshold."""
        self._check_org(case.org_id)
        return sickness.is_long_term(case, as_of, self._policy.long_term_days)

    # -- milestones --

    def complete_milestone(
        self,
        user: User,
        milestone: MilestoneInstance,
        notes: Optional[str] = None,
        expected_version: Optional[int] = None,
    ) -> MilestoneResult:
        """Complete a milestone; the result may propose a case action.

        The proposed action is not applied.  Pass it to
        ``apply_case_action()`` if the caller decides to advance the case.

        Raises:
            OrgMismatchError, UnauthorizedError, ConcurrentModificationError,
            AlreadyResolvedError.
        """
        self._check_org(milestone.org_id)
        self._authorize_milestone(user, milestone)
        ensure_unchanged(milestone, expected_version)
        result = self._milestones.complete(milestone, user, notes)

        self._emit_audit(
            AuditEventType.MILESTONE_COMPLETED,
            user,
            milestone.milestone_id,
            {
                "case_id": milestone.case_id,
                "milestone_key": milestone.milestone_key,
                "proposed_action": result.proposed_action.value if result.proposed_action else None,
                "notes": "(provided)" if notes else None,
            },
        )
        return result

    def skip_milestone(
        self,
        user: User,
        milestone: MilestoneInstance,
        reason: str,
        expected_version: Optional[int] = None,
    ) -> MilestoneResult:
        """Skip a milestone with a mandatory reason.

        Raises:
            OrgMismatchError, UnauthorizedError, ConcurrentModificationError,
            AlreadyResolvedError, ReasonRequiredError.
        """
        self._check_org(milestone.org_id)
        self._authorize_milestone(user, milestone)
        ensure_unchanged(milestone, expected_version)
        result = self._milestones.skip(milestone, user, reason)

        self._emit_audit(
            AuditEventType.MILESTONE_SKIPPED,
            user,
            milestone.milestone_id,
            {
                "case_id": milestone.case_id,
                "milestone_key": milestone.milestone_key,
                "reason": "(provided)",
            },
        )
        return result

    # -- risk scoring --

    def score(self, occurrences: int, total_days: int) -> BradfordScore:
        """Score pre-aggregated counts with this organisation's thresholds."""
        return calculate_score(occurrences, total_days, self._policy.risk_thresholds)

    def assess_absence_risk(
        self,
        user: User,
        employee_id: str,
        cases: Iterable[SicknessCase],
        as_of: date,
    ) -> BradfordScore:
        """Aggregate an employee's cases over the lookback window and score them.

        Requires ``view:triggers``.  Cases from another organisation raise
        ``OrgMismatchError``; cases for another employee raise
        ``InvalidInputError``.  Neither is silently dropped.
        """
        self.authorize(user, rbac.VIEW_TRIGGERS, employee_id)
        cases = list(cases)
        for case in cases:
            self._check_org(case.org_id)
            if case.employee_id != employee_id:
                raise InvalidInputError(
                    f"Case {case.case_id} belongs to employee '{case.employee_id}', "
                    f"not '{employee_id}'."
                )

        occurrences, total_days = aggregate_absences(
            cases, as_of, self._policy.bradford_lookback_weeks,
        )
        result = self.score(occurrences, total_days)

        self._emit_audit(
            AuditEventType.RISK_ASSESSED,
            user,
            employee_id,
            {
                "score": result.value,
                "tier": result.tier.value,
                "occurrences": occurrences,
                "total_days": total_days,
                "as_of": as_of.isoformat(),
            },
        )
        return result

    # -- audit --

    def export_audit(
        self,
        user: User,
        time_start: Optional[datetime] = None,
        time_end: Optional[datetime] = None,
    ) -> dict:
        """Export this organisation's redacted audit trail.

        Requires ``view:audit_log``.  The export itself is recorded after
        the snapshot is taken, so it appears in the next export.
        """
        self.authorize(user, rbac.VIEW_AUDIT_LOG, self._policy.org_id)
        export = self._audit_log.export_for_review(self._policy.org_id, time_start, time_end)
        self._emit_audit(
            AuditEventType.AUDIT_EXPORTED,
            user,
            self._policy.org_id,
            {"entry_count": export["export_metadata"]["entry_count"]},
        )
        return export

    # -- helpers --

    def _check_org(self, org_id: str) -> None:
        if org_id != self._policy.org_id:
            raise OrgMismatchError(
                f"Record org_id '{org_id}' does not match policy org_id "
                f"'{self._policy.org_id}'."
            )

    def _authorize_milestone(self, user: User, milestone: MilestoneInstance) -> None:
        self.authorize(
            user,
            self._milestones.required_capability(milestone.milestone_key),
            milestone.milestone_id,
        )

    def _actor_role(self, user: User) -> str:
        if self._is_super_admin(user):
            return "SUPER_ADMIN"
        effective = self.effective_role(user)
        return effective.value if effective else "NONE"

    def _emit_audit(
        self,
        event_type: AuditEventType,
        user: User,
        target_entity: str,
        metadata: dict,
    ) -> None:
        self._audit_log.append(AuditEntry(
            org_id=self._policy.org_id,
            actor_id=user.user_id,
            actor_role=self._actor_role(user),
            event_type=event_type,
            target_entity=target_entity,
            metadata=metadata,
        ))

    def _deny(self, user: User, permission: str, target_entity: str) -> None:
        logger.warning(
            "denied %s to user %s on %s", permission, user.user_id, target_entity or "-",
        )
        self._emit_audit(
            AuditEventType.AUTHORIZATION_DENIED,
            user,
            target_entity,
            {"permission": permission},
        )
