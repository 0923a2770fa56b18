"""
Synthetic Scenario: Sickness Absence Case Walkthrough
=====================================================

This script walks one sickness absence through the absencegov governance
engine using entirely synthetic data.  No real employee data is used.

Steps demonstrated:
  1. Load organisation policy from YAML
  2. Resolve effective roles and super-admin authority
  3. Acknowledge a reported sickness case
  4. Complete and skip milestones, applying the proposed case action
  5. Advance an occupational-health referral
  6. Score absence risk with the Bradford Factor
  7. Export the audit log for review

Usage:
    python -m examples.synthetic_scenario
    # or: python examples/synthetic_scenario.py
"""

from __future__ import annotations

import json
import sys
from datetime import date, timedelta
from pathlib import Path

# Ensure the project root is on the path
sys.path.insert(0, str(Path(__file__).parent.parent))

from absencegov.audit import AuditLog
from absencegov.config import GovernancePolicy, PolicyRegistry, load_policies_from_yaml
from absencegov.errors import GovernanceError
from absencegov.governance import GovernanceFacade
from absencegov.milestones import case_timeline, effective_milestones, open_milestones
from absencegov.models import (
    AbsenceType,
    Referral,
    ReferralStatus,
    ReferralUrgency,
    Role,
    SicknessAction,
    SicknessCase,
    SicknessState,
    User,
)


def _banner(text: str) -> None:
    print(f"\n{'=' * 60}")
    print(f"  {text}")
    print(f"{'=' * 60}\n")


def main() -> None:
    _banner("absencegov Synthetic Scenario: Sickness Absence Case")
    print("All data in this demo is entirely synthetic.\n")

    # ------------------------------------------------------------------
    # Step 1: Load organisation policy
    # ------------------------------------------------------------------
    _banner("Step 1: Load Organisation Policy")

    sample_yaml = Path(__file__).parent / "governance_policies.yaml"
    if sample_yaml.exists():
        policy = load_policies_from_yaml(sample_yaml)[0]
        print(f"Loaded policy: {policy.org_name} (org_id: {policy.org_id})")
    else:
        policy = GovernancePolicy(
            org_id="demo_org",
            org_name="Demo Organisation",
            super_admin_emails=["platform-ops@demo.example"],
        )
        print(f"Created inline policy: {policy.org_name}")

    registry = PolicyRegistry()
    registry.register(policy)
    print(f"Policy registered. Org IDs in registry: {registry.list_orgs()}")

    audit_log = AuditLog()
    facade = GovernanceFacade(registry.get(policy.org_id), audit_log)

    # ------------------------------------------------------------------
    # Step 2: Actors
    # ------------------------------------------------------------------
    _banner("Step 2: Resolve Actors")

    employee = User(email="employee.a@example.test", roles=frozenset({Role.EMPLOYEE}))
    line_manager = User(
        email="manager.b@example.test",
        roles=frozenset({Role.EMPLOYEE, Role.MANAGER}),
    )
    hr = User(email="hr.c@example.test", roles=frozenset({Role.HR}))
    platform_ops = User(email=(policy.super_admin_emails or ["nobody@example.test"])[0])

    for label, user in (
        ("Employee", employee),
        ("Line manager", line_manager),
        ("HR", hr),
        ("Platform ops (no roles)", platform_ops),
    ):
        role = facade.effective_role(user)
        print(f"{label}: effective role={role.value if role else None}, "
              f"super admin={facade.is_super_admin(user)}, "
              f"HR authority={facade.has_authority(user, Role.HR)}")

    # ------------------------------------------------------------------
    # Step 3: Report and acknowledge
    # ------------------------------------------------------------------
    _banner("Step 3: Report and Acknowledge Case")

    today = date(2026, 3, 16)
    case = SicknessCase(
        org_id=policy.org_id,
        employee_id="emp_synthetic_001",
        absence_type=AbsenceType.MUSCULOSKELETAL,
        absence_start_date=today - timedelta(days=8),
    )
    print(f"Case reported: {case.case_id}  state={case.status.value}  version={case.version}")

    case = facade.apply_case_action(employee, case, SicknessAction.ACKNOWLEDGE, expected_version=0)
    print(f"Acknowledged by employee. state={case.status.value}  version={case.version}")

    try:
        facade.apply_case_action(employee, case, SicknessAction.SCHEDULE_RTW)
    except GovernanceError as e:
        print(f"Employee cannot schedule RTW: [{e.kind}] {e}")

    print(f"Actions available to HR: {[a.value for a in facade.available_case_actions(hr, case)]}")
    print(f"Long-term absence: {facade.is_long_term(case, today)}")

    # ------------------------------------------------------------------
    # Step 4: Milestones
    # ------------------------------------------------------------------
    _banner("Step 4: Milestones")

    definitions = effective_milestones(overrides=policy.milestone_definitions)
    for entry in case_timeline(case, definitions, today)[:5]:
        print(f"  {entry.milestone.key:<8} due {entry.due_date}  {entry.status.value}")

    instances = {m.milestone_key: m for m in open_milestones(case, definitions)}

    result = facade.complete_milestone(hr, instances["DAY_7"], notes="Fit note uploaded")
    print(f"\nDAY_7 completed: {result}")
    if result.proposed_action is not None:
        case = facade.apply_case_action(hr, case, result.proposed_action, expected_version=case.version)
        print(f"Applied proposed action. state={case.status.value}  version={case.version}")

    try:
        facade.skip_milestone(hr, instances["DAY_3"], reason="   ")
    except GovernanceError as e:
        print(f"Skip without reason rejected: [{e.kind}]")

    skipped = facade.skip_milestone(hr, instances["DAY_3"], reason="Employee visited GP on day 2")
    print(f"DAY_3 skipped: {skipped}")

    try:
        facade.complete_milestone(hr, skipped.milestone)
    except GovernanceError as e:
        print(f"Second resolution rejected: [{e.kind}]")

    # ------------------------------------------------------------------
    # Step 5: Occupational-health referral
    # ------------------------------------------------------------------
    _banner("Step 5: Occupational-Health Referral")

    referral = Referral(org_id=policy.org_id, case_id=case.case_id, urgency=ReferralUrgency.URGENT)
    print(f"Referral {referral.referral_id}: {referral.status.value}")

    referral = facade.advance_referral(line_manager, referral, ReferralStatus.IN_PROGRESS, expected_version=0)
    print(f"Advanced to {referral.status.value} (version {referral.version})")

    try:
        facade.advance_referral(line_manager, referral, ReferralStatus.SUBMITTED)
    except GovernanceError as e:
        print(f"Backwards move rejected: [{e.kind}] {e}")

    try:
        facade.advance_referral(line_manager, referral, ReferralStatus.REPORT_RECEIVED, expected_version=0)
    except GovernanceError as e:
        print(f"Stale snapshot rejected: [{e.kind}]")

    referral = facade.advance_referral(hr, referral, ReferralStatus.REPORT_RECEIVED)
    referral = facade.advance_referral(hr, referral, ReferralStatus.CLOSED)
    print(f"Final referral status: {referral.status.value} (version {referral.version})")

    # ------------------------------------------------------------------
    # Step 6: Bradford Factor
    # ------------------------------------------------------------------
    _banner("Step 6: Bradford Factor")

    history = [
        SicknessCase(
            org_id=policy.org_id,
            employee_id="emp_synthetic_001",
            absence_start_date=today - timedelta(weeks=weeks_ago),
            working_days_lost=days,
            status=SicknessState.CLOSED,
        )
        for weeks_ago, days in ((30, 2), (12, 3))
    ] + [case]
    score = facade.assess_absence_risk(line_manager, "emp_synthetic_001", history, as_of=today)
    print(f"Spells={score.occurrences}  days={score.total_days}  "
          f"score={score.value}  tier={score.tier.value}")
    print(f"Reference score for 3 spells / 10 days: {facade.score(3, 10).value}")

    # ------------------------------------------------------------------
    # Step 7: Audit export
    # ------------------------------------------------------------------
    _banner("Step 7: Audit Log Export")

    admin = User(email="admin.d@example.test", roles=frozenset({Role.ORG_ADMIN}))
    export = facade.export_audit(admin)
    print(json.dumps(export["export_metadata"], indent=2))

    valid, broken_at = audit_log.verify_chain()
    print(f"\nFull chain verification: valid={valid}, broken_at={broken_at}")

    _banner("Scenario Complete")
    print("All data was synthetic.")


if __name__ == "__main__":
    main()
