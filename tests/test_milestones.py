"""
Tests for absencegov.milestones -- Case milestone engine and timeline.

Covers: completion with proposed actions, skip reasons, double resolution,
capability checks, per-milestone capability overrides, the default
timeline, organisation overrides, and due-date status.
"""

from __future__ import annotations

from datetime import date, datetime, timedelta, timezone

import pytest

from absencegov import rbac
from absencegov.errors import AlreadyResolvedError, ReasonRequiredError, UnauthorizedError
from absencegov.milestones import (
    DEFAULT_MILESTONES,
    MilestoneEngine,
    TimelineStatus,
    case_timeline,
    effective_milestones,
    open_milestones,
)
from absencegov.models import (
    MilestoneDefinition,
    MilestoneInstance,
    MilestoneStatus,
    Role,
    SicknessAction,
    SicknessCase,
    User,
)

HR_USER = User(user_id="hr_1", email="hr@example.test", roles=frozenset({Role.HR}))
MANAGER_USER = User(user_id="mgr_1", email="mgr@example.test", roles=frozenset({Role.MANAGER}))


def _make_milestone(key: str = "DAY_7", status: MilestoneStatus = MilestoneStatus.PENDING) -> MilestoneInstance:
    return MilestoneInstance(case_id="case_1", org_id="org_a", milestone_key=key, status=status)


def _make_case(start: date = date(2026, 3, 2)) -> SicknessCase:
    return SicknessCase(case_id="case_1", org_id="org_a", employee_id="emp_1", absence_start_date=start)


# ---------------------------------------------------------------------------
# 1. Completion
# ---------------------------------------------------------------------------

class TestComplete:
    def test_day_7_proposes_receive_fit_note(self):
        result = MilestoneEngine().complete(_make_milestone("DAY_7"), HR_USER)
        assert result.status == MilestoneStatus.COMPLETED
        assert result.proposed_action == SicknessAction.RECEIVE_FIT_NOTE

    def test_unmapped_milestone_proposes_nothing(self):
        result = MilestoneEngine().complete(_make_milestone("WEEK_4"), HR_USER)
        assert result.status == MilestoneStatus.COMPLETED
        assert result.proposed_action is None

    def test_completion_records_actor_and_bumps_version(self):
        at = datetime(2026, 3, 9, 10, 0, tzinfo=timezone.utc)
        milestone = _make_milestone()
        result = MilestoneEngine().complete(milestone, HR_USER, notes="Fit note seen", at=at)
        assert result.milestone.resolved_by == "hr_1"
        assert result.milestone.resolved_at == at
        assert result.milestone.notes == "Fit note seen"
        assert result.milestone.version == milestone.version + 1

    def test_input_snapshot_is_not_mutated(self):
        milestone = _make_milestone()
        MilestoneEngine().complete(milestone, HR_USER)
        assert milestone.status == MilestoneStatus.PENDING
        assert milestone.version == 0

    def test_custom_transition_map(self):
        engine = MilestoneEngine(transitions={"WEEK_10": SicknessAction.SCHEDULE_RTW})
        assert engine.complete(_make_milestone("WEEK_10"), HR_USER).proposed_action == SicknessAction.SCHEDULE_RTW
        assert engine.complete(_make_milestone("DAY_7"), HR_USER).proposed_action is None

    def test_complete_twice_rejected(self):
        engine = MilestoneEngine()
        done = engine.complete(_make_milestone(), HR_USER).milestone
        with pytest.raises(AlreadyResolvedError, match="already COMPLETED"):
            engine.complete(done, HR_USER)

    def test_complete_after_skip_rejected(self):
        with pytest.raises(AlreadyResolvedError):
            MilestoneEngine().complete(_make_milestone(status=MilestoneStatus.SKIPPED), HR_USER)

    def test_actor_without_capability_rejected(self):
        with pytest.raises(UnauthorizedError, match="manage:sickness_cases"):
            MilestoneEngine().complete(_make_milestone(), MANAGER_USER)

    def test_per_milestone_capability_override(self):
        engine = MilestoneEngine(capabilities={"WEEK_2": rbac.SCHEDULE_RTW})
        assert engine.required_capability("WEEK_2") == rbac.SCHEDULE_RTW
        assert engine.complete(_make_milestone("WEEK_2"), MANAGER_USER).status == MilestoneStatus.COMPLETED
        with pytest.raises(UnauthorizedError):
            engine.complete(_make_milestone("WEEK_3"), MANAGER_USER)

    def test_injected_authorizer(self):
        engine = MilestoneEngine(authorizer=lambda user, permission: user.user_id == "mgr_1")
        assert engine.complete(_make_milestone(), MANAGER_USER).status == MilestoneStatus.COMPLETED
        with pytest.raises(UnauthorizedError):
            engine.complete(_make_milestone(), HR_USER)


# ---------------------------------------------------------------------------
# 2. Skipping
# ---------------------------------------------------------------------------

class TestSkip:
    def test_skip_with_reason(self):
        result = MilestoneEngine().skip(_make_milestone(), HR_USER, reason="  GP visit already done  ")
        assert result.status == MilestoneStatus.SKIPPED
        assert result.milestone.notes == "GP visit already done"

    def test_skip_never_proposes_action(self):
        result = MilestoneEngine().skip(_make_milestone("DAY_7"), HR_USER, reason="Not needed")
        assert result.proposed_action is None

    @pytest.mark.parametrize("reason", ["", "   ", "\n\t"])
    def test_blank_reason_rejected(self, reason):
        with pytest.raises(ReasonRequiredError):
            MilestoneEngine().skip(_make_milestone(), HR_USER, reason=reason)

    def test_skip_twice_rejected(self):
        engine = MilestoneEngine()
        skipped = engine.skip(_make_milestone(), HR_USER, reason="n/a").milestone
        with pytest.raises(AlreadyResolvedError):
            engine.skip(skipped, HR_USER, reason="again")

    def test_skip_requires_capability(self):
        with pytest.raises(UnauthorizedError):
            MilestoneEngine().skip(_make_milestone(), MANAGER_USER, reason="n/a")


# ---------------------------------------------------------------------------
# 3. Engine construction
# ---------------------------------------------------------------------------

class TestEngineConstruction:
    def test_unknown_capability_rejected(self):
        with pytest.raises(ValueError, match="unknown permissions"):
            MilestoneEngine(capabilities={"WEEK_2": "do:anything"})

    def test_unknown_default_capability_rejected(self):
        with pytest.raises(ValueError, match="unknown permissions"):
            MilestoneEngine(default_capability="x:y")

    def test_transition_to_non_action_rejected(self):
        with pytest.raises(ValueError, match="case actions"):
            MilestoneEngine(transitions={"DAY_7": "teleport"})

    def test_unknown_keys_rejected_when_keys_known(self):
        keys = [m.key for m in DEFAULT_MILESTONES]
        with pytest.raises(ValueError, match="unknown milestones"):
            MilestoneEngine(transitions={"DAY_99": SicknessAction.ACKNOWLEDGE}, known_keys=keys)
        with pytest.raises(ValueError, match="unknown milestones"):
            MilestoneEngine(capabilities={"NOPE": rbac.SCHEDULE_RTW}, known_keys=keys)

    def test_engine_keeps_its_own_maps(self):
        transitions = {"WEEK_10": SicknessAction.SCHEDULE_RTW}
        engine = MilestoneEngine(transitions=transitions)
        transitions["WEEK_10"] = SicknessAction.CLOSE_CASE
        assert engine.proposed_action("WEEK_10") == SicknessAction.SCHEDULE_RTW


# ---------------------------------------------------------------------------
# 4. Timeline
# ---------------------------------------------------------------------------

class TestTimeline:
    def test_default_milestones_sorted_and_unique(self):
        offsets = [m.day_offset for m in DEFAULT_MILESTONES]
        keys = [m.key for m in DEFAULT_MILESTONES]
        assert offsets == sorted(offsets)
        assert len(set(keys)) == len(keys)
        assert keys[0] == "DAY_1"
        assert keys[-1] == "WEEK_52"
        assert DEFAULT_MILESTONES[-1].day_offset == 364

    def test_override_replaces_by_key(self):
        override = MilestoneDefinition(key="DAY_3", label="Day 3 - Call", day_offset=2)
        merged = effective_milestones(overrides=[override])
        day_3 = next(m for m in merged if m.key == "DAY_3")
        assert day_3.day_offset == 2
        assert len(merged) == len(DEFAULT_MILESTONES)

    def test_inactive_milestones_dropped(self):
        override = MilestoneDefinition(key="WEEK_52", label="Off", day_offset=364, is_active=False)
        merged = effective_milestones(overrides=[override])
        assert "WEEK_52" not in [m.key for m in merged]

    def test_new_milestone_added_in_offset_order(self):
        extra = MilestoneDefinition(key="DAY_5", label="Day 5 - Call", day_offset=5)
        keys = [m.key for m in effective_milestones(overrides=[extra])]
        assert keys.index("DAY_3") < keys.index("DAY_5") < keys.index("DAY_7")

    def test_case_timeline_statuses(self):
        case = _make_case(start=date(2026, 3, 2))
        today = date(2026, 3, 9)
        entries = {e.milestone.key: e for e in case_timeline(case, DEFAULT_MILESTONES, today)}
        assert entries["DAY_1"].status == TimelineStatus.OVERDUE
        assert entries["DAY_7"].status == TimelineStatus.DUE_TODAY
        assert entries["DAY_7"].due_date == today
        assert entries["WEEK_2"].status == TimelineStatus.UPCOMING
        assert entries["WEEK_52"].due_date == case.absence_start_date + timedelta(days=364)

    def test_timeline_entry_to_dict(self):
        entry = case_timeline(_make_case(), DEFAULT_MILESTONES[:1], date(2026, 3, 2))[0]
        assert entry.to_dict() == {
            "milestone_key": "DAY_1",
            "label": "Day 1 - Absence Reported",
            "due_date": "2026-03-03",
            "status": "UPCOMING",
            "days_since_start": 1,
        }

    def test_open_milestones_are_pending(self):
        case = _make_case()
        instances = open_milestones(case, DEFAULT_MILESTONES)
        assert len(instances) == len(DEFAULT_MILESTONES)
        assert all(m.status == MilestoneStatus.PENDING for m in instances)
        assert all(m.case_id == case.case_id and m.org_id == case.org_id for m in instances)
