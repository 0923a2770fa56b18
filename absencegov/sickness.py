"""
Sickness case lifecycle state machine.

Unlike referrals, case transitions are keyed by *action*: the caller asks
to ``acknowledge`` or ``schedule_rtw`` and the table yields the next state.

    REPORTED --acknowledge--> TRACKING
    TRACKING --receive_fit_note--> FIT_NOTE_RECEIVED
    TRACKING / FIT_NOTE_RECEIVED --schedule_rtw--> RTW_SCHEDULED
    FIT_NOTE_RECEIVED --receive_fit_note--> FIT_NOTE_RECEIVED  (renewal)
    RTW_SCHEDULED --complete_rtw--> RTW_COMPLETED
    RTW_COMPLETED --close_case--> CLOSED
    CLOSED --reopen--> TRACKING
"""

from __future__ import annotations

from datetime import date
from types import MappingProxyType
from typing import Mapping

from absencegov.errors import InvalidTransitionError
from absencegov.models import SicknessAction, SicknessCase, SicknessState


VALID_CASE_TRANSITIONS: Mapping[SicknessState, Mapping[SicknessAction, SicknessState]] = MappingProxyType({
    SicknessState.REPORTED: MappingProxyType({
        SicknessAction.ACKNOWLEDGE: SicknessState.TRACKING,
    }),
    SicknessState.TRACKING: MappingProxyType({
        SicknessAction.RECEIVE_FIT_NOTE: SicknessState.FIT_NOTE_RECEIVED,
        SicknessAction.SCHEDULE_RTW: SicknessState.RTW_SCHEDULED,
    }),
    SicknessState.FIT_NOTE_RECEIVED: MappingProxyType({
        SicknessAction.SCHEDULE_RTW: SicknessState.RTW_SCHEDULED,
        SicknessAction.RECEIVE_FIT_NOTE: SicknessState.FIT_NOTE_RECEIVED,
    }),
    SicknessState.RTW_SCHEDULED: MappingProxyType({
        SicknessAction.COMPLETE_RTW: SicknessState.RTW_COMPLETED,
    }),
    SicknessState.RTW_COMPLETED: MappingProxyType({
        SicknessAction.CLOSE_CASE: SicknessState.CLOSED,
    }),
    SicknessState.CLOSED: MappingProxyType({
        SicknessAction.REOPEN: SicknessState.TRACKING,
    }),
})

DEFAULT_LONG_TERM_DAYS = 28


def available_actions(state: SicknessState) -> list[SicknessAction]:
    """Return the actions that are valid from ``state``."""
    return list(VALID_CASE_TRANSITIONS.get(state, {}))


def apply_action(state: SicknessState, action: SicknessAction) -> SicknessState:
    """Return the state reached by performing ``action`` from ``state``.

    Raises:
        InvalidTransitionError: If ``action`` is not valid from ``state``.
    """
    transitions = VALID_CASE_TRANSITIONS.get(state, {})
    if action not in transitions:
        raise InvalidTransitionError(
            f"Cannot perform '{action.value}' when case is in '{state.value}' state. "
            f"Available actions: {[a.value for a in available_actions(state)]}"
        )
    return transitions[action]


def is_long_term(
    case: SicknessCase,
    as_of: date,
    long_term_days: int = DEFAULT_LONG_TERM_DAYS,
) -> bool:
    """Whether a case has crossed the long-term absence threshold.

    Uses recorded working days lost when available, otherwise calendar
    days elapsed since the absence started.
    """
    if case.working_days_lost is not None:
        return case.working_days_lost >= long_term_days
    return (as_of - case.absence_start_date).days >= long_term_days
