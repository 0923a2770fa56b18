"""
Occupational-health referral workflow state machine.

**State machine:**

    SUBMITTED -> IN_PROGRESS -> REPORT_RECEIVED -> CLOSED

Closing is permitted from every non-terminal state, so a referral can be
withdrawn at any point.  ``CLOSED`` is terminal.

The machine holds no state.  ``transition()`` validates a requested move
and returns the target; reading the current status and writing the new one
atomically is the caller's job (see ``GovernanceFacade.advance_referral``).
"""

from __future__ import annotations

from types import MappingProxyType
from typing import Mapping

from absencegov.errors import InvalidTransitionError
from absencegov.models import ReferralStatus


# ---------------------------------------------------------------------------
# Valid state transitions
# ---------------------------------------------------------------------------

VALID_REFERRAL_TRANSITIONS: Mapping[ReferralStatus, frozenset[ReferralStatus]] = MappingProxyType({
    ReferralStatus.SUBMITTED: frozenset({ReferralStatus.IN_PROGRESS, ReferralStatus.CLOSED}),
    ReferralStatus.IN_PROGRESS: frozenset({ReferralStatus.REPORT_RECEIVED, ReferralStatus.CLOSED}),
    ReferralStatus.REPORT_RECEIVED: frozenset({ReferralStatus.CLOSED}),
    ReferralStatus.CLOSED: frozenset(),  # terminal state
})

REFERRAL_STATUS_LABELS: Mapping[ReferralStatus, str] = MappingProxyType({
    ReferralStatus.SUBMITTED: "Submitted",
    ReferralStatus.IN_PROGRESS: "In Progress",
    ReferralStatus.REPORT_RECEIVED: "Report Received",
    ReferralStatus.CLOSED: "Closed",
})


def validate_transition_table(
    table: Mapping[ReferralStatus, frozenset[ReferralStatus]],
) -> None:
    """Reject a malformed transition table.

    Every status must have an entry, no status may point at itself, every
    edge must land on a known status, and ``CLOSED`` must have no outgoing
    edges.

    Raises:
        ValueError: If the table is malformed.
    """
    missing = set(ReferralStatus) - set(table)
    if missing:
        raise ValueError(
            f"Transition table is missing statuses: {sorted(s.value for s in missing)}"
        )
    for source, targets in table.items():
        if source in targets:
            raise ValueError(f"Transition table has a self-loop on {source.value}")
        unknown = set(targets) - set(ReferralStatus)
        if unknown:
            raise ValueError(f"Transition table has unknown targets from {source.value}: {unknown}")
    if table[ReferralStatus.CLOSED]:
        raise ValueError(
            "Transition table must keep CLOSED terminal, got edges to "
            f"{sorted(s.value for s in table[ReferralStatus.CLOSED])}"
        )


validate_transition_table(VALID_REFERRAL_TRANSITIONS)


def _checked(
    table: Mapping[ReferralStatus, frozenset[ReferralStatus]],
) -> Mapping[ReferralStatus, frozenset[ReferralStatus]]:
    # The built-in table was validated at import; deployment tables are
    # validated on every use.
    if table is not VALID_REFERRAL_TRANSITIONS:
        validate_transition_table(table)
    return table


def available_transitions(
    current: ReferralStatus,
    table: Mapping[ReferralStatus, frozenset[ReferralStatus]] = VALID_REFERRAL_TRANSITIONS,
) -> list[ReferralStatus]:
    """Return the statuses reachable from ``current``, in declaration order."""
    targets = _checked(table)[current]
    return [s for s in ReferralStatus if s in targets]


def is_terminal(
    status: ReferralStatus,
    table: Mapping[ReferralStatus, frozenset[ReferralStatus]] = VALID_REFERRAL_TRANSITIONS,
) -> bool:
    return not _checked(table)[status]


def transition(
    current: ReferralStatus,
    target: ReferralStatus,
    table: Mapping[ReferralStatus, frozenset[ReferralStatus]] = VALID_REFERRAL_TRANSITIONS,
) -> ReferralStatus:
    """Validate a referral status change and return the new status.

    Raises:
        ValueError: If a caller-supplied ``table`` is malformed.
        InvalidTransitionError: If ``target`` is not an outgoing edge of
            ``current``.
    """
    allowed = _checked(table)[current]
    if target not in allowed:
        raise InvalidTransitionError(
            f"Cannot transition referral from {current.value} to {target.value}. "
            f"Allowed transitions: {[s.value for s in available_transitions(current, table)]}"
        )
    return target
