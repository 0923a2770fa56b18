"""
Core data models for the Absence Case Governance Engine.

Every record here is a snapshot handed in by the calling layer.  The engine
never persists them; mutating operations return an updated copy with the
``version`` incremented so the persistence layer can condition its write
on the version it originally read.
"""

from __future__ import annotations

import enum
import uuid
from datetime import date, datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------

class Role(str, enum.Enum):
    """Organisational roles.  Precedence lives in ``absencegov.roles``."""

    PLATFORM_ADMIN = "PLATFORM_ADMIN"
    ORG_ADMIN = "ORG_ADMIN"
    HR = "HR"
    MANAGER = "MANAGER"
    EMPLOYEE = "EMPLOYEE"


class ReferralStatus(str, enum.Enum):
    """Occupational-health referral lifecycle.  ``CLOSED`` is terminal."""

    SUBMITTED = "SUBMITTED"
    IN_PROGRESS = "IN_PROGRESS"
    REPORT_RECEIVED = "REPORT_RECEIVED"
    CLOSED = "CLOSED"


class ReferralUrgency(str, enum.Enum):
    STANDARD = "STANDARD"
    URGENT = "URGENT"


class AbsenceType(str, enum.Enum):
    MUSCULOSKELETAL = "musculoskeletal"
    MENTAL_HEALTH = "mental_health"
    RESPIRATORY = "respiratory"
    SURGICAL = "surgical"
    OTHER = "other"


class SicknessState(str, enum.Enum):
    """Lifecycle states of a sickness case."""

    REPORTED = "REPORTED"
    TRACKING = "TRACKING"
    FIT_NOTE_RECEIVED = "FIT_NOTE_RECEIVED"
    RTW_SCHEDULED = "RTW_SCHEDULED"
    RTW_COMPLETED = "RTW_COMPLETED"
    CLOSED = "CLOSED"


class SicknessAction(str, enum.Enum):
    """Actions that move a sickness case between states."""

    ACKNOWLEDGE = "acknowledge"
    RECEIVE_FIT_NOTE = "receive_fit_note"
    SCHEDULE_RTW = "schedule_rtw"
    COMPLETE_RTW = "complete_rtw"
    CLOSE_CASE = "close_case"
    REOPEN = "reopen"


class MilestoneStatus(str, enum.Enum):
    """``PENDING`` is initial; ``COMPLETED`` and ``SKIPPED`` are terminal."""

    PENDING = "PENDING"
    COMPLETED = "COMPLETED"
    SKIPPED = "SKIPPED"


class RiskTier(str, enum.Enum):
    """Display classification of a Bradford Factor score.

    The numeric score stays authoritative for any comparison; the tier is
    a badge for dashboards and triggers.
    """

    GREEN = "GREEN"
    AMBER = "AMBER"
    ORANGE = "ORANGE"
    RED = "RED"


# ---------------------------------------------------------------------------
# Data models
# ---------------------------------------------------------------------------

class User(BaseModel):
    """An authenticated actor as resolved by the session layer."""

    user_id: str = Field(
        default_factory=lambda: str(uuid.uuid4()),
        description="Unique identifier for the user.",
    )
    email: str = Field(
        ...,
        min_length=3,
        description="Login email; compared case-insensitively for super-admin checks.",
    )
    roles: frozenset[Role] = Field(
        default_factory=frozenset,
        description="Roles held in the current organisation (may be empty).",
    )


class Referral(BaseModel):
    """An occupational-health referral attached to a sickness case."""

    referral_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    org_id: str = Field(..., min_length=1)
    case_id: str = Field(..., min_length=1)
    urgency: ReferralUrgency = Field(
        default=ReferralUrgency.STANDARD,
        description="Set at creation and never changed by the engine.",
    )
    status: ReferralStatus = Field(default=ReferralStatus.SUBMITTED)
    version: int = Field(
        default=0,
        ge=0,
        description="Optimistic-concurrency token; incremented on every accepted write.",
    )


class SicknessCase(BaseModel):
    """A single absence spell reported for an employee."""

    case_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    org_id: str = Field(..., min_length=1)
    employee_id: str = Field(..., min_length=1)
    absence_type: AbsenceType = Field(default=AbsenceType.OTHER)
    absence_start_date: date = Field(...)
    absence_end_date: Optional[date] = Field(
        default=None,
        description="Open-ended while the employee is still absent.",
    )
    working_days_lost: Optional[int] = Field(
        default=None,
        ge=0,
        description="Working days lost once known; ``None`` for ongoing cases.",
    )
    status: SicknessState = Field(default=SicknessState.REPORTED)
    version: int = Field(default=0, ge=0)

    @model_validator(mode="after")
    def end_not_before_start(self) -> "SicknessCase":
        if self.absence_end_date is not None and self.absence_end_date < self.absence_start_date:
            raise ValueError(
                f"absence_end_date ({self.absence_end_date}) must not precede "
                f"absence_start_date ({self.absence_start_date})"
            )
        return self


class MilestoneDefinition(BaseModel):
    """A checkpoint on a case timeline, anchored to the absence start."""

    model_config = ConfigDict(frozen=True)

    key: str = Field(..., min_length=1, description="Stable key, e.g. 'DAY_7'.")
    label: str = Field(..., min_length=1)
    day_offset: int = Field(..., ge=0)
    description: str = Field(default="")
    is_active: bool = Field(default=True)


class MilestoneInstance(BaseModel):
    """A milestone as tracked against one sickness case."""

    milestone_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    case_id: str = Field(..., min_length=1)
    org_id: str = Field(..., min_length=1)
    milestone_key: str = Field(..., min_length=1)
    status: MilestoneStatus = Field(default=MilestoneStatus.PENDING)
    notes: str = Field(
        default="",
        description="Completion notes or, for a skipped milestone, the skip reason.",
    )
    resolved_by: Optional[str] = Field(default=None)
    resolved_at: Optional[datetime] = Field(default=None)
    version: int = Field(default=0, ge=0)
