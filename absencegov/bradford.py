"""
Bradford Factor scoring.

The Bradford Factor penalises frequent short absences more heavily than a
few long ones::

    score = S * S * D

where ``S`` is the number of absence spells (occurrences) in the rolling
lookback window and ``D`` is the total days lost across those spells.

The score is mapped to a ``RiskTier`` purely for display.  Tier boundaries
are policy data (``RiskTierThresholds``), not part of the formula, so each
organisation can tune them.
"""

from __future__ import annotations

from datetime import date, timedelta
from typing import Iterable

from pydantic import BaseModel, ConfigDict, Field, model_validator

from absencegov.errors import InvalidInputError
from absencegov.models import RiskTier, SicknessCase


DEFAULT_LOOKBACK_WEEKS = 52


# ---------------------------------------------------------------------------
# Tier thresholds
# ---------------------------------------------------------------------------

class RiskTierThresholds(BaseModel):
    """Lower bounds (inclusive) of the AMBER, ORANGE and RED tiers.

    Everything below ``amber_min`` is GREEN.  The bounds must be strictly
    ascending so the four tiers partition the non-negative integers and a
    higher score never lands in a less severe tier.
    """

    model_config = ConfigDict(frozen=True)

    amber_min: int = Field(default=50, gt=0)
    orange_min: int = Field(default=200, gt=0)
    red_min: int = Field(default=500, gt=0)

    @model_validator(mode="after")
    def strictly_ascending(self) -> "RiskTierThresholds":
        if not self.amber_min < self.orange_min < self.red_min:
            raise ValueError(
                "risk thresholds must satisfy amber_min < orange_min < red_min, got "
                f"{self.amber_min}, {self.orange_min}, {self.red_min}"
            )
        return self

    def tier_for(self, value: int) -> RiskTier:
        """Map a non-negative score to its tier."""
        if value < 0:
            raise InvalidInputError(f"Bradford score must be non-negative, got {value}")
        if value >= self.red_min:
            return RiskTier.RED
        if value >= self.orange_min:
            return RiskTier.ORANGE
        if value >= self.amber_min:
            return RiskTier.AMBER
        return RiskTier.GREEN


DEFAULT_THRESHOLDS = RiskTierThresholds()


# ---------------------------------------------------------------------------
# Scoring
# ---------------------------------------------------------------------------

class BradfordScore(BaseModel):
    """A computed Bradford Factor.  ``value`` is the authoritative figure."""

    value: int = Field(..., ge=0)
    tier: RiskTier
    occurrences: int = Field(..., ge=0)
    total_days: int = Field(..., ge=0)


def calculate_score(
    occurrences: int,
    total_days: int,
    thresholds: RiskTierThresholds = DEFAULT_THRESHOLDS,
) -> BradfordScore:
    """Compute the Bradford Factor and its risk tier.

    Zero occurrences always scores 0, even when ``total_days`` is non-zero.

    Raises:
        InvalidInputError: If either count is negative or not an integer.
    """
    for name, count in (("occurrences", occurrences), ("total_days", total_days)):
        if isinstance(count, bool) or not isinstance(count, int):
            raise InvalidInputError(f"{name} must be an integer, got {count!r}")
        if count < 0:
            raise InvalidInputError(f"{name} must be non-negative, got {count}")

    value = occurrences * occurrences * total_days
    return BradfordScore(
        value=value,
        tier=thresholds.tier_for(value),
        occurrences=occurrences,
        total_days=total_days,
    )


# ---------------------------------------------------------------------------
# Aggregation helpers
# ---------------------------------------------------------------------------

def count_weekdays(start: date, end: date) -> int:
    """Count weekdays from ``start`` (inclusive) to ``end`` (exclusive).

    Any spell counts for at least one day.  Bank holidays are ignored.
    """
    total = 0
    current = start
    while current < end:
        if current.weekday() < 5:
            total += 1
        current += timedelta(days=1)
    return max(total, 1)


def aggregate_absences(
    cases: Iterable[SicknessCase],
    as_of: date,
    lookback_weeks: int = DEFAULT_LOOKBACK_WEEKS,
) -> tuple[int, int]:
    """Reduce an employee's sickness cases to ``(occurrences, total_days)``.

    A case counts as a spell when it started within the rolling window
    ending at ``as_of``.  Days lost come from ``working_days_lost`` when
    recorded; ongoing cases count weekdays from their start up to
    ``as_of``.
    """
    if lookback_weeks < 1:
        raise InvalidInputError(f"lookback_weeks must be at least 1, got {lookback_weeks}")

    cutoff = as_of - timedelta(weeks=lookback_weeks)
    occurrences = 0
    total_days = 0
    for case in cases:
        if case.absence_start_date < cutoff or case.absence_start_date > as_of:
            continue
        occurrences += 1
        if case.working_days_lost is not None:
            total_days += case.working_days_lost
        else:
            total_days += count_weekdays(case.absence_start_date, as_of)
    return occurrences, total_days
