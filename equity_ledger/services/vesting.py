"""
Vesting Engine

Pure functions from grant vesting parameters (and a date) to vested amounts
and projected schedules. Vesting is cliff + monthly linear, measured from the
vesting start date in whole calendar months.
"""
from dataclasses import dataclass
from datetime import date
from typing import Any, Dict, List, Optional

from dateutil.relativedelta import relativedelta

from equity_ledger.constants import months_between
from equity_ledger.exceptions import InvalidInputError


@dataclass
class VestedAmount:
    """Vesting position at a point in time"""
    vested_shares: int
    unvested_shares: int
    vesting_percent: float
    months_elapsed: int


@dataclass
class ScheduledVesting:
    """One projected vesting event"""
    date: date
    shares_vested: int
    cumulative_vested: int
    percent_vested: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "date": self.date.isoformat(),
            "shares_vested": self.shares_vested,
            "cumulative_vested": self.cumulative_vested,
            "percent_vested": self.percent_vested,
        }


def validate_vesting_terms(total_shares: int, vesting_months: int, cliff_months: int) -> None:
    """Raise InvalidInputError for terms no schedule can be built from"""
    if total_shares < 0:
        raise InvalidInputError("Total shares must be non-negative", total_shares=total_shares)
    if vesting_months < 1:
        raise InvalidInputError("Vesting period must be at least one month", vesting_months=vesting_months)
    if cliff_months < 0 or cliff_months > vesting_months:
        raise InvalidInputError(
            "Cliff must be between zero and the vesting period",
            cliff_months=cliff_months,
            vesting_months=vesting_months,
        )


def calculate_vested_shares(
    total_shares: int,
    vesting_start: date,
    vesting_months: int,
    cliff_months: int,
    as_of: Optional[date] = None,
) -> VestedAmount:
    """
    Calculate vested shares at a date.

    - Before the cliff nothing is vested
    - From the end of the vesting period everything is vested
    - In between, vesting is linear from the start date (not from the cliff):
      floor(months_elapsed / vesting_months * total_shares)

    Args:
        total_shares: Shares covered by the grant
        vesting_start: Vesting start date
        vesting_months: Length of the vesting period
        cliff_months: Length of the cliff
        as_of: Date to evaluate at, defaults to today

    Returns:
        VestedAmount
    """
    validate_vesting_terms(total_shares, vesting_months, cliff_months)
    as_of = as_of or date.today()
    elapsed = months_between(vesting_start, as_of)

    if elapsed < cliff_months or elapsed < 0:
        return VestedAmount(
            vested_shares=0,
            unvested_shares=total_shares,
            vesting_percent=0.0,
            months_elapsed=elapsed,
        )

    if elapsed >= vesting_months:
        return VestedAmount(
            vested_shares=total_shares,
            unvested_shares=0,
            vesting_percent=100.0,
            months_elapsed=elapsed,
        )

    vested = elapsed * total_shares // vesting_months
    return VestedAmount(
        vested_shares=vested,
        unvested_shares=total_shares - vested,
        vesting_percent=elapsed / vesting_months * 100,
        months_elapsed=elapsed,
    )


def generate_vesting_schedule(
    total_shares: int,
    vesting_start: date,
    vesting_months: int,
    cliff_months: int,
) -> List[ScheduledVesting]:
    """
    Build the full monthly vesting schedule.

    Months before the cliff produce no event. The cliff month credits
    everything that accrued during the cliff (cliff_months * total / vesting_months),
    and every later month credits total / vesting_months. Cumulative amounts
    are floored per event so the last event always lands on total_shares.
    """
    validate_vesting_terms(total_shares, vesting_months, cliff_months)

    events: List[ScheduledVesting] = []
    previous_cumulative = 0
    for month in range(1, vesting_months + 1):
        if month < cliff_months:
            continue

        cumulative = month * total_shares // vesting_months
        events.append(ScheduledVesting(
            date=vesting_start + relativedelta(months=month),
            shares_vested=cumulative - previous_cumulative,
            cumulative_vested=cumulative,
            percent_vested=month / vesting_months * 100,
        ))
        previous_cumulative = cumulative

    return events


def next_vesting_event(
    schedule: List[ScheduledVesting],
    as_of: Optional[date] = None,
) -> Optional[ScheduledVesting]:
    """First scheduled event strictly after as_of"""
    as_of = as_of or date.today()
    for event in schedule:
        if event.date > as_of:
            return event
    return None
