"""Unit tests for the vesting engine"""
from datetime import date

import pytest

from equity_ledger.constants import months_between
from equity_ledger.exceptions import InvalidInputError
from equity_ledger.services.vesting import (
    calculate_vested_shares,
    generate_vesting_schedule,
    next_vesting_event,
)

START = date(2024, 1, 1)


class TestMonthsBetween:

    def test_ignores_day_of_month(self):
        assert months_between(date(2024, 1, 31), date(2024, 2, 1)) == 1
        assert months_between(date(2024, 1, 1), date(2024, 1, 31)) == 0

    def test_across_years(self):
        assert months_between(date(2023, 11, 15), date(2025, 2, 1)) == 15

    def test_negative_before_start(self):
        assert months_between(date(2024, 6, 1), date(2024, 1, 1)) == -5


class TestCalculateVestedShares:
    """48,000 shares over 48 months with a 12 month cliff"""

    def test_before_cliff(self):
        vested = calculate_vested_shares(48_000, START, 48, 12, as_of=date(2024, 11, 15))

        assert vested.months_elapsed == 10
        assert vested.vested_shares == 0
        assert vested.unvested_shares == 48_000

    def test_at_cliff(self):
        vested = calculate_vested_shares(48_000, START, 48, 12, as_of=date(2025, 1, 2))

        assert vested.vested_shares == 12_000
        assert vested.vesting_percent == pytest.approx(25.0)

    def test_two_years(self):
        vested = calculate_vested_shares(48_000, START, 48, 12, as_of=date(2026, 1, 1))

        assert vested.vested_shares == 24_000
        assert vested.unvested_shares == 24_000

    def test_fully_vested_after_period(self):
        vested = calculate_vested_shares(48_000, START, 48, 12, as_of=date(2030, 1, 1))

        assert vested.vested_shares == 48_000
        assert vested.vesting_percent == 100.0

    def test_before_start(self):
        vested = calculate_vested_shares(48_000, START, 48, 0, as_of=date(2023, 6, 1))

        assert vested.vested_shares == 0

    def test_floors_fractional_shares(self):
        vested = calculate_vested_shares(1_000, START, 48, 0, as_of=date(2024, 2, 1))

        assert vested.vested_shares == 20  # 1000 / 48 = 20.83

    def test_monotonic_and_bounded(self):
        previous = 0
        for month in range(0, 60):
            as_of = date(2024 + month // 12, month % 12 + 1, 1)
            vested = calculate_vested_shares(10_001, START, 48, 12, as_of=as_of).vested_shares
            assert previous <= vested <= 10_001
            previous = vested

    @pytest.mark.parametrize("total,months,cliff", [
        (-1, 48, 12),
        (1_000, 0, 0),
        (1_000, 48, 49),
        (1_000, 48, -1),
    ])
    def test_invalid_terms(self, total, months, cliff):
        with pytest.raises(InvalidInputError):
            calculate_vested_shares(total, START, months, cliff, as_of=START)


class TestGenerateVestingSchedule:

    def test_cliff_lump_sum(self):
        schedule = generate_vesting_schedule(48_000, START, 48, 12)

        assert len(schedule) == 37
        assert schedule[0].date == date(2025, 1, 1)
        assert schedule[0].shares_vested == 12_000
        assert schedule[0].percent_vested == pytest.approx(25.0)
        assert schedule[1].shares_vested == 1_000
        assert schedule[-1].date == date(2028, 1, 1)
        assert schedule[-1].cumulative_vested == 48_000

    def test_events_sum_to_total(self):
        schedule = generate_vesting_schedule(10_001, START, 36, 6)

        assert sum(e.shares_vested for e in schedule) == 10_001
        cumulative = [e.cumulative_vested for e in schedule]
        assert cumulative == sorted(cumulative)

    def test_no_cliff_vests_monthly(self):
        schedule = generate_vesting_schedule(1_200, START, 12, 0)

        assert len(schedule) == 12
        assert all(e.shares_vested == 100 for e in schedule)

    def test_month_end_start_dates(self):
        schedule = generate_vesting_schedule(1_200, date(2024, 1, 31), 12, 0)

        assert schedule[0].date == date(2024, 2, 29)
        assert schedule[1].date == date(2024, 3, 31)

    def test_schedule_agrees_with_calculation(self):
        schedule = generate_vesting_schedule(48_000, START, 48, 12)
        for event in schedule:
            vested = calculate_vested_shares(48_000, START, 48, 12, as_of=event.date)
            assert vested.vested_shares == event.cumulative_vested


class TestNextVestingEvent:

    def test_next_event(self):
        schedule = generate_vesting_schedule(48_000, START, 48, 12)
        upcoming = next_vesting_event(schedule, as_of=date(2025, 1, 1))

        assert upcoming.date == date(2025, 2, 1)
        assert upcoming.shares_vested == 1_000

    def test_none_after_last_event(self):
        schedule = generate_vesting_schedule(48_000, START, 48, 12)

        assert next_vesting_event(schedule, as_of=date(2030, 1, 1)) is None
