from datetime import date, timedelta

import pytest

from moaqeb.salary_cycle import (
    accrued_commission,
    cycle_end,
    is_salary_due,
    next_cycle_start,
    remaining_commission,
    termination_payout,
    transaction_commission,
)


@pytest.mark.parametrize('start, expected', [
    (date(2026, 1, 1), date(2026, 2, 1)),
    (date(2026, 2, 1), date(2026, 3, 1)),
    (date(2026, 12, 1), date(2027, 1, 1)),
])
def test_first_of_month_rolls_to_next_calendar_month(start, expected):
    assert next_cycle_start(start) == expected


@pytest.mark.parametrize('start', [date(2026, 1, 15), date(2026, 1, 31), date(2026, 2, 28)])
def test_other_start_days_roll_exactly_thirty_days(start):
    assert next_cycle_start(start) == start + timedelta(days=30)


def test_cycle_end_is_day_before_next_start():
    assert cycle_end(date(2026, 2, 1)) == date(2026, 2, 28)
    assert cycle_end(date(2026, 1, 15)) == date(2026, 2, 13)


def test_salary_due_from_next_cycle_start():
    start = date(2026, 1, 15)
    assert not is_salary_due(start, date(2026, 2, 13))
    assert is_salary_due(start, date(2026, 2, 14))
    assert is_salary_due('2026-01-01', '2026-02-01')


def test_commission_accrual():
    pairs = [(500, 300), (1000, 250), (100, 150)]
    # الفرق السالب لا يُحتسب
    assert transaction_commission(100, 150, 10) == 0.0
    assert accrued_commission(pairs, 10) == 95.0
    assert remaining_commission(95.0, 40.0) == 55.0
    assert remaining_commission(95.0, 120.0) == 0.0


def test_termination_payout_is_prorated_for_monthly():
    start = date(2026, 3, 1)
    assert termination_payout('monthly', 3000, start, date(2026, 3, 11)) == 1000.0
    assert termination_payout('both', 3000, start, date(2026, 3, 21)) == 2000.0


def test_termination_payout_minimum_one_day():
    start = date(2026, 3, 1)
    assert termination_payout('monthly', 3000, start, start) == 100.0


def test_commission_only_termination_pays_nothing():
    assert termination_payout('commission', 3000, date(2026, 3, 1), date(2026, 3, 20)) == 0.0
