from datetime import datetime, timedelta

import pytest
from hypothesis import given, settings as hypothesis_settings, strategies as st

from ritual_engine.models import Frequency
from ritual_engine.services.streaks import (
    DAILY,
    MONTHLY,
    WEEKLY,
    StreakResult,
    calculate_streaks,
    is_streak_alive,
    parse_custom_frequency,
    policy_for,
)

D = datetime(2024, 3, 4, 8, 30)  # Monday


def days(*offsets, base=D):
    return [base + timedelta(days=o) for o in offsets]


def test_consecutive_days():
    assert calculate_streaks(days(0, 1, 2), DAILY, D + timedelta(days=2)) == StreakResult(3, 3)


def test_gap_breaks_run():
    assert calculate_streaks(days(0, 2), DAILY, D + timedelta(days=2)) == StreakResult(1, 1)


def test_no_completions():
    assert calculate_streaks([], DAILY, D) == StreakResult(0, 0)


def test_single_completion_current_period():
    assert calculate_streaks(days(0), DAILY, D + timedelta(hours=10)) == StreakResult(1, 1)


def test_single_completion_lapsed():
    assert calculate_streaks(days(0), DAILY, D + timedelta(days=2)) == StreakResult(0, 1)


def test_new_period_without_completion_resets_current():
    # a new day with no completion yet reads as a broken streak
    result = calculate_streaks(days(0, 1), DAILY, D + timedelta(days=2))
    assert result == StreakResult(0, 2)


def test_several_completions_same_day_count_once():
    ts = [D, D + timedelta(hours=1), D + timedelta(hours=5)]
    assert calculate_streaks(ts, DAILY, D) == StreakResult(1, 1)


def test_best_kept_after_reset():
    history = days(0, 1, 2, 3, 6)
    assert calculate_streaks(history, DAILY, D + timedelta(days=6)) == StreakResult(1, 4)


def test_completion_after_now_is_reference():
    # clock skew: latest completion newer than "now"
    assert calculate_streaks(days(0, 1), DAILY, D) == StreakResult(2, 2)


def test_unsorted_input():
    assert calculate_streaks(days(2, 0, 1), DAILY, D + timedelta(days=2)) == StreakResult(3, 3)


def test_weekly_starts_monday():
    sunday = D - timedelta(days=1)
    # Sunday and Monday are in consecutive weeks
    assert calculate_streaks([sunday, D], WEEKLY, D) == StreakResult(2, 2)
    # Monday and Sunday of the same week are one period
    assert calculate_streaks([D, D + timedelta(days=6)], WEEKLY, D + timedelta(days=6)) == StreakResult(1, 1)


def test_weekly_missed_week():
    history = days(0, 7, 21)
    assert calculate_streaks(history, WEEKLY, D + timedelta(days=21)) == StreakResult(1, 2)


def test_monthly_across_year_boundary():
    history = [datetime(2023, 11, 15), datetime(2023, 12, 1), datetime(2024, 1, 31)]
    assert calculate_streaks(history, MONTHLY, datetime(2024, 1, 31, 23)) == StreakResult(3, 3)
    assert calculate_streaks(history, MONTHLY, datetime(2024, 3, 1)) == StreakResult(0, 3)


def test_custom_every_two_days():
    policy = parse_custom_frequency("every 2 days")
    assert policy.grace == 0
    assert calculate_streaks(days(0, 2, 4), policy, D + timedelta(days=4)) == StreakResult(3, 3)
    assert calculate_streaks(days(0, 4), policy, D + timedelta(days=4)) == StreakResult(1, 1)


def test_custom_grace_tolerates_missed_periods():
    policy = parse_custom_frequency("every 1 day grace 1")
    history = days(0, 2, 4)
    assert calculate_streaks(history, policy, D + timedelta(days=5)) == StreakResult(3, 3)
    assert calculate_streaks(history, policy, D + timedelta(days=6)) == StreakResult(0, 3)


@pytest.mark.parametrize("expression", ["every 0 days", "every 400 days", "twice a week", "every 2 days grace 31", ""])
def test_custom_expression_rejected(expression):
    with pytest.raises(ValueError):
        parse_custom_frequency(expression)


def test_policy_for():
    assert policy_for(Frequency.daily) is DAILY
    assert policy_for(Frequency.weekly) is WEEKLY
    assert policy_for(Frequency.monthly) is MONTHLY
    assert policy_for(Frequency.custom, "Every 3 Weeks").grace == 0
    with pytest.raises(ValueError):
        policy_for(Frequency.custom, None)


def test_is_streak_alive():
    assert is_streak_alive(DAILY, D, D + timedelta(hours=12)) is True
    assert is_streak_alive(DAILY, D, D + timedelta(days=1)) is False
    assert is_streak_alive(DAILY, None, D) is False


# ==========================================
# PROPERTIES
# ==========================================

offsets = st.lists(st.integers(min_value=0, max_value=120), max_size=40)
policies = st.sampled_from([DAILY, WEEKLY, MONTHLY, parse_custom_frequency("every 3 days grace 1")])


@given(offsets, policies, st.integers(min_value=0, max_value=150))
def test_deterministic(history, policy, now_offset):
    ts = days(*history)
    now = D + timedelta(days=now_offset)
    assert calculate_streaks(ts, policy, now) == calculate_streaks(list(ts), policy, now)


@given(offsets, policies)
@hypothesis_settings(max_examples=50)
def test_best_never_decreases_on_append(history, policy):
    ts = sorted(days(*history))
    best = 0
    for i in range(1, len(ts) + 1):
        result = calculate_streaks(ts[:i], policy, ts[i - 1])
        assert result.best >= best
        best = result.best


@given(offsets, policies, st.integers(min_value=0, max_value=150))
def test_current_bounded_by_best(history, policy, now_offset):
    result = calculate_streaks(days(*history), policy, D + timedelta(days=now_offset))
    assert 0 <= result.current <= result.best
    assert result.best <= len(set(history))
