"""
PROGRESS MATH TESTS

Whole-number percentages, rounded half-up, phases weighted equally.
"""
from datetime import datetime, timedelta, timezone

import pytest

from domain.progress_math import (
    average_task_hours,
    count_statuses,
    ensure_percentage,
    estimate_completion,
    mean_percent,
    overall_completion,
    parse_duration_days,
    percent,
    phase_completion,
    velocity_per_week,
)
from exceptions import InvalidField, ValidationError

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


class TestPercent:

    @pytest.mark.parametrize("numerator,denominator,expected", [
        (0, 3, 0),
        (1, 3, 33),
        (2, 3, 67),
        (1, 2, 50),
        (1, 8, 13),   # 12.5 rounds up
        (5, 8, 63),   # 62.5 rounds up
        (3, 3, 100),
    ])
    def test_round_half_up(self, numerator, denominator, expected):
        assert percent(numerator, denominator) == expected

    def test_zero_denominator_is_zero(self):
        assert percent(0, 0) == 0

    def test_mean_rounds_half_up(self):
        assert mean_percent([50, 51]) == 51  # 50.5
        assert mean_percent([]) == 0


class TestPhaseCompletion:

    def test_empty_phase_is_zero(self):
        assert phase_completion([]) == 0

    def test_skipped_counts_in_total_only(self):
        assert phase_completion(["completed", "skipped"]) == 50

    def test_idempotent(self):
        statuses = ["completed", "in_progress", "not_started"]
        assert phase_completion(statuses) == phase_completion(statuses) == 33


class TestOverallCompletion:

    def test_mean_of_phases_not_task_ratio(self):
        """
        SCENARIO: phase 1 has 1/1 done, phase 2 has 1/3 done, phase 3 has 0/2 done

        EXPECTED: round((100 + 33 + 0) / 3) = 44, the task ratio would be 2/6 = 33
        """
        phases = [
            phase_completion(["completed"]),
            phase_completion(["completed", "not_started", "not_started"]),
            phase_completion(["not_started", "not_started"]),
        ]
        assert phases == [100, 33, 0]
        assert overall_completion(phases) == 44

    def test_hundred_fifty_zero(self):
        assert overall_completion([100, 50, 0]) == 50

    def test_no_phases(self):
        assert overall_completion([]) == 0


class TestCounts:

    def test_count_statuses(self):
        counts = count_statuses(["completed", "completed", "skipped", "in_progress"])
        assert counts == {
            "not_started": 0,
            "in_progress": 1,
            "completed": 2,
            "skipped": 1,
            "total": 4,
        }


class TestEnsurePercentage:

    @pytest.mark.parametrize("value", [0, 57, 100])
    def test_in_range(self, value):
        assert ensure_percentage(value) == value

    @pytest.mark.parametrize("value", [-1, 101, 50.5, True])
    def test_out_of_range_is_validation_error(self, value):
        with pytest.raises(InvalidField) as exc_info:
            ensure_percentage(value)
        assert isinstance(exc_info.value, ValidationError)


class TestVelocity:

    def test_no_completions(self):
        assert velocity_per_week([], NOW) == 0.0

    def test_same_day_burst_returns_count(self):
        moments = [NOW - timedelta(hours=2), NOW - timedelta(hours=1)]
        assert velocity_per_week(moments, NOW) == 2.0

    def test_per_week_rate(self):
        moments = [NOW - timedelta(days=14), NOW - timedelta(days=7), NOW]
        assert velocity_per_week(moments, NOW) == 1.5

    def test_old_completions_ignored(self):
        assert velocity_per_week([NOW - timedelta(days=45)], NOW) == 0.0


class TestTimeEstimates:

    def test_average_task_hours(self):
        spans = [
            (NOW - timedelta(hours=3), NOW),
            (NOW - timedelta(hours=6), NOW),
        ]
        assert average_task_hours(spans) == 5  # 4.5 rounds up

    def test_average_task_hours_empty(self):
        assert average_task_hours([]) == 0

    def test_estimate_completion(self):
        assert estimate_completion(3, 1.5, NOW) == NOW + timedelta(days=14)

    def test_estimate_completion_unknown(self):
        assert estimate_completion(0, 2.0, NOW) is None
        assert estimate_completion(4, 0.0, NOW) is None

    @pytest.mark.parametrize("label,expected", [
        ("2 weeks", 14),
        ("3 days", 3),
        ("1 month", 30),
        ("About 1 Week", 7),
        ("soon", None),
        (None, None),
    ])
    def test_parse_duration_days(self, label, expected):
        assert parse_duration_days(label) == expected
