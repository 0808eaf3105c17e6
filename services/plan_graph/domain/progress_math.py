"""
Completion arithmetic shared by the progress calculator and exports.

Percentages are whole numbers rounded half-up (2.5 -> 3), computed in
integer arithmetic so 1/3 of 100 never drifts.
"""
import math
import re
from datetime import datetime, timedelta
from typing import Dict, Iterable, Optional, Tuple

from exceptions import InvalidField

COMPLETED = "completed"


def percent(numerator: int, denominator: int) -> int:
    """round_half_up(100 * numerator / denominator); 0 when denominator is 0"""
    if denominator <= 0:
        return 0
    return (200 * numerator + denominator) // (2 * denominator)


def mean_percent(values: Iterable[int]) -> int:
    """round_half_up(mean(values)); 0 for no values"""
    values = list(values)
    if not values:
        return 0
    return (2 * sum(values) + len(values)) // (2 * len(values))


def phase_completion(statuses: Iterable[str]) -> int:
    """
    Share of tasks in ``completed`` status. Skipped tasks stay in the
    denominator; an empty phase is 0.
    """
    statuses = list(statuses)
    completed = sum(1 for status in statuses if status == COMPLETED)
    return percent(completed, len(statuses))


def overall_completion(phase_percentages: Iterable[int]) -> int:
    """Phases weigh equally regardless of how many tasks they hold."""
    return mean_percent(phase_percentages)


def count_statuses(statuses: Iterable[str]) -> Dict[str, int]:
    counts = {"not_started": 0, "in_progress": 0, "completed": 0, "skipped": 0}
    total = 0
    for status in statuses:
        counts[status] = counts.get(status, 0) + 1
        total += 1
    counts["total"] = total
    return counts


def ensure_percentage(value: int, field: str = "completion_percentage") -> int:
    if not isinstance(value, int) or isinstance(value, bool) or not 0 <= value <= 100:
        raise InvalidField(field, "must be an integer between 0 and 100", value)
    return value


def round_half_up(value: float, digits: int = 0) -> float:
    scale = 10 ** digits
    return math.floor(value * scale + 0.5) / scale


def velocity_per_week(
    completion_times: Iterable[datetime],
    now: datetime,
    window_days: int = 30
) -> float:
    """
    Completions per week over the last ``window_days``, measured from the
    earliest completion in the window. Under ~17 hours of history the raw
    count is returned.
    """
    window_start = now - timedelta(days=window_days)
    recent = [moment for moment in completion_times if moment >= window_start]
    if not recent:
        return 0.0

    weeks_elapsed = (now - min(recent)).total_seconds() / (7 * 24 * 3600)
    if weeks_elapsed < 0.1:
        return float(len(recent))
    return round_half_up(len(recent) / weeks_elapsed, 1)


def average_task_hours(spans: Iterable[Tuple[datetime, datetime]]) -> int:
    """Mean of (completed_at - created_at) in whole hours"""
    hours = [(completed - created).total_seconds() / 3600 for created, completed in spans]
    if not hours:
        return 0
    return int(round_half_up(sum(hours) / len(hours)))


def estimate_completion(remaining_tasks: int, velocity: float, now: datetime) -> Optional[datetime]:
    if remaining_tasks == 0 or velocity <= 0:
        return None
    days = math.ceil(remaining_tasks / velocity * 7)
    return now + timedelta(days=days)


_DURATION_PATTERN = re.compile(r"(\d+)\s*(day|days|week|weeks|month|months)", re.IGNORECASE)
_DURATION_UNITS = {"day": 1, "week": 7, "month": 30}


def parse_duration_days(label: Optional[str]) -> Optional[int]:
    """'2 weeks' -> 14; None when the label has no recognisable duration"""
    if not label:
        return None
    match = _DURATION_PATTERN.search(label)
    if not match:
        return None
    unit = match.group(2).lower().rstrip("s")
    return int(match.group(1)) * _DURATION_UNITS[unit]
