"""Weekly recurrence math for booking series."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
import math
from typing import Any, Iterable, List, Optional

from ..core.constants import SERIES_FAST_FORWARD_LIMIT_WEEKS
from ..core.timezone_utils import format_local_iso, local_to_utc

LOCAL_FORMAT = "%Y-%m-%dT%H:%M:%S"
ALLOWED_INTERVALS = (1, 2)


@dataclass(frozen=True)
class SeriesRule:
    """A weekly rule anchored on a local wall time.

    ``by_weekday`` counts from Sunday: 0=Sunday .. 6=Saturday.
    """

    dtstart_local: str
    timezone: str
    duration_min: int
    interval_weeks: int
    by_weekday: int


@dataclass(frozen=True)
class Occurrence:
    occurrence_index: int
    local_start: str
    local_end: str
    start_utc: datetime
    end_utc: datetime
    timezone: str
    duration_min: int


@dataclass(frozen=True)
class OccurrenceDraft:
    """A booking to materialize for a series occurrence."""

    series_id: str
    user_id: str
    client_id: str
    occurrence_index: int
    start_utc: datetime
    end_utc: datetime
    mode: Optional[str] = None
    location_text: Optional[str] = None
    consultation_type: Optional[str] = None


def parse_local(value: str) -> datetime:
    """Parse ``YYYY-MM-DDTHH:MM:SS`` (no offset) as a naive wall time."""
    return datetime.strptime(value, LOCAL_FORMAT)


def sunday_based_weekday(value: datetime) -> int:
    return (value.weekday() + 1) % 7


def align_to_weekday(anchor: datetime, by_weekday: int) -> datetime:
    """Move ``anchor`` forward (0-6 days) onto ``by_weekday``."""
    diff = (by_weekday - sunday_based_weekday(anchor) + 7) % 7
    return anchor + timedelta(days=diff)


def generate_occurrences(
    rule: SeriesRule,
    window_start_local: str,
    window_end_local: str,
    max_occurrences: Optional[int] = None,
) -> List[Occurrence]:
    """
    Expand ``rule`` into occurrences whose local start falls in
    ``[window_start_local, window_end_local)``.

    Wall times are converted to UTC in the series timezone one by one, so a
    10:00 appointment stays at 10:00 local across DST changes.

    Returns:
        Occurrences in chronological order; empty for unsupported intervals
    """
    if rule.interval_weeks not in ALLOWED_INTERVALS:
        return []

    anchor = parse_local(rule.dtstart_local)
    window_start = parse_local(window_start_local)
    window_end = parse_local(window_end_local)
    step = timedelta(weeks=rule.interval_weeks)
    duration = timedelta(minutes=rule.duration_min)

    current = align_to_weekday(anchor, rule.by_weekday)
    give_up_at = window_end + timedelta(weeks=SERIES_FAST_FORWARD_LIMIT_WEEKS)
    while current < window_start:
        current += step
        if current > give_up_at:
            break

    index = 0
    if current >= anchor:
        weeks = round((current - anchor).total_seconds() / timedelta(weeks=1).total_seconds())
        index = math.floor(weeks / rule.interval_weeks)

    results: List[Occurrence] = []
    while current < window_end:
        local_end = current + duration
        results.append(
            Occurrence(
                occurrence_index=index,
                local_start=format_local_iso(current),
                local_end=format_local_iso(local_end),
                start_utc=local_to_utc(current, rule.timezone),
                end_utc=local_to_utc(local_end, rule.timezone),
                timezone=rule.timezone,
                duration_min=rule.duration_min,
            )
        )
        if max_occurrences and len(results) >= max_occurrences:
            break
        current += step
        index += 1

    return results


def rule_for_series(series: Any) -> SeriesRule:
    return SeriesRule(
        dtstart_local=series.dtstart_local,
        timezone=series.timezone,
        duration_min=series.duration_min,
        interval_weeks=series.interval_weeks,
        by_weekday=series.by_weekday,
    )


def plan_materialization(
    series: Any,
    window_start_local: str,
    window_end_local: str,
    existing_indexes: Iterable[int],
    max_occurrences: Optional[int] = None,
) -> List[OccurrenceDraft]:
    """Drafts for the occurrences in the window that have no booking yet."""
    existing = set(existing_indexes)
    occurrences = generate_occurrences(
        rule_for_series(series), window_start_local, window_end_local, max_occurrences
    )
    return [
        OccurrenceDraft(
            series_id=series.id,
            user_id=series.user_id,
            client_id=series.client_id,
            occurrence_index=occ.occurrence_index,
            start_utc=occ.start_utc,
            end_utc=occ.end_utc,
            mode=series.mode,
            location_text=series.location_text,
            consultation_type=series.consultation_type,
        )
        for occ in occurrences
        if occ.occurrence_index not in existing
    ]
