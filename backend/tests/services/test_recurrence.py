"""
Tests for weekly recurrence expansion.
"""

from types import SimpleNamespace

from app.services.recurrence import (
    SeriesRule,
    align_to_weekday,
    generate_occurrences,
    parse_local,
    plan_materialization,
    sunday_based_weekday,
)

MADRID = "Europe/Madrid"


def _rule(**overrides) -> SeriesRule:
    values = {
        "dtstart_local": "2026-03-02T10:00:00",  # a Monday
        "timezone": MADRID,
        "duration_min": 50,
        "interval_weeks": 1,
        "by_weekday": 1,
    }
    values.update(overrides)
    return SeriesRule(**values)


class TestWeekdayHelpers:
    def test_sunday_is_zero(self):
        assert sunday_based_weekday(parse_local("2026-03-01T09:00:00")) == 0
        assert sunday_based_weekday(parse_local("2026-03-07T09:00:00")) == 6

    def test_align_moves_forward_only(self):
        monday = parse_local("2026-03-02T10:00:00")
        assert align_to_weekday(monday, 1) == monday
        assert align_to_weekday(monday, 3) == parse_local("2026-03-04T10:00:00")
        assert align_to_weekday(monday, 0) == parse_local("2026-03-08T10:00:00")


class TestGenerateOccurrences:
    def test_weekly_occurrences_in_window(self):
        occurrences = generate_occurrences(_rule(), "2026-03-02T00:00:00", "2026-03-24T00:00:00")

        assert [o.local_start for o in occurrences] == [
            "2026-03-02T10:00:00",
            "2026-03-09T10:00:00",
            "2026-03-16T10:00:00",
            "2026-03-23T10:00:00",
        ]
        assert [o.occurrence_index for o in occurrences] == [0, 1, 2, 3]
        assert occurrences[0].local_end == "2026-03-02T10:50:00"

    def test_wall_time_is_kept_across_dst(self):
        occurrences = generate_occurrences(_rule(), "2026-03-23T00:00:00", "2026-04-01T00:00:00")

        before, after = occurrences
        assert before.local_start == "2026-03-23T10:00:00"
        assert after.local_start == "2026-03-30T10:00:00"
        # CET (+1) before the last Sunday of March, CEST (+2) after
        assert before.start_utc.hour == 9
        assert after.start_utc.hour == 8
        assert after.end_utc.hour == 8 and after.end_utc.minute == 50

    def test_biweekly_skips_alternate_weeks(self):
        occurrences = generate_occurrences(
            _rule(interval_weeks=2), "2026-03-02T00:00:00", "2026-04-01T00:00:00"
        )

        assert [o.local_start[:10] for o in occurrences] == ["2026-03-02", "2026-03-16", "2026-03-30"]
        assert [o.occurrence_index for o in occurrences] == [0, 1, 2]

    def test_first_occurrence_aligned_to_weekday(self):
        occurrences = generate_occurrences(
            _rule(by_weekday=3), "2026-03-02T00:00:00", "2026-03-12T00:00:00"
        )

        assert [o.local_start for o in occurrences] == ["2026-03-04T10:00:00", "2026-03-11T10:00:00"]

    def test_window_after_anchor_keeps_indexes(self):
        occurrences = generate_occurrences(_rule(), "2026-03-16T00:00:00", "2026-03-24T00:00:00")

        assert [o.occurrence_index for o in occurrences] == [2, 3]

    def test_max_occurrences_caps_results(self):
        occurrences = generate_occurrences(
            _rule(), "2026-03-02T00:00:00", "2026-06-01T00:00:00", max_occurrences=2
        )

        assert len(occurrences) == 2

    def test_unsupported_interval_yields_nothing(self):
        assert generate_occurrences(_rule(interval_weeks=3), "2026-03-02T00:00:00", "2026-06-01T00:00:00") == []


def test_plan_materialization_skips_existing_indexes():
    series = SimpleNamespace(
        id="series-1",
        user_id="user-1",
        client_id="client-1",
        dtstart_local="2026-03-02T10:00:00",
        timezone=MADRID,
        duration_min=50,
        interval_weeks=1,
        by_weekday=1,
        mode="online",
        location_text=None,
        consultation_type="followup",
    )

    drafts = plan_materialization(series, "2026-03-02T00:00:00", "2026-03-24T00:00:00", existing_indexes={0, 2})

    assert [d.occurrence_index for d in drafts] == [1, 3]
    assert all(d.series_id == "series-1" and d.consultation_type == "followup" for d in drafts)
