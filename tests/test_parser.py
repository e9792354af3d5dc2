"""Tests for zeroed.core.task_parser — quick-add natural language parsing."""

from datetime import date

import pytest

from zeroed.core.task_parser import (
    add_months,
    has_natural_language_elements,
    parse_task_input,
)

# A Wednesday
TODAY = date(2025, 2, 12)


class TestFullSentence:
    def test_every_marker_extracted(self):
        parsed = parse_task_input(
            "Call dentist tomorrow at 3pm !urgent ~30m #health @Personal", today=TODAY,
        )
        assert parsed.title == "Call dentist"
        assert parsed.due_date == "2025-02-13"
        assert parsed.due_time == "15:00"
        assert parsed.priority == "urgent"
        assert parsed.estimated_minutes == 30
        assert parsed.tags == ["health"]
        assert parsed.list_name == "Personal"

    def test_plain_text_is_all_title(self):
        parsed = parse_task_input("Buy milk", today=TODAY)
        assert parsed.title == "Buy milk"
        assert parsed.to_dict() == {"title": "Buy milk"}

    def test_empty_input(self):
        assert parse_task_input("", today=TODAY).title == ""


class TestPriority:
    def test_p_levels(self):
        assert parse_task_input("Review PR p2", today=TODAY).priority == "high"
        assert parse_task_input("Review PR p4", today=TODAY).priority == "low"

    def test_bangs(self):
        parsed = parse_task_input("Ship it !!", today=TODAY)
        assert parsed.priority == "high"
        assert parsed.title == "Ship it"

    def test_triple_bang_is_urgent(self):
        assert parse_task_input("Fire !!!", today=TODAY).priority == "urgent"


class TestEstimate:
    def test_hours(self):
        parsed = parse_task_input("Write report 2 hours", today=TODAY)
        assert parsed.estimated_minutes == 120
        assert parsed.title == "Write report"

    def test_tilde_hours(self):
        assert parse_task_input("Deep work ~2h", today=TODAY).estimated_minutes == 120


class TestTime:
    def test_24h_time(self):
        parsed = parse_task_input("Standup at 9:30", today=TODAY)
        assert parsed.due_time == "09:30"
        assert parsed.title == "Standup"

    def test_noon_and_midnight(self):
        assert parse_task_input("Lunch at 12pm", today=TODAY).due_time == "12:00"
        assert parse_task_input("Flight at 12am", today=TODAY).due_time == "00:00"

    def test_out_of_range_time_stays_in_title(self):
        parsed = parse_task_input("Gym 25:00", today=TODAY)
        assert parsed.due_time is None
        assert parsed.title == "Gym 25:00"


class TestDates:
    def test_relative_days(self):
        assert parse_task_input("Project in 3 days", today=TODAY).due_date == "2025-02-15"

    def test_weekday_later_this_week(self):
        assert parse_task_input("Meeting friday", today=TODAY).due_date == "2025-02-14"

    def test_same_weekday_means_next_week(self):
        assert parse_task_input("Pay rent wednesday", today=TODAY).due_date == "2025-02-19"

    def test_past_month_day_rolls_to_next_year(self):
        assert parse_task_input("Dentist 1/5", today=TODAY).due_date == "2026-01-05"

    def test_invalid_month_day_stays_in_title(self):
        parsed = parse_task_input("Thing 13/45", today=TODAY)
        assert parsed.due_date is None
        assert parsed.title == "Thing 13/45"

    def test_next_month(self):
        assert parse_task_input("Plan next month", today=TODAY).due_date == "2025-03-12"


class TestTags:
    def test_duplicate_tags_collapse(self):
        assert parse_task_input("Read #a #b #a", today=TODAY).tags == ["a", "b"]


class TestHelpers:
    def test_add_months_clamps_day(self):
        assert add_months(date(2025, 1, 31), 1) == date(2025, 2, 28)
        assert add_months(date(2025, 11, 15), 2) == date(2026, 1, 15)

    def test_natural_language_hints(self):
        assert has_natural_language_elements("buy milk tomorrow")
        assert has_natural_language_elements("deploy #ops")
        assert not has_natural_language_elements("buy milk")


class TestNeverRaises:
    def test_huge_relative_dates_stay_in_title(self):
        parsed = parse_task_input("Renew passport in 99999999 days", today=TODAY)
        assert parsed.due_date is None
        assert parsed.title == "Renew passport in 99999999 days"
        assert parse_task_input("Renew in 9999999 weeks", today=TODAY).due_date is None

    def test_huge_estimate_stays_in_title(self):
        parsed = parse_task_input("Read 99999999999999999999 min", today=TODAY)
        assert parsed.estimated_minutes is None
        assert parsed.title == "Read 99999999999999999999 min"

    def test_tilde_before_long_unit(self):
        parsed = parse_task_input("Meet ~30min", today=TODAY)
        assert parsed.estimated_minutes == 30
        assert parsed.title == "Meet"


class TestBehaviour:
    def test_p1_prefix(self):
        parsed = parse_task_input("p1 Fix bug", today=TODAY)
        assert parsed.priority == "urgent"
        assert parsed.title == "Fix bug"

    @pytest.mark.parametrize("text", [
        "Call dentist tomorrow at 3pm !urgent ~30m #health",
        "p1 Fix bug",
        "Write report 2 hours next week",
        "Gym 25:00 friday",
        "Thing 13/45 in 3 days !!",
        "Meet ~30min @Work #a #b",
        "Renew passport in 99999999 days",
        "tomorrow tomorrow p2 p3",
        "Lunch at 12pm 1/5 ~1h",
    ])
    def test_reparsing_title_finds_nothing(self, text):
        first = parse_task_input(text, today=TODAY)
        assert parse_task_input(first.title, today=TODAY).to_dict() == {"title": first.title}
