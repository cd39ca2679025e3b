from datetime import date, datetime, timezone

import pytest

from errors import ValidationError
from models import (
    Goal,
    Habit,
    completion_toggle,
    normalize_timestamp,
    validate_day_index,
    validate_goal_input,
    validate_habit_name,
)


def make_goal(**overrides):
    fields = dict(id="g1", title="Run a 10k", category="Health", priority="High")
    fields.update(overrides)
    return Goal(**fields)


class TestCompletionToggle:
    def test_completing_sets_progress_to_100(self):
        assert completion_toggle(make_goal(progress=40)) == {"isCompleted": True, "progress": 100}

    def test_uncompleting_keeps_partial_progress(self):
        goal = make_goal(progress=60, is_completed=True)
        assert completion_toggle(goal) == {"isCompleted": False, "progress": 60}

    def test_uncompleting_from_100_snaps_to_90(self):
        goal = make_goal(progress=100, is_completed=True)
        assert completion_toggle(goal) == {"isCompleted": False, "progress": 90}


class TestGoalValidation:
    def test_valid_input(self):
        fields = validate_goal_input({
            "title": "  Save money ",
            "category": "Finance",
            "priority": "Low",
            "dueDate": "2026-12-31T00:00:00Z",
        })
        assert fields["title"] == "Save money"
        assert fields["description"] == ""
        assert fields["dueDate"] == datetime(2026, 12, 31, tzinfo=timezone.utc)

    def test_short_title_rejected(self):
        with pytest.raises(ValidationError) as exc:
            validate_goal_input({"title": "ab", "category": "Work", "priority": "Low"})
        assert exc.value.field == "title"

    @pytest.mark.parametrize("field,value", [("category", "Hobby"), ("priority", "Urgent")])
    def test_unknown_choices_rejected(self, field, value):
        data = {"title": "Learn Go", "category": "Education", "priority": "Medium", field: value}
        with pytest.raises(ValidationError) as exc:
            validate_goal_input(data)
        assert exc.value.field == field

    def test_bad_due_date(self):
        with pytest.raises(ValidationError) as exc:
            validate_goal_input({"title": "Learn Go", "category": "Work", "priority": "Low", "dueDate": "soon"})
        assert exc.value.field == "dueDate"


class TestNormalizeTimestamp:
    def test_aware_datetime_converted_to_utc(self):
        value = datetime(2026, 1, 1, 12, tzinfo=timezone.utc)
        assert normalize_timestamp(value) == value

    def test_epoch_millis(self):
        assert normalize_timestamp(0) == datetime(1970, 1, 1, tzinfo=timezone.utc)

    def test_date_becomes_aware(self):
        assert normalize_timestamp(date(2026, 3, 1)).tzinfo is not None

    def test_protobuf_like(self):
        class Stamp:
            def ToDatetime(self):
                return datetime(2026, 5, 5, 8, 0)
        assert normalize_timestamp(Stamp()) == datetime(2026, 5, 5, 8, 0, tzinfo=timezone.utc)

    def test_empty_is_none(self):
        assert normalize_timestamp(None) is None
        assert normalize_timestamp("") is None

    def test_bool_rejected(self):
        with pytest.raises(TypeError):
            normalize_timestamp(True)


class TestHabit:
    def test_completed_days_padded_to_a_week(self):
        habit = Habit.from_record({"id": "h1", "name": "Stretch", "completedDays": [True]})
        assert habit.completed_days == [True] + [False] * 6

    def test_completed_days_truncated(self):
        habit = Habit.from_record({"id": "h1", "name": "Stretch", "completedDays": [True] * 9})
        assert len(habit.completed_days) == 7

    def test_name_and_day_validation(self):
        assert validate_habit_name(" Walk ") == "Walk"
        with pytest.raises(ValidationError):
            validate_habit_name("   ")
        assert validate_day_index(6) == 6
        for bad in (-1, 7, True, "3"):
            with pytest.raises(ValidationError):
                validate_day_index(bad)


def test_goal_record_round_trip_uses_camel_case():
    goal = Goal.from_record({
        "id": "g1", "title": "Ship it", "category": "Work", "priority": "High",
        "isCompleted": True, "progress": 100, "createdAt": 1_700_000_000_000,
    })
    data = goal.to_dict()
    assert data["isCompleted"] is True
    assert data["createdAt"].startswith("2023-11-14")
    assert data["dueDate"] is None
