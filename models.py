#!/usr/bin/env python3
"""
Data model for Goal Dashboard
Goals, habits, user-facing notices, input validation and the goal
completion policy.

Documents are stored with camelCase keys (title, isCompleted, createdAt,
completedDays, ...); everything in Python uses the dataclasses below.
"""

from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Any, Dict, List, Optional

from errors import ValidationError

CATEGORIES = ("Personal", "Work", "Health", "Finance", "Education")
PRIORITIES = ("Low", "Medium", "High")
TITLE_MIN_LENGTH = 3

DAYS_PER_WEEK = 7
WEEKDAY_LABELS = ("Sun", "Mon", "Tue", "Wed", "Thu", "Fri", "Sat")

# Fields a goal edit may replace; progress/isCompleted/createdAt are not among them
GOAL_MUTABLE_FIELDS = ("title", "description", "category", "priority", "dueDate")


def normalize_timestamp(value: Any) -> Optional[datetime]:
    """
    Convert any stored point-in-time into a timezone-aware UTC datetime.

    Handles plain datetimes (naive ones are taken as local time), Firestore's
    DatetimeWithNanoseconds, protobuf Timestamps, ISO-8601 strings, dates and
    epoch milliseconds.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.astimezone()
        return datetime.fromtimestamp(value.timestamp(), tz=timezone.utc)
    if isinstance(value, date):
        return normalize_timestamp(datetime(value.year, value.month, value.day))
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return datetime.fromtimestamp(value / 1000, tz=timezone.utc)
    if isinstance(value, str):
        try:
            return normalize_timestamp(datetime.fromisoformat(value.replace("Z", "+00:00")))
        except ValueError:
            raise ValueError(f"Unrecognised timestamp: {value!r}")
    if callable(getattr(value, "ToDatetime", None)):
        return value.ToDatetime().replace(tzinfo=timezone.utc)
    raise TypeError(f"Unsupported timestamp type: {type(value).__name__}")


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


@dataclass
class Goal:
    id: str
    title: str
    category: str
    priority: str
    description: str = ""
    progress: int = 0
    due_date: Optional[datetime] = None
    is_completed: bool = False
    created_at: Optional[datetime] = None

    @classmethod
    def from_record(cls, record: Dict[str, Any]) -> "Goal":
        return cls(
            id=record["id"],
            title=record.get("title", ""),
            category=record.get("category", "Personal"),
            priority=record.get("priority", "Medium"),
            description=record.get("description") or "",
            progress=int(record.get("progress", 0) or 0),
            due_date=normalize_timestamp(record.get("dueDate")),
            is_completed=bool(record.get("isCompleted", False)),
            created_at=normalize_timestamp(record.get("createdAt")),
        )

    def to_dict(self) -> Dict[str, Any]:
        """JSON shape for the API"""
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "category": self.category,
            "priority": self.priority,
            "progress": self.progress,
            "dueDate": _iso(self.due_date),
            "isCompleted": self.is_completed,
            "createdAt": _iso(self.created_at),
        }


@dataclass
class Habit:
    id: str
    name: str
    completed_days: List[bool] = field(default_factory=lambda: [False] * DAYS_PER_WEEK)

    @classmethod
    def from_record(cls, record: Dict[str, Any]) -> "Habit":
        days = [bool(d) for d in record.get("completedDays") or []][:DAYS_PER_WEEK]
        days += [False] * (DAYS_PER_WEEK - len(days))
        return cls(id=record["id"], name=record.get("name", ""), completed_days=days)

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.id, "name": self.name, "completedDays": list(self.completed_days)}


@dataclass
class Notice:
    """Transient notification shown to the user (a toast)"""
    title: str
    description: str = ""
    variant: str = "default"  # or "destructive"

    def to_dict(self) -> Dict[str, str]:
        return {"title": self.title, "description": self.description, "variant": self.variant}


def validate_goal_input(data: Dict[str, Any]) -> Dict[str, Any]:
    """
    Validate a goal form and return the document fields to write.

    Raises ValidationError for the first offending field.
    """
    title = (data.get("title") or "").strip()
    if len(title) < TITLE_MIN_LENGTH:
        raise ValidationError("title", f"Title must be at least {TITLE_MIN_LENGTH} characters long.")

    category = data.get("category")
    if category not in CATEGORIES:
        raise ValidationError("category", f"Category must be one of: {', '.join(CATEGORIES)}.")

    priority = data.get("priority")
    if priority not in PRIORITIES:
        raise ValidationError("priority", f"Priority must be one of: {', '.join(PRIORITIES)}.")

    try:
        due_date = normalize_timestamp(data.get("dueDate"))
    except (TypeError, ValueError):
        raise ValidationError("dueDate", "Due date is not a valid date.")

    return {
        "title": title,
        "description": (data.get("description") or "").strip(),
        "category": category,
        "priority": priority,
        "dueDate": due_date,
    }


def validate_habit_name(name: Any) -> str:
    name = (name or "").strip() if isinstance(name, str) else ""
    if not name:
        raise ValidationError("name", "Habit name is required.")
    return name


def validate_day_index(day_index: Any) -> int:
    if isinstance(day_index, bool) or not isinstance(day_index, int) or not 0 <= day_index < DAYS_PER_WEEK:
        raise ValidationError("dayIndex", "Day must be between 0 (Sunday) and 6 (Saturday).")
    return day_index


def completion_toggle(goal: Goal) -> Dict[str, Any]:
    """
    Fields to write when the user toggles a goal's completion.

    Completing sets progress to 100. Un-completing keeps progress below 100
    as it was, and snaps a goal that had reached 100 back to 90.
    """
    is_now_completed = not goal.is_completed
    if is_now_completed:
        progress = 100
    elif goal.progress < 100:
        progress = goal.progress
    else:
        progress = 90
    return {"isCompleted": is_now_completed, "progress": progress}
