#!/usr/bin/env python3
"""
Habit Store
Client-side cache of users/{uid}/habits with weekly (Sun..Sat) completion.

The first time a subscription sees the collection empty, with no local write
in flight, it seeds the default habits. That check runs once per activation.
"""

import logging
import threading
from typing import List, Optional

from errors import ValidationError
from models import DAYS_PER_WEEK, Habit, validate_day_index, validate_habit_name

logger = logging.getLogger(__name__)

DEFAULT_HABITS = (
    "Drink 8 glasses of water",
    "Read for 15 minutes",
)


class HabitStore:
    """Live view of one user's habits"""

    def __init__(self, store, uid: str):
        self.store = store
        self.uid = uid
        self.collection = f"users/{uid}/habits"
        self._habits: List[Habit] = []
        self._lock = threading.Lock()
        self._subscription = None
        self._seed_evaluated = False
        self._pending_writes = 0
        self.loading = False
        self.error: Optional[str] = None

    def start(self):
        if self._subscription is not None and self._subscription.active:
            return
        self.loading = True
        self.error = None
        self._seed_evaluated = False
        self._subscription = self.store.subscribe(self.collection, self._on_snapshot, on_error=self._on_error)

    def stop(self):
        if self._subscription is not None:
            self._subscription.unsubscribe()
            self._subscription = None

    @property
    def active(self) -> bool:
        return self._subscription is not None and self._subscription.active

    def _on_snapshot(self, snapshot):
        habits = []
        for record in snapshot.records:
            try:
                habits.append(Habit.from_record(record))
            except (KeyError, TypeError) as e:
                logger.warning(f"Skipping malformed habit {record.get('id')}: {e}")
        with self._lock:
            self._habits = habits
            should_seed = (
                not self._seed_evaluated
                and not snapshot.has_pending_writes
                and self._pending_writes == 0
            )
            if should_seed:
                self._seed_evaluated = True
        self.loading = False
        self.error = None
        if should_seed and not habits:
            self._seed_defaults()

    def _on_error(self, error: Exception):
        logger.error(f"Error fetching habits: {error}")
        self.loading = False
        self.error = "Could not fetch habits."

    def _seed_defaults(self):
        logger.info(f"Creating default habits for {self.uid}")
        for name in DEFAULT_HABITS:
            self._create(name)

    def _create(self, name: str) -> str:
        with self._lock:
            self._pending_writes += 1
        try:
            return self.store.create(self.collection, {"name": name, "completedDays": [False] * DAYS_PER_WEEK})
        finally:
            with self._lock:
                self._pending_writes -= 1

    def list(self) -> List[Habit]:
        with self._lock:
            return list(self._habits)

    def get(self, habit_id: str) -> Optional[Habit]:
        with self._lock:
            return next((h for h in self._habits if h.id == habit_id), None)

    def add(self, name: str) -> str:
        return self._create(validate_habit_name(name))

    def set_day(self, habit_id: str, day_index: int, value: bool) -> List[bool]:
        """Set one day and write the whole seven-day sequence back"""
        day_index = validate_day_index(day_index)
        habit = self.get(habit_id)
        if habit is None:
            raise ValidationError("habitId", "Habit not found.")
        days = list(habit.completed_days)
        days[day_index] = bool(value)
        with self._lock:
            self._pending_writes += 1
        try:
            self.store.update(f"{self.collection}/{habit_id}", {"completedDays": days})
        finally:
            with self._lock:
                self._pending_writes -= 1
        return days
