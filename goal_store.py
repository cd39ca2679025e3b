#!/usr/bin/env python3
"""
Goal Store
Client-side cache of users/{uid}/goals, kept current by a live subscription
ordered by createdAt (newest first).

Mutations are written to the document store and never applied locally: the
cache only changes when the subscription delivers the next snapshot.
"""

import logging
import threading
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from errors import ValidationError
from models import Goal, completion_toggle, validate_goal_input

logger = logging.getLogger(__name__)


class GoalStore:
    """Live view of one user's goals"""

    def __init__(self, store, uid: str):
        self.store = store
        self.uid = uid
        self.collection = f"users/{uid}/goals"
        self._goals: List[Goal] = []
        self._lock = threading.Lock()
        self._subscription = None
        self.loading = False
        self.error: Optional[str] = None
        self._listeners: List[Callable[[List[Goal]], None]] = []

    def add_listener(self, listener: Callable[[List[Goal]], None]):
        self._listeners.append(listener)

    def start(self):
        """Open the live subscription (no-op if already open)"""
        if self._subscription is not None and self._subscription.active:
            return
        self.loading = True
        self.error = None
        self._subscription = self.store.subscribe(
            self.collection,
            self._on_snapshot,
            order_by="createdAt",
            descending=True,
            on_error=self._on_error,
        )

    def stop(self):
        if self._subscription is not None:
            self._subscription.unsubscribe()
            self._subscription = None

    @property
    def active(self) -> bool:
        return self._subscription is not None and self._subscription.active

    def _on_snapshot(self, snapshot):
        goals = []
        for record in snapshot.records:
            try:
                goals.append(Goal.from_record(record))
            except (KeyError, TypeError, ValueError) as e:
                logger.warning(f"Skipping malformed goal {record.get('id')}: {e}")
        with self._lock:
            self._goals = goals
        self.loading = False
        self.error = None
        for listener in list(self._listeners):
            listener(list(goals))

    def _on_error(self, error: Exception):
        logger.error(f"Error fetching goals: {error}")
        self.loading = False
        self.error = "Could not fetch goals."

    def list(self) -> List[Goal]:
        with self._lock:
            return list(self._goals)

    def get(self, goal_id: str) -> Optional[Goal]:
        with self._lock:
            return next((g for g in self._goals if g.id == goal_id), None)

    def save(self, data: Dict[str, Any], goal_id: Optional[str] = None) -> str:
        """
        Create a goal, or replace the editable fields of an existing one.

        Returns the goal id. Validation happens before anything is written.
        """
        fields = validate_goal_input(data)
        goal_id = goal_id or data.get("id")
        if goal_id:
            self.store.update(f"{self.collection}/{goal_id}", fields)
            logger.info(f"Updated goal {goal_id}")
            return goal_id

        record = {
            **fields,
            "progress": 0,
            "isCompleted": False,
            "createdAt": datetime.now(timezone.utc),
        }
        goal_id = self.store.create(self.collection, record)
        logger.info(f"Created goal {goal_id}")
        return goal_id

    def remove(self, goal_id: str):
        self.store.delete(f"{self.collection}/{goal_id}")
        logger.info(f"Deleted goal {goal_id}")

    def toggle_complete(self, goal: Goal) -> Dict[str, Any]:
        """Write the completion toggle for `goal`; returns the fields written"""
        fields = completion_toggle(goal)
        self.store.update(f"{self.collection}/{goal.id}", fields)
        return fields

    def toggle_complete_by_id(self, goal_id: str) -> Goal:
        goal = self.get(goal_id)
        if goal is None:
            raise ValidationError("id", "Goal not found.")
        self.toggle_complete(goal)
        return goal

    def progress_overview(self) -> Dict[str, int]:
        goals = self.list()
        completed = sum(1 for g in goals if g.is_completed)
        return {"completed": completed, "inProgress": len(goals) - completed}
