#!/usr/bin/env python3
"""
Dashboard Controller
Composes the session, goal/habit stores, Google Fit and goal suggestions
into per-widget state, and routes user intents to the right component.

Every intent returns an ActionResult and never raises: validation problems
come back in `errors`, everything else is logged and becomes a destructive
notice. One widget failing leaves the others untouched.
"""

import copy
import logging
import random
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional

from auth import AuthSessionManager, SessionContext
from config import DEFAULT_STEP_GOAL, FIT_HEART_POINTS_GOAL, FIT_STEPS_GOAL
from errors import (
    DashboardError,
    FreshLoginRequired,
    NotAuthenticated,
    ValidationError,
)
from goal_store import GoalStore
from google_fit_client import GoogleFitClient
from habit_store import HabitStore

logger = logging.getLogger(__name__)

QUOTES = [
    "The secret of getting ahead is getting started.",
    "Believe you can and you're halfway there.",
    "It does not matter how slowly you go as long as you do not stop.",
    "The best way to predict the future is to create it.",
    "Success is not final, failure is not fatal: it is the courage to continue that counts.",
]

# Shown when a health fetch fails, instead of a possibly mismatched old reading
UNKNOWN_METRICS = {
    "height": None,
    "weight": None,
    "bloodPressure": {"systolic": None, "diastolic": None},
    "stepCount": None,
    "heartRate": None,
    "calories": None,
}
EMPTY_ACTIVITY = {"steps": [], "glucose": [], "bodyFat": []}

IDLE, LOADING, READY, ERROR = "idle", "loading", "ready", "error"


@dataclass
class WidgetState:
    status: str = IDLE
    data: Any = None
    error: Optional[str] = None

    def to_dict(self) -> dict:
        return {"status": self.status, "data": self.data, "error": self.error}


@dataclass
class ActionResult:
    ok: bool
    data: Any = None
    errors: Dict[str, str] = field(default_factory=dict)
    message: str = ""
    fresh_login_required: bool = False

    @classmethod
    def invalid(cls, error: ValidationError) -> "ActionResult":
        return cls(ok=False, errors={error.field: error.user_message}, message=error.user_message)

    def to_dict(self) -> dict:
        out = {"success": self.ok}
        if self.data is not None:
            out["data"] = self.data
        if self.errors:
            out["errors"] = self.errors
        if self.message:
            out["error" if not self.ok else "message"] = self.message
        return out


def _percent(value: float, goal: float) -> float:
    if goal <= 0:
        return 0
    return round(min(value / goal * 100, 100), 1)


class DashboardController:
    """One per browser session"""

    def __init__(
        self,
        store,
        identity,
        oauth,
        suggester=None,
        fit_client_factory: Callable[[str], GoogleFitClient] = GoogleFitClient,
        context: Optional[SessionContext] = None,
    ):
        self.context = context or SessionContext()
        self.auth = AuthSessionManager(self.context, identity, store, oauth)
        self.store = store
        self.suggester = suggester
        self.fit_client_factory = fit_client_factory
        self.goals: Optional[GoalStore] = None
        self.habits: Optional[HabitStore] = None
        self.quote = random.choice(QUOTES)
        self._reset_widgets()

    def _reset_widgets(self):
        self.widgets = {
            "health": WidgetState(),
            "fitSummary": WidgetState(),
            "steps": WidgetState(),
            "weeklySteps": WidgetState(),
            "suggestion": WidgetState(),
        }

    def _run(self, action: str, failure: Optional[str], fn: Callable, *args) -> ActionResult:
        """Call fn, turning errors into an ActionResult plus a notice"""
        try:
            return ActionResult(ok=True, data=fn(*args))
        except ValidationError as e:
            return ActionResult.invalid(e)
        except FreshLoginRequired:
            raise
        except DashboardError as e:
            logger.error(f"Error {action}: {e}")
            message = failure or e.user_message
            self.context.notify("Error", message, "destructive")
            return ActionResult(ok=False, message=message)

    # Lifecycle

    def open(self):
        """Start the live goal/habit subscriptions for the signed-in user"""
        uid = self.context.uid
        if not uid or not self.context.is_authenticated:
            raise NotAuthenticated("Cannot open dashboard without a user")
        if self.goals is not None and self.goals.uid == uid:
            return
        self.close()
        self.goals = GoalStore(self.store, uid)
        self.habits = HabitStore(self.store, uid)
        self.goals.start()
        self.habits.start()

    def close(self):
        """Tear down subscriptions; safe to call repeatedly"""
        for cache in (self.goals, self.habits):
            if cache is not None:
                cache.stop()
        self.goals = None
        self.habits = None

    def _opened(self, fn: Callable, *args):
        if not self.context.is_authenticated:
            raise NotAuthenticated("Not signed in")
        self.open()
        return fn(*args)

    # Session intents

    def sign_up(self, name: str, email: str, password: str) -> ActionResult:
        result = self._run("signing up", None, self.auth.sign_up_with_email, name, email, password)
        return self._after_sign_in(result)

    def sign_in(self, email: str, password: str) -> ActionResult:
        result = self._run("signing in", None, self.auth.sign_in_with_email, email, password)
        return self._after_sign_in(result)

    def sign_in_with_google(self, consent) -> ActionResult:
        result = self._run("signing in with Google", None, self.auth.sign_in_with_google, consent)
        if result.ok and result.data is None:
            return ActionResult(ok=False)  # cancelled
        return self._after_sign_in(result)

    def _after_sign_in(self, result: ActionResult) -> ActionResult:
        if result.ok:
            result.data = result.data.to_dict()
            self.open()
        return result

    def connect_fit(self, consent) -> ActionResult:
        try:
            return self._run("connecting Google Fit", None, self.auth.connect_google_fit, consent)
        except FreshLoginRequired:
            return ActionResult(ok=False, fresh_login_required=True)

    def reconnect_fit(self, consent) -> ActionResult:
        try:
            return self._run("re-authenticating Google Fit", None, self.auth.reauthenticate_fit, consent)
        except FreshLoginRequired:
            return ActionResult(ok=False, fresh_login_required=True)

    def disconnect_fit(self) -> ActionResult:
        disconnected = self.auth.disconnect_google_fit()
        for name in ("health", "fitSummary", "steps", "weeklySteps"):
            self.widgets[name] = WidgetState()
        return ActionResult(ok=disconnected)

    def sign_out(self) -> str:
        self.close()
        self._reset_widgets()
        return self.auth.sign_out()

    # Goal intents

    def list_goals(self) -> list:
        if self.goals is None:
            return []
        return [g.to_dict() for g in self.goals.list()]

    def save_goal(self, data: dict, goal_id: Optional[str] = None) -> ActionResult:
        return self._run("saving goal", "Could not save the goal.",
                         lambda: self._opened(self.goals.save, data, goal_id))

    def delete_goal(self, goal_id: str) -> ActionResult:
        result = self._run(f"deleting goal {goal_id}", "Could not delete the goal.",
                           lambda: self._opened(self.goals.remove, goal_id))
        if result.ok:
            self.context.notify("Goal Deleted", "The goal has been removed.")
        return result

    def toggle_goal(self, goal_id: str) -> ActionResult:
        result = self._run(f"toggling goal {goal_id}", "Could not update the goal.",
                           lambda: self._opened(self.goals.toggle_complete_by_id, goal_id))
        if result.ok:
            goal = result.data
            if not goal.is_completed:
                self.context.notify("Milestone Achieved!", f'You\'ve completed your goal: "{goal.title}"')
            result.data = None
        return result

    # Habit intents

    def list_habits(self) -> list:
        if self.habits is None:
            return []
        return [h.to_dict() for h in self.habits.list()]

    def add_habit(self, name: str) -> ActionResult:
        return self._run("adding habit", "Could not add habit.",
                         lambda: self._opened(self.habits.add, name))

    def set_habit_day(self, habit_id: str, day_index: int, value: bool) -> ActionResult:
        return self._run(f"updating habit {habit_id}", "Could not update habit.",
                         lambda: self._opened(self.habits.set_day, habit_id, day_index, value))

    # Profile

    def _profile_path(self) -> str:
        if not self.context.is_authenticated:
            raise NotAuthenticated("Not signed in")
        return f"users/{self.context.uid}"

    def _read_step_goal(self) -> int:
        path = self._profile_path()
        profile = self.store.get(path) or {}
        goal = profile.get("stepGoal")
        if not goal:
            self.store.set(path, {"stepGoal": DEFAULT_STEP_GOAL}, merge=True)
            goal = DEFAULT_STEP_GOAL
        return int(goal)

    def get_step_goal(self) -> ActionResult:
        return self._run("reading step goal", "Could not load your step goal.", self._read_step_goal)

    def set_step_goal(self, value: Any) -> ActionResult:
        def write():
            if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
                raise ValidationError("stepGoal", "Step goal must be a positive whole number.")
            self.store.set(self._profile_path(), {"stepGoal": value}, merge=True)
            return value

        result = self._run("saving step goal", "Could not update your step goal.", write)
        if result.ok:
            self.context.notify("Goal Updated", f"Your new daily step goal is {value:,}.")
        return result

    # Google Fit widgets

    def _fit_client(self) -> GoogleFitClient:
        return self.fit_client_factory(self.context.fit_token)

    def _refresh(self, name: str, fetch: Callable, reset: Any = None) -> ActionResult:
        widget = self.widgets[name]
        if not self.context.fit_token:
            self.widgets[name] = WidgetState()
            return ActionResult(ok=False, message="Google Fit is not connected.")
        widget.status = LOADING
        widget.error = None
        try:
            data = fetch()
        except DashboardError as e:
            logger.error(f"Error fetching {name}: {e}")
            widget.status = ERROR
            widget.error = e.user_message
            if reset is not None:
                widget.data = copy.deepcopy(reset)
            self.context.notify("Error", e.user_message, "destructive")
            return ActionResult(ok=False, message=e.user_message)
        widget.status = READY
        widget.data = data
        return ActionResult(ok=True, data=data)

    def refresh_health(self) -> ActionResult:
        return self._refresh(
            "health",
            lambda: self._fit_client().fetch_health_overview(),
            reset={"metrics": UNKNOWN_METRICS, "activity": EMPTY_ACTIVITY},
        )

    def refresh_fit_summary(self) -> ActionResult:
        def fetch():
            today = self._fit_client().fetch_today()
            today["stepsProgress"] = _percent(today["steps"], FIT_STEPS_GOAL)
            today["heartPointsProgress"] = _percent(today["heartPoints"], FIT_HEART_POINTS_GOAL)
            return today
        return self._refresh("fitSummary", fetch)

    def refresh_steps(self) -> ActionResult:
        def fetch():
            steps = self._fit_client().fetch_steps_today()
            goal = self._read_step_goal()
            return {"steps": steps, "stepGoal": goal, "progress": _percent(steps, goal)}
        return self._refresh("steps", fetch)

    def refresh_weekly_steps(self) -> ActionResult:
        return self._refresh("weeklySteps", lambda: self._fit_client().fetch_weekly_steps())

    # Suggestions

    def request_suggestion(self, current_goals: str, past_performance: str) -> ActionResult:
        widget = self.widgets["suggestion"]
        if self.suggester is None:
            return ActionResult(ok=False, message="Goal suggestions are not available.")
        widget.status = LOADING
        result = self._run("requesting goal suggestions", None,
                           self.suggester.suggest, current_goals, past_performance)
        if result.ok:
            widget.status, widget.data, widget.error = READY, result.data, None
        elif result.errors:
            widget.status = IDLE
        else:
            widget.status, widget.error = ERROR, result.message
        return result

    # Snapshot for the UI

    def _cache_state(self, cache, items: list) -> dict:
        if cache is None:
            return {"status": IDLE, "items": [], "error": None}
        if cache.error:
            status = ERROR
        elif cache.loading:
            status = LOADING
        else:
            status = READY
        return {"status": status, "items": items, "error": cache.error}

    def state(self) -> dict:
        user = self.context.user
        return {
            "user": user.to_dict() if user else None,
            "authState": self.context.auth_state,
            "fit": {"linked": bool(self.context.fit_token), "state": self.context.fit_state},
            "goals": self._cache_state(self.goals, self.list_goals()),
            "habits": self._cache_state(self.habits, self.list_habits()),
            "progress": self.goals.progress_overview() if self.goals else {"completed": 0, "inProgress": 0},
            "quote": self.quote,
            "widgets": {name: w.to_dict() for name, w in self.widgets.items()},
            "notices": [n.to_dict() for n in self.context.drain_notices()],
        }
