#!/usr/bin/env python3
"""
Google Fit API Client
Aggregate queries (today's activity, trailing-week series, daily steps) and
latest-value reads for body metrics, using the session's bearer token.

Day boundaries are local midnight. Weekly series always have one entry per
calendar day of the trailing 7 days ending today; days without data are 0.
"""

import logging
from datetime import datetime, timedelta
from functools import wraps
from typing import Callable, Dict, List, Optional

import pandas as pd
import requests

from errors import FetchFailed
from models import WEEKDAY_LABELS

logger = logging.getLogger(__name__)

BASE_URL = "https://www.googleapis.com/fitness/v1/users/me"
AGGREGATE_URL = f"{BASE_URL}/dataset:aggregate"
DAY_MILLIS = 86_400_000
WEEK_DAYS = 7

# Order matters: response datasets come back in request order
TODAY_TYPES = {
    "steps": "com.google.step_count.delta",
    "heartPoints": "com.google.heart_minutes",
    "calories": "com.google.calories.expended",
    "distanceMeters": "com.google.distance.delta",
    "moveMinutes": "com.google.active_minutes",
}

WEEKLY_TYPES = {
    "steps": "com.google.step_count.delta",
    "glucose": "com.google.blood_glucose",
    "bodyFat": "com.google.body.fat.percentage",
}

ESTIMATED_STEPS_SOURCE = "derived:com.google.step_count.delta:com.google.android.gms:estimated_steps"

SNAPSHOT_SOURCES = {
    "height": "derived:com.google.height:com.google.android.gms:merge_height",
    "weight": "derived:com.google.weight:com.google.android.gms:merge_weight",
    "bloodPressure": "derived:com.google.blood_pressure:com.google.android.gms:merged",
    "heartRate": "derived:com.google.heart_rate.bpm:com.google.android.gms:merge_heart_rate_bpm",
    "calories": "derived:com.google.calories.expended:com.google.android.gms:merge_calories_expended",
}

DEFAULT_SNAPSHOT = {
    "height": 0,
    "weight": 0,
    "bloodPressure": {"systolic": 0, "diastolic": 0},
    "heartRate": 0,
    "calories": 0,
}


def _millis(dt: datetime) -> int:
    return int(dt.timestamp() * 1000)


def _start_of_day(dt: datetime) -> datetime:
    return dt.replace(hour=0, minute=0, second=0, microsecond=0)


def _point_value(value: dict) -> float:
    if "fpVal" in value:
        return value["fpVal"]
    return value.get("intVal", 0)


def _dataset_total(datasets: list, index: int) -> float:
    """Sum of the first value of each point in datasets[index]; 0 when absent"""
    if index >= len(datasets):
        return 0
    total = 0
    for point in datasets[index].get("point") or []:
        values = point.get("value") or []
        if values:
            total += _point_value(values[0])
    return total


def weekday_label(day) -> str:
    return WEEKDAY_LABELS[(day.dayofweek + 1) % 7]


def _parsed(fn):
    """Surface malformed API payloads as FetchFailed"""
    @wraps(fn)
    def wrapper(self, *args, **kwargs):
        try:
            return fn(self, *args, **kwargs)
        except (KeyError, IndexError, ValueError, TypeError, AttributeError) as e:
            raise FetchFailed(f"Unexpected Google Fit response: {e!r}")
    return wrapper


class GoogleFitClient:
    """Client for the Google Fit REST API"""

    def __init__(self, access_token: str = "", now: Callable[[], datetime] = datetime.now):
        self.access_token = access_token
        self._now = now

    @property
    def is_configured(self) -> bool:
        return bool(self.access_token)

    def _request(self, method: str, url: str, body: dict | None = None) -> dict:
        """Make an authenticated request; any failure raises FetchFailed"""
        if not self.access_token:
            raise FetchFailed("No Google Fit token", user_message="Google Fit is not connected.", token_rejected=True)
        headers = {"Authorization": f"Bearer {self.access_token}"}
        try:
            if method == "POST":
                headers["Content-Type"] = "application/json"
                r = requests.post(url, headers=headers, json=body, timeout=30)
            else:
                r = requests.get(url, headers=headers, timeout=30)
        except requests.RequestException as e:
            raise FetchFailed(f"Google Fit request failed: {e}")

        if r.status_code == 200:
            return r.json()
        try:
            detail = r.json().get("error", {}).get("message", "")
        except ValueError:
            detail = r.text
        if r.status_code in (401, 403):
            raise FetchFailed(f"Google Fit rejected the token ({r.status_code}): {detail}", token_rejected=True)
        raise FetchFailed(f"Google Fit API error {r.status_code}: {detail}")

    def _aggregate(self, aggregate_by: list, start: datetime, end: datetime, bucket_millis: int) -> list:
        body = {
            "aggregateBy": aggregate_by,
            "bucketByTime": {"durationMillis": bucket_millis},
            "startTimeMillis": _millis(start),
            "endTimeMillis": _millis(end),
        }
        result = self._request("POST", AGGREGATE_URL, body)
        return result.get("bucket") or []

    def _daily_frame(self, buckets: list, columns: List[str], today: datetime) -> pd.DataFrame:
        """One row per calendar day of the trailing week, zero-filled"""
        days = pd.date_range(end=pd.Timestamp(today.date()), periods=WEEK_DAYS, freq="D")
        rows = []
        for bucket in buckets:
            day = pd.Timestamp(datetime.fromtimestamp(int(bucket["startTimeMillis"]) / 1000).date())
            datasets = bucket.get("dataset") or []
            row = {"date": day}
            for index, column in enumerate(columns):
                row[column] = _dataset_total(datasets, index)
            rows.append(row)
        frame = pd.DataFrame(rows, columns=["date"] + columns)
        frame = frame.groupby("date")[columns].sum()
        return frame.reindex(days, fill_value=0)

    @_parsed
    def fetch_today(self) -> Dict[str, float]:
        """Today's totals (local midnight to now) for the five activity metrics"""
        now = self._now()
        buckets = self._aggregate(
            [{"dataTypeName": t} for t in TODAY_TYPES.values()],
            _start_of_day(now), now, DAY_MILLIS,
        )
        datasets = (buckets[0].get("dataset") or []) if buckets else []
        values = {name: _dataset_total(datasets, i) for i, name in enumerate(TODAY_TYPES)}
        return {
            "steps": int(round(values["steps"])),
            "heartPoints": int(round(values["heartPoints"])),
            "calories": int(round(values["calories"])),
            "distanceMeters": float(values["distanceMeters"]),
            "distanceKm": round(values["distanceMeters"] / 1000, 2),
            "moveMinutes": int(round(values["moveMinutes"])),
        }

    @_parsed
    def fetch_weekly_series(self) -> Dict[str, List[dict]]:
        """Daily steps, blood glucose and body fat for the trailing 7 days"""
        now = self._now()
        start = _start_of_day(now) - timedelta(days=WEEK_DAYS - 1)
        buckets = self._aggregate([{"dataTypeName": t} for t in WEEKLY_TYPES.values()], start, now, DAY_MILLIS)
        frame = self._daily_frame(buckets, list(WEEKLY_TYPES), now)
        series = {"steps": [], "glucose": [], "bodyFat": []}
        for day, row in frame.iterrows():
            name = weekday_label(day)
            date_str = day.strftime("%Y-%m-%d")
            series["steps"].append({"name": name, "date": date_str, "steps": int(row["steps"])})
            series["glucose"].append({"name": name, "date": date_str, "level": float(row["glucose"])})
            series["bodyFat"].append({"name": name, "date": date_str, "percent": float(row["bodyFat"])})
        return series

    @_parsed
    def fetch_steps_today(self) -> int:
        """Estimated step count for today"""
        now = self._now()
        start = _start_of_day(now)
        buckets = self._aggregate(
            [{"dataTypeName": WEEKLY_TYPES["steps"], "dataSourceId": ESTIMATED_STEPS_SOURCE}],
            start, start + timedelta(days=1) - timedelta(milliseconds=1), DAY_MILLIS,
        )
        if not buckets:
            return 0
        return int(_dataset_total(buckets[0].get("dataset") or [], 0))

    @_parsed
    def fetch_weekly_steps(self) -> List[dict]:
        """Estimated steps per day for the last 7 days, labelled Today/Yest/weekday"""
        now = self._now()
        start = _start_of_day(now) - timedelta(days=WEEK_DAYS - 1)
        end = _start_of_day(now) + timedelta(days=1) - timedelta(milliseconds=1)
        buckets = self._aggregate(
            [{"dataTypeName": WEEKLY_TYPES["steps"], "dataSourceId": ESTIMATED_STEPS_SOURCE}],
            start, end, DAY_MILLIS,
        )
        frame = self._daily_frame(buckets, ["steps"], now)
        today = pd.Timestamp(now.date())
        out = []
        for day, row in frame.iterrows():
            if day == today:
                label = "Today"
            elif day == today - pd.Timedelta(days=1):
                label = "Yest"
            else:
                label = weekday_label(day)
            out.append({"date": day.strftime("%Y-%m-%d"), "steps": int(row["steps"]), "day": label})
        return out

    @staticmethod
    def _shape_metric(name: str, values: list, current):
        if name == "bloodPressure":
            return {"systolic": int(round(values[0]["fpVal"])), "diastolic": int(round(values[1]["fpVal"]))}
        value = _point_value(values[0])
        if not value:
            return current
        if name == "height":
            return int(round(value * 100))  # meters -> cm
        if name == "weight":
            return round(value, 1)
        return int(round(value))

    def fetch_latest_snapshot(self, previous: Optional[dict] = None) -> dict:
        """
        Most recent height, weight, blood pressure, heart rate and calories.

        Each metric is read from its merged data stream. A metric that fails
        keeps its previous (or default) value; a rejected token fails the
        whole snapshot.
        """
        metrics = dict(previous or DEFAULT_SNAPSHOT)
        end_nanos = _millis(self._now()) * 1_000_000
        for name, source_id in SNAPSHOT_SOURCES.items():
            try:
                data = self._request("GET", f"{BASE_URL}/dataSources/{source_id}/datasets/0-{end_nanos}")
            except FetchFailed as e:
                if e.token_rejected:
                    raise
                logger.warning(f"Could not fetch data for {name}: {e}")
                continue
            points = data.get("point") or []
            if not points:
                continue
            try:
                metrics[name] = self._shape_metric(name, points[-1].get("value") or [], metrics[name])
            except (IndexError, KeyError, TypeError, ValueError) as e:
                logger.warning(f"Could not read latest {name} point: {e}")
        return metrics

    def fetch_health_overview(self) -> dict:
        """Weekly series plus the latest snapshot, as shown on the health panel"""
        activity = self.fetch_weekly_series()
        metrics = self.fetch_latest_snapshot()
        non_zero = [entry["steps"] for entry in activity["steps"] if entry["steps"] > 0]
        metrics["stepCount"] = non_zero[-1] if non_zero else 0
        return {"metrics": metrics, "activity": activity}
