import logging
import threading
from collections.abc import Mapping
from datetime import date, datetime, timedelta, timezone
from typing import Any

from placetrack.clock import Clock, parse_ts, utc_now
from placetrack.history import (
    CATEGORY_VIEW,
    PLACE_SHOW,
    PLACE_VIEW,
    ROUTE_CREATION,
    ROUTE_VIEW,
    USER_REGISTRATION,
)
from placetrack.storage import DAILY_STATS_KEY, Slot, StorageBackend

log = logging.getLogger(__name__)

# statType -> named day counter. Other stat types only reach totalActions/byActionType.
NAMED_COUNTERS = {
    PLACE_VIEW: "placeViews",
    ROUTE_VIEW: "routeViews",
    CATEGORY_VIEW: "categoryViews",
    PLACE_SHOW: "placeShows",
    USER_REGISTRATION: "userRegistrations",
    ROUTE_CREATION: "routeCreations",
}

_SUMMED_FIELDS = ("totalActions",) + tuple(NAMED_COUNTERS.values())
_MERGED_MAPS = ("byActionType", "byUserType", "byCategory")

DateLike = date | datetime | str


def _to_date(when: DateLike) -> date:
    if isinstance(when, date) and not isinstance(when, datetime):
        return when
    ts = parse_ts(when)
    if ts is None:
        raise ValueError(f"Not a date: {when!r}")
    return ts.astimezone(timezone.utc).date()


def date_key(when: DateLike | None = None) -> str:
    """YYYY-MM-DD of the UTC calendar day `when` falls on (default: now)."""
    return _to_date(utc_now() if when is None else when).isoformat()


def _empty_day(key: str) -> dict[str, Any]:
    day: dict[str, Any] = {"date": key}
    for field in _SUMMED_FIELDS:
        day[field] = 0
    day["byActionType"] = {}
    day["byUserType"] = {"user": 0, "place": 0}
    day["byCategory"] = {}
    return day


def _empty_summary() -> dict[str, Any]:
    out: dict[str, Any] = {field: 0 for field in _SUMMED_FIELDS}
    out["byActionType"] = {}
    out["byUserType"] = {"user": 0, "place": 0}
    out["byCategory"] = {}
    return out


def _fold(summary: dict[str, Any], day: dict[str, Any]) -> None:
    for field in _SUMMED_FIELDS:
        summary[field] += day.get(field, 0) or 0
    for name in _MERGED_MAPS:
        counts = day.get(name)
        if not isinstance(counts, dict):
            continue
        target = summary[name]
        for k, v in counts.items():
            target[k] = target.get(k, 0) + (v or 0)


class DailyStatsStore:
    """
    Per-day action counters in the `statisticsData` slot, keyed by date_key().
    """

    def __init__(self, storage: StorageBackend, *, clock: Clock = utc_now) -> None:
        self._slot = Slot(storage, DAILY_STATS_KEY, {})
        self._clock = clock
        self._lock = threading.Lock()

    def date_key(self, when: DateLike | None = None) -> str:
        return date_key(self._clock() if when is None else when)

    def _upsert(self, when: DateLike | None, mutate) -> dict[str, Any]:
        key = self.date_key(when)
        with self._lock:
            stats = self._slot.load()
            day = stats.get(key)
            if not isinstance(day, dict):
                day = _empty_day(key)
                stats[key] = day
            mutate(day)
            self._slot.save(stats)
        return day

    def increment(self, when: DateLike | None, stat_type: str, value: int = 1) -> dict[str, Any]:
        def mutate(day: dict[str, Any]) -> None:
            day["totalActions"] = (day.get("totalActions") or 0) + value
            counter = NAMED_COUNTERS.get(stat_type)
            if counter is not None:
                day[counter] = (day.get(counter) or 0) + value
            by_type = day.setdefault("byActionType", {})
            by_type[stat_type] = by_type.get(stat_type, 0) + value

        return self._upsert(when, mutate)

    def record_user_type(self, when: DateLike | None, user_type: str, value: int = 1) -> dict[str, Any]:
        def mutate(day: dict[str, Any]) -> None:
            by_user = day.get("byUserType")
            if not isinstance(by_user, dict):
                by_user = day["byUserType"] = {"user": 0, "place": 0}
            by_user[user_type] = by_user.get(user_type, 0) + value

        return self._upsert(when, mutate)

    def record_category(self, when: DateLike | None, category: str, value: int = 1) -> dict[str, Any]:
        def mutate(day: dict[str, Any]) -> None:
            by_category = day.get("byCategory")
            if not isinstance(by_category, dict):
                by_category = day["byCategory"] = {}
            by_category[category] = by_category.get(category, 0) + value

        return self._upsert(when, mutate)

    def day_stats(self, when: DateLike) -> dict[str, Any] | None:
        day = self._slot.load().get(self.date_key(when))
        return day if isinstance(day, dict) else None

    def period_stats(self, start: DateLike, end: DateLike) -> dict[str, Any]:
        """
        Sum of every stored day from `start` to `end`, both inclusive.
        Days without a record are skipped; `days` lists the records used.
        An unreadable bound gives an empty summary.
        """
        summary = _empty_summary()
        summary["days"] = []
        try:
            current = _to_date(start)
            last = _to_date(end)
        except ValueError as e:
            log.warning("Bad period bounds: %s", e)
            return summary
        stats = self._slot.load()
        while current <= last:
            day = stats.get(current.isoformat())
            if isinstance(day, dict):
                _fold(summary, day)
                summary["days"].append(day)
            current += timedelta(days=1)
        return summary

    def recent_stats(self, days: int = 7) -> dict[str, Any]:
        now = self._clock()
        return self.period_stats(now - timedelta(days=days), now)

    def total_stats(self) -> dict[str, Any]:
        summary = _empty_summary()
        summary["totalDays"] = 0
        for day in self._slot.load().values():
            if not isinstance(day, dict):
                continue
            _fold(summary, day)
            summary["totalDays"] += 1
        return summary

    def prune_older_than(self, days_to_keep: int = 365) -> int:
        """Drop days whose key is older than the cutoff. Returns how many days remain."""
        cutoff = self._clock() - timedelta(days=days_to_keep)
        with self._lock:
            stats = self._slot.load()
            kept = {}
            for key, day in stats.items():
                ts = parse_ts(key)
                if ts is not None and ts >= cutoff:
                    kept[key] = day
            self._slot.save(kept)
        return len(kept)

    def export_all(self) -> dict[str, dict[str, Any]]:
        return self._slot.load()

    def import_all(self, data: Any) -> bool:
        if not isinstance(data, Mapping):
            log.warning("Refusing to import daily statistics of type %s", type(data).__name__)
            return False
        with self._lock:
            return self._slot.save(dict(data))

    def clear(self) -> bool:
        with self._lock:
            return self._slot.clear()
