import logging
import threading
from collections.abc import Mapping
from typing import Any

from placetrack.clock import Clock, utc_now
from placetrack.storage import PLACE_STATS_KEY, Slot, StorageBackend

log = logging.getLogger(__name__)


def _empty_record(place_id: Any) -> dict[str, Any]:
    return {
        "placeId": place_id,
        "placeName": "",
        "showCount": 0,
        "categories": [],
        "firstShown": None,
        "lastShown": None,
    }


class PlaceStatsStore:
    """How many times each place was shown, keyed by place id."""

    def __init__(self, storage: StorageBackend, *, clock: Clock = utc_now) -> None:
        self._slot = Slot(storage, PLACE_STATS_KEY, {})
        self._clock = clock
        self._lock = threading.Lock()

    def _places(self) -> list[dict[str, Any]]:
        return [rec for rec in self._slot.load().values() if isinstance(rec, dict)]

    def record_show(
        self,
        place_id: Any,
        place_name: str | None = None,
        categories: list[str] | None = None,
    ) -> dict[str, Any]:
        """
        Count one more show of a place.
        A non-empty name or category list replaces the stored one.
        """
        key = str(place_id)
        now = self._clock().isoformat()
        with self._lock:
            stats = self._slot.load()
            rec = stats.get(key)
            if not isinstance(rec, dict):
                rec = _empty_record(place_id)
                rec["firstShown"] = now
                rec["lastShown"] = now
                stats[key] = rec

            rec["showCount"] = int(rec.get("showCount", 0) or 0) + 1
            rec["lastShown"] = now
            if place_name:
                rec["placeName"] = place_name
            if categories and isinstance(categories, (list, tuple)):
                rec["categories"] = list(categories)

            self._slot.save(stats)
        return rec

    def get(self, place_id: Any) -> dict[str, Any]:
        rec = self._slot.load().get(str(place_id))
        if isinstance(rec, dict):
            return rec
        return _empty_record(place_id)

    def get_all(self) -> dict[str, dict[str, Any]]:
        return self._slot.load()

    def top_places(self, limit: int = 10) -> list[dict[str, Any]]:
        places = self._places()
        # sorted() is stable, ties keep storage order.
        places.sort(key=lambda r: int(r.get("showCount", 0) or 0), reverse=True)
        return places[: max(limit, 0)]

    def category_rollup(self) -> list[dict[str, Any]]:
        """
        Per category: summed show counts of the places tagged with it and
        how many places carry it. A place counts fully for every tag.
        """
        rollup: dict[str, dict[str, Any]] = {}
        for place in self._places():
            categories = place.get("categories")
            if not isinstance(categories, list):
                continue
            shows = int(place.get("showCount", 0) or 0)
            for category in categories:
                row = rollup.setdefault(category, {"category": category, "showCount": 0, "placeCount": 0})
                row["showCount"] += shows
                row["placeCount"] += 1
        rows = list(rollup.values())
        rows.sort(key=lambda r: r["showCount"], reverse=True)
        return rows

    def total_shows(self) -> int:
        return sum(int(p.get("showCount", 0) or 0) for p in self._places())

    def export_all(self) -> dict[str, dict[str, Any]]:
        return self._slot.load()

    def import_all(self, data: Any) -> bool:
        if not isinstance(data, Mapping):
            log.warning("Refusing to import place statistics of type %s", type(data).__name__)
            return False
        with self._lock:
            return self._slot.save({str(k): v for k, v in data.items()})

    def clear(self) -> bool:
        with self._lock:
            return self._slot.clear()
