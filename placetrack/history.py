import logging
import threading
import uuid
from collections.abc import Mapping, Sequence
from datetime import datetime, timedelta
from typing import Any

from placetrack.clock import Clock, parse_ts, utc_now
from placetrack.storage import HISTORY_KEY, Slot, StorageBackend

log = logging.getLogger(__name__)

MAX_HISTORY_ENTRIES = 10000

# Known action types. Any other string is accepted as well.
PLACE_VIEW = "place_view"
ROUTE_VIEW = "route_view"
CATEGORY_VIEW = "category_view"
PLACE_SHOW = "place_show"
USER_REGISTRATION = "user_registration"
ROUTE_CREATION = "route_creation"

# Assigned by the store, callers can't override them.
_STORE_FIELDS = ("id", "timestamp")


class HistoryStore:
    """
    Append-only log of user actions kept in the `historyData` slot.

    Oldest entries are evicted once the log grows past `limit`.
    Reads never fail: an unreadable slot is an empty log.
    """

    def __init__(
        self,
        storage: StorageBackend,
        *,
        limit: int = MAX_HISTORY_ENTRIES,
        clock: Clock = utc_now,
    ) -> None:
        self._slot = Slot(storage, HISTORY_KEY, [])
        self.limit = int(limit)
        self._clock = clock
        self._lock = threading.Lock()

    def _entries(self) -> list[dict[str, Any]]:
        data = self._slot.load()
        return [e for e in data if isinstance(e, dict)]

    def __len__(self) -> int:
        return len(self._entries())

    def append(self, action: Mapping[str, Any] | None = None, **extras: Any) -> dict[str, Any]:
        """
        Record an action and return the stored entry.

        `action` (and keyword extras) may carry userId, userType, actionType,
        entityId, entityName, entityType, metadata and any other fields;
        unknown fields are stored verbatim. `id` and `timestamp` are always
        assigned here.
        """
        fields: dict[str, Any] = dict(action or {})
        fields.update(extras)

        entry: dict[str, Any] = {
            "id": uuid.uuid4().hex,
            "timestamp": self._clock().isoformat(),
            "userId": None,
            "userType": None,
            "actionType": None,
            "entityId": None,
            "entityName": None,
            "entityType": None,
            "metadata": {},
        }
        for key, value in fields.items():
            if key in _STORE_FIELDS:
                log.debug("Ignoring caller-supplied %r for history entry", key)
                continue
            entry[key] = value

        with self._lock:
            history = self._slot.load()
            history.append(entry)
            if len(history) > self.limit:
                del history[: len(history) - self.limit]
            self._slot.save(history)
        return entry

    def query_by_user(self, user_id: Any) -> list[dict[str, Any]]:
        return [e for e in self._entries() if e.get("userId") == user_id]

    def query_by_type(self, action_type: str) -> list[dict[str, Any]]:
        return [e for e in self._entries() if e.get("actionType") == action_type]

    def query_by_entity(self, entity_type: str, entity_id: Any) -> list[dict[str, Any]]:
        return [
            e
            for e in self._entries()
            if e.get("entityType") == entity_type and e.get("entityId") == entity_id
        ]

    def query_by_period(self, start: datetime | str, end: datetime | str) -> list[dict[str, Any]]:
        """Entries with start <= timestamp <= end. Unreadable timestamps never match."""
        start_ts = parse_ts(start)
        end_ts = parse_ts(end)
        if start_ts is None or end_ts is None:
            return []
        out: list[dict[str, Any]] = []
        for entry in self._entries():
            ts = parse_ts(entry.get("timestamp"))
            if ts is not None and start_ts <= ts <= end_ts:
                out.append(entry)
        return out

    def prune_older_than(self, days_to_keep: int = 365) -> int:
        """Drop entries older than `days_to_keep` days. Returns how many remain."""
        cutoff = self._clock() - timedelta(days=days_to_keep)
        with self._lock:
            kept = []
            for entry in self._entries():
                ts = parse_ts(entry.get("timestamp"))
                if ts is not None and ts >= cutoff:
                    kept.append(entry)
            self._slot.save(kept)
        return len(kept)

    def recent(self, limit: int = 100) -> list[dict[str, Any]]:
        """Last `limit` entries, newest first."""
        if limit <= 0:
            return []
        return self._entries()[-limit:][::-1]

    def export_all(self) -> list[dict[str, Any]]:
        return self._slot.load()

    def import_all(self, data: Any) -> bool:
        """Replace the whole log. Anything but a list/tuple is rejected."""
        if isinstance(data, (str, bytes)) or not isinstance(data, Sequence):
            log.warning("Refusing to import history of type %s", type(data).__name__)
            return False
        history = list(data)
        if len(history) > self.limit:
            log.warning("Imported history has %d entries, keeping newest %d", len(history), self.limit)
            history = history[len(history) - self.limit :]
        with self._lock:
            return self._slot.save(history)

    def clear(self) -> bool:
        with self._lock:
            return self._slot.clear()
