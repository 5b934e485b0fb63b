import logging
import threading
from typing import Any

from placetrack.clock import Clock, utc_now
from placetrack.daily_stats import DailyStatsStore
from placetrack.history import USER_REGISTRATION, HistoryStore
from placetrack.identity import Identity, IdentityProvider
from placetrack.storage import USER_KEY, Slot, StorageBackend

log = logging.getLogger(__name__)

USER_TYPES = ("user", "place")


def _empty_statistics() -> dict[str, Any]:
    return {
        "totalPlacesViewed": 0,
        "totalRoutesViewed": 0,
        "totalCategoriesViewed": 0,
        "viewedCategories": {},
        "viewedPlaces": {},
        "viewedRoutes": [],
        "lastActivity": None,
    }


def backfill_statistics(profile: dict[str, Any]) -> dict[str, Any]:
    """Make sure `profile["statistics"]` exists with every counter. Does not persist."""
    stats = profile.get("statistics")
    if not isinstance(stats, dict):
        stats = profile["statistics"] = {}
    for key, value in _empty_statistics().items():
        stats.setdefault(key, value)
    return profile


def top_categories(profile: dict[str, Any] | None, limit: int = 5) -> list[dict[str, Any]]:
    stats = (profile or {}).get("statistics")
    if not isinstance(stats, dict):
        return []
    viewed = stats.get("viewedCategories") or {}
    rows = [{"category": c, "count": n} for c, n in viewed.items()]
    rows.sort(key=lambda r: r["count"], reverse=True)
    return rows[: max(limit, 0)]


class UserStore:
    """
    The single device-local user profile (`userData` slot).

    History and daily statistics stores are optional: when given, a
    registration is also written to them.
    """

    def __init__(
        self,
        storage: StorageBackend,
        *,
        history: HistoryStore | None = None,
        daily_stats: DailyStatsStore | None = None,
        identity_provider: IdentityProvider | None = None,
        clock: Clock = utc_now,
    ) -> None:
        self._slot = Slot(storage, USER_KEY, None)
        self.history = history
        self.daily_stats = daily_stats
        self.identity_provider = identity_provider
        self._clock = clock
        self._lock = threading.Lock()

    def _save(self, profile: dict[str, Any]) -> bool:
        with self._lock:
            return self._slot.save(profile)

    def get_current(self) -> dict[str, Any] | None:
        profile = self._slot.load()
        if profile is not None and not isinstance(profile, dict):
            log.warning("Stored user profile is %s, ignoring it", type(profile).__name__)
            return None
        return profile

    def from_external_identity(self) -> Identity | None:
        if self.identity_provider is None:
            return None
        try:
            return self.identity_provider()
        except Exception as e:
            log.warning("Identity provider failed: %s", e)
            return None

    def is_registered(self) -> bool:
        profile = self.get_current()
        return bool(profile and profile.get("name") and profile.get("userType"))

    def bootstrap(self) -> dict[str, Any] | None:
        """
        Return the stored profile. A known external identity alone does not
        create one: registration is an explicit step.
        """
        profile = self.get_current()
        if profile:
            return profile
        identity = self.from_external_identity()
        if identity is not None:
            log.info("Identity %s is not registered yet", identity.id)
        return None

    def register(self, name: str, user_type: str) -> dict[str, Any] | None:
        if user_type not in USER_TYPES:
            log.warning("Registering with unexpected user type %r", user_type)
        identity = self.from_external_identity()
        profile = {
            "telegramId": identity.id if identity else None,
            "name": name,
            "userType": user_type,
            "registered": True,
            "registeredAt": self._clock().isoformat(),
            "statistics": _empty_statistics(),
        }
        if not self._save(profile):
            return None
        log.info("Registered %s user %r (telegramId=%s)", user_type, name, profile["telegramId"])
        self._announce_registration(profile)
        return profile

    def _announce_registration(self, profile: dict[str, Any]) -> None:
        if self.history is not None:
            try:
                self.history.append(
                    {
                        "userId": profile["telegramId"],
                        "userType": profile["userType"],
                        "actionType": USER_REGISTRATION,
                        "entityName": profile["name"],
                        "metadata": {"registeredAt": profile["registeredAt"]},
                    }
                )
            except Exception as e:
                log.warning("Failed to record registration in history: %s", e)

        if self.daily_stats is not None:
            now = self._clock()
            try:
                self.daily_stats.increment(now, USER_REGISTRATION)
                self.daily_stats.record_user_type(now, profile["userType"])
            except Exception as e:
                log.warning("Failed to record registration in daily statistics: %s", e)

    def update(self, changes: dict[str, Any]) -> dict[str, Any] | None:
        profile = self.get_current()
        if profile is None:
            return None
        merged = {**profile, **changes}
        backfill_statistics(merged)
        if not self._save(merged):
            return None
        return merged

    def backfill_statistics(self, profile: dict[str, Any]) -> dict[str, Any]:
        return backfill_statistics(profile)

    def record_place_view(
        self,
        profile: dict[str, Any] | None,
        place_id: Any,
        place_name: str | None = None,
        categories: list[str] | None = None,
    ) -> dict[str, Any] | None:
        """
        Count a place view on the profile. Every category in the list bumps
        both its own counter and totalCategoriesViewed.
        """
        if not profile:
            return None
        stats = backfill_statistics(profile)["statistics"]
        stats["totalPlacesViewed"] += 1
        key = str(place_id)
        stats["viewedPlaces"][key] = stats["viewedPlaces"].get(key, 0) + 1
        for category in categories or []:
            stats["viewedCategories"][category] = stats["viewedCategories"].get(category, 0) + 1
            stats["totalCategoriesViewed"] += 1
        stats["lastActivity"] = self._clock().isoformat()
        if not self._save(profile):
            log.warning("Place view %s counted in memory only", place_name or key)
        return profile

    def record_route_view(self, profile: dict[str, Any] | None, route_id: Any) -> dict[str, Any] | None:
        if not profile:
            return None
        stats = backfill_statistics(profile)["statistics"]
        stats["totalRoutesViewed"] += 1
        if route_id not in stats["viewedRoutes"]:
            stats["viewedRoutes"].append(route_id)
        stats["lastActivity"] = self._clock().isoformat()
        if not self._save(profile):
            log.warning("Route view %s counted in memory only", route_id)
        return profile

    def top_categories(self, profile: dict[str, Any] | None, limit: int = 5) -> list[dict[str, Any]]:
        return top_categories(profile, limit)

    def stats_summary(self, profile: dict[str, Any] | None) -> dict[str, Any] | None:
        if not profile:
            return None
        stats = profile.get("statistics")
        if not isinstance(stats, dict):
            stats = _empty_statistics()
        return {
            "totalPlacesViewed": stats.get("totalPlacesViewed", 0),
            "totalRoutesViewed": stats.get("totalRoutesViewed", 0),
            "totalCategoriesViewed": stats.get("totalCategoriesViewed", 0),
            "topCategories": top_categories(profile, 5),
            "lastActivity": stats.get("lastActivity"),
        }

    def clear(self) -> bool:
        with self._lock:
            return self._slot.clear()
