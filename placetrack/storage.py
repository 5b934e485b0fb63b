import copy
import json
import logging
from pathlib import Path
from typing import Any, Protocol

log = logging.getLogger(__name__)

HISTORY_KEY = "historyData"
PLACE_STATS_KEY = "placeStatisticsData"
DAILY_STATS_KEY = "statisticsData"
USER_KEY = "userData"


class StorageBackend(Protocol):
    def read(self, key: str) -> bytes | None: ...

    def write(self, key: str, data: bytes) -> bool: ...

    def delete(self, key: str) -> bool: ...


class MemoryStorage:
    """Process-local backend. Useful for tests and for embedding."""

    def __init__(self, initial: dict[str, bytes] | None = None) -> None:
        self._slots: dict[str, bytes] = dict(initial or {})

    def read(self, key: str) -> bytes | None:
        return self._slots.get(key)

    def write(self, key: str, data: bytes) -> bool:
        self._slots[key] = bytes(data)
        return True

    def delete(self, key: str) -> bool:
        self._slots.pop(key, None)
        return True


class JsonFileStorage:
    """
    One JSON file per slot: <data_dir>/<key>.json.
    Writes go through a .tmp file that replaces the target.
    """

    def __init__(self, data_dir: str | Path) -> None:
        self.data_dir = Path(data_dir)

    def _path(self, key: str) -> Path:
        return self.data_dir / f"{key}.json"

    def read(self, key: str) -> bytes | None:
        path = self._path(key)
        if not path.exists():
            return None
        try:
            return path.read_bytes()
        except OSError as e:
            log.warning("Failed to read slot %s from %s: %s", key, path, e)
            return None

    def write(self, key: str, data: bytes) -> bool:
        path = self._path(key)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            tmp = path.with_suffix(".tmp")
            tmp.write_bytes(data)
            tmp.replace(path)
        except OSError:
            log.exception("Failed to write slot %s to %s", key, path)
            return False
        return True

    def delete(self, key: str) -> bool:
        try:
            self._path(key).unlink(missing_ok=True)
        except OSError:
            log.exception("Failed to delete slot %s", key)
            return False
        return True


class Slot:
    """
    A single named JSON document in a storage backend.

    `load()` never raises: a missing, corrupt or wrong-shaped document is
    logged and replaced by a copy of `default`. `save()` reports failure
    as False instead of raising.
    """

    def __init__(self, storage: StorageBackend, key: str, default: Any) -> None:
        self.storage = storage
        self.key = key
        self.default = default

    def _default(self) -> Any:
        return copy.deepcopy(self.default)

    def load(self) -> Any:
        try:
            raw = self.storage.read(self.key)
        except Exception:
            log.exception("Slot %s: storage read failed", self.key)
            return self._default()
        if raw is None:
            return self._default()
        try:
            data = json.loads(raw.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            log.warning("Slot %s is corrupt, using empty value: %s", self.key, e)
            return self._default()
        if self.default is not None and not isinstance(data, type(self.default)):
            log.warning(
                "Slot %s holds %s instead of %s, using empty value",
                self.key,
                type(data).__name__,
                type(self.default).__name__,
            )
            return self._default()
        return data

    def save(self, value: Any) -> bool:
        try:
            raw = json.dumps(value, ensure_ascii=False, indent=2).encode("utf-8")
        except (TypeError, ValueError):
            log.exception("Slot %s: value is not JSON serializable", self.key)
            return False
        try:
            ok = self.storage.write(self.key, raw)
        except Exception:
            log.exception("Slot %s: storage write failed", self.key)
            return False
        if not ok:
            log.error("Slot %s: storage refused the write", self.key)
        return bool(ok)

    def clear(self) -> bool:
        try:
            return bool(self.storage.delete(self.key))
        except Exception:
            log.exception("Slot %s: storage delete failed", self.key)
            return False
