from __future__ import annotations

import logging
import sys
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

from placetrack.clock import Clock, utc_now
from placetrack.config import Settings, load_settings
from placetrack.daily_stats import DailyStatsStore
from placetrack.history import HistoryStore
from placetrack.identity import IdentityProvider, init_data_identity_provider
from placetrack.place_stats import PlaceStatsStore
from placetrack.storage import JsonFileStorage, StorageBackend
from placetrack.users import UserStore

log = logging.getLogger("placetrack")


def setup_logging(settings: Settings) -> None:
    log_path = Path(settings.log_path)
    log_path.parent.mkdir(parents=True, exist_ok=True)
    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        handlers=[
            logging.FileHandler(log_path, encoding="utf-8"),
            logging.StreamHandler(sys.stdout),
        ],
        force=True,
    )


@dataclass
class Stores:
    history: HistoryStore
    place_stats: PlaceStatsStore
    daily_stats: DailyStatsStore
    users: UserStore
    settings: Settings


def build_stores(
    settings: Settings,
    *,
    storage: StorageBackend | None = None,
    identity_provider: IdentityProvider | None = None,
    clock: Clock = utc_now,
) -> Stores:
    """Wire the four stores over one backend (JSON files under DATA_DIR by default)."""
    if storage is None:
        storage = JsonFileStorage(settings.data_dir)
    history = HistoryStore(storage, limit=settings.history_limit, clock=clock)
    daily_stats = DailyStatsStore(storage, clock=clock)
    return Stores(
        history=history,
        place_stats=PlaceStatsStore(storage, clock=clock),
        daily_stats=daily_stats,
        users=UserStore(
            storage,
            history=history,
            daily_stats=daily_stats,
            identity_provider=identity_provider,
            clock=clock,
        ),
        settings=settings,
    )


def build_from_env(raw_init_data: str | None = None) -> Stores:
    """
    Read .env / environment, set up logging and build file-backed stores.
    `raw_init_data` is the Mini App initData string of the current user, if any.
    """
    load_dotenv()
    settings = load_settings()
    setup_logging(settings)
    provider = init_data_identity_provider(raw_init_data, settings.bot_token or None)
    stores = build_stores(settings, identity_provider=provider)
    log.info("Stores ready (data_dir=%s)", settings.data_dir)
    return stores


def prune_all(stores: Stores, days_to_keep: int | None = None) -> tuple[int, int]:
    """
    Prune history and daily statistics. Returns (history entries, days) left.
    Keeps RETENTION_DAYS days unless `days_to_keep` is given.
    """
    if days_to_keep is None:
        days_to_keep = stores.settings.retention_days
    entries = stores.history.prune_older_than(days_to_keep)
    days = stores.daily_stats.prune_older_than(days_to_keep)
    log.info("Pruned to %d history entries and %d days (keep %d days)", entries, days, days_to_keep)
    return entries, days
