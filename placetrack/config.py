from dataclasses import dataclass
import os


@dataclass(frozen=True)
class Settings:
    data_dir: str
    history_limit: int
    retention_days: int
    log_path: str
    log_level: str
    bot_token: str


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        raise RuntimeError(f"{name} must be an integer, got {raw!r}") from None


def load_settings() -> Settings:
    history_limit = _int_env("HISTORY_LIMIT", 10000)
    if history_limit < 1:
        raise RuntimeError(f"HISTORY_LIMIT must be at least 1, got {history_limit}")

    return Settings(
        data_dir=os.getenv("DATA_DIR", "data").strip() or "data",
        history_limit=history_limit,
        retention_days=_int_env("RETENTION_DAYS", 365),
        log_path=os.getenv("LOG_PATH", "placetrack.log"),
        log_level=(os.getenv("LOG_LEVEL", "INFO") or "INFO").strip().upper(),
        bot_token=os.getenv("BOT_TOKEN", "").strip(),
    )
