from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional


def _project_root() -> Path:
    # core/config.py -> ledger/core -> ledger -> project root
    return Path(__file__).resolve().parents[2]


PROJECT_ROOT: Path = _project_root()

DEFAULT_HOLIDAY_API_URL = "https://timor.tech/api/holiday/year/{year}"


def _env_flag(value: Optional[str], default: bool) -> bool:
    if value is None or not value.strip():
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _env_int(value: Optional[str], default: int) -> int:
    try:
        return int(value) if value is not None and value.strip() else default
    except ValueError:
        return default


@dataclass
class Settings:
    data_dir: Path = PROJECT_ROOT / "data"
    db_path: Path = PROJECT_ROOT / "data" / "ledger.db"
    log_dir: Path = PROJECT_ROOT / "logs"
    production: bool = False
    currency: str = "CNY"
    holiday_api_url: str = DEFAULT_HOLIDAY_API_URL
    holiday_api_timeout: float = 10.0
    holiday_cache_ttl_seconds: int = 12 * 60 * 60
    holiday_failure_ttl_seconds: int = 5 * 60
    scheduler_enabled: bool = True
    cron_hour: int = 3
    cron_minute: int = 15
    include_overdue: bool = True


def load_settings(environ: Optional[Mapping[str, str]] = None) -> Settings:
    """Read settings from the environment (``os.environ`` by default)."""
    env = os.environ if environ is None else environ

    data_dir = Path(env.get("LEDGER_DATA_DIR", str(PROJECT_ROOT / "data")))
    return Settings(
        data_dir=data_dir,
        db_path=Path(env.get("LEDGER_DB_PATH", str(data_dir / "ledger.db"))),
        log_dir=Path(env.get("LEDGER_LOG_DIR", str(PROJECT_ROOT / "logs"))),
        production=env.get("ENVIRONMENT") == "production",
        currency=env.get("LEDGER_CURRENCY", "CNY"),
        holiday_api_url=env.get("HOLIDAY_API_URL", DEFAULT_HOLIDAY_API_URL),
        holiday_api_timeout=float(_env_int(env.get("HOLIDAY_API_TIMEOUT"), 10)),
        holiday_cache_ttl_seconds=_env_int(env.get("HOLIDAY_CACHE_TTL_SECONDS"), 12 * 60 * 60),
        holiday_failure_ttl_seconds=_env_int(env.get("HOLIDAY_FAILURE_TTL_SECONDS"), 5 * 60),
        scheduler_enabled=_env_flag(env.get("RECURRING_SCHEDULER_ENABLED"), True),
        cron_hour=_env_int(env.get("RECURRING_CRON_HOUR"), 3),
        cron_minute=_env_int(env.get("RECURRING_CRON_MINUTE"), 15),
        include_overdue=_env_flag(env.get("RECURRING_INCLUDE_OVERDUE"), True),
    )
