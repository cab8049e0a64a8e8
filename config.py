import os
from functools import lru_cache
from pathlib import Path


class Settings:
    def __init__(
        self,
        database_url: str,
        timezone: str,
        fx_provider: str,
        fx_markup_bps: int,
        fx_timeout_secs: float,
        recurring_auto_process: bool,
    ) -> None:
        self.database_url = database_url
        self.timezone = timezone
        self.fx_provider = fx_provider
        self.fx_markup_bps = fx_markup_bps
        self.fx_timeout_secs = fx_timeout_secs
        self.recurring_auto_process = recurring_auto_process


def _ensure_data_dir() -> Path:
    root = Path(os.getenv("FINANCE_DATA_DIR", "./data")).resolve()
    root.mkdir(parents=True, exist_ok=True)
    return root


def _env_flag(name: str, default: str = "0") -> bool:
    return os.getenv(name, default).strip().lower() in {"1", "true", "yes", "on"}


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    data_dir = _ensure_data_dir()
    default_db = data_dir / "finance.db"
    database_url = os.getenv("FINANCE_DATABASE_URL", f"sqlite:///{default_db}")
    timezone = os.getenv("FINANCE_TIMEZONE", "UTC")
    fx_provider = os.getenv("FINANCE_FX_PROVIDER", "frankfurter")
    fx_markup_bps = int(os.getenv("FINANCE_FX_MARKUP_BPS", "0"))
    fx_timeout_secs = float(os.getenv("FINANCE_FX_TIMEOUT_SECS", "5"))
    recurring_auto_process = _env_flag("FINANCE_RECURRING_AUTO_PROCESS")
    return Settings(
        database_url=database_url,
        timezone=timezone,
        fx_provider=fx_provider,
        fx_markup_bps=fx_markup_bps,
        fx_timeout_secs=fx_timeout_secs,
        recurring_auto_process=recurring_auto_process,
    )
