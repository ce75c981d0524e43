import os
from functools import lru_cache
from pathlib import Path


class Settings:
    def __init__(
        self,
        database_url: str,
        timezone: str,
        default_account_name: str,
        opening_balance_category: str,
    ) -> None:
        self.database_url = database_url
        self.timezone = timezone
        self.default_account_name = default_account_name
        self.opening_balance_category = opening_balance_category


def _ensure_data_dir() -> Path:
    root = Path(os.getenv("LEDGER_DATA_DIR", "./data")).resolve()
    root.mkdir(parents=True, exist_ok=True)
    return root


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    database_url = os.getenv("LEDGER_DATABASE_URL")
    if not database_url:
        database_url = f"sqlite:///{_ensure_data_dir() / 'ledger.db'}"
    timezone = os.getenv("LEDGER_TIMEZONE", "UTC")
    default_account_name = os.getenv("LEDGER_DEFAULT_ACCOUNT_NAME", "Primary Account")
    opening_balance_category = os.getenv(
        "LEDGER_OPENING_BALANCE_CATEGORY", "Opening Balance"
    )
    return Settings(
        database_url=database_url,
        timezone=timezone,
        default_account_name=default_account_name,
        opening_balance_category=opening_balance_category,
    )
