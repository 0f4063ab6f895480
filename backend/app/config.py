import os
from typing import List


def _env_int(name: str, default: int) -> int:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except Exception:
        return default


class Settings:
    def _split_csv(self, raw: str, *, default: List[str]) -> List[str]:
        parts = [p.strip() for p in (raw or "").split(",")]
        return [p for p in parts if p] or default

    def __init__(self) -> None:
        self.env = os.getenv("APP_ENV", "local")
        self.db_url = os.getenv("APP_DATABASE_URL") or os.getenv("DATABASE_URL") or "postgresql://localhost/backoffice"
        self.cors_origins = self._split_csv(
            os.getenv("CORS_ORIGINS", "").strip(),
            default=["http://localhost:3000", "http://127.0.0.1:3000"],
        )
        self.api_version = os.getenv("APP_VERSION", "0.1.0").strip() or "0.1.0"

        # Pool sizing defaults are conservative for local/dev.
        self.db_pool_min_size = _env_int("DB_POOL_MIN_SIZE", 1)
        self.db_pool_max_size = _env_int("DB_POOL_MAX_SIZE", 10)
        # Bounded timeout for every store session (catalog/order fetches, stock upserts).
        self.db_statement_timeout_ms = _env_int("DB_STATEMENT_TIMEOUT_MS", 15000)

        # Retries only ever wrap store I/O, never the matching itself.
        self.store_retry_attempts = max(1, _env_int("STORE_RETRY_ATTEMPTS", 3))
        self.store_retry_base_delay_ms = max(0, _env_int("STORE_RETRY_BASE_DELAY_MS", 200))
        self.store_retry_max_delay_ms = max(0, _env_int("STORE_RETRY_MAX_DELAY_MS", 2000))

        self.business_timezone = (os.getenv("BUSINESS_TIMEZONE") or "").strip() or "America/Argentina/Buenos_Aires"
        self.stock_default_cutoff_hour = min(23, max(0, _env_int("STOCK_DEFAULT_CUTOFF_HOUR", 14)))


settings = Settings()
