import os
from typing import List


def _env_int(name: str, default: int) -> int:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


class Settings:
    def _split_csv(self, raw: str, *, default: List[str]) -> List[str]:
        parts = [p.strip() for p in (raw or "").split(",")]
        return [p for p in parts if p] or default

    def __init__(self) -> None:
        self.env = os.getenv('APP_ENV', 'local')
        self.db_url = os.getenv('DATABASE_URL', 'postgresql://localhost/cbtb_pos')
        # Comma-separated list of allowed CORS origins for the browser front end.
        # Default keeps local dev working out of the box.
        self.cors_origins = self._split_csv(
            os.getenv("CORS_ORIGINS", "").strip(),
            default=["http://localhost:3000", "http://127.0.0.1:3000"],
        )
        self.api_version = os.getenv("APP_VERSION", "1.0.0").strip() or "1.0.0"
        # Bearer token for /api/admin/*. Empty disables the admin routes.
        self.admin_token = (os.getenv("ADMIN_API_TOKEN") or "").strip()
        self.db_pool_min = _env_int("DB_POOL_MIN_SIZE", 1)
        self.db_pool_max = _env_int("DB_POOL_MAX_SIZE", 10)


class TerminalSettings:
    """Cashier terminal side: where to submit orders and where the offline queue lives."""

    def __init__(self) -> None:
        self.api_base_url = (os.getenv("POS_API_BASE_URL") or "http://localhost:8000").strip()
        self.terminal_id = (os.getenv("POS_TERMINAL_ID") or "").strip()
        self.terminal_token = (os.getenv("POS_TERMINAL_TOKEN") or "").strip()
        self.outbox_path = (os.getenv("POS_OUTBOX_PATH") or "pos_outbox.sqlite").strip()
        self.branch = (os.getenv("POS_BRANCH") or "vito-cruz").strip().lower()
        self.http_timeout = float(_env_int("POS_HTTP_TIMEOUT_SECONDS", 10))


settings = Settings()
