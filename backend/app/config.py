from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # App & storage
    APP_ENV: str = "local"
    SQLITE_URL: str = "sqlite+aiosqlite:///./signaldesk.db"
    DATABASE_URL: str | None = None
    REDIS_URL: str = "redis://localhost:6379/0"
    LOG_LEVEL: str = "INFO"

    # Admission: "local" keeps buckets per process, "redis" shares them across instances
    RATE_LIMIT_BACKEND: str = "local"

    # Duplicate detection & lifecycle ordering
    DUPLICATE_WINDOW_S: int = 60
    REORDER_WINDOW_MS: int = 250
    KEY_RETENTION_H: float = 24.0  # idle (strategy, symbol) state kept in memory this long

    # Live P&L
    PRICE_PROVIDER: str = "yahoo"  # yahoo|ccxt|offline
    PRICE_POLL_INTERVAL_S: float = 30.0
    PRICE_FETCH_TIMEOUT_S: float = 5.0
    PRICE_STALE_AFTER_S: float = 300.0
    LIVE_PNL_ENABLED: bool = True

    # CORS
    CORS_ORIGINS: str = "*"  # comma-separated. Use * for local


settings = Settings()
