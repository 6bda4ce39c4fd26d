from __future__ import annotations

from dataclasses import dataclass
import os


def _parse_bool(value: str | None, default: bool) -> bool:
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _parse_csv(value: str | None) -> list[str]:
    if not value:
        return []
    return [item.strip() for item in value.split(",") if item.strip()]


def _parse_int(value: str | None, default: int) -> int:
    if value is None or not value.strip():
        return default
    try:
        return int(value)
    except ValueError:
        return default


def normalize_currency(value: str) -> str:
    normalized = value.strip().upper()
    if len(normalized) != 3 or not normalized.isalpha():
        raise ValueError("Currency must be a 3-letter ISO 4217 code.")
    return normalized


def _default_currency(raw: str | None) -> str:
    try:
        return normalize_currency(raw or "USD")
    except ValueError:
        return "USD"


@dataclass(frozen=True)
class Settings:
    app_env: str
    database_url: str
    default_currency: str
    cors_origins: list[str]
    bill_reminder_window_days: int
    dashboard_trend_days: int
    log_level: str
    create_tables_on_startup: bool


def load_settings() -> Settings:
    app_env = os.getenv("APP_ENV", "development")
    cors_origins = _parse_csv(os.getenv("CORS_ORIGINS"))
    if not cors_origins:
        cors_origins = [os.getenv("FRONTEND_ORIGIN", "http://localhost:3000")]
    return Settings(
        app_env=app_env,
        database_url=os.getenv("DATABASE_URL", "sqlite:///./moneyflow.db"),
        default_currency=_default_currency(os.getenv("DEFAULT_CURRENCY")),
        cors_origins=cors_origins,
        bill_reminder_window_days=_parse_int(os.getenv("BILL_REMINDER_WINDOW_DAYS"), 3),
        dashboard_trend_days=_parse_int(os.getenv("DASHBOARD_TREND_DAYS"), 30),
        log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        create_tables_on_startup=_parse_bool(
            os.getenv("CREATE_TABLES_ON_STARTUP"), app_env != "production"
        ),
    )


settings = load_settings()
