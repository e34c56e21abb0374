import os
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation

from dotenv import load_dotenv

load_dotenv()

RETURN_CREDIT_POLICIES = ("allow_negative", "clamp", "reject")


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def _env_int(name: str, default: int, min_value: int | None = None) -> int:
    raw = os.getenv(name)
    if raw is None:
        value = default
    else:
        try:
            value = int(raw)
        except ValueError:
            value = default
    if min_value is not None:
        return max(min_value, value)
    return value


def _env_decimal(name: str, default: str) -> Decimal:
    raw = os.getenv(name)
    try:
        value = Decimal(raw.strip()) if raw else Decimal(default)
    except InvalidOperation:
        value = Decimal(default)
    return abs(value)


def _env_choice(name: str, default: str, choices: tuple[str, ...]) -> str:
    raw = (os.getenv(name) or "").strip().lower()
    return raw if raw in choices else default


@dataclass(frozen=True)
class Settings:
    app_name: str
    cors_origins: tuple[str, ...]
    database_url: str
    return_credit_policy: str
    reconcile_epsilon: Decimal
    cost_tolerance: Decimal
    reconcile_enabled: bool
    reconcile_interval_minutes: int
    log_level: str


settings = Settings(
    app_name=os.getenv("APP_NAME", "Retail Ledger API"),
    cors_origins=tuple(
        origin.strip().rstrip("/")
        for origin in os.getenv("CORS_ORIGINS", "http://localhost:3000").split(",")
        if origin.strip()
    ),
    database_url=os.getenv("DATABASE_URL", "sqlite:///./retail_ledger.db"),
    return_credit_policy=_env_choice("RETURN_CREDIT_POLICY", "allow_negative", RETURN_CREDIT_POLICIES),
    reconcile_epsilon=_env_decimal("RECONCILE_EPSILON", "0.005"),
    cost_tolerance=_env_decimal("COST_TOLERANCE", "0.01"),
    reconcile_enabled=_env_bool("RECONCILE_ENABLED", False),
    reconcile_interval_minutes=_env_int("RECONCILE_INTERVAL_MINUTES", 60, min_value=1),
    log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
)
