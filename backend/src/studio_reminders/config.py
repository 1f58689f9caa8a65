from __future__ import annotations

import os
from dataclasses import dataclass

SQL_BACKENDS = {"postgres"}


def _as_bool(value: str | None, default: bool) -> bool:
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    return default


def _as_csv_tuple(value: str | None) -> tuple[str, ...]:
    if value is None:
        return ()
    items = [item.strip() for item in value.split(",")]
    return tuple(item for item in items if item)


def _as_float(value: str | None, default: float) -> float:
    if value is None:
        return default
    try:
        return float(value.strip())
    except ValueError:
        return default


def _as_int(value: str | None, default: int) -> int:
    if value is None:
        return default
    try:
        return int(value.strip())
    except ValueError:
        return default


def _normalize_mode(value: str | None, *, default: str, allowed: set[str]) -> str:
    if value is None:
        return default
    normalized = value.strip().lower()
    return normalized if normalized in allowed else default


def _is_placeholder(value: str, *, defaults: set[str]) -> bool:
    normalized = value.strip()
    if not normalized:
        return True
    if normalized in defaults:
        return True
    lower = normalized.lower()
    return lower in {"change-me", "replace-me", "placeholder", "changeme"}


@dataclass(frozen=True)
class Settings:
    app_name: str = "Studio Reminders"
    api_prefix: str = "/api/v1"
    civil_timezone_name: str = "Europe/Warsaw"
    civil_standard_offset_minutes: int = 60
    civil_summer_offset_minutes: int = 120
    phone_country_code: str = "48"
    phone_national_length: int = 9
    studio_name: str = "Studio Tatuażu"
    sms_sender_type: str = "stub"
    sms_enabled: bool = True
    sms_stub_fail_numbers: tuple[str, ...] = ()
    smsapi_base_url: str = "https://api.smsapi.pl"
    smsapi_token: str = ""
    smsapi_sender: str = ""
    sms_timeout_seconds: float = 15.0
    delivery_store_backend: str = "inmemory"
    appointment_store_backend: str = "inmemory"
    job_run_store_backend: str = "inmemory"
    database_url: str = ""
    runtime_secret_guard_mode: str = "warn"

    def uses_sql_backend(self) -> bool:
        backends = {
            self.delivery_store_backend.strip().lower(),
            self.appointment_store_backend.strip().lower(),
            self.job_run_store_backend.strip().lower(),
        }
        return bool(backends & SQL_BACKENDS)


def get_settings() -> Settings:
    return Settings(
        app_name=os.getenv("REMINDER_APP_NAME", "Studio Reminders"),
        api_prefix=os.getenv("REMINDER_API_PREFIX", "/api/v1"),
        civil_timezone_name=os.getenv("CIVIL_TIMEZONE_NAME", "Europe/Warsaw"),
        civil_standard_offset_minutes=_as_int(os.getenv("CIVIL_STANDARD_OFFSET_MINUTES"), 60),
        civil_summer_offset_minutes=_as_int(os.getenv("CIVIL_SUMMER_OFFSET_MINUTES"), 120),
        phone_country_code=os.getenv("PHONE_COUNTRY_CODE", "48").strip().lstrip("+"),
        phone_national_length=_as_int(os.getenv("PHONE_NATIONAL_LENGTH"), 9),
        studio_name=os.getenv("STUDIO_NAME", "Studio Tatuażu"),
        sms_sender_type=_normalize_mode(os.getenv("SMS_SENDER_TYPE"), default="stub", allowed={"stub", "http"}),
        sms_enabled=_as_bool(os.getenv("SMS_ENABLED"), True),
        sms_stub_fail_numbers=_as_csv_tuple(os.getenv("SMS_STUB_FAIL_NUMBERS")),
        smsapi_base_url=os.getenv("SMSAPI_BASE_URL", "https://api.smsapi.pl"),
        smsapi_token=os.getenv("SMSAPI_TOKEN", ""),
        smsapi_sender=os.getenv("SMSAPI_SENDER", ""),
        sms_timeout_seconds=_as_float(os.getenv("SMS_TIMEOUT_SECONDS"), 15.0),
        delivery_store_backend=os.getenv("DELIVERY_STORE_BACKEND", "inmemory"),
        appointment_store_backend=os.getenv("APPOINTMENT_STORE_BACKEND", "inmemory"),
        job_run_store_backend=os.getenv("JOB_RUN_STORE_BACKEND", "inmemory"),
        database_url=os.getenv("DATABASE_URL", ""),
        runtime_secret_guard_mode=_normalize_mode(
            os.getenv("RUNTIME_SECRET_GUARD_MODE"),
            default="warn",
            allowed={"off", "warn", "enforce"},
        ),
    )


def runtime_secret_issues(settings: Settings) -> tuple[str, ...]:
    issues: list[str] = []
    if settings.sms_sender_type == "http":
        if _is_placeholder(settings.smsapi_token, defaults={"dev-smsapi-token"}):
            issues.append("SMSAPI_TOKEN is empty or uses a placeholder value while SMS_SENDER_TYPE=http")
        if not settings.smsapi_sender.strip():
            issues.append("SMSAPI_SENDER is required when SMS_SENDER_TYPE=http")
    if settings.uses_sql_backend() and not settings.database_url.strip():
        issues.append("DATABASE_URL is required when a *_STORE_BACKEND is set to postgres")
    return tuple(issues)
