from __future__ import annotations

import os

import pytest

from studio_reminders.main import create_app


def _set_env(overrides: dict[str, str | None]) -> dict[str, str | None]:
    previous: dict[str, str | None] = {}
    for key, value in overrides.items():
        previous[key] = os.environ.get(key)
        if value is None:
            os.environ.pop(key, None)
        else:
            os.environ[key] = value
    return previous


def _restore_env(previous: dict[str, str | None]) -> None:
    for key, value in previous.items():
        if value is None:
            os.environ.pop(key, None)
        else:
            os.environ[key] = value


def test_create_app_starts_with_stub_sender_under_enforce() -> None:
    previous = _set_env(
        {
            "RUNTIME_SECRET_GUARD_MODE": "enforce",
            "SMS_SENDER_TYPE": "stub",
            "DELIVERY_STORE_BACKEND": None,
            "APPOINTMENT_STORE_BACKEND": None,
            "JOB_RUN_STORE_BACKEND": None,
        }
    )
    try:
        app = create_app()
        assert app.title == "Studio Reminders"
    finally:
        _restore_env(previous)


def test_create_app_blocks_http_sender_without_token() -> None:
    previous = _set_env(
        {
            "RUNTIME_SECRET_GUARD_MODE": "enforce",
            "SMS_SENDER_TYPE": "http",
            "SMSAPI_TOKEN": None,
            "SMSAPI_SENDER": "Studio",
        }
    )
    try:
        with pytest.raises(RuntimeError) as exc_info:
            create_app()
        message = str(exc_info.value)
        assert "SMSAPI_TOKEN is empty" in message
        assert "SMS_SENDER_TYPE=stub" in message
    finally:
        _restore_env(previous)


def test_create_app_only_warns_in_warn_mode(caplog: pytest.LogCaptureFixture) -> None:
    previous = _set_env(
        {
            "RUNTIME_SECRET_GUARD_MODE": "warn",
            "SMS_SENDER_TYPE": "http",
            "SMSAPI_TOKEN": None,
            "SMSAPI_SENDER": None,
        }
    )
    try:
        with caplog.at_level("WARNING", logger="studio_reminders.main"):
            app = create_app()
        assert app.title == "Studio Reminders"
        assert "runtime secret guard warning" in caplog.text
    finally:
        _restore_env(previous)
