from __future__ import annotations

import json
import logging
import socket
import urllib.error
import urllib.parse
import urllib.request
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Literal, Protocol

from .addresses import mask_address

logger = logging.getLogger(__name__)

SmsResultStatus = Literal["sent", "failed"]


@dataclass(frozen=True)
class SmsSendRequest:
    to: str
    message: str


@dataclass(frozen=True)
class SmsSendResult:
    status: SmsResultStatus
    attempted_at: datetime
    provider_message_id: str | None = None
    error_code: str | None = None
    error_message: str | None = None

    @property
    def failure_detail(self) -> str:
        if self.error_message and self.error_code:
            return f"{self.error_code}: {self.error_message}"
        return self.error_message or self.error_code or "unknown SMS gateway error"


class SmsSender(Protocol):
    def send(self, payload: SmsSendRequest) -> SmsSendResult: ...


class StubSmsSender:
    def __init__(self, *, enabled: bool, fail_numbers: tuple[str, ...] = ()) -> None:
        self._enabled = enabled
        self._fail_numbers = frozenset(fail_numbers)
        self.sent: list[SmsSendRequest] = []

    def send(self, payload: SmsSendRequest) -> SmsSendResult:
        attempted_at = datetime.now(timezone.utc)

        if not self._enabled:
            return SmsSendResult(
                status="failed",
                attempted_at=attempted_at,
                error_code="sms_disabled",
                error_message="SMS live delivery is disabled",
            )

        if payload.to in self._fail_numbers:
            return SmsSendResult(
                status="failed",
                attempted_at=attempted_at,
                error_code="stub_delivery_failed",
                error_message="Stub sender forced failure for recipient",
            )

        self.sent.append(payload)
        message_id = f"stub-{len(self.sent):06d}-{int(attempted_at.timestamp())}"
        return SmsSendResult(status="sent", attempted_at=attempted_at, provider_message_id=message_id)


class _SmsApiError(Exception):
    """Internal error raised when an SMSAPI request fails."""

    def __init__(self, error_code: str, message: str) -> None:
        super().__init__(message)
        self.error_code = error_code
        self.message = message


class SmsApiSender:
    """SMSAPI.pl gateway client."""

    def __init__(
        self,
        *,
        base_url: str,
        token: str,
        sender_name: str,
        timeout_seconds: float = 15,
    ) -> None:
        stripped_url = base_url.strip().rstrip("/")
        if not stripped_url:
            raise ValueError("base_url must not be empty")
        self._base_url = stripped_url
        self._token = token.strip()
        self._sender_name = sender_name.strip()
        self._timeout_seconds = timeout_seconds

    def send(self, payload: SmsSendRequest) -> SmsSendResult:
        attempted_at = datetime.now(timezone.utc)

        if not self._token or not self._sender_name:
            return SmsSendResult(
                status="failed",
                attempted_at=attempted_at,
                error_code="credentials_missing",
                error_message="SMSAPI credentials not configured",
            )

        form = {
            "to": payload.to,
            "message": payload.message,
            "from": self._sender_name,
            "format": "json",
            "encoding": "utf-8",
        }

        try:
            response_data = self._post(form)
        except _SmsApiError as exc:
            logger.warning("SMSAPI send to %s failed: %s", mask_address(payload.to), exc.message)
            return SmsSendResult(
                status="failed",
                attempted_at=attempted_at,
                error_code=exc.error_code,
                error_message=exc.message,
            )

        messages = response_data.get("list")
        if int(response_data.get("count") or 0) > 0 and isinstance(messages, list) and messages:
            message_id = messages[0].get("id") if isinstance(messages[0], dict) else None
            return SmsSendResult(
                status="sent",
                attempted_at=attempted_at,
                provider_message_id=str(message_id) if message_id is not None else None,
            )
        return SmsSendResult(
            status="failed",
            attempted_at=attempted_at,
            error_code="provider_rejected",
            error_message=str(response_data.get("message") or "Unknown SMSAPI error"),
        )

    def _post(self, form: dict[str, str]) -> dict[str, object]:
        url = f"{self._base_url}/sms.do"
        data = urllib.parse.urlencode(form).encode("utf-8")
        request = urllib.request.Request(
            url,
            data=data,
            headers={
                "Authorization": f"Bearer {self._token}",
                "Content-Type": "application/x-www-form-urlencoded",
            },
            method="POST",
        )
        try:
            with urllib.request.urlopen(request, timeout=self._timeout_seconds) as response:
                parsed = json.loads(response.read().decode("utf-8"))
        except urllib.error.HTTPError as exc:
            raise _SmsApiError(
                error_code=f"http_{exc.code}",
                message=f"HTTP {exc.code}: {exc.reason}",
            ) from exc
        except urllib.error.URLError as exc:
            if isinstance(exc.reason, (socket.timeout, TimeoutError)):
                raise _SmsApiError(error_code="timeout", message=f"Request timed out: {exc.reason}") from exc
            raise _SmsApiError(
                error_code="connection_error",
                message=f"Connection error: {exc.reason}",
            ) from exc
        except (socket.timeout, TimeoutError) as exc:
            raise _SmsApiError(
                error_code="timeout",
                message=f"Request timed out: {exc}",
            ) from exc
        except json.JSONDecodeError as exc:
            raise _SmsApiError(error_code="invalid_response", message="SMSAPI returned invalid JSON") from exc
        if not isinstance(parsed, dict):
            raise _SmsApiError(error_code="invalid_response", message="SMSAPI returned an unexpected payload")
        return parsed
