from __future__ import annotations

import json
import socket
import urllib.error
import urllib.parse
from datetime import timezone
from unittest.mock import MagicMock, patch

import pytest

from studio_reminders.sms_gateway import SmsApiSender, SmsSendRequest, StubSmsSender


def _make_sender(*, base_url: str = "https://api.smsapi.test", token: str = "test-token-abc123") -> SmsApiSender:
    return SmsApiSender(base_url=base_url, token=token, sender_name="Studio", timeout_seconds=5)


def _payload() -> SmsSendRequest:
    return SmsSendRequest(to="+48600100200", message="Hej Anna! Jutro 12.03 o 14:00 w Studio Tatuażu")


def _mock_response(body: dict[str, object], status: int = 200) -> MagicMock:
    """Create a mock HTTP response that works as a context manager."""
    response = MagicMock()
    response.status = status
    response.read.return_value = json.dumps(body).encode("utf-8")
    response.__enter__ = MagicMock(return_value=response)
    response.__exit__ = MagicMock(return_value=False)
    return response


@patch("studio_reminders.sms_gateway.urllib.request.urlopen")
def test_smsapi_sender_success(mock_urlopen: MagicMock) -> None:
    mock_urlopen.return_value = _mock_response({"count": 1, "list": [{"id": "abc123", "points": 0.16}]})

    result = _make_sender().send(_payload())

    assert result.status == "sent"
    assert result.provider_message_id == "abc123"
    assert result.attempted_at.tzinfo == timezone.utc
    assert result.error_code is None
    request_arg = mock_urlopen.call_args[0][0]
    assert request_arg.full_url == "https://api.smsapi.test/sms.do"
    assert request_arg.get_header("Authorization") == "Bearer test-token-abc123"
    assert request_arg.get_header("Content-type") == "application/x-www-form-urlencoded"
    assert mock_urlopen.call_args.kwargs["timeout"] == 5
    form = urllib.parse.parse_qs(request_arg.data.decode("utf-8"))
    assert form["to"] == ["+48600100200"]
    assert form["from"] == ["Studio"]
    assert form["format"] == ["json"]
    assert form["encoding"] == ["utf-8"]
    assert form["message"] == ["Hej Anna! Jutro 12.03 o 14:00 w Studio Tatuażu"]


@patch("studio_reminders.sms_gateway.urllib.request.urlopen")
def test_smsapi_sender_provider_rejection(mock_urlopen: MagicMock) -> None:
    mock_urlopen.return_value = _mock_response({"error": 101, "message": "Authorization failed"})

    result = _make_sender().send(_payload())

    assert result.status == "failed"
    assert result.error_code == "provider_rejected"
    assert result.error_message == "Authorization failed"


@patch("studio_reminders.sms_gateway.urllib.request.urlopen")
def test_smsapi_sender_http_500(mock_urlopen: MagicMock) -> None:
    mock_urlopen.side_effect = urllib.error.HTTPError(
        url="https://api.smsapi.test/sms.do",
        code=500,
        msg="Internal Server Error",
        hdrs={},  # type: ignore[arg-type]
        fp=None,
    )

    result = _make_sender().send(_payload())

    assert result.status == "failed"
    assert result.error_code == "http_500"
    assert "500" in (result.error_message or "")


@patch("studio_reminders.sms_gateway.urllib.request.urlopen")
def test_smsapi_sender_connection_error(mock_urlopen: MagicMock) -> None:
    mock_urlopen.side_effect = urllib.error.URLError("Connection refused")

    result = _make_sender().send(_payload())

    assert result.status == "failed"
    assert result.error_code == "connection_error"
    assert "Connection" in (result.error_message or "")


@patch("studio_reminders.sms_gateway.urllib.request.urlopen")
def test_smsapi_sender_timeout(mock_urlopen: MagicMock) -> None:
    mock_urlopen.side_effect = socket.timeout("timed out")

    result = _make_sender().send(_payload())

    assert result.status == "failed"
    assert result.error_code == "timeout"
    assert "timed out" in (result.error_message or "")


@patch("studio_reminders.sms_gateway.urllib.request.urlopen")
def test_smsapi_sender_without_token_does_not_call_provider(mock_urlopen: MagicMock) -> None:
    result = _make_sender(token="").send(_payload())

    assert result.status == "failed"
    assert result.error_code == "credentials_missing"
    mock_urlopen.assert_not_called()


def test_smsapi_sender_empty_base_url() -> None:
    with pytest.raises(ValueError, match="base_url must not be empty"):
        _make_sender(base_url=" ")


def test_stub_sender_modes() -> None:
    disabled = StubSmsSender(enabled=False).send(_payload())
    forced = StubSmsSender(enabled=True, fail_numbers=("+48600100200",)).send(_payload())
    stub = StubSmsSender(enabled=True)
    sent = stub.send(_payload())

    assert disabled.error_code == "sms_disabled"
    assert forced.error_code == "stub_delivery_failed"
    assert sent.status == "sent"
    assert (sent.provider_message_id or "").startswith("stub-000001-")
    assert stub.sent == [_payload()]
