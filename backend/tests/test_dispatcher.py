from __future__ import annotations

import threading
import time
from datetime import datetime, timezone

import pytest

from studio_reminders.addresses import InvalidAddressError
from studio_reminders.dispatcher import DeliveryDispatcher, prepare_message
from studio_reminders.ledger import DeliveryKey, InMemoryDeliveryLedger
from studio_reminders.sms_gateway import SmsSendRequest, SmsSendResult

SLOT = datetime(2026, 3, 10, 23, 0, tzinfo=timezone.utc)
VARIABLES = {"IMIE": "Anna", "DATA": "12.03", "GODZ": "14:00", "STUDIO": "Studio Tatuażu"}


class RecordingSender:
    def __init__(self, *, status: str = "sent", delay: float = 0.0, error: Exception | None = None) -> None:
        self.calls: list[SmsSendRequest] = []
        self._status = status
        self._delay = delay
        self._error = error
        self._lock = threading.Lock()

    def send(self, payload: SmsSendRequest) -> SmsSendResult:
        if self._delay:
            time.sleep(self._delay)
        with self._lock:
            self.calls.append(payload)
            call_number = len(self.calls)
        if self._error is not None:
            raise self._error
        attempted_at = datetime.now(timezone.utc)
        if self._status == "sent":
            return SmsSendResult(status="sent", attempted_at=attempted_at, provider_message_id=f"msg-{call_number}")
        return SmsSendResult(
            status="failed",
            attempted_at=attempted_at,
            error_code="http_500",
            error_message="HTTP 500: boom",
        )


def _dispatcher(sender: RecordingSender, ledger: InMemoryDeliveryLedger | None = None) -> DeliveryDispatcher:
    return DeliveryDispatcher(ledger=ledger or InMemoryDeliveryLedger(), sender=sender)


def test_prepare_message_normalizes_and_renders_without_side_effects() -> None:
    prepared = prepare_message("600 100 200", "SMS_D2", SLOT, VARIABLES)

    assert prepared.key == DeliveryKey("+48600100200", "SMS_D2", SLOT)
    assert prepared.body == "Cześć Anna! Wizyta 12.03 o 14:00 w Studio Tatuażu – widzimy się pojutrze"


def test_dispatch_sends_once_and_records_sent_row() -> None:
    ledger = InMemoryDeliveryLedger()
    sender = RecordingSender()
    dispatcher = _dispatcher(sender, ledger)

    outcome = dispatcher.dispatch("600100200", "SMS_D1", SLOT, VARIABLES, source_ref="appt-1")

    assert outcome.success is True
    assert outcome.already_sent is False
    assert outcome.provider_ref == "msg-1"
    assert len(sender.calls) == 1
    assert sender.calls[0].to == "+48600100200"
    record = ledger.get(outcome.delivery_id or "")
    assert record is not None
    assert record.status == "sent"
    assert record.source_ref == "appt-1"
    assert record.provider_ref == "msg-1"
    assert record.sent_at is not None


def test_second_dispatch_for_same_slot_is_suppressed() -> None:
    sender = RecordingSender()
    dispatcher = _dispatcher(sender)

    dispatcher.dispatch("600100200", "SMS_D1", SLOT, VARIABLES)
    second = dispatcher.dispatch("+48 600 100 200", "SMS_D1", SLOT, VARIABLES)

    assert second.success is True
    assert second.already_sent is True
    assert len(sender.calls) == 1


def test_different_template_or_slot_is_a_new_delivery() -> None:
    sender = RecordingSender()
    dispatcher = _dispatcher(sender)

    dispatcher.dispatch("600100200", "SMS_D1", SLOT, VARIABLES)
    other_template = dispatcher.dispatch("600100200", "SMS_D0", SLOT, VARIABLES)
    other_slot = dispatcher.dispatch("600100200", "SMS_D1", datetime(2026, 3, 11, 23, 0, tzinfo=timezone.utc), VARIABLES)

    assert other_template.already_sent is False
    assert other_slot.already_sent is False
    assert len(sender.calls) == 3


def test_failed_send_is_recorded_and_never_retried() -> None:
    ledger = InMemoryDeliveryLedger()
    sender = RecordingSender(status="failed")
    dispatcher = _dispatcher(sender, ledger)

    first = dispatcher.dispatch("600100200", "SMS_D1", SLOT, VARIABLES)
    second = dispatcher.dispatch("600100200", "SMS_D1", SLOT, VARIABLES)

    assert first.success is False
    assert first.already_sent is False
    assert first.detail == "http_500: HTTP 500: boom"
    assert second.success is False
    assert second.already_sent is True
    assert second.detail == "Previously failed"
    assert len(sender.calls) == 1
    assert ledger.stats().failed == 1


def test_adapter_exception_marks_row_failed() -> None:
    ledger = InMemoryDeliveryLedger()
    sender = RecordingSender(error=RuntimeError("socket closed"))
    dispatcher = _dispatcher(sender, ledger)

    outcome = dispatcher.dispatch("600100200", "SMS_D1", SLOT, VARIABLES)

    assert outcome.success is False
    assert outcome.already_sent is False
    assert "socket closed" in (outcome.detail or "")
    stats = ledger.stats()
    assert stats.failed == 1
    assert stats.queued == 0


def test_queued_row_is_reported_as_claimed_elsewhere() -> None:
    ledger = InMemoryDeliveryLedger()
    ledger.claim(DeliveryKey("+48600100200", "SMS_D1", SLOT), body="pending", source_ref=None)
    sender = RecordingSender()

    outcome = _dispatcher(sender, ledger).dispatch("600100200", "SMS_D1", SLOT, VARIABLES)

    assert outcome.success is False
    assert outcome.already_sent is True
    assert outcome.detail == "claimed by another process"
    assert sender.calls == []


def test_invalid_address_raises_before_touching_the_ledger() -> None:
    ledger = InMemoryDeliveryLedger()
    sender = RecordingSender()

    with pytest.raises(InvalidAddressError):
        _dispatcher(sender, ledger).dispatch("12345", "SMS_D1", SLOT, VARIABLES)

    assert ledger.stats().total == 0
    assert sender.calls == []


def test_cleared_failed_row_can_be_sent_again() -> None:
    ledger = InMemoryDeliveryLedger()
    failing = _dispatcher(RecordingSender(status="failed"), ledger)
    first = failing.dispatch("600100200", "SMS_D1", SLOT, VARIABLES)

    ledger.delete_failed(first.delivery_id or "")
    retry_sender = RecordingSender()
    retried = _dispatcher(retry_sender, ledger).dispatch("600100200", "SMS_D1", SLOT, VARIABLES)

    assert retried.success is True
    assert retried.already_sent is False
    assert len(retry_sender.calls) == 1


def test_concurrent_dispatch_sends_exactly_once() -> None:
    ledger = InMemoryDeliveryLedger()
    sender = RecordingSender(delay=0.2)
    dispatcher = _dispatcher(sender, ledger)
    workers = 8
    barrier = threading.Barrier(workers)
    outcomes = []
    outcomes_lock = threading.Lock()

    def _run() -> None:
        barrier.wait()
        outcome = dispatcher.dispatch("600100200", "SMS_D1", SLOT, VARIABLES)
        with outcomes_lock:
            outcomes.append(outcome)

    threads = [threading.Thread(target=_run) for _ in range(workers)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert len(sender.calls) == 1
    fresh = [value for value in outcomes if not value.already_sent]
    assert len(fresh) == 1
    assert fresh[0].success is True
    assert all(value.already_sent for value in outcomes if value is not fresh[0])
    assert ledger.stats().total == 1
