from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Callable, Literal, get_args

from .addresses import InvalidAddressError
from .appointments import AppointmentStore
from .candidates import ReminderCategory, collect_candidates
from .civil_time import CivilZone
from .dispatcher import DeliveryDispatcher
from .job_runs import RunAuditor
from .ledger import LedgerStorageError

logger = logging.getLogger(__name__)

JobName = Literal[
    "appointment-reminders",
    "deposit-reminders",
    "post-service-reminders",
    "client-status-refresh",
]
JOB_NAMES: tuple[str, ...] = get_args(JobName)


@dataclass(frozen=True)
class JobSchedule:
    hour: int
    minute: int = 0
    # Monday=0; None means every day.
    weekday: int | None = None


JOB_SCHEDULE: dict[str, JobSchedule] = {
    "appointment-reminders": JobSchedule(hour=9),
    "deposit-reminders": JobSchedule(hour=10),
    "post-service-reminders": JobSchedule(hour=11),
    "client-status-refresh": JobSchedule(hour=7, weekday=0),
}

JOB_CATEGORIES: dict[str, tuple[ReminderCategory, ...]] = {
    "appointment-reminders": ("two-days-before", "one-day-before", "same-day"),
    "deposit-reminders": ("deposit-due-soon", "deposit-overdue"),
    "post-service-reminders": ("post-service",),
}


@dataclass(frozen=True)
class JobResult:
    success: bool
    job_name: str
    executed_at: datetime
    messages_sent: int
    errors: list[str] = field(default_factory=list)
    clients_checked: int | None = None


@dataclass(frozen=True)
class ScheduleStatus:
    next_runs: dict[str, datetime]
    timezone: str
    current_time: datetime


def next_run_time(zone: CivilZone, hour: int, minute: int, now: datetime) -> datetime:
    """Next occurrence of a civil wall-clock time strictly after ``now``."""
    today = zone.civil_date(now)
    candidate = zone.at_wall_clock(today, hour, minute)
    if candidate > now:
        return candidate
    return zone.at_wall_clock(today + timedelta(days=1), hour, minute)


def next_weekly_run_time(zone: CivilZone, weekday: int, hour: int, minute: int, now: datetime) -> datetime:
    today = zone.civil_date(now)
    days_ahead = (weekday - today.weekday()) % 7
    candidate = zone.at_wall_clock(today + timedelta(days=days_ahead), hour, minute)
    if candidate > now:
        return candidate
    return zone.at_wall_clock(today + timedelta(days=days_ahead + 7), hour, minute)


class ReminderJobService:
    def __init__(
        self,
        *,
        store: AppointmentStore,
        dispatcher: DeliveryDispatcher,
        auditor: RunAuditor,
        zone: CivilZone,
        studio_name: str,
    ) -> None:
        self._store = store
        self._dispatcher = dispatcher
        self._auditor = auditor
        self._zone = zone
        self._studio_name = studio_name

    def _reference_now(self, now: datetime | None) -> datetime:
        value = now if now is not None else self._zone.now()
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)

    def run_appointment_reminders(self, now: datetime | None = None) -> JobResult:
        return self._run_reminder_job("appointment-reminders", self._reference_now(now))

    def run_deposit_reminders(self, now: datetime | None = None) -> JobResult:
        return self._run_reminder_job("deposit-reminders", self._reference_now(now))

    def run_post_service_reminders(self, now: datetime | None = None) -> JobResult:
        return self._run_reminder_job("post-service-reminders", self._reference_now(now))

    def run_client_status_refresh(self, now: datetime | None = None) -> JobResult:
        executed_at = self._reference_now(now)
        run_id = self._auditor.start("client-status-refresh", executed_at)
        errors: list[str] = []
        clients_checked: int | None = None
        try:
            clients_checked = self._store.count_clients()
        except Exception as exc:
            logger.exception("Client status refresh failed")
            errors.append(f"Client status refresh failed: {exc}")
        result = JobResult(
            success=not errors,
            job_name="client-status-refresh",
            executed_at=executed_at,
            messages_sent=0,
            errors=errors,
            clients_checked=clients_checked,
        )
        self._auditor.finish(run_id, ok=result.success, details=_run_details(result))
        return result

    def trigger(self, job_name: str, now: datetime | None = None) -> JobResult:
        handlers: dict[str, Callable[[datetime | None], JobResult]] = {
            "appointment-reminders": self.run_appointment_reminders,
            "deposit-reminders": self.run_deposit_reminders,
            "post-service-reminders": self.run_post_service_reminders,
            "client-status-refresh": self.run_client_status_refresh,
        }
        handler = handlers.get(job_name)
        if handler is None:
            raise ValueError(f"Unknown job: {job_name}")
        return handler(now)

    def schedule_status(self, now: datetime | None = None) -> ScheduleStatus:
        reference = self._reference_now(now)
        next_runs: dict[str, datetime] = {}
        for job_name, schedule in JOB_SCHEDULE.items():
            if schedule.weekday is None:
                next_runs[job_name] = next_run_time(self._zone, schedule.hour, schedule.minute, reference)
            else:
                next_runs[job_name] = next_weekly_run_time(
                    self._zone, schedule.weekday, schedule.hour, schedule.minute, reference
                )
        return ScheduleStatus(
            next_runs=next_runs,
            timezone=self._zone.name,
            current_time=self._zone.to_civil(reference),
        )

    def _run_reminder_job(self, job_name: str, now: datetime) -> JobResult:
        run_id = self._auditor.start(job_name, now)
        messages_sent = 0
        errors: list[str] = []
        try:
            for category in JOB_CATEGORIES[job_name]:
                sent, category_errors = self._run_category(category, now)
                messages_sent += sent
                errors.extend(category_errors)
        except Exception as exc:
            logger.exception("Job %s failed during candidate selection", job_name)
            errors = [f"Job {job_name} failed: {exc}"]

        result = JobResult(
            success=not errors,
            job_name=job_name,
            executed_at=now,
            messages_sent=messages_sent,
            errors=errors,
        )
        logger.info("Job %s finished: sent=%d errors=%d", job_name, messages_sent, len(errors))
        self._auditor.finish(run_id, ok=result.success, details=_run_details(result))
        return result

    def _run_category(self, category: ReminderCategory, now: datetime) -> tuple[int, list[str]]:
        candidates = collect_candidates(
            category,
            now=now,
            zone=self._zone,
            store=self._store,
            studio_name=self._studio_name,
        )
        sent = 0
        errors: list[str] = []
        for candidate in candidates:
            appointment = candidate.appointment
            try:
                outcome = self._dispatcher.dispatch(
                    appointment.phone,
                    candidate.template_id,
                    candidate.logical_slot,
                    candidate.variables,
                    source_ref=appointment.appointment_id,
                )
            except InvalidAddressError as exc:
                errors.append(f"Skipped {category} reminder for appointment {appointment.appointment_id}: {exc}")
                continue
            except LedgerStorageError as exc:
                logger.error("Ledger unavailable for appointment %s: %s", appointment.appointment_id, exc)
                errors.append(f"Ledger error for appointment {appointment.appointment_id}: {exc}")
                continue

            if outcome.success and not outcome.already_sent:
                sent += 1
            elif not outcome.success and not outcome.already_sent:
                errors.append(
                    f"Failed to send {category} reminder for appointment {appointment.appointment_id}: "
                    f"{outcome.detail}"
                )
        return sent, errors


def _run_details(result: JobResult) -> str:
    payload: dict[str, object] = {"messages_sent": result.messages_sent, "errors": result.errors}
    if result.clients_checked is not None:
        payload["clients_checked"] = result.clients_checked
    return json.dumps(payload, sort_keys=True, separators=(",", ":"))
