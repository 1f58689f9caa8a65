from __future__ import annotations

from datetime import date, datetime

from fastapi import APIRouter, HTTPException, Query

from .addresses import AddressPolicy, mask_address
from .appointments import AppointmentStore, create_appointment_store
from .civil_time import CivilZone
from .config import Settings, get_settings
from .dispatcher import DeliveryDispatcher
from .job_runs import RunAuditor, create_job_run_repository
from .jobs import JobResult, ReminderJobService
from .ledger import DeliveryLedger, DeliveryNotFoundError, DeliveryStateError, create_delivery_ledger
from .models import (
    AppointmentUpsertRequest,
    AppointmentUpsertResponse,
    DeliveryClearResponse,
    DeliveryHistoryResponse,
    DeliveryItem,
    DeliveryStatsResponse,
    JobRunItem,
    JobRunListResponse,
    JobRunResponse,
    PreviewItemResponse,
    PreviewResponse,
    ScheduleResponse,
    TriggerJobRequest,
    TriggerJobResponse,
)
from .preview import PreviewService
from .sms_gateway import SmsApiSender, SmsSender, StubSmsSender

_settings = get_settings()
router = APIRouter(prefix=f"{_settings.api_prefix}/reminders", tags=["reminders"])


def _create_zone(settings: Settings) -> CivilZone:
    return CivilZone(
        name=settings.civil_timezone_name,
        standard_offset_minutes=settings.civil_standard_offset_minutes,
        summer_offset_minutes=settings.civil_summer_offset_minutes,
    )


def _create_sms_sender(settings: Settings) -> SmsSender:
    if settings.sms_sender_type == "http":
        return SmsApiSender(
            base_url=settings.smsapi_base_url,
            token=settings.smsapi_token,
            sender_name=settings.smsapi_sender,
            timeout_seconds=settings.sms_timeout_seconds,
        )
    return StubSmsSender(enabled=settings.sms_enabled, fail_numbers=settings.sms_stub_fail_numbers)


civil_zone = _create_zone(_settings)
address_policy = AddressPolicy(
    country_code=_settings.phone_country_code,
    national_length=_settings.phone_national_length,
)
appointment_store: AppointmentStore = create_appointment_store(
    backend=_settings.appointment_store_backend,
    database_url=_settings.database_url,
)
delivery_ledger: DeliveryLedger = create_delivery_ledger(
    backend=_settings.delivery_store_backend,
    database_url=_settings.database_url,
)
job_run_repo = create_job_run_repository(
    backend=_settings.job_run_store_backend,
    database_url=_settings.database_url,
)
sms_sender: SmsSender = _create_sms_sender(_settings)


def reset_runtime_state_for_tests() -> None:
    appointment_store.reset()
    delivery_ledger.reset()
    job_run_repo.reset()


def _job_service() -> ReminderJobService:
    # Built per request so tests can swap the module-level collaborators.
    dispatcher = DeliveryDispatcher(ledger=delivery_ledger, sender=sms_sender, address_policy=address_policy)
    return ReminderJobService(
        store=appointment_store,
        dispatcher=dispatcher,
        auditor=RunAuditor(job_run_repo),
        zone=civil_zone,
        studio_name=_settings.studio_name,
    )


def _preview_service() -> PreviewService:
    return PreviewService(
        store=appointment_store,
        ledger=delivery_ledger,
        zone=civil_zone,
        studio_name=_settings.studio_name,
        address_policy=address_policy,
    )


def _job_response(result: JobResult) -> JobRunResponse:
    return JobRunResponse(
        success=result.success,
        job_name=result.job_name,  # type: ignore[arg-type]
        executed_at=result.executed_at,
        messages_sent=result.messages_sent,
        errors=list(result.errors),
        clients_checked=result.clients_checked,
    )


def _parse_as_of(value: str | None) -> datetime | date | None:
    if value is None or not value.strip():
        return None
    raw = value.strip()
    try:
        if len(raw) == 10:
            return date.fromisoformat(raw)
        if raw.endswith(("Z", "z")):
            raw = f"{raw[:-1]}+00:00"
        return datetime.fromisoformat(raw)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=f"invalid date: {raw}") from exc


@router.post("/jobs/appointment-reminders", response_model=JobRunResponse)
def run_appointment_reminders() -> JobRunResponse:
    return _job_response(_job_service().run_appointment_reminders())


@router.post("/jobs/deposit-reminders", response_model=JobRunResponse)
def run_deposit_reminders() -> JobRunResponse:
    return _job_response(_job_service().run_deposit_reminders())


@router.post("/jobs/post-service-reminders", response_model=JobRunResponse)
def run_post_service_reminders() -> JobRunResponse:
    return _job_response(_job_service().run_post_service_reminders())


@router.post("/jobs/client-status-refresh", response_model=JobRunResponse)
def run_client_status_refresh() -> JobRunResponse:
    return _job_response(_job_service().run_client_status_refresh())


@router.post("/trigger", response_model=TriggerJobResponse)
def trigger_job(payload: TriggerJobRequest) -> TriggerJobResponse:
    result = _job_service().trigger(payload.job)
    status_label = "completed" if result.success else "completed with errors"
    return TriggerJobResponse(
        success=result.success,
        message=f"Job {payload.job} {status_label}",
        job_result=_job_response(result),
    )


@router.get("/preview", response_model=PreviewResponse)
def preview_reminders(as_of: str | None = Query(default=None, alias="date")) -> PreviewResponse:
    report = _preview_service().preview(_parse_as_of(as_of))
    return PreviewResponse(
        as_of=report.as_of,
        categories={
            category: [PreviewItemResponse(**item.__dict__) for item in items]
            for category, items in report.categories.items()
        },
        clients_total=report.clients_total,
        would_send_count=report.would_send_count,
    )


@router.get("/schedule", response_model=ScheduleResponse)
def get_schedule() -> ScheduleResponse:
    status = _job_service().schedule_status()
    return ScheduleResponse(next_runs=status.next_runs, timezone=status.timezone, current_time=status.current_time)


@router.get("/deliveries", response_model=DeliveryHistoryResponse)
def list_deliveries(limit: int = Query(default=50, ge=1, le=500)) -> DeliveryHistoryResponse:
    records = delivery_ledger.list_recent(limit=limit)
    stats = delivery_ledger.stats()
    return DeliveryHistoryResponse(
        items=[
            DeliveryItem(
                delivery_id=record.delivery_id,
                source_ref=record.source_ref,
                channel_address_masked=mask_address(record.channel_address),
                template_id=record.template_id,
                status=record.status,
                logical_slot=record.logical_slot,
                body=record.body,
                provider_ref=record.provider_ref,
                failure_detail=record.failure_detail,
                created_at=record.created_at,
                sent_at=record.sent_at,
            )
            for record in records
        ],
        stats=DeliveryStatsResponse(total=stats.total, sent=stats.sent, failed=stats.failed, queued=stats.queued),
    )


@router.delete("/deliveries/{delivery_id}", response_model=DeliveryClearResponse)
def clear_failed_delivery(delivery_id: str) -> DeliveryClearResponse:
    try:
        record = delivery_ledger.delete_failed(delivery_id)
    except DeliveryNotFoundError as exc:
        raise HTTPException(status_code=404, detail=f"delivery not found: {delivery_id}") from exc
    except DeliveryStateError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    return DeliveryClearResponse(delivery_id=record.delivery_id, cleared=True)


@router.get("/job-runs", response_model=JobRunListResponse)
def list_job_runs(limit: int = Query(default=50, ge=1, le=500)) -> JobRunListResponse:
    records = RunAuditor(job_run_repo).list_recent(limit=limit)
    return JobRunListResponse(items=[JobRunItem(**record.__dict__) for record in records])


@router.post("/appointments/upsert", response_model=AppointmentUpsertResponse)
def upsert_appointments(payload: AppointmentUpsertRequest) -> AppointmentUpsertResponse:
    stored = appointment_store.upsert([item.to_appointment() for item in payload.appointments])
    return AppointmentUpsertResponse(
        processed_count=len(stored),
        appointment_ids=[value.appointment_id for value in stored],
    )
