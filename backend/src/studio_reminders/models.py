from __future__ import annotations

from datetime import datetime, timezone
from typing import Literal

from pydantic import BaseModel, Field, field_validator, model_validator

from .appointments import Appointment
from .jobs import JobName

DepositStatusField = Literal["paid", "unpaid", "not_applicable"]
DeliveryStatusField = Literal["queued", "sent", "failed"]


class JobRunResponse(BaseModel):
    success: bool
    job_name: JobName
    executed_at: datetime
    messages_sent: int
    errors: list[str] = Field(default_factory=list)
    clients_checked: int | None = None


class TriggerJobRequest(BaseModel):
    job: JobName


class TriggerJobResponse(BaseModel):
    success: bool
    message: str
    job_result: JobRunResponse


class ScheduleResponse(BaseModel):
    next_runs: dict[str, datetime]
    timezone: str
    current_time: datetime


class PreviewItemResponse(BaseModel):
    address: str
    template_id: str
    client_name: str
    event_date: str
    event_time: str
    service: str
    deposit_amount: float | None = None
    body: str
    would_send: bool
    reason: str | None = None


class PreviewResponse(BaseModel):
    as_of: datetime
    categories: dict[str, list[PreviewItemResponse]]
    clients_total: int
    would_send_count: int


class DeliveryItem(BaseModel):
    delivery_id: str
    source_ref: str | None = None
    channel_address_masked: str
    template_id: str
    status: DeliveryStatusField
    logical_slot: datetime
    body: str
    provider_ref: str | None = None
    failure_detail: str | None = None
    created_at: datetime
    sent_at: datetime | None = None


class DeliveryStatsResponse(BaseModel):
    total: int
    sent: int
    failed: int
    queued: int


class DeliveryHistoryResponse(BaseModel):
    items: list[DeliveryItem]
    stats: DeliveryStatsResponse


class DeliveryClearResponse(BaseModel):
    delivery_id: str
    cleared: bool


class JobRunItem(BaseModel):
    run_id: str
    job_name: str
    planned_at: datetime
    started_at: datetime
    finished_at: datetime | None = None
    ok: bool | None = None
    details: str | None = None


class JobRunListResponse(BaseModel):
    items: list[JobRunItem]


class AppointmentUpsertItem(BaseModel):
    appointment_id: str = Field(min_length=1, max_length=64)
    client_id: str = Field(min_length=1, max_length=64)
    first_name: str = Field(min_length=1, max_length=128)
    last_name: str = Field(default="", max_length=128)
    phone: str | None = Field(default=None, max_length=32)
    starts_at: datetime
    duration_minutes: int | None = Field(default=None, ge=0, le=24 * 60)
    service: str = Field(default="", max_length=256)
    deposit_amount: float | None = Field(default=None, ge=0)
    deposit_due_at: datetime | None = None
    deposit_status: DepositStatusField = "not_applicable"

    @field_validator("appointment_id", "client_id", "first_name")
    @classmethod
    def _normalize_text(cls, value: str) -> str:
        normalized = str(value).strip()
        if not normalized:
            raise ValueError("text fields cannot be blank")
        return normalized

    @field_validator("phone")
    @classmethod
    def _normalize_phone(cls, value: str | None) -> str | None:
        if value is None:
            return None
        normalized = value.strip()
        return normalized or None

    @field_validator("starts_at", "deposit_due_at")
    @classmethod
    def _require_timezone(cls, value: datetime | None) -> datetime | None:
        if value is None:
            return None
        if value.tzinfo is None:
            raise ValueError("timestamps must include a UTC offset")
        return value.astimezone(timezone.utc)

    @model_validator(mode="after")
    def _validate_deposit(self) -> "AppointmentUpsertItem":
        if self.deposit_status == "unpaid" and (self.deposit_amount is None or self.deposit_due_at is None):
            raise ValueError("unpaid deposits require deposit_amount and deposit_due_at")
        return self

    def to_appointment(self) -> Appointment:
        return Appointment(
            appointment_id=self.appointment_id,
            client_id=self.client_id,
            first_name=self.first_name,
            last_name=self.last_name.strip(),
            phone=self.phone,
            starts_at=self.starts_at,
            duration_minutes=self.duration_minutes,
            service=self.service.strip(),
            deposit_amount=self.deposit_amount,
            deposit_due_at=self.deposit_due_at,
            deposit_status=self.deposit_status,
        )


class AppointmentUpsertRequest(BaseModel):
    appointments: list[AppointmentUpsertItem] = Field(min_length=1, max_length=500)


class AppointmentUpsertResponse(BaseModel):
    processed_count: int
    appointment_ids: list[str]
