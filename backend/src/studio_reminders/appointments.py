from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime, timedelta, timezone
from threading import Lock
from typing import Literal, Protocol

from sqlalchemy import DateTime, Float, Integer, String, create_engine, func, select
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, sessionmaker

DepositStatus = Literal["paid", "unpaid", "not_applicable"]
DEFAULT_DURATION_MINUTES = 60


def _coerce_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


@dataclass(frozen=True)
class Appointment:
    appointment_id: str
    client_id: str
    first_name: str
    last_name: str
    phone: str | None
    starts_at: datetime
    duration_minutes: int | None = None
    service: str = ""
    deposit_amount: float | None = None
    deposit_due_at: datetime | None = None
    deposit_status: DepositStatus = "not_applicable"

    @property
    def ends_at(self) -> datetime:
        return self.starts_at + timedelta(minutes=self.duration_minutes or DEFAULT_DURATION_MINUTES)

    @property
    def client_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()

    @property
    def has_phone(self) -> bool:
        return bool(self.phone and self.phone.strip())


class AppointmentStore(Protocol):
    """Read access the reminder jobs need; the CRUD side lives elsewhere."""

    def upsert(self, appointments: list[Appointment]) -> list[Appointment]: ...

    def list_starting_between(self, start: datetime, end: datetime) -> list[Appointment]: ...

    def list_ending_between(self, start: datetime, end: datetime) -> list[Appointment]: ...

    def list_unpaid_deposits_due_between(self, start: datetime, end: datetime) -> list[Appointment]: ...

    def count_clients(self) -> int: ...

    def reset(self) -> None: ...


class InMemoryAppointmentStore:
    def __init__(self) -> None:
        self._lock = Lock()
        self._appointments: dict[str, Appointment] = {}

    def reset(self) -> None:
        with self._lock:
            self._appointments.clear()

    def upsert(self, appointments: list[Appointment]) -> list[Appointment]:
        stored: list[Appointment] = []
        with self._lock:
            for appointment in appointments:
                normalized = replace(
                    appointment,
                    starts_at=_coerce_utc(appointment.starts_at),
                    deposit_due_at=(
                        _coerce_utc(appointment.deposit_due_at) if appointment.deposit_due_at is not None else None
                    ),
                )
                self._appointments[normalized.appointment_id] = normalized
                stored.append(normalized)
        return stored

    def _snapshot(self) -> list[Appointment]:
        with self._lock:
            return sorted(self._appointments.values(), key=lambda value: (value.starts_at, value.appointment_id))

    def list_starting_between(self, start: datetime, end: datetime) -> list[Appointment]:
        return [value for value in self._snapshot() if start <= value.starts_at < end]

    def list_ending_between(self, start: datetime, end: datetime) -> list[Appointment]:
        return [value for value in self._snapshot() if start <= value.ends_at < end]

    def list_unpaid_deposits_due_between(self, start: datetime, end: datetime) -> list[Appointment]:
        return [
            value
            for value in self._snapshot()
            if value.deposit_status == "unpaid"
            and value.deposit_due_at is not None
            and start <= value.deposit_due_at < end
        ]

    def count_clients(self) -> int:
        with self._lock:
            return len({value.client_id for value in self._appointments.values()})


class AppointmentsBase(DeclarativeBase):
    pass


class _AppointmentRow(AppointmentsBase):
    __tablename__ = "appointments"

    appointment_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    client_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    first_name: Mapped[str] = mapped_column(String(128), nullable=False)
    last_name: Mapped[str] = mapped_column(String(128), nullable=False, default="")
    phone: Mapped[str | None] = mapped_column(String(32), nullable=True)
    starts_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)
    duration_minutes: Mapped[int | None] = mapped_column(Integer, nullable=True)
    service: Mapped[str] = mapped_column(String(256), nullable=False, default="")
    deposit_amount: Mapped[float | None] = mapped_column(Float, nullable=True)
    deposit_due_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True, index=True)
    deposit_status: Mapped[str] = mapped_column(String(32), nullable=False, default="not_applicable")


def _to_appointment(row: _AppointmentRow) -> Appointment:
    return Appointment(
        appointment_id=row.appointment_id,
        client_id=row.client_id,
        first_name=row.first_name,
        last_name=row.last_name,
        phone=row.phone,
        starts_at=_coerce_utc(row.starts_at),
        duration_minutes=row.duration_minutes,
        service=row.service,
        deposit_amount=row.deposit_amount,
        deposit_due_at=_coerce_utc(row.deposit_due_at) if row.deposit_due_at is not None else None,
        deposit_status=row.deposit_status,  # type: ignore[arg-type]
    )


class SqlAlchemyAppointmentStore:
    def __init__(self, database_url: str) -> None:
        if not database_url:
            raise RuntimeError("DATABASE_URL is required for APPOINTMENT_STORE_BACKEND=postgres")
        self._engine = create_engine(database_url, future=True, pool_pre_ping=True)
        self._session_factory = sessionmaker(self._engine, expire_on_commit=False, future=True)
        if database_url.startswith("sqlite"):
            AppointmentsBase.metadata.create_all(self._engine)

    def _session(self):
        return self._session_factory()

    def reset(self) -> None:
        with self._session() as session:
            with session.begin():
                session.query(_AppointmentRow).delete()

    def upsert(self, appointments: list[Appointment]) -> list[Appointment]:
        with self._session() as session:
            with session.begin():
                for appointment in appointments:
                    row = session.get(_AppointmentRow, appointment.appointment_id)
                    if row is None:
                        row = _AppointmentRow(appointment_id=appointment.appointment_id)
                        session.add(row)
                    row.client_id = appointment.client_id
                    row.first_name = appointment.first_name
                    row.last_name = appointment.last_name
                    row.phone = appointment.phone
                    row.starts_at = _coerce_utc(appointment.starts_at)
                    row.duration_minutes = appointment.duration_minutes
                    row.service = appointment.service
                    row.deposit_amount = appointment.deposit_amount
                    row.deposit_due_at = (
                        _coerce_utc(appointment.deposit_due_at) if appointment.deposit_due_at is not None else None
                    )
                    row.deposit_status = appointment.deposit_status
        return [
            replace(
                value,
                starts_at=_coerce_utc(value.starts_at),
                deposit_due_at=_coerce_utc(value.deposit_due_at) if value.deposit_due_at is not None else None,
            )
            for value in appointments
        ]

    def list_starting_between(self, start: datetime, end: datetime) -> list[Appointment]:
        with self._session() as session:
            rows = session.execute(
                select(_AppointmentRow)
                .where(_AppointmentRow.starts_at >= _coerce_utc(start))
                .where(_AppointmentRow.starts_at < _coerce_utc(end))
                .order_by(_AppointmentRow.starts_at.asc(), _AppointmentRow.appointment_id.asc())
            ).scalars()
            return [_to_appointment(row) for row in rows]

    def list_ending_between(self, start: datetime, end: datetime) -> list[Appointment]:
        # ends_at is not a column; assumes no appointment lasts longer than a day.
        lower = _coerce_utc(start) - timedelta(days=1)
        with self._session() as session:
            rows = session.execute(
                select(_AppointmentRow)
                .where(_AppointmentRow.starts_at >= lower)
                .where(_AppointmentRow.starts_at < _coerce_utc(end))
                .order_by(_AppointmentRow.starts_at.asc(), _AppointmentRow.appointment_id.asc())
            ).scalars()
            candidates = [_to_appointment(row) for row in rows]
        return [value for value in candidates if start <= value.ends_at < end]

    def list_unpaid_deposits_due_between(self, start: datetime, end: datetime) -> list[Appointment]:
        with self._session() as session:
            rows = session.execute(
                select(_AppointmentRow)
                .where(_AppointmentRow.deposit_status == "unpaid")
                .where(_AppointmentRow.deposit_due_at >= _coerce_utc(start))
                .where(_AppointmentRow.deposit_due_at < _coerce_utc(end))
                .order_by(_AppointmentRow.deposit_due_at.asc(), _AppointmentRow.appointment_id.asc())
            ).scalars()
            return [_to_appointment(row) for row in rows]

    def count_clients(self) -> int:
        with self._session() as session:
            value = session.execute(select(func.count(func.distinct(_AppointmentRow.client_id)))).scalar_one()
            return int(value or 0)


def create_appointment_store(*, backend: str, database_url: str) -> AppointmentStore:
    normalized = backend.strip().lower()
    if normalized == "postgres":
        return SqlAlchemyAppointmentStore(database_url)
    return InMemoryAppointmentStore()
