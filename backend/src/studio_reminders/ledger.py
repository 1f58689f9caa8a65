from __future__ import annotations

import secrets
from contextlib import contextmanager
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from threading import Lock
from typing import Iterator, Literal, Protocol

from sqlalchemy import DateTime, String, Text, UniqueConstraint, create_engine, func, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, sessionmaker

DeliveryStatus = Literal["queued", "sent", "failed"]


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


def _coerce_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class LedgerStorageError(RuntimeError):
    """Raised when the delivery ledger cannot be read or written."""


class DeliveryNotFoundError(KeyError):
    """Raised when an operation references a delivery id that does not exist."""


class DeliveryStateError(ValueError):
    """Raised when a delivery is not in the state an operation requires."""


@dataclass(frozen=True)
class DeliveryKey:
    channel_address: str
    template_id: str
    logical_slot: datetime

    def __post_init__(self) -> None:
        object.__setattr__(self, "logical_slot", _coerce_utc(self.logical_slot))


@dataclass(frozen=True)
class DeliveryRecord:
    delivery_id: str
    source_ref: str | None
    channel_address: str
    body: str
    template_id: str
    status: DeliveryStatus
    logical_slot: datetime
    provider_ref: str | None
    failure_detail: str | None
    created_at: datetime
    sent_at: datetime | None

    @property
    def key(self) -> DeliveryKey:
        return DeliveryKey(self.channel_address, self.template_id, self.logical_slot)


@dataclass(frozen=True)
class DeliveryStats:
    total: int
    sent: int
    failed: int
    queued: int


class DeliveryLedgerReader(Protocol):
    def find(self, key: DeliveryKey) -> DeliveryRecord | None: ...


class DeliveryLedger(DeliveryLedgerReader, Protocol):
    def reset(self) -> None: ...

    def claim(self, key: DeliveryKey, *, body: str, source_ref: str | None) -> DeliveryRecord | None:
        """Insert a ``queued`` row for ``key``; return ``None`` when the key is already taken."""
        ...

    def mark_sent(self, delivery_id: str, *, provider_ref: str | None, sent_at: datetime) -> None: ...

    def mark_failed(self, delivery_id: str, *, failure_detail: str) -> None: ...

    def get(self, delivery_id: str) -> DeliveryRecord | None: ...

    def list_recent(self, *, limit: int) -> list[DeliveryRecord]: ...

    def stats(self) -> DeliveryStats: ...

    def delete_failed(self, delivery_id: str) -> DeliveryRecord: ...


class InMemoryDeliveryLedger:
    def __init__(self) -> None:
        self._lock = Lock()
        self._counter = 1
        self._records: dict[str, DeliveryRecord] = {}
        self._ids_by_key: dict[DeliveryKey, str] = {}

    def reset(self) -> None:
        with self._lock:
            self._counter = 1
            self._records.clear()
            self._ids_by_key.clear()

    def find(self, key: DeliveryKey) -> DeliveryRecord | None:
        with self._lock:
            delivery_id = self._ids_by_key.get(key)
            return self._records.get(delivery_id) if delivery_id is not None else None

    def claim(self, key: DeliveryKey, *, body: str, source_ref: str | None) -> DeliveryRecord | None:
        with self._lock:
            if key in self._ids_by_key:
                return None
            delivery_id = f"sms_{self._counter:06d}"
            self._counter += 1
            record = DeliveryRecord(
                delivery_id=delivery_id,
                source_ref=source_ref,
                channel_address=key.channel_address,
                body=body,
                template_id=key.template_id,
                status="queued",
                logical_slot=key.logical_slot,
                provider_ref=None,
                failure_detail=None,
                created_at=_now_utc(),
                sent_at=None,
            )
            self._records[delivery_id] = record
            self._ids_by_key[key] = delivery_id
            return record

    def mark_sent(self, delivery_id: str, *, provider_ref: str | None, sent_at: datetime) -> None:
        with self._lock:
            row = self._records[delivery_id]
            self._records[delivery_id] = replace(row, status="sent", provider_ref=provider_ref, sent_at=sent_at)

    def mark_failed(self, delivery_id: str, *, failure_detail: str) -> None:
        with self._lock:
            row = self._records[delivery_id]
            self._records[delivery_id] = replace(row, status="failed", failure_detail=failure_detail)

    def get(self, delivery_id: str) -> DeliveryRecord | None:
        with self._lock:
            return self._records.get(delivery_id)

    def list_recent(self, *, limit: int) -> list[DeliveryRecord]:
        with self._lock:
            rows = sorted(self._records.values(), key=lambda value: (value.created_at, value.delivery_id), reverse=True)
        return rows[:limit]

    def stats(self) -> DeliveryStats:
        with self._lock:
            statuses = [value.status for value in self._records.values()]
        return DeliveryStats(
            total=len(statuses),
            sent=statuses.count("sent"),
            failed=statuses.count("failed"),
            queued=statuses.count("queued"),
        )

    def delete_failed(self, delivery_id: str) -> DeliveryRecord:
        with self._lock:
            row = self._records.get(delivery_id)
            if row is None:
                raise DeliveryNotFoundError(delivery_id)
            if row.status != "failed":
                raise DeliveryStateError(f"delivery {delivery_id} is {row.status}, only failed deliveries can be cleared")
            del self._records[delivery_id]
            self._ids_by_key.pop(row.key, None)
            return row


class DeliveryLedgerBase(DeclarativeBase):
    pass


class _DeliveryRow(DeliveryLedgerBase):
    __tablename__ = "sms_deliveries"
    __table_args__ = (
        UniqueConstraint("channel_address", "template_id", "logical_slot", name="uq_sms_deliveries_slot"),
    )

    delivery_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    source_ref: Mapped[str | None] = mapped_column(String(64), nullable=True)
    channel_address: Mapped[str] = mapped_column(String(32), nullable=False)
    body: Mapped[str] = mapped_column(Text, nullable=False)
    template_id: Mapped[str] = mapped_column(String(64), nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="queued", index=True)
    logical_slot: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    provider_ref: Mapped[str | None] = mapped_column(String(128), nullable=True)
    failure_detail: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)
    sent_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


def _to_record(row: _DeliveryRow) -> DeliveryRecord:
    return DeliveryRecord(
        delivery_id=row.delivery_id,
        source_ref=row.source_ref,
        channel_address=row.channel_address,
        body=row.body,
        template_id=row.template_id,
        status=row.status,  # type: ignore[arg-type]
        logical_slot=_coerce_utc(row.logical_slot),
        provider_ref=row.provider_ref,
        failure_detail=row.failure_detail,
        created_at=_coerce_utc(row.created_at),
        sent_at=_coerce_utc(row.sent_at) if row.sent_at is not None else None,
    )


@contextmanager
def _storage_errors(action: str) -> Iterator[None]:
    try:
        yield
    except SQLAlchemyError as exc:
        raise LedgerStorageError(f"delivery ledger {action} failed: {exc}") from exc


class SqlAlchemyDeliveryLedger:
    def __init__(self, database_url: str) -> None:
        if not database_url:
            raise RuntimeError("DATABASE_URL is required for DELIVERY_STORE_BACKEND=postgres")
        self._engine = create_engine(database_url, future=True, pool_pre_ping=True)
        self._session_factory = sessionmaker(self._engine, expire_on_commit=False, future=True)
        if database_url.startswith("sqlite"):
            DeliveryLedgerBase.metadata.create_all(self._engine)

    def _session(self):
        return self._session_factory()

    def reset(self) -> None:
        with _storage_errors("reset"), self._session() as session:
            with session.begin():
                session.query(_DeliveryRow).delete()

    def find(self, key: DeliveryKey) -> DeliveryRecord | None:
        with _storage_errors("lookup"), self._session() as session:
            row = session.execute(
                select(_DeliveryRow)
                .where(_DeliveryRow.channel_address == key.channel_address)
                .where(_DeliveryRow.template_id == key.template_id)
                .where(_DeliveryRow.logical_slot == key.logical_slot)
            ).scalar_one_or_none()
            return _to_record(row) if row is not None else None

    def claim(self, key: DeliveryKey, *, body: str, source_ref: str | None) -> DeliveryRecord | None:
        row = _DeliveryRow(
            delivery_id=f"sms_{secrets.token_hex(8)}",
            source_ref=source_ref,
            channel_address=key.channel_address,
            body=body,
            template_id=key.template_id,
            status="queued",
            logical_slot=key.logical_slot,
            provider_ref=None,
            failure_detail=None,
            created_at=_now_utc(),
            sent_at=None,
        )
        try:
            with self._session() as session:
                with session.begin():
                    session.add(row)
        except IntegrityError:
            return None
        except SQLAlchemyError as exc:
            raise LedgerStorageError(f"delivery ledger claim failed: {exc}") from exc
        return _to_record(row)

    def mark_sent(self, delivery_id: str, *, provider_ref: str | None, sent_at: datetime) -> None:
        with _storage_errors("update"), self._session() as session:
            with session.begin():
                row = session.get(_DeliveryRow, delivery_id)
                if row is None:
                    raise DeliveryNotFoundError(delivery_id)
                row.status = "sent"
                row.provider_ref = provider_ref
                row.sent_at = _coerce_utc(sent_at)

    def mark_failed(self, delivery_id: str, *, failure_detail: str) -> None:
        with _storage_errors("update"), self._session() as session:
            with session.begin():
                row = session.get(_DeliveryRow, delivery_id)
                if row is None:
                    raise DeliveryNotFoundError(delivery_id)
                row.status = "failed"
                row.failure_detail = failure_detail

    def get(self, delivery_id: str) -> DeliveryRecord | None:
        with _storage_errors("lookup"), self._session() as session:
            row = session.get(_DeliveryRow, delivery_id)
            return _to_record(row) if row is not None else None

    def list_recent(self, *, limit: int) -> list[DeliveryRecord]:
        with _storage_errors("listing"), self._session() as session:
            rows = session.execute(
                select(_DeliveryRow)
                .order_by(_DeliveryRow.created_at.desc(), _DeliveryRow.delivery_id.desc())
                .limit(limit)
            ).scalars()
            return [_to_record(row) for row in rows]

    def stats(self) -> DeliveryStats:
        with _storage_errors("stats"), self._session() as session:
            counts = dict(
                session.execute(
                    select(_DeliveryRow.status, func.count()).group_by(_DeliveryRow.status)
                ).all()
            )
        return DeliveryStats(
            total=sum(counts.values()),
            sent=counts.get("sent", 0),
            failed=counts.get("failed", 0),
            queued=counts.get("queued", 0),
        )

    def delete_failed(self, delivery_id: str) -> DeliveryRecord:
        with _storage_errors("delete"), self._session() as session:
            with session.begin():
                row = session.get(_DeliveryRow, delivery_id)
                if row is None:
                    raise DeliveryNotFoundError(delivery_id)
                if row.status != "failed":
                    raise DeliveryStateError(
                        f"delivery {delivery_id} is {row.status}, only failed deliveries can be cleared"
                    )
                record = _to_record(row)
                session.delete(row)
        return record


def create_delivery_ledger(*, backend: str, database_url: str) -> DeliveryLedger:
    normalized = backend.strip().lower()
    if normalized == "postgres":
        return SqlAlchemyDeliveryLedger(database_url)
    return InMemoryDeliveryLedger()
