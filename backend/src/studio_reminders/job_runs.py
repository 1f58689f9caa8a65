from __future__ import annotations

import logging
import secrets
from contextlib import contextmanager
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from threading import Lock
from typing import Iterator, Protocol

from sqlalchemy import Boolean, DateTime, String, Text, create_engine, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, sessionmaker

logger = logging.getLogger(__name__)


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


def _coerce_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class JobRunStorageError(RuntimeError):
    """Raised when a job-run row cannot be written or read."""


@dataclass(frozen=True)
class JobRunRecord:
    run_id: str
    job_name: str
    planned_at: datetime
    started_at: datetime
    finished_at: datetime | None
    ok: bool | None
    details: str | None


class JobRunRepository(Protocol):
    def reset(self) -> None: ...

    def create_run(self, *, job_name: str, planned_at: datetime, started_at: datetime) -> str: ...

    def finish_run(self, run_id: str, *, ok: bool, details: str | None, finished_at: datetime) -> None: ...

    def get_run(self, run_id: str) -> JobRunRecord | None: ...

    def list_recent(self, *, limit: int) -> list[JobRunRecord]: ...


class InMemoryJobRunRepository:
    def __init__(self) -> None:
        self._lock = Lock()
        self._run_counter = 1
        self._runs: dict[str, JobRunRecord] = {}

    def reset(self) -> None:
        with self._lock:
            self._run_counter = 1
            self._runs.clear()

    def create_run(self, *, job_name: str, planned_at: datetime, started_at: datetime) -> str:
        with self._lock:
            run_id = f"run_{self._run_counter:06d}"
            self._run_counter += 1
            self._runs[run_id] = JobRunRecord(
                run_id=run_id,
                job_name=job_name,
                planned_at=_coerce_utc(planned_at),
                started_at=_coerce_utc(started_at),
                finished_at=None,
                ok=None,
                details=None,
            )
            return run_id

    def finish_run(self, run_id: str, *, ok: bool, details: str | None, finished_at: datetime) -> None:
        with self._lock:
            row = self._runs.get(run_id)
            if row is None:
                raise JobRunStorageError(f"job run {run_id} not found")
            self._runs[run_id] = replace(row, ok=ok, details=details, finished_at=_coerce_utc(finished_at))

    def get_run(self, run_id: str) -> JobRunRecord | None:
        with self._lock:
            return self._runs.get(run_id)

    def list_recent(self, *, limit: int) -> list[JobRunRecord]:
        with self._lock:
            rows = sorted(self._runs.values(), key=lambda value: (value.started_at, value.run_id), reverse=True)
        return rows[:limit]


class JobRunsBase(DeclarativeBase):
    pass


class _JobRunRow(JobRunsBase):
    __tablename__ = "job_runs"

    run_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    job_name: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    planned_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    started_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)
    finished_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    ok: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    details: Mapped[str | None] = mapped_column(Text, nullable=True)


def _to_record(row: _JobRunRow) -> JobRunRecord:
    return JobRunRecord(
        run_id=row.run_id,
        job_name=row.job_name,
        planned_at=_coerce_utc(row.planned_at),
        started_at=_coerce_utc(row.started_at),
        finished_at=_coerce_utc(row.finished_at) if row.finished_at is not None else None,
        ok=row.ok,
        details=row.details,
    )


@contextmanager
def _storage_errors(action: str) -> Iterator[None]:
    try:
        yield
    except SQLAlchemyError as exc:
        raise JobRunStorageError(f"job run {action} failed: {exc}") from exc


class SqlAlchemyJobRunRepository:
    def __init__(self, database_url: str) -> None:
        if not database_url:
            raise RuntimeError("DATABASE_URL is required for JOB_RUN_STORE_BACKEND=postgres")
        self._engine = create_engine(database_url, future=True, pool_pre_ping=True)
        self._session_factory = sessionmaker(self._engine, expire_on_commit=False, future=True)
        if database_url.startswith("sqlite"):
            JobRunsBase.metadata.create_all(self._engine)

    def _session(self):
        return self._session_factory()

    def reset(self) -> None:
        with _storage_errors("reset"), self._session() as session:
            with session.begin():
                session.query(_JobRunRow).delete()

    def create_run(self, *, job_name: str, planned_at: datetime, started_at: datetime) -> str:
        run_id = f"run_{secrets.token_hex(8)}"
        with _storage_errors("insert"), self._session() as session:
            with session.begin():
                session.add(
                    _JobRunRow(
                        run_id=run_id,
                        job_name=job_name,
                        planned_at=_coerce_utc(planned_at),
                        started_at=_coerce_utc(started_at),
                        finished_at=None,
                        ok=None,
                        details=None,
                    )
                )
        return run_id

    def finish_run(self, run_id: str, *, ok: bool, details: str | None, finished_at: datetime) -> None:
        with _storage_errors("update"), self._session() as session:
            with session.begin():
                row = session.get(_JobRunRow, run_id)
                if row is None:
                    raise JobRunStorageError(f"job run {run_id} not found")
                row.ok = ok
                row.details = details
                row.finished_at = _coerce_utc(finished_at)

    def get_run(self, run_id: str) -> JobRunRecord | None:
        with _storage_errors("lookup"), self._session() as session:
            row = session.get(_JobRunRow, run_id)
            return _to_record(row) if row is not None else None

    def list_recent(self, *, limit: int) -> list[JobRunRecord]:
        with _storage_errors("listing"), self._session() as session:
            rows = session.execute(
                select(_JobRunRow).order_by(_JobRunRow.started_at.desc(), _JobRunRow.run_id.desc()).limit(limit)
            ).scalars()
            return [_to_record(row) for row in rows]


def create_job_run_repository(*, backend: str, database_url: str) -> JobRunRepository:
    normalized = backend.strip().lower()
    if normalized == "postgres":
        return SqlAlchemyJobRunRepository(database_url)
    return InMemoryJobRunRepository()


class RunAuditor:
    """Best-effort audit trail: storage failures are logged, never raised."""

    def __init__(self, repository: JobRunRepository) -> None:
        self._repository = repository

    def start(self, job_name: str, planned_at: datetime) -> str | None:
        try:
            return self._repository.create_run(job_name=job_name, planned_at=planned_at, started_at=_now_utc())
        except Exception:
            logger.exception("Could not record start of job %s", job_name)
            return None

    def finish(self, run_id: str | None, *, ok: bool, details: str | None) -> None:
        if run_id is None:
            return
        try:
            self._repository.finish_run(run_id, ok=ok, details=details, finished_at=_now_utc())
        except Exception:
            logger.exception("Could not record finish of job run %s", run_id)

    def list_recent(self, *, limit: int = 50) -> list[JobRunRecord]:
        return self._repository.list_recent(limit=limit)
