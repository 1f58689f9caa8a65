from __future__ import annotations

import json
from datetime import datetime, timezone
from pathlib import Path

import pytest

from studio_reminders.job_runs import (
    InMemoryJobRunRepository,
    JobRunStorageError,
    RunAuditor,
    SqlAlchemyJobRunRepository,
)

PLANNED_AT = datetime(2026, 3, 10, 8, 0, tzinfo=timezone.utc)


class BrokenJobRunRepository(InMemoryJobRunRepository):
    def create_run(self, *, job_name: str, planned_at: datetime, started_at: datetime) -> str:
        raise JobRunStorageError("database unavailable")


def test_sql_repository_records_one_row_per_run(tmp_path: Path) -> None:
    repository = SqlAlchemyJobRunRepository(f"sqlite:///{tmp_path / 'runs.db'}")
    auditor = RunAuditor(repository)

    run_id = auditor.start("appointment-reminders", PLANNED_AT)
    assert run_id is not None
    auditor.finish(run_id, ok=True, details=json.dumps({"messages_sent": 2, "errors": []}))

    runs = auditor.list_recent(limit=10)
    assert len(runs) == 1
    assert runs[0].run_id == run_id
    assert runs[0].job_name == "appointment-reminders"
    assert runs[0].planned_at == PLANNED_AT
    assert runs[0].ok is True
    assert runs[0].finished_at is not None
    assert json.loads(runs[0].details or "{}")["messages_sent"] == 2


def test_finish_of_unknown_run_raises_in_repository() -> None:
    repository = InMemoryJobRunRepository()

    with pytest.raises(JobRunStorageError):
        repository.finish_run("run_missing", ok=True, details=None, finished_at=PLANNED_AT)


def test_auditor_swallows_storage_failures(caplog: pytest.LogCaptureFixture) -> None:
    auditor = RunAuditor(BrokenJobRunRepository())

    with caplog.at_level("ERROR", logger="studio_reminders.job_runs"):
        run_id = auditor.start("deposit-reminders", PLANNED_AT)
        auditor.finish(run_id, ok=True, details=None)
        auditor.finish("run_missing", ok=False, details=None)

    assert run_id is None
    assert "Could not record start of job deposit-reminders" in caplog.text
    assert "Could not record finish of job run run_missing" in caplog.text
