"""Durable job store backed by SQLModel + SQLite."""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime
from pathlib import Path
from typing import Any, TypeVar

from sqlalchemy import event
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.pool import NullPool
from sqlmodel import Session, col, create_engine, select

from command_gate.errors import StoreIOError
from command_gate.jobs.models import JobStatus, JobView, ensure_transition
from command_gate.storage.alembic_runner import upgrade_head
from command_gate.storage.sqlmodel_models import JobRecord
from command_gate.storage.timestamps import to_db_datetime, to_utc_aware_datetime, utc_now

logger = logging.getLogger(__name__)

_T = TypeVar("_T")

_UPDATABLE_FIELDS = frozenset({"status", "started_at", "finished_at", "output", "error"})
_DATETIME_FIELDS = frozenset({"started_at", "finished_at"})


class JobRepository:
    """Job persistence facade.

    Every public method opens its own session, so each call is atomic with
    respect to a single job row. Database failures surface as
    :class:`StoreIOError`; callers decide whether to continue.
    """

    def __init__(self, db_path: Path, *, sqlite_busy_timeout_ms: int = 5_000) -> None:
        self.db_path = db_path
        self.engine = _sqlite_engine(db_path, busy_timeout_ms=sqlite_busy_timeout_ms)

    def close(self) -> None:
        """Close underlying DB resources."""

        self.engine.dispose()

    def init_schema(self) -> None:
        """Run schema migrations up to head."""

        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._guard("init_schema", lambda: upgrade_head(self.db_path))

    def create_job(self, command: str) -> JobView:
        """Insert a new pending job."""

        def _create() -> JobView:
            with Session(self.engine) as session:
                row = JobRecord(
                    command=command,
                    status=JobStatus.PENDING.value,
                    created_at=to_db_datetime(utc_now()),
                )
                session.add(row)
                session.commit()
                session.refresh(row)
                return _to_job_view(row)

        return self._guard("create_job", _create)

    def update_job(self, job_id: int, **fields: Any) -> JobView:
        """Merge ``fields`` into the job row and return the updated job.

        Status changes must follow the job lifecycle. An empty update returns
        the current row unchanged.
        """

        unknown = set(fields) - _UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Unsupported job fields: {', '.join(sorted(unknown))}")

        def _update() -> JobView:
            with Session(self.engine) as session:
                row = session.get(JobRecord, job_id)
                if row is None:
                    raise KeyError(f"Job not found: {job_id}")
                if not fields:
                    return _to_job_view(row)
                if "status" in fields:
                    requested = JobStatus(fields["status"])
                    ensure_transition(job_id, JobStatus(row.status), requested)
                    row.status = requested.value
                for key, value in fields.items():
                    if key == "status":
                        continue
                    if key in _DATETIME_FIELDS and isinstance(value, datetime):
                        value = to_db_datetime(value)
                    setattr(row, key, value)
                session.add(row)
                session.commit()
                session.refresh(row)
                return _to_job_view(row)

        return self._guard("update_job", _update)

    def get_job(self, job_id: int) -> JobView | None:
        def _get() -> JobView | None:
            with Session(self.engine) as session:
                row = session.get(JobRecord, job_id)
                return _to_job_view(row) if row is not None else None

        return self._guard("get_job", _get)

    def get_latest_by_command(self, command: str) -> JobView | None:
        """Most recent job (highest id) created for exactly ``command``."""

        def _get() -> JobView | None:
            with Session(self.engine) as session:
                row = session.exec(
                    select(JobRecord)
                    .where(JobRecord.command == command)
                    .order_by(col(JobRecord.id).desc())
                    .limit(1),
                ).one_or_none()
                return _to_job_view(row) if row is not None else None

        return self._guard("get_latest_by_command", _get)

    def list_pending(self) -> list[JobView]:
        """Pending jobs, oldest first."""

        def _list() -> list[JobView]:
            with Session(self.engine) as session:
                rows = session.exec(
                    select(JobRecord)
                    .where(JobRecord.status == JobStatus.PENDING.value)
                    .order_by(col(JobRecord.id).asc()),
                ).all()
                return [_to_job_view(row) for row in rows]

        return self._guard("list_pending", _list)

    def list_jobs(
        self,
        *,
        status: JobStatus | None = None,
        limit: int | None = None,
    ) -> list[JobView]:
        """All jobs, newest first."""

        def _list() -> list[JobView]:
            with Session(self.engine) as session:
                query = select(JobRecord)
                if status is not None:
                    query = query.where(JobRecord.status == status.value)
                query = query.order_by(col(JobRecord.id).desc())
                if limit is not None:
                    query = query.limit(limit)
                return [_to_job_view(row) for row in session.exec(query).all()]

        return self._guard("list_jobs", _list)

    def _guard(self, operation: str, fn: Callable[[], _T]) -> _T:
        try:
            return fn()
        except SQLAlchemyError as error:
            logger.error("Job store %s failed: %s", operation, error)
            raise StoreIOError(f"Job store {operation} failed: {error}") from error


def _to_job_view(row: JobRecord) -> JobView:
    if row.id is None:  # pragma: no cover - rows are always refreshed after insert
        raise ValueError("Job row has no id")
    return JobView(
        id=row.id,
        command=row.command,
        status=JobStatus(row.status),
        created_at=to_utc_aware_datetime(row.created_at),
        started_at=to_utc_aware_datetime(row.started_at) if row.started_at is not None else None,
        finished_at=(
            to_utc_aware_datetime(row.finished_at) if row.finished_at is not None else None
        ),
        output=row.output,
        error=row.error,
    )


def _sqlite_engine(db_path: Path, *, busy_timeout_ms: int) -> Engine:
    """SQLite engine with WAL journaling and a per-connection busy timeout."""

    busy_timeout_ms = max(1, busy_timeout_ms)
    engine = create_engine(
        f"sqlite:///{db_path}",
        connect_args={"check_same_thread": False, "timeout": busy_timeout_ms / 1000.0},
        poolclass=NullPool,
    )

    @event.listens_for(engine, "connect")
    def _configure_connection(dbapi_connection: Any, _record: Any) -> None:
        cursor = dbapi_connection.cursor()
        try:
            cursor.execute("PRAGMA journal_mode = WAL")
            cursor.execute(f"PRAGMA busy_timeout = {busy_timeout_ms}")
        finally:
            cursor.close()

    return engine
