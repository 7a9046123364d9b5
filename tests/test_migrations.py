from __future__ import annotations

import sqlite3
from pathlib import Path

import allure

from command_gate.jobs.repository import JobRepository

pytestmark = [
    allure.epic("Job Store"),
    allure.feature("Schema Migrations"),
]


def test_init_schema_creates_jobs_table_at_head(tmp_path: Path) -> None:
    db_path = tmp_path / "migrated.db"
    repository = JobRepository(db_path)
    repository.init_schema()
    repository.init_schema()
    repository.close()

    with sqlite3.connect(db_path) as connection:
        version = connection.execute("SELECT version_num FROM alembic_version").fetchone()
        columns = {row[1] for row in connection.execute("PRAGMA table_info(jobs)")}
        indexes = {row[1] for row in connection.execute("PRAGMA index_list(jobs)")}

    assert version == ("20261019_0001",)
    assert columns == {
        "id",
        "command",
        "status",
        "created_at",
        "started_at",
        "finished_at",
        "output",
        "error",
    }
    assert {"ix_jobs_status", "ix_jobs_command"} <= indexes
