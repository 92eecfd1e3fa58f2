"""Tests for the import orchestrator: all-or-nothing, policies, size decision, timeout."""
import itertools
from unittest.mock import MagicMock

import pytest
from sqlalchemy import func, select

from app.models.audit import AuditLog
from app.models.hierarchy import Cell, Equipment, Site
from app.models.import_history import BackgroundJob, ImportHistory
from app.models.plc import PLC, Tag
from app.schemas.imports import ImportOptions, ImportResult, ValidationPreview
from app.services.errors import ImportTimeoutError, MalformedInputError
from app.services.importer import ImportOrchestrator
from app.services.template import generate_template


# ─── Helpers ──────────────────────────────────────────────────────────────────

def _count(db, model) -> int:
    return db.execute(select(func.count()).select_from(model)).scalar_one()


def _counts(db) -> tuple[int, int, int, int, int]:
    return tuple(_count(db, m) for m in (Site, Cell, Equipment, PLC, Tag))


@pytest.fixture
def run_import(db, user_id):
    def run(content, queue=None, **options) -> ImportResult:
        options.setdefault("create_missing", True)
        return ImportOrchestrator(db, queue=queue).run(
            content, "plcs.csv", ImportOptions(**options),
            user_id=user_id, user_email="ops@example.com",
        )
    return run


@pytest.fixture
def queue():
    adapter = MagicMock()
    adapter.enqueue.return_value = "celery-task-1"
    return adapter


# ─── Happy path ───────────────────────────────────────────────────────────────

def test_sync_import_creates_hierarchy_and_history(db, run_import, make_csv, make_row):
    content = make_csv([
        make_row(tag_id="PLC-1", tags="robot,critical", ip_address="10.0.0.1"),
        make_row(tag_id="PLC-2", equipment_name="Press 2"),
        make_row(tag_id="PLC-3", site_name="Plant B"),
    ])

    result = run_import(content)

    assert result.success
    assert result.status == "completed"
    assert result.processed_rows == 3
    assert result.created_entities.model_dump() == {"sites": 2, "cells": 2, "equipment": 3, "plcs": 3}
    assert _counts(db) == (2, 2, 3, 3, 2)

    history = db.get(ImportHistory, result.import_id)
    assert history.status == "completed"
    assert len(history.created_entity_ids["plcs"]) == 3
    audit = db.execute(select(AuditLog)).scalar_one()
    assert audit.action == "import.completed"
    assert audit.actor_email == "ops@example.com"


def test_template_imports_cleanly(db, run_import):
    result = run_import(generate_template())

    assert result.success
    assert result.created_entities.plcs == 2
    assert result.created_entities.sites == 1


# ─── All-or-nothing ───────────────────────────────────────────────────────────

def test_validation_error_fails_without_writes(db, run_import, make_csv, make_row):
    content = make_csv([make_row(tag_id="PLC-1"), make_row(tag_id="X")])
    before = _counts(db)

    result = run_import(content)

    assert not result.success
    assert result.status == "failed"
    assert result.processed_rows == 0
    assert result.created_entities.total == 0
    assert [e.row for e in result.errors] == [3]
    assert _counts(db) == before
    assert db.get(ImportHistory, result.import_id).status == "failed"


def test_hierarchy_error_rolls_back_rows_already_written(db, run_import, make_csv, make_row):
    content = make_csv([
        make_row(tag_id="PLC-1"),
        make_row(tag_id="PLC-2", site_name="Missing Site"),
    ])
    run_import(make_csv([make_row(tag_id="PLC-0")]))  # creates Plant A hierarchy
    before = _counts(db)

    result = run_import(content, create_missing=False, duplicate_handling="skip")

    assert not result.success
    assert result.errors[0].message == "Site does not exist"
    assert _counts(db) == before


def test_skip_policy_scans_past_hierarchy_errors(db, run_import, make_csv, make_row):
    content = make_csv([
        make_row(tag_id="PLC-1", site_name="Nope 1"),
        make_row(tag_id="PLC-2", site_name="Nope 2"),
    ])

    result = run_import(content, create_missing=False, duplicate_handling="skip")

    assert [e.row for e in result.errors] == [2, 3]


def test_overwrite_policy_stops_at_first_hierarchy_error(db, run_import, make_csv, make_row):
    content = make_csv([
        make_row(tag_id="PLC-1", site_name="Nope 1"),
        make_row(tag_id="PLC-2", site_name="Nope 2"),
    ])

    result = run_import(content, create_missing=False, duplicate_handling="overwrite")

    assert [e.row for e in result.errors] == [2]


# ─── Duplicate policies ───────────────────────────────────────────────────────

def test_skip_is_idempotent(db, run_import, make_csv, make_row):
    content = make_csv([make_row(tag_id="PLC-1"), make_row(tag_id="PLC-2", cell_name="Line 2")])

    first = run_import(content, duplicate_handling="skip")
    second = run_import(content, duplicate_handling="skip")

    assert first.created_entities.total > 0
    assert second.success
    assert second.created_entities.model_dump() == {"sites": 0, "cells": 0, "equipment": 0, "plcs": 0}
    assert len(second.warnings) == 2
    assert second.skipped_rows == 2


def test_overwrite_converges_on_file_state(db, run_import, make_csv, make_row):
    run_import(make_csv([make_row(tag_id="PLC-1", make="Siemens")]))
    content = make_csv([make_row(tag_id="PLC-1", make="ABB")])

    first = run_import(content, duplicate_handling="overwrite")
    second = run_import(content, duplicate_handling="overwrite")

    assert first.success and second.success
    assert first.processed_rows == 1
    assert _count(db, PLC) == 1
    assert db.execute(select(PLC.make)).scalar_one() == "ABB"
    assert first.warnings[0].message.endswith("overwriting existing record")


def test_duplicate_rows_within_one_file_share_the_first(db, run_import, make_csv, make_row):
    content = make_csv([make_row(tag_id="PLC-1"), make_row(tag_id="PLC-1", make="ABB")])

    result = run_import(content, duplicate_handling="skip")

    assert result.success
    assert result.created_entities.plcs == 1
    assert result.warnings[0].row == 3


def test_ip_conflict_fails_the_import(db, run_import, make_csv, make_row):
    run_import(make_csv([
        make_row(tag_id="PLC-1", ip_address="10.0.0.1"),
        make_row(tag_id="PLC-2", ip_address="10.0.0.2"),
    ]))

    result = run_import(
        make_csv([make_row(tag_id="PLC-1", ip_address="10.0.0.2")]),
        duplicate_handling="merge",
    )

    assert not result.success
    assert result.errors[0].column == "ip_address"


# ─── Validate-only ────────────────────────────────────────────────────────────

def test_validate_only_returns_preview_and_writes_nothing(db, run_import, make_csv, make_row):
    content = make_csv([make_row(tag_id="PLC-1"), make_row(tag_id="X")])

    result = run_import(content, validate_only=True)

    assert isinstance(result, ValidationPreview)
    assert not result.is_valid
    assert result.row_errors[0].row == 3
    assert _count(db, ImportHistory) == 0
    assert _count(db, PLC) == 0


# ─── Size decision ────────────────────────────────────────────────────────────

def test_threshold_equal_processes_synchronously(db, run_import, bulk_csv, queue):
    result = run_import(bulk_csv(100), queue=queue, background_threshold=100)

    assert not result.is_background
    assert result.processed_rows == 100
    queue.enqueue.assert_not_called()


def test_threshold_plus_one_is_queued(db, run_import, bulk_csv, queue):
    result = run_import(bulk_csv(101), queue=queue, background_threshold=100)

    assert result.success
    assert result.is_background
    assert result.status == "processing"
    assert result.processed_rows == 0
    assert _count(db, PLC) == 0

    job = db.execute(select(BackgroundJob)).scalar_one()
    assert job.status == "queued"
    assert job.total_rows == 101
    assert job.celery_task_id == "celery-task-1"
    queue.enqueue.assert_called_once_with(job)


def test_default_threshold_boundary(db, run_import, bulk_csv, queue):
    at_threshold = run_import(bulk_csv(1000), queue=queue)
    over_threshold = run_import(bulk_csv(1001, prefix="NEW"), queue=queue)

    assert not at_threshold.is_background
    assert at_threshold.created_entities.plcs == 1000
    assert over_threshold.is_background


def test_invalid_large_file_is_not_queued(db, run_import, make_csv, make_row, queue):
    rows = [make_row(tag_id=f"PLC-{i:04d}") for i in range(150)] + [make_row(tag_id="X")]

    result = run_import(make_csv(rows), queue=queue, background_threshold=100)

    assert result.status == "failed"
    queue.enqueue.assert_not_called()


# ─── Faults ───────────────────────────────────────────────────────────────────

def test_malformed_input_raises_before_any_write(db, run_import):
    with pytest.raises(MalformedInputError):
        run_import(b"site_name,tag_id\n\xff\xfe\n")
    assert _count(db, ImportHistory) == 0


def test_timeout_rolls_back_and_records_failure(db, bulk_csv, user_id):
    ticks = itertools.count(step=1.0)
    orchestrator = ImportOrchestrator(db, clock=lambda: next(ticks))

    with pytest.raises(ImportTimeoutError):
        orchestrator.run(
            bulk_csv(20), "plcs.csv",
            ImportOptions(create_missing=True, timeout_seconds=5),
            user_id=user_id,
        )

    assert _count(db, PLC) == 0
    assert _count(db, Site) == 0
    history = db.execute(select(ImportHistory)).scalar_one()
    assert history.status == "failed"
    assert "exceeded" in history.errors[0]["message"]


def test_persistence_fault_rolls_back_and_propagates(db, run_import, make_csv, make_row, monkeypatch):
    from sqlalchemy.exc import OperationalError

    from app.services import importer

    def boom(*args, **kwargs):
        raise OperationalError("INSERT", {}, Exception("connection lost"))

    monkeypatch.setattr(importer, "create_plc", boom)

    with pytest.raises(OperationalError):
        run_import(make_csv([make_row(tag_id="PLC-1")]))

    assert _count(db, Site) == 0
    assert _count(db, ImportHistory) == 0
