"""Tests for import history listing and post-hoc rollback."""
import uuid

import pytest
from sqlalchemy import func, select

from app.models.hierarchy import Cell, Equipment, Site
from app.models.plc import PLC
from app.schemas.imports import ImportOptions
from app.services import import_history as history_svc
from app.services.errors import ImportNotFoundError, ImportStateError
from app.services.importer import ImportOrchestrator


# ─── Helpers ──────────────────────────────────────────────────────────────────

def _count(db, model, *where) -> int:
    stmt = select(func.count()).select_from(model)
    if where:
        stmt = stmt.where(*where)
    return db.execute(stmt).scalar_one()


@pytest.fixture
def run_import(db, user_id):
    def run(content, owner=None, **options):
        options.setdefault("create_missing", True)
        return ImportOrchestrator(db).run(
            content, "plcs.csv", ImportOptions(**options), user_id=owner or user_id
        )
    return run


# ─── Listing ──────────────────────────────────────────────────────────────────

def test_history_is_scoped_to_user(db, run_import, make_csv, make_row, user_id):
    run_import(make_csv([make_row(tag_id="PLC-1")]))
    run_import(make_csv([make_row(tag_id="PLC-2")]), owner=uuid.uuid4())

    page = history_svc.list_history(db, user_id)

    assert page.total == 1
    assert page.items[0].user_id == user_id


def test_history_page_size_is_clamped(db, run_import, make_csv, make_row, user_id):
    for i in range(3):
        run_import(make_csv([make_row(tag_id=f"PLC-{i}")]))

    page = history_svc.list_history(db, user_id, page=1, page_size=500)

    assert page.page_size == 100
    assert page.total == 3
    assert page.total_pages == 1


def test_history_status_filter_and_paging(db, run_import, make_csv, make_row, user_id):
    run_import(make_csv([make_row(tag_id="PLC-1")]))
    run_import(make_csv([make_row(tag_id="X")]))
    run_import(make_csv([make_row(tag_id="PLC-2")]))

    failed = history_svc.list_history(db, user_id, status="failed")
    second_page = history_svc.list_history(db, user_id, page=2, page_size=2)

    assert failed.total == 1
    assert failed.items[0].errors[0].column == "tag_id"
    assert second_page.total_pages == 2
    assert len(second_page.items) == 1


def test_get_unknown_import(db):
    with pytest.raises(ImportNotFoundError):
        history_svc.get_history(db, uuid.uuid4())


# ─── Rollback ─────────────────────────────────────────────────────────────────

def test_rollback_removes_created_entities(db, run_import, make_csv, make_row, user_id):
    result = run_import(make_csv([
        make_row(tag_id="PLC-1"),
        make_row(tag_id="PLC-2", equipment_name="Press 2"),
    ]))

    outcome = history_svc.rollback_import(db, result.import_id, user_id)

    assert outcome.plcs_removed == 2
    assert outcome.equipment_removed == 2
    assert outcome.cells_removed == 1
    assert outcome.sites_removed == 1
    assert _count(db, PLC, PLC.deleted_at.is_(None)) == 0
    assert _count(db, Site) == 0
    assert history_svc.get_history(db, result.import_id).status == "rolled_back"


def test_rollback_keeps_ancestors_still_in_use(db, run_import, make_csv, make_row, user_id):
    first = run_import(make_csv([make_row(tag_id="PLC-1")]))
    run_import(make_csv([make_row(tag_id="PLC-2")]))

    outcome = history_svc.rollback_import(db, first.import_id, user_id)

    assert outcome.plcs_removed == 1
    assert outcome.equipment_removed == 0
    assert _count(db, Equipment) == 1
    assert _count(db, Cell) == 1


def test_rollback_reports_overwritten_records(db, run_import, make_csv, make_row, user_id):
    run_import(make_csv([make_row(tag_id="PLC-1", make="Siemens")]))
    second = run_import(make_csv([make_row(tag_id="PLC-1", make="ABB")]), duplicate_handling="overwrite")

    outcome = history_svc.rollback_import(db, second.import_id, user_id)

    assert outcome.plcs_removed == 0
    assert outcome.overwritten_not_restored == 1
    assert db.execute(select(PLC.make)).scalar_one() == "ABB"


def test_rollback_only_for_completed_imports(db, run_import, make_csv, make_row, user_id):
    failed = run_import(make_csv([make_row(tag_id="X")]))
    done = run_import(make_csv([make_row(tag_id="PLC-1")]))
    history_svc.rollback_import(db, done.import_id, user_id)

    with pytest.raises(ImportStateError):
        history_svc.rollback_import(db, failed.import_id, user_id)
    with pytest.raises(ImportStateError):
        history_svc.rollback_import(db, done.import_id, user_id)
