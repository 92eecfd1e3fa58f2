"""Tests for duplicate resolution (skip / overwrite / merge)."""
from datetime import datetime, timezone

import pytest

from app.models.hierarchy import Cell, Equipment, Site
from app.services.csv_parser import RawRow
from app.services.duplicates import Action, create_plc, resolve_duplicate, update_plc
from app.services.row_validation import parse_row


# ─── Helpers ──────────────────────────────────────────────────────────────────

@pytest.fixture
def equipment(db, user_id):
    site = Site(name="Plant A", created_by=user_id, updated_by=user_id)
    cell = Cell(site=site, name="Line 1", created_by=user_id, updated_by=user_id)
    eq = Equipment(cell=cell, name="Press 1", created_by=user_id, updated_by=user_id)
    db.add_all([site, cell, eq])
    db.flush()
    return eq


def _row(make_row, **overrides):
    return parse_row(RawRow(row_number=2, fields=tuple(make_row(**overrides).items())))


def _existing(db, make_row, equipment, user_id, **overrides):
    return create_plc(db, _row(make_row, **overrides), equipment.id, user_id)


# ─── No collision ─────────────────────────────────────────────────────────────

def test_new_key_is_created(db, make_row):
    decision = resolve_duplicate(db, _row(make_row, tag_id="PLC-NEW"), 2, "skip")
    assert decision.action is Action.create
    assert decision.diagnostics == []


def test_soft_deleted_records_do_not_collide(db, make_row, equipment, user_id):
    plc = _existing(db, make_row, equipment, user_id, tag_id="PLC-1")
    plc.deleted_at = datetime.now(timezone.utc)
    db.flush()

    decision = resolve_duplicate(db, _row(make_row, tag_id="PLC-1"), 2, "skip")

    assert decision.action is Action.create


# ─── skip ─────────────────────────────────────────────────────────────────────

def test_skip_on_tag_collision_warns(db, make_row, equipment, user_id):
    _existing(db, make_row, equipment, user_id, tag_id="PLC-1")

    decision = resolve_duplicate(db, _row(make_row, tag_id="PLC-1"), 5, "skip")

    assert decision.action is Action.skip
    assert len(decision.diagnostics) == 1
    assert decision.diagnostics[0].severity == "warning"
    assert decision.diagnostics[0].message == "Duplicate tag_id 'PLC-1' found, skipping"


def test_skip_on_ip_collision_alone(db, make_row, equipment, user_id):
    _existing(db, make_row, equipment, user_id, tag_id="PLC-1", ip_address="10.0.0.5")

    decision = resolve_duplicate(db, _row(make_row, tag_id="PLC-2", ip_address="10.0.0.5"), 3, "skip")

    assert decision.action is Action.skip
    assert decision.diagnostics[0].column == "ip_address"


# ─── overwrite / merge ────────────────────────────────────────────────────────

def test_overwrite_replaces_every_field(db, make_row, equipment, user_id):
    plc = _existing(
        db, make_row, equipment, user_id,
        tag_id="PLC-1", ip_address="10.0.0.5", firmware_version="v1", tags="a,b",
    )
    row = _row(make_row, tag_id="PLC-1", make="ABB", firmware_version="", tags="c")

    decision = resolve_duplicate(db, row, 2, "overwrite")
    update_plc(db, decision.target, row, equipment.id, user_id, "overwrite")

    assert decision.action is Action.update
    assert decision.diagnostics[0].severity == "warning"
    assert plc.make == "ABB"
    assert plc.ip_address is None
    assert plc.firmware_version is None
    assert plc.tag_names == ["c"]


def test_merge_keeps_existing_values_for_blank_cells_and_unions_tags(db, make_row, equipment, user_id):
    plc = _existing(
        db, make_row, equipment, user_id,
        tag_id="PLC-1", ip_address="10.0.0.5", firmware_version="v1", tags="a,b",
    )
    row = _row(make_row, tag_id="PLC-1", description="Updated", tags="b,c")

    decision = resolve_duplicate(db, row, 2, "merge")
    update_plc(db, decision.target, row, equipment.id, user_id, "merge")

    assert plc.description == "Updated"
    assert plc.ip_address == "10.0.0.5"
    assert plc.firmware_version == "v1"
    assert sorted(plc.tag_names) == ["a", "b", "c"]


def test_ip_match_with_new_tag_retargets_existing_record(db, make_row, equipment, user_id):
    plc = _existing(db, make_row, equipment, user_id, tag_id="PLC-OLD", ip_address="10.0.0.5")
    row = _row(make_row, tag_id="PLC-NEW", ip_address="10.0.0.5")

    decision = resolve_duplicate(db, row, 2, "overwrite")
    update_plc(db, decision.target, row, equipment.id, user_id, "overwrite")

    assert decision.target is plc
    assert plc.tag_id == "PLC-NEW"


def test_tag_and_ip_on_different_records_conflict(db, make_row, equipment, user_id):
    _existing(db, make_row, equipment, user_id, tag_id="PLC-1", ip_address="10.0.0.1")
    _existing(db, make_row, equipment, user_id, tag_id="PLC-2", ip_address="10.0.0.2")

    decision = resolve_duplicate(db, _row(make_row, tag_id="PLC-1", ip_address="10.0.0.2"), 4, "merge")

    assert decision.action is Action.conflict
    assert decision.diagnostics[0].severity == "error"
    assert decision.diagnostics[0].message == "IP address already assigned to tag 'PLC-2'"
