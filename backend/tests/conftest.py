"""Shared fixtures: in-memory SQLite session, a fixed user id, CSV builders."""
import csv
import io
import uuid

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

import app.models  # noqa: F401  registers every table on Base.metadata
from app.core.limiter import limiter
from app.db.base import Base
from app.services.row_validation import IMPORT_COLUMNS


# ─── Database ─────────────────────────────────────────────────────────────────

@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(engine, expire_on_commit=False, autoflush=False)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture(autouse=True)
def _no_rate_limit():
    limiter.enabled = False
    yield
    limiter.enabled = True


# ─── Identities ───────────────────────────────────────────────────────────────

@pytest.fixture
def user_id():
    return uuid.UUID("f96955d0-752f-4e0c-b1dc-d26d8dd1460e")


# ─── CSV builders ─────────────────────────────────────────────────────────────

def _row(**overrides) -> dict:
    row = {
        "site_name": "Plant A",
        "cell_name": "Line 1",
        "cell_type": "production",
        "equipment_name": "Press 1",
        "equipment_type": "plc",
        "tag_id": "PLC-100",
        "description": "Press controller",
        "make": "Siemens",
        "model": "S7-1500",
        "ip_address": "",
        "firmware_version": "",
        "tags": "",
    }
    row.update(overrides)
    return row


def _csv(rows: list[dict], headers=IMPORT_COLUMNS) -> bytes:
    buf = io.StringIO()
    writer = csv.DictWriter(buf, fieldnames=list(headers), extrasaction="ignore", lineterminator="\n")
    writer.writeheader()
    for row in rows:
        writer.writerow(row)
    return buf.getvalue().encode("utf-8")


@pytest.fixture
def make_row():
    return _row


@pytest.fixture
def make_csv():
    return _csv


@pytest.fixture
def bulk_csv():
    """N valid rows spread over one site, one cell, one equipment."""
    def build(n: int, prefix: str = "PLC") -> bytes:
        return _csv([_row(tag_id=f"{prefix}-{i:05d}") for i in range(n)])
    return build
