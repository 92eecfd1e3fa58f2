"""Tests for the demo seed script."""
from unittest.mock import MagicMock

import pytest
from sqlalchemy import func, select

from app.core.config import settings
from app.models.import_history import BackgroundJob
from app.models.plc import PLC
from scripts import seed as seed_script


@pytest.fixture
def queue(monkeypatch, session_factory):
    adapter = MagicMock()
    adapter.enqueue.return_value = "celery-task-1"
    monkeypatch.setattr(seed_script, "SessionLocal", session_factory)
    monkeypatch.setattr(seed_script, "CeleryImportQueue", lambda: adapter)
    return adapter


def test_seed_template_is_idempotent(db, queue):
    assert seed_script.seed() == 0
    assert seed_script.seed() == 0

    assert db.execute(select(func.count()).select_from(PLC)).scalar_one() == 2
    queue.enqueue.assert_not_called()


def test_seed_queues_files_over_the_threshold(db, queue, bulk_csv, tmp_path, monkeypatch):
    monkeypatch.setattr(settings, "IMPORT_BACKGROUND_THRESHOLD_MAX", 100)
    path = tmp_path / "plcs.csv"
    path.write_bytes(bulk_csv(101))

    assert seed_script.seed(str(path)) == 0

    queue.enqueue.assert_called_once()
    assert db.execute(select(BackgroundJob.status)).scalar_one() == "queued"
