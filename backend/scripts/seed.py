"""Seed script: loads a demo PLC inventory through the regular import pipeline.

Idempotent: rows whose tag_id or ip_address already exist are skipped.
Run: docker exec plc-inventory-backend-1 python scripts/seed.py [path/to/file.csv]
"""
import sys
import uuid
from pathlib import Path

from app.core.config import settings
from app.core.logging import setup_logging
from app.db.session import SessionLocal
from app.schemas.imports import ImportOptions
from app.services.background import CeleryImportQueue
from app.services.importer import ImportOrchestrator
from app.services.template import generate_template

# Owner recorded in created_by / import history for seeded data.
SEED_USER_ID = uuid.UUID("00000000-0000-0000-0000-000000000001")


def seed(path: str | None = None) -> int:
    content = Path(path).read_bytes() if path else generate_template()
    filename = Path(path).name if path else "seed.csv"
    options = ImportOptions(
        create_missing=True,
        duplicate_handling="skip",
        background_threshold=settings.IMPORT_BACKGROUND_THRESHOLD_MAX,
    )

    with SessionLocal() as db:
        orchestrator = ImportOrchestrator(db, queue=CeleryImportQueue())
        result = orchestrator.run(content, filename, options, user_id=SEED_USER_ID)

    if not result.success:
        for err in result.errors:
            print(f"  [error] row {err.row} {err.column}: {err.message}")
        return 1

    if result.is_background:
        print(f"  [queued] {result.total_rows} rows as import {result.import_id}")
        return 0

    counts = result.created_entities
    print(
        f"  [done] {counts.sites} sites, {counts.cells} cells, "
        f"{counts.equipment} equipment, {counts.plcs} PLCs created; "
        f"{result.skipped_rows} rows skipped"
    )
    return 0


if __name__ == "__main__":
    setup_logging()
    sys.exit(seed(sys.argv[1] if len(sys.argv) > 1 else None))
