"""CSV reading for bulk imports.

Responsibilities:
  • upload precondition check (size, media type) before any byte is parsed
  • BOM removal and strict UTF-8 decoding
  • header / value whitespace stripping
  • lazy RawRow iteration with source row numbers (row 1 is the header,
    blank lines are skipped and do not consume a number)
"""
from __future__ import annotations

import csv
import io
from collections.abc import Iterator
from dataclasses import dataclass

from app.core.config import settings
from app.services.errors import MalformedInputError, UnsupportedUploadError, UploadTooLargeError

CSV_MEDIA_TYPES = frozenset({
    "text/csv",
    "application/csv",
    "text/x-csv",
    "application/vnd.ms-excel",
})


@dataclass(frozen=True)
class RawRow:
    """One data line: ordered (column, value) pairs plus its 1-based line number."""

    row_number: int
    fields: tuple[tuple[str, str], ...]

    def get(self, column: str, default: str = "") -> str:
        for name, value in self.fields:
            if name == column:
                return value
        return default

    def as_dict(self) -> dict[str, str]:
        return dict(self.fields)


@dataclass
class ParsedCSV:
    headers: list[str]
    rows: Iterator[RawRow]


def check_upload(filename: str | None, content_type: str | None, size: int) -> None:
    """Reject uploads that must never reach the parser."""
    if size > settings.IMPORT_MAX_UPLOAD_BYTES:
        raise UploadTooLargeError(
            f"File exceeds the {settings.IMPORT_MAX_UPLOAD_BYTES // (1024 * 1024)} MiB upload limit"
        )
    if size == 0:
        raise UnsupportedUploadError("Uploaded file is empty")

    media_type = (content_type or "").split(";")[0].strip().lower()
    has_csv_ext = (filename or "").lower().endswith(".csv")
    if media_type not in CSV_MEDIA_TYPES and not has_csv_ext:
        raise UnsupportedUploadError("Only CSV files are allowed")


def decode(raw: str | bytes) -> str:
    if isinstance(raw, bytes):
        # Strip UTF-8 BOM
        if raw.startswith(b"\xef\xbb\xbf"):
            raw = raw[3:]
        try:
            return raw.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise MalformedInputError(
                f"File is not valid UTF-8 text (byte offset {exc.start})"
            ) from exc
    if raw.startswith("\ufeff"):
        return raw[1:]
    return raw


def parse_csv(raw: str | bytes, delimiter: str = ",") -> ParsedCSV:
    """Read the header eagerly and return a lazy, single-pass row iterator.

    Raises MalformedInputError for undecodable bytes or broken quoting; for
    problems past the header line the error surfaces while iterating.
    """
    text = decode(raw)
    reader = csv.reader(io.StringIO(text, newline=""), delimiter=delimiter, strict=True)

    headers: list[str] = []
    try:
        for cells in reader:
            if _is_blank(cells):
                continue
            headers = [h.strip() for h in cells]
            break
    except csv.Error as exc:
        raise MalformedInputError(f"Malformed CSV header: {exc}") from exc

    return ParsedCSV(headers=headers, rows=_iter_rows(reader, headers))


def _iter_rows(reader, headers: list[str]) -> Iterator[RawRow]:
    row_number = 1  # header
    try:
        for cells in reader:
            if _is_blank(cells):
                continue
            row_number += 1
            yield RawRow(
                row_number=row_number,
                fields=tuple(
                    (name, cells[i].strip() if i < len(cells) else "")
                    for i, name in enumerate(headers)
                    if name
                ),
            )
    except csv.Error as exc:
        raise MalformedInputError(f"Malformed CSV near line {reader.line_num}: {exc}") from exc


def _is_blank(cells: list[str]) -> bool:
    return not any(c.strip() for c in cells)
