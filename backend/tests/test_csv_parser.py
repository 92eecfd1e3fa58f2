"""Tests for CSV upload checks and parsing."""
import pytest

from app.services.csv_parser import check_upload, decode, parse_csv
from app.services.errors import MalformedInputError, UnsupportedUploadError, UploadTooLargeError


# ─── Upload precondition ──────────────────────────────────────────────────────

def test_check_upload_accepts_csv_media_type():
    check_upload("plcs.csv", "text/csv", 1024)


def test_check_upload_accepts_csv_extension_with_generic_media_type():
    check_upload("plcs.csv", "application/octet-stream", 1024)


def test_check_upload_rejects_oversize():
    with pytest.raises(UploadTooLargeError):
        check_upload("plcs.csv", "text/csv", 10 * 1024 * 1024 + 1)


def test_check_upload_allows_exact_limit():
    check_upload("plcs.csv", "text/csv", 10 * 1024 * 1024)


def test_check_upload_rejects_non_csv():
    with pytest.raises(UnsupportedUploadError):
        check_upload("plcs.xlsx", "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet", 10)


def test_check_upload_rejects_empty_file():
    with pytest.raises(UnsupportedUploadError):
        check_upload("plcs.csv", "text/csv", 0)


# ─── Decoding ─────────────────────────────────────────────────────────────────

def test_decode_strips_bom():
    assert decode(b"\xef\xbb\xbfsite_name\n") == "site_name\n"


def test_decode_rejects_invalid_utf8():
    with pytest.raises(MalformedInputError) as exc_info:
        decode(b"site_name\n\xff\xfe")
    assert "byte offset 10" in str(exc_info.value)


# ─── Parsing ──────────────────────────────────────────────────────────────────

def test_parse_strips_headers_and_values():
    parsed = parse_csv(b" site_name , tag_id \n Plant A , PLC-1 \n")
    rows = list(parsed.rows)

    assert parsed.headers == ["site_name", "tag_id"]
    assert rows[0].as_dict() == {"site_name": "Plant A", "tag_id": "PLC-1"}


def test_parse_numbers_rows_from_two_and_skips_blank_lines():
    parsed = parse_csv(b"a,b\n1,2\n\n,\n3,4\n")
    rows = list(parsed.rows)

    assert [r.row_number for r in rows] == [2, 3]
    assert rows[1].get("a") == "3"


def test_parse_fills_missing_cells_and_ignores_extra_cells():
    parsed = parse_csv(b"a,b\n1\n1,2,3\n")
    rows = list(parsed.rows)

    assert rows[0].as_dict() == {"a": "1", "b": ""}
    assert rows[1].as_dict() == {"a": "1", "b": "2"}


def test_parse_handles_quoted_commas():
    parsed = parse_csv(b'tag_id,tags\nPLC-1,"robot,assembly"\n')
    assert next(parsed.rows).get("tags") == "robot,assembly"


def test_parse_unbalanced_quote_raises_while_iterating():
    parsed = parse_csv(b'a,b\n"unterminated,2\n')
    with pytest.raises(MalformedInputError):
        list(parsed.rows)


def test_parse_empty_input_has_no_headers():
    parsed = parse_csv(b"")
    assert parsed.headers == []
    assert list(parsed.rows) == []
