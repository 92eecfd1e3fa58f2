"""Downloadable import template: every column, two sample rows, all values quoted."""
import csv
import io

from app.services.row_validation import IMPORT_COLUMNS

TEMPLATE_FILENAME = "plc_import_template.csv"

SAMPLE_ROWS = (
    (
        "Main Factory", "Assembly Line 1", "production", "Robot Controller 1", "controller",
        "PLC-001", "Main assembly robot controller", "Allen-Bradley", "ControlLogix 5580",
        "192.168.1.10", "v20.13", "robot,assembly,critical",
    ),
    (
        "Main Factory", "Assembly Line 1", "production", "Conveyor Controller", "controller",
        "PLC-002", "Conveyor belt speed controller", "Siemens", "S7-1500",
        "192.168.1.11", "v4.5.1", "conveyor,transport",
    ),
)


def generate_template() -> bytes:
    buf = io.StringIO()
    writer = csv.writer(buf, quoting=csv.QUOTE_ALL, lineterminator="\n")
    writer.writerow(IMPORT_COLUMNS)
    writer.writerows(SAMPLE_ROWS)
    return buf.getvalue().encode("utf-8")
