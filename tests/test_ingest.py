from io import BytesIO
import pytest
from openpyxl import Workbook
from proxyscan.errors import IngestError
from proxyscan.ingest import load_table_from_upload, table_from_matrix


def _xlsx_bytes(rows) -> bytes:
    wb = Workbook()
    ws = wb.active
    for r in rows:
        ws.append(r)
    bio = BytesIO()
    wb.save(bio)
    return bio.getvalue()


def test_csv_headers_trimmed_and_blank_rows_dropped():
    data = b" Name , Roll Number ,Present\nAsha,101,yes\n,,\nRavi,102,no\n"
    table = load_table_from_upload("attendance.csv", data)
    assert table.headers == ["Name", "Roll Number", "Present"]
    assert len(table) == 2
    assert table.rows[0] == {"Name": "Asha", "Roll Number": "101", "Present": "yes"}


def test_csv_with_bom_and_semicolons():
    data = "\ufeffName;Roll;Present\nAsha;101;yes\nRavi;102;no\n".encode("utf-8")
    table = load_table_from_upload("ATTENDANCE.CSV", data)
    assert table.headers == ["Name", "Roll", "Present"]
    assert [r["Roll"] for r in table.rows] == ["101", "102"]


def test_xlsx_numbers_become_plain_strings():
    data = _xlsx_bytes([
        ["Name", "Roll", "Bench ID", "Present"],
        ["Asha", 101, "CSE-A-R1C1", "Yes"],
        [None, None, None, None],
        ["Ravi", 102, "CSE-A-R1C2", "No"],
    ])
    table = load_table_from_upload("sheet.xlsx", data)
    assert table.headers == ["Name", "Roll", "Bench ID", "Present"]
    assert [r["Roll"] for r in table.rows] == ["101", "102"]


def test_unsupported_extension():
    with pytest.raises(IngestError, match="Unsupported file format"):
        load_table_from_upload("notes.txt", b"Name\nAsha\n")


@pytest.mark.parametrize("data", [b"Name,Roll,Present\n", b""])
def test_no_data_rows(data):
    with pytest.raises(IngestError, match="No data found"):
        load_table_from_upload("empty.csv", data)


def test_table_from_matrix_fills_blank_and_duplicate_headers():
    table = table_from_matrix([["Name", "", "Name"], ["Asha", "x", "dup"]])
    assert table.headers == ["Name", "col_2", "Name__2"]
    assert table.rows[0]["Name__2"] == "dup"


def test_table_from_matrix_pads_short_rows():
    table = table_from_matrix([["Name", "Roll", "Present"], ["Asha"]])
    assert table.rows == [{"Name": "Asha", "Roll": "", "Present": ""}]
