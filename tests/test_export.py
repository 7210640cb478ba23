import random
from io import BytesIO
from openpyxl import load_workbook
from proxyscan.analysis import analyze, derive_status
from proxyscan.export import export_session_to_excel_bytes
from proxyscan.models import SessionRecord
from proxyscan.normalize import build_entries


def test_export_workbook(ip_table):
    result = analyze(ip_table, rng=random.Random(11))
    record = SessionRecord(
        class_name="ECE",
        section="B",
        entries=build_entries(ip_table, result),
        analysis=result,
        status=derive_status(result.proxy_probability),
    )
    wb = load_workbook(BytesIO(export_session_to_excel_bytes(record)))
    assert wb.sheetnames == ["Summary", "Entries", "Insights"]

    summary = {r[0]: r[1] for r in wb["Summary"].iter_rows(min_row=2, values_only=True)}
    assert summary["Class"] == "ECE"
    assert summary["Total students"] == 4
    assert summary["Suspicious IPs"] == "10.0.0.5"

    entries = list(wb["Entries"].iter_rows(min_row=2, values_only=True))
    assert len(entries) == 4
    assert sum(1 for r in entries if r[5] == "yes") == result.flagged_count
    assert wb["Insights"].max_row == 1 + len(result.insights)
