from __future__ import annotations
import pandas as pd
from io import BytesIO
from .models import SessionRecord


def _summary_df(record: SessionRecord) -> pd.DataFrame:
    a = record.analysis
    rows = [
        ("Date", record.date.strftime("%Y-%m-%d %H:%M")),
        ("Class", record.class_name),
        ("Section", record.section),
        ("Subject", record.subject or ""),
        ("Room", record.room or ""),
        ("Status", record.status.value),
        ("Proxy probability", round(a.proxy_probability, 4)),
        ("Total students", a.total_students),
        ("Present", a.present_count),
        ("Absent", a.absent_count if a.absent_count is not None else ""),
        ("Flagged", a.flagged_count),
    ]
    if a.ip_analysis is not None:
        rows += [
            ("Unique IPs", a.ip_analysis.unique_ips),
            ("Duplicate IPs", a.ip_analysis.duplicate_ips),
            ("Suspicious IPs", ", ".join(a.ip_analysis.suspicious_ips)),
        ]
    if a.seating_analysis is not None:
        rows += [
            ("Seating clusters", a.seating_analysis.clusters),
            ("Seating anomalies", a.seating_analysis.anomalies),
        ]
    return pd.DataFrame(rows, columns=["Field", "Value"])


def _entries_df(record: SessionRecord) -> pd.DataFrame:
    cols = ["Name", "Roll", "Bench", "IP", "Present", "Flagged", "Reason", "Confidence"]
    return pd.DataFrame([{
        "Name": e.student_name,
        "Roll": e.roll_number,
        "Bench": e.bench_id or "",
        "IP": e.ip_address or "",
        "Present": "yes" if e.present else "no",
        "Flagged": "yes" if e.flagged else "",
        "Reason": e.flag_reason or "",
        "Confidence": round(e.confidence, 2) if e.confidence is not None else "",
    } for e in record.entries], columns=cols)


def export_session_to_excel_bytes(record: SessionRecord) -> bytes:
    summary_df = _summary_df(record)
    entries_df = _entries_df(record)
    insights_df = pd.DataFrame({"Insight": record.analysis.insights})

    bio = BytesIO()

    with pd.ExcelWriter(bio, engine="xlsxwriter") as writer:
        summary_df.to_excel(writer, index=False, sheet_name="Summary")
        entries_df.to_excel(writer, index=False, sheet_name="Entries")
        insights_df.to_excel(writer, index=False, sheet_name="Insights")

        wb = writer.book

        fmt_header = wb.add_format({"bold": True, "bg_color": "#F2F2F2", "border": 1, "valign": "vcenter"})
        fmt_flag = wb.add_format({"bg_color": "#FCE8E6"})

        def format_df_sheet(sheet_name: str, df: pd.DataFrame, default_width: int = 18, max_width: int = 60):
            ws = writer.sheets.get(sheet_name)
            if ws is None:
                return
            ws.freeze_panes(1, 0)
            ws.autofilter(0, 0, max(1, len(df)), max(0, len(df.columns) - 1))
            for col, name in enumerate(df.columns):
                ws.write(0, col, name, fmt_header)
                w = max(10, min(max_width, int(len(str(name)) * 1.2) + 10))
                ws.set_column(col, col, max(default_width, w))

        format_df_sheet("Summary", summary_df, default_width=22, max_width=40)
        format_df_sheet("Entries", entries_df, default_width=14, max_width=40)
        format_df_sheet("Insights", insights_df, default_width=90, max_width=120)

        # отмеченные строки - подсветка всей строки
        ws = writer.sheets["Entries"]
        ws.set_column(6, 6, 55)
        if len(entries_df):
            last_col = len(entries_df.columns) - 1
            ws.conditional_format(1, 0, len(entries_df), last_col, {
                "type": "formula",
                "criteria": '=$F2="yes"',
                "format": fmt_flag,
            })

    return bio.getvalue()
