from __future__ import annotations
from typing import Any, Dict, List, Mapping, Optional
from .columns import classify_columns, lookup_columns
from .models import AnalysisResult, AttendanceEntry, AttendanceTable, ColumnRole
from .values import clean_cell, is_marked_present


def normalize(row: Mapping[str, Any], present_header: Optional[str]) -> bool:
    # Нет колонки / нет значения / нераспознанное значение -> отсутствовал
    if not present_header:
        return False
    return is_marked_present(row.get(present_header))


def count_present(table: AttendanceTable) -> int:
    present_col = lookup_columns(table.headers)[ColumnRole.PRESENT]
    return sum(1 for r in table.rows if normalize(r, present_col))


def build_entries(table: AttendanceTable, result: AnalysisResult) -> List[AttendanceEntry]:
    """
    По строке таблицы - одна запись о студенте.
    Отметка flagged берётся из результата анализа по совпадению номера (roll).
    """
    cols = lookup_columns(table.headers)
    ip_col = classify_columns(table.headers)[ColumnRole.IP_ADDRESS]
    flagged: Dict[str, Any] = {f.roll_number: f for f in result.flagged_entries}

    entries: List[AttendanceEntry] = []
    for row in table.rows:
        roll = clean_cell(table.value(row, cols[ColumnRole.ROLL_NUMBER])) or ""
        hit = flagged.get(roll)
        entries.append(AttendanceEntry(
            student_name=clean_cell(table.value(row, cols[ColumnRole.NAME])) or "Unknown",
            roll_number=roll,
            bench_id=clean_cell(table.value(row, cols[ColumnRole.BENCH_ID])),
            ip_address=clean_cell(table.value(row, ip_col)),
            present=normalize(row, cols[ColumnRole.PRESENT]),
            flagged=hit is not None,
            flag_reason=hit.reason if hit is not None else None,
            confidence=hit.confidence if hit is not None else None,
        ))
    return entries
