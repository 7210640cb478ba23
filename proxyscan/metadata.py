from __future__ import annotations
from typing import Any, Dict, Iterable, List, Optional, Sequence
from .columns import classify_columns, has_role
from .models import ColumnRole, DetectedMetadata
from .utils import norm_text, try_parse_date, rules_path, load_json
from .values import clean_cell, parse_presence

RULES = load_json(rules_path(), {})

DATE_TOKENS = frozenset(map(norm_text, RULES.get("columns", {}).get("date", ["date", "day", "session date", "dated"])))


def most_common(values: Iterable[Any]) -> Optional[str]:
    """
    Самое частое непустое значение (после trim).
    При равенстве остаётся значение, встреченное первым: максимум обновляется
    только при строго большем счётчике.
    """
    counts: Dict[str, int] = {}
    for v in values:
        s = clean_cell(v)
        if s is None:
            continue
        counts[s] = counts.get(s, 0) + 1

    best: Optional[str] = None
    best_n = 0
    for s, n in counts.items():  # dict сохраняет порядок первого появления
        if n > best_n:
            best, best_n = s, n
    return best


def _column_values(rows: Sequence[Dict[str, Any]], header: Optional[str]) -> List[Any]:
    if not header:
        return []
    return [r.get(header) for r in rows]


def split_bench_id(bench: Any) -> tuple[Optional[str], Optional[str]]:
    # "CSE-A-R1C1" -> ("CSE", "A"); меньше двух частей -> (None, None)
    s = clean_cell(bench)
    if s is None:
        return None, None
    parts = [p.strip() for p in s.split("-")]
    if len(parts) < 2:
        return None, None
    return parts[0] or None, parts[1] or None


def _detect_date(headers: Sequence[str], rows: Sequence[Dict[str, Any]]) -> Optional[str]:
    header = next((h for h in headers if norm_text(h) in DATE_TOKENS), None)
    if header is None:
        return None
    parsed = [try_parse_date(v) for v in _column_values(rows, header)]
    return most_common(p for p in parsed if p)


def extract_metadata(headers: Sequence[str], rows: Sequence[Dict[str, Any]]) -> DetectedMetadata:
    """
    Сведения о сессии по таблице: класс/секция/предмет/аудитория (голосованием
    по колонке), счётчики присутствующих/отсутствующих, наличие IP/парт.
    Никогда не бросает исключений: чего нет в таблице - остаётся None/0.
    """
    roles = classify_columns(headers)

    class_name = most_common(_column_values(rows, roles[ColumnRole.CLASS]))
    section = None
    subject = most_common(_column_values(rows, roles[ColumnRole.SUBJECT]))
    room = most_common(_column_values(rows, roles[ColumnRole.ROOM]))

    bench_col = roles[ColumnRole.BENCH_ID]
    bench_class, bench_section = (None, None)
    if bench_col is not None and rows:
        bench_class, bench_section = split_bench_id(rows[0].get(bench_col))

    # Класса нет - берём из ID парты первой строки ("CSE-A-R1C1")
    if roles[ColumnRole.CLASS] is None and bench_class and bench_section:
        class_name, section = bench_class, bench_section

    if section is None:
        if roles[ColumnRole.SECTION] is not None:
            section = most_common(_column_values(rows, roles[ColumnRole.SECTION]))
        elif bench_section:
            section = bench_section

    present_count = 0
    absent_count = 0
    present_col = roles[ColumnRole.PRESENT]
    if present_col is not None:
        for r in rows:
            flag = parse_presence(r.get(present_col))
            if flag is True:
                present_count += 1
            elif flag is False:
                absent_count += 1

    return DetectedMetadata(
        class_name=class_name,
        section=section,
        subject=subject,
        room=room,
        date=_detect_date(headers, rows),
        total_students=len(rows),
        present_count=present_count,
        absent_count=absent_count,
        has_ip_column=has_role(headers, ColumnRole.IP_ADDRESS),
        has_bench_id_column=has_role(headers, ColumnRole.BENCH_ID),
    )
