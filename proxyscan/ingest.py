from __future__ import annotations
import csv
import logging
from datetime import date, datetime
from io import BytesIO, StringIO
from typing import Any, List, Optional
import pandas as pd
from openpyxl import load_workbook
from .errors import IngestError
from .models import AttendanceTable

logger = logging.getLogger(__name__)

SUPPORTED_EXTENSIONS = (".csv", ".xlsx", ".xls")
# =========================

# Ячейки -> строки
# =========================
def _cell_str(v: Any) -> str:
    if v is None:
        return ""
    if isinstance(v, float):
        if pd.isna(v):
            return ""
        # 101.0 -> "101" (номера/счётчики из Excel)
        if v.is_integer():
            return str(int(v))
    if isinstance(v, datetime):
        return v.strftime("%Y-%m-%d") if v.time() == datetime.min.time() else v.isoformat(sep=" ")
    if isinstance(v, date):
        return v.isoformat()
    s = str(v)
    return "" if s.lower() == "nan" else s


def _make_unique(cols: List[str]) -> List[str]:
    seen = {}
    out = []
    for i, c in enumerate(cols):
        base = str(c).replace("\ufeff", "").strip()
        if base == "" or base.lower() == "nan":
            base = f"col_{i + 1}"
        n = seen.get(base, 0) + 1
        seen[base] = n
        out.append(base if n == 1 else f"{base}__{n}")
    return out
# =========================

# Excel: читаем первый лист как матрицу, разворачиваем merged cells
# =========================
def _sheet_to_matrix_with_merged(wb_bytes: bytes, sheet_name: Optional[str] = None) -> List[List[Any]]:
    wb = load_workbook(BytesIO(wb_bytes), read_only=False, data_only=True)
    ws = wb[sheet_name] if sheet_name else wb.worksheets[0]
    merged_map = {}
    for r in ws.merged_cells.ranges:
        min_col, min_row, max_col, max_row = r.bounds
        top_val = ws.cell(min_row, min_col).value
        for rr in range(min_row, max_row + 1):
            for cc in range(min_col, max_col + 1):
                merged_map[(rr, cc)] = top_val

    rows = []
    for r in range(1, ws.max_row + 1):
        row_vals = []
        for c in range(1, ws.max_column + 1):
            v = ws.cell(r, c).value
            if (r, c) in merged_map and (v is None or str(v).strip() == ""):
                v = merged_map[(r, c)]
            row_vals.append(v)
        rows.append(row_vals)

    return rows


def _read_excel_bytes(data: bytes) -> List[List[Any]]:
    try:
        return _sheet_to_matrix_with_merged(data)
    except Exception as e:
        # .xls и прочее, что не открывает openpyxl
        logger.debug("openpyxl failed (%s), falling back to pandas", e)
        df = pd.read_excel(BytesIO(data), sheet_name=0, header=None)
        return df.astype(object).where(df.notna(), None).values.tolist()
# =========================

# CSV: устойчивое чтение из bytes
# =========================
def _decode_sample(data: bytes, enc: str, limit: int = 65536) -> str:
    # Декодирует кусок текста для sniff delimiter / отладки
    try:
        return data[:limit].decode(enc, errors="replace")
    except LookupError:
        return data[:limit].decode("utf-8", errors="replace")


def _guess_delimiter(sample_text: str) -> str:
    # ',' (en-US) или ';' (локали с запятой в числах), иногда табы
    try:
        dialect = csv.Sniffer().sniff(sample_text, delimiters=";,\t|")
        if dialect.delimiter:
            return dialect.delimiter
    except csv.Error:
        pass

    # fallback по количеству в первых строках
    candidates = [",", ";", "\t", "|"]
    lines = [ln for ln in sample_text.splitlines() if ln.strip()][:20]
    if not lines:
        return ","

    scores = {}
    for d in candidates:
        # среднее количество разделителей на строку
        cnts = [ln.count(d) for ln in lines]
        scores[d] = sum(cnts) / max(1, len(cnts))

    # выбираем лучший, но если все 0 - пусть будет ','
    best = max(scores.items(), key=lambda x: x[1])[0]
    return best if scores.get(best, 0) > 0 else ","


def _read_csv_bytes(data: bytes) -> List[List[Any]]:
    # читаем CSV БЕЗ header и как строки: заголовки берём из первой строки сами
    encodings = ["utf-8-sig", "utf-8", "cp1251"]
    last_err: Exception | None = None

    for enc in encodings:
        try:
            sample = _decode_sample(data, enc)
            delim = _guess_delimiter(sample)
            df = pd.read_csv(
                BytesIO(data),
                header=None,
                sep=delim,
                engine="python",
                encoding=enc,
                dtype=str,
                keep_default_na=False,
                skip_blank_lines=True,
            )
            return df.values.tolist()
        except (UnicodeDecodeError, pd.errors.ParserError) as e:
            last_err = e
            continue
        except pd.errors.EmptyDataError:
            return []

    # Декодируем как текст с заменой и читаем
    sample = data.decode("utf-8", errors="replace")
    delim = _guess_delimiter(sample)
    try:
        df = pd.read_csv(StringIO(sample), header=None, sep=delim, engine="python",
                         dtype=str, keep_default_na=False, skip_blank_lines=True)
        return df.values.tolist()
    except pd.errors.ParserError as e:
        raise IngestError(f"Failed to parse CSV: {last_err or e}") from e
# =========================

# Main: upload -> AttendanceTable
# =========================
def table_from_matrix(matrix: List[List[Any]]) -> AttendanceTable:
    """
    Первая строка - заголовки (trim, уникальные, пустые -> col_N),
    остальное - данные. Полностью пустые строки отбрасываются.
    """
    if not matrix:
        return AttendanceTable()
    width = max(len(r) for r in matrix)
    header_row = [_cell_str(v) for v in matrix[0]] + [""] * (width - len(matrix[0]))
    headers = _make_unique(header_row)

    rows = []
    for raw in matrix[1:]:
        vals = [_cell_str(v) for v in raw] + [""] * (width - len(raw))
        rows.append(dict(zip(headers, vals)))
    return AttendanceTable.from_records(headers, rows)


def load_table_from_upload(name: str, data: bytes) -> AttendanceTable:
    """
    Формат - по расширению файла (.csv / .xlsx / .xls).
    IngestError: неподдерживаемый формат или в файле нет строк с данными.
    """
    low = (name or "").lower()
    if not low.endswith(SUPPORTED_EXTENSIONS):
        raise IngestError("Unsupported file format. Please use CSV or Excel files.")

    if low.endswith(".csv"):
        matrix = _read_csv_bytes(data)
    else:
        try:
            matrix = _read_excel_bytes(data)
        except Exception as e:
            raise IngestError(f"Failed to read Excel file: {type(e).__name__}: {e}") from e

    table = table_from_matrix(matrix)
    if not table.rows:
        raise IngestError("No data found in the file")

    logger.info("Loaded %s: %d columns, %d rows", name, len(table.headers), len(table.rows))
    return table
