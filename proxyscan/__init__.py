"""
Этот пакет содержит:
- загрузку таблиц посещаемости (CSV/XLSX)
- распознавание ролей колонок и метаданных сессии
- нормализацию отметок присутствия
- анализ на "прокси"-посещаемость (Gemini или эвристика)
- хранение сессий и экспорт отчёта
"""
from .ingest import load_table_from_upload
from .columns import ColumnClassifier, classify_columns, lookup_columns
from .metadata import extract_metadata
from .normalize import normalize, build_entries
from .analysis import analyze, derive_status, default_generator, fallback_analysis
from .models import (AnalysisResult, AttendanceEntry, AttendanceTable, ColumnRole, DetectedMetadata,
                     SessionRecord, SessionStatus)
from .pipeline import run_analysis
from .sessions import SessionStore
from .export import export_session_to_excel_bytes

__all__ = [
    "load_table_from_upload",
    "ColumnClassifier",
    "classify_columns",
    "lookup_columns",
    "extract_metadata",
    "normalize",
    "build_entries",
    "analyze",
    "derive_status",
    "default_generator",
    "fallback_analysis",
    "AnalysisResult",
    "AttendanceEntry",
    "AttendanceTable",
    "ColumnRole",
    "DetectedMetadata",
    "SessionRecord",
    "SessionStatus",
    "run_analysis",
    "SessionStore",
    "export_session_to_excel_bytes",
]
