"""
Типизированные записи пакета.

Все модели - pydantic. Внутри кода используются snake_case имена полей,
наружу (JSON для UI / хранилища) - camelCase алиасы.
"""
from __future__ import annotations
import math
import uuid
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, computed_field, field_validator
from pydantic.alias_generators import to_camel


def _clamp01(v: Any) -> float:
    try:
        x = float(v)
    except (TypeError, ValueError):
        return 0.0
    if math.isnan(x):
        return 0.0
    return min(1.0, max(0.0, x))


class _Record(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, mode="json", exclude_none=True)


class ColumnRole(str, Enum):
    NAME = "name"
    ROLL_NUMBER = "roll_number"
    BENCH_ID = "bench_id"
    IP_ADDRESS = "ip_address"
    PRESENT = "present"
    CLASS = "class"
    SECTION = "section"
    SUBJECT = "subject"
    ROOM = "room"


class SessionStatus(str, Enum):
    CLEAN = "clean"
    SUSPICIOUS = "suspicious"
    FLAGGED = "flagged"


class AttendanceTable(_Record):
    headers: List[str] = Field(default_factory=list)
    rows: List[Dict[str, str]] = Field(default_factory=list)

    @field_validator("headers", mode="before")
    @classmethod
    def _headers_as_str(cls, v):
        return [str(h) for h in (v or [])]

    @field_validator("rows", mode="before")
    @classmethod
    def _rows_within_headers(cls, v, info):
        # ключи строки - только из headers, значения - строки
        known = set(info.data.get("headers", []))
        return [
            {str(k): "" if val is None else str(val) for k, val in dict(row).items() if str(k) in known}
            for row in (v or [])
        ]

    @classmethod
    def from_records(cls, headers: List[str], rows: List[Dict[str, Any]]) -> "AttendanceTable":
        # Строки, где все значения пустые/пробельные, отбрасываются
        table = cls(headers=headers, rows=[dict(r) for r in rows])
        table.rows = [r for r in table.rows if any(str(v).strip() for v in r.values())]
        return table

    def value(self, row: Dict[str, str], header: Optional[str]) -> str:
        if not header:
            return ""
        return row.get(header, "") or ""

    def __len__(self) -> int:
        return len(self.rows)


class DetectedMetadata(_Record):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    class_name: Optional[str] = None
    section: Optional[str] = None
    subject: Optional[str] = None
    room: Optional[str] = None
    date: Optional[str] = None
    total_students: int = Field(0, ge=0)
    present_count: int = Field(0, ge=0)
    absent_count: int = Field(0, ge=0)
    has_ip_column: bool = Field(False, alias="hasIPColumn")
    has_bench_id_column: bool = False

    def detected_fields(self) -> List[str]:
        # Что удалось заполнить автоматически (для подсказки в форме)
        out = []
        for label, v in (("Class", self.class_name), ("Section", self.section),
                         ("Subject", self.subject), ("Room", self.room), ("Date", self.date)):
            if v:
                out.append(label)
        return out


MISSING_ROLL = "N/A"


class FlaggedEntry(_Record):
    student_name: str = "Unknown"
    roll_number: str = MISSING_ROLL
    bench_id: str = "N/A"
    ip_address: Optional[str] = None
    reason: str = ""
    confidence: float = 0.0

    @field_validator("student_name", "roll_number", "bench_id", "reason", mode="before")
    @classmethod
    def _as_text(cls, v, info):
        if v is None or str(v).strip() == "":
            return {"student_name": "Unknown", "roll_number": MISSING_ROLL, "bench_id": "N/A"}.get(info.field_name, "")
        return str(v).strip()

    @field_validator("confidence", mode="before")
    @classmethod
    def _clamp_confidence(cls, v):
        return _clamp01(v)


def unique_by_roll(entries: List[FlaggedEntry]) -> List[FlaggedEntry]:
    # Флаги - множество по номеру (roll): повтор номера отбрасывается.
    # Записи без номера ("N/A") не сливаются.
    seen = set()
    out = []
    for e in entries:
        if e.roll_number == MISSING_ROLL:
            out.append(e)
            continue
        if e.roll_number in seen:
            continue
        seen.add(e.roll_number)
        out.append(e)
    return out


class IPAnalysis(_Record):
    unique_ips: int = Field(0, ge=0, alias="uniqueIPs")
    duplicate_ips: int = Field(0, ge=0, alias="duplicateIPs")
    suspicious_ips: List[str] = Field(default_factory=list, alias="suspiciousIPs")


class SeatingAnalysis(_Record):
    clusters: int = Field(0, ge=0)
    anomalies: int = Field(0, ge=0)


class AnalysisResult(_Record):
    total_students: int = Field(0, ge=0)
    present_count: int = Field(0, ge=0)
    absent_count: Optional[int] = Field(None, ge=0)
    proxy_probability: float = 0.0
    insights: List[str] = Field(default_factory=list)
    flagged_entries: List[FlaggedEntry] = Field(default_factory=list)
    ip_analysis: Optional[IPAnalysis] = Field(None, alias="ipAnalysis")
    seating_analysis: Optional[SeatingAnalysis] = None

    @field_validator("proxy_probability", mode="before")
    @classmethod
    def _clamp_probability(cls, v):
        return _clamp01(v)

    @field_validator("flagged_entries", mode="after")
    @classmethod
    def _unique_by_roll(cls, entries: List[FlaggedEntry]) -> List[FlaggedEntry]:
        return unique_by_roll(entries)

    @computed_field(alias="flaggedCount")
    @property
    def flagged_count(self) -> int:
        return len(self.flagged_entries)

    def to_wire(self, status: Optional[SessionStatus] = None) -> Dict[str, Any]:
        out = self.to_dict()
        if status is not None:
            out["status"] = SessionStatus(status).value
        return out


class AttendanceEntry(_Record):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    student_name: str = "Unknown"
    roll_number: str = ""
    bench_id: Optional[str] = None
    ip_address: Optional[str] = None
    present: bool = False
    flagged: bool = False
    flag_reason: Optional[str] = None
    confidence: Optional[float] = Field(None, ge=0.0, le=1.0)


def _now() -> datetime:
    return datetime.now().replace(microsecond=0)


class SessionRecord(_Record):
    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    date: datetime = Field(default_factory=_now)
    class_name: str
    section: str
    subject: Optional[str] = None
    room: Optional[str] = None
    entries: List[AttendanceEntry] = Field(default_factory=list)
    analysis: AnalysisResult
    raw_data: Optional[AttendanceTable] = None
    status: SessionStatus = SessionStatus.CLEAN
    created_at: datetime = Field(default_factory=_now)
    updated_at: datetime = Field(default_factory=_now)

    @field_validator("class_name", "section", mode="before")
    @classmethod
    def _required_text(cls, v):
        s = "" if v is None else str(v).strip()
        if not s:
            raise ValueError("must not be empty")
        return s

    @field_validator("subject", "room", mode="before")
    @classmethod
    def _optional_text(cls, v):
        s = "" if v is None else str(v).strip()
        return s or None

    def summary(self) -> Dict[str, Any]:
        # Для списка сессий: без entries/rawData
        out = self.to_dict()
        out.pop("entries", None)
        out.pop("rawData", None)
        return out
