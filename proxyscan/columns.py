from __future__ import annotations
from typing import Dict, List, Optional, Sequence
from .models import ColumnRole
from .utils import norm_text, rules_path, load_json

RULES = load_json(rules_path(), {})

EXACT_TOKENS: Dict[ColumnRole, List[str]] = {
    ColumnRole.NAME: ["name", "student name", "student", "full name"],
    ColumnRole.ROLL_NUMBER: ["roll", "roll no", "roll number", "rollno", "id", "student id"],
    ColumnRole.BENCH_ID: ["bench", "bench id", "benchid", "bench no", "seat", "seat no", "seat id"],
    ColumnRole.IP_ADDRESS: ["ip", "ip address", "ipaddress", "ip_address"],
    ColumnRole.PRESENT: ["present", "attendance", "status", "attended", "att"],
    ColumnRole.CLASS: ["class", "class name", "classname", "course", "branch", "department", "dept"],
    ColumnRole.SECTION: ["section", "sec", "division", "div"],
    ColumnRole.SUBJECT: ["subject", "course name", "paper"],
    ColumnRole.ROOM: ["room", "room no", "classroom", "hall", "venue"],
}

# Фрагменты для "мягкого" поиска (имя/ролл/парта/отметка) при анализе и сохранении
SUBSTRING_TOKENS: Dict[ColumnRole, List[str]] = {
    ColumnRole.NAME: ["name", "student"],
    ColumnRole.ROLL_NUMBER: ["roll", "id"],
    ColumnRole.BENCH_ID: ["bench", "seat"],
    ColumnRole.PRESENT: ["present", "attendance"],
}

# Порядок, в котором роли "забирают" колонки: одна колонка - не более одной роли
ROLE_PRIORITY: List[ColumnRole] = [
    ColumnRole.PRESENT,
    ColumnRole.IP_ADDRESS,
    ColumnRole.BENCH_ID,
    ColumnRole.ROLL_NUMBER,
    ColumnRole.NAME,
    ColumnRole.CLASS,
    ColumnRole.SECTION,
    ColumnRole.SUBJECT,
    ColumnRole.ROOM,
]


def _load_tokens(section: str, defaults: Dict[ColumnRole, List[str]]) -> Dict[ColumnRole, frozenset]:
    # rules.json может переопределить словарь для любой роли
    overrides = RULES.get("columns", {}).get(section, {})
    out = {}
    for role, toks in defaults.items():
        toks = overrides.get(role.value, toks)
        out[role] = frozenset(t for t in map(norm_text, toks) if t)
    return out


_EXACT = _load_tokens("exact", EXACT_TOKENS)
_SUBSTRING = _load_tokens("substring", SUBSTRING_TOKENS)


class ColumnClassifier:
    """
    Сопоставляет заголовки таблицы семантическим ролям.

    Две стратегии:
      - exact: нормализованный заголовок целиком входит в словарь роли
        (строгий режим, для определения метаданных сессии)
      - substring: заголовок содержит один из фрагментов роли
        (мягкий режим, для поиска имени/ролла/парты/отметки при анализе);
        роли без фрагментов в мягком режиме ищутся как exact
    Внутреннего состояния кроме списка заголовков нет.
    """

    def __init__(self, headers: Sequence[str]):
        self.headers = [str(h) for h in headers]
        self._normed = [norm_text(h) for h in self.headers]

    def _exact_hit(self, role: ColumnRole, normed: str) -> bool:
        return normed in _EXACT[role]

    def _substring_hit(self, role: ColumnRole, normed: str) -> bool:
        frags = _SUBSTRING.get(role)
        if not frags:
            return self._exact_hit(role, normed)
        return any(f in normed for f in frags)

    def _assign(self, substring: bool) -> Dict[ColumnRole, Optional[str]]:
        hit = self._substring_hit if substring else self._exact_hit
        taken = set()
        out: Dict[ColumnRole, Optional[str]] = {}
        for role in ROLE_PRIORITY:
            out[role] = None
            for i, normed in enumerate(self._normed):
                if i in taken or not normed:
                    continue
                if hit(role, normed):
                    out[role] = self.headers[i]
                    taken.add(i)
                    break
        return out

    def match_exact(self, role: ColumnRole) -> Optional[str]:
        return self._assign(substring=False)[role]

    def match_substring(self, role: ColumnRole) -> Optional[str]:
        return self._assign(substring=True)[role]

    def classify(self, substring: bool = False) -> Dict[ColumnRole, Optional[str]]:
        return self._assign(substring=substring)


def classify_columns(headers: Sequence[str]) -> Dict[ColumnRole, Optional[str]]:
    # Строгая классификация (метаданные)
    return ColumnClassifier(headers).classify()


def lookup_columns(headers: Sequence[str]) -> Dict[ColumnRole, Optional[str]]:
    # Мягкий поиск (анализ/сохранение)
    return ColumnClassifier(headers).classify(substring=True)


def has_role(headers: Sequence[str], role: ColumnRole) -> bool:
    return any(norm_text(h) in _EXACT[role] for h in headers)
