from __future__ import annotations
from typing import Any, Optional
from .utils import norm_text, rules_path, load_json

RULES = load_json(rules_path(), {})

# Строгий словарь "присутствовал" (используется при анализе и сохранении)
PRESENT_TOKENS = frozenset(map(norm_text, RULES.get("attendance", {}).get("present", ["yes", "1", "true", "p"])))

# Мягкие словари да/нет (используются при подсчёте в метаданных)
TRUTHY_TOKENS = frozenset(map(norm_text, RULES.get("attendance", {}).get(
    "truthy", ["yes", "y", "1", "true", "present", "p"])))
FALSY_TOKENS = frozenset(map(norm_text, RULES.get("attendance", {}).get(
    "falsy", ["no", "n", "0", "false", "absent", "a"])))


def clean_cell(value: Any) -> Optional[str]:
    # Значение ячейки без пробелов по краям; пустое/NaN -> None
    if value is None:
        return None
    s = str(value).strip()
    if not s or s.lower() in ("nan", "none"):
        return None
    return s


def parse_presence(value: Any) -> Optional[bool]:
    """
    True  - значение из словаря "да" (yes/y/1/true/present/p)
    False - значение из словаря "нет" (no/n/0/false/absent/a)
    None  - не распознано (не считается ни в одну сторону)
    """
    t = norm_text(value)
    if t in TRUTHY_TOKENS:
        return True
    if t in FALSY_TOKENS:
        return False
    return None


def is_marked_present(value: Any) -> bool:
    # Любое нераспознанное значение - отсутствие
    return norm_text(value) in PRESENT_TOKENS
