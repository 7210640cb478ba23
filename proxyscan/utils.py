import os
import re
import json
from pathlib import Path
from typing import Any, Optional
from dateutil import parser as dtparser
from dotenv import load_dotenv

load_dotenv()

BASE_DIR = Path(__file__).resolve().parent.parent
DEFAULT_DATA_DIR = BASE_DIR / "data"

APPDATA = os.environ.get("APPDATA")
if os.environ.get("PROXYSCAN_DATA_DIR"):
    USER_DATA_DIR = Path(os.environ["PROXYSCAN_DATA_DIR"])
elif APPDATA:
    USER_DATA_DIR = Path(APPDATA) / "ProxyScan" / "data"
else:
    USER_DATA_DIR = DEFAULT_DATA_DIR  # fallback

def load_json(path: Path, default: Any):
    try:
        with open(path, "r", encoding="utf-8") as f:
            return json.load(f)
    except (OSError, ValueError):
        return default

def save_json(path: Path, obj: Any):
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        json.dump(obj, f, ensure_ascii=False, indent=2, default=str)

_DASH_CHARS_RE = re.compile(r"[\u2010\u2011\u2012\u2013\u2014\u2212]")
_NBSP_RE = re.compile(r"[\u00A0\u2007\u202F]")  # NBSP варианты


def norm_text(s: Any) -> str:
    """
    Нормализация заголовков и значений ячеек:
    - BOM/неразрывные пробелы
    - trim
    - lower
    - все виды тире -> '-'
    - схлопывание пробелов
    """
    if s is None:
        return ""

    s = str(s)

    # частые "невидимые" символы CSV/Excel
    s = s.replace("\ufeff", "")
    s = _NBSP_RE.sub(" ", s)
    s = s.strip().lower()
    s = _DASH_CHARS_RE.sub("-", s)
    s = re.sub(r"\s+", " ", s).strip()
    return s

def try_parse_date(s: Any) -> Optional[str]:
    # Дата сессии из ячейки -> YYYY-MM-DD
    if s is None:
        return None

    # pandas.Timestamp / datetime.date / datetime.datetime
    if hasattr(s, "year") and hasattr(s, "month") and hasattr(s, "day"):
        try:
            return f"{int(s.year):04d}-{int(s.month):02d}-{int(s.day):02d}"
        except (TypeError, ValueError):
            pass

    txt = norm_text(s)
    if not txt:
        return None

    # yyyy-mm-dd (в т.ч. с временем после даты)
    if re.match(r"^\d{4}[./-]\d{1,2}[./-]\d{1,2}", txt):
        try:
            dt = dtparser.parse(txt, dayfirst=False, fuzzy=True)
            return dt.strftime("%Y-%m-%d")
        except (ValueError, OverflowError):
            return None

    # dd.mm.yyyy / dd-mm-yy
    if re.match(r"^\d{1,2}[./-]\d{1,2}[./-]\d{2,4}$", txt):
        try:
            dt = dtparser.parse(txt, dayfirst=True, fuzzy=True)
            return dt.strftime("%Y-%m-%d")
        except (ValueError, OverflowError):
            return None

    # "12 Mar 2025", "March 12, 2025"
    if re.search(r"[a-z]{3,}", txt) and re.search(r"\d{4}", txt):
        try:
            dt = dtparser.parse(txt, fuzzy=True)
            return dt.strftime("%Y-%m-%d")
        except (ValueError, OverflowError):
            return None

    return None

def env_float(name: str, default: float) -> float:
    raw = os.environ.get(name, "")
    try:
        return float(raw) if raw.strip() else default
    except ValueError:
        return default

def rules_path() -> Path:
    return DEFAULT_DATA_DIR / "rules.json"

def logs_dir() -> Path:
    # рядом с data/: <проект>/logs или %APPDATA%/ProxyScan/logs
    p = USER_DATA_DIR.parent / "logs"
    p.mkdir(parents=True, exist_ok=True)
    return p

def sessions_path() -> Path:
    USER_DATA_DIR.mkdir(parents=True, exist_ok=True)
    p = USER_DATA_DIR / "sessions.json"
    if not p.exists():
        save_json(p, [])
    return p
