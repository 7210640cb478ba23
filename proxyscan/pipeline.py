from __future__ import annotations
import logging
import random
from typing import Any, Dict, Optional
from .analysis import TextGenerator, analyze, derive_status
from .models import AttendanceTable, SessionRecord
from .normalize import build_entries
from .sessions import SessionStore

logger = logging.getLogger(__name__)

DEFAULT_CLASS_NAME = "Unknown"
DEFAULT_SECTION = "A"


def run_analysis(
    table: AttendanceTable,
    class_name: Optional[str] = None,
    section: Optional[str] = None,
    subject: Optional[str] = None,
    room: Optional[str] = None,
    generator: Optional[TextGenerator] = None,
    rng: Optional[random.Random] = None,
    timeout: Optional[float] = None,
    store: Optional[SessionStore] = None,
) -> Dict[str, Any]:
    """
    Анализ + статус + (по возможности) сохранение сессии.

    Возвращает JSON-совместимый словарь результата со статусом; при успешном
    сохранении добавляется sessionId. Ошибка сохранения только логируется.
    """
    result = analyze(table, generator=generator, rng=rng, timeout=timeout)
    status = derive_status(result.proxy_probability)
    out = result.to_wire(status)

    if store is None:
        return out

    try:
        record = SessionRecord(
            class_name=class_name or DEFAULT_CLASS_NAME,
            section=section or DEFAULT_SECTION,
            subject=subject,
            room=room,
            entries=build_entries(table, result),
            analysis=result,
            raw_data=table,
            status=status,
        )
        store.save(record)
        out["sessionId"] = record.id
    except Exception as e:
        # анализ всё равно отдаём
        logger.warning("Could not save session: %s: %s", type(e).__name__, e)

    return out
