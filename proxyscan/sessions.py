from __future__ import annotations
import json
import logging
import math
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional
from pydantic import ValidationError
from .errors import SessionNotFound, SessionStoreError
from .models import SessionRecord, SessionStatus
from .utils import sessions_path, save_json

logger = logging.getLogger(__name__)


class SessionStore:
    """
    Хранилище сессий анализа в JSON-файле (список записей, camelCase).
    По умолчанию - sessions.json в пользовательской папке данных.
    """

    def __init__(self, path: Optional[Path] = None):
        self._path = Path(path) if path is not None else None

    @property
    def path(self) -> Path:
        if self._path is None:
            self._path = sessions_path()
        return self._path

    def _load_raw(self) -> List[Dict[str, Any]]:
        if not self.path.exists():
            return []
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                obj = json.load(f)
        except ValueError as e:
            raise SessionStoreError(f"Corrupted sessions file {self.path}: {e}") from e
        except OSError as e:
            raise SessionStoreError(f"Cannot read sessions file {self.path}: {e}") from e
        return obj if isinstance(obj, list) else []

    def _write_raw(self, items: List[Dict[str, Any]]) -> None:
        try:
            save_json(self.path, items)
        except OSError as e:
            raise SessionStoreError(f"Cannot write sessions file {self.path}: {e}") from e

    def _load(self) -> List[SessionRecord]:
        out: List[SessionRecord] = []
        for item in self._load_raw():
            try:
                out.append(SessionRecord.model_validate(item))
            except ValidationError as e:
                # битую запись пропускаем, остальные читаем
                logger.warning("Skipping invalid session record: %s", e.errors()[:1])
        return out

    def save(self, record: SessionRecord) -> SessionRecord:
        items = [r for r in self._load_raw() if r.get("id") != record.id]
        record.updated_at = datetime.now().replace(microsecond=0)
        items.append(record.to_dict())
        self._write_raw(items)
        logger.info("Session saved: %s (%s %s, %s)", record.id, record.class_name, record.section, record.status.value)
        return record

    def find_by_id(self, session_id: str) -> SessionRecord:
        for rec in self._load():
            if rec.id == session_id:
                return rec
        raise SessionNotFound(f"Session not found: {session_id}")

    def list_sessions(
        self,
        status: Optional[str] = None,
        class_name: Optional[str] = None,
        page: int = 1,
        limit: int = 10,
    ) -> Dict[str, Any]:
        """
        Сессии по убыванию даты, с фильтрами и постраничной выдачей.
        status="all" / None - без фильтра по статусу.
        """
        recs = self._load()
        if status and status != "all":
            try:
                st = SessionStatus(status)
            except ValueError as e:
                raise SessionStoreError(f"Unknown session status filter: {status!r}") from e
            recs = [r for r in recs if r.status == st]
        if class_name:
            recs = [r for r in recs if r.class_name == class_name]
        recs.sort(key=lambda r: r.date, reverse=True)

        page = max(1, int(page))
        limit = max(1, int(limit))
        total = len(recs)
        start = (page - 1) * limit
        return {
            "sessions": recs[start:start + limit],
            "pagination": {
                "page": page,
                "limit": limit,
                "total": total,
                "pages": math.ceil(total / limit),
            },
        }

    def delete(self, session_id: str) -> None:
        items = self._load_raw()
        keep = [r for r in items if r.get("id") != session_id]
        if len(keep) == len(items):
            raise SessionNotFound(f"Session not found: {session_id}")
        self._write_raw(keep)
        logger.info("Session deleted: %s", session_id)
