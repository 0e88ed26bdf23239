# backend/pmform/offline/storage.py
from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Optional

from sqlalchemy import Engine, delete, select
from sqlalchemy.exc import SQLAlchemyError

from ..config import settings
from ..db import Base, make_session_factory
from ..models import LocalEntry

log = logging.getLogger("pmform.storage")

# Persisted envelope: {"v": ENVELOPE_VERSION, "value": <json>}
ENVELOPE_VERSION = 1

_PROBE_KEY = "__storage_test__"


@dataclass(frozen=True)
class StorageResult:
    ok: bool
    error: Optional[str] = None

    def __bool__(self) -> bool:
        return self.ok


OK = StorageResult(ok=True)


class LocalStore:
    """
    Best-effort durable key-value store, namespaced by a fixed prefix.

    No method raises: storage problems are logged and come back as a failed
    StorageResult (writes) or None / [] (reads). Callers must treat
    persistence as optional.
    """

    def __init__(self, engine: Engine, *, prefix: str | None = None) -> None:
        self.engine = engine
        self.prefix = prefix if prefix is not None else settings.storage_prefix
        self._sessions = make_session_factory(engine)
        try:
            Base.metadata.create_all(engine, tables=[LocalEntry.__table__])
        except SQLAlchemyError as e:
            log.error("local store unavailable: %s", e)

    def _k(self, key: str) -> str:
        return f"{self.prefix}{key}"

    def set(self, key: str, value: Any) -> StorageResult:
        try:
            payload = json.dumps({"v": ENVELOPE_VERSION, "value": value}, ensure_ascii=False)
        except (TypeError, ValueError) as e:
            log.error("Error saving to local store: key=%s error=%s", key, e)
            return StorageResult(ok=False, error=str(e))

        try:
            with self._sessions() as s:
                row = s.get(LocalEntry, self._k(key))
                if row is None:
                    s.add(LocalEntry(key=self._k(key), value=payload, updated_at=datetime.utcnow()))
                else:
                    row.value = payload
                    row.updated_at = datetime.utcnow()
                s.commit()
            return OK
        except SQLAlchemyError as e:
            log.error("Error saving to local store: key=%s error=%s", key, e)
            return StorageResult(ok=False, error=str(e))

    def get(self, key: str) -> Any:
        try:
            with self._sessions() as s:
                row = s.get(LocalEntry, self._k(key))
                raw = row.value if row is not None else None
        except SQLAlchemyError as e:
            log.error("Error reading from local store: key=%s error=%s", key, e)
            return None

        if raw is None:
            return None

        try:
            env = json.loads(raw)
        except ValueError as e:
            log.error("Unreadable local entry: key=%s error=%s", key, e)
            return None

        if not isinstance(env, dict) or env.get("v") != ENVELOPE_VERSION:
            log.warning("Ignoring local entry with unknown format: key=%s", key)
            return None
        return env.get("value")

    def remove(self, key: str) -> StorageResult:
        try:
            with self._sessions() as s:
                s.execute(delete(LocalEntry).where(LocalEntry.key == self._k(key)))
                s.commit()
            return OK
        except SQLAlchemyError as e:
            log.error("Error removing from local store: key=%s error=%s", key, e)
            return StorageResult(ok=False, error=str(e))

    def clear(self) -> StorageResult:
        """Remove every key under this store's prefix (and nothing else)."""
        try:
            with self._sessions() as s:
                s.execute(delete(LocalEntry).where(LocalEntry.key.startswith(self.prefix, autoescape=True)))
                s.commit()
            return OK
        except SQLAlchemyError as e:
            log.error("Error clearing local store: %s", e)
            return StorageResult(ok=False, error=str(e))

    def keys(self) -> list[str]:
        try:
            with self._sessions() as s:
                rows = s.scalars(
                    select(LocalEntry.key)
                    .where(LocalEntry.key.startswith(self.prefix, autoescape=True))
                    .order_by(LocalEntry.key)
                ).all()
        except SQLAlchemyError as e:
            log.error("Error getting keys from local store: %s", e)
            return []
        return [k[len(self.prefix):] for k in rows]

    def is_available(self) -> bool:
        if not self.set(_PROBE_KEY, _PROBE_KEY):
            return False
        return bool(self.remove(_PROBE_KEY))
