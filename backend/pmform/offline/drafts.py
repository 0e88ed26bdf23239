# backend/pmform/offline/drafts.py
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Optional

from ..domain.messages import relative_age_label
from .storage import LocalStore, StorageResult

log = logging.getLogger("pmform.drafts")

DRAFT_KEY_PREFIX = "draft_"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class Draft:
    data: Any
    saved_at: datetime


class DraftStore:
    """One draft slot per form id; last write wins."""

    def __init__(self, store: LocalStore) -> None:
        self.store = store

    @staticmethod
    def _key(form_id: str) -> str:
        return f"{DRAFT_KEY_PREFIX}{form_id}"

    def save_draft(self, form_id: str, data: Any) -> StorageResult:
        return self.store.set(self._key(form_id), {"data": data, "savedAt": _utcnow().isoformat()})

    def get_draft(self, form_id: str) -> Optional[Draft]:
        raw = self.store.get(self._key(form_id))
        if not isinstance(raw, dict) or "savedAt" not in raw:
            return None
        try:
            saved_at = datetime.fromisoformat(str(raw["savedAt"]))
        except ValueError:
            log.warning("draft has unreadable savedAt", extra={"form_id": form_id})
            return None
        return Draft(data=raw.get("data"), saved_at=saved_at)

    def remove_draft(self, form_id: str) -> StorageResult:
        return self.store.remove(self._key(form_id))

    def get_all_drafts(self) -> list[str]:
        return [k[len(DRAFT_KEY_PREFIX):] for k in self.store.keys() if k.startswith(DRAFT_KEY_PREFIX)]

    def has_draft(self, form_id: str) -> bool:
        return self.store.get(self._key(form_id)) is not None

    def get_draft_age(self, form_id: str) -> Optional[int]:
        """Milliseconds since the draft was saved, or None."""
        draft = self.get_draft(form_id)
        if draft is None:
            return None
        return int((_utcnow() - draft.saved_at).total_seconds() * 1000)


class DraftSession:
    """
    Draft prompt state for one open form: is there a draft, how old is it,
    load it into the form, or discard it.
    """

    def __init__(
        self,
        drafts: DraftStore,
        form_id: str,
        *,
        on_draft_loaded: Callable[[Any], None] | None = None,
    ) -> None:
        self.drafts = drafts
        self.form_id = form_id
        self.on_draft_loaded = on_draft_loaded
        self.has_draft = False
        self.draft_age: Optional[int] = None
        self.is_loading = False
        self.refresh()

    def refresh(self) -> None:
        self.has_draft = self.drafts.has_draft(self.form_id)
        self.draft_age = self.drafts.get_draft_age(self.form_id) if self.has_draft else None

    def load_draft(self, apply: Callable[[Any], None]) -> bool:
        self.is_loading = True
        try:
            draft = self.drafts.get_draft(self.form_id)
            if draft is None:
                log.warning("No draft found to load", extra={"form_id": self.form_id})
                self.has_draft = False
                return False

            apply(draft.data)
            if self.on_draft_loaded is not None:
                self.on_draft_loaded(draft.data)
            log.info("Draft loaded", extra={"form_id": self.form_id})
            return True
        finally:
            self.is_loading = False

    def clear_draft(self) -> bool:
        result = self.drafts.remove_draft(self.form_id)
        if result:
            self.has_draft = False
            self.draft_age = None
            log.info("Draft cleared", extra={"form_id": self.form_id})
        return result.ok

    def age_label(self) -> str:
        return relative_age_label(self.draft_age)
