# backend/pmform/offline/autosave.py
from __future__ import annotations

import asyncio
import json
import logging
from datetime import datetime
from typing import Any, Callable, Optional

from ..config import settings
from ..domain.messages import MSG_DRAFT_SAVE_FAILED
from .drafts import DraftStore, _utcnow

log = logging.getLogger("pmform.autosave")


class DraftSaveError(RuntimeError):
    pass


class Debouncer:
    """
    Run callback once, `delay` seconds after the most recent trigger().
    Every trigger cancels the pending call and schedules a new one.
    """

    def __init__(
        self,
        delay: float,
        callback: Callable[[], None],
        *,
        loop: asyncio.AbstractEventLoop | None = None,
    ) -> None:
        self.delay = float(delay)
        self.callback = callback
        self._loop = loop
        self._handle: asyncio.TimerHandle | None = None

    def _get_loop(self) -> asyncio.AbstractEventLoop:
        if self._loop is None:
            self._loop = asyncio.get_running_loop()
        return self._loop

    def trigger(self) -> None:
        self.cancel()
        self._handle = self._get_loop().call_later(self.delay, self._fire)

    def _fire(self) -> None:
        self._handle = None
        self.callback()

    def cancel(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None

    @property
    def pending(self) -> bool:
        return self._handle is not None


_UNSET = object()


def _serialize(data: Any) -> str:
    return json.dumps(data, sort_keys=True, ensure_ascii=False, default=str)


class AutoSaveController:
    """
    Debounced draft auto-save for one form.

    update() is called with every new form snapshot. Identical content (by
    serialized value) is never re-saved; changed content is saved once the
    form has been quiet for `delay` seconds. save_now() skips the timer.
    """

    def __init__(
        self,
        drafts: DraftStore,
        form_id: str,
        *,
        delay: float | None = None,
        enabled: bool = True,
        on_save: Callable[[Any], None] | None = None,
        on_error: Callable[[Exception], None] | None = None,
        loop: asyncio.AbstractEventLoop | None = None,
    ) -> None:
        self.drafts = drafts
        self.form_id = form_id
        self.enabled = enabled
        self.on_save = on_save
        self.on_error = on_error

        self.is_saving = False
        self.last_saved: Optional[datetime] = None
        self.error: Optional[Exception] = None

        self._data: Any = _UNSET
        self._last_serialized = ""
        self._debouncer = Debouncer(
            settings.autosave_delay_seconds if delay is None else delay,
            self.save_now,
            loop=loop,
        )

    def mount(self) -> None:
        """Seed last_saved and the baseline from an existing draft without saving."""
        draft = self.drafts.get_draft(self.form_id)
        if draft is not None:
            self.last_saved = draft.saved_at
            self._last_serialized = _serialize(draft.data)

    def update(self, data: Any) -> None:
        self._data = data
        if not self.enabled:
            return

        self._debouncer.cancel()
        if _serialize(data) == self._last_serialized:
            return
        self._debouncer.trigger()

    def save_now(self) -> bool:
        if not self.enabled or self._data is _UNSET:
            return False

        self.is_saving = True
        self.error = None
        try:
            result = self.drafts.save_draft(self.form_id, self._data)
            if not result:
                raise DraftSaveError(result.error or MSG_DRAFT_SAVE_FAILED)

            self.last_saved = _utcnow()
            self._last_serialized = _serialize(self._data)
            if self.on_save is not None:
                self.on_save(self._data)
            return True
        except Exception as e:
            self.error = e
            log.error("Auto-save error: %s", e, extra={"form_id": self.form_id})
            if self.on_error is not None:
                self.on_error(e)
            return False
        finally:
            self.is_saving = False

    def set_enabled(self, enabled: bool) -> None:
        was_enabled, self.enabled = self.enabled, enabled
        if not enabled:
            self._debouncer.cancel()
        elif not was_enabled and self._data is not _UNSET:
            # pick up whatever changed while disabled
            self.update(self._data)

    @property
    def pending(self) -> bool:
        return self._debouncer.pending

    def close(self) -> None:
        self._debouncer.cancel()
