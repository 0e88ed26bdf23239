# backend/tests/test_autosave.py
from __future__ import annotations

import asyncio

from pmform.offline.autosave import AutoSaveController, Debouncer, DraftSaveError
from pmform.offline.drafts import DraftStore


class FakeTimer:
    def __init__(self, delay, callback):
        self.delay = delay
        self.callback = callback
        self.cancelled = False
        self.fired = False

    def cancel(self):
        self.cancelled = True


class FakeLoop:
    """Records call_later() so tests decide when the quiet period has elapsed."""

    def __init__(self):
        self.timers: list[FakeTimer] = []

    def call_later(self, delay, callback):
        t = FakeTimer(delay, callback)
        self.timers.append(t)
        return t

    def live(self) -> list[FakeTimer]:
        return [t for t in self.timers if not t.cancelled and not t.fired]

    def elapse(self) -> None:
        for t in self.live():
            t.fired = True
            t.callback()


def _controller(store, loop, **kwargs):
    saves = []
    ctrl = AutoSaveController(DraftStore(store), "maintenance-form", delay=30, loop=loop, on_save=saves.append, **kwargs)
    return ctrl, saves


def test_debouncer_keeps_only_latest_trigger():
    loop = FakeLoop()
    calls = []
    d = Debouncer(1.0, lambda: calls.append(1), loop=loop)

    d.trigger()
    d.trigger()
    d.trigger()
    assert len(loop.live()) == 1
    assert d.pending is True

    loop.elapse()
    assert calls == [1]
    assert d.pending is False


def test_rapid_changes_save_once_with_latest_snapshot(store):
    loop = FakeLoop()
    ctrl, saves = _controller(store, loop)

    for i in range(5):
        ctrl.update({"location": f"typing {i}"})
    assert len(loop.live()) == 1
    assert loop.live()[0].delay == 30

    loop.elapse()
    assert saves == [{"location": "typing 4"}]
    assert DraftStore(store).get_draft("maintenance-form").data == {"location": "typing 4"}
    assert ctrl.last_saved is not None


def test_identical_content_is_not_saved_again(store):
    loop = FakeLoop()
    ctrl, saves = _controller(store, loop)

    ctrl.update({"a": 1, "b": 2})
    loop.elapse()
    assert len(saves) == 1

    # same content, different key order
    ctrl.update({"b": 2, "a": 1})
    assert ctrl.pending is False
    loop.elapse()
    assert len(saves) == 1


def test_change_then_revert_cancels_pending_save(store):
    loop = FakeLoop()
    ctrl, saves = _controller(store, loop)
    ctrl.update({"a": 1})
    loop.elapse()

    ctrl.update({"a": 2})
    assert ctrl.pending is True
    ctrl.update({"a": 1})
    assert ctrl.pending is False
    loop.elapse()
    assert len(saves) == 1


def test_save_now_skips_the_timer(store):
    loop = FakeLoop()
    ctrl, saves = _controller(store, loop)
    ctrl.update({"a": 1})

    assert ctrl.save_now() is True
    assert saves == [{"a": 1}]
    assert ctrl.is_saving is False
    assert DraftStore(store).has_draft("maintenance-form")


def test_mount_seeds_baseline_from_existing_draft(store):
    drafts = DraftStore(store)
    drafts.save_draft("maintenance-form", {"a": 1})
    saved_at = drafts.get_draft("maintenance-form").saved_at

    loop = FakeLoop()
    ctrl, saves = _controller(store, loop)
    ctrl.mount()
    assert ctrl.last_saved == saved_at

    ctrl.update({"a": 1})
    assert ctrl.pending is False
    assert saves == []


def test_disabled_controller_does_not_schedule(store):
    loop = FakeLoop()
    ctrl, saves = _controller(store, loop, enabled=False)
    ctrl.update({"a": 1})
    assert ctrl.pending is False
    assert ctrl.save_now() is False

    ctrl.set_enabled(True)
    ctrl.update({"a": 2})
    assert ctrl.pending is True
    ctrl.set_enabled(False)
    assert ctrl.pending is False
    assert saves == []


def test_reenabling_saves_changes_made_while_disabled(store):
    loop = FakeLoop()
    ctrl, saves = _controller(store, loop, enabled=False)
    ctrl.update({"location": "A"})
    assert loop.timers == []

    ctrl.set_enabled(True)
    assert ctrl.pending is True
    loop.elapse()
    assert saves == [{"location": "A"}]

    # already saved content is not scheduled again
    ctrl.set_enabled(False)
    ctrl.set_enabled(True)
    assert ctrl.pending is False


def test_reenabling_without_a_snapshot_schedules_nothing(store):
    loop = FakeLoop()
    ctrl, _saves = _controller(store, loop, enabled=False)
    ctrl.set_enabled(True)
    assert loop.timers == []


def test_save_now_before_any_update_keeps_the_existing_draft(store):
    drafts = DraftStore(store)
    drafts.save_draft("maintenance-form", {"location": "Siam"})

    loop = FakeLoop()
    ctrl, saves = _controller(store, loop)
    ctrl.mount()

    assert ctrl.save_now() is False
    assert saves == []
    assert drafts.get_draft("maintenance-form").data == {"location": "Siam"}


def test_storage_failure_goes_to_error_channel(broken_store):
    loop = FakeLoop()
    errors = []
    ctrl = AutoSaveController(DraftStore(broken_store), "f", delay=30, loop=loop, on_error=errors.append)

    ctrl.update({"a": 1})
    loop.elapse()

    assert len(errors) == 1
    assert isinstance(errors[0], DraftSaveError)
    assert ctrl.error is errors[0]
    assert ctrl.last_saved is None
    assert ctrl.is_saving is False

    # next change re-arms the timer
    ctrl.update({"a": 2})
    assert ctrl.pending is True


def test_debounce_on_a_real_event_loop(store):
    saves = []

    async def run():
        ctrl = AutoSaveController(DraftStore(store), "f", delay=0.05, on_save=saves.append)
        for i in range(4):
            ctrl.update({"n": i})
            await asyncio.sleep(0.01)
        await asyncio.sleep(0.2)
        ctrl.close()

    asyncio.run(run())
    assert saves == [{"n": 3}]
