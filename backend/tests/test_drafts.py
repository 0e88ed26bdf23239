# backend/tests/test_drafts.py
from __future__ import annotations

from datetime import datetime, timedelta, timezone

from pmform.domain.messages import relative_age_label
from pmform.offline.drafts import DraftSession, DraftStore


def test_save_and_get_draft(store):
    drafts = DraftStore(store)
    before = datetime.now(timezone.utc)
    assert drafts.save_draft("maintenance-form", {"location": "A"})
    after = datetime.now(timezone.utc)

    d = drafts.get_draft("maintenance-form")
    assert d is not None
    assert d.data == {"location": "A"}
    assert before <= d.saved_at <= after


def test_last_write_wins(store):
    drafts = DraftStore(store)
    drafts.save_draft("f", {"v": 1})
    drafts.save_draft("f", {"v": 2})
    assert drafts.get_draft("f").data == {"v": 2}


def test_remove_draft(store):
    drafts = DraftStore(store)
    drafts.save_draft("f", {"v": 1})
    assert drafts.has_draft("f") is True

    drafts.remove_draft("f")
    assert drafts.get_draft("f") is None
    assert drafts.has_draft("f") is False
    assert drafts.get_draft_age("f") is None


def test_get_all_drafts_ignores_other_keys(store):
    drafts = DraftStore(store)
    drafts.save_draft("a", {})
    drafts.save_draft("b", {})
    store.set("offline_queue", [])

    assert sorted(drafts.get_all_drafts()) == ["a", "b"]


def test_draft_age_is_small_right_after_save(store):
    drafts = DraftStore(store)
    drafts.save_draft("f", {})
    age = drafts.get_draft_age("f")
    assert age is not None
    assert 0 <= age < 5_000


def test_draft_age_from_older_timestamp(store):
    drafts = DraftStore(store)
    saved = datetime.now(timezone.utc) - timedelta(minutes=5)
    store.set("draft_f", {"data": {}, "savedAt": saved.isoformat()})

    age = drafts.get_draft_age("f")
    assert 5 * 60_000 <= age < 6 * 60_000


def test_unreadable_saved_at_is_no_draft(store):
    store.set("draft_f", {"data": {}, "savedAt": "yesterday-ish"})
    assert DraftStore(store).get_draft("f") is None


def test_session_load_and_clear(store):
    drafts = DraftStore(store)
    drafts.save_draft("f", {"location": "B"})

    applied = []
    loaded = []
    session = DraftSession(drafts, "f", on_draft_loaded=loaded.append)
    assert session.has_draft is True
    assert session.age_label() == "เมื่อสักครู่"

    assert session.load_draft(applied.append) is True
    assert applied == [{"location": "B"}]
    assert loaded == [{"location": "B"}]
    assert session.is_loading is False

    assert session.clear_draft() is True
    assert session.has_draft is False
    assert session.draft_age is None
    assert drafts.get_draft("f") is None


def test_session_without_draft(store):
    session = DraftSession(DraftStore(store), "f")
    assert session.has_draft is False
    assert session.age_label() == ""
    assert session.load_draft(lambda data: None) is False


def test_relative_age_label():
    assert relative_age_label(None) == ""
    assert relative_age_label(30_000) == "เมื่อสักครู่"
    assert relative_age_label(5 * 60_000) == "5 นาทีที่แล้ว"
    assert relative_age_label(2 * 60 * 60_000 + 1) == "2 ชั่วโมงที่แล้ว"
