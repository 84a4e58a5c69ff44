"""
Tests for listing messages.

Tests cover:
- Ordering and projection of the three-message scenario
- Pagination over the filtered, sorted set
- Filters (time bounds, sender, chat, text/media query) and their combination
- Context expansion with first-occurrence-wins de-duplication
- Skipping a failing context window
"""

from datetime import datetime, timedelta

import pytest

from wa_archive import queries
from wa_archive.errors import StorageError
from wa_archive.ingest import upsert_chat, upsert_message
from wa_archive.queries import list_messages
from wa_archive.schemas import MediaDescriptor

CHAT = "111@s.whatsapp.net"
OTHER = "222@s.whatsapp.net"
GROUP = "120363041234@g.us"
BASE = datetime(2025, 1, 15, 10, 0, 0)


def at(minutes: int) -> datetime:
    return BASE + timedelta(minutes=minutes)


def ids(messages) -> list:
    return [m.id for m in messages]


@pytest.fixture
def scenario_db(db):
    upsert_chat(db, CHAT, "Bob (phone)", at(2))
    upsert_message(db, "t1", CHAT, "111", "hi", at(0), False)
    upsert_message(
        db, "t2", CHAT, "111", "", at(1), False,
        media=MediaDescriptor(media_type="image", url="https://mmg.whatsapp.net/x"),
    )
    upsert_message(db, "t3", CHAT, "111", "bye", at(2), False)
    return db


@pytest.fixture
def seeded_db(db):
    """
    Two direct chats and a group:
    m1  10:00 111 in CHAT   "Hello world"
    m2  10:01 999 in CHAT   "How are you?" (from me)
    m3  10:02 222 in OTHER  "Goodbye"
    m4  10:03 222 in GROUP  "See you later"
    m5  10:04 111 in GROUP  "Hello there"
    m6  10:05 111 in CHAT   document "report.pdf"
    """
    upsert_chat(db, CHAT, "Bob", at(5))
    upsert_chat(db, OTHER, "Ann", at(2))
    upsert_chat(db, GROUP, "Climbing crew", at(4))
    upsert_message(db, "m1", CHAT, "111", "Hello world", at(0), False)
    upsert_message(db, "m2", CHAT, "999", "How are you?", at(1), True)
    upsert_message(db, "m3", OTHER, "222", "Goodbye", at(2), False)
    upsert_message(db, "m4", GROUP, "222", "See you later", at(3), False)
    upsert_message(db, "m5", GROUP, "111", "Hello there", at(4), False)
    upsert_message(
        db, "m6", CHAT, "111", "", at(5), False,
        media=MediaDescriptor(media_type="document", filename="report.pdf"),
    )
    return db


class TestListMessagesScenario:
    """The three-message chat."""

    def test_newest_first(self, scenario_db):
        result = list_messages(scenario_db, chat_jid=CHAT, limit=20, include_context=False)

        assert ids(result) == ["t3", "t2", "t1"]

    def test_media_only_entry(self, scenario_db):
        result = list_messages(scenario_db, chat_jid=CHAT, include_context=False)

        t2 = result[1]
        assert t2.content == ""
        assert t2.media_type == "image"
        assert t2.chat_name == "Bob (phone)"
        assert t2.sender == "Bob (phone)"

    def test_empty_archive(self, db):
        assert list_messages(db) == []


class TestListMessagesPagination:
    """Pagination happens on the filtered, sorted matches."""

    def test_pages_are_contiguous(self, seeded_db):
        page0 = list_messages(seeded_db, limit=2, page=0, include_context=False)
        page1 = list_messages(seeded_db, limit=2, page=1, include_context=False)
        both = list_messages(seeded_db, limit=4, page=0, include_context=False)

        assert ids(page0) == ["m6", "m5"]
        assert ids(page1) == ["m4", "m3"]
        assert ids(page0) + ids(page1) == ids(both)

    def test_page_beyond_end(self, seeded_db):
        assert list_messages(seeded_db, limit=20, page=5) == []

    def test_pagination_before_expansion(self, seeded_db):
        result = list_messages(seeded_db, chat_jid=CHAT, limit=1, page=1)

        # Match is m2 only; its window adds m1 and m6
        assert ids(result) == ["m1", "m2", "m6"]


class TestListMessagesFilters:
    """Filters are conjunctive."""

    def test_time_bounds_are_strict(self, seeded_db):
        result = list_messages(seeded_db, after=at(1), before=at(4), include_context=False)

        assert ids(result) == ["m4", "m3"]

    def test_sender(self, seeded_db):
        result = list_messages(seeded_db, sender_phone_number="111", include_context=False)

        assert ids(result) == ["m6", "m5", "m1"]

    def test_query_is_case_insensitive(self, seeded_db):
        result = list_messages(seeded_db, query="HELLO", include_context=False)

        assert ids(result) == ["m5", "m1"]

    def test_query_matches_media_type(self, seeded_db):
        result = list_messages(seeded_db, query="docu", include_context=False)

        assert ids(result) == ["m6"]

    def test_combined(self, seeded_db):
        result = list_messages(
            seeded_db, sender_phone_number="111", chat_jid=GROUP, query="hello", include_context=False
        )

        assert ids(result) == ["m5"]

    def test_no_match(self, seeded_db):
        assert list_messages(seeded_db, query="nonexistent") == []

    def test_aware_bounds(self, seeded_db):
        from datetime import timezone

        after = (at(3)).replace(tzinfo=timezone.utc)
        result = list_messages(seeded_db, after=after, include_context=False)

        assert ids(result) == ["m6", "m5"]


class TestListMessagesContext:
    """Context expansion and de-duplication."""

    def test_no_duplicate_ids(self, seeded_db):
        result = list_messages(seeded_db, limit=20, context_before=2, context_after=2)

        assert len(ids(result)) == len(set(ids(result)))

    def test_first_occurrence_wins_without_resort(self, db):
        upsert_chat(db, CHAT, "Bob", at(5))
        for i in range(1, 6):
            text = "x marks" if i in (2, 4) else f"msg {i}"
            upsert_message(db, f"c{i}", CHAT, "111", text, at(i), False)

        result = list_messages(db, query="x marks")

        # Matches c4 then c2; windows [c3 c4 c5] and [c1 c2 c3]
        assert ids(result) == ["c3", "c4", "c5", "c1", "c2"]

    def test_windows_stay_inside_their_chat(self, seeded_db):
        result = list_messages(seeded_db, query="goodbye")

        assert ids(result) == ["m3"]

    def test_context_counts(self, seeded_db):
        result = list_messages(seeded_db, query="document", context_before=2, context_after=0)

        assert ids(result) == ["m1", "m2", "m6"]

    def test_filename_is_not_searched(self, seeded_db):
        assert list_messages(seeded_db, query="report") == []

    def test_failing_window_is_skipped(self, seeded_db, monkeypatch):
        real_window_rows = queries.window_rows

        def flaky_window_rows(db, message_id, before, after, chat_jid=None):
            if message_id == "m5":
                raise StorageError("message context")
            return real_window_rows(db, message_id, before, after, chat_jid=chat_jid)

        monkeypatch.setattr(queries, "window_rows", flaky_window_rows)

        result = list_messages(seeded_db, chat_jid=GROUP, context_before=0, context_after=0)

        assert ids(result) == ["m4"]
