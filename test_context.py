"""
Tests for message context windows.
"""

from datetime import datetime, timedelta

import pytest

from wa_archive.errors import NotFoundError
from wa_archive.ingest import upsert_chat, upsert_message
from wa_archive.queries import get_message_context
from wa_archive.schemas import MediaDescriptor

CHAT = "111@s.whatsapp.net"
OTHER = "222@s.whatsapp.net"
BASE = datetime(2025, 1, 15, 10, 0, 0)


def at(minutes: int) -> datetime:
    return BASE + timedelta(minutes=minutes)


@pytest.fixture
def scenario_db(db):
    """hi / (image) / bye at T1 < T2 < T3."""
    upsert_chat(db, CHAT, "Bob (phone)", at(2))
    upsert_message(db, "t1", CHAT, "111", "hi", at(0), False)
    upsert_message(
        db, "t2", CHAT, "111", "", at(1), False,
        media=MediaDescriptor(media_type="image", url="https://mmg.whatsapp.net/x", file_length=10),
    )
    upsert_message(db, "t3", CHAT, "999", "bye", at(2), True)
    return db


@pytest.fixture
def long_chat_db(db):
    """Ten messages one minute apart, plus noise in another chat."""
    upsert_chat(db, CHAT, "Bob", at(9))
    upsert_chat(db, OTHER, "Ann", at(9))
    for i in range(10):
        upsert_message(db, f"c{i}", CHAT, "111", f"msg {i}", at(i), False)
        upsert_message(db, f"o{i}", OTHER, "222", f"other {i}", at(i), False)
    return db


class TestContextScenario:
    """The three-message chat."""

    def test_one_before_one_after(self, scenario_db):
        ctx = get_message_context(scenario_db, "t2", before=1, after=1)

        assert [m.id for m in ctx.before] == ["t1"]
        assert ctx.message.id == "t2"
        assert [m.id for m in ctx.after] == ["t3"]

    def test_target_projection(self, scenario_db):
        ctx = get_message_context(scenario_db, "t2", before=1, after=1)

        assert ctx.message.content == ""
        assert ctx.message.media_type == "image"
        assert ctx.message.sender == "Bob (phone)"
        assert ctx.after[0].sender == "Me"

    def test_edges_of_chat(self, scenario_db):
        first = get_message_context(scenario_db, "t1", before=3, after=3)
        last = get_message_context(scenario_db, "t3", before=3, after=3)

        assert first.before == []
        assert [m.id for m in first.after] == ["t2", "t3"]
        assert [m.id for m in last.before] == ["t1", "t2"]
        assert last.after == []

    def test_unknown_message(self, scenario_db):
        with pytest.raises(NotFoundError):
            get_message_context(scenario_db, "missing")


class TestContextOrdering:
    """Ordering and bounds of the window."""

    def test_before_and_after_are_chronological(self, long_chat_db):
        ctx = get_message_context(long_chat_db, "c5", before=3, after=2)

        before_ts = [m.timestamp for m in ctx.before]
        after_ts = [m.timestamp for m in ctx.after]
        assert [m.id for m in ctx.before] == ["c2", "c3", "c4"]
        assert [m.id for m in ctx.after] == ["c6", "c7"]
        assert before_ts == sorted(before_ts)
        assert after_ts == sorted(after_ts)
        assert all(ts < ctx.message.timestamp for ts in before_ts)
        assert all(ts > ctx.message.timestamp for ts in after_ts)

    def test_defaults_are_five_each(self, long_chat_db):
        ctx = get_message_context(long_chat_db, "c5")

        assert len(ctx.before) == 5
        assert len(ctx.after) == 4

    def test_other_chats_excluded(self, long_chat_db):
        ctx = get_message_context(long_chat_db, "c5", before=10, after=10)

        ids = [m.id for m in ctx.before + ctx.after]
        assert all(i.startswith("c") for i in ids)
        assert all(m.chat_jid == CHAT for m in ctx.before + ctx.after)

    def test_zero_counts(self, long_chat_db):
        ctx = get_message_context(long_chat_db, "c5", before=0, after=0)

        assert ctx.before == []
        assert ctx.after == []

    def test_same_timestamp_is_neither_before_nor_after(self, long_chat_db):
        upsert_message(long_chat_db, "twin", CHAT, "111", "same minute", at(5), False)

        ctx = get_message_context(long_chat_db, "c5", before=1, after=1)

        assert [m.id for m in ctx.before] == ["c4"]
        assert [m.id for m in ctx.after] == ["c6"]
