"""Tests for the per-session ordered message log."""

from __future__ import annotations

from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest

from afyalink.db.models import ChatMessage, ChatSession, SenderType
from afyalink.services import message_log
from afyalink.services.errors import SessionClosedError, ValidationError
from afyalink.services.metrics import metrics


def _chat(status="active") -> ChatSession:
    return ChatSession(
        id=3,
        session_id="session_xyz",
        status=status,
        priority="medium",
        is_anonymous=True,
        started_at=datetime(2025, 1, 1, tzinfo=timezone.utc),
        message_seq=0,
        bot_reply_count=0,
    )


def _message(seq, sender="user", text="hi") -> ChatMessage:
    return ChatMessage(
        id=100 + seq,
        session_pk=3,
        seq=seq,
        sender_type=sender,
        message=text,
        created_at=datetime(2025, 1, 1, 0, 0, seq, tzinfo=timezone.utc),
        is_read=False,
    )


def _db_seq(*seqs):
    """Session whose sequence UPDATE hands out *seqs* in order."""
    results = []
    for seq in seqs:
        r = MagicMock()
        r.scalar_one_or_none.return_value = seq
        results.append(r)
    db = AsyncMock()
    db.add = MagicMock()
    db.execute.side_effect = results
    return db


class TestValidateText:
    def test_strips(self):
        assert message_log.validate_text("  hello\n") == "hello"

    def test_max_length_ok(self):
        assert len(message_log.validate_text("a" * 1000)) == 1000

    @pytest.mark.parametrize("text", ["", "   ", None, "a" * 1001])
    def test_rejected(self, text):
        with pytest.raises(ValidationError) as exc_info:
            message_log.validate_text(text)
        assert exc_info.value.field == "message"


class TestAppend:
    @pytest.mark.asyncio
    async def test_assigns_increasing_seq(self):
        chat = _chat()
        db = _db_seq(1, 2, 3)
        seqs = []
        for text in ("one", "two", "three"):
            message = await message_log.append(db, chat, SenderType.USER, text)
            seqs.append(message.seq)
        assert seqs == [1, 2, 3]
        assert db.add.call_count == 3
        assert db.flush.await_count == 3
        db.commit.assert_not_awaited()
        assert metrics.messages_appended == 3

    @pytest.mark.asyncio
    async def test_sets_fields(self):
        chat = _chat()
        message = await message_log.append(_db_seq(1), chat, "counselor", "hello", "c-9")
        assert message.session_pk == chat.id
        assert message.sender_type == "counselor"
        assert message.sender_id == "c-9"
        assert message.is_read is False
        assert message.created_at.tzinfo is not None

    @pytest.mark.asyncio
    async def test_closed_session(self):
        db = _db_seq(None)
        with pytest.raises(SessionClosedError):
            await message_log.append(db, _chat(status="ended"), SenderType.USER, "hello?")
        db.add.assert_not_called()

    @pytest.mark.asyncio
    async def test_invalid_text_never_touches_db(self):
        db = _db_seq()
        with pytest.raises(ValidationError):
            await message_log.append(db, _chat(), SenderType.USER, "")
        db.execute.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_sequence_update_is_conditional_and_returning(self):
        db = _db_seq(1)
        await message_log.append(db, _chat(), SenderType.USER, "hi")
        sql = str(db.execute.call_args.args[0])
        assert "chat_sessions.message_seq +" in sql
        assert "RETURNING chat_sessions.message_seq" in sql
        assert "chat_sessions.status IN" in sql


class TestListMessages:
    def _db(self, total, rows):
        count = MagicMock()
        count.scalar_one.return_value = total
        page = MagicMock()
        page.scalars.return_value.all.return_value = rows
        db = AsyncMock()
        db.execute.side_effect = [count, page]
        return db

    @pytest.mark.asyncio
    async def test_returns_page_and_total(self):
        rows = [_message(1), _message(2, "counselor")]
        messages, total = await message_log.list_messages(self._db(2, rows), _chat())
        assert [m.seq for m in messages] == [1, 2]
        assert total == 2

    @pytest.mark.asyncio
    async def test_ordered_by_seq_with_offset(self):
        db = self._db(0, [])
        await message_log.list_messages(db, _chat(), page=3, page_size=25)
        stmt = db.execute.call_args_list[1].args[0]
        sql = str(stmt.compile(compile_kwargs={"literal_binds": True}))
        assert "ORDER BY chat_messages.seq ASC" in sql
        assert "OFFSET 50" in sql

    @pytest.mark.asyncio
    async def test_repeated_reads_are_identical(self):
        rows = [_message(1), _message(2)]
        first = await message_log.list_messages(self._db(2, rows), _chat())
        second = await message_log.list_messages(self._db(2, rows), _chat())
        assert first == second


class TestMarkRead:
    @pytest.mark.asyncio
    async def test_marks_other_party(self):
        result = MagicMock()
        result.rowcount = 4
        db = AsyncMock()
        db.execute.return_value = result
        updated = await message_log.mark_read(db, _chat(), "counselor")
        assert updated == 4
        db.commit.assert_awaited_once()
        sql = str(db.execute.call_args.args[0])
        assert "chat_messages.sender_type != :sender_type_1" in sql
        assert "read_at" in sql
