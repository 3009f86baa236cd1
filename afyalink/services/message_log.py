"""Append-only, per-session ordered chat message store.

Ordering uses a per-session sequence number, not wall-clock time. The number
is claimed by incrementing ``chat_sessions.message_seq`` in the same
transaction as the insert. That row update also serialises concurrent appends
to one session and refuses sessions that are no longer open.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from afyalink.db.models import ChatMessage, ChatSession, SenderType, SessionStatus
from afyalink.services.errors import SessionClosedError, ValidationError
from afyalink.services.metrics import metrics

logger = logging.getLogger(__name__)

MAX_MESSAGE_LENGTH = 1000

OPEN_STATUSES = (SessionStatus.WAITING.value, SessionStatus.ACTIVE.value)


def validate_text(text: str | None) -> str:
    """Trim *text* and enforce the 1..1000 character bound."""
    cleaned = (text or "").strip()
    if not 1 <= len(cleaned) <= MAX_MESSAGE_LENGTH:
        raise ValidationError(
            f"Message must be 1-{MAX_MESSAGE_LENGTH} characters", field="message"
        )
    return cleaned


async def append(
    db: AsyncSession,
    chat_session: ChatSession,
    sender_type: SenderType,
    text: str,
    sender_id: str | None = None,
) -> ChatMessage:
    """Add a message to *chat_session* without committing.

    Raises ``ValidationError`` for bad text and ``SessionClosedError`` when
    the session has been ended or cancelled.
    """
    cleaned = validate_text(text)

    result = await db.execute(
        update(ChatSession)
        .where(
            ChatSession.id == chat_session.id,
            ChatSession.status.in_(OPEN_STATUSES),
        )
        .values(message_seq=ChatSession.message_seq + 1)
        .returning(ChatSession.message_seq)
    )
    seq = result.scalar_one_or_none()
    if seq is None:
        raise SessionClosedError("Chat session is closed")

    message = ChatMessage(
        session_pk=chat_session.id,
        seq=seq,
        sender_id=sender_id,
        sender_type=SenderType(sender_type).value,
        message=cleaned,
        created_at=datetime.now(timezone.utc),
        is_read=False,
    )
    db.add(message)
    await db.flush()

    metrics.inc_message()
    logger.debug(
        "Appended message seq=%d to session %s (%s)",
        seq, chat_session.session_id, message.sender_type,
    )
    return message


async def list_messages(
    db: AsyncSession,
    chat_session: ChatSession,
    page: int = 1,
    page_size: int = 50,
) -> tuple[list[ChatMessage], int]:
    """Return one page of messages in sequence order, plus the total count.

    Pages are cut on ``seq``, so an append between two polls only ever
    extends the last page; it never shifts or duplicates earlier messages.
    """
    total_result = await db.execute(
        select(func.count())
        .select_from(ChatMessage)
        .where(ChatMessage.session_pk == chat_session.id)
    )
    total = total_result.scalar_one()

    result = await db.execute(
        select(ChatMessage)
        .where(ChatMessage.session_pk == chat_session.id)
        .order_by(ChatMessage.seq.asc())
        .offset((page - 1) * page_size)
        .limit(page_size)
    )
    return list(result.scalars().all()), total


async def mark_read(
    db: AsyncSession,
    chat_session: ChatSession,
    reader_type: SenderType,
) -> int:
    """Flag every unread message not sent by *reader_type* as read.

    Only the read flags change. Returns the number of messages updated.
    """
    result = await db.execute(
        update(ChatMessage)
        .where(
            ChatMessage.session_pk == chat_session.id,
            ChatMessage.is_read.is_(False),
            ChatMessage.sender_type != SenderType(reader_type).value,
        )
        .values(is_read=True, read_at=datetime.now(timezone.utc))
    )
    await db.commit()
    return result.rowcount or 0
