"""Counseling chat session lifecycle.

States: ``waiting`` -> ``active`` -> ``ended``, and ``waiting`` ->
``cancelled``. Every transition is a conditional UPDATE (compare-and-set on
the current column values), so two racing requests can never both win. When
an UPDATE matches no row, the session is re-read only to choose which error
to report.
"""

from __future__ import annotations

import logging
import secrets
from datetime import datetime, timezone

from sqlalchemy import case, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from afyalink.config import settings
from afyalink.db.models import (
    PRIORITY_RANK,
    ChatMessage,
    ChatSession,
    Priority,
    SenderType,
    SessionStatus,
)
from afyalink.services import message_log, notifier
from afyalink.services.errors import (
    ConflictError,
    NotFoundError,
    SessionClosedError,
    ValidationError,
)
from afyalink.services.metrics import metrics

logger = logging.getLogger(__name__)

ALERT_PRIORITIES = {Priority.HIGH, Priority.URGENT}

_priority_rank = case(
    {p.value: rank for p, rank in PRIORITY_RANK.items()},
    value=ChatSession.priority,
    else_=0,
)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def generate_session_id() -> str:
    """Return a URL-safe, unguessable public session identifier."""
    return f"session_{secrets.token_urlsafe(24)}"


async def get_session(db: AsyncSession, session_id: str) -> ChatSession:
    """Look a session up by its public id, or raise ``NotFoundError``."""
    result = await db.execute(
        select(ChatSession).where(ChatSession.session_id == session_id)
    )
    chat = result.scalar_one_or_none()
    if chat is None:
        raise NotFoundError("Chat session not found")
    return chat


async def start_session(
    db: AsyncSession,
    *,
    is_anonymous: bool = True,
    priority: Priority = Priority.MEDIUM,
    topic: str | None = None,
    user_id: str | None = None,
) -> ChatSession:
    """Create a ``waiting`` session with a fresh public id.

    A clash on the unique ``session_id`` column is retried with a new id up
    to ``settings.session_id_max_attempts`` times before giving up with
    ``ConflictError``.
    """
    priority = Priority(priority)

    for attempt in range(1, settings.session_id_max_attempts + 1):
        chat = ChatSession(
            session_id=generate_session_id(),
            user_id=user_id,
            status=SessionStatus.WAITING.value,
            priority=priority.value,
            topic=topic,
            is_anonymous=is_anonymous,
            started_at=_utcnow(),
            message_seq=0,
            bot_reply_count=0,
        )
        db.add(chat)
        try:
            await db.commit()
        except IntegrityError:
            await db.rollback()
            metrics.inc_session_id_collision()
            logger.warning("Session id collision on attempt %d; regenerating", attempt)
            continue
        break
    else:
        raise ConflictError("Could not allocate a unique session id")

    metrics.inc_session_started()
    logger.info(
        "Started chat session %s (priority=%s, anonymous=%s)",
        chat.session_id, chat.priority, chat.is_anonymous,
    )

    if priority in ALERT_PRIORITIES:
        notifier.schedule_notification(
            notifier.notify_counselors(
                notifier.format_session_alert(chat.session_id, chat.priority, topic)
            )
        )
    return chat


async def assign_counselor(db: AsyncSession, session_id: str, counselor_id: str) -> None:
    """Claim an open session for *counselor_id*; first caller wins.

    Raises ``ConflictError`` when the session already has a counselor,
    ``SessionClosedError`` when it is ended or cancelled and
    ``NotFoundError`` when it does not exist.
    """
    result = await db.execute(
        update(ChatSession)
        .where(
            ChatSession.session_id == session_id,
            ChatSession.counselor_id.is_(None),
            ChatSession.status.in_(message_log.OPEN_STATUSES),
        )
        .values(counselor_id=counselor_id)
    )
    if result.rowcount == 1:
        await db.commit()
        logger.info("Counselor %s assigned to session %s", counselor_id, session_id)
        return

    await db.rollback()
    chat = await get_session(db, session_id)
    if chat.counselor_id is not None:
        metrics.inc_assignment_conflict()
        raise ConflictError("Session already assigned to a counselor")
    raise SessionClosedError(f"Cannot assign a counselor to a {chat.status} session")


async def post_message(
    db: AsyncSession,
    session_id: str,
    sender_type: SenderType,
    text: str,
    sender_id: str | None = None,
) -> ChatMessage:
    """Append a message and commit.

    A user message on a ``waiting`` session moves it to ``active`` in the
    same transaction as the insert.
    """
    sender_type = SenderType(sender_type)
    chat = await get_session(db, session_id)
    message = await message_log.append(db, chat, sender_type, text, sender_id)

    if sender_type is SenderType.USER:
        result = await db.execute(
            update(ChatSession)
            .where(
                ChatSession.id == chat.id,
                ChatSession.status == SessionStatus.WAITING.value,
            )
            .values(status=SessionStatus.ACTIVE.value)
        )
        if result.rowcount == 1:
            chat.status = SessionStatus.ACTIVE.value
            logger.info("Session %s is now active", session_id)

    await db.commit()
    return message


async def record_user_message(
    db: AsyncSession, session_id: str, text: str, sender_id: str | None = None
) -> ChatMessage:
    return await post_message(db, session_id, SenderType.USER, text, sender_id)


async def end_session(
    db: AsyncSession,
    session_id: str,
    rating: int | None = None,
    feedback: str | None = None,
) -> None:
    """Close an open session, recording optional rating and feedback.

    Ending an already ended session is a no-op: the first ``ended_at``,
    rating and feedback are kept. A cancelled session cannot be ended.
    """
    if rating is not None and not 1 <= rating <= 5:
        raise ValidationError("Rating must be between 1 and 5", field="rating")

    result = await db.execute(
        update(ChatSession)
        .where(
            ChatSession.session_id == session_id,
            ChatSession.status.in_(message_log.OPEN_STATUSES),
        )
        .values(
            status=SessionStatus.ENDED.value,
            ended_at=_utcnow(),
            user_rating=rating,
            feedback=feedback,
        )
    )
    if result.rowcount == 1:
        await db.commit()
        logger.info("Session %s ended (rating=%s)", session_id, rating)
        return

    await db.rollback()
    chat = await get_session(db, session_id)
    if chat.status == SessionStatus.ENDED.value:
        logger.debug("Session %s already ended; ignoring", session_id)
        return
    raise SessionClosedError("Cannot end a cancelled session")


async def cancel_session(db: AsyncSession, session_id: str) -> None:
    """Withdraw a session that is still ``waiting``. Repeating it is a no-op."""
    result = await db.execute(
        update(ChatSession)
        .where(
            ChatSession.session_id == session_id,
            ChatSession.status == SessionStatus.WAITING.value,
        )
        .values(status=SessionStatus.CANCELLED.value, ended_at=_utcnow())
    )
    if result.rowcount == 1:
        await db.commit()
        logger.info("Session %s cancelled", session_id)
        return

    await db.rollback()
    chat = await get_session(db, session_id)
    if chat.status == SessionStatus.CANCELLED.value:
        return
    raise ConflictError(f"Only waiting sessions can be cancelled (status is {chat.status})")


async def list_waiting(
    db: AsyncSession, page: int = 1, page_size: int = 20
) -> tuple[list[ChatSession], int]:
    """Triage queue: urgent first, then oldest first within a priority."""
    waiting = ChatSession.status == SessionStatus.WAITING.value

    total_result = await db.execute(
        select(func.count()).select_from(ChatSession).where(waiting)
    )
    total = total_result.scalar_one()

    result = await db.execute(
        select(ChatSession)
        .where(waiting)
        .order_by(
            _priority_rank.desc(),
            ChatSession.started_at.asc(),
            ChatSession.id.asc(),
        )
        .offset((page - 1) * page_size)
        .limit(page_size)
    )
    return list(result.scalars().all()), total
