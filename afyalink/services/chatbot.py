from __future__ import annotations

import logging
from dataclasses import dataclass

import anthropic
from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from afyalink.config import settings
from afyalink.db.models import ChatSession, Priority, SenderType
from afyalink.services import chat_sessions, message_log, notifier
from afyalink.services.metrics import metrics

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = (
    "You are a warm, supportive peer-support assistant for a community mental "
    "health service. Reply in 2-3 short sentences. Acknowledge the person's "
    "feelings and gently invite them to share more or suggest a simple coping "
    "step.\n\n"
    "Do NOT diagnose, prescribe, or give medical advice. If the person mentions "
    "self-harm, suicide, or immediate danger, urge them to contact emergency "
    "services or a crisis line right away and tell them a counselor will join."
)

CANNED_REPLIES = (
    "I'm here for you. Can you tell me a bit more about what's been on your mind?",
    "It's okay to feel overwhelmed sometimes. What usually helps you calm down?",
    "Remember, you're not alone. Many people feel like this and find ways to get better.",
    "That sounds tough. Have you had a chance to talk to someone about it before?",
    "Taking care of your mental health is important. What do you usually do to relax?",
)

HANDOFF_REPLY = (
    "You've reached the chat limit for now. Our mental health team will reach "
    "out to assist you soon."
)


@dataclass
class BotReply:
    session_id: str
    reply: str
    source: str  # "ai", "canned" or "handoff"
    handoff: bool = False


async def _claim_turn(db: AsyncSession, chat: ChatSession) -> int:
    """Atomically bump and return the session's bot reply counter."""
    result = await db.execute(
        update(ChatSession)
        .where(ChatSession.id == chat.id)
        .values(bot_reply_count=ChatSession.bot_reply_count + 1)
        .returning(ChatSession.bot_reply_count)
    )
    turn = result.scalar_one()
    await db.commit()
    return turn


async def _escalate(db: AsyncSession, chat: ChatSession) -> None:
    """Lift a low/medium session to ``high`` so counselors see it sooner."""
    await db.execute(
        update(ChatSession)
        .where(
            ChatSession.id == chat.id,
            ChatSession.priority.in_((Priority.LOW.value, Priority.MEDIUM.value)),
        )
        .values(priority=Priority.HIGH.value)
    )


async def _ai_reply(text: str) -> str | None:
    """Ask Claude for a reply; ``None`` on any failure so callers fall back."""
    if not settings.anthropic_api_key:
        return None

    try:
        client = anthropic.AsyncAnthropic(api_key=settings.anthropic_api_key)
        response = await client.messages.create(
            model=settings.anthropic_model,
            max_tokens=settings.bot_max_tokens,
            system=SYSTEM_PROMPT,
            messages=[{"role": "user", "content": text}],
        )
        if not response.content:
            logger.warning("Anthropic returned no content; using canned reply")
            return None
        answer = response.content[0].text.strip()
        if not answer:
            logger.warning("Anthropic returned a blank reply; using canned reply")
            return None
        return answer[: message_log.MAX_MESSAGE_LENGTH]
    except anthropic.AuthenticationError:
        logger.error("Anthropic authentication failed; check ANTHROPIC_API_KEY")
    except anthropic.RateLimitError:
        logger.warning("Anthropic rate limit exceeded; using canned reply")
    except anthropic.APIError as exc:
        logger.error("Anthropic API error: %s", exc)
    except Exception as exc:
        logger.exception("Unexpected error generating bot reply: %s", exc)
    return None


def canned_reply(turn: int) -> str:
    """Deterministic rotation through ``CANNED_REPLIES`` by 1-based turn."""
    return CANNED_REPLIES[(turn - 1) % len(CANNED_REPLIES)]


async def reply(
    db: AsyncSession, session_id: str, text: str, sender_id: str | None = None
) -> BotReply:
    """Record the user's message and answer it as the support bot.

    The turn counter lives on the session row, so the limit holds across
    server instances and restarts. Past ``settings.bot_reply_limit`` turns the
    bot stops answering and escalates the session for a human counselor.
    """
    await chat_sessions.record_user_message(db, session_id, text, sender_id)
    chat = await chat_sessions.get_session(db, session_id)
    turn = await _claim_turn(db, chat)

    if turn > settings.bot_reply_limit:
        if turn == settings.bot_reply_limit + 1:
            await _escalate(db, chat)
            notifier.schedule_notification(
                notifier.notify_counselors(
                    notifier.format_session_alert(session_id, Priority.HIGH.value, chat.topic)
                )
            )
        answer, source = HANDOFF_REPLY, "handoff"
    else:
        answer = await _ai_reply(text.strip())
        source = "ai"
        if answer is None:
            answer, source = canned_reply(turn), "canned"

    await message_log.append(db, chat, SenderType.SYSTEM, answer)
    await db.commit()

    metrics.inc_bot_reply(source)
    logger.info("Bot replied on session %s (turn %d, %s)", session_id, turn, source)
    return BotReply(
        session_id=session_id,
        reply=answer,
        source=source,
        handoff=source == "handoff",
    )
