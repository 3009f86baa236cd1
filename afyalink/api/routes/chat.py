"""POST /api/chat/send: the peer-support bot."""

from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from afyalink.api.auth import optional_user_id
from afyalink.api.dependencies import get_db
from afyalink.api.schemas import BotMessageRequest, BotMessageResponse, ErrorResponse
from afyalink.services import chat_sessions, chatbot
from afyalink.services.rate_limiter import enforce_rate_limit

router = APIRouter(
    prefix="/api/chat",
    tags=["chat"],
    dependencies=[Depends(enforce_rate_limit)],
)


@router.post(
    "/send",
    summary="Talk to the support bot",
    description=(
        "Send a message to the support bot and get its reply. Without a "
        "`sessionId` a new session is started first, anonymous unless the "
        "gateway sent `X-User-Id`. Pass the returned `sessionId` on later "
        "turns. After a few turns the bot hands "
        "the conversation over to the counselor queue and `handoff` is true."
    ),
    response_model=BotMessageResponse,
    responses={
        400: {"model": ErrorResponse, "description": "Empty or too long message"},
        404: {"model": ErrorResponse, "description": "Session not found"},
        409: {"model": ErrorResponse, "description": "Session closed"},
    },
)
async def send(
    body: BotMessageRequest,
    user_id: str | None = Depends(optional_user_id),
    db: AsyncSession = Depends(get_db),
):
    session_id = body.session_id
    if session_id is None:
        chat = await chat_sessions.start_session(
            db,
            is_anonymous=user_id is None,
            topic="support bot",
            user_id=user_id,
        )
        session_id = chat.session_id

    result = await chatbot.reply(db, session_id, body.message, sender_id=user_id)
    return {
        "reply": result.reply,
        "sessionId": result.session_id,
        "handoff": result.handoff,
    }
