"""Counseling chat endpoints: sessions, messages and the counselor queue."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Path, Query
from sqlalchemy.ext.asyncio import AsyncSession

from afyalink.api.auth import (
    DEV_COUNSELOR_ID,
    optional_counselor,
    optional_user_id,
    require_counselor,
)
from afyalink.api.dependencies import get_db
from afyalink.api.schemas import (
    ActionResponse,
    AssessmentModel,
    AssessmentResultModel,
    AssessmentSubmission,
    ChatMessageModel,
    ChatSessionModel,
    EndSessionRequest,
    ErrorResponse,
    MarkReadRequest,
    MarkReadResponse,
    MessageListResponse,
    ResourceListResponse,
    SendMessageRequest,
    StartSessionRequest,
    StartSessionResponse,
    WaitingSessionsResponse,
)
from afyalink.config import settings
from afyalink.db.models import ChatMessage, ChatSession, SenderType
from afyalink.services import assessments, chat_sessions, message_log
from afyalink.services.facility_search import page_meta
from afyalink.services.rate_limiter import enforce_rate_limit

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/api/mental-health",
    tags=["mental-health"],
    dependencies=[Depends(enforce_rate_limit)],
)

_SESSION_ID = Path(..., min_length=1, max_length=64, description="Public session id")

_NOT_FOUND = {404: {"model": ErrorResponse, "description": "Session not found"}}
_CLOSED = {409: {"model": ErrorResponse, "description": "Session closed or already claimed"}}
_COUNSELOR_ONLY = {
    401: {"model": ErrorResponse, "description": "Missing API key"},
    403: {"model": ErrorResponse, "description": "Counselor access required"},
}


def _serialize_session(chat: ChatSession) -> dict:
    return {
        "sessionId": chat.session_id,
        "status": chat.status,
        "priority": chat.priority,
        "topic": chat.topic,
        "isAnonymous": chat.is_anonymous,
        "counselorId": chat.counselor_id,
        "startedAt": chat.started_at,
        "endedAt": chat.ended_at,
        "userRating": chat.user_rating,
        "feedback": chat.feedback,
    }


def _serialize_message(message: ChatMessage, session_id: str) -> dict:
    return {
        "id": message.id,
        "sessionId": session_id,
        "seq": message.seq,
        "senderId": message.sender_id,
        "senderType": message.sender_type,
        "message": message.message,
        "createdAt": message.created_at,
        "isRead": message.is_read,
        "readAt": message.read_at,
    }


def _counselor_or_403(counselor_id: str | None) -> str:
    if counselor_id is not None:
        return counselor_id
    if not settings.auth_enabled:
        return DEV_COUNSELOR_ID
    raise HTTPException(status_code=403, detail="Counselor access required")


@router.post(
    "/start-session",
    status_code=201,
    summary="Start a counseling session",
    description=(
        "Open a new session in the `waiting` state. High and urgent sessions "
        "alert the on-call counselors by SMS."
    ),
    response_model=StartSessionResponse,
    responses={409: {"model": ErrorResponse, "description": "Could not allocate a session id"}},
)
async def start_session(
    body: StartSessionRequest,
    user_id: str | None = Depends(optional_user_id),
    db: AsyncSession = Depends(get_db),
):
    chat = await chat_sessions.start_session(
        db,
        is_anonymous=body.is_anonymous,
        priority=body.priority,
        topic=body.topic,
        user_id=None if body.is_anonymous else user_id,
    )
    return {"sessionId": chat.session_id, "session": _serialize_session(chat)}


@router.get(
    "/sessions/waiting",
    summary="Counselor triage queue",
    description="Waiting sessions, most urgent first, then oldest first.",
    response_model=WaitingSessionsResponse,
    responses=_COUNSELOR_ONLY,
)
async def waiting_sessions(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=settings.max_page_size),
    counselor_id: str = Depends(require_counselor),
    db: AsyncSession = Depends(get_db),
):
    sessions, total = await chat_sessions.list_waiting(db, page, limit)
    return {
        "sessions": [_serialize_session(s) for s in sessions],
        "pagination": page_meta(page, limit, total),
    }


@router.get(
    "/sessions/{session_id}",
    summary="Get a session",
    response_model=ChatSessionModel,
    responses=_NOT_FOUND,
)
async def get_session(
    session_id: str = _SESSION_ID,
    db: AsyncSession = Depends(get_db),
):
    return _serialize_session(await chat_sessions.get_session(db, session_id))


@router.post(
    "/sessions/{session_id}/messages",
    status_code=201,
    summary="Send a message",
    description=(
        "Append a message to an open session. The first user message moves a "
        "`waiting` session to `active`. Counselor messages need an API key."
    ),
    response_model=ChatMessageModel,
    responses={
        400: {"model": ErrorResponse, "description": "Empty or too long message"},
        403: {"model": ErrorResponse, "description": "Counselor access required"},
        **_NOT_FOUND,
        **_CLOSED,
    },
)
async def send_message(
    body: SendMessageRequest,
    session_id: str = _SESSION_ID,
    user_id: str | None = Depends(optional_user_id),
    counselor_id: str | None = Depends(optional_counselor),
    db: AsyncSession = Depends(get_db),
):
    if body.sender_type == SenderType.COUNSELOR.value:
        sender_id = _counselor_or_403(counselor_id)
    else:
        sender_id = user_id

    message = await chat_sessions.post_message(
        db, session_id, body.sender_type, body.message, sender_id
    )
    return _serialize_message(message, session_id)


@router.get(
    "/sessions/{session_id}/messages",
    summary="List messages",
    description=(
        "Messages in send order. Clients poll this endpoint; `pollInterval` "
        "is how stale a reader may be, in seconds."
    ),
    response_model=MessageListResponse,
    responses=_NOT_FOUND,
)
async def list_messages(
    session_id: str = _SESSION_ID,
    page: int = Query(1, ge=1),
    limit: int = Query(settings.default_page_size, ge=1, le=settings.max_page_size),
    db: AsyncSession = Depends(get_db),
):
    chat = await chat_sessions.get_session(db, session_id)
    messages, total = await message_log.list_messages(db, chat, page, limit)
    return {
        "messages": [_serialize_message(m, session_id) for m in messages],
        "pagination": page_meta(page, limit, total),
        "pollInterval": settings.chat_poll_interval,
    }


@router.post(
    "/sessions/{session_id}/read",
    summary="Mark messages as read",
    description="Flag every message from the other party as read.",
    response_model=MarkReadResponse,
    responses={403: {"model": ErrorResponse, "description": "Counselor access required"}, **_NOT_FOUND},
)
async def mark_read(
    body: MarkReadRequest,
    session_id: str = _SESSION_ID,
    counselor_id: str | None = Depends(optional_counselor),
    db: AsyncSession = Depends(get_db),
):
    if body.reader_type == SenderType.COUNSELOR.value:
        _counselor_or_403(counselor_id)
    chat = await chat_sessions.get_session(db, session_id)
    updated = await message_log.mark_read(db, chat, body.reader_type)
    return {"updated": updated}


@router.post(
    "/sessions/{session_id}/assign",
    summary="Claim a session",
    description="Assign the calling counselor. Only the first claim succeeds.",
    response_model=ActionResponse,
    responses={**_COUNSELOR_ONLY, **_NOT_FOUND, **_CLOSED},
)
async def assign_session(
    session_id: str = _SESSION_ID,
    counselor_id: str = Depends(require_counselor),
    db: AsyncSession = Depends(get_db),
):
    await chat_sessions.assign_counselor(db, session_id, counselor_id)
    return {"message": "Counselor assigned", "sessionId": session_id}


@router.post(
    "/sessions/{session_id}/end",
    summary="End a session",
    description="Close the session with an optional rating and feedback. Ending twice is a no-op.",
    response_model=ActionResponse,
    responses={**_COUNSELOR_ONLY, **_NOT_FOUND, **_CLOSED},
)
async def end_session(
    body: EndSessionRequest | None = None,
    session_id: str = _SESSION_ID,
    counselor_id: str = Depends(require_counselor),
    db: AsyncSession = Depends(get_db),
):
    body = body or EndSessionRequest()
    await chat_sessions.end_session(db, session_id, body.rating, body.feedback)
    return {"message": "Session ended", "sessionId": session_id}


@router.post(
    "/sessions/{session_id}/cancel",
    summary="Cancel a waiting session",
    response_model=ActionResponse,
    responses={**_NOT_FOUND, **_CLOSED},
)
async def cancel_session(
    session_id: str = _SESSION_ID,
    db: AsyncSession = Depends(get_db),
):
    await chat_sessions.cancel_session(db, session_id)
    return {"message": "Session cancelled", "sessionId": session_id}


# ---------------------------------------------------------------------------
# Self-assessments and resources
# ---------------------------------------------------------------------------


def _serialize_assessment(assessment: assessments.Assessment) -> dict:
    options = [{"value": v, "text": t} for v, t in assessments.ANSWER_OPTIONS]
    return {
        "id": assessment.id,
        "title": assessment.title,
        "description": assessment.description,
        "questions": [
            {"id": q.id, "question": q.text, "options": options}
            for q in assessment.questions
        ],
    }


@router.get(
    "/assessments",
    summary="List self-assessments",
    description="Screening questionnaires. Every question is answered on a 0-3 frequency scale.",
    response_model=list[AssessmentModel],
)
async def list_assessments():
    return [_serialize_assessment(a) for a in assessments.list_assessments()]


@router.post(
    "/assessments/{assessment_id}/submit",
    summary="Score a self-assessment",
    description=(
        "Total the answers and map the score to a level: 10 or more is "
        "`severe`, 5 or more `moderate`, otherwise `low`. Nothing is stored."
    ),
    response_model=AssessmentResultModel,
    responses={
        400: {"model": ErrorResponse, "description": "Unknown, repeated or missing question"},
        404: {"model": ErrorResponse, "description": "Assessment not found"},
    },
)
async def submit_assessment(
    body: AssessmentSubmission,
    assessment_id: str = Path(..., min_length=1, max_length=50),
):
    result = assessments.score_answers(
        assessment_id, [(a.question_id, a.value) for a in body.answers]
    )
    return {
        "assessmentId": result.assessment_id,
        "score": result.score,
        "maxScore": result.max_score,
        "level": result.level,
        "recommendations": list(result.recommendations),
    }


@router.get(
    "/resources",
    summary="Mental-health resources",
    description="Crisis lines, then active mental-health facilities ordered by rating.",
    response_model=ResourceListResponse,
)
async def list_resources(db: AsyncSession = Depends(get_db)):
    resources = await assessments.list_resources(db)
    return {
        "resources": [
            {
                "id": r.id,
                "name": r.name,
                "type": r.type,
                "phone": r.phone,
                "address": r.address,
                "services": list(r.services),
                "is24Hours": r.is_24_hours,
            }
            for r in resources
        ]
    }
