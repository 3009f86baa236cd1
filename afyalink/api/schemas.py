"""Pydantic request/response models.

JSON field names are camelCase to match the web client; Python attribute
names stay snake_case through aliases.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

from afyalink.db.models import Priority, SenderType, SessionStatus
from afyalink.services.facility_search import FacilityType


class _CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


# ---------------------------------------------------------------------------
# Shared
# ---------------------------------------------------------------------------


class ErrorResponse(BaseModel):
    """Structured error returned by all non-2xx responses."""

    error: bool = Field(True, description="Always true for error responses")
    status_code: int = Field(..., description="HTTP status code")
    detail: Any = Field(
        ...,
        description="Human-readable message, or a list of field errors for 422",
    )
    field: str | None = Field(None, description="Offending field for 400 validation errors")


class Pagination(_CamelModel):
    current_page: int = Field(..., alias="currentPage")
    total_pages: int = Field(..., alias="totalPages")
    total_items: int = Field(..., alias="totalItems")
    items_per_page: int = Field(..., alias="itemsPerPage")


class ActionResponse(_CamelModel):
    message: str
    session_id: str = Field(..., alias="sessionId")


# ---------------------------------------------------------------------------
# /health
# ---------------------------------------------------------------------------


class RateLimiterHealth(BaseModel):
    active_keys: int = Field(..., description="Number of tracked client buckets")


class HealthResponse(BaseModel):
    """API and database status."""

    status: str = Field(..., description="'ok' or 'degraded'")
    database: str = Field(..., description="'connected' or 'unreachable'")
    rate_limiter: RateLimiterHealth | None = None
    uptime_seconds: float | None = Field(None, description="Seconds since process start")


# ---------------------------------------------------------------------------
# /api/health-services
# ---------------------------------------------------------------------------


class FacilityModel(_CamelModel):
    """A health facility, with distance from the query point when known."""

    id: str
    type: FacilityType
    name: str
    description: str | None = None
    address: str
    latitude: float | None = None
    longitude: float | None = None
    phone: str | None = None
    email: str | None = None
    website: str | None = None
    services: list[str] = Field(default_factory=list)
    operating_hours: dict[str, str] = Field(default_factory=dict, alias="operatingHours")
    is_emergency: bool = Field(False, alias="isEmergency")
    is_24_hours: bool = Field(False, alias="is24Hours")
    rating: float = Field(0.0, ge=0, le=5)
    review_count: int = Field(0, ge=0, alias="reviewCount")
    is_verified: bool = Field(False, alias="isVerified")
    distance: float | None = Field(
        None,
        description=(
            "Great-circle distance in km from (lat, lng). Null when no origin "
            "was given or the facility has no stored location."
        ),
    )


class FacilityFilters(_CamelModel):
    type: str = "all"
    radius: float
    emergency: bool = False
    is_24_hours: bool = Field(False, alias="is24Hours")
    search_term: str | None = Field(None, alias="searchTerm")


class FacilitySearchResponse(BaseModel):
    services: list[FacilityModel]
    pagination: Pagination
    filters: FacilityFilters


# ---------------------------------------------------------------------------
# /api/mental-health
# ---------------------------------------------------------------------------


class StartSessionRequest(_CamelModel):
    is_anonymous: bool = Field(True, alias="isAnonymous")
    priority: Priority = Priority.MEDIUM
    topic: str | None = Field(None, max_length=100)


class ChatSessionModel(_CamelModel):
    session_id: str = Field(..., alias="sessionId")
    status: SessionStatus
    priority: Priority
    topic: str | None = None
    is_anonymous: bool = Field(..., alias="isAnonymous")
    counselor_id: str | None = Field(None, alias="counselorId")
    started_at: datetime | None = Field(None, alias="startedAt")
    ended_at: datetime | None = Field(None, alias="endedAt")
    user_rating: int | None = Field(None, alias="userRating")
    feedback: str | None = None


class StartSessionResponse(_CamelModel):
    session_id: str = Field(..., alias="sessionId")
    session: ChatSessionModel


class SendMessageRequest(_CamelModel):
    message: str = Field(..., min_length=1, max_length=1000)
    sender_type: Literal["user", "counselor"] = Field(..., alias="senderType")


class ChatMessageModel(_CamelModel):
    id: int
    session_id: str = Field(..., alias="sessionId")
    seq: int = Field(..., description="Position in the session, starting at 1")
    sender_id: str | None = Field(None, alias="senderId")
    sender_type: SenderType = Field(..., alias="senderType")
    message: str
    created_at: datetime = Field(..., alias="createdAt")
    is_read: bool = Field(False, alias="isRead")
    read_at: datetime | None = Field(None, alias="readAt")


class MessageListResponse(_CamelModel):
    messages: list[ChatMessageModel]
    pagination: Pagination
    poll_interval: int = Field(
        ...,
        alias="pollInterval",
        description="Seconds clients should wait between polls; the staleness bound",
    )


class WaitingSessionsResponse(BaseModel):
    sessions: list[ChatSessionModel]
    pagination: Pagination


class EndSessionRequest(BaseModel):
    rating: int | None = Field(None, ge=1, le=5)
    feedback: str | None = Field(None, max_length=500)


class MarkReadRequest(_CamelModel):
    reader_type: Literal["user", "counselor"] = Field(..., alias="readerType")


class MarkReadResponse(BaseModel):
    updated: int


class AnswerOption(BaseModel):
    value: int
    text: str


class AssessmentQuestion(BaseModel):
    id: int
    question: str
    options: list[AnswerOption]


class AssessmentModel(BaseModel):
    id: str
    title: str
    description: str
    questions: list[AssessmentQuestion]


class AssessmentAnswer(_CamelModel):
    question_id: int = Field(..., alias="questionId")
    value: int = Field(..., ge=0, le=3, description="0 = not at all, 3 = nearly every day")


class AssessmentSubmission(BaseModel):
    answers: list[AssessmentAnswer] = Field(..., min_length=1, max_length=50)


class AssessmentResultModel(_CamelModel):
    assessment_id: str = Field(..., alias="assessmentId")
    score: int
    max_score: int = Field(..., alias="maxScore")
    level: Literal["low", "moderate", "severe"]
    recommendations: list[str]


class ResourceModel(_CamelModel):
    id: str
    name: str
    type: str = Field(..., description="'crisis' for hotlines, otherwise the facility type")
    phone: str | None = None
    address: str
    services: list[str] = []
    is_24_hours: bool = Field(False, alias="is24Hours")


class ResourceListResponse(BaseModel):
    resources: list[ResourceModel]


# ---------------------------------------------------------------------------
# /api/chat
# ---------------------------------------------------------------------------


class BotMessageRequest(_CamelModel):
    message: str = Field(..., min_length=1, max_length=1000)
    session_id: str | None = Field(None, alias="sessionId", max_length=64)


class BotMessageResponse(_CamelModel):
    reply: str
    session_id: str = Field(..., alias="sessionId")
    handoff: bool = Field(False, description="True once the bot has handed over to counselors")
