import enum
import uuid

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, relationship
from sqlalchemy.sql import func

from afyalink.services.facility_search import FacilityType


class Base(DeclarativeBase):
    pass


class SessionStatus(str, enum.Enum):
    WAITING = "waiting"
    ACTIVE = "active"
    ENDED = "ended"
    CANCELLED = "cancelled"


class Priority(str, enum.Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


# Triage order for the waiting queue: larger is served first.
PRIORITY_RANK = {
    Priority.LOW: 0,
    Priority.MEDIUM: 1,
    Priority.HIGH: 2,
    Priority.URGENT: 3,
}


class SenderType(str, enum.Enum):
    USER = "user"
    COUNSELOR = "counselor"
    SYSTEM = "system"


def _in(column: str, enum_cls: type[enum.Enum]) -> str:
    values = ", ".join(f"'{m.value}'" for m in enum_cls)
    return f"{column} IN ({values})"


class HealthFacility(Base):
    __tablename__ = "health_facilities"
    __table_args__ = (
        Index("ix_health_facilities_lat_lng", "latitude", "longitude"),
        Index("ix_health_facilities_active_type", "is_active", "type"),
        CheckConstraint("rating >= 0 AND rating <= 5", name="ck_health_facilities_rating"),
        CheckConstraint("review_count >= 0", name="ck_health_facilities_review_count"),
        CheckConstraint(_in("type", FacilityType), name="ck_health_facilities_type"),
    )

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    type = Column(String(32), nullable=False)
    name = Column(String(100), nullable=False)
    description = Column(Text, nullable=True)
    address = Column(String(200), nullable=False)

    # Nullable: facilities without a known location are still listed.
    latitude = Column(Float, nullable=True)
    longitude = Column(Float, nullable=True)

    phone = Column(String(20), nullable=True)
    email = Column(String(255), nullable=True)
    website = Column(String(255), nullable=True)
    services = Column(JSONB, nullable=False, default=list, comment="Ordered list of offered services")
    operating_hours = Column(JSONB, nullable=False, default=dict, comment="Day name -> hours string")
    is_emergency = Column(Boolean, nullable=False, default=False)
    is_24_hours = Column(Boolean, nullable=False, default=False)
    rating = Column(Float, nullable=False, default=0.0)
    review_count = Column(Integer, nullable=False, default=0)
    is_verified = Column(Boolean, nullable=False, default=False)
    is_active = Column(Boolean, nullable=False, default=True, comment="False = soft-deleted")
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    def __repr__(self) -> str:
        return f"<HealthFacility id={self.id} name={self.name!r}>"


class ChatSession(Base):
    __tablename__ = "chat_sessions"
    __table_args__ = (
        Index("ix_chat_sessions_status_started", "status", "started_at"),
        CheckConstraint(_in("status", SessionStatus), name="ck_chat_sessions_status"),
        CheckConstraint(_in("priority", Priority), name="ck_chat_sessions_priority"),
        CheckConstraint(
            "user_rating IS NULL OR (user_rating >= 1 AND user_rating <= 5)",
            name="ck_chat_sessions_user_rating",
        ),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    session_id = Column(String(64), nullable=False, unique=True, comment="Public, unguessable identifier")
    user_id = Column(String(64), nullable=True, comment="Null for anonymous users")
    counselor_id = Column(String(64), nullable=True)
    status = Column(String(16), nullable=False, default=SessionStatus.WAITING.value)
    priority = Column(String(16), nullable=False, default=Priority.MEDIUM.value)
    topic = Column(String(100), nullable=True)
    is_anonymous = Column(Boolean, nullable=False, default=True)
    started_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    ended_at = Column(DateTime(timezone=True), nullable=True)
    user_rating = Column(Integer, nullable=True)
    feedback = Column(Text, nullable=True)

    # Per-session counters; never shared across sessions or processes.
    message_seq = Column(Integer, nullable=False, default=0, comment="Last assigned message sequence number")
    bot_reply_count = Column(Integer, nullable=False, default=0)

    messages = relationship("ChatMessage", back_populates="session", lazy="noload")

    def __repr__(self) -> str:
        return f"<ChatSession session_id={self.session_id} status={self.status}>"


class ChatMessage(Base):
    __tablename__ = "chat_messages"
    __table_args__ = (
        UniqueConstraint("session_pk", "seq", name="uq_chat_messages_session_seq"),
        CheckConstraint(_in("sender_type", SenderType), name="ck_chat_messages_sender_type"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    session_pk = Column(
        Integer, ForeignKey("chat_sessions.id"), nullable=False, index=True
    )
    seq = Column(Integer, nullable=False, comment="Per-session ordering key")
    sender_id = Column(String(64), nullable=True)
    sender_type = Column(String(16), nullable=False)
    message = Column(Text, nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    is_read = Column(Boolean, nullable=False, default=False)
    read_at = Column(DateTime(timezone=True), nullable=True)

    session = relationship("ChatSession", back_populates="messages", lazy="noload")

    def __repr__(self) -> str:
        return f"<ChatMessage session_pk={self.session_pk} seq={self.seq}>"
