# mentorlink/models/mentorship.py
from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    JSON,
    String,
    Text,
    TIMESTAMP,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import relationship
from mentorlink.database import Base
from mentorlink.utils.clock import new_id
import enum


class RequestStatus(str, enum.Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    COMPLETED = "completed"


class CallType(str, enum.Enum):
    VIDEO = "video"
    AUDIO = "audio"


class CallStatus(str, enum.Enum):
    SCHEDULED = "scheduled"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class MentorshipRequest(Base):
    __tablename__ = "mentorship_requests"

    id = Column(String(32), primary_key=True, default=new_id)
    student_id = Column(String(64), nullable=False, index=True)
    alumni_id = Column(String(64), nullable=False, index=True)
    category = Column(String(32), nullable=False, default="career_guidance")
    title = Column(String(200), nullable=False)
    description = Column(Text, nullable=False, default="")
    status = Column(String(20), nullable=False, default=RequestStatus.PENDING.value, index=True)
    priority = Column(String(10), nullable=False, default="medium")
    skills_needed = Column(JSON, nullable=False, default=list)
    expected_duration = Column(String(50))
    preferred_communication = Column(String(20), default="email")
    student_message = Column(String(1000))
    alumni_response = Column(String(1000))
    rejection_reason = Column(String(500))
    total_call_duration = Column(Integer, nullable=False, default=0)
    last_call_completed_at = Column(DateTime(timezone=True))
    created_at = Column(TIMESTAMP, server_default=func.now())
    updated_at = Column(TIMESTAMP, onupdate=func.now())

    # Relationships
    call_history = relationship(
        "CallRecord",
        back_populates="request",
        order_by="CallRecord.id",
        cascade="all, delete-orphan",
    )
    mentor_session = relationship("MentorSession", back_populates="request", uselist=False)


class CallRecord(Base):
    __tablename__ = "call_records"
    __table_args__ = (UniqueConstraint("request_id", "call_id", name="uq_call_records_request_call"),)

    id = Column(Integer, primary_key=True, index=True)
    request_id = Column(String(32), ForeignKey("mentorship_requests.id", ondelete="CASCADE"), nullable=False, index=True)
    call_id = Column(String(64), nullable=False, default=new_id)
    call_type = Column(String(10), nullable=False)
    start_time = Column(DateTime(timezone=True), nullable=False)
    end_time = Column(DateTime(timezone=True))
    duration = Column(Integer)  # minutes
    status = Column(String(20), nullable=False, default=CallStatus.SCHEDULED.value)

    request = relationship("MentorshipRequest", back_populates="call_history")


class MentorSession(Base):
    """Completion record written when a mentorship request is completed."""
    __tablename__ = "mentor_sessions"

    id = Column(Integer, primary_key=True, index=True)
    request_id = Column(String(32), ForeignKey("mentorship_requests.id", ondelete="CASCADE"), unique=True, nullable=False)
    student_id = Column(String(64), nullable=False)
    alumni_id = Column(String(64), nullable=False, index=True)
    session_title = Column(String(200), nullable=False)
    session_description = Column(Text, nullable=False, default="")
    category = Column(String(32), nullable=False)
    skills_needed = Column(JSON, nullable=False, default=list)
    student_message = Column(String(1000))
    session_done = Column(Boolean, nullable=False, default=True)
    completed_at = Column(DateTime(timezone=True))
    created_at = Column(TIMESTAMP, server_default=func.now())

    request = relationship("MentorshipRequest", back_populates="mentor_session")
