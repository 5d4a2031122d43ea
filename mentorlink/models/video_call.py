# mentorlink/models/video_call.py
from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, String, TIMESTAMP, func
from mentorlink.database import Base


class VideoCallSession(Base):
    """Live presence of both participants in the external call room."""
    __tablename__ = "video_call_sessions"

    id = Column(Integer, primary_key=True, index=True)
    request_id = Column(String(32), ForeignKey("mentorship_requests.id", ondelete="CASCADE"), nullable=False, index=True)
    student_id = Column(String(64), nullable=False)
    alumni_id = Column(String(64), nullable=False)
    channel_name = Column(String(200), nullable=False)
    attendee_link = Column(String(500), nullable=False)
    is_student_active = Column(Boolean, nullable=False, default=False)
    is_alumni_active = Column(Boolean, nullable=False, default=False)
    student_joined_at = Column(DateTime(timezone=True))
    student_left_at = Column(DateTime(timezone=True))
    alumni_joined_at = Column(DateTime(timezone=True))
    alumni_left_at = Column(DateTime(timezone=True))
    call_started_at = Column(DateTime(timezone=True), nullable=False)
    session_started_at = Column(DateTime(timezone=True))
    call_ended_at = Column(DateTime(timezone=True))
    status = Column(String(10), nullable=False, default="active", index=True)  # active | ended
    created_at = Column(TIMESTAMP, server_default=func.now())
    updated_at = Column(TIMESTAMP, onupdate=func.now())
