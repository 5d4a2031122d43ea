# mentorlink/crud/video_call.py
from sqlalchemy.orm import Session
from typing import Optional
from datetime import datetime

from mentorlink import models
from mentorlink.utils.clock import utcnow

ACTIVE = "active"
ENDED = "ended"


def get_active_session(db: Session, request_id: str) -> Optional[models.VideoCallSession]:
    return db.query(models.VideoCallSession).filter(
        models.VideoCallSession.request_id == request_id,
        models.VideoCallSession.status == ACTIVE,
    ).order_by(models.VideoCallSession.id.desc()).first()


def end_active_sessions(db: Session, request_id: str, ended_at: Optional[datetime] = None) -> int:
    updated = db.query(models.VideoCallSession).filter(
        models.VideoCallSession.request_id == request_id,
        models.VideoCallSession.status == ACTIVE,
    ).update(
        {
            "status": ENDED,
            "call_ended_at": ended_at or utcnow(),
            "is_student_active": False,
            "is_alumni_active": False,
        },
        synchronize_session=False,
    )
    return int(updated)


def start_session(
    db: Session,
    *,
    request_id: str,
    student_id: str,
    alumni_id: str,
    channel_name: str,
    attendee_link: str,
) -> models.VideoCallSession:
    """Open a fresh presence session, closing any still-active one for the request."""
    now = utcnow()
    end_active_sessions(db, request_id, ended_at=now)
    session = models.VideoCallSession(
        request_id=request_id,
        student_id=student_id,
        alumni_id=alumni_id,
        channel_name=channel_name,
        attendee_link=attendee_link,
        call_started_at=now,
        session_started_at=now,
        status=ACTIVE,
    )
    db.add(session)
    db.flush()
    return session


def set_presence(session: models.VideoCallSession, user_type: str, active: bool) -> None:
    now = utcnow()
    if user_type == "student":
        session.is_student_active = active
        if active:
            session.student_joined_at = now
        else:
            session.student_left_at = now
    elif user_type == "alumni":
        session.is_alumni_active = active
        if active:
            session.alumni_joined_at = now
        else:
            session.alumni_left_at = now

    if not active and not session.is_student_active and not session.is_alumni_active:
        session.status = ENDED
        session.call_ended_at = now
