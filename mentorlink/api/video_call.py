# mentorlink/api/video_call.py
import logging
from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from mentorlink.crud import video_call as video_call_crud
from mentorlink.database import get_db
from mentorlink.schemas.video_call import (
    PresenceChangeIn,
    PresenceEndIn,
    PresenceStartIn,
    PresenceStatus,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/video-call", tags=["video-call"])


def _presence_payload(session) -> dict:
    return {
        "is_student_active": session.is_student_active,
        "is_alumni_active": session.is_alumni_active,
        "call_ended": session.status == video_call_crud.ENDED,
    }


@router.post("/start")
def start_video_call(payload: PresenceStartIn, db: Session = Depends(get_db)):
    session = video_call_crud.start_session(db, **payload.model_dump())
    db.commit()
    logger.info("Presence session started (request_id=%s)", payload.request_id)
    return {
        "message": "Video call started",
        "call_id": session.id,
        "attendee_link": session.attendee_link,
    }


@router.post("/join")
def join_video_call(payload: PresenceChangeIn, db: Session = Depends(get_db)):
    session = video_call_crud.get_active_session(db, payload.request_id)
    if not session:
        raise HTTPException(status_code=404, detail="Active video call not found")
    video_call_crud.set_presence(session, payload.user_type, True)
    db.commit()
    return {"message": "User joined video call", **_presence_payload(session)}


@router.post("/leave")
def leave_video_call(payload: PresenceChangeIn, db: Session = Depends(get_db)):
    session = video_call_crud.get_active_session(db, payload.request_id)
    if not session:
        raise HTTPException(status_code=404, detail="Active video call not found")
    video_call_crud.set_presence(session, payload.user_type, False)
    db.commit()
    return {"message": "User left video call", **_presence_payload(session)}


@router.post("/end")
def end_video_call(payload: PresenceEndIn, db: Session = Depends(get_db)):
    """Session-end event from the call room provider."""
    ended = video_call_crud.end_active_sessions(db, payload.request_id)
    db.commit()
    logger.info("Presence session ended (request_id=%s, sessions=%s)", payload.request_id, ended)
    return {"message": "Video call ended", "ended": ended}


@router.get("/status/{request_id}", response_model=PresenceStatus)
def get_video_call_status(request_id: str, db: Session = Depends(get_db)):
    session = video_call_crud.get_active_session(db, request_id)
    if not session:
        return PresenceStatus()
    return PresenceStatus(
        is_active=True,
        is_student_active=session.is_student_active,
        is_alumni_active=session.is_alumni_active,
        session_started_at=session.session_started_at,
        attendee_link=session.attendee_link,
        channel_name=session.channel_name,
    )
