# mentorlink/api/session_log.py
"""
Session Log API

Authoritative record of call segments per mentorship request. Ending a
long-enough, paid call on an accepted request completes the request.
"""

import logging
from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from mentorlink.config import settings
from mentorlink.crud import call_log as call_log_crud
from mentorlink.crud import mentorship as mentorship_crud
from mentorlink.crud import payment as payment_crud
from mentorlink.database import get_db
from mentorlink.models.mentorship import RequestStatus
from mentorlink.schemas.session_log import (
    CallEndIn,
    CallEndOut,
    CallLogsOut,
    CallStartIn,
    CallStartOut,
    RequestUpdated,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/mentorship/mento_session", tags=["session-log"])


def _should_complete(db: Session, request, duration: int) -> bool:
    if request.status != RequestStatus.ACCEPTED.value:
        return False
    if duration < settings.MINIMUM_SESSION_MINUTES:
        return False
    payment = payment_crud.get_completed_payment(
        db,
        student_id=request.student_id,
        alumni_id=request.alumni_id,
        request_id=request.id,
    )
    return payment is not None


@router.post("/start", response_model=CallStartOut)
def log_call_start(payload: CallStartIn, db: Session = Depends(get_db)):
    request = mentorship_crud.get_request(db, payload.request_id)
    if not request:
        raise HTTPException(status_code=404, detail="Mentorship request not found")

    record = call_log_crud.append_call_start(
        db, request, payload.call_type.value, payload.start_time
    )
    db.commit()
    logger.info(
        "Call start logged (request_id=%s, call_id=%s, call_type=%s)",
        request.id,
        record.call_id,
        record.call_type,
    )
    return CallStartOut(call_id=record.call_id)


@router.post("/end", response_model=CallEndOut)
def log_call_end(payload: CallEndIn, db: Session = Depends(get_db)):
    request = mentorship_crud.get_request(db, payload.request_id)
    if not request:
        raise HTTPException(status_code=404, detail="Mentorship request not found")

    record = call_log_crud.close_call(
        db,
        request,
        payload.call_type.value,
        payload.start_time,
        payload.end_time,
        payload.duration,
    )
    if _should_complete(db, request, record.duration):
        mentorship_crud.complete_request(db, request, completed_at=payload.end_time)
        logger.info("Request completed by call end (request_id=%s)", request.id)

    db.commit()
    db.refresh(request)
    return CallEndOut(
        call_id=record.call_id,
        request_updated=RequestUpdated(status=RequestStatus(request.status)),
    )


@router.get("/by-requests", response_model=CallLogsOut)
def get_logs_by_requests(ids: str = Query("", description="Comma-separated request ids"), db: Session = Depends(get_db)):
    request_ids = [i.strip() for i in ids.split(",") if i.strip()]
    return CallLogsOut(logs=call_log_crud.logs_by_requests(db, request_ids))
