# mentorlink/api/mentorship.py
"""
Mentorship Request API

Accept / reject / complete endpoints for mentorship requests. Transitions
are forward-only; terminal states never move again.
"""

import logging
from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session
from typing import List, Optional

from mentorlink.crud import mentorship as mentorship_crud
from mentorlink.crud.mentorship import InvalidTransitionError, REJECTION_REASONS
from mentorlink.database import get_db
from mentorlink.models.mentorship import RequestStatus
from mentorlink.schemas.mentorship import (
    AcceptRequest,
    MentorSessionView,
    MentorshipRequestCreate,
    MentorshipRequestView,
    RejectRequest,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/mentorship", tags=["mentorship"])


def _get_or_404(db: Session, request_id: str):
    request = mentorship_crud.get_request(db, request_id)
    if not request:
        raise HTTPException(status_code=404, detail="Mentorship request not found")
    return request


# ======================
# LISTING
# ======================
@router.get("/rejection-reasons", response_model=List[str])
def get_rejection_reasons():
    return list(REJECTION_REASONS)


@router.get("/requests/alumni/{alumni_id}", response_model=List[MentorshipRequestView])
def get_requests_for_alumni(alumni_id: str, db: Session = Depends(get_db)):
    return mentorship_crud.list_for_alumni(db, alumni_id)


@router.get("/requests/student/{student_id}", response_model=List[MentorshipRequestView])
def get_requests_for_student(student_id: str, db: Session = Depends(get_db)):
    return mentorship_crud.list_for_student(db, student_id)


@router.get("/requests/{request_id}", response_model=MentorshipRequestView)
def get_request(request_id: str, db: Session = Depends(get_db)):
    return _get_or_404(db, request_id)


@router.get("/sessions/alumni/{alumni_id}", response_model=List[MentorSessionView])
def get_completed_sessions(alumni_id: str, db: Session = Depends(get_db)):
    """Completed mentor sessions, newest first."""
    return mentorship_crud.list_completed_sessions(db, alumni_id)


# ======================
# CREATE / TRANSITIONS
# ======================
@router.post("/requests", response_model=MentorshipRequestView, status_code=201)
def create_request(payload: MentorshipRequestCreate, db: Session = Depends(get_db)):
    if payload.student_id == payload.alumni_id:
        raise HTTPException(status_code=400, detail="Cannot request mentorship from yourself")
    request = mentorship_crud.create_request(db, **payload.model_dump())
    db.commit()
    db.refresh(request)
    logger.info("Mentorship request created (request_id=%s, alumni_id=%s)", request.id, request.alumni_id)
    return request


@router.put("/requests/{request_id}/accept", response_model=MentorshipRequestView)
def accept_request(
    request_id: str,
    payload: Optional[AcceptRequest] = None,
    db: Session = Depends(get_db),
):
    request = _get_or_404(db, request_id)
    try:
        mentorship_crud.transition(
            db,
            request,
            RequestStatus.ACCEPTED,
            alumni_response=payload.alumni_response if payload else None,
        )
    except InvalidTransitionError as e:
        raise HTTPException(status_code=409, detail=str(e))
    db.commit()
    db.refresh(request)
    logger.info("Mentorship request accepted (request_id=%s)", request_id)
    return request


@router.put("/requests/{request_id}/reject", response_model=MentorshipRequestView)
def reject_request(request_id: str, payload: RejectRequest, db: Session = Depends(get_db)):
    if not payload.rejection_reason or not payload.rejection_reason.strip():
        raise HTTPException(status_code=400, detail="Rejection reason is required")

    request = _get_or_404(db, request_id)
    try:
        mentorship_crud.transition(
            db,
            request,
            RequestStatus.REJECTED,
            rejection_reason=payload.rejection_reason,
        )
    except InvalidTransitionError as e:
        raise HTTPException(status_code=409, detail=str(e))
    db.commit()
    db.refresh(request)
    logger.info("Mentorship request rejected (request_id=%s)", request_id)
    return request


@router.put("/requests/{request_id}/complete", response_model=MentorshipRequestView)
def complete_request(request_id: str, db: Session = Depends(get_db)):
    """
    Complete an accepted request and record the mentor session.

    Completing an already completed request returns it unchanged.
    """
    request = _get_or_404(db, request_id)
    try:
        mentorship_crud.complete_request(db, request)
    except InvalidTransitionError as e:
        raise HTTPException(status_code=409, detail=str(e))
    db.commit()
    db.refresh(request)
    logger.info("Mentorship request completed (request_id=%s)", request_id)
    return request
