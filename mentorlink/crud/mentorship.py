# mentorlink/crud/mentorship.py
"""
Mentorship Requests - CRUD Operations

Database operations for mentorship requests, including the status
state machine shared by every completion path.
"""

from sqlalchemy.orm import Session
from typing import Dict, FrozenSet, List, Optional
from datetime import datetime

from mentorlink import models
from mentorlink.models.mentorship import RequestStatus
from mentorlink.utils.clock import utcnow


REJECTION_REASONS = (
    "Not available for this type of mentorship",
    "Schedule conflicts",
    "Outside my area of expertise",
    "Too many current mentees",
    "Personal reasons",
    "Other",
)

# Forward-only transitions; rejected and completed are terminal.
ALLOWED_TRANSITIONS: Dict[str, FrozenSet[str]] = {
    RequestStatus.PENDING.value: frozenset({RequestStatus.ACCEPTED.value, RequestStatus.REJECTED.value}),
    RequestStatus.ACCEPTED.value: frozenset({RequestStatus.COMPLETED.value}),
    RequestStatus.REJECTED.value: frozenset(),
    RequestStatus.COMPLETED.value: frozenset(),
}


class InvalidTransitionError(ValueError):
    """Raised when a request would move backward or out of a terminal state."""

    def __init__(self, current: str, target: str):
        super().__init__(f"Cannot move mentorship request from '{current}' to '{target}'")
        self.current = current
        self.target = target


def can_transition(current: str, target: str) -> bool:
    return target in ALLOWED_TRANSITIONS.get(current, frozenset())


# =====================================
# QUERIES
# =====================================

def get_request(db: Session, request_id: str) -> Optional[models.MentorshipRequest]:
    return db.query(models.MentorshipRequest).filter(
        models.MentorshipRequest.id == request_id
    ).first()


def list_for_alumni(db: Session, alumni_id: str) -> List[models.MentorshipRequest]:
    return db.query(models.MentorshipRequest).filter(
        models.MentorshipRequest.alumni_id == alumni_id
    ).order_by(models.MentorshipRequest.created_at.desc(), models.MentorshipRequest.id).all()


def list_for_student(db: Session, student_id: str) -> List[models.MentorshipRequest]:
    return db.query(models.MentorshipRequest).filter(
        models.MentorshipRequest.student_id == student_id
    ).order_by(models.MentorshipRequest.created_at.desc(), models.MentorshipRequest.id).all()


def list_completed_sessions(db: Session, alumni_id: str) -> List[models.MentorSession]:
    return db.query(models.MentorSession).filter(
        models.MentorSession.alumni_id == alumni_id,
        models.MentorSession.session_done.is_(True),
    ).order_by(models.MentorSession.completed_at.desc()).all()


# =====================================
# MUTATIONS
# =====================================

def create_request(db: Session, **fields) -> models.MentorshipRequest:
    request = models.MentorshipRequest(status=RequestStatus.PENDING.value, **fields)
    db.add(request)
    db.flush()
    return request


def transition(
    db: Session,
    request: models.MentorshipRequest,
    target: RequestStatus,
    *,
    rejection_reason: Optional[str] = None,
    alumni_response: Optional[str] = None,
) -> models.MentorshipRequest:
    """
    Move a request to a new status.

    Args:
        db: Database session
        request: Request to update
        target: New status
        rejection_reason: Required (non-blank) when target is rejected

    Raises:
        InvalidTransitionError: If the move is not a forward transition
        ValueError: If a rejection has no reason
    """
    if not can_transition(request.status, target.value):
        raise InvalidTransitionError(request.status, target.value)

    if target is RequestStatus.REJECTED:
        reason = (rejection_reason or "").strip()
        if not reason:
            raise ValueError("Rejection reason is required")
        request.rejection_reason = reason

    if alumni_response:
        request.alumni_response = alumni_response

    request.status = target.value
    request.updated_at = utcnow()
    db.flush()
    return request


def complete_request(
    db: Session,
    request: models.MentorshipRequest,
    completed_at: Optional[datetime] = None,
) -> models.MentorSession:
    """
    Complete an accepted request and write its MentorSession record.

    Idempotent for requests that are already completed.
    """
    if request.status != RequestStatus.COMPLETED.value:
        transition(db, request, RequestStatus.COMPLETED)

    if request.mentor_session is not None:
        return request.mentor_session

    mentor_session = models.MentorSession(
        request_id=request.id,
        student_id=request.student_id,
        alumni_id=request.alumni_id,
        session_title=request.title,
        session_description=request.description or "",
        category=request.category,
        skills_needed=list(request.skills_needed or []),
        student_message=request.student_message,
        session_done=True,
        completed_at=completed_at or utcnow(),
    )
    db.add(mentor_session)
    db.flush()
    request.mentor_session = mentor_session
    return mentor_session
