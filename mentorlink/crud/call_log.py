# mentorlink/crud/call_log.py
"""
Session Log - CRUD Operations

Persistence of call segments against mentorship requests. The stored
total always equals the sum of completed segment durations.
"""

from sqlalchemy.orm import Session
from typing import List, Sequence
from datetime import datetime

from mentorlink import models
from mentorlink.models.mentorship import CallStatus, RequestStatus
from mentorlink.schemas.mentorship import CallRecordView
from mentorlink.schemas.session_log import CallLogEntry
from mentorlink.utils.clock import ensure_utc, new_id


def append_call_start(
    db: Session,
    request: models.MentorshipRequest,
    call_type: str,
    start_time: datetime,
) -> models.CallRecord:
    record = models.CallRecord(
        call_id=new_id(),
        call_type=call_type,
        start_time=ensure_utc(start_time),
        status=CallStatus.IN_PROGRESS.value,
    )
    request.call_history.append(record)
    db.add(record)
    db.flush()
    return record


def _matches(record: models.CallRecord, call_type: str, start_time: datetime) -> bool:
    return record.call_type == call_type and ensure_utc(record.start_time) == start_time


def close_call(
    db: Session,
    request: models.MentorshipRequest,
    call_type: str,
    start_time: datetime,
    end_time: datetime,
    duration: int,
) -> models.CallRecord:
    """
    Mark a call segment completed, creating it if its start was never logged.

    The in-progress segment is matched by call type and start time, else the
    newest open one is closed. Ending an already completed segment again
    returns it unchanged.

    Args:
        db: Database session
        request: Owning request
        call_type: "video" or "audio"
        start_time: Segment start as reported by the caller
        end_time: Segment end
        duration: Whole minutes, already rounded by the caller

    Returns:
        The completed CallRecord
    """
    start_time = ensure_utc(start_time)
    open_records = [
        r for r in request.call_history
        if r.status in (CallStatus.IN_PROGRESS.value, CallStatus.SCHEDULED.value)
    ]
    record = next((r for r in open_records if _matches(r, call_type, start_time)), None)
    if record is None:
        repeated = next(
            (
                r for r in request.call_history
                if r.status == CallStatus.COMPLETED.value and _matches(r, call_type, start_time)
            ),
            None,
        )
        if repeated is not None:
            return repeated
        record = open_records[-1] if open_records else None
    if record is None:
        record = models.CallRecord(
            call_id=new_id(),
            call_type=call_type,
            start_time=start_time,
        )
        db.add(record)
        request.call_history.append(record)

    record.call_type = call_type
    record.end_time = ensure_utc(end_time)
    record.duration = max(0, int(duration))
    record.status = CallStatus.COMPLETED.value

    recompute_totals(request)
    db.flush()
    return record


def recompute_totals(request: models.MentorshipRequest) -> None:
    completed = [r for r in request.call_history if r.status == CallStatus.COMPLETED.value]
    request.total_call_duration = sum(r.duration or 0 for r in completed)
    end_times = [ensure_utc(r.end_time) for r in completed if r.end_time is not None]
    if end_times:
        request.last_call_completed_at = max(end_times)


def build_log_entry(request: models.MentorshipRequest) -> CallLogEntry:
    return CallLogEntry(
        request_id=request.id,
        history=[CallRecordView.model_validate(r) for r in request.call_history],
        total_call_duration=request.total_call_duration or 0,
        last_call_completed_at=request.last_call_completed_at,
        completed=request.status == RequestStatus.COMPLETED.value,
    )


def logs_by_requests(db: Session, request_ids: Sequence[str]) -> List[CallLogEntry]:
    if not request_ids:
        return []
    requests = db.query(models.MentorshipRequest).filter(
        models.MentorshipRequest.id.in_(list(request_ids))
    ).all()
    return [build_log_entry(r) for r in requests]
