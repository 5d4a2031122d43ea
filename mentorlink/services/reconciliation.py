# mentorlink/services/reconciliation.py
"""
Reconciliation of call history from three sources.

The session log is the base. The fallback cache and optimistic records
only fill in call ids the session log does not know about. Totals are
always recomputed from the merged history, and completion never rolls
back once any source has asserted it.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Iterable, List, Optional

from mentorlink.models.mentorship import CallStatus, RequestStatus
from mentorlink.schemas.mentorship import CallRecordView, MentorshipRequestView
from mentorlink.schemas.session_log import CallLogEntry

# Later lifecycle stages win when the same call id appears twice.
_STATUS_RANK = {
    CallStatus.SCHEDULED: 0,
    CallStatus.IN_PROGRESS: 1,
    CallStatus.COMPLETED: 2,
    CallStatus.CANCELLED: 2,
}


@dataclass
class OptimisticUpdate:
    """Records and completion asserted locally but not yet confirmed by the session log."""
    records: List[CallRecordView] = field(default_factory=list)
    completed: bool = False

    def add(self, record: CallRecordView, *, completed: bool = False) -> None:
        self.records = [r for r in self.records if r.call_id != record.call_id] + [record]
        self.completed = self.completed or completed


def total_duration(history: Iterable[CallRecordView]) -> int:
    return sum(r.duration or 0 for r in history if r.status == CallStatus.COMPLETED)


def _last_completed_at(history: Iterable[CallRecordView]) -> Optional[datetime]:
    ends = [r.end_time for r in history if r.status == CallStatus.COMPLETED and r.end_time]
    return max(ends) if ends else None


def merge_history(*sources: Iterable[CallRecordView]) -> List[CallRecordView]:
    """
    Union of call records, deduplicated by call id.

    Earlier sources take precedence unless a later one holds the same call
    at a further lifecycle stage (an in-progress ledger row closed locally).
    """
    merged: Dict[str, CallRecordView] = {}
    for source in sources:
        for record in source or ():
            current = merged.get(record.call_id)
            if current is None or _STATUS_RANK[record.status] > _STATUS_RANK[current.status]:
                merged[record.call_id] = record
    return sorted(merged.values(), key=lambda r: r.start_time)


def append_to_log(entry: Optional[CallLogEntry], request_id: str, record: CallRecordView, *, completed: bool) -> CallLogEntry:
    """Fold a finished call into a fallback cache entry."""
    history = merge_history(entry.history if entry else [], [record])
    return CallLogEntry(
        request_id=request_id,
        history=history,
        total_call_duration=total_duration(history),
        last_call_completed_at=_last_completed_at(history),
        completed=(entry.completed if entry else False) or completed,
    )


def merge(
    base: MentorshipRequestView,
    *,
    ledger: Optional[CallLogEntry] = None,
    fallback: Optional[CallLogEntry] = None,
    optimistic: Optional[OptimisticUpdate] = None,
    previous: Optional[MentorshipRequestView] = None,
) -> MentorshipRequestView:
    """
    Produce the single view of a request from every known source.

    Args:
        base: Request as served by the mentorship service (or last known)
        ledger: Session log entry for the request, if the read succeeded
        fallback: Device-local fallback cache entry
        optimistic: Local records and completion not yet acknowledged
        previous: The view produced by the previous merge

    Returns:
        Merged MentorshipRequestView
    """
    ledger_history = list(ledger.history) if ledger and ledger.history else list(base.call_history)

    history = merge_history(
        ledger_history,
        fallback.history if fallback else [],
        optimistic.records if optimistic else [],
        previous.call_history if previous else [],
    )

    completion_asserted = any((
        base.status == RequestStatus.COMPLETED,
        bool(ledger and ledger.completed),
        bool(fallback and fallback.completed),
        bool(optimistic and optimistic.completed),
        bool(previous and previous.status == RequestStatus.COMPLETED),
    ))

    status = base.status
    if completion_asserted and status != RequestStatus.REJECTED:
        status = RequestStatus.COMPLETED

    candidates = [
        _last_completed_at(history),
        ledger.last_call_completed_at if ledger else None,
        fallback.last_call_completed_at if fallback else None,
        base.last_call_completed_at,
    ]
    known = [c for c in candidates if c is not None]

    return base.model_copy(
        update={
            "status": status,
            "call_history": history,
            "total_call_duration": total_duration(history),
            "last_call_completed_at": max(known) if known else None,
        }
    )
