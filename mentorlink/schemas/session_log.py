from pydantic import BaseModel, Field
from typing import List, Optional

from mentorlink.models.mentorship import CallType, RequestStatus
from mentorlink.schemas.mentorship import CallRecordView
from mentorlink.utils.clock import UtcDatetime


class CallStartIn(BaseModel):
    request_id: str
    call_type: CallType
    start_time: UtcDatetime


class CallStartOut(BaseModel):
    call_id: str


class CallEndIn(BaseModel):
    request_id: str
    call_type: CallType
    start_time: UtcDatetime
    end_time: UtcDatetime
    duration: int = Field(ge=0)


class RequestUpdated(BaseModel):
    status: RequestStatus


class CallEndOut(BaseModel):
    call_id: str
    request_updated: RequestUpdated


class CallLogEntry(BaseModel):
    """Call history for one request, as served by the session log or kept in the fallback cache."""
    request_id: str
    history: List[CallRecordView] = Field(default_factory=list)
    total_call_duration: int = 0
    last_call_completed_at: Optional[UtcDatetime] = None
    completed: bool = False


class CallLogsOut(BaseModel):
    logs: List[CallLogEntry] = Field(default_factory=list)
