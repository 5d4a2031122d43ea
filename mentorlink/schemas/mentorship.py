from pydantic import BaseModel, ConfigDict, Field
from typing import List, Optional

from mentorlink.models.mentorship import CallStatus, CallType, RequestStatus
from mentorlink.utils.clock import UtcDatetime

# ======================
# CALL RECORDS
# ======================

class CallRecordView(BaseModel):
    call_id: str
    call_type: CallType
    start_time: UtcDatetime
    end_time: Optional[UtcDatetime] = None
    duration: Optional[int] = None  # minutes
    status: CallStatus

    model_config = ConfigDict(from_attributes=True)

# ======================
# REQUEST MODELS
# ======================

class MentorshipRequestCreate(BaseModel):
    student_id: str
    alumni_id: str
    title: str = Field(min_length=1, max_length=200)
    description: str = ""
    category: str = "career_guidance"
    priority: str = "medium"
    skills_needed: List[str] = Field(default_factory=list)
    expected_duration: Optional[str] = None
    preferred_communication: str = "video_call"
    student_message: Optional[str] = Field(default=None, max_length=1000)


class RejectRequest(BaseModel):
    rejection_reason: str


class AcceptRequest(BaseModel):
    alumni_response: Optional[str] = Field(default=None, max_length=1000)

# ======================
# RESPONSE MODELS
# ======================

class MentorshipRequestView(BaseModel):
    """A mentorship request together with its call history."""
    id: str
    student_id: str
    alumni_id: str
    title: str = ""
    description: str = ""
    category: str = "career_guidance"
    priority: str = "medium"
    skills_needed: List[str] = Field(default_factory=list)
    student_message: Optional[str] = None
    alumni_response: Optional[str] = None
    status: RequestStatus
    rejection_reason: Optional[str] = None
    call_history: List[CallRecordView] = Field(default_factory=list)
    total_call_duration: int = 0
    last_call_completed_at: Optional[UtcDatetime] = None
    created_at: Optional[UtcDatetime] = None
    updated_at: Optional[UtcDatetime] = None

    model_config = ConfigDict(from_attributes=True)


class MentorSessionView(BaseModel):
    id: int
    request_id: str
    student_id: str
    alumni_id: str
    session_title: str
    session_description: str
    category: str
    skills_needed: List[str] = Field(default_factory=list)
    student_message: Optional[str] = None
    session_done: bool
    completed_at: Optional[UtcDatetime] = None

    model_config = ConfigDict(from_attributes=True)
