from pydantic import BaseModel
from typing import Literal, Optional

from mentorlink.utils.clock import UtcDatetime


class PresenceStartIn(BaseModel):
    request_id: str
    student_id: str
    alumni_id: str
    channel_name: str
    attendee_link: str


class PresenceChangeIn(BaseModel):
    request_id: str
    user_type: Literal["student", "alumni"]


class PresenceEndIn(BaseModel):
    request_id: str


class PresenceStatus(BaseModel):
    is_active: bool = False
    is_student_active: bool = False
    is_alumni_active: bool = False
    session_started_at: Optional[UtcDatetime] = None
    attendee_link: Optional[str] = None
    channel_name: Optional[str] = None
