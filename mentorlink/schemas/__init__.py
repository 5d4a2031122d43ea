# mentorlink/schemas/__init__.py

# Mentorship request schemas
from .mentorship import (
    AcceptRequest,
    CallRecordView,
    MentorSessionView,
    MentorshipRequestCreate,
    MentorshipRequestView,
    RejectRequest,
)

# Session log schemas
from .session_log import (
    CallEndIn,
    CallEndOut,
    CallLogEntry,
    CallLogsOut,
    CallStartIn,
    CallStartOut,
    RequestUpdated,
)

# Presence and payment schemas
from .video_call import PresenceChangeIn, PresenceEndIn, PresenceStartIn, PresenceStatus
from .payment import PaymentStatusOut, PaymentVerifyOut

__all__ = [
    "AcceptRequest",
    "CallRecordView",
    "MentorSessionView",
    "MentorshipRequestCreate",
    "MentorshipRequestView",
    "RejectRequest",
    "CallEndIn",
    "CallEndOut",
    "CallLogEntry",
    "CallLogsOut",
    "CallStartIn",
    "CallStartOut",
    "RequestUpdated",
    "PresenceChangeIn",
    "PresenceEndIn",
    "PresenceStartIn",
    "PresenceStatus",
    "PaymentStatusOut",
    "PaymentVerifyOut",
]
