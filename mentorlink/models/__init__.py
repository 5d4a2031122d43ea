# mentorlink/models/__init__.py
# Import models in dependency order
from .mentorship import (
    CallRecord,
    CallStatus,
    CallType,
    MentorSession,
    MentorshipRequest,
    RequestStatus,
)
from .video_call import VideoCallSession
from .payment import Payment, PaymentState

__all__ = [
    "MentorshipRequest",
    "CallRecord",
    "MentorSession",
    "VideoCallSession",
    "Payment",
    "RequestStatus",
    "CallType",
    "CallStatus",
    "PaymentState",
]
