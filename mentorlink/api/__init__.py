# mentorlink/api/__init__.py
# This file makes the api directory a Python package.

from . import mentorship
from . import payment
from . import session_log
from . import video_call

__all__ = [
    "mentorship",
    "session_log",
    "video_call",
    "payment",
]
