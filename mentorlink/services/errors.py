# mentorlink/services/errors.py
from typing import Optional


class RemoteServiceError(Exception):
    """A collaborator service was unreachable or answered with an error."""

    def __init__(self, message: str, *, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class LifecycleError(ValueError):
    """A lifecycle action was refused locally; the message is user-facing."""


class InvalidTransition(LifecycleError):
    pass


class PaymentRequired(LifecycleError):
    def __init__(self, message: str = "Payment is required before starting a call"):
        super().__init__(message)


class CompletionBlocked(LifecycleError):
    def __init__(self, message: str, *, remaining_minutes: int = 0):
        super().__init__(message)
        self.remaining_minutes = remaining_minutes
