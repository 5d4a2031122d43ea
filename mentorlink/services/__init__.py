"""Client-side engine for mentorship call sessions."""

from .errors import (
    CompletionBlocked,
    InvalidTransition,
    LifecycleError,
    PaymentRequired,
    RemoteServiceError,
)
from .lifecycle import CompletionGate, ControllerRegistry, LifecycleController, Role

__all__ = [
    "CompletionBlocked",
    "InvalidTransition",
    "LifecycleError",
    "PaymentRequired",
    "RemoteServiceError",
    "CompletionGate",
    "ControllerRegistry",
    "LifecycleController",
    "Role",
]
