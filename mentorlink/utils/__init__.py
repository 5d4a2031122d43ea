__all__ = [
    "utcnow",
    "ensure_utc",
    "UtcDatetime",
    "new_id",
]


def __getattr__(name):
    if name in {"utcnow", "ensure_utc", "UtcDatetime", "new_id"}:
        from . import clock as _clock
        return getattr(_clock, name)
    raise AttributeError(f"module 'mentorlink.utils' has no attribute '{name}'")
