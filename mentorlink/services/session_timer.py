# mentorlink/services/session_timer.py
"""
Session timer for call segments.

The start time of the running segment is kept in memory and mirrored to
the fallback store, so a restart resumes the elapsed time instead of
resetting it.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Dict, List, Optional

from mentorlink.config import settings
from mentorlink.services.fallback_store import FallbackStore
from mentorlink.utils.clock import ensure_utc, utcnow

logger = logging.getLogger(__name__)

TIMER_PREFIX = "session_timer:"


@dataclass(frozen=True)
class TimerHandle:
    request_id: str
    started_at: datetime

    def elapsed_minutes(self, now: datetime) -> float:
        return max(0.0, (now - self.started_at).total_seconds() / 60)


class SessionTimer:
    def __init__(
        self,
        store: FallbackStore,
        *,
        clock: Callable[[], datetime] = utcnow,
        minimum_minutes: Optional[float] = None,
    ):
        self._store = store
        self._clock = clock
        self.minimum_minutes = (
            settings.MINIMUM_SESSION_MINUTES if minimum_minutes is None else minimum_minutes
        )
        self._timers: Dict[str, TimerHandle] = {}

    def _persist(self, handle: TimerHandle) -> None:
        self._store.put(TIMER_PREFIX + handle.request_id, {"started_at": handle.started_at.isoformat()})

    def _load(self, request_id: str) -> Optional[TimerHandle]:
        raw = self._store.get(TIMER_PREFIX + request_id)
        if not raw or not raw.get("started_at"):
            return None
        try:
            started_at = ensure_utc(datetime.fromisoformat(raw["started_at"]))
        except (TypeError, ValueError):
            logger.warning("Ignoring unreadable timer state (request_id=%s)", request_id)
            return None
        return TimerHandle(request_id, started_at)

    def start(self, request_id: str) -> TimerHandle:
        handle = TimerHandle(request_id, self._clock())
        self._timers[request_id] = handle
        self._persist(handle)
        logger.info("Session timer started (request_id=%s)", request_id)
        return handle

    def get(self, request_id: str) -> Optional[TimerHandle]:
        return self._timers.get(request_id)

    def restore(self, request_id: str, started_at: Optional[datetime] = None) -> Optional[TimerHandle]:
        """
        Resume a timer without resetting it.

        Precedence: the in-memory handle, then the persisted start time,
        then ``started_at`` reported by the presence service. Calling this
        repeatedly returns the same handle.
        """
        handle = self._timers.get(request_id) or self._load(request_id)
        if handle is None and started_at is not None:
            handle = TimerHandle(request_id, ensure_utc(started_at))
            self._persist(handle)
            logger.info("Session timer restored from presence (request_id=%s)", request_id)
        if handle is not None:
            self._timers[request_id] = handle
        return handle

    def restore_all(self) -> List[TimerHandle]:
        handles = []
        for key in self._store.items(TIMER_PREFIX):
            handle = self.restore(key[len(TIMER_PREFIX):])
            if handle is not None:
                handles.append(handle)
        return handles

    def elapsed_minutes(self, request_id: str) -> float:
        handle = self._timers.get(request_id)
        if handle is None:
            return 0.0
        return handle.elapsed_minutes(self._clock())

    def remaining(self, request_id: str, minimum_minutes: Optional[float] = None) -> int:
        minimum = self.minimum_minutes if minimum_minutes is None else minimum_minutes
        return max(0, math.ceil(minimum - self.elapsed_minutes(request_id)))

    def has_minimum(self, request_id: str, minimum_minutes: Optional[float] = None) -> bool:
        minimum = self.minimum_minutes if minimum_minutes is None else minimum_minutes
        return self.elapsed_minutes(request_id) >= minimum

    def clear(self, request_id: str) -> None:
        self._timers.pop(request_id, None)
        self._store.delete(TIMER_PREFIX + request_id)
