# mentorlink/services/status_poller.py
"""
Background polling of call presence, and the per-call window watch.

Both are cancelable asyncio tasks. A poll tick never overlaps the
previous one; a window watch is bounded by a hard maximum duration.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from typing import Awaitable, Callable, Dict, Iterable, Optional, Set, Union

from mentorlink.config import settings
from mentorlink.schemas.video_call import PresenceStatus
from mentorlink.services.clients import PresenceClient
from mentorlink.services.errors import RemoteServiceError
from mentorlink.services.session_timer import SessionTimer

logger = logging.getLogger(__name__)

Probe = Callable[[], Union[bool, Awaitable[bool]]]


class PeriodicTask:
    """Runs ``callback`` every ``interval`` seconds until stopped.

    A tick still in flight when the next one is due makes that next tick
    a no-op.
    """

    def __init__(self, interval: float, callback: Callable[[], Awaitable[None]], *, name: str = "periodic"):
        self.interval = interval
        self.name = name
        self.skipped_ticks = 0
        self._callback = callback
        self._stop = asyncio.Event()
        self._loop_task: Optional[asyncio.Task] = None
        self._tick_task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._loop_task is not None and not self._loop_task.done()

    def start(self) -> None:
        if self.running:
            return
        self._stop.clear()
        self._loop_task = asyncio.create_task(self._run(), name=self.name)

    async def _tick(self) -> None:
        try:
            await self._callback()
        except Exception:
            logger.exception("Periodic task %s tick failed", self.name)

    async def _run(self) -> None:
        while not self._stop.is_set():
            if self._tick_task is not None and not self._tick_task.done():
                self.skipped_ticks += 1
                logger.debug("Periodic task %s skipped a tick (previous still running)", self.name)
            else:
                self._tick_task = asyncio.create_task(self._tick())
            try:
                await asyncio.wait_for(self._stop.wait(), timeout=self.interval)
            except asyncio.TimeoutError:
                pass

    async def stop(self) -> None:
        self._stop.set()
        for task in (self._loop_task, self._tick_task):
            if task is not None and not task.done():
                task.cancel()
        for task in (self._loop_task, self._tick_task):
            if task is not None:
                try:
                    await task
                except asyncio.CancelledError:
                    pass
        self._loop_task = None
        self._tick_task = None


class StatusPoller:
    """
    Polls presence for every request the viewer still cares about.

    When the presence service reports an active session whose start the
    local timer has not seen, the timer is restored from it.
    """

    def __init__(
        self,
        presence: PresenceClient,
        timer: SessionTimer,
        request_ids: Callable[[], Iterable[str]],
        *,
        interval: Optional[float] = None,
    ):
        self._presence = presence
        self._timer = timer
        self._request_ids = request_ids
        self._state: Dict[str, PresenceStatus] = {}
        self._in_flight: Set[str] = set()
        self._task = PeriodicTask(
            settings.STATUS_POLL_INTERVAL_SECONDS if interval is None else interval,
            self.poll_once,
            name="status-poller",
        )

    @property
    def running(self) -> bool:
        return self._task.running

    def start(self) -> None:
        self._task.start()

    async def stop(self) -> None:
        await self._task.stop()

    def presence(self, request_id: str) -> Optional[PresenceStatus]:
        return self._state.get(request_id)

    def forget(self, request_id: str) -> None:
        self._state.pop(request_id, None)

    async def poll_once(self) -> None:
        request_ids = list(dict.fromkeys(self._request_ids()))
        if request_ids:
            await asyncio.gather(*(self.poll_request(rid) for rid in request_ids))

    async def poll_request(self, request_id: str) -> Optional[PresenceStatus]:
        if request_id in self._in_flight:
            return self._state.get(request_id)
        self._in_flight.add(request_id)
        try:
            status = await self._presence.status(request_id)
        except RemoteServiceError as exc:
            logger.warning("Presence check failed (request_id=%s): %s", request_id, exc)
            return self._state.get(request_id)
        finally:
            self._in_flight.discard(request_id)

        self._state[request_id] = status
        if status.is_active and status.session_started_at and self._timer.get(request_id) is None:
            self._timer.restore(request_id, started_at=status.session_started_at)
        return status


class CallWindowWatch:
    """
    Watches one active call until its window closes.

    Ends on the first of: an explicit session-end event
    (``notify_closed``), the probe reporting the window closed, or the hard
    ``max_duration`` bound. Only the first two invoke ``on_closed``.
    """

    CLOSED = "closed"
    TIMED_OUT = "timed_out"
    CANCELLED = "cancelled"

    def __init__(
        self,
        request_id: str,
        on_closed: Callable[[], Awaitable[object]],
        *,
        probe: Optional[Probe] = None,
        probe_interval: Optional[float] = None,
        max_duration: Optional[float] = None,
    ):
        self.request_id = request_id
        self.outcome: Optional[str] = None
        self._on_closed = on_closed
        self._probe = probe
        self._probe_interval = (
            settings.CALL_WINDOW_PROBE_SECONDS if probe_interval is None else probe_interval
        )
        self._max_duration = (
            settings.CALL_WINDOW_MAX_SECONDS if max_duration is None else max_duration
        )
        self._closed = asyncio.Event()
        self._task: Optional[asyncio.Task] = None

    @property
    def active(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self._task is None:
            self._task = asyncio.create_task(self._run(), name=f"call-window-{self.request_id}")

    def notify_closed(self) -> None:
        self._closed.set()

    async def _probe_closed(self) -> bool:
        if self._probe is None:
            return False
        result = self._probe()
        if inspect.isawaitable(result):
            result = await result
        return bool(result)

    async def _wait_for_close(self) -> None:
        while True:
            try:
                await asyncio.wait_for(self._closed.wait(), timeout=self._probe_interval)
                return
            except asyncio.TimeoutError:
                if await self._probe_closed():
                    return

    async def _run(self) -> None:
        try:
            try:
                async with asyncio.timeout(self._max_duration):
                    await self._wait_for_close()
            except TimeoutError:
                self.outcome = self.TIMED_OUT
                logger.warning(
                    "Call window watch gave up after %ss (request_id=%s)",
                    self._max_duration,
                    self.request_id,
                )
                return

            self.outcome = self.CLOSED
            callback = self._on_closed
            if callback is not None:
                await callback()
        except asyncio.CancelledError:
            self.outcome = self.outcome or self.CANCELLED
            raise
        finally:
            self._on_closed = None
            self._probe = None

    async def wait(self) -> Optional[str]:
        if self._task is not None:
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        return self.outcome

    async def cancel(self) -> None:
        task = self._task
        if task is None or task.done() or task is asyncio.current_task():
            # Cancelling from inside on_closed would abort the callback itself.
            self._on_closed = None
            self._probe = None
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        self.outcome = self.outcome or self.CANCELLED
        self._on_closed = None
        self._probe = None
