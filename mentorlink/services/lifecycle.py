# mentorlink/services/lifecycle.py
"""
Lifecycle controller for mentorship requests.

One controller per (viewer, request) pair drives accept / reject, the
call sub-flow and completion, and exposes the reconciled view. Remote
write failures degrade to the fallback cache and optimistic records;
only user-actionable refusals are raised (see services.errors).
"""

from __future__ import annotations

import asyncio
import enum
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Dict, List, Optional, Tuple

from mentorlink.config import settings
from mentorlink.models.mentorship import CallType, RequestStatus
from mentorlink.schemas.mentorship import CallRecordView, MentorshipRequestView
from mentorlink.schemas.session_log import CallLogEntry
from mentorlink.schemas.video_call import PresenceStatus
from mentorlink.services import reconciliation
from mentorlink.services.call_ledger import CallLedger
from mentorlink.services.clients import MentorshipClient, PresenceClient, ServiceClients
from mentorlink.services.errors import (
    CompletionBlocked,
    InvalidTransition,
    PaymentRequired,
    RemoteServiceError,
)
from mentorlink.services.fallback_store import FallbackStore
from mentorlink.services.payment_gate import PaymentGate
from mentorlink.services.reconciliation import OptimisticUpdate
from mentorlink.services.session_timer import SessionTimer
from mentorlink.services.status_poller import CallWindowWatch, Probe, StatusPoller
from mentorlink.utils.clock import ensure_utc, utcnow

logger = logging.getLogger(__name__)

ACTIVE_CALL_PREFIX = "active_call:"
# Call ends and completions the services never acknowledged, replayed on refresh.
PENDING_SYNC_PREFIX = "pending_sync:"


class Role(str, enum.Enum):
    STUDENT = "student"
    ALUMNI = "alumni"

    @property
    def counterpart(self) -> "Role":
        return Role.ALUMNI if self is Role.STUDENT else Role.STUDENT


@dataclass
class ActiveCall:
    request_id: str
    call_type: CallType
    started_at: datetime
    channel_name: str
    attendee_link: str
    call_id: Optional[str] = None

    def to_json(self) -> dict:
        return {
            "request_id": self.request_id,
            "call_type": self.call_type.value,
            "started_at": self.started_at.isoformat(),
            "channel_name": self.channel_name,
            "attendee_link": self.attendee_link,
            "call_id": self.call_id,
        }

    @classmethod
    def from_json(cls, data: dict) -> "ActiveCall":
        return cls(
            request_id=data["request_id"],
            call_type=CallType(data["call_type"]),
            started_at=ensure_utc(datetime.fromisoformat(data["started_at"])),
            channel_name=data.get("channel_name", ""),
            attendee_link=data.get("attendee_link", ""),
            call_id=data.get("call_id"),
        )


@dataclass
class CompletionGate:
    """Whether the "mark completed" action is shown, and whether it is enabled."""
    visible: bool
    allowed: bool
    remaining_minutes: int
    reason: Optional[str] = None


def resolve_rejection_reason(reason: Optional[str], custom_reason: Optional[str] = None) -> str:
    reason = (reason or "").strip()
    if reason == "Other" and custom_reason and custom_reason.strip():
        return custom_reason.strip()
    return reason


class LifecycleController:
    def __init__(
        self,
        request_id: str,
        viewer_id: str,
        role: Role,
        *,
        mentorship: MentorshipClient,
        presence: PresenceClient,
        ledger: CallLedger,
        payment_gate: PaymentGate,
        timer: SessionTimer,
        store: FallbackStore,
        poller: Optional[StatusPoller] = None,
        clock: Callable[[], datetime] = utcnow,
        minimum_minutes: Optional[float] = None,
        call_room_base_url: Optional[str] = None,
        probe_interval: Optional[float] = None,
        watch_max_duration: Optional[float] = None,
    ):
        self.request_id = request_id
        self.viewer_id = viewer_id
        self.role = Role(role)
        self._mentorship = mentorship
        self._presence = presence
        self._ledger = ledger
        self._payment_gate = payment_gate
        self._timer = timer
        self._store = store
        self._poller = poller
        self._clock = clock
        self.minimum_minutes = (
            settings.MINIMUM_SESSION_MINUTES if minimum_minutes is None else minimum_minutes
        )
        self._call_room_base_url = (call_room_base_url or settings.CALL_ROOM_BASE_URL).rstrip("/")
        self._probe_interval = probe_interval
        self._watch_max_duration = watch_max_duration

        self._view: Optional[MentorshipRequestView] = None
        self._optimistic = OptimisticUpdate()
        self._active_call: Optional[ActiveCall] = self._load_active_call()
        self._watch: Optional[CallWindowWatch] = None
        self._closed = False
        self._call_lock = asyncio.Lock()
        self._sync_lock = asyncio.Lock()

    # ======================
    # STATE
    # ======================

    @property
    def view(self) -> Optional[MentorshipRequestView]:
        return self._view

    @property
    def status(self) -> Optional[RequestStatus]:
        return self._view.status if self._view else None

    @property
    def active_call(self) -> Optional[ActiveCall]:
        return self._active_call

    @property
    def watch(self) -> Optional[CallWindowWatch]:
        return self._watch

    def _load_active_call(self) -> Optional[ActiveCall]:
        raw = self._store.get(ACTIVE_CALL_PREFIX + self.request_id)
        if not raw:
            return None
        try:
            return ActiveCall.from_json(raw)
        except (KeyError, TypeError, ValueError):
            logger.warning("Ignoring unreadable active call state (request_id=%s)", self.request_id)
            return None

    def _clear_active_call(self) -> None:
        self._active_call = None
        self._store.delete(ACTIVE_CALL_PREFIX + self.request_id)

    def _set_view(self, view: MentorshipRequestView) -> MentorshipRequestView:
        self._view = view
        self._store.put_request_view(view)
        return view

    # ======================
    # MERGED VIEW
    # ======================

    def apply_sources(
        self,
        base: Optional[MentorshipRequestView],
        ledger_entry: Optional[CallLogEntry] = None,
    ) -> MentorshipRequestView:
        """Merge whatever sources answered with local state and publish the result."""
        base = base or self._view or self._store.get_request_view(self.request_id)
        if base is None:
            raise RemoteServiceError(f"Mentorship request {self.request_id} is not known locally")
        merged = reconciliation.merge(
            base,
            ledger=ledger_entry,
            fallback=self._store.get_call_log(self.request_id),
            optimistic=self._optimistic,
            previous=self._view,
        )
        return self._set_view(merged)

    async def _read_remote(self) -> Tuple[Optional[MentorshipRequestView], Optional[CallLogEntry], bool]:
        base = None
        try:
            base = await self._ledger.fetch_request(self.request_id)
        except RemoteServiceError as exc:
            logger.warning("Request read failed, using last known state (request_id=%s): %s", self.request_id, exc)

        ledger_entry = None
        log_read = False
        try:
            ledger_entry = (await self._ledger.fetch_logs([self.request_id])).get(self.request_id)
            log_read = True
        except RemoteServiceError as exc:
            logger.warning("Session log read failed (request_id=%s): %s", self.request_id, exc)
        return base, ledger_entry, log_read

    async def refresh(self) -> MentorshipRequestView:
        """
        Re-read the services and merge.

        When the session log answers, anything still queued locally is
        replayed first and the services are read again.
        """
        base, ledger_entry, log_read = await self._read_remote()
        if log_read and await self._replay_pending():
            base, ledger_entry, _ = await self._read_remote()
        return self.apply_sources(base, ledger_entry)

    # ======================
    # PENDING SYNC
    # ======================

    def _pending_sync(self) -> dict:
        pending = self._store.get(PENDING_SYNC_PREFIX + self.request_id) or {}
        return {"records": list(pending.get("records", [])), "complete": bool(pending.get("complete", False))}

    def _save_pending_sync(self, pending: dict) -> None:
        if pending["records"] or pending["complete"]:
            self._store.put(PENDING_SYNC_PREFIX + self.request_id, pending)
        else:
            self._store.delete(PENDING_SYNC_PREFIX + self.request_id)

    def _queue_sync(self, *, record: Optional[CallRecordView] = None, complete: bool = False) -> None:
        pending = self._pending_sync()
        if record is not None:
            pending["records"] = [
                r for r in pending["records"] if r.get("call_id") != record.call_id
            ] + [record.model_dump(mode="json")]
        pending["complete"] = pending["complete"] or complete
        self._save_pending_sync(pending)

    def _adopt_synced_record(self, local_id: str, record: CallRecordView) -> None:
        """Swap a locally synthesized record for the copy the session log stored."""
        def swap(history):
            return [record if r.call_id == local_id else r for r in history]

        self._optimistic.records = swap(self._optimistic.records)
        entry = self._store.get_call_log(self.request_id)
        if entry is not None:
            self._store.put_call_log(entry.model_copy(update={"history": swap(entry.history)}))
        view = self._view or self._store.get_request_view(self.request_id)
        if view is not None:
            self._set_view(view.model_copy(update={"call_history": swap(view.call_history)}))

    async def _replay_pending(self) -> bool:
        """Resubmit queued call ends, then a queued completion. True if anything was accepted."""
        async with self._sync_lock:
            pending = self._pending_sync()
            if not pending["records"] and not pending["complete"]:
                return False

            synced = False
            remaining = []
            for raw in pending["records"]:
                record = CallRecordView.model_validate(raw)
                stored = await self._ledger.resubmit_end(self.request_id, record)
                if stored is None:
                    remaining.append(raw)
                    continue
                self._adopt_synced_record(record.call_id, stored)
                synced = True
            pending["records"] = remaining

            if pending["complete"] and not remaining:
                try:
                    await self._ledger.mark_completed(self.request_id)
                    pending["complete"] = False
                    synced = True
                except RemoteServiceError as exc:
                    logger.warning("Queued completion not accepted (request_id=%s): %s", self.request_id, exc)
                    if exc.status_code == 409:
                        # The request moved to a state that can no longer complete.
                        pending["complete"] = False

            self._save_pending_sync(pending)
            return synced

    async def get_merged_view(self, *, refresh: bool = False) -> MentorshipRequestView:
        if refresh or self._view is None:
            return await self.refresh()
        return self._view

    # ======================
    # REQUEST TRANSITIONS
    # ======================

    async def accept(self, alumni_response: Optional[str] = None) -> MentorshipRequestView:
        view = await self.get_merged_view()
        if view.status != RequestStatus.PENDING:
            raise InvalidTransition(f"Only pending requests can be accepted (status is {view.status.value})")
        updated = await self._mentorship.accept(self.request_id, alumni_response)
        logger.info("Request accepted (request_id=%s, viewer_id=%s)", self.request_id, self.viewer_id)
        return self.apply_sources(updated)

    async def reject(self, reason: str, custom_reason: Optional[str] = None) -> MentorshipRequestView:
        resolved = resolve_rejection_reason(reason, custom_reason)
        if not resolved or resolved == "Other":
            raise InvalidTransition("A rejection reason is required")
        view = await self.get_merged_view()
        if view.status != RequestStatus.PENDING:
            raise InvalidTransition(f"Only pending requests can be rejected (status is {view.status.value})")
        updated = await self._mentorship.reject(self.request_id, resolved)
        logger.info("Request rejected (request_id=%s, viewer_id=%s)", self.request_id, self.viewer_id)
        return self.apply_sources(updated)

    # ======================
    # CALL SUB-FLOW
    # ======================

    async def start_call(self, call_type: CallType, *, window_probe: Optional[Probe] = None) -> ActiveCall:
        """
        Start a call segment.

        Payment is checked against the payment service here, at the moment
        of the action, not taken from any earlier render-time answer.
        """
        async with self._call_lock:
            return await self._start_call(call_type, window_probe)

    async def _start_call(self, call_type: CallType, window_probe: Optional[Probe]) -> ActiveCall:
        call_type = CallType(call_type)
        view = await self.get_merged_view()
        if view.status != RequestStatus.ACCEPTED:
            raise InvalidTransition(f"Calls can only be started on accepted requests (status is {view.status.value})")
        if self._active_call is not None:
            return self._active_call

        student_id, alumni_id = view.student_id, view.alumni_id
        if not await self._payment_gate.has_paid(self.request_id, student_id, alumni_id):
            raise PaymentRequired()

        handle = self._timer.start(self.request_id)
        started_at = handle.started_at
        channel_name = f"mentorship-{self.request_id}-{int(started_at.timestamp() * 1000)}"
        attendee_link = f"{self._call_room_base_url}/join?roomId={channel_name}&enableScreenShare=true"

        try:
            await self._presence.session_start(
                request_id=self.request_id,
                student_id=student_id,
                alumni_id=alumni_id,
                channel_name=channel_name,
                attendee_link=attendee_link,
            )
        except RemoteServiceError as exc:
            logger.warning("Presence session not opened (request_id=%s): %s", self.request_id, exc)

        call_id = await self._ledger.record_start(self.request_id, call_type, started_at)

        self._active_call = ActiveCall(
            request_id=self.request_id,
            call_type=call_type,
            started_at=started_at,
            channel_name=channel_name,
            attendee_link=attendee_link,
            call_id=call_id,
        )
        self._store.put(ACTIVE_CALL_PREFIX + self.request_id, self._active_call.to_json())

        await self._stop_watch()
        self._watch = CallWindowWatch(
            self.request_id,
            self._end_call_from_watch,
            probe=window_probe,
            probe_interval=self._probe_interval,
            max_duration=self._watch_max_duration,
        )
        self._watch.start()
        logger.info(
            "Call started (request_id=%s, call_type=%s, call_id=%s)",
            self.request_id,
            call_type.value,
            call_id,
        )
        return self._active_call

    def notify_session_ended(self) -> None:
        """Session-end event from the call room provider."""
        if self._watch is not None:
            self._watch.notify_closed()

    async def _end_call_from_watch(self) -> None:
        if self._active_call is None:
            return
        try:
            await self.end_call()
        except InvalidTransition as exc:
            logger.info("Call window closed with nothing to end (request_id=%s): %s", self.request_id, exc)

    def _resolve_active_call(self, call_type: Optional[CallType]) -> ActiveCall:
        active = self._active_call or self._load_active_call()
        if active is not None:
            return active
        handle = self._timer.restore(self.request_id)
        if handle is None:
            raise InvalidTransition("There is no call in progress for this request")
        return ActiveCall(
            request_id=self.request_id,
            call_type=CallType(call_type or CallType.VIDEO),
            started_at=handle.started_at,
            channel_name="",
            attendee_link="",
        )

    async def end_call(self, call_type: Optional[CallType] = None) -> MentorshipRequestView:
        """
        End the running call segment.

        Always results in a completed call record in the merged view, even
        when the session log cannot be reached. Ends are serialized: a second
        end of the same segment finds nothing in progress.
        """
        async with self._call_lock:
            return await self._end_call(call_type)

    async def _end_call(self, call_type: Optional[CallType]) -> MentorshipRequestView:
        active = self._resolve_active_call(call_type)
        call_type = CallType(call_type) if call_type else active.call_type
        self._clear_active_call()

        result = await self._ledger.record_end(
            self.request_id, call_type, active.started_at, call_id=active.call_id
        )
        if result.acknowledged:
            completes = result.completed_request
        else:
            completes = self._ledger.meets_minimum(result.record)
            self._queue_sync(record=result.record)
        self._optimistic.add(result.record, completed=completes)
        self._store.put_call_log(
            reconciliation.append_to_log(
                self._store.get_call_log(self.request_id),
                self.request_id,
                result.record,
                completed=completes,
            )
        )

        self._timer.clear(self.request_id)
        await self._stop_watch()

        try:
            await self._presence.leave(self.request_id, self.role.value)
        except RemoteServiceError as exc:
            logger.info("Presence leave not recorded (request_id=%s): %s", self.request_id, exc)

        if result.acknowledged:
            view = await self.refresh()
        else:
            view = self.apply_sources(None)
        logger.info(
            "Call ended (request_id=%s, duration=%s, acknowledged=%s, status=%s)",
            self.request_id,
            result.record.duration,
            result.acknowledged,
            view.status.value,
        )
        return view

    # ======================
    # COMPLETION
    # ======================

    async def _counterpart_presence(self, fresh: bool) -> Optional[PresenceStatus]:
        if self._poller is not None and not fresh:
            known = self._poller.presence(self.request_id)
            if known is not None:
                return known
        if self._poller is not None:
            return await self._poller.poll_request(self.request_id)
        try:
            return await self._presence.status(self.request_id)
        except RemoteServiceError as exc:
            logger.warning("Presence check failed (request_id=%s): %s", self.request_id, exc)
            return None

    def _counterpart_active(self, presence: Optional[PresenceStatus]) -> bool:
        if presence is None:
            return False
        if self.role.counterpart is Role.STUDENT:
            return presence.is_student_active
        return presence.is_alumni_active

    async def completion_gate(self, *, fresh: bool = False) -> CompletionGate:
        view = await self.get_merged_view()
        remaining = self._timer.remaining(self.request_id, self.minimum_minutes)

        if view.status == RequestStatus.COMPLETED:
            return CompletionGate(False, False, 0, "This mentorship request is already completed")
        if view.status != RequestStatus.ACCEPTED:
            return CompletionGate(False, False, remaining, "Only accepted requests can be completed")

        if not await self._payment_gate.has_paid(self.request_id, view.student_id, view.alumni_id):
            return CompletionGate(False, False, remaining, "Payment is required before completing this session")

        presence = await self._counterpart_presence(fresh)
        if self._counterpart_active(presence):
            return CompletionGate(
                False,
                False,
                remaining,
                f"The {self.role.counterpart.value} is still in the call",
            )

        if not self._timer.has_minimum(self.request_id, self.minimum_minutes):
            return CompletionGate(
                True,
                False,
                remaining,
                f"The session must run for at least {self.minimum_minutes:g} minute(s); "
                f"{remaining} minute(s) remaining",
            )
        return CompletionGate(True, True, 0)

    async def mark_completed(self) -> MentorshipRequestView:
        """
        Manually complete the request.

        Requires payment, the minimum session duration and the counterpart
        being out of the call. A call still marked as running is ended first.
        """
        gate = await self.completion_gate(fresh=True)
        if not gate.allowed:
            raise CompletionBlocked(gate.reason or "This session cannot be completed yet", remaining_minutes=gate.remaining_minutes)

        if self._active_call is not None:
            await self.end_call()
            if self.status == RequestStatus.COMPLETED:
                return self._view

        base = None
        try:
            base = await self._ledger.mark_completed(self.request_id)
        except RemoteServiceError as exc:
            logger.warning("Completion not recorded remotely, keeping it locally (request_id=%s): %s", self.request_id, exc)
            self._optimistic.completed = True
            self._queue_sync(complete=True)
            entry = self._store.get_call_log(self.request_id) or CallLogEntry(request_id=self.request_id)
            self._store.put_call_log(entry.model_copy(update={"completed": True}))

        self._timer.clear(self.request_id)
        self._clear_active_call()
        await self._stop_watch()
        return self.apply_sources(base)

    # ======================
    # TEARDOWN
    # ======================

    async def _stop_watch(self) -> None:
        watch, self._watch = self._watch, None
        if watch is not None:
            await watch.cancel()

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        await self._stop_watch()
        if self._poller is not None:
            self._poller.forget(self.request_id)


class ControllerRegistry:
    """
    Arena of lifecycle controllers for one viewer, keyed by
    (viewer_id, request_id), plus the viewer's status poller.
    """

    def __init__(
        self,
        viewer_id: str,
        role: Role,
        *,
        clients: ServiceClients,
        store: FallbackStore,
        clock: Callable[[], datetime] = utcnow,
        minimum_minutes: Optional[float] = None,
        poll_interval: Optional[float] = None,
        probe_interval: Optional[float] = None,
        watch_max_duration: Optional[float] = None,
        owns_clients: bool = False,
    ):
        self.viewer_id = viewer_id
        self.role = Role(role)
        self.clients = clients
        self.store = store
        self._clock = clock
        self._owns_clients = owns_clients
        self.minimum_minutes = (
            settings.MINIMUM_SESSION_MINUTES if minimum_minutes is None else minimum_minutes
        )
        self._probe_interval = probe_interval
        self._watch_max_duration = watch_max_duration

        self.timer = SessionTimer(store, clock=clock, minimum_minutes=self.minimum_minutes)
        self.payment_gate = PaymentGate(clients.payment)
        self.ledger = CallLedger(
            clients.session_log,
            clients.mentorship,
            clock=clock,
            minimum_minutes=self.minimum_minutes,
        )
        self.poller = StatusPoller(
            clients.presence,
            self.timer,
            self.pollable_request_ids,
            interval=poll_interval,
        )
        self._controllers: Dict[Tuple[str, str], LifecycleController] = {}
        self.timer.restore_all()

    @classmethod
    def from_settings(cls, viewer_id: str, role: Role, **kwargs) -> "ControllerRegistry":
        return cls(
            viewer_id,
            role,
            clients=ServiceClients.connect(),
            store=FallbackStore(),
            owns_clients=True,
            **kwargs,
        )

    def _key(self, request_id: str) -> Tuple[str, str]:
        return (self.viewer_id, request_id)

    def get(self, request_id: str) -> Optional[LifecycleController]:
        return self._controllers.get(self._key(request_id))

    def get_or_create(self, request_id: str) -> LifecycleController:
        key = self._key(request_id)
        controller = self._controllers.get(key)
        if controller is None:
            controller = LifecycleController(
                request_id,
                self.viewer_id,
                self.role,
                mentorship=self.clients.mentorship,
                presence=self.clients.presence,
                ledger=self.ledger,
                payment_gate=self.payment_gate,
                timer=self.timer,
                store=self.store,
                poller=self.poller,
                clock=self._clock,
                minimum_minutes=self.minimum_minutes,
                probe_interval=self._probe_interval,
                watch_max_duration=self._watch_max_duration,
            )
            self._controllers[key] = controller
        return controller

    def controllers(self) -> List[LifecycleController]:
        return list(self._controllers.values())

    def pollable_request_ids(self) -> List[str]:
        return [
            c.request_id
            for c in self._controllers.values()
            if c.status != RequestStatus.COMPLETED
        ]

    async def load(self) -> List[MentorshipRequestView]:
        """Load every request visible to the viewer, merging call logs in one read."""
        try:
            requests = await self.clients.mentorship.list_for_viewer(self.viewer_id, self.role.value)
        except RemoteServiceError as exc:
            logger.warning("Request listing failed, using known requests (viewer_id=%s): %s", self.viewer_id, exc)
            return [c.apply_sources(None) for c in self.controllers() if c.view is not None]

        logs: Dict[str, CallLogEntry] = {}
        try:
            logs = await self.ledger.fetch_logs([r.id for r in requests])
        except RemoteServiceError as exc:
            logger.warning("Session log read failed (viewer_id=%s): %s", self.viewer_id, exc)

        return [self.get_or_create(r.id).apply_sources(r, logs.get(r.id)) for r in requests]

    def start_polling(self) -> None:
        self.poller.start()

    def handle_session_ended(self, request_id: str) -> None:
        controller = self.get(request_id)
        if controller is not None:
            controller.notify_session_ended()

    async def close(self) -> None:
        """Tear down the poller, every watch and every controller."""
        await self.poller.stop()
        for controller in self.controllers():
            await controller.close()
        self._controllers.clear()
        if self._owns_clients:
            await self.clients.aclose()
            self.store.dispose()
