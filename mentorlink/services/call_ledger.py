# mentorlink/services/call_ledger.py
"""
Call ledger - client side of the session log.

Writes call starts and ends to the session log. Ending a call always
yields a completed CallRecord: when the session log cannot be reached the
record is synthesized locally and reconciled later.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Dict, Optional, Sequence

from mentorlink.config import settings
from mentorlink.models.mentorship import CallStatus, CallType, RequestStatus
from mentorlink.schemas.mentorship import CallRecordView, MentorshipRequestView
from mentorlink.schemas.session_log import CallLogEntry
from mentorlink.services.clients import MentorshipClient, SessionLogClient
from mentorlink.services.errors import RemoteServiceError
from mentorlink.utils.clock import ensure_utc, new_id, utcnow

logger = logging.getLogger(__name__)

LOCAL_CALL_ID_PREFIX = "local-"


def compute_duration(start_time: datetime, end_time: datetime) -> int:
    """Whole minutes between start and end, half rounded up, never negative."""
    minutes = (ensure_utc(end_time) - ensure_utc(start_time)).total_seconds() / 60
    return max(0, math.floor(minutes + 0.5))


@dataclass
class LedgerEndResult:
    record: CallRecordView
    acknowledged: bool
    # Request status reported by the session log; None when unacknowledged.
    request_status: Optional[RequestStatus] = None

    @property
    def completed_request(self) -> bool:
        return self.request_status is RequestStatus.COMPLETED


class CallLedger:
    def __init__(
        self,
        session_log: SessionLogClient,
        mentorship: MentorshipClient,
        *,
        clock: Callable[[], datetime] = utcnow,
        minimum_minutes: Optional[float] = None,
    ):
        self._session_log = session_log
        self._mentorship = mentorship
        self._clock = clock
        self.minimum_minutes = (
            settings.MINIMUM_SESSION_MINUTES if minimum_minutes is None else minimum_minutes
        )

    async def record_start(
        self,
        request_id: str,
        call_type: CallType,
        start_time: Optional[datetime] = None,
    ) -> Optional[str]:
        """Log a call start. Failure is logged and the call goes ahead locally."""
        start_time = start_time or self._clock()
        try:
            call_id = await self._session_log.start(request_id, call_type, start_time)
        except RemoteServiceError as exc:
            logger.warning("Call start not logged (request_id=%s): %s", request_id, exc)
            return None
        logger.info("Call start logged (request_id=%s, call_id=%s)", request_id, call_id)
        return call_id or None

    async def record_end(
        self,
        request_id: str,
        call_type: CallType,
        start_time: datetime,
        *,
        call_id: Optional[str] = None,
    ) -> LedgerEndResult:
        end_time = self._clock()
        duration = compute_duration(start_time, end_time)
        try:
            ack = await self._session_log.end(request_id, call_type, start_time, end_time, duration)
        except RemoteServiceError as exc:
            logger.warning(
                "Call end not logged, keeping local record (request_id=%s): %s",
                request_id,
                exc,
            )
            record = CallRecordView(
                call_id=call_id or f"{LOCAL_CALL_ID_PREFIX}{new_id()}",
                call_type=call_type,
                start_time=start_time,
                end_time=end_time,
                duration=duration,
                status=CallStatus.COMPLETED,
            )
            return LedgerEndResult(record=record, acknowledged=False)

        record = CallRecordView(
            call_id=ack.call_id,
            call_type=call_type,
            start_time=start_time,
            end_time=end_time,
            duration=duration,
            status=CallStatus.COMPLETED,
        )
        logger.info(
            "Call end logged (request_id=%s, call_id=%s, duration=%s, request_status=%s)",
            request_id,
            ack.call_id,
            duration,
            ack.request_updated.status.value,
        )
        return LedgerEndResult(
            record=record,
            acknowledged=True,
            request_status=ack.request_updated.status,
        )

    async def resubmit_end(self, request_id: str, record: CallRecordView) -> Optional[CallRecordView]:
        """Send a locally kept call end again. Returns the stored copy, or None if still refused."""
        try:
            ack = await self._session_log.end(
                request_id,
                record.call_type,
                record.start_time,
                record.end_time or record.start_time,
                record.duration or 0,
            )
        except RemoteServiceError as exc:
            logger.warning("Queued call end not logged (request_id=%s): %s", request_id, exc)
            return None
        logger.info(
            "Queued call end logged (request_id=%s, local_id=%s, call_id=%s)",
            request_id,
            record.call_id,
            ack.call_id,
        )
        return record.model_copy(update={"call_id": ack.call_id})

    def meets_minimum(self, record: CallRecordView) -> bool:
        return (record.duration or 0) >= self.minimum_minutes

    async def fetch_request(self, request_id: str) -> MentorshipRequestView:
        return await self._mentorship.get_request(request_id)

    async def fetch_logs(self, request_ids: Sequence[str]) -> Dict[str, CallLogEntry]:
        logs = await self._session_log.by_requests(list(request_ids))
        return {entry.request_id: entry for entry in logs}

    async def mark_completed(self, request_id: str) -> MentorshipRequestView:
        view = await self._mentorship.complete(request_id)
        logger.info("Request marked completed (request_id=%s)", request_id)
        return view
