# mentorlink/services/clients.py
"""
HTTP clients for the collaborator services.

Every transport failure, non-2xx answer or malformed body surfaces as
RemoteServiceError; deciding how to degrade is left to the caller.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence

import httpx
from pydantic import TypeAdapter, ValidationError

from mentorlink.config import settings
from mentorlink.models.mentorship import CallType
from mentorlink.schemas.mentorship import MentorshipRequestView
from mentorlink.schemas.payment import PaymentStatusOut
from mentorlink.schemas.session_log import (
    CallEndIn,
    CallEndOut,
    CallLogEntry,
    CallLogsOut,
    CallStartIn,
    CallStartOut,
)
from mentorlink.schemas.video_call import PresenceStatus
from mentorlink.services.errors import RemoteServiceError

logger = logging.getLogger(__name__)


class _ServiceClient:
    def __init__(self, http: httpx.AsyncClient):
        self._http = http

    async def _request(self, method: str, path: str, **kwargs) -> Any:
        try:
            response = await self._http.request(method, path, **kwargs)
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise RemoteServiceError(
                f"{method} {path} returned {exc.response.status_code}",
                status_code=exc.response.status_code,
            ) from exc
        except httpx.HTTPError as exc:
            raise RemoteServiceError(f"{method} {path} failed: {exc}") from exc
        if not response.content:
            return {}
        try:
            return response.json()
        except ValueError as exc:
            raise RemoteServiceError(f"{method} {path} returned invalid JSON") from exc

    async def _request_as(self, schema: Any, method: str, path: str, **kwargs) -> Any:
        """Like _request, but the body must validate against ``schema``."""
        data = await self._request(method, path, **kwargs)
        try:
            return TypeAdapter(schema).validate_python(data)
        except ValidationError as exc:
            raise RemoteServiceError(
                f"{method} {path} returned an unexpected body: {exc.error_count()} error(s)"
            ) from exc


class MentorshipClient(_ServiceClient):
    async def get_request(self, request_id: str) -> MentorshipRequestView:
        return await self._request_as(
            MentorshipRequestView, "GET", f"/api/mentorship/requests/{request_id}"
        )

    async def list_for_viewer(self, viewer_id: str, role: str) -> List[MentorshipRequestView]:
        return await self._request_as(
            List[MentorshipRequestView], "GET", f"/api/mentorship/requests/{role}/{viewer_id}"
        )

    async def accept(self, request_id: str, alumni_response: Optional[str] = None) -> MentorshipRequestView:
        body = {"alumni_response": alumni_response} if alumni_response else None
        return await self._request_as(
            MentorshipRequestView, "PUT", f"/api/mentorship/requests/{request_id}/accept", json=body
        )

    async def reject(self, request_id: str, reason: str) -> MentorshipRequestView:
        return await self._request_as(
            MentorshipRequestView,
            "PUT",
            f"/api/mentorship/requests/{request_id}/reject",
            json={"rejection_reason": reason},
        )

    async def complete(self, request_id: str) -> MentorshipRequestView:
        return await self._request_as(
            MentorshipRequestView, "PUT", f"/api/mentorship/requests/{request_id}/complete"
        )


class SessionLogClient(_ServiceClient):
    async def start(self, request_id: str, call_type: CallType, start_time: datetime) -> str:
        payload = CallStartIn(request_id=request_id, call_type=call_type, start_time=start_time)
        ack = await self._request_as(
            CallStartOut, "POST", "/api/mentorship/mento_session/start", json=payload.model_dump(mode="json")
        )
        return ack.call_id

    async def end(
        self,
        request_id: str,
        call_type: CallType,
        start_time: datetime,
        end_time: datetime,
        duration: int,
    ) -> CallEndOut:
        payload = CallEndIn(
            request_id=request_id,
            call_type=call_type,
            start_time=start_time,
            end_time=end_time,
            duration=duration,
        )
        return await self._request_as(
            CallEndOut, "POST", "/api/mentorship/mento_session/end", json=payload.model_dump(mode="json")
        )

    async def by_requests(self, request_ids: Sequence[str]) -> List[CallLogEntry]:
        if not request_ids:
            return []
        logs = await self._request_as(
            CallLogsOut,
            "GET",
            "/api/mentorship/mento_session/by-requests",
            params={"ids": ",".join(request_ids)},
        )
        return logs.logs


class PresenceClient(_ServiceClient):
    async def status(self, request_id: str) -> PresenceStatus:
        return await self._request_as(PresenceStatus, "GET", f"/api/video-call/status/{request_id}")

    async def session_start(
        self,
        *,
        request_id: str,
        student_id: str,
        alumni_id: str,
        channel_name: str,
        attendee_link: str,
    ) -> Dict[str, Any]:
        return await self._request(
            "POST",
            "/api/video-call/start",
            json={
                "request_id": request_id,
                "student_id": student_id,
                "alumni_id": alumni_id,
                "channel_name": channel_name,
                "attendee_link": attendee_link,
            },
        )

    async def leave(self, request_id: str, user_type: str) -> Dict[str, Any]:
        return await self._request(
            "POST", "/api/video-call/leave", json={"request_id": request_id, "user_type": user_type}
        )


class PaymentClient(_ServiceClient):
    async def has_paid(self, payer: str, payee: str, request_id: str) -> bool:
        status = await self._request_as(
            PaymentStatusOut, "GET", f"/api/payment/mentorship/status/{payer}/{payee}/{request_id}"
        )
        return status.has_paid


@dataclass
class ServiceClients:
    """All collaborator clients sharing one connection pool."""
    http: httpx.AsyncClient
    mentorship: MentorshipClient
    session_log: SessionLogClient
    presence: PresenceClient
    payment: PaymentClient

    @classmethod
    def connect(
        cls,
        base_url: Optional[str] = None,
        *,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> "ServiceClients":
        http = httpx.AsyncClient(
            base_url=base_url or settings.SERVICE_BASE_URL,
            timeout=timeout if timeout is not None else settings.REMOTE_TIMEOUT_SECONDS,
            transport=transport,
        )
        return cls(
            http=http,
            mentorship=MentorshipClient(http),
            session_log=SessionLogClient(http),
            presence=PresenceClient(http),
            payment=PaymentClient(http),
        )

    async def aclose(self) -> None:
        await self.http.aclose()
