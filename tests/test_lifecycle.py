"""LifecycleController and ControllerRegistry against the in-process services."""

import asyncio

import pytest
import pytest_asyncio

from mentorlink.models.mentorship import CallStatus, CallType, RequestStatus
from mentorlink.services import (
    CompletionBlocked,
    ControllerRegistry,
    InvalidTransition,
    PaymentRequired,
    Role,
)
from mentorlink.services.call_ledger import LOCAL_CALL_ID_PREFIX
from mentorlink.services.lifecycle import (
    ACTIVE_CALL_PREFIX,
    PENDING_SYNC_PREFIX,
    resolve_rejection_reason,
)
from mentorlink.services.status_poller import CallWindowWatch


def _registry(viewer_id, role, services, store, clock):
    return ControllerRegistry(
        viewer_id,
        role,
        clients=services,
        store=store,
        clock=clock,
        minimum_minutes=1,
        poll_interval=60,
        probe_interval=60,
        watch_max_duration=600,
    )


@pytest_asyncio.fixture
async def registry(services, store, clock):
    alumni = _registry("alu-1", Role.ALUMNI, services, store, clock)
    try:
        yield alumni
    finally:
        await alumni.close()


# ======================
# TRANSITIONS
# ======================

def test_resolve_rejection_reason():
    assert resolve_rejection_reason("Schedule conflicts") == "Schedule conflicts"
    assert resolve_rejection_reason("Other", "  Travelling  ") == "Travelling"
    assert resolve_rejection_reason("Other", "   ") == "Other"
    assert resolve_rejection_reason(None) == ""


@pytest.mark.asyncio
async def test_accept_through_controller(registry, create_request):
    request = create_request()
    controller = registry.get_or_create(request["id"])

    view = await controller.accept("Let's talk")
    assert view.status is RequestStatus.ACCEPTED
    assert view.alumni_response == "Let's talk"

    with pytest.raises(InvalidTransition):
        await controller.accept()


@pytest.mark.asyncio
async def test_reject_with_custom_reason(registry, create_request):
    request = create_request()
    controller = registry.get_or_create(request["id"])

    with pytest.raises(InvalidTransition):
        await controller.reject("Other")
    with pytest.raises(InvalidTransition):
        await controller.reject("  ")

    view = await controller.reject("Other", "Travelling this month")
    assert view.status is RequestStatus.REJECTED
    assert view.rejection_reason == "Travelling this month"


@pytest.mark.asyncio
async def test_rejected_request_cannot_be_accepted(registry, create_request):
    request = create_request()
    controller = registry.get_or_create(request["id"])
    await controller.reject("Personal reasons")

    with pytest.raises(InvalidTransition):
        await controller.accept()


# ======================
# CALLS
# ======================

@pytest.mark.asyncio
async def test_start_call_requires_accepted_request(registry, create_request):
    request = create_request()
    controller = registry.get_or_create(request["id"])
    with pytest.raises(InvalidTransition):
        await controller.start_call(CallType.VIDEO)


@pytest.mark.asyncio
async def test_start_call_requires_payment(registry, create_request, accept_request):
    request = create_request()
    accept_request(request["id"])
    controller = registry.get_or_create(request["id"])

    with pytest.raises(PaymentRequired):
        await controller.start_call(CallType.VIDEO)
    assert controller.active_call is None
    assert registry.timer.get(request["id"]) is None


@pytest.mark.asyncio
async def test_start_call_fails_closed_when_payment_service_down(registry, transport, paid_accepted_request):
    controller = registry.get_or_create(paid_accepted_request["id"])
    await controller.refresh()

    transport.failing.add("/api/payment/")
    with pytest.raises(PaymentRequired):
        await controller.start_call(CallType.VIDEO)


@pytest.mark.asyncio
async def test_start_call_opens_presence_and_persists(registry, client, store, paid_accepted_request):
    request_id = paid_accepted_request["id"]
    controller = registry.get_or_create(request_id)

    active = await controller.start_call(CallType.AUDIO)
    assert active.call_id
    assert active.channel_name.startswith(f"mentorship-{request_id}-")
    assert active.channel_name in active.attendee_link
    assert store.get(ACTIVE_CALL_PREFIX + request_id)["call_id"] == active.call_id
    assert controller.watch is not None and controller.watch.active

    presence = client.get(f"/api/video-call/status/{request_id}").json()
    assert presence["is_active"] is True

    again = await controller.start_call(CallType.AUDIO)
    assert again is active


@pytest.mark.asyncio
async def test_call_end_rounds_duration_and_completes(registry, clock, store, paid_accepted_request):
    request_id = paid_accepted_request["id"]
    controller = registry.get_or_create(request_id)

    active = await controller.start_call(CallType.VIDEO)
    clock.advance(seconds=90)
    view = await controller.end_call()

    assert view.status is RequestStatus.COMPLETED
    assert len(view.call_history) == 1
    record = view.call_history[0]
    assert record.call_id == active.call_id
    assert record.status is CallStatus.COMPLETED
    assert record.duration == 2
    assert view.total_call_duration == 2

    assert controller.active_call is None
    assert controller.watch is None
    assert registry.timer.get(request_id) is None
    assert store.get(ACTIVE_CALL_PREFIX + request_id) is None


@pytest.mark.asyncio
async def test_short_call_leaves_request_accepted(registry, clock, paid_accepted_request):
    controller = registry.get_or_create(paid_accepted_request["id"])
    await controller.start_call(CallType.VIDEO)
    clock.advance(seconds=20)
    view = await controller.end_call()

    assert view.status is RequestStatus.ACCEPTED
    assert view.call_history[0].duration == 0
    assert view.total_call_duration == 0


@pytest.mark.asyncio
async def test_end_without_call_in_progress(registry, paid_accepted_request):
    controller = registry.get_or_create(paid_accepted_request["id"])
    await controller.refresh()
    with pytest.raises(InvalidTransition):
        await controller.end_call()


@pytest.mark.asyncio
async def test_unreachable_session_log_keeps_local_record(
    registry, services, store, clock, transport, paid_accepted_request
):
    request_id = paid_accepted_request["id"]
    controller = registry.get_or_create(request_id)

    transport.failing.update({"/mento_session/start", "/mento_session/end"})
    active = await controller.start_call(CallType.VIDEO)
    assert active.call_id is None

    clock.advance(minutes=3)
    view = await controller.end_call()
    assert len(view.call_history) == 1
    local = view.call_history[0]
    assert local.call_id.startswith(LOCAL_CALL_ID_PREFIX)
    assert local.status is CallStatus.COMPLETED
    assert local.duration == 3
    assert view.status is RequestStatus.COMPLETED

    # The session log answers reads again, without this call in its history.
    transport.failing.discard("/mento_session/start")
    refreshed = await controller.refresh()
    assert [r.call_id for r in refreshed.call_history] == [local.call_id]
    assert refreshed.total_call_duration == 3
    assert refreshed.status is RequestStatus.COMPLETED

    # A fresh process only has the fallback cache.
    restarted = _registry("alu-1", Role.ALUMNI, services, store, clock)
    try:
        view_after_restart = await restarted.get_or_create(request_id).refresh()
    finally:
        await restarted.close()
    assert [r.call_id for r in view_after_restart.call_history] == [local.call_id]
    assert view_after_restart.status is RequestStatus.COMPLETED
    assert store.get(PENDING_SYNC_PREFIX + request_id) is not None


@pytest.mark.asyncio
async def test_local_call_end_replayed_once_session_log_returns(
    registry, client, store, clock, transport, paid_accepted_request
):
    request_id = paid_accepted_request["id"]
    controller = registry.get_or_create(request_id)

    transport.failing.add("/mento_session/")
    await controller.start_call(CallType.AUDIO)
    clock.advance(minutes=3)
    local = (await controller.end_call()).call_history[0]
    assert local.call_id.startswith(LOCAL_CALL_ID_PREFIX)

    transport.failing.clear()
    refreshed = await controller.refresh()
    assert len(refreshed.call_history) == 1
    synced = refreshed.call_history[0]
    assert not synced.call_id.startswith(LOCAL_CALL_ID_PREFIX)
    assert synced.duration == 3
    assert refreshed.total_call_duration == 3
    assert store.get(PENDING_SYNC_PREFIX + request_id) is None

    remote = client.get(f"/api/mentorship/requests/{request_id}").json()
    assert remote["status"] == "completed"
    logs = client.get("/api/mentorship/mento_session/by-requests", params={"ids": request_id}).json()["logs"]
    assert [r["call_id"] for r in logs[0]["history"]] == [synced.call_id]
    assert logs[0]["total_call_duration"] == 3

    # Nothing left to send.
    again = await controller.refresh()
    assert [r.call_id for r in again.call_history] == [synced.call_id]


@pytest.mark.asyncio
async def test_concurrent_end_records_segment_once(registry, client, clock, paid_accepted_request):
    request_id = paid_accepted_request["id"]
    controller = registry.get_or_create(request_id)
    await controller.start_call(CallType.VIDEO)
    clock.advance(minutes=5)

    results = await asyncio.gather(controller.end_call(), controller.end_call(), return_exceptions=True)
    errors = [r for r in results if isinstance(r, Exception)]
    assert len(errors) == 1
    assert isinstance(errors[0], InvalidTransition)

    view = controller.view
    assert len(view.call_history) == 1
    assert view.total_call_duration == 5

    logs = client.get("/api/mentorship/mento_session/by-requests", params={"ids": request_id}).json()["logs"]
    assert len(logs[0]["history"]) == 1
    assert logs[0]["total_call_duration"] == 5


@pytest.mark.asyncio
async def test_garbled_end_answer_keeps_local_record(registry, store, clock, transport, paid_accepted_request):
    request_id = paid_accepted_request["id"]
    controller = registry.get_or_create(request_id)
    await controller.start_call(CallType.VIDEO)
    clock.advance(minutes=2)

    transport.garbled["/mento_session/end"] = b""
    view = await controller.end_call()

    assert len(view.call_history) == 1
    assert view.call_history[0].status is CallStatus.COMPLETED
    assert view.call_history[0].duration == 2
    assert controller.active_call is None
    assert registry.timer.get(request_id) is None
    assert store.get(ACTIVE_CALL_PREFIX + request_id) is None
    assert store.get(PENDING_SYNC_PREFIX + request_id) is not None


@pytest.mark.asyncio
async def test_session_end_event_ends_call(registry, paid_accepted_request):
    request_id = paid_accepted_request["id"]
    controller = registry.get_or_create(request_id)
    await controller.start_call(CallType.VIDEO)
    watch = controller.watch

    registry.handle_session_ended(request_id)
    assert await watch.wait() == CallWindowWatch.CLOSED

    assert controller.active_call is None
    assert controller.watch is None
    assert len(controller.view.call_history) == 1
    assert controller.view.call_history[0].status is CallStatus.COMPLETED


@pytest.mark.asyncio
async def test_timer_survives_restart(registry, services, store, clock, paid_accepted_request):
    request_id = paid_accepted_request["id"]
    await registry.get_or_create(request_id).start_call(CallType.VIDEO)
    clock.advance(minutes=4)

    restarted = _registry("alu-1", Role.ALUMNI, services, store, clock)
    try:
        assert restarted.timer.elapsed_minutes(request_id) == 4.0
        assert restarted.get_or_create(request_id).active_call is not None
    finally:
        await restarted.close()


# ======================
# COMPLETION GATE
# ======================

@pytest.mark.asyncio
async def test_gate_disabled_until_minimum(registry, clock, paid_accepted_request):
    controller = registry.get_or_create(paid_accepted_request["id"])
    await controller.start_call(CallType.VIDEO)
    clock.advance(seconds=40)

    gate = await controller.completion_gate()
    assert gate.visible is True
    assert gate.allowed is False
    assert gate.remaining_minutes == 1
    assert "1 minute(s) remaining" in gate.reason

    with pytest.raises(CompletionBlocked) as excinfo:
        await controller.mark_completed()
    assert excinfo.value.remaining_minutes == 1
    assert controller.active_call is not None


@pytest.mark.asyncio
async def test_gate_hidden_while_counterpart_in_call(registry, client, clock, paid_accepted_request):
    request_id = paid_accepted_request["id"]
    controller = registry.get_or_create(request_id)
    await controller.start_call(CallType.VIDEO)
    client.post("/api/video-call/join", json={"request_id": request_id, "user_type": "student"})
    clock.advance(minutes=2)

    gate = await controller.completion_gate(fresh=True)
    assert gate.visible is False
    assert gate.allowed is False
    assert "student" in gate.reason

    with pytest.raises(CompletionBlocked):
        await controller.mark_completed()


@pytest.mark.asyncio
async def test_gate_hidden_without_payment(registry, create_request, accept_request):
    request = create_request()
    accept_request(request["id"])
    registry.timer.start(request["id"])

    gate = await registry.get_or_create(request["id"]).completion_gate()
    assert gate.visible is False
    assert "Payment" in gate.reason


@pytest.mark.asyncio
async def test_gate_hidden_for_pending_request(registry, create_request):
    request = create_request()
    gate = await registry.get_or_create(request["id"]).completion_gate()
    assert gate.visible is False
    assert gate.allowed is False


@pytest.mark.asyncio
async def test_mark_completed_ends_running_call(registry, client, clock, paid_accepted_request):
    request_id = paid_accepted_request["id"]
    controller = registry.get_or_create(request_id)
    await controller.start_call(CallType.VIDEO)
    clock.advance(minutes=2)

    gate = await controller.completion_gate(fresh=True)
    assert gate.allowed is True

    view = await controller.mark_completed()
    assert view.status is RequestStatus.COMPLETED
    assert view.total_call_duration == 2
    assert controller.active_call is None

    gate = await controller.completion_gate()
    assert gate.visible is False

    sessions = client.get(f"/api/mentorship/sessions/alumni/{paid_accepted_request['alumni_id']}").json()
    assert [s["request_id"] for s in sessions] == [request_id]


@pytest.mark.asyncio
async def test_mark_completed_with_restored_timer(registry, client, clock, paid_accepted_request):
    request_id = paid_accepted_request["id"]
    registry.timer.start(request_id)
    clock.advance(minutes=1)

    view = await registry.get_or_create(request_id).mark_completed()
    assert view.status is RequestStatus.COMPLETED
    assert registry.timer.get(request_id) is None

    remote = client.get(f"/api/mentorship/requests/{request_id}").json()
    assert remote["status"] == "completed"


@pytest.mark.asyncio
async def test_mark_completed_kept_locally_when_service_down(
    registry, client, store, clock, transport, paid_accepted_request
):
    request_id = paid_accepted_request["id"]
    controller = registry.get_or_create(request_id)
    registry.timer.start(request_id)
    clock.advance(minutes=2)

    transport.failing.add("/complete")
    view = await controller.mark_completed()
    assert view.status is RequestStatus.COMPLETED
    assert store.get_call_log(request_id).completed is True

    transport.failing.clear()
    refreshed = await controller.refresh()
    assert refreshed.status is RequestStatus.COMPLETED
    assert store.get(PENDING_SYNC_PREFIX + request_id) is None
    remote = client.get(f"/api/mentorship/requests/{request_id}").json()
    assert remote["status"] == "completed"


# ======================
# REGISTRY
# ======================

@pytest.mark.asyncio
async def test_registry_loads_viewer_requests(registry, create_request, accept_request):
    first = create_request(title="First")
    second = create_request(title="Second")
    create_request(alumni_id="alu-other", title="Not mine")
    accept_request(second["id"])

    views = await registry.load()
    assert {v.id for v in views} == {first["id"], second["id"]}
    assert registry.get_or_create(first["id"]) is registry.get(first["id"])
    assert sorted(registry.pollable_request_ids()) == sorted([first["id"], second["id"]])


@pytest.mark.asyncio
async def test_completed_requests_are_not_polled(registry, client, paid_accepted_request):
    client.put(f"/api/mentorship/requests/{paid_accepted_request['id']}/complete")
    await registry.load()
    assert registry.pollable_request_ids() == []


@pytest.mark.asyncio
async def test_registry_is_keyed_by_viewer(registry, services, store, clock, create_request):
    request = create_request()
    student = _registry("stu-1", Role.STUDENT, services, store, clock)
    try:
        assert student.get_or_create(request["id"]) is not registry.get_or_create(request["id"])
        assert student.get_or_create(request["id"]).role is Role.STUDENT
    finally:
        await student.close()


@pytest.mark.asyncio
async def test_close_cancels_watches_and_polling(services, store, clock, paid_accepted_request):
    registry = _registry("alu-1", Role.ALUMNI, services, store, clock)
    controller = registry.get_or_create(paid_accepted_request["id"])
    await controller.start_call(CallType.VIDEO)
    watch = controller.watch
    registry.start_polling()

    await registry.close()
    assert watch.outcome == CallWindowWatch.CANCELLED
    assert registry.poller.running is False
    assert registry.controllers() == []
