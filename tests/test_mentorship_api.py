"""Mentorship request endpoints: creation, forward-only transitions, completion records."""



def test_create_request_starts_pending(create_request):
    data = create_request()
    assert data["status"] == "pending"
    assert data["call_history"] == []
    assert data["total_call_duration"] == 0
    assert data["skills_needed"] == ["python", "system design"]


def test_cannot_request_mentorship_from_yourself(client):
    response = client.post(
        "/api/mentorship/requests",
        json={"student_id": "same", "alumni_id": "same", "title": "Loop"},
    )
    assert response.status_code == 400


def test_accept_pending_request(client, create_request):
    request = create_request()
    response = client.put(
        f"/api/mentorship/requests/{request['id']}/accept",
        json={"alumni_response": "Happy to help"},
    )
    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "accepted"
    assert body["alumni_response"] == "Happy to help"


def test_accept_twice_conflicts(client, create_request, accept_request):
    request = create_request()
    accept_request(request["id"])
    response = client.put(f"/api/mentorship/requests/{request['id']}/accept")
    assert response.status_code == 409


def test_reject_requires_reason(client, create_request):
    request = create_request()
    response = client.put(
        f"/api/mentorship/requests/{request['id']}/reject",
        json={"rejection_reason": "   "},
    )
    assert response.status_code == 400

    still_pending = client.get(f"/api/mentorship/requests/{request['id']}").json()
    assert still_pending["status"] == "pending"


def test_reject_stores_trimmed_reason(client, create_request):
    request = create_request()
    response = client.put(
        f"/api/mentorship/requests/{request['id']}/reject",
        json={"rejection_reason": "  Schedule conflicts "},
    )
    assert response.status_code == 200
    assert response.json()["status"] == "rejected"
    assert response.json()["rejection_reason"] == "Schedule conflicts"


def test_rejected_request_is_terminal(client, create_request):
    request = create_request()
    client.put(
        f"/api/mentorship/requests/{request['id']}/reject",
        json={"rejection_reason": "Personal reasons"},
    )
    assert client.put(f"/api/mentorship/requests/{request['id']}/accept").status_code == 409
    assert client.put(f"/api/mentorship/requests/{request['id']}/complete").status_code == 409


def test_complete_pending_request_conflicts(client, create_request):
    request = create_request()
    response = client.put(f"/api/mentorship/requests/{request['id']}/complete")
    assert response.status_code == 409


def test_complete_writes_single_mentor_session(client, create_request, accept_request):
    request = create_request(alumni_id="alu-42")
    accept_request(request["id"])

    first = client.put(f"/api/mentorship/requests/{request['id']}/complete")
    second = client.put(f"/api/mentorship/requests/{request['id']}/complete")
    assert first.status_code == 200
    assert second.status_code == 200
    assert second.json()["status"] == "completed"

    sessions = client.get("/api/mentorship/sessions/alumni/alu-42").json()
    assert len(sessions) == 1
    assert sessions[0]["request_id"] == request["id"]
    assert sessions[0]["session_title"] == "Career advice"
    assert sessions[0]["session_done"] is True


def test_unknown_request_is_404(client):
    assert client.get("/api/mentorship/requests/missing").status_code == 404
    assert client.put("/api/mentorship/requests/missing/accept").status_code == 404


def test_listing_by_role(client, create_request):
    create_request(student_id="stu-a", alumni_id="alu-a", title="First")
    create_request(student_id="stu-a", alumni_id="alu-b", title="Second")

    student_view = client.get("/api/mentorship/requests/student/stu-a").json()
    alumni_view = client.get("/api/mentorship/requests/alumni/alu-b").json()
    assert {r["title"] for r in student_view} == {"First", "Second"}
    assert [r["title"] for r in alumni_view] == ["Second"]


def test_rejection_reasons_include_other(client):
    reasons = client.get("/api/mentorship/rejection-reasons").json()
    assert "Other" in reasons
    assert "Schedule conflicts" in reasons
