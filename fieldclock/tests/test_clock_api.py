from datetime import timedelta

from fastapi.testclient import TestClient

from conftest import SITE_LAT, SITE_LNG, auth_headers, get_access_token, north_of

from fieldclock.core.timeutil import utcnow
from fieldclock.main import app

client = TestClient(app)

COMPANY_ID = 75001
WORKER_ID = "worker-75"


def _body(job_id, cid, *, meters_north=0.0, accuracy_m=10.0, **extra):
    lat, lng = north_of(SITE_LAT, SITE_LNG, meters_north)
    body = {
        "job_id": job_id,
        "client_event_id": cid,
        "lat": lat,
        "lng": lng,
        "accuracy_m": accuracy_m,
    }
    body.update(extra)
    return body


def test_clock_in_and_out(assigned_job):
    job = assigned_job(COMPANY_ID, WORKER_ID)
    headers = auth_headers(client, COMPANY_ID, user_id=WORKER_ID)

    r = client.post("/clock/in", json=_body(job.id, "api-in-1", meters_north=20), headers=headers)
    assert r.status_code == 200, r.text
    data = r.json()
    assert data["status"] == "accepted"
    assert data["kind"] == "IN"
    assert data["geo_ok"] is True
    entry_id = data["entry_id"]

    active = client.get("/time_entries/active", headers=headers)
    assert active.status_code == 200, active.text
    assert active.json()["time_entry_id"] == entry_id

    r = client.post(
        "/clock/out",
        json=_body(job.id, "api-out-1", meters_north=400, time_entry_id=entry_id),
        headers=headers,
    )
    assert r.status_code == 200, r.text
    data = r.json()
    assert data["entry_id"] == entry_id
    assert data["geo_ok"] is False
    assert data["exception_tags"] == ["geofence_out"]
    assert data["warning"]

    assert client.get("/time_entries/active", headers=headers).status_code == 404


def test_combined_endpoint_dispatches_on_kind(assigned_job):
    job = assigned_job(COMPANY_ID, WORKER_ID)
    headers = auth_headers(client, COMPANY_ID, user_id=WORKER_ID)

    r = client.post("/clock", json=_body(job.id, "api-c-in", kind="IN"), headers=headers)
    assert r.status_code == 200, r.text
    assert r.json()["kind"] == "IN"

    r = client.post("/clock", json=_body(job.id, "api-c-out", kind="OUT"), headers=headers)
    assert r.status_code == 200, r.text
    assert r.json()["kind"] == "OUT"

    r = client.post("/clock", json=_body(job.id, "api-c-bad", kind="BREAK"), headers=headers)
    assert r.status_code == 422


def test_clock_in_outside_geofence_returns_409(assigned_job):
    job = assigned_job(COMPANY_ID, WORKER_ID)
    headers = auth_headers(client, COMPANY_ID, user_id=WORKER_ID)

    r = client.post("/clock/in", json=_body(job.id, "api-far", meters_north=500), headers=headers)
    assert r.status_code == 409, r.text
    detail = r.json()["detail"]
    assert detail["code"] == "geofence"
    assert detail["context"]["direction"] == "south"


def test_clock_in_unassigned_returns_403(job_factory):
    job = job_factory(COMPANY_ID)
    headers = auth_headers(client, COMPANY_ID, user_id=WORKER_ID)

    r = client.post("/clock/in", json=_body(job.id, "api-na"), headers=headers)
    assert r.status_code == 403, r.text
    assert r.json()["detail"]["code"] == "not-assigned"


def test_worker_cannot_clock_for_someone_else(assigned_job):
    job = assigned_job(COMPANY_ID, "someone-else")
    headers = auth_headers(client, COMPANY_ID, user_id=WORKER_ID)

    r = client.post("/clock/in", json=_body(job.id, "api-spoof", worker_id="someone-else"), headers=headers)
    assert r.status_code == 403, r.text


def test_clock_out_without_open_entry_returns_409(assigned_job):
    job = assigned_job(COMPANY_ID, WORKER_ID)
    headers = auth_headers(client, COMPANY_ID, user_id=WORKER_ID)

    r = client.post("/clock/out", json=_body(job.id, "api-out"), headers=headers)
    assert r.status_code == 409, r.text
    assert r.json()["detail"]["code"] == "not-clocked-in"


def test_invalid_payloads_rejected(assigned_job):
    job = assigned_job(COMPANY_ID, WORKER_ID)
    headers = auth_headers(client, COMPANY_ID, user_id=WORKER_ID)

    assert client.post("/clock/in", json=_body(job.id, "api-lat", lat=95.0), headers=headers).status_code == 422
    assert client.post("/clock/in", json=_body(job.id, "api-acc", accuracy_m=-1), headers=headers).status_code == 422
    assert client.post("/clock/in", json=_body(job.id, "x" * 65), headers=headers).status_code == 422

    future = (utcnow() + timedelta(hours=2)).isoformat()
    r = client.post("/clock/in", json=_body(job.id, "api-future", requested_at=future), headers=headers)
    assert r.status_code == 422
    assert r.json()["detail"]["code"] == "invalid-input"


def test_replay_over_http_returns_same_body(assigned_job):
    job = assigned_job(COMPANY_ID, WORKER_ID)
    headers = auth_headers(client, COMPANY_ID, user_id=WORKER_ID)

    first = client.post("/clock/in", json=_body(job.id, "api-replay"), headers=headers)
    second = client.post("/clock/in", json=_body(job.id, "api-replay"), headers=headers)

    assert first.status_code == 200
    assert second.status_code == 200
    assert second.json() == first.json()


def test_clock_events_visible_to_managers_only(assigned_job):
    job = assigned_job(COMPANY_ID, WORKER_ID)
    worker_headers = auth_headers(client, COMPANY_ID, user_id=WORKER_ID)

    client.post("/clock/in", json=_body(job.id, "api-ev-far", meters_north=500), headers=worker_headers)
    client.post("/clock/in", json=_body(job.id, "api-ev-ok"), headers=worker_headers)

    assert client.get("/clock/events", headers=worker_headers).status_code == 403

    manager_headers = auth_headers(client, COMPANY_ID, user_id="mgr-1", role="MANAGER")
    r = client.get("/clock/events", params={"worker_id": WORKER_ID}, headers=manager_headers)
    assert r.status_code == 200, r.text
    outcomes = sorted(e["outcome"] for e in r.json())
    assert outcomes == ["accepted", "rejected"]

    r = client.get("/clock/events", params={"outcome": "rejected"}, headers=manager_headers)
    [event] = r.json()
    assert event["rejection_reason"] == "geofence"
    assert event["client_event_id"] == "api-ev-far"


def test_missing_authorization_header_401():
    r = client.post("/clock/in", json=_body(1, "api-auth"), headers={"X-Company-Id": "1"})
    assert r.status_code == 401


def test_wrong_scheme_401():
    token = get_access_token(client, 1)
    r = client.post(
        "/clock/in",
        json=_body(1, "api-auth"),
        headers={"Authorization": f"Basic {token}", "X-Company-Id": "1"},
    )
    assert r.status_code == 401


def test_garbled_bearer_token_401():
    r = client.post(
        "/clock/in",
        json=_body(1, "api-auth"),
        headers={"Authorization": "Bearer not-a-real-token", "X-Company-Id": "1"},
    )
    assert r.status_code == 401


def test_missing_company_header_403():
    token = get_access_token(client, 1)
    r = client.post("/clock/in", json=_body(1, "api-auth"), headers={"Authorization": f"Bearer {token}"})
    assert r.status_code == 403
    assert "X-Company-Id" in r.text


def test_company_mismatch_403():
    token = get_access_token(client, 1)
    r = client.post(
        "/clock/in",
        json=_body(1, "api-auth"),
        headers={"Authorization": f"Bearer {token}", "X-Company-Id": "2"},
    )
    assert r.status_code == 403
    assert "Company mismatch" in r.text


def test_unknown_role_cannot_be_minted():
    r = client.post("/auth/token", json={"user_id": "u", "company_id": 1, "role": "SUPERUSER"})
    assert r.status_code == 400
