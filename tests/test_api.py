import pytest
from fastapi.testclient import TestClient

import server.app as server
from fake_backend import ADDRESS, DETAILS, FakeBackend


@pytest.fixture
def fake(monkeypatch, tmp_path):
    backend = FakeBackend()
    monkeypatch.setattr(server, "api", backend.api())
    monkeypatch.setattr(server, "LOG_DIR", tmp_path)
    server.sessions.clear()
    return backend


@pytest.fixture
def client(fake):
    return TestClient(server.app)


def _open(client, draft=None):
    resp = client.post("/api/session", json={"draft": draft})
    assert resp.status_code == 200
    return resp.json()["session_id"]


def test_health(client):
    resp = client.get("/health")
    assert resp.status_code == 200
    assert resp.json()["status"] == "healthy"


def test_unknown_session_is_404(client):
    assert client.get("/api/session/nope").status_code == 404
    assert client.post("/api/session/nope/steps/businessDetails", json={"data": DETAILS}).status_code == 404


def test_submit_step_advances(client, fake):
    session_id = _open(client)

    resp = client.post(f"/api/session/{session_id}/steps/businessDetails", json={"data": DETAILS})

    body = resp.json()
    assert body["ok"] is True
    assert body["state"]["business_id"] == 100
    assert body["state"]["active_step"] == "businessAddress"
    assert body["state"]["steps"][0]["is_done"] is True
    assert body["state"]["steps"][1]["can_navigate"] is True


def test_validation_errors_are_422(client, fake):
    session_id = _open(client)

    resp = client.post(f"/api/session/{session_id}/steps/businessAddress",
                       json={"data": {**ADDRESS, "businessEmail": "not-an-email"}})

    assert resp.status_code == 422
    assert resp.json()["detail"]["errors"] == {"businessEmail": "Invalid email"}
    assert fake.calls == []


def test_save_failure_is_reported_in_body(client, fake):
    fake.fail.add("/onboarding/save-draft")
    session_id = _open(client)

    body = client.post(f"/api/session/{session_id}/steps/businessDetails", json={"data": DETAILS}).json()

    assert body["ok"] is False
    assert body["message"] == "/onboarding/save-draft rejected"
    assert body["state"]["business_id"] is None


def test_navigation(client, fake):
    session_id = _open(client)
    client.post(f"/api/session/{session_id}/steps/businessDetails", json={"data": DETAILS})

    back = client.post(f"/api/session/{session_id}/navigate", json={"direction": "back"}).json()
    assert back["state"]["active_step"] == "businessDetails"

    blocked = client.post(f"/api/session/{session_id}/navigate", json={"index": 3}).json()
    assert blocked["ok"] is False

    assert client.post(f"/api/session/{session_id}/navigate", json={}).status_code == 400


def test_business_type_change_hides_directors(client, fake):
    session_id = _open(client)
    resp = client.post(f"/api/session/{session_id}/business-type",
                       json={"business_type": {"type": "sole_proprietorship", "name": "Sole Proprietorship"}})
    keys = [step["key"] for step in resp.json()["state"]["steps"]]
    assert "directors" not in keys


def test_kyc_attach_and_upload(client, fake):
    session_id = _open(client)
    client.post(f"/api/session/{session_id}/steps/businessDetails", json={"data": DETAILS})

    loaded = client.get(f"/api/session/{session_id}/kyc").json()
    assert [r["show_upload"] for r in loaded["requirements"]] == [True, True, True]

    for index, name in ((0, "inc.pdf"), (1, "address.pdf")):
        resp = client.post(
            f"/api/session/{session_id}/kyc/{index}",
            files={"file": (name, b"%PDF-1.4", "application/pdf")},
            data={"expires_on": "2027-01-01"},
        )
        assert resp.status_code == 200

    assert client.post(f"/api/session/{session_id}/kyc/7",
                       files={"file": ("x.pdf", b"%PDF", "application/pdf")}).status_code == 404

    body = client.post(f"/api/session/{session_id}/kyc").json()
    assert body["ok"] is True
    assert len(fake.uploads) == 1
    assert [r["approval_status"] for r in body["requirements"]] == ["pending", "pending", None]
    assert body["requirements"][1]["expires_on"] == "2027-01-01"


def test_kyc_missing_required_is_422(client, fake):
    session_id = _open(client)
    client.post(f"/api/session/{session_id}/steps/businessDetails", json={"data": DETAILS})
    client.get(f"/api/session/{session_id}/kyc")

    resp = client.post(f"/api/session/{session_id}/kyc")

    assert resp.status_code == 422
    assert set(resp.json()["detail"]["errors"]) == {"docs.0.file", "docs.1.file"}
    assert fake.uploads == []


def test_attach_before_loading_is_400(client, fake):
    session_id = _open(client)
    resp = client.post(f"/api/session/{session_id}/kyc/0",
                       files={"file": ("x.pdf", b"%PDF", "application/pdf")})
    assert resp.status_code == 400


def test_complete_twice_calls_backend_once(client, fake):
    session_id = _open(client)
    client.post(f"/api/session/{session_id}/steps/businessDetails", json={"data": DETAILS})

    first = client.post(f"/api/session/{session_id}/complete").json()
    second = client.post(f"/api/session/{session_id}/complete").json()

    assert first["ok"] is True
    assert second["duplicate"] is True
    assert fake.calls_to("/onboarding/complete") == 1

    summary = client.get(f"/api/session/{session_id}/summary").json()
    assert summary["completion"] == "completed"
    assert summary["summary"]["Business Details"]["Business Name"] == "Acme Trading Ltd"


def test_resume_draft(client, fake):
    fake.add_business({"business_id": 31, "business_name": "Resumed Ltd", "business_type": "partnership"})

    resp = client.post("/api/session", json={"draft": {"business_id": 31}})

    state = resp.json()["state"]
    assert state["business_id"] == 31
    assert state["form_data"]["businessDetails"]["businessName"] == "Resumed Ltd"


def test_close_forgets_session(client, fake):
    session_id = _open(client)
    assert client.delete(f"/api/session/{session_id}").json() == {"ok": True}
    assert client.get(f"/api/session/{session_id}").status_code == 404


def test_lookups(client, fake):
    types = client.get("/api/lookups/business-types").json()
    assert {"type": "sole_proprietorship", "name": "Sole Proprietorship"} in types
    assert client.get("/api/lookups/business-levels").json()[0]["level"] == "tier_1"

    fake.fail.add("/auth/business-types")
    assert client.get("/api/lookups/business-types").status_code == 502


def test_session_log(client, fake):
    session_id = _open(client)
    client.post(f"/api/session/{session_id}/steps/businessDetails", json={"data": DETAILS})

    log = client.get(f"/api/logs/{session_id}").json()

    assert [t["action"] for t in log["turns"]] == ["open", "submit"]
    assert log["business_id"] == 100
    assert any(entry["session_id"] == session_id for entry in client.get("/api/logs").json())
    assert client.get("/api/logs/missing").status_code == 404
