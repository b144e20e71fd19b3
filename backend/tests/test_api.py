from __future__ import annotations

import uuid

from fastapi.testclient import TestClient


def _seed_project(client: TestClient, name: str = "Website") -> dict:
    customer_resp = client.post("/customers", json={"name": "Acme"})
    assert customer_resp.status_code == 201
    customer = customer_resp.json()

    project_resp = client.post("/projects", json={"customer_id": customer["id"], "name": name})
    assert project_resp.status_code == 201
    return project_resp.json()


def test_healthz(client: TestClient):
    resp = client.get("/healthz")
    assert resp.status_code == 200
    assert resp.json() == {"status": "ok"}


def test_timer_workflow(client: TestClient, clock):
    project = _seed_project(client)

    start_resp = client.post("/timer/start", json={"project_id": project["id"], "notes": "Kickoff"})
    assert start_resp.status_code == 200
    started = start_resp.json()
    assert started["status"] == "Success"
    assert started["snapshot"]["status"] == "Running"
    assert started["snapshot"]["active_session"]["project_name"] == "Website"
    assert started["snapshot"]["active_session"]["customer_name"] == "Acme"

    conflict_resp = client.post("/timer/start", json={"project_id": project["id"]})
    assert conflict_resp.status_code == 409
    assert conflict_resp.json()["status"] == "Conflict"

    clock.advance(minutes=27)
    pause_resp = client.post("/timer/pause")
    assert pause_resp.status_code == 200
    assert pause_resp.json()["snapshot"]["status"] == "Paused"

    clock.advance(minutes=5)
    toggle_resp = client.post("/timer/toggle")
    assert toggle_resp.status_code == 200
    assert toggle_resp.json()["snapshot"]["status"] == "Running"

    notes_resp = client.put("/timer/notes", json={"notes": "Sprint planning"})
    assert notes_resp.status_code == 200
    assert notes_resp.json()["snapshot"]["active_session"]["notes"] == "Sprint planning"

    clock.advance(minutes=20)
    stop_resp = client.post("/timer/stop", json={"billable": False})
    assert stop_resp.status_code == 200
    stopped = stop_resp.json()
    assert stopped["snapshot"]["status"] == "Idle"
    assert stopped["snapshot"]["active_session"] is None
    assert len(stopped["snapshot"]["entries"]) == 2
    assert stopped["snapshot"]["entries"][1]["billable"] is False

    history_resp = client.get("/timer/history", params={"date": "2024-03-04"})
    assert history_resp.status_code == 200
    assert [row["project_name"] for row in history_resp.json()] == ["Website", "Website"]

    summary_resp = client.get("/timer/daily-summary", params={"start": "2024-03-04", "end": "2024-03-05"})
    assert summary_resp.status_code == 200
    summaries = summary_resp.json()
    assert len(summaries) == 1
    assert summaries[0]["local_date"] == "2024-03-04"


def test_stop_without_body_and_idle_commands(client: TestClient):
    assert client.post("/timer/stop").status_code == 404
    assert client.post("/timer/pause").status_code == 404
    assert client.post("/timer/resume").status_code == 404
    assert client.post("/timer/cancel").status_code == 404
    assert client.put("/timer/notes", json={"notes": "x"}).status_code == 404


def test_start_validation_maps_to_422_and_404(client: TestClient):
    missing_project = client.post("/timer/start", json={})
    assert missing_project.status_code == 422
    assert missing_project.json()["message"] == "Project is required."

    unknown = client.post("/timer/start", json={"project_id": str(uuid.uuid4())})
    assert unknown.status_code == 404


def test_cancel_discards_running_entry(client: TestClient, clock):
    project = _seed_project(client)
    client.post("/timer/start", json={"project_id": project["id"]})
    clock.advance(minutes=3)

    resp = client.post("/timer/cancel")
    assert resp.status_code == 200
    assert resp.json()["snapshot"]["entries"] == []


def test_adjust_and_delete_entry(client: TestClient, clock):
    project = _seed_project(client)
    client.post("/timer/start", json={"project_id": project["id"]})
    clock.advance(minutes=30)
    entry = client.post("/timer/stop").json()["snapshot"]["entries"][0]
    entry_id = entry["time_entry_id"]

    adjust_resp = client.put(f"/timer/entries/{entry_id}", json={"end_local": "2024-03-04T09:00:00"})
    assert adjust_resp.status_code == 200
    assert adjust_resp.json()["snapshot"]["entries"][0]["end_local"].startswith("2024-03-04T09:00:00")

    unchanged_resp = client.put(f"/timer/entries/{entry_id}", json={"end_local": "2024-03-04T09:00:00"})
    assert unchanged_resp.status_code == 422

    inverted_resp = client.put(f"/timer/entries/{entry_id}", json={"end_local": "2024-03-04T07:00:00"})
    assert inverted_resp.status_code == 422

    delete_resp = client.delete(f"/timer/entries/{entry_id}")
    assert delete_resp.status_code == 200
    assert delete_resp.json()["snapshot"]["entries"] == []

    assert client.delete(f"/timer/entries/{entry_id}").status_code == 404


def test_invalid_dates_are_rejected(client: TestClient):
    assert client.get("/timer/snapshot", params={"date": "not-a-date"}).status_code == 400
    assert client.get("/timer/history", params={"date": "2024-13-01"}).status_code == 400

    inverted = client.get("/timer/daily-summary", params={"start": "2024-03-05", "end": "2024-03-04"})
    assert inverted.status_code == 400


def test_snapshot_for_explicit_date(client: TestClient):
    resp = client.get("/timer/snapshot", params={"date": "2023-12-24"})
    assert resp.status_code == 200
    body = resp.json()
    assert body["local_date"] == "2023-12-24"
    assert body["status"] == "Idle"
    assert body["entries"] == []


def test_customer_and_project_management(client: TestClient):
    assert client.post("/customers", json={"name": "   "}).status_code == 422
    assert client.post("/projects", json={"customer_id": str(uuid.uuid4()), "name": "Orphan"}).status_code == 404

    project = _seed_project(client, name="Backend")
    customers = client.get("/customers").json()
    assert [c["name"] for c in customers] == ["Acme"]

    update_resp = client.put(
        f"/projects/{project['id']}",
        json={"customer_id": project["customer_id"], "name": "Backend API", "is_active": False},
    )
    assert update_resp.status_code == 200
    assert update_resp.json()["name"] == "Backend API"

    assert client.get("/projects").json() == []
    listed = client.get("/projects", params={"include_inactive": True}).json()
    assert listed[0]["project_name"] == "Backend API"
    assert listed[0]["customer_name"] == "Acme"

    missing = client.put(
        f"/projects/{uuid.uuid4()}",
        json={"customer_id": project["customer_id"], "name": "Nope"},
    )
    assert missing.status_code == 404

    archived_start = client.post("/timer/start", json={"project_id": project["id"]})
    assert archived_start.status_code == 422


def test_delete_project(client: TestClient, clock):
    project = _seed_project(client)
    client.post("/timer/start", json={"project_id": project["id"]})

    running_resp = client.delete(f"/projects/{project['id']}")
    assert running_resp.status_code == 409

    clock.advance(minutes=10)
    assert client.post("/timer/pause").status_code == 200

    delete_resp = client.delete(f"/projects/{project['id']}")
    assert delete_resp.status_code == 204
    assert client.get("/projects", params={"include_inactive": True}).json() == []

    resume_resp = client.post("/timer/resume")
    assert resume_resp.status_code == 404
    assert resume_resp.json()["snapshot"]["status"] == "Idle"

    assert client.delete(f"/projects/{project['id']}").status_code == 404
