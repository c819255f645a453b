import logging

from fastapi.testclient import TestClient

from task_recurrence.api import app
from task_recurrence.scheduler import set_default_scheduler


HEADERS = {"X-User-ID": "manager"}

PAYLOAD = {
    "name": "Weekly backup check",
    "cron": "0 9 * * 1",
    "title": "Check backups",
    "description": "Verify last night's backup job",
    "priority": "High",
    "assignee_id": "alice",
    "branch": "HQ",
    "tags": ["backup"],
    "attributes": {"server_name": "srv-01"},
}


def setup_client(scheduler):
    set_default_scheduler(scheduler)
    return TestClient(app)


def _create(client, **overrides):
    body = dict(PAYLOAD, **overrides)
    resp = client.post("/templates", json=body, headers=HEADERS)
    assert resp.status_code == 201, resp.text
    return resp.json()


def test_create_schedules_first_generation(scheduler):
    client = setup_client(scheduler)
    data = _create(client)

    assert data["name"] == "Weekly backup check"
    assert data["created_by"] == "manager"
    assert data["enabled"] is True
    assert data["fields"]["priority"] == "High"
    assert data["fields"]["attributes"] == {"server_name": "srv-01"}
    assert data["last_generated_at"] is None
    # 09:00 Asia/Jerusalem on the following Monday
    assert data["next_generation_at"] == "2024-01-08T07:00:00+00:00"


def test_create_rejects_invalid_cron(scheduler):
    client = setup_client(scheduler)
    resp = client.post(
        "/templates", json=dict(PAYLOAD, cron="not-a-cron"), headers=HEADERS
    )
    assert resp.status_code == 422
    assert client.get("/templates").json() == []


def test_create_requires_user_header(scheduler):
    client = setup_client(scheduler)
    resp = client.post("/templates", json=PAYLOAD)
    assert resp.status_code == 400


def test_list_filters(scheduler):
    client = setup_client(scheduler)
    _create(client, name="a")
    _create(client, name="b", assignee_id="bob", enabled=False)

    assert [t["name"] for t in client.get("/templates").json()] == ["a", "b"]
    assert [t["name"] for t in client.get("/templates?assignee_id=bob").json()] == ["b"]
    assert [t["name"] for t in client.get("/templates?enabled=true").json()] == ["a"]


def test_update_cron_reschedules(scheduler):
    client = setup_client(scheduler)
    created = _create(client)

    resp = client.put(
        f"/templates/{created['id']}", json={"cron": "0 8 * * *"}, headers=HEADERS
    )
    assert resp.status_code == 200
    assert resp.json()["cron"] == "0 8 * * *"
    assert resp.json()["next_generation_at"] == "2024-01-02T06:00:00+00:00"


def test_update_other_fields_keeps_schedule(scheduler):
    client = setup_client(scheduler)
    created = _create(client)

    resp = client.put(
        f"/templates/{created['id']}",
        json={"title": "Check offsite backups", "priority": "Low"},
        headers=HEADERS,
    )
    data = resp.json()
    assert data["fields"]["title"] == "Check offsite backups"
    assert data["fields"]["priority"] == "Low"
    assert data["fields"]["description"] == PAYLOAD["description"]
    assert data["next_generation_at"] == created["next_generation_at"]


def test_update_unknown_template(scheduler):
    client = setup_client(scheduler)
    resp = client.put("/templates/missing", json={"name": "x"}, headers=HEADERS)
    assert resp.status_code == 404


def test_manual_generate_and_detail(scheduler):
    client = setup_client(scheduler)
    created = _create(client)

    resp = client.post(f"/templates/{created['id']}/generate", headers=HEADERS)
    assert resp.status_code == 201
    body = resp.json()
    assert body["instance"]["title"] == "Check backups"
    assert body["instance"]["assignee_id"] == "alice"
    assert body["instance"]["type"] == "recurring_instance"
    assert body["record"]["trigger"] == "manual"
    assert body["record"]["actor_id"] == "manager"
    assert body["notified"] is True

    detail = client.get(f"/templates/{created['id']}").json()
    assert [i["id"] for i in detail["recent_instances"]] == [body["instance"]["id"]]
    assert detail["last_generated_at"] == "2024-01-01T07:01:00+00:00"
    assert detail["next_generation_at"] == created["next_generation_at"]


def test_delete_keeps_history(scheduler):
    client = setup_client(scheduler)
    created = _create(client)
    client.post(f"/templates/{created['id']}/generate", headers=HEADERS)

    resp = client.delete(f"/templates/{created['id']}", headers=HEADERS)
    assert resp.json() == {"success": True}
    assert client.get(f"/templates/{created['id']}").status_code == 404
    assert client.delete(f"/templates/{created['id']}", headers=HEADERS).status_code == 404

    history = client.get(f"/templates/{created['id']}/history").json()
    assert len(history) == 1
    assert history[0]["template_name"] == "Weekly backup check"


def test_scheduler_status(scheduler):
    client = setup_client(scheduler)
    _create(client)

    status = client.get("/scheduler").json()
    assert status == {"running": False, "interval_seconds": 3600.0, "last_report": None}

    scheduler.run_once()
    report = client.get("/scheduler").json()["last_report"]
    assert report["succeeded"] == 0
    assert report["error"] is None


def test_without_scheduler_returns_503():
    client = TestClient(app)
    assert client.get("/templates").status_code == 503
    assert client.get("/scheduler").status_code == 503


def test_create_rejects_cron_that_never_fires(scheduler):
    client = setup_client(scheduler)
    resp = client.post(
        "/templates", json=dict(PAYLOAD, cron="0 0 30 2 *"), headers=HEADERS
    )
    assert resp.status_code == 422
    assert client.get("/templates").json() == []


def test_create_rejects_non_crontab_syntax(scheduler):
    client = setup_client(scheduler)
    resp = client.post(
        "/templates", json=dict(PAYLOAD, cron="0 9 * * mon#1"), headers=HEADERS
    )
    assert resp.status_code == 422


def test_update_and_delete_log_acting_user(scheduler, caplog):
    client = setup_client(scheduler)
    created = _create(client)

    with caplog.at_level(logging.INFO, logger="task_recurrence.admin"):
        client.put(
            f"/templates/{created['id']}", json={"name": "Nightly"}, headers=HEADERS
        )
        client.delete(f"/templates/{created['id']}", headers=HEADERS)

    assert f"Template {created['id']} (Nightly) updated by manager" in caplog.text
    assert f"Template {created['id']} deleted by manager" in caplog.text
