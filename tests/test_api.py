# Copyright (c) 2025 Trae AI. All rights reserved.

import json
import pytest
from culler.core.config import Config
from culler.core.models import MediaItem, MediaStatus, MediaType
from culler.server.app import Server
from culler.services.container import Services

GB = 1024 ** 3


@pytest.fixture
def server(tmp_path):
    config = Config(database_path=tmp_path / "api.db")
    return Server(config=config, services=Services(config))


@pytest.fixture
def client(server):
    server.app.config["TESTING"] = True
    return server.app.test_client()


@pytest.fixture
def item(server):
    return server.services.media_repo.create(MediaItem(
        type=MediaType.MOVIE, title="Heat", tmdb_id=949, file_size=4 * GB,
    ))


def _events(response):
    body = response.get_data(as_text=True)
    return [json.loads(chunk[len("data: "):]) for chunk in body.split("\n\n") if chunk.startswith("data: ")]


def test_health(client):
    response = client.get("/api/health")
    assert response.status_code == 200
    assert response.get_json()["status"] == "ok"


def test_mark_and_list_queue(client, item):
    response = client.post(f"/api/queue/{item.id}", json={"grace_period_days": 3, "deletion_action": "unmonitor"})
    assert response.status_code == 200
    body = response.get_json()
    assert body["status"] == "pending_deletion"
    assert body["deletion_action"] == "unmonitor_only"

    queue = client.get("/api/queue").get_json()
    assert [entry["title"] for entry in queue["items"]] == ["Heat"]
    assert queue["items"][0]["days_remaining"] == 3
    assert queue["stats"]["queue_size"] == 1


def test_unmark_returns_item_to_monitored(client, item):
    client.post(f"/api/queue/{item.id}", json={})
    response = client.delete(f"/api/queue/{item.id}")
    assert response.status_code == 200
    assert response.get_json()["status"] == "monitored"
    assert response.get_json()["delete_after"] is None


def test_missing_item_is_404(client):
    response = client.post("/api/queue/404", json={})
    assert response.status_code == 404
    assert "not found" in response.get_json()["error"]


def test_protected_item_cannot_be_queued(client, item):
    assert client.post(f"/api/media/{item.id}/protect", json={"reason": "favourite"}).status_code == 200
    response = client.post(f"/api/queue/{item.id}", json={})
    assert response.status_code == 400
    assert "protected" in response.get_json()["error"]


def test_negative_grace_period_is_400(client, item):
    assert client.post(f"/api/queue/{item.id}", json={"grace_period_days": -2}).status_code == 400


def test_delete_now_requires_queued_item(client, item):
    response = client.post(f"/api/queue/{item.id}/delete-now")
    assert response.status_code == 400
    assert "not in the deletion queue" in response.get_json()["error"]


def test_delete_now_stream(client, server, item):
    client.post(f"/api/queue/{item.id}", json={"grace_period_days": 5})

    response = client.get(f"/api/queue/{item.id}/delete-now/stream")
    assert response.status_code == 200
    assert response.mimetype == "text/event-stream"

    events = _events(response)
    assert events[0]["stage"] == "starting"
    assert events[-1]["stage"] == "complete"
    assert events[-1]["result"]["file_size_freed"] == 4 * GB
    assert server.services.media_repo.get_by_id(item.id).status == MediaStatus.DELETED
    assert server.services.history_repo.get_stats()["total_deleted"] == 1


def test_bulk_mark_reports_failures(client, item):
    response = client.post("/api/queue/bulk/mark", json={"ids": [item.id, 999]})
    body = response.get_json()
    assert body["success"] == 1
    assert body["failed"] == 1
    assert body["errors"][0]["item_id"] == 999


def test_process_queue_dry_run(client, item):
    client.post(f"/api/queue/{item.id}", json={"grace_period_days": 0})
    body = client.post("/api/queue/process?dry_run=true").get_json()
    assert body["dry_run"] is True
    assert body["processed"] == 1
    assert client.get(f"/api/media/{item.id}").get_json()["status"] == "pending_deletion"


def test_media_listing_filters(client, server, item):
    server.services.media_repo.create(MediaItem(type=MediaType.SHOW, title="Lost", sonarr_id=1))
    body = client.get("/api/media?type=show").get_json()
    assert body["total"] == 1
    assert body["items"][0]["title"] == "Lost"
    assert client.get("/api/media/999").status_code == 404


def test_rules_are_validated(client):
    bad = client.post("/api/rules", json={
        "name": "Broken",
        "conditions": [{"field": "size_gb", "operator": "contains", "value": "big"}],
        "action": "flag",
    })
    assert bad.status_code == 400

    good = client.post("/api/rules", json={
        "name": "Unwatched",
        "conditions": [{"field": "play_count", "operator": "equals", "value": 0}],
        "action": "delete",
        "grace_period_days": 10,
    })
    assert good.status_code == 201
    rule_id = good.get_json()["id"]

    assert client.put(f"/api/rules/{rule_id}", json={"enabled": False}).get_json()["enabled"] is False
    assert client.delete(f"/api/rules/{rule_id}").status_code == 200
    assert client.delete(f"/api/rules/{rule_id}").status_code == 404


def test_run_task(client):
    response = client.post("/api/scheduler/processDeletionQueue/run")
    assert response.status_code == 200
    assert response.get_json()["success"] is True


def test_unknown_task_is_404(client):
    assert client.post("/api/scheduler/cleanEverything/run").status_code == 404


def test_running_task_is_409(client, server):
    server.scheduler.task_manager.try_start("scanLibraries")
    response = client.post("/api/scheduler/scanLibraries/run")
    assert response.status_code == 409
    assert client.post("/api/scan").status_code == 409


def test_invalid_schedule_is_400(client):
    response = client.put("/api/scheduler/scanLibraries", json={"schedule": "whenever"})
    assert response.status_code == 400
    assert "Invalid cron expression" in response.get_json()["error"]


def test_scheduler_status_lists_tasks(client):
    client.post("/api/scheduler/sendDeletionReminders/disable")
    statuses = {task["name"]: task for task in client.get("/api/scheduler").get_json()}
    assert set(statuses) == {"scanLibraries", "processDeletionQueue", "sendDeletionReminders"}
    assert statuses["sendDeletionReminders"]["enabled"] is False
    assert statuses["sendDeletionReminders"]["next_run"] is None


def test_grace_period_is_coerced_to_int(client, item):
    response = client.post(f"/api/queue/{item.id}", json={"grace_period_days": "3"})
    assert response.status_code == 200
    assert response.get_json()["status"] == "pending_deletion"


def test_non_numeric_grace_period_is_400(client, item):
    response = client.post(f"/api/queue/{item.id}", json={"grace_period_days": "soon"})
    assert response.status_code == 400
    assert "grace_period_days" in response.get_json()["error"]
    assert client.post("/api/queue/bulk/mark", json={"ids": [item.id], "grace_period_days": []}).status_code == 400


def test_toggle_rule(client):
    rule_id = client.post("/api/rules", json={
        "name": "Big",
        "conditions": [{"field": "size_gb", "operator": "greater_than", "value": 50}],
        "action": "flag",
    }).get_json()["id"]

    assert client.post(f"/api/rules/{rule_id}/toggle").get_json()["enabled"] is False
    assert client.post(f"/api/rules/{rule_id}/toggle").get_json()["enabled"] is True
    assert client.post(f"/api/rules/{rule_id}/toggle", json={"enabled": True}).get_json()["enabled"] is True
    assert client.post("/api/rules/999/toggle").status_code == 404
