"""
Scheduler API Tests.

Tests for api/scheduler_router.py endpoints via TestClient. The gateway,
preferences and clock dependencies are overridden with a temp DB, UTC
working hours and a pinned clock.
"""

import pytest
from fastapi.testclient import TestClient

from api.scheduler_router import get_clock, get_gateway, get_preferences
from api.server import app
from tests.fixtures import DAY, OWNER, UTC_PREFS, at, fixed_clock, make_block, make_task, seeded_gateway

HEADERS = {"X-Owner-Id": OWNER}


@pytest.fixture
def seeded(tmp_path):
    gateway, ids = seeded_gateway(
        tmp_path / "api.db",
        tasks=[
            make_task("placed", scheduled_block_id="b1", do_date=DAY, committed_date=DAY),
            make_task("free", priority_level="p1", duration_minutes=60),
        ],
        blocks=[make_block("b1", at(9), at(9, 30), task_id="placed")],
    )
    return gateway, ids


@pytest.fixture
def client(seeded):
    gateway, _ = seeded
    app.dependency_overrides[get_gateway] = lambda: gateway
    app.dependency_overrides[get_preferences] = lambda: UTC_PREFS
    app.dependency_overrides[get_clock] = lambda: fixed_clock()
    yield TestClient(app)
    app.dependency_overrides.clear()


class TestScheduleEndpoints:
    def test_owner_header_required(self, client):
        response = client.post("/api/tasks/schedule", json={})
        assert response.status_code == 401

    def test_schedule_persists(self, client, seeded):
        gateway, _ = seeded
        response = client.post("/api/tasks/schedule", json={"target_date": "2026-03-02"}, headers=HEADERS)

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["data"]["summary"]["total_scheduled"] == 1
        [scheduled] = body["data"]["scheduled_tasks"]
        assert scheduled["task_id"] == "free"
        assert scheduled["scheduled_start"] == at(9, 30).isoformat()
        [block] = body["data"]["created_blocks"]
        assert block["id"] == gateway.read_task("free", OWNER).scheduled_block_id
        assert block["start_time"] == at(9, 30).isoformat()
        assert block["metadata"]["task_id"] == "free"

    def test_preview_writes_nothing(self, client, seeded):
        gateway, _ = seeded
        response = client.post("/api/tasks/schedule/preview", json={}, headers=HEADERS)

        assert response.status_code == 200
        assert response.json()["data"]["summary"]["total_scheduled"] == 1
        assert gateway.read_task("free", OWNER).scheduled_block_id is None

    def test_invalid_max_tasks(self, client):
        response = client.post("/api/tasks/schedule", json={"max_tasks": 0}, headers=HEADERS)
        assert response.status_code == 422

    def test_validate(self, client):
        response = client.get("/api/schedule/validate", params={"date": "2026-03-02"}, headers=HEADERS)
        assert response.status_code == 200
        body = response.json()
        assert body["valid"] is True
        assert body["stats"]["task_blocks"] == 1


class TestTaskTransitions:
    def test_reschedule_in_place(self, client, seeded):
        gateway, ids = seeded
        response = client.post(
            "/api/tasks/reschedule",
            json={"task_id": "placed", "new_date": "2026-03-03", "new_time": "11:00"},
            headers=HEADERS,
        )

        assert response.status_code == 200
        assert response.json()["message"] == "Task rescheduled to 2026-03-03 at 11:00"
        assert gateway.read_block(ids["b1"], OWNER).start_time == at(11, days=1)

    def test_reschedule_missing_fields(self, client):
        response = client.post("/api/tasks/reschedule", json={"task_id": "placed"}, headers=HEADERS)
        assert response.status_code == 400
        assert response.json()["detail"] == "task_id and new_date are required"

    def test_reschedule_unknown_task(self, client):
        response = client.post(
            "/api/tasks/reschedule", json={"task_id": "ghost", "new_date": "2026-03-03"}, headers=HEADERS
        )
        assert response.status_code == 404

    def test_other_owner_gets_404(self, client):
        response = client.post(
            "/api/tasks/defer", json={"task_id": "placed"}, headers={"X-Owner-Id": "user_2"}
        )
        assert response.status_code == 404

    def test_defer_someday(self, client, seeded):
        gateway, ids = seeded
        response = client.post(
            "/api/tasks/defer", json={"task_id": "placed", "defer_to": "someday"}, headers=HEADERS
        )

        assert response.status_code == 200
        body = response.json()
        assert body["defer_count"] == 1
        assert body["data"]["scheduled_block_id"] is None
        assert body["data"]["do_date"] is None
        assert gateway.read_block(ids["b1"], OWNER) is None

    def test_put_reschedule_defers(self, client):
        response = client.put("/api/tasks/reschedule", json={"task_id": "placed"}, headers=HEADERS)
        assert response.status_code == 200
        assert response.json()["message"] == "Task deferred to 2026-03-03"

    def test_defer_bad_target(self, client):
        response = client.post(
            "/api/tasks/defer", json={"task_id": "placed", "defer_to": "whenever"}, headers=HEADERS
        )
        assert response.status_code == 400

    def test_commit_and_uncommit(self, client, seeded):
        gateway, _ = seeded
        response = client.post(
            "/api/tasks/commit", json={"task_id": "free", "date": "2026-03-02", "start_time": "13:00"}, headers=HEADERS
        )
        assert response.status_code == 200
        block_id = response.json()["data"]["scheduled_block_id"]
        assert gateway.read_block(block_id, OWNER).start_time == at(13)

        response = client.delete("/api/tasks/commit", params={"task_id": "free"}, headers=HEADERS)
        assert response.status_code == 200
        assert response.json()["message"] == "Task moved to backlog"
        assert gateway.read_block(block_id, OWNER) is None

    def test_uncommit_requires_task_id(self, client):
        response = client.delete("/api/tasks/commit", headers=HEADERS)
        assert response.status_code == 400

    def test_complete(self, client):
        response = client.post("/api/tasks/placed/complete", headers=HEADERS)
        assert response.status_code == 200
        assert response.json()["data"]["status"] == "done"


class TestCreateTaskEndpoint:
    def test_create_and_schedule(self, client, seeded):
        gateway, _ = seeded
        response = client.post(
            "/api/tasks", json={"name": "Write proposal", "due_date": "2026-03-06"}, headers=HEADERS
        )

        assert response.status_code == 200
        body = response.json()
        assert body["message"] == 'Task created and scheduled: "Write proposal"'
        task = body["data"]["task"]
        assert task["duration_minutes"] == 90
        assert task["do_date"] == "2026-03-05"
        [block] = body["data"]["scheduling"]["created_blocks"]
        assert block["start_time"] == at(9, days=3).isoformat()
        assert gateway.read_task(task["id"], OWNER).scheduled_block_id == block["id"]

    def test_create_backlog_only(self, client):
        response = client.post("/api/tasks", json={"name": "Tidy inbox"}, headers=HEADERS)

        assert response.status_code == 200
        body = response.json()
        assert body["message"] == 'Task created: "Tidy inbox"'
        assert body["data"]["scheduling"] is None

    def test_name_required(self, client):
        response = client.post("/api/tasks", json={"due_date": "2026-03-06"}, headers=HEADERS)
        assert response.status_code == 400
        assert response.json()["detail"] == "Task name is required"

    def test_commit_done_task_warns(self, client, seeded):
        gateway, _ = seeded
        client.post("/api/tasks/free/complete", headers=HEADERS)
        response = client.post("/api/tasks/commit", json={"task_id": "free"}, headers=HEADERS)

        assert response.status_code == 200
        assert response.json()["message"] == "Task already done"
        assert response.json()["warnings"]
        assert gateway.read_task("free", OWNER).scheduled_block_id is None


class TestServer:
    def test_request_id_echoed(self, client):
        response = client.get("/api/health", headers={"X-Request-ID": "req-fixed"})
        assert response.status_code == 200
        assert response.headers["x-request-id"] == "req-fixed"

    def test_request_id_generated(self, client):
        response = client.get("/api/health")
        assert response.headers["x-request-id"].startswith("req-")

    def test_config_endpoint(self, client):
        response = client.get("/api/config")
        assert response.status_code == 200
        assert "working_hours" in response.json()

    def test_unexpected_error_is_500(self, client, seeded):
        gateway, _ = seeded

        class BrokenGateway(type(gateway)):
            def read_task(self, task_id, owner_id):
                raise RuntimeError("db locked")

        app.dependency_overrides[get_gateway] = lambda: BrokenGateway(gateway.db_path)
        response = client.post("/api/tasks/placed/complete", headers=HEADERS)

        assert response.status_code == 500
        assert response.json()["detail"] == "Internal server error"
