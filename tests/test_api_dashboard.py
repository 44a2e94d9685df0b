"""Tests for the dashboard snapshot endpoints and the realtime WebSocket."""

import pytest
from starlette.websockets import WebSocketDisconnect

from app.db.models import utcnow


def seed_scenario(client, team):
    """100h allotment, a 10h task for Alice and Bob, 4h logged by each this month."""
    allotment = client.post(
        "/api/v1/work-allotments",
        json={"title": "Q2 build", "target_hours": 100, "start_date": "2024-01-01",
              "department_id": team.department["id"]},
        headers=team.admin.headers,
    ).json()
    tasks = client.post(
        "/api/v1/tasks",
        json={"title": "Ship it", "allotment_id": allotment["id"], "hours": 10,
              "user_ids": [team.alice.id, team.bob.id]},
        headers=team.admin.headers,
    ).json()
    for task in tasks:
        member = team.alice if task["user_id"] == team.alice.id else team.bob
        resp = client.post(
            "/api/v1/daily-logs",
            json={"task_id": task["id"], "hours_spent": 4, "tasks_completed": "Progress",
                  "log_date": utcnow().date().isoformat()},
            headers=member.headers,
        )
        assert resp.status_code == 201
    return allotment, tasks


class TestSnapshots:
    def test_admin_scenario(self, client, team):
        seed_scenario(client, team)

        snapshot = client.get("/api/v1/dashboard/admin", headers=team.admin.headers).json()

        assert snapshot["failed_sections"] == []
        assert len(snapshot["tasks"]) == 2
        assert {t["status"] for t in snapshot["tasks"]} == {"todo"}
        [allotment] = snapshot["work_allotments"]
        assert allotment["monthly_logged_hours"] == 8
        assert allotment["progress_percentage"] == 8
        assert allotment["department_name"] == "Engineering"
        assert snapshot["allotment_progress"]["percentage"] == 8
        assert snapshot["team_status"] == {"available": 0, "total": 3}
        assert {u["name"] for u in snapshot["online_users"]} == {"Ada Admin", "Alice", "Bob"}

    def test_member_snapshot(self, client, team):
        seed_scenario(client, team)

        snapshot = client.get("/api/v1/dashboard/me", headers=team.alice.headers).json()

        assert snapshot["organization"]["name"] == "Acme"
        assert [t["allotment_title"] for t in snapshot["tasks"]] == ["Q2 build"]
        assert snapshot["stats"]["hours_logged_this_month"] == 4
        assert snapshot["stats"]["monthly_target"] == 40
        assert snapshot["department_name"] == "No Department"

    def test_setup_required_without_organization(self, client, make_user):
        user = make_user("new@example.com")
        snapshot = client.get("/api/v1/dashboard/me", headers=user.headers).json()
        assert snapshot["setup_required"] is True
        assert snapshot["organization"] is None

    def test_admin_dashboard_needs_admin_role(self, client, team):
        assert client.get("/api/v1/dashboard/admin", headers=team.alice.headers).status_code == 403


class TestRealtime:
    def test_rejects_bad_token(self, client):
        with pytest.raises(WebSocketDisconnect):
            with client.websocket_connect("/api/v1/realtime/dashboard?token=garbage") as ws:
                ws.receive_json()

    def test_initial_snapshot_then_refresh_on_change(self, client, make_user):
        user = make_user("live@example.com")
        url = f"/api/v1/realtime/dashboard?token={user.token}"
        with client.websocket_connect(url) as ws:
            first = ws.receive_json()
            assert first["type"] == "snapshot"
            assert first["scope"] == "member"
            assert first["data"]["profile"]["availability_status"] == "unavailable"

            client.put("/api/v1/users/me/availability", json={"available": True}, headers=user.headers)

            second = ws.receive_json()
            assert second["data"]["profile"]["availability_status"] == "available"

    def test_manual_refresh_message(self, client, make_user):
        user = make_user("live@example.com")
        with client.websocket_connect(f"/api/v1/realtime/dashboard?token={user.token}") as ws:
            ws.receive_json()
            ws.send_json({"type": "refresh"})
            assert ws.receive_json()["type"] == "snapshot"

    def test_disconnect_while_refresh_pending(self, client, make_user):
        user = make_user("live@example.com")
        url = f"/api/v1/realtime/dashboard?token={user.token}"
        for _ in range(3):
            with client.websocket_connect(url) as ws:
                ws.receive_json()
                ws.send_json({"type": "refresh"})
        with client.websocket_connect(url) as ws:
            assert ws.receive_json()["type"] == "snapshot"

    def test_non_json_frame_is_ignored(self, client, make_user):
        user = make_user("live@example.com")
        with client.websocket_connect(f"/api/v1/realtime/dashboard?token={user.token}") as ws:
            ws.receive_json()
            ws.send_text("not json")
            ws.send_json({"type": "refresh"})
            assert ws.receive_json()["type"] == "snapshot"

    def test_admin_scope(self, client, team):
        url = f"/api/v1/realtime/dashboard?token={team.admin.token}&scope=admin"
        with client.websocket_connect(url) as ws:
            first = ws.receive_json()
            assert first["scope"] == "admin"
            assert first["data"]["organization"]["name"] == "Acme"

            client.post("/api/v1/departments", json={"name": "Design"}, headers=team.admin.headers)
            client.put("/api/v1/users/me/availability", json={"available": True}, headers=team.bob.headers)

            snapshot = ws.receive_json()["data"]
            while snapshot["team_status"]["available"] == 0:
                snapshot = ws.receive_json()["data"]
            assert snapshot["team_status"]["available"] == 1

    def test_sign_out_closes_stream(self, client, make_user):
        user = make_user("live@example.com")
        with client.websocket_connect(f"/api/v1/realtime/dashboard?token={user.token}") as ws:
            ws.receive_json()
            client.post("/auth/logout", headers=user.headers)
            with pytest.raises(WebSocketDisconnect):
                while True:
                    ws.receive_json()
