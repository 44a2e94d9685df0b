"""Tests for the admin endpoints and the invitation workflow over HTTP."""


def invite(client, admin, email):
    return client.post("/api/v1/admin/invitations", json={"email": email}, headers=admin.headers)


class TestInvitations:
    def test_invite_accept_flow(self, client, team, make_user):
        carol = make_user("carol@example.com")
        resp = invite(client, team.admin, carol.email)
        assert resp.status_code == 201
        assert resp.json()["outcome"] == "sent"

        pending = client.get("/api/v1/users/me/invitations", headers=carol.headers).json()
        assert [p["organization_name"] for p in pending] == ["Acme"]

        request_id = pending[0]["id"]
        resp = client.post(f"/api/v1/users/me/invitations/{request_id}/approve", headers=carol.headers)
        assert resp.json()["status"] == "approved"
        assert client.get("/api/v1/users/me", headers=carol.headers).json()["organization_id"] == team.org["id"]

    def test_duplicate_invite(self, client, team, make_user):
        carol = make_user("carol@example.com")
        invite(client, team.admin, carol.email)
        resp = invite(client, team.admin, carol.email)
        assert resp.status_code == 409
        assert resp.json()["detail"] == "Invitation already sent"

    def test_reinvite_after_deny(self, client, team, make_user):
        carol = make_user("carol@example.com")
        first = invite(client, team.admin, carol.email).json()["request"]
        client.post(f"/api/v1/users/me/invitations/{first['id']}/deny", headers=carol.headers)

        resp = invite(client, team.admin, carol.email)

        assert resp.status_code == 201
        assert resp.json()["outcome"] == "resent"
        assert resp.json()["request"]["id"] == first["id"]
        assert resp.json()["request"]["status"] == "pending"

    def test_answering_twice_conflicts(self, client, team, make_user):
        carol = make_user("carol@example.com")
        request_id = invite(client, team.admin, carol.email).json()["request"]["id"]
        client.post(f"/api/v1/users/me/invitations/{request_id}/deny", headers=carol.headers)
        resp = client.post(f"/api/v1/users/me/invitations/{request_id}/approve", headers=carol.headers)
        assert resp.status_code == 409

    def test_unknown_email(self, client, team):
        resp = invite(client, team.admin, "ghost@example.com")
        assert resp.status_code == 404
        assert resp.json()["detail"] == "No user found with this email address."

    def test_member_of_organization(self, client, team):
        resp = invite(client, team.admin, team.alice.email)
        assert resp.status_code == 409
        assert resp.json()["detail"] == "This user is already part of an organization."


class TestUserManagement:
    def test_list_members(self, client, team, make_user):
        make_user("outsider@example.com")
        users = client.get("/api/v1/admin/users", headers=team.admin.headers).json()
        assert {u["email"] for u in users} == {"admin@example.com", "alice@example.com", "bob@example.com"}

    def test_edit_department_hours_and_role(self, client, team):
        resp = client.put(
            f"/api/v1/admin/users/{team.alice.id}",
            json={"department_id": team.department["id"], "working_hours": 120, "role": "admin"},
            headers=team.admin.headers,
        )
        assert resp.status_code == 200
        body = resp.json()
        assert body["department_id"] == team.department["id"]
        assert body["working_hours"] == 120
        assert body["role"] == "admin"

    def test_none_clears_department(self, client, team):
        url = f"/api/v1/admin/users/{team.alice.id}"
        client.put(url, json={"department_id": team.department["id"]}, headers=team.admin.headers)
        resp = client.put(url, json={"department_id": "none"}, headers=team.admin.headers)
        assert resp.json()["department_id"] is None

    def test_remove_member(self, client, team):
        resp = client.delete(f"/api/v1/admin/users/{team.bob.id}/membership", headers=team.admin.headers)
        assert resp.status_code == 204
        assert client.get("/api/v1/users/me", headers=team.bob.headers).json()["organization_id"] is None

    def test_cannot_remove_self(self, client, team):
        resp = client.delete(f"/api/v1/admin/users/{team.admin.id}/membership", headers=team.admin.headers)
        assert resp.status_code == 400

    def test_members_are_forbidden(self, client, team):
        assert client.get("/api/v1/admin/users", headers=team.alice.headers).status_code == 403

    def test_user_outside_organization_not_found(self, client, team, make_user):
        outsider = make_user("outsider@example.com")
        resp = client.get(f"/api/v1/admin/users/{outsider.id}/detail", headers=team.admin.headers)
        assert resp.status_code == 404


class TestUserReports:
    def test_detail(self, client, team):
        allotment = client.post(
            "/api/v1/work-allotments",
            json={"title": "Q2 build", "target_hours": 50, "start_date": "2024-01-01"},
            headers=team.admin.headers,
        ).json()
        client.post(
            "/api/v1/tasks",
            json={"title": "Ship it", "allotment_id": allotment["id"], "user_ids": [team.alice.id]},
            headers=team.admin.headers,
        )

        detail = client.get(f"/api/v1/admin/users/{team.alice.id}/detail", headers=team.admin.headers).json()

        assert detail["profile"]["department_name"] == "No Department"
        assert [t["allotment_title"] for t in detail["tasks"]] == ["Q2 build"]
        assert len(detail["sessions"]) == 1
        assert len(detail["attendance"]) == 1

    def test_sessions_this_month(self, client, team):
        sessions = client.get(f"/api/v1/admin/users/{team.alice.id}/sessions", headers=team.admin.headers).json()
        assert len(sessions) == 1
        assert sessions[0]["logout_time"] is None

    def test_performance_uses_default_target(self, client, team):
        resp = client.get(f"/api/v1/admin/users/{team.alice.id}/performance", headers=team.admin.headers)
        assert resp.status_code == 200
        report = resp.json()
        assert report["period"] == "month"
        assert report["monthly_hours"]["target"] == 40
        assert report["completion_rate"] == 0

    def test_performance_uses_profile_target(self, client, team):
        client.put(f"/api/v1/admin/users/{team.alice.id}", json={"working_hours": 160}, headers=team.admin.headers)
        resp = client.get("/api/v1/users/me/performance?period=week", headers=team.alice.headers)
        assert resp.json()["monthly_hours"]["target"] == 160
        assert resp.json()["period"] == "week"

    def test_unknown_period(self, client, team):
        resp = client.get("/api/v1/users/me/performance?period=decade", headers=team.alice.headers)
        assert resp.status_code == 422
