"""Integration tests for user provisioning and approver lookup."""

import uuid

from ptw.core.lifecycle.states import UserRole

from tests.factories import create_user


class TestApproverLookup:
    """Approver choices offered when raising a permit."""

    def test_lists_active_users_for_slot(self, client, auth_headers, db_session, requester, area_manager,
                                         safety_officer):
        create_user(db_session, role=UserRole.AREA_MANAGER, is_active=False)

        response = client.get("/api/users/approvers/area_manager", headers=auth_headers(requester))

        assert response.status_code == 200
        assert [a["id"] for a in response.json()] == [str(area_manager.id)]

    def test_lookup_result_binds_a_permit(self, client, auth_headers, requester, site_leader):
        headers = auth_headers(requester)
        choices = client.get("/api/users/approvers/site_leader", headers=headers).json()

        response = client.post(
            "/api/permits",
            json={
                "permit_types": ["Confined Space"],
                "work_description": "Inspect sump pit",
                "work_location": "Pump house",
                "start_time": "2026-03-02T09:00:00",
                "end_time": "2026-03-02T12:00:00",
                "site_leader_id": choices[0]["id"],
            },
            headers=headers,
        )

        assert response.status_code == 201
        assert response.json()["approvers"][0]["user_id"] == str(site_leader.id)

    def test_unknown_slot(self, client, auth_headers, requester):
        response = client.get("/api/users/approvers/night_watch", headers=auth_headers(requester))
        assert response.status_code == 422


class TestUserAdministration:
    """Admin-only account management."""

    def test_admin_creates_approver(self, client, auth_headers, admin):
        response = client.post(
            "/api/users",
            json={"email": "New.Officer@Example.com", "full_name": "Nia Officer", "role": "Approver_Safety"},
            headers=auth_headers(admin),
        )

        assert response.status_code == 201
        body = response.json()
        assert body["email"] == "new.officer@example.com"
        assert body["role"] == UserRole.SAFETY_OFFICER.value

        choices = client.get("/api/users/approvers/safety_officer", headers=auth_headers(admin)).json()
        assert [c["id"] for c in choices] == [body["id"]]

    def test_duplicate_email(self, client, auth_headers, admin, requester):
        response = client.post(
            "/api/users",
            json={"email": requester.email, "full_name": "Copy", "role": "Requester"},
            headers=auth_headers(admin),
        )
        assert response.status_code == 400
        assert response.json()["detail"]["error"] == "validation_error"

    def test_requester_cannot_provision(self, client, auth_headers, requester):
        response = client.post(
            "/api/users",
            json={"email": "someone@example.com", "full_name": "Someone", "role": "Admin"},
            headers=auth_headers(requester),
        )
        assert response.status_code == 403

    def test_deactivate(self, client, auth_headers, admin, area_manager):
        response = client.patch(
            f"/api/users/{area_manager.id}", json={"is_active": False}, headers=auth_headers(admin)
        )
        assert response.status_code == 200
        assert response.json()["is_active"] is False

        assert client.get("/api/permits", headers=auth_headers(area_manager)).status_code == 401
        listed = client.get("/api/users", headers=auth_headers(admin)).json()
        assert str(area_manager.id) not in [u["id"] for u in listed]

    def test_list_filtered_by_role(self, client, auth_headers, admin, requester, area_manager):
        response = client.get("/api/users?role=Requester", headers=auth_headers(admin))
        assert [u["id"] for u in response.json()] == [str(requester.id)]

    def test_update_unknown_user(self, client, auth_headers, admin):
        response = client.patch(f"/api/users/{uuid.uuid4()}", json={"full_name": "Ghost"}, headers=auth_headers(admin))
        assert response.status_code == 404
