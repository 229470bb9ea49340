"""
Task API Tests
==============
"""

import pytest

from legalaid.db.models import Notification


def create_task(client, headers, seeded, **body):
    body.setdefault("title", "Bring ID documents")
    body.setdefault("beneficiary_id", seeded["ben1"].id)
    body.setdefault("lawyer_id", seeded["lawyer1"].id)
    response = client.post("/api/tasks", json=body, headers=headers["admin"])
    assert response.status_code == 201, response.text
    return response.json()


class TestCreateTask:

    def test_admin_creates(self, client, headers, seeded):
        task = create_task(client, headers, seeded, priority="high", task_type="client_meeting")

        assert task["status"] == "pending"
        assert task["assigned_to"] == seeded["ben1_user"].id
        assert task["assigned_by"] == seeded["admin"].id
        assert task["task_type"] == "client_meeting"

    def test_only_admins_create(self, client, headers, seeded):
        body = {"title": "x", "beneficiary_id": seeded["ben1"].id}
        assert client.post("/api/tasks", json=body, headers=headers["lawyer1"]).status_code == 403
        assert client.post("/api/tasks", json=body, headers=headers["ben1_user"]).status_code == 403

    def test_beneficiary_without_account(self, client, headers, seeded):
        response = client.post(
            "/api/tasks", json={"title": "x", "beneficiary_id": seeded["ben3"].id}, headers=headers["admin"],
        )
        assert response.status_code == 400
        assert response.json()["error"]["code"] == "invalid_target"

    def test_lawyer_must_be_a_lawyer(self, client, headers, seeded):
        response = client.post(
            "/api/tasks",
            json={"title": "x", "beneficiary_id": seeded["ben1"].id, "lawyer_id": seeded["viewer"].id},
            headers=headers["admin"],
        )
        assert response.status_code == 400

    def test_creation_notifies_lawyer_and_beneficiary(self, client, headers, seeded, db):
        create_task(client, headers, seeded)
        recipients = {n.user_id for n in db.query(Notification).filter(Notification.type == "task_assigned")}
        assert recipients == {seeded["lawyer1"].id, seeded["ben1_user"].id}

    def test_silent_task_skips_beneficiary(self, client, headers, seeded, db):
        create_task(client, headers, seeded, notify_beneficiary=False)
        recipients = {n.user_id for n in db.query(Notification).filter(Notification.type == "task_assigned")}
        assert recipients == {seeded["lawyer1"].id}


class TestTaskVisibility:

    def test_hidden_task_is_404_for_beneficiary(self, client, headers, seeded):
        hidden = create_task(client, headers, seeded, show_in_portal=False)
        shown = create_task(client, headers, seeded, title="Sign the form")

        assert client.get(f"/api/tasks/{hidden['id']}", headers=headers["ben1_user"]).status_code == 404
        assert client.get(f"/api/tasks/{hidden['id']}", headers=headers["lawyer1"]).status_code == 200

        listed = client.get("/api/tasks", headers=headers["ben1_user"]).json()
        assert [t["id"] for t in listed] == [shown["id"]]

    def test_portal_shape_has_no_internal_fields(self, client, headers, seeded):
        task = create_task(client, headers, seeded)
        portal = client.get(f"/api/tasks/{task['id']}", headers=headers["ben1_user"]).json()
        assert "assigned_by" not in portal
        assert "notify_beneficiary" not in portal
        assert portal["attachments"] == []

    def test_unlinked_lawyer(self, client, headers, seeded):
        task = create_task(client, headers, seeded)
        assert client.get(f"/api/tasks/{task['id']}", headers=headers["lawyer2"]).status_code == 403
        assert client.get("/api/tasks", headers=headers["lawyer2"]).json() == []

    def test_status_filter(self, client, headers, seeded):
        first = create_task(client, headers, seeded)
        create_task(client, headers, seeded, title="Second")
        client.patch(f"/api/tasks/{first['id']}", json={"status": "in_progress"}, headers=headers["lawyer1"])

        listed = client.get("/api/tasks", params={"status": "in_progress"}, headers=headers["admin"]).json()
        assert [t["id"] for t in listed] == [first["id"]]


class TestUpdateTask:

    def test_lawyer_moves_status(self, client, headers, seeded, db):
        task = create_task(client, headers, seeded)
        url = f"/api/tasks/{task['id']}"

        moved = client.patch(url, json={"status": "in_progress"}, headers=headers["lawyer1"])
        assert moved.status_code == 200
        assert moved.json()["status"] == "in_progress"

        done = client.patch(url, json={"status": "completed"}, headers=headers["lawyer1"])
        assert done.json()["completed_at"] is not None

        changes = db.query(Notification).filter(
            Notification.type == "task_status_changed",
            Notification.user_id == seeded["ben1_user"].id,
        ).count()
        assert changes == 2

    def test_lawyer_cannot_edit_fields(self, client, headers, seeded):
        task = create_task(client, headers, seeded)
        response = client.patch(f"/api/tasks/{task['id']}", json={"title": "Renamed"}, headers=headers["lawyer1"])
        assert response.status_code == 403

    def test_illegal_jump(self, client, headers, seeded):
        task = create_task(client, headers, seeded)
        response = client.patch(f"/api/tasks/{task['id']}", json={"status": "completed"}, headers=headers["admin"])
        assert response.status_code == 409

    def test_admin_edits_without_notification(self, client, headers, seeded, db):
        task = create_task(client, headers, seeded)
        response = client.patch(
            f"/api/tasks/{task['id']}", json={"title": "Bring passport", "show_in_portal": False},
            headers=headers["admin"],
        )
        assert response.json()["title"] == "Bring passport"
        assert db.query(Notification).filter(Notification.type == "task_status_changed").count() == 0

    @pytest.mark.parametrize("body", [{}, {"assigned_to": "someone"}, {"beneficiary_id": "x"}])
    def test_rejected_bodies(self, client, headers, seeded, body):
        task = create_task(client, headers, seeded)
        response = client.patch(f"/api/tasks/{task['id']}", json=body, headers=headers["admin"])
        assert response.status_code in (400, 422)

    def test_beneficiary_cannot_update(self, client, headers, seeded):
        task = create_task(client, headers, seeded)
        response = client.patch(f"/api/tasks/{task['id']}", json={"status": "in_progress"}, headers=headers["ben1_user"])
        assert response.status_code == 403


class TestTaskAttachmentsAndDeletion:

    def test_attachments(self, client, headers, seeded):
        task = create_task(client, headers, seeded)
        url = f"/api/tasks/{task['id']}/attachments"

        by_lawyer = client.post(url, json={"documents": [{"storage_key": "k", "file_name": "form.pdf"}]},
                                headers=headers["lawyer1"])
        assert by_lawyer.status_code == 201
        assert by_lawyer.json()[0]["is_public"] is True

        by_ben = client.post(url, json={"documents": [{"storage_key": "k2", "file_name": "signed.pdf"}]},
                             headers=headers["ben1_user"])
        assert by_ben.status_code == 201
        assert len(client.get(url, headers=headers["ben1_user"]).json()) == 2

    def test_private_attachment_is_staff_only(self, client, headers, seeded):
        task = create_task(client, headers, seeded)
        url = f"/api/tasks/{task['id']}/attachments"

        uploaded = client.post(
            url, json={"documents": [{"storage_key": "k", "file_name": "memo.pdf"}], "is_public": False},
            headers=headers["admin"],
        )
        assert uploaded.status_code == 201
        assert uploaded.json()[0]["is_public"] is False

        assert client.get(url, headers=headers["ben1_user"]).json() == []
        assert [d["file_name"] for d in client.get(url, headers=headers["admin"]).json()] == ["memo.pdf"]
        assert [d["file_name"] for d in client.get(url, headers=headers["lawyer1"]).json()] == ["memo.pdf"]

    def test_delete(self, client, headers, seeded):
        task = create_task(client, headers, seeded)
        url = f"/api/tasks/{task['id']}"

        assert client.delete(url, headers=headers["lawyer1"]).status_code == 403
        assert client.delete(url, headers=headers["admin"]).json() == {"deleted": True, "id": task["id"]}
        assert client.get(url, headers=headers["admin"]).status_code == 404
