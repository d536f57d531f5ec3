"""Tests for the HTTP API."""

from uuid import uuid4

import pytest
from fastapi.testclient import TestClient

from api import create_app
from api.app import error_status
from models import DataEntryStatus, SectorDataEntry
from services import AuthenticationError, InfoLineError, NotFoundError, TransitionError, ValidationError


@pytest.fixture
def client(store, demo):
    return TestClient(create_app(store=store))


@pytest.fixture
def as_user(demo):
    def headers(name):
        return {"X-User-Id": str(demo.users[name])}
    return headers


@pytest.fixture
def entries_url(demo, school_id):
    return f"/api/schools/{school_id}/categories/{demo.category_id}"


@pytest.fixture
def filled(client, as_user, entries_url, complete_values):
    payload = {"values": {str(k): v for k, v in complete_values.items()}}
    response = client.put(f"{entries_url}/entries", json=payload, headers=as_user("schooladmin1"))
    assert response.status_code == 200
    return response.json()


@pytest.fixture
def submitted(client, as_user, entries_url, filled):
    response = client.post(f"{entries_url}/submit", headers=as_user("schooladmin1"))
    assert response.status_code == 200
    return response.json()


@pytest.mark.parametrize("exc,status", [
    (AuthenticationError("x"), 401),
    (NotFoundError("x"), 404),
    (ValidationError("x"), 400),
    (TransitionError("x"), 409),
    (InfoLineError("x"), 500),
])
def test_error_status(exc, status):
    assert error_status(exc) == status


def test_health(client):
    response = client.get("/api/health")
    assert response.status_code == 200
    assert response.json()["status"] == "ok"


class TestAuthentication:

    def test_missing_header(self, client, entries_url):
        response = client.get(f"{entries_url}/entries")

        assert response.status_code == 401
        assert response.json() == {
            "error": "UNAUTHENTICATED",
            "message": "X-User-Id header is required",
            "details": None,
        }

    def test_malformed_header(self, client, entries_url):
        response = client.get(f"{entries_url}/entries", headers={"X-User-Id": "admin"})

        assert response.status_code == 401
        body = response.json()
        assert body["error"] == "UNAUTHENTICATED"
        assert body["details"] == {"header": "admin"}

    def test_user_without_roles(self, client, entries_url):
        response = client.get(f"{entries_url}/entries", headers={"X-User-Id": str(uuid4())})

        assert response.status_code == 403
        assert response.json() == {
            "error": "PERMISSION_DENIED",
            "message": "User has no roles",
            "details": None,
        }


class TestSchoolCategories:

    def test_categories_for_school_admin(self, client, as_user, demo, school_id):
        response = client.get(f"/api/schools/{school_id}/categories", headers=as_user("schooladmin1"))

        assert response.status_code == 200
        categories = response.json()
        assert [c["name"] for c in categories] == ["General information"]
        assert categories[0]["status"] == "draft"
        assert categories[0]["available_actions"] == ["pending"]
        assert len(categories[0]["columns"]) == 4

    def test_other_school_is_forbidden(self, client, as_user, demo):
        response = client.get(f"/api/schools/{demo.school_ids[1]}/categories", headers=as_user("schooladmin1"))

        assert response.status_code == 403
        assert response.json()["error"] == "PERMISSION_DENIED"

    def test_unknown_school(self, client, as_user):
        response = client.get(f"/api/schools/{uuid4()}/categories", headers=as_user("superadmin"))
        assert response.status_code == 404


class TestEntries:

    def test_save_and_read_back(self, client, as_user, entries_url, filled):
        assert filled["saved_count"] == 4

        response = client.get(f"{entries_url}/entries", headers=as_user("schooladmin1"))

        assert response.status_code == 200
        assert {e["status"] for e in response.json()} == {"draft"}

    def test_validation_errors(self, client, as_user, entries_url, columns):
        response = client.put(
            f"{entries_url}/entries",
            json={"values": {str(columns["email"]): "nope", str(columns["students"]): "-3"}},
            headers=as_user("schooladmin1"),
        )

        assert response.status_code == 400
        body = response.json()
        assert body["error"] == "VALIDATION_ERROR"
        assert {d["column_id"] for d in body["details"]} == {str(columns["email"]), str(columns["students"])}

    def test_empty_body_is_rejected(self, client, as_user, entries_url):
        response = client.put(f"{entries_url}/entries", json={"values": {}}, headers=as_user("schooladmin1"))
        assert response.status_code == 422

    def test_proxy_entries_with_auto_approve(self, client, as_user, store, entries_url, complete_values, school_id):
        response = client.put(
            f"{entries_url}/proxy-entries",
            json={
                "values": {str(k): v for k, v in complete_values.items()},
                "reason": "School is offline",
                "auto_approve": True,
            },
            headers=as_user("sectoradmin"),
        )

        assert response.status_code == 200
        statuses = {e.status for e in store.entries.values() if e.school_id == school_id}
        assert statuses == {DataEntryStatus.APPROVED}


class TestWorkflow:

    def test_submit_approve_history(self, client, as_user, entries_url, submitted):
        assert submitted["status"] == "pending"
        assert submitted["affected"] == 4

        response = client.post(f"{entries_url}/approve", json={"comment": "Thanks"}, headers=as_user("sectoradmin"))
        assert response.status_code == 200
        assert response.json()["status"] == "approved"

        history = client.get(f"{entries_url}/history", headers=as_user("schooladmin1")).json()
        assert [(h["old_status"], h["new_status"]) for h in history] == [
            ("pending", "approved"),
            ("draft", "pending"),
        ]

    def test_approve_without_body(self, client, as_user, entries_url, submitted):
        response = client.post(f"{entries_url}/approve", headers=as_user("regionadmin"))
        assert response.status_code == 200

    def test_reject_notifies_school(self, client, as_user, entries_url, submitted):
        response = client.post(
            f"{entries_url}/reject", json={"reason": "Check the totals"}, headers=as_user("sectoradmin")
        )
        assert response.status_code == 200

        inbox = client.get("/api/notifications", headers=as_user("schooladmin1")).json()
        assert inbox[0]["title"] == "Data rejected"
        assert "Check the totals" in inbox[0]["message"]

    def test_reject_without_reason(self, client, as_user, entries_url, submitted):
        response = client.post(f"{entries_url}/reject", json={"reason": " "}, headers=as_user("sectoradmin"))
        assert response.status_code == 400

    def test_incomplete_submit_conflicts(self, client, as_user, entries_url, columns):
        client.put(
            f"{entries_url}/entries",
            json={"values": {str(columns["email"]): "a@b.az"}},
            headers=as_user("schooladmin1"),
        )

        response = client.post(f"{entries_url}/submit", headers=as_user("schooladmin1"))

        assert response.status_code == 409
        assert response.json()["error"] == "CONDITIONS_NOT_MET"

    def test_approved_data_cannot_be_resubmitted(self, client, as_user, entries_url, submitted):
        client.post(f"{entries_url}/approve", headers=as_user("sectoradmin"))

        response = client.post(f"{entries_url}/submit", headers=as_user("schooladmin1"))

        assert response.status_code == 409
        assert response.json()["error"] == "INVALID_TRANSITION"

    def test_school_admin_cannot_approve(self, client, as_user, entries_url, submitted):
        response = client.post(f"{entries_url}/approve", headers=as_user("schooladmin1"))
        assert response.status_code == 409
        assert response.json()["error"] == "INSUFFICIENT_ROLE"


class TestApprovals:

    def test_pending_queue(self, client, as_user, demo, school_id, submitted):
        response = client.get("/api/approvals/pending", headers=as_user("sectoradmin"))

        assert response.status_code == 200
        queue = response.json()
        assert [item["school_id"] for item in queue] == [str(school_id)]
        assert queue[0]["entry_count"] == 4

    def test_bulk_approve(self, client, as_user, demo, submitted):
        response = client.post(
            "/api/approvals/bulk",
            json={
                "action": "approve",
                "items": [
                    {"category_id": str(demo.category_id), "entity_id": str(demo.school_ids[0])},
                    {"category_id": str(demo.category_id), "entity_id": str(demo.school_ids[1])},
                ],
            },
            headers=as_user("sectoradmin"),
        )

        assert response.status_code == 200
        summary = response.json()
        assert summary["total"] == 2
        assert summary["successful"] == 1
        assert summary["results"][1]["error"] == "No pending entries"

    def test_bulk_needs_items(self, client, as_user):
        response = client.post(
            "/api/approvals/bulk", json={"action": "approve", "items": []}, headers=as_user("sectoradmin")
        )
        assert response.status_code == 422


class TestSectors:

    def test_save_sector_value(self, client, as_user, demo, columns):
        url = f"/api/sectors/{demo.sector_id}/categories/{demo.sector_category_id}/columns/{columns['methodists']}"

        response = client.put(url, json={"value": 5}, headers=as_user("sectoradmin"))

        assert response.status_code == 200
        assert response.json()["status"] == "approved"
        entries = client.get(f"/api/sectors/{demo.sector_id}/entries", headers=as_user("sectoradmin")).json()
        assert [e["value"] for e in entries] == ["5"]

    def test_sector_entries_forbidden_for_school_admin(self, client, as_user, demo):
        response = client.get(f"/api/sectors/{demo.sector_id}/entries", headers=as_user("schooladmin1"))
        assert response.status_code == 403

    def test_completion(self, client, as_user, demo, filled):
        sector = client.get(f"/api/sectors/{demo.sector_id}/completion", headers=as_user("sectoradmin"))
        region = client.get(f"/api/regions/{demo.region_id}/completion", headers=as_user("regionadmin"))
        denied = client.get(f"/api/regions/{uuid4()}/completion", headers=as_user("regionadmin"))

        assert sector.status_code == 200
        assert region.status_code == 200
        assert denied.status_code == 403

    def test_pending_sector_entry_in_bulk(self, client, as_user, store, demo, columns):
        entry = SectorDataEntry(
            sector_id=demo.sector_id,
            category_id=demo.sector_category_id,
            column_id=columns["methodists"],
            value="2",
            status=DataEntryStatus.PENDING,
        )
        store.sector_entries[entry.id] = entry

        response = client.post(
            "/api/approvals/bulk",
            json={
                "action": "reject",
                "reason": "Outdated",
                "items": [{
                    "category_id": str(demo.sector_category_id),
                    "entity_id": str(demo.sector_id),
                    "type": "sector",
                }],
            },
            headers=as_user("regionadmin"),
        )

        assert response.json()["successful"] == 1
        assert store.sector_entries[entry.id].status == DataEntryStatus.REJECTED


class TestNotifications:

    def test_read_flow(self, client, as_user, submitted):
        headers = as_user("sectoradmin")
        assert client.get("/api/notifications/unread-count", headers=headers).json() == {"unread": 1}

        inbox = client.get("/api/notifications?unread_only=true", headers=headers).json()
        response = client.post(f"/api/notifications/{inbox[0]['id']}/read", headers=headers)
        assert response.json() == {"updated": 1}
        assert client.post(f"/api/notifications/{inbox[0]['id']}/read", headers=headers).json() == {"updated": 0}

        assert client.post("/api/notifications/read-all", headers=headers).json() == {"updated": 0}
        assert client.get("/api/notifications/unread-count", headers=headers).json() == {"unread": 0}


class TestDeadlines:

    def test_superadmin_only(self, client, as_user):
        assert client.post("/api/deadlines/check", headers=as_user("sectoradmin")).status_code == 403

        response = client.post("/api/deadlines/check", headers=as_user("superadmin"))

        assert response.status_code == 200
        assert response.json()["processed"] == 1
        assert response.json()["errors"] == []


class TestStatistics:

    def test_statistics_for_superadmin(self, client, as_user, demo, submitted):
        response = client.get("/api/statistics", headers=as_user("superadmin"))

        assert response.status_code == 200
        body = response.json()
        assert body["total_schools"] == 2
        assert body["forms_by_status"]["pending"] == 4
        assert {p["name"] for p in body["school_performance"]} == {"School No. 6", "School No. 23"}

    def test_statistics_date_range(self, client, as_user, submitted):
        response = client.get(
            "/api/statistics",
            params={"start_date": "2000-01-01T00:00:00", "end_date": "2000-12-31T00:00:00"},
            headers=as_user("sectoradmin"),
        )

        assert response.status_code == 200
        assert response.json()["forms_by_status"]["total"] == 0

    def test_statistics_refused_for_school_admin(self, client, as_user):
        response = client.get("/api/statistics", headers=as_user("schooladmin1"))
        assert response.status_code == 403
        assert response.json()["error"] == "PERMISSION_DENIED"

    def test_dashboard(self, client, as_user, submitted):
        response = client.get("/api/dashboard", headers=as_user("schooladmin1"))

        assert response.status_code == 200
        body = response.json()
        assert body["role"] == "schooladmin"
        assert body["total_categories"] == 1
        assert body["stats"]["pending_schools"] == 1


class TestReports:

    def test_school_columns(self, client, as_user, demo, columns, school_id, filled):
        response = client.get(
            "/api/reports/school-columns",
            params=[
                ("column_id", str(columns["students"])),
                ("column_id", str(columns["teachers"])),
                ("sort_column_id", str(columns["students"])),
            ],
            headers=as_user("regionadmin"),
        )

        assert response.status_code == 200
        body = response.json()
        assert len(body["columns"]) == 2
        first = body["rows"][0]
        assert first["school_id"] == str(school_id)
        assert first["cells"][str(columns["students"])]["value"] == "640"
        assert body["rows"][1]["cells"][str(columns["students"])]["value"] is None

    def test_without_columns(self, client, as_user):
        response = client.get("/api/reports/school-columns", headers=as_user("superadmin"))
        assert response.status_code == 400
        assert response.json()["error"] == "VALIDATION_ERROR"


class TestDeleteColumn:

    def test_delete_with_confirmation(self, client, as_user, columns, entries_url, filled):
        response = client.request(
            "DELETE",
            f"/api/columns/{columns['email']}",
            json={"confirmation": "DELETE Contact e-mail"},
            headers=as_user("superadmin"),
        )

        assert response.status_code == 200
        assert response.json()["deleted_entries"] == 1
        entries = client.get(f"{entries_url}/entries", headers=as_user("schooladmin1")).json()
        assert str(columns["email"]) not in {e["column_id"] for e in entries}

    def test_wrong_confirmation(self, client, as_user, columns):
        response = client.request(
            "DELETE",
            f"/api/columns/{columns['email']}",
            json={"confirmation": "delete"},
            headers=as_user("superadmin"),
        )

        assert response.status_code == 400
        assert response.json()["error"] == "CONFIRMATION_MISMATCH"
        assert response.json()["details"] == [{"field": "confirmation", "expected": "DELETE Contact e-mail"}]

    def test_sector_admin_is_forbidden(self, client, as_user, columns):
        response = client.request(
            "DELETE",
            f"/api/columns/{columns['email']}",
            json={"confirmation": "DELETE Contact e-mail"},
            headers=as_user("sectoradmin"),
        )
        assert response.status_code == 403
