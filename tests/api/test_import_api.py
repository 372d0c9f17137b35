"""
HTTP surface of the import pipeline, exercised through FastAPI's TestClient.

The in-process worker is disabled; jobs are drained explicitly with
``run_until_idle()`` so every assertion sees a settled state.
"""

from dataclasses import replace
from uuid import uuid4

import pytest
from fastapi.testclient import TestClient

from coop_api import create_app

MEMBERS_CSV = (
    "Email,First Name,Last Name\n"
    "ann@example.com,Ann,Lee\n"
    "bob@example.com,Robert,Marsh\n"
)

MAPPING_BODY = {
    "mapping": [
        {"columnName": "Email", "fieldName": "email", "required": True},
        {"columnName": "First Name", "fieldName": "firstName", "transform": {"type": "trim"}},
        {"columnName": "Last Name", "fieldName": "lastName"},
    ],
    "validationRules": {"duplicateHandling": "skip"},
}


MAX_UPLOAD = 4096


@pytest.fixture
def app(app_config, session_factory, deterministic_clock):
    config = replace(app_config, upload=replace(app_config.upload, max_file_size=MAX_UPLOAD))
    return create_app(config, session_factory, deterministic_clock, start_worker=False)


@pytest.fixture
def client(app):
    with TestClient(app) as client:
        yield client


@pytest.fixture
def headers(test_actor_id):
    return {"X-User-Id": str(test_actor_id)}


@pytest.fixture
def drain(app):
    def _drain():
        return app.state.orchestrator.create_worker().run_until_idle()
    return _drain


@pytest.fixture
def create_session(client, headers):
    def _create(content: str = MEMBERS_CSV, name: str = "members.csv", **form):
        data = {"importType": "USERS", **form}
        return client.post(
            "/import/sessions",
            headers=headers,
            data=data,
            files={"file": (name, content.encode("utf-8"), "text/csv")},
        )
    return _create


def _error(response) -> dict:
    body = response.json()
    assert set(body) == {"error"}
    assert set(body["error"]) == {"code", "message", "details"}
    return body["error"]


class TestAuthentication:
    def test_missing_caller_is_401(self, client):
        response = client.get("/import/sessions")
        assert response.status_code == 401
        assert _error(response)["code"] == "AUTHENTICATION_REQUIRED"

    def test_malformed_caller_is_401(self, client):
        response = client.get("/import/sessions", headers={"X-User-Id": "not-a-uuid"})
        assert response.status_code == 401


class TestSessionLifecycle:
    def test_full_flow(self, client, headers, create_session, drain):
        created = create_session(metadata='{"source": "spring roster"}')
        assert created.status_code == 201
        session = created.json()
        session_id = session["id"]
        assert session["status"] == "PENDING"
        assert session["metadata"] == {"source": "spring roster"}

        preview = client.post(f"/import/sessions/{session_id}/preview", headers=headers)
        assert preview.status_code == 200
        assert preview.json()["columns"] == ["Email", "First Name", "Last Name"]
        assert preview.json()["suggestedMapping"][0] == {
            "columnName": "Email", "suggestedField": "email", "confidence": 100,
        }

        mapped = client.put(f"/import/sessions/{session_id}/mapping", headers=headers, json=MAPPING_BODY)
        assert mapped.status_code == 200
        assert mapped.json()["status"] == "MAPPED"
        assert mapped.json()["validationRules"]["duplicateHandling"] == "skip"

        findings = client.post(f"/import/sessions/{session_id}/validate", headers=headers)
        assert findings.status_code == 200
        assert findings.json() == []

        started = client.post(f"/import/sessions/{session_id}/start", headers=headers)
        assert started.status_code == 202
        assert "jobId" in started.json()

        status = client.get(f"/import/status/{session_id}", headers=headers).json()
        assert status["status"] == "IMPORTING"
        assert status["progress"]["percentage"] == 0

        drain()

        status = client.get(f"/import/status/{session_id}", headers=headers).json()
        assert status["status"] == "COMPLETED"
        assert status["progress"] == {
            "totalRows": 2, "processedRows": 2, "successRows": 2, "failedRows": 0, "percentage": 100,
        }

        report = client.get(f"/import/sessions/{session_id}/report", headers=headers).json()
        assert report["canRollback"] is True
        assert len(report["successReport"]["created"]) == 2

        rollback = client.post(f"/import/sessions/{session_id}/rollback", headers=headers)
        assert rollback.status_code == 202
        assert rollback.json()["message"] == "Import rollback scheduled"
        drain()

        report = client.get(f"/import/sessions/{session_id}/report", headers=headers).json()
        assert report["rolledBackAt"] is not None

        again = client.post(f"/import/sessions/{session_id}/rollback", headers=headers)
        assert again.status_code == 400
        assert _error(again)["code"] == "ROLLBACK_ALREADY_PERFORMED"

    def test_list_is_scoped_to_caller(self, client, headers, create_session, other_actor_id):
        create_session()
        mine = client.get("/import/sessions", headers=headers).json()
        theirs = client.get("/import/sessions", headers={"X-User-Id": str(other_actor_id)}).json()
        assert mine["total"] == 1
        assert theirs == {"sessions": [], "total": 0, "page": 1, "limit": 20}

    def test_start_with_errors_is_rejected(self, client, headers, create_session):
        session_id = create_session(MEMBERS_CSV + "carl@example,Carl,Dunn\n").json()["id"]
        client.post(f"/import/sessions/{session_id}/preview", headers=headers)
        client.put(f"/import/sessions/{session_id}/mapping", headers=headers, json=MAPPING_BODY)
        findings = client.post(f"/import/sessions/{session_id}/validate", headers=headers).json()
        assert [(f["rowNumber"], f["errorCode"]) for f in findings] == [(3, "INVALID_EMAIL")]

        response = client.post(f"/import/sessions/{session_id}/start", headers=headers)
        assert response.status_code == 400
        error = _error(response)
        assert error["code"] == "VALIDATION_ERRORS_REMAIN"
        assert error["details"]["error_count"] == 1

    def test_cancel_and_delete(self, client, headers, create_session, other_actor_id):
        session_id = create_session().json()["id"]

        forbidden = client.put(
            f"/import/sessions/{session_id}/cancel",
            headers={"X-User-Id": str(other_actor_id)},
        )
        assert forbidden.status_code == 403

        cancelled = client.put(f"/import/sessions/{session_id}/cancel", headers=headers)
        assert cancelled.status_code == 200
        assert cancelled.json()["session"]["status"] == "CANCELLED"

        deleted = client.delete(f"/import/sessions/{session_id}", headers=headers)
        assert deleted.json() == {"message": "Import session deleted successfully"}
        assert client.get(f"/import/sessions/{session_id}", headers=headers).status_code == 404


    @pytest.mark.parametrize("status", ["IMPORTING", "COMPLETED", "FAILED", "CANCELLED"])
    def test_cancel_refused_past_validation(
        self, client, headers, create_session, drain, app_config, status,
    ):
        created = create_session().json()
        session_id = created["id"]
        if status == "FAILED":
            (app_config.upload.upload_dir / created["fileName"]).unlink()
            client.post(f"/import/sessions/{session_id}/preview", headers=headers)
        elif status == "CANCELLED":
            client.put(f"/import/sessions/{session_id}/cancel", headers=headers)
        else:
            client.post(f"/import/sessions/{session_id}/preview", headers=headers)
            client.put(f"/import/sessions/{session_id}/mapping", headers=headers, json=MAPPING_BODY)
            client.post(f"/import/sessions/{session_id}/validate", headers=headers)
            client.post(f"/import/sessions/{session_id}/start", headers=headers)
            if status == "COMPLETED":
                drain()
        assert client.get(f"/import/sessions/{session_id}", headers=headers).json()["status"] == status

        response = client.put(f"/import/sessions/{session_id}/cancel", headers=headers)
        assert response.status_code == 400
        error = _error(response)
        assert error["code"] == "INVALID_STATUS_TRANSITION"
        assert error["details"]["current_status"] == status
        assert client.get(f"/import/sessions/{session_id}", headers=headers).json()["status"] == status


class TestRequestErrors:
    def test_unknown_session_is_404(self, client, headers):
        response = client.get(f"/import/sessions/{uuid4()}", headers=headers)
        assert response.status_code == 404
        assert _error(response)["code"] == "IMPORT_SESSION_NOT_FOUND"

    def test_bad_import_type_is_400(self, create_session):
        response = create_session(importType="VEHICLES")
        assert response.status_code == 400
        assert _error(response)["code"] == "REQUEST_VALIDATION_ERROR"

    def test_bad_metadata_is_400(self, create_session):
        response = create_session(metadata="[1, 2]")
        assert response.status_code == 400
        assert _error(response)["code"] == "INVALID_REQUEST"

    def test_oversized_upload_is_413(self, create_session):
        response = create_session("x" * (MAX_UPLOAD + 1))
        assert response.status_code == 413

    def test_unsupported_media_type_is_415(self, client, headers):
        response = client.post(
            "/import/sessions",
            headers=headers,
            data={"importType": "USERS"},
            files={"file": ("roster.pdf", b"%PDF-1.4", "application/pdf")},
        )
        assert response.status_code == 415

    def test_empty_mapping_is_400(self, client, headers, create_session):
        session_id = create_session().json()["id"]
        response = client.put(f"/import/sessions/{session_id}/mapping", headers=headers, json={"mapping": []})
        assert response.status_code == 400
        assert _error(response)["code"] == "MAPPING_REQUIRED"

    @pytest.mark.parametrize(
        "rule",
        [
            {"required": True},
            {"field": "email", "pattern": "("},
            {"field": "firstName", "min": "two"},
            {"field": "city", "type": "postcode"},
        ],
    )
    def test_malformed_custom_rule_is_400(self, client, headers, create_session, rule):
        session_id = create_session().json()["id"]
        client.post(f"/import/sessions/{session_id}/preview", headers=headers)
        body = {**MAPPING_BODY, "validationRules": {"customRules": [rule]}}

        response = client.put(f"/import/sessions/{session_id}/mapping", headers=headers, json=body)
        assert response.status_code == 400
        error = _error(response)
        assert error["code"] == "REQUEST_VALIDATION_ERROR"
        assert all(e["loc"][:3] == ["body", "validationRules", "customRules"] for e in error["details"]["errors"])
        assert client.get(f"/import/sessions/{session_id}", headers=headers).json()["status"] == "PARSING"

    def test_blank_custom_rule_field_is_400(self, client, headers, create_session):
        session_id = create_session().json()["id"]
        client.post(f"/import/sessions/{session_id}/preview", headers=headers)
        body = {**MAPPING_BODY, "validationRules": {"customRules": [{"field": "  ", "required": True}]}}

        response = client.put(f"/import/sessions/{session_id}/mapping", headers=headers, json=body)
        assert response.status_code == 400
        error = _error(response)
        assert error["code"] == "INVALID_CUSTOM_RULE"
        assert error["details"]["rule_index"] == 0

    def test_well_formed_custom_rule_is_applied(self, client, headers, create_session):
        session_id = create_session().json()["id"]
        client.post(f"/import/sessions/{session_id}/preview", headers=headers)
        rule = {"field": "firstName", "type": "STRING", "min": 4}
        body = {**MAPPING_BODY, "validationRules": {"customRules": [rule]}}

        mapped = client.put(f"/import/sessions/{session_id}/mapping", headers=headers, json=body)
        assert mapped.status_code == 200
        assert mapped.json()["validationRules"]["customRules"] == [
            {"field": "firstName", "type": "string", "required": False, "unique": False, "min": 4.0},
        ]

        findings = client.post(f"/import/sessions/{session_id}/validate", headers=headers).json()
        assert [(f["rowNumber"], f["errorCode"]) for f in findings] == [(1, "STRING_TOO_SHORT")]

    def test_legacy_xls_upload_is_400(self, client, headers):
        response = client.post(
            "/import/sessions",
            headers=headers,
            data={"importType": "USERS"},
            files={"file": ("roster.xls", b"\xd0\xcf\x11\xe0", "application/vnd.ms-excel")},
        )
        assert response.status_code == 400
        assert _error(response)["code"] == "UNSUPPORTED_FILE_TYPE"

    def test_unreadable_file_marks_session_failed(self, client, headers, create_session, app_config):
        created = create_session().json()
        (app_config.upload.upload_dir / created["fileName"]).unlink()

        response = client.post(f"/import/sessions/{created['id']}/preview", headers=headers)
        assert response.status_code == 400
        assert _error(response)["code"] == "INVALID_FILE_FORMAT"

        session = client.get(f"/import/sessions/{created['id']}", headers=headers).json()
        assert session["status"] == "FAILED"
        assert "cannot read file" in session["errorReport"]["error"]


class TestTemplates:
    def test_create_and_list(self, client, headers):
        body = {
            "name": "Members",
            "importType": "USERS",
            "isDefault": True,
            "columnMapping": MAPPING_BODY["mapping"],
        }
        created = client.post("/import/templates", headers=headers, json=body)
        assert created.status_code == 201
        assert created.json()["isDefault"] is True

        listed = client.get("/import/templates", headers=headers, params={"importType": "USERS"})
        assert [t["name"] for t in listed.json()["templates"]] == ["Members"]
        assert client.get("/import/templates", headers=headers, params={"importType": "LOANS"}).json() == {
            "templates": [],
        }

    def test_unknown_template_on_upload_is_404(self, create_session):
        response = create_session(templateId=str(uuid4()))
        assert response.status_code == 404
