"""Tests for the /merges HTTP endpoints.

The orchestrator is replaced through FastAPI dependency overrides, so these
tests cover request parsing, auth, building requests from observation
bodies and the error-to-status mapping.
"""

import sys
from pathlib import Path

# Add project root to path (tests/ -> project root)
sys.path.insert(0, str(Path(__file__).parent.parent))

import pytest
from fastapi.testclient import TestClient

from api.routes.merges import get_merge_orchestrator
from main import app
from models.schemas import MergeResult
from services.errors import (
    DocumentFormatError,
    DownloadError,
    InvalidSheetNameError,
    LockedError,
    ResolutionError,
    SheetNameConflictError,
    TemplateNotFoundError,
    UploadError,
)


BODY = {
    "workbookUrl": "https://contoso.sharepoint.com/:x:/s/training/EabcDEF",
    "sheetName": "Report_11.2025",
    "model": {
        "header": {"header_block": "Trainer: Minh"},
        "indicators": {"1.1": {"rating": "Good", "strengths": "Tidy"}},
    },
}
AUTH = {"Authorization": "Bearer graph-token"}


class StubOrchestrator:
    def __init__(self, error=None):
        self.error = error
        self.requests = []

    def merge(self, request, token):
        self.requests.append((request, token))
        if self.error:
            raise self.error
        return MergeResult(
            sheet_url="https://contoso.sharepoint.com/book.xlsx#sheet=Report_11.2025",
            sheet_name=request.target_sheet_name,
            skipped_indicators=["9.9"],
        )


@pytest.fixture
def stub():
    return StubOrchestrator()


@pytest.fixture
def client(stub):
    app.dependency_overrides[get_merge_orchestrator] = lambda: stub
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


class TestMergeEndpoints:

    def test_ping(self, client):
        response = client.get("/merges/ping")
        assert response.status_code == 200
        assert response.json() == {"ok": True, "service": "merges"}

    def test_teacher_merge(self, client, stub):
        response = client.post("/merges/teacher", json=BODY, headers=AUTH)

        assert response.status_code == 200
        data = response.json()
        assert data["ok"] is True
        assert data["sheetName"] == "Report_11.2025"
        assert data["sheetUrl"].endswith("#sheet=Report_11.2025")
        assert data["skippedIndicators"] == ["9.9"]

        request, token = stub.requests[0]
        assert token == "graph-token"
        assert request.kind == "teacher"
        assert request.share_url == BODY["workbookUrl"]
        assert request.export_model.indicators["1.1"].rating == "Good"

    def test_admin_merge_with_template(self, client, stub):
        body = {**BODY, "templateSheetName": "AdminTemplate v2"}
        response = client.post("/merges/admin", json=body, headers=AUTH)

        assert response.status_code == 200
        request, _ = stub.requests[0]
        assert request.kind == "admin"
        assert request.template_sheet_name == "AdminTemplate v2"

    def test_missing_token(self, client, stub):
        response = client.post("/merges/teacher", json=BODY)
        assert response.status_code == 401
        assert stub.requests == []

    def test_non_bearer_token(self, client):
        response = client.post("/merges/teacher", json=BODY, headers={"Authorization": "Basic abc"})
        assert response.status_code == 401

    def test_missing_workbook_url(self, client):
        body = {k: v for k, v in BODY.items() if k != "workbookUrl"}
        response = client.post("/merges/teacher", json=body, headers=AUTH)
        assert response.status_code == 422


OBSERVATION_BODY = {
    "workbookUrl": "https://contoso.sharepoint.com/:x:/s/training/EabcDEF",
    "meta": {
        "teacherName": "Lan",
        "schoolName": "Hoa Sen",
        "campus": "Q7",
        "unit": "12",
        "lesson": "3",
        "supportType": "Visit",
        "date": "2025-11-14",
        "trainerName": "Minh",
    },
    "indicators": [
        {"number": "1.1", "good": True, "commentText": "[OCR] Tidy\x0b area"},
        {"number": "2.3", "growth": True, "commentText": "Slow with the projector"},
    ],
    "trainerSummary": "Strong start",
}


class TestObservationEndpoints:
    """Observation bodies go through the export model builders."""

    def test_teacher_observation(self, client, stub):
        response = client.post("/merges/teacher/observation", json=OBSERVATION_BODY, headers=AUTH)

        assert response.status_code == 200
        request, token = stub.requests[0]
        assert token == "graph-token"
        assert request.kind == "teacher"
        assert request.target_sheet_name == "11.2025"
        assert "Teacher: Lan" in request.export_model.header["header_block"]
        rows = request.export_model.indicators
        assert rows["1.1"].rating == "Good"
        assert rows["1.1"].strengths == "Tidy area"
        assert rows["2.3"].rating == "Need some work"
        assert rows["2.3"].growth == "Slow with the projector"
        assert rows["1.2"].rating == "Not applicable"
        assert response.json()["sheetName"] == "11.2025"

    def test_admin_observation(self, client, stub):
        response = client.post("/merges/admin/observation", json=OBSERVATION_BODY, headers=AUTH)

        assert response.status_code == 200
        request, _ = stub.requests[0]
        assert request.kind == "admin"
        assert request.target_sheet_name == "Lan 11.2025 Visit"
        assert request.export_model.header["trainer_summary"] == "Strong start"
        assert request.export_model.indicators["1.1"].rating == "Tốt"

    def test_explicit_sheet_name_wins(self, client, stub):
        body = {**OBSERVATION_BODY, "sheetName": "Lan extra visit", "templateSheetName": "GV"}
        client.post("/merges/admin/observation", json=body, headers=AUTH)

        request, _ = stub.requests[0]
        assert request.target_sheet_name == "Lan extra visit"
        assert request.template_sheet_name == "GV"

    def test_meta_required(self, client, stub):
        body = {k: v for k, v in OBSERVATION_BODY.items() if k != "meta"}
        response = client.post("/merges/teacher/observation", json=body, headers=AUTH)
        assert response.status_code == 422
        assert stub.requests == []

    def test_missing_token(self, client, stub):
        response = client.post("/merges/teacher/observation", json=OBSERVATION_BODY)
        assert response.status_code == 401
        assert stub.requests == []


class TestMergeErrors:
    """Each error kind maps to its own status and keeps its kind in the body."""

    @pytest.mark.parametrize("error, status", [
        (InvalidSheetNameError("bad"), 400),
        (ResolutionError("404", remote_status=404), 400),
        (DownloadError("500"), 502),
        (DocumentFormatError("not a zip"), 422),
        (TemplateNotFoundError("missing"), 422),
        (SheetNameConflictError("taken"), 409),
        (LockedError("locked"), 423),
        (UploadError("400"), 502),
    ])
    def test_status_mapping(self, client, stub, error, status):
        stub.error = error

        response = client.post("/merges/teacher", json=BODY, headers=AUTH)

        assert response.status_code == status
        data = response.json()
        assert data["ok"] is False
        assert data["kind"] == error.kind
        assert data["error"] == error.user_message
        assert data["detail"] == str(error)
