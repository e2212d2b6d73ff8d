"""
Tests for the HTTP trigger endpoint.

Uses FastAPI's TestClient against an app wired to an orchestrator with a
scripted adapter, so POST /scan runs a real (offline) scan.
"""

import pytest
from fastapi.testclient import TestClient

from agents.relevance import RelevanceFilter
from api import ScanBody, create_app, is_same_origin
from models.scan import ScanMode
from pipeline import Orchestrator
from tests.fakes import ScriptedAdapter, keep_discontinuations

AUTH = {"Authorization": "Bearer s3cret"}
FOREIGN = {"Origin": "https://evil.example.org"}


@pytest.fixture
def orchestrator(config, db):
    adapter = ScriptedAdapter(config, [
        ("PMID-1", "Semaglutide phase 3 trial discontinued"),
        ("PMID-2", "Ten weight-loss tips"),
    ])
    return Orchestrator(
        config, db,
        adapters={adapter.source_id: adapter},
        relevance=RelevanceFilter(config, judge=keep_discontinuations),
    )


@pytest.fixture
def client(config, db, orchestrator):
    with TestClient(create_app(config, orchestrator, db)) as test_client:
        yield test_client


class TestOriginCheck:

    def test_no_headers_counts_as_same_origin(self):
        assert is_same_origin(None, None, "https://compass.example.com")

    def test_matching_origin_or_referer(self):
        app_url = "https://compass.example.com"
        assert is_same_origin("https://compass.example.com", None, app_url)
        assert is_same_origin(None, "https://compass.example.com/dashboard?x=1", app_url)
        assert is_same_origin("http://localhost:3000", None, app_url)

    def test_foreign_origin(self):
        assert not is_same_origin("https://evil.example.org", None, "https://compass.example.com")


class TestScanBody:

    def test_camel_case_aliases_and_defaults(self):
        body = ScanBody.model_validate({"period": "daily", "targetIds": [], "mode": "deep"})
        request = body.to_request()
        assert request.target_ids is None
        assert request.mode == ScanMode.LATEST

    def test_comprehensive_mode(self):
        body = ScanBody.model_validate({"period": "weekly", "mode": "comprehensive", "scanRunId": "r1"})
        assert body.mode == ScanMode.COMPREHENSIVE
        assert body.scan_run_id == "r1"


class TestTriggerEndpoint:

    def test_foreign_origin_without_secret_is_unauthorized(self, client, stored_targets):
        resp = client.post("/scan", json={"period": "daily"}, headers=FOREIGN)
        assert resp.status_code == 401
        assert resp.json() == {"error": "Unauthorized"}

    def test_bearer_secret_runs_scan(self, client, db, stored_targets):
        resp = client.post("/scan", json={"period": "daily"}, headers={**AUTH, **FOREIGN})

        assert resp.status_code == 200
        payload = resp.json()
        assert payload["ok"] is True
        assert payload["newFound"] == 1
        assert payload["totalFound"] == 1
        assert "failedSources" not in payload
        assert db.get_digest_run(payload["digestRunId"]).low_count == 1

    def test_invalid_period_is_bad_request(self, client):
        resp = client.post("/scan", json={"period": "monthly"}, headers=AUTH)
        assert resp.status_code == 400
        assert "period" in resp.json()["error"]

    def test_unknown_source_is_bad_request(self, client, db, stored_targets):
        resp = client.post("/scan", json={"period": "daily", "sources": ["nope"]}, headers=AUTH)
        assert resp.status_code == 400
        assert "nope" in resp.json()["error"]
        assert db.stats()["scan_runs"] == 0

    def test_no_targets_message(self, client):
        resp = client.post("/scan", json={"period": "daily"}, headers=AUTH)
        assert resp.status_code == 200
        assert resp.json()["message"] == "No watch targets"

    def test_missing_secret_is_server_error(self, config, db, orchestrator):
        config.scan_secret = ""
        with TestClient(create_app(config, orchestrator, db)) as test_client:
            resp = test_client.post("/scan", json={"period": "daily"}, headers=AUTH)
        assert resp.status_code == 500
        assert "SCAN_SECRET" in resp.json()["error"]


class TestStatusEndpoint:

    def test_reports_run_and_sources(self, client, stored_targets):
        scan = client.post("/scan", json={"period": "daily"}, headers=AUTH).json()

        resp = client.get(f"/scan/{scan['scanRunId']}", headers=AUTH)

        assert resp.status_code == 200
        body = resp.json()
        assert body["status"] == "completed"
        assert body["sources"] == [
            {"source": "scripted", "status": "completed", "itemsFound": 1, "error": None}
        ]

    def test_unknown_run(self, client):
        assert client.get("/scan/missing", headers=AUTH).status_code == 404
