"""Tests for the analyze webhook."""

import pytest

from serp_analyzer.models import AnalysisLog, SerpResult


def bearer(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def webhook(user_with_token):
    user, token = user_with_token
    return user, bearer(token)


class TestAnalyzeValidation:
    """Tests for request validation and authentication."""

    def test_missing_token(self, app_client):
        response = app_client.post("/analyze", json={"keywords": ["shoes"]})

        assert response.status_code == 401
        assert response.json()["detail"] == "Missing or invalid authorization header"

    def test_malformed_header(self, app_client):
        response = app_client.post(
            "/analyze", json={"keywords": ["shoes"]}, headers={"Authorization": "Token abc"}
        )

        assert response.status_code == 401

    def test_invalid_token(self, app_client):
        response = app_client.post(
            "/analyze", json={"keywords": ["shoes"]}, headers=bearer("serp-not-a-real-token")
        )

        assert response.status_code == 401
        assert response.json()["detail"] == "Invalid authorization token"

    @pytest.mark.parametrize(
        "body",
        [
            {"keywords": []},
            {"keywords": ["   "]},
            {"keywords": [f"kw{i}" for i in range(31)]},
            {"region": "US"},
            {"keywords": ["shoes"], "page": 0},
        ],
    )
    def test_invalid_body(self, app_client, webhook, session_factory, fake_apify, body):
        _, headers = webhook

        response = app_client.post("/analyze", json=body, headers=headers)

        assert response.status_code == 400
        assert response.json()["error"] == "invalid_request"
        assert fake_apify.calls == []
        with session_factory() as db:
            assert db.query(AnalysisLog).count() == 0

    def test_thirty_keywords_accepted(self, app_client, webhook, make_credential, fake_apify):
        user, headers = webhook
        make_credential(user.id, "apify_one")
        keywords = [f"kw{i}" for i in range(30)]
        fake_apify.serp = {keyword: [60] for keyword in keywords}

        response = app_client.post("/analyze", json={"keywords": keywords}, headers=headers)

        assert response.status_code == 200
        assert response.json()["keywordsProcessed"] == 30


class TestAnalyze:
    """Tests for a full analysis request."""

    def test_no_api_keys(self, app_client, webhook, session_factory, fake_apify):
        _, headers = webhook

        response = app_client.post("/analyze", json={"keywords": ["shoes"]}, headers=headers)

        assert response.status_code == 400
        data = response.json()
        assert data["error"] == "no_api_keys"
        assert data["requestId"]
        assert fake_apify.calls == []
        with session_factory() as db:
            logs = db.query(AnalysisLog).all()
            assert len(logs) == 1
            assert logs[0].status == "failed"
            assert logs[0].error_message == "No API keys available"
            assert logs[0].request_id == data["requestId"]

    def test_end_to_end(self, app_client, webhook, make_credential, fake_apify, session_factory):
        user, headers = webhook
        credential = make_credential(user.id, "apify_one", name="Main")
        fake_apify.serp = {"a": [50, 60, 70], "b": [55, 90]}

        response = app_client.post(
            "/analyze", json={"keywords": ["a", "b"], "region": "GB"}, headers=headers
        )

        assert response.status_code == 200
        data = response.json()
        assert data["keywordsProcessed"] == 2
        assert data["region"] == "GB"
        assert data["page"] == 1
        assert data["processingTimeMs"] >= 0
        assert [r["keyword"] for r in data["results"]] == ["a", "b"]
        assert [r["decision"] for r in data["results"]] == ["Skip", "Skip"]
        first = data["results"][0]
        assert first["apiKeyUsed"] == credential.id
        assert first["apiKeyName"] == "Main"
        assert first["averageAuthority"] == 60
        assert first["lowAuthorityCount"] == 0
        assert first["results"][0]["domainAuthority"] == 50

        with session_factory() as db:
            log = db.query(AnalysisLog).filter_by(request_id=data["requestId"]).one()
            assert log.status == "completed"
            assert log.country == "GB"
            assert len(log.results) == 2
            assert log.api_keys_used == [credential.id]
            assert log.completed_at is not None
            assert db.query(SerpResult).filter_by(analysis_log_id=log.id).count() == 5

        serp_payloads = [payload for kind, payload, _ in fake_apify.started if kind == "serp"]
        assert {p["country"] for p in serp_payloads} == {"GB"}

    def test_write_decision_with_custom_config(self, app_client, webhook, make_credential, fake_apify):
        user, headers = webhook
        make_credential(user.id, "apify_one")
        fake_apify.serp = {"niche": [10, 20, 80]}

        response = app_client.post(
            "/analyze",
            json={
                "keywords": ["niche"],
                "decisionConfig": {"minLowAuthorityCount": 2, "authorityThreshold": 35},
            },
            headers=headers,
        )

        result = response.json()["results"][0]
        assert result["decision"] == "Write"
        assert result["lowAuthorityCount"] == 2

    def test_keyword_failure_is_reported_per_keyword(
        self, app_client, webhook, make_credential, fake_apify, session_factory
    ):
        user, headers = webhook
        make_credential(user.id, "apify_one")
        fake_apify.serp = {"a": [60], "c": [60]}
        fake_apify.failing_keywords = {"b"}

        response = app_client.post(
            "/analyze", json={"keywords": ["a", "b", "c"]}, headers=headers
        )

        assert response.status_code == 200
        decisions = [r["decision"] for r in response.json()["results"]]
        assert decisions == ["Skip", "Error", "Skip"]
        with session_factory() as db:
            assert db.query(AnalysisLog).one().status == "completed"

    def test_malformed_serp_row_keeps_other_results(
        self, app_client, webhook, make_credential, fake_apify, session_factory
    ):
        user, headers = webhook
        make_credential(user.id, "apify_one")
        fake_apify.serp = {"a": [60, 70]}
        fake_apify.raw_serp = {
            "b": [
                {"position": 1, "url": "https://b1.example"},
                {"position": "N/A", "url": "https://b2.example"},
            ]
        }

        response = app_client.post("/analyze", json={"keywords": ["a", "b"]}, headers=headers)

        assert response.status_code == 200
        results = response.json()["results"]
        assert [r["decision"] for r in results] == ["Skip", "Error"]
        assert len(results[0]["results"]) == 2
        with session_factory() as db:
            log = db.query(AnalysisLog).one()
            assert log.status == "completed"
            assert db.query(SerpResult).filter_by(analysis_log_id=log.id).count() == 2

    def test_country_alias(self, app_client, webhook, make_credential, fake_apify):
        user, headers = webhook
        make_credential(user.id, "apify_one")

        response = app_client.post(
            "/analyze", json={"keywords": ["a"], "country": "DE"}, headers=headers
        )

        assert response.json()["region"] == "DE"

    def test_legacy_path(self, app_client, webhook, make_credential, fake_apify):
        user, headers = webhook
        make_credential(user.id, "apify_one")

        response = app_client.post("/api/analyze-serps", json={"keywords": ["a"]}, headers=headers)

        assert response.status_code == 200
        assert response.json()["keywordsProcessed"] == 1

    def test_unexpected_error_marks_log_failed(
        self, app_client, webhook, make_credential, session_factory
    ):
        from serp_analyzer.api.dependencies import get_client_factory
        from serp_analyzer.main import app

        user, headers = webhook
        make_credential(user.id, "apify_one")

        def broken_factory(api_token):
            raise RuntimeError("client construction failed")

        app.dependency_overrides[get_client_factory] = lambda: broken_factory

        response = app_client.post("/analyze", json={"keywords": ["a"]}, headers=headers)

        assert response.status_code == 500
        data = response.json()
        assert data["error"] == "analysis_failed"
        assert data["message"] == "client construction failed"
        with session_factory() as db:
            log = db.query(AnalysisLog).one()
            assert log.status == "failed"
            assert log.error_message == "client construction failed"


class TestServiceEndpoints:
    """Tests for root and health endpoints."""

    def test_health(self, app_client):
        response = app_client.get("/health")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["database"] == "connected"
        assert data["redis"] == "not configured"

    def test_root(self, app_client):
        data = app_client.get("/").json()

        assert data["status"] == "online"
        assert data["endpoints"]["analyze"] == "/analyze"

    def test_unknown_route(self, app_client):
        response = app_client.get("/nope")

        assert response.status_code == 404
        assert response.json()["error"]["type"] == "not_found"
