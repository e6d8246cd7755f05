"""Pytest fixtures for serp-analyzer tests."""

import json
import os
from typing import Dict, List, Optional, Tuple

# Point the app at an in-memory database before anything imports settings
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("REDIS_URL", "")

import httpx  # noqa: E402
import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from serp_analyzer.database import Base, get_db  # noqa: E402
from serp_analyzer import models  # noqa: E402,F401
from serp_analyzer.providers.clients import ApifyClient  # noqa: E402
from serp_analyzer.schemas import APIKeyRequest, UserCreateRequest  # noqa: E402
from serp_analyzer.services.credentials import CredentialPool  # noqa: E402
from serp_analyzer.utils.auth import UserManager  # noqa: E402


class FakeApify:
    """In-process stand-in for the Apify REST API.

    ``serp`` maps a keyword to the domain authority of each ranked URL.
    ``token_errors`` makes every call with that token fail with
    ``(status_code, error_type)``. Keywords in ``failing_keywords`` produce a
    FAILED SERP run. ``raw_serp`` maps a keyword to result rows returned
    verbatim, for malformed payloads.
    """

    def __init__(
        self,
        serp: Optional[Dict[str, List[float]]] = None,
        token_errors: Optional[Dict[str, Tuple[int, str]]] = None,
        failing_keywords: Optional[set] = None,
        raw_serp: Optional[Dict[str, List[dict]]] = None,
    ):
        self.serp = serp or {}
        self.token_errors = token_errors or {}
        self.failing_keywords = failing_keywords or set()
        self.raw_serp = raw_serp or {}
        self.runs: Dict[str, Tuple[str, dict]] = {}
        self.authority: Dict[str, float] = {}
        self.calls: List[Tuple[str, str, str]] = []
        self.started: List[Tuple[str, dict, str]] = []

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    def client_factory(self, **overrides):
        options = dict(
            poll_interval=0,
            settle_delay=0,
            max_poll_attempts=3,
            max_dataset_attempts=3,
            transport=self.transport(),
        )
        options.update(overrides)

        def factory(api_token: str) -> ApifyClient:
            return ApifyClient(api_token, **options)

        return factory

    def started_keywords(self, token: Optional[str] = None) -> List[str]:
        """Keywords whose SERP run was started, optionally for one token."""
        return [
            payload["keyword"]
            for kind, payload, run_token in self.started
            if kind == "serp" and (token is None or run_token == token)
        ]

    def _serp_items(self, keyword: str) -> list:
        slug = keyword.replace(" ", "-")
        results = []
        for index, authority in enumerate(self.serp.get(keyword, [])):
            url = f"https://site{index}.example/{slug}"
            self.authority[url] = authority
            results.append(
                {
                    "position": index + 1,
                    "url": url,
                    "title": f"{keyword} result {index + 1}",
                    "description": f"About {keyword}",
                }
            )
        if keyword in self.raw_serp:
            results = self.raw_serp[keyword]
        return [
            {
                "search_term": keyword,
                "results": results,
                "related_keywords": {"keywords": [{"keyword": f"{keyword} review"}]},
                "knowledge_panel": None,
            }
        ]

    def _metrics_items(self, urls: List[str]) -> list:
        return [
            {
                "domain": url,
                "domain_authority": self.authority.get(url, 0),
                "page_authority": max(self.authority.get(url, 0) - 5, 0),
                "spam_score": 1,
            }
            for url in urls
        ]

    def handler(self, request: httpx.Request) -> httpx.Response:
        token = request.headers["authorization"].split(" ", 1)[1]
        path = request.url.path
        self.calls.append((request.method, path, token))

        if token in self.token_errors:
            status_code, error_type = self.token_errors[token]
            return httpx.Response(
                status_code,
                json={"error": {"type": error_type, "message": f"{error_type} for token"}},
            )

        if path == "/v2/users/me":
            return httpx.Response(200, json={"data": {"username": "tester"}})

        if request.method == "POST" and path.endswith("/runs"):
            payload = json.loads(request.content)
            run_id = f"run{len(self.runs) + 1}"
            kind = "serp" if "keyword" in payload else "metrics"
            self.runs[run_id] = (kind, payload)
            self.started.append((kind, payload, token))
            return httpx.Response(201, json={"data": {"id": run_id, "status": "READY"}})

        if "/runs/" in path:
            run_id = path.rsplit("/", 1)[1]
            kind, payload = self.runs[run_id]
            if kind == "serp" and payload["keyword"] in self.failing_keywords:
                return httpx.Response(
                    200,
                    json={
                        "data": {
                            "id": run_id,
                            "status": "FAILED",
                            "meta": {"errorMessage": "Actor crashed"},
                        }
                    },
                )
            return httpx.Response(
                200,
                json={
                    "data": {
                        "id": run_id,
                        "status": "SUCCEEDED",
                        "defaultDatasetId": f"ds_{run_id}",
                    }
                },
            )

        if path.startswith("/v2/datasets/"):
            run_id = path.split("/")[3][len("ds_"):]
            kind, payload = self.runs[run_id]
            if kind == "serp":
                return httpx.Response(200, json=self._serp_items(payload["keyword"]))
            return httpx.Response(200, json=self._metrics_items(payload["url"]))

        return httpx.Response(404, json={"error": {"type": "page-not-found"}})


@pytest.fixture
def fake_apify() -> FakeApify:
    """Fake Apify backend with a fresh run log."""
    return FakeApify()


@pytest.fixture
def db_engine():
    """In-memory SQLite engine shared across sessions of one test."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=db_engine)


@pytest.fixture
def db_session(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def user_with_token(db_session):
    """A registered user and their plaintext webhook token."""
    user, token = UserManager(db_session).create_user(
        UserCreateRequest(email="writer@example.com", full_name="Test Writer")
    )
    return user, token


@pytest.fixture
def make_credential(db_session):
    """Create an Apify key for a user."""

    def _make(user_id: str, api_key: str, name: Optional[str] = None):
        return CredentialPool(db_session).create(
            user_id, APIKeyRequest(key_name=name or api_key, api_key=api_key)
        )

    return _make


@pytest.fixture
def app_client(session_factory, fake_apify):
    """TestClient with the database and Apify client swapped for fakes."""
    from serp_analyzer.api.dependencies import get_client_factory
    from serp_analyzer.api.rate_limit import limiter
    from serp_analyzer.main import app

    def override_get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_client_factory] = lambda: fake_apify.client_factory()
    limiter.reset()

    client = TestClient(app)
    yield client

    app.dependency_overrides.clear()
    limiter.reset()
