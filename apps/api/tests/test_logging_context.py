from __future__ import annotations

import json
import logging
from collections.abc import Generator
from typing import Any

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from crmhub.ai.api import get_ai_service
from crmhub.ai.clients import AIProviders, CompletionResult, VectorMatch
from crmhub.ai.service import AIService
from crmhub.core.auth import AuthUser, get_current_user
from crmhub.core.config import Settings
from crmhub.core.database import Base, get_db
from crmhub.logging import JsonLogFormatter
from crmhub.main import app


class FakeCompletionClient:
    def complete(self, prompt: str, *, model: str, max_tokens: int, temperature: float) -> CompletionResult:
        return CompletionResult(text="ok", tokens_used=3)


class FakeEmbeddingClient:
    def embed(self, text: str, *, model: str) -> list[float]:
        return [0.5, 0.5]


class FakeVectorIndex:
    def upsert(self, point_id: str, vector: list[float], metadata: dict[str, Any]) -> None:
        return None

    def query(self, vector: list[float], top_k: int) -> list[VectorMatch]:
        return []


class FakeQueue:
    def enqueue(self, text: str, metadata: dict[str, Any]) -> str:
        return "job-log-1"


@pytest.fixture()
def db_session() -> Generator[Session, None, None]:
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False)
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture()
def ai_service() -> AIService:
    providers = AIProviders(
        completion=FakeCompletionClient(),
        embeddings=FakeEmbeddingClient(),
        vector_index=FakeVectorIndex(),
        queue=FakeQueue(),
    )
    return AIService(providers, Settings(), sleep=lambda seconds: None)


@pytest.fixture()
def client(db_session: Session, ai_service: AIService) -> Generator[TestClient, None, None]:
    def override_get_db() -> Generator[Session, None, None]:
        yield db_session

    def override_get_current_user() -> AuthUser:
        return AuthUser(sub="user-1", roles=["user"])

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_current_user] = override_get_current_user
    app.dependency_overrides[get_ai_service] = lambda: ai_service
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


def test_logs_include_correlation_id_for_http(client: TestClient, caplog: pytest.LogCaptureFixture) -> None:
    caplog.set_level(logging.INFO)

    response = client.get("/api/companies/987", headers={"X-Correlation-Id": "abc-123"})
    assert response.status_code == 404

    records = [
        record for record in caplog.records if record.name == "crmhub.request" and record.getMessage() == "http.request"
    ]
    assert records
    assert any(
        getattr(record, "correlation_id", None) == "abc-123"
        and getattr(record, "method", None) == "GET"
        and getattr(record, "path", None) == "/api/companies/{id}"
        and getattr(record, "status_code", None) == 404
        and isinstance(getattr(record, "duration_ms", None), float)
        for record in records
    )


def test_logs_include_job_context_and_correlation_id(
    client: TestClient,
    db_session: Session,
    ai_service: AIService,
    caplog: pytest.LogCaptureFixture,
) -> None:
    caplog.set_level(logging.INFO)

    enqueue = client.post(
        "/api/ai/embeddings",
        json={"text": "CloudCo"},
        headers={"X-Correlation-Id": "abc-123"},
    )
    assert enqueue.status_code == 202
    ai_service.process_embedding_job(db_session, "job-log-1", "CloudCo", {"entity_type": "company"})

    job_records = [record for record in caplog.records if record.name == "crmhub.ai"]
    assert any(
        getattr(record, "job_id", None) == "job-log-1"
        and getattr(record, "correlation_id", None) == "abc-123"
        and record.getMessage() == "job.enqueued"
        for record in job_records
    )
    assert {record.getMessage() for record in job_records if getattr(record, "job_id", None) == "job-log-1"} >= {
        "job.started",
        "job.finished",
    }


def test_json_formatter_keeps_known_fields_only() -> None:
    record = logging.makeLogRecord(
        {
            "name": "crmhub.ai",
            "levelname": "WARNING",
            "msg": "ai.retry",
            "operation": "complete",
            "attempt": 2,
            "api_key": "sk-secret",
            "error": "x" * 800,
            "correlation_id": "corr-fmt-1",
        }
    )

    payload = json.loads(JsonLogFormatter().format(record))

    assert payload["msg"] == "ai.retry"
    assert payload["logger"] == "crmhub.ai"
    assert payload["correlation_id"] == "corr-fmt-1"
    assert payload["fields"]["operation"] == "complete"
    assert payload["fields"]["attempt"] == 2
    assert "api_key" not in payload["fields"]
    assert len(payload["fields"]["error"]) == 500
