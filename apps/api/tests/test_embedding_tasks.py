from __future__ import annotations

from collections.abc import Generator
from typing import Any

import pytest
from sqlalchemy import create_engine, select
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from crmhub.ai import tasks
from crmhub.ai.clients import AIProviders, CompletionResult, VectorMatch
from crmhub.ai.models import Embedding
from crmhub.core.database import Base


class StubCompletionClient:
    def complete(self, prompt: str, *, model: str, max_tokens: int, temperature: float) -> CompletionResult:
        return CompletionResult(text="unused", tokens_used=0)


class StubEmbeddingClient:
    def __init__(self) -> None:
        self.inputs: list[str] = []

    def embed(self, text: str, *, model: str) -> list[float]:
        self.inputs.append(text)
        return [0.5, 0.25, 0.125, 0.0]


class StubVectorIndex:
    def __init__(self) -> None:
        self.upserts: list[tuple[str, list[float], dict[str, Any]]] = []
        self.closed = False

    def upsert(self, point_id: str, vector: list[float], metadata: dict[str, Any]) -> None:
        self.upserts.append((point_id, vector, metadata))

    def query(self, vector: list[float], top_k: int) -> list[VectorMatch]:
        return []

    def close(self) -> None:
        self.closed = True


class StubQueue:
    def enqueue(self, text: str, metadata: dict[str, Any]) -> str:
        return "unused"


@pytest.fixture()
def session_factory(monkeypatch: pytest.MonkeyPatch) -> Generator[sessionmaker, None, None]:
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    factory = sessionmaker(bind=engine, autocommit=False, autoflush=False)
    monkeypatch.setattr(tasks, "SessionLocal", factory)
    yield factory
    Base.metadata.drop_all(bind=engine)


@pytest.fixture()
def built_providers(monkeypatch: pytest.MonkeyPatch) -> Generator[list[AIProviders], None, None]:
    built: list[AIProviders] = []

    def fake_build_providers(settings: Any) -> AIProviders:
        providers = AIProviders(
            completion=StubCompletionClient(),
            embeddings=StubEmbeddingClient(),
            vector_index=StubVectorIndex(),
            queue=StubQueue(),
        )
        built.append(providers)
        return providers

    monkeypatch.setattr(tasks, "build_providers", fake_build_providers)
    tasks.get_worker_providers.cache_clear()
    yield built
    tasks.get_worker_providers.cache_clear()


def test_jobs_in_one_worker_share_provider_clients(
    session_factory: sessionmaker, built_providers: list[AIProviders]
) -> None:
    first = tasks.embed_task.apply(kwargs={"text": "Acme renewal", "metadata": {"entity_id": "1"}})
    second = tasks.embed_task.apply(kwargs={"text": "Globex upsell", "metadata": {"entity_id": "2"}})

    assert first.successful() and second.successful()
    assert len(built_providers) == 1
    providers = built_providers[0]
    assert providers.embeddings.inputs == ["Acme renewal", "Globex upsell"]
    assert [metadata for _, _, metadata in providers.vector_index.upserts] == [{"entity_id": "1"}, {"entity_id": "2"}]
    assert first.get()["dimensions"] == 4
    assert first.get()["job_id"] != second.get()["job_id"]

    with session_factory() as session:
        job_ids = set(session.scalars(select(Embedding.job_id)).all())
    assert job_ids == {first.get()["job_id"], second.get()["job_id"]}


def test_worker_process_init_drops_inherited_providers(
    session_factory: sessionmaker, built_providers: list[AIProviders]
) -> None:
    inherited = tasks.get_worker_providers()

    tasks._reset_worker_providers()
    tasks.embed_task.apply(kwargs={"text": "Initech", "metadata": {}})

    assert len(built_providers) == 2
    assert tasks.get_worker_providers() is not inherited
    assert inherited.vector_index.upserts == []


def test_worker_shutdown_closes_cached_providers(built_providers: list[AIProviders]) -> None:
    providers = tasks.get_worker_providers()

    tasks._close_worker_providers()

    assert providers.vector_index.closed is True
    assert tasks.get_worker_providers.cache_info().currsize == 0


def test_worker_shutdown_without_jobs_builds_nothing(built_providers: list[AIProviders]) -> None:
    tasks._close_worker_providers()

    assert built_providers == []
