from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from functools import cached_property
from typing import Any, Protocol

from openai import OpenAI
from qdrant_client import QdrantClient
from qdrant_client.http.models import Distance, PointStruct, VectorParams

from crmhub.core.celery_app import celery_app
from crmhub.core.config import Settings


logger = logging.getLogger("crmhub.ai")

EMBED_TASK_NAME = "crm.embeddings.embed"


@dataclass
class CompletionResult:
    text: str
    tokens_used: int


@dataclass
class VectorMatch:
    id: str
    score: float
    metadata: dict[str, Any]


class CompletionClient(Protocol):
    def complete(self, prompt: str, *, model: str, max_tokens: int, temperature: float) -> CompletionResult: ...


class EmbeddingClient(Protocol):
    def embed(self, text: str, *, model: str) -> list[float]: ...


class VectorIndex(Protocol):
    def upsert(self, point_id: str, vector: list[float], metadata: dict[str, Any]) -> None: ...

    def query(self, vector: list[float], top_k: int) -> list[VectorMatch]: ...


class EmbeddingQueue(Protocol):
    def enqueue(self, text: str, metadata: dict[str, Any]) -> str: ...


class OpenAICompletionClient:
    def __init__(self, api_key: str, base_url: str | None = None) -> None:
        self._api_key = api_key
        self._base_url = base_url

    @cached_property
    def client(self) -> OpenAI:
        return OpenAI(api_key=self._api_key, base_url=self._base_url)

    def close(self) -> None:
        _close_cached_client(self)

    def complete(self, prompt: str, *, model: str, max_tokens: int, temperature: float) -> CompletionResult:
        response = self.client.chat.completions.create(
            model=model,
            messages=[{"role": "user", "content": prompt}],
            max_tokens=max_tokens,
            temperature=temperature,
        )
        text = response.choices[0].message.content or ""
        tokens_used = response.usage.total_tokens if response.usage else 0
        return CompletionResult(text=text, tokens_used=tokens_used)


class OpenAIEmbeddingClient:
    def __init__(self, api_key: str, base_url: str | None = None) -> None:
        self._api_key = api_key
        self._base_url = base_url

    @cached_property
    def client(self) -> OpenAI:
        return OpenAI(api_key=self._api_key, base_url=self._base_url)

    def close(self) -> None:
        _close_cached_client(self)

    def embed(self, text: str, *, model: str) -> list[float]:
        response = self.client.embeddings.create(model=model, input=text)
        return list(response.data[0].embedding)


class QdrantVectorIndex:
    def __init__(self, url: str, collection: str, vector_size: int, api_key: str | None = None) -> None:
        self._url = url
        self._api_key = api_key
        self.collection = collection
        self.vector_size = vector_size
        self._collection_ready = False

    @cached_property
    def client(self) -> QdrantClient:
        return QdrantClient(url=self._url, api_key=self._api_key, timeout=30)

    def close(self) -> None:
        _close_cached_client(self)
        self._collection_ready = False

    def ensure_collection(self) -> None:
        if self._collection_ready:
            return
        existing = [item.name for item in self.client.get_collections().collections]
        if self.collection not in existing:
            self.client.create_collection(
                collection_name=self.collection,
                vectors_config=VectorParams(size=self.vector_size, distance=Distance.COSINE),
            )
            logger.info("ai.collection_created", extra={"operation": "ensure_collection", "collection": self.collection})
        self._collection_ready = True

    def upsert(self, point_id: str, vector: list[float], metadata: dict[str, Any]) -> None:
        self.ensure_collection()
        self.client.upsert(
            collection_name=self.collection,
            points=[PointStruct(id=_point_id(point_id), vector=vector, payload={**metadata, "job_id": point_id})],
        )

    def query(self, vector: list[float], top_k: int) -> list[VectorMatch]:
        self.ensure_collection()
        result = self.client.query_points(
            collection_name=self.collection,
            query=vector,
            limit=top_k,
            with_payload=True,
        )
        return [
            VectorMatch(id=str(point.id), score=float(point.score), metadata=dict(point.payload or {}))
            for point in result.points
        ]


def _close_cached_client(owner: Any) -> None:
    client = owner.__dict__.pop("client", None)
    if client is not None:
        client.close()


def _point_id(raw: str) -> str:
    # Qdrant ids must be unsigned integers or UUIDs.
    try:
        return str(uuid.UUID(raw))
    except ValueError:
        return str(uuid.uuid5(uuid.NAMESPACE_URL, raw))


class CeleryEmbeddingQueue:
    def __init__(self, celery_app: Any) -> None:
        self._celery_app = celery_app

    def enqueue(self, text: str, metadata: dict[str, Any]) -> str:
        result = self._celery_app.send_task(EMBED_TASK_NAME, kwargs={"text": text, "metadata": metadata})
        return str(result.id)


@dataclass
class AIProviders:
    completion: CompletionClient
    embeddings: EmbeddingClient
    vector_index: VectorIndex
    queue: EmbeddingQueue

    def close(self) -> None:
        for provider in (self.completion, self.embeddings, self.vector_index):
            close = getattr(provider, "close", None)
            if close is not None:
                close()


def build_providers(settings: Settings) -> AIProviders:
    return AIProviders(
        completion=OpenAICompletionClient(settings.openai_api_key, settings.openai_base_url),
        embeddings=OpenAIEmbeddingClient(settings.openai_api_key, settings.openai_base_url),
        vector_index=QdrantVectorIndex(
            settings.qdrant_url,
            settings.qdrant_collection,
            settings.embedding_dim,
            api_key=settings.qdrant_api_key,
        ),
        queue=CeleryEmbeddingQueue(celery_app),
    )
