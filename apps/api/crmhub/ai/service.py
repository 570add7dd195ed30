from __future__ import annotations

import json
import logging
import time
from collections.abc import Callable
from datetime import datetime, timezone
from typing import Any

from fastapi import HTTPException, status
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from crmhub.ai.clients import AIProviders, VectorMatch
from crmhub.ai.models import Embedding, PromptLog
from crmhub.ai.retry import with_retry
from crmhub.ai.schemas import AISearchResponse, CrmSearchData, EmbeddingJobResult, SemanticMatch
from crmhub.context import get_correlation_id
from crmhub.core.config import Settings
from crmhub.crm.schemas import CompanyRead, OpportunityRead
from crmhub.crm.search import keyword_search_companies, keyword_search_opportunities
from crmhub.metrics import observe_embedding_job, observe_semantic_fallback
from crmhub.otel import get_tracer


logger = logging.getLogger("crmhub.ai")
tracer = get_tracer("crmhub.ai")


def build_search_prompt(query: str, data: CrmSearchData) -> str:
    results = json.dumps(data.model_dump(mode="json", by_alias=True), indent=2)
    return (
        "You are a helpful CRM assistant. Based on the following search results from a CRM system, "
        f'provide a helpful and conversational response to the user\'s query: "{query}"\n\n'
        f"Available Data:\n{results}\n\n"
        "Please provide insights about the companies, opportunities, and contacts that match the query. "
        "If no relevant data is found, let the user know and suggest they try a different search term."
    )


class AIService:
    def __init__(
        self,
        providers: AIProviders,
        settings: Settings,
        *,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.providers = providers
        self.settings = settings
        self._sleep = sleep

    def _retry(self, operation: Callable[[], Any], name: str) -> Any:
        return with_retry(
            operation,
            name,
            max_attempts=self.settings.retry_max_attempts,
            initial_delay_ms=self.settings.retry_initial_delay_ms,
            sleep=self._sleep,
        )

    def complete(self, session: Session, prompt: str) -> str:
        model = self.settings.completion_model
        try:
            result = self._retry(
                lambda: self.providers.completion.complete(
                    prompt,
                    model=model,
                    max_tokens=self.settings.completion_max_tokens,
                    temperature=self.settings.completion_temperature,
                ),
                "complete",
            )
        except Exception:
            self._record_prompt(session, model, prompt, "", 0)
            raise

        self._record_prompt(session, model, prompt, result.text, result.tokens_used)
        logger.info("ai.complete", extra={"model": model, "tokens_used": result.tokens_used})
        return result.text

    def embed_text(self, text: str) -> list[float]:
        model = self.settings.embedding_model
        return self._retry(lambda: self.providers.embeddings.embed(text, model=model), "embed_text")

    def semantic_search(self, query: str) -> list[VectorMatch]:
        vector = self.embed_text(query)
        return self.providers.vector_index.query(vector, self.settings.semantic_top_k)

    def search_crm_data(self, session: Session, query: str) -> CrmSearchData:
        normalized = query.strip()
        if not normalized:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Query is required")

        semantic: list[SemanticMatch] | None
        try:
            matches = self.semantic_search(normalized)
            semantic = [SemanticMatch(id=item.id, score=item.score, metadata=item.metadata) for item in matches]
        except Exception as exc:
            observe_semantic_fallback()
            logger.warning("ai.semantic_search_failed", extra={"operation": "semantic_search", "error": str(exc)})
            semantic = None

        companies = keyword_search_companies(session, normalized)
        opportunities = keyword_search_opportunities(session, normalized)
        return CrmSearchData(
            semantic=semantic,
            companies=[CompanyRead.model_validate(item) for item in companies],
            opportunities=[OpportunityRead.model_validate(item) for item in opportunities],
        )

    def search(self, session: Session, query: str) -> AISearchResponse:
        data = self.search_crm_data(session, query)
        response = self.complete(session, build_search_prompt(query, data))
        return AISearchResponse(
            query=query,
            response=response,
            data=data,
            timestamp=datetime.now(timezone.utc),
        )

    def enqueue_embedding(self, text: str, metadata: dict[str, Any] | None = None) -> str:
        job_id = self.providers.queue.enqueue(text, metadata or {})
        logger.info("job.enqueued", extra={"job_id": job_id, "job_type": "embedding"})
        return job_id

    def process_embedding_job(
        self,
        session: Session,
        job_id: str,
        text: str,
        metadata: dict[str, Any] | None = None,
    ) -> EmbeddingJobResult:
        started = time.perf_counter()
        with tracer.start_as_current_span("crm.embedding.job") as job_span:
            job_span.set_attribute("job_id", job_id)
            job_span.set_attribute("job_type", "embedding")
            correlation_id = get_correlation_id()
            if correlation_id:
                job_span.set_attribute("correlation_id", correlation_id)

            logger.info("job.started", extra={"job_id": job_id, "job_type": "embedding"})
            try:
                vector = self.embed_text(text)
                self.providers.vector_index.upsert(job_id, vector, metadata or {})
                embedding = Embedding(
                    job_id=job_id,
                    model=self.settings.embedding_model,
                    vector=vector,
                    metadata_json=metadata or {},
                )
                session.add(embedding)
                session.commit()
            except Exception as exc:
                session.rollback()
                job_span.set_attribute("status", "failed")
                observe_embedding_job("failed", time.perf_counter() - started)
                logger.exception(
                    "job.failed",
                    extra={"job_id": job_id, "job_type": "embedding", "status": "failed", "error": str(exc)},
                )
                raise

            job_span.set_attribute("status", "succeeded")
            duration = time.perf_counter() - started
            observe_embedding_job("succeeded", duration)
            logger.info(
                "job.finished",
                extra={
                    "job_id": job_id,
                    "job_type": "embedding",
                    "status": "succeeded",
                    "duration_ms": round(duration * 1000, 2),
                },
            )
        return EmbeddingJobResult(job_id=job_id, embedding_id=embedding.id, dimensions=len(vector))

    def _record_prompt(self, session: Session, model: str, prompt: str, response: str, tokens_used: int) -> None:
        try:
            session.add(PromptLog(model=model, prompt=prompt, response=response, tokens_used=tokens_used))
            session.commit()
        except SQLAlchemyError as exc:
            session.rollback()
            logger.error("ai.prompt_log_failed", extra={"model": model, "error": str(exc)})
