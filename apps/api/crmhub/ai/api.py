from __future__ import annotations

from fastapi import APIRouter, Depends, Request, status
from sqlalchemy.orm import Session

from crmhub.ai.schemas import (
    AICompleteRequest,
    AICompleteResponse,
    AISearchRequest,
    AISearchResponse,
    EmbeddingEnqueueRequest,
    EmbeddingEnqueueResponse,
)
from crmhub.ai.service import AIService
from crmhub.core.auth import get_current_user
from crmhub.core.config import get_settings
from crmhub.core.database import get_db


router = APIRouter(prefix="/api/ai", tags=["ai"], dependencies=[Depends(get_current_user)])


def get_ai_service(request: Request) -> AIService:
    return AIService(request.app.state.ai_providers, get_settings())


@router.post("/search", response_model=AISearchResponse)
def search(
    payload: AISearchRequest,
    db: Session = Depends(get_db),
    ai_service: AIService = Depends(get_ai_service),
) -> AISearchResponse:
    return ai_service.search(db, payload.query)


@router.post("/complete", response_model=AICompleteResponse)
def complete(
    payload: AICompleteRequest,
    db: Session = Depends(get_db),
    ai_service: AIService = Depends(get_ai_service),
) -> AICompleteResponse:
    return AICompleteResponse(response=ai_service.complete(db, payload.prompt))


@router.post("/embeddings", response_model=EmbeddingEnqueueResponse, status_code=status.HTTP_202_ACCEPTED)
def enqueue_embedding(
    payload: EmbeddingEnqueueRequest,
    ai_service: AIService = Depends(get_ai_service),
) -> EmbeddingEnqueueResponse:
    job_id = ai_service.enqueue_embedding(payload.text, payload.metadata)
    return EmbeddingEnqueueResponse(job_id=job_id)
