from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from crmhub.crm.schemas import CamelModel, CompanyRead, OpportunityRead


class AISearchRequest(CamelModel):
    query: str


class AICompleteRequest(CamelModel):
    prompt: str = Field(min_length=1)


class AICompleteResponse(CamelModel):
    response: str


class EmbeddingEnqueueRequest(CamelModel):
    text: str = Field(min_length=1)
    metadata: dict[str, Any] = Field(default_factory=dict)


class EmbeddingEnqueueResponse(CamelModel):
    status: str = "queued"
    job_id: str


class SemanticMatch(CamelModel):
    id: str
    score: float
    metadata: dict[str, Any]


class CrmSearchData(CamelModel):
    semantic: list[SemanticMatch] | None
    companies: list[CompanyRead]
    opportunities: list[OpportunityRead]


class AISearchResponse(CamelModel):
    query: str
    response: str
    data: CrmSearchData
    timestamp: datetime


class EmbeddingJobResult(BaseModel):
    job_id: str
    embedding_id: int
    dimensions: int
