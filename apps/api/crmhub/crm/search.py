from __future__ import annotations

from typing import Any

from sqlalchemy import or_, select
from sqlalchemy.orm import Session, selectinload

from crmhub.crm.models import Company, Opportunity
from crmhub.crm.query import like_pattern


KEYWORD_RESULT_LIMIT = 10


def _string_or_none(value: Any) -> str | None:
    return str(value) if value is not None else None


def build_search_doc_for_company(company: Company) -> tuple[str, dict[str, Any]]:
    parts = [company.name, company.industry, company.website]
    text = " | ".join(part for part in parts if part)
    metadata = {
        "entity_type": "company",
        "entity_id": company.id,
        "name": company.name,
        "industry": company.industry,
    }
    return text, metadata


def build_search_doc_for_opportunity(opportunity: Opportunity) -> tuple[str, dict[str, Any]]:
    parts = [opportunity.title, f"status: {opportunity.status}"]
    if opportunity.amount is not None:
        parts.append(f"amount: {opportunity.amount}")
    if opportunity.close_date is not None:
        parts.append(f"closes: {opportunity.close_date.isoformat()}")
    metadata = {
        "entity_type": "opportunity",
        "entity_id": opportunity.id,
        "company_id": opportunity.company_id,
        "title": opportunity.title,
        "status": opportunity.status,
        "close_date": _string_or_none(opportunity.close_date),
    }
    return " | ".join(parts), metadata


def keyword_search_companies(session: Session, query: str, limit: int = KEYWORD_RESULT_LIMIT) -> list[Company]:
    pattern = like_pattern(query)
    stmt = (
        select(Company)
        .where(
            or_(
                Company.name.ilike(pattern, escape="\\"),
                Company.industry.ilike(pattern, escape="\\"),
                Company.website.ilike(pattern, escape="\\"),
            )
        )
        .order_by(Company.name.asc(), Company.id.asc())
        .limit(limit)
    )
    return list(session.scalars(stmt).all())


def keyword_search_opportunities(session: Session, query: str, limit: int = KEYWORD_RESULT_LIMIT) -> list[Opportunity]:
    stmt = (
        select(Opportunity)
        .where(Opportunity.title.ilike(like_pattern(query), escape="\\"))
        .options(selectinload(Opportunity.company), selectinload(Opportunity.contact))
        .order_by(Opportunity.created_at.desc(), Opportunity.id.desc())
        .limit(limit)
    )
    return list(session.scalars(stmt).all())
