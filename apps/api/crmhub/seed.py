from __future__ import annotations

import logging
from datetime import date

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from crmhub.core.database import SessionLocal
from crmhub.crm.models import Company
from crmhub.crm.schemas import ActivityCreate, CompanyCreate, ContactCreate, OpportunityCreate
from crmhub.crm.service import ActivityService, CompanyService, ContactService, OpportunityService
from crmhub.logging import configure_logging


logger = logging.getLogger("crmhub.seed")

SAMPLE_COMPANIES = [
    {
        "name": "TechCorp Solutions",
        "industry": "Technology",
        "website": "https://techcorp.com",
        "custom_fields": {"employees": 250, "founded": 2015},
        "contact": {
            "first_name": "John",
            "last_name": "Doe",
            "email": "john.doe@techcorp.com",
            "phone": "+1-555-0123",
            "role": "CTO",
        },
        "opportunity": {
            "title": "Cloud Migration Project",
            "amount": 150000,
            "status": "proposal",
            "close_date": date(2025, 8, 15),
            "custom_fields": {"priority": "high", "source": "website"},
        },
        "activity": {"type": "call", "details": "Initial discovery call about cloud migration needs"},
    },
    {
        "name": "CloudCo",
        "industry": "Cloud Computing",
        "website": "https://cloudco.io",
        "custom_fields": {"employees": 150, "founded": 2018},
        "contact": {
            "first_name": "Jane",
            "last_name": "Smith",
            "email": "jane.smith@cloudco.io",
            "phone": "+1-555-0456",
            "role": "CEO",
        },
        "opportunity": {
            "title": "AI Platform Implementation",
            "amount": 250000,
            "status": "negotiation",
            "close_date": date(2025, 9, 30),
            "custom_fields": {"priority": "high", "source": "referral"},
        },
        "activity": {"type": "email", "details": "Sent proposal for AI platform implementation"},
    },
    {
        "name": "RetailPlus",
        "industry": "Retail",
        "website": "https://retailplus.com",
        "custom_fields": {"employees": 500, "founded": 2010},
        "contact": {
            "first_name": "Bob",
            "last_name": "Wilson",
            "email": "bob.wilson@retailplus.com",
            "phone": "+1-555-0789",
            "role": "VP Sales",
        },
        "opportunity": {
            "title": "E-commerce Platform Upgrade",
            "amount": 75000,
            "status": "closed-won",
            "close_date": date(2025, 6, 30),
            "custom_fields": {"priority": "medium", "source": "cold_call"},
        },
        "activity": {"type": "meeting", "details": "Contract signing meeting for e-commerce upgrade"},
    },
]


def seed_sample_data(session: Session) -> dict[str, int]:
    """Insert the sample CRM records unless companies already exist."""
    existing = int(session.scalar(select(func.count(Company.id))) or 0)
    if existing:
        logger.info("seed.skipped", extra={"status": "skipped"})
        return {"companies": 0, "contacts": 0, "opportunities": 0, "activities": 0}

    company_service = CompanyService()
    contact_service = ContactService()
    opportunity_service = OpportunityService()
    activity_service = ActivityService()

    for sample in SAMPLE_COMPANIES:
        company = company_service.create(
            session,
            CompanyCreate(
                name=sample["name"],
                industry=sample["industry"],
                website=sample["website"],
                custom_fields=sample["custom_fields"],
            ),
            actor_user_id="seed",
        )
        contact = contact_service.create(session, ContactCreate(company_id=company.id, **sample["contact"]))
        opportunity_service.create(
            session,
            OpportunityCreate(company_id=company.id, contact_id=contact.id, **sample["opportunity"]),
            actor_user_id="seed",
        )
        activity_service.create(
            session,
            ActivityCreate(company_id=company.id, contact_id=contact.id, **sample["activity"]),
        )

    counts = {key: len(SAMPLE_COMPANIES) for key in ("companies", "contacts", "opportunities", "activities")}
    logger.info("seed.finished", extra={"status": "succeeded"})
    return counts


def main() -> None:
    configure_logging()
    session = SessionLocal()
    try:
        seed_sample_data(session)
    finally:
        session.close()


if __name__ == "__main__":
    main()
