from __future__ import annotations

from collections.abc import Generator

import pytest
from sqlalchemy import create_engine, func, select
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from crmhub.core.database import Base
from crmhub.crm.models import Activity, Company, Contact, Opportunity
from crmhub.seed import seed_sample_data


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


def _count(session: Session, model: type) -> int:
    return int(session.scalar(select(func.count()).select_from(model)) or 0)


def test_seed_inserts_linked_sample_records(db_session: Session) -> None:
    counts = seed_sample_data(db_session)

    assert counts == {"companies": 3, "contacts": 3, "opportunities": 3, "activities": 3}
    assert _count(db_session, Company) == 3
    cloudco = db_session.scalar(select(Company).where(Company.name == "CloudCo"))
    assert cloudco is not None
    assert cloudco.contact_count == 1
    opportunity = db_session.scalar(select(Opportunity).where(Opportunity.company_id == cloudco.id))
    assert opportunity is not None
    assert opportunity.status == "negotiation"
    assert opportunity.contact is not None and opportunity.contact.first_name == "Jane"


def test_seed_is_skipped_when_companies_exist(db_session: Session) -> None:
    seed_sample_data(db_session)

    counts = seed_sample_data(db_session)

    assert counts["companies"] == 0
    assert _count(db_session, Company) == 3
    assert _count(db_session, Contact) == 3
    assert _count(db_session, Activity) == 3
