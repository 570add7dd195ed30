from __future__ import annotations

import math
import threading
from collections.abc import Generator
from pathlib import Path

import pytest
from sqlalchemy import create_engine, event
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from crmhub.core.database import Base
from crmhub.crm.models import Company, Contact, Opportunity
from crmhub.crm.query import build_filters, like_pattern, paginate
from crmhub.crm.schemas import CompanyListQuery, ContactListQuery, OpportunityListQuery
from crmhub.crm.service import COMPANY_QUERY, CONTACT_QUERY, OPPORTUNITY_QUERY


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
def companies(db_session: Session) -> list[Company]:
    rows = [
        Company(name=f"Company {index:02d}", industry="Tech" if index % 3 == 0 else "Retail")
        for index in range(23)
    ]
    db_session.add_all(rows)
    db_session.commit()
    return rows


def _ids(envelope: dict) -> list[int]:
    return [item.id for item in envelope["data"]]


def test_pagination_block_matches_total_for_every_limit(db_session: Session, companies: list[Company]) -> None:
    for limit in (1, 5, 7, 20, 23, 100):
        for page in (1, 2, 3):
            envelope = paginate(db_session, COMPANY_QUERY, CompanyListQuery(page=page, limit=limit), lambda row: row)
            pagination = envelope["pagination"]
            assert pagination["total"] == 23
            assert pagination["pages"] == math.ceil(23 / limit)
            assert len(envelope["data"]) <= limit
            assert pagination["page"] == page
            assert pagination["limit"] == limit


def test_page_past_the_end_is_empty_with_accurate_totals(db_session: Session, companies: list[Company]) -> None:
    envelope = paginate(db_session, COMPANY_QUERY, CompanyListQuery(page=50, limit=10), lambda row: row)

    assert envelope["data"] == []
    assert envelope["pagination"] == {"page": 50, "limit": 10, "total": 23, "pages": 3}


def test_pages_partition_the_result_set(db_session: Session, companies: list[Company]) -> None:
    seen: list[int] = []
    for page in range(1, 6):
        envelope = paginate(
            db_session,
            COMPANY_QUERY,
            CompanyListQuery(page=page, limit=5, sort_by="name", sort_order="asc"),
            lambda row: row,
        )
        seen.extend(_ids(envelope))

    assert len(seen) == 23
    assert len(set(seen)) == 23


def test_default_ordering_is_created_at_descending(db_session: Session, companies: list[Company]) -> None:
    envelope = paginate(db_session, COMPANY_QUERY, CompanyListQuery(limit=3), lambda row: row)

    newest_first = sorted(companies, key=lambda row: (row.created_at, row.id), reverse=True)
    assert _ids(envelope) == [row.id for row in newest_first[:3]]


def test_ties_are_broken_by_primary_key(db_session: Session, companies: list[Company]) -> None:
    ascending = paginate(
        db_session,
        COMPANY_QUERY,
        CompanyListQuery(limit=100, sort_by="industry", sort_order="asc"),
        lambda row: row,
    )
    descending = paginate(
        db_session,
        COMPANY_QUERY,
        CompanyListQuery(limit=100, sort_by="industry", sort_order="desc"),
        lambda row: row,
    )

    retail_ids = [row.id for row in ascending["data"] if row.industry == "Retail"]
    assert retail_ids == sorted(retail_ids)
    retail_desc_ids = [row.id for row in descending["data"] if row.industry == "Retail"]
    assert retail_desc_ids == sorted(retail_desc_ids, reverse=True)


def test_removing_a_filter_never_decreases_total(db_session: Session, companies: list[Company]) -> None:
    filtered = paginate(
        db_session,
        COMPANY_QUERY,
        CompanyListQuery(industry="Tech", search="Company 1"),
        lambda row: row,
    )
    search_only = paginate(db_session, COMPANY_QUERY, CompanyListQuery(search="Company 1"), lambda row: row)
    unfiltered = paginate(db_session, COMPANY_QUERY, CompanyListQuery(), lambda row: row)

    assert filtered["pagination"]["total"] <= search_only["pagination"]["total"] <= unfiltered["pagination"]["total"]
    assert filtered["pagination"]["total"] == 3
    assert search_only["pagination"]["total"] == 10


def test_absent_and_blank_filters_add_no_constraints() -> None:
    assert build_filters(CONTACT_QUERY, ContactListQuery()) == []
    assert build_filters(CONTACT_QUERY, ContactListQuery(search="   ", role="")) == []
    assert len(build_filters(CONTACT_QUERY, ContactListQuery(company_id=1, role="CEO"))) == 2


def test_range_filter_bounds_apply_independently(db_session: Session) -> None:
    company = Company(name="Acme")
    db_session.add(company)
    db_session.flush()
    db_session.add_all(
        [
            Opportunity(company_id=company.id, title="tiny", amount=10),
            Opportunity(company_id=company.id, title="mid", amount=100),
            Opportunity(company_id=company.id, title="huge", amount=1000),
        ]
    )
    db_session.commit()

    def titles(params: OpportunityListQuery) -> set[str]:
        return {row.title for row in paginate(db_session, OPPORTUNITY_QUERY, params, lambda row: row)["data"]}

    assert titles(OpportunityListQuery(min_amount=100)) == {"mid", "huge"}
    assert titles(OpportunityListQuery(max_amount=100)) == {"tiny", "mid"}
    assert titles(OpportunityListQuery(min_amount=50, max_amount=500)) == {"mid"}


def test_search_treats_wildcards_literally(db_session: Session) -> None:
    company = Company(name="Acme")
    db_session.add(company)
    db_session.flush()
    db_session.add_all(
        [
            Contact(company_id=company.id, first_name="Percy", last_name="100%"),
            Contact(company_id=company.id, first_name="Plain", last_name="Name"),
        ]
    )
    db_session.commit()

    envelope = paginate(db_session, CONTACT_QUERY, ContactListQuery(search="%"), lambda row: row)

    assert [row.first_name for row in envelope["data"]] == ["Percy"]
    assert like_pattern("50%_off") == "%50\\%\\_off%"


def test_page_and_count_statements_run_concurrently(tmp_path: Path) -> None:
    engine = create_engine(
        f"sqlite+pysqlite:///{tmp_path / 'crm.db'}",
        connect_args={"check_same_thread": False},
    )
    Base.metadata.create_all(bind=engine)
    SessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False)
    with SessionLocal() as seed:
        seed.add_all(Company(name=f"Company {index:02d}") for index in range(23))
        seed.commit()

    # Each of the first two statements blocks until the other has started.
    barrier = threading.Barrier(2, timeout=5)
    lock = threading.Lock()
    started: list[tuple[str, str]] = []
    armed = threading.Event()

    @event.listens_for(engine, "before_cursor_execute")
    def _rendezvous(conn, cursor, statement, parameters, context, executemany):  # type: ignore[no-untyped-def]
        if not armed.is_set():
            return
        with lock:
            started.append((threading.current_thread().name, statement))
            arrival = len(started)
        if arrival <= 2:
            barrier.wait()

    session = SessionLocal()
    try:
        armed.set()
        envelope = paginate(session, COMPANY_QUERY, CompanyListQuery(page=2, limit=10), lambda row: row.name)
        armed.clear()
    finally:
        session.close()
        engine.dispose()

    assert envelope["pagination"] == {"page": 2, "limit": 10, "total": 23, "pages": 3}
    assert len(envelope["data"]) == 10
    assert not barrier.broken
    threads = {name for name, _ in started[:2]}
    assert len(threads) == 2
    assert any("count(" in statement.lower() for _, statement in started[:2])
