from __future__ import annotations

from collections.abc import Generator

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from crmhub import events
from crmhub.core.auth import AuthUser, get_current_user
from crmhub.core.database import Base, get_db
from crmhub.main import app


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
def client(db_session: Session) -> Generator[TestClient, None, None]:
    def override_get_db() -> Generator[Session, None, None]:
        yield db_session

    def override_get_current_user() -> AuthUser:
        return AuthUser(sub="seller-1", roles=["user"])

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_current_user] = override_get_current_user
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture()
def company(client: TestClient) -> dict:
    response = client.post("/api/companies", json={"name": "TechCorp Solutions", "industry": "Technology"})
    assert response.status_code == 201
    return response.json()


def _create_opportunity(client: TestClient, company_id: int, title: str, **fields: object) -> dict:
    response = client.post("/api/opportunities", json={"companyId": company_id, "title": title, **fields})
    assert response.status_code == 201
    return response.json()


def test_create_opportunity_defaults_and_nested_relations(client: TestClient, company: dict) -> None:
    events.published_events.clear()
    contact = client.post(
        "/api/contacts",
        json={"companyId": company["id"], "firstName": "John", "lastName": "Doe", "email": "john@techcorp.test"},
    ).json()

    response = client.post(
        "/api/opportunities",
        json={
            "companyId": company["id"],
            "contactId": contact["id"],
            "title": "Cloud Migration Project",
            "amount": 150000,
            "closeDate": "2025-08-15",
            "customFields": {"priority": "high"},
        },
    )

    assert response.status_code == 201
    body = response.json()
    assert body["status"] == "prospect"
    assert body["amount"] == 150000
    assert body["closeDate"] == "2025-08-15"
    assert body["company"] == {"id": company["id"], "name": "TechCorp Solutions", "industry": "Technology"}
    assert body["contact"] == {
        "id": contact["id"],
        "firstName": "John",
        "lastName": "Doe",
        "email": "john@techcorp.test",
    }
    assert body["activityCount"] == 0

    created = [item for item in events.published_events if item["event_type"] == "crm.opportunity.created"]
    assert created and created[-1]["actor_user_id"] == "seller-1"
    assert created[-1]["payload"]["metadata"]["entity_type"] == "opportunity"


def test_create_opportunity_leaves_close_date_unset(client: TestClient, company: dict) -> None:
    body = _create_opportunity(client, company["id"], "Open ended")
    assert body["closeDate"] is None
    assert body["contact"] is None


def test_create_opportunity_validates_references_and_status(client: TestClient, company: dict) -> None:
    missing_company = client.post("/api/opportunities", json={"companyId": 999, "title": "Ghost"})
    missing_contact = client.post(
        "/api/opportunities",
        json={"companyId": company["id"], "contactId": 999, "title": "Ghost"},
    )
    bad_status = client.post(
        "/api/opportunities",
        json={"companyId": company["id"], "title": "Bad", "status": "won"},
    )

    assert missing_company.status_code == 400
    assert missing_contact.status_code == 400
    assert missing_contact.json()["message"] == "contact 999 does not exist"
    assert bad_status.status_code == 400


def test_list_opportunities_filters_status_and_amount_range(client: TestClient, company: dict) -> None:
    _create_opportunity(client, company["id"], "Small", amount=5000, status="qualified")
    _create_opportunity(client, company["id"], "Medium", amount=50000, status="qualified")
    _create_opportunity(client, company["id"], "Large", amount=500000, status="proposal")
    _create_opportunity(client, company["id"], "Unpriced", status="qualified")

    qualified = client.get("/api/opportunities", params={"status": "qualified"}).json()
    ranged = client.get(
        "/api/opportunities",
        params={"minAmount": 5000, "maxAmount": 50000, "sortBy": "amount", "sortOrder": "asc"},
    ).json()
    lower_only = client.get("/api/opportunities", params={"minAmount": 50000}).json()

    assert qualified["pagination"]["total"] == 3
    assert [item["title"] for item in ranged["data"]] == ["Small", "Medium"]
    assert {item["title"] for item in lower_only["data"]} == {"Medium", "Large"}


def test_list_opportunities_rejects_unknown_sort_and_bad_numbers(client: TestClient) -> None:
    unknown_sort = client.get("/api/opportunities", params={"sortBy": "password"})
    bad_order = client.get("/api/opportunities", params={"sortOrder": "sideways"})
    bad_amount = client.get("/api/opportunities", params={"minAmount": "lots"})

    assert unknown_sort.status_code == 400
    assert bad_order.status_code == 400
    assert bad_amount.status_code == 400
    assert unknown_sort.json()["code"] == "validation_error"


def test_get_opportunity_counts_activities(client: TestClient, company: dict) -> None:
    opportunity = _create_opportunity(client, company["id"], "Renewal")
    for activity_type in ("call", "email"):
        client.post(
            "/api/activities",
            json={"companyId": company["id"], "opportunityId": opportunity["id"], "type": activity_type},
        )

    response = client.get(f"/api/opportunities/{opportunity['id']}")

    assert response.status_code == 200
    body = response.json()
    assert body["activityCount"] == 2
    assert len(body["recentActivities"]) == 2


def test_update_opportunity_status_and_clear_contact(client: TestClient, company: dict) -> None:
    contact = client.post(
        "/api/contacts",
        json={"companyId": company["id"], "firstName": "Jane", "lastName": "Smith"},
    ).json()
    opportunity = _create_opportunity(client, company["id"], "Deal", contactId=contact["id"], amount=1000)

    response = client.patch(
        f"/api/opportunities/{opportunity['id']}",
        json={"status": "closed-won", "contactId": None},
    )

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "closed-won"
    assert body["contactId"] is None
    assert body["amount"] == 1000


def test_bulk_update_opportunities_reports_rows_affected(client: TestClient, company: dict) -> None:
    first = _create_opportunity(client, company["id"], "First")
    second = _create_opportunity(client, company["id"], "Second")

    response = client.patch(
        "/api/opportunities/bulk-update",
        json={"ids": [first["id"], second["id"], 31337], "data": {"status": "negotiation"}},
    )

    assert response.status_code == 200
    assert response.json() == {"count": 2}
    negotiating = client.get("/api/opportunities", params={"status": "negotiation"}).json()
    assert negotiating["pagination"]["total"] == 2


def test_delete_opportunity_and_bulk_delete(client: TestClient, company: dict) -> None:
    first = _create_opportunity(client, company["id"], "First")
    second = _create_opportunity(client, company["id"], "Second")

    assert client.delete(f"/api/opportunities/{first['id']}").status_code == 204
    assert client.delete(f"/api/opportunities/{first['id']}").status_code == 404

    response = client.post("/api/opportunities/bulk-delete", json={"ids": [first["id"], second["id"]]})
    assert response.json() == {"count": 1}


def test_dashboard_stats_group_opportunities_by_status(client: TestClient, company: dict) -> None:
    _create_opportunity(client, company["id"], "A", amount=100, status="proposal")
    _create_opportunity(client, company["id"], "B", amount=300, status="proposal")
    _create_opportunity(client, company["id"], "C", amount=1000, status="closed-won")

    response = client.get("/api/stats")

    assert response.status_code == 200
    body = response.json()
    assert body["companies"] == 1
    assert body["opportunities"] == 3
    assert body["pipelineAmount"] == 400
    assert body["opportunitiesByStatus"] == [
        {"status": "closed-won", "count": 1, "amount": 1000},
        {"status": "proposal", "count": 2, "amount": 400},
    ]
