from __future__ import annotations

from datetime import datetime

from fastapi import APIRouter, Depends, Query, status
from fastapi.responses import Response
from sqlalchemy.orm import Session

from crmhub.core.auth import AuthUser, get_current_user
from crmhub.core.database import get_db
from crmhub.crm.schemas import (
    ActivityBulkUpdateRequest,
    ActivityCreate,
    ActivityListQuery,
    ActivityPage,
    ActivityRead,
    ActivitySortField,
    ActivityType,
    ActivityUpdate,
    BulkDeleteRequest,
    BulkResult,
    CompanyBulkUpdateRequest,
    CompanyCreate,
    CompanyDetail,
    CompanyListQuery,
    CompanyPage,
    CompanyRead,
    CompanySortField,
    CompanyUpdate,
    ContactBulkUpdateRequest,
    ContactCreate,
    ContactDetail,
    ContactListQuery,
    ContactPage,
    ContactRead,
    ContactSortField,
    ContactUpdate,
    DashboardStats,
    OpportunityBulkUpdateRequest,
    OpportunityCreate,
    OpportunityDetail,
    OpportunityListQuery,
    OpportunityPage,
    OpportunityRead,
    OpportunitySortField,
    OpportunityStatus,
    OpportunityUpdate,
    SortOrder,
)
from crmhub.crm.service import ActivityService, CompanyService, ContactService, OpportunityService, StatsService


_auth = [Depends(get_current_user)]

companies_router = APIRouter(prefix="/api/companies", tags=["crm.companies"], dependencies=_auth)
contacts_router = APIRouter(prefix="/api/contacts", tags=["crm.contacts"], dependencies=_auth)
opportunities_router = APIRouter(prefix="/api/opportunities", tags=["crm.opportunities"], dependencies=_auth)
activities_router = APIRouter(prefix="/api/activities", tags=["crm.activities"], dependencies=_auth)
stats_router = APIRouter(prefix="/api", tags=["crm.stats"], dependencies=_auth)

company_service = CompanyService()
contact_service = ContactService()
opportunity_service = OpportunityService()
activity_service = ActivityService()
stats_service = StatsService()


# Companies


@companies_router.get("", response_model=CompanyPage)
def list_companies(
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1),
    search: str | None = Query(default=None),
    industry: str | None = Query(default=None),
    sort_by: CompanySortField = Query(default="createdAt", alias="sortBy"),
    sort_order: SortOrder = Query(default="desc", alias="sortOrder"),
    db: Session = Depends(get_db),
) -> dict:
    params = CompanyListQuery(
        page=page,
        limit=limit,
        search=search,
        industry=industry,
        sort_by=sort_by,
        sort_order=sort_order,
    )
    return company_service.list(db, params)


@companies_router.post("/bulk-delete", response_model=BulkResult)
def bulk_delete_companies(payload: BulkDeleteRequest, db: Session = Depends(get_db)) -> BulkResult:
    return BulkResult(count=company_service.bulk_delete(db, payload.ids))


@companies_router.api_route("/bulk-update", methods=["PATCH", "PUT"], response_model=BulkResult)
def bulk_update_companies(payload: CompanyBulkUpdateRequest, db: Session = Depends(get_db)) -> BulkResult:
    return BulkResult(count=company_service.bulk_update(db, payload.ids, payload.data))


@companies_router.get("/{company_id}", response_model=CompanyDetail)
def get_company(company_id: int, db: Session = Depends(get_db)) -> CompanyDetail:
    return company_service.get(db, company_id)


@companies_router.post("", response_model=CompanyRead, status_code=status.HTTP_201_CREATED)
def create_company(
    payload: CompanyCreate,
    db: Session = Depends(get_db),
    user: AuthUser = Depends(get_current_user),
) -> CompanyRead:
    return company_service.create(db, payload, actor_user_id=user.sub)


@companies_router.api_route("/{company_id}", methods=["PATCH", "PUT"], response_model=CompanyRead)
def update_company(
    company_id: int,
    payload: CompanyUpdate,
    db: Session = Depends(get_db),
    user: AuthUser = Depends(get_current_user),
) -> CompanyRead:
    return company_service.update(db, company_id, payload, actor_user_id=user.sub)


@companies_router.delete("/{company_id}", status_code=status.HTTP_204_NO_CONTENT, response_class=Response)
def delete_company(company_id: int, db: Session = Depends(get_db)) -> Response:
    company_service.delete(db, company_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# Contacts


@contacts_router.get("", response_model=ContactPage)
def list_contacts(
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1),
    search: str | None = Query(default=None),
    company_id: int | None = Query(default=None, alias="companyId"),
    role: str | None = Query(default=None),
    sort_by: ContactSortField = Query(default="createdAt", alias="sortBy"),
    sort_order: SortOrder = Query(default="desc", alias="sortOrder"),
    db: Session = Depends(get_db),
) -> dict:
    params = ContactListQuery(
        page=page,
        limit=limit,
        search=search,
        company_id=company_id,
        role=role,
        sort_by=sort_by,
        sort_order=sort_order,
    )
    return contact_service.list(db, params)


@contacts_router.post("/bulk-delete", response_model=BulkResult)
def bulk_delete_contacts(payload: BulkDeleteRequest, db: Session = Depends(get_db)) -> BulkResult:
    return BulkResult(count=contact_service.bulk_delete(db, payload.ids))


@contacts_router.api_route("/bulk-update", methods=["PATCH", "PUT"], response_model=BulkResult)
def bulk_update_contacts(payload: ContactBulkUpdateRequest, db: Session = Depends(get_db)) -> BulkResult:
    return BulkResult(count=contact_service.bulk_update(db, payload.ids, payload.data))


@contacts_router.get("/{contact_id}", response_model=ContactDetail)
def get_contact(contact_id: int, db: Session = Depends(get_db)) -> ContactDetail:
    return contact_service.get(db, contact_id)


@contacts_router.post("", response_model=ContactRead, status_code=status.HTTP_201_CREATED)
def create_contact(payload: ContactCreate, db: Session = Depends(get_db)) -> ContactRead:
    return contact_service.create(db, payload)


@contacts_router.patch("/{contact_id}", response_model=ContactRead)
def update_contact(contact_id: int, payload: ContactUpdate, db: Session = Depends(get_db)) -> ContactRead:
    return contact_service.update(db, contact_id, payload)


@contacts_router.delete("/{contact_id}", status_code=status.HTTP_204_NO_CONTENT, response_class=Response)
def delete_contact(contact_id: int, db: Session = Depends(get_db)) -> Response:
    contact_service.delete(db, contact_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# Opportunities


@opportunities_router.get("", response_model=OpportunityPage)
def list_opportunities(
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1),
    search: str | None = Query(default=None),
    status_filter: OpportunityStatus | None = Query(default=None, alias="status"),
    company_id: int | None = Query(default=None, alias="companyId"),
    contact_id: int | None = Query(default=None, alias="contactId"),
    min_amount: float | None = Query(default=None, alias="minAmount"),
    max_amount: float | None = Query(default=None, alias="maxAmount"),
    sort_by: OpportunitySortField = Query(default="createdAt", alias="sortBy"),
    sort_order: SortOrder = Query(default="desc", alias="sortOrder"),
    db: Session = Depends(get_db),
) -> dict:
    params = OpportunityListQuery(
        page=page,
        limit=limit,
        search=search,
        status=status_filter,
        company_id=company_id,
        contact_id=contact_id,
        min_amount=min_amount,
        max_amount=max_amount,
        sort_by=sort_by,
        sort_order=sort_order,
    )
    return opportunity_service.list(db, params)


@opportunities_router.post("/bulk-delete", response_model=BulkResult)
def bulk_delete_opportunities(payload: BulkDeleteRequest, db: Session = Depends(get_db)) -> BulkResult:
    return BulkResult(count=opportunity_service.bulk_delete(db, payload.ids))


@opportunities_router.api_route("/bulk-update", methods=["PATCH", "PUT"], response_model=BulkResult)
def bulk_update_opportunities(payload: OpportunityBulkUpdateRequest, db: Session = Depends(get_db)) -> BulkResult:
    return BulkResult(count=opportunity_service.bulk_update(db, payload.ids, payload.data))


@opportunities_router.get("/{opportunity_id}", response_model=OpportunityDetail)
def get_opportunity(opportunity_id: int, db: Session = Depends(get_db)) -> OpportunityDetail:
    return opportunity_service.get(db, opportunity_id)


@opportunities_router.post("", response_model=OpportunityRead, status_code=status.HTTP_201_CREATED)
def create_opportunity(
    payload: OpportunityCreate,
    db: Session = Depends(get_db),
    user: AuthUser = Depends(get_current_user),
) -> OpportunityRead:
    return opportunity_service.create(db, payload, actor_user_id=user.sub)


@opportunities_router.patch("/{opportunity_id}", response_model=OpportunityRead)
def update_opportunity(
    opportunity_id: int,
    payload: OpportunityUpdate,
    db: Session = Depends(get_db),
    user: AuthUser = Depends(get_current_user),
) -> OpportunityRead:
    return opportunity_service.update(db, opportunity_id, payload, actor_user_id=user.sub)


@opportunities_router.delete("/{opportunity_id}", status_code=status.HTTP_204_NO_CONTENT, response_class=Response)
def delete_opportunity(opportunity_id: int, db: Session = Depends(get_db)) -> Response:
    opportunity_service.delete(db, opportunity_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# Activities


@activities_router.get("", response_model=ActivityPage)
def list_activities(
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1),
    search: str | None = Query(default=None),
    activity_type: ActivityType | None = Query(default=None, alias="type"),
    company_id: int | None = Query(default=None, alias="companyId"),
    contact_id: int | None = Query(default=None, alias="contactId"),
    opportunity_id: int | None = Query(default=None, alias="opportunityId"),
    start_date: datetime | None = Query(default=None, alias="startDate"),
    end_date: datetime | None = Query(default=None, alias="endDate"),
    sort_by: ActivitySortField = Query(default="occurredAt", alias="sortBy"),
    sort_order: SortOrder = Query(default="desc", alias="sortOrder"),
    db: Session = Depends(get_db),
) -> dict:
    params = ActivityListQuery(
        page=page,
        limit=limit,
        search=search,
        type=activity_type,
        company_id=company_id,
        contact_id=contact_id,
        opportunity_id=opportunity_id,
        start_date=start_date,
        end_date=end_date,
        sort_by=sort_by,
        sort_order=sort_order,
    )
    return activity_service.list(db, params)


@activities_router.post("/bulk-delete", response_model=BulkResult)
def bulk_delete_activities(payload: BulkDeleteRequest, db: Session = Depends(get_db)) -> BulkResult:
    return BulkResult(count=activity_service.bulk_delete(db, payload.ids))


@activities_router.api_route("/bulk-update", methods=["PATCH", "PUT"], response_model=BulkResult)
def bulk_update_activities(payload: ActivityBulkUpdateRequest, db: Session = Depends(get_db)) -> BulkResult:
    return BulkResult(count=activity_service.bulk_update(db, payload.ids, payload.data))


@activities_router.get("/{activity_id}", response_model=ActivityRead)
def get_activity(activity_id: int, db: Session = Depends(get_db)) -> ActivityRead:
    return activity_service.get(db, activity_id)


@activities_router.post("", response_model=ActivityRead, status_code=status.HTTP_201_CREATED)
def create_activity(payload: ActivityCreate, db: Session = Depends(get_db)) -> ActivityRead:
    return activity_service.create(db, payload)


@activities_router.patch("/{activity_id}", response_model=ActivityRead)
def update_activity(activity_id: int, payload: ActivityUpdate, db: Session = Depends(get_db)) -> ActivityRead:
    return activity_service.update(db, activity_id, payload)


@activities_router.delete("/{activity_id}", status_code=status.HTTP_204_NO_CONTENT, response_class=Response)
def delete_activity(activity_id: int, db: Session = Depends(get_db)) -> Response:
    activity_service.delete(db, activity_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# Stats


@stats_router.get("/stats", response_model=DashboardStats)
def get_stats(db: Session = Depends(get_db)) -> DashboardStats:
    return stats_service.get_dashboard_stats(db)
