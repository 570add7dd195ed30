from __future__ import annotations

from datetime import date, datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, EmailStr, Field, model_validator
from pydantic.alias_generators import to_camel


OpportunityStatus = Literal["prospect", "qualified", "proposal", "negotiation", "closed-won", "closed-lost"]
ActivityType = Literal["call", "email", "meeting", "note", "task", "demo", "follow-up"]
SortOrder = Literal["asc", "desc"]

CompanySortField = Literal["id", "name", "industry", "website", "createdAt", "updatedAt"]
ContactSortField = Literal["id", "firstName", "lastName", "email", "role", "createdAt", "updatedAt"]
OpportunitySortField = Literal["id", "title", "amount", "status", "closeDate", "createdAt", "updatedAt"]
ActivitySortField = Literal["id", "type", "occurredAt", "createdAt", "updatedAt"]


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


def _reject_explicit_nulls(model: BaseModel, fields: tuple[str, ...]) -> None:
    for field_name in fields:
        if field_name in model.model_fields_set and getattr(model, field_name) is None:
            raise ValueError(f"{to_camel(field_name)} cannot be null")


# Query parameters


class ListQuery(BaseModel):
    page: int = Field(default=1, ge=1)
    limit: int = Field(default=20, ge=1)
    search: str | None = None
    sort_by: str
    sort_order: SortOrder = "desc"


class CompanyListQuery(ListQuery):
    sort_by: CompanySortField = "createdAt"
    industry: str | None = None


class ContactListQuery(ListQuery):
    sort_by: ContactSortField = "createdAt"
    company_id: int | None = None
    role: str | None = None


class OpportunityListQuery(ListQuery):
    sort_by: OpportunitySortField = "createdAt"
    status: OpportunityStatus | None = None
    company_id: int | None = None
    contact_id: int | None = None
    min_amount: float | None = None
    max_amount: float | None = None


class ActivityListQuery(ListQuery):
    sort_by: ActivitySortField = "occurredAt"
    type: ActivityType | None = None
    company_id: int | None = None
    contact_id: int | None = None
    opportunity_id: int | None = None
    start_date: datetime | None = None
    end_date: datetime | None = None


class Pagination(BaseModel):
    page: int
    limit: int
    total: int
    pages: int


# Relation summaries


class CompanySummary(CamelModel):
    id: int
    name: str
    industry: str | None


class ContactSummary(CamelModel):
    id: int
    first_name: str
    last_name: str
    email: str | None


class OpportunitySummary(CamelModel):
    id: int
    title: str
    status: str


class ActivitySummary(CamelModel):
    id: int
    type: str
    details: str | None
    occurred_at: datetime


# Company


class CompanyCreate(CamelModel):
    name: str = Field(min_length=1)
    industry: str | None = None
    website: str | None = None
    external_id: str | None = None
    custom_fields: dict[str, Any] = Field(default_factory=dict)


class CompanyUpdate(CamelModel):
    name: str | None = Field(default=None, min_length=1)
    industry: str | None = None
    website: str | None = None
    external_id: str | None = None
    custom_fields: dict[str, Any] | None = None

    @model_validator(mode="after")
    def validate_required_columns(self) -> "CompanyUpdate":
        _reject_explicit_nulls(self, ("name", "custom_fields"))
        return self


class CompanyRead(CamelModel):
    id: int
    name: str
    industry: str | None
    website: str | None
    external_id: str | None
    custom_fields: dict[str, Any]
    created_at: datetime
    updated_at: datetime
    contact_count: int = 0
    opportunity_count: int = 0
    activity_count: int = 0


class CompanyDetail(CompanyRead):
    contacts: list[ContactSummary] = Field(default_factory=list)
    opportunities: list[OpportunitySummary] = Field(default_factory=list)
    recent_activities: list[ActivitySummary] = Field(default_factory=list)


class CompanyPage(BaseModel):
    data: list[CompanyRead]
    pagination: Pagination


class CompanyBulkUpdateRequest(CamelModel):
    ids: list[int]
    data: CompanyUpdate


# Contact


class ContactCreate(CamelModel):
    company_id: int
    first_name: str = Field(min_length=1)
    last_name: str = Field(min_length=1)
    email: EmailStr | None = None
    phone: str | None = None
    role: str | None = None
    external_id: str | None = None
    custom_fields: dict[str, Any] = Field(default_factory=dict)


class ContactUpdate(CamelModel):
    company_id: int | None = None
    first_name: str | None = Field(default=None, min_length=1)
    last_name: str | None = Field(default=None, min_length=1)
    email: EmailStr | None = None
    phone: str | None = None
    role: str | None = None
    external_id: str | None = None
    custom_fields: dict[str, Any] | None = None

    @model_validator(mode="after")
    def validate_required_columns(self) -> "ContactUpdate":
        _reject_explicit_nulls(self, ("company_id", "first_name", "last_name", "custom_fields"))
        return self


class ContactRead(CamelModel):
    id: int
    company_id: int
    first_name: str
    last_name: str
    email: str | None
    phone: str | None
    role: str | None
    external_id: str | None
    custom_fields: dict[str, Any]
    created_at: datetime
    updated_at: datetime
    company: CompanySummary


class ContactDetail(ContactRead):
    opportunities: list[OpportunitySummary] = Field(default_factory=list)
    recent_activities: list[ActivitySummary] = Field(default_factory=list)


class ContactPage(BaseModel):
    data: list[ContactRead]
    pagination: Pagination


class ContactBulkUpdateRequest(CamelModel):
    ids: list[int]
    data: ContactUpdate


# Opportunity


class OpportunityCreate(CamelModel):
    company_id: int
    contact_id: int | None = None
    title: str = Field(min_length=1)
    amount: float | None = Field(default=None, ge=0)
    status: OpportunityStatus = "prospect"
    close_date: date | None = None
    external_id: str | None = None
    custom_fields: dict[str, Any] = Field(default_factory=dict)


class OpportunityUpdate(CamelModel):
    company_id: int | None = None
    contact_id: int | None = None
    title: str | None = Field(default=None, min_length=1)
    amount: float | None = Field(default=None, ge=0)
    status: OpportunityStatus | None = None
    close_date: date | None = None
    external_id: str | None = None
    custom_fields: dict[str, Any] | None = None

    @model_validator(mode="after")
    def validate_required_columns(self) -> "OpportunityUpdate":
        _reject_explicit_nulls(self, ("company_id", "title", "status", "custom_fields"))
        return self


class OpportunityRead(CamelModel):
    id: int
    company_id: int
    contact_id: int | None
    title: str
    amount: float | None
    status: str
    close_date: date | None
    external_id: str | None
    custom_fields: dict[str, Any]
    created_at: datetime
    updated_at: datetime
    company: CompanySummary
    contact: ContactSummary | None = None
    activity_count: int = 0


class OpportunityDetail(OpportunityRead):
    recent_activities: list[ActivitySummary] = Field(default_factory=list)


class OpportunityPage(BaseModel):
    data: list[OpportunityRead]
    pagination: Pagination


class OpportunityBulkUpdateRequest(CamelModel):
    ids: list[int]
    data: OpportunityUpdate


# Activity


class ActivityCreate(CamelModel):
    company_id: int
    contact_id: int | None = None
    opportunity_id: int | None = None
    type: ActivityType
    details: str | None = None
    occurred_at: datetime | None = None
    custom_fields: dict[str, Any] = Field(default_factory=dict)


class ActivityUpdate(CamelModel):
    company_id: int | None = None
    contact_id: int | None = None
    opportunity_id: int | None = None
    type: ActivityType | None = None
    details: str | None = None
    occurred_at: datetime | None = None
    custom_fields: dict[str, Any] | None = None

    @model_validator(mode="after")
    def validate_required_columns(self) -> "ActivityUpdate":
        _reject_explicit_nulls(self, ("company_id", "type", "occurred_at", "custom_fields"))
        return self


class ActivityRead(CamelModel):
    id: int
    company_id: int
    contact_id: int | None
    opportunity_id: int | None
    type: str
    details: str | None
    occurred_at: datetime
    custom_fields: dict[str, Any]
    created_at: datetime
    updated_at: datetime
    company: CompanySummary
    contact: ContactSummary | None = None
    opportunity: OpportunitySummary | None = None


class ActivityPage(BaseModel):
    data: list[ActivityRead]
    pagination: Pagination


class ActivityBulkUpdateRequest(CamelModel):
    ids: list[int]
    data: ActivityUpdate


# Bulk operations and stats


class BulkDeleteRequest(CamelModel):
    ids: list[int]


class BulkResult(BaseModel):
    count: int


class OpportunityStatusStats(CamelModel):
    status: str
    count: int
    amount: float


class DashboardStats(CamelModel):
    companies: int
    contacts: int
    opportunities: int
    activities: int
    pipeline_amount: float
    opportunities_by_status: list[OpportunityStatusStats]
