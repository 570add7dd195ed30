from __future__ import annotations

import logging
from typing import Any, NoReturn

from fastapi import HTTPException, status
from pydantic import BaseModel
from sqlalchemy import delete, exists, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, selectinload

from crmhub import events
from crmhub.core.database import Base
from crmhub.crm.models import Activity, Company, Contact, Opportunity, utcnow
from crmhub.crm.query import RangeFilter, ResourceQueryConfig, as_utc, paginate
from crmhub.crm.schemas import (
    ActivityCreate,
    ActivityListQuery,
    ActivityRead,
    ActivitySummary,
    ActivityUpdate,
    CompanyCreate,
    CompanyDetail,
    CompanyListQuery,
    CompanyRead,
    CompanyUpdate,
    ContactCreate,
    ContactDetail,
    ContactListQuery,
    ContactRead,
    ContactSummary,
    ContactUpdate,
    DashboardStats,
    OpportunityCreate,
    OpportunityDetail,
    OpportunityListQuery,
    OpportunityRead,
    OpportunityStatusStats,
    OpportunitySummary,
    OpportunityUpdate,
)
from crmhub.crm.search import build_search_doc_for_company, build_search_doc_for_opportunity


logger = logging.getLogger("crmhub.crm")

RECENT_ACTIVITY_LIMIT = 5


COMPANY_QUERY = ResourceQueryConfig(
    model=Company,
    search_columns=(Company.name, Company.website),
    equality_filters={"industry": Company.industry},
    sort_fields={
        "id": Company.id,
        "name": Company.name,
        "industry": Company.industry,
        "website": Company.website,
        "createdAt": Company.created_at,
        "updatedAt": Company.updated_at,
    },
    default_sort="createdAt",
)

CONTACT_QUERY = ResourceQueryConfig(
    model=Contact,
    search_columns=(Contact.first_name, Contact.last_name, Contact.email),
    equality_filters={"company_id": Contact.company_id, "role": Contact.role},
    sort_fields={
        "id": Contact.id,
        "firstName": Contact.first_name,
        "lastName": Contact.last_name,
        "email": Contact.email,
        "role": Contact.role,
        "createdAt": Contact.created_at,
        "updatedAt": Contact.updated_at,
    },
    default_sort="createdAt",
    options=(selectinload(Contact.company),),
)

OPPORTUNITY_QUERY = ResourceQueryConfig(
    model=Opportunity,
    search_columns=(Opportunity.title,),
    equality_filters={
        "status": Opportunity.status,
        "company_id": Opportunity.company_id,
        "contact_id": Opportunity.contact_id,
    },
    range_filters=(RangeFilter(column=Opportunity.amount, lower="min_amount", upper="max_amount", parse=float),),
    sort_fields={
        "id": Opportunity.id,
        "title": Opportunity.title,
        "amount": Opportunity.amount,
        "status": Opportunity.status,
        "closeDate": Opportunity.close_date,
        "createdAt": Opportunity.created_at,
        "updatedAt": Opportunity.updated_at,
    },
    default_sort="createdAt",
    options=(selectinload(Opportunity.company), selectinload(Opportunity.contact)),
)

ACTIVITY_QUERY = ResourceQueryConfig(
    model=Activity,
    search_columns=(Activity.details,),
    equality_filters={
        "type": Activity.type,
        "company_id": Activity.company_id,
        "contact_id": Activity.contact_id,
        "opportunity_id": Activity.opportunity_id,
    },
    range_filters=(RangeFilter(column=Activity.occurred_at, lower="start_date", upper="end_date", parse=as_utc),),
    sort_fields={
        "id": Activity.id,
        "type": Activity.type,
        "occurredAt": Activity.occurred_at,
        "createdAt": Activity.created_at,
        "updatedAt": Activity.updated_at,
    },
    default_sort="occurredAt",
    options=(
        selectinload(Activity.company),
        selectinload(Activity.contact),
        selectinload(Activity.opportunity),
    ),
)


class ResourceService:
    entity_type = "crm.resource"
    label = "resource"
    query_config: ResourceQueryConfig

    def list(self, session: Session, params: BaseModel) -> dict[str, Any]:
        return paginate(session, self.query_config, params, self._to_read)

    def delete(self, session: Session, entity_id: int) -> None:
        model = self.query_config.model
        result = self._execute(session, delete(model).where(model.id == entity_id))  # type: ignore[attr-defined]
        if result.rowcount == 0:
            session.rollback()
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"{self.label} not found")
        self._commit(session)

    def bulk_delete(self, session: Session, ids: list[int]) -> int:
        if not ids:
            return 0
        model = self.query_config.model
        result = self._execute(
            session,
            delete(model).where(model.id.in_(ids), *self._bulk_delete_guards()),  # type: ignore[attr-defined]
        )
        self._commit(session)
        return int(result.rowcount or 0)

    def bulk_update(self, session: Session, ids: list[int], dto: BaseModel) -> int:
        if not ids:
            return 0
        changes = self._prepare_changes(session, dto.model_dump(exclude_unset=True))
        model = self.query_config.model
        stmt = (
            update(model)
            .where(model.id.in_(ids))  # type: ignore[attr-defined]
            .values(**changes, updated_at=utcnow())
        )
        result = self._execute(session, stmt)
        self._commit(session)
        return int(result.rowcount or 0)

    def _load(self, session: Session, entity_id: int) -> Any:
        model = self.query_config.model
        entity = session.scalar(
            select(model).where(model.id == entity_id).options(*self.query_config.options)  # type: ignore[attr-defined]
        )
        if entity is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"{self.label} not found")
        return entity

    def _apply_changes(self, session: Session, entity: Base, dto: BaseModel) -> None:
        changes = self._prepare_changes(session, dto.model_dump(exclude_unset=True))
        for key, value in changes.items():
            setattr(entity, key, value)
        session.add(entity)

    def _prepare_changes(self, session: Session, changes: dict[str, Any]) -> dict[str, Any]:
        return changes

    def _bulk_delete_guards(self) -> list[Any]:
        return []

    def _execute(self, session: Session, stmt: Any) -> Any:
        try:
            return session.execute(stmt.execution_options(synchronize_session=False))
        except IntegrityError as exc:
            self._raise_conflict(session, exc)

    def _commit(self, session: Session) -> None:
        try:
            session.commit()
        except IntegrityError as exc:
            self._raise_conflict(session, exc)

    def _raise_conflict(self, session: Session, exc: IntegrityError) -> NoReturn:
        session.rollback()
        logger.warning("crm.integrity_conflict", extra={"error": str(exc.orig)})
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"{self.label} conflicts with existing records",
        ) from exc

    def _to_read(self, entity: Any) -> Any:
        raise NotImplementedError


def _require_reference(session: Session, model: type[Base], entity_id: int | None, label: str) -> None:
    if entity_id is None:
        return
    if session.get(model, entity_id) is None:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=f"{label} {entity_id} does not exist")


def _recent_activities(session: Session, column: Any, value: int) -> list[ActivitySummary]:
    rows = session.scalars(
        select(Activity)
        .where(column == value)
        .order_by(Activity.occurred_at.desc(), Activity.id.desc())
        .limit(RECENT_ACTIVITY_LIMIT)
    ).all()
    return [ActivitySummary.model_validate(row) for row in rows]


def _publish_write(event_type: str, actor_user_id: str | None, text: str, metadata: dict[str, Any]) -> None:
    events.publish(
        events.build_envelope(
            event_type,
            actor_user_id,
            {"entity_id": metadata["entity_id"], "text": text, "metadata": metadata},
        )
    )


class CompanyService(ResourceService):
    entity_type = "crm.company"
    label = "company"
    query_config = COMPANY_QUERY

    def list(self, session: Session, params: CompanyListQuery) -> dict[str, Any]:  # type: ignore[override]
        return super().list(session, params)

    def get(self, session: Session, company_id: int) -> CompanyDetail:
        company = session.scalar(
            select(Company)
            .where(Company.id == company_id)
            .options(selectinload(Company.contacts), selectinload(Company.opportunities))
        )
        if company is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="company not found")

        return CompanyDetail.model_validate(
            {
                **self._to_read(company).model_dump(),
                "contacts": [ContactSummary.model_validate(item) for item in company.contacts],
                "opportunities": [OpportunitySummary.model_validate(item) for item in company.opportunities],
                "recent_activities": _recent_activities(session, Activity.company_id, company.id),
            }
        )

    def create(self, session: Session, dto: CompanyCreate, *, actor_user_id: str | None = None) -> CompanyRead:
        company = Company(**dto.model_dump())
        session.add(company)
        self._commit(session)

        company = self._load(session, company.id)
        _publish_write("crm.company.created", actor_user_id, *build_search_doc_for_company(company))
        return self._to_read(company)

    def update(
        self,
        session: Session,
        company_id: int,
        dto: CompanyUpdate,
        *,
        actor_user_id: str | None = None,
    ) -> CompanyRead:
        company = self._load(session, company_id)
        self._apply_changes(session, company, dto)
        self._commit(session)

        company = self._load(session, company_id)
        _publish_write("crm.company.updated", actor_user_id, *build_search_doc_for_company(company))
        return self._to_read(company)

    def delete(self, session: Session, entity_id: int) -> None:
        self._load(session, entity_id)
        dependencies = self._count_dependencies(session, entity_id)
        if any(dependencies.values()):
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail={"message": "Company has dependencies", "dependencies": dependencies},
            )
        super().delete(session, entity_id)

    def _bulk_delete_guards(self) -> list[Any]:
        return [
            ~exists().where(Contact.company_id == Company.id),
            ~exists().where(Opportunity.company_id == Company.id),
            ~exists().where(Activity.company_id == Company.id),
        ]

    def _count_dependencies(self, session: Session, company_id: int) -> dict[str, int]:
        counts: dict[str, int] = {}
        for key, model in (("contacts", Contact), ("opportunities", Opportunity), ("activities", Activity)):
            counts[key] = int(
                session.scalar(select(func.count(model.id)).where(model.company_id == company_id)) or 0
            )
        return counts

    def _to_read(self, company: Company) -> CompanyRead:
        return CompanyRead.model_validate(company)


class ContactService(ResourceService):
    entity_type = "crm.contact"
    label = "contact"
    query_config = CONTACT_QUERY

    def list(self, session: Session, params: ContactListQuery) -> dict[str, Any]:  # type: ignore[override]
        return super().list(session, params)

    def get(self, session: Session, contact_id: int) -> ContactDetail:
        contact = session.scalar(
            select(Contact)
            .where(Contact.id == contact_id)
            .options(selectinload(Contact.company), selectinload(Contact.opportunities))
        )
        if contact is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="contact not found")

        return ContactDetail.model_validate(
            {
                **self._to_read(contact).model_dump(),
                "opportunities": [OpportunitySummary.model_validate(item) for item in contact.opportunities],
                "recent_activities": _recent_activities(session, Activity.contact_id, contact.id),
            }
        )

    def create(self, session: Session, dto: ContactCreate) -> ContactRead:
        _require_reference(session, Company, dto.company_id, "company")
        contact = Contact(**dto.model_dump())
        session.add(contact)
        self._commit(session)
        return self._to_read(self._load(session, contact.id))

    def update(self, session: Session, contact_id: int, dto: ContactUpdate) -> ContactRead:
        contact = self._load(session, contact_id)
        self._apply_changes(session, contact, dto)
        self._commit(session)
        return self._to_read(self._load(session, contact_id))

    def _prepare_changes(self, session: Session, changes: dict[str, Any]) -> dict[str, Any]:
        _require_reference(session, Company, changes.get("company_id"), "company")
        return changes

    def _to_read(self, contact: Contact) -> ContactRead:
        return ContactRead.model_validate(contact)


class OpportunityService(ResourceService):
    entity_type = "crm.opportunity"
    label = "opportunity"
    query_config = OPPORTUNITY_QUERY

    def list(self, session: Session, params: OpportunityListQuery) -> dict[str, Any]:  # type: ignore[override]
        return super().list(session, params)

    def get(self, session: Session, opportunity_id: int) -> OpportunityDetail:
        opportunity = self._load(session, opportunity_id)
        return OpportunityDetail.model_validate(
            {
                **self._to_read(opportunity).model_dump(),
                "recent_activities": _recent_activities(session, Activity.opportunity_id, opportunity.id),
            }
        )

    def create(
        self,
        session: Session,
        dto: OpportunityCreate,
        *,
        actor_user_id: str | None = None,
    ) -> OpportunityRead:
        self._prepare_changes(session, dto.model_dump())
        opportunity = Opportunity(**dto.model_dump())
        session.add(opportunity)
        self._commit(session)

        opportunity = self._load(session, opportunity.id)
        _publish_write("crm.opportunity.created", actor_user_id, *build_search_doc_for_opportunity(opportunity))
        return self._to_read(opportunity)

    def update(
        self,
        session: Session,
        opportunity_id: int,
        dto: OpportunityUpdate,
        *,
        actor_user_id: str | None = None,
    ) -> OpportunityRead:
        opportunity = self._load(session, opportunity_id)
        self._apply_changes(session, opportunity, dto)
        self._commit(session)

        opportunity = self._load(session, opportunity_id)
        _publish_write("crm.opportunity.updated", actor_user_id, *build_search_doc_for_opportunity(opportunity))
        return self._to_read(opportunity)

    def _prepare_changes(self, session: Session, changes: dict[str, Any]) -> dict[str, Any]:
        _require_reference(session, Company, changes.get("company_id"), "company")
        _require_reference(session, Contact, changes.get("contact_id"), "contact")
        return changes

    def _to_read(self, opportunity: Opportunity) -> OpportunityRead:
        return OpportunityRead.model_validate(opportunity)


class ActivityService(ResourceService):
    entity_type = "crm.activity"
    label = "activity"
    query_config = ACTIVITY_QUERY

    def list(self, session: Session, params: ActivityListQuery) -> dict[str, Any]:  # type: ignore[override]
        return super().list(session, params)

    def get(self, session: Session, activity_id: int) -> ActivityRead:
        return self._to_read(self._load(session, activity_id))

    def create(self, session: Session, dto: ActivityCreate) -> ActivityRead:
        values = self._prepare_changes(session, dto.model_dump())
        if values.get("occurred_at") is None:
            values["occurred_at"] = utcnow()
        activity = Activity(**values)
        session.add(activity)
        self._commit(session)
        return self._to_read(self._load(session, activity.id))

    def update(self, session: Session, activity_id: int, dto: ActivityUpdate) -> ActivityRead:
        activity = self._load(session, activity_id)
        self._apply_changes(session, activity, dto)
        self._commit(session)
        return self._to_read(self._load(session, activity_id))

    def _prepare_changes(self, session: Session, changes: dict[str, Any]) -> dict[str, Any]:
        _require_reference(session, Company, changes.get("company_id"), "company")
        _require_reference(session, Contact, changes.get("contact_id"), "contact")
        _require_reference(session, Opportunity, changes.get("opportunity_id"), "opportunity")
        if changes.get("occurred_at") is not None:
            changes["occurred_at"] = as_utc(changes["occurred_at"])
        return changes

    def _to_read(self, activity: Activity) -> ActivityRead:
        return ActivityRead.model_validate(activity)


class StatsService:
    def get_dashboard_stats(self, session: Session) -> DashboardStats:
        totals = {
            key: int(session.scalar(select(func.count(model.id))) or 0)
            for key, model in (
                ("companies", Company),
                ("contacts", Contact),
                ("opportunities", Opportunity),
                ("activities", Activity),
            )
        }
        rows = session.execute(
            select(
                Opportunity.status,
                func.count(Opportunity.id),
                func.coalesce(func.sum(Opportunity.amount), 0),
            )
            .group_by(Opportunity.status)
            .order_by(Opportunity.status.asc())
        ).all()
        by_status = [
            OpportunityStatusStats(status=row[0], count=int(row[1]), amount=float(row[2] or 0)) for row in rows
        ]
        pipeline_amount = sum(
            item.amount for item in by_status if item.status not in {"closed-won", "closed-lost"}
        )
        return DashboardStats(
            **totals,
            pipeline_amount=pipeline_amount,
            opportunities_by_status=by_status,
        )
