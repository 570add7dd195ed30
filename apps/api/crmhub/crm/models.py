from __future__ import annotations

from datetime import date, datetime, timezone
from typing import Any

from sqlalchemy import JSON, DateTime, ForeignKey, Index, Integer, Numeric, String, Text, func, select
from sqlalchemy.orm import Mapped, column_property, mapped_column, relationship

from crmhub.core.database import Base


OPPORTUNITY_STATUSES = ("prospect", "qualified", "proposal", "negotiation", "closed-won", "closed-lost")
ACTIVITY_TYPES = ("call", "email", "meeting", "note", "task", "demo", "follow-up")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Company(Base):
    __tablename__ = "crm_company"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    industry: Mapped[str | None] = mapped_column(String(128), nullable=True)
    website: Mapped[str | None] = mapped_column(Text, nullable=True)
    external_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    custom_fields: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        onupdate=utcnow,
    )

    contacts: Mapped[list[Contact]] = relationship("Contact", back_populates="company", passive_deletes=True)
    opportunities: Mapped[list[Opportunity]] = relationship(
        "Opportunity",
        back_populates="company",
        passive_deletes=True,
    )
    activities: Mapped[list[Activity]] = relationship("Activity", back_populates="company", passive_deletes=True)


class Contact(Base):
    __tablename__ = "crm_contact"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    company_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("crm_company.id", ondelete="RESTRICT"),
        nullable=False,
    )
    first_name: Mapped[str] = mapped_column(Text, nullable=False)
    last_name: Mapped[str] = mapped_column(Text, nullable=False)
    email: Mapped[str | None] = mapped_column(Text, nullable=True)
    phone: Mapped[str | None] = mapped_column(String(64), nullable=True)
    role: Mapped[str | None] = mapped_column(String(128), nullable=True)
    external_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    custom_fields: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        onupdate=utcnow,
    )

    company: Mapped[Company] = relationship("Company", back_populates="contacts")
    opportunities: Mapped[list[Opportunity]] = relationship(
        "Opportunity",
        back_populates="contact",
        passive_deletes=True,
    )
    activities: Mapped[list[Activity]] = relationship("Activity", back_populates="contact", passive_deletes=True)


class Opportunity(Base):
    __tablename__ = "crm_opportunity"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    company_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("crm_company.id", ondelete="RESTRICT"),
        nullable=False,
    )
    contact_id: Mapped[int | None] = mapped_column(
        Integer,
        ForeignKey("crm_contact.id", ondelete="SET NULL"),
        nullable=True,
    )
    title: Mapped[str] = mapped_column(Text, nullable=False)
    amount: Mapped[float | None] = mapped_column(Numeric(18, 2, asdecimal=False), nullable=True)
    status: Mapped[str] = mapped_column(String(32), nullable=False, default="prospect", server_default="prospect")
    close_date: Mapped[date | None] = mapped_column(nullable=True)
    external_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    custom_fields: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        onupdate=utcnow,
    )

    company: Mapped[Company] = relationship("Company", back_populates="opportunities")
    contact: Mapped[Contact | None] = relationship("Contact", back_populates="opportunities")
    activities: Mapped[list[Activity]] = relationship(
        "Activity",
        back_populates="opportunity",
        passive_deletes=True,
    )


class Activity(Base):
    __tablename__ = "crm_activity"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    company_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("crm_company.id", ondelete="RESTRICT"),
        nullable=False,
    )
    contact_id: Mapped[int | None] = mapped_column(
        Integer,
        ForeignKey("crm_contact.id", ondelete="SET NULL"),
        nullable=True,
    )
    opportunity_id: Mapped[int | None] = mapped_column(
        Integer,
        ForeignKey("crm_opportunity.id", ondelete="SET NULL"),
        nullable=True,
    )
    type: Mapped[str] = mapped_column(String(32), nullable=False)
    details: Mapped[str | None] = mapped_column(Text, nullable=True)
    occurred_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    custom_fields: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        onupdate=utcnow,
    )

    company: Mapped[Company] = relationship("Company", back_populates="activities")
    contact: Mapped[Contact | None] = relationship("Contact", back_populates="activities")
    opportunity: Mapped[Opportunity | None] = relationship("Opportunity", back_populates="activities")


# Relation counts rendered in list rows.
Company.contact_count = column_property(
    select(func.count(Contact.id)).where(Contact.company_id == Company.id).correlate_except(Contact).scalar_subquery()
)
Company.opportunity_count = column_property(
    select(func.count(Opportunity.id))
    .where(Opportunity.company_id == Company.id)
    .correlate_except(Opportunity)
    .scalar_subquery()
)
Company.activity_count = column_property(
    select(func.count(Activity.id)).where(Activity.company_id == Company.id).correlate_except(Activity).scalar_subquery()
)
Opportunity.activity_count = column_property(
    select(func.count(Activity.id))
    .where(Activity.opportunity_id == Opportunity.id)
    .correlate_except(Activity)
    .scalar_subquery()
)


Index("ix_crm_company_name", Company.name)
Index("ix_crm_company_industry", Company.industry)
Index("ix_crm_contact_company_id", Contact.company_id)
Index("ix_crm_contact_email", Contact.email)
Index("ix_crm_opportunity_company_id", Opportunity.company_id)
Index("ix_crm_opportunity_contact_id", Opportunity.contact_id)
Index("ix_crm_opportunity_status", Opportunity.status)
Index("ix_crm_activity_company_id", Activity.company_id)
Index("ix_crm_activity_contact_id", Activity.contact_id)
Index("ix_crm_activity_opportunity_id", Activity.opportunity_id)
Index("ix_crm_activity_type_occurred_at", Activity.type, Activity.occurred_at)
