from __future__ import annotations

import contextvars
import math
from collections.abc import Callable, Mapping, Sequence
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel
from sqlalchemy import ColumnElement, Select, func, or_, select
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session
from sqlalchemy.orm.interfaces import LoaderOption
from sqlalchemy.pool import SingletonThreadPool, StaticPool

from crmhub.core.database import Base


def _identity(value: Any) -> Any:
    return value


def as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


@dataclass(frozen=True)
class RangeFilter:
    column: Any
    lower: str
    upper: str
    parse: Callable[[Any], Any] = _identity


@dataclass(frozen=True)
class ResourceQueryConfig:
    """Field mapping that drives filtering, sorting and eager loading for one resource.

    ``equality_filters`` and range bounds name attributes of the list query model;
    ``sort_fields`` keys are the wire names accepted for ``sortBy``.
    """

    model: type[Base]
    search_columns: Sequence[Any]
    sort_fields: Mapping[str, Any]
    default_sort: str
    equality_filters: Mapping[str, Any] = field(default_factory=dict)
    range_filters: Sequence[RangeFilter] = ()
    options: Sequence[LoaderOption] = ()


def like_pattern(term: str) -> str:
    escaped = term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"%{escaped}%"


def _is_present(value: Any) -> bool:
    if value is None:
        return False
    if isinstance(value, str):
        return bool(value.strip())
    return True


def build_filters(config: ResourceQueryConfig, params: BaseModel) -> list[ColumnElement[bool]]:
    clauses: list[ColumnElement[bool]] = []

    search = getattr(params, "search", None)
    if _is_present(search) and config.search_columns:
        pattern = like_pattern(search.strip())
        clauses.append(or_(*[column.ilike(pattern, escape="\\") for column in config.search_columns]))

    for attribute, column in config.equality_filters.items():
        value = getattr(params, attribute, None)
        if _is_present(value):
            clauses.append(column == value)

    for range_filter in config.range_filters:
        lower = getattr(params, range_filter.lower, None)
        if lower is not None:
            clauses.append(range_filter.column >= range_filter.parse(lower))
        upper = getattr(params, range_filter.upper, None)
        if upper is not None:
            clauses.append(range_filter.column <= range_filter.parse(upper))

    return clauses


def build_ordering(config: ResourceQueryConfig, sort_by: str | None, sort_order: str) -> list[ColumnElement[Any]]:
    column = config.sort_fields.get(sort_by or config.default_sort)
    if column is None:
        column = config.sort_fields[config.default_sort]
    primary_key = config.model.id  # type: ignore[attr-defined]
    if sort_order == "asc":
        return [column.asc(), primary_key.asc()]
    return [column.desc(), primary_key.desc()]


def build_page_statement(config: ResourceQueryConfig, params: BaseModel) -> Select[Any]:
    page = getattr(params, "page", 1)
    limit = getattr(params, "limit", 20)
    stmt = select(config.model).where(*build_filters(config, params))
    if config.options:
        stmt = stmt.options(*config.options)
    stmt = stmt.order_by(*build_ordering(config, getattr(params, "sort_by", None), getattr(params, "sort_order", "desc")))
    return stmt.offset((page - 1) * limit).limit(limit)


def build_count_statement(config: ResourceQueryConfig, params: BaseModel) -> Select[Any]:
    return select(func.count()).select_from(config.model).where(*build_filters(config, params))


_count_executor = ThreadPoolExecutor(max_workers=8, thread_name_prefix="crmhub-query")


def _supports_parallel_reads(bind: Any) -> bool:
    # Pools that hand every checkout the same DBAPI connection cannot serve both statements at once.
    if not isinstance(bind, Engine):
        return False
    return not isinstance(bind.pool, (StaticPool, SingletonThreadPool))


def _count_on_own_session(engine: Engine, statement: Select[Any]) -> int:
    with Session(bind=engine) as count_session:
        return int(count_session.scalar(statement) or 0)


def paginate(
    session: Session,
    config: ResourceQueryConfig,
    params: BaseModel,
    serialize: Callable[[Any], Any],
) -> dict[str, Any]:
    """Fetches one page and the filtered total.

    The count runs on its own session in a worker thread while the page is
    read on ``session``, so rows stay attached for serialization.
    """
    page = getattr(params, "page", 1)
    limit = getattr(params, "limit", 20)
    page_statement = build_page_statement(config, params)
    count_statement = build_count_statement(config, params)

    bind = session.get_bind()
    if _supports_parallel_reads(bind):
        context = contextvars.copy_context()
        pending_total = _count_executor.submit(context.run, _count_on_own_session, bind, count_statement)
        rows = session.scalars(page_statement).all()
        total = pending_total.result()
    else:
        rows = session.scalars(page_statement).all()
        total = int(session.scalar(count_statement) or 0)

    return {
        "data": [serialize(row) for row in rows],
        "pagination": {
            "page": page,
            "limit": limit,
            "total": total,
            "pages": math.ceil(total / limit) if limit else 0,
        },
    }
