"""Cursor-paginated, filterable, includable list queries.

Every list endpoint shares one shape. Rows are ordered by the total order
``(sort IS NULL, sort, id)`` in the requested direction, ``limit + 1`` rows are
fetched to detect a further page, and the cursor is the bare id of the last row
returned. The cursor predicate is evaluated against that same order, so pages
never overlap or skip rows unless the table changes between requests.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from typing import Any

from opentelemetry import trace
from pydantic import BaseModel
from sqlalchemy import ColumnElement, and_, func, or_, select
from sqlalchemy.orm import InstrumentedAttribute, Session, selectinload

from teamcrm.crm.schemas import ListQueryParams, PaginationRead
from teamcrm.metrics import observe_list_query


logger = logging.getLogger("teamcrm.crm.list")
tracer = trace.get_tracer("teamcrm.crm.list")


@dataclass(frozen=True)
class Include:
    relationship: InstrumentedAttribute[Any]
    schema: type[BaseModel]
    many: bool = False

    @property
    def key(self) -> str:
        return self.relationship.key


@dataclass(frozen=True)
class EntityListing:
    """Per-entity configuration of the list contract."""

    name: str
    model: type[Any]
    read_schema: type[BaseModel]
    sort_fields: dict[str, InstrumentedAttribute[Any]]
    default_sort: str
    fallback_sort: str
    includes: dict[str, Include] = field(default_factory=dict)
    always_include: dict[str, Include] = field(default_factory=dict)


@dataclass(frozen=True)
class SortSpec:
    column: InstrumentedAttribute[Any]
    descending: bool


@dataclass
class Page:
    items: Sequence[Any]
    total: int
    limit: int
    next_cursor: uuid.UUID | None
    has_more: bool


def parse_sort(listing: EntityListing, raw: str | None) -> SortSpec:
    value = (raw or listing.default_sort).strip()
    descending = value.startswith("-")
    name = value[1:] if descending else value
    column = listing.sort_fields.get(name)
    if column is None:
        column = listing.sort_fields[listing.fallback_sort]
    return SortSpec(column=column, descending=descending)


def parse_includes(listing: EntityListing, raw: str | None) -> list[str]:
    if not raw:
        return []
    selected: list[str] = []
    for item in raw.split(","):
        name = item.strip()
        if name in listing.includes and name not in selected:
            selected.append(name)
    return selected


def loader_options(listing: EntityListing, includes: Iterable[str]) -> list[Any]:
    options = [selectinload(related.relationship) for related in listing.always_include.values()]
    options.extend(selectinload(listing.includes[name].relationship) for name in includes)
    return options


def _order_by(model: type[Any], sort: SortSpec) -> list[Any]:
    null_key = sort.column.is_(None)
    if sort.descending:
        return [null_key.desc(), sort.column.desc(), model.id.desc()]
    return [null_key.asc(), sort.column.asc(), model.id.asc()]


def _after_anchor(model: type[Any], sort: SortSpec, anchor_value: Any, anchor_id: uuid.UUID) -> ColumnElement[bool]:
    column = sort.column
    if sort.descending:
        if anchor_value is None:
            return or_(column.is_not(None), and_(column.is_(None), model.id < anchor_id))
        return and_(
            column.is_not(None),
            or_(column < anchor_value, and_(column == anchor_value, model.id < anchor_id)),
        )
    if anchor_value is None:
        return and_(column.is_(None), model.id > anchor_id)
    return or_(
        column.is_(None),
        column > anchor_value,
        and_(column == anchor_value, model.id > anchor_id),
    )


def paginate(
    session: Session,
    listing: EntityListing,
    *,
    scope: ColumnElement[bool],
    filters: Sequence[ColumnElement[bool]],
    sort: SortSpec,
    limit: int,
    cursor: uuid.UUID | None = None,
    options: Sequence[Any] = (),
) -> Page:
    model = listing.model
    conditions = [scope, *filters]

    with tracer.start_as_current_span("crm.list") as span:
        span.set_attribute("crm.entity", listing.name)
        span.set_attribute("crm.limit", limit)
        observe_list_query(listing.name)

        total = session.scalar(select(func.count()).select_from(model).where(*conditions)) or 0

        stmt = select(model).where(*conditions)
        if cursor is not None:
            anchor = session.execute(select(sort.column, model.id).where(scope, model.id == cursor)).first()
            if anchor is None:
                span.set_attribute("crm.has_more", False)
                return Page(items=[], total=total, limit=limit, next_cursor=None, has_more=False)
            stmt = stmt.where(_after_anchor(model, sort, anchor[0], anchor[1]))

        stmt = stmt.order_by(*_order_by(model, sort)).limit(limit + 1)
        if options:
            stmt = stmt.options(*options)
        rows = session.scalars(stmt).all()

        has_more = len(rows) > limit
        items = rows[:limit]
        next_cursor = items[-1].id if has_more else None
        span.set_attribute("crm.has_more", has_more)

    logger.debug("crm.list", extra={"entity": listing.name})
    return Page(items=items, total=total, limit=limit, next_cursor=next_cursor, has_more=has_more)


def serialize(listing: EntityListing, record: Any, includes: Iterable[str] = ()) -> dict[str, Any]:
    data = listing.read_schema.model_validate(record).model_dump(mode="json", by_alias=True)
    attached = [*listing.always_include.items(), *((name, listing.includes[name]) for name in includes)]
    for name, related in attached:
        value = getattr(record, related.key)
        if related.many:
            data[name] = [related.schema.model_validate(item).model_dump(mode="json", by_alias=True) for item in value]
        elif value is None:
            data[name] = None
        else:
            data[name] = related.schema.model_validate(value).model_dump(mode="json", by_alias=True)
    return data


def envelope(listing: EntityListing, page: Page, includes: Iterable[str], data: list[dict[str, Any]] | None = None) -> dict[str, Any]:
    selected = list(includes)
    if data is None:
        data = [serialize(listing, item, selected) for item in page.items]
    pagination = PaginationRead(
        total=page.total,
        limit=page.limit,
        cursor=page.next_cursor,
        has_more=page.has_more,
    )
    return {"data": data, "pagination": pagination.model_dump(mode="json", by_alias=True)}


def run_list(
    session: Session,
    listing: EntityListing,
    *,
    team_id: uuid.UUID,
    filters: Sequence[ColumnElement[bool]],
    params: ListQueryParams,
) -> tuple[Page, list[str]]:
    sort = parse_sort(listing, params.sort)
    includes = parse_includes(listing, params.include)
    page = paginate(
        session,
        listing,
        scope=listing.model.team_id == team_id,
        filters=filters,
        sort=sort,
        limit=params.limit,
        cursor=params.cursor,
        options=loader_options(listing, includes),
    )
    return page, includes


def get_scoped(
    session: Session,
    listing: EntityListing,
    *,
    team_id: uuid.UUID,
    record_id: uuid.UUID,
    includes: Iterable[str] = (),
) -> Any | None:
    model = listing.model
    stmt = select(model).where(model.id == record_id, model.team_id == team_id)
    options = loader_options(listing, includes)
    if options:
        stmt = stmt.options(*options)
    return session.scalar(stmt)
