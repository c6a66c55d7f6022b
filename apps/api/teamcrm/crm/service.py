from __future__ import annotations

import logging
import uuid
from datetime import timedelta
from typing import Any

from pydantic.alias_generators import to_camel
from sqlalchemy import ColumnElement, func, or_, select
from sqlalchemy.orm import Session, selectinload

from teamcrm.core.auth import AuthContext
from teamcrm.core.errors import NotFound, ValidationError
from teamcrm.crm.models import DEAL_STAGES, Activity, Company, Contact, Deal
from teamcrm.crm.pagination import (
    EntityListing,
    Include,
    envelope,
    get_scoped,
    parse_includes,
    run_list,
    serialize,
)
from teamcrm.crm.schemas import (
    ActivityCreate,
    ActivityQuery,
    ActivityRead,
    ActivityUpdate,
    CompanyCreate,
    CompanyQuery,
    CompanyRead,
    CompanyUpdate,
    ContactCreate,
    ContactQuery,
    ContactRead,
    ContactUpdate,
    DealCreate,
    DealQuery,
    DealRead,
    DealUpdate,
    PipelineStageRead,
    UserBrief,
)
from teamcrm.teams.models import User, utcnow


logger = logging.getLogger("teamcrm.crm")

UPCOMING_LIMIT = 20


COMPANY_LISTING = EntityListing(
    name="company",
    model=Company,
    read_schema=CompanyRead,
    sort_fields={
        "name": Company.name,
        "createdAt": Company.created_at,
        "updatedAt": Company.updated_at,
    },
    default_sort="-createdAt",
    fallback_sort="createdAt",
    includes={
        "contacts": Include(Company.contacts, ContactRead, many=True),
        "deals": Include(Company.deals, DealRead, many=True),
        "owner": Include(Company.owner, UserBrief),
    },
)

CONTACT_LISTING = EntityListing(
    name="contact",
    model=Contact,
    read_schema=ContactRead,
    sort_fields={
        "name": Contact.name,
        "email": Contact.email,
        "createdAt": Contact.created_at,
        "updatedAt": Contact.updated_at,
    },
    default_sort="-createdAt",
    fallback_sort="createdAt",
    includes={
        "company": Include(Contact.company, CompanyRead),
        "owner": Include(Contact.owner, UserBrief),
        "deals": Include(Contact.deals, DealRead, many=True),
        "activities": Include(Contact.activities, ActivityRead, many=True),
    },
)

DEAL_LISTING = EntityListing(
    name="deal",
    model=Deal,
    read_schema=DealRead,
    sort_fields={
        "title": Deal.title,
        "value": Deal.value,
        "stage": Deal.stage,
        "probability": Deal.probability,
        "createdAt": Deal.created_at,
        "updatedAt": Deal.updated_at,
    },
    default_sort="-createdAt",
    fallback_sort="createdAt",
    includes={
        "company": Include(Deal.company, CompanyRead),
        "contact": Include(Deal.contact, ContactRead),
        "owner": Include(Deal.owner, UserBrief),
        "activities": Include(Deal.activities, ActivityRead, many=True),
    },
)

ACTIVITY_LISTING = EntityListing(
    name="activity",
    model=Activity,
    read_schema=ActivityRead,
    sort_fields={
        "title": Activity.title,
        "type": Activity.type,
        "dueAt": Activity.due_at,
        "createdAt": Activity.created_at,
        "completedAt": Activity.completed_at,
    },
    default_sort="dueAt",
    fallback_sort="dueAt",
    includes={
        "deal": Include(Activity.deal, DealRead),
        "contact": Include(Activity.contact, ContactRead),
    },
    always_include={"user": Include(Activity.user, UserBrief)},
)


class EntityService:
    """Team-scoped CRUD shared by every CRM entity.

    Mutations load the target inside the caller's team first and only then
    write it, so a record id from another team always ends in ``NotFound``.
    """

    listing: EntityListing
    label: str
    # body field -> model the referenced id must belong to (inside the caller's team)
    links: dict[str, type[Any]] = {}

    def get(self, session: Session, auth: AuthContext, record_id: uuid.UUID, include: str | None = None) -> dict[str, Any]:
        includes = parse_includes(self.listing, include)
        record = get_scoped(session, self.listing, team_id=auth.team_id, record_id=record_id, includes=includes)
        if record is None:
            raise NotFound(f"{self.label} not found")
        return self.to_payload(session, record, includes)

    def delete(self, session: Session, auth: AuthContext, record_id: uuid.UUID) -> dict[str, str]:
        record = self._get_owned(session, auth, record_id)
        session.delete(record)
        session.commit()
        logger.info(
            "crm.record_deleted",
            extra={"entity": self.listing.name, "team_id": str(auth.team_id), "user_id": str(auth.user_id)},
        )
        return {"message": f"{self.label} deleted"}

    def to_payload(self, session: Session, record: Any, includes: list[str]) -> dict[str, Any]:
        return serialize(self.listing, record, includes)

    def _get_owned(self, session: Session, auth: AuthContext, record_id: uuid.UUID) -> Any:
        record = get_scoped(session, self.listing, team_id=auth.team_id, record_id=record_id)
        if record is None:
            raise NotFound(f"{self.label} not found")
        return record

    def _check_links(self, session: Session, auth: AuthContext, values: dict[str, Any]) -> None:
        problems: dict[str, list[str]] = {}
        for field_name, model in self.links.items():
            linked_id = values.get(field_name)
            if linked_id is None:
                continue
            found = session.scalar(select(model.id).where(model.id == linked_id, model.team_id == auth.team_id))
            if found is None:
                problems.setdefault(to_camel(field_name), []).append("Referenced record not found in team")
        if problems:
            raise ValidationError("Invalid input", details=problems)

    def _create(self, session: Session, auth: AuthContext, values: dict[str, Any]) -> dict[str, Any]:
        self._check_links(session, auth, values)
        record = self.listing.model(team_id=auth.team_id, **values)
        session.add(record)
        session.commit()
        session.refresh(record)
        logger.info(
            "crm.record_created",
            extra={"entity": self.listing.name, "team_id": str(auth.team_id), "user_id": str(auth.user_id)},
        )
        return self.to_payload(session, record, [])

    def _update(self, session: Session, auth: AuthContext, record_id: uuid.UUID, changes: dict[str, Any]) -> dict[str, Any]:
        record = self._get_owned(session, auth, record_id)
        self._check_links(session, auth, changes)
        for key, value in changes.items():
            setattr(record, key, value)
        session.commit()
        session.refresh(record)
        return self.to_payload(session, record, [])


def _search(term: str | None, *columns: Any) -> list[ColumnElement[bool]]:
    if not term:
        return []
    pattern = f"%{term}%"
    return [or_(*(column.ilike(pattern) for column in columns))]


class CompanyService(EntityService):
    listing = COMPANY_LISTING
    label = "Company"
    links = {"owner_id": User}

    def list(self, session: Session, auth: AuthContext, query: CompanyQuery) -> dict[str, Any]:
        filters = _search(query.search, Company.name, Company.domain)
        if query.industry:
            filters.append(Company.industry == query.industry)
        page, includes = run_list(session, self.listing, team_id=auth.team_id, filters=filters, params=query)
        counts = self._counts(session, [item.id for item in page.items])
        data = []
        for item in page.items:
            payload = serialize(self.listing, item, includes)
            payload["counts"] = counts.get(item.id, {"contacts": 0, "deals": 0})
            data.append(payload)
        return envelope(self.listing, page, includes, data=data)

    def create(self, session: Session, auth: AuthContext, dto: CompanyCreate) -> dict[str, Any]:
        return self._create(session, auth, dto.model_dump())

    def update(self, session: Session, auth: AuthContext, company_id: uuid.UUID, dto: CompanyUpdate) -> dict[str, Any]:
        return self._update(session, auth, company_id, dto.model_dump(exclude_unset=True))

    def to_payload(self, session: Session, record: Any, includes: list[str]) -> dict[str, Any]:
        payload = serialize(self.listing, record, includes)
        payload["counts"] = self._counts(session, [record.id]).get(record.id, {"contacts": 0, "deals": 0})
        return payload

    def _counts(self, session: Session, company_ids: list[uuid.UUID]) -> dict[uuid.UUID, dict[str, int]]:
        counts: dict[uuid.UUID, dict[str, int]] = {company_id: {"contacts": 0, "deals": 0} for company_id in company_ids}
        if not company_ids:
            return counts
        for key, model in (("contacts", Contact), ("deals", Deal)):
            rows = session.execute(
                select(model.company_id, func.count())
                .where(model.company_id.in_(company_ids))
                .group_by(model.company_id)
            ).all()
            for company_id, total in rows:
                counts[company_id][key] = total
        return counts


class ContactService(EntityService):
    listing = CONTACT_LISTING
    label = "Contact"
    links = {"company_id": Company, "owner_id": User}

    def list(self, session: Session, auth: AuthContext, query: ContactQuery) -> dict[str, Any]:
        filters = _search(query.search, Contact.name, Contact.email)
        if query.company_id:
            filters.append(Contact.company_id == query.company_id)
        if query.owner_id:
            filters.append(Contact.owner_id == query.owner_id)
        page, includes = run_list(session, self.listing, team_id=auth.team_id, filters=filters, params=query)
        return envelope(self.listing, page, includes)

    def create(self, session: Session, auth: AuthContext, dto: ContactCreate) -> dict[str, Any]:
        values = dto.model_dump()
        if values["owner_id"] is None:
            values["owner_id"] = auth.user_id
        return self._create(session, auth, values)

    def update(self, session: Session, auth: AuthContext, contact_id: uuid.UUID, dto: ContactUpdate) -> dict[str, Any]:
        return self._update(session, auth, contact_id, dto.model_dump(exclude_unset=True))


class DealService(EntityService):
    listing = DEAL_LISTING
    label = "Deal"
    links = {"company_id": Company, "contact_id": Contact, "owner_id": User}

    def list(self, session: Session, auth: AuthContext, query: DealQuery) -> dict[str, Any]:
        filters = _search(query.search, Deal.title)
        if query.stage:
            filters.append(Deal.stage == query.stage)
        if query.company_id:
            filters.append(Deal.company_id == query.company_id)
        if query.contact_id:
            filters.append(Deal.contact_id == query.contact_id)
        if query.owner_id:
            filters.append(Deal.owner_id == query.owner_id)
        page, includes = run_list(session, self.listing, team_id=auth.team_id, filters=filters, params=query)
        return envelope(self.listing, page, includes)

    def create(self, session: Session, auth: AuthContext, dto: DealCreate) -> dict[str, Any]:
        values = dto.model_dump()
        if values["owner_id"] is None:
            values["owner_id"] = auth.user_id
        return self._create(session, auth, values)

    def update(self, session: Session, auth: AuthContext, deal_id: uuid.UUID, dto: DealUpdate) -> dict[str, Any]:
        return self._update(session, auth, deal_id, dto.model_dump(exclude_unset=True))

    def pipeline(self, session: Session, auth: AuthContext) -> list[dict[str, Any]]:
        """Every stage in canonical order with its deals, count and summed value."""

        deals = session.scalars(
            select(Deal)
            .where(Deal.team_id == auth.team_id)
            .options(selectinload(Deal.company), selectinload(Deal.contact))
            .order_by(Deal.created_at.desc(), Deal.id.desc())
        ).all()
        grouped: dict[str, list[Deal]] = {stage: [] for stage in DEAL_STAGES}
        for deal in deals:
            grouped.setdefault(deal.stage, []).append(deal)

        stages = []
        for stage in DEAL_STAGES:
            members = grouped[stage]
            row = PipelineStageRead(
                stage=stage,
                count=len(members),
                total_value=float(sum((deal.value or 0) for deal in members)),
                deals=[serialize(self.listing, deal, ["company", "contact"]) for deal in members],
            )
            stages.append(row.model_dump(mode="json", by_alias=True))
        return stages


class ActivityService(EntityService):
    listing = ACTIVITY_LISTING
    label = "Activity"
    links = {"deal_id": Deal, "contact_id": Contact}

    def list(self, session: Session, auth: AuthContext, query: ActivityQuery) -> dict[str, Any]:
        filters: list[ColumnElement[bool]] = []
        if query.type:
            filters.append(Activity.type == query.type)
        if query.deal_id:
            filters.append(Activity.deal_id == query.deal_id)
        if query.contact_id:
            filters.append(Activity.contact_id == query.contact_id)
        if query.user_id:
            filters.append(Activity.user_id == query.user_id)
        if query.completed == "true":
            filters.append(Activity.completed_at.is_not(None))
        elif query.completed == "false":
            filters.append(Activity.completed_at.is_(None))
        if query.due_before:
            filters.append(Activity.due_at <= query.due_before)
        if query.due_after:
            filters.append(Activity.due_at >= query.due_after)
        page, includes = run_list(session, self.listing, team_id=auth.team_id, filters=filters, params=query)
        return envelope(self.listing, page, includes)

    def create(self, session: Session, auth: AuthContext, dto: ActivityCreate) -> dict[str, Any]:
        values = dto.model_dump()
        values["user_id"] = auth.user_id
        return self._create(session, auth, values)

    def update(self, session: Session, auth: AuthContext, activity_id: uuid.UUID, dto: ActivityUpdate) -> dict[str, Any]:
        return self._update(session, auth, activity_id, dto.model_dump(exclude_unset=True))

    def toggle(self, session: Session, auth: AuthContext, activity_id: uuid.UUID) -> dict[str, Any]:
        activity = self._get_owned(session, auth, activity_id)
        activity.completed_at = None if activity.completed_at is not None else utcnow()
        session.commit()
        session.refresh(activity)
        logger.info(
            "crm.activity_toggled",
            extra={"entity": self.listing.name, "team_id": str(auth.team_id), "user_id": str(auth.user_id)},
        )
        return self.to_payload(session, activity, [])

    def upcoming(self, session: Session, auth: AuthContext, days: int) -> list[dict[str, Any]]:
        now = utcnow()
        activities = session.scalars(
            self._own_open(auth)
            .where(Activity.due_at >= now, Activity.due_at <= now + timedelta(days=days))
            .order_by(Activity.due_at.asc(), Activity.id.asc())
            .limit(UPCOMING_LIMIT)
        ).all()
        return [self.to_payload(session, item, ["deal", "contact"]) for item in activities]

    def overdue(self, session: Session, auth: AuthContext) -> list[dict[str, Any]]:
        activities = session.scalars(
            self._own_open(auth)
            .where(Activity.due_at < utcnow())
            .order_by(Activity.due_at.asc(), Activity.id.asc())
        ).all()
        return [self.to_payload(session, item, ["deal", "contact"]) for item in activities]

    def _own_open(self, auth: AuthContext):  # type: ignore[no-untyped-def]
        return (
            select(Activity)
            .where(
                Activity.team_id == auth.team_id,
                Activity.user_id == auth.user_id,
                Activity.completed_at.is_(None),
            )
            .options(
                selectinload(Activity.user),
                selectinload(Activity.deal),
                selectinload(Activity.contact),
            )
        )
