from __future__ import annotations

import uuid
from collections.abc import Callable
from typing import Any, TypeVar

from fastapi import APIRouter, Depends, Query, Request, status
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.orm import Session

from teamcrm.core.auth import AuthContext, get_current_user
from teamcrm.core.database import get_db
from teamcrm.core.errors import ValidationError, pydantic_field_errors
from teamcrm.crm.schemas import (
    ActivityCreate,
    ActivityQuery,
    ActivityUpdate,
    CompanyCreate,
    CompanyQuery,
    CompanyUpdate,
    ContactCreate,
    ContactQuery,
    ContactUpdate,
    DealCreate,
    DealQuery,
    DealUpdate,
    ListQueryParams,
)
from teamcrm.crm.service import ActivityService, CompanyService, ContactService, DealService

QueryModel = TypeVar("QueryModel", bound=ListQueryParams)

companies_router = APIRouter(prefix="/api/v1/companies", tags=["crm.companies"])
contacts_router = APIRouter(prefix="/api/v1/contacts", tags=["crm.contacts"])
deals_router = APIRouter(prefix="/api/v1/deals", tags=["crm.deals"])
activities_router = APIRouter(prefix="/api/v1/activities", tags=["crm.activities"])
company_service = CompanyService()
contact_service = ContactService()
deal_service = DealService()
activity_service = ActivityService()


def list_query(model: type[QueryModel]) -> Callable[..., QueryModel]:
    """Parse raw list parameters once the caller is authenticated.

    Runs before any store access; every parameter that fails to parse is
    reported under its own field name.
    """

    def dependency(request: Request, user: AuthContext = Depends(get_current_user)) -> QueryModel:
        try:
            return model.model_validate(dict(request.query_params))
        except PydanticValidationError as exc:
            raise ValidationError("Invalid query parameters", details=pydantic_field_errors(exc.errors()))

    return dependency


@companies_router.get("")
def list_companies(
    user: AuthContext = Depends(get_current_user),
    query: CompanyQuery = Depends(list_query(CompanyQuery)),
    db: Session = Depends(get_db),
) -> dict[str, Any]:
    return company_service.list(db, user, query)


@companies_router.get("/{company_id}")
def get_company(
    company_id: uuid.UUID,
    include: str | None = Query(default=None),
    user: AuthContext = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> dict[str, Any]:
    return {"data": company_service.get(db, user, company_id, include)}


@companies_router.post("", status_code=status.HTTP_201_CREATED)
def create_company(
    dto: CompanyCreate,
    user: AuthContext = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> dict[str, Any]:
    return {"data": company_service.create(db, user, dto)}


@companies_router.put("/{company_id}")
def update_company(
    company_id: uuid.UUID,
    dto: CompanyUpdate,
    user: AuthContext = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> dict[str, Any]:
    return {"data": company_service.update(db, user, company_id, dto)}


@companies_router.delete("/{company_id}")
def delete_company(
    company_id: uuid.UUID,
    user: AuthContext = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> dict[str, Any]:
    return {"data": company_service.delete(db, user, company_id)}


@contacts_router.get("")
def list_contacts(
    user: AuthContext = Depends(get_current_user),
    query: ContactQuery = Depends(list_query(ContactQuery)),
    db: Session = Depends(get_db),
) -> dict[str, Any]:
    return contact_service.list(db, user, query)


@contacts_router.get("/{contact_id}")
def get_contact(
    contact_id: uuid.UUID,
    include: str | None = Query(default=None),
    user: AuthContext = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> dict[str, Any]:
    return {"data": contact_service.get(db, user, contact_id, include)}


@contacts_router.post("", status_code=status.HTTP_201_CREATED)
def create_contact(
    dto: ContactCreate,
    user: AuthContext = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> dict[str, Any]:
    return {"data": contact_service.create(db, user, dto)}


@contacts_router.put("/{contact_id}")
def update_contact(
    contact_id: uuid.UUID,
    dto: ContactUpdate,
    user: AuthContext = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> dict[str, Any]:
    return {"data": contact_service.update(db, user, contact_id, dto)}


@contacts_router.delete("/{contact_id}")
def delete_contact(
    contact_id: uuid.UUID,
    user: AuthContext = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> dict[str, Any]:
    return {"data": contact_service.delete(db, user, contact_id)}


@deals_router.get("")
def list_deals(
    user: AuthContext = Depends(get_current_user),
    query: DealQuery = Depends(list_query(DealQuery)),
    db: Session = Depends(get_db),
) -> dict[str, Any]:
    return deal_service.list(db, user, query)


# Registered before /{deal_id} so "pipeline" is never parsed as an id.
@deals_router.get("/pipeline")
def get_pipeline(
    user: AuthContext = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> dict[str, Any]:
    return {"data": deal_service.pipeline(db, user)}


@deals_router.get("/{deal_id}")
def get_deal(
    deal_id: uuid.UUID,
    include: str | None = Query(default=None),
    user: AuthContext = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> dict[str, Any]:
    return {"data": deal_service.get(db, user, deal_id, include)}


@deals_router.post("", status_code=status.HTTP_201_CREATED)
def create_deal(
    dto: DealCreate,
    user: AuthContext = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> dict[str, Any]:
    return {"data": deal_service.create(db, user, dto)}


@deals_router.put("/{deal_id}")
def update_deal(
    deal_id: uuid.UUID,
    dto: DealUpdate,
    user: AuthContext = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> dict[str, Any]:
    return {"data": deal_service.update(db, user, deal_id, dto)}


@deals_router.delete("/{deal_id}")
def delete_deal(
    deal_id: uuid.UUID,
    user: AuthContext = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> dict[str, Any]:
    return {"data": deal_service.delete(db, user, deal_id)}


@activities_router.get("")
def list_activities(
    user: AuthContext = Depends(get_current_user),
    query: ActivityQuery = Depends(list_query(ActivityQuery)),
    db: Session = Depends(get_db),
) -> dict[str, Any]:
    return activity_service.list(db, user, query)


@activities_router.get("/upcoming")
def list_upcoming_activities(
    days: int = Query(default=7, ge=1, le=365),
    user: AuthContext = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> dict[str, Any]:
    return {"data": activity_service.upcoming(db, user, days)}


@activities_router.get("/overdue")
def list_overdue_activities(
    user: AuthContext = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> dict[str, Any]:
    return {"data": activity_service.overdue(db, user)}


@activities_router.get("/{activity_id}")
def get_activity(
    activity_id: uuid.UUID,
    include: str | None = Query(default=None),
    user: AuthContext = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> dict[str, Any]:
    return {"data": activity_service.get(db, user, activity_id, include)}


@activities_router.post("", status_code=status.HTTP_201_CREATED)
def create_activity(
    dto: ActivityCreate,
    user: AuthContext = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> dict[str, Any]:
    return {"data": activity_service.create(db, user, dto)}


@activities_router.put("/{activity_id}")
def update_activity(
    activity_id: uuid.UUID,
    dto: ActivityUpdate,
    user: AuthContext = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> dict[str, Any]:
    return {"data": activity_service.update(db, user, activity_id, dto)}


@activities_router.post("/{activity_id}/toggle")
def toggle_activity(
    activity_id: uuid.UUID,
    user: AuthContext = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> dict[str, Any]:
    return {"data": activity_service.toggle(db, user, activity_id)}


@activities_router.delete("/{activity_id}")
def delete_activity(
    activity_id: uuid.UUID,
    user: AuthContext = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> dict[str, Any]:
    return {"data": activity_service.delete(db, user, activity_id)}
