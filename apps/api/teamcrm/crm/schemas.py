from __future__ import annotations

import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import Literal

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator
from pydantic.alias_generators import to_camel


DealStage = Literal["lead", "qualified", "proposal", "negotiation", "won", "lost"]
ActivityType = Literal["call", "email", "meeting", "task"]


def as_utc(value: datetime | None) -> datetime | None:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _not_null(value: str | None) -> str:
    if value is None:
        raise ValueError("cannot be null")
    return value


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ReadModel(CamelModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


class UserBrief(ReadModel):
    id: uuid.UUID
    name: str
    email: str


class CompanyCreate(CamelModel):
    name: str = Field(min_length=1, max_length=200)
    domain: str | None = Field(default=None, max_length=200)
    industry: str | None = Field(default=None, max_length=100)
    owner_id: uuid.UUID | None = None


class CompanyUpdate(CamelModel):
    name: str | None = Field(default=None, min_length=1, max_length=200)
    domain: str | None = Field(default=None, max_length=200)
    industry: str | None = Field(default=None, max_length=100)
    owner_id: uuid.UUID | None = None

    @field_validator("name")
    @classmethod
    def name_not_null(cls, value: str | None) -> str | None:
        return _not_null(value)


class CompanyRead(ReadModel):
    id: uuid.UUID
    team_id: uuid.UUID
    name: str
    domain: str | None
    industry: str | None
    owner_id: uuid.UUID | None
    created_at: datetime
    updated_at: datetime


class ContactCreate(CamelModel):
    name: str = Field(min_length=1, max_length=200)
    email: EmailStr | None = None
    phone: str | None = Field(default=None, max_length=50)
    title: str | None = Field(default=None, max_length=100)
    company_id: uuid.UUID | None = None
    owner_id: uuid.UUID | None = None


class ContactUpdate(CamelModel):
    name: str | None = Field(default=None, min_length=1, max_length=200)
    email: EmailStr | None = None
    phone: str | None = Field(default=None, max_length=50)
    title: str | None = Field(default=None, max_length=100)
    company_id: uuid.UUID | None = None
    owner_id: uuid.UUID | None = None

    @field_validator("name")
    @classmethod
    def name_not_null(cls, value: str | None) -> str | None:
        return _not_null(value)


class ContactRead(ReadModel):
    id: uuid.UUID
    team_id: uuid.UUID
    name: str
    email: str | None
    phone: str | None
    title: str | None
    company_id: uuid.UUID | None
    owner_id: uuid.UUID | None
    created_at: datetime
    updated_at: datetime


class DealCreate(CamelModel):
    title: str = Field(min_length=1, max_length=200)
    value: Decimal | None = Field(default=None, ge=0)
    stage: DealStage = "lead"
    probability: int | None = Field(default=None, ge=0, le=100)
    company_id: uuid.UUID | None = None
    contact_id: uuid.UUID | None = None
    owner_id: uuid.UUID | None = None


class DealUpdate(CamelModel):
    title: str | None = Field(default=None, min_length=1, max_length=200)
    value: Decimal | None = Field(default=None, ge=0)
    stage: DealStage | None = None
    probability: int | None = Field(default=None, ge=0, le=100)
    company_id: uuid.UUID | None = None
    contact_id: uuid.UUID | None = None
    owner_id: uuid.UUID | None = None

    @field_validator("title", "stage")
    @classmethod
    def required_not_null(cls, value: str | None) -> str | None:
        return _not_null(value)


class DealRead(ReadModel):
    id: uuid.UUID
    team_id: uuid.UUID
    title: str
    value: float | None
    stage: DealStage
    probability: int | None
    company_id: uuid.UUID | None
    contact_id: uuid.UUID | None
    owner_id: uuid.UUID | None
    created_at: datetime
    updated_at: datetime


class PipelineStageRead(CamelModel):
    stage: DealStage
    count: int
    total_value: float
    deals: list[dict]


class ActivityCreate(CamelModel):
    type: ActivityType
    title: str = Field(min_length=1, max_length=200)
    description: str | None = Field(default=None, max_length=2000)
    due_at: datetime | None = None
    deal_id: uuid.UUID | None = None
    contact_id: uuid.UUID | None = None

    @field_validator("due_at")
    @classmethod
    def due_at_utc(cls, value: datetime | None) -> datetime | None:
        return as_utc(value)


class ActivityUpdate(CamelModel):
    type: ActivityType | None = None
    title: str | None = Field(default=None, min_length=1, max_length=200)
    description: str | None = Field(default=None, max_length=2000)
    due_at: datetime | None = None
    completed_at: datetime | None = None
    deal_id: uuid.UUID | None = None
    contact_id: uuid.UUID | None = None

    @field_validator("type", "title")
    @classmethod
    def required_not_null(cls, value: str | None) -> str | None:
        return _not_null(value)

    @field_validator("due_at", "completed_at")
    @classmethod
    def timestamps_utc(cls, value: datetime | None) -> datetime | None:
        return as_utc(value)


class ActivityRead(ReadModel):
    id: uuid.UUID
    team_id: uuid.UUID
    type: ActivityType
    title: str
    description: str | None
    due_at: datetime | None
    completed_at: datetime | None
    deal_id: uuid.UUID | None
    contact_id: uuid.UUID | None
    user_id: uuid.UUID | None
    created_at: datetime
    updated_at: datetime


class ListQueryParams(CamelModel):
    """Parameters shared by every list endpoint. Values arrive as strings."""

    limit: int = 50
    cursor: uuid.UUID | None = None
    sort: str | None = None
    include: str | None = None

    @field_validator("limit")
    @classmethod
    def clamp_limit(cls, value: int) -> int:
        return max(1, min(100, value))


class CompanyQuery(ListQueryParams):
    search: str | None = None
    industry: str | None = None


class ContactQuery(ListQueryParams):
    search: str | None = None
    company_id: uuid.UUID | None = None
    owner_id: uuid.UUID | None = None


class DealQuery(ListQueryParams):
    search: str | None = None
    stage: DealStage | None = None
    company_id: uuid.UUID | None = None
    contact_id: uuid.UUID | None = None
    owner_id: uuid.UUID | None = None


class ActivityQuery(ListQueryParams):
    type: ActivityType | None = None
    deal_id: uuid.UUID | None = None
    contact_id: uuid.UUID | None = None
    user_id: uuid.UUID | None = None
    completed: Literal["true", "false"] | None = None
    due_before: datetime | None = None
    due_after: datetime | None = None

    @field_validator("due_before", "due_after")
    @classmethod
    def bounds_utc(cls, value: datetime | None) -> datetime | None:
        return as_utc(value)


class PaginationRead(CamelModel):
    total: int
    limit: int
    cursor: uuid.UUID | None
    has_more: bool
