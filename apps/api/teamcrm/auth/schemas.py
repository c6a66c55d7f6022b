from __future__ import annotations

import uuid
from datetime import datetime

from pydantic import EmailStr, Field, field_validator

from teamcrm.crm.schemas import CamelModel, ReadModel
from teamcrm.teams.schemas import InviteRole, MemberRole


class RegisterRequest(CamelModel):
    email: EmailStr
    password: str = Field(min_length=8, max_length=200)
    name: str = Field(min_length=1, max_length=100)
    team_name: str = Field(min_length=1, max_length=100)


class LoginRequest(CamelModel):
    email: EmailStr
    password: str = Field(min_length=1)


class AcceptInviteRequest(CamelModel):
    token: str = Field(min_length=1)
    name: str = Field(min_length=1, max_length=100)
    password: str = Field(min_length=8, max_length=200)


class InviteDetails(CamelModel):
    email: str
    team_name: str
    role: InviteRole


class UserRead(ReadModel):
    id: uuid.UUID
    email: str
    name: str
    role: MemberRole
    team_id: uuid.UUID
    created_at: datetime


class UserUpdate(CamelModel):
    name: str | None = Field(default=None, min_length=1, max_length=100)
    email: EmailStr | None = None

    @field_validator("name", "email")
    @classmethod
    def not_null(cls, value: str | None) -> str | None:
        if value is None:
            raise ValueError("cannot be null")
        return value
