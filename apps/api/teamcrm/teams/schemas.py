from __future__ import annotations

import uuid
from datetime import datetime
from typing import Literal

from pydantic import EmailStr, Field

from teamcrm.crm.schemas import CamelModel, ReadModel


InviteRole = Literal["admin", "member", "viewer"]
MemberRole = Literal["owner", "admin", "member", "viewer"]


class TeamRead(ReadModel):
    id: uuid.UUID
    name: str
    created_at: datetime
    updated_at: datetime


class TeamUpdate(CamelModel):
    name: str = Field(min_length=1, max_length=100)


class MemberRead(ReadModel):
    id: uuid.UUID
    email: str
    name: str
    role: MemberRole
    created_at: datetime


class InviteCreate(CamelModel):
    email: EmailStr
    role: InviteRole = "member"


class InviteRead(ReadModel):
    id: uuid.UUID
    email: str
    role: InviteRole
    status: str
    expires_at: datetime
    created_at: datetime


class InviteIssued(ReadModel):
    id: uuid.UUID
    email: str
    role: InviteRole
    token: str
    expires_at: datetime


class MemberRoleUpdate(CamelModel):
    # owner is accepted here so the service can reject it with CANNOT_ASSIGN_OWNER
    role: MemberRole
