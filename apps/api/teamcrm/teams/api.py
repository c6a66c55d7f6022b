from __future__ import annotations

import uuid
from typing import Any

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from teamcrm.core.auth import AuthContext, get_current_user, require_roles
from teamcrm.core.database import get_db
from teamcrm.teams.models import TEAM_ADMIN_ROLES
from teamcrm.teams.schemas import (
    InviteCreate,
    InviteIssued,
    InviteRead,
    MemberRead,
    MemberRoleUpdate,
    TeamRead,
    TeamUpdate,
)
from teamcrm.teams.service import TeamService

router = APIRouter(prefix="/api/v1/teams", tags=["teams"])
service = TeamService()
require_team_admin = require_roles(*TEAM_ADMIN_ROLES)


def _dump(model: Any) -> dict[str, Any]:
    return model.model_dump(mode="json", by_alias=True)


@router.get("/me")
def get_my_team(user: AuthContext = Depends(get_current_user), db: Session = Depends(get_db)) -> dict[str, Any]:
    team = service.get_team(db, user.team_id)
    return {"data": _dump(TeamRead.model_validate(team))}


@router.put("/me")
def update_my_team(
    dto: TeamUpdate,
    user: AuthContext = Depends(require_team_admin),
    db: Session = Depends(get_db),
) -> dict[str, Any]:
    team = service.update_team(db, user, dto.name)
    return {"data": _dump(TeamRead.model_validate(team))}


@router.get("/members")
def list_members(user: AuthContext = Depends(get_current_user), db: Session = Depends(get_db)) -> dict[str, Any]:
    members = service.list_members(db, user.team_id)
    return {"data": [_dump(MemberRead.model_validate(member)) for member in members]}


@router.post("/invite", status_code=status.HTTP_201_CREATED)
def invite_user(
    dto: InviteCreate,
    user: AuthContext = Depends(require_team_admin),
    db: Session = Depends(get_db),
) -> dict[str, Any]:
    invite = service.invite_user(db, user, dto.email, dto.role)
    return {"data": _dump(InviteIssued.model_validate(invite))}


@router.get("/invites")
def list_invites(user: AuthContext = Depends(require_team_admin), db: Session = Depends(get_db)) -> dict[str, Any]:
    invites = service.pending_invites(db, user.team_id)
    return {"data": [_dump(InviteRead.model_validate(invite)) for invite in invites]}


@router.delete("/invites/{invite_id}")
def cancel_invite(
    invite_id: uuid.UUID,
    user: AuthContext = Depends(require_team_admin),
    db: Session = Depends(get_db),
) -> dict[str, Any]:
    service.cancel_invite(db, user, invite_id)
    return {"data": {"message": "Invite cancelled"}}


@router.delete("/members/{member_id}")
def remove_member(
    member_id: uuid.UUID,
    user: AuthContext = Depends(require_team_admin),
    db: Session = Depends(get_db),
) -> dict[str, Any]:
    service.remove_member(db, user, member_id)
    return {"data": {"message": "Member removed"}}


@router.put("/members/{member_id}/role")
def update_member_role(
    member_id: uuid.UUID,
    dto: MemberRoleUpdate,
    user: AuthContext = Depends(require_team_admin),
    db: Session = Depends(get_db),
) -> dict[str, Any]:
    member = service.update_member_role(db, user, member_id, dto.role)
    return {"data": _dump(MemberRead.model_validate(member))}
