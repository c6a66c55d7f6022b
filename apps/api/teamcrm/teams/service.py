"""Team membership and the invite lifecycle.

An invite is pending until it is accepted (the row is deleted), cancelled
(deleted as well) or its ``expires_at`` passes. Expiry is never a stored
transition that reads depend on: every query filters on
``status == pending AND expires_at > now`` itself.
"""

from __future__ import annotations

import logging
import secrets
import uuid
from collections.abc import Sequence
from datetime import timedelta
from typing import NoReturn

from sqlalchemy import ColumnElement, and_, func, select, update
from sqlalchemy.orm import Session, selectinload

from teamcrm import audit
from teamcrm.core.auth import AuthContext
from teamcrm.core.config import get_settings
from teamcrm.core.errors import NotFound, TeamError
from teamcrm.metrics import observe_team_guard_rejection
from teamcrm.teams.models import INVITE_EXPIRED, INVITE_PENDING, ROLE_OWNER, Invite, Team, User, utcnow


logger = logging.getLogger("teamcrm.teams")


def pending_invite_clause() -> ColumnElement[bool]:
    return and_(Invite.status == INVITE_PENDING, Invite.expires_at > utcnow())


def normalize_email(email: str) -> str:
    return email.strip().lower()


class TeamService:
    entity_type = "team"

    def get_team(self, session: Session, team_id: uuid.UUID) -> Team:
        team = session.get(Team, team_id)
        if team is None:
            raise NotFound("Team not found")
        return team

    def update_team(self, session: Session, auth: AuthContext, name: str) -> Team:
        team = self.get_team(session, auth.team_id)
        before = {"name": team.name}
        team.name = name
        session.commit()
        session.refresh(team)
        audit.record(auth, self.entity_type, team.id, "update", before=before, after={"name": team.name})
        return team

    def list_members(self, session: Session, team_id: uuid.UUID) -> Sequence[User]:
        return session.scalars(
            select(User).where(User.team_id == team_id).order_by(User.created_at.asc(), User.id.asc())
        ).all()

    def find_member_by_email(self, session: Session, team_id: uuid.UUID, email: str) -> User | None:
        return session.scalar(
            select(User).where(User.team_id == team_id, func.lower(User.email) == normalize_email(email))
        )

    def invite_user(self, session: Session, auth: AuthContext, email: str, role: str) -> Invite:
        email = normalize_email(email)
        if self.find_member_by_email(session, auth.team_id, email) is not None:
            self._reject(auth, "USER_EXISTS", "User is already a member of this team")

        existing = session.scalar(
            select(Invite.id).where(
                Invite.team_id == auth.team_id,
                Invite.email == email,
                pending_invite_clause(),
            )
        )
        if existing is not None:
            self._reject(auth, "INVITE_EXISTS", "A pending invite already exists for this email")

        invite = Invite(
            team_id=auth.team_id,
            email=email,
            role=role,
            token=secrets.token_hex(32),
            status=INVITE_PENDING,
            expires_at=utcnow() + timedelta(days=get_settings().invite_ttl_days),
        )
        session.add(invite)
        session.commit()
        session.refresh(invite)

        audit.record(auth, "team.invite", invite.id, "create", after={"email": invite.email, "role": invite.role})
        logger.info(
            "team.invite_created",
            extra={"team_id": str(auth.team_id), "invite_id": str(invite.id), "role": invite.role},
        )
        return invite

    def pending_invites(self, session: Session, team_id: uuid.UUID) -> Sequence[Invite]:
        return session.scalars(
            select(Invite)
            .where(Invite.team_id == team_id, pending_invite_clause())
            .order_by(Invite.created_at.desc(), Invite.id.desc())
        ).all()

    def find_pending_invite(self, session: Session, token: str) -> Invite | None:
        return session.scalar(
            select(Invite)
            .where(Invite.token == token, pending_invite_clause())
            .options(selectinload(Invite.team))
        )

    def cancel_invite(self, session: Session, auth: AuthContext, invite_id: uuid.UUID) -> None:
        invite = session.scalar(select(Invite).where(Invite.id == invite_id, Invite.team_id == auth.team_id))
        if invite is None:
            self._reject(auth, "INVITE_NOT_FOUND", "Invite not found")

        before = {"email": invite.email, "role": invite.role}
        session.delete(invite)
        session.commit()
        audit.record(auth, "team.invite", invite_id, "cancel", before=before)
        logger.info("team.invite_cancelled", extra={"team_id": str(auth.team_id), "invite_id": str(invite_id)})

    def remove_member(self, session: Session, auth: AuthContext, user_id: uuid.UUID) -> None:
        member = session.scalar(select(User).where(User.id == user_id, User.team_id == auth.team_id))
        if member is None:
            self._reject(auth, "USER_NOT_FOUND", "User not found")
        if member.role == ROLE_OWNER:
            self._reject(auth, "CANNOT_REMOVE_OWNER", "Cannot remove the team owner")
        if member.id == auth.user_id:
            self._reject(auth, "CANNOT_REMOVE_SELF", "Cannot remove yourself")

        before = {"email": member.email, "role": member.role}
        session.delete(member)
        session.commit()
        audit.record(auth, "team.member", user_id, "remove", before=before)
        logger.info("team.member_removed", extra={"team_id": str(auth.team_id), "user_id": str(user_id)})

    def update_member_role(self, session: Session, auth: AuthContext, user_id: uuid.UUID, role: str) -> User:
        member = session.scalar(select(User).where(User.id == user_id, User.team_id == auth.team_id))
        if member is None:
            self._reject(auth, "USER_NOT_FOUND", "User not found")
        if member.role == ROLE_OWNER:
            self._reject(auth, "CANNOT_CHANGE_OWNER", "Cannot change the owner's role")
        if role == ROLE_OWNER:
            self._reject(auth, "CANNOT_ASSIGN_OWNER", "Cannot assign the owner role")
        if member.id == auth.user_id:
            self._reject(auth, "CANNOT_CHANGE_SELF", "Cannot change your own role")

        before = {"role": member.role}
        member.role = role
        session.commit()
        session.refresh(member)
        audit.record(auth, "team.member", member.id, "change_role", before=before, after={"role": member.role})
        logger.info(
            "team.member_role_changed",
            extra={"team_id": str(auth.team_id), "user_id": str(member.id), "role": member.role},
        )
        return member

    def expire_stale_invites(self, session: Session) -> int:
        """Mark past-expiry pending invites as expired. Housekeeping only."""

        result = session.execute(
            update(Invite)
            .where(Invite.status == INVITE_PENDING, Invite.expires_at <= utcnow())
            .values(status=INVITE_EXPIRED)
            .execution_options(synchronize_session=False)
        )
        session.commit()
        expired = result.rowcount or 0
        logger.info("team.invites_expired", extra={"count": expired})
        return expired

    def _reject(self, auth: AuthContext, code: str, message: str) -> NoReturn:
        observe_team_guard_rejection(code)
        logger.info(
            "team.guard_rejected",
            extra={"team_id": str(auth.team_id), "user_id": str(auth.user_id), "code": code},
        )
        raise TeamError(code, message)
