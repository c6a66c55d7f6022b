from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass

from sqlalchemy import select
from sqlalchemy.orm import Session

from teamcrm.auth.models import AuthSession
from teamcrm.auth.schemas import AcceptInviteRequest, RegisterRequest, UserUpdate
from teamcrm.core.errors import InvalidCredentials, InvalidToken, NotFound, TeamError, Unauthorized, ValidationError
from teamcrm.core.security import (
    TokenClaims,
    create_access_token,
    create_refresh_token,
    hash_password,
    refresh_token_expiry,
    verify_password,
    verify_refresh_token,
)
from teamcrm.teams.models import ROLE_OWNER, Team, User, utcnow
from teamcrm.teams.service import TeamService, normalize_email


logger = logging.getLogger("teamcrm.auth")


@dataclass(frozen=True)
class IssuedTokens:
    access_token: str
    refresh_token: str


def access_claims(user: User) -> TokenClaims:
    return TokenClaims(user_id=str(user.id), team_id=str(user.team_id), role=user.role)


class AuthService:
    def __init__(self, teams: TeamService | None = None) -> None:
        self.teams = teams or TeamService()

    def register(self, session: Session, dto: RegisterRequest) -> tuple[User, IssuedTokens]:
        team = Team(name=dto.team_name)
        session.add(team)
        session.flush()
        user = User(
            team_id=team.id,
            email=normalize_email(dto.email),
            name=dto.name,
            password_hash=hash_password(dto.password),
            role=ROLE_OWNER,
        )
        session.add(user)
        session.flush()
        tokens = self._start_session(session, user)
        session.commit()
        session.refresh(user)
        logger.info("auth.registered", extra={"team_id": str(team.id), "user_id": str(user.id)})
        return user, tokens

    def login(self, session: Session, email: str, password: str) -> tuple[User, IssuedTokens]:
        # Email is unique per team only; the oldest membership that matches the password wins.
        candidates = session.scalars(
            select(User).where(User.email == normalize_email(email)).order_by(User.created_at.asc(), User.id.asc())
        ).all()
        user = next((item for item in candidates if verify_password(password, item.password_hash)), None)
        if user is None:
            logger.info("auth.login_failed")
            raise InvalidCredentials()

        tokens = self._start_session(session, user)
        session.commit()
        return user, tokens

    def refresh(self, session: Session, refresh_token: str | None) -> str:
        if not refresh_token:
            raise Unauthorized("Refresh token required")
        try:
            session_id = uuid.UUID(verify_refresh_token(refresh_token))
        except (InvalidToken, ValueError):
            raise Unauthorized("Invalid or expired refresh token")

        record = session.scalar(
            select(AuthSession).where(AuthSession.id == session_id, AuthSession.expires_at > utcnow())
        )
        if record is None:
            raise Unauthorized("Session expired")
        return create_access_token(access_claims(record.user))

    def logout(self, session: Session, refresh_token: str | None) -> None:
        if not refresh_token:
            return
        try:
            session_id = uuid.UUID(verify_refresh_token(refresh_token))
        except (InvalidToken, ValueError):
            return

        record = session.get(AuthSession, session_id)
        if record is not None:
            session.delete(record)
            session.commit()
            logger.info("auth.session_revoked", extra={"session_id": str(session_id)})

    def invite_details(self, session: Session, token: str) -> dict[str, str]:
        invite = self.teams.find_pending_invite(session, token)
        if invite is None:
            raise TeamError("INVITE_NOT_FOUND", "Invite not found or expired")
        return {"email": invite.email, "team_name": invite.team.name, "role": invite.role}

    def accept_invite(self, session: Session, dto: AcceptInviteRequest) -> tuple[User, IssuedTokens]:
        invite = self.teams.find_pending_invite(session, dto.token)
        if invite is None:
            raise TeamError("INVITE_NOT_FOUND", "Invite not found or expired")
        if self.teams.find_member_by_email(session, invite.team_id, invite.email) is not None:
            raise TeamError("USER_EXISTS", "User is already a member of this team")

        user = User(
            team_id=invite.team_id,
            email=invite.email,
            name=dto.name,
            password_hash=hash_password(dto.password),
            role=invite.role,
        )
        session.add(user)
        invite_id = invite.id
        session.delete(invite)
        session.flush()
        tokens = self._start_session(session, user)
        session.commit()
        session.refresh(user)
        logger.info(
            "team.invite_accepted",
            extra={"team_id": str(user.team_id), "user_id": str(user.id), "invite_id": str(invite_id)},
        )
        return user, tokens

    def get_user(self, session: Session, user_id: uuid.UUID, team_id: uuid.UUID) -> User:
        user = session.scalar(select(User).where(User.id == user_id, User.team_id == team_id))
        if user is None:
            raise NotFound("User not found")
        return user

    def update_user(self, session: Session, user_id: uuid.UUID, team_id: uuid.UUID, dto: UserUpdate) -> User:
        user = self.get_user(session, user_id, team_id)
        changes = dto.model_dump(exclude_unset=True)
        if "email" in changes:
            email = normalize_email(changes["email"])
            other = self.teams.find_member_by_email(session, team_id, email)
            if other is not None and other.id != user.id:
                raise ValidationError("Invalid input", details={"email": ["Email already in use"]})
            user.email = email
        if "name" in changes:
            user.name = changes["name"]
        session.commit()
        session.refresh(user)
        return user

    def _start_session(self, session: Session, user: User) -> IssuedTokens:
        record = AuthSession(user_id=user.id, expires_at=refresh_token_expiry())
        session.add(record)
        session.flush()
        logger.info("auth.session_started", extra={"user_id": str(user.id), "session_id": str(record.id)})
        return IssuedTokens(
            access_token=create_access_token(access_claims(user)),
            refresh_token=create_refresh_token(str(record.id)),
        )
