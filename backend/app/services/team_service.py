# backend/app/services/team_service.py
from __future__ import annotations

import logging
from datetime import datetime
from typing import Optional, Sequence

from sqlalchemy import select
from sqlalchemy.orm import Session

from ..domain.audit import audit_write
from ..domain.errors import Forbidden, NotFound, ValidationError
from ..domain.lifecycle import Actor, Role
from ..models import Profile, Team, TeamMember

log = logging.getLogger(__name__)

TEAM_MEMBER = "member"
TEAM_ADMIN = "admin"
TEAM_ROLES = (TEAM_MEMBER, TEAM_ADMIN)


def team_dict(team: Team) -> dict:
    return {"id": team.id, "name": team.name, "owner_id": team.owner_id}


class TeamService:
    """
    Teams group profiles so members can see each other's properties.

    The creator owns the team and is its first admin member. Platform
    admins, the owner and team admins manage membership; the owner can be
    neither removed nor demoted.
    """

    def __init__(self, db: Session):
        self.db = db

    # ---- reads ----
    def get(self, team_id: str) -> Team:
        team = self.db.get(Team, str(team_id))
        if team is None:
            raise NotFound("team not found", details={"team_id": str(team_id)})
        return team

    def membership(self, team_id: str, user_id: str) -> Optional[TeamMember]:
        return self.db.scalar(
            select(TeamMember).where(TeamMember.team_id == str(team_id), TeamMember.user_id == str(user_id))
        )

    def get_for_actor(self, actor: Actor, team_id: str) -> Team:
        team = self.get(team_id)
        if actor.role != Role.admin and self.membership(team.id, actor.id) is None:
            raise Forbidden("not a member of this team")
        return team

    def teams_for(self, actor: Actor) -> Sequence[Team]:
        q = select(Team).order_by(Team.created_at.desc(), Team.id)
        if actor.role != Role.admin:
            q = q.join(TeamMember, TeamMember.team_id == Team.id).where(TeamMember.user_id == actor.id)
        return self.db.scalars(q).all()

    def members(self, actor: Actor, team_id: str) -> Sequence[TeamMember]:
        team = self.get_for_actor(actor, team_id)
        return list(team.members)

    def member_ids(self, team_id: str) -> set[str]:
        return set(self.db.scalars(select(TeamMember.user_id).where(TeamMember.team_id == str(team_id))).all())

    def teammate_ids(self, user_id: str) -> set[str]:
        """Everyone sharing at least one team with `user_id`, including themselves."""
        my_teams = select(TeamMember.team_id).where(TeamMember.user_id == str(user_id))
        ids = set(self.db.scalars(select(TeamMember.user_id).where(TeamMember.team_id.in_(my_teams))).all())
        ids.add(str(user_id))
        return ids

    # ---- writes ----
    def create(self, actor: Actor, *, name: Optional[str]) -> Team:
        clean = _team_name(name)
        now = datetime.utcnow()
        team = Team(name=clean, owner_id=actor.id, created_at=now, updated_at=now)
        self.db.add(team)
        self.db.flush()
        self.db.add(TeamMember(team_id=team.id, user_id=actor.id, role=TEAM_ADMIN, created_at=now, updated_at=now))
        audit_write(
            self.db,
            actor_id=actor.id,
            action="team_created",
            entity_type="team",
            entity_id=team.id,
            after=team_dict(team),
        )
        self.db.commit()
        log.info("team created", extra={"user_id": actor.id})
        return team

    def rename(self, actor: Actor, team_id: str, *, name: Optional[str]) -> Team:
        team = self._manageable(actor, team_id)
        before = team_dict(team)
        team.name = _team_name(name)
        team.updated_at = datetime.utcnow()
        audit_write(
            self.db,
            actor_id=actor.id,
            action="team_renamed",
            entity_type="team",
            entity_id=team.id,
            before=before,
            after=team_dict(team),
        )
        self.db.commit()
        return team

    def delete(self, actor: Actor, team_id: str) -> None:
        team = self.get(team_id)
        if actor.role != Role.admin and team.owner_id != actor.id:
            raise Forbidden("only the team owner deletes a team")
        before = team_dict(team)
        self.db.delete(team)
        audit_write(
            self.db,
            actor_id=actor.id,
            action="team_deleted",
            entity_type="team",
            entity_id=before["id"],
            before=before,
        )
        self.db.commit()

    def add_member(self, actor: Actor, team_id: str, *, user_id: str, role: str = TEAM_MEMBER) -> TeamMember:
        team = self._manageable(actor, team_id)
        role = _team_role(role)
        if self.db.get(Profile, str(user_id)) is None:
            raise NotFound("profile not found", details={"user_id": str(user_id)})
        if self.membership(team.id, user_id) is not None:
            raise ValidationError("user is already a member of this team", details={"user_id": str(user_id)})

        now = datetime.utcnow()
        member = TeamMember(team_id=team.id, user_id=str(user_id), role=role, created_at=now, updated_at=now)
        self.db.add(member)
        audit_write(
            self.db,
            actor_id=actor.id,
            action="team_member_added",
            entity_type="team",
            entity_id=team.id,
            after={"user_id": str(user_id), "role": role},
        )
        self.db.commit()
        return member

    def set_member_role(self, actor: Actor, team_id: str, *, user_id: str, role: str) -> TeamMember:
        team = self._manageable(actor, team_id)
        role = _team_role(role)
        member = self._member(team, user_id)
        if member.user_id == team.owner_id and role != TEAM_ADMIN:
            raise ValidationError("the team owner stays a team admin")

        before = {"user_id": member.user_id, "role": member.role}
        member.role = role
        member.updated_at = datetime.utcnow()
        audit_write(
            self.db,
            actor_id=actor.id,
            action="team_member_role_changed",
            entity_type="team",
            entity_id=team.id,
            before=before,
            after={"user_id": member.user_id, "role": role},
        )
        self.db.commit()
        return member

    def remove_member(self, actor: Actor, team_id: str, *, user_id: str) -> None:
        team = self.get(team_id)
        # members may always leave on their own
        if str(user_id) != actor.id:
            self._manageable(actor, team.id)
        member = self._member(team, user_id)
        if member.user_id == team.owner_id:
            raise ValidationError("the team owner cannot be removed")

        self.db.delete(member)
        audit_write(
            self.db,
            actor_id=actor.id,
            action="team_member_removed",
            entity_type="team",
            entity_id=team.id,
            before={"user_id": member.user_id, "role": member.role},
        )
        self.db.commit()

    # ---- helpers ----
    def _member(self, team: Team, user_id: str) -> TeamMember:
        member = self.membership(team.id, user_id)
        if member is None:
            raise NotFound("team member not found", details={"team_id": team.id, "user_id": str(user_id)})
        return member

    def _manageable(self, actor: Actor, team_id: str) -> Team:
        team = self.get(team_id)
        if actor.role == Role.admin or team.owner_id == actor.id:
            return team
        me = self.membership(team.id, actor.id)
        if me is None or me.role != TEAM_ADMIN:
            log.warning("team management rejected", extra={"user_id": actor.id, "role": actor.role.value})
            raise Forbidden("only team admins manage this team")
        return team


def _team_name(name: Optional[str]) -> str:
    clean = (name or "").strip()
    if len(clean) < 2:
        raise ValidationError("team name must be at least 2 characters", details={"field": "name"})
    return clean


def _team_role(role: Optional[str]) -> str:
    r = (role or TEAM_MEMBER).strip().lower()
    if r not in TEAM_ROLES:
        raise ValidationError(f"unknown team role: {role}", details={"allowed": list(TEAM_ROLES)})
    return r
