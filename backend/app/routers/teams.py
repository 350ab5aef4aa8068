# backend/app/routers/teams.py
from __future__ import annotations

from fastapi import APIRouter, Depends

from ..auth import Principal, get_principal
from ..deps import get_properties, get_teams
from ..schemas import PropertyOut, TeamIn, TeamMemberIn, TeamMemberOut, TeamMemberRoleIn, TeamOut
from ..services.property_service import PropertyService
from ..services.team_service import TeamService

router = APIRouter(prefix="/teams", tags=["teams"])


@router.post("", response_model=TeamOut, status_code=201)
def create_team(payload: TeamIn, p: Principal = Depends(get_principal), svc: TeamService = Depends(get_teams)):
    return svc.create(p.actor, name=payload.name)


@router.get("", response_model=list[TeamOut])
def list_teams(p: Principal = Depends(get_principal), svc: TeamService = Depends(get_teams)):
    return list(svc.teams_for(p.actor))


@router.get("/{team_id}", response_model=TeamOut)
def get_team(team_id: str, p: Principal = Depends(get_principal), svc: TeamService = Depends(get_teams)):
    return svc.get_for_actor(p.actor, team_id)


@router.patch("/{team_id}", response_model=TeamOut)
def rename_team(
    team_id: str,
    payload: TeamIn,
    p: Principal = Depends(get_principal),
    svc: TeamService = Depends(get_teams),
):
    return svc.rename(p.actor, team_id, name=payload.name)


@router.delete("/{team_id}")
def delete_team(team_id: str, p: Principal = Depends(get_principal), svc: TeamService = Depends(get_teams)):
    svc.delete(p.actor, team_id)
    return {"ok": True}


# ---- members ----
@router.get("/{team_id}/members", response_model=list[TeamMemberOut])
def list_members(team_id: str, p: Principal = Depends(get_principal), svc: TeamService = Depends(get_teams)):
    return list(svc.members(p.actor, team_id))


@router.post("/{team_id}/members", response_model=TeamMemberOut, status_code=201)
def add_member(
    team_id: str,
    payload: TeamMemberIn,
    p: Principal = Depends(get_principal),
    svc: TeamService = Depends(get_teams),
):
    return svc.add_member(p.actor, team_id, user_id=payload.user_id, role=payload.role)


@router.patch("/{team_id}/members/{user_id}", response_model=TeamMemberOut)
def set_member_role(
    team_id: str,
    user_id: str,
    payload: TeamMemberRoleIn,
    p: Principal = Depends(get_principal),
    svc: TeamService = Depends(get_teams),
):
    return svc.set_member_role(p.actor, team_id, user_id=user_id, role=payload.role)


@router.delete("/{team_id}/members/{user_id}")
def remove_member(
    team_id: str,
    user_id: str,
    p: Principal = Depends(get_principal),
    svc: TeamService = Depends(get_teams),
):
    svc.remove_member(p.actor, team_id, user_id=user_id)
    return {"ok": True}


@router.get("/{team_id}/properties", response_model=list[PropertyOut])
def team_properties(
    team_id: str,
    p: Principal = Depends(get_principal),
    svc: PropertyService = Depends(get_properties),
):
    return list(svc.team_properties(p.actor, team_id))
