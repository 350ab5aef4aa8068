# backend/tests/test_teams.py
from __future__ import annotations

import pytest
from sqlalchemy import select

from app.domain.errors import Forbidden, NotFound, ValidationError
from app.models import AuditEvent
from app.services.team_service import TEAM_ADMIN, TeamService


def test_creator_owns_and_administers_the_team(db, make_actor):
    owner = make_actor("agent")
    svc = TeamService(db)
    team = svc.create(owner, name="  North Shore  ")

    assert team.name == "North Shore"
    assert team.owner_id == owner.id
    members = svc.members(owner, team.id)
    assert [(m.user_id, m.role) for m in members] == [(owner.id, TEAM_ADMIN)]

    audit = db.scalars(select(AuditEvent).where(AuditEvent.entity_id == team.id)).all()
    assert [a.action for a in audit] == ["team_created"]


def test_team_name_is_required(db, make_actor):
    with pytest.raises(ValidationError):
        TeamService(db).create(make_actor("agent"), name=" x ")


def test_only_members_see_a_team(db, make_actor):
    owner, outsider, admin = make_actor("agent"), make_actor("agent"), make_actor("admin")
    svc = TeamService(db)
    team = svc.create(owner, name="Westside")

    with pytest.raises(Forbidden):
        svc.get_for_actor(outsider, team.id)
    assert svc.get_for_actor(admin, team.id).id == team.id
    assert team.id not in {t.id for t in svc.teams_for(outsider)}
    assert team.id in {t.id for t in svc.teams_for(owner)}

    with pytest.raises(NotFound):
        svc.get_for_actor(admin, "missing-team")


def test_membership_management(db, make_actor):
    owner, helper, newcomer = make_actor("agent"), make_actor("agent"), make_actor("customer")
    svc = TeamService(db)
    team = svc.create(owner, name="Eastside")

    svc.add_member(owner, team.id, user_id=helper.id)
    # plain members cannot add people
    with pytest.raises(Forbidden):
        svc.add_member(helper, team.id, user_id=newcomer.id)

    svc.set_member_role(owner, team.id, user_id=helper.id, role="admin")
    svc.add_member(helper, team.id, user_id=newcomer.id)
    assert svc.member_ids(team.id) == {owner.id, helper.id, newcomer.id}

    with pytest.raises(ValidationError):
        svc.add_member(owner, team.id, user_id=newcomer.id)
    with pytest.raises(NotFound):
        svc.add_member(owner, team.id, user_id="no-such-profile")
    with pytest.raises(ValidationError):
        svc.add_member(owner, team.id, user_id=make_actor("agent").id, role="superuser")


def test_owner_cannot_be_removed_or_demoted(db, make_actor):
    owner = make_actor("agent")
    svc = TeamService(db)
    team = svc.create(owner, name="Southside")

    with pytest.raises(ValidationError):
        svc.set_member_role(owner, team.id, user_id=owner.id, role="member")
    with pytest.raises(ValidationError):
        svc.remove_member(owner, team.id, user_id=owner.id)


def test_members_may_leave_but_not_remove_others(db, make_actor):
    owner, a, b = make_actor("agent"), make_actor("agent"), make_actor("agent")
    svc = TeamService(db)
    team = svc.create(owner, name="Central")
    svc.add_member(owner, team.id, user_id=a.id)
    svc.add_member(owner, team.id, user_id=b.id)

    with pytest.raises(Forbidden):
        svc.remove_member(a, team.id, user_id=b.id)
    svc.remove_member(a, team.id, user_id=a.id)
    assert svc.member_ids(team.id) == {owner.id, b.id}


def test_teammates_span_every_shared_team(db, make_actor):
    me, x, y, stranger = make_actor("agent"), make_actor("agent"), make_actor("agent"), make_actor("agent")
    svc = TeamService(db)
    t1 = svc.create(me, name="Team One")
    t2 = svc.create(y, name="Team Two")
    svc.add_member(me, t1.id, user_id=x.id)
    svc.add_member(y, t2.id, user_id=me.id)
    svc.create(stranger, name="Elsewhere")

    assert svc.teammate_ids(me.id) == {me.id, x.id, y.id}


def test_only_the_owner_deletes(db, make_actor):
    owner, helper = make_actor("agent"), make_actor("agent")
    svc = TeamService(db)
    team = svc.create(owner, name="Temporary")
    svc.add_member(owner, team.id, user_id=helper.id, role="admin")

    with pytest.raises(Forbidden):
        svc.delete(helper, team.id)
    svc.delete(owner, team.id)
    with pytest.raises(NotFound):
        svc.get(team.id)
    assert svc.member_ids(team.id) == set()
