"""Tests for joining and leaving groups."""
import pytest
from werkzeug.security import generate_password_hash

from app.huddle import create_app
from app.huddle.db import session_scope
from app.huddle.models import Base, User
from app.huddle.modules.groups.models import Group, GroupMember

CSRF = "test-csrf-token"


@pytest.fixture()
def app(tmp_path, monkeypatch):
    monkeypatch.setenv("SECRET_KEY", "test-secret")
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path/'test.db'}")
    monkeypatch.setenv("ENV", "test")

    app = create_app()
    Base.metadata.create_all(bind=app.extensions["sqlalchemy_engine"])
    return app


@pytest.fixture()
def client(app):
    return app.test_client()


def _seed(app, *, leader=True):
    with session_scope(app) as s:
        owner = User(email="owner@example.com", password_hash=generate_password_hash("pw"), is_active=True)
        guest = User(email="guest@example.com", password_hash=generate_password_hash("pw"), is_active=True)
        s.add_all([owner, guest])
        s.flush()
        g = Group(name="Choir", description="Tuesday rehearsals.")
        g.group_members.append(GroupMember(user_id=owner.id, leader=leader))
        s.add(g)
        s.flush()
        return g.id, owner.id, guest.id


def _sign_in(client, user_id):
    with client.session_transaction() as sess:
        sess["user_id"] = user_id
        sess["csrf_token"] = CSRF
    client.environ_base["HTTP_X_CSRF_TOKEN"] = CSRF


def _members(app, gid):
    with session_scope(app) as s:
        return {m.user_id: m.leader for m in s.query(GroupMember).filter_by(group_id=gid)}


def test_join_adds_regular_member_once(app, client):
    gid, owner, guest = _seed(app)
    _sign_in(client, guest)

    assert client.post(f"/groups/{gid}/join").status_code == 302
    assert client.post(f"/groups/{gid}/join").status_code == 302

    assert _members(app, gid) == {owner: True, guest: False}


def test_joined_group_shows_up_in_index(app, client):
    gid, _, guest = _seed(app)
    _sign_in(client, guest)
    client.post(f"/groups/{gid}/join")

    r = client.get("/groups?format=json")
    assert [g["id"] for g in r.json] == [gid]


def test_member_can_leave(app, client):
    gid, owner, guest = _seed(app)
    _sign_in(client, guest)
    client.post(f"/groups/{gid}/join")

    r = client.post(f"/groups/{gid}/leave")
    assert r.status_code == 302
    assert r.headers["Location"] == "/groups"
    assert _members(app, gid) == {owner: True}


def test_last_leader_cannot_leave_while_others_remain(app, client):
    gid, owner, guest = _seed(app)
    _sign_in(client, guest)
    client.post(f"/groups/{gid}/join")

    _sign_in(client, owner)
    r = client.post(f"/groups/{gid}/leave")
    assert r.status_code == 302
    assert r.headers["Location"] == f"/groups/{gid}"
    assert _members(app, gid) == {owner: True, guest: False}


def test_sole_leader_can_leave_empty_group(app, client):
    gid, owner, _ = _seed(app)
    _sign_in(client, owner)

    client.post(f"/groups/{gid}/leave")
    assert _members(app, gid) == {}
