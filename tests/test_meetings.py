"""Tests for meeting scheduling inside a group."""
from datetime import datetime

import pytest
from werkzeug.security import generate_password_hash

from app.huddle import create_app
from app.huddle.db import session_scope
from app.huddle.models import Base, User
from app.huddle.modules.groups.models import Group, GroupMember
from app.huddle.modules.meetings.models import Meeting

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


@pytest.fixture()
def group_with_leader_and_member(app):
    with session_scope(app) as s:
        leader = User(email="leader@example.com", password_hash=generate_password_hash("pw"), is_active=True)
        member = User(email="member@example.com", password_hash=generate_password_hash("pw"), is_active=True)
        s.add_all([leader, member])
        s.flush()
        g = Group(name="Hikers", description="Weekend hikes.")
        g.group_members.append(GroupMember(user_id=leader.id, leader=True))
        g.group_members.append(GroupMember(user_id=member.id, leader=False))
        s.add(g)
        s.flush()
        return g.id, leader.id, member.id


def _sign_in(client, user_id):
    with client.session_transaction() as sess:
        sess["user_id"] = user_id
        sess["csrf_token"] = CSRF
    client.environ_base["HTTP_X_CSRF_TOKEN"] = CSRF


def test_leader_schedules_meeting(app, client, group_with_leader_and_member):
    gid, leader_id, _ = group_with_leader_and_member
    _sign_in(client, leader_id)

    r = client.post(
        f"/groups/{gid}/meetings",
        data={"title": "Ridge trail", "starts_at": "2026-11-07T08:30", "location": "North lot"},
    )
    assert r.status_code == 302
    assert r.headers["Location"] == f"/groups/{gid}"

    with session_scope(app) as s:
        m = s.query(Meeting).filter_by(group_id=gid).one()
        assert m.title == "Ridge trail"
        assert m.starts_at == datetime(2026, 11, 7, 8, 30)
        assert m.location == "North lot"
        assert m.created_by_user_id == leader_id


def test_member_cannot_schedule_meeting(app, client, group_with_leader_and_member):
    gid, _, member_id = group_with_leader_and_member
    _sign_in(client, member_id)

    r = client.post(f"/groups/{gid}/meetings", data={"title": "Rogue", "starts_at": "2026-11-07T08:30"})
    assert r.status_code == 302
    assert r.headers["Location"] == f"/groups/{gid}"
    with session_scope(app) as s:
        assert s.query(Meeting).count() == 0


def test_invalid_meeting_returns_422(app, client, group_with_leader_and_member):
    gid, leader_id, _ = group_with_leader_and_member
    _sign_in(client, leader_id)

    r = client.post(f"/groups/{gid}/meetings", json={"meeting": {"title": "", "starts_at": "next tuesday"}})
    assert r.status_code == 422
    assert r.json == {"title": ["can't be blank"], "starts_at": ["is not a valid date and time"]}


def test_new_meeting_form_is_leader_only(client, group_with_leader_and_member):
    gid, leader_id, member_id = group_with_leader_and_member

    _sign_in(client, member_id)
    assert client.get(f"/groups/{gid}/meetings/new").status_code == 302

    _sign_in(client, leader_id)
    assert client.get(f"/groups/{gid}/meetings/new").status_code == 200


def test_leader_cancels_meeting(app, client, group_with_leader_and_member):
    gid, leader_id, _ = group_with_leader_and_member
    with session_scope(app) as s:
        m = Meeting(group_id=gid, title="Lake loop", starts_at=datetime(2026, 11, 14, 9, 0))
        s.add(m)
        s.flush()
        meeting_id = m.id
    _sign_in(client, leader_id)

    r = client.post(f"/groups/{gid}/meetings/{meeting_id}/delete")
    assert r.status_code == 302
    with session_scope(app) as s:
        assert s.get(Meeting, meeting_id) is None


def test_cancel_meeting_of_another_group_redirects_to_index(app, client, group_with_leader_and_member):
    gid, leader_id, _ = group_with_leader_and_member
    with session_scope(app) as s:
        other = Group(name="Other", description="Elsewhere.")
        s.add(other)
        s.flush()
        m = Meeting(group_id=other.id, title="Theirs", starts_at=datetime(2026, 11, 14, 9, 0))
        s.add(m)
        s.flush()
        meeting_id = m.id
    _sign_in(client, leader_id)

    r = client.post(f"/groups/{gid}/meetings/{meeting_id}/delete")
    assert r.status_code == 302
    assert r.headers["Location"] == "/groups"
    with session_scope(app) as s:
        assert s.get(Meeting, meeting_id) is not None


def test_start_time_with_offset_is_stored_as_utc(app, client, group_with_leader_and_member):
    gid, leader_id, _ = group_with_leader_and_member
    _sign_in(client, leader_id)

    r = client.post(f"/groups/{gid}/meetings", json={"meeting": {"title": "Sunrise", "starts_at": "2026-11-07T10:00+02:00"}})
    assert r.status_code == 201
    assert r.json["starts_at"] == "2026-11-07T08:00:00"
    with session_scope(app) as s:
        m = s.query(Meeting).filter_by(group_id=gid).one()
        assert m.starts_at == datetime(2026, 11, 7, 8, 0)
        assert m.starts_at.tzinfo is None


def test_overlong_title_and_location_return_422(app, client, group_with_leader_and_member):
    gid, leader_id, _ = group_with_leader_and_member
    _sign_in(client, leader_id)

    r = client.post(
        f"/groups/{gid}/meetings",
        json={"meeting": {"title": "t" * 256, "starts_at": "2026-11-07T08:30", "location": "l" * 256}},
    )
    assert r.status_code == 422
    assert r.json == {
        "title": ["is too long (maximum is 255 characters)"],
        "location": ["is too long (maximum is 255 characters)"],
    }
    with session_scope(app) as s:
        assert s.query(Meeting).count() == 0


def test_cancel_with_malformed_meeting_id_redirects_to_index(client, group_with_leader_and_member):
    gid, leader_id, _ = group_with_leader_and_member
    _sign_in(client, leader_id)

    r = client.post(f"/groups/{gid}/meetings/abc/delete")
    assert r.status_code == 302
    assert r.headers["Location"] == "/groups"


def test_malformed_group_id_requires_sign_in_before_lookup(client):
    r = client.get("/groups/abc/meetings/new")
    assert r.status_code == 302
    assert r.headers["Location"].startswith("/auth/login")
