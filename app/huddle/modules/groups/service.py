from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, Any

from app.huddle.audit import record_event
from app.huddle.errors import BLANK, MAX_ID, AuthorizationError, NotFoundError, ValidationFailed, too_long

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.huddle.models import User
    from app.huddle.modules.groups.models import Group, GroupMember
    from app.huddle.modules.meetings.models import Meeting


REQUIRED_FIELDS = ("name", "description")
MAX_LENGTHS = {"name": 255}


def _is_blank(value: Any) -> bool:
    return value is None or not str(value).strip()


def _to_id(raw: Any) -> int | None:
    try:
        value = int(str(raw).strip())
    except ValueError:
        return None
    if value < 1 or value > MAX_ID:
        return None
    return value


def parse_id(raw: Any, entity_type: str) -> int:
    """Turn a URL id segment into a row id; anything that cannot name a row is not found."""
    value = _to_id(raw)
    if value is None:
        raise NotFoundError(entity_type, raw)
    return value


def validate_group_payload(payload: dict, *, partial: bool = False) -> dict[str, list[str]]:
    """
    Validate group attributes. Returns field -> [messages], empty when valid.

    With partial=True only the keys present in payload are checked (update);
    otherwise every required field must be present and non-blank (create).
    """
    errors: dict[str, list[str]] = {}
    for field in REQUIRED_FIELDS:
        if partial and field not in payload:
            continue
        if _is_blank(payload.get(field)):
            errors.setdefault(field, []).append(BLANK)
        elif field in MAX_LENGTHS and len(str(payload[field]).strip()) > MAX_LENGTHS[field]:
            errors.setdefault(field, []).append(too_long(MAX_LENGTHS[field]))
    return errors


def parse_leader_ids(raw: Any) -> list[int]:
    """Normalise the `leader` param (scalar or list) into user ids; junk and out-of-range entries are dropped."""
    if raw is None:
        return []
    if not isinstance(raw, (list, tuple)):
        raw = [raw]
    ids: list[int] = []
    for item in raw:
        value = _to_id(item)
        if value is not None:
            ids.append(value)
    return ids


# ---------- Queries ----------
def groups_for_user(s: "Session", user: "User") -> list["Group"]:
    """Groups the user has a membership row in."""
    from app.huddle.modules.groups.models import Group, GroupMember

    return (
        s.query(Group)
        .join(GroupMember, GroupMember.group_id == Group.id)
        .filter(GroupMember.user_id == user.id)
        .order_by(Group.id.asc())
        .all()
    )


def get_group(s: "Session", group_id: Any) -> "Group":
    from app.huddle.modules.groups.models import Group

    group = s.get(Group, parse_id(group_id, "Group"))
    if not group:
        raise NotFoundError("Group", group_id)
    return group


def membership(s: "Session", group: "Group", user: "User") -> "GroupMember | None":
    from app.huddle.modules.groups.models import GroupMember

    return (
        s.query(GroupMember)
        .filter(GroupMember.group_id == group.id)
        .filter(GroupMember.user_id == user.id)
        .one_or_none()
    )


def is_leader(s: "Session", group: "Group", user: "User") -> bool:
    m = membership(s, group, user)
    return bool(m and m.leader)


def require_leader(s: "Session", group: "Group", user: "User", action: str) -> None:
    if not is_leader(s, group, user):
        raise AuthorizationError(action, "Group", group.id)


def meetings_for(s: "Session", group: "Group") -> list["Meeting"]:
    from app.huddle.modules.meetings.models import Meeting

    return (
        s.query(Meeting)
        .filter(Meeting.group_id == group.id)
        .order_by(Meeting.starts_at.asc(), Meeting.id.asc())
        .all()
    )


# ---------- Mutations ----------
def create_group(s: "Session", payload: dict, user: "User") -> "Group":
    """Create a group with the creator as its first leader."""
    from app.huddle.modules.groups.models import Group, GroupMember

    errors = validate_group_payload(payload)
    if errors:
        raise ValidationFailed(errors)

    now = datetime.utcnow()
    group = Group(
        name=str(payload["name"]).strip(),
        description=str(payload["description"]).strip(),
        created_at=now,
        updated_at=now,
        created_by_user_id=user.id,
    )
    group.group_members.append(GroupMember(user_id=user.id, leader=True, joined_at=now))
    s.add(group)
    s.flush()

    record_event(
        s,
        actor=user,
        action="group.create",
        entity_type="Group",
        entity_id=str(group.id),
        metadata={"name": group.name},
    )
    return group


def update_group(s: "Session", group: "Group", payload: dict, user: "User") -> "Group":
    """
    Apply a partial update. Nothing is written unless every present field is valid.
    """
    errors = validate_group_payload(payload, partial=True)
    if errors:
        raise ValidationFailed(errors)

    changes: dict[str, Any] = {}
    for field in REQUIRED_FIELDS:
        if field not in payload:
            continue
        new_value = str(payload[field]).strip()
        old_value = getattr(group, field)
        if new_value != old_value:
            changes[field] = {"old": old_value, "new": new_value}
            setattr(group, field, new_value)

    if "leader" in payload:
        promoted = promote_leaders(s, group, parse_leader_ids(payload["leader"]))
        if promoted:
            changes["leader"] = {"promoted_user_ids": promoted}

    group.updated_at = datetime.utcnow()

    record_event(
        s,
        actor=user,
        action="group.edit",
        entity_type="Group",
        entity_id=str(group.id),
        metadata={"name": group.name, "changes": changes},
    )
    return group


def promote_leaders(s: "Session", group: "Group", user_ids: list[int]) -> list[int]:
    """Mark the listed members as leaders. Returns the user ids that changed."""
    from app.huddle.modules.groups.models import GroupMember

    if not user_ids:
        return []
    members = (
        s.query(GroupMember)
        .filter(GroupMember.group_id == group.id)
        .filter(GroupMember.user_id.in_(user_ids))
        .all()
    )
    promoted = []
    for m in members:
        if not m.leader:
            m.leader = True
            promoted.append(m.user_id)
    return sorted(promoted)


def delete_group(s: "Session", group: "Group", user: "User") -> None:
    """Delete a group; members and meetings go with it."""
    group_id = group.id
    name = group.name
    s.delete(group)
    s.flush()

    record_event(
        s,
        actor=user,
        action="group.delete",
        entity_type="Group",
        entity_id=str(group_id),
        metadata={"name": name},
    )


def join_group(s: "Session", group: "Group", user: "User") -> "GroupMember":
    """Add the user as a regular member. Joining twice is a no-op."""
    from app.huddle.modules.groups.models import GroupMember

    existing = membership(s, group, user)
    if existing:
        return existing

    member = GroupMember(group_id=group.id, user_id=user.id, leader=False)
    s.add(member)
    s.flush()

    record_event(
        s,
        actor=user,
        action="group.join",
        entity_type="Group",
        entity_id=str(group.id),
        metadata={"user_id": user.id},
    )
    return member


def leave_group(s: "Session", group: "Group", user: "User") -> None:
    """Drop the user's membership. The last leader cannot leave while others remain."""
    from app.huddle.modules.groups.models import GroupMember

    member = membership(s, group, user)
    if not member:
        return

    if member.leader:
        others = s.query(GroupMember).filter(GroupMember.group_id == group.id, GroupMember.id != member.id)
        other_leaders = others.filter(GroupMember.leader.is_(True)).count()
        if others.count() and not other_leaders:
            raise ValidationFailed({"leader": ["must be handed to another member before the last leader leaves"]})

    s.delete(member)
    s.flush()

    record_event(
        s,
        actor=user,
        action="group.leave",
        entity_type="Group",
        entity_id=str(group.id),
        metadata={"user_id": user.id, "was_leader": member.leader},
    )


# ---------- Serialisation ----------
def member_to_dict(m: "GroupMember") -> dict:
    return {"id": m.id, "user_id": m.user_id, "leader": m.leader}


def group_to_dict(group: "Group", meetings: list["Meeting"] | None = None) -> dict:
    from app.huddle.modules.meetings.service import meeting_to_dict

    data = {
        "id": group.id,
        "name": group.name,
        "description": group.description,
        "created_at": group.created_at.isoformat() if group.created_at else None,
        "updated_at": group.updated_at.isoformat() if group.updated_at else None,
        "members": [member_to_dict(m) for m in group.group_members],
    }
    if meetings is not None:
        data["meetings"] = [meeting_to_dict(mt) for mt in meetings]
    return data
