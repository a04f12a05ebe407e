from __future__ import annotations

from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any

from app.huddle.audit import record_event
from app.huddle.errors import BLANK, NotFoundError, ValidationFailed, too_long
from app.huddle.modules.groups.service import parse_id

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.huddle.models import User
    from app.huddle.modules.groups.models import Group
    from app.huddle.modules.meetings.models import Meeting


MAX_LENGTH = 255


def parse_datetime(s: str | None) -> datetime | None:
    """
    Parse an ISO datetime as sent by <input type="datetime-local"> (YYYY-MM-DDTHH:MM).

    Values with a UTC offset are converted to naive UTC, the form every
    timestamp column stores.
    """
    if not s:
        return None
    s = s.strip()
    if not s:
        return None
    value = datetime.fromisoformat(s)
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def validate_meeting_payload(payload: dict) -> dict[str, list[str]]:
    errors: dict[str, list[str]] = {}
    title = (payload.get("title") or "").strip()
    if not title:
        errors["title"] = [BLANK]
    elif len(title) > MAX_LENGTH:
        errors["title"] = [too_long(MAX_LENGTH)]
    if len((payload.get("location") or "").strip()) > MAX_LENGTH:
        errors["location"] = [too_long(MAX_LENGTH)]
    raw_start = (payload.get("starts_at") or "").strip()
    if not raw_start:
        errors["starts_at"] = [BLANK]
    else:
        try:
            parse_datetime(raw_start)
        except ValueError:
            errors["starts_at"] = ["is not a valid date and time"]
    return errors


def get_meeting(s: "Session", group: "Group", meeting_id: Any) -> "Meeting":
    from app.huddle.modules.meetings.models import Meeting

    meeting = s.get(Meeting, parse_id(meeting_id, "Meeting"))
    if not meeting or meeting.group_id != group.id:
        raise NotFoundError("Meeting", meeting_id)
    return meeting


def create_meeting(s: "Session", group: "Group", payload: dict, user: "User") -> "Meeting":
    """Schedule a meeting for the group. Callers check leadership first."""
    from app.huddle.modules.meetings.models import Meeting

    errors = validate_meeting_payload(payload)
    if errors:
        raise ValidationFailed(errors)

    meeting = Meeting(
        group_id=group.id,
        title=payload["title"].strip(),
        starts_at=parse_datetime(payload["starts_at"]),
        location=(payload.get("location") or "").strip() or None,
        notes=(payload.get("notes") or "").strip() or None,
        created_by_user_id=user.id,
    )
    s.add(meeting)
    s.flush()

    record_event(
        s,
        actor=user,
        action="meeting.create",
        entity_type="Meeting",
        entity_id=str(meeting.id),
        metadata={"group_id": group.id, "title": meeting.title, "starts_at": meeting.starts_at.isoformat()},
    )
    return meeting


def cancel_meeting(s: "Session", meeting: "Meeting", user: "User") -> None:
    meeting_id = meeting.id
    group_id = meeting.group_id
    title = meeting.title
    s.delete(meeting)
    s.flush()

    record_event(
        s,
        actor=user,
        action="meeting.cancel",
        entity_type="Meeting",
        entity_id=str(meeting_id),
        metadata={"group_id": group_id, "title": title},
    )


def meeting_to_dict(m: "Meeting") -> dict:
    return {
        "id": m.id,
        "group_id": m.group_id,
        "title": m.title,
        "starts_at": m.starts_at.isoformat() if m.starts_at else None,
        "location": m.location,
        "notes": m.notes,
    }
