from __future__ import annotations

from flask import Blueprint, current_app, flash, g, jsonify, redirect, render_template, request, url_for

from app.huddle.db import db_session
from app.huddle.errors import AuthorizationError, NotFoundError, ValidationFailed
from app.huddle.guards import current_user, login_required
from app.huddle.modules.groups.service import get_group, require_leader
from app.huddle.modules.meetings.service import cancel_meeting, create_meeting, get_meeting, meeting_to_dict

bp = Blueprint("meetings", __name__)


@bp.errorhandler(NotFoundError)
def _not_found(e: NotFoundError):
    current_app.logger.info("%s (request_id=%s)", e, getattr(g, "request_id", None))
    return redirect(url_for("groups.index"))


@bp.errorhandler(AuthorizationError)
def _forbidden(e: AuthorizationError):
    current_app.logger.info("%s (request_id=%s)", e, getattr(g, "request_id", None))
    return redirect(url_for("groups.show", group_id=e.entity_id))


@bp.get("/groups/<group_id>/meetings/new")
@login_required
def new(group_id: str):
    s = db_session()
    group = get_group(s, group_id)
    require_leader(s, group, current_user(), "schedule meetings for")
    return render_template("meetings/new.html", group=group, form={}, errors={})


@bp.post("/groups/<group_id>/meetings")
@login_required
def create(group_id: str):
    s = db_session()
    u = current_user()
    group = get_group(s, group_id)
    require_leader(s, group, u, "schedule meetings for")

    if request.is_json:
        body = request.get_json(silent=True)
        raw = body.get("meeting") if isinstance(body, dict) else None
        payload = {k: str(v) for k, v in raw.items() if v is not None} if isinstance(raw, dict) else {}
    else:
        payload = {
            "title": request.form.get("title"),
            "starts_at": request.form.get("starts_at"),
            "location": request.form.get("location"),
            "notes": request.form.get("notes"),
        }

    try:
        meeting = create_meeting(s, group, payload, u)
    except ValidationFailed as e:
        if request.is_json:
            return jsonify(e.errors), 422
        return render_template("meetings/new.html", group=group, form=payload, errors=e.errors), 422
    s.commit()

    if request.is_json:
        return jsonify(meeting_to_dict(meeting)), 201
    flash("Meeting scheduled.", "success")
    return redirect(url_for("groups.show", group_id=group.id))


@bp.post("/groups/<group_id>/meetings/<meeting_id>/delete")
@login_required
def cancel(group_id: str, meeting_id: str):
    s = db_session()
    u = current_user()
    group = get_group(s, group_id)
    require_leader(s, group, u, "cancel meetings for")
    meeting = get_meeting(s, group, meeting_id)

    cancel_meeting(s, meeting, u)
    s.commit()

    flash("Meeting cancelled.", "success")
    return redirect(url_for("groups.show", group_id=group.id))
