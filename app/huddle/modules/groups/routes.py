from __future__ import annotations

from flask import Blueprint, current_app, flash, g, jsonify, redirect, render_template, request, url_for

from app.huddle.db import db_session
from app.huddle.errors import AuthorizationError, NotFoundError, ValidationFailed
from app.huddle.guards import current_user, login_required
from app.huddle.modules.groups.service import (
    create_group,
    delete_group,
    get_group,
    group_to_dict,
    groups_for_user,
    join_group,
    leave_group,
    meetings_for,
    membership,
    require_leader,
    update_group,
)

bp = Blueprint("groups", __name__)

_PERMITTED = ("name", "description", "leader")


def _wants_json() -> bool:
    if (request.values.get("format") or "").strip().lower() == "json":
        return True
    return request.is_json


def _group_params() -> dict:
    """
    Permitted group attributes from a JSON body {"group": {...}} or form fields group[...].
    Keys the client did not send are left out so updates stay partial.
    """
    if request.is_json:
        body = request.get_json(silent=True) or {}
        raw = body.get("group") if isinstance(body, dict) else None
        if not isinstance(raw, dict):
            return {}
        return {k: raw[k] for k in _PERMITTED if k in raw}

    params: dict = {}
    for field in ("name", "description"):
        key = f"group[{field}]"
        if key in request.form:
            params[field] = request.form.get(key)
    for key in ("group[leader][]", "group[leader]"):
        if key in request.form:
            params["leader"] = request.form.getlist(key)
            break
    return params


def _log_ctx() -> str:
    return f"request_id={getattr(g, 'request_id', None)}"


@bp.errorhandler(NotFoundError)
def _not_found(e: NotFoundError):
    current_app.logger.info("%s; redirecting to groups index (%s)", e, _log_ctx())
    return redirect(url_for("groups.index"))


@bp.errorhandler(AuthorizationError)
def _forbidden(e: AuthorizationError):
    # Silent denial: no flash message, same redirect as not-found.
    current_app.logger.info("%s; redirecting to groups index (%s)", e, _log_ctx())
    return redirect(url_for("groups.index"))


# ---------- List ----------
@bp.get("/groups")
@login_required
def index():
    s = db_session()
    groups = groups_for_user(s, current_user())
    if _wants_json():
        return jsonify([group_to_dict(gr) for gr in groups])
    return render_template("groups/index.html", groups=groups)


# ---------- New / Create ----------
@bp.get("/groups/new")
@login_required
def new():
    return render_template("groups/new.html", form={}, errors={})


@bp.post("/groups")
@login_required
def create():
    s = db_session()
    u = current_user()
    params = _group_params()

    try:
        group = create_group(s, params, u)
    except ValidationFailed as e:
        if _wants_json():
            return jsonify(e.errors), 422
        return render_template("groups/new.html", form=params, errors=e.errors), 422
    s.commit()

    current_app.logger.info("Group %s created by user %s (%s)", group.id, u.id, _log_ctx())
    if _wants_json():
        resp = jsonify(group_to_dict(group))
        resp.headers["Location"] = url_for("groups.show", group_id=group.id)
        return resp, 201
    flash("Group created.", "success")
    return redirect(url_for("groups.show", group_id=group.id))


# ---------- Detail ----------
@bp.get("/groups/<group_id>")
@login_required
def show(group_id: str):
    s = db_session()
    u = current_user()
    group = get_group(s, group_id)

    member = membership(s, group, u)
    meetings = meetings_for(s, group) if member else None

    if _wants_json():
        return jsonify(group_to_dict(group, meetings=meetings))
    return render_template(
        "groups/show.html",
        group=group,
        meetings=meetings,
        member=member,
        is_leader=bool(member and member.leader),
    )


# ---------- Edit / Update ----------
@bp.get("/groups/<group_id>/edit")
@login_required
def edit(group_id: str):
    s = db_session()
    group = get_group(s, group_id)
    require_leader(s, group, current_user(), "edit")
    return render_template("groups/edit.html", group=group, form={}, errors={})


@bp.route("/groups/<group_id>", methods=["PUT", "PATCH", "POST"])
@login_required
def update(group_id: str):
    s = db_session()
    u = current_user()
    group = get_group(s, group_id)
    if current_app.config.get("GROUPS_LEADER_ONLY_WRITES"):
        require_leader(s, group, u, "update")

    params = _group_params()
    try:
        update_group(s, group, params, u)
    except ValidationFailed as e:
        if _wants_json():
            return jsonify(e.errors), 422
        return render_template("groups/edit.html", group=group, form=params, errors=e.errors), 422
    s.commit()

    current_app.logger.info("Group %s updated by user %s (%s)", group.id, u.id, _log_ctx())
    if _wants_json():
        return jsonify(group_to_dict(group))
    flash("Group updated.", "success")
    return redirect(url_for("groups.show", group_id=group.id))


# ---------- Destroy ----------
@bp.route("/groups/<group_id>", methods=["DELETE"])
@bp.post("/groups/<group_id>/delete")
@login_required
def destroy(group_id: str):
    s = db_session()
    u = current_user()
    group = get_group(s, group_id)
    if current_app.config.get("GROUPS_LEADER_ONLY_WRITES"):
        require_leader(s, group, u, "delete")

    delete_group(s, group, u)
    s.commit()

    current_app.logger.info("Group %s deleted by user %s (%s)", group_id, u.id, _log_ctx())
    flash("Group deleted.", "success")
    return redirect(url_for("groups.index"))


# ---------- Membership ----------
@bp.post("/groups/<group_id>/join")
@login_required
def join(group_id: str):
    s = db_session()
    group = get_group(s, group_id)
    join_group(s, group, current_user())
    s.commit()

    flash(f"You joined {group.name}.", "success")
    return redirect(url_for("groups.show", group_id=group.id))


@bp.post("/groups/<group_id>/leave")
@login_required
def leave(group_id: str):
    s = db_session()
    group = get_group(s, group_id)
    try:
        leave_group(s, group, current_user())
    except ValidationFailed:
        flash("Make another member a leader before you leave.", "danger")
        return redirect(url_for("groups.show", group_id=group.id))
    s.commit()

    flash(f"You left {group.name}.", "success")
    return redirect(url_for("groups.index"))
