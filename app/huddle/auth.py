from __future__ import annotations

import uuid
from collections import defaultdict
from datetime import datetime, timedelta

from flask import Blueprint, current_app, flash, g, redirect, render_template, request, session, url_for
from werkzeug.security import check_password_hash, generate_password_hash

from app.huddle.audit import record_event
from app.huddle.db import db_session
from app.huddle.models import User

bp = Blueprint("auth", __name__)
_login_attempts: dict[str, list[datetime]] = defaultdict(list)
_LOGIN_RATE_LIMIT = 5
_LOGIN_RATE_WINDOW = 300  # seconds
_MIN_PASSWORD_LENGTH = 8


def _check_rate_limit(ip: str) -> bool:
    now = datetime.utcnow()
    cutoff = now - timedelta(seconds=_LOGIN_RATE_WINDOW)
    _login_attempts[ip] = [t for t in _login_attempts[ip] if t > cutoff]
    return len(_login_attempts[ip]) >= _LOGIN_RATE_LIMIT


def _record_attempt(ip: str) -> None:
    _login_attempts[ip].append(datetime.utcnow())


def _safe_next(nxt: str) -> str | None:
    # Only local paths, to avoid open redirects.
    if nxt.startswith("/") and not nxt.startswith("//"):
        return nxt
    return None


def load_current_user() -> None:
    """
    Loads g.current_user from the signed session cookie.
    Also assigns a simple per-request request_id (for audit/log correlation).
    """
    if not getattr(g, "request_id", None):
        g.request_id = uuid.uuid4().hex

    user_id = session.get("user_id")
    if not user_id:
        g.current_user = None
        return

    s = db_session()
    user = s.get(User, int(user_id))
    if not user or not user.is_active:
        session.pop("user_id", None)
        g.current_user = None
        return
    g.current_user = user


@bp.get("/login")
def login_get():
    nxt = (request.args.get("next") or "").strip()
    return render_template("auth/login.html", next=nxt)


@bp.post("/login")
def login_post():
    email = (request.form.get("email") or "").strip().lower()
    password = request.form.get("password") or ""
    nxt = (request.form.get("next") or "").strip()
    ip = request.remote_addr or "unknown"

    if _check_rate_limit(ip):
        flash("Too many login attempts. Please wait 5 minutes.", "danger")
        return redirect(url_for("auth.login_get"))

    _record_attempt(ip)

    s = db_session()
    user = s.query(User).filter(User.email == email).one_or_none()
    if not user or not user.is_active or not check_password_hash(user.password_hash, password):
        record_event(
            s,
            actor=None,
            action="auth.login_failed",
            entity_type="User",
            entity_id=email,
            reason="Invalid credentials",
            metadata={"email": email},
        )
        s.commit()
        current_app.logger.info("Failed sign-in for %s (request_id=%s)", email, getattr(g, "request_id", None))
        flash("Invalid email or password.", "danger")
        return redirect(url_for("auth.login_get", next=nxt or None))

    session["user_id"] = user.id
    _login_attempts[ip].clear()
    record_event(s, actor=user, action="auth.login", entity_type="User", entity_id=str(user.id))
    s.commit()
    return redirect(_safe_next(nxt) or url_for("groups.index"))


@bp.get("/logout")
def logout():
    s = db_session()
    user = getattr(g, "current_user", None)
    if user:
        record_event(s, actor=user, action="auth.logout", entity_type="User", entity_id=str(user.id))
        s.commit()
    session.pop("user_id", None)
    return redirect(url_for("auth.login_get"))


@bp.get("/register")
def register_get():
    return render_template("auth/register.html", errors={}, form={})


@bp.post("/register")
def register_post():
    s = db_session()
    form = {
        "email": (request.form.get("email") or "").strip().lower(),
        "name": (request.form.get("name") or "").strip(),
    }
    password = request.form.get("password") or ""

    errors: dict[str, list[str]] = {}
    if not form["email"] or "@" not in form["email"]:
        errors["email"] = ["is invalid"]
    elif s.query(User).filter(User.email == form["email"]).one_or_none():
        errors["email"] = ["has already been taken"]
    if len(password) < _MIN_PASSWORD_LENGTH:
        errors["password"] = [f"is too short (minimum is {_MIN_PASSWORD_LENGTH} characters)"]
    if errors:
        return render_template("auth/register.html", errors=errors, form=form), 422

    user = User(
        email=form["email"],
        name=form["name"] or None,
        password_hash=generate_password_hash(password),
        is_active=True,
    )
    s.add(user)
    s.flush()
    record_event(s, actor=user, action="auth.register", entity_type="User", entity_id=str(user.id))
    s.commit()

    session["user_id"] = user.id
    flash("Welcome! Your account has been created.", "success")
    return redirect(url_for("groups.index"))
