from flask import Blueprint, g, redirect, url_for

bp = Blueprint("routes", __name__)


@bp.get("/")
def index():
    if getattr(g, "current_user", None):
        return redirect(url_for("groups.index"))
    return redirect(url_for("auth.login_get"))


@bp.get("/health")
def health():
    """Health check endpoint. Returns JSON."""
    return {"ok": True}


@bp.get("/healthz")
def healthz():
    """Fast liveness probe. No DB access."""
    return "ok", 200
