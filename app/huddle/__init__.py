import logging
import os
from datetime import timedelta

from flask import Flask, g, jsonify, redirect, render_template, request, session, url_for
from dotenv import load_dotenv

from app.huddle.config import load_config
from app.huddle.db import init_db, teardown_db_session
from app.huddle.errors import AuthenticationRequired
from app.huddle.routes import bp as routes_bp
from app.huddle.auth import bp as auth_bp, load_current_user
from app.huddle.modules.groups.routes import bp as groups_bp
from app.huddle.modules.meetings.routes import bp as meetings_bp

_UNTRACKED_PREFIXES = ("/static/", "/health", "/healthz")


def create_app() -> Flask:
    load_dotenv()
    app = Flask(__name__, template_folder="templates", static_folder="static")
    app.config.from_mapping(load_config())
    app.config["PERMANENT_SESSION_LIFETIME"] = timedelta(hours=8)
    app.config["SESSION_REFRESH_EACH_REQUEST"] = True
    app.logger.setLevel(app.config.get("LOG_LEVEL") or "INFO")

    from app.huddle.security import ensure_csrf_token, validate_csrf

    @app.context_processor
    def _inject_csrf() -> dict:
        return {"csrf_token": ensure_csrf_token()}

    @app.context_processor
    def _inject_current_user() -> dict:
        return {"current_user": getattr(g, "current_user", None)}

    @app.template_filter("datetimeformat")
    def _datetimeformat_filter(value, format: str = "%Y-%m-%d %H:%M") -> str:
        if value is None:
            return "—"
        if hasattr(value, "strftime"):
            return value.strftime(format)
        return str(value)

    @app.before_request
    def _csrf_guard():
        if request.path.startswith(_UNTRACKED_PREFIXES):
            return None
        ensure_csrf_token()
        session.permanent = True
        if request.method in ("POST", "PUT", "PATCH", "DELETE"):
            # Sign-in/sign-up forms are reachable before a session exists.
            if (request.endpoint or "").startswith("auth."):
                return None
            if not validate_csrf(request):
                app.logger.warning("CSRF check failed on %s %s (request_id=%s)", request.method, request.path, getattr(g, "request_id", None))
                if request.is_json:
                    return jsonify({"error": "CSRF token missing or invalid."}), 400
                return render_template("errors/400.html", message="CSRF token missing or invalid."), 400

    # Production guardrails (fail fast with clear logs)
    env = (app.config.get("ENV") or "").strip().lower()
    if env in ("prod", "production"):
        if not os.environ.get("DATABASE_URL"):
            raise RuntimeError("DATABASE_URL is required in production.")
        if str(app.config["DATABASE_URL"]).startswith("sqlite"):
            raise RuntimeError("DATABASE_URL must be Postgres in production (not sqlite).")
        if not app.config.get("SECRET_KEY") or str(app.config["SECRET_KEY"]) in ("", "change-me"):
            raise RuntimeError("SECRET_KEY must be set to a strong value in production (not default).")

    init_db(app)

    if hasattr(os, "register_at_fork"):
        def _after_fork_child():
            engine = app.extensions.get("sqlalchemy_engine")
            if engine:
                engine.dispose()
                app.logger.info("Disposed DB engine after fork (pid=%s)", os.getpid())

        os.register_at_fork(after_in_child=_after_fork_child)

    app.register_blueprint(routes_bp)
    app.register_blueprint(auth_bp, url_prefix="/auth")
    app.register_blueprint(groups_bp)
    app.register_blueprint(meetings_bp)

    # Runs ahead of the CSRF guard so g.request_id is set for its log line.
    def _load_user_wrapper():
        if request.path.startswith(_UNTRACKED_PREFIXES):
            g.current_user = None
            return None
        return load_current_user()

    app.before_request_funcs.setdefault(None, []).insert(0, _load_user_wrapper)
    app.teardown_appcontext(teardown_db_session)

    @app.errorhandler(AuthenticationRequired)
    def _auth_required(e):  # type: ignore[no-redef]
        nxt = request.full_path or request.path
        # Avoid trailing '?' from full_path when there is no query string.
        if nxt.endswith("?"):
            nxt = nxt[:-1]
        return redirect(url_for("auth.login_get", next=nxt))

    @app.errorhandler(404)
    def _err_404(e):  # type: ignore[no-redef]
        if request.is_json:
            return jsonify({"error": "Not found."}), 404
        return render_template("errors/404.html"), 404

    @app.errorhandler(500)
    def _err_500(e):  # type: ignore[no-redef]
        app.logger.exception("Unhandled 500 (request_id=%s)", getattr(g, "request_id", None))
        return render_template("errors/500.html"), 500

    logging.getLogger(__name__).info("create_app() complete; app ready to serve")

    return app
