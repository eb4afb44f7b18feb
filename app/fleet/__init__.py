import logging
from datetime import timedelta

from dotenv import load_dotenv
from flask import Flask, g, jsonify, render_template, request, session

from app.fleet.config import load_config
from app.fleet.db import init_db, teardown_db_session
from app.fleet.routes import bp as routes_bp
from app.fleet.auth import bp as auth_bp, load_current_user
from app.fleet.admin import bp as dashboard_bp
from app.fleet.modules.vehicles.admin import bp as vehicles_bp
from app.fleet.modules.vehicles.api import bp as vehicles_api_bp
from app.fleet.modules.vehicle_groups.admin import bp as vehicle_groups_bp
from app.fleet.modules.vehicle_groups.api import bp as vehicle_groups_api_bp
from app.fleet.modules.drivers.admin import bp as drivers_bp
from app.fleet.modules.drivers.api import bp as drivers_api_bp
from app.fleet.modules.inspections.admin import bp as inspections_bp
from app.fleet.modules.inspections.api import bp as inspections_api_bp
from app.fleet.modules.agreements.admin import bp as agreements_bp
from app.fleet.modules.agreements.api import bp as agreements_api_bp
from app.fleet.modules.agreements.public import bp as agreement_signing_bp
from app.fleet.modules.compliance.admin import bp as compliance_bp
from app.fleet.modules.compliance.api import bp as compliance_api_bp
from app.fleet.modules.users.admin import bp as users_bp
from app.fleet.modules.users.api import bp as users_api_bp
from app.fleet.modules.email_config.admin import bp as email_config_bp
from app.fleet.modules.email_config.api import bp as email_config_api_bp
from app.fleet.modules.organizations.api import bp as organizations_api_bp

# Endpoints that accept unsafe methods without a session CSRF token.
# The public signing API is authorized by its signing token instead.
_CSRF_EXEMPT_ENDPOINTS = frozenset({"agreements_api.api_agreement_sign"})

_API_ERROR_MESSAGES = {
    400: "Bad request",
    403: "Insufficient permissions",
    404: "Not found",
    413: "File too large",
    500: "Internal server error",
}


def _is_api_path() -> bool:
    return request.path.startswith("/api/")


def _api_error(status: int):
    return jsonify({"error": _API_ERROR_MESSAGES[status]}), status


def create_app() -> Flask:
    load_dotenv()
    app = Flask(__name__, template_folder="templates", static_folder="static")
    app.config.from_mapping(load_config())
    app.config["PERMANENT_SESSION_LIFETIME"] = timedelta(hours=8)
    app.config["SESSION_REFRESH_EACH_REQUEST"] = True

    # CSRF protection (minimal)
    from app.fleet.security import ensure_csrf_token, validate_csrf

    @app.context_processor
    def _inject_csrf() -> dict:
        return {"csrf_token": ensure_csrf_token()}

    @app.context_processor
    def _inject_permissions() -> dict:
        from app.fleet.rbac import user_has_permission

        def has_perm(key: str) -> bool:
            return user_has_permission(getattr(g, "current_user", None), key)

        return {"has_perm": has_perm}

    @app.template_filter("dateformat")
    def _dateformat_filter(value, format: str = "%Y-%m-%d") -> str:
        if value is None:
            return "-"
        if hasattr(value, "strftime"):
            return value.strftime(format)
        return str(value)

    @app.before_request
    def _csrf_guard():
        if request.path.startswith(("/static/", "/health", "/healthz")):
            return None
        ensure_csrf_token()
        session.permanent = True
        if request.method in ("POST", "PUT", "PATCH", "DELETE"):
            endpoint = request.endpoint or ""
            # Login/logout/password reset run before a session exists.
            if endpoint.startswith("auth.") or endpoint in _CSRF_EXEMPT_ENDPOINTS:
                return None
            if not validate_csrf(request):
                if _is_api_path():
                    return jsonify({"error": "CSRF token missing or invalid"}), 400
                return render_template("errors/400.html", message="CSRF token missing or invalid."), 400
        return None

    # Production guardrails (fail fast with clear logs)
    env = (app.config.get("ENV") or "").strip().lower()
    if env in ("prod", "production"):
        if not app.config.get("DATABASE_URL") or str(app.config["DATABASE_URL"]).strip() == "":
            raise RuntimeError("DATABASE_URL is required in production.")
        if str(app.config["DATABASE_URL"]).startswith("sqlite"):
            raise RuntimeError("DATABASE_URL must be Postgres in production (not sqlite).")
        if not app.config.get("SECRET_KEY") or str(app.config["SECRET_KEY"]) in ("", "change-me"):
            raise RuntimeError("SECRET_KEY must be set to a strong value in production (not default).")
        if not app.config.get("EMAIL_ENCRYPTION_KEY"):
            raise RuntimeError("EMAIL_ENCRYPTION_KEY must be set in production.")

    init_db(app)

    # Storage config check (log loudly on misconfiguration)
    if app.config.get("STORAGE_BACKEND") == "s3":
        missing_s3 = [
            key
            for key in ("S3_ENDPOINT", "S3_BUCKET", "S3_ACCESS_KEY_ID", "S3_SECRET_ACCESS_KEY")
            if not app.config.get(key)
        ]
        if missing_s3:
            app.logger.error("STORAGE CONFIG ERROR: Missing required S3 env vars: %s", ", ".join(missing_s3))
        else:
            app.logger.info("Storage backend: s3 (bucket=%s)", app.config.get("S3_BUCKET"))

    app.register_blueprint(routes_bp)
    app.register_blueprint(auth_bp, url_prefix="/auth")
    app.register_blueprint(agreement_signing_bp)

    # Server-rendered pages
    app.register_blueprint(dashboard_bp, url_prefix="/dashboard")
    app.register_blueprint(vehicles_bp, url_prefix="/dashboard")
    app.register_blueprint(vehicle_groups_bp, url_prefix="/dashboard")
    app.register_blueprint(drivers_bp, url_prefix="/dashboard")
    app.register_blueprint(inspections_bp, url_prefix="/dashboard")
    app.register_blueprint(agreements_bp, url_prefix="/dashboard")
    app.register_blueprint(compliance_bp, url_prefix="/dashboard")
    app.register_blueprint(users_bp, url_prefix="/dashboard")
    app.register_blueprint(email_config_bp, url_prefix="/dashboard")

    # JSON API
    app.register_blueprint(vehicles_api_bp, url_prefix="/api")
    app.register_blueprint(vehicle_groups_api_bp, url_prefix="/api")
    app.register_blueprint(drivers_api_bp, url_prefix="/api")
    app.register_blueprint(inspections_api_bp, url_prefix="/api")
    app.register_blueprint(agreements_api_bp, url_prefix="/api")
    app.register_blueprint(compliance_api_bp, url_prefix="/api")
    app.register_blueprint(users_api_bp, url_prefix="/api")
    app.register_blueprint(email_config_api_bp, url_prefix="/api")
    app.register_blueprint(organizations_api_bp, url_prefix="/api")

    app.before_request(load_current_user)
    app.teardown_appcontext(teardown_db_session)

    @app.errorhandler(400)
    def _err_400(e):  # type: ignore[no-redef]
        if _is_api_path():
            return _api_error(400)
        return render_template("errors/400.html", message=getattr(e, "description", None)), 400

    @app.errorhandler(403)
    def _err_403(e):  # type: ignore[no-redef]
        missing = getattr(g, "missing_permission", None)
        if missing:
            app.logger.warning("Forbidden: missing_permission=%s request_id=%s", missing, getattr(g, "request_id", None))
        if _is_api_path():
            return _api_error(403)
        return render_template("errors/403.html", missing_permission=missing), 403

    @app.errorhandler(404)
    def _err_404(e):  # type: ignore[no-redef]
        if _is_api_path():
            return _api_error(404)
        return render_template("errors/404.html"), 404

    @app.errorhandler(413)
    def _err_413(e):  # type: ignore[no-redef]
        from flask import flash, redirect, url_for

        if _is_api_path():
            return _api_error(413)
        flash("File too large. Maximum size is 25MB.", "danger")
        referrer = request.referrer
        if referrer and referrer.startswith(request.host_url):
            return redirect(referrer), 302
        return redirect(url_for("dashboard.index")), 302

    @app.errorhandler(500)
    def _err_500(e):  # type: ignore[no-redef]
        # Ensure stack trace shows in platform logs.
        app.logger.exception("Unhandled 500 (request_id=%s)", getattr(g, "request_id", None))
        if _is_api_path():
            return _api_error(500)
        return render_template("errors/500.html"), 500

    # Startup logging
    logging.getLogger(__name__).info("create_app() complete; app ready to serve")

    return app
