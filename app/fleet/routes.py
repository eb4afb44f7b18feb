import mimetypes

from flask import Blueprint, abort, current_app, redirect, send_file, url_for

from app.fleet.rbac import require_login
from app.fleet.storage import StorageError, storage_from_config

bp = Blueprint("routes", __name__)


@bp.get("/")
def index():
    return redirect(url_for("dashboard.index"))


@bp.get("/files/<path:key>")
@require_login
def serve_file(key: str):
    """Stream a stored upload (inspection photo, attachment, logo) to a signed-in user."""
    storage = storage_from_config(current_app.config)
    try:
        fh = storage.open(key)
    except StorageError:
        abort(404)
    mimetype = mimetypes.guess_type(key)[0] or "application/octet-stream"
    return send_file(fh, mimetype=mimetype, download_name=key.rsplit("/", 1)[-1])


@bp.get("/health")
def health():
    """Health check endpoint. Returns JSON."""
    return {"ok": True}


@bp.get("/healthz")
def healthz():
    """
    Fast health check for load balancer probes. No DB access, minimal overhead.
    """
    return "ok", 200
