"""Small helpers shared by the JSON API blueprints."""
from __future__ import annotations

from flask import g, jsonify, request

from app.fleet.models import User


def current_user() -> User:
    u = getattr(g, "current_user", None)
    if not u:
        raise RuntimeError("No current user")
    return u


def json_payload() -> dict:
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


def json_error(message: str, status: int = 400):
    return jsonify({"error": message}), status


def validation_error(errors: list[str]):
    return jsonify({"error": "Validation error", "details": errors}), 400


def form_payload(fields: tuple[str, ...]) -> dict:
    return {f: request.form.get(f) for f in fields}
