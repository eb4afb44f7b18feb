"""Driver-facing signing page. Reached from the emailed link; no login."""
from __future__ import annotations

from flask import Blueprint, abort, flash, redirect, render_template, request, url_for

from app.fleet.db import db_session
from app.fleet.modules.agreements.service import AgreementError, get_signing_context, sign_agreement

bp = Blueprint("agreement_signing", __name__)


@bp.get("/agreements/driver/sign/<token>")
def sign_get(token: str):
    ctx = get_signing_context(db_session(), token)
    if ctx is None:
        abort(404)
    return render_template("agreements/sign.html", token=token, **ctx)


@bp.post("/agreements/driver/sign/<token>")
def sign_post(token: str):
    s = db_session()
    ctx = get_signing_context(s, token)
    if ctx is None:
        abort(404)
    try:
        sign_agreement(s, ctx["agreement"].id, token, request.form.get("signature") or "")
    except AgreementError as e:
        s.rollback()
        flash(str(e), "danger")
        return render_template("agreements/sign.html", token=token, **get_signing_context(s, token)), 400
    s.commit()
    flash("Thank you. The agreement has been signed.", "success")
    return redirect(url_for("agreement_signing.sign_get", token=token))
