from __future__ import annotations

from flask import Blueprint, abort, flash, redirect, render_template, request, url_for

from app.fleet.db import db_session
from app.fleet.http import current_user, form_payload
from app.fleet.modules.drivers.models import Driver
from app.fleet.modules.drivers.service import (
    DriverError,
    create_driver,
    delete_driver,
    get_driver_detail,
    list_drivers,
    update_driver,
    validate_driver_payload,
)
from app.fleet.rbac import require_permission
from app.fleet.utils import page_window, total_pages

bp = Blueprint("drivers", __name__)

DRIVER_FORM_FIELDS = ("first_name", "last_name", "email", "phone", "notes")


def _get_driver_or_404(driver_id: int) -> Driver:
    driver = db_session().get(Driver, driver_id)
    if not driver:
        abort(404)
    return driver


@bp.get("/drivers")
@require_permission("drivers.view")
def drivers_list():
    search = (request.args.get("search") or "").strip()
    page, limit, offset = page_window(request.args.get("page"), request.args.get("limit"), default_limit=20)
    drivers, total = list_drivers(db_session(), search=search, limit=limit, offset=offset)
    return render_template(
        "drivers/list.html",
        drivers=drivers,
        total=total,
        page=page,
        total_pages=total_pages(total, limit),
        search=search,
    )


@bp.get("/drivers/new")
@require_permission("drivers.edit")
def drivers_new_get():
    return render_template("drivers/form.html", driver=None, form={})


@bp.post("/drivers/new")
@require_permission("drivers.edit")
def drivers_new_post():
    s = db_session()
    payload = form_payload(DRIVER_FORM_FIELDS)
    errors = validate_driver_payload(payload)
    if errors:
        for e in errors:
            flash(e, "danger")
        return render_template("drivers/form.html", driver=None, form=payload), 400
    driver = create_driver(s, payload, current_user())
    s.commit()
    flash("Driver created.", "success")
    return redirect(url_for("drivers.driver_detail", driver_id=driver.id))


@bp.get("/drivers/<int:driver_id>")
@require_permission("drivers.view")
def driver_detail(driver_id: int):
    driver = _get_driver_or_404(driver_id)
    return render_template("drivers/detail.html", **get_driver_detail(db_session(), driver))


@bp.get("/drivers/<int:driver_id>/edit")
@require_permission("drivers.edit")
def driver_edit_get(driver_id: int):
    driver = _get_driver_or_404(driver_id)
    return render_template("drivers/form.html", driver=driver, form={})


@bp.post("/drivers/<int:driver_id>/edit")
@require_permission("drivers.edit")
def driver_edit_post(driver_id: int):
    s = db_session()
    driver = _get_driver_or_404(driver_id)
    payload = form_payload(DRIVER_FORM_FIELDS)
    errors = validate_driver_payload(payload)
    if errors:
        for e in errors:
            flash(e, "danger")
        return render_template("drivers/form.html", driver=driver, form=payload), 400
    update_driver(s, driver, payload, current_user())
    s.commit()
    flash("Driver updated.", "success")
    return redirect(url_for("drivers.driver_detail", driver_id=driver_id))


@bp.post("/drivers/<int:driver_id>/delete")
@require_permission("drivers.edit")
def driver_delete(driver_id: int):
    s = db_session()
    driver = _get_driver_or_404(driver_id)
    try:
        delete_driver(s, driver, current_user())
    except DriverError as e:
        s.rollback()
        flash(str(e), "danger")
        return redirect(url_for("drivers.driver_detail", driver_id=driver_id))
    s.commit()
    flash("Driver deleted.", "success")
    return redirect(url_for("drivers.drivers_list"))
