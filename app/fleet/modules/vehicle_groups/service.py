from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import func

from app.fleet.audit import record_event
from app.fleet.constants import (
    ACTIVE_VEHICLE_STATUSES,
    DEFAULT_GROUP_DESCRIPTION,
    DEFAULT_GROUP_NAME,
    DEFAULT_GROUP_TYPE,
    ROLE_INSPECTOR,
    ROLE_MANAGER,
    SIGNATURE_MODES,
)
from app.fleet.utils import clean_str

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.fleet.models import User
    from app.fleet.modules.vehicle_groups.models import VehicleGroup
    from app.fleet.modules.vehicles.models import Vehicle


class VehicleGroupError(ValueError):
    pass


def validate_group_payload(payload: dict) -> list[str]:
    errors = []
    name = clean_str(payload.get("name"))
    if not name:
        errors.append("Name is required.")
    elif len(name) > 255:
        errors.append("Name must be 255 characters or fewer.")
    mode = clean_str(payload.get("signature_mode"))
    if mode and mode not in SIGNATURE_MODES:
        errors.append(f"Invalid signature mode. Must be one of: {', '.join(SIGNATURE_MODES)}")
    return errors


def get_or_create_default_group(s: "Session", user: "User") -> "VehicleGroup":
    from app.fleet.modules.vehicle_groups.models import VehicleGroup

    group = s.query(VehicleGroup).filter(VehicleGroup.name == DEFAULT_GROUP_NAME).order_by(VehicleGroup.id.asc()).first()
    if group:
        return group
    now = datetime.utcnow()
    group = VehicleGroup(
        name=DEFAULT_GROUP_NAME,
        description=DEFAULT_GROUP_DESCRIPTION,
        type=DEFAULT_GROUP_TYPE,
        signature_mode="dual",
        created_at=now,
        updated_at=now,
        created_by_user_id=user.id,
    )
    s.add(group)
    s.flush()
    return group


def is_default_group(group: "VehicleGroup") -> bool:
    return group.name == DEFAULT_GROUP_NAME


def list_groups(s: "Session", *, exclude_default: bool = False, limit: int = 100) -> list[dict]:
    """Groups with vehicle/manager stats, newest first."""
    from app.fleet.modules.vehicle_groups.models import GroupManagerAssignment, VehicleGroup, VehicleGroupAssignment
    from app.fleet.modules.vehicles.models import Vehicle

    q = s.query(VehicleGroup)
    if exclude_default:
        q = q.filter(VehicleGroup.name != DEFAULT_GROUP_NAME)
    groups = q.order_by(VehicleGroup.created_at.desc(), VehicleGroup.id.desc()).limit(limit).all()
    if not groups:
        return []
    ids = [g.id for g in groups]

    totals = dict(
        s.query(VehicleGroupAssignment.group_id, func.count(VehicleGroupAssignment.id))
        .filter(VehicleGroupAssignment.group_id.in_(ids))
        .group_by(VehicleGroupAssignment.group_id)
        .all()
    )
    actives = dict(
        s.query(VehicleGroupAssignment.group_id, func.count(VehicleGroupAssignment.id))
        .join(Vehicle, Vehicle.id == VehicleGroupAssignment.vehicle_id)
        .filter(VehicleGroupAssignment.group_id.in_(ids))
        .filter(Vehicle.status.in_(ACTIVE_VEHICLE_STATUSES))
        .group_by(VehicleGroupAssignment.group_id)
        .all()
    )
    managers = dict(
        s.query(GroupManagerAssignment.group_id, func.count(GroupManagerAssignment.id))
        .filter(GroupManagerAssignment.group_id.in_(ids))
        .group_by(GroupManagerAssignment.group_id)
        .all()
    )
    return [
        {
            "group": g,
            "total_vehicles": int(totals.get(g.id, 0)),
            "active_vehicles": int(actives.get(g.id, 0)),
            "assigned_managers": int(managers.get(g.id, 0)),
            "is_default": is_default_group(g),
        }
        for g in groups
    ]


def get_group(s: "Session", group_id: int) -> "VehicleGroup | None":
    from app.fleet.modules.vehicle_groups.models import VehicleGroup

    return s.get(VehicleGroup, group_id)


def get_group_detail(s: "Session", group: "VehicleGroup") -> dict:
    from app.fleet.modules.vehicle_groups.models import VehicleGroupAssignment
    from app.fleet.modules.vehicles.models import Vehicle

    vehicles = (
        s.query(Vehicle)
        .join(VehicleGroupAssignment, VehicleGroupAssignment.vehicle_id == Vehicle.id)
        .filter(VehicleGroupAssignment.group_id == group.id)
        .order_by(Vehicle.license_plate.asc())
        .all()
    )
    managers = sorted((a.manager for a in group.manager_assignments), key=lambda u: u.display_name.lower())
    return {
        "group": group,
        "vehicles": vehicles,
        "managers": managers,
        "created_by_name": group.created_by.display_name if group.created_by else None,
        "is_default": is_default_group(group),
    }


def create_group(s: "Session", payload: dict, user: "User") -> "VehicleGroup":
    from app.fleet.modules.vehicle_groups.models import VehicleGroup

    now = datetime.utcnow()
    group = VehicleGroup(
        name=clean_str(payload.get("name")),
        description=clean_str(payload.get("description")),
        type=clean_str(payload.get("type")),
        contract_id=clean_str(payload.get("contract_id")),
        area_manager_contact=clean_str(payload.get("area_manager_contact")),
        signature_mode=clean_str(payload.get("signature_mode")) or "dual",
        created_at=now,
        updated_at=now,
        created_by_user_id=user.id,
    )
    s.add(group)
    s.flush()
    record_event(
        s,
        actor=user,
        action="vehicle_group.create",
        entity_type="VehicleGroup",
        entity_id=str(group.id),
        metadata={"name": group.name},
    )
    return group


def update_group(s: "Session", group: "VehicleGroup", payload: dict, user: "User") -> "VehicleGroup":
    changes = {}
    for field in ("name", "description", "type", "contract_id", "area_manager_contact", "signature_mode"):
        if field not in payload:
            continue
        new = clean_str(payload.get(field))
        if field == "signature_mode":
            new = new or "dual"
        if field == "name" and is_default_group(group) and new != group.name:
            raise VehicleGroupError("The Default Group cannot be renamed.")
        if new != getattr(group, field):
            changes[field] = {"old": getattr(group, field), "new": new}
            setattr(group, field, new)
    group.updated_at = datetime.utcnow()
    record_event(
        s,
        actor=user,
        action="vehicle_group.update",
        entity_type="VehicleGroup",
        entity_id=str(group.id),
        metadata={"name": group.name, "changes": changes},
    )
    return group


def delete_group(s: "Session", group: "VehicleGroup", user: "User") -> None:
    from app.fleet.modules.vehicle_groups.models import VehicleGroupAssignment

    if is_default_group(group):
        raise VehicleGroupError("The Default Group cannot be deleted.")
    vehicle_count = (
        s.query(func.count(VehicleGroupAssignment.id)).filter(VehicleGroupAssignment.group_id == group.id).scalar() or 0
    )
    if vehicle_count:
        raise VehicleGroupError("Cannot delete group with assigned vehicles. Please reassign vehicles first.")
    record_event(
        s,
        actor=user,
        action="vehicle_group.delete",
        entity_type="VehicleGroup",
        entity_id=str(group.id),
        metadata={"name": group.name},
    )
    s.delete(group)
    s.flush()


def assign_manager(s: "Session", group: "VehicleGroup", manager_id: int, user: "User") -> None:
    from app.fleet.models import User as UserModel
    from app.fleet.modules.vehicle_groups.models import GroupManagerAssignment

    manager = s.get(UserModel, manager_id)
    if not manager or not manager.is_active:
        raise LookupError("Manager not found")
    if manager.role_key not in (ROLE_MANAGER, ROLE_INSPECTOR):
        raise VehicleGroupError("Only managers and inspectors can be assigned to a group")
    if any(a.manager_id == manager.id for a in group.manager_assignments):
        raise VehicleGroupError("Manager is already assigned to this group")

    group.manager_assignments.append(GroupManagerAssignment(manager_id=manager.id, manager=manager))
    s.flush()
    record_event(
        s,
        actor=user,
        action="vehicle_group.assign_manager",
        entity_type="VehicleGroup",
        entity_id=str(group.id),
        metadata={"manager_id": manager.id, "manager_email": manager.email},
    )


def remove_manager(s: "Session", group: "VehicleGroup", manager_id: int, user: "User") -> None:
    assignment = next((a for a in group.manager_assignments if a.manager_id == manager_id), None)
    if assignment is None:
        raise LookupError("Manager is not assigned to this group")
    group.manager_assignments.remove(assignment)
    s.flush()
    record_event(
        s,
        actor=user,
        action="vehicle_group.remove_manager",
        entity_type="VehicleGroup",
        entity_id=str(group.id),
        metadata={"manager_id": manager_id},
    )


def assign_vehicle_to_group(s: "Session", vehicle: "Vehicle", group: "VehicleGroup", user: "User") -> None:
    """Move a vehicle into a group, replacing any existing assignment."""
    from app.fleet.modules.vehicle_groups.models import VehicleGroupAssignment

    previous = vehicle.group
    vehicle.group_assignments.clear()
    s.flush()
    vehicle.group_assignments.append(
        VehicleGroupAssignment(group=group, assigned_at=datetime.utcnow(), assigned_by_user_id=user.id)
    )
    s.flush()
    record_event(
        s,
        actor=user,
        action="vehicle.assign_to_group",
        entity_type="Vehicle",
        entity_id=str(vehicle.id),
        metadata={
            "from_group_id": previous.id if previous else None,
            "to_group_id": group.id,
            "to_group_name": group.name,
        },
    )


def return_vehicle_to_default(s: "Session", vehicle: "Vehicle", user: "User") -> None:
    assign_vehicle_to_group(s, vehicle, get_or_create_default_group(s, user), user)


def available_managers(s: "Session") -> list[dict]:
    """Active manager/inspector users and the groups each already manages."""
    from app.fleet.models import Role, User as UserModel
    from app.fleet.modules.vehicle_groups.models import GroupManagerAssignment

    users = (
        s.query(UserModel)
        .join(Role, Role.id == UserModel.role_id)
        .filter(UserModel.is_active.is_(True))
        .filter(Role.key.in_((ROLE_MANAGER, ROLE_INSPECTOR)))
        .order_by(UserModel.first_name.asc(), UserModel.last_name.asc())
        .all()
    )
    result = []
    for u in users:
        assignments = s.query(GroupManagerAssignment).filter(GroupManagerAssignment.manager_id == u.id).all()
        result.append(
            {
                "user": u,
                "groups": [{"id": a.group.id, "name": a.group.name} for a in assignments],
            }
        )
    return result


def non_default_vehicles(s: "Session", *, exclude_group_id: int | None = None) -> list["Vehicle"]:
    """Vehicles currently sitting in a group other than the Default Group."""
    from app.fleet.modules.vehicle_groups.models import VehicleGroup, VehicleGroupAssignment
    from app.fleet.modules.vehicles.models import Vehicle

    q = (
        s.query(Vehicle)
        .join(VehicleGroupAssignment, VehicleGroupAssignment.vehicle_id == Vehicle.id)
        .join(VehicleGroup, VehicleGroup.id == VehicleGroupAssignment.group_id)
        .filter(VehicleGroup.name != DEFAULT_GROUP_NAME)
    )
    if exclude_group_id:
        q = q.filter(VehicleGroup.id != exclude_group_id)
    return q.order_by(Vehicle.license_plate.asc()).all()


def group_to_dict(group: "VehicleGroup", stats: dict | None = None) -> dict:
    data = {
        "id": group.id,
        "name": group.name,
        "description": group.description,
        "type": group.type,
        "contract_id": group.contract_id,
        "area_manager_contact": group.area_manager_contact,
        "signature_mode": group.signature_mode,
        "is_default": is_default_group(group),
        "created_at": group.created_at.isoformat() if group.created_at else None,
    }
    if stats:
        data.update({k: v for k, v in stats.items() if k in ("total_vehicles", "active_vehicles", "assigned_managers")})
    return data
