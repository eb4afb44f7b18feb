"""
Central constants for the fleet application.
"""
from __future__ import annotations

# Roles (one per user)
ROLE_ADMIN = "admin"
ROLE_MANAGER = "manager"
ROLE_INSPECTOR = "inspector"
ROLE_VIEWER = "viewer"

ROLES = {
    ROLE_ADMIN: ("Administrator", "Full access including user administration"),
    ROLE_MANAGER: ("Manager", "Manage fleet records, agreements and email settings"),
    ROLE_INSPECTOR: ("Inspector", "Read-only access to fleet records"),
    ROLE_VIEWER: ("Viewer", "Read-only access to fleet records"),
}

PERMISSIONS = {
    "admin.view": "Admin: audit log",
    "vehicles.view": "Vehicles: view",
    "vehicles.edit": "Vehicles: create/edit/delete",
    "groups.view": "Vehicle groups: view",
    "groups.edit": "Vehicle groups: create/edit/assign",
    "drivers.view": "Drivers: view",
    "drivers.edit": "Drivers: create/edit/delete",
    "inspections.view": "Inspections: view",
    "inspections.edit": "Inspections: create/edit/delete",
    "agreements.view": "Agreements: view",
    "agreements.edit": "Agreements: create/finalise/terminate",
    "compliance.view": "Compliance: view",
    "compliance.edit": "Compliance: schedule/complete checks",
    "users.view": "Users: view",
    "users.edit": "Users: create/edit/delete",
    "email.manage": "Email configuration: manage",
    "profile.edit": "Profile: edit own profile",
}

_VIEW_PERMISSIONS = tuple(k for k in PERMISSIONS if k.endswith(".view") and k not in ("admin.view", "users.view"))

ROLE_PERMISSIONS = {
    ROLE_ADMIN: tuple(PERMISSIONS),
    ROLE_MANAGER: tuple(k for k in PERMISSIONS if k != "users.edit"),
    ROLE_INSPECTOR: _VIEW_PERMISSIONS + ("profile.edit",),
    ROLE_VIEWER: _VIEW_PERMISSIONS + ("profile.edit",),
}

# Vehicles
VEHICLE_STATUSES = (
    "available",
    "assigned",
    "maintenance",
    "temporarily_assigned",
    "leased_out",
    "retired",
    "sold",
)
ACTIVE_VEHICLE_STATUSES = ("available", "assigned", "temporarily_assigned")
VEHICLE_OWNERSHIP = ("owned", "external", "leased_out")
FUEL_TYPES = ("petrol", "diesel", "electric", "hybrid", "lpg")
TRANSMISSIONS = ("manual", "automatic", "cvt", "semi_automatic")

# Vehicle groups
DEFAULT_GROUP_NAME = "Default Group"
DEFAULT_GROUP_DESCRIPTION = "Default group for unassigned vehicles"
DEFAULT_GROUP_TYPE = "general"
SIGNATURE_MODES = ("dual", "single")

# Inspections
INSPECTION_STATUSES = ("draft", "submitted")
INSPECTION_SECTIONS = ("exterior", "interior", "mechanical")

# Agreements
AGREEMENT_STATUSES = ("draft", "pending_signature", "signed", "terminated")
DRIVER_AGREEMENT_ROLES = ("signer", "viewer")
EXPORT_FORMATS = ("zip", "pdf")

# Compliance
CHECK_STATUSES = ("pending", "complete")
DEFAULT_CHECK_WEEKS = ("2025-12-03", "2025-11-26", "2025-11-19")

# Upload limits
MAX_VEHICLE_ATTACHMENT_BYTES = 10 * 1024 * 1024
MAX_INSPECTION_IMAGE_BYTES = 10 * 1024 * 1024
MAX_SUPPORTING_DOC_BYTES = 20 * 1024 * 1024
MAX_LOGO_BYTES = 5 * 1024 * 1024

SUPPORTING_DOC_CONTENT_TYPES = frozenset(
    {
        "application/pdf",
        "application/msword",
        "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
        "application/vnd.ms-excel",
        "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
    }
)
LOGO_CONTENT_TYPES = frozenset({"image/jpeg", "image/jpg", "image/png", "image/gif"})
