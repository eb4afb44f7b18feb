from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import TYPE_CHECKING

from sqlalchemy import Date, DateTime, ForeignKey, Index, Integer, Numeric, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.fleet.models import Base

if TYPE_CHECKING:
    from app.fleet.modules.vehicle_groups.models import VehicleGroupAssignment


class Vehicle(Base):
    __tablename__ = "vehicles"
    __table_args__ = (
        Index("idx_vehicles_license_plate", "license_plate"),
        Index("idx_vehicles_status", "status"),
        Index("idx_vehicles_updated_at", "updated_at"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)

    # Required
    year: Mapped[int] = mapped_column(Integer, nullable=False)
    make: Mapped[str] = mapped_column(String(100), nullable=False)
    model: Mapped[str] = mapped_column(String(100), nullable=False)
    license_plate: Mapped[str] = mapped_column(String(32), nullable=False)
    vin: Mapped[str] = mapped_column(String(64), nullable=False)
    status: Mapped[str] = mapped_column(String(32), nullable=False, default="available")
    ownership: Mapped[str] = mapped_column(String(32), nullable=False, default="owned")

    # Optional specs
    owner_company: Mapped[str | None] = mapped_column(String(255), nullable=True)
    fuel_type: Mapped[str | None] = mapped_column(String(32), nullable=True)
    transmission: Mapped[str | None] = mapped_column(String(32), nullable=True)
    engine_size_l: Mapped[Decimal | None] = mapped_column(Numeric(4, 1), nullable=True)
    odometer: Mapped[Decimal | None] = mapped_column(Numeric(10, 1), nullable=True)

    # Service history
    purchase_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    last_service_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    next_service_due: Mapped[date | None] = mapped_column(Date, nullable=True)

    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    created_by_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    updated_by_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    attachments: Mapped[list["VehicleAttachment"]] = relationship(
        "VehicleAttachment",
        back_populates="vehicle",
        cascade="all, delete-orphan",
        passive_deletes=True,
        lazy="selectin",
        order_by="VehicleAttachment.created_at.desc()",
    )
    group_assignments: Mapped[list["VehicleGroupAssignment"]] = relationship(
        "VehicleGroupAssignment",
        back_populates="vehicle",
        cascade="all, delete-orphan",
        passive_deletes=True,
        lazy="selectin",
    )

    @property
    def display_name(self) -> str:
        parts = [str(p) for p in (self.year, self.make, self.model) if p]
        return " ".join(parts) if parts else "Unknown Vehicle"

    @property
    def label(self) -> str:
        return f"{self.license_plate} - {self.display_name}"

    @property
    def group(self):
        return self.group_assignments[0].group if self.group_assignments else None


class VehicleAttachment(Base):
    __tablename__ = "vehicle_attachments"
    __table_args__ = (
        Index("idx_vehicle_attachments_vehicle_id", "vehicle_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    vehicle_id: Mapped[int] = mapped_column(ForeignKey("vehicles.id", ondelete="CASCADE"), nullable=False)
    storage_key: Mapped[str] = mapped_column(String(512), nullable=False)
    file_name: Mapped[str] = mapped_column(String(255), nullable=False)
    file_size_bytes: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    content_type: Mapped[str] = mapped_column(String(128), nullable=False, default="application/octet-stream")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    created_by_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    vehicle: Mapped[Vehicle] = relationship("Vehicle", back_populates="attachments")
