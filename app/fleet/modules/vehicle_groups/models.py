from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import DateTime, ForeignKey, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.fleet.models import Base, User

if TYPE_CHECKING:
    from app.fleet.modules.vehicles.models import Vehicle


class VehicleGroup(Base):
    __tablename__ = "vehicle_groups"
    __table_args__ = (
        Index("idx_vehicle_groups_name", "name"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    type: Mapped[str | None] = mapped_column(String(64), nullable=True)
    contract_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    area_manager_contact: Mapped[str | None] = mapped_column(String(255), nullable=True)
    signature_mode: Mapped[str] = mapped_column(String(16), nullable=False, default="dual")  # dual, single

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    created_by_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    created_by: Mapped[User | None] = relationship(User, foreign_keys=[created_by_user_id], lazy="selectin")
    vehicle_assignments: Mapped[list["VehicleGroupAssignment"]] = relationship(
        "VehicleGroupAssignment",
        back_populates="group",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )
    manager_assignments: Mapped[list["GroupManagerAssignment"]] = relationship(
        "GroupManagerAssignment",
        back_populates="group",
        cascade="all, delete-orphan",
        passive_deletes=True,
        lazy="selectin",
    )


class VehicleGroupAssignment(Base):
    __tablename__ = "vehicle_group_assignments"
    __table_args__ = (
        UniqueConstraint("vehicle_id", name="uq_vehicle_group_assignments_vehicle"),
        Index("idx_vehicle_group_assignments_group_id", "group_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    vehicle_id: Mapped[int] = mapped_column(ForeignKey("vehicles.id", ondelete="CASCADE"), nullable=False)
    group_id: Mapped[int] = mapped_column(ForeignKey("vehicle_groups.id", ondelete="CASCADE"), nullable=False)
    assigned_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    assigned_by_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    vehicle: Mapped["Vehicle"] = relationship("Vehicle", back_populates="group_assignments")
    group: Mapped[VehicleGroup] = relationship(VehicleGroup, back_populates="vehicle_assignments", lazy="selectin")


class GroupManagerAssignment(Base):
    __tablename__ = "group_manager_assignments"
    __table_args__ = (
        UniqueConstraint("group_id", "manager_id", name="uq_group_manager_assignments_pair"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    group_id: Mapped[int] = mapped_column(ForeignKey("vehicle_groups.id", ondelete="CASCADE"), nullable=False)
    manager_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    assigned_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    group: Mapped[VehicleGroup] = relationship(VehicleGroup, back_populates="manager_assignments")
    manager: Mapped[User] = relationship(User, lazy="selectin")
