from __future__ import annotations

from datetime import date, datetime

from sqlalchemy import Date, DateTime, ForeignKey, Index, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.fleet.models import Base, User
from app.fleet.modules.drivers.models import Driver
from app.fleet.modules.vehicles.models import Vehicle


class ContractorVehicleCheck(Base):
    __tablename__ = "contractor_vehicle_checks"
    __table_args__ = (
        UniqueConstraint("driver_id", "vehicle_id", "cycle_week_start", name="uq_contractor_checks_driver_vehicle_week"),
        Index("idx_contractor_checks_week", "cycle_week_start"),
        Index("idx_contractor_checks_status", "status"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    driver_id: Mapped[int] = mapped_column(ForeignKey("drivers.id", ondelete="RESTRICT"), nullable=False)
    vehicle_id: Mapped[int] = mapped_column(ForeignKey("vehicles.id", ondelete="RESTRICT"), nullable=False)
    cycle_week_start: Mapped[date] = mapped_column(Date, nullable=False)  # Monday of the cycle week
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="pending")  # pending, complete

    submitted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    completed_by_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    driver: Mapped[Driver] = relationship(Driver, lazy="selectin")
    vehicle: Mapped[Vehicle] = relationship(Vehicle, lazy="selectin")
    completed_by: Mapped[User | None] = relationship(User, lazy="selectin")
