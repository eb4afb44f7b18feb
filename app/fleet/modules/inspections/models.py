from __future__ import annotations

from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.fleet.models import Base, User
from app.fleet.modules.vehicles.models import Vehicle


class Inspection(Base):
    __tablename__ = "inspections"
    __table_args__ = (
        Index("idx_inspections_vehicle_id", "vehicle_id"),
        Index("idx_inspections_status", "status"),
        Index("idx_inspections_updated_at", "updated_at"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    vehicle_id: Mapped[int] = mapped_column(ForeignKey("vehicles.id", ondelete="RESTRICT"), nullable=False)
    inspector_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="draft")  # draft, submitted

    exterior_condition: Mapped[str] = mapped_column(Text, nullable=False)
    interior_condition: Mapped[str] = mapped_column(Text, nullable=False)
    mechanical_condition: Mapped[str] = mapped_column(Text, nullable=False)
    additional_notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    submitted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    vehicle: Mapped[Vehicle] = relationship(Vehicle, lazy="selectin")
    inspector: Mapped[User | None] = relationship(User, lazy="selectin")
    images: Mapped[list["InspectionImage"]] = relationship(
        "InspectionImage",
        back_populates="inspection",
        cascade="all, delete-orphan",
        passive_deletes=True,
        lazy="selectin",
        order_by=lambda: [InspectionImage.section, InspectionImage.created_at],
    )


class InspectionImage(Base):
    __tablename__ = "inspection_images"
    __table_args__ = (
        Index("idx_inspection_images_inspection_id", "inspection_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    inspection_id: Mapped[int] = mapped_column(ForeignKey("inspections.id", ondelete="CASCADE"), nullable=False)
    section: Mapped[str] = mapped_column(String(16), nullable=False)  # exterior, interior, mechanical
    storage_key: Mapped[str] = mapped_column(String(512), nullable=False)
    file_name: Mapped[str] = mapped_column(String(255), nullable=False)
    file_size_bytes: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    content_type: Mapped[str] = mapped_column(String(128), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    created_by_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    inspection: Mapped[Inspection] = relationship(Inspection, back_populates="images")
