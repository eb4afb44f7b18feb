from __future__ import annotations

from datetime import datetime

from sqlalchemy import Boolean, DateTime, ForeignKey, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.fleet.models import Base, User
from app.fleet.modules.drivers.models import Driver
from app.fleet.modules.inspections.models import Inspection
from app.fleet.modules.vehicles.models import Vehicle


class AgreementTemplate(Base):
    __tablename__ = "agreement_templates"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    content_richtext: Mapped[str] = mapped_column(Text, nullable=False)
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    created_by_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    created_by: Mapped[User | None] = relationship(User, lazy="selectin")


class Agreement(Base):
    __tablename__ = "agreements"
    __table_args__ = (
        UniqueConstraint("signing_token", name="uq_agreements_signing_token"),
        Index("idx_agreements_status", "status"),
        Index("idx_agreements_vehicle_id", "vehicle_id"),
        Index("idx_agreements_created_at", "created_at"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    vehicle_id: Mapped[int] = mapped_column(ForeignKey("vehicles.id", ondelete="RESTRICT"), nullable=False)
    inspection_id: Mapped[int] = mapped_column(ForeignKey("inspections.id", ondelete="RESTRICT"), nullable=False)
    template_id: Mapped[int] = mapped_column(ForeignKey("agreement_templates.id", ondelete="RESTRICT"), nullable=False)
    # draft -> pending_signature -> signed | terminated
    status: Mapped[str] = mapped_column(String(32), nullable=False, default="draft")

    final_content_richtext: Mapped[str | None] = mapped_column(Text, nullable=True)
    signing_token: Mapped[str | None] = mapped_column(String(64), nullable=True)
    signed_by_driver_id: Mapped[int | None] = mapped_column(ForeignKey("drivers.id", ondelete="SET NULL"), nullable=True)
    driver_signature_data: Mapped[str | None] = mapped_column(Text, nullable=True)
    signed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)

    terminated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    termination_reason: Mapped[str | None] = mapped_column(String(1000), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    created_by_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    vehicle: Mapped[Vehicle] = relationship(Vehicle, lazy="selectin")
    inspection: Mapped[Inspection] = relationship(Inspection, lazy="selectin")
    template: Mapped[AgreementTemplate] = relationship(AgreementTemplate, lazy="selectin")
    signed_by_driver: Mapped[Driver | None] = relationship(Driver, lazy="selectin")
    created_by: Mapped[User | None] = relationship(User, lazy="selectin")
    driver_links: Mapped[list["DriverAgreement"]] = relationship(
        "DriverAgreement",
        back_populates="agreement",
        cascade="all, delete-orphan",
        passive_deletes=True,
        lazy="selectin",
    )

    @property
    def resolved_content(self) -> str | None:
        return self.final_content_richtext or (self.template.content_richtext if self.template else None)


class DriverAgreement(Base):
    __tablename__ = "driver_agreements"
    __table_args__ = (
        UniqueConstraint("driver_id", "agreement_id", name="uq_driver_agreements_pair"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    driver_id: Mapped[int] = mapped_column(ForeignKey("drivers.id", ondelete="CASCADE"), nullable=False)
    agreement_id: Mapped[int] = mapped_column(ForeignKey("agreements.id", ondelete="CASCADE"), nullable=False)
    role: Mapped[str] = mapped_column(String(16), nullable=False, default="signer")  # signer, viewer
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    driver: Mapped[Driver] = relationship(Driver, lazy="selectin")
    agreement: Mapped[Agreement] = relationship(Agreement, back_populates="driver_links")
