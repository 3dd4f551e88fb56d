from __future__ import annotations

import enum
from datetime import date
from decimal import Decimal

from sqlalchemy import (
    Boolean,
    Date,
    Enum,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.models.base import AuditMixin, Base


class Currency(str, enum.Enum):
    usd = "USD"
    clp = "CLP"


class AllocationType(str, enum.Enum):
    principal_investigator = "principal_investigator"
    sub_investigator = "sub_investigator"


class Trial(Base, AuditMixin):
    __tablename__ = "trials"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False, index=True)
    sponsor: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    medical_specialty: Mapped[str | None] = mapped_column(String(120), nullable=True)
    start_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    end_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    visit_types = relationship(
        "VisitType",
        back_populates="trial",
        order_by="VisitType.order_number",
        cascade="all, delete-orphan",
    )
    services = relationship(
        "TrialService",
        back_populates="trial",
        order_by="TrialService.id",
        cascade="all, delete-orphan",
    )


class VisitType(Base, AuditMixin):
    __tablename__ = "visit_types"
    __table_args__ = (
        UniqueConstraint("trial_id", "order_number", name="uq_visit_types_trial_order"),
        UniqueConstraint("trial_id", "name", name="uq_visit_types_trial_name"),
    )

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    trial_id: Mapped[int] = mapped_column(ForeignKey("trials.id"), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(120), nullable=False)
    order_number: Mapped[int] = mapped_column(Integer, nullable=False)

    trial = relationship("Trial", back_populates="visit_types")


class TrialService(Base, AuditMixin):
    __tablename__ = "trial_services"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    trial_id: Mapped[int] = mapped_column(ForeignKey("trials.id"), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    currency: Mapped[Currency] = mapped_column(
        Enum(Currency, name="currency_enum", values_callable=lambda e: [m.value for m in e]),
        default=Currency.usd,
        nullable=False,
    )

    trial = relationship("Trial", back_populates="services")
    allocations = relationship(
        "ServiceAllocation",
        back_populates="service",
        order_by="ServiceAllocation.id",
        cascade="all, delete-orphan",
    )


class ServiceAllocation(Base, AuditMixin):
    __tablename__ = "service_allocations"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    trial_service_id: Mapped[int] = mapped_column(
        ForeignKey("trial_services.id"), nullable=False, index=True
    )
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    currency: Mapped[Currency] = mapped_column(
        Enum(Currency, name="currency_enum", values_callable=lambda e: [m.value for m in e]),
        default=Currency.usd,
        nullable=False,
    )
    allocation_type: Mapped[AllocationType] = mapped_column(
        Enum(AllocationType, name="allocation_type"),
        nullable=False,
    )

    service = relationship("TrialService", back_populates="allocations")
