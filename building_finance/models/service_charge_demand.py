"""Service charge demand ORM model: one billing record per flat per quarter."""

from datetime import date, datetime
from decimal import Decimal
from enum import Enum

from sqlalchemy import (
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from building_finance.models import Base, BaseModel

# Non-cancelled demands carrying a service charge; the idempotency unit
BILLABLE_DEMAND_PREDICATE = "cancelled_at IS NULL AND base_amount > 0"


class DemandStatus(str, Enum):
    """Payment status of a demand, derived on read from persisted facts."""

    DRAFT = "Draft"
    ISSUED = "Issued"
    REMINDER_SENT = "Reminder Sent"
    OVERDUE = "Overdue"
    PARTIALLY_PAID = "Partially Paid"
    PAID = "Paid"
    CANCELLED = "Cancelled"


class ServiceChargeDemand(Base, BaseModel):
    """Model representing a service charge demand issued to a flat for one quarter.

    Area and rate are snapshotted at issue time so later settings changes never
    alter an issued demand. ``total_due``, ``amount_paid`` and ``outstanding``
    are stored for querying but are only ever written through ``refresh_totals``.
    Status is not stored; see ``demand_ledger.recompute_status``.
    """

    __tablename__ = "service_charge_demands"

    flat_id: Mapped[int] = mapped_column(
        ForeignKey("flats.id"),
        nullable=False,
        index=True,
    )
    building_id: Mapped[int] = mapped_column(
        ForeignKey("buildings.id"),
        nullable=False,
        index=True,
    )
    flat_number: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
    )

    # Quarter identification
    quarter_key: Mapped[str] = mapped_column(
        String(7),
        nullable=False,
        comment="Sortable quarter identifier (e.g., '2024-Q1')",
    )
    quarter_display_string: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        comment="Human readable quarter (e.g., 'Q1 FY24/25')",
    )
    quarter_start_date: Mapped[date] = mapped_column(
        Date,
        nullable=False,
    )

    # Snapshot of billing inputs
    area_at_issue: Mapped[Decimal] = mapped_column(
        Numeric(10, 2),
        nullable=False,
        default=Decimal("0"),
    )
    rate_at_issue: Mapped[Decimal] = mapped_column(
        Numeric(10, 4),
        nullable=False,
    )

    # Amounts
    base_amount: Mapped[Decimal] = mapped_column(
        Numeric(10, 2),
        nullable=False,
        default=Decimal("0"),
    )
    ground_rent_amount: Mapped[Decimal] = mapped_column(
        Numeric(10, 2),
        nullable=False,
        default=Decimal("0"),
    )
    penalty_amount: Mapped[Decimal] = mapped_column(
        Numeric(10, 2),
        nullable=False,
        default=Decimal("0"),
    )
    total_due: Mapped[Decimal] = mapped_column(
        Numeric(10, 2),
        nullable=False,
        default=Decimal("0"),
    )
    amount_paid: Mapped[Decimal] = mapped_column(
        Numeric(10, 2),
        nullable=False,
        default=Decimal("0"),
    )
    outstanding: Mapped[Decimal] = mapped_column(
        Numeric(10, 2),
        nullable=False,
        default=Decimal("0"),
    )
    due_date: Mapped[date] = mapped_column(
        Date,
        nullable=False,
    )

    # Lifecycle facts
    issued_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )
    issued_by: Mapped[str | None] = mapped_column(
        String(100),
        nullable=True,
    )
    last_reminder_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )
    reminders_sent: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
    )
    penalty_applied_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )
    cancelled_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )
    notes: Mapped[str | None] = mapped_column(
        Text,
        nullable=True,
    )

    version: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
    )

    # Relationships
    payment_history: Mapped[list["PaymentRecord"]] = relationship(  # noqa: F821
        "PaymentRecord",
        back_populates="demand",
        order_by="PaymentRecord.id",
        cascade="all",
        lazy="selectin",
    )
    flat: Mapped["Flat"] = relationship(  # noqa: F821
        "Flat",
        foreign_keys=[flat_id],
        lazy="selectin",
    )

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        Index(
            "uq_demand_flat_quarter_billable",
            "flat_id",
            "quarter_key",
            unique=True,
            sqlite_where=text(BILLABLE_DEMAND_PREDICATE),
            postgresql_where=text(BILLABLE_DEMAND_PREDICATE),
        ),
        Index("idx_demand_building_quarter", "building_id", "quarter_key"),
        CheckConstraint("outstanding >= 0", name="ck_demand_outstanding_non_negative"),
        CheckConstraint("amount_paid >= 0", name="ck_demand_amount_paid_non_negative"),
    )

    @property
    def is_cancelled(self) -> bool:
        return self.cancelled_at is not None

    @property
    def is_billable(self) -> bool:
        """True when this demand counts towards the one-per-quarter guarantee."""
        return not self.is_cancelled and self.base_amount > 0

    def refresh_totals(self) -> None:
        """Recompute total_due, amount_paid and outstanding from their sources."""
        self.total_due = (
            (self.base_amount or Decimal("0"))
            + (self.ground_rent_amount or Decimal("0"))
            + (self.penalty_amount or Decimal("0"))
        )
        self.amount_paid = sum(
            (p.amount for p in self.payment_history), start=Decimal("0")
        )
        self.outstanding = self.total_due - self.amount_paid

    def __repr__(self) -> str:
        return (
            f"<ServiceChargeDemand(id={self.id}, flat_id={self.flat_id}, "
            f"quarter_key={self.quarter_key}, total_due={self.total_due}, "
            f"amount_paid={self.amount_paid}, outstanding={self.outstanding})>"
        )


__all__ = ["ServiceChargeDemand", "DemandStatus", "BILLABLE_DEMAND_PREDICATE"]
