"""Building ORM model and its per-building financial configuration."""

from decimal import Decimal
from enum import Enum

from sqlalchemy import CheckConstraint, ForeignKey, Integer, Numeric, String
from sqlalchemy import Enum as SQLEnum
from sqlalchemy.orm import Mapped, mapped_column, relationship

from building_finance.models import Base, BaseModel


class PenaltyType(str, Enum):
    """How the late payment penalty of an overdue demand is computed."""

    NONE = "none"
    FLAT = "flat"
    PERCENTAGE = "percentage"
    BOTH = "both"


class Building(Base, BaseModel):
    """Model representing a managed building.

    Owned by the generic CRUD layer; the finance engine only reads it to scope
    flats, settings and demands.
    """

    __tablename__ = "buildings"

    name: Mapped[str] = mapped_column(
        String(200),
        nullable=False,
    )

    # Relationships
    financial_settings: Mapped["BuildingFinancialSettings | None"] = relationship(
        "BuildingFinancialSettings",
        back_populates="building",
        uselist=False,
        lazy="selectin",
    )
    flats: Mapped[list["Flat"]] = relationship(  # noqa: F821
        "Flat",
        back_populates="building",
    )

    def __repr__(self) -> str:
        return f"<Building(id={self.id}, name={self.name!r})>"


class BuildingFinancialSettings(Base, BaseModel):
    """Persisted financial settings, one row per building.

    The fiscal year anchor is stored as month/day only; the year never matters.
    Engine code never reads this row directly during a billing action: it is
    converted once into an immutable ``FinancialSettings`` value.
    """

    __tablename__ = "building_financial_settings"

    building_id: Mapped[int] = mapped_column(
        ForeignKey("buildings.id"),
        nullable=False,
        unique=True,
        index=True,
    )
    rate_per_area_unit: Mapped[Decimal | None] = mapped_column(
        Numeric(10, 4),
        nullable=True,
        comment="Service charge rate per area unit per quarter",
    )
    due_lead_days: Mapped[int | None] = mapped_column(
        Integer,
        nullable=True,
        comment="Days before quarter start when payment falls due",
    )
    fiscal_year_start_month: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=4,
    )
    fiscal_year_start_day: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=1,
    )
    reserve_fund_percentage: Mapped[Decimal | None] = mapped_column(
        Numeric(5, 2),
        nullable=True,
        comment="Share of the budget set aside for the reserve fund",
    )
    penalty_type: Mapped[PenaltyType] = mapped_column(
        SQLEnum(PenaltyType, values_callable=lambda e: [m.value for m in e]),
        nullable=False,
        default=PenaltyType.NONE,
    )
    penalty_flat_amount: Mapped[Decimal | None] = mapped_column(
        Numeric(10, 2),
        nullable=True,
    )
    penalty_percentage: Mapped[Decimal | None] = mapped_column(
        Numeric(5, 2),
        nullable=True,
        comment="Percentage of the outstanding amount charged as penalty",
    )
    penalty_grace_days: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
        comment="Days past the due date before a penalty applies",
    )
    penalty_max_amount: Mapped[Decimal | None] = mapped_column(
        Numeric(10, 2),
        nullable=True,
    )
    max_reminders: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=3,
    )
    updated_by: Mapped[str | None] = mapped_column(
        String(100),
        nullable=True,
    )

    building: Mapped["Building"] = relationship(
        "Building",
        back_populates="financial_settings",
    )

    __table_args__ = (
        CheckConstraint(
            "fiscal_year_start_month BETWEEN 1 AND 12", name="ck_settings_anchor_month"
        ),
        CheckConstraint("fiscal_year_start_day BETWEEN 1 AND 31", name="ck_settings_anchor_day"),
        CheckConstraint("penalty_grace_days >= 0", name="ck_settings_penalty_grace_days"),
        CheckConstraint("max_reminders >= 0", name="ck_settings_max_reminders"),
    )

    def __repr__(self) -> str:
        return (
            f"<BuildingFinancialSettings(building_id={self.building_id}, "
            f"rate_per_area_unit={self.rate_per_area_unit}, due_lead_days={self.due_lead_days}, "
            f"anchor={self.fiscal_year_start_month}/{self.fiscal_year_start_day})>"
        )


__all__ = ["Building", "BuildingFinancialSettings", "PenaltyType"]
