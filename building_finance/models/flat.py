"""Flat ORM model: the billable unit of a building."""

from decimal import Decimal

from sqlalchemy import BigInteger, ForeignKey, Index, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from building_finance.models import Base, BaseModel


class Flat(Base, BaseModel):
    """Model representing a flat with the attributes that drive billing.

    A flat is service-charge eligible when it has a positive area and ground-rent
    eligible when it has a positive annual ground rent.
    """

    __tablename__ = "flats"

    building_id: Mapped[int] = mapped_column(
        ForeignKey("buildings.id"),
        nullable=False,
        index=True,
    )
    flat_number: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
    )

    # Billing attributes
    area_units: Mapped[Decimal | None] = mapped_column(
        Numeric(10, 2),
        nullable=True,
        comment="Billable floor area",
    )
    ground_rent: Mapped[Decimal | None] = mapped_column(
        Numeric(10, 2),
        nullable=True,
        comment="Annual ground rent, billed with Q1 demands",
    )

    # Notification target for the primary contact
    contact_telegram_id: Mapped[int | None] = mapped_column(
        BigInteger,
        nullable=True,
    )

    building: Mapped["Building"] = relationship(  # noqa: F821
        "Building",
        back_populates="flats",
    )

    __table_args__ = (Index("idx_flat_building_number", "building_id", "flat_number"),)

    def __repr__(self) -> str:
        return (
            f"<Flat(id={self.id}, building_id={self.building_id}, "
            f"flat_number={self.flat_number!r}, area_units={self.area_units}, "
            f"ground_rent={self.ground_rent})>"
        )


__all__ = ["Flat"]
