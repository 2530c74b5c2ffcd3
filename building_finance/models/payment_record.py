"""Payment record ORM model: append-only payments against a demand."""

from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum

from sqlalchemy import CheckConstraint, Date, DateTime, ForeignKey, Numeric, String, Text
from sqlalchemy import Enum as SQLEnum
from sqlalchemy.orm import Mapped, mapped_column, relationship

from building_finance.models import Base, BaseModel


class PaymentMethod(str, Enum):
    """How a payment was received."""

    ONLINE = "Online"
    BANK_TRANSFER = "Bank Transfer"
    CHEQUE = "Cheque"
    CASH = "Cash"
    OTHER = "Other"


class PaymentRecord(Base, BaseModel):
    """Model representing a single payment received for a service charge demand.

    Rows are only ever inserted. The parent demand's paid and outstanding
    amounts are refreshed by the ledger on every insert.
    """

    __tablename__ = "payment_records"

    demand_id: Mapped[int] = mapped_column(
        ForeignKey("service_charge_demands.id"),
        nullable=False,
        index=True,
    )
    amount: Mapped[Decimal] = mapped_column(
        Numeric(10, 2),
        nullable=False,
    )
    method: Mapped[PaymentMethod] = mapped_column(
        SQLEnum(PaymentMethod, values_callable=lambda e: [m.value for m in e]),
        nullable=False,
        default=PaymentMethod.OTHER,
    )
    payment_date: Mapped[date] = mapped_column(
        Date,
        nullable=False,
    )
    recorded_by: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
    )
    recorded_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
    )
    reference: Mapped[str | None] = mapped_column(
        String(200),
        nullable=True,
    )
    notes: Mapped[str | None] = mapped_column(
        Text,
        nullable=True,
    )

    demand: Mapped["ServiceChargeDemand"] = relationship(  # noqa: F821
        "ServiceChargeDemand",
        back_populates="payment_history",
    )

    __table_args__ = (CheckConstraint("amount > 0", name="ck_payment_amount_positive"),)

    def __repr__(self) -> str:
        return (
            f"<PaymentRecord(id={self.id}, demand_id={self.demand_id}, amount={self.amount}, "
            f"method={self.method}, payment_date={self.payment_date})>"
        )


__all__ = ["PaymentRecord", "PaymentMethod"]
