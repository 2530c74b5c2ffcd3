"""SQLAlchemy base model with common fields and model exports."""

from datetime import datetime, timezone

from sqlalchemy import DateTime
from sqlalchemy.orm import Mapped, declarative_base, mapped_column

# Base class for all models
Base = declarative_base()


class BaseModel:
    """Base model with common timestamp fields."""

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
        nullable=False,
    )


# Import models to register them with Base (after Base is defined)
# This must be after Base declaration to avoid circular imports
from building_finance.models.audit_log import AuditLog  # noqa: E402
from building_finance.models.building import (  # noqa: E402
    Building,
    BuildingFinancialSettings,
    PenaltyType,
)
from building_finance.models.flat import Flat  # noqa: E402
from building_finance.models.payment_record import PaymentMethod, PaymentRecord  # noqa: E402
from building_finance.models.service_charge_demand import (  # noqa: E402
    DemandStatus,
    ServiceChargeDemand,
)

__all__ = [
    "Base",
    "BaseModel",
    "AuditLog",
    "Building",
    "BuildingFinancialSettings",
    "Flat",
    "PenaltyType",
    "PaymentMethod",
    "PaymentRecord",
    "DemandStatus",
    "ServiceChargeDemand",
]
