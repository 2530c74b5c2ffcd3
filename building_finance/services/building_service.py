"""Read access to building configuration and flats, plus settings updates.

Buildings and flats are owned by the generic CRUD layer. This service is the
boundary the finance engine reads them through, and the place the per-building
financial settings row is turned into an immutable ``FinancialSettings`` value.
"""

import logging
from dataclasses import dataclass
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from building_finance.models.building import Building, BuildingFinancialSettings, PenaltyType
from building_finance.models.flat import Flat
from building_finance.services.audit_service import AuditService
from building_finance.services.errors import BuildingNotFound, SettingsIncomplete
from building_finance.services.fiscal_calendar import DEFAULT_ANCHOR, FiscalYearAnchor

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PenaltyPolicy:
    """Late payment penalty rules for overdue demands.

    ``flat`` charges a fixed amount, ``percentage`` a share of the outstanding
    amount, ``both`` the sum of the two. The result is capped at
    ``max_amount`` when one is set.
    """

    penalty_type: PenaltyType = PenaltyType.NONE
    flat_amount: Decimal | None = None
    percentage: Decimal | None = None
    grace_days: int = 0
    max_amount: Decimal | None = None

    @property
    def is_configured(self) -> bool:
        return self.penalty_type != PenaltyType.NONE

    def ensure_configured(self) -> None:
        """Raise SettingsIncomplete unless the policy can produce a penalty."""
        if not self.is_configured:
            raise SettingsIncomplete("No late payment penalty policy is configured.")
        uses_flat = self.penalty_type in (PenaltyType.FLAT, PenaltyType.BOTH)
        uses_percentage = self.penalty_type in (PenaltyType.PERCENTAGE, PenaltyType.BOTH)
        if uses_flat and (self.flat_amount is None or self.flat_amount <= 0):
            raise SettingsIncomplete("Flat penalty amount must be greater than zero.")
        if uses_percentage and (self.percentage is None or self.percentage <= 0):
            raise SettingsIncomplete("Penalty percentage must be greater than zero.")


NO_PENALTY = PenaltyPolicy()
DEFAULT_MAX_REMINDERS = 3


@dataclass(frozen=True)
class FinancialSettings:
    """Snapshot of a building's financial settings for one operation."""

    rate_per_area_unit: Decimal | None = None
    due_lead_days: int | None = None
    fiscal_year_anchor: FiscalYearAnchor = DEFAULT_ANCHOR
    reserve_fund_percentage: Decimal | None = None
    penalty_policy: PenaltyPolicy = NO_PENALTY
    max_reminders: int = DEFAULT_MAX_REMINDERS

    @property
    def is_billable(self) -> bool:
        return (
            self.rate_per_area_unit is not None
            and self.rate_per_area_unit > 0
            and self.due_lead_days is not None
            and self.due_lead_days >= 0
        )

    def ensure_billable(self) -> None:
        """Raise SettingsIncomplete unless rate and lead days allow issuing demands."""
        if self.rate_per_area_unit is None or self.rate_per_area_unit <= 0:
            raise SettingsIncomplete(
                "Service charge rate per area unit is not set. Rate must be greater than zero."
            )
        if self.due_lead_days is None or self.due_lead_days < 0:
            raise SettingsIncomplete(
                "Payment due lead days are not set. Lead days must be zero or more."
            )

    @classmethod
    def from_record(cls, record: BuildingFinancialSettings | None) -> "FinancialSettings":
        if record is None:
            return cls()
        return cls(
            rate_per_area_unit=record.rate_per_area_unit,
            due_lead_days=record.due_lead_days,
            fiscal_year_anchor=FiscalYearAnchor(
                month=record.fiscal_year_start_month,
                day=record.fiscal_year_start_day,
            ),
            reserve_fund_percentage=record.reserve_fund_percentage,
            penalty_policy=PenaltyPolicy(
                penalty_type=PenaltyType(record.penalty_type or PenaltyType.NONE),
                flat_amount=record.penalty_flat_amount,
                percentage=record.penalty_percentage,
                grace_days=record.penalty_grace_days or 0,
                max_amount=record.penalty_max_amount,
            ),
            max_reminders=(
                record.max_reminders if record.max_reminders is not None else DEFAULT_MAX_REMINDERS
            ),
        )


class BuildingDirectory:
    """Async access to buildings, their flats and financial settings."""

    def __init__(self, session: AsyncSession):
        """Initialize with async database session."""
        self.session = session

    async def get_building(self, building_id: int) -> Building:
        """Get building by ID.

        Raises:
            BuildingNotFound: If the building does not exist
        """
        building = await self.session.get(Building, building_id)
        if building is None:
            raise BuildingNotFound(building_id)
        return building

    async def get_financial_settings(self, building_id: int) -> FinancialSettings:
        """Fetch the building's settings once, as an immutable value.

        Buildings without a settings row get the defaults (nothing configured,
        fiscal year starting April 1).
        """
        await self.get_building(building_id)
        return FinancialSettings.from_record(await self._settings_record(building_id))

    async def _settings_record(self, building_id: int) -> BuildingFinancialSettings | None:
        result = await self.session.execute(
            select(BuildingFinancialSettings).where(
                BuildingFinancialSettings.building_id == building_id
            )
        )
        return result.scalar_one_or_none()

    async def list_flats(self, building_id: int) -> list[Flat]:
        """List the building's flats ordered by flat number."""
        result = await self.session.execute(
            select(Flat).where(Flat.building_id == building_id).order_by(Flat.flat_number, Flat.id)
        )
        return list(result.scalars().all())

    async def save_financial_settings(
        self,
        building_id: int,
        settings: FinancialSettings,
        updated_by: str | None = None,
    ) -> FinancialSettings:
        """Create or replace the building's financial settings.

        Already issued demands keep their snapshotted area and rate.
        """
        await self.get_building(building_id)
        record = await self._settings_record(building_id)
        if record is None:
            record = BuildingFinancialSettings(building_id=building_id)
            self.session.add(record)

        record.rate_per_area_unit = settings.rate_per_area_unit
        record.due_lead_days = settings.due_lead_days
        record.fiscal_year_start_month = settings.fiscal_year_anchor.month
        record.fiscal_year_start_day = settings.fiscal_year_anchor.day
        record.reserve_fund_percentage = settings.reserve_fund_percentage
        policy = settings.penalty_policy
        record.penalty_type = policy.penalty_type
        record.penalty_flat_amount = policy.flat_amount
        record.penalty_percentage = policy.percentage
        record.penalty_grace_days = policy.grace_days
        record.penalty_max_amount = policy.max_amount
        record.max_reminders = settings.max_reminders
        record.updated_by = updated_by

        AuditService.log(
            self.session,
            "settings",
            building_id,
            "update",
            updated_by,
            {
                "rate_per_area_unit": _as_text(settings.rate_per_area_unit),
                "due_lead_days": settings.due_lead_days,
                "fiscal_year_anchor": (
                    f"{settings.fiscal_year_anchor.month:02d}-{settings.fiscal_year_anchor.day:02d}"
                ),
                "reserve_fund_percentage": _as_text(settings.reserve_fund_percentage),
                "penalty_type": policy.penalty_type.value,
                "penalty_flat_amount": _as_text(policy.flat_amount),
                "penalty_percentage": _as_text(policy.percentage),
                "penalty_grace_days": policy.grace_days,
                "penalty_max_amount": _as_text(policy.max_amount),
                "max_reminders": settings.max_reminders,
            },
        )
        await self.session.commit()

        logger.info(
            "Saved financial settings for building %d: rate=%s, lead_days=%s, anchor=%s/%s",
            building_id,
            settings.rate_per_area_unit,
            settings.due_lead_days,
            settings.fiscal_year_anchor.month,
            settings.fiscal_year_anchor.day,
        )
        return FinancialSettings.from_record(record)


def _as_text(value: Decimal | None) -> str | None:
    return str(value) if value is not None else None


__all__ = [
    "FinancialSettings",
    "PenaltyPolicy",
    "NO_PENALTY",
    "DEFAULT_MAX_REMINDERS",
    "BuildingDirectory",
]
