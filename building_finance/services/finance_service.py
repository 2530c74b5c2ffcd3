"""Finance service: the operations exposed to the UI/API layer.

Every operation fetches the building's ``FinancialSettings`` once and passes
that value down, so a single action never sees two versions of the settings.
"""

import logging
from datetime import date
from decimal import Decimal
from typing import Callable

from sqlalchemy.ext.asyncio import AsyncSession

from building_finance.models.payment_record import PaymentMethod
from building_finance.models.service_charge_demand import DemandStatus, ServiceChargeDemand
from building_finance.services.budget_service import (
    AnnualSummary,
    BudgetAggregator,
    DemandStats,
    QuarterSummary,
)
from building_finance.services.building_service import BuildingDirectory, FinancialSettings
from building_finance.services.demand_ledger import DemandFilter, DemandLedger, PaymentInput
from building_finance.services.eligibility import quantize_amount
from building_finance.services.fiscal_calendar import (
    QuarterDescriptor,
    current_quarter,
    enumerate_quarters,
    parse_quarter_value,
    quarters_of_fiscal_year,
)
from building_finance.services.issuance_service import (
    IssuanceCoordinator,
    IssuancePlan,
    IssuanceResult,
)
from building_finance.services.notification_service import (
    LoggingNotificationService,
    NotificationService,
    notify_safely,
)

logger = logging.getLogger(__name__)


class FinanceService:
    """Facade over the fiscal calendar, ledger, issuance and budget services."""

    def __init__(
        self,
        session: AsyncSession,
        notifier: NotificationService | None = None,
        past_count: int = 1,
        future_count: int = 4,
        today: Callable[[], date] = date.today,
    ):
        self.session = session
        self.notifier = notifier or LoggingNotificationService()
        self.past_count = past_count
        self.future_count = future_count
        self.today = today
        self.directory = BuildingDirectory(session)
        self.ledger = DemandLedger(session)
        self.coordinator = IssuanceCoordinator(session, self.notifier)
        self.budget = BudgetAggregator(session)

    async def resolve_quarter(
        self, building_id: int, quarter_value: str, as_of: date | None = None
    ) -> tuple[FinancialSettings, QuarterDescriptor]:
        """Load settings and parse a quarter value against the building's calendar.

        Raises:
            BuildingNotFound: If the building does not exist
            InvalidQuarterSelection: If the value is not a quarter of this calendar
        """
        settings = await self.directory.get_financial_settings(building_id)
        quarter = parse_quarter_value(
            settings.fiscal_year_anchor, quarter_value, as_of or self.today()
        )
        return settings, quarter

    async def get_quarter_options(
        self,
        building_id: int,
        as_of: date | None = None,
        past_count: int | None = None,
        future_count: int | None = None,
    ) -> list[QuarterDescriptor]:
        settings = await self.directory.get_financial_settings(building_id)
        return enumerate_quarters(
            settings.fiscal_year_anchor,
            as_of or self.today(),
            self.past_count if past_count is None else past_count,
            self.future_count if future_count is None else future_count,
        )

    async def get_actionable_quarters(
        self, building_id: int, as_of: date | None = None
    ) -> list[QuarterDescriptor]:
        """Quarter picker options, hiding quarters whose demands are all settled."""
        options = await self.get_quarter_options(building_id, as_of)
        return await self.coordinator.filter_actionable(building_id, options)

    async def plan_issuance_or_reminder(
        self, building_id: int, quarter_value: str, as_of: date | None = None
    ) -> IssuancePlan:
        settings, quarter = await self.resolve_quarter(building_id, quarter_value, as_of)
        flats = await self.directory.list_flats(building_id)
        return await self.coordinator.plan_issuance(building_id, quarter, settings, flats)

    async def commit_issuance(
        self,
        building_id: int,
        quarter_value: str,
        selected_unit_ids: list[int],
        issued_by: str | None = None,
        as_of: date | None = None,
    ) -> IssuanceResult:
        settings, quarter = await self.resolve_quarter(building_id, quarter_value, as_of)
        flats = await self.directory.list_flats(building_id)
        return await self.coordinator.commit_issuance(
            building_id, quarter, settings, flats, selected_unit_ids, issued_by
        )

    async def send_reminders(
        self,
        building_id: int,
        quarter_value: str,
        sent_by: str | None = None,
        as_of: date | None = None,
    ) -> int:
        settings, quarter = await self.resolve_quarter(building_id, quarter_value, as_of)
        return await self.coordinator.send_reminders(
            building_id, quarter, sent_by, settings.max_reminders
        )

    async def record_payment(
        self,
        demand_id: int,
        amount: Decimal,
        method: PaymentMethod | str,
        payment_date: date,
        recorded_by: str,
        reference: str | None = None,
        notes: str | None = None,
    ) -> ServiceChargeDemand:
        return await self.ledger.apply_payment(
            demand_id,
            PaymentInput(
                amount=amount,
                payment_date=payment_date,
                recorded_by=recorded_by,
                method=method,
                reference=reference,
                notes=notes,
            ),
        )

    async def apply_penalty(
        self, demand_id: int, amount: Decimal, applied_by: str
    ) -> ServiceChargeDemand:
        demand = await self.ledger.apply_penalty(demand_id, amount, applied_by)
        penalty = quantize_amount(Decimal(str(amount)))
        await notify_safely(self.notifier, "penalty_applied", demand.flat, demand, penalty)
        return demand

    async def apply_overdue_penalties(
        self, building_id: int, applied_by: str, as_of: date | None = None
    ) -> list[tuple[ServiceChargeDemand, Decimal]]:
        """Run the building's penalty policy over its overdue demands.

        Raises:
            BuildingNotFound: If the building does not exist
            SettingsIncomplete: If no usable penalty policy is configured
        """
        settings = await self.directory.get_financial_settings(building_id)
        charged = await self.ledger.apply_overdue_penalties(
            building_id, settings.penalty_policy, as_of or self.today(), applied_by
        )
        for demand, penalty in charged:
            await notify_safely(self.notifier, "penalty_applied", demand.flat, demand, penalty)
        return charged

    async def cancel_demand(
        self, demand_id: int, cancelled_by: str, reason: str | None = None
    ) -> ServiceChargeDemand:
        return await self.ledger.cancel_demand(demand_id, cancelled_by, reason)

    async def get_demands(
        self,
        building_id: int,
        quarter_value: str | None = None,
        flat_id: int | None = None,
        status: DemandStatus | None = None,
        outstanding_only: bool = False,
        as_of: date | None = None,
    ) -> list[ServiceChargeDemand]:
        as_of = as_of or self.today()
        quarter_key = None
        if quarter_value:
            _, quarter = await self.resolve_quarter(building_id, quarter_value, as_of)
            quarter_key = quarter.key
        else:
            await self.directory.get_building(building_id)

        return await self.ledger.list_demands(
            building_id,
            DemandFilter(
                quarter_key=quarter_key,
                flat_id=flat_id,
                status=status,
                outstanding_only=outstanding_only,
            ),
            as_of,
        )

    async def get_financial_summary(
        self,
        building_id: int,
        quarter_value: str | None = None,
        as_of: date | None = None,
    ) -> QuarterSummary | AnnualSummary:
        """Quarter summary when a quarter is given, else the current fiscal year's."""
        as_of = as_of or self.today()
        settings = await self.directory.get_financial_settings(building_id)
        flats = await self.directory.list_flats(building_id)
        anchor = settings.fiscal_year_anchor

        if quarter_value:
            quarter = parse_quarter_value(anchor, quarter_value, as_of)
            return await self.budget.quarter_summary(building_id, quarter, settings, flats)

        fiscal_year = current_quarter(anchor, as_of).fiscal_year_start_year
        return await self.budget.annual_summary(
            building_id, quarters_of_fiscal_year(anchor, fiscal_year, as_of), settings, flats
        )

    async def get_demand_stats(
        self,
        building_id: int,
        quarter_value: str | None = None,
        as_of: date | None = None,
    ) -> DemandStats:
        as_of = as_of or self.today()
        quarter_key = None
        if quarter_value:
            _, quarter = await self.resolve_quarter(building_id, quarter_value, as_of)
            quarter_key = quarter.key
        else:
            await self.directory.get_building(building_id)
        return await self.budget.demand_stats(building_id, as_of, quarter_key)

    async def get_financial_settings(self, building_id: int) -> FinancialSettings:
        return await self.directory.get_financial_settings(building_id)

    async def save_financial_settings(
        self, building_id: int, settings: FinancialSettings, updated_by: str | None = None
    ) -> FinancialSettings:
        return await self.directory.save_financial_settings(building_id, settings, updated_by)


__all__ = ["FinanceService"]
