"""Budget aggregation service for dashboard summaries.

Read-only rollups over the demand ledger:

    quarterly budget = eligible area * rate per area unit
    collected        = sum of amount paid over the quarter's demands
    uncollected      = budget - collected (negative when penalties push collection past budget)

Area-change policy: an issued quarter's budget is the sum of the base amounts
snapshotted at issue (area_at_issue * rate_at_issue). Quarters not yet issued
use the current eligible area and current rate. The annual figure is the sum of
the four quarters, which equals four times the quarterly budget while area and
rate are unchanged.

Reads may miss demands committed a moment earlier; figures are advisory.
"""

import logging
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Any, Iterable

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from building_finance.models.service_charge_demand import DemandStatus, ServiceChargeDemand
from building_finance.services.building_service import FinancialSettings
from building_finance.services.demand_ledger import recompute_status
from building_finance.services.eligibility import ZERO, quantize_amount, total_eligible_area
from building_finance.services.fiscal_calendar import QuarterDescriptor

logger = logging.getLogger(__name__)

HUNDRED = Decimal("100")

BUDGET_BASIS_ISSUED = "issued_snapshot"
BUDGET_BASIS_CURRENT = "current_area"

RECENT_DEMANDS = 5


def fill_percentage(collected: Decimal, budget: Decimal | None) -> Decimal:
    """Collected as a share of budget, capped at 100; 0 without a positive budget."""
    if not budget or budget <= 0:
        return ZERO
    return quantize_amount(min(HUNDRED, collected / budget * HUNDRED))


def reserve_fund_contribution(
    budget: Decimal | None, reserve_fund_percentage: Decimal | None
) -> Decimal | None:
    if budget is None or reserve_fund_percentage is None:
        return None
    return quantize_amount(budget * reserve_fund_percentage / HUNDRED)


@dataclass
class QuarterSummary:
    """Budget versus collection for one quarter."""

    quarter: QuarterDescriptor
    budget: Decimal | None
    collected: Decimal
    outstanding: Decimal
    issued: bool
    budget_basis: str
    reserve_fund_percentage: Decimal | None = None

    @property
    def uncollected(self) -> Decimal | None:
        if self.budget is None:
            return None
        return self.budget - self.collected

    @property
    def fill_percentage(self) -> Decimal:
        return fill_percentage(self.collected, self.budget)

    @property
    def reserve_fund_contribution(self) -> Decimal | None:
        return reserve_fund_contribution(self.budget, self.reserve_fund_percentage)


@dataclass
class AnnualSummary:
    """Fiscal-year rollup built from its four quarter summaries."""

    fiscal_year_label: str
    quarters: list[QuarterSummary] = field(default_factory=list)
    reserve_fund_percentage: Decimal | None = None

    @property
    def budget(self) -> Decimal | None:
        budgets = [q.budget for q in self.quarters]
        if any(b is None for b in budgets):
            return None
        return sum(budgets, start=ZERO)

    @property
    def collected(self) -> Decimal:
        return sum((q.collected for q in self.quarters), start=ZERO)

    @property
    def outstanding(self) -> Decimal:
        return sum((q.outstanding for q in self.quarters), start=ZERO)

    @property
    def uncollected(self) -> Decimal | None:
        budget = self.budget
        return None if budget is None else budget - self.collected

    @property
    def fill_percentage(self) -> Decimal:
        return fill_percentage(self.collected, self.budget)

    @property
    def reserve_fund_contribution(self) -> Decimal | None:
        return reserve_fund_contribution(self.budget, self.reserve_fund_percentage)


@dataclass
class DemandStats:
    """Counts and totals over a building's demands, optionally one quarter only.

    Cancelled demands are counted by status but excluded from every amount.
    """

    total_demands: int = 0
    total_amount: Decimal = ZERO
    total_collected: Decimal = ZERO
    outstanding_amount: Decimal = ZERO
    overdue_amount: Decimal = ZERO
    by_status: dict[DemandStatus, int] = field(default_factory=dict)
    recent_demands: list[ServiceChargeDemand] = field(default_factory=list)


class BudgetAggregator:
    """Compute budget and collection figures. Never writes."""

    def __init__(self, session: AsyncSession):
        """Initialize with database session.

        Args:
            session: AsyncSession for database operations
        """
        self.session = session

    @staticmethod
    def quarterly_budget(flats: Iterable[Any], settings: FinancialSettings) -> Decimal | None:
        """Current eligible area times current rate; None when no rate is configured."""
        if settings.rate_per_area_unit is None:
            return None
        return quantize_amount(total_eligible_area(flats) * settings.rate_per_area_unit)

    async def _quarter_demands(
        self, building_id: int, quarter_keys: list[str]
    ) -> dict[str, list[ServiceChargeDemand]]:
        result = await self.session.execute(
            select(ServiceChargeDemand).where(
                ServiceChargeDemand.building_id == building_id,
                ServiceChargeDemand.quarter_key.in_(quarter_keys),
                ServiceChargeDemand.cancelled_at.is_(None),
            )
        )
        grouped: dict[str, list[ServiceChargeDemand]] = {key: [] for key in quarter_keys}
        for demand in result.scalars().all():
            grouped[demand.quarter_key].append(demand)
        return grouped

    def _summarize(
        self,
        quarter: QuarterDescriptor,
        demands: list[ServiceChargeDemand],
        current_budget: Decimal | None,
        settings: FinancialSettings,
    ) -> QuarterSummary:
        billable = [d for d in demands if d.base_amount > 0]
        issued = bool(billable)
        budget = sum((d.base_amount for d in billable), start=ZERO) if issued else current_budget
        return QuarterSummary(
            quarter=quarter,
            budget=budget,
            collected=sum((d.amount_paid for d in demands), start=ZERO),
            outstanding=sum((d.outstanding for d in demands), start=ZERO),
            issued=issued,
            budget_basis=BUDGET_BASIS_ISSUED if issued else BUDGET_BASIS_CURRENT,
            reserve_fund_percentage=settings.reserve_fund_percentage,
        )

    async def quarter_summary(
        self,
        building_id: int,
        quarter: QuarterDescriptor,
        settings: FinancialSettings,
        flats: Iterable[Any],
    ) -> QuarterSummary:
        """Budget, collected and outstanding for one quarter."""
        grouped = await self._quarter_demands(building_id, [quarter.key])
        summary = self._summarize(
            quarter, grouped[quarter.key], self.quarterly_budget(flats, settings), settings
        )
        logger.debug(
            "Quarter summary building=%d quarter=%s budget=%s collected=%s basis=%s",
            building_id,
            quarter.key,
            summary.budget,
            summary.collected,
            summary.budget_basis,
        )
        return summary

    async def annual_summary(
        self,
        building_id: int,
        quarters: list[QuarterDescriptor],
        settings: FinancialSettings,
        flats: Iterable[Any],
    ) -> AnnualSummary:
        """Roll up the quarters of one fiscal year."""
        flats = list(flats)
        current_budget = self.quarterly_budget(flats, settings)
        grouped = await self._quarter_demands(building_id, [q.key for q in quarters])
        return AnnualSummary(
            fiscal_year_label=quarters[0].fiscal_year_label if quarters else "",
            quarters=[
                self._summarize(q, grouped[q.key], current_budget, settings) for q in quarters
            ],
            reserve_fund_percentage=settings.reserve_fund_percentage,
        )

    async def demand_stats(
        self, building_id: int, as_of: date, quarter_key: str | None = None
    ) -> DemandStats:
        """Status counts and money totals over the building's demands."""
        stmt = select(ServiceChargeDemand).where(ServiceChargeDemand.building_id == building_id)
        if quarter_key:
            stmt = stmt.where(ServiceChargeDemand.quarter_key == quarter_key)
        result = await self.session.execute(
            stmt.order_by(ServiceChargeDemand.issued_at.desc(), ServiceChargeDemand.id.desc())
            .execution_options(populate_existing=True)
        )
        demands = list(result.scalars().all())

        stats = DemandStats(total_demands=len(demands), recent_demands=demands[:RECENT_DEMANDS])
        for demand in demands:
            status = recompute_status(demand, as_of)
            stats.by_status[status] = stats.by_status.get(status, 0) + 1
            if status == DemandStatus.CANCELLED:
                continue
            stats.total_amount += demand.total_due
            stats.total_collected += demand.amount_paid
            stats.outstanding_amount += demand.outstanding
            if demand.outstanding > 0 and as_of > demand.due_date:
                stats.overdue_amount += demand.outstanding

        logger.debug(
            "Demand stats building=%d quarter=%s demands=%d outstanding=%s overdue=%s",
            building_id,
            quarter_key,
            stats.total_demands,
            stats.outstanding_amount,
            stats.overdue_amount,
        )
        return stats


__all__ = [
    "BudgetAggregator",
    "QuarterSummary",
    "AnnualSummary",
    "DemandStats",
    "fill_percentage",
    "reserve_fund_contribution",
    "BUDGET_BASIS_ISSUED",
    "BUDGET_BASIS_CURRENT",
]
