"""Issuance coordinator: issue a quarter's demands once, then switch to reminders.

For a selected quarter the coordinator either

- plans and commits first-time issuance (one demand per selected eligible flat), or
- once billable demands exist, plans reminders for the demands still unpaid.

Issuance is idempotent per (building, flat, quarter). The application-level
check is backed by the partial unique index on service_charge_demands, so a
concurrent manager issuing the same quarter gets "already issued" results
instead of duplicate demands. Each flat is inserted in its own SAVEPOINT and
reported individually, so a failed run can be re-run for the failures only.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Iterable

from sqlalchemy import case, func, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from building_finance.models.service_charge_demand import ServiceChargeDemand
from building_finance.services.audit_service import AuditService
from building_finance.services.building_service import DEFAULT_MAX_REMINDERS, FinancialSettings
from building_finance.services.demand_ledger import DemandLedger
from building_finance.services.eligibility import EligibleUnit, select_eligible_units
from building_finance.services.errors import NothingToRemind, ReminderLimitReached
from building_finance.services.fiscal_calendar import QuarterDescriptor
from building_finance.services.notification_service import (
    LoggingNotificationService,
    NotificationService,
    notify_safely,
)

logger = logging.getLogger(__name__)

# Reason codes reported instead of raised
NO_ELIGIBLE_UNITS = "no_eligible_units"
ALREADY_ISSUED = "already_issued"
NOTHING_TO_REMIND = "nothing_to_remind"
REMINDER_LIMIT_REACHED = "reminder_limit_reached"


class PlanMode(str, Enum):
    """What the manager's action on a quarter will do."""

    ISSUE = "issue"
    REMIND = "remind"
    NONE = "none"


class UnitOutcome(str, Enum):
    """Per-flat result of a commit."""

    CREATED = "created"
    ALREADY_ISSUED = "already_issued"
    NOT_ELIGIBLE = "not_eligible"
    FAILED = "failed"


@dataclass
class IssuancePlan:
    """Outcome of planning an action on a quarter."""

    mode: PlanMode
    quarter: QuarterDescriptor
    include_ground_rent: bool
    already_issued: bool
    eligible_units: list[EligibleUnit] = field(default_factory=list)
    reminder_demands: list[ServiceChargeDemand] = field(default_factory=list)
    reason: str | None = None


@dataclass
class UnitIssuanceResult:
    flat_id: int
    outcome: UnitOutcome
    demand_id: int | None = None
    detail: str | None = None


@dataclass
class IssuanceResult:
    """Summary of a commit with one entry per requested flat."""

    quarter: QuarterDescriptor
    results: list[UnitIssuanceResult] = field(default_factory=list)

    @property
    def created(self) -> int:
        return sum(1 for r in self.results if r.outcome == UnitOutcome.CREATED)

    @property
    def already_issued(self) -> bool:
        return any(r.outcome == UnitOutcome.ALREADY_ISSUED for r in self.results)

    @property
    def failed_flat_ids(self) -> list[int]:
        return [r.flat_id for r in self.results if r.outcome == UnitOutcome.FAILED]


def remindable_demands(
    demands: Iterable[ServiceChargeDemand], max_reminders: int
) -> list[ServiceChargeDemand]:
    """Demands that have not yet received ``max_reminders`` reminders."""
    return [d for d in demands if (d.reminders_sent or 0) < max_reminders]


class IssuanceCoordinator:
    """Async service deciding between issuing demands and sending reminders."""

    def __init__(self, session: AsyncSession, notifier: NotificationService | None = None):
        """Initialize with async database session and an optional notification sink."""
        self.session = session
        self.ledger = DemandLedger(session)
        self.notifier = notifier or LoggingNotificationService()

    async def plan_issuance(
        self,
        building_id: int,
        quarter: QuarterDescriptor,
        settings: FinancialSettings,
        flats: Iterable[Any],
    ) -> IssuancePlan:
        """Decide whether the quarter needs issuing or reminding.

        Raises:
            SettingsIncomplete: If the quarter still needs issuing but the rate or
                lead days are not configured
        """
        include_ground_rent = quarter.is_first_quarter
        billable = await self.ledger.find_billable_demands(building_id, quarter.key)

        if billable:
            unpaid = await self.plan_reminder(building_id, quarter)
            remindable = remindable_demands(unpaid, settings.max_reminders)
            if remindable:
                reason = ALREADY_ISSUED
            elif unpaid:
                reason = REMINDER_LIMIT_REACHED
            else:
                reason = NOTHING_TO_REMIND
            return IssuancePlan(
                mode=PlanMode.REMIND if remindable else PlanMode.NONE,
                quarter=quarter,
                include_ground_rent=include_ground_rent,
                already_issued=True,
                reminder_demands=remindable,
                reason=reason,
            )

        settings.ensure_billable()
        issued = await self.ledger.issued_flat_ids(building_id, quarter.key)
        eligible = [
            unit
            for unit in select_eligible_units(
                flats, include_ground_rent, settings.rate_per_area_unit
            )
            if unit.unit.id not in issued
        ]
        return IssuancePlan(
            mode=PlanMode.ISSUE if eligible else PlanMode.NONE,
            quarter=quarter,
            include_ground_rent=include_ground_rent,
            already_issued=False,
            eligible_units=eligible,
            reason=None if eligible else NO_ELIGIBLE_UNITS,
        )

    async def plan_reminder(
        self, building_id: int, quarter: QuarterDescriptor
    ) -> list[ServiceChargeDemand]:
        """Non-cancelled demands of the quarter that still have an outstanding balance."""
        demands = await self.ledger.list_quarter_demands(building_id, quarter.key)
        return [d for d in demands if d.outstanding > 0]

    async def send_reminders(
        self,
        building_id: int,
        quarter: QuarterDescriptor,
        sent_by: str | None = None,
        max_reminders: int = DEFAULT_MAX_REMINDERS,
    ) -> int:
        """Stamp and send reminders for the unpaid demands of the quarter.

        Demands that already received ``max_reminders`` reminders are skipped.

        Returns:
            Number of demands reminded

        Raises:
            NothingToRemind: If no demand of the quarter has an outstanding balance
            ReminderLimitReached: If every unpaid demand reached the reminder limit
        """
        unpaid = await self.plan_reminder(building_id, quarter)
        if not unpaid:
            raise NothingToRemind(
                f"All demands for {quarter.display_string} are fully paid; nothing to remind"
            )
        remindable = remindable_demands(unpaid, max_reminders)
        if not remindable:
            raise ReminderLimitReached(
                f"Maximum reminders ({max_reminders}) already sent for every unpaid demand "
                f"of {quarter.display_string}"
            )

        sent_at = datetime.now(timezone.utc)
        self.ledger.mark_reminder_sent(remindable, sent_at)
        AuditService.log(
            self.session,
            "quarter",
            building_id,
            "remind",
            sent_by,
            {"quarter": quarter.key, "demand_ids": [d.id for d in remindable]},
        )
        await self.session.commit()

        logger.info(
            "Sent reminders for %d unpaid demand(s) of %s in building %d (%d at limit)",
            len(remindable),
            quarter.display_string,
            building_id,
            len(unpaid) - len(remindable),
        )
        for demand in remindable:
            await notify_safely(self.notifier, "payment_reminder", demand.flat, demand)
        return len(remindable)

    async def commit_issuance(
        self,
        building_id: int,
        quarter: QuarterDescriptor,
        settings: FinancialSettings,
        flats: Iterable[Any],
        selected_flat_ids: Iterable[int],
        issued_by: str | None = None,
    ) -> IssuanceResult:
        """Create one demand per selected eligible flat.

        ``selected_flat_ids`` may be any subset of the planned flats. Flats that
        already hold a demand for the quarter are reported as already issued and
        untouched, so re-running a partially failed commit is safe.

        Raises:
            SettingsIncomplete: If rate or lead days are unset at commit time
        """
        settings.ensure_billable()

        eligible = {
            unit.unit.id: unit
            for unit in select_eligible_units(
                flats, quarter.is_first_quarter, settings.rate_per_area_unit
            )
        }
        issued = await self.ledger.issued_flat_ids(building_id, quarter.key)
        issued_at = datetime.now(timezone.utc)
        result = IssuanceResult(quarter=quarter)
        created: list[ServiceChargeDemand] = []

        for flat_id in dict.fromkeys(selected_flat_ids):
            unit = eligible.get(flat_id)
            if unit is None:
                logger.warning(
                    "Skipping flat %s for %s: not eligible", flat_id, quarter.display_string
                )
                result.results.append(UnitIssuanceResult(flat_id, UnitOutcome.NOT_ELIGIBLE))
                continue
            if flat_id in issued:
                result.results.append(UnitIssuanceResult(flat_id, UnitOutcome.ALREADY_ISSUED))
                continue

            demand = self.ledger.build_demand(
                building_id, unit, quarter, settings, issued_by, issued_at
            )
            try:
                async with self.session.begin_nested():
                    self.session.add(demand)
            except IntegrityError:
                logger.warning(
                    "Demand for flat %d, %s was issued concurrently",
                    flat_id,
                    quarter.display_string,
                )
                result.results.append(UnitIssuanceResult(flat_id, UnitOutcome.ALREADY_ISSUED))
                continue
            except SQLAlchemyError as e:
                logger.error("Failed to issue demand for flat %d: %s", flat_id, e)
                result.results.append(
                    UnitIssuanceResult(flat_id, UnitOutcome.FAILED, detail=str(e))
                )
                continue

            created.append(demand)
            result.results.append(
                UnitIssuanceResult(flat_id, UnitOutcome.CREATED, demand_id=demand.id)
            )

        if created:
            AuditService.log(
                self.session,
                "quarter",
                building_id,
                "issue",
                issued_by,
                {
                    "quarter": quarter.key,
                    "count": len(created),
                    "include_ground_rent": quarter.is_first_quarter,
                },
            )
        await self.session.commit()

        logger.info(
            "Issued %d demand(s) for %s in building %d (%d requested)",
            result.created,
            quarter.display_string,
            building_id,
            len(result.results),
        )

        for demand in created:
            await notify_safely(self.notifier, "demand_issued", eligible[demand.flat_id].unit, demand)
        return result

    async def filter_actionable(
        self, building_id: int, quarters: list[QuarterDescriptor]
    ) -> list[QuarterDescriptor]:
        """Keep quarters with no demands yet, or with at least one unpaid demand."""
        if not quarters:
            return []

        result = await self.session.execute(
            select(
                ServiceChargeDemand.quarter_key,
                func.count(ServiceChargeDemand.id),
                func.sum(case((ServiceChargeDemand.outstanding > 0, 1), else_=0)),
            )
            .where(
                ServiceChargeDemand.building_id == building_id,
                ServiceChargeDemand.quarter_key.in_([q.key for q in quarters]),
                ServiceChargeDemand.cancelled_at.is_(None),
            )
            .group_by(ServiceChargeDemand.quarter_key)
        )
        counts = {key: (total, unpaid or 0) for key, total, unpaid in result.all()}

        actionable = []
        for quarter in quarters:
            total, unpaid = counts.get(quarter.key, (0, 0))
            if total == 0 or unpaid > 0:
                actionable.append(quarter)
        return actionable


__all__ = [
    "IssuanceCoordinator",
    "remindable_demands",
    "IssuancePlan",
    "IssuanceResult",
    "UnitIssuanceResult",
    "PlanMode",
    "UnitOutcome",
    "NO_ELIGIBLE_UNITS",
    "ALREADY_ISSUED",
    "NOTHING_TO_REMIND",
    "REMINDER_LIMIT_REACHED",
]
