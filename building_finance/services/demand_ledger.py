"""Demand ledger: persisted service charge demands and their payments.

Owns amount and due-date computation at issue time, payment and penalty
application, cancellation, and status derivation.

Status is never stored. It is a pure function of persisted facts (amounts,
due date, issue/reminder/cancel timestamps) and the date it is read on:

    Cancelled       cancelled_at is set
    Draft           never issued
    Paid            outstanding <= 0
    Partially Paid  amount_paid > 0
    Overdue         as_of > due_date
    Reminder Sent   a reminder has been sent
    Issued          otherwise

Concurrent writes to the same demand are serialized by the demand's version
column; the losing writer gets ConcurrentUpdate and should re-read.
"""

import logging
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal, InvalidOperation

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from building_finance.models.building import PenaltyType
from building_finance.models.payment_record import PaymentMethod, PaymentRecord
from building_finance.models.service_charge_demand import DemandStatus, ServiceChargeDemand
from building_finance.services.audit_service import AuditService
from building_finance.services.building_service import FinancialSettings, PenaltyPolicy
from building_finance.services.eligibility import ZERO, EligibleUnit, quantize_amount
from building_finance.services.errors import (
    ConcurrentUpdate,
    DemandNotFound,
    InvalidDemandState,
    InvalidPayment,
)
from building_finance.services.fiscal_calendar import QuarterDescriptor

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PaymentInput:
    """A payment as entered by a manager."""

    amount: Decimal
    payment_date: date
    recorded_by: str
    method: PaymentMethod | str = PaymentMethod.OTHER
    reference: str | None = None
    notes: str | None = None


@dataclass(frozen=True)
class DemandFilter:
    """Optional criteria for listing demands."""

    quarter_key: str | None = None
    flat_id: int | None = None
    status: DemandStatus | None = None
    outstanding_only: bool = False
    include_cancelled: bool = True


def compute_due_date(quarter_start: date, due_lead_days: int) -> date:
    """Payment falls due ``due_lead_days`` before the quarter starts."""
    return quarter_start - timedelta(days=due_lead_days)


def recompute_status(demand: ServiceChargeDemand, as_of: date) -> DemandStatus:
    """Derive a demand's status from its persisted facts as of the given date."""
    if demand.cancelled_at is not None:
        return DemandStatus.CANCELLED
    if demand.issued_at is None:
        return DemandStatus.DRAFT
    if demand.outstanding <= 0:
        return DemandStatus.PAID
    if demand.amount_paid > 0:
        return DemandStatus.PARTIALLY_PAID
    if as_of > demand.due_date:
        return DemandStatus.OVERDUE
    if demand.last_reminder_at is not None:
        return DemandStatus.REMINDER_SENT
    return DemandStatus.ISSUED


def calculate_penalty(outstanding: Decimal, policy: PenaltyPolicy, overdue_days: int) -> Decimal:
    """Penalty the policy charges on an outstanding amount ``overdue_days`` past due.

    Nothing is charged within the grace period or when nothing is outstanding.
    """
    if not policy.is_configured or outstanding <= 0 or overdue_days <= policy.grace_days:
        return ZERO

    penalty = ZERO
    if policy.penalty_type in (PenaltyType.FLAT, PenaltyType.BOTH):
        penalty += policy.flat_amount or ZERO
    if policy.penalty_type in (PenaltyType.PERCENTAGE, PenaltyType.BOTH):
        penalty += outstanding * (policy.percentage or ZERO) / 100

    if policy.max_amount is not None:
        penalty = min(penalty, policy.max_amount)
    return quantize_amount(penalty)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _to_amount(value: Decimal | int | float | str, error_cls: type, label: str) -> Decimal:
    # NaN only signals on comparison, so compare inside the try
    try:
        amount = quantize_amount(Decimal(str(value)))
        positive = amount > 0
    except (InvalidOperation, ValueError) as e:
        raise error_cls(f"{label} '{value}' is not a valid amount") from e
    if not positive:
        raise error_cls(f"{label} must be greater than zero")
    return amount


class DemandLedger:
    """Async service for service charge demand database operations."""

    def __init__(self, session: AsyncSession):
        """Initialize with async database session."""
        self.session = session

    def build_demand(
        self,
        building_id: int,
        eligible: EligibleUnit,
        quarter: QuarterDescriptor,
        settings: FinancialSettings,
        issued_by: str | None = None,
        issued_at: datetime | None = None,
    ) -> ServiceChargeDemand:
        """Build (but do not persist) an issued demand for one eligible flat.

        Area and rate are snapshotted so later settings changes never alter it.
        """
        settings.ensure_billable()
        flat = eligible.unit
        demand = ServiceChargeDemand(
            flat_id=flat.id,
            building_id=building_id,
            flat_number=flat.flat_number,
            quarter_key=quarter.key,
            quarter_display_string=quarter.display_string,
            quarter_start_date=quarter.start_date,
            area_at_issue=flat.area_units if eligible.base_amount > 0 else ZERO,
            rate_at_issue=settings.rate_per_area_unit,
            base_amount=eligible.base_amount,
            ground_rent_amount=eligible.ground_rent_amount,
            penalty_amount=ZERO,
            due_date=compute_due_date(quarter.start_date, settings.due_lead_days),
            issued_at=issued_at or _utcnow(),
            issued_by=issued_by,
        )
        demand.refresh_totals()
        return demand

    async def get_demand(self, demand_id: int) -> ServiceChargeDemand:
        """Get demand by ID, re-reading it from the database.

        Raises:
            DemandNotFound: If the demand does not exist
        """
        demand = await self.session.get(ServiceChargeDemand, demand_id, populate_existing=True)
        if demand is None:
            raise DemandNotFound(demand_id)
        return demand

    async def list_demands(
        self,
        building_id: int,
        demand_filter: DemandFilter | None = None,
        as_of: date | None = None,
    ) -> list[ServiceChargeDemand]:
        """List a building's demands, newest quarter first, then by flat number.

        Status filtering is applied after loading since status is derived.
        """
        demand_filter = demand_filter or DemandFilter()
        stmt = select(ServiceChargeDemand).where(ServiceChargeDemand.building_id == building_id)
        if demand_filter.quarter_key:
            stmt = stmt.where(ServiceChargeDemand.quarter_key == demand_filter.quarter_key)
        if demand_filter.flat_id is not None:
            stmt = stmt.where(ServiceChargeDemand.flat_id == demand_filter.flat_id)
        if demand_filter.outstanding_only:
            stmt = stmt.where(ServiceChargeDemand.outstanding > 0)
        if not demand_filter.include_cancelled:
            stmt = stmt.where(ServiceChargeDemand.cancelled_at.is_(None))
        stmt = stmt.order_by(
            ServiceChargeDemand.quarter_key.desc(),
            ServiceChargeDemand.flat_number.asc(),
            ServiceChargeDemand.id.asc(),
        ).execution_options(populate_existing=True)

        result = await self.session.execute(stmt)
        demands = list(result.scalars().all())

        if demand_filter.status is not None:
            as_of = as_of or date.today()
            demands = [d for d in demands if recompute_status(d, as_of) == demand_filter.status]
        return demands

    async def list_quarter_demands(
        self, building_id: int, quarter_key: str
    ) -> list[ServiceChargeDemand]:
        """Non-cancelled demands of one quarter."""
        return await self.list_demands(
            building_id,
            DemandFilter(quarter_key=quarter_key, include_cancelled=False),
        )

    async def find_billable_demands(
        self, building_id: int, quarter_key: str
    ) -> list[ServiceChargeDemand]:
        """Demands that count as "already issued" for the quarter.

        Only non-cancelled demands with a service charge (base amount > 0) count;
        ground-rent-only rows never block issuance.
        """
        result = await self.session.execute(
            select(ServiceChargeDemand).where(
                ServiceChargeDemand.building_id == building_id,
                ServiceChargeDemand.quarter_key == quarter_key,
                ServiceChargeDemand.cancelled_at.is_(None),
                ServiceChargeDemand.base_amount > 0,
            )
        )
        return list(result.scalars().all())

    async def issued_flat_ids(self, building_id: int, quarter_key: str) -> set[int]:
        """Flats holding any non-cancelled demand for the quarter."""
        result = await self.session.execute(
            select(ServiceChargeDemand.flat_id).where(
                ServiceChargeDemand.building_id == building_id,
                ServiceChargeDemand.quarter_key == quarter_key,
                ServiceChargeDemand.cancelled_at.is_(None),
            )
        )
        return set(result.scalars().all())

    async def apply_payment(self, demand_id: int, payment: PaymentInput) -> ServiceChargeDemand:
        """Append a payment and refresh the demand's paid and outstanding amounts.

        Raises:
            DemandNotFound: If the demand does not exist
            InvalidPayment: If the amount is not positive, exceeds the outstanding
                amount, or the method is unknown
            InvalidDemandState: If the demand is cancelled
            ConcurrentUpdate: If another writer updated the demand first
        """
        amount = _to_amount(payment.amount, InvalidPayment, "Payment amount")
        try:
            method = PaymentMethod(payment.method)
        except ValueError as e:
            raise InvalidPayment(f"Unknown payment method '{payment.method}'") from e

        demand = await self.get_demand(demand_id)
        if demand.cancelled_at is not None:
            raise InvalidDemandState(f"Demand {demand_id} is cancelled and cannot take payments")
        if amount > demand.outstanding:
            raise InvalidPayment(
                f"Payment of {amount} exceeds outstanding amount {demand.outstanding}"
            )

        demand.payment_history.append(
            PaymentRecord(
                amount=amount,
                method=method,
                payment_date=payment.payment_date,
                recorded_by=payment.recorded_by,
                recorded_at=_utcnow(),
                reference=payment.reference,
                notes=payment.notes,
            )
        )
        demand.refresh_totals()

        AuditService.log(
            self.session,
            "demand",
            demand.id,
            "payment",
            payment.recorded_by,
            {
                "amount": str(amount),
                "method": method.value,
                "amount_paid": str(demand.amount_paid),
                "outstanding": str(demand.outstanding),
            },
        )
        await self._commit_demand_update(demand_id)

        logger.info(
            "Recorded payment on demand %d: amount=%s, method=%s, paid=%s, outstanding=%s",
            demand.id,
            amount,
            method.value,
            demand.amount_paid,
            demand.outstanding,
        )
        return demand

    async def apply_penalty(
        self, demand_id: int, amount: Decimal, applied_by: str
    ) -> ServiceChargeDemand:
        """Add a late payment penalty to an unpaid demand.

        Penalties accumulate; ``penalty_applied_at`` records the latest one.

        Raises:
            DemandNotFound: If the demand does not exist
            InvalidPayment: If the penalty amount is not positive
            InvalidDemandState: If the demand is paid or cancelled
            ConcurrentUpdate: If another writer updated the demand first
        """
        penalty = _to_amount(amount, InvalidPayment, "Penalty amount")

        demand = await self.get_demand(demand_id)
        if demand.cancelled_at is not None:
            raise InvalidDemandState(f"Demand {demand_id} is cancelled")
        if demand.outstanding <= 0:
            raise InvalidDemandState("Cannot apply penalty to a fully paid demand")

        self._add_penalty(demand, penalty, applied_by, _utcnow())
        await self._commit_demand_update(demand_id)

        logger.info(
            "Applied penalty of %s to demand %d (penalty_amount=%s, total_due=%s)",
            penalty,
            demand.id,
            demand.penalty_amount,
            demand.total_due,
        )
        return demand

    async def apply_overdue_penalties(
        self,
        building_id: int,
        policy: PenaltyPolicy,
        as_of: date,
        applied_by: str,
    ) -> list[tuple[ServiceChargeDemand, Decimal]]:
        """Charge the policy penalty on every overdue, unpaid demand of a building.

        A demand is penalised at most once per day, so re-running the same day
        is a no-op. All penalties are committed together.

        Returns:
            (demand, penalty) pairs for the demands that were charged

        Raises:
            SettingsIncomplete: If the policy cannot produce a penalty
            ConcurrentUpdate: If another writer updated one of the demands first
        """
        policy.ensure_configured()
        # Run date, so a second run on the same date skips the demand
        applied_at = datetime.combine(as_of, _utcnow().timetz())
        demands = await self.list_demands(
            building_id, DemandFilter(outstanding_only=True, include_cancelled=False)
        )

        charged = []
        for demand in demands:
            if demand.issued_at is None or as_of <= demand.due_date:
                continue
            if demand.penalty_applied_at is not None and demand.penalty_applied_at.date() >= as_of:
                continue
            penalty = calculate_penalty(demand.outstanding, policy, (as_of - demand.due_date).days)
            if penalty <= 0:
                continue
            self._add_penalty(demand, penalty, applied_by, applied_at)
            charged.append((demand, penalty))

        if not charged:
            logger.info("No overdue demands to penalise for building %d", building_id)
            return charged

        try:
            await self.session.commit()
        except StaleDataError as e:
            await self.session.rollback()
            logger.warning("Concurrent update detected while applying penalties")
            raise ConcurrentUpdate(
                "A demand was updated by another request while penalties were applied; retry"
            ) from e

        logger.info(
            "Applied %d overdue penalties for building %d totalling %s",
            len(charged),
            building_id,
            sum((penalty for _, penalty in charged), ZERO),
        )
        return charged

    def _add_penalty(
        self,
        demand: ServiceChargeDemand,
        penalty: Decimal,
        applied_by: str,
        applied_at: datetime,
    ) -> None:
        demand.penalty_amount = demand.penalty_amount + penalty
        demand.penalty_applied_at = applied_at
        demand.refresh_totals()

        AuditService.log(
            self.session,
            "demand",
            demand.id,
            "penalty",
            applied_by,
            {
                "penalty_amount": str(penalty),
                "total_penalty": str(demand.penalty_amount),
                "total_due": str(demand.total_due),
            },
        )

    async def cancel_demand(
        self, demand_id: int, cancelled_by: str, reason: str | None = None
    ) -> ServiceChargeDemand:
        """Cancel a demand. Cancellation is terminal and keeps the row.

        Raises:
            DemandNotFound: If the demand does not exist
            InvalidDemandState: If already cancelled or payments were recorded
            ConcurrentUpdate: If another writer updated the demand first
        """
        demand = await self.get_demand(demand_id)
        if demand.cancelled_at is not None:
            raise InvalidDemandState(f"Demand {demand_id} is already cancelled")
        if demand.amount_paid > 0:
            raise InvalidDemandState(
                f"Demand {demand_id} has recorded payments and cannot be cancelled"
            )

        demand.cancelled_at = _utcnow()
        if reason:
            demand.notes = reason

        AuditService.log(
            self.session, "demand", demand.id, "cancel", cancelled_by, {"reason": reason}
        )
        await self._commit_demand_update(demand_id)

        logger.info("Cancelled demand %d by %s", demand.id, cancelled_by)
        return demand

    def mark_reminder_sent(self, demands: list[ServiceChargeDemand], sent_at: datetime) -> None:
        """Stamp the reminder time and count the reminder on each demand; the caller commits."""
        for demand in demands:
            demand.last_reminder_at = sent_at
            demand.reminders_sent = (demand.reminders_sent or 0) + 1

    async def _commit_demand_update(self, demand_id: int) -> None:
        try:
            await self.session.commit()
        except StaleDataError as e:
            await self.session.rollback()
            logger.warning("Concurrent update detected on demand %d", demand_id)
            raise ConcurrentUpdate(
                f"Demand {demand_id} was updated by another request; reload and retry"
            ) from e


__all__ = [
    "DemandLedger",
    "DemandFilter",
    "PaymentInput",
    "calculate_penalty",
    "compute_due_date",
    "recompute_status",
]
