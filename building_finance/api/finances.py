"""Building finances API routes: quarters, issuance, reminders, payments, summaries."""

import logging
from datetime import date
from decimal import Decimal

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from building_finance.models.service_charge_demand import DemandStatus, ServiceChargeDemand
from building_finance.schemas.finances import (
    AnnualSummaryResponse,
    CancelPayload,
    CandidateUnitResponse,
    DemandResponse,
    DemandStatsResponse,
    FinancialSettingsPayload,
    FinancialSettingsResponse,
    IssuancePlanResponse,
    IssuanceResponse,
    IssuePayload,
    PaymentPayload,
    PaymentRecordResponse,
    PenaltyChargeResponse,
    PenaltyPayload,
    PenaltyRunPayload,
    PenaltyRunResponse,
    QuarterResponse,
    QuarterSummaryResponse,
    RemindPayload,
    RemindResponse,
    UnitIssuanceResponse,
)
from building_finance.services import get_async_session
from building_finance.services.budget_service import QuarterSummary
from building_finance.services.building_service import FinancialSettings, PenaltyPolicy
from building_finance.services.config import load_config
from building_finance.services.demand_ledger import recompute_status
from building_finance.services.errors import DemandNotFound
from building_finance.services.finance_service import FinanceService
from building_finance.services.fiscal_calendar import FiscalYearAnchor
from building_finance.services.notification_service import create_notification_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/buildings/{building_id}/finances", tags=["finances"])

config = load_config()
notifier = create_notification_service(config.telegram_bot_token)


def get_finance_service(session: AsyncSession = Depends(get_async_session)) -> FinanceService:
    return FinanceService(
        session,
        notifier,
        past_count=config.quarter_past_count,
        future_count=config.quarter_future_count,
    )


def _demand_response(demand: ServiceChargeDemand, as_of: date) -> DemandResponse:
    fields = {
        name: getattr(demand, name)
        for name in DemandResponse.model_fields
        if name not in ("status", "payment_history")
    }
    return DemandResponse(
        **fields,
        status=recompute_status(demand, as_of),
        payment_history=[PaymentRecordResponse.model_validate(p) for p in demand.payment_history],
    )


async def _ensure_demand_in_building(
    service: FinanceService, building_id: int, demand_id: int
) -> None:
    await service.directory.get_building(building_id)
    demand = await service.ledger.get_demand(demand_id)
    if demand.building_id != building_id:
        raise DemandNotFound(demand_id)


def _settings_response(settings: FinancialSettings) -> FinancialSettingsResponse:
    return FinancialSettingsResponse(
        rate_per_area_unit=settings.rate_per_area_unit,
        due_lead_days=settings.due_lead_days,
        fiscal_year_start_month=settings.fiscal_year_anchor.month,
        fiscal_year_start_day=settings.fiscal_year_anchor.day,
        reserve_fund_percentage=settings.reserve_fund_percentage,
        penalty_type=settings.penalty_policy.penalty_type,
        penalty_flat_amount=settings.penalty_policy.flat_amount,
        penalty_percentage=settings.penalty_policy.percentage,
        penalty_grace_days=settings.penalty_policy.grace_days,
        penalty_max_amount=settings.penalty_policy.max_amount,
        max_reminders=settings.max_reminders,
        is_billable=settings.is_billable,
    )


@router.get("/quarters", response_model=list[QuarterResponse])
async def list_quarters(
    building_id: int,
    as_of: date | None = Query(None, description="Reference date (default: today)"),
    past_count: int | None = Query(None, ge=0),
    future_count: int | None = Query(None, ge=0),
    service: FinanceService = Depends(get_finance_service),
) -> list[QuarterResponse]:
    """Quarter picker options around the current fiscal quarter."""
    quarters = await service.get_quarter_options(building_id, as_of, past_count, future_count)
    return [QuarterResponse.model_validate(q) for q in quarters]


@router.get("/quarters/actionable", response_model=list[QuarterResponse])
async def list_actionable_quarters(
    building_id: int,
    as_of: date | None = Query(None),
    service: FinanceService = Depends(get_finance_service),
) -> list[QuarterResponse]:
    """Quarters that still need issuing or have unpaid demands."""
    quarters = await service.get_actionable_quarters(building_id, as_of)
    return [QuarterResponse.model_validate(q) for q in quarters]


@router.get("/quarters/{quarter_value}/plan", response_model=IssuancePlanResponse)
async def plan_quarter(
    building_id: int,
    quarter_value: str,
    as_of: date | None = Query(None),
    service: FinanceService = Depends(get_finance_service),
) -> IssuancePlanResponse:
    """
    Decide between issuing demands and sending reminders for a quarter.

    Returns:
        200: Plan with mode issue, remind or none
        400: settings_incomplete or invalid_quarter_selection
        404: building_not_found
    """
    as_of = as_of or service.today()
    plan = await service.plan_issuance_or_reminder(building_id, quarter_value, as_of)
    return IssuancePlanResponse(
        mode=plan.mode.value,
        reason=plan.reason,
        quarter=QuarterResponse.model_validate(plan.quarter),
        include_ground_rent=plan.include_ground_rent,
        already_issued=plan.already_issued,
        candidate_units=[
            CandidateUnitResponse(
                flat_id=unit.unit.id,
                flat_number=unit.unit.flat_number,
                area_units=unit.unit.area_units,
                base_amount=unit.base_amount,
                ground_rent_amount=unit.ground_rent_amount,
                total_amount=unit.total_amount,
            )
            for unit in plan.eligible_units
        ],
        reminder_demands=[_demand_response(d, as_of) for d in plan.reminder_demands],
    )


@router.post("/quarters/{quarter_value}/issue", response_model=IssuanceResponse)
async def issue_quarter(
    building_id: int,
    quarter_value: str,
    payload: IssuePayload,
    as_of: date | None = Query(None),
    service: FinanceService = Depends(get_finance_service),
) -> IssuanceResponse:
    """
    Issue demands for the selected flats. Safe to repeat.

    Returns:
        200: Per-flat results; repeated flats are reported as already_issued
        400: settings_incomplete or invalid_quarter_selection
    """
    result = await service.commit_issuance(
        building_id, quarter_value, payload.selected_unit_ids, payload.issued_by, as_of
    )
    return IssuanceResponse(
        quarter=QuarterResponse.model_validate(result.quarter),
        created=result.created,
        already_issued=result.already_issued,
        failed_flat_ids=result.failed_flat_ids,
        results=[
            UnitIssuanceResponse(
                flat_id=r.flat_id,
                outcome=r.outcome.value,
                demand_id=r.demand_id,
                detail=r.detail,
            )
            for r in result.results
        ],
    )


@router.post("/quarters/{quarter_value}/remind", response_model=RemindResponse)
async def remind_quarter(
    building_id: int,
    quarter_value: str,
    payload: RemindPayload,
    as_of: date | None = Query(None),
    service: FinanceService = Depends(get_finance_service),
) -> RemindResponse:
    """
    Send payment reminders for the quarter's unpaid demands.

    Returns:
        200: Number of demands reminded
        409: nothing_to_remind or reminder_limit_reached
    """
    _, quarter = await service.resolve_quarter(building_id, quarter_value, as_of)
    reminded = await service.send_reminders(building_id, quarter.key, payload.sent_by, as_of)
    return RemindResponse(quarter=QuarterResponse.model_validate(quarter), reminded=reminded)


@router.post("/demands/{demand_id}/payments", response_model=DemandResponse)
async def record_payment(
    building_id: int,
    demand_id: int,
    payload: PaymentPayload,
    service: FinanceService = Depends(get_finance_service),
) -> DemandResponse:
    """
    Record a payment against a demand.

    Returns:
        200: Demand with refreshed totals and status
        400: invalid_payment (non-positive or more than outstanding)
        404: demand_not_found
        409: invalid_demand_state or concurrent_update
    """
    await _ensure_demand_in_building(service, building_id, demand_id)
    demand = await service.record_payment(
        demand_id,
        payload.amount,
        payload.method,
        payload.payment_date,
        payload.recorded_by,
        payload.reference,
        payload.notes,
    )
    return _demand_response(demand, service.today())


@router.post("/demands/{demand_id}/penalty", response_model=DemandResponse)
async def apply_penalty(
    building_id: int,
    demand_id: int,
    payload: PenaltyPayload,
    service: FinanceService = Depends(get_finance_service),
) -> DemandResponse:
    """Add a late payment penalty to an unpaid demand. Penalties accumulate."""
    await _ensure_demand_in_building(service, building_id, demand_id)
    demand = await service.apply_penalty(demand_id, payload.amount, payload.applied_by)
    return _demand_response(demand, service.today())


@router.post("/penalties/apply", response_model=PenaltyRunResponse)
async def apply_overdue_penalties(
    building_id: int,
    payload: PenaltyRunPayload,
    as_of: date | None = Query(None),
    service: FinanceService = Depends(get_finance_service),
) -> PenaltyRunResponse:
    """
    Charge the building's penalty policy on every overdue, unpaid demand.

    Returns:
        200: Penalties charged; empty when nothing is overdue or already charged today
        400: settings_incomplete when no penalty policy is configured
        409: concurrent_update
    """
    charged = await service.apply_overdue_penalties(building_id, payload.applied_by, as_of)
    return PenaltyRunResponse(
        charged=len(charged),
        total_penalty=sum((penalty for _, penalty in charged), Decimal("0.00")),
        penalties=[
            PenaltyChargeResponse(
                demand_id=demand.id,
                flat_number=demand.flat_number,
                quarter_key=demand.quarter_key,
                penalty=penalty,
                penalty_amount=demand.penalty_amount,
                outstanding=demand.outstanding,
            )
            for demand, penalty in charged
        ],
    )


@router.post("/demands/{demand_id}/cancel", response_model=DemandResponse)
async def cancel_demand(
    building_id: int,
    demand_id: int,
    payload: CancelPayload,
    service: FinanceService = Depends(get_finance_service),
) -> DemandResponse:
    await _ensure_demand_in_building(service, building_id, demand_id)
    demand = await service.cancel_demand(demand_id, payload.cancelled_by, payload.reason)
    return _demand_response(demand, service.today())


@router.get("/demands", response_model=list[DemandResponse])
async def list_demands(
    building_id: int,
    quarter: str | None = Query(None, description="Quarter key or start date"),
    flat_id: int | None = Query(None),
    status: DemandStatus | None = Query(None),
    outstanding_only: bool = Query(False),
    as_of: date | None = Query(None),
    service: FinanceService = Depends(get_finance_service),
) -> list[DemandResponse]:
    """List demands, newest quarter first, with status derived as of the request."""
    as_of = as_of or service.today()
    demands = await service.get_demands(
        building_id, quarter, flat_id, status, outstanding_only, as_of
    )
    return [_demand_response(d, as_of) for d in demands]


@router.get(
    "/summary",
    response_model=QuarterSummaryResponse | AnnualSummaryResponse,
)
async def get_summary(
    building_id: int,
    quarter: str | None = Query(None, description="Quarter key or start date"),
    as_of: date | None = Query(None),
    service: FinanceService = Depends(get_finance_service),
) -> QuarterSummaryResponse | AnnualSummaryResponse:
    """Quarter budget summary, or the current fiscal year's when no quarter is given."""
    summary = await service.get_financial_summary(building_id, quarter, as_of)
    if isinstance(summary, QuarterSummary):
        return QuarterSummaryResponse.model_validate(summary)
    return AnnualSummaryResponse.model_validate(summary)


@router.get("/stats", response_model=DemandStatsResponse)
async def get_stats(
    building_id: int,
    quarter: str | None = Query(None, description="Quarter key or start date"),
    as_of: date | None = Query(None),
    service: FinanceService = Depends(get_finance_service),
) -> DemandStatsResponse:
    """Demand counts by status with billed, collected, outstanding and overdue totals."""
    as_of = as_of or service.today()
    stats = await service.get_demand_stats(building_id, quarter, as_of)
    return DemandStatsResponse(
        total_demands=stats.total_demands,
        total_amount=stats.total_amount,
        total_collected=stats.total_collected,
        outstanding_amount=stats.outstanding_amount,
        overdue_amount=stats.overdue_amount,
        by_status=stats.by_status,
        recent_demands=[_demand_response(d, as_of) for d in stats.recent_demands],
    )


@router.get("/settings", response_model=FinancialSettingsResponse)
async def get_settings(
    building_id: int,
    service: FinanceService = Depends(get_finance_service),
) -> FinancialSettingsResponse:
    settings = await service.get_financial_settings(building_id)
    return _settings_response(settings)


@router.put("/settings", response_model=FinancialSettingsResponse)
async def update_settings(
    building_id: int,
    payload: FinancialSettingsPayload,
    service: FinanceService = Depends(get_finance_service),
) -> FinancialSettingsResponse:
    """Replace the building's financial settings. Issued demands are unaffected."""
    settings = FinancialSettings(
        rate_per_area_unit=payload.rate_per_area_unit,
        due_lead_days=payload.due_lead_days,
        fiscal_year_anchor=FiscalYearAnchor(
            payload.fiscal_year_start_month, payload.fiscal_year_start_day
        ),
        reserve_fund_percentage=payload.reserve_fund_percentage,
        penalty_policy=PenaltyPolicy(
            penalty_type=payload.penalty_type,
            flat_amount=payload.penalty_flat_amount,
            percentage=payload.penalty_percentage,
            grace_days=payload.penalty_grace_days,
            max_amount=payload.penalty_max_amount,
        ),
        max_reminders=payload.max_reminders,
    )
    saved = await service.save_financial_settings(building_id, settings, payload.updated_by)
    logger.info("Financial settings updated for building %d", building_id)
    return _settings_response(saved)
