"""Pydantic schemas for the building finances API."""

from datetime import date, datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field, model_validator

from building_finance.models.building import PenaltyType
from building_finance.models.payment_record import PaymentMethod
from building_finance.models.service_charge_demand import DemandStatus
from building_finance.services.fiscal_calendar import FiscalYearAnchor


class QuarterResponse(BaseModel):
    """A billing quarter as offered in quarter pickers."""

    key: str = Field(..., description="Sortable quarter key, e.g. 2024-Q1")
    value: str = Field(..., description="ISO start date used as the picker value")
    display_string: str = Field(..., description="Short label, e.g. Q1 FY24/25")
    label: str = Field(..., description="Long label with the date range")
    fiscal_year_label: str
    fiscal_year_start_year: int
    quarter_number: int
    start_date: date
    end_date: date = Field(..., description="Exclusive: first day of the next quarter")
    is_past: bool

    model_config = ConfigDict(from_attributes=True)


class CandidateUnitResponse(BaseModel):
    """An eligible flat proposed for issuance."""

    flat_id: int
    flat_number: str
    area_units: Decimal | None = None
    base_amount: Decimal
    ground_rent_amount: Decimal
    total_amount: Decimal


class PaymentRecordResponse(BaseModel):
    id: int
    amount: Decimal
    method: PaymentMethod
    payment_date: date
    recorded_by: str
    recorded_at: datetime
    reference: str | None = None
    notes: str | None = None

    model_config = ConfigDict(from_attributes=True)


class DemandResponse(BaseModel):
    """Service charge demand with its status derived as of the request date."""

    id: int
    flat_id: int
    building_id: int
    flat_number: str
    quarter_key: str
    quarter_display_string: str
    quarter_start_date: date
    area_at_issue: Decimal
    rate_at_issue: Decimal
    base_amount: Decimal
    ground_rent_amount: Decimal
    penalty_amount: Decimal
    total_due: Decimal
    amount_paid: Decimal
    outstanding: Decimal
    due_date: date
    status: DemandStatus
    issued_at: datetime | None = None
    issued_by: str | None = None
    last_reminder_at: datetime | None = None
    reminders_sent: int = 0
    penalty_applied_at: datetime | None = None
    cancelled_at: datetime | None = None
    notes: str | None = None
    payment_history: list[PaymentRecordResponse] = Field(default_factory=list)

    model_config = ConfigDict(from_attributes=True)


class IssuancePlanResponse(BaseModel):
    """What issuing (or reminding) a quarter would do."""

    mode: str = Field(..., description="issue, remind or none")
    reason: str | None = None
    quarter: QuarterResponse
    include_ground_rent: bool
    already_issued: bool
    candidate_units: list[CandidateUnitResponse] = Field(default_factory=list)
    reminder_demands: list[DemandResponse] = Field(default_factory=list)


class IssuePayload(BaseModel):
    """Request payload for POST /quarters/{quarter_value}/issue."""

    selected_unit_ids: list[int] = Field(..., description="Flat IDs to issue demands for")
    issued_by: str | None = Field(None, description="Manager issuing the demands")


class UnitIssuanceResponse(BaseModel):
    flat_id: int
    outcome: str
    demand_id: int | None = None
    detail: str | None = None


class IssuanceResponse(BaseModel):
    """Result of committing an issuance, one entry per requested flat."""

    quarter: QuarterResponse
    created: int
    already_issued: bool
    failed_flat_ids: list[int] = Field(default_factory=list)
    results: list[UnitIssuanceResponse] = Field(default_factory=list)


class RemindPayload(BaseModel):
    sent_by: str | None = Field(None, description="Manager sending the reminders")


class RemindResponse(BaseModel):
    quarter: QuarterResponse
    reminded: int


class PaymentPayload(BaseModel):
    """Request payload for POST /demands/{demand_id}/payments."""

    amount: Decimal = Field(..., description="Amount received")
    method: PaymentMethod = Field(PaymentMethod.OTHER, description="Payment method")
    payment_date: date = Field(..., description="Date the payment was received")
    recorded_by: str = Field(..., description="Manager recording the payment")
    reference: str | None = Field(None, description="Bank or cheque reference")
    notes: str | None = None


class PenaltyPayload(BaseModel):
    amount: Decimal = Field(..., description="Late payment penalty amount")
    applied_by: str


class PenaltyRunPayload(BaseModel):
    """Request payload for POST /penalties/apply."""

    applied_by: str = Field(..., description="Manager running the penalty policy")


class PenaltyChargeResponse(BaseModel):
    demand_id: int
    flat_number: str
    quarter_key: str
    penalty: Decimal
    penalty_amount: Decimal = Field(..., description="Total penalty on the demand")
    outstanding: Decimal


class PenaltyRunResponse(BaseModel):
    """Penalties charged by one run of the building's penalty policy."""

    charged: int
    total_penalty: Decimal
    penalties: list[PenaltyChargeResponse] = Field(default_factory=list)


class CancelPayload(BaseModel):
    cancelled_by: str
    reason: str | None = None


class QuarterSummaryResponse(BaseModel):
    """Budget versus collection for one quarter."""

    quarter: QuarterResponse
    budget: Decimal | None = None
    collected: Decimal
    uncollected: Decimal | None = None
    outstanding: Decimal
    fill_percentage: Decimal
    reserve_fund_contribution: Decimal | None = None
    issued: bool
    budget_basis: str

    model_config = ConfigDict(from_attributes=True)


class AnnualSummaryResponse(BaseModel):
    """Fiscal-year rollup with a per-quarter breakdown."""

    fiscal_year_label: str
    budget: Decimal | None = None
    collected: Decimal
    uncollected: Decimal | None = None
    outstanding: Decimal
    fill_percentage: Decimal
    reserve_fund_contribution: Decimal | None = None
    quarters: list[QuarterSummaryResponse] = Field(default_factory=list)

    model_config = ConfigDict(from_attributes=True)


class DemandStatsResponse(BaseModel):
    """Demand counts and totals. Cancelled demands are counted but carry no amounts."""

    total_demands: int
    total_amount: Decimal
    total_collected: Decimal
    outstanding_amount: Decimal
    overdue_amount: Decimal
    by_status: dict[DemandStatus, int] = Field(default_factory=dict)
    recent_demands: list[DemandResponse] = Field(default_factory=list)


class FinancialSettingsPayload(BaseModel):
    """Request payload for PUT /settings."""

    rate_per_area_unit: Decimal | None = Field(None, ge=0, description="Rate per area unit")
    due_lead_days: int | None = Field(None, ge=0, description="Days before quarter start")
    fiscal_year_start_month: int = Field(4, ge=1, le=12)
    fiscal_year_start_day: int = Field(1, ge=1, le=31)
    reserve_fund_percentage: Decimal | None = Field(None, ge=0, le=100)
    penalty_type: PenaltyType = Field(PenaltyType.NONE, description="none, flat, percentage or both")
    penalty_flat_amount: Decimal | None = Field(None, ge=0)
    penalty_percentage: Decimal | None = Field(None, ge=0, le=100)
    penalty_grace_days: int = Field(0, ge=0, description="Days past due before a penalty applies")
    penalty_max_amount: Decimal | None = Field(None, gt=0)
    max_reminders: int = Field(3, ge=0, description="Reminders per demand before reminding stops")
    updated_by: str | None = None

    @model_validator(mode="after")
    def check_anchor(self) -> "FinancialSettingsPayload":
        # Raises ValueError for days the month never has (e.g. Feb 30)
        FiscalYearAnchor(self.fiscal_year_start_month, self.fiscal_year_start_day)
        return self


class FinancialSettingsResponse(BaseModel):
    rate_per_area_unit: Decimal | None = None
    due_lead_days: int | None = None
    fiscal_year_start_month: int
    fiscal_year_start_day: int
    reserve_fund_percentage: Decimal | None = None
    penalty_type: PenaltyType
    penalty_flat_amount: Decimal | None = None
    penalty_percentage: Decimal | None = None
    penalty_grace_days: int
    penalty_max_amount: Decimal | None = None
    max_reminders: int
    is_billable: bool
